"""
Assignment Application Services
===============================

Application services orchestrate business logic and coordinate between
domain rules and repositories.

- WorkloadTracker: current weighted load per user
- LoadBalancerService: picks assignees and proposes rebalancing moves

Every public operation checks the capability policy and returns an
``OperationResult``; expected business failures never escape as exceptions.
"""

import random
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple

from taskflow.core import (
    Actor, ApplicationException, ConcurrencyConflict, GuardrailViolation,
    NoEligibleCandidateError, NotFoundError, Operation, OperationResult,
    PermissionDenied, SYSTEM_ACTOR, ValidationException, authorize,
)
from taskflow.config import Role
from taskflow.core.timeutils import utc_now
from taskflow.shared.domain import Task, UserProfile
from taskflow.shared.infrastructure.logging import get_logger
from taskflow.assignment.domain import (
    AssignmentDecision, AssignmentScorer, AssignmentSettings, CandidateSignals,
    FallbackSelector, RebalancePlanner, RebalanceSuggestion, RejectionReason, ScoreResult,
    ScoringContext, WipLimitCheck, Workload, WorkloadCalculator,
)
from taskflow.sla.domain import SLACalculator

logger = get_logger(__name__)


def _is_overdue(task: Task, now: datetime) -> bool:
    """Past its pause-adjusted deadline; a paused task is never overdue."""
    if task.due_at is None or task.is_paused:
        return False
    effective = SLACalculator.effective_due_date(
        task.due_at, task.sla_total_paused_ms, task.sla_paused_at, now
    )
    return effective < now


# ========== Repository Interfaces (Dependency Inversion) ==========

class IAssignmentRepository(ABC):
    """Interface for the data the assignment module reads and writes."""

    @abstractmethod
    async def get_task(self, task_id: str) -> Optional[Task]:
        """Get task by id."""

    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[UserProfile]:
        """Get user by id."""

    @abstractmethod
    async def team_exists(self, team_id: str) -> bool:
        """Check if team exists."""

    @abstractmethod
    async def list_team_members(self, team_id: str) -> List[UserProfile]:
        """All members of a team, including inactive and absent ones."""

    @abstractmethod
    async def list_users_outside_team(self, team_id: str) -> List[UserProfile]:
        """Active members of every other team (cross-team fallback pool)."""

    @abstractmethod
    async def get_category_path(self, category_id: str) -> Optional[str]:
        """Get a category's hierarchical path."""

    @abstractmethod
    async def list_open_tasks(self, user_ids: Sequence[str]) -> Dict[str, List[Task]]:
        """Non-terminal tasks assigned to each user."""

    @abstractmethod
    async def get_completed_category_paths(self, user_ids: Sequence[str]) -> Dict[str, Set[str]]:
        """Paths of categories in which each user has completed work."""

    @abstractmethod
    async def count_assignments_since(self, user_ids: Sequence[str], since: datetime) -> Dict[str, int]:
        """Assignments received by each user since ``since``."""

    @abstractmethod
    async def count_completions_since(self, user_ids: Sequence[str], since: datetime) -> Dict[str, int]:
        """Tasks completed by each user since ``since``."""

    @abstractmethod
    async def update_assignee(
        self,
        task_id: str,
        expected_assignee_id: Optional[str],
        new_assignee_id: str,
        assigned_at: datetime,
        strategy: str,
        score: Optional[float],
    ) -> bool:
        """
        Conditionally set the assignee.

        Succeeds only if the stored assignee still equals
        ``expected_assignee_id``; returns False when another writer won.
        """


class IAssignmentSettingsProvider(ABC):
    """Interface for assignment policy access."""

    @abstractmethod
    def get_assignment_settings(self) -> AssignmentSettings:
        """Get current assignment settings."""


# ========== Application Services ==========

class WorkloadTracker:
    """
    Computes users' current weighted load.

    Pure read: nothing here writes to the store.
    """

    def __init__(
        self,
        repository: IAssignmentRepository,
        settings_provider: IAssignmentSettingsProvider,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._repo = repository
        self._settings_provider = settings_provider
        self._clock = clock

    async def compute_workload(
        self,
        user_id: str,
        settings: Optional[AssignmentSettings] = None,
    ) -> Workload:
        """
        Current workload of one user.

        Raises:
            NotFoundError: If the user does not exist
        """
        settings = settings or self._settings_provider.get_assignment_settings()
        user = await self._repo.get_user(user_id)
        if user is None:
            raise NotFoundError("User", user_id)
        open_tasks = await self._repo.list_open_tasks([user_id])
        return WorkloadCalculator.compute(
            user_id, open_tasks.get(user_id, []), self._clock(), settings.guardrails, user.wip_limit
        )

    async def get_workload(self, user_id: str, actor: Actor = SYSTEM_ACTOR) -> OperationResult:
        """Workload of a user, as a result."""
        try:
            authorize(actor, Operation.VIEW_WORKLOAD)
            workload = await self.compute_workload(user_id)
        except ApplicationException as e:
            return OperationResult.from_exception(e)
        return OperationResult.ok(workload)

    async def check_wip_limit(self, user_id: str, actor: Actor = SYSTEM_ACTOR) -> OperationResult:
        """WIP limit headroom for a user."""
        try:
            authorize(actor, Operation.VIEW_WORKLOAD)
            workload = await self.compute_workload(user_id)
        except ApplicationException as e:
            return OperationResult.from_exception(e)
        return OperationResult.ok(WipLimitCheck.from_workload(workload))

    async def team_workload(self, team_id: str, actor: Actor = SYSTEM_ACTOR) -> OperationResult:
        """Workloads of every member of a team, heaviest first."""
        try:
            authorize(actor, Operation.VIEW_TEAM_WORKLOAD)
            if not await self._repo.team_exists(team_id):
                raise NotFoundError("Team", team_id)
            members = await self._repo.list_team_members(team_id)
            signals, _ = await self.collect_signals(members)
        except ApplicationException as e:
            return OperationResult.from_exception(e)

        workloads = sorted(
            (s.workload for s in signals.values()),
            key=lambda w: (-w.weighted_load, w.user_id),
        )
        return OperationResult.ok(workloads)

    async def collect_signals(
        self,
        users: Sequence[UserProfile],
        settings: Optional[AssignmentSettings] = None,
        exclude_task_id: Optional[str] = None,
    ) -> Tuple[Dict[str, CandidateSignals], Dict[str, List[Task]]]:
        """
        Gather scoring signals for many users with batched queries.

        Args:
            users: Candidates
            settings: Assignment settings in force for this call
            exclude_task_id: Task being (re)assigned; left out of current load

        Returns:
            Signals by user id, and each user's open tasks
        """
        settings = settings or self._settings_provider.get_assignment_settings()
        now = self._clock()
        ids = [u.id for u in users]
        if not ids:
            return {}, {}

        modifiers = settings.score_modifiers
        day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)

        open_tasks = await self._repo.list_open_tasks(ids)
        paths = await self._repo.get_completed_category_paths(ids)
        assigned_today = await self._repo.count_assignments_since(ids, day_start)
        completions = await self._repo.count_completions_since(
            ids, now - timedelta(days=modifiers.burnout_window_days)
        )

        signals: Dict[str, CandidateSignals] = {}
        tasks_by_user: Dict[str, List[Task]] = {}
        for user in users:
            tasks = [t for t in open_tasks.get(user.id, []) if t.id != exclude_task_id]
            tasks_by_user[user.id] = tasks
            signals[user.id] = CandidateSignals(
                user=user,
                workload=WorkloadCalculator.compute(
                    user.id, tasks, now, settings.guardrails, user.wip_limit
                ),
                category_paths=frozenset(paths.get(user.id, set())),
                assignments_today=assigned_today.get(user.id, 0),
                recent_completions=completions.get(user.id, 0),
                overdue_open=sum(1 for t in tasks if _is_overdue(t, now)),
            )
        return signals, tasks_by_user


class LoadBalancerService:
    """
    Selects assignees and proposes rebalancing.

    Composes the WorkloadTracker (signals) with the pure AssignmentScorer.
    The assignee write is a conditional update, so concurrent assignments of
    the same task across server instances cannot both succeed.
    """

    def __init__(
        self,
        repository: IAssignmentRepository,
        settings_provider: IAssignmentSettingsProvider,
        workload_tracker: Optional[WorkloadTracker] = None,
        clock: Callable[[], datetime] = utc_now,
        rng: Optional[random.Random] = None,
    ):
        self._repo = repository
        self._settings_provider = settings_provider
        self._clock = clock
        self._tracker = workload_tracker or WorkloadTracker(repository, settings_provider, clock)
        self._fallback = FallbackSelector(rng)

    async def assign(
        self,
        task_id: str,
        actor: Actor = SYSTEM_ACTOR,
        settings: Optional[AssignmentSettings] = None,
    ) -> OperationResult:
        """
        Assign the best candidate to a task.

        A lost race on the assignee write is retried once against fresh
        state before being reported as CONCURRENCY_CONFLICT.

        Returns:
            OperationResult with an AssignmentDecision, or a typed failure
            (NOT_FOUND, NO_ELIGIBLE_CANDIDATE, CONCURRENCY_CONFLICT, ...)
        """
        try:
            authorize(actor, Operation.ASSIGN_TASK)
            settings = settings or self._settings_provider.get_assignment_settings()
            try:
                decision = await self._assign_once(task_id, settings)
            except ConcurrencyConflict:
                logger.warning("Assignment lost a race, retrying", extra={"task_id": task_id})
                decision = await self._assign_once(task_id, settings)
        except ApplicationException as e:
            logger.info(
                "Assignment not completed",
                extra={"task_id": task_id, "error_code": e.code, "error": e.message},
            )
            return OperationResult.from_exception(e)

        return OperationResult.ok(decision)

    async def _assign_once(self, task_id: str, settings: AssignmentSettings) -> AssignmentDecision:
        task = await self._repo.get_task(task_id)
        if task is None:
            raise NotFoundError("Task", task_id)
        if task.is_terminal:
            raise ValidationException("Closed tasks cannot be assigned", {"task_id": task_id})
        if not task.team_id:
            raise ValidationException("Task has no team", {"task_id": task_id})

        now = self._clock()
        task_path = None
        if task.category_id:
            task_path = await self._repo.get_category_path(task.category_id)

        members = await self._repo.list_team_members(task.team_id)
        results, signals = await self._score_pool(task, members, task_path, settings)
        ranked = AssignmentScorer.rank(results)
        min_score = settings.guardrails.min_viable_score

        if not (ranked and ranked[0].score >= min_score) and settings.matching.allow_cross_team_fallback:
            outsiders = await self._repo.list_users_outside_team(task.team_id)
            if outsiders:
                results, signals = await self._score_pool(
                    task, list(members) + list(outsiders), task_path, settings
                )
                ranked = AssignmentScorer.rank(results)

        if ranked and ranked[0].score >= min_score:
            chosen, strategy = ranked[0], "score"
        else:
            strategy = settings.matching.fallback_strategy.value
            chosen = self._fallback.select(settings.matching.fallback_strategy, ranked, signals)

        if chosen is None:
            raise NoEligibleCandidateError(
                task_id,
                {"strategy": strategy, "candidates": [r.to_dict() for r in results]},
            )

        updated = await self._repo.update_assignee(
            task.id, task.assignee_id, chosen.user_id, now, strategy, chosen.score
        )
        if not updated:
            raise ConcurrencyConflict(
                "Task assignee changed concurrently",
                {"task_id": task.id, "expected_assignee_id": task.assignee_id},
            )

        logger.info(
            "Task assigned",
            extra={
                "task_id": task.id,
                "assignee_id": chosen.user_id,
                "strategy": strategy,
                "score": chosen.score,
                "candidate_count": len(results),
            },
        )
        return AssignmentDecision(
            task_id=task.id,
            assignee_id=chosen.user_id,
            strategy=strategy,
            score=chosen.score,
            candidates=results,
        )

    async def _score_pool(
        self,
        task: Task,
        users: Sequence[UserProfile],
        task_path: Optional[str],
        settings: AssignmentSettings,
    ) -> Tuple[List[ScoreResult], Dict[str, CandidateSignals]]:
        signals, _ = await self._tracker.collect_signals(users, settings, exclude_task_id=task.id)
        available = [s.workload for s in signals.values() if s.user.is_available]
        context = ScoringContext(
            team_average_load=WorkloadCalculator.team_average(available),
            task_category_path=task_path,
            now=self._clock(),
        )
        results = [
            AssignmentScorer.score_candidate(signals[uid], context, settings)
            for uid in sorted(signals)
        ]
        return results, signals

    async def assign_to(
        self,
        task_id: str,
        user_id: str,
        actor: Actor = SYSTEM_ACTOR,
        force: bool = False,
    ) -> OperationResult:
        """
        Assign a task to a user chosen by a person rather than the scorer.

        The same guardrails apply as for automatic assignment. Daily, WIP and
        cooldown limits may be overridden with ``force`` by actors allowed to
        OVERRIDE_GUARDRAILS; inactive or absent users never receive work.
        Leaders may only assign within the task's team.

        Returns:
            OperationResult with an AssignmentDecision (strategy "manual"),
            or NOT_FOUND, VALIDATION_ERROR, FORBIDDEN, GUARDRAIL_VIOLATION,
            CONCURRENCY_CONFLICT
        """
        try:
            authorize(actor, Operation.ASSIGN_TASK)
            if force:
                authorize(actor, Operation.OVERRIDE_GUARDRAILS)
            settings = self._settings_provider.get_assignment_settings()

            task = await self._repo.get_task(task_id)
            if task is None:
                raise NotFoundError("Task", task_id)
            if task.is_terminal:
                raise ValidationException("Closed tasks cannot be assigned", {"task_id": task_id})
            if not task.team_id:
                raise ValidationException("Task has no team", {"task_id": task_id})
            user = await self._repo.get_user(user_id)
            if user is None:
                raise NotFoundError("User", user_id)
            if user.team_id != task.team_id and Role(actor.role) != Role.ADMIN:
                raise PermissionDenied(actor.role.value, Operation.ASSIGN_TASK.value)

            now = self._clock()
            signals, _ = await self._tracker.collect_signals([user], settings, exclude_task_id=task.id)
            reason = AssignmentScorer.check_guardrails(signals[user.id], now, settings.guardrails)
            if reason in (RejectionReason.INACTIVE, RejectionReason.ABSENT):
                raise ValidationException(
                    "User cannot receive work", {"user_id": user_id, "reason": reason.value}
                )
            if reason is not None and not force:
                raise GuardrailViolation(
                    "Assignment would break a guardrail",
                    {"user_id": user_id, "task_id": task_id, "reason": reason.value},
                )

            updated = await self._repo.update_assignee(
                task.id, task.assignee_id, user.id, now, "manual", None
            )
            if not updated:
                raise ConcurrencyConflict(
                    "Task assignee changed concurrently",
                    {"task_id": task.id, "expected_assignee_id": task.assignee_id},
                )
        except ApplicationException as e:
            logger.info(
                "Manual assignment not completed",
                extra={"task_id": task_id, "user_id": user_id, "error_code": e.code},
            )
            return OperationResult.from_exception(e)

        logger.info(
            "Task assigned manually",
            extra={
                "task_id": task_id,
                "assignee_id": user_id,
                "actor_id": actor.user_id,
                "forced_past": reason.value if reason else None,
            },
        )
        return OperationResult.ok(
            AssignmentDecision(task_id=task_id, assignee_id=user_id, strategy="manual", score=None)
        )

    async def suggest_rebalance(
        self,
        team_id: str,
        actor: Actor = SYSTEM_ACTOR,
        settings: Optional[AssignmentSettings] = None,
    ) -> OperationResult:
        """
        Propose moves of open tasks from overloaded to underloaded members.

        Read-only: suggestions are applied by a leader, not here.
        """
        try:
            authorize(actor, Operation.REBALANCE_TEAM)
            settings = settings or self._settings_provider.get_assignment_settings()
            if not await self._repo.team_exists(team_id):
                raise NotFoundError("Team", team_id)
            members = await self._repo.list_team_members(team_id)
            signals, tasks_by_user = await self._tracker.collect_signals(members, settings)
        except ApplicationException as e:
            return OperationResult.from_exception(e)

        suggestions: List[RebalanceSuggestion] = RebalancePlanner(settings).plan(
            [signals[uid] for uid in sorted(signals)], tasks_by_user, self._clock()
        )
        logger.info(
            "Rebalance suggestions computed",
            extra={"team_id": team_id, "suggestion_count": len(suggestions)},
        )
        return OperationResult.ok(suggestions)
