"""
SLA Application Services
=========================

Application services orchestrate business logic and coordinate between
domain rules and repositories.

- DeadlineService: due dates and rolling category statistics
- SLAPauseService: pausing and resuming a task's SLA clock
- ReminderEscalationService: the periodic reminder and escalation poll
- NotificationService: notification reads and the escalation lifecycle

Every public operation checks the capability policy and returns an
``OperationResult``.
"""

import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import (
    Any, AsyncContextManager, Callable, Dict, FrozenSet, List, Literal, Optional, Set, Tuple,
)

from taskflow.assignment.domain import AutomationSettings
from taskflow.config import (
    ACTIVE_ESCALATION_STATUSES, EscalationStatus, NotificationKind, PauseReason, TaskStatus,
)
from taskflow.core import (
    Actor, AlreadyPausedError, ApplicationException, EscalationStateError,
    ExternalServiceException, NotFoundError, NotPausedError, Operation, OperationResult,
    PermissionDenied, SYSTEM_ACTOR, ValidationException, authorize, can,
)
from taskflow.core.timeutils import ensure_utc, utc_now
from taskflow.shared.domain import (
    Category, PauseInterval, RequestItem, Task, aggregate_subtask_status,
)
from taskflow.shared.infrastructure.logging import get_logger
from taskflow.sla.domain import (
    AbsenceChange, CategoryStats, CategoryStatsResult, CompletionSample,
    DeadlineSettings, DueDateResult, EffectiveDeadline, EscalationStats,
    NotificationFeed, NotificationRecord, PauseStats, PauseTransition, PollSummary,
    ReadAllResult, ReminderSettings, SLACalculator, StatsRefreshSummary, TaskSLAStatus,
    UpcomingReminder,
)

logger = get_logger(__name__)

ItemType = Literal["task", "request"]


# ========== Repository Interfaces (Dependency Inversion) ==========

class ISLAPolicyProvider(ABC):
    """Interface for deadline, reminder and automation policy access."""

    @abstractmethod
    def get_deadline_settings(self) -> DeadlineSettings:
        """Get current deadline settings."""

    @abstractmethod
    def get_reminder_settings(self) -> ReminderSettings:
        """Get current reminder settings."""

    @abstractmethod
    def get_automation_settings(self) -> AutomationSettings:
        """Get current escalation automation settings."""


class IDeadlineRepository(ABC):
    """Interface for the data deadline calculation reads and writes."""

    @abstractmethod
    async def get_task(self, task_id: str) -> Optional[Task]:
        """Get task by id."""

    @abstractmethod
    async def get_request(self, request_id: str) -> Optional[RequestItem]:
        """Get request by id."""

    @abstractmethod
    async def get_category(self, category_id: str) -> Optional[Category]:
        """Get category by id."""

    @abstractmethod
    async def list_categories(self) -> List[Category]:
        """All active categories."""

    @abstractmethod
    async def fetch_completion_chunk(
        self,
        category_id: str,
        source: str,
        before: Optional[Tuple[datetime, str]],
        limit: int,
    ) -> List[CompletionSample]:
        """
        One page of completed items of a category, most recent first.

        ``before`` is the (completed_at, id) of the last row of the previous
        page. Only DONE top-level items with no open child are returned.
        """

    @abstractmethod
    async def save_category_stats(
        self, category_id: str, stats: CategoryStats, updated_at: datetime
    ) -> None:
        """Persist a category's rolling statistics."""

    @abstractmethod
    def savepoint(self) -> AsyncContextManager[Any]:
        """Scope whose writes are rolled back together when it raises."""

    @abstractmethod
    async def set_task_due_date(self, task_id: str, due_at: datetime) -> None:
        """Store a task's due date."""

    @abstractmethod
    async def set_request_due_date(self, request_id: str, due_at: datetime) -> None:
        """Store a request's due date."""

    @abstractmethod
    async def list_subtask_statuses(self, parent_task_id: str) -> List[TaskStatus]:
        """Statuses of a task's direct children."""


class IPauseRepository(ABC):
    """Interface for SLA pause persistence."""

    @abstractmethod
    async def get_task(self, task_id: str) -> Optional[Task]:
        """Get task by id."""

    @abstractmethod
    async def mark_paused(self, task_id: str, paused_at: datetime, reason: PauseReason) -> bool:
        """Set the pause flag only if the task is not already paused."""

    @abstractmethod
    async def mark_resumed(self, task_id: str, paused_at: datetime, duration_ms: int) -> bool:
        """
        Clear the pause flag and add ``duration_ms`` to the paused total.

        Succeeds only while the stored pause start still equals ``paused_at``.
        """

    @abstractmethod
    async def open_interval(self, interval: PauseInterval) -> None:
        """Record the start of a pause interval."""

    @abstractmethod
    async def close_interval(self, task_id: str, ended_at: datetime, duration_ms: int) -> None:
        """Close the task's open pause interval."""

    @abstractmethod
    async def list_intervals(self, task_id: str) -> List[PauseInterval]:
        """Pause intervals of a task, oldest first."""

    @abstractmethod
    async def list_open_tasks_for_user(self, user_id: str) -> List[Task]:
        """Non-terminal tasks assigned to a user."""

    @abstractmethod
    async def set_user_absence(self, user_id: str, is_absent: bool, reason: Optional[str]) -> bool:
        """Flip a user's absence flag; False when the user does not exist."""


class IReminderRepository(ABC):
    """Interface for reminder and escalation persistence."""

    @abstractmethod
    async def get_task(self, task_id: str) -> Optional[Task]:
        """Get task by id."""

    @abstractmethod
    async def fetch_active_tasks_chunk(self, after_id: Optional[str], limit: int) -> List[Task]:
        """Non-terminal, unpaused tasks with a due date, ordered by id after ``after_id``."""

    @abstractmethod
    async def get_sent_kinds(self, task_ids: List[str]) -> Dict[str, Set[NotificationKind]]:
        """Notification kinds already recorded per task."""

    @abstractmethod
    async def claim_notification(self, record: NotificationRecord) -> bool:
        """
        Insert a notification unless its dedupe key exists.

        Returns True only for the caller whose insert created the row.
        """

    @abstractmethod
    async def mark_delivered(self, notification_id: str, delivered_at: datetime) -> None:
        """Flag a notification as delivered."""

    @abstractmethod
    async def list_undelivered(self, since: datetime) -> List[NotificationRecord]:
        """Undelivered notifications created at or after ``since``."""

    @abstractmethod
    async def get_team_leader(self, team_id: str) -> Optional[str]:
        """Leader of a team."""

    @abstractmethod
    async def get_first_admin(self) -> Optional[str]:
        """First active admin, the escalation target of last resort."""


class INotificationRepository(ABC):
    """Interface for reading notifications and moving escalations through their lifecycle."""

    @abstractmethod
    async def user_exists(self, user_id: str) -> bool:
        """Check if user exists."""

    @abstractmethod
    async def get_notification(self, notification_id: str) -> Optional[NotificationRecord]:
        """Get notification by id."""

    @abstractmethod
    async def list_notifications(
        self, user_id: str, unread_only: bool, limit: int
    ) -> List[NotificationRecord]:
        """A user's notifications, newest first."""

    @abstractmethod
    async def count_unread(self, user_id: str) -> int:
        """Unread notifications of a user."""

    @abstractmethod
    async def mark_read(self, notification_id: str, read_at: datetime) -> bool:
        """Mark one notification read; False when it already was."""

    @abstractmethod
    async def mark_all_read(self, user_id: str, read_at: datetime) -> int:
        """Mark every unread notification of a user read; returns how many changed."""

    @abstractmethod
    async def transition_escalation(
        self,
        notification_id: str,
        from_statuses: FrozenSet[EscalationStatus],
        to_status: EscalationStatus,
        at: datetime,
        by: str,
        notes: Optional[str] = None,
    ) -> bool:
        """
        Conditionally move an escalation to ``to_status``.

        Succeeds only while the stored status is one of ``from_statuses``.
        """

    @abstractmethod
    async def list_escalations(
        self, user_id: str, statuses: FrozenSet[EscalationStatus]
    ) -> List[NotificationRecord]:
        """Escalations addressed to a user in the given statuses, newest first."""

    @abstractmethod
    async def count_escalations_by_status(
        self, user_id: Optional[str] = None
    ) -> Dict[EscalationStatus, int]:
        """Escalation counts per status, for one recipient or everyone."""

    @abstractmethod
    async def list_open_tasks_for_user(self, user_id: str) -> List[Task]:
        """Non-terminal tasks assigned to a user."""

    @abstractmethod
    async def get_sent_kinds(self, task_ids: List[str]) -> Dict[str, Set[NotificationKind]]:
        """Notification kinds already recorded per task."""


class INotificationDispatcher(ABC):
    """Interface for delivering notifications to users."""

    @abstractmethod
    async def notify(self, record: NotificationRecord) -> bool:
        """Deliver a notification; True when delivered."""


# ========== Application Services ==========

class DeadlineService:
    """
    Derives due dates from category history and maintains that history.

    The due date of an item is written once; later calls return it
    unchanged unless a recalculation is requested.
    """

    def __init__(
        self,
        repository: IDeadlineRepository,
        policy_provider: ISLAPolicyProvider,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._repo = repository
        self._policy = policy_provider
        self._clock = clock

    async def compute_due_date(
        self,
        item_id: str,
        item_type: ItemType = "task",
        recalculate: bool = False,
        actor: Actor = SYSTEM_ACTOR,
    ) -> OperationResult:
        """
        Compute and store the due date of a task or request.

        Args:
            item_id: Task or request id
            item_type: "task" or "request"
            recalculate: Overwrite an existing due date
            actor: Caller

        Returns:
            OperationResult with a DueDateResult
        """
        try:
            authorize(actor, Operation.COMPUTE_DUE_DATE)
            if item_type == "task":
                item = await self._repo.get_task(item_id)
            elif item_type == "request":
                item = await self._repo.get_request(item_id)
            else:
                raise ValidationException(f"Unknown item type: {item_type}", {"item_type": item_type})
            if item is None:
                raise NotFoundError(item_type.capitalize(), item_id)

            if item.due_at is not None and not recalculate:
                return OperationResult.ok(DueDateResult(
                    item_id=item_id,
                    item_type=item_type,
                    due_at=item.due_at,
                    expected_hours=None,
                    recalculated=False,
                ))

            settings = self._policy.get_deadline_settings()
            category = None
            if item.category_id:
                category = await self._repo.get_category(item.category_id)
            expected = SLACalculator.expected_hours(category, settings)
            due_at = SLACalculator.calculate_deadline(item.created_at, category, settings)

            if item_type == "task":
                await self._repo.set_task_due_date(item_id, due_at)
            else:
                await self._repo.set_request_due_date(item_id, due_at)
        except ApplicationException as e:
            return OperationResult.from_exception(e)

        logger.info(
            "Due date computed",
            extra={
                "item_id": item_id,
                "item_type": item_type,
                "category_id": item.category_id,
                "expected_hours": expected,
                "due_at": due_at.isoformat(),
            },
        )
        return OperationResult.ok(DueDateResult(
            item_id=item_id,
            item_type=item_type,
            due_at=due_at,
            expected_hours=expected,
            recalculated=True,
        ))

    async def update_all_category_stats(self, actor: Actor = SYSTEM_ACTOR) -> OperationResult:
        """
        Recompute rolling statistics for every active category.

        Each category runs in its own savepoint. A failure in one category is
        rolled back, logged and reported in its result; the remaining
        categories are still processed.
        """
        try:
            authorize(actor, Operation.REFRESH_CATEGORY_STATS)
            settings = self._policy.get_deadline_settings()
            categories = await self._repo.list_categories()
        except ApplicationException as e:
            return OperationResult.from_exception(e)

        now = self._clock()
        results: List[CategoryStatsResult] = []
        for category in categories:
            try:
                async with self._repo.savepoint():
                    durations = await self._collect_durations(category.id, settings)
                    stats = SLACalculator.completion_stats(durations)
                    if stats is not None:
                        await self._repo.save_category_stats(category.id, stats, now)
            except Exception as e:
                logger.exception(
                    "Category stats refresh failed",
                    extra={"category_id": category.id, "error": str(e)},
                )
                results.append(CategoryStatsResult(
                    category.id, category.name, category.path, None, str(e)
                ))
                continue
            if stats is None:
                results.append(CategoryStatsResult(
                    category.id, category.name, category.path, None, "No completed items"
                ))
            else:
                results.append(CategoryStatsResult(category.id, category.name, category.path, stats))

        summary = StatsRefreshSummary(results)
        logger.info(
            "Category stats refreshed",
            extra={"updated": summary.updated, "failed": summary.failed},
        )
        return OperationResult.ok(summary)

    async def _collect_durations(self, category_id: str, settings: DeadlineSettings) -> List[float]:
        """Durations of the most recent completions, read in keyset pages."""
        durations: List[float] = []
        cursor: Optional[Tuple[datetime, str]] = None
        while len(durations) < settings.stats_window_size:
            limit = min(settings.stats_batch_size, settings.stats_window_size - len(durations))
            chunk = await self._repo.fetch_completion_chunk(
                category_id, settings.stats_source, cursor, limit
            )
            if not chunk:
                break
            durations.extend(s.duration_hours for s in chunk if s.completed_at >= s.created_at)
            last = chunk[-1]
            cursor = (last.completed_at, last.id)
            if len(chunk) < limit:
                break
        return durations

    async def deadline_range(
        self,
        category_id: Optional[str] = None,
        start: Optional[datetime] = None,
        actor: Actor = SYSTEM_ACTOR,
    ) -> OperationResult:
        """Allowed and suggested deadlines for new work in a category."""
        try:
            authorize(actor, Operation.COMPUTE_DUE_DATE)
            settings = self._policy.get_deadline_settings()
            category = None
            if category_id:
                category = await self._repo.get_category(category_id)
                if category is None:
                    raise NotFoundError("Category", category_id)
        except ApplicationException as e:
            return OperationResult.from_exception(e)

        start = ensure_utc(start) or self._clock()
        expected = SLACalculator.expected_hours(category, settings)
        return OperationResult.ok(SLACalculator.deadline_range(start, expected, settings))

    async def validate_deadline(
        self,
        deadline: datetime,
        start: Optional[datetime] = None,
        actor: Actor = SYSTEM_ACTOR,
    ) -> OperationResult:
        try:
            authorize(actor, Operation.COMPUTE_DUE_DATE)
        except ApplicationException as e:
            return OperationResult.from_exception(e)
        settings = self._policy.get_deadline_settings()
        start = ensure_utc(start) or self._clock()
        return OperationResult.ok(
            SLACalculator.validate_deadline(ensure_utc(deadline), start, settings)
        )

    async def timeline_deviation(self, task_id: str, actor: Actor = SYSTEM_ACTOR) -> OperationResult:
        """How a task's actual working time compared with its planned duration."""
        try:
            authorize(actor, Operation.VIEW_SLA)
            task = await self._repo.get_task(task_id)
            if task is None:
                raise NotFoundError("Task", task_id)
        except ApplicationException as e:
            return OperationResult.from_exception(e)

        settings = self._policy.get_deadline_settings()
        return OperationResult.ok(SLACalculator.timeline_deviation(
            task.created_at,
            task.due_at,
            task.completed_at,
            task.sla_total_paused_ms,
            settings.on_time_tolerance_percent,
        ))

    async def subtask_status(self, task_id: str, actor: Actor = SYSTEM_ACTOR) -> OperationResult:
        """Whether a parent task may be completed, from its children's statuses."""
        try:
            authorize(actor, Operation.VIEW_SLA)
            task = await self._repo.get_task(task_id)
            if task is None:
                raise NotFoundError("Task", task_id)
            statuses = await self._repo.list_subtask_statuses(task_id)
        except ApplicationException as e:
            return OperationResult.from_exception(e)
        return OperationResult.ok(aggregate_subtask_status(statuses))


class SLAPauseService:
    """
    Suspends and resumes a task's SLA clock.

    The stored due date is never changed; pauses are accumulated separately
    and applied when the effective due date is read.
    """

    def __init__(self, repository: IPauseRepository, clock: Callable[[], datetime] = utc_now):
        self._repo = repository
        self._clock = clock

    async def pause(
        self,
        task_id: str,
        reason: PauseReason,
        actor: Actor = SYSTEM_ACTOR,
        notes: Optional[str] = None,
    ) -> OperationResult:
        """
        Pause a task's SLA clock.

        Returns:
            OperationResult with a PauseTransition; ALREADY_PAUSED when the
            clock is already stopped
        """
        try:
            authorize(actor, Operation.PAUSE_TASK)
            try:
                reason = PauseReason(reason)
            except ValueError:
                raise ValidationException(
                    f"Unknown pause reason: {reason}",
                    {"reason": reason, "allowed": [r.value for r in PauseReason]},
                )
            task = await self._get_task(task_id)
            transition = await self._pause_task(task, reason, actor.user_id, notes)
        except ApplicationException as e:
            return OperationResult.from_exception(e)
        return OperationResult.ok(transition)

    async def resume(self, task_id: str, actor: Actor = SYSTEM_ACTOR) -> OperationResult:
        """Resume a paused task; NOT_PAUSED when it is running."""
        try:
            authorize(actor, Operation.RESUME_TASK)
            task = await self._get_task(task_id)
            transition = await self._resume_task(task)
        except ApplicationException as e:
            return OperationResult.from_exception(e)
        return OperationResult.ok(transition)

    async def effective_due_date(self, task_id: str, actor: Actor = SYSTEM_ACTOR) -> OperationResult:
        try:
            authorize(actor, Operation.VIEW_SLA)
            task = await self._get_task(task_id)
            if task.due_at is None:
                raise ValidationException("Task has no due date", {"task_id": task_id})
        except ApplicationException as e:
            return OperationResult.from_exception(e)

        now = self._clock()
        return OperationResult.ok(EffectiveDeadline(
            task_id=task.id,
            due_at=task.due_at,
            effective_due_at=SLACalculator.effective_due_date(
                task.due_at, task.sla_total_paused_ms, task.sla_paused_at, now
            ),
            total_paused_ms=task.sla_total_paused_ms,
            is_paused=task.is_paused,
            paused_since=task.sla_paused_at,
        ))

    async def pause_history(self, task_id: str, actor: Actor = SYSTEM_ACTOR) -> OperationResult:
        try:
            authorize(actor, Operation.VIEW_SLA)
            await self._get_task(task_id)
            intervals = await self._repo.list_intervals(task_id)
        except ApplicationException as e:
            return OperationResult.from_exception(e)
        return OperationResult.ok(intervals)

    async def pause_stats(self, task_id: str, actor: Actor = SYSTEM_ACTOR) -> OperationResult:
        """Totals over a task's pause intervals; the open interval counts as active."""
        try:
            authorize(actor, Operation.VIEW_SLA)
            await self._get_task(task_id)
            intervals = await self._repo.list_intervals(task_id)
        except ApplicationException as e:
            return OperationResult.from_exception(e)

        closed = [i for i in intervals if not i.is_open]
        total_ms = sum(i.duration_ms or 0 for i in closed)
        by_reason: Dict[str, int] = {}
        for interval in intervals:
            by_reason[interval.reason.value] = by_reason.get(interval.reason.value, 0) + 1

        return OperationResult.ok(PauseStats(
            total_pauses=len(intervals),
            completed_pauses=len(closed),
            active_pauses=len(intervals) - len(closed),
            total_paused_ms=total_ms,
            average_pause_ms=total_ms // len(closed) if closed else 0,
            by_reason=by_reason,
        ))

    async def set_absence(
        self,
        user_id: str,
        is_absent: bool,
        actor: Actor = SYSTEM_ACTOR,
        reason: Optional[str] = None,
    ) -> OperationResult:
        """
        Mark a user absent or back, pausing or resuming their open tasks.

        Going absent pauses every running task with a due date (reason
        ABSENCE). Coming back resumes only tasks paused for absence. Tasks
        already in the target state are reported as skipped.
        """
        try:
            if actor.user_id != user_id:
                authorize(actor, Operation.MANAGE_ABSENCE)
            if not await self._repo.set_user_absence(user_id, is_absent, reason):
                raise NotFoundError("User", user_id)
            tasks = await self._repo.list_open_tasks_for_user(user_id)
        except ApplicationException as e:
            return OperationResult.from_exception(e)

        affected: List[str] = []
        skipped: List[str] = []
        for task in sorted(tasks, key=lambda t: t.id):
            try:
                if is_absent:
                    if task.is_paused or task.due_at is None:
                        skipped.append(task.id)
                        continue
                    await self._pause_task(task, PauseReason.ABSENCE, actor.user_id, reason)
                else:
                    if not task.is_paused or task.sla_pause_reason != PauseReason.ABSENCE:
                        skipped.append(task.id)
                        continue
                    await self._resume_task(task)
            except (AlreadyPausedError, NotPausedError):
                skipped.append(task.id)
                continue
            affected.append(task.id)

        logger.info(
            "User absence updated",
            extra={
                "user_id": user_id,
                "is_absent": is_absent,
                "affected": len(affected),
                "skipped": len(skipped),
            },
        )
        return OperationResult.ok(AbsenceChange(user_id, is_absent, affected, skipped))

    async def _get_task(self, task_id: str) -> Task:
        task = await self._repo.get_task(task_id)
        if task is None:
            raise NotFoundError("Task", task_id)
        return task

    async def _pause_task(
        self,
        task: Task,
        reason: PauseReason,
        paused_by: Optional[str],
        notes: Optional[str],
    ) -> PauseTransition:
        if task.is_terminal:
            raise ValidationException("Closed tasks cannot be paused", {"task_id": task.id})
        if task.due_at is None:
            raise ValidationException("Task has no due date", {"task_id": task.id})
        if task.is_paused:
            raise AlreadyPausedError(task.id)

        now = self._clock()
        if not await self._repo.mark_paused(task.id, now, reason):
            raise AlreadyPausedError(task.id)
        await self._repo.open_interval(PauseInterval(
            id=str(uuid.uuid4()),
            task_id=task.id,
            reason=reason,
            started_at=now,
            paused_by=paused_by,
            notes=notes,
        ))

        logger.info(
            "SLA paused",
            extra={"task_id": task.id, "reason": reason.value, "paused_by": paused_by},
        )
        return PauseTransition(
            task_id=task.id,
            reason=reason,
            paused_at=now,
            total_paused_ms=task.sla_total_paused_ms,
        )

    async def _resume_task(self, task: Task) -> PauseTransition:
        if not task.is_paused:
            raise NotPausedError(task.id)

        now = self._clock()
        duration_ms = max(0, int((now - task.sla_paused_at).total_seconds() * 1000))
        if not await self._repo.mark_resumed(task.id, task.sla_paused_at, duration_ms):
            raise NotPausedError(task.id)
        await self._repo.close_interval(task.id, now, duration_ms)

        total = task.sla_total_paused_ms + duration_ms
        logger.info(
            "SLA resumed",
            extra={"task_id": task.id, "duration_ms": duration_ms, "total_paused_ms": total},
        )
        return PauseTransition(
            task_id=task.id,
            reason=task.sla_pause_reason,
            paused_at=task.sla_paused_at,
            resumed_at=now,
            duration_ms=duration_ms,
            total_paused_ms=total,
        )


class ReminderEscalationService:
    """
    Stateless reminder and escalation poll.

    Each run reads everything it needs from the store, so any instance may
    run it; the unique dedupe key makes concurrent runs emit each
    notification once.
    """

    def __init__(
        self,
        repository: IReminderRepository,
        dispatcher: INotificationDispatcher,
        policy_provider: ISLAPolicyProvider,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._repo = repository
        self._dispatcher = dispatcher
        self._policy = policy_provider
        self._clock = clock

    async def poll(
        self,
        now: Optional[datetime] = None,
        actor: Actor = SYSTEM_ACTOR,
    ) -> OperationResult:
        """
        Emit due reminders and escalations.

        Undelivered notifications inside the redelivery window are retried
        first; then every active task is evaluated page by page.

        Returns:
            OperationResult with a PollSummary
        """
        try:
            authorize(actor, Operation.RUN_REMINDER_POLL)
        except ApplicationException as e:
            return OperationResult.from_exception(e)

        now = ensure_utc(now) or self._clock()
        reminders = self._policy.get_reminder_settings()
        automation = self._policy.get_automation_settings()
        summary = PollSummary()
        leaders: Dict[str, Optional[str]] = {}

        since = now - timedelta(minutes=reminders.redelivery_window_minutes)
        for record in await self._repo.list_undelivered(since):
            if await self._deliver(record, now):
                summary.redelivered += 1
            else:
                summary.dispatch_failures += 1

        after_id: Optional[str] = None
        while True:
            chunk = await self._repo.fetch_active_tasks_chunk(after_id, reminders.batch_size)
            if not chunk:
                break
            sent = await self._repo.get_sent_kinds([t.id for t in chunk])

            for task in chunk:
                summary.checked += 1
                already_sent = sent.get(task.id, set())
                effective = SLACalculator.effective_due_date(
                    task.due_at, task.sla_total_paused_ms, task.sla_paused_at, now
                )

                kind = SLACalculator.due_reminder(effective, now, already_sent, reminders)
                if kind is not None:
                    recipient = task.assignee_id or await self._escalation_target(task, leaders)
                    await self._emit(task, kind, recipient, effective, now, summary)

                if NotificationKind.ESCALATION not in already_sent and SLACalculator.should_escalate(
                    effective, now, automation.auto_escalate_stalled, automation.escalate_after_hours
                ):
                    recipient = await self._escalation_target(task, leaders)
                    await self._emit(task, NotificationKind.ESCALATION, recipient, effective, now, summary)

            after_id = chunk[-1].id
            if len(chunk) < reminders.batch_size:
                break

        logger.info("Reminder poll finished", extra=summary.to_dict())
        return OperationResult.ok(summary)

    async def sla_status(self, task_id: str, actor: Actor = SYSTEM_ACTOR) -> OperationResult:
        """Current SLA state of a task and the time left to its effective deadline."""
        try:
            authorize(actor, Operation.VIEW_SLA)
            task = await self._repo.get_task(task_id)
            if task is None:
                raise NotFoundError("Task", task_id)
            if task.due_at is None:
                raise ValidationException("Task has no due date", {"task_id": task_id})
            sent = await self._repo.get_sent_kinds([task_id])
        except ApplicationException as e:
            return OperationResult.from_exception(e)

        now = self._clock()
        effective = SLACalculator.effective_due_date(
            task.due_at, task.sla_total_paused_ms, task.sla_paused_at, now
        )
        state = SLACalculator.calculate_status(
            effective,
            now,
            self._policy.get_reminder_settings(),
            is_paused=task.is_paused,
            completed_at=task.completed_at if task.is_terminal else None,
            escalated=NotificationKind.ESCALATION in sent.get(task_id, set()),
        )
        return OperationResult.ok(TaskSLAStatus(
            task_id=task_id,
            state=state,
            effective_due_at=effective,
            remaining_seconds=(effective - now).total_seconds(),
        ))

    async def _leader_of(self, team_id: Optional[str], cache: Dict[str, Optional[str]]) -> Optional[str]:
        if not team_id:
            return None
        if team_id not in cache:
            cache[team_id] = await self._repo.get_team_leader(team_id)
        return cache[team_id]

    async def _escalation_target(self, task: Task, leaders: Dict[str, Optional[str]]) -> Optional[str]:
        """Team leader, else the first admin."""
        leader = await self._leader_of(task.team_id, leaders)
        if leader is not None:
            return leader
        return await self._repo.get_first_admin()

    async def _emit(
        self,
        task: Task,
        kind: NotificationKind,
        recipient: Optional[str],
        effective_due: datetime,
        now: datetime,
        summary: PollSummary,
    ) -> None:
        # Left unclaimed; a later poll retries once someone can receive it.
        if recipient is None:
            summary.unrouted += 1
            logger.warning(
                "Notification has no recipient",
                extra={"task_id": task.id, "kind": kind.value, "team_id": task.team_id},
            )
            return

        record = self._build_record(task, kind, recipient, effective_due, now)
        if not await self._repo.claim_notification(record):
            summary.duplicates += 1
            return

        if kind == NotificationKind.ESCALATION:
            summary.escalations += 1
        else:
            summary.reminders += 1

        if not await self._deliver(record, now):
            summary.dispatch_failures += 1

    async def _deliver(self, record: NotificationRecord, now: datetime) -> bool:
        """Dispatch a claimed notification; failures are logged and left for redelivery."""
        try:
            delivered = await self._dispatcher.notify(record)
        except ExternalServiceException as e:
            logger.warning(
                "Notification dispatch failed",
                extra={"notification_id": record.id, "task_id": record.task_id, "error": e.message},
            )
            return False
        if delivered:
            await self._repo.mark_delivered(record.id, now)
            record.delivered = True
            record.delivered_at = now
        return delivered

    @staticmethod
    def _build_record(
        task: Task,
        kind: NotificationKind,
        recipient: Optional[str],
        effective_due: datetime,
        now: datetime,
    ) -> NotificationRecord:
        remaining_minutes = int((effective_due - now).total_seconds() // 60)
        if kind == NotificationKind.ESCALATION:
            title = f"Escalation: {task.title}"
            message = (
                f"Task '{task.title}' is overdue by {-remaining_minutes} minutes "
                f"and needs attention."
            )
        elif remaining_minutes > 0:
            title = f"Reminder: {task.title}"
            message = f"Task '{task.title}' is due in {remaining_minutes} minutes."
        else:
            title = f"Due now: {task.title}"
            message = f"Task '{task.title}' has reached its deadline."

        return NotificationRecord(
            id=str(uuid.uuid4()),
            task_id=task.id,
            kind=kind,
            user_id=recipient,
            team_id=task.team_id,
            title=title,
            message=message,
            payload={
                "task_id": task.id,
                "kind": kind.value,
                "priority": task.priority.value,
                "effective_due_at": effective_due.isoformat(),
                "remaining_minutes": remaining_minutes,
            },
            created_at=now,
            escalation_status=EscalationStatus.PENDING if kind == NotificationKind.ESCALATION else None,
        )


def _authorize_for_user(actor: Actor, user_id: str, own: Operation, others: Operation) -> None:
    """Own data needs ``own``; another user's data also needs ``others``."""
    authorize(actor, own)
    if actor.user_id != user_id:
        authorize(actor, others)


def _require_recipient(actor: Actor, record: NotificationRecord) -> None:
    if record.user_id != actor.user_id and not can(actor, Operation.MANAGE_NOTIFICATIONS):
        raise PermissionDenied(actor.role.value, Operation.MANAGE_NOTIFICATIONS.value)


class NotificationService:
    """
    Notification inbox and escalation lifecycle.

    Only the recipient acts on a notification (admins excepted). Escalations
    move PENDING -> ACKNOWLEDGED -> RESOLVED, or straight to RESOLVED; each
    move is a conditional update, so two concurrent moves cannot both win.
    """

    MAX_LIMIT = 100

    def __init__(
        self,
        repository: INotificationRepository,
        policy_provider: ISLAPolicyProvider,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._repo = repository
        self._policy = policy_provider
        self._clock = clock

    async def list_notifications(
        self,
        user_id: str,
        actor: Actor = SYSTEM_ACTOR,
        unread_only: bool = False,
        limit: int = 20,
    ) -> OperationResult:
        """A user's most recent notifications plus the unread count."""
        try:
            _authorize_for_user(
                actor, user_id, Operation.VIEW_NOTIFICATIONS, Operation.VIEW_TEAM_NOTIFICATIONS
            )
            if not 1 <= limit <= self.MAX_LIMIT:
                raise ValidationException(
                    f"limit must be between 1 and {self.MAX_LIMIT}", {"limit": limit}
                )
            await self._require_user(user_id)
            notifications = await self._repo.list_notifications(user_id, unread_only, limit)
            unread = await self._repo.count_unread(user_id)
        except ApplicationException as e:
            return OperationResult.from_exception(e)
        return OperationResult.ok(NotificationFeed(user_id, notifications, unread))

    async def mark_read(self, notification_id: str, actor: Actor = SYSTEM_ACTOR) -> OperationResult:
        """Mark a notification read. Marking a read notification again is a no-op."""
        try:
            authorize(actor, Operation.VIEW_NOTIFICATIONS)
            record = await self._get_notification(notification_id)
            _require_recipient(actor, record)
            if not record.is_read:
                now = self._clock()
                if await self._repo.mark_read(notification_id, now):
                    record.is_read = True
                    record.read_at = now
                else:
                    record = await self._get_notification(notification_id)
        except ApplicationException as e:
            return OperationResult.from_exception(e)
        return OperationResult.ok(record)

    async def mark_all_read(self, user_id: str, actor: Actor = SYSTEM_ACTOR) -> OperationResult:
        try:
            authorize(actor, Operation.VIEW_NOTIFICATIONS)
            if actor.user_id != user_id:
                authorize(actor, Operation.MANAGE_NOTIFICATIONS)
            await self._require_user(user_id)
            marked = await self._repo.mark_all_read(user_id, self._clock())
        except ApplicationException as e:
            return OperationResult.from_exception(e)
        logger.info("Notifications marked read", extra={"user_id": user_id, "marked": marked})
        return OperationResult.ok(ReadAllResult(user_id, marked))

    async def acknowledge_escalation(
        self, notification_id: str, actor: Actor = SYSTEM_ACTOR
    ) -> OperationResult:
        """Take ownership of a PENDING escalation."""
        return await self._transition(
            notification_id,
            frozenset({EscalationStatus.PENDING}),
            EscalationStatus.ACKNOWLEDGED,
            actor,
        )

    async def resolve_escalation(
        self,
        notification_id: str,
        actor: Actor = SYSTEM_ACTOR,
        notes: Optional[str] = None,
    ) -> OperationResult:
        """Close a PENDING or ACKNOWLEDGED escalation."""
        return await self._transition(
            notification_id, ACTIVE_ESCALATION_STATUSES, EscalationStatus.RESOLVED, actor, notes
        )

    async def active_escalations(self, user_id: str, actor: Actor = SYSTEM_ACTOR) -> OperationResult:
        """Unresolved escalations addressed to a user, newest first."""
        try:
            _authorize_for_user(
                actor, user_id, Operation.VIEW_NOTIFICATIONS, Operation.VIEW_TEAM_NOTIFICATIONS
            )
            await self._require_user(user_id)
            escalations = await self._repo.list_escalations(user_id, ACTIVE_ESCALATION_STATUSES)
        except ApplicationException as e:
            return OperationResult.from_exception(e)
        return OperationResult.ok(escalations)

    async def escalation_stats(
        self, actor: Actor = SYSTEM_ACTOR, user_id: Optional[str] = None
    ) -> OperationResult:
        """Escalation counts per status; everyone's when ``user_id`` is omitted."""
        try:
            if user_id is None:
                authorize(actor, Operation.VIEW_TEAM_NOTIFICATIONS)
            else:
                _authorize_for_user(
                    actor, user_id, Operation.VIEW_NOTIFICATIONS, Operation.VIEW_TEAM_NOTIFICATIONS
                )
            counts = await self._repo.count_escalations_by_status(user_id)
        except ApplicationException as e:
            return OperationResult.from_exception(e)
        return OperationResult.ok(EscalationStats(user_id, counts))

    async def upcoming_reminders(self, user_id: str, actor: Actor = SYSTEM_ACTOR) -> OperationResult:
        """
        Reminders still ahead for a user's running tasks, soonest first.

        Paused tasks and tasks without a due date have none.
        """
        try:
            _authorize_for_user(
                actor, user_id, Operation.VIEW_NOTIFICATIONS, Operation.VIEW_TEAM_NOTIFICATIONS
            )
            await self._require_user(user_id)
            tasks = [
                t for t in await self._repo.list_open_tasks_for_user(user_id)
                if t.due_at is not None and not t.is_paused
            ]
            sent = await self._repo.get_sent_kinds([t.id for t in tasks])
        except ApplicationException as e:
            return OperationResult.from_exception(e)

        now = self._clock()
        settings = self._policy.get_reminder_settings()
        upcoming: List[UpcomingReminder] = []
        for task in tasks:
            effective = SLACalculator.effective_due_date(
                task.due_at, task.sla_total_paused_ms, task.sla_paused_at, now
            )
            for kind, fires_at in SLACalculator.upcoming_reminders(
                effective, now, sent.get(task.id, set()), settings
            ):
                upcoming.append(UpcomingReminder(
                    task_id=task.id,
                    task_title=task.title,
                    kind=kind,
                    scheduled_at=fires_at,
                    minutes_until=int((fires_at - now).total_seconds() // 60),
                ))
        upcoming.sort(key=lambda r: (r.scheduled_at, r.task_id))
        return OperationResult.ok(upcoming)

    async def _transition(
        self,
        notification_id: str,
        from_statuses: FrozenSet[EscalationStatus],
        to_status: EscalationStatus,
        actor: Actor,
        notes: Optional[str] = None,
    ) -> OperationResult:
        try:
            authorize(actor, Operation.VIEW_NOTIFICATIONS)
            record = await self._get_notification(notification_id)
            if not record.is_escalation:
                raise NotFoundError("Escalation", notification_id)
            _require_recipient(actor, record)
            moved = await self._repo.transition_escalation(
                notification_id, from_statuses, to_status, self._clock(), actor.user_id, notes
            )
            record = await self._get_notification(notification_id)
            if not moved:
                current = record.escalation_status.value if record.escalation_status else "UNKNOWN"
                raise EscalationStateError(notification_id, current, to_status.value)
        except ApplicationException as e:
            return OperationResult.from_exception(e)

        logger.info(
            "Escalation status changed",
            extra={
                "notification_id": notification_id,
                "task_id": record.task_id,
                "status": to_status.value,
                "actor_id": actor.user_id,
            },
        )
        return OperationResult.ok(record)

    async def _get_notification(self, notification_id: str) -> NotificationRecord:
        record = await self._repo.get_notification(notification_id)
        if record is None:
            raise NotFoundError("Notification", notification_id)
        return record

    async def _require_user(self, user_id: str) -> None:
        if not await self._repo.user_exists(user_id):
            raise NotFoundError("User", user_id)
