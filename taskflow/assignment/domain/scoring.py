"""
Workload and Candidate Scoring
==============================

Pure functions for workload weighting and assignee suitability.

Stateless utility classes: identical inputs always give identical scores,
so assignment outcomes are reproducible and testable without a database.
"""

from datetime import datetime, timedelta
from typing import FrozenSet, Iterable, List, Optional

from taskflow.config import PRIORITY_WEIGHTS, MatchingMode, Priority
from taskflow.shared.domain import Task, is_related_category
from taskflow.assignment.domain.entities import (
    CandidateSignals, RejectionReason, ScoreResult, ScoringContext, Workload
)
from taskflow.assignment.domain.value_objects import (
    AssignmentSettings, GuardrailSettings, MatchLevel, MatchingSettings,
    ScoreModifierSettings, SKILL_MATCH_POLICY, UNCATEGORIZED_SKILL_SCORE,
)


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


class WorkloadCalculator:
    """Weighted open-work calculations."""

    @staticmethod
    def task_weight(task: Task, now: datetime, guardrails: GuardrailSettings) -> float:
        """
        Weight of one open task.

        Priority base weight plus a linear per-day aging boost capped at
        ``max_aging_boost``; the cap keeps priority ordering dominant.
        """
        base = PRIORITY_WEIGHTS[Priority(task.priority)]
        aging = min(task.age_days(now) * guardrails.backlog_aging_boost, guardrails.max_aging_boost)
        return base + aging

    @staticmethod
    def compute(
        user_id: str,
        tasks: Iterable[Task],
        now: datetime,
        guardrails: GuardrailSettings,
        wip_limit: Optional[int] = None,
    ) -> Workload:
        """Workload over the non-terminal tasks among ``tasks``."""
        open_tasks = [t for t in tasks if not t.is_terminal]
        weighted = sum(WorkloadCalculator.task_weight(t, now, guardrails) for t in open_tasks)
        return Workload(
            user_id=user_id,
            open_count=len(open_tasks),
            weighted_load=weighted,
            wip_limit=wip_limit or guardrails.default_wip_limit,
        )

    @staticmethod
    def team_average(workloads: Iterable[Workload]) -> float:
        loads = [w.weighted_load for w in workloads]
        if not loads:
            return 0.0
        return sum(loads) / len(loads)


class AssignmentScorer:
    """
    Candidate suitability scoring.

    score = w_workload × workload_fit + w_skill × skill_match
            + seniority_boost − burnout_penalty, clamped to [0, 1]
    """

    @staticmethod
    def workload_fit(load: float, team_average: float) -> float:
        """1.0 for an idle candidate, 0.5 at the team average, 0.0 at twice it."""
        if team_average <= 0:
            ratio = 0.0 if load <= 0 else 2.0
        else:
            ratio = load / team_average
        return _clamp(1.0 - ratio / 2.0)

    @staticmethod
    def match_level(task_path: Optional[str], experience: FrozenSet[str]) -> MatchLevel:
        if not task_path:
            return MatchLevel.NONE
        if task_path in experience:
            return MatchLevel.EXACT
        if any(is_related_category(task_path, path) for path in experience):
            return MatchLevel.PARTIAL
        return MatchLevel.NONE

    @staticmethod
    def skill_score(
        level: MatchLevel,
        matching: MatchingSettings,
        modifiers: ScoreModifierSettings,
    ) -> float:
        """Look the level up in the policy table for the configured mode."""
        if level == MatchLevel.PARTIAL and (
            matching.mode == MatchingMode.STRICT or not matching.allow_partial_match
        ):
            level = MatchLevel.NONE
        score = SKILL_MATCH_POLICY[matching.mode][level]
        if level == MatchLevel.PARTIAL:
            score += modifiers.cross_skill_boost
        return _clamp(score)

    @staticmethod
    def seniority_boost(position_level: int, modifiers: ScoreModifierSettings) -> float:
        level = max(0, min(position_level, modifiers.max_position_level))
        return modifiers.seniority_boost * level / modifiers.max_position_level

    @staticmethod
    def burnout_penalty(candidate: CandidateSignals, modifiers: ScoreModifierSettings) -> float:
        strained = (
            candidate.recent_completions >= modifiers.burnout_completion_threshold
            or candidate.overdue_open >= modifiers.burnout_overdue_threshold
        )
        return modifiers.burnout_penalty if strained else 0.0

    @staticmethod
    def check_guardrails(
        candidate: CandidateSignals,
        now: datetime,
        guardrails: GuardrailSettings,
    ) -> Optional[RejectionReason]:
        """Return why the candidate cannot take one more task, if anything."""
        user = candidate.user
        if not user.is_active:
            return RejectionReason.INACTIVE
        if user.is_absent:
            return RejectionReason.ABSENT
        limit = guardrails.max_assignments_per_user_per_day
        if limit and candidate.assignments_today + 1 > limit:
            return RejectionReason.DAILY_LIMIT
        if guardrails.enforce_wip_limit and candidate.workload.open_count + 1 > candidate.workload.wip_limit:
            return RejectionReason.WIP_LIMIT
        if guardrails.cooldown_minutes and user.last_assigned_at is not None:
            if now - user.last_assigned_at < timedelta(minutes=guardrails.cooldown_minutes):
                return RejectionReason.COOLDOWN
        return None

    @staticmethod
    def score_candidate(
        candidate: CandidateSignals,
        context: ScoringContext,
        settings: AssignmentSettings,
    ) -> ScoreResult:
        """Score one candidate for the task described by ``context``."""
        load = candidate.workload.weighted_load
        reason = AssignmentScorer.check_guardrails(candidate, context.now, settings.guardrails)
        if reason is not None:
            return ScoreResult(user_id=candidate.user_id, weighted_load=load, rejected_reason=reason)

        modifiers = settings.score_modifiers
        fit = AssignmentScorer.workload_fit(load, context.team_average_load)
        if context.task_category_path:
            level = AssignmentScorer.match_level(context.task_category_path, candidate.category_paths)
            skill = AssignmentScorer.skill_score(level, settings.matching, modifiers)
        else:
            skill = UNCATEGORIZED_SKILL_SCORE
        seniority = AssignmentScorer.seniority_boost(candidate.user.position_level, modifiers)
        burnout = AssignmentScorer.burnout_penalty(candidate, modifiers)

        w_workload, w_skill = settings.weights.normalized()
        total = _clamp(w_workload * fit + w_skill * skill + seniority - burnout)

        return ScoreResult(
            user_id=candidate.user_id,
            weighted_load=load,
            score=round(total, 6),
            breakdown={
                "workload_fit": fit,
                "skill_match": skill,
                "seniority_boost": seniority,
                "burnout_penalty": burnout,
            },
        )

    @staticmethod
    def rank(results: Iterable[ScoreResult]) -> List[ScoreResult]:
        """Eligible results, best first; ties go to lower load, then user id."""
        eligible = [r for r in results if not r.is_rejected]
        return sorted(eligible, key=lambda r: (-r.score, r.weighted_load, r.user_id))
