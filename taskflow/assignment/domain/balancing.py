"""
Load Balancing Rules
====================

Fallback selection when no candidate clears the minimum score, and the
rebalance planner that proposes moving open work off overloaded members.
"""

import random
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

from taskflow.config import FallbackStrategy, PRIORITY_WEIGHTS, Priority, TaskStatus
from taskflow.shared.domain import Task
from taskflow.assignment.domain.entities import (
    CandidateSignals, RebalanceSuggestion, ScoreResult
)
from taskflow.assignment.domain.scoring import WorkloadCalculator
from taskflow.assignment.domain.value_objects import AssignmentSettings

_NEVER = datetime.min.replace(tzinfo=timezone.utc)


class FallbackSelector:
    """Applies the configured fallback strategy to non-rejected candidates."""

    def __init__(self, rng: Optional[random.Random] = None):
        self._rng = rng or random.Random()

    def select(
        self,
        strategy: FallbackStrategy,
        eligible: Sequence[ScoreResult],
        candidates: Dict[str, CandidateSignals],
    ) -> Optional[ScoreResult]:
        """
        Pick a fallback assignee, or None when a human has to decide.

        Args:
            strategy: Configured fallback strategy
            eligible: Candidates that passed every guardrail
            candidates: Signals by user id, for last-assigned order
        """
        if not eligible or strategy == FallbackStrategy.MANUAL_GATE:
            return None

        if strategy == FallbackStrategy.SMART_BALANCE:
            return min(eligible, key=lambda r: (r.weighted_load, r.user_id))

        if strategy == FallbackStrategy.ROUND_ROBIN:
            def last_assigned(result: ScoreResult) -> datetime:
                return candidates[result.user_id].user.last_assigned_at or _NEVER
            return min(eligible, key=lambda r: (last_assigned(r), r.user_id))

        if strategy == FallbackStrategy.RANDOM_SPREAD:
            return self._rng.choice(sorted(eligible, key=lambda r: r.user_id))

        raise ValueError(f"Unknown fallback strategy: {strategy}")


class RebalancePlanner:
    """
    Proposes task moves from overloaded to underloaded team members.

    A member is overloaded when their weighted load exceeds the team average
    times ``rebalance_overload_ratio``; destinations must be below average.
    Moves are simulated one at a time so later proposals see earlier ones.
    """

    def __init__(self, settings: AssignmentSettings):
        self._settings = settings

    def plan(
        self,
        members: Sequence[CandidateSignals],
        tasks_by_user: Dict[str, List[Task]],
        now: datetime,
    ) -> List[RebalanceSuggestion]:
        guardrails = self._settings.guardrails
        available = [m for m in members if m.user.is_available]
        if len(available) < 2:
            return []

        loads = {m.user_id: m.workload.weighted_load for m in available}
        counts = {m.user_id: m.workload.open_count for m in available}
        assigned_today = {m.user_id: m.assignments_today for m in available}
        by_id = {m.user_id: m for m in available}
        average = sum(loads.values()) / len(loads)
        if average <= 0:
            return []

        threshold = average * guardrails.rebalance_overload_ratio
        overloaded = sorted(
            (uid for uid, load in loads.items() if load > threshold),
            key=lambda uid: (-loads[uid], uid),
        )

        suggestions: List[RebalanceSuggestion] = []
        for source_id in overloaded:
            movable = sorted(
                (t for t in tasks_by_user.get(source_id, [])
                 if t.status == TaskStatus.OPEN and not t.is_paused),
                key=lambda t: (-PRIORITY_WEIGHTS[Priority(t.priority)], t.created_at, t.id),
            )
            moves = 0
            for task in movable:
                if moves >= guardrails.rebalance_max_moves_per_user or loads[source_id] <= average:
                    break
                weight = WorkloadCalculator.task_weight(task, now, guardrails)
                target_id = self._pick_destination(
                    source_id, weight, loads, counts, assigned_today, by_id, average
                )
                if target_id is None:
                    continue

                suggestions.append(RebalanceSuggestion(
                    task_id=task.id,
                    from_user_id=source_id,
                    to_user_id=target_id,
                    reasoning=self._reasoning(by_id, source_id, target_id, task, loads, average),
                    priority_score=PRIORITY_WEIGHTS[Priority(task.priority)],
                ))
                loads[source_id] -= weight
                loads[target_id] += weight
                counts[source_id] -= 1
                counts[target_id] += 1
                assigned_today[target_id] += 1
                moves += 1

        return suggestions

    def _pick_destination(
        self,
        source_id: str,
        weight: float,
        loads: Dict[str, float],
        counts: Dict[str, int],
        assigned_today: Dict[str, int],
        by_id: Dict[str, CandidateSignals],
        average: float,
    ) -> Optional[str]:
        guardrails = self._settings.guardrails
        daily_limit = guardrails.max_assignments_per_user_per_day
        options = []
        for uid, load in loads.items():
            if uid == source_id or load >= average:
                continue
            if counts[uid] + 1 > by_id[uid].workload.wip_limit:
                continue
            if daily_limit and assigned_today[uid] + 1 > daily_limit:
                continue
            # Only propose moves that lower the peak load
            if load + weight >= loads[source_id]:
                continue
            options.append(uid)
        if not options:
            return None
        return min(options, key=lambda uid: (loads[uid], uid))

    @staticmethod
    def _reasoning(
        by_id: Dict[str, CandidateSignals],
        source_id: str,
        target_id: str,
        task: Task,
        loads: Dict[str, float],
        average: float,
    ) -> str:
        source = by_id[source_id].user
        target = by_id[target_id].user
        ratio = loads[source_id] / average * 100
        return (
            f"{source.name} carries weighted load {loads[source_id]:.1f} "
            f"({ratio:.0f}% of team average {average:.1f}); "
            f"{target.name} is at {loads[target_id]:.1f}. "
            f"Moving {Priority(task.priority).value} task '{task.title}' evens out the team."
        )
