"""
Assignment Domain Entities
==========================

Results and inputs of workload tracking, candidate scoring and rebalancing.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, FrozenSet, List, Optional

from taskflow.shared.domain import UserProfile


class RejectionReason(str, Enum):
    """Why a candidate was excluded from ranking."""
    INACTIVE = "inactive"
    ABSENT = "absent"
    DAILY_LIMIT = "daily_limit_reached"
    WIP_LIMIT = "wip_limit_reached"
    COOLDOWN = "cooldown"


@dataclass(frozen=True)
class Workload:
    """A user's current open work."""

    user_id: str
    open_count: int
    weighted_load: float
    wip_limit: int

    @property
    def utilization(self) -> float:
        """Open tasks as a percentage of the WIP limit."""
        if self.wip_limit <= 0:
            return 0.0
        return round(self.open_count / self.wip_limit * 100, 1)

    @property
    def is_at_limit(self) -> bool:
        return self.open_count >= self.wip_limit

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "open_count": self.open_count,
            "weighted_load": round(self.weighted_load, 4),
            "wip_limit": self.wip_limit,
            "utilization": self.utilization,
            "is_at_limit": self.is_at_limit,
        }


@dataclass(frozen=True)
class WipLimitCheck:
    """Headroom under a user's WIP limit."""

    user_id: str
    exceeded: bool
    current: int
    limit: int
    available: int
    utilization_percent: float

    @classmethod
    def from_workload(cls, workload: Workload) -> "WipLimitCheck":
        return cls(
            user_id=workload.user_id,
            exceeded=workload.is_at_limit,
            current=workload.open_count,
            limit=workload.wip_limit,
            available=max(0, workload.wip_limit - workload.open_count),
            utilization_percent=workload.utilization,
        )

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "exceeded": self.exceeded,
            "current": self.current,
            "limit": self.limit,
            "available": self.available,
            "utilization_percent": self.utilization_percent,
        }


@dataclass
class CandidateSignals:
    """
    Everything the scorer reads about one candidate.

    Gathered by the application layer in a handful of batched queries so the
    scorer itself stays a pure function.
    """

    user: UserProfile
    workload: Workload
    category_paths: FrozenSet[str] = frozenset()
    assignments_today: int = 0
    recent_completions: int = 0
    overdue_open: int = 0

    @property
    def user_id(self) -> str:
        return self.user.id


@dataclass(frozen=True)
class ScoringContext:
    """Task-level inputs shared by every candidate."""

    team_average_load: float
    task_category_path: Optional[str]
    now: datetime


@dataclass(frozen=True)
class ScoreResult:
    """Score in [0, 1] or a rejection."""

    user_id: str
    weighted_load: float
    score: Optional[float] = None
    rejected_reason: Optional[RejectionReason] = None
    breakdown: Dict[str, float] = field(default_factory=dict)

    @property
    def is_rejected(self) -> bool:
        return self.rejected_reason is not None

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "score": round(self.score, 4) if self.score is not None else None,
            "weighted_load": round(self.weighted_load, 4),
            "rejected_reason": self.rejected_reason.value if self.rejected_reason else None,
            "breakdown": {k: round(v, 4) for k, v in self.breakdown.items()},
        }


@dataclass(frozen=True)
class AssignmentDecision:
    """Outcome of a successful assignment."""

    task_id: str
    assignee_id: str
    strategy: str
    score: Optional[float]
    candidates: List[ScoreResult] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "task_id": self.task_id,
            "assignee_id": self.assignee_id,
            "strategy": self.strategy,
            "score": round(self.score, 4) if self.score is not None else None,
            "candidates": [c.to_dict() for c in self.candidates],
        }


@dataclass(frozen=True)
class RebalanceSuggestion:
    """A proposed move of one task between team members."""

    task_id: str
    from_user_id: str
    to_user_id: str
    reasoning: str
    priority_score: float

    def to_dict(self) -> dict:
        return {
            "task_id": self.task_id,
            "from_user_id": self.from_user_id,
            "to_user_id": self.to_user_id,
            "reasoning": self.reasoning,
            "priority_score": self.priority_score,
        }
