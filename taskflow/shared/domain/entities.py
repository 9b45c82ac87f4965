"""
Shared Domain Entities
======================

Plain dataclasses for the records both bounded contexts read: users, tasks,
requests and categories. Repositories map ORM rows onto these so the domain
and application layers never touch SQLAlchemy objects.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

from taskflow.config import (
    Priority, Role, TaskStatus, RequestStatus, PauseReason, TERMINAL_STATUSES
)


@dataclass
class UserProfile:
    """A potential assignee."""

    id: str
    name: str
    role: Role
    team_id: Optional[str]
    position_level: int = 1
    wip_limit: Optional[int] = None
    is_active: bool = True
    is_absent: bool = False
    last_assigned_at: Optional[datetime] = None

    @property
    def is_available(self) -> bool:
        return self.is_active and not self.is_absent


@dataclass
class Category:
    """Classification of work, optionally nested under a parent."""

    id: str
    name: str
    team_id: Optional[str] = None
    parent_id: Optional[str] = None
    path: str = ""
    is_active: bool = True
    avg_completion_hours: Optional[float] = None
    median_completion_hours: Optional[float] = None
    sample_count: int = 0
    stats_updated_at: Optional[datetime] = None


@dataclass
class Task:
    """Unit of assignable work with SLA clock state."""

    id: str
    title: str
    status: TaskStatus
    priority: Priority
    created_at: datetime
    team_id: Optional[str] = None
    category_id: Optional[str] = None
    request_id: Optional[str] = None
    parent_task_id: Optional[str] = None
    assignee_id: Optional[str] = None
    due_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    sla_paused_at: Optional[datetime] = None
    sla_pause_reason: Optional[PauseReason] = None
    sla_total_paused_ms: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_paused(self) -> bool:
        return self.sla_paused_at is not None

    def age_days(self, now: datetime) -> float:
        """Age in fractional days, never negative."""
        return max(0.0, (now - self.created_at).total_seconds() / 86400)


@dataclass
class RequestItem:
    """Top-level unit of work submitted by a requester."""

    id: str
    title: str
    status: RequestStatus
    created_at: datetime
    category_id: Optional[str] = None
    team_id: Optional[str] = None
    due_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


@dataclass
class PauseInterval:
    """A single SLA pause window; ``ended_at`` is None while open."""

    id: str
    task_id: str
    reason: PauseReason
    started_at: datetime
    ended_at: Optional[datetime] = None
    duration_ms: Optional[int] = None
    paused_by: Optional[str] = None
    notes: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.ended_at is None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "task_id": self.task_id,
            "reason": self.reason.value,
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "duration_ms": self.duration_ms,
            "paused_by": self.paused_by,
            "notes": self.notes,
        }


@dataclass(frozen=True)
class SubtaskAggregate:
    """Roll-up of a parent task's subtasks."""

    total: int
    done: int
    rejected: int
    open: int
    can_complete: bool
    recommended_status: Optional[TaskStatus]

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "done": self.done,
            "rejected": self.rejected,
            "open": self.open,
            "can_complete": self.can_complete,
            "recommended_status": (
                self.recommended_status.value if self.recommended_status else None
            ),
        }


def aggregate_subtask_status(statuses: Iterable[TaskStatus]) -> SubtaskAggregate:
    """
    Aggregate child statuses into the parent's completion eligibility.

    A parent may only be completed once every child is DONE or REJECTED.
    The recommended parent status is DONE when all children are closed and at
    least one was DONE, IN_PROGRESS once any child has moved, else OPEN.
    """
    statuses = [TaskStatus(s) for s in statuses]
    total = len(statuses)
    done = sum(1 for s in statuses if s == TaskStatus.DONE)
    rejected = sum(1 for s in statuses if s == TaskStatus.REJECTED)
    still_open = total - done - rejected

    if total == 0:
        return SubtaskAggregate(0, 0, 0, 0, can_complete=True, recommended_status=None)

    if still_open == 0:
        recommended = TaskStatus.DONE if done > 0 else TaskStatus.REJECTED
    elif done or rejected or any(
        s in (TaskStatus.IN_PROGRESS, TaskStatus.IN_REVIEW) for s in statuses
    ):
        recommended = TaskStatus.IN_PROGRESS
    else:
        recommended = TaskStatus.OPEN

    return SubtaskAggregate(
        total=total,
        done=done,
        rejected=rejected,
        open=still_open,
        can_complete=still_open == 0,
        recommended_status=recommended,
    )

