"""
SLA Domain Entities
====================

Pure Python domain entities for deadlines, SLA pauses and reminders.

Following Domain-Driven Design principles, these entities are free of
infrastructure concerns.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from taskflow.config import EscalationStatus, NotificationKind, PauseReason, SLAState


@dataclass(frozen=True)
class CategoryStats:
    """Rolling completion statistics of one category."""
    avg_hours: float
    median_hours: float
    sample_count: int

    def to_dict(self) -> dict:
        return {
            "avg_hours": self.avg_hours,
            "median_hours": self.median_hours,
            "sample_count": self.sample_count,
        }


@dataclass(frozen=True)
class CompletionSample:
    """One completed work item, as read page by page by the stats job."""
    id: str
    created_at: datetime
    completed_at: datetime

    @property
    def duration_hours(self) -> float:
        return (self.completed_at - self.created_at).total_seconds() / 3600


@dataclass(frozen=True)
class CategoryStatsResult:
    """Outcome of refreshing a single category."""
    category_id: str
    category_name: str
    category_path: str
    stats: Optional[CategoryStats]
    error: Optional[str] = None

    @property
    def is_success(self) -> bool:
        return self.stats is not None

    def to_dict(self) -> dict:
        return {
            "category_id": self.category_id,
            "category_name": self.category_name,
            "category_path": self.category_path,
            "stats": self.stats.to_dict() if self.stats else None,
            "error": self.error,
        }


@dataclass(frozen=True)
class StatsRefreshSummary:
    """Partial failures are reported per category instead of failing the run."""
    results: List[CategoryStatsResult]

    @property
    def updated(self) -> int:
        return sum(1 for r in self.results if r.is_success)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.is_success)

    def to_dict(self) -> dict:
        return {
            "updated": self.updated,
            "failed": self.failed,
            "results": [r.to_dict() for r in self.results],
        }


@dataclass(frozen=True)
class DueDateResult:
    """Due date of a task or request and how it was derived."""
    item_id: str
    item_type: str
    due_at: datetime
    expected_hours: Optional[float]
    recalculated: bool

    def to_dict(self) -> dict:
        return {
            "item_id": self.item_id,
            "item_type": self.item_type,
            "due_at": self.due_at.isoformat(),
            "expected_hours": self.expected_hours,
            "recalculated": self.recalculated,
        }


@dataclass(frozen=True)
class DeadlineRange:
    min: datetime
    max: datetime
    suggested: datetime

    def to_dict(self) -> dict:
        return {
            "min": self.min.isoformat(),
            "max": self.max.isoformat(),
            "suggested": self.suggested.isoformat(),
        }


@dataclass(frozen=True)
class DeadlineValidation:
    is_valid: bool
    is_too_short: bool
    is_too_long: bool
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "is_valid": self.is_valid,
            "is_too_short": self.is_too_short,
            "is_too_long": self.is_too_long,
            "warnings": list(self.warnings),
        }


@dataclass(frozen=True)
class TimelineDeviation:
    """Planned vs. actual duration in hours; status is early/on_time/late/unknown."""
    estimated_hours: Optional[float]
    actual_hours: Optional[float]
    deviation_hours: Optional[float]
    status: str

    def to_dict(self) -> dict:
        return {
            "estimated_hours": self.estimated_hours,
            "actual_hours": self.actual_hours,
            "deviation_hours": self.deviation_hours,
            "status": self.status,
        }


@dataclass(frozen=True)
class EffectiveDeadline:
    task_id: str
    due_at: datetime
    effective_due_at: datetime
    total_paused_ms: int
    is_paused: bool
    paused_since: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "task_id": self.task_id,
            "due_at": self.due_at.isoformat(),
            "effective_due_at": self.effective_due_at.isoformat(),
            "total_paused_ms": self.total_paused_ms,
            "is_paused": self.is_paused,
            "paused_since": self.paused_since.isoformat() if self.paused_since else None,
        }


@dataclass(frozen=True)
class TaskSLAStatus:
    task_id: str
    state: SLAState
    effective_due_at: datetime
    remaining_seconds: float

    def to_dict(self) -> dict:
        return {
            "task_id": self.task_id,
            "state": self.state.value,
            "effective_due_at": self.effective_due_at.isoformat(),
            "remaining_seconds": self.remaining_seconds,
        }


@dataclass(frozen=True)
class PauseStats:
    total_pauses: int
    completed_pauses: int
    active_pauses: int
    total_paused_ms: int
    average_pause_ms: int
    by_reason: Dict[str, int]

    def to_dict(self) -> dict:
        return {
            "total_pauses": self.total_pauses,
            "completed_pauses": self.completed_pauses,
            "active_pauses": self.active_pauses,
            "total_paused_ms": self.total_paused_ms,
            "average_pause_ms": self.average_pause_ms,
            "by_reason": dict(self.by_reason),
        }


@dataclass(frozen=True)
class PauseTransition:
    """Returned by pause/resume."""
    task_id: str
    reason: Optional[PauseReason]
    paused_at: datetime
    resumed_at: Optional[datetime] = None
    duration_ms: Optional[int] = None
    total_paused_ms: int = 0

    def to_dict(self) -> dict:
        return {
            "task_id": self.task_id,
            "reason": self.reason.value if self.reason else None,
            "paused_at": self.paused_at.isoformat(),
            "resumed_at": self.resumed_at.isoformat() if self.resumed_at else None,
            "duration_ms": self.duration_ms,
            "total_paused_ms": self.total_paused_ms,
        }


@dataclass(frozen=True)
class AbsenceChange:
    """Outcome of flipping a user's absence flag."""
    user_id: str
    is_absent: bool
    affected_task_ids: List[str]
    skipped_task_ids: List[str]

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "is_absent": self.is_absent,
            "affected_task_ids": list(self.affected_task_ids),
            "skipped_task_ids": list(self.skipped_task_ids),
        }


@dataclass
class NotificationRecord:
    """
    A persisted reminder or escalation.

    ``dedupe_key`` (``task_id:kind``) is unique in storage; whoever inserts it
    first owns the notification. Escalations also carry a lifecycle status,
    PENDING until the recipient acknowledges or resolves them.
    """
    id: str
    task_id: str
    kind: NotificationKind
    user_id: Optional[str]
    team_id: Optional[str]
    title: str
    message: str
    payload: Dict[str, object]
    created_at: datetime
    delivered: bool = False
    delivered_at: Optional[datetime] = None
    is_read: bool = False
    read_at: Optional[datetime] = None
    escalation_status: Optional[EscalationStatus] = None
    acknowledged_at: Optional[datetime] = None
    acknowledged_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    resolution_notes: Optional[str] = None

    @property
    def dedupe_key(self) -> str:
        return make_dedupe_key(self.task_id, self.kind)

    @property
    def is_escalation(self) -> bool:
        return self.kind == NotificationKind.ESCALATION

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "task_id": self.task_id,
            "kind": self.kind.value,
            "user_id": self.user_id,
            "team_id": self.team_id,
            "title": self.title,
            "message": self.message,
            "payload": dict(self.payload),
            "created_at": self.created_at.isoformat(),
            "delivered": self.delivered,
            "delivered_at": self.delivered_at.isoformat() if self.delivered_at else None,
            "is_read": self.is_read,
            "read_at": self.read_at.isoformat() if self.read_at else None,
            "escalation_status": self.escalation_status.value if self.escalation_status else None,
            "acknowledged_at": self.acknowledged_at.isoformat() if self.acknowledged_at else None,
            "acknowledged_by": self.acknowledged_by,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "resolved_by": self.resolved_by,
            "resolution_notes": self.resolution_notes,
        }


def make_dedupe_key(task_id: str, kind: NotificationKind) -> str:
    return f"{task_id}:{NotificationKind(kind).value}"


@dataclass
class PollSummary:
    """What one reminder poll did."""
    checked: int = 0
    reminders: int = 0
    escalations: int = 0
    redelivered: int = 0
    duplicates: int = 0
    dispatch_failures: int = 0
    unrouted: int = 0

    def to_dict(self) -> dict:
        return {
            "checked": self.checked,
            "reminders": self.reminders,
            "escalations": self.escalations,
            "redelivered": self.redelivered,
            "duplicates": self.duplicates,
            "dispatch_failures": self.dispatch_failures,
            "unrouted": self.unrouted,
        }


@dataclass(frozen=True)
class NotificationFeed:
    """A user's most recent notifications and unread total."""
    user_id: str
    notifications: List[NotificationRecord]
    unread_count: int

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "notifications": [n.to_dict() for n in self.notifications],
            "unread_count": self.unread_count,
        }


@dataclass(frozen=True)
class ReadAllResult:
    user_id: str
    marked: int

    def to_dict(self) -> dict:
        return {"user_id": self.user_id, "marked": self.marked}


@dataclass(frozen=True)
class EscalationStats:
    """Escalation counts, for one recipient or everyone."""
    user_id: Optional[str]
    by_status: Dict[EscalationStatus, int]

    @property
    def total(self) -> int:
        return sum(self.by_status.values())

    def count(self, status: EscalationStatus) -> int:
        return self.by_status.get(status, 0)

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "total": self.total,
            "pending": self.count(EscalationStatus.PENDING),
            "acknowledged": self.count(EscalationStatus.ACKNOWLEDGED),
            "resolved": self.count(EscalationStatus.RESOLVED),
            "by_status": {s.value: self.count(s) for s in EscalationStatus},
        }


@dataclass(frozen=True)
class UpcomingReminder:
    """A reminder level that will fire for a task unless its state changes."""
    task_id: str
    task_title: str
    kind: NotificationKind
    scheduled_at: datetime
    minutes_until: int

    def to_dict(self) -> dict:
        return {
            "task_id": self.task_id,
            "task_title": self.task_title,
            "kind": self.kind.value,
            "scheduled_at": self.scheduled_at.isoformat(),
            "minutes_until": self.minutes_until,
        }
