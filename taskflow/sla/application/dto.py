"""
SLA Application DTOs
=====================

Data Transfer Objects for the SLA API layer.

These Pydantic models handle serialization and validation for API requests
and responses.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from taskflow.shared.api.responses import ResultEnvelope


# ========== Type Aliases for Literals ==========
PauseReasonStr = Literal["MEETING", "CUSTOMER_VISIT", "CLARIFICATION", "ABSENCE", "MANUAL"]
SLAStateStr = Literal["on_track", "at_risk", "breached", "escalated", "paused", "met"]
DeviationStatusStr = Literal["early", "on_time", "late", "unknown"]
TaskStatusStr = Literal["OPEN", "IN_PROGRESS", "IN_REVIEW", "DONE", "REJECTED"]
NotificationKindStr = Literal["REMINDER_R1", "REMINDER_R2", "REMINDER_R3", "ESCALATION"]
EscalationStatusStr = Literal["PENDING", "ACKNOWLEDGED", "RESOLVED"]


# ========== Request DTOs ==========

class DueDateRequest(BaseModel):
    recalculate: bool = Field(default=False, description="Overwrite an existing due date")


class PauseRequest(BaseModel):
    """Request model for pausing a task's SLA clock."""
    reason: PauseReasonStr = Field(..., description="Why the clock is stopped")
    notes: Optional[str] = Field(None, max_length=1000, description="Free-text context")


class AbsenceRequest(BaseModel):
    is_absent: bool = Field(..., description="True when the user leaves, False when back")
    reason: Optional[str] = Field(None, max_length=255)


class DeadlineValidationRequest(BaseModel):
    deadline: datetime = Field(..., description="Proposed deadline")
    start: Optional[datetime] = Field(None, description="Work start; defaults to now")


class ResolveEscalationRequest(BaseModel):
    notes: Optional[str] = Field(None, max_length=2000, description="How the escalation was handled")


# ========== Response DTOs ==========

class DueDateDTO(BaseModel):
    item_id: str
    item_type: Literal["task", "request"]
    due_at: datetime
    expected_hours: Optional[float] = Field(None, description="Null when the stored date was kept")
    recalculated: bool


class PauseTransitionDTO(BaseModel):
    task_id: str
    reason: Optional[PauseReasonStr] = None
    paused_at: datetime
    resumed_at: Optional[datetime] = None
    duration_ms: Optional[int] = None
    total_paused_ms: int


class EffectiveDeadlineDTO(BaseModel):
    task_id: str
    due_at: datetime = Field(..., description="Stored due date, never shifted by pauses")
    effective_due_at: datetime = Field(..., description="Due date plus all pause time")
    total_paused_ms: int
    is_paused: bool
    paused_since: Optional[datetime] = None


class TaskSLAStatusDTO(BaseModel):
    task_id: str
    state: SLAStateStr
    effective_due_at: datetime
    remaining_seconds: float = Field(..., description="Negative once overdue")


class PauseIntervalDTO(BaseModel):
    id: str
    task_id: str
    reason: PauseReasonStr
    started_at: datetime
    ended_at: Optional[datetime] = None
    duration_ms: Optional[int] = None
    paused_by: Optional[str] = None
    notes: Optional[str] = None


class PauseStatsDTO(BaseModel):
    total_pauses: int
    completed_pauses: int
    active_pauses: int
    total_paused_ms: int
    average_pause_ms: int
    by_reason: Dict[str, int]


class CategoryStatsDTO(BaseModel):
    avg_hours: float
    median_hours: float
    sample_count: int


class CategoryStatsResultDTO(BaseModel):
    category_id: str
    category_name: str
    category_path: str
    stats: Optional[CategoryStatsDTO] = None
    error: Optional[str] = None


class StatsRefreshDTO(BaseModel):
    updated: int
    failed: int
    results: List[CategoryStatsResultDTO]


class AbsenceChangeDTO(BaseModel):
    user_id: str
    is_absent: bool
    affected_task_ids: List[str]
    skipped_task_ids: List[str]


class PollSummaryDTO(BaseModel):
    checked: int
    reminders: int
    escalations: int
    redelivered: int
    duplicates: int
    dispatch_failures: int
    unrouted: int = Field(0, description="Notifications skipped for lack of a recipient")


class DeadlineRangeDTO(BaseModel):
    min: datetime
    max: datetime
    suggested: datetime


class DeadlineValidationDTO(BaseModel):
    is_valid: bool
    is_too_short: bool
    is_too_long: bool
    warnings: List[str]


class TimelineDeviationDTO(BaseModel):
    estimated_hours: Optional[float] = None
    actual_hours: Optional[float] = None
    deviation_hours: Optional[float] = None
    status: DeviationStatusStr


class SubtaskStatusDTO(BaseModel):
    total: int
    done: int
    rejected: int
    open: int
    can_complete: bool
    recommended_status: Optional[TaskStatusStr] = None


class NotificationDTO(BaseModel):
    id: str
    task_id: str
    kind: NotificationKindStr
    user_id: Optional[str] = None
    team_id: Optional[str] = None
    title: str
    message: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    delivered: bool
    delivered_at: Optional[datetime] = None
    is_read: bool
    read_at: Optional[datetime] = None
    escalation_status: Optional[EscalationStatusStr] = Field(
        None, description="Escalations only"
    )
    acknowledged_at: Optional[datetime] = None
    acknowledged_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    resolution_notes: Optional[str] = None


class NotificationFeedDTO(BaseModel):
    user_id: str
    notifications: List[NotificationDTO]
    unread_count: int


class ReadAllDTO(BaseModel):
    user_id: str
    marked: int = Field(..., description="Notifications that changed to read")


class EscalationStatsDTO(BaseModel):
    user_id: Optional[str] = Field(None, description="Null for everyone's escalations")
    total: int
    pending: int
    acknowledged: int
    resolved: int
    by_status: Dict[EscalationStatusStr, int]


class UpcomingReminderDTO(BaseModel):
    task_id: str
    task_title: str
    kind: NotificationKindStr
    scheduled_at: datetime
    minutes_until: int


class DueDateResponse(ResultEnvelope):
    data: Optional[DueDateDTO] = None


class PauseResponse(ResultEnvelope):
    data: Optional[PauseTransitionDTO] = None


class EffectiveDeadlineResponse(ResultEnvelope):
    data: Optional[EffectiveDeadlineDTO] = None


class SLAStatusResponse(ResultEnvelope):
    data: Optional[TaskSLAStatusDTO] = None


class PauseHistoryResponse(ResultEnvelope):
    data: Optional[List[PauseIntervalDTO]] = None


class PauseStatsResponse(ResultEnvelope):
    data: Optional[PauseStatsDTO] = None


class StatsRefreshResponse(ResultEnvelope):
    data: Optional[StatsRefreshDTO] = None


class AbsenceResponse(ResultEnvelope):
    data: Optional[AbsenceChangeDTO] = None


class PollResponse(ResultEnvelope):
    data: Optional[PollSummaryDTO] = None


class DeadlineRangeResponse(ResultEnvelope):
    data: Optional[DeadlineRangeDTO] = None


class DeadlineValidationResponse(ResultEnvelope):
    data: Optional[DeadlineValidationDTO] = None


class TimelineDeviationResponse(ResultEnvelope):
    data: Optional[TimelineDeviationDTO] = None


class SubtaskStatusResponse(ResultEnvelope):
    data: Optional[SubtaskStatusDTO] = None


class NotificationFeedResponse(ResultEnvelope):
    data: Optional[NotificationFeedDTO] = None


class NotificationResponse(ResultEnvelope):
    data: Optional[NotificationDTO] = None


class ReadAllResponse(ResultEnvelope):
    data: Optional[ReadAllDTO] = None


class EscalationListResponse(ResultEnvelope):
    data: Optional[List[NotificationDTO]] = None


class EscalationStatsResponse(ResultEnvelope):
    data: Optional[EscalationStatsDTO] = None


class UpcomingRemindersResponse(ResultEnvelope):
    data: Optional[List[UpcomingReminderDTO]] = None
