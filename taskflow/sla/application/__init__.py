"""
SLA Application Layer
=====================

Services, repository interfaces and DTOs for deadlines, pauses and
reminders.
"""

from taskflow.sla.application.services import (
    DeadlineService,
    IDeadlineRepository,
    INotificationDispatcher,
    INotificationRepository,
    IPauseRepository,
    IReminderRepository,
    ISLAPolicyProvider,
    NotificationService,
    ReminderEscalationService,
    SLAPauseService,
)
from taskflow.sla.application.dto import (
    AbsenceRequest,
    AbsenceResponse,
    DeadlineRangeResponse,
    DeadlineValidationRequest,
    DeadlineValidationResponse,
    DueDateRequest,
    DueDateResponse,
    EffectiveDeadlineResponse,
    EscalationListResponse,
    EscalationStatsResponse,
    NotificationFeedResponse,
    NotificationResponse,
    PauseHistoryResponse,
    PauseRequest,
    PauseResponse,
    PauseStatsResponse,
    PollResponse,
    ReadAllResponse,
    ResolveEscalationRequest,
    SLAStatusResponse,
    StatsRefreshResponse,
    SubtaskStatusResponse,
    TimelineDeviationResponse,
    UpcomingRemindersResponse,
)

__all__ = [
    "DeadlineService",
    "IDeadlineRepository",
    "INotificationDispatcher",
    "INotificationRepository",
    "IPauseRepository",
    "IReminderRepository",
    "ISLAPolicyProvider",
    "NotificationService",
    "ReminderEscalationService",
    "SLAPauseService",
    "AbsenceRequest",
    "AbsenceResponse",
    "DeadlineRangeResponse",
    "DeadlineValidationRequest",
    "DeadlineValidationResponse",
    "DueDateRequest",
    "DueDateResponse",
    "EffectiveDeadlineResponse",
    "EscalationListResponse",
    "EscalationStatsResponse",
    "NotificationFeedResponse",
    "NotificationResponse",
    "PauseHistoryResponse",
    "PauseRequest",
    "PauseResponse",
    "PauseStatsResponse",
    "PollResponse",
    "ReadAllResponse",
    "ResolveEscalationRequest",
    "SLAStatusResponse",
    "StatsRefreshResponse",
    "SubtaskStatusResponse",
    "TimelineDeviationResponse",
    "UpcomingRemindersResponse",
]
