"""
SLA Domain Layer
================

Pure business logic for deadlines, pauses and reminders.
"""

from taskflow.sla.domain.entities import (
    AbsenceChange,
    CategoryStats,
    CategoryStatsResult,
    CompletionSample,
    DeadlineRange,
    DeadlineValidation,
    DueDateResult,
    EffectiveDeadline,
    EscalationStats,
    NotificationFeed,
    NotificationRecord,
    PauseStats,
    PauseTransition,
    PollSummary,
    ReadAllResult,
    StatsRefreshSummary,
    TaskSLAStatus,
    TimelineDeviation,
    UpcomingReminder,
    make_dedupe_key,
)
from taskflow.sla.domain.value_objects import (
    DeadlineSettings,
    ReminderSettings,
    SLACalculator,
)

__all__ = [
    "AbsenceChange",
    "CategoryStats",
    "CategoryStatsResult",
    "CompletionSample",
    "DeadlineRange",
    "DeadlineValidation",
    "DueDateResult",
    "EffectiveDeadline",
    "EscalationStats",
    "NotificationFeed",
    "NotificationRecord",
    "PauseStats",
    "PauseTransition",
    "PollSummary",
    "ReadAllResult",
    "StatsRefreshSummary",
    "TaskSLAStatus",
    "TimelineDeviation",
    "UpcomingReminder",
    "make_dedupe_key",
    "DeadlineSettings",
    "ReminderSettings",
    "SLACalculator",
]
