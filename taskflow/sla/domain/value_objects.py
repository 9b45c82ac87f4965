"""
SLA Value Objects
==================

Immutable deadline and reminder policy plus the pure SLA calculations.

Value objects are defined by their attributes rather than an identity.
They are immutable and can be freely shared.
"""

from datetime import datetime, timedelta
from typing import Iterable, List, Literal, Optional, Set, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator

from taskflow.config import NotificationKind, SLAState, REMINDER_KINDS
from taskflow.shared.domain import Category
from taskflow.sla.domain.entities import (
    CategoryStats, DeadlineRange, DeadlineValidation, TimelineDeviation
)


class DeadlineSettings(BaseModel):
    """Deadline derivation and category statistics policy."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    default_sla_hours: float = Field(
        default=24, gt=0, description="Used when a category lacks enough history"
    )
    min_sample_count: int = Field(
        default=3, ge=1, description="Completed items a category needs before its average is trusted"
    )
    stats_source: Literal["tasks", "requests"] = Field(
        default="tasks", description="Which completed work items feed category statistics"
    )
    stats_window_size: int = Field(
        default=200, ge=1, description="Most recent completions considered per category"
    )
    stats_batch_size: int = Field(default=50, ge=1, description="Rows fetched per page")
    min_deadline_hours: float = Field(default=4, gt=0)
    max_deadline_hours: float = Field(default=72, gt=0)
    on_time_tolerance_percent: float = Field(
        default=10, ge=0, description="Deviation band still counted as on time"
    )

    @model_validator(mode="after")
    def _check_range(self) -> "DeadlineSettings":
        if self.min_deadline_hours > self.max_deadline_hours:
            raise ValueError("min_deadline_hours must not exceed max_deadline_hours")
        return self


class ReminderSettings(BaseModel):
    """Reminder offsets before the effective deadline."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    r1_offset_minutes: int = Field(default=240, ge=0, description="First, early reminder")
    r2_offset_minutes: int = Field(default=60, ge=0, description="Second reminder")
    r3_offset_minutes: int = Field(default=0, ge=0, description="At (or just before) the deadline")
    batch_size: int = Field(default=100, ge=1, description="Tasks evaluated per page")
    redelivery_window_minutes: int = Field(
        default=60, ge=0, description="How long an undelivered notification is retried"
    )

    @model_validator(mode="after")
    def _check_order(self) -> "ReminderSettings":
        if not self.r1_offset_minutes >= self.r2_offset_minutes >= self.r3_offset_minutes:
            raise ValueError("reminder offsets must satisfy r1 >= r2 >= r3")
        return self

    def offsets(self) -> List[Tuple[NotificationKind, timedelta]]:
        """Reminder kinds with their offsets, earliest reminder first."""
        minutes = (self.r1_offset_minutes, self.r2_offset_minutes, self.r3_offset_minutes)
        return [(kind, timedelta(minutes=m)) for kind, m in zip(REMINDER_KINDS, minutes)]


class SLACalculator:
    """
    Pure functions for SLA calculations.

    Stateless utility class, all SLA calculation logic in one place.
    """

    @staticmethod
    def expected_hours(category: Optional[Category], settings: DeadlineSettings) -> float:
        """Category average when it has enough samples, else the default."""
        if (
            category is not None
            and category.avg_completion_hours is not None
            and category.sample_count >= settings.min_sample_count
        ):
            return category.avg_completion_hours
        return settings.default_sla_hours

    @staticmethod
    def calculate_deadline(
        created_at: datetime,
        category: Optional[Category],
        settings: DeadlineSettings,
    ) -> datetime:
        return created_at + timedelta(hours=SLACalculator.expected_hours(category, settings))

    @staticmethod
    def effective_due_date(
        due_at: datetime,
        total_paused_ms: int,
        paused_at: Optional[datetime],
        now: datetime,
    ) -> datetime:
        """
        Deadline shifted by every pause.

        Closed intervals are already folded into ``total_paused_ms``; an open
        interval contributes ``now - paused_at``, so the result keeps moving
        forward in lockstep with the clock while paused.
        """
        effective = due_at + timedelta(milliseconds=total_paused_ms)
        if paused_at is not None and now > paused_at:
            effective += now - paused_at
        return effective

    @staticmethod
    def completion_stats(durations_hours: Iterable[float]) -> Optional[CategoryStats]:
        """
        Mean and median of completion durations.

        The sample is sorted first so the float sum does not depend on the
        order rows came back in; repeated runs give bit-identical results.
        """
        ordered = sorted(durations_hours)
        if not ordered:
            return None
        count = len(ordered)
        mid = count // 2
        if count % 2:
            median = ordered[mid]
        else:
            median = (ordered[mid - 1] + ordered[mid]) / 2
        return CategoryStats(
            avg_hours=sum(ordered) / count,
            median_hours=median,
            sample_count=count,
        )

    @staticmethod
    def due_reminder(
        effective_due: datetime,
        now: datetime,
        already_sent: Set[NotificationKind],
        settings: ReminderSettings,
    ) -> Optional[NotificationKind]:
        """
        The reminder to emit now, if any.

        Only the most advanced crossed level is emitted, and only when neither
        it nor a later level has been recorded, so a poll that skipped past R1
        straight into R2 sends R2 alone.
        """
        crossed = [kind for kind, offset in settings.offsets() if now >= effective_due - offset]
        if not crossed:
            return None
        latest = crossed[-1]
        later_or_same = REMINDER_KINDS[REMINDER_KINDS.index(latest):]
        if any(kind in already_sent for kind in later_or_same):
            return None
        return latest

    @staticmethod
    def upcoming_reminders(
        effective_due: datetime,
        now: datetime,
        already_sent: Set[NotificationKind],
        settings: ReminderSettings,
    ) -> List[Tuple[NotificationKind, datetime]]:
        """Reminder levels still ahead of ``now``, with the time each will fire."""
        upcoming = []
        for kind, offset in settings.offsets():
            later_or_same = REMINDER_KINDS[REMINDER_KINDS.index(kind):]
            if any(k in already_sent for k in later_or_same):
                continue
            fires_at = effective_due - offset
            if fires_at > now:
                upcoming.append((kind, fires_at))
        return upcoming

    @staticmethod
    def should_escalate(
        effective_due: datetime,
        now: datetime,
        auto_escalate: bool,
        escalate_after_hours: float,
    ) -> bool:
        if not auto_escalate:
            return False
        return now >= effective_due + timedelta(hours=escalate_after_hours)

    @staticmethod
    def calculate_status(
        effective_due: datetime,
        now: datetime,
        settings: ReminderSettings,
        is_paused: bool = False,
        completed_at: Optional[datetime] = None,
        escalated: bool = False,
    ) -> SLAState:
        """Current SLA state of a task."""
        if completed_at is not None:
            return SLAState.MET if completed_at <= effective_due else SLAState.BREACHED
        if is_paused:
            return SLAState.PAUSED
        if now >= effective_due:
            return SLAState.ESCALATED if escalated else SLAState.BREACHED
        if now >= effective_due - timedelta(minutes=settings.r1_offset_minutes):
            return SLAState.AT_RISK
        return SLAState.ON_TRACK

    @staticmethod
    def deadline_range(start: datetime, expected_hours: float, settings: DeadlineSettings) -> DeadlineRange:
        suggested = min(max(expected_hours, settings.min_deadline_hours), settings.max_deadline_hours)
        return DeadlineRange(
            min=start + timedelta(hours=settings.min_deadline_hours),
            max=start + timedelta(hours=settings.max_deadline_hours),
            suggested=start + timedelta(hours=suggested),
        )

    @staticmethod
    def validate_deadline(
        deadline: datetime,
        start: datetime,
        settings: DeadlineSettings,
    ) -> DeadlineValidation:
        hours = (deadline - start).total_seconds() / 3600
        too_short = hours < settings.min_deadline_hours
        too_long = hours > settings.max_deadline_hours
        warnings = []
        if too_short:
            warnings.append(
                f"Deadline is {hours:.1f}h away, shorter than the {settings.min_deadline_hours:g}h minimum"
            )
        if too_long:
            warnings.append(
                f"Deadline is {hours:.1f}h away, longer than the {settings.max_deadline_hours:g}h maximum"
            )
        return DeadlineValidation(
            is_valid=not (too_short or too_long),
            is_too_short=too_short,
            is_too_long=too_long,
            warnings=warnings,
        )

    @staticmethod
    def timeline_deviation(
        created_at: datetime,
        due_at: Optional[datetime],
        completed_at: Optional[datetime],
        paused_ms: int,
        tolerance_percent: float,
    ) -> TimelineDeviation:
        """Compare actual working time (pauses excluded) with the planned duration."""
        if due_at is None or completed_at is None:
            return TimelineDeviation(None, None, None, "unknown")
        estimated = (due_at - created_at).total_seconds() / 3600
        actual = (completed_at - created_at).total_seconds() / 3600 - paused_ms / 3_600_000
        deviation = actual - estimated
        band = abs(estimated) * tolerance_percent / 100
        if deviation < -band:
            status = "early"
        elif deviation > band:
            status = "late"
        else:
            status = "on_time"
        return TimelineDeviation(estimated, actual, deviation, status)
