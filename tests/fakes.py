"""
In-memory test doubles for the repository, policy and dispatcher interfaces.

Every read returns a copy, so services observe state changes only through
the repository, the same way they would against a database.
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Dict, FrozenSet, List, Optional, Sequence, Set, Tuple

from taskflow.assignment.application import IAssignmentRepository, IAssignmentSettingsProvider
from taskflow.assignment.domain import AssignmentSettings, AutomationSettings
from taskflow.config import (
    EscalationStatus, NotificationKind, PauseReason, Role, TaskStatus, TERMINAL_STATUSES,
)
from taskflow.shared.domain import Category, PauseInterval, RequestItem, Task, UserProfile
from taskflow.sla.application import (
    IDeadlineRepository, INotificationDispatcher, INotificationRepository, IPauseRepository,
    IReminderRepository, ISLAPolicyProvider,
)
from taskflow.sla.domain import (
    CategoryStats, CompletionSample, DeadlineSettings, NotificationRecord, ReminderSettings,
)


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class StaticPolicy(IAssignmentSettingsProvider, ISLAPolicyProvider):
    def __init__(
        self,
        assignment: Optional[AssignmentSettings] = None,
        deadlines: Optional[DeadlineSettings] = None,
        reminders: Optional[ReminderSettings] = None,
    ):
        self.assignment = assignment or AssignmentSettings()
        self.deadlines = deadlines or DeadlineSettings()
        self.reminders = reminders or ReminderSettings()

    def get_assignment_settings(self) -> AssignmentSettings:
        return self.assignment

    def get_deadline_settings(self) -> DeadlineSettings:
        return self.deadlines

    def get_reminder_settings(self) -> ReminderSettings:
        return self.reminders

    def get_automation_settings(self) -> AutomationSettings:
        return self.assignment.automation


@dataclass
class InMemoryStore:
    users: Dict[str, UserProfile] = field(default_factory=dict)
    team_leaders: Dict[str, Optional[str]] = field(default_factory=dict)
    categories: Dict[str, Category] = field(default_factory=dict)
    tasks: Dict[str, Task] = field(default_factory=dict)
    requests: Dict[str, RequestItem] = field(default_factory=dict)
    intervals: List[PauseInterval] = field(default_factory=list)
    notifications: Dict[str, NotificationRecord] = field(default_factory=dict)
    assignments: List[Tuple[str, str, datetime, str]] = field(default_factory=list)
    absence_reasons: Dict[str, Optional[str]] = field(default_factory=dict)


class InMemoryAssignmentRepository(IAssignmentRepository):
    def __init__(self, store: InMemoryStore):
        self.store = store
        # Simulates another writer changing the assignee before our update
        self.conflicts_remaining = 0

    async def get_task(self, task_id: str) -> Optional[Task]:
        task = self.store.tasks.get(task_id)
        return replace(task) if task else None

    async def get_user(self, user_id: str) -> Optional[UserProfile]:
        user = self.store.users.get(user_id)
        return replace(user) if user else None

    async def team_exists(self, team_id: str) -> bool:
        return team_id in self.store.team_leaders

    async def list_team_members(self, team_id: str) -> List[UserProfile]:
        return [replace(u) for u in sorted(self.store.users.values(), key=lambda u: u.id)
                if u.team_id == team_id]

    async def list_users_outside_team(self, team_id: str) -> List[UserProfile]:
        return [replace(u) for u in sorted(self.store.users.values(), key=lambda u: u.id)
                if u.team_id and u.team_id != team_id and u.is_active and u.role != Role.ADMIN]

    async def get_category_path(self, category_id: str) -> Optional[str]:
        category = self.store.categories.get(category_id)
        return category.path if category else None

    async def list_open_tasks(self, user_ids: Sequence[str]) -> Dict[str, List[Task]]:
        grouped: Dict[str, List[Task]] = {}
        for task in sorted(self.store.tasks.values(), key=lambda t: (t.created_at, t.id)):
            if task.assignee_id in user_ids and not task.is_terminal:
                grouped.setdefault(task.assignee_id, []).append(replace(task))
        return grouped

    async def get_completed_category_paths(self, user_ids: Sequence[str]) -> Dict[str, Set[str]]:
        paths: Dict[str, Set[str]] = {}
        for task in self.store.tasks.values():
            if task.assignee_id in user_ids and task.status == TaskStatus.DONE and task.category_id:
                paths.setdefault(task.assignee_id, set()).add(self.store.categories[task.category_id].path)
        return paths

    async def count_assignments_since(self, user_ids: Sequence[str], since: datetime) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for _, user_id, at, _ in self.store.assignments:
            if user_id in user_ids and at >= since:
                counts[user_id] = counts.get(user_id, 0) + 1
        return counts

    async def count_completions_since(self, user_ids: Sequence[str], since: datetime) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for task in self.store.tasks.values():
            if (task.assignee_id in user_ids and task.status == TaskStatus.DONE
                    and task.completed_at and task.completed_at >= since):
                counts[task.assignee_id] = counts.get(task.assignee_id, 0) + 1
        return counts

    async def update_assignee(
        self,
        task_id: str,
        expected_assignee_id: Optional[str],
        new_assignee_id: str,
        assigned_at: datetime,
        strategy: str,
        score: Optional[float],
    ) -> bool:
        if self.conflicts_remaining > 0:
            self.conflicts_remaining -= 1
            return False
        task = self.store.tasks[task_id]
        if task.assignee_id != expected_assignee_id:
            return False
        task.assignee_id = new_assignee_id
        self.store.users[new_assignee_id].last_assigned_at = assigned_at
        self.store.assignments.append((task_id, new_assignee_id, assigned_at, strategy))
        return True


class InMemoryDeadlineRepository(IDeadlineRepository):
    def __init__(self, store: InMemoryStore):
        self.store = store
        self.failing_categories: Set[str] = set()
        self.chunk_calls = 0
        self.savepoints = 0
        self.failing_saves: Set[str] = set()

    async def get_task(self, task_id: str) -> Optional[Task]:
        task = self.store.tasks.get(task_id)
        return replace(task) if task else None

    async def get_request(self, request_id: str) -> Optional[RequestItem]:
        item = self.store.requests.get(request_id)
        return replace(item) if item else None

    async def get_category(self, category_id: str) -> Optional[Category]:
        category = self.store.categories.get(category_id)
        return replace(category) if category else None

    async def list_categories(self) -> List[Category]:
        return [replace(c) for c in sorted(self.store.categories.values(), key=lambda c: c.path)
                if c.is_active]

    async def fetch_completion_chunk(
        self,
        category_id: str,
        source: str,
        before: Optional[Tuple[datetime, str]],
        limit: int,
    ) -> List[CompletionSample]:
        self.chunk_calls += 1
        if category_id in self.failing_categories:
            raise RuntimeError(f"storage error for {category_id}")

        if source == "requests":
            items = [r for r in self.store.requests.values()
                     if r.category_id == category_id and r.status.value == "DONE" and r.completed_at]
        else:
            items = [t for t in self.store.tasks.values()
                     if t.category_id == category_id and t.status == TaskStatus.DONE
                     and t.completed_at and t.parent_task_id is None
                     and not any(c.parent_task_id == t.id and not c.is_terminal
                                 for c in self.store.tasks.values())]
        items.sort(key=lambda i: (i.completed_at, i.id), reverse=True)
        if before is not None:
            items = [i for i in items if (i.completed_at, i.id) < before]
        return [CompletionSample(i.id, i.created_at, i.completed_at) for i in items[:limit]]

    @asynccontextmanager
    async def savepoint(self):
        """Restores category statistics when the block raises."""
        self.savepoints += 1
        snapshot = {cid: replace(c) for cid, c in self.store.categories.items()}
        try:
            yield
        except Exception:
            self.store.categories.update(snapshot)
            raise

    async def save_category_stats(self, category_id: str, stats: CategoryStats, updated_at: datetime) -> None:
        category = self.store.categories[category_id]
        category.avg_completion_hours = stats.avg_hours
        category.median_completion_hours = stats.median_hours
        category.sample_count = stats.sample_count
        category.stats_updated_at = updated_at
        if category_id in self.failing_saves:
            raise RuntimeError(f"write failed for {category_id}")

    async def set_task_due_date(self, task_id: str, due_at: datetime) -> None:
        self.store.tasks[task_id].due_at = due_at

    async def set_request_due_date(self, request_id: str, due_at: datetime) -> None:
        self.store.requests[request_id].due_at = due_at

    async def list_subtask_statuses(self, parent_task_id: str) -> List[TaskStatus]:
        return [t.status for t in self.store.tasks.values() if t.parent_task_id == parent_task_id]


class InMemoryPauseRepository(IPauseRepository):
    def __init__(self, store: InMemoryStore):
        self.store = store

    async def get_task(self, task_id: str) -> Optional[Task]:
        task = self.store.tasks.get(task_id)
        return replace(task) if task else None

    async def mark_paused(self, task_id: str, paused_at: datetime, reason: PauseReason) -> bool:
        task = self.store.tasks[task_id]
        if task.sla_paused_at is not None or task.is_terminal:
            return False
        task.sla_paused_at = paused_at
        task.sla_pause_reason = reason
        return True

    async def mark_resumed(self, task_id: str, paused_at: datetime, duration_ms: int) -> bool:
        task = self.store.tasks[task_id]
        if task.sla_paused_at != paused_at:
            return False
        task.sla_paused_at = None
        task.sla_pause_reason = None
        task.sla_total_paused_ms += duration_ms
        return True

    async def open_interval(self, interval: PauseInterval) -> None:
        self.store.intervals.append(replace(interval))

    async def close_interval(self, task_id: str, ended_at: datetime, duration_ms: int) -> None:
        for interval in self.store.intervals:
            if interval.task_id == task_id and interval.ended_at is None:
                interval.ended_at = ended_at
                interval.duration_ms = duration_ms

    async def list_intervals(self, task_id: str) -> List[PauseInterval]:
        return [replace(i) for i in sorted(self.store.intervals, key=lambda i: (i.started_at, i.id))
                if i.task_id == task_id]

    async def list_open_tasks_for_user(self, user_id: str) -> List[Task]:
        return [replace(t) for t in self.store.tasks.values()
                if t.assignee_id == user_id and t.status not in TERMINAL_STATUSES]

    async def set_user_absence(self, user_id: str, is_absent: bool, reason: Optional[str]) -> bool:
        user = self.store.users.get(user_id)
        if user is None:
            return False
        user.is_absent = is_absent
        self.store.absence_reasons[user_id] = reason if is_absent else None
        return True


class InMemoryReminderRepository(IReminderRepository):
    def __init__(self, store: InMemoryStore):
        self.store = store

    async def get_task(self, task_id: str) -> Optional[Task]:
        task = self.store.tasks.get(task_id)
        return replace(task) if task else None

    async def fetch_active_tasks_chunk(self, after_id: Optional[str], limit: int) -> List[Task]:
        active = sorted(
            (t for t in self.store.tasks.values()
             if not t.is_terminal and not t.is_paused and t.due_at is not None
             and (after_id is None or t.id > after_id)),
            key=lambda t: t.id,
        )
        return [replace(t) for t in active[:limit]]

    async def get_sent_kinds(self, task_ids: List[str]) -> Dict[str, Set[NotificationKind]]:
        sent: Dict[str, Set[NotificationKind]] = {}
        for record in self.store.notifications.values():
            if record.task_id in task_ids:
                sent.setdefault(record.task_id, set()).add(record.kind)
        return sent

    async def claim_notification(self, record: NotificationRecord) -> bool:
        if record.dedupe_key in self.store.notifications:
            return False
        self.store.notifications[record.dedupe_key] = replace(record)
        return True

    async def mark_delivered(self, notification_id: str, delivered_at: datetime) -> None:
        for record in self.store.notifications.values():
            if record.id == notification_id:
                record.delivered = True
                record.delivered_at = delivered_at

    async def list_undelivered(self, since: datetime) -> List[NotificationRecord]:
        return [replace(r) for r in sorted(self.store.notifications.values(), key=lambda r: r.created_at)
                if not r.delivered and r.user_id and r.created_at >= since]

    async def get_team_leader(self, team_id: str) -> Optional[str]:
        return self.store.team_leaders.get(team_id)

    async def get_first_admin(self) -> Optional[str]:
        admins = sorted(u.id for u in self.store.users.values() if u.role == Role.ADMIN and u.is_active)
        return admins[0] if admins else None


class InMemoryNotificationRepository(INotificationRepository):
    def __init__(self, store: InMemoryStore):
        self.store = store

    def _find(self, notification_id: str) -> Optional[NotificationRecord]:
        for record in self.store.notifications.values():
            if record.id == notification_id:
                return record
        return None

    def _newest_first(self, records) -> List[NotificationRecord]:
        return [replace(r) for r in sorted(records, key=lambda r: (r.created_at, r.id), reverse=True)]

    async def user_exists(self, user_id: str) -> bool:
        return user_id in self.store.users

    async def get_notification(self, notification_id: str) -> Optional[NotificationRecord]:
        record = self._find(notification_id)
        return replace(record) if record else None

    async def list_notifications(
        self, user_id: str, unread_only: bool, limit: int
    ) -> List[NotificationRecord]:
        mine = [r for r in self.store.notifications.values()
                if r.user_id == user_id and not (unread_only and r.is_read)]
        return self._newest_first(mine)[:limit]

    async def count_unread(self, user_id: str) -> int:
        return sum(1 for r in self.store.notifications.values() if r.user_id == user_id and not r.is_read)

    async def mark_read(self, notification_id: str, read_at: datetime) -> bool:
        record = self._find(notification_id)
        if record is None or record.is_read:
            return False
        record.is_read = True
        record.read_at = read_at
        return True

    async def mark_all_read(self, user_id: str, read_at: datetime) -> int:
        marked = 0
        for record in self.store.notifications.values():
            if record.user_id == user_id and not record.is_read:
                record.is_read = True
                record.read_at = read_at
                marked += 1
        return marked

    async def transition_escalation(
        self,
        notification_id: str,
        from_statuses: FrozenSet[EscalationStatus],
        to_status: EscalationStatus,
        at: datetime,
        by: str,
        notes: Optional[str] = None,
    ) -> bool:
        record = self._find(notification_id)
        if record is None or not record.is_escalation or record.escalation_status not in from_statuses:
            return False
        record.escalation_status = to_status
        if to_status == EscalationStatus.ACKNOWLEDGED:
            record.acknowledged_at = at
            record.acknowledged_by = by
        elif to_status == EscalationStatus.RESOLVED:
            record.resolved_at = at
            record.resolved_by = by
            record.resolution_notes = notes
        return True

    async def list_escalations(
        self, user_id: str, statuses: FrozenSet[EscalationStatus]
    ) -> List[NotificationRecord]:
        return self._newest_first(
            r for r in self.store.notifications.values()
            if r.user_id == user_id and r.is_escalation and r.escalation_status in statuses
        )

    async def count_escalations_by_status(
        self, user_id: Optional[str] = None
    ) -> Dict[EscalationStatus, int]:
        counts: Dict[EscalationStatus, int] = {}
        for record in self.store.notifications.values():
            if not record.is_escalation or record.escalation_status is None:
                continue
            if user_id is not None and record.user_id != user_id:
                continue
            counts[record.escalation_status] = counts.get(record.escalation_status, 0) + 1
        return counts

    async def list_open_tasks_for_user(self, user_id: str) -> List[Task]:
        return [replace(t) for t in sorted(self.store.tasks.values(), key=lambda t: t.id)
                if t.assignee_id == user_id and not t.is_terminal]

    async def get_sent_kinds(self, task_ids: List[str]) -> Dict[str, Set[NotificationKind]]:
        sent: Dict[str, Set[NotificationKind]] = {}
        for record in self.store.notifications.values():
            if record.task_id in task_ids:
                sent.setdefault(record.task_id, set()).add(record.kind)
        return sent


class RecordingDispatcher(INotificationDispatcher):
    """Records deliveries; ``fail`` makes every delivery fail."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: List[NotificationRecord] = []

    async def notify(self, record: NotificationRecord) -> bool:
        if self.fail:
            return False
        self.sent.append(record)
        return True
