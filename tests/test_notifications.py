"""
Notification inbox, escalation lifecycle and upcoming reminder tests.
"""
from datetime import timedelta

import pytest

from taskflow.assignment.domain import AssignmentSettings, AutomationSettings
from taskflow.config import EscalationStatus, NotificationKind, Role
from taskflow.core import Actor
from taskflow.sla.application import NotificationService, ReminderEscalationService
from taskflow.sla.domain import NotificationRecord, ReminderSettings, SLACalculator
from tests.conftest import NOW
from tests.fakes import (
    InMemoryNotificationRepository, InMemoryReminderRepository, RecordingDispatcher, StaticPolicy,
)

R1, R2, R3 = NotificationKind.REMINDER_R1, NotificationKind.REMINDER_R2, NotificationKind.REMINDER_R3
ESCALATION = NotificationKind.ESCALATION

U1 = Actor("u1", Role.STAFF)
U2 = Actor("u2", Role.STAFF)
LEAD = Actor("lead", Role.LEADER)
ADMIN = Actor("root", Role.ADMIN)


@pytest.fixture
def repo(store):
    return InMemoryNotificationRepository(store)


@pytest.fixture
def service(repo, policy, clock):
    return NotificationService(repo, policy, clock)


@pytest.fixture
def people(make_user):
    make_user("u1")
    make_user("u2")
    make_user("lead", role=Role.LEADER)
    make_user("root", team_id=None, role=Role.ADMIN)


@pytest.fixture
def add_notification(store):
    def _add(task_id, kind, user_id, minutes_ago=0, **kwargs):
        record = NotificationRecord(
            id=f"n-{task_id}-{kind.value.lower()}",
            task_id=task_id,
            kind=kind,
            user_id=user_id,
            team_id="team-1",
            title=f"{kind.value} {task_id}",
            message="",
            payload={},
            created_at=NOW - timedelta(minutes=minutes_ago),
            escalation_status=EscalationStatus.PENDING if kind == ESCALATION else None,
            **kwargs,
        )
        store.notifications[record.dedupe_key] = record
        return record

    return _add


async def test_feed_is_newest_first_with_unread_count(service, people, add_notification):
    add_notification("t1", R1, "u1", minutes_ago=30)
    add_notification("t2", R2, "u1", minutes_ago=10, is_read=True)
    add_notification("t3", R1, "u1", minutes_ago=20)
    add_notification("t4", R1, "u2")

    feed = (await service.list_notifications("u1", U1)).data
    unread = (await service.list_notifications("u1", U1, unread_only=True, limit=1)).data

    assert [n.task_id for n in feed.notifications] == ["t2", "t3", "t1"]
    assert feed.unread_count == 2
    assert [n.task_id for n in unread.notifications] == ["t3"]
    assert unread.unread_count == 2
    assert feed.to_dict()["notifications"][0]["is_read"] is True


async def test_feed_access_and_validation(service, people):
    other = await service.list_notifications("u2", U1)
    as_leader = await service.list_notifications("u2", LEAD)
    too_many = await service.list_notifications("u1", U1, limit=NotificationService.MAX_LIMIT + 1)
    ghost = await service.list_notifications("ghost", ADMIN)

    assert other.error_code == "FORBIDDEN"
    assert as_leader.success
    assert too_many.error_code == "VALIDATION_ERROR"
    assert ghost.error_code == "NOT_FOUND"


async def test_mark_read_is_recipient_only_and_idempotent(service, store, clock, people, add_notification):
    record = add_notification("t1", R1, "u1")

    denied = await service.mark_read(record.id, U2)
    first = await service.mark_read(record.id, U1)
    clock.advance(minutes=5)
    second = await service.mark_read(record.id, U1)
    missing = await service.mark_read("nope", U1)

    assert denied.error_code == "FORBIDDEN"
    assert first.data.is_read and first.data.read_at == NOW
    assert second.success and second.data.read_at == NOW
    assert store.notifications[record.dedupe_key].read_at == NOW
    assert missing.error_code == "NOT_FOUND"


async def test_mark_all_read(service, store, people, add_notification):
    add_notification("t1", R1, "u1")
    add_notification("t2", R2, "u1", is_read=True, read_at=NOW - timedelta(hours=1))
    add_notification("t3", R1, "u2")

    other = await service.mark_all_read("u2", U1)
    mine = await service.mark_all_read("u1", U1)
    by_admin = await service.mark_all_read("u2", ADMIN)

    assert other.error_code == "FORBIDDEN"
    assert mine.data.to_dict() == {"user_id": "u1", "marked": 1}
    assert by_admin.data.marked == 1
    assert all(r.is_read for r in store.notifications.values())
    assert store.notifications["t2:REMINDER_R2"].read_at == NOW - timedelta(hours=1)


async def test_escalation_lifecycle(service, clock, people, add_notification):
    record = add_notification("t1", ESCALATION, "lead")

    acknowledged = (await service.acknowledge_escalation(record.id, LEAD)).data
    clock.advance(hours=1)
    resolved = (await service.resolve_escalation(record.id, LEAD, notes="Reassigned")).data

    assert acknowledged.escalation_status == EscalationStatus.ACKNOWLEDGED
    assert (acknowledged.acknowledged_at, acknowledged.acknowledged_by) == (NOW, "lead")
    assert resolved.escalation_status == EscalationStatus.RESOLVED
    assert resolved.resolved_at == NOW + timedelta(hours=1)
    assert (resolved.resolved_by, resolved.resolution_notes) == ("lead", "Reassigned")
    assert resolved.acknowledged_by == "lead"


async def test_pending_escalation_can_be_resolved_directly(service, people, add_notification):
    record = add_notification("t1", ESCALATION, "lead")

    result = await service.resolve_escalation(record.id, LEAD)

    assert result.data.escalation_status == EscalationStatus.RESOLVED
    assert result.data.acknowledged_at is None


async def test_invalid_escalation_transitions(service, people, add_notification):
    record = add_notification("t1", ESCALATION, "lead")
    reminder = add_notification("t2", R1, "lead")
    await service.resolve_escalation(record.id, LEAD)

    again = await service.resolve_escalation(record.id, LEAD)
    late_ack = await service.acknowledge_escalation(record.id, LEAD)
    not_escalation = await service.acknowledge_escalation(reminder.id, LEAD)

    assert again.error_code == "INVALID_ESCALATION_STATE"
    assert again.details == {
        "notification_id": record.id, "current": "RESOLVED", "requested": "RESOLVED",
    }
    assert late_ack.error_code == "INVALID_ESCALATION_STATE"
    assert not_escalation.error_code == "NOT_FOUND"


async def test_only_recipient_or_admin_handles_escalation(service, people, add_notification):
    record = add_notification("t1", ESCALATION, "lead")

    by_staff = await service.acknowledge_escalation(record.id, U1)
    by_admin = await service.acknowledge_escalation(record.id, ADMIN)

    assert by_staff.error_code == "FORBIDDEN"
    assert by_admin.data.acknowledged_by == "root"


async def test_active_escalations_and_stats(service, people, add_notification):
    add_notification("t1", ESCALATION, "lead", minutes_ago=20)
    second = add_notification("t2", ESCALATION, "lead", minutes_ago=10)
    third = add_notification("t3", ESCALATION, "lead")
    add_notification("t4", ESCALATION, "root")
    add_notification("t5", R1, "lead")
    await service.acknowledge_escalation(second.id, LEAD)
    await service.resolve_escalation(third.id, LEAD)

    active = (await service.active_escalations("lead", LEAD)).data
    mine = (await service.escalation_stats(LEAD, user_id="lead")).data
    everyone = (await service.escalation_stats(ADMIN)).data
    staff_overall = await service.escalation_stats(U1)

    assert [e.task_id for e in active] == ["t2", "t1"]
    assert mine.to_dict() == {
        "user_id": "lead",
        "total": 3,
        "pending": 1,
        "acknowledged": 1,
        "resolved": 1,
        "by_status": {"PENDING": 1, "ACKNOWLEDGED": 1, "RESOLVED": 1},
    }
    assert (everyone.total, everyone.count(EscalationStatus.PENDING)) == (4, 2)
    assert staff_overall.error_code == "FORBIDDEN"


async def test_poll_creates_pending_escalation(store, clock, make_user, make_task):
    make_user("u1")
    make_user("lead", role=Role.LEADER)
    store.team_leaders["team-1"] = "lead"
    make_task("t1", assignee_id="u1", due_at=NOW - timedelta(hours=3))
    policy = StaticPolicy(assignment=AssignmentSettings(automation=AutomationSettings(
        auto_escalate_stalled=True, escalate_after_hours=2,
    )))
    reminders = ReminderEscalationService(
        InMemoryReminderRepository(store), RecordingDispatcher(), policy, clock
    )
    await reminders.poll()
    service = NotificationService(InMemoryNotificationRepository(store), policy, clock)

    active = (await service.active_escalations("lead", LEAD)).data

    assert [(e.task_id, e.escalation_status) for e in active] == [("t1", EscalationStatus.PENDING)]


async def test_upcoming_reminders(service, store, people, make_task, add_notification):
    make_task("t1", assignee_id="u1", due_at=NOW + timedelta(hours=5))
    make_task("t2", assignee_id="u1", due_at=NOW + timedelta(hours=2))
    make_task("t3", assignee_id="u1", due_at=NOW + timedelta(hours=1), sla_paused_at=NOW)
    make_task("t4", assignee_id="u1")
    make_task("t5", assignee_id="u2", due_at=NOW + timedelta(hours=1))
    add_notification("t2", R1, "u1")

    upcoming = (await service.upcoming_reminders("u1", U1)).data

    assert [(r.task_id, r.kind, r.minutes_until) for r in upcoming] == [
        ("t1", R1, 60),
        ("t2", R2, 60),
        ("t2", R3, 120),
        ("t1", R2, 240),
        ("t1", R3, 300),
    ]
    assert upcoming[0].scheduled_at == NOW + timedelta(hours=1)
    assert upcoming[0].to_dict()["task_title"] == "Task t1"


async def test_upcoming_reminders_follow_pause_time(service, people, make_task):
    make_task(
        "t1", assignee_id="u1", due_at=NOW + timedelta(minutes=30), sla_total_paused_ms=2 * 3_600_000,
    )

    upcoming = (await service.upcoming_reminders("u1", U1)).data

    assert [(r.kind, r.minutes_until) for r in upcoming] == [(R2, 90), (R3, 150)]


async def test_upcoming_reminders_access(service, people):
    assert (await service.upcoming_reminders("u2", U1)).error_code == "FORBIDDEN"
    assert (await service.upcoming_reminders("u2", LEAD)).data == []
    assert (await service.upcoming_reminders("ghost", ADMIN)).error_code == "NOT_FOUND"


def test_calculator_skips_levels_already_passed_or_sent():
    settings = ReminderSettings()
    due = NOW + timedelta(hours=2)

    assert SLACalculator.upcoming_reminders(due, NOW, set(), settings) == [
        (R2, due - timedelta(minutes=60)),
        (R3, due),
    ]
    assert SLACalculator.upcoming_reminders(due, NOW, {R2}, settings) == [(R3, due)]
    assert SLACalculator.upcoming_reminders(due, NOW, {R3}, settings) == []
    assert SLACalculator.upcoming_reminders(due, due, set(), settings) == []
