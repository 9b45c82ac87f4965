"""
HTTP API tests.

Routes run against the real SQLAlchemy repositories on in-memory SQLite;
the policy and notification dispatcher are replaced through FastAPI's
dependency overrides.
"""
from datetime import timedelta

import httpx
import pytest

from taskflow.assignment.interfaces.controllers import get_settings_provider
from taskflow.config import Role, TaskStatus, settings
from taskflow.core.timeutils import utc_now
from taskflow.infrastructure.database import get_session
from taskflow.infrastructure.database.models import NotificationModel, TaskModel, TeamModel, UserModel
from taskflow.main import app
from taskflow.sla.interfaces.controllers import get_notification_dispatcher, get_sla_policy
from tests.fakes import RecordingDispatcher, StaticPolicy

LEADER = {"X-Actor-Id": "lead", "X-Actor-Role": "LEADER"}
STAFF = {"X-Actor-Id": "u1", "X-Actor-Role": "staff"}


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
async def client(db_session, dispatcher):
    policy = StaticPolicy()

    async def override_session():
        yield db_session

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_settings_provider] = lambda: policy
    app.dependency_overrides[get_sla_policy] = lambda: policy
    app.dependency_overrides[get_notification_dispatcher] = lambda: dispatcher

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
async def team(db_session):
    """Team with two staff members and one open, unassigned task."""
    now = utc_now()
    db_session.add_all([
        TeamModel(id="team-1", name="Platform", leader_id="lead"),
        UserModel(id="lead", name="Lead", email="lead@example.com", role=Role.LEADER.value, team_id="team-1"),
        UserModel(id="u1", name="Ana", email="ana@example.com", team_id="team-1"),
        UserModel(id="u2", name="Ben", email="ben@example.com", team_id="team-1"),
        TaskModel(id="busy", title="Busy", team_id="team-1", assignee_id="u1",
                  priority="URGENT", created_at=now, updated_at=now),
        TaskModel(id="t1", title="Fix login", team_id="team-1", created_at=now, updated_at=now,
                  due_at=now + timedelta(hours=24)),
    ])
    await db_session.flush()
    return now


async def test_assign_task(client, team):
    response = await client.post("/assignment/tasks/t1/assign", headers=LEADER)

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["data"]["assignee_id"] in {"u2", "lead"}
    assert body["data"]["strategy"] == "score"
    assert {c["user_id"] for c in body["data"]["candidates"]} == {"lead", "u1", "u2"}


async def test_no_eligible_candidate_is_not_an_http_error(client, db_session, team):
    for user_id in ("lead", "u1", "u2"):
        user = await db_session.get(UserModel, user_id)
        user.is_absent = True
    await db_session.flush()

    response = await client.post(
        "/assignment/tasks/t1/assign", headers=LEADER, json={"fallback_strategy": "manual_gate"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is False
    assert body["error_code"] == "NO_ELIGIBLE_CANDIDATE"


async def test_error_codes_map_to_statuses(client, team):
    forbidden = await client.post("/assignment/tasks/t1/assign", headers=STAFF)
    missing = await client.post("/assignment/tasks/nope/assign", headers=LEADER)

    assert forbidden.status_code == 403
    assert forbidden.json()["error_code"] == "FORBIDDEN"
    assert missing.status_code == 404


async def test_actor_headers_are_required(client, team):
    missing = await client.get("/assignment/users/u1/workload")
    unknown = await client.get(
        "/assignment/users/u1/workload", headers={"X-Actor-Id": "u1", "X-Actor-Role": "guest"},
    )

    assert missing.status_code == 422
    assert unknown.status_code == 401


async def test_workload_endpoints(client, team):
    user = await client.get("/assignment/users/u1/workload", headers=STAFF)
    members = await client.get("/assignment/teams/team-1/workload", headers=LEADER)

    assert user.json()["data"]["weighted_load"] == pytest.approx(4.0, abs=0.01)
    assert [w["user_id"] for w in members.json()["data"]][0] == "u1"


async def test_wip_limit_endpoint(client, team):
    response = await client.get("/assignment/users/u1/wip-limit", headers=STAFF)

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["current"] == 1
    assert data["available"] == data["limit"] - 1
    assert data["exceeded"] is False


async def test_assign_to_endpoint(client, db_session, team):
    assigned = await client.post(
        "/assignment/tasks/t1/assign-to", headers=LEADER, json={"user_id": "u2"},
    )
    forced = await client.post(
        "/assignment/tasks/t1/assign-to", headers=LEADER, json={"user_id": "u1", "force": True},
    )
    missing = await client.post(
        "/assignment/tasks/t1/assign-to", headers=LEADER, json={"user_id": "ghost"},
    )

    assert assigned.status_code == 200
    assert assigned.json()["data"]["strategy"] == "manual"
    task = await db_session.get(TaskModel, "t1")
    await db_session.refresh(task)
    assert task.assignee_id == "u2"
    assert forced.status_code == 403
    assert missing.status_code == 404


async def test_pause_resume_round_trip(client, team):
    paused = await client.post("/sla/tasks/t1/pause", headers=STAFF, json={"reason": "MEETING"})
    again = await client.post("/sla/tasks/t1/pause", headers=STAFF, json={"reason": "MEETING"})
    resumed = await client.post("/sla/tasks/t1/resume", headers=STAFF)
    not_paused = await client.post("/sla/tasks/t1/resume", headers=STAFF)
    history = await client.get("/sla/tasks/t1/pauses", headers=STAFF)
    effective = await client.get("/sla/tasks/t1/effective-deadline", headers=STAFF)

    assert paused.status_code == 200
    assert paused.json()["data"]["reason"] == "MEETING"
    assert again.status_code == 409
    assert again.json()["error_code"] == "ALREADY_PAUSED"
    assert resumed.status_code == 200
    assert not_paused.status_code == 409
    assert not_paused.json()["error_code"] == "NOT_PAUSED"
    assert len(history.json()["data"]) == 1
    assert effective.json()["data"]["is_paused"] is False


async def test_invalid_pause_reason_is_rejected(client, team):
    response = await client.post("/sla/tasks/t1/pause", headers=STAFF, json={"reason": "LUNCH"})

    assert response.status_code == 422


async def test_due_date_and_status(client, db_session, team):
    db_session.add(TaskModel(id="t2", title="New", team_id="team-1",
                             created_at=team, updated_at=team))
    await db_session.flush()

    due = await client.post("/sla/tasks/t2/due-date", headers=STAFF)
    status = await client.get("/sla/tasks/t1/status", headers=STAFF)

    assert due.json()["data"]["expected_hours"] == 24
    assert status.json()["data"]["state"] == "on_track"


async def test_cron_requires_secret(client, team, monkeypatch):
    monkeypatch.setattr(settings, "cron_secret", None)
    disabled = await client.post("/sla/cron/reminders")

    monkeypatch.setattr(settings, "cron_secret", "s3cret")
    unauthorized = await client.post("/sla/cron/reminders", headers={"Authorization": "Bearer wrong"})
    authorized = await client.post("/sla/cron/reminders", headers={"Authorization": "Bearer s3cret"})

    assert disabled.status_code == 503
    assert unauthorized.status_code == 401
    assert authorized.status_code == 200
    assert authorized.json()["data"]["checked"] == 1


async def test_cron_poll_sends_due_reminders(client, db_session, dispatcher, team, monkeypatch):
    monkeypatch.setattr(settings, "cron_secret", "s3cret")
    task = await db_session.get(TaskModel, "t1")
    task.due_at = team + timedelta(minutes=30)
    task.assignee_id = "u2"
    await db_session.flush()

    response = await client.post("/sla/cron/reminders", headers={"Authorization": "Bearer s3cret"})

    assert response.json()["data"]["reminders"] == 1
    assert [(r.task_id, r.user_id, r.kind.value) for r in dispatcher.sent] == [("t1", "u2", "REMINDER_R2")]


async def test_refresh_stats_requires_admin(client, team):
    denied = await client.post("/sla/categories/refresh-stats", headers=LEADER)
    allowed = await client.post(
        "/sla/categories/refresh-stats", headers={"X-Actor-Id": "root", "X-Actor-Role": "ADMIN"},
    )

    assert denied.status_code == 403
    assert allowed.json()["data"] == {"updated": 0, "failed": 0, "results": []}


async def test_absence_endpoint(client, db_session, team):
    response = await client.post("/sla/users/u1/absence", headers=LEADER, json={"is_absent": True})

    assert response.status_code == 200
    assert response.json()["data"]["is_absent"] is True
    assert response.json()["data"]["skipped_task_ids"] == ["busy"]


async def test_notification_and_escalation_routes(client, db_session, team):
    task = await db_session.get(TaskModel, "t1")
    task.assignee_id = "u1"
    db_session.add_all([
        NotificationModel(id="n-rem", user_id="u1", team_id="team-1", task_id="t1", kind="REMINDER_R1",
                          title="Reminder: Fix login", dedupe_key="t1:REMINDER_R1", created_at=team),
        NotificationModel(id="n-esc", user_id="lead", team_id="team-1", task_id="busy", kind="ESCALATION",
                          title="Escalation: Busy", escalation_status="PENDING",
                          dedupe_key="busy:ESCALATION", created_at=team),
    ])
    await db_session.flush()

    feed = await client.get("/sla/users/u1/notifications", headers=STAFF)
    read = await client.post("/sla/notifications/n-rem/read", headers=STAFF)
    not_mine = await client.post("/sla/notifications/n-esc/read", headers=STAFF)
    read_all = await client.post("/sla/users/lead/notifications/read-all", headers=LEADER)
    upcoming = await client.get("/sla/users/u1/upcoming-reminders", headers=STAFF)
    active = await client.get("/sla/users/lead/escalations", headers=LEADER)
    ack = await client.post("/sla/escalations/n-esc/acknowledge", headers=LEADER)
    ack_again = await client.post("/sla/escalations/n-esc/acknowledge", headers=LEADER)
    resolved = await client.post(
        "/sla/escalations/n-esc/resolve", headers=LEADER, json={"notes": "Split the task"},
    )
    stats = await client.get("/sla/escalations/stats", headers=LEADER)
    staff_stats = await client.get("/sla/escalations/stats", headers=STAFF)

    assert feed.json()["data"]["unread_count"] == 1
    assert [n["id"] for n in feed.json()["data"]["notifications"]] == ["n-rem"]
    assert read.json()["data"]["is_read"] is True
    assert not_mine.status_code == 403
    assert read_all.json()["data"] == {"user_id": "lead", "marked": 1}
    assert [r["kind"] for r in upcoming.json()["data"]] == ["REMINDER_R2", "REMINDER_R3"]
    assert [e["id"] for e in active.json()["data"]] == ["n-esc"]
    assert ack.json()["data"]["escalation_status"] == "ACKNOWLEDGED"
    assert ack_again.status_code == 409
    assert ack_again.json()["error_code"] == "INVALID_ESCALATION_STATE"
    assert resolved.json()["data"]["resolution_notes"] == "Split the task"
    assert stats.json()["data"]["resolved"] == 1
    assert staff_stats.status_code == 403


async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert "X-Correlation-ID" in response.headers
