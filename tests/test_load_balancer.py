"""
Load balancer and workload tracker service tests.
"""
from datetime import timedelta

import pytest

from taskflow.assignment.application import LoadBalancerService, WorkloadTracker
from taskflow.assignment.domain import (
    AssignmentSettings, GuardrailSettings, MatchingSettings, ScoreModifierSettings,
)
from taskflow.config import FallbackStrategy, Priority, Role, TaskStatus
from taskflow.core import Actor
from tests.conftest import NOW
from tests.fakes import InMemoryAssignmentRepository, StaticPolicy

LEADER = Actor("lead", Role.LEADER)
STAFF = Actor("staff", Role.STAFF)
ADMIN = Actor("root", Role.ADMIN)


@pytest.fixture
def repo(store):
    return InMemoryAssignmentRepository(store)


@pytest.fixture
def two_candidates(make_user, make_task, make_category):
    """A: load 2.0 with Bug Fixes experience; B: load 1.0 without."""
    make_category("c-bugs", "Bug Fixes", "eng/bug-fixes")
    make_category("c-sales", "Leads", "sales/leads")
    make_user("a", position_level=0)
    make_user("b", position_level=0)
    make_task("a-open", priority=Priority.MEDIUM, assignee_id="a")
    make_task("a-done", status=TaskStatus.DONE, assignee_id="a", category_id="c-bugs",
              completed_at=NOW - timedelta(days=3))
    make_task("b-open", priority=Priority.LOW, assignee_id="b")
    make_task("b-done", status=TaskStatus.DONE, assignee_id="b", category_id="c-sales",
              completed_at=NOW - timedelta(days=3))
    return make_task("new", category_id="c-bugs")


def _service(repo, settings=None, clock=None, **kwargs):
    policy = StaticPolicy(assignment=settings)
    return LoadBalancerService(repo, policy, clock=clock, **kwargs)


async def test_assign_picks_highest_score(repo, store, clock, two_candidates):
    service = _service(repo, clock=clock)

    result = await service.assign("new", LEADER)

    assert result.success, result.error
    decision = result.data
    assert decision.assignee_id == "a"
    assert decision.strategy == "score"
    assert decision.score == pytest.approx(2 / 3, abs=1e-6)
    assert store.tasks["new"].assignee_id == "a"
    assert store.assignments[-1][:2] == ("new", "a")


async def test_scores_are_reproducible(repo, store, clock, two_candidates):
    service = _service(repo, clock=clock)

    first = await service.assign("new", LEADER)
    store.tasks["new"].assignee_id = None
    second = await service.assign("new", LEADER)

    assert [c.to_dict() for c in first.data.candidates] == [c.to_dict() for c in second.data.candidates]


async def test_smart_balance_fallback_picks_least_loaded(repo, clock, two_candidates):
    settings = AssignmentSettings(guardrails=GuardrailSettings(min_viable_score=0.99))
    service = _service(repo, settings, clock=clock)

    result = await service.assign("new", LEADER)

    assert result.success
    assert result.data.strategy == "smart_balance"
    assert result.data.assignee_id == "b"


async def test_manual_gate_reports_no_eligible_candidate(repo, store, clock, two_candidates):
    settings = AssignmentSettings(
        guardrails=GuardrailSettings(min_viable_score=0.99),
        matching=MatchingSettings(fallback_strategy=FallbackStrategy.MANUAL_GATE),
    )
    service = _service(repo, settings, clock=clock)

    result = await service.assign("new", LEADER)

    assert not result.success
    assert result.error_code == "NO_ELIGIBLE_CANDIDATE"
    assert result.error == "No suitable candidate found, assign manually"
    assert result.details["strategy"] == "manual_gate"
    assert store.tasks["new"].assignee_id is None


async def test_never_assigns_absent_or_daily_limited_users(repo, store, clock, make_user, make_task):
    make_user("absent", is_absent=True)
    make_user("busy")
    make_user("free")
    make_task("busy-open", priority=Priority.HIGH, assignee_id="busy")
    store.assignments.extend([
        ("x1", "busy", NOW - timedelta(hours=2), "score"),
        ("x2", "busy", NOW - timedelta(hours=1), "score"),
    ])
    make_task("new")
    settings = AssignmentSettings(
        guardrails=GuardrailSettings(max_assignments_per_user_per_day=2, min_viable_score=0.99),
    )

    result = await _service(repo, settings, clock=clock).assign("new", LEADER)

    assert result.data.assignee_id == "free"
    rejected = {c.user_id: c.rejected_reason.value for c in result.data.candidates if c.is_rejected}
    assert rejected == {"absent": "absent", "busy": "daily_limit_reached"}


async def test_assignments_from_yesterday_do_not_count(repo, store, clock, make_user, make_task):
    make_user("only")
    store.assignments.append(("x", "only", NOW - timedelta(days=1), "score"))
    make_task("new")
    settings = AssignmentSettings(guardrails=GuardrailSettings(max_assignments_per_user_per_day=1))

    result = await _service(repo, settings, clock=clock).assign("new", LEADER)

    assert result.data.assignee_id == "only"


async def test_cross_team_fallback_widens_pool(repo, clock, make_user, make_task):
    make_user("home", is_absent=True)
    make_user("other", team_id="team-2")
    make_task("new")

    closed = await _service(repo, clock=clock).assign("new", LEADER)
    widened = await _service(
        repo,
        AssignmentSettings(matching=MatchingSettings(allow_cross_team_fallback=True)),
        clock=clock,
    ).assign("new", LEADER)

    assert closed.error_code == "NO_ELIGIBLE_CANDIDATE"
    assert widened.success
    assert widened.data.assignee_id == "other"


async def test_lost_race_is_retried_once(repo, clock, two_candidates):
    repo.conflicts_remaining = 1

    result = await _service(repo, clock=clock).assign("new", LEADER)

    assert result.success
    assert result.data.assignee_id == "a"


async def test_repeated_conflict_is_reported(repo, store, clock, two_candidates):
    repo.conflicts_remaining = 2

    result = await _service(repo, clock=clock).assign("new", LEADER)

    assert result.error_code == "CONCURRENCY_CONFLICT"
    assert store.tasks["new"].assignee_id is None


async def test_assign_validation_failures(repo, clock, make_task):
    make_task("closed", status=TaskStatus.DONE)
    make_task("teamless", team_id=None)
    service = _service(repo, clock=clock)

    assert (await service.assign("missing", LEADER)).error_code == "NOT_FOUND"
    assert (await service.assign("closed", LEADER)).error_code == "VALIDATION_ERROR"
    assert (await service.assign("teamless", LEADER)).error_code == "VALIDATION_ERROR"


async def test_staff_cannot_assign(repo, clock, two_candidates):
    result = await _service(repo, clock=clock).assign("new", STAFF)

    assert result.error_code == "FORBIDDEN"


async def test_suggest_rebalance(repo, clock, make_user, make_task):
    make_user("a")
    make_user("b")
    for i in range(3):
        make_task(f"a-{i}", priority=Priority.HIGH, assignee_id="a")

    result = await _service(repo, clock=clock).suggest_rebalance("team-1", LEADER)
    missing = await _service(repo, clock=clock).suggest_rebalance("nope", LEADER)

    assert result.success
    assert [(s.from_user_id, s.to_user_id) for s in result.data] == [("a", "b")]
    assert missing.error_code == "NOT_FOUND"


async def test_workload_tracker(repo, store, policy, clock, make_user, make_task):
    make_user("a", wip_limit=2)
    make_user("b")
    make_task(priority=Priority.URGENT, assignee_id="a")
    make_task(priority=Priority.LOW, assignee_id="a", created_at=NOW - timedelta(days=2))
    make_task(priority=Priority.LOW, assignee_id="b", status=TaskStatus.DONE)
    tracker = WorkloadTracker(repo, policy, clock)

    workload = (await tracker.get_workload("a", STAFF)).data
    team = (await tracker.team_workload("team-1", LEADER)).data
    wip = await tracker.check_wip_limit("a")

    assert workload.open_count == 2
    assert workload.weighted_load == pytest.approx(4.0 + 1.2)
    assert workload.is_at_limit
    assert [w.user_id for w in team] == ["a", "b"]
    assert team[1].weighted_load == 0.0
    assert wip.success
    assert wip.data.to_dict() == {
        "user_id": "a",
        "exceeded": True,
        "current": 2,
        "limit": 2,
        "available": 0,
        "utilization_percent": 100.0,
    }
    assert (await tracker.team_workload("team-1", STAFF)).error_code == "FORBIDDEN"
    assert (await tracker.get_workload("ghost", STAFF)).error_code == "NOT_FOUND"
    assert (await tracker.check_wip_limit("ghost", STAFF)).error_code == "NOT_FOUND"


async def test_paused_time_keeps_task_off_the_overdue_count(repo, policy, clock, make_user, make_task):
    user = make_user("a")
    make_task("extended", assignee_id="a", due_at=NOW - timedelta(hours=1),
              sla_total_paused_ms=5 * 3600 * 1000)
    make_task("paused", assignee_id="a", due_at=NOW - timedelta(hours=1),
              sla_paused_at=NOW - timedelta(hours=2))
    make_task("late", assignee_id="a", due_at=NOW - timedelta(hours=1))
    tracker = WorkloadTracker(repo, policy, clock)

    signals, _ = await tracker.collect_signals([user])

    assert signals["a"].overdue_open == 1


async def test_extended_deadline_does_not_trigger_burnout(repo, clock, make_user, make_task):
    make_user("a", position_level=0)
    make_task("a-open", assignee_id="a", due_at=NOW - timedelta(hours=1),
              sla_total_paused_ms=5 * 3600 * 1000)
    make_task("new")
    settings = AssignmentSettings(
        score_modifiers=ScoreModifierSettings(burnout_overdue_threshold=1),
    )

    result = await _service(repo, settings, clock=clock).assign("new", LEADER)

    assert result.success
    assert result.data.candidates[0].breakdown["burnout_penalty"] == 0.0


async def test_assign_to_named_user(repo, store, clock, two_candidates):
    result = await _service(repo, clock=clock).assign_to("new", "b", LEADER)

    assert result.success, result.error
    assert result.data.to_dict() == {
        "task_id": "new",
        "assignee_id": "b",
        "strategy": "manual",
        "score": None,
        "candidates": [],
    }
    assert store.tasks["new"].assignee_id == "b"
    assert store.assignments[-1] == ("new", "b", NOW, "manual")


async def test_assign_to_enforces_guardrails(repo, store, clock, make_user, make_task):
    make_user("full", wip_limit=1)
    make_task("full-open", assignee_id="full")
    make_task("new")
    service = _service(repo, clock=clock)

    refused = await service.assign_to("new", "full", LEADER)
    leader_force = await service.assign_to("new", "full", LEADER, force=True)
    forced = await service.assign_to("new", "full", ADMIN, force=True)

    assert refused.error_code == "GUARDRAIL_VIOLATION"
    assert refused.details["reason"] == "wip_limit_reached"
    assert leader_force.error_code == "FORBIDDEN"
    assert forced.success
    assert store.tasks["new"].assignee_id == "full"


async def test_assign_to_rejects_unavailable_users(repo, clock, make_user, make_task):
    make_user("away", is_absent=True)
    make_user("gone", is_active=False)
    make_task("new")
    service = _service(repo, clock=clock)

    absent = await service.assign_to("new", "away", ADMIN, force=True)
    inactive = await service.assign_to("new", "gone", LEADER)

    assert absent.error_code == "VALIDATION_ERROR"
    assert absent.details["reason"] == "absent"
    assert inactive.error_code == "VALIDATION_ERROR"


async def test_assign_to_scope_and_lookups(repo, store, clock, make_user, make_task):
    make_user("outsider", team_id="team-2")
    make_user("member")
    make_task("new")
    make_task("closed", status=TaskStatus.DONE)
    service = _service(repo, clock=clock)

    assert (await service.assign_to("new", "outsider", LEADER)).error_code == "FORBIDDEN"
    assert (await service.assign_to("new", "member", STAFF)).error_code == "FORBIDDEN"
    assert (await service.assign_to("missing", "member", LEADER)).error_code == "NOT_FOUND"
    assert (await service.assign_to("new", "ghost", LEADER)).error_code == "NOT_FOUND"
    assert (await service.assign_to("closed", "member", LEADER)).error_code == "VALIDATION_ERROR"
    assert (await service.assign_to("new", "outsider", ADMIN)).success
    assert store.tasks["new"].assignee_id == "outsider"


async def test_assign_to_reports_lost_race(repo, store, clock, two_candidates):
    repo.conflicts_remaining = 1

    result = await _service(repo, clock=clock).assign_to("new", "a", LEADER)

    assert result.error_code == "CONCURRENCY_CONFLICT"
    assert store.tasks["new"].assignee_id is None
