"""
Webhook dispatcher, circuit breaker and scheduler tests.
"""
import json

import httpx
import pytest

from taskflow.config import NotificationKind
from taskflow.core import ExternalServiceException
from taskflow.sla.domain import NotificationRecord
from taskflow.sla.infrastructure import (
    CircuitBreaker, CircuitState, SLAScheduler, WebhookNotificationDispatcher,
)
from tests.conftest import NOW

WEBHOOK_URL = "https://hooks.example.com/taskflow"


class Ticker:
    def __init__(self):
        self.value = 0.0

    def __call__(self) -> float:
        return self.value


@pytest.fixture
def record():
    return NotificationRecord(
        id="n-1",
        task_id="t1",
        kind=NotificationKind.REMINDER_R2,
        user_id="u1",
        team_id="team-1",
        title="Reminder: Fix login",
        message="Task 'Fix login' is due in 45 minutes.",
        payload={"remaining_minutes": 45},
        created_at=NOW,
    )


def _dispatcher(handler, breaker=None, max_retries=3):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return WebhookNotificationDispatcher(
        webhook_url=WEBHOOK_URL,
        max_retries=max_retries,
        backoff_base=0,
        http_client=client,
        circuit_breaker=breaker,
    )


def test_circuit_breaker_opens_and_recovers():
    ticker = Ticker()
    breaker = CircuitBreaker(failure_threshold=2, recovery_timeout=30, clock=ticker)

    breaker.record_failure()
    assert breaker.state == CircuitState.CLOSED
    breaker.record_failure()
    assert breaker.state == CircuitState.OPEN
    assert not breaker.allow_request()

    ticker.value = 30
    assert breaker.state == CircuitState.HALF_OPEN
    breaker.record_failure()
    assert breaker.state == CircuitState.OPEN

    ticker.value = 60
    assert breaker.allow_request()
    breaker.record_success()
    assert breaker.state == CircuitState.CLOSED


async def test_webhook_delivers_message(record):
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(204)

    dispatcher = _dispatcher(handler)

    assert await dispatcher.notify(record) is True
    [request] = requests
    body = json.loads(request.content)
    assert str(request.url) == WEBHOOK_URL
    assert body["kind"] == "REMINDER_R2"
    assert body["user_id"] == "u1"
    assert body["created_at"] == NOW.isoformat()
    await dispatcher.close()


async def test_webhook_retries_then_gives_up(record):
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(502)

    breaker = CircuitBreaker(failure_threshold=1)
    dispatcher = _dispatcher(handler, breaker=breaker)

    assert await dispatcher.notify(record) is False
    assert len(calls) == 3
    assert breaker.state == CircuitState.OPEN
    with pytest.raises(ExternalServiceException):
        await dispatcher.notify(record)


async def test_webhook_recovers_after_transport_error(record):
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        if len(attempts) == 1:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200)

    assert await _dispatcher(handler).notify(record) is True
    assert len(attempts) == 2


async def test_without_webhook_in_app_notification_counts_as_delivered(record):
    dispatcher = WebhookNotificationDispatcher(webhook_url="")

    assert await dispatcher.notify(record) is True


async def test_scheduler_skips_disabled_jobs():
    async def job():
        return None

    scheduler = SLAScheduler()
    scheduler.add_job("reminder_poll", job, 0)
    await scheduler.start()
    assert not scheduler.is_running

    scheduler.add_job("category_stats", job, 3600, "Category Stats Refresh")
    await scheduler.start()
    assert scheduler.is_running
    await scheduler.stop()
    assert not scheduler.is_running
