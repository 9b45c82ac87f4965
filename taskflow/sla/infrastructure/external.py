"""
SLA External Service Integrations
==================================

External services for deadline and reminder processing:
- Webhook delivery of reminders and escalations
- APScheduler for the in-process reminder poll and stats refresh
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from taskflow.config import settings
from taskflow.core import ExternalServiceException
from taskflow.shared.infrastructure.logging import get_logger
from taskflow.sla.application.services import INotificationDispatcher
from taskflow.sla.domain import NotificationRecord

logger = get_logger(__name__)


class CircuitState:
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Circuit breaker for preventing cascade failures.

    States:
    - CLOSED: Normal operation, requests pass through
    - OPEN: After N failures, reject all requests for M seconds
    - HALF_OPEN: After timeout, allow one test request
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: Optional[float] = None

    @property
    def state(self) -> str:
        if self._state == CircuitState.OPEN and self._last_failure_time is not None:
            if self._clock() - self._last_failure_time >= self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
        return self._state

    def allow_request(self) -> bool:
        return self.state in (CircuitState.CLOSED, CircuitState.HALF_OPEN)

    def record_success(self) -> None:
        self._failure_count = 0
        self._state = CircuitState.CLOSED

    def record_failure(self) -> None:
        self._failure_count += 1
        self._last_failure_time = self._clock()

        if self._state == CircuitState.HALF_OPEN or self._failure_count >= self.failure_threshold:
            self._state = CircuitState.OPEN
            logger.warning(
                "Circuit breaker opened",
                extra={
                    "failure_count": self._failure_count,
                    "recovery_timeout": self.recovery_timeout,
                },
            )


class WebhookNotificationDispatcher(INotificationDispatcher):
    """
    Delivers notifications to a webhook with circuit breaker and retry logic.

    Without a configured URL the stored notification row is the delivery
    (users read it in-app), so every notification counts as delivered.
    """

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        max_retries: int = 3,
        backoff_base: float = 1.0,
        http_client: Optional[httpx.AsyncClient] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ):
        self._url = webhook_url if webhook_url is not None else settings.notification_webhook_url
        self._timeout = timeout_seconds or settings.notification_timeout_seconds
        self._max_retries = max(1, max_retries)
        self._backoff_base = backoff_base
        self._http_client = http_client
        self._circuit_breaker = circuit_breaker or CircuitBreaker(failure_threshold=5, recovery_timeout=60)

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    @staticmethod
    def build_message(record: NotificationRecord) -> Dict[str, Any]:
        return {
            "id": record.id,
            "kind": record.kind.value,
            "user_id": record.user_id,
            "team_id": record.team_id,
            "task_id": record.task_id,
            "title": record.title,
            "message": record.message,
            "payload": record.payload,
            "created_at": record.created_at.isoformat(),
        }

    async def notify(self, record: NotificationRecord) -> bool:
        """
        Post a notification to the webhook.

        Returns:
            True if delivered, False after exhausting retries

        Raises:
            ExternalServiceException: If the circuit breaker is open
        """
        if not self._url:
            logger.debug(
                "Notification webhook not configured, keeping in-app notification only",
                extra={"notification_id": record.id},
            )
            return True

        if not self._circuit_breaker.allow_request():
            raise ExternalServiceException(
                "notification-webhook",
                "Circuit breaker open",
                {"notification_id": record.id},
            )

        message = self.build_message(record)
        for attempt in range(self._max_retries):
            try:
                client = await self._get_client()
                response = await client.post(self._url, json=message)
                if response.is_success:
                    self._circuit_breaker.record_success()
                    logger.info(
                        "Notification delivered",
                        extra={
                            "notification_id": record.id,
                            "task_id": record.task_id,
                            "kind": record.kind.value,
                        },
                    )
                    return True
                logger.warning(
                    "Notification webhook returned an error status",
                    extra={"status_code": response.status_code, "attempt": attempt + 1},
                )
            except httpx.HTTPError as e:
                logger.error(
                    "Notification webhook call failed",
                    extra={
                        "error": str(e),
                        "attempt": attempt + 1,
                        "notification_id": record.id,
                    },
                )

            if attempt < self._max_retries - 1:
                await asyncio.sleep(self._backoff_base * 2 ** attempt)

        self._circuit_breaker.record_failure()
        return False

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None


class SLAScheduler:
    """
    Wrapper for APScheduler running the periodic SLA jobs.

    Each job runs with ``max_instances=1`` so a slow poll is never overlapped
    by the next tick of the same instance.
    """

    def __init__(self):
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._jobs: List[Dict[str, Any]] = []
        self._running = False

    def add_job(
        self,
        job_id: str,
        func: Callable[[], Awaitable[Any]],
        interval_seconds: int,
        name: Optional[str] = None,
    ) -> None:
        """Register an interval job; jobs with a non-positive interval are skipped."""
        if interval_seconds <= 0:
            logger.info("Scheduler job disabled", extra={"job_id": job_id})
            return
        self._jobs.append({
            "id": job_id,
            "func": func,
            "seconds": interval_seconds,
            "name": name or job_id,
        })

    async def start(self) -> None:
        if self._running:
            logger.warning("SLA scheduler already running")
            return
        if not self._jobs:
            logger.info("SLA scheduler has no jobs, not starting")
            return

        self._scheduler = AsyncIOScheduler()
        for job in self._jobs:
            self._scheduler.add_job(
                job["func"],
                "interval",
                seconds=job["seconds"],
                id=job["id"],
                name=job["name"],
                misfire_grace_time=60,
                max_instances=1,
                coalesce=True,
                replace_existing=True,
            )

        self._scheduler.start()
        self._running = True
        logger.info(
            "SLA scheduler started",
            extra={"jobs": {job["id"]: job["seconds"] for job in self._jobs}},
        )

    async def stop(self) -> None:
        """Stop the scheduler gracefully."""
        if not self._running:
            return

        if self._scheduler:
            self._scheduler.shutdown(wait=False)

        self._running = False
        logger.info("SLA scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._running
