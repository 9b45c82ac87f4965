"""
SLA Infrastructure Layer
========================

Database repositories, webhook delivery and the background scheduler.
"""

from taskflow.sla.infrastructure.repositories import (
    SQLAlchemyDeadlineRepository,
    SQLAlchemyNotificationRepository,
    SQLAlchemyPauseRepository,
    SQLAlchemyReminderRepository,
)
from taskflow.sla.infrastructure.external import (
    CircuitBreaker,
    CircuitState,
    SLAScheduler,
    WebhookNotificationDispatcher,
)

__all__ = [
    "SQLAlchemyDeadlineRepository",
    "SQLAlchemyNotificationRepository",
    "SQLAlchemyPauseRepository",
    "SQLAlchemyReminderRepository",
    "CircuitBreaker",
    "CircuitState",
    "SLAScheduler",
    "WebhookNotificationDispatcher",
]
