"""
Structured Logging
==================

JSON-structured logging with correlation ID tracking.

Provides:
- Structured JSON logs (parseable by log aggregators)
- Correlation ID for request tracing
- Redaction of secrets passed through ``extra``
- Timing helper for scheduler jobs and batch operations

Usage:
    from taskflow.shared.infrastructure.logging import get_logger

    logger = get_logger(__name__)
    logger.info("Task assigned", extra={"task_id": task_id, "assignee_id": user_id})
"""

import logging
import sys
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict

from pythonjsonlogger import jsonlogger

_SENSITIVE_KEYS = ("password", "secret", "api_key", "authorization")


def _is_sensitive(key: str) -> bool:
    lowered = key.lower()
    if any(marker in lowered for marker in _SENSITIVE_KEYS):
        return True
    return "token" in lowered


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """
    Custom JSON formatter with additional fields.

    Adds:
    - timestamp in ISO format (UTC)
    - correlation_id when available
    - environment
    """

    environment = "unknown"

    def add_fields(
        self,
        log_record: Dict[str, Any],
        record: logging.LogRecord,
        message_dict: Dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        if not log_record.get("timestamp"):
            log_record["timestamp"] = datetime.now(timezone.utc).isoformat()

        if hasattr(record, "correlation_id"):
            log_record["correlation_id"] = record.correlation_id
        elif "correlation_id" in message_dict:
            log_record["correlation_id"] = message_dict["correlation_id"]

        log_record["environment"] = getattr(record, "environment", self.environment)

        for key, value in list(log_record.items()):
            if isinstance(value, str) and _is_sensitive(key):
                log_record[key] = "***REDACTED***"


def setup_logging(
    level: str = "INFO",
    environment: str = "development",
) -> None:
    """
    Configure structured JSON logging for the application.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
        environment: Environment name for log context
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(getattr(logging, level.upper()))

    formatter = CustomJsonFormatter(
        fmt="%(asctime)s %(name)s %(levelname)s %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )
    formatter.environment = environment

    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    # Silence noisy loggers
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance with the given name.

    Args:
        name: Logger name (typically __name__ of the module)
    """
    return logging.getLogger(name)


@contextmanager
def log_latency(logger: logging.Logger, operation: str, **extra_context: Any):
    """
    Context manager for measuring and logging operation latency.

    Usage:
        with log_latency(logger, "category_stats_refresh"):
            summary = await service.update_all_category_stats()
    """
    start = time.perf_counter()
    try:
        yield
    finally:
        latency_ms = (time.perf_counter() - start) * 1000
        logger.info(
            f"{operation} completed",
            extra={
                "operation": operation,
                "latency_ms": round(latency_ms, 2),
                **extra_context,
            },
        )
