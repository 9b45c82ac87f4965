"""
Configuration Module
====================

Application settings and configuration management using Pydantic.

Runtime settings (database, scheduler, webhooks) come from the environment.
Business policy (assignment guardrails, deadline defaults, reminder offsets)
lives in the YAML policy file, see ``taskflow.infrastructure.policy``.
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="taskflow", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/taskflow",
        description="Async SQLAlchemy connection URL"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== Policy ==========
    policy_config_path: Path = Field(
        default=Path("taskflow_policy.yaml"),
        description="Path to the assignment/deadline/reminder policy YAML file"
    )

    # ========== Scheduler ==========
    reminder_poll_interval: int = Field(
        default=300,
        description="Seconds between reminder polls (0 disables the in-process poller)",
        ge=0
    )
    stats_refresh_interval: int = Field(
        default=21600,
        description="Seconds between category statistics refreshes (0 disables)",
        ge=0
    )
    cron_secret: Optional[str] = Field(
        default=None,
        description="Shared bearer secret for cron-triggered endpoints"
    )

    # ========== Notifications ==========
    notification_webhook_url: Optional[str] = Field(
        default=None,
        description="Webhook receiving reminder/escalation notifications"
    )
    notification_timeout_seconds: float = Field(
        default=5.0,
        description="Timeout for webhook calls",
        ge=0.1,
        le=30
    )

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:8080"],
        description="Allowed CORS origins"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "staging", "production"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

class Role(str, Enum):
    """User roles."""
    STAFF = "STAFF"
    LEADER = "LEADER"
    ADMIN = "ADMIN"


class TaskStatus(str, Enum):
    """Task lifecycle statuses."""
    OPEN = "OPEN"
    IN_PROGRESS = "IN_PROGRESS"
    IN_REVIEW = "IN_REVIEW"
    DONE = "DONE"
    REJECTED = "REJECTED"


class RequestStatus(str, Enum):
    """Request lifecycle statuses."""
    OPEN = "OPEN"
    IN_PROGRESS = "IN_PROGRESS"
    IN_REVIEW = "IN_REVIEW"
    DONE = "DONE"
    REJECTED = "REJECTED"


class Priority(str, Enum):
    """Task priority levels."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


class MatchingMode(str, Enum):
    """How strictly a candidate's category experience must match the task."""
    STRICT = "strict"
    BALANCED = "balanced"
    FLEXIBLE = "flexible"


class FallbackStrategy(str, Enum):
    """Policy applied when no candidate clears the minimum assignment score."""
    SMART_BALANCE = "smart_balance"
    ROUND_ROBIN = "round_robin"
    MANUAL_GATE = "manual_gate"
    RANDOM_SPREAD = "random_spread"


class PauseReason(str, Enum):
    """Reasons for suspending a task's SLA clock."""
    MEETING = "MEETING"
    CUSTOMER_VISIT = "CUSTOMER_VISIT"
    CLARIFICATION = "CLARIFICATION"
    ABSENCE = "ABSENCE"
    MANUAL = "MANUAL"


class NotificationKind(str, Enum):
    """Scheduler-emitted notification kinds."""
    REMINDER_R1 = "REMINDER_R1"
    REMINDER_R2 = "REMINDER_R2"
    REMINDER_R3 = "REMINDER_R3"
    ESCALATION = "ESCALATION"


class EscalationStatus(str, Enum):
    """Lifecycle of an escalation notification."""
    PENDING = "PENDING"
    ACKNOWLEDGED = "ACKNOWLEDGED"
    RESOLVED = "RESOLVED"


class SLAState(str, Enum):
    """SLA status states."""
    ON_TRACK = "on_track"
    AT_RISK = "at_risk"
    BREACHED = "breached"
    ESCALATED = "escalated"
    PAUSED = "paused"
    MET = "met"


# ========== Lists for validation ==========

TERMINAL_STATUSES = frozenset({TaskStatus.DONE, TaskStatus.REJECTED})

# Base workload weight per priority; strictly increasing with rank.
PRIORITY_WEIGHTS = {
    Priority.LOW: 1.0,
    Priority.MEDIUM: 2.0,
    Priority.HIGH: 3.0,
    Priority.URGENT: 4.0,
}

ACTIVE_ESCALATION_STATUSES = frozenset({EscalationStatus.PENDING, EscalationStatus.ACKNOWLEDGED})

REMINDER_KINDS = [
    NotificationKind.REMINDER_R1,
    NotificationKind.REMINDER_R2,
    NotificationKind.REMINDER_R3,
]
VALID_ROLES = [Role.STAFF, Role.LEADER, Role.ADMIN]
VALID_PRIORITIES = [Priority.LOW, Priority.MEDIUM, Priority.HIGH, Priority.URGENT]
VALID_PAUSE_REASONS = [
    PauseReason.MEETING, PauseReason.CUSTOMER_VISIT,
    PauseReason.CLARIFICATION, PauseReason.ABSENCE, PauseReason.MANUAL
]
