"""
Database Models
===============

SQLAlchemy ORM models shared by the assignment and SLA modules.

These are the database representations of the shared domain records.
They belong in the infrastructure layer, not the domain layer.
"""

from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from sqlalchemy import (
    JSON, BigInteger, Boolean, DateTime, Float, Integer, String, Text
)
from sqlalchemy.orm import Mapped, mapped_column

from taskflow.config import Priority, Role, TaskStatus, RequestStatus
from taskflow.infrastructure.database import Base


def _new_id() -> str:
    return str(uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


class TeamModel(Base):
    """Maps to the 'teams' table."""
    __tablename__ = "teams"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    leader_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)


class UserModel(Base):
    """Maps to the 'users' table."""
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default=Role.STAFF.value)
    team_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)

    # Seniority, 1 = junior
    position_level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    # None falls back to the policy's default WIP limit
    wip_limit: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_absent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    absence_reason: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    absence_until: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    last_assigned_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)


class CategoryModel(Base):
    """Maps to the 'categories' table."""
    __tablename__ = "categories"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    team_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    parent_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    path: Mapped[str] = mapped_column(String(1024), nullable=False, default="", index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Rolling statistics maintained by the stats refresh job
    avg_completion_hours: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    median_completion_hours: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    sample_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    stats_updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class RequestModel(Base):
    """Maps to the 'requests' table."""
    __tablename__ = "requests"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    requester_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    team_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    category_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=RequestStatus.OPEN.value, index=True)
    priority: Mapped[str] = mapped_column(String(20), nullable=False, default=Priority.MEDIUM.value)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    due_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class TaskModel(Base):
    """
    Maps to the 'tasks' table.

    ``sla_paused_at`` doubles as the paused flag: non-null means an interval
    is open and its value is that interval's start.
    """
    __tablename__ = "tasks"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    request_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    parent_task_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    team_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    category_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    assignee_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default=TaskStatus.OPEN.value, index=True)
    priority: Mapped[str] = mapped_column(String(20), nullable=False, default=Priority.MEDIUM.value)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    due_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # SLA pause state
    sla_paused_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    sla_pause_reason: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    sla_total_paused_ms: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)


class SlaPauseIntervalModel(Base):
    """Maps to the 'sla_pause_intervals' table."""
    __tablename__ = "sla_pause_intervals"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    task_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    reason: Mapped[str] = mapped_column(String(30), nullable=False)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ended_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    duration_ms: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    paused_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class NotificationModel(Base):
    """
    Maps to the 'notifications' table.

    ``dedupe_key`` is unique; inserting it is how the scheduler claims a
    reminder/escalation exactly once across concurrent polls.
    """
    __tablename__ = "notifications"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    team_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    task_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    kind: Mapped[str] = mapped_column(String(30), nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False, default="")
    payload: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    read_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    delivered: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    delivered_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Escalations only: PENDING -> ACKNOWLEDGED -> RESOLVED
    escalation_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True, index=True)
    acknowledged_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    acknowledged_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    resolution_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    dedupe_key: Mapped[str] = mapped_column(String(120), unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now, index=True)


class AssignmentLogModel(Base):
    """Maps to the 'assignment_logs' table; feeds the per-day guardrail."""
    __tablename__ = "assignment_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    task_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    strategy: Mapped[str] = mapped_column(String(30), nullable=False)
    score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    assigned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now, index=True)
