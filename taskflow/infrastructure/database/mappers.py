"""
Row Mappers
===========

Convert ORM rows into the shared domain records.
"""

from taskflow.config import PauseReason, Priority, RequestStatus, Role, TaskStatus
from taskflow.core.timeutils import ensure_utc
from taskflow.infrastructure.database.models import (
    CategoryModel, RequestModel, SlaPauseIntervalModel, TaskModel, UserModel
)
from taskflow.shared.domain import Category, PauseInterval, RequestItem, Task, UserProfile


def to_user(model: UserModel) -> UserProfile:
    return UserProfile(
        id=model.id,
        name=model.name,
        role=Role(model.role),
        team_id=model.team_id,
        position_level=model.position_level,
        wip_limit=model.wip_limit,
        is_active=model.is_active,
        is_absent=model.is_absent,
        last_assigned_at=ensure_utc(model.last_assigned_at),
    )


def to_task(model: TaskModel) -> Task:
    return Task(
        id=model.id,
        title=model.title,
        status=TaskStatus(model.status),
        priority=Priority(model.priority),
        created_at=ensure_utc(model.created_at),
        team_id=model.team_id,
        category_id=model.category_id,
        request_id=model.request_id,
        parent_task_id=model.parent_task_id,
        assignee_id=model.assignee_id,
        due_at=ensure_utc(model.due_at),
        started_at=ensure_utc(model.started_at),
        completed_at=ensure_utc(model.completed_at),
        sla_paused_at=ensure_utc(model.sla_paused_at),
        sla_pause_reason=PauseReason(model.sla_pause_reason) if model.sla_pause_reason else None,
        sla_total_paused_ms=model.sla_total_paused_ms or 0,
    )


def to_request(model: RequestModel) -> RequestItem:
    return RequestItem(
        id=model.id,
        title=model.title,
        status=RequestStatus(model.status),
        created_at=ensure_utc(model.created_at),
        category_id=model.category_id,
        team_id=model.team_id,
        due_at=ensure_utc(model.due_at),
        completed_at=ensure_utc(model.completed_at),
    )


def to_category(model: CategoryModel) -> Category:
    return Category(
        id=model.id,
        name=model.name,
        team_id=model.team_id,
        parent_id=model.parent_id,
        path=model.path,
        is_active=model.is_active,
        avg_completion_hours=model.avg_completion_hours,
        median_completion_hours=model.median_completion_hours,
        sample_count=model.sample_count,
        stats_updated_at=ensure_utc(model.stats_updated_at),
    )


def to_pause_interval(model: SlaPauseIntervalModel) -> PauseInterval:
    return PauseInterval(
        id=model.id,
        task_id=model.task_id,
        reason=PauseReason(model.reason),
        started_at=ensure_utc(model.started_at),
        ended_at=ensure_utc(model.ended_at),
        duration_ms=model.duration_ms,
        paused_by=model.paused_by,
        notes=model.notes,
    )
