"""
SLA Infrastructure Repositories
================================

SQLAlchemy implementations of the deadline, pause and reminder repository
interfaces.

Writes that race with other instances (pause, resume, notification claim)
are conditional statements whose row count decides the winner.
"""

from collections import defaultdict
from datetime import datetime
from typing import Dict, FrozenSet, List, Optional, Set, Tuple

from sqlalchemy import and_, exists, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession, AsyncSessionTransaction
from sqlalchemy.orm import aliased

from taskflow.config import (
    EscalationStatus, NotificationKind, PauseReason, RequestStatus, Role, TaskStatus, TERMINAL_STATUSES,
)
from taskflow.core import RepositoryException
from taskflow.core.timeutils import ensure_utc
from taskflow.infrastructure.database.mappers import (
    to_category, to_pause_interval, to_request, to_task
)
from taskflow.infrastructure.database.models import (
    CategoryModel, NotificationModel, RequestModel, SlaPauseIntervalModel,
    TaskModel, TeamModel, UserModel,
)
from taskflow.shared.domain import Category, PauseInterval, RequestItem, Task
from taskflow.sla.application.services import (
    IDeadlineRepository, INotificationRepository, IPauseRepository, IReminderRepository,
)
from taskflow.sla.domain import CategoryStats, CompletionSample, NotificationRecord

_TERMINAL = [s.value for s in TERMINAL_STATUSES]

_INSERT_BY_DIALECT = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


async def _get_task(session: AsyncSession, task_id: str) -> Optional[Task]:
    stmt = (
        select(TaskModel)
        .where(TaskModel.id == task_id)
        .execution_options(populate_existing=True)
    )
    result = await session.execute(stmt)
    model = result.scalar_one_or_none()
    return to_task(model) if model else None


async def _get_sent_kinds(session: AsyncSession, task_ids: List[str]) -> Dict[str, Set[NotificationKind]]:
    if not task_ids:
        return {}
    stmt = select(NotificationModel.task_id, NotificationModel.kind).where(
        NotificationModel.task_id.in_(list(task_ids))
    )
    result = await session.execute(stmt)
    sent: Dict[str, Set[NotificationKind]] = defaultdict(set)
    for task_id, kind in result.all():
        sent[task_id].add(NotificationKind(kind))
    return dict(sent)


def _to_notification(model: NotificationModel) -> NotificationRecord:
    return NotificationRecord(
        id=model.id,
        task_id=model.task_id,
        kind=NotificationKind(model.kind),
        user_id=model.user_id,
        team_id=model.team_id,
        title=model.title,
        message=model.message,
        payload=model.payload or {},
        created_at=ensure_utc(model.created_at),
        delivered=model.delivered,
        delivered_at=ensure_utc(model.delivered_at),
        is_read=model.is_read,
        read_at=ensure_utc(model.read_at),
        escalation_status=EscalationStatus(model.escalation_status) if model.escalation_status else None,
        acknowledged_at=ensure_utc(model.acknowledged_at),
        acknowledged_by=model.acknowledged_by,
        resolved_at=ensure_utc(model.resolved_at),
        resolved_by=model.resolved_by,
        resolution_notes=model.resolution_notes,
    )


class SQLAlchemyDeadlineRepository(IDeadlineRepository):
    """SQLAlchemy implementation of deadline and category statistics storage."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_task(self, task_id: str) -> Optional[Task]:
        return await _get_task(self._session, task_id)

    async def get_request(self, request_id: str) -> Optional[RequestItem]:
        model = await self._session.get(RequestModel, request_id)
        return to_request(model) if model else None

    async def get_category(self, category_id: str) -> Optional[Category]:
        model = await self._session.get(CategoryModel, category_id)
        return to_category(model) if model else None

    async def list_categories(self) -> List[Category]:
        stmt = (
            select(CategoryModel)
            .where(CategoryModel.is_active.is_(True))
            .order_by(CategoryModel.path, CategoryModel.id)
        )
        result = await self._session.execute(stmt)
        return [to_category(m) for m in result.scalars().all()]

    async def fetch_completion_chunk(
        self,
        category_id: str,
        source: str,
        before: Optional[Tuple[datetime, str]],
        limit: int,
    ) -> List[CompletionSample]:
        if source == "requests":
            model = RequestModel
            conditions = [
                RequestModel.category_id == category_id,
                RequestModel.status == RequestStatus.DONE.value,
                RequestModel.completed_at.is_not(None),
            ]
        else:
            model = TaskModel
            child = aliased(TaskModel)
            open_child = exists().where(
                and_(child.parent_task_id == TaskModel.id, child.status.not_in(_TERMINAL))
            )
            conditions = [
                TaskModel.category_id == category_id,
                TaskModel.status == TaskStatus.DONE.value,
                TaskModel.completed_at.is_not(None),
                TaskModel.parent_task_id.is_(None),
                ~open_child,
            ]

        if before is not None:
            completed_at, last_id = before
            conditions.append(or_(
                model.completed_at < completed_at,
                and_(model.completed_at == completed_at, model.id < last_id),
            ))

        stmt = (
            select(model.id, model.created_at, model.completed_at)
            .where(and_(*conditions))
            .order_by(model.completed_at.desc(), model.id.desc())
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return [
            CompletionSample(id=row_id, created_at=ensure_utc(created), completed_at=ensure_utc(done))
            for row_id, created, done in result.all()
        ]

    def savepoint(self) -> AsyncSessionTransaction:
        return self._session.begin_nested()

    async def save_category_stats(
        self, category_id: str, stats: CategoryStats, updated_at: datetime
    ) -> None:
        stmt = (
            update(CategoryModel)
            .where(CategoryModel.id == category_id)
            .values(
                avg_completion_hours=stats.avg_hours,
                median_completion_hours=stats.median_hours,
                sample_count=stats.sample_count,
                stats_updated_at=updated_at,
            )
            .execution_options(synchronize_session=False)
        )
        await self._session.execute(stmt)

    async def set_task_due_date(self, task_id: str, due_at: datetime) -> None:
        await self._session.execute(
            update(TaskModel)
            .where(TaskModel.id == task_id)
            .values(due_at=due_at)
            .execution_options(synchronize_session=False)
        )

    async def set_request_due_date(self, request_id: str, due_at: datetime) -> None:
        await self._session.execute(
            update(RequestModel)
            .where(RequestModel.id == request_id)
            .values(due_at=due_at)
            .execution_options(synchronize_session=False)
        )

    async def list_subtask_statuses(self, parent_task_id: str) -> List[TaskStatus]:
        stmt = select(TaskModel.status).where(TaskModel.parent_task_id == parent_task_id)
        result = await self._session.execute(stmt)
        return [TaskStatus(s) for s in result.scalars().all()]


class SQLAlchemyPauseRepository(IPauseRepository):
    """SQLAlchemy implementation of SLA pause storage."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_task(self, task_id: str) -> Optional[Task]:
        return await _get_task(self._session, task_id)

    async def mark_paused(self, task_id: str, paused_at: datetime, reason: PauseReason) -> bool:
        stmt = (
            update(TaskModel)
            .where(
                and_(
                    TaskModel.id == task_id,
                    TaskModel.sla_paused_at.is_(None),
                    TaskModel.status.not_in(_TERMINAL),
                )
            )
            .values(sla_paused_at=paused_at, sla_pause_reason=reason.value, updated_at=paused_at)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def mark_resumed(self, task_id: str, paused_at: datetime, duration_ms: int) -> bool:
        stmt = (
            update(TaskModel)
            .where(and_(TaskModel.id == task_id, TaskModel.sla_paused_at == paused_at))
            .values(
                sla_paused_at=None,
                sla_pause_reason=None,
                sla_total_paused_ms=TaskModel.sla_total_paused_ms + duration_ms,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def open_interval(self, interval: PauseInterval) -> None:
        self._session.add(SlaPauseIntervalModel(
            id=interval.id,
            task_id=interval.task_id,
            reason=interval.reason.value,
            started_at=interval.started_at,
            paused_by=interval.paused_by,
            notes=interval.notes,
        ))
        await self._session.flush()

    async def close_interval(self, task_id: str, ended_at: datetime, duration_ms: int) -> None:
        result = await self._session.execute(
            update(SlaPauseIntervalModel)
            .where(
                and_(
                    SlaPauseIntervalModel.task_id == task_id,
                    SlaPauseIntervalModel.ended_at.is_(None),
                )
            )
            .values(ended_at=ended_at, duration_ms=duration_ms)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount > 1:
            raise RepositoryException(
                "More than one open pause interval", {"task_id": task_id, "rows": result.rowcount}
            )

    async def list_intervals(self, task_id: str) -> List[PauseInterval]:
        stmt = (
            select(SlaPauseIntervalModel)
            .where(SlaPauseIntervalModel.task_id == task_id)
            .order_by(SlaPauseIntervalModel.started_at, SlaPauseIntervalModel.id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return [to_pause_interval(m) for m in result.scalars().all()]

    async def list_open_tasks_for_user(self, user_id: str) -> List[Task]:
        stmt = (
            select(TaskModel)
            .where(and_(TaskModel.assignee_id == user_id, TaskModel.status.not_in(_TERMINAL)))
            .order_by(TaskModel.id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return [to_task(m) for m in result.scalars().all()]

    async def set_user_absence(self, user_id: str, is_absent: bool, reason: Optional[str]) -> bool:
        stmt = (
            update(UserModel)
            .where(UserModel.id == user_id)
            .values(is_absent=is_absent, absence_reason=reason if is_absent else None)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1


class SQLAlchemyReminderRepository(IReminderRepository):
    """SQLAlchemy implementation of reminder and escalation storage."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_task(self, task_id: str) -> Optional[Task]:
        return await _get_task(self._session, task_id)

    async def fetch_active_tasks_chunk(self, after_id: Optional[str], limit: int) -> List[Task]:
        conditions = [
            TaskModel.status.not_in(_TERMINAL),
            TaskModel.sla_paused_at.is_(None),
            TaskModel.due_at.is_not(None),
        ]
        if after_id is not None:
            conditions.append(TaskModel.id > after_id)
        stmt = select(TaskModel).where(and_(*conditions)).order_by(TaskModel.id).limit(limit)
        result = await self._session.execute(stmt)
        return [to_task(m) for m in result.scalars().all()]

    async def get_sent_kinds(self, task_ids: List[str]) -> Dict[str, Set[NotificationKind]]:
        return await _get_sent_kinds(self._session, task_ids)

    async def claim_notification(self, record: NotificationRecord) -> bool:
        dialect = self._session.get_bind().dialect.name
        insert = _INSERT_BY_DIALECT.get(dialect)
        if insert is None:
            raise RepositoryException(f"Unsupported database dialect: {dialect}")

        stmt = insert(NotificationModel).values(
            id=record.id,
            user_id=record.user_id,
            team_id=record.team_id,
            task_id=record.task_id,
            kind=record.kind.value,
            title=record.title,
            message=record.message,
            payload=record.payload,
            is_read=False,
            delivered=False,
            escalation_status=record.escalation_status.value if record.escalation_status else None,
            dedupe_key=record.dedupe_key,
            created_at=record.created_at,
        ).on_conflict_do_nothing(index_elements=["dedupe_key"])
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def mark_delivered(self, notification_id: str, delivered_at: datetime) -> None:
        await self._session.execute(
            update(NotificationModel)
            .where(NotificationModel.id == notification_id)
            .values(delivered=True, delivered_at=delivered_at)
            .execution_options(synchronize_session=False)
        )

    async def list_undelivered(self, since: datetime) -> List[NotificationRecord]:
        stmt = (
            select(NotificationModel)
            .where(
                and_(
                    NotificationModel.delivered.is_(False),
                    NotificationModel.user_id.is_not(None),
                    NotificationModel.created_at >= since,
                )
            )
            .order_by(NotificationModel.created_at, NotificationModel.id)
        )
        result = await self._session.execute(stmt)
        return [_to_notification(m) for m in result.scalars().all()]

    async def get_team_leader(self, team_id: str) -> Optional[str]:
        stmt = select(TeamModel.leader_id).where(TeamModel.id == team_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_first_admin(self) -> Optional[str]:
        stmt = (
            select(UserModel.id)
            .where(and_(UserModel.role == Role.ADMIN.value, UserModel.is_active.is_(True)))
            .order_by(UserModel.created_at, UserModel.id)
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()


class SQLAlchemyNotificationRepository(INotificationRepository):
    """SQLAlchemy implementation of the notification inbox and escalation lifecycle."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def user_exists(self, user_id: str) -> bool:
        stmt = select(exists().where(UserModel.id == user_id))
        return bool(await self._session.scalar(stmt))

    async def get_notification(self, notification_id: str) -> Optional[NotificationRecord]:
        stmt = (
            select(NotificationModel)
            .where(NotificationModel.id == notification_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return _to_notification(model) if model else None

    async def list_notifications(
        self, user_id: str, unread_only: bool, limit: int
    ) -> List[NotificationRecord]:
        conditions = [NotificationModel.user_id == user_id]
        if unread_only:
            conditions.append(NotificationModel.is_read.is_(False))
        stmt = (
            select(NotificationModel)
            .where(and_(*conditions))
            .order_by(NotificationModel.created_at.desc(), NotificationModel.id)
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return [_to_notification(m) for m in result.scalars().all()]

    async def count_unread(self, user_id: str) -> int:
        stmt = select(func.count(NotificationModel.id)).where(
            and_(NotificationModel.user_id == user_id, NotificationModel.is_read.is_(False))
        )
        return int(await self._session.scalar(stmt) or 0)

    async def mark_read(self, notification_id: str, read_at: datetime) -> bool:
        stmt = (
            update(NotificationModel)
            .where(and_(NotificationModel.id == notification_id, NotificationModel.is_read.is_(False)))
            .values(is_read=True, read_at=read_at)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def mark_all_read(self, user_id: str, read_at: datetime) -> int:
        stmt = (
            update(NotificationModel)
            .where(and_(NotificationModel.user_id == user_id, NotificationModel.is_read.is_(False)))
            .values(is_read=True, read_at=read_at)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount

    async def transition_escalation(
        self,
        notification_id: str,
        from_statuses: FrozenSet[EscalationStatus],
        to_status: EscalationStatus,
        at: datetime,
        by: str,
        notes: Optional[str] = None,
    ) -> bool:
        values = {"escalation_status": to_status.value}
        if to_status == EscalationStatus.ACKNOWLEDGED:
            values.update(acknowledged_at=at, acknowledged_by=by)
        elif to_status == EscalationStatus.RESOLVED:
            values.update(resolved_at=at, resolved_by=by, resolution_notes=notes)
        stmt = (
            update(NotificationModel)
            .where(
                and_(
                    NotificationModel.id == notification_id,
                    NotificationModel.kind == NotificationKind.ESCALATION.value,
                    NotificationModel.escalation_status.in_([s.value for s in from_statuses]),
                )
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def list_escalations(
        self, user_id: str, statuses: FrozenSet[EscalationStatus]
    ) -> List[NotificationRecord]:
        stmt = (
            select(NotificationModel)
            .where(
                and_(
                    NotificationModel.user_id == user_id,
                    NotificationModel.kind == NotificationKind.ESCALATION.value,
                    NotificationModel.escalation_status.in_([s.value for s in statuses]),
                )
            )
            .order_by(NotificationModel.created_at.desc(), NotificationModel.id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return [_to_notification(m) for m in result.scalars().all()]

    async def count_escalations_by_status(
        self, user_id: Optional[str] = None
    ) -> Dict[EscalationStatus, int]:
        conditions = [
            NotificationModel.kind == NotificationKind.ESCALATION.value,
            NotificationModel.escalation_status.is_not(None),
        ]
        if user_id is not None:
            conditions.append(NotificationModel.user_id == user_id)
        stmt = (
            select(NotificationModel.escalation_status, func.count(NotificationModel.id))
            .where(and_(*conditions))
            .group_by(NotificationModel.escalation_status)
        )
        result = await self._session.execute(stmt)
        return {EscalationStatus(status): count for status, count in result.all()}

    async def list_open_tasks_for_user(self, user_id: str) -> List[Task]:
        stmt = (
            select(TaskModel)
            .where(and_(TaskModel.assignee_id == user_id, TaskModel.status.not_in(_TERMINAL)))
            .order_by(TaskModel.id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return [to_task(m) for m in result.scalars().all()]

    async def get_sent_kinds(self, task_ids: List[str]) -> Dict[str, Set[NotificationKind]]:
        return await _get_sent_kinds(self._session, task_ids)
