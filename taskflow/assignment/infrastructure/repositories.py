"""
Assignment Infrastructure Repositories
======================================

SQLAlchemy implementation of the assignment repository interface.

All per-candidate signals are read with one grouped query per signal, not
one query per candidate.
"""

from collections import defaultdict
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Set

from sqlalchemy import and_, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from taskflow.assignment.application.services import IAssignmentRepository
from taskflow.config import Role, TaskStatus, TERMINAL_STATUSES
from taskflow.infrastructure.database.models import (
    AssignmentLogModel, CategoryModel, TaskModel, TeamModel, UserModel
)
from taskflow.infrastructure.database.mappers import to_task, to_user
from taskflow.shared.domain import Task, UserProfile

_TERMINAL = [s.value for s in TERMINAL_STATUSES]


class SQLAlchemyAssignmentRepository(IAssignmentRepository):
    """
    SQLAlchemy implementation of the assignment repository.

    The only write is ``update_assignee``, a compare-and-set on the task's
    current assignee.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_task(self, task_id: str) -> Optional[Task]:
        # populate_existing: a retry must see rows changed by conditional updates
        stmt = (
            select(TaskModel)
            .where(TaskModel.id == task_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return to_task(model) if model else None

    async def get_user(self, user_id: str) -> Optional[UserProfile]:
        model = await self._session.get(UserModel, user_id, populate_existing=True)
        return to_user(model) if model else None

    async def team_exists(self, team_id: str) -> bool:
        stmt = select(TeamModel.id).where(TeamModel.id == team_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def list_team_members(self, team_id: str) -> List[UserProfile]:
        stmt = select(UserModel).where(UserModel.team_id == team_id).order_by(UserModel.id)
        result = await self._session.execute(stmt)
        return [to_user(m) for m in result.scalars().all()]

    async def list_users_outside_team(self, team_id: str) -> List[UserProfile]:
        stmt = (
            select(UserModel)
            .where(
                and_(
                    UserModel.team_id.is_not(None),
                    UserModel.team_id != team_id,
                    UserModel.is_active.is_(True),
                    UserModel.role != Role.ADMIN.value,
                )
            )
            .order_by(UserModel.id)
        )
        result = await self._session.execute(stmt)
        return [to_user(m) for m in result.scalars().all()]

    async def get_category_path(self, category_id: str) -> Optional[str]:
        stmt = select(CategoryModel.path).where(CategoryModel.id == category_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_open_tasks(self, user_ids: Sequence[str]) -> Dict[str, List[Task]]:
        if not user_ids:
            return {}
        stmt = select(TaskModel).where(
            and_(
                TaskModel.assignee_id.in_(list(user_ids)),
                TaskModel.status.not_in(_TERMINAL),
            )
        ).order_by(TaskModel.created_at, TaskModel.id)
        result = await self._session.execute(stmt)

        grouped: Dict[str, List[Task]] = defaultdict(list)
        for model in result.scalars().all():
            grouped[model.assignee_id].append(to_task(model))
        return dict(grouped)

    async def get_completed_category_paths(self, user_ids: Sequence[str]) -> Dict[str, Set[str]]:
        if not user_ids:
            return {}
        stmt = (
            select(TaskModel.assignee_id, CategoryModel.path)
            .join(CategoryModel, CategoryModel.id == TaskModel.category_id)
            .where(
                and_(
                    TaskModel.assignee_id.in_(list(user_ids)),
                    TaskModel.status == TaskStatus.DONE.value,
                )
            )
            .distinct()
        )
        result = await self._session.execute(stmt)

        paths: Dict[str, Set[str]] = defaultdict(set)
        for user_id, path in result.all():
            if path:
                paths[user_id].add(path)
        return dict(paths)

    async def count_assignments_since(self, user_ids: Sequence[str], since: datetime) -> Dict[str, int]:
        if not user_ids:
            return {}
        stmt = (
            select(AssignmentLogModel.user_id, func.count(AssignmentLogModel.id))
            .where(
                and_(
                    AssignmentLogModel.user_id.in_(list(user_ids)),
                    AssignmentLogModel.assigned_at >= since,
                )
            )
            .group_by(AssignmentLogModel.user_id)
        )
        result = await self._session.execute(stmt)
        return {user_id: count for user_id, count in result.all()}

    async def count_completions_since(self, user_ids: Sequence[str], since: datetime) -> Dict[str, int]:
        if not user_ids:
            return {}
        stmt = (
            select(TaskModel.assignee_id, func.count(TaskModel.id))
            .where(
                and_(
                    TaskModel.assignee_id.in_(list(user_ids)),
                    TaskModel.status == TaskStatus.DONE.value,
                    TaskModel.completed_at >= since,
                )
            )
            .group_by(TaskModel.assignee_id)
        )
        result = await self._session.execute(stmt)
        return {user_id: count for user_id, count in result.all()}

    async def update_assignee(
        self,
        task_id: str,
        expected_assignee_id: Optional[str],
        new_assignee_id: str,
        assigned_at: datetime,
        strategy: str,
        score: Optional[float],
    ) -> bool:
        if expected_assignee_id is None:
            current_matches = TaskModel.assignee_id.is_(None)
        else:
            current_matches = TaskModel.assignee_id == expected_assignee_id

        stmt = (
            update(TaskModel)
            .where(and_(TaskModel.id == task_id, current_matches))
            .values(assignee_id=new_assignee_id, updated_at=assigned_at)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        if result.rowcount != 1:
            return False

        await self._session.execute(
            update(UserModel)
            .where(UserModel.id == new_assignee_id)
            .values(last_assigned_at=assigned_at)
            .execution_options(synchronize_session=False)
        )
        self._session.add(AssignmentLogModel(
            task_id=task_id,
            user_id=new_assignee_id,
            strategy=strategy,
            score=score,
            assigned_at=assigned_at,
        ))
        await self._session.flush()
        return True
