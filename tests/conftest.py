"""
Shared test fixtures.

Service tests run against the in-memory repositories in ``tests.fakes``;
repository and API tests use an in-memory SQLite database.
"""
import itertools
from datetime import datetime, timezone
from typing import Optional

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from taskflow.config import Priority, Role, TaskStatus
from taskflow.infrastructure.database import Base, enable_sqlite_savepoints
from taskflow.infrastructure.database import models  # noqa: F401
from taskflow.shared.domain import Category, Task, UserProfile
from tests.fakes import FakeClock, InMemoryStore, StaticPolicy

NOW = datetime(2024, 1, 15, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(NOW)


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def policy() -> StaticPolicy:
    return StaticPolicy()


@pytest.fixture
def make_user(store: InMemoryStore):
    """Factory fixture for team members."""
    def _make_user(
        user_id: str,
        team_id: Optional[str] = "team-1",
        role: Role = Role.STAFF,
        **kwargs,
    ) -> UserProfile:
        user = UserProfile(
            id=user_id,
            name=kwargs.pop("name", user_id.title()),
            role=role,
            team_id=team_id,
            **kwargs,
        )
        store.users[user_id] = user
        if team_id is not None:
            store.team_leaders.setdefault(team_id, None)
        return user

    return _make_user


@pytest.fixture
def make_category(store: InMemoryStore):
    def _make_category(category_id: str, name: str, path: str, **kwargs) -> Category:
        category = Category(id=category_id, name=name, path=path, **kwargs)
        store.categories[category_id] = category
        return category

    return _make_category


@pytest.fixture
def make_task(store: InMemoryStore):
    """Factory fixture for tasks; ids are sequential unless given."""
    counter = itertools.count(1)

    def _make_task(
        task_id: Optional[str] = None,
        priority: Priority = Priority.MEDIUM,
        status: TaskStatus = TaskStatus.OPEN,
        created_at: datetime = NOW,
        team_id: Optional[str] = "team-1",
        **kwargs,
    ) -> Task:
        task_id = task_id or f"task-{next(counter):03d}"
        task = Task(
            id=task_id,
            title=kwargs.pop("title", f"Task {task_id}"),
            status=status,
            priority=priority,
            created_at=created_at,
            team_id=team_id,
            **kwargs,
        )
        store.tasks[task_id] = task
        return task

    return _make_task


@pytest.fixture
async def db_session():
    """AsyncSession over a fresh in-memory SQLite database."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
    enable_sqlite_savepoints(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_maker() as session:
        yield session
    await engine.dispose()
