from __future__ import annotations

from pathlib import Path  # noqa: TC003
from typing import TYPE_CHECKING

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from leadsync.adapters.sqlalchemy import create_all_tables, start_mappers
from leadsync.adapters.sqlalchemy.unit_of_work import SqlAlchemySyncUnitOfWork
from leadsync.domain.tag_directory import TagDirectory, default_stage_tags
from tests.helpers.fakes import FakeSleep

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

    from sqlalchemy.ext.asyncio import AsyncEngine


@pytest_asyncio.fixture
async def sqlite_engine(tmp_path: Path) -> AsyncIterator[AsyncEngine]:
    # File backed so concurrent sessions get their own connections.
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'leadsync.db'}")
    start_mappers()
    await create_all_tables(engine)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def unit_of_work_factory(
    sqlite_engine: AsyncEngine,
) -> Callable[[], SqlAlchemySyncUnitOfWork]:
    session_factory = async_sessionmaker(sqlite_engine, expire_on_commit=False)

    def factory() -> SqlAlchemySyncUnitOfWork:
        return SqlAlchemySyncUnitOfWork(session_factory)

    return factory


@pytest_asyncio.fixture
async def seeded_unit_of_work_factory(
    unit_of_work_factory: Callable[[], SqlAlchemySyncUnitOfWork],
) -> Callable[[], SqlAlchemySyncUnitOfWork]:
    await TagDirectory(unit_of_work_factory).seed(default_stage_tags())
    return unit_of_work_factory


@pytest.fixture
def fake_sleep() -> FakeSleep:
    return FakeSleep()
