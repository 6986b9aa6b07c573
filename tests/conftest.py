from __future__ import annotations

import os
from typing import TYPE_CHECKING

import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine  # noqa: TC002
from sqlalchemy.orm import Session, sessionmaker

from cmsync.adapters.sqlalchemy import start_mappers
from cmsync.adapters.sqlalchemy.migrations import upgrade_head
from cmsync.adapters.sqlalchemy.unit_of_work import SqlAlchemySyncUnitOfWork, shutdown, startup
from cmsync.config import SyncConfig
from cmsync.domain.merge import MergeOrchestrator
from cmsync.domain.progress import ProgressBroker
from tests.helpers.stores import FakeContentStore, StoreRegistry

os.environ.setdefault("DATABASE_URI", "sqlite+pysqlite:///:memory:")

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator


@pytest.fixture
def sqlite_engine() -> Iterator[Engine]:
    engine = create_engine("sqlite+pysqlite:///:memory:", future=True)
    start_mappers()
    upgrade_head(engine=engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def sqlite_session(sqlite_engine: Engine) -> Iterator[Session]:
    session_factory = sessionmaker(bind=sqlite_engine, future=True)
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def sqlite_unit_of_work(
    sqlite_engine: Engine,
) -> Iterator[Callable[[], SqlAlchemySyncUnitOfWork]]:
    startup(engine=sqlite_engine, force=True)

    def factory() -> SqlAlchemySyncUnitOfWork:
        return SqlAlchemySyncUnitOfWork()

    try:
        yield factory
    finally:
        shutdown()


@pytest.fixture
def stores() -> StoreRegistry:
    return StoreRegistry(
        source=FakeContentStore("staging"),
        target=FakeContentStore("prod"),
    )


@pytest.fixture
def orchestrator(
    sqlite_unit_of_work: Callable[[], SqlAlchemySyncUnitOfWork],
    stores: StoreRegistry,
) -> MergeOrchestrator:
    return MergeOrchestrator(
        unit_of_work_factory=sqlite_unit_of_work,
        store_factory=stores.get,
        progress=ProgressBroker(),
        config=SyncConfig(page_size=2),
    )
