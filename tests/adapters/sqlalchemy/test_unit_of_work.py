from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from sqlalchemy import create_engine

from cmsync.adapters.sqlalchemy.unit_of_work import (
    SqlAlchemySyncUnitOfWork,
    StartupError,
    configured_engine,
    is_started,
    shutdown,
    startup,
)
from cmsync.domain.model import MergeRequest, MergeRequestStatus, utcnow

if TYPE_CHECKING:
    from collections.abc import Iterator

    from sqlalchemy.engine import Engine


@pytest.fixture(autouse=True)
def reset_unit_of_work_state() -> Iterator[None]:
    shutdown()
    yield
    shutdown()


def _merge_request(name: str = "Release 42") -> MergeRequest:
    now = utcnow()
    return MergeRequest(
        name=name,
        source_instance="staging",
        target_instance="prod",
        created_at=now,
        updated_at=now,
    )


def test_sqlalchemy_unit_of_work_requires_startup() -> None:
    with pytest.raises(StartupError):
        SqlAlchemySyncUnitOfWork()


def test_startup_requires_force_for_reconfiguration() -> None:
    engine_a = create_engine("sqlite+pysqlite:///:memory:", future=True)
    engine_b = create_engine("sqlite+pysqlite:///:memory:", future=True)

    startup(engine=engine_a, force=True)

    with pytest.raises(StartupError):
        startup(engine=engine_b)

    startup(engine=engine_b, force=True)
    assert configured_engine() is engine_b
    assert is_started()


def test_shutdown_resets_state(sqlite_engine: Engine) -> None:
    startup(engine=sqlite_engine, force=True)

    shutdown()

    assert configured_engine() is None
    assert not is_started()


def test_repositories_unavailable_outside_context(sqlite_engine: Engine) -> None:
    startup(engine=sqlite_engine, force=True)
    uow = SqlAlchemySyncUnitOfWork()

    with pytest.raises(StartupError):
        _ = uow.repositories


def test_unit_of_work_persists_merge_requests(sqlite_engine: Engine) -> None:
    startup(engine=sqlite_engine, force=True)

    with SqlAlchemySyncUnitOfWork() as uow:
        merge_request = _merge_request()
        uow.repositories.merge_requests.add(merge_request)
        uow.commit()
        merge_request_id = merge_request.id

    assert merge_request_id is not None
    with SqlAlchemySyncUnitOfWork() as uow:
        stored = uow.repositories.merge_requests.get(merge_request_id)
        assert stored is not None
        assert stored.name == "Release 42"
        assert stored.status is MergeRequestStatus.CREATED
        assert stored.created_at is not None
        assert stored.created_at.tzinfo is not None


def test_unit_of_work_rolls_back_on_error(sqlite_engine: Engine) -> None:
    startup(engine=sqlite_engine, force=True)

    with pytest.raises(RuntimeError), SqlAlchemySyncUnitOfWork() as uow:
        uow.repositories.merge_requests.add(_merge_request("Discarded"))
        raise RuntimeError("boom")

    with SqlAlchemySyncUnitOfWork() as uow:
        assert uow.repositories.merge_requests.list_all() == []
