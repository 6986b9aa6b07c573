from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from cmsync import app
from cmsync.config import SyncConfig
from cmsync.domain.errors import InvalidStateTransition
from cmsync.domain.model import CompareMode, Direction, MergeRequestStatus, ProgressStatus
from tests.helpers.content import AUTHOR, author
from tests.helpers.stores import FakeSnapshotBackend
from tests.helpers.workflow import advance_to_collections, install_blog

if TYPE_CHECKING:
    from collections.abc import Callable

    from cmsync.adapters.sqlalchemy.unit_of_work import SqlAlchemySyncUnitOfWork
    from cmsync.domain.merge import MergeOrchestrator
    from cmsync.domain.progress import SyncProgressUpdate
    from tests.helpers.stores import StoreRegistry


@pytest.fixture
def wired(
    sqlite_unit_of_work: Callable[[], SqlAlchemySyncUnitOfWork],
    stores: StoreRegistry,
) -> MergeOrchestrator:
    backend = FakeSnapshotBackend(stores.target)
    install_blog(stores)
    stores.source.add_entry(AUTHOR, author("auth-1", "Ada", id=1))
    return app.build_orchestrator(
        unit_of_work_factory=sqlite_unit_of_work,
        store_factory=stores.get,
        snapshot_backend_factory=lambda _instance: backend,
        config=SyncConfig(page_size=5, snapshot_keep=2, progress_buffer=16),
    )


def test_build_orchestrator_uses_injected_collaborators(
    wired: MergeOrchestrator, stores: StoreRegistry
) -> None:
    assert wired.store_factory("prod") is stores.target
    assert wired.snapshots is not None
    assert wired.snapshots.keep == 2
    assert wired.fingerprint_cache is not None
    assert wired.config.page_size == 5


def test_merge_workflow_through_entry_points(
    wired: MergeOrchestrator, stores: StoreRegistry
) -> None:
    merge_request = wired.create_merge_request("release", "staging", "prod")
    assert merge_request.id is not None

    assert app.check_schema(merge_request.id, orchestrator=wired).is_compatible
    assert app.compare(merge_request.id, CompareMode.CACHE, orchestrator=wired) is None
    report = app.compare(merge_request.id, orchestrator=wired)
    assert report is not None
    wired.selections.bulk_set(merge_request.id, "authors", Direction.TO_CREATE, True)
    advance_to_collections(wired, merge_request.id)
    received: list[SyncProgressUpdate] = []

    finished = app.complete_merge(
        merge_request.id, on_progress=received.append, orchestrator=wired
    )

    assert finished.status is MergeRequestStatus.COMPLETED
    assert stores.target.find(AUTHOR, name="Ada") is not None
    assert received[0].status is ProgressStatus.START
    assert received[-1].status is ProgressStatus.COMPLETED
    assert wired.progress.subscriber_count(merge_request.id) == 0

    (snapshot,) = app.list_snapshots(merge_request.id, orchestrator=wired)
    restored = app.restore_snapshot(merge_request.id, confirm=True, orchestrator=wired)
    assert restored.schema_name == snapshot.schema_name
    assert stores.target.find(AUTHOR, name="Ada") is None


def test_refused_merge_still_releases_the_subscription(wired: MergeOrchestrator) -> None:
    merge_request = wired.create_merge_request("release", "staging", "prod")
    assert merge_request.id is not None
    received: list[SyncProgressUpdate] = []

    with pytest.raises(InvalidStateTransition):
        app.complete_merge(merge_request.id, on_progress=received.append, orchestrator=wired)

    assert received == []
    assert wired.progress.subscriber_count(merge_request.id) == 0


def test_take_snapshot_entry_point(wired: MergeOrchestrator) -> None:
    merge_request = wired.create_merge_request("release", "staging", "prod")
    assert merge_request.id is not None

    snapshot = app.take_snapshot(merge_request.id, orchestrator=wired)

    assert snapshot.target_instance == "prod"
    assert snapshot.schema_name.startswith(f"snapshot_mr_{merge_request.id}_")
