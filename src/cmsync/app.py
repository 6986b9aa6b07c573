"""Application orchestration entry points."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from logging import getLogger
from typing import TYPE_CHECKING

from cmsync.adapters.content_store import ContentStoreClient
from cmsync.adapters.sqlalchemy.snapshot import snapshot_backend_for
from cmsync.adapters.sqlalchemy.unit_of_work import SqlAlchemySyncUnitOfWork, is_started, startup
from cmsync.config import get_instance_config, get_sync_config
from cmsync.domain.fingerprint import FingerprintCache
from cmsync.domain.merge import MergeOrchestrator, SnapshotManager
from cmsync.domain.model import CompareMode
from cmsync.domain.ports.unit_of_work import SyncUnitOfWork
from cmsync.domain.progress import ProgressBroker

if TYPE_CHECKING:
    from cmsync.config import SyncConfig
    from cmsync.domain.comparison import SchemaCompatibility
    from cmsync.domain.model import ComparisonReport, MergeRequest, Snapshot
    from cmsync.domain.ports import ContentStore, SnapshotBackendFactory
    from cmsync.domain.progress import SyncProgressUpdate

UnitOfWorkFactory = Callable[[], SyncUnitOfWork]
ProgressCallback = Callable[["SyncProgressUpdate"], None]


log = getLogger(__name__)


def content_store_for(instance_name: str) -> ContentStore:
    """Open an HTTP client for the instance configured under ``instance_name``."""

    return ContentStoreClient(get_instance_config(instance_name))


def build_orchestrator(
    *,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
    store_factory: Callable[[str], ContentStore] | None = None,
    snapshot_backend_factory: SnapshotBackendFactory | None = None,
    progress: ProgressBroker | None = None,
    config: SyncConfig | None = None,
) -> MergeOrchestrator:
    """Wire the merge workflow to the configured adapters.

    Without an explicit ``unit_of_work_factory`` the SQLAlchemy adapter is started on the
    configured ``DATABASE_URI`` (once per process).
    """

    if unit_of_work_factory is None and not is_started():
        startup()
    effective_uow = unit_of_work_factory or SqlAlchemySyncUnitOfWork
    effective_config = config or get_sync_config()
    return MergeOrchestrator(
        unit_of_work_factory=effective_uow,
        store_factory=store_factory or content_store_for,
        progress=progress or ProgressBroker(effective_config.progress_buffer),
        config=effective_config,
        snapshots=SnapshotManager(
            effective_uow,
            snapshot_backend_factory or snapshot_backend_for,
            keep=effective_config.snapshot_keep,
        ),
        fingerprint_cache=FingerprintCache(effective_uow),
    )


def check_schema(
    merge_request_id: int,
    *,
    force: bool = False,
    orchestrator: MergeOrchestrator | None = None,
) -> SchemaCompatibility:
    effective = orchestrator or build_orchestrator()
    return asyncio.run(effective.check_schema(merge_request_id, force=force))


def compare(
    merge_request_id: int,
    mode: CompareMode = CompareMode.COMPARE,
    *,
    orchestrator: MergeOrchestrator | None = None,
) -> ComparisonReport | None:
    effective = orchestrator or build_orchestrator()
    report = asyncio.run(effective.compare(merge_request_id, mode))
    if report is not None:
        counts = report.counts()
        log.info(
            f"Compared merge request {merge_request_id}: "
            + ", ".join(f"{state}={count}" for state, count in sorted(counts.items()))
        )
    return report


def complete_merge(
    merge_request_id: int,
    *,
    take_snapshot: bool = True,
    allow_without_snapshot: bool = False,
    on_progress: ProgressCallback | None = None,
    orchestrator: MergeOrchestrator | None = None,
) -> MergeRequest:
    """Run the merge to completion, relaying progress updates to ``on_progress``."""

    effective = orchestrator or build_orchestrator()
    return asyncio.run(
        _complete_with_progress(
            effective,
            merge_request_id,
            take_snapshot=take_snapshot,
            allow_without_snapshot=allow_without_snapshot,
            on_progress=on_progress or _log_progress,
        )
    )


async def _complete_with_progress(
    orchestrator: MergeOrchestrator,
    merge_request_id: int,
    *,
    take_snapshot: bool,
    allow_without_snapshot: bool,
    on_progress: ProgressCallback,
) -> MergeRequest:
    subscription = orchestrator.progress.register(merge_request_id)

    async def relay() -> None:
        async for update in subscription:
            on_progress(update)

    relay_task = asyncio.create_task(relay())
    try:
        return await orchestrator.complete(
            merge_request_id,
            take_snapshot=take_snapshot,
            allow_without_snapshot=allow_without_snapshot,
        )
    finally:
        # Unregistering ends the relay even when the merge was refused before starting.
        orchestrator.progress.unregister(subscription)
        await relay_task
        for update in subscription.drain():
            on_progress(update)


def _log_progress(update: SyncProgressUpdate) -> None:
    item = f" {update.current_item}" if update.current_item else ""
    message = f" ({update.message})" if update.message else ""
    log.info(
        f"[{update.status}] {update.processed_items}/{update.total_items}"
        f"{item}{message}"
    )


def take_snapshot(
    merge_request_id: int, *, orchestrator: MergeOrchestrator | None = None
) -> Snapshot:
    manager = _snapshot_manager(orchestrator)
    return manager.take(merge_request_id)


def restore_snapshot(
    merge_request_id: int,
    name: str | None = None,
    *,
    confirm: bool = False,
    orchestrator: MergeOrchestrator | None = None,
) -> Snapshot:
    manager = _snapshot_manager(orchestrator)
    return manager.restore(merge_request_id, name, confirm=confirm)


def list_snapshots(
    merge_request_id: int, *, orchestrator: MergeOrchestrator | None = None
) -> list[Snapshot]:
    return _snapshot_manager(orchestrator).list_snapshots(merge_request_id)


def _snapshot_manager(orchestrator: MergeOrchestrator | None) -> SnapshotManager:
    effective = orchestrator or build_orchestrator()
    assert effective.snapshots is not None
    return effective.snapshots
