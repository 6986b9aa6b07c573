"""Point-in-time copies of a target instance's database around a merge."""

from __future__ import annotations

from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING

from cmsync.domain.errors import ConfirmationRequired, MergeRequestNotFound, SnapshotFailure
from cmsync.domain.model import (
    ActivityStatus,
    DocumentMapping,
    Snapshot,
    SnapshotActivity,
    SnapshotActivityType,
    SnapshotMappingRow,
    utcnow,
)

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

    from cmsync.domain.model import MergeRequest
    from cmsync.domain.ports import SnapshotBackend, SyncUnitOfWork

log = getLogger(__name__)

DEFAULT_KEEP = 3


def snapshot_name(merge_request_id: int, millis: int | None = None) -> str:
    if millis is None:
        millis = int(utcnow().timestamp() * 1000)
    return f"snapshot_mr_{merge_request_id}_{millis}"


@dataclass(slots=True)
class SnapshotManager:
    """Takes, restores and prunes snapshots; every attempt is logged as an activity.

    ``backend_for`` returns the snapshot backend of a target instance (by name) and raises
    ``SnapshotFailure`` when the instance has no reachable database.
    """

    unit_of_work_factory: Callable[[], SyncUnitOfWork]
    backend_for: Callable[[str], SnapshotBackend]
    keep: int = DEFAULT_KEEP

    def take(self, merge_request_id: int) -> Snapshot:
        merge_request = self._merge_request(merge_request_id)
        self._ensure_target_idle(merge_request, SnapshotActivityType.TAKE)

        name = self._unused_name(merge_request_id)
        try:
            backend = self.backend_for(merge_request.target_instance)
            tables = backend.take(name)
        except SnapshotFailure as exc:
            self._log_activity(merge_request_id, SnapshotActivityType.TAKE, name, str(exc))
            raise

        snapshot = Snapshot(
            merge_request_id=merge_request_id,
            target_instance=merge_request.target_instance,
            schema_name=name,
            created_at=utcnow(),
        )
        with self.unit_of_work_factory() as uow:
            uow.repositories.snapshots.add(snapshot)
            uow.commit()
            assert snapshot.id is not None
            mappings = uow.repositories.mappings.list_for_pair(
                merge_request.source_instance, merge_request.target_instance
            )
            uow.repositories.snapshots.add_mapping_rows(
                [_mapping_row(snapshot.id, mapping) for mapping in mappings]
            )
            uow.repositories.snapshots.add_activity(
                SnapshotActivity(
                    merge_request_id=merge_request_id,
                    activity_type=SnapshotActivityType.TAKE,
                    status=ActivityStatus.SUCCESS,
                    schema_name=name,
                    message=f"Copied {len(tables)} table(s) and {len(mappings)} mapping(s)",
                    created_at=utcnow(),
                )
            )
            uow.commit()
        log.info(f"Snapshot {name} taken for merge request {merge_request_id}")

        self.prune(merge_request.target_instance, backend)
        return snapshot

    def restore(
        self,
        merge_request_id: int,
        name: str | None = None,
        *,
        confirm: bool = False,
    ) -> Snapshot:
        """Overwrite the target database (and the pair's mappings) from a snapshot."""

        if not confirm:
            raise ConfirmationRequired(
                "Restoring a snapshot overwrites the target database; pass confirm=True"
            )
        merge_request = self._merge_request(merge_request_id)
        snapshot = self._find(merge_request, name)
        self._ensure_target_idle(merge_request, SnapshotActivityType.RESTORE, snapshot.schema_name)

        try:
            backend = self.backend_for(merge_request.target_instance)
            tables = backend.restore(snapshot.schema_name)
        except SnapshotFailure as exc:
            self._log_activity(
                merge_request_id, SnapshotActivityType.RESTORE, snapshot.schema_name, str(exc)
            )
            raise

        with self.unit_of_work_factory() as uow:
            assert snapshot.id is not None
            rows = uow.repositories.snapshots.mapping_rows(snapshot.id)
            uow.repositories.mappings.delete_for_pair(
                merge_request.source_instance, merge_request.target_instance
            )
            now = utcnow()
            for row in rows:
                uow.repositories.mappings.add(_mapping_from_row(merge_request, row, now))
            uow.repositories.snapshots.add_activity(
                SnapshotActivity(
                    merge_request_id=merge_request_id,
                    activity_type=SnapshotActivityType.RESTORE,
                    status=ActivityStatus.SUCCESS,
                    schema_name=snapshot.schema_name,
                    message=f"Restored {len(tables)} table(s) and {len(rows)} mapping(s)",
                    created_at=now,
                )
            )
            uow.commit()
        log.warning(f"Target {merge_request.target_instance} restored from {snapshot.schema_name}")
        return snapshot

    def prune(self, target_instance: str, backend: SnapshotBackend | None = None) -> list[str]:
        """Drop snapshots of ``target_instance`` beyond the newest ``keep``."""

        with self.unit_of_work_factory() as uow:
            stale = uow.repositories.snapshots.list_for_target(target_instance)[self.keep :]
        if not stale:
            return []
        backend = backend or self.backend_for(target_instance)

        dropped: list[str] = []
        for snapshot in stale:
            try:
                backend.drop(snapshot.schema_name)
            except SnapshotFailure as exc:
                self._log_activity(
                    snapshot.merge_request_id,
                    SnapshotActivityType.DELETE,
                    snapshot.schema_name,
                    str(exc),
                )
                continue
            with self.unit_of_work_factory() as uow:
                stored = uow.repositories.snapshots.get_by_name(snapshot.schema_name)
                if stored is not None:
                    uow.repositories.snapshots.delete(stored)
                uow.repositories.snapshots.add_activity(
                    SnapshotActivity(
                        merge_request_id=snapshot.merge_request_id,
                        activity_type=SnapshotActivityType.DELETE,
                        status=ActivityStatus.SUCCESS,
                        schema_name=snapshot.schema_name,
                        message="Dropped by retention",
                        created_at=utcnow(),
                    )
                )
                uow.commit()
            dropped.append(snapshot.schema_name)
        log.info(f"Dropped {len(dropped)} old snapshot(s) of {target_instance}")
        return dropped

    def list_snapshots(self, merge_request_id: int) -> list[Snapshot]:
        with self.unit_of_work_factory() as uow:
            return uow.repositories.snapshots.list_for_merge_request(merge_request_id)

    def list_activities(self, merge_request_id: int) -> list[SnapshotActivity]:
        with self.unit_of_work_factory() as uow:
            return uow.repositories.snapshots.list_activities(merge_request_id)

    def _unused_name(self, merge_request_id: int) -> str:
        # Names grow strictly per merge request, so pruned names are never reused.
        millis = int(utcnow().timestamp() * 1000)
        with self.unit_of_work_factory() as uow:
            existing = uow.repositories.snapshots.list_for_merge_request(merge_request_id)
        for snapshot in existing:
            _, _, suffix = snapshot.schema_name.rpartition("_")
            if suffix.isdigit():
                millis = max(millis, int(suffix) + 1)
        return snapshot_name(merge_request_id, millis)

    def _ensure_target_idle(
        self,
        merge_request: MergeRequest,
        activity_type: SnapshotActivityType,
        name: str | None = None,
    ) -> None:
        assert merge_request.id is not None
        with self.unit_of_work_factory() as uow:
            busy = [
                other
                for other in uow.repositories.merge_requests.in_progress_for_target(
                    merge_request.target_instance
                )
                if other.id != merge_request.id
            ]
        if busy:
            message = (
                f"Merge request {busy[0].id} is in progress on {merge_request.target_instance}"
            )
            self._log_activity(merge_request.id, activity_type, name, message)
            raise SnapshotFailure(message)

    def _merge_request(self, merge_request_id: int) -> MergeRequest:
        with self.unit_of_work_factory() as uow:
            merge_request = uow.repositories.merge_requests.get(merge_request_id)
        if merge_request is None:
            raise MergeRequestNotFound(merge_request_id)
        return merge_request

    def _find(self, merge_request: MergeRequest, name: str | None) -> Snapshot:
        assert merge_request.id is not None
        with self.unit_of_work_factory() as uow:
            if name is not None:
                snapshot = uow.repositories.snapshots.get_by_name(name)
                if snapshot is None or snapshot.target_instance != merge_request.target_instance:
                    raise SnapshotFailure(f"Snapshot {name} not found for this target")
                return snapshot
            snapshots = uow.repositories.snapshots.list_for_merge_request(merge_request.id)
        if not snapshots:
            raise SnapshotFailure(f"Merge request {merge_request.id} has no snapshot")
        return snapshots[0]

    def _log_activity(
        self,
        merge_request_id: int,
        activity_type: SnapshotActivityType,
        name: str | None,
        message: str,
    ) -> None:
        log.error(
            f"Snapshot {activity_type} failed for merge request {merge_request_id}: {message}"
        )
        with self.unit_of_work_factory() as uow:
            uow.repositories.snapshots.add_activity(
                SnapshotActivity(
                    merge_request_id=merge_request_id,
                    activity_type=activity_type,
                    status=ActivityStatus.FAILED,
                    schema_name=name,
                    message=message,
                    created_at=utcnow(),
                )
            )
            uow.commit()


def _mapping_row(snapshot_id: int, mapping: DocumentMapping) -> SnapshotMappingRow:
    return SnapshotMappingRow(
        snapshot_id=snapshot_id,
        content_type=mapping.content_type,
        source_document_id=mapping.source_document_id,
        source_id=mapping.source_id,
        source_updated_at=mapping.source_updated_at,
        source_hash=mapping.source_hash,
        target_id=mapping.target_id,
        target_document_id=mapping.target_document_id,
        target_updated_at=mapping.target_updated_at,
        target_hash=mapping.target_hash,
        locale=mapping.locale,
    )


def _mapping_from_row(
    merge_request: MergeRequest, row: SnapshotMappingRow, now: datetime
) -> DocumentMapping:
    return DocumentMapping(
        source_instance=merge_request.source_instance,
        target_instance=merge_request.target_instance,
        content_type=row.content_type,
        source_document_id=row.source_document_id,
        source_id=row.source_id,
        source_updated_at=row.source_updated_at,
        source_hash=row.source_hash,
        target_id=row.target_id,
        target_document_id=row.target_document_id,
        target_updated_at=row.target_updated_at,
        target_hash=row.target_hash,
        locale=row.locale,
        created_at=now,
        updated_at=now,
    )
