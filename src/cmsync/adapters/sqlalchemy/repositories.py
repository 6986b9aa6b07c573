"""Repository implementations backed by SQLAlchemy sessions."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, cast

from sqlalchemy import delete, func, select, update

from cmsync.adapters.sqlalchemy.mappings import (
    document_mapping_table,
    file_fingerprint_cache_table,
    merge_request_data_table,
    merge_request_selection_table,
    merge_request_snapshot_table,
    merge_request_table,
    snapshot_activity_table,
    snapshot_mapping_row_table,
    sync_exclusion_table,
)
from cmsync.domain.model import (
    DocumentMapping,
    Exclusion,
    FingerprintCacheEntry,
    MergeRequest,
    MergeRequestData,
    MergeRequestStatus,
    Selection,
    Snapshot,
    SnapshotActivity,
    SnapshotMappingRow,
    utcnow,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence
    from datetime import datetime

    from sqlalchemy.engine import CursorResult, Result
    from sqlalchemy.orm import Session

    from cmsync.domain.model import Direction, MergeDataKind


class SqlAlchemyMergeRequestRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, entity: MergeRequest) -> None:
        self.session.add(entity)
        self.session.flush()

    def get(self, merge_request_id: int) -> MergeRequest | None:
        return self.session.get(MergeRequest, merge_request_id)

    def list_all(self) -> list[MergeRequest]:
        stmt = select(MergeRequest).order_by(merge_request_table.c.id.desc())
        return list(self.session.execute(stmt).scalars())

    def delete(self, merge_request: MergeRequest) -> None:
        self.session.delete(merge_request)

    def compare_and_set_status(
        self,
        merge_request_id: int,
        *,
        expected: MergeRequestStatus,
        new: MergeRequestStatus,
    ) -> bool:
        stmt = (
            update(merge_request_table)
            .where(merge_request_table.c.id == merge_request_id)
            .where(merge_request_table.c.status == expected)
            .values(status=new, updated_at=utcnow())
        )
        result = self.session.execute(stmt)
        changed = _rowcount(result) == 1
        if changed:
            loaded = self.session.identity_map.get(
                self.session.identity_key(MergeRequest, merge_request_id)
            )
            if loaded is not None:
                self.session.expire(loaded)
        return changed

    def in_progress_for_target(self, target_instance: str) -> list[MergeRequest]:
        stmt = (
            select(MergeRequest)
            .where(merge_request_table.c.target_instance == target_instance)
            .where(merge_request_table.c.status == MergeRequestStatus.IN_PROGRESS)
        )
        return list(self.session.execute(stmt).scalars())


class SqlAlchemySelectionRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, entity: Selection) -> None:
        self.session.add(entity)
        self.session.flush()

    def list_for(self, merge_request_id: int) -> list[Selection]:
        stmt = (
            select(Selection)
            .where(merge_request_selection_table.c.merge_request_id == merge_request_id)
            .order_by(merge_request_selection_table.c.id)
        )
        return list(self.session.execute(stmt).scalars())

    def find(
        self,
        merge_request_id: int,
        table_name: str,
        document_id: str,
        direction: Direction,
    ) -> list[Selection]:
        table = merge_request_selection_table
        stmt = (
            select(Selection)
            .where(table.c.merge_request_id == merge_request_id)
            .where(table.c.table_name == table_name)
            .where(table.c.document_id == document_id)
            .where(table.c.direction == direction)
            .order_by(table.c.id)
        )
        return list(self.session.execute(stmt).scalars())

    def delete(self, selection: Selection) -> None:
        self.session.delete(selection)
        self.session.flush()

    def delete_documents(
        self,
        merge_request_id: int,
        table_name: str,
        direction: Direction,
        document_ids: Iterable[str],
    ) -> int:
        ids = list(document_ids)
        if not ids:
            return 0
        table = merge_request_selection_table
        stmt = (
            delete(Selection)
            .where(table.c.merge_request_id == merge_request_id)
            .where(table.c.table_name == table_name)
            .where(table.c.direction == direction)
            .where(table.c.document_id.in_(ids))
            .execution_options(synchronize_session="fetch")
        )
        result = self.session.execute(stmt)
        return _rowcount(result)

    def record_outcome(
        self,
        selection_id: int,
        *,
        success: bool,
        failure_response: str | None,
        synced_at: datetime,
    ) -> None:
        selection = self.session.get(Selection, selection_id)
        if selection is None:
            return
        selection.sync_success = success
        selection.sync_failure_response = failure_response
        selection.sync_date = synced_at

    def count_processed(self, merge_request_id: int) -> int:
        table = merge_request_selection_table
        stmt = (
            select(func.count())
            .select_from(table)
            .where(table.c.merge_request_id == merge_request_id)
            .where(table.c.sync_success.is_not(None))
        )
        return int(self.session.execute(stmt).scalar_one())


class SqlAlchemyDocumentMappingRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, entity: DocumentMapping) -> None:
        self.session.add(entity)
        self.session.flush()

    def list_for_pair(self, source_instance: str, target_instance: str) -> list[DocumentMapping]:
        table = document_mapping_table
        stmt = (
            select(DocumentMapping)
            .where(table.c.source_instance == source_instance)
            .where(table.c.target_instance == target_instance)
            .order_by(table.c.content_type, table.c.source_document_id)
        )
        return list(self.session.execute(stmt).scalars())

    def get(
        self,
        source_instance: str,
        target_instance: str,
        content_type: str,
        source_document_id: str,
    ) -> DocumentMapping | None:
        table = document_mapping_table
        stmt = (
            select(DocumentMapping)
            .where(table.c.source_instance == source_instance)
            .where(table.c.target_instance == target_instance)
            .where(table.c.content_type == content_type)
            .where(table.c.source_document_id == source_document_id)
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def get_by_id(self, mapping_id: int) -> DocumentMapping | None:
        return self.session.get(DocumentMapping, mapping_id)

    def delete(self, mapping: DocumentMapping) -> None:
        self.session.delete(mapping)

    def delete_by_target(
        self,
        source_instance: str,
        target_instance: str,
        content_type: str,
        target_document_id: str,
    ) -> int:
        table = document_mapping_table
        stmt = (
            delete(DocumentMapping)
            .where(table.c.source_instance == source_instance)
            .where(table.c.target_instance == target_instance)
            .where(table.c.content_type == content_type)
            .where(table.c.target_document_id == target_document_id)
            .execution_options(synchronize_session="fetch")
        )
        result = self.session.execute(stmt)
        return _rowcount(result)

    def delete_for_pair(self, source_instance: str, target_instance: str) -> int:
        table = document_mapping_table
        stmt = (
            delete(DocumentMapping)
            .where(table.c.source_instance == source_instance)
            .where(table.c.target_instance == target_instance)
            .execution_options(synchronize_session="fetch")
        )
        result = self.session.execute(stmt)
        return _rowcount(result)


class SqlAlchemyExclusionRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, entity: Exclusion) -> None:
        self.session.add(entity)
        self.session.flush()

    def list_for_pair(self, source_instance: str, target_instance: str) -> list[Exclusion]:
        table = sync_exclusion_table
        stmt = (
            select(Exclusion)
            .where(table.c.source_instance == source_instance)
            .where(table.c.target_instance == target_instance)
            .order_by(table.c.id)
        )
        return list(self.session.execute(stmt).scalars())

    def get_by_id(self, exclusion_id: int) -> Exclusion | None:
        return self.session.get(Exclusion, exclusion_id)

    def delete(self, exclusion: Exclusion) -> None:
        self.session.delete(exclusion)


class SqlAlchemyFingerprintCacheRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, entity: FingerprintCacheEntry) -> None:
        self.session.add(entity)

    def get(self, instance: str, document_id: str) -> FingerprintCacheEntry | None:
        table = file_fingerprint_cache_table
        stmt = (
            select(FingerprintCacheEntry)
            .where(table.c.instance == instance)
            .where(table.c.document_id == document_id)
        )
        return self.session.execute(stmt).scalar_one_or_none()


class SqlAlchemyMergeRequestDataRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, merge_request_id: int, kind: MergeDataKind) -> MergeRequestData | None:
        table = merge_request_data_table
        stmt = (
            select(MergeRequestData)
            .where(table.c.merge_request_id == merge_request_id)
            .where(table.c.kind == kind)
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def put(self, merge_request_id: int, kind: MergeDataKind, payload: str) -> None:
        existing = self.get(merge_request_id, kind)
        if existing is None:
            self.session.add(
                MergeRequestData(
                    merge_request_id=merge_request_id,
                    kind=kind,
                    payload=payload,
                    updated_at=utcnow(),
                )
            )
            return
        existing.payload = payload
        existing.updated_at = utcnow()

    def delete_for(self, merge_request_id: int) -> None:
        table = merge_request_data_table
        self.session.execute(
            delete(MergeRequestData)
            .where(table.c.merge_request_id == merge_request_id)
            .execution_options(synchronize_session="fetch")
        )


class SqlAlchemySnapshotRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, entity: Snapshot) -> None:
        self.session.add(entity)
        self.session.flush()

    def list_for_merge_request(self, merge_request_id: int) -> list[Snapshot]:
        table = merge_request_snapshot_table
        stmt = (
            select(Snapshot)
            .where(table.c.merge_request_id == merge_request_id)
            .order_by(table.c.created_at.desc(), table.c.id.desc())
        )
        return list(self.session.execute(stmt).scalars())

    def list_for_target(self, target_instance: str) -> list[Snapshot]:
        table = merge_request_snapshot_table
        stmt = (
            select(Snapshot)
            .where(table.c.target_instance == target_instance)
            .order_by(table.c.created_at.desc(), table.c.id.desc())
        )
        return list(self.session.execute(stmt).scalars())

    def get_by_name(self, schema_name: str) -> Snapshot | None:
        stmt = select(Snapshot).where(merge_request_snapshot_table.c.schema_name == schema_name)
        return self.session.execute(stmt).scalar_one_or_none()

    def delete(self, snapshot: Snapshot) -> None:
        self.session.execute(
            delete(SnapshotMappingRow).where(
                snapshot_mapping_row_table.c.snapshot_id == snapshot.id
            )
        )
        self.session.delete(snapshot)

    def add_activity(self, activity: SnapshotActivity) -> None:
        self.session.add(activity)

    def list_activities(self, merge_request_id: int) -> list[SnapshotActivity]:
        table = snapshot_activity_table
        stmt = (
            select(SnapshotActivity)
            .where(table.c.merge_request_id == merge_request_id)
            .order_by(table.c.created_at.desc(), table.c.id.desc())
        )
        return list(self.session.execute(stmt).scalars())

    def add_mapping_rows(self, rows: Sequence[SnapshotMappingRow]) -> None:
        self.session.add_all(rows)

    def mapping_rows(self, snapshot_id: int) -> list[SnapshotMappingRow]:
        table = snapshot_mapping_row_table
        stmt = (
            select(SnapshotMappingRow)
            .where(table.c.snapshot_id == snapshot_id)
            .order_by(table.c.id)
        )
        return list(self.session.execute(stmt).scalars())


def _rowcount(result: Result[Any]) -> int:
    return cast("CursorResult[Any]", result).rowcount or 0
