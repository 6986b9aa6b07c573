"""Ports for persisting merge requests and their bookkeeping."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence
    from datetime import datetime

    from cmsync.domain.model import (
        Direction,
        DocumentMapping,
        Exclusion,
        FingerprintCacheEntry,
        MergeDataKind,
        MergeRequest,
        MergeRequestData,
        MergeRequestStatus,
        Selection,
        Snapshot,
        SnapshotActivity,
        SnapshotMappingRow,
    )


@runtime_checkable
class Repository[TEntity](Protocol):
    """Minimal repository contract for a persistent aggregate store."""

    def add(self, entity: TEntity) -> None: ...


@runtime_checkable
class MergeRequestRepository(Repository["MergeRequest"], Protocol):
    def get(self, merge_request_id: int) -> MergeRequest | None: ...

    def list_all(self) -> list[MergeRequest]: ...

    def delete(self, merge_request: MergeRequest) -> None: ...

    def compare_and_set_status(
        self,
        merge_request_id: int,
        *,
        expected: MergeRequestStatus,
        new: MergeRequestStatus,
    ) -> bool:
        """Atomically move ``expected`` to ``new``; return whether the row changed."""
        ...

    def in_progress_for_target(self, target_instance: str) -> list[MergeRequest]: ...


@runtime_checkable
class SelectionRepository(Repository["Selection"], Protocol):
    def list_for(self, merge_request_id: int) -> list[Selection]: ...

    def find(
        self,
        merge_request_id: int,
        table_name: str,
        document_id: str,
        direction: Direction,
    ) -> list[Selection]: ...

    def delete(self, selection: Selection) -> None: ...

    def delete_documents(
        self,
        merge_request_id: int,
        table_name: str,
        direction: Direction,
        document_ids: Iterable[str],
    ) -> int: ...

    def record_outcome(
        self,
        selection_id: int,
        *,
        success: bool,
        failure_response: str | None,
        synced_at: datetime,
    ) -> None: ...

    def count_processed(self, merge_request_id: int) -> int: ...


@runtime_checkable
class DocumentMappingRepository(Repository["DocumentMapping"], Protocol):
    def list_for_pair(
        self, source_instance: str, target_instance: str
    ) -> list[DocumentMapping]: ...

    def get(
        self,
        source_instance: str,
        target_instance: str,
        content_type: str,
        source_document_id: str,
    ) -> DocumentMapping | None: ...

    def get_by_id(self, mapping_id: int) -> DocumentMapping | None: ...

    def delete(self, mapping: DocumentMapping) -> None: ...

    def delete_by_target(
        self,
        source_instance: str,
        target_instance: str,
        content_type: str,
        target_document_id: str,
    ) -> int: ...

    def delete_for_pair(self, source_instance: str, target_instance: str) -> int: ...


@runtime_checkable
class ExclusionRepository(Repository["Exclusion"], Protocol):
    def list_for_pair(self, source_instance: str, target_instance: str) -> list[Exclusion]: ...

    def get_by_id(self, exclusion_id: int) -> Exclusion | None: ...

    def delete(self, exclusion: Exclusion) -> None: ...


@runtime_checkable
class FingerprintCacheRepository(Repository["FingerprintCacheEntry"], Protocol):
    def get(self, instance: str, document_id: str) -> FingerprintCacheEntry | None: ...


@runtime_checkable
class MergeRequestDataRepository(Protocol):
    def get(self, merge_request_id: int, kind: MergeDataKind) -> MergeRequestData | None: ...

    def put(self, merge_request_id: int, kind: MergeDataKind, payload: str) -> None: ...

    def delete_for(self, merge_request_id: int) -> None: ...


@runtime_checkable
class SnapshotRepository(Repository["Snapshot"], Protocol):
    def list_for_merge_request(self, merge_request_id: int) -> list[Snapshot]: ...

    def list_for_target(self, target_instance: str) -> list[Snapshot]: ...

    def get_by_name(self, schema_name: str) -> Snapshot | None: ...

    def delete(self, snapshot: Snapshot) -> None: ...

    def add_activity(self, activity: SnapshotActivity) -> None: ...

    def list_activities(self, merge_request_id: int) -> list[SnapshotActivity]: ...

    def add_mapping_rows(self, rows: Sequence[SnapshotMappingRow]) -> None: ...

    def mapping_rows(self, snapshot_id: int) -> list[SnapshotMappingRow]: ...
