"""Merge request workflow: schema check, comparison, selection, planning and execution."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING

from pydantic import TypeAdapter

from cmsync.domain.comparison import (
    ComparisonEngine,
    SchemaCompatibility,
    check_schema_compatibility,
    dump_prefetch,
    dump_report,
    fetch_catalog,
    load_prefetch,
    prefetch_comparison_data,
)
from cmsync.domain.errors import (
    InvalidStateTransition,
    MergeRequestNotFound,
    RecordNotFound,
    SnapshotFailure,
    SyncError,
)
from cmsync.domain.merge.content import ContentApplier
from cmsync.domain.merge.files import FileApplier
from cmsync.domain.merge.lifecycle import (
    advance_to_at_least,
    ensure_mutable,
    ensure_transition,
    reached,
)
from cmsync.domain.merge.run import MergeRun
from cmsync.domain.merge.selection import SelectionService, load_stored_report
from cmsync.domain.model import (
    DIRECTION_BY_STATE,
    CompareMode,
    DocumentMapping,
    Exclusion,
    MergeDataKind,
    MergeRequest,
    MergeRequestStatus,
    ProgressStatus,
    utcnow,
)
from cmsync.domain.planning import compute_sync_plan
from cmsync.domain.progress import SyncProgressUpdate

if TYPE_CHECKING:
    from collections.abc import Callable

    from cmsync.config import SyncConfig
    from cmsync.domain.comparison import ComparisonPrefetch
    from cmsync.domain.fingerprint import FingerprintCache
    from cmsync.domain.merge.snapshot import SnapshotManager
    from cmsync.domain.model import ComparisonReport
    from cmsync.domain.planning import SyncPlan
    from cmsync.domain.ports import ContentStore, ContentStoreFactory, SyncUnitOfWork
    from cmsync.domain.progress import ProgressBroker

log = getLogger(__name__)

_SCHEMA_ADAPTER = TypeAdapter(SchemaCompatibility)

# Checkpoints ``advance`` may move to; the rest are reached through their operations.
ADVANCEABLE: frozenset[MergeRequestStatus] = frozenset(
    {
        MergeRequestStatus.MERGED_FILES,
        MergeRequestStatus.MERGED_SINGLES,
        MergeRequestStatus.MERGED_COLLECTIONS,
    }
)


@dataclass(slots=True)
class MergeOrchestrator:
    unit_of_work_factory: Callable[[], SyncUnitOfWork]
    store_factory: ContentStoreFactory
    progress: ProgressBroker
    config: SyncConfig
    snapshots: SnapshotManager | None = None
    fingerprint_cache: FingerprintCache | None = None

    @property
    def selections(self) -> SelectionService:
        return SelectionService(self.unit_of_work_factory)

    # Merge requests --------------------------------------------------------

    def create_merge_request(
        self,
        name: str,
        source_instance: str,
        target_instance: str,
        description: str | None = None,
    ) -> MergeRequest:
        if source_instance == target_instance:
            raise ValueError("Source and target instance must differ")
        now = utcnow()
        merge_request = MergeRequest(
            name=name,
            source_instance=source_instance,
            target_instance=target_instance,
            description=description,
            created_at=now,
            updated_at=now,
        )
        with self.unit_of_work_factory() as uow:
            uow.repositories.merge_requests.add(merge_request)
            uow.commit()
        log.info(
            f"Created merge request {merge_request.id}: {source_instance} -> {target_instance}"
        )
        return merge_request

    def get_merge_request(self, merge_request_id: int) -> MergeRequest:
        with self.unit_of_work_factory() as uow:
            merge_request = uow.repositories.merge_requests.get(merge_request_id)
        if merge_request is None:
            raise MergeRequestNotFound(merge_request_id)
        return merge_request

    def list_merge_requests(self) -> list[MergeRequest]:
        with self.unit_of_work_factory() as uow:
            return uow.repositories.merge_requests.list_all()

    def delete_merge_request(self, merge_request_id: int) -> None:
        with self.unit_of_work_factory() as uow:
            merge_request = uow.repositories.merge_requests.get(merge_request_id)
            if merge_request is None:
                raise MergeRequestNotFound(merge_request_id)
            if merge_request.status is MergeRequestStatus.IN_PROGRESS:
                raise InvalidStateTransition(
                    f"Merge request {merge_request_id} is in progress and cannot be deleted",
                    current=merge_request.status,
                )
            for selection in uow.repositories.selections.list_for(merge_request_id):
                uow.repositories.selections.delete(selection)
            uow.repositories.merge_data.delete_for(merge_request_id)
            uow.repositories.merge_requests.delete(merge_request)
            uow.commit()

    def advance(self, merge_request_id: int, status: MergeRequestStatus) -> MergeRequest:
        """Move through the wizard checkpoints after comparison."""

        if status not in ADVANCEABLE:
            raise InvalidStateTransition(
                f"{status} is not a wizard checkpoint", requested=status
            )
        with self.unit_of_work_factory() as uow:
            merge_request = self._get(uow, merge_request_id)
            ensure_mutable(merge_request)
            if merge_request.status is not status:
                ensure_transition(merge_request, status)
                merge_request.status = status
                merge_request.updated_at = utcnow()
            uow.commit()
        return merge_request

    # Schema ----------------------------------------------------------------

    async def check_schema(
        self, merge_request_id: int, *, force: bool = False
    ) -> SchemaCompatibility:
        """Schema verdict, cached per merge request; ``force`` fetches the schemas again."""

        merge_request = self.get_merge_request(merge_request_id)
        if not force:
            with self.unit_of_work_factory() as uow:
                cached = uow.repositories.merge_data.get(merge_request_id, MergeDataKind.SCHEMA)
            if cached is not None:
                return _SCHEMA_ADAPTER.validate_json(cached.payload)

        ensure_mutable(merge_request)
        source, target = self._stores(merge_request)
        try:
            source_catalog, target_catalog = await asyncio.gather(
                fetch_catalog(source), fetch_catalog(target)
            )
        finally:
            await _close(source, target)

        verdict = check_schema_compatibility(source_catalog, target_catalog)
        with self.unit_of_work_factory() as uow:
            uow.repositories.merge_data.put(
                merge_request_id,
                MergeDataKind.SCHEMA,
                _SCHEMA_ADAPTER.dump_json(verdict).decode("utf-8"),
            )
            stored = self._get(uow, merge_request_id)
            if advance_to_at_least(stored, MergeRequestStatus.SCHEMA_CHECKED):
                stored.updated_at = utcnow()
            uow.commit()
        log.info(
            f"Schema check of merge request {merge_request_id}: "
            f"{'compatible' if verdict.is_compatible else 'incompatible'}"
        )
        return verdict

    # Comparison ------------------------------------------------------------

    async def compare(
        self, merge_request_id: int, mode: CompareMode = CompareMode.COMPARE
    ) -> ComparisonReport | None:
        """Classify every entry; CACHE mode only refreshes the prefetched data."""

        merge_request = self.get_merge_request(merge_request_id)
        ensure_mutable(merge_request)
        with self.unit_of_work_factory() as uow:
            verdict = uow.repositories.merge_data.get(merge_request_id, MergeDataKind.SCHEMA)
        if verdict is None or not reached(merge_request.status, MergeRequestStatus.SCHEMA_CHECKED):
            raise InvalidStateTransition(
                f"Merge request {merge_request_id} needs a schema check first",
                current=merge_request.status,
            )
        _SCHEMA_ADAPTER.validate_json(verdict.payload).raise_for_incompatibility()

        prefetch: ComparisonPrefetch | None = None
        if mode is CompareMode.COMPARE:
            with self.unit_of_work_factory() as uow:
                cached = uow.repositories.merge_data.get(merge_request_id, MergeDataKind.PREFETCH)
            if cached is not None:
                prefetch = load_prefetch(cached.payload)
        if prefetch is None:
            prefetch = await self._prefetch(merge_request)
            with self.unit_of_work_factory() as uow:
                uow.repositories.merge_data.put(
                    merge_request_id, MergeDataKind.PREFETCH, dump_prefetch(prefetch)
                )
                uow.commit()
        if mode is CompareMode.CACHE:
            return None

        with self.unit_of_work_factory() as uow:
            mappings = uow.repositories.mappings.list_for_pair(
                merge_request.source_instance, merge_request.target_instance
            )
            exclusions = uow.repositories.exclusions.list_for_pair(
                merge_request.source_instance, merge_request.target_instance
            )

        outcome = ComparisonEngine(hamming_threshold=self.config.hamming_threshold).compare(
            prefetch, mappings=mappings, exclusions=exclusions
        )

        with self.unit_of_work_factory() as uow:
            for mapping in outcome.new_mappings:
                _upsert_mapping(uow, mapping)
            _prune_stale_selections(uow, merge_request_id, outcome.report)
            uow.repositories.merge_data.put(
                merge_request_id, MergeDataKind.COMPARISON, dump_report(outcome.report)
            )
            stored = self._get(uow, merge_request_id)
            if advance_to_at_least(stored, MergeRequestStatus.COMPARED):
                stored.updated_at = utcnow()
            uow.commit()
        return outcome.report

    def load_comparison(self, merge_request_id: int) -> ComparisonReport:
        with self.unit_of_work_factory() as uow:
            self._get(uow, merge_request_id)
            return load_stored_report(uow, merge_request_id)

    # Planning --------------------------------------------------------------

    def plan(self, merge_request_id: int) -> SyncPlan:
        """Read-only plan preview from the stored comparison and current selections."""

        with self.unit_of_work_factory() as uow:
            merge_request = self._get(uow, merge_request_id)
            report = load_stored_report(uow, merge_request_id)
            selections = uow.repositories.selections.list_for(merge_request_id)
            mapped = _mapped_document_ids(
                uow.repositories.mappings.list_for_pair(
                    merge_request.source_instance, merge_request.target_instance
                )
            )
        return compute_sync_plan(report, selections, mapped)

    # Execution -------------------------------------------------------------

    async def complete(
        self,
        merge_request_id: int,
        *,
        take_snapshot: bool = True,
        allow_without_snapshot: bool = False,
    ) -> MergeRequest:
        """Apply every selection to the target and settle on COMPLETED or FAILED.

        Item failures are recorded on their selections. The merge ends FAILED when an item was
        skipped because a dependency failed, or when the run itself could not continue.
        """

        merge_request = self.get_merge_request(merge_request_id)
        if merge_request.status is not MergeRequestStatus.MERGED_COLLECTIONS:
            raise InvalidStateTransition(
                f"Merge request {merge_request_id} must be {MergeRequestStatus.MERGED_COLLECTIONS}",
                current=merge_request.status,
                requested=MergeRequestStatus.IN_PROGRESS,
            )
        self.load_comparison(merge_request_id)

        if take_snapshot:
            try:
                if self.snapshots is None:
                    raise SnapshotFailure("No snapshot manager configured")
                self.snapshots.take(merge_request_id)
            except SnapshotFailure:
                if not allow_without_snapshot:
                    raise
                log.warning(f"Merge request {merge_request_id} continues without a snapshot")

        with self.unit_of_work_factory() as uow:
            acquired = uow.repositories.merge_requests.compare_and_set_status(
                merge_request_id,
                expected=MergeRequestStatus.MERGED_COLLECTIONS,
                new=MergeRequestStatus.IN_PROGRESS,
            )
            uow.commit()
        if not acquired:
            raise InvalidStateTransition(
                f"Merge request {merge_request_id} changed state concurrently",
                requested=MergeRequestStatus.IN_PROGRESS,
            )

        final = MergeRequestStatus.FAILED
        run: MergeRun | None = None
        error: str | None = None
        try:
            run = await self._execute(merge_request)
            if not run.has_dependency_skips:
                final = MergeRequestStatus.COMPLETED
        except SyncError as exc:
            log.exception(f"Merge request {merge_request_id} aborted")
            error = f"{type(exc).__name__}: {exc}"
        finally:
            with self.unit_of_work_factory() as uow:
                uow.repositories.merge_requests.compare_and_set_status(
                    merge_request_id, expected=MergeRequestStatus.IN_PROGRESS, new=final
                )
                uow.commit()
            if run is not None:
                run.publish(
                    ProgressStatus.COMPLETED
                    if final is MergeRequestStatus.COMPLETED
                    else ProgressStatus.ERROR,
                    message=error or f"{run.failures} item(s) failed",
                )
            else:
                self.progress.publish(_terminal_update(merge_request_id, error))
            log.info(f"Merge request {merge_request_id} finished as {final}")

        return self.get_merge_request(merge_request_id)

    async def _execute(self, merge_request: MergeRequest) -> MergeRun:
        assert merge_request.id is not None
        with self.unit_of_work_factory() as uow:
            report = load_stored_report(uow, merge_request.id)
            selections = uow.repositories.selections.list_for(merge_request.id)
            mappings = uow.repositories.mappings.list_for_pair(
                merge_request.source_instance, merge_request.target_instance
            )
        plan = compute_sync_plan(report, selections, _mapped_document_ids(mappings))
        if plan.circular_edges:
            log.info(f"Plan has {len(plan.cycle_members)} cycle member(s); links are patched later")

        run = MergeRun(
            merge_request=merge_request,
            report=report,
            plan=plan,
            unit_of_work_factory=self.unit_of_work_factory,
            progress=self.progress,
            mappings=mappings,
        )
        run.publish(ProgressStatus.START, message=f"{run.total_items} item(s) to apply")

        source, target = self._stores(merge_request)
        try:
            catalog = await fetch_catalog(target)
            content = ContentApplier(target, catalog, workers=self.config.apply_workers)
            files = FileApplier(
                source, target, max_parallel_uploads=self.config.max_parallel_uploads
            )
            for batch in plan.apply_batches:
                if all(item.is_file for item in batch):
                    await files.apply_batch(run, batch)
                else:
                    await content.apply_batch(run, batch)
            await content.apply_cycle_members(run, plan.cycle_members)
            await content.patch_deferred(run)
            for batch in plan.delete_batches:
                await content.delete_batch(run, batch, files)
            deferred_deletes = [item for item in plan.cycle_members if item.is_delete]
            for item in deferred_deletes:
                await content.delete_batch(run, [item], files)
        finally:
            await _close(source, target)
        return run

    # Mappings and exclusions ----------------------------------------------

    def list_mappings(
        self, merge_request_id: int, content_type: str | None = None
    ) -> list[DocumentMapping]:
        merge_request = self.get_merge_request(merge_request_id)
        with self.unit_of_work_factory() as uow:
            mappings = uow.repositories.mappings.list_for_pair(
                merge_request.source_instance, merge_request.target_instance
            )
        if content_type is None:
            return mappings
        return [mapping for mapping in mappings if mapping.content_type == content_type]

    def upsert_mapping(
        self,
        merge_request_id: int,
        *,
        content_type: str,
        source_document_id: str,
        target_document_id: str,
        source_id: int | None = None,
        target_id: int | None = None,
        locale: str | None = None,
    ) -> DocumentMapping:
        """Declare manually that two entries are the same document."""

        merge_request = self.get_merge_request(merge_request_id)
        ensure_mutable(merge_request)
        now = utcnow()
        mapping = DocumentMapping(
            source_instance=merge_request.source_instance,
            target_instance=merge_request.target_instance,
            content_type=content_type,
            source_document_id=source_document_id,
            source_id=source_id,
            target_id=target_id,
            target_document_id=target_document_id,
            locale=locale,
            created_at=now,
            updated_at=now,
        )
        with self.unit_of_work_factory() as uow:
            stored = _upsert_mapping(uow, mapping)
            uow.commit()
        return stored

    def delete_mapping(self, merge_request_id: int, mapping_id: int) -> None:
        merge_request = self.get_merge_request(merge_request_id)
        ensure_mutable(merge_request)
        with self.unit_of_work_factory() as uow:
            mapping = uow.repositories.mappings.get_by_id(mapping_id)
            if mapping is None or not _same_pair(mapping, merge_request):
                raise RecordNotFound(f"Mapping {mapping_id} not found for this instance pair")
            uow.repositories.mappings.delete(mapping)
            uow.commit()

    def list_exclusions(self, merge_request_id: int) -> list[Exclusion]:
        merge_request = self.get_merge_request(merge_request_id)
        with self.unit_of_work_factory() as uow:
            return uow.repositories.exclusions.list_for_pair(
                merge_request.source_instance, merge_request.target_instance
            )

    def add_exclusion(
        self,
        merge_request_id: int,
        content_type: str,
        document_id: str,
        field_path: str | None = None,
    ) -> Exclusion:
        merge_request = self.get_merge_request(merge_request_id)
        ensure_mutable(merge_request)
        with self.unit_of_work_factory() as uow:
            for existing in uow.repositories.exclusions.list_for_pair(
                merge_request.source_instance, merge_request.target_instance
            ):
                if (existing.content_type, existing.document_id, existing.field_path) == (
                    content_type,
                    document_id,
                    field_path,
                ):
                    return existing
            exclusion = Exclusion(
                source_instance=merge_request.source_instance,
                target_instance=merge_request.target_instance,
                content_type=content_type,
                document_id=document_id,
                field_path=field_path,
                created_at=utcnow(),
            )
            uow.repositories.exclusions.add(exclusion)
            uow.commit()
        return exclusion

    def remove_exclusion(self, merge_request_id: int, exclusion_id: int) -> None:
        merge_request = self.get_merge_request(merge_request_id)
        ensure_mutable(merge_request)
        with self.unit_of_work_factory() as uow:
            exclusion = uow.repositories.exclusions.get_by_id(exclusion_id)
            if exclusion is None or not _same_pair(exclusion, merge_request):
                raise RecordNotFound(f"Exclusion {exclusion_id} not found for this instance pair")
            uow.repositories.exclusions.delete(exclusion)
            uow.commit()

    # Helpers ---------------------------------------------------------------

    async def _prefetch(self, merge_request: MergeRequest) -> ComparisonPrefetch:
        source, target = self._stores(merge_request)
        try:
            return await prefetch_comparison_data(
                source, target, config=self.config, fingerprint_cache=self.fingerprint_cache
            )
        finally:
            await _close(source, target)

    def _stores(self, merge_request: MergeRequest) -> tuple[ContentStore, ContentStore]:
        return (
            self.store_factory(merge_request.source_instance),
            self.store_factory(merge_request.target_instance),
        )

    @staticmethod
    def _get(uow: SyncUnitOfWork, merge_request_id: int) -> MergeRequest:
        merge_request = uow.repositories.merge_requests.get(merge_request_id)
        if merge_request is None:
            raise MergeRequestNotFound(merge_request_id)
        return merge_request


def _upsert_mapping(uow: SyncUnitOfWork, mapping: DocumentMapping) -> DocumentMapping:
    repository = uow.repositories.mappings
    existing = repository.get(
        mapping.source_instance,
        mapping.target_instance,
        mapping.content_type,
        mapping.source_document_id,
    )
    if existing is None:
        repository.add(mapping)
        return mapping
    existing.source_id = mapping.source_id if mapping.source_id is not None else existing.source_id
    existing.source_updated_at = mapping.source_updated_at or existing.source_updated_at
    existing.source_hash = mapping.source_hash or existing.source_hash
    existing.target_id = mapping.target_id
    existing.target_document_id = mapping.target_document_id
    existing.target_updated_at = mapping.target_updated_at
    existing.target_hash = mapping.target_hash
    existing.locale = mapping.locale
    existing.updated_at = utcnow()
    return existing


def _prune_stale_selections(
    uow: SyncUnitOfWork, merge_request_id: int, report: ComparisonReport
) -> None:
    repository = uow.repositories.selections
    for selection in repository.list_for(merge_request_id):
        result = report.lookup(selection.table_name, selection.document_id)
        if result is None or DIRECTION_BY_STATE.get(result.state) is not selection.direction:
            log.info(
                f"Dropping selection {selection.table_name}:{selection.document_id} "
                f"({selection.direction}) after recompare"
            )
            repository.delete(selection)


def _mapped_document_ids(mappings: list[DocumentMapping]) -> set[tuple[str, str]]:
    return {
        (mapping.content_type, mapping.source_document_id)
        for mapping in mappings
        if mapping.is_resolved
    }


def _same_pair(record: DocumentMapping | Exclusion, merge_request: MergeRequest) -> bool:
    return (
        record.source_instance == merge_request.source_instance
        and record.target_instance == merge_request.target_instance
    )


async def _close(*stores: ContentStore) -> None:
    for store in stores:
        await store.aclose()


def _terminal_update(merge_request_id: int, error: str | None) -> SyncProgressUpdate:
    return SyncProgressUpdate(
        merge_request_id=merge_request_id,
        total_items=0,
        processed_items=0,
        status=ProgressStatus.ERROR,
        message=error,
    )
