"""State shared by the stages of one merge execution."""

from __future__ import annotations

from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING

from cmsync.domain.comparison.engine import LinkResolver
from cmsync.domain.model import (
    FILE_CONTENT_TYPE,
    DocumentMapping,
    ProgressStatus,
    utcnow,
)
from cmsync.domain.progress import SyncProgressUpdate

if TYPE_CHECKING:
    from collections.abc import Callable

    from cmsync.domain.model import (
        ComparisonReport,
        ComparisonResult,
        EntryRef,
        FileComparisonResult,
        Link,
        MergeRequest,
    )
    from cmsync.domain.planning import PlanItem, SyncPlan
    from cmsync.domain.ports import SyncUnitOfWork
    from cmsync.domain.progress import ProgressBroker

log = getLogger(__name__)

SKIPPED_MESSAGE = "Skipped due to failed dependency: {label}"


@dataclass(frozen=True, slots=True)
class ItemOutcome:
    success: bool
    skipped: bool = False
    message: str | None = None


@dataclass(eq=False)
class MergeRun:
    """Outcomes, id translation and progress reporting for one merge execution.

    Progress is one START for the run, one event per finished item and a final COMPLETED or
    ERROR. A cycle member whose deferred links fail to patch is reported a second time.
    """

    merge_request: MergeRequest
    report: ComparisonReport
    plan: SyncPlan
    unit_of_work_factory: Callable[[], SyncUnitOfWork]
    progress: ProgressBroker
    mappings: list[DocumentMapping] = field(default_factory=list["DocumentMapping"])
    outcomes: dict[tuple[str, str], ItemOutcome] = field(
        default_factory=dict["tuple[str, str]", "ItemOutcome"]
    )

    def __post_init__(self) -> None:
        self.index = self.report.index()
        self.source_links = LinkResolver.for_side(self.report, "source")
        self.total_items = len(self.plan.items())
        self.document_map: dict[tuple[str, str], str] = {}
        self.file_ids: dict[str, int] = {}
        for mapping in self.mappings:
            if mapping.target_document_id is None:
                continue
            self.document_map[(mapping.content_type, mapping.source_document_id)] = (
                mapping.target_document_id
            )
            if mapping.content_type == FILE_CONTENT_TYPE and mapping.target_id is not None:
                self.file_ids[mapping.source_document_id] = mapping.target_id
        for file_result in self.report.files:
            if file_result.source is not None and file_result.target is not None:
                self.file_ids.setdefault(file_result.source.document_id, file_result.target.id)
        for result in self.report.content_results():
            if result.source is not None and result.target is not None:
                self.document_map.setdefault(
                    (result.content_type, result.source.document_id), result.target.document_id
                )

    @property
    def merge_request_id(self) -> int:
        assert self.merge_request.id is not None
        return self.merge_request.id

    @property
    def processed_items(self) -> int:
        return len(self.outcomes)

    @property
    def has_dependency_skips(self) -> bool:
        return any(outcome.skipped for outcome in self.outcomes.values())

    @property
    def failures(self) -> int:
        return sum(1 for outcome in self.outcomes.values() if not outcome.success)

    def result_for(self, item: PlanItem) -> ComparisonResult | FileComparisonResult:
        return self.index[item.key]

    # Link translation ------------------------------------------------------

    def resolve_source_link(self, link: Link) -> ComparisonResult | FileComparisonResult | None:
        return self.source_links.resolve(link)

    def is_deferred(self, link: Link) -> bool:
        linked = self.resolve_source_link(link)
        if linked is None:
            return False
        return (linked.table_name, linked.document_id) in self.plan.cycle_keys

    def target_value(self, link: Link) -> str | int | None:
        """Target-instance reference for a source link: document id, numeric id for files."""

        linked = self.resolve_source_link(link)
        if linked is None:
            return None
        if link.is_file:
            return self.file_ids.get(linked.document_id)
        return self.document_map.get((linked.content_type, linked.document_id))

    # Outcomes --------------------------------------------------------------

    def blocking_failure(self, item: PlanItem) -> str | None:
        """Label of a failed item this one depends on, if any."""

        if item.is_delete:
            # Referrers are deleted first; a failed referrer keeps its target alive.
            keys = [edge.from_key for edge in self.plan.edges if edge.to_key == item.key]
        else:
            keys = self.plan.dependencies_of(item.key)
        for key in keys:
            outcome = self.outcomes.get(key)
            if outcome is not None and not outcome.success:
                return f"{key[0]}:{key[1]}"
        return None

    def succeed(self, item: PlanItem, operation: str, message: str | None = None) -> None:
        self._finish(item, ItemOutcome(success=True, message=message), operation)

    def fail(self, item: PlanItem, operation: str, message: str) -> None:
        log.warning(f"{operation} {item.label} failed: {message}")
        self._finish(item, ItemOutcome(success=False, message=message), operation)

    def skip(self, item: PlanItem, operation: str, blocker: str) -> None:
        message = SKIPPED_MESSAGE.format(label=blocker)
        log.info(f"{item.label}: {message}")
        self._finish(item, ItemOutcome(success=False, skipped=True, message=message), operation)

    def _finish(self, item: PlanItem, outcome: ItemOutcome, operation: str) -> None:
        self.outcomes[item.key] = outcome
        with self.unit_of_work_factory() as uow:
            for selection_id in item.selection_ids:
                uow.repositories.selections.record_outcome(
                    selection_id,
                    success=outcome.success,
                    failure_response=None if outcome.success else outcome.message,
                    synced_at=utcnow(),
                )
            uow.commit()
        if outcome.success:
            status = ProgressStatus.SUCCESS
        elif outcome.skipped:
            status = ProgressStatus.SKIPPED
        else:
            status = ProgressStatus.ERROR
        self.publish(status, item=item, operation=operation, message=outcome.message)

    def publish(
        self,
        status: ProgressStatus,
        *,
        item: PlanItem | None = None,
        operation: str | None = None,
        message: str | None = None,
    ) -> None:
        self.progress.publish(
            SyncProgressUpdate(
                merge_request_id=self.merge_request_id,
                total_items=self.total_items,
                processed_items=self.processed_items,
                status=status,
                current_item=item.label if item is not None else None,
                current_item_type=item.content_type if item is not None else None,
                current_operation=operation,
                message=message,
            )
        )

    # Mappings --------------------------------------------------------------

    def remember_target(
        self,
        item: PlanItem,
        ref: EntryRef,
        *,
        source_id: int | None,
        source_updated_at: str | None,
        source_hash: str | None,
        locale: str | None,
    ) -> None:
        """Record the counterpart of a successfully written source entry or file."""

        if item.is_file:
            if ref.id is not None:
                self.file_ids[item.document_id] = ref.id
        self.document_map[(item.content_type, item.document_id)] = ref.document_id

        now = utcnow()
        with self.unit_of_work_factory() as uow:
            repository = uow.repositories.mappings
            mapping = repository.get(
                self.merge_request.source_instance,
                self.merge_request.target_instance,
                item.content_type,
                item.document_id,
            )
            if mapping is None:
                mapping = DocumentMapping(
                    source_instance=self.merge_request.source_instance,
                    target_instance=self.merge_request.target_instance,
                    content_type=item.content_type,
                    source_document_id=item.document_id,
                    created_at=now,
                )
                repository.add(mapping)
            mapping.source_id = source_id
            mapping.source_updated_at = source_updated_at
            mapping.source_hash = source_hash
            mapping.target_id = ref.id
            mapping.target_document_id = ref.document_id
            mapping.target_updated_at = ref.updated_at
            mapping.locale = locale
            mapping.updated_at = now
            uow.commit()

    def forget_target(self, item: PlanItem, target_document_id: str) -> None:
        with self.unit_of_work_factory() as uow:
            removed = uow.repositories.mappings.delete_by_target(
                self.merge_request.source_instance,
                self.merge_request.target_instance,
                item.content_type,
                target_document_id,
            )
            uow.commit()
        if removed:
            log.debug(f"Removed {removed} mapping(s) for deleted {item.label}")
