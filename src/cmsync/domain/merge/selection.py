"""Selection bookkeeping: which diff items the user wants applied."""

from __future__ import annotations

from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING

from cmsync.domain.comparison.engine import LinkResolver, load_report
from cmsync.domain.errors import ComparisonRequired, InvalidSelection, MergeRequestNotFound
from cmsync.domain.merge.lifecycle import ensure_mutable
from cmsync.domain.model import (
    DIRECTION_BY_STATE,
    CompareState,
    Direction,
    MergeDataKind,
    Selection,
    utcnow,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from cmsync.domain.model import (
        ComparisonReport,
        ComparisonResult,
        FileComparisonResult,
        MergeRequest,
    )
    from cmsync.domain.ports import SyncUnitOfWork

log = getLogger(__name__)


def load_stored_report(uow: SyncUnitOfWork, merge_request_id: int) -> ComparisonReport:
    data = uow.repositories.merge_data.get(merge_request_id, MergeDataKind.COMPARISON)
    if data is None:
        raise ComparisonRequired(f"Merge request {merge_request_id} has not been compared yet")
    return load_report(data.payload)


def _load_mutable(uow: SyncUnitOfWork, merge_request_id: int) -> MergeRequest:
    merge_request = uow.repositories.merge_requests.get(merge_request_id)
    if merge_request is None:
        raise MergeRequestNotFound(merge_request_id)
    ensure_mutable(merge_request)
    return merge_request


@dataclass(slots=True)
class SelectionService:
    unit_of_work_factory: Callable[[], SyncUnitOfWork]

    def list_selections(self, merge_request_id: int) -> list[Selection]:
        with self.unit_of_work_factory() as uow:
            return uow.repositories.selections.list_for(merge_request_id)

    def set_selection(
        self,
        merge_request_id: int,
        table_name: str,
        document_id: str,
        direction: Direction,
        selected: bool,
        *,
        with_dependencies: bool = False,
    ) -> list[Selection]:
        """Select or deselect one diff item; returns the rows selected by this call.

        Repeating a call leaves the stored selections unchanged.
        """

        with self.unit_of_work_factory() as uow:
            _load_mutable(uow, merge_request_id)
            report = load_stored_report(uow, merge_request_id)
            result = report.lookup(table_name, document_id)
            if result is None:
                raise InvalidSelection(f"{table_name}:{document_id} is not part of the comparison")
            _ensure_actionable(result, direction)

            if not selected:
                for selection in uow.repositories.selections.find(
                    merge_request_id, table_name, document_id, direction
                ):
                    uow.repositories.selections.delete(selection)
                uow.commit()
                return []

            targets = [result]
            if with_dependencies and direction is not Direction.TO_DELETE:
                targets.extend(_dependencies_needing_sync(report, result))

            touched: list[Selection] = []
            for target in targets:
                target_direction = DIRECTION_BY_STATE[target.state]
                touched.append(
                    self._ensure_selected(uow, merge_request_id, target, target_direction)
                )
            uow.commit()
            return touched

    def bulk_set(
        self,
        merge_request_id: int,
        table_name: str,
        direction: Direction,
        selected: bool,
        *,
        select_all_kind: CompareState | None = None,
        document_ids: Iterable[str] | None = None,
    ) -> int:
        """Select or deselect many items of one table; returns the number of changed rows.

        Without ``document_ids`` every item of the table in state ``select_all_kind`` (by
        default the state matching ``direction``) is targeted. IDENTICAL items and items whose
        classification does not match ``direction`` are ignored.
        """

        with self.unit_of_work_factory() as uow:
            _load_mutable(uow, merge_request_id)
            report = load_stored_report(uow, merge_request_id)
            results = {
                result.document_id: result for result in report.results_for_table(table_name)
            }

            if document_ids is None:
                state = select_all_kind or _state_for(direction)
                candidates = [key for key, result in results.items() if result.state is state]
            else:
                candidates = list(dict.fromkeys(document_ids))
            wanted = {
                document_id
                for document_id in candidates
                if document_id in results
                and results[document_id].state is not CompareState.IDENTICAL
                and DIRECTION_BY_STATE[results[document_id].state] is direction
            }
            ignored = len(set(candidates)) - len(wanted)
            if ignored:
                log.debug(f"Ignoring {ignored} non-actionable id(s) for {table_name} {direction}")

            repository = uow.repositories.selections
            existing: dict[str, list[Selection]] = {}
            for selection in repository.list_for(merge_request_id):
                if selection.table_name == table_name and selection.direction is direction:
                    existing.setdefault(selection.document_id, []).append(selection)

            changed = 0
            if selected:
                for document_id in sorted(wanted - existing.keys()):
                    result = results[document_id]
                    repository.add(_new_selection(merge_request_id, result, direction))
                    changed += 1
            else:
                changed = repository.delete_documents(
                    merge_request_id, table_name, direction, sorted(wanted & existing.keys())
                )
            uow.commit()
            return changed

    def record_outcome(
        self,
        selection_id: int,
        *,
        success: bool,
        failure_response: str | None = None,
    ) -> None:
        with self.unit_of_work_factory() as uow:
            uow.repositories.selections.record_outcome(
                selection_id,
                success=success,
                failure_response=failure_response,
                synced_at=utcnow(),
            )
            uow.commit()

    @staticmethod
    def _ensure_selected(
        uow: SyncUnitOfWork,
        merge_request_id: int,
        result: ComparisonResult | FileComparisonResult,
        direction: Direction,
    ) -> Selection:
        repository = uow.repositories.selections
        existing = repository.find(
            merge_request_id, result.table_name, result.document_id, direction
        )
        if not existing:
            selection = _new_selection(merge_request_id, result, direction)
            repository.add(selection)
            return selection
        for duplicate in existing[1:]:
            repository.delete(duplicate)
        return existing[0]


def _state_for(direction: Direction) -> CompareState:
    for state, state_direction in DIRECTION_BY_STATE.items():
        if state_direction is direction:
            return state
    raise InvalidSelection(f"No comparison state corresponds to {direction}")


def _ensure_actionable(
    result: ComparisonResult | FileComparisonResult, direction: Direction
) -> None:
    if result.state is CompareState.IDENTICAL:
        raise InvalidSelection(
            f"{result.table_name}:{result.document_id} is identical on both instances"
        )
    expected = DIRECTION_BY_STATE[result.state]
    if direction is not expected:
        raise InvalidSelection(
            f"{result.table_name}:{result.document_id} is {result.state}; "
            f"only {expected} can be selected"
        )


def _new_selection(
    merge_request_id: int,
    result: ComparisonResult | FileComparisonResult,
    direction: Direction,
) -> Selection:
    return Selection(
        merge_request_id=merge_request_id,
        table_name=result.table_name,
        content_type=result.content_type,
        document_id=result.document_id,
        direction=direction,
        created_at=utcnow(),
    )


def _dependencies_needing_sync(
    report: ComparisonReport, root: ComparisonResult | FileComparisonResult
) -> list[ComparisonResult | FileComparisonResult]:
    """Transitive source-side dependencies that still need a create or update."""

    resolver = LinkResolver.for_side(report, "source")
    found: list[ComparisonResult | FileComparisonResult] = []
    seen = {(root.table_name, root.document_id)}
    pending = [root]
    while pending:
        current = pending.pop()
        for link in getattr(current.source, "links", ()):
            linked = resolver.resolve(link)
            if linked is None:
                continue
            key = (linked.table_name, linked.document_id)
            if key in seen:
                continue
            seen.add(key)
            if linked.state in {CompareState.ONLY_IN_SOURCE, CompareState.DIFFERENT}:
                found.append(linked)
                pending.append(linked)
    return found
