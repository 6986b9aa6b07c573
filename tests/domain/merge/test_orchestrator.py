from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import pytest

from cmsync.domain.comparison import MismatchKind
from cmsync.domain.errors import (
    InvalidStateTransition,
    MergeRequestNotFound,
    RecordNotFound,
    SchemaIncompatible,
    SnapshotFailure,
)
from cmsync.domain.model import CompareMode, CompareState, Direction, MergeRequestStatus
from tests.helpers.content import (
    ARTICLE,
    AUTHOR,
    article,
    author,
    blog_schemas,
    content_type,
    scalar,
)
from tests.helpers.workflow import advance_to_collections, compared_merge_request, install_blog

if TYPE_CHECKING:
    from collections.abc import Callable

    from cmsync.adapters.sqlalchemy.unit_of_work import SqlAlchemySyncUnitOfWork
    from cmsync.domain.merge import MergeOrchestrator
    from tests.helpers.stores import StoreRegistry


def _set_status(
    unit_of_work: Callable[[], SqlAlchemySyncUnitOfWork],
    merge_request_id: int,
    status: MergeRequestStatus,
) -> None:
    with unit_of_work() as uow:
        stored = uow.repositories.merge_requests.get(merge_request_id)
        assert stored is not None
        stored.status = status
        uow.commit()


def test_create_rejects_identical_instances(orchestrator: MergeOrchestrator) -> None:
    with pytest.raises(ValueError, match="must differ"):
        orchestrator.create_merge_request("loop", "prod", "prod")


def test_create_list_and_delete(orchestrator: MergeOrchestrator) -> None:
    first = orchestrator.create_merge_request("one", "staging", "prod", description="first")
    second = orchestrator.create_merge_request("two", "staging", "prod")
    assert first.id is not None
    assert second.id is not None

    assert [merge_request.name for merge_request in orchestrator.list_merge_requests()] == [
        "two",
        "one",
    ]
    assert orchestrator.get_merge_request(first.id).status is MergeRequestStatus.CREATED

    orchestrator.delete_merge_request(first.id)

    with pytest.raises(MergeRequestNotFound):
        orchestrator.get_merge_request(first.id)
    with pytest.raises(MergeRequestNotFound):
        orchestrator.delete_merge_request(first.id)


def test_schema_check_gates_the_comparison(
    orchestrator: MergeOrchestrator, stores: StoreRegistry
) -> None:
    content_types, components = blog_schemas()
    stores.source.install(content_types, components)
    stores.target.install([schema for schema in content_types if schema.uid != AUTHOR], components)
    merge_request = orchestrator.create_merge_request("release", "staging", "prod")
    assert merge_request.id is not None

    with pytest.raises(InvalidStateTransition, match="schema check"):
        asyncio.run(orchestrator.compare(merge_request.id))

    verdict = asyncio.run(orchestrator.check_schema(merge_request.id))
    assert verdict.missing_in_target == [AUTHOR]
    status = orchestrator.get_merge_request(merge_request.id).status
    assert status is MergeRequestStatus.SCHEMA_CHECKED
    with pytest.raises(SchemaIncompatible, match="missing in target"):
        asyncio.run(orchestrator.compare(merge_request.id))

    stores.target.install(*blog_schemas())
    cached = asyncio.run(orchestrator.check_schema(merge_request.id))
    assert cached.missing_in_target == [AUTHOR]

    fresh = asyncio.run(orchestrator.check_schema(merge_request.id, force=True))
    assert fresh.is_compatible
    assert stores.source.closed == stores.target.closed == 2
    assert asyncio.run(orchestrator.compare(merge_request.id)) is not None


def test_forced_recheck_blocks_comparison_again(
    orchestrator: MergeOrchestrator, stores: StoreRegistry
) -> None:
    install_blog(stores)
    merge_request_id = compared_merge_request(orchestrator)
    content_types, components = blog_schemas()
    stores.target.install([schema for schema in content_types if schema.uid != AUTHOR], components)

    verdict = asyncio.run(orchestrator.check_schema(merge_request_id, force=True))

    assert not verdict.is_compatible
    assert orchestrator.get_merge_request(merge_request_id).status is MergeRequestStatus.COMPARED
    with pytest.raises(SchemaIncompatible):
        asyncio.run(orchestrator.compare(merge_request_id, CompareMode.FULL))


def test_schema_mismatch_lists_attribute_changes(
    orchestrator: MergeOrchestrator, stores: StoreRegistry
) -> None:
    content_types, components = blog_schemas()
    stores.source.install(content_types, components)
    changed_author = content_type(AUTHOR, [scalar("name", "text"), scalar("bio", "text")])
    stores.target.install(
        [changed_author if schema.uid == AUTHOR else schema for schema in content_types],
        components,
    )
    merge_request = orchestrator.create_merge_request("release", "staging", "prod")
    assert merge_request.id is not None

    verdict = asyncio.run(orchestrator.check_schema(merge_request.id))

    (incompatibility,) = verdict.incompatible
    assert incompatibility.uid == AUTHOR
    assert [(mismatch.name, mismatch.kind) for mismatch in incompatibility.mismatches] == [
        ("name", MismatchKind.TYPE_CHANGED)
    ]
    status = orchestrator.get_merge_request(merge_request.id).status
    assert status is MergeRequestStatus.SCHEMA_CHECKED


def test_compare_modes(orchestrator: MergeOrchestrator, stores: StoreRegistry) -> None:
    install_blog(stores)
    stores.source.add_entry(AUTHOR, author("auth-1", "Ada", id=1))
    merge_request = orchestrator.create_merge_request("release", "staging", "prod")
    assert merge_request.id is not None
    asyncio.run(orchestrator.check_schema(merge_request.id))

    assert asyncio.run(orchestrator.compare(merge_request.id, CompareMode.CACHE)) is None
    status = orchestrator.get_merge_request(merge_request.id).status
    assert status is MergeRequestStatus.SCHEMA_CHECKED

    stores.source.add_entry(AUTHOR, author("auth-2", "Bea", id=2))
    cached = asyncio.run(orchestrator.compare(merge_request.id))
    assert cached is not None
    assert [result.document_id for result in cached.collections["authors"]] == ["auth-1"]
    assert orchestrator.get_merge_request(merge_request.id).status is MergeRequestStatus.COMPARED

    full = asyncio.run(orchestrator.compare(merge_request.id, CompareMode.FULL))
    assert full is not None
    assert [result.document_id for result in full.collections["authors"]] == [
        "auth-1",
        "auth-2",
    ]
    assert orchestrator.load_comparison(merge_request.id).counts()[
        CompareState.ONLY_IN_SOURCE
    ] == 2


def test_exclusions_apply_on_next_comparison(
    orchestrator: MergeOrchestrator, stores: StoreRegistry
) -> None:
    install_blog(stores)
    stores.source.add_entry(ARTICLE, article("art-1", "One", id=1))
    stores.source.add_entry(ARTICLE, article("art-2", "Two", id=2))
    merge_request_id = compared_merge_request(orchestrator)

    exclusion = orchestrator.add_exclusion(merge_request_id, ARTICLE, "art-2")
    again = orchestrator.add_exclusion(merge_request_id, ARTICLE, "art-2")
    assert again.id == exclusion.id
    asyncio.run(orchestrator.compare(merge_request_id))

    report = orchestrator.load_comparison(merge_request_id)
    assert [result.document_id for result in report.collections["articles"]] == ["art-1"]

    assert exclusion.id is not None
    orchestrator.remove_exclusion(merge_request_id, exclusion.id)
    assert orchestrator.list_exclusions(merge_request_id) == []
    with pytest.raises(RecordNotFound):
        orchestrator.remove_exclusion(merge_request_id, exclusion.id)


def test_mappings_are_scoped_to_the_instance_pair(
    orchestrator: MergeOrchestrator, stores: StoreRegistry
) -> None:
    install_blog(stores)
    merge_request = orchestrator.create_merge_request("release", "staging", "prod")
    other = orchestrator.create_merge_request("back", "prod", "staging")
    assert merge_request.id is not None
    assert other.id is not None

    first = orchestrator.upsert_mapping(
        merge_request.id,
        content_type=AUTHOR,
        source_document_id="auth-1",
        target_document_id="auth-x",
    )
    updated = orchestrator.upsert_mapping(
        merge_request.id,
        content_type=AUTHOR,
        source_document_id="auth-1",
        target_document_id="auth-y",
    )
    orchestrator.upsert_mapping(
        merge_request.id,
        content_type=ARTICLE,
        source_document_id="art-1",
        target_document_id="art-z",
    )

    assert updated.id == first.id
    mappings = orchestrator.list_mappings(merge_request.id, AUTHOR)
    assert [(mapping.source_document_id, mapping.target_document_id) for mapping in mappings] == [
        ("auth-1", "auth-y")
    ]
    assert len(orchestrator.list_mappings(merge_request.id)) == 2
    assert orchestrator.list_mappings(other.id) == []

    assert first.id is not None
    with pytest.raises(RecordNotFound):
        orchestrator.delete_mapping(other.id, first.id)
    orchestrator.delete_mapping(merge_request.id, first.id)
    with pytest.raises(RecordNotFound):
        orchestrator.delete_mapping(merge_request.id, first.id)


def test_advance_walks_the_wizard_in_order(
    orchestrator: MergeOrchestrator, stores: StoreRegistry
) -> None:
    install_blog(stores)
    merge_request_id = compared_merge_request(orchestrator)

    with pytest.raises(InvalidStateTransition, match="not a wizard checkpoint"):
        orchestrator.advance(merge_request_id, MergeRequestStatus.COMPLETED)
    with pytest.raises(InvalidStateTransition):
        orchestrator.advance(merge_request_id, MergeRequestStatus.MERGED_SINGLES)

    orchestrator.advance(merge_request_id, MergeRequestStatus.MERGED_FILES)
    repeated = orchestrator.advance(merge_request_id, MergeRequestStatus.MERGED_FILES)

    assert repeated.status is MergeRequestStatus.MERGED_FILES


def test_complete_requires_the_last_checkpoint(
    orchestrator: MergeOrchestrator, stores: StoreRegistry
) -> None:
    install_blog(stores)
    merge_request_id = compared_merge_request(orchestrator)

    with pytest.raises(InvalidStateTransition) as excinfo:
        asyncio.run(orchestrator.complete(merge_request_id, take_snapshot=False))

    assert excinfo.value.current is MergeRequestStatus.COMPARED
    assert excinfo.value.requested is MergeRequestStatus.IN_PROGRESS


def test_missing_snapshot_blocks_unless_allowed(
    orchestrator: MergeOrchestrator, stores: StoreRegistry
) -> None:
    install_blog(stores)
    merge_request_id = compared_merge_request(orchestrator)
    advance_to_collections(orchestrator, merge_request_id)

    with pytest.raises(SnapshotFailure):
        asyncio.run(orchestrator.complete(merge_request_id))
    status = orchestrator.get_merge_request(merge_request_id).status
    assert status is MergeRequestStatus.MERGED_COLLECTIONS

    finished = asyncio.run(orchestrator.complete(merge_request_id, allow_without_snapshot=True))
    assert finished.status is MergeRequestStatus.COMPLETED


class _RacingSnapshots:
    """Snapshot stand-in that lets another run grab the merge request first."""

    def __init__(self, unit_of_work: Callable[[], SqlAlchemySyncUnitOfWork]) -> None:
        self.unit_of_work = unit_of_work

    def take(self, merge_request_id: int) -> None:
        with self.unit_of_work() as uow:
            uow.repositories.merge_requests.compare_and_set_status(
                merge_request_id,
                expected=MergeRequestStatus.MERGED_COLLECTIONS,
                new=MergeRequestStatus.IN_PROGRESS,
            )
            uow.commit()


def test_only_one_run_acquires_the_merge_request(
    orchestrator: MergeOrchestrator,
    stores: StoreRegistry,
    sqlite_unit_of_work: Callable[[], SqlAlchemySyncUnitOfWork],
) -> None:
    install_blog(stores)
    stores.source.add_entry(AUTHOR, author("auth-1", "Ada", id=1))
    merge_request_id = compared_merge_request(orchestrator)
    orchestrator.selections.bulk_set(merge_request_id, "authors", Direction.TO_CREATE, True)
    advance_to_collections(orchestrator, merge_request_id)
    orchestrator.snapshots = _RacingSnapshots(sqlite_unit_of_work)  # type: ignore[assignment]

    with pytest.raises(InvalidStateTransition, match="concurrently"):
        asyncio.run(orchestrator.complete(merge_request_id))

    assert stores.target.calls == []
    with pytest.raises(InvalidStateTransition, match="in progress"):
        orchestrator.delete_merge_request(merge_request_id)
    with pytest.raises(InvalidStateTransition):
        orchestrator.add_exclusion(merge_request_id, AUTHOR, "auth-1")


def test_plan_preview_uses_current_selections(
    orchestrator: MergeOrchestrator,
    stores: StoreRegistry,
    sqlite_unit_of_work: Callable[[], SqlAlchemySyncUnitOfWork],
) -> None:
    install_blog(stores)
    stores.source.add_entry(AUTHOR, author("auth-1", "Ada", id=1))
    stores.source.add_entry(AUTHOR, author("auth-2", "Bea", id=2))
    merge_request_id = compared_merge_request(orchestrator)
    orchestrator.selections.bulk_set(
        merge_request_id, "authors", Direction.TO_CREATE, True, document_ids=["auth-2"]
    )

    plan = orchestrator.plan(merge_request_id)

    assert [[item.label for item in batch] for batch in plan.batches] == [["authors:auth-2"]]

    _set_status(sqlite_unit_of_work, merge_request_id, MergeRequestStatus.FAILED)
    assert orchestrator.plan(merge_request_id).batches == plan.batches


def test_recompare_drops_selections_that_no_longer_apply(
    orchestrator: MergeOrchestrator, stores: StoreRegistry
) -> None:
    install_blog(stores)
    stores.source.add_entry(AUTHOR, author("auth-1", "Ada", id=1))
    stores.source.add_entry(AUTHOR, author("auth-2", "Bea", id=2))
    merge_request_id = compared_merge_request(orchestrator)
    orchestrator.selections.bulk_set(merge_request_id, "authors", Direction.TO_CREATE, True)
    stores.target.add_entry(AUTHOR, author("auth-1", "Ada", id=5))

    asyncio.run(orchestrator.compare(merge_request_id, CompareMode.FULL))

    assert [
        selection.label for selection in orchestrator.selections.list_selections(merge_request_id)
    ] == ["authors:auth-2"]
    assert [item.label for item in orchestrator.plan(merge_request_id).items()] == [
        "authors:auth-2"
    ]
