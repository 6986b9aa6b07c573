from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from cmsync.domain.errors import ComparisonRequired, InvalidSelection, InvalidStateTransition
from cmsync.domain.model import CompareState, Direction, MergeRequestStatus
from tests.helpers.content import ARTICLE, AUTHOR, article, author, ref
from tests.helpers.workflow import compared_merge_request, install_blog

if TYPE_CHECKING:
    from collections.abc import Callable

    from cmsync.adapters.sqlalchemy.unit_of_work import SqlAlchemySyncUnitOfWork
    from cmsync.domain.merge import MergeOrchestrator
    from tests.helpers.stores import StoreRegistry


@pytest.fixture
def merge_request_id(orchestrator: MergeOrchestrator, stores: StoreRegistry) -> int:
    install_blog(stores)
    stores.source.add_entry(AUTHOR, author("auth-1", "Ada", id=1))
    stores.source.add_entry(AUTHOR, author("auth-2", "Bea", id=2))
    stores.source.add_entry(ARTICLE, article("art-1", "Fresh", id=1, author=ref("auth-1", 1)))
    for store in (stores.source, stores.target):
        store.add_entry(ARTICLE, article("art-2", "Same", id=2))
    stores.source.add_entry(ARTICLE, article("art-3", "Changed", id=3, body="new"))
    stores.target.add_entry(ARTICLE, article("art-3", "Changed", id=3, body="old"))
    stores.target.add_entry(AUTHOR, author("auth-9", "Gone", id=9))
    return compared_merge_request(orchestrator)


def test_selecting_twice_keeps_one_row(
    orchestrator: MergeOrchestrator, merge_request_id: int
) -> None:
    service = orchestrator.selections

    first = service.set_selection(merge_request_id, "articles", "art-1", Direction.TO_CREATE, True)
    second = service.set_selection(merge_request_id, "articles", "art-1", Direction.TO_CREATE, True)

    assert [selection.id for selection in first] == [selection.id for selection in second]
    assert [selection.label for selection in service.list_selections(merge_request_id)] == [
        "articles:art-1"
    ]

    for _ in range(2):
        assert service.set_selection(
            merge_request_id, "articles", "art-1", Direction.TO_CREATE, False
        ) == []
    assert service.list_selections(merge_request_id) == []


def test_non_actionable_items_are_rejected(
    orchestrator: MergeOrchestrator, merge_request_id: int
) -> None:
    service = orchestrator.selections

    with pytest.raises(InvalidSelection, match="identical"):
        service.set_selection(merge_request_id, "articles", "art-2", Direction.TO_UPDATE, True)
    with pytest.raises(InvalidSelection, match="only TO_DELETE"):
        service.set_selection(merge_request_id, "authors", "auth-9", Direction.TO_CREATE, True)
    with pytest.raises(InvalidSelection, match="not part of the comparison"):
        service.set_selection(merge_request_id, "authors", "nobody", Direction.TO_CREATE, True)
    assert service.list_selections(merge_request_id) == []


def test_with_dependencies_adds_linked_entries(
    orchestrator: MergeOrchestrator, merge_request_id: int
) -> None:
    touched = orchestrator.selections.set_selection(
        merge_request_id,
        "articles",
        "art-1",
        Direction.TO_CREATE,
        True,
        with_dependencies=True,
    )

    assert [(selection.label, selection.direction) for selection in touched] == [
        ("articles:art-1", Direction.TO_CREATE),
        ("authors:auth-1", Direction.TO_CREATE),
    ]
    assert touched[1].content_type == AUTHOR


def test_bulk_set_counts_only_changed_rows(
    orchestrator: MergeOrchestrator, merge_request_id: int
) -> None:
    service = orchestrator.selections

    assert service.bulk_set(merge_request_id, "authors", Direction.TO_CREATE, True) == 2
    assert service.bulk_set(merge_request_id, "authors", Direction.TO_CREATE, True) == 0
    assert (
        service.bulk_set(
            merge_request_id,
            "authors",
            Direction.TO_CREATE,
            False,
            document_ids=["auth-1", "auth-9", "nobody", "auth-1"],
        )
        == 1
    )
    assert service.bulk_set(
        merge_request_id,
        "articles",
        Direction.TO_UPDATE,
        True,
        select_all_kind=CompareState.DIFFERENT,
    ) == 1
    assert {selection.label for selection in service.list_selections(merge_request_id)} == {
        "authors:auth-2",
        "articles:art-3",
    }


def test_record_outcome_is_stored(
    orchestrator: MergeOrchestrator, merge_request_id: int
) -> None:
    service = orchestrator.selections
    (selection,) = service.set_selection(
        merge_request_id, "authors", "auth-9", Direction.TO_DELETE, True
    )
    assert selection.id is not None

    service.record_outcome(selection.id, success=False, failure_response="rejected")

    (stored,) = service.list_selections(merge_request_id)
    assert stored.sync_success is False
    assert stored.sync_failure_response == "rejected"
    assert stored.sync_date is not None


def test_selection_needs_a_comparison(
    orchestrator: MergeOrchestrator, stores: StoreRegistry
) -> None:
    install_blog(stores)
    merge_request = orchestrator.create_merge_request("draft", "staging", "prod")
    assert merge_request.id is not None

    with pytest.raises(ComparisonRequired):
        orchestrator.selections.set_selection(
            merge_request.id, "authors", "auth-1", Direction.TO_CREATE, True
        )


def test_finished_merge_requests_are_locked(
    orchestrator: MergeOrchestrator,
    merge_request_id: int,
    sqlite_unit_of_work: Callable[[], SqlAlchemySyncUnitOfWork],
) -> None:
    with sqlite_unit_of_work() as uow:
        stored = uow.repositories.merge_requests.get(merge_request_id)
        assert stored is not None
        stored.status = MergeRequestStatus.COMPLETED
        uow.commit()

    with pytest.raises(InvalidStateTransition):
        orchestrator.selections.bulk_set(merge_request_id, "authors", Direction.TO_CREATE, True)
