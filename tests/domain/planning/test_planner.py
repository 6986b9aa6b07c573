from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from cmsync.domain.comparison import ComparisonEngine
from cmsync.domain.errors import CycleDetected
from cmsync.domain.model import (
    DIRECTION_BY_STATE,
    FILES_TABLE,
    CompareState,
    Direction,
    Selection,
)
from cmsync.domain.planning import (
    REASON_NOT_IN_COMPARISON,
    REASON_NOT_SELECTED,
    compute_sync_plan,
)
from tests.helpers.comparison import RawEntries, file_asset, prefetch
from tests.helpers.content import ARTICLE, AUTHOR, HOMEPAGE, article, author, ref

if TYPE_CHECKING:
    from collections.abc import Sequence

    from cmsync.domain.model import ComparisonReport, FileAsset


def _report(
    source: RawEntries, target: RawEntries, source_files: Sequence[FileAsset] = ()
) -> ComparisonReport:
    return ComparisonEngine().compare(prefetch(source, target, source_files=source_files)).report


def _select(report: ComparisonReport, *keys: tuple[str, str]) -> list[Selection]:
    selections: list[Selection] = []
    for number, (table, document_id) in enumerate(keys, start=1):
        result = report.lookup(table, document_id)
        assert result is not None
        selections.append(
            Selection(
                merge_request_id=1,
                table_name=table,
                content_type=result.content_type,
                document_id=document_id,
                direction=DIRECTION_BY_STATE[result.state],
                id=number,
            )
        )
    return selections


def test_dependency_already_mapped_on_target_is_satisfied() -> None:
    report = _report(
        {
            AUTHOR: [author("auth-b", "Bea", id=2)],
            ARTICLE: [article("art-a", "A", id=1, author=ref("auth-b", 2))],
        },
        {},
    )

    plan = compute_sync_plan(
        report, _select(report, ("articles", "art-a")), mapped_document_ids={(AUTHOR, "auth-b")}
    )

    assert [[item.label for item in batch] for batch in plan.batches] == [["articles:art-a"]]
    assert plan.missing_dependencies == []
    assert plan.circular_edges == []


def test_unselected_dependency_is_reported_but_item_still_planned() -> None:
    report = _report(
        {
            AUTHOR: [author("auth-b", "Bea", id=2)],
            ARTICLE: [
                article("art-a", "A", id=1, author=ref("auth-b", 2), related=ref("art-x", 99))
            ],
        },
        {},
    )

    plan = compute_sync_plan(report, _select(report, ("articles", "art-a")))

    assert plan.batch_index() == {("articles", "art-a"): 0}
    assert {(missing.field, missing.reason) for missing in plan.missing_dependencies} == {
        ("author", REASON_NOT_SELECTED),
        ("related", REASON_NOT_IN_COMPARISON),
    }


def test_dependency_present_on_target_needs_no_selection() -> None:
    shared_author = author("auth-b", "Bea", id=2)
    report = _report(
        {
            AUTHOR: [shared_author],
            ARTICLE: [article("art-a", "A", id=1, author=ref("auth-b", 2))],
        },
        {AUTHOR: [shared_author]},
    )

    plan = compute_sync_plan(report, _select(report, ("articles", "art-a")))

    assert plan.missing_dependencies == []


def test_mutual_references_are_held_out_as_a_cycle() -> None:
    report = _report(
        {
            ARTICLE: [
                article("art-a", "A", id=1, related=ref("art-b", 2)),
                article("art-b", "B", id=2, related=ref("art-a", 1)),
                article("art-c", "C", id=3),
            ]
        },
        {},
    )

    plan = compute_sync_plan(
        report,
        _select(report, ("articles", "art-a"), ("articles", "art-b"), ("articles", "art-c")),
    )

    assert {(edge.from_document_id, edge.to_document_id) for edge in plan.circular_edges} == {
        ("art-a", "art-b"),
        ("art-b", "art-a"),
    }
    assert [[item.document_id for item in batch] for batch in plan.batches] == [["art-c"]]
    assert [item.document_id for item in plan.cycle_members] == ["art-a", "art-b"]
    assert {item.document_id for item in plan.items()} == {"art-a", "art-b", "art-c"}
    with pytest.raises(CycleDetected) as excinfo:
        plan.raise_for_cycles()
    assert excinfo.value.members == ("articles:art-a", "articles:art-b")
    assert len(plan.to_payload()["circularEdges"]) == 2


def test_self_reference_counts_as_cycle() -> None:
    report = _report({ARTICLE: [article("art-a", "A", id=1, related=ref("art-a", 1))]}, {})

    plan = compute_sync_plan(report, _select(report, ("articles", "art-a")))

    assert plan.batches == []
    assert [item.document_id for item in plan.cycle_members] == ["art-a"]


def test_every_dependency_lands_in_an_earlier_batch() -> None:
    report = _report(
        {
            AUTHOR: [author("auth-1", "Ada", id=1), author("auth-2", "Bea", id=2)],
            ARTICLE: [
                article("art-1", "One", id=1, author=ref("auth-1", 1), cover=ref("file-1", 1)),
                article("art-2", "Two", id=2, author=ref("auth-2", 2), related=ref("art-1", 1)),
                article("art-3", "Three", id=3, related=ref("art-2", 2)),
            ],
            HOMEPAGE: [
                {"id": 1, "documentId": "home", "headline": "Hi", "featured": ref("art-3", 3)}
            ],
        },
        {HOMEPAGE: [{"id": 5, "documentId": "home", "headline": "Old"}]},
        source_files=[file_asset("file-1", "cover.png", id=1)],
    )
    keys = [
        (FILES_TABLE, "file-1"),
        ("authors", "auth-1"),
        ("authors", "auth-2"),
        ("articles", "art-1"),
        ("articles", "art-2"),
        ("articles", "art-3"),
        ("homepage", "home"),
    ]

    plan = compute_sync_plan(report, _select(report, *keys))

    position = plan.batch_index()
    assert set(position) == set(keys)
    assert position[(FILES_TABLE, "file-1")] == 0
    assert plan.edges
    for edge in plan.edges:
        assert position[edge.to_key] < position[edge.from_key], edge
    assert [item.document_id for item in plan.batches[1]] == ["auth-1", "auth-2"]
    assert sorted(plan.dependencies_of(("articles", "art-2"))) == [
        ("articles", "art-1"),
        ("authors", "auth-2"),
    ]


def test_deletes_run_referrers_first_after_applies() -> None:
    report = _report(
        {AUTHOR: [author("auth-new", "New", id=1)]},
        {
            AUTHOR: [author("auth-old", "Old", id=5)],
            ARTICLE: [article("art-old", "Old", id=6, author=ref("auth-old", 5))],
        },
    )

    plan = compute_sync_plan(
        report,
        _select(report, ("authors", "auth-old"), ("articles", "art-old"), ("authors", "auth-new")),
    )

    assert [[item.label for item in batch] for batch in plan.apply_batches] == [
        ["authors:auth-new"]
    ]
    assert [[item.label for item in batch] for batch in plan.delete_batches] == [
        ["articles:art-old"],
        ["authors:auth-old"],
    ]
    assert plan.batches[-1][0].is_delete


def test_selections_outside_the_comparison_are_skipped() -> None:
    report = _report({AUTHOR: [author("auth-1", "Ada", id=1)]}, {})
    stray = Selection(
        merge_request_id=1,
        table_name="authors",
        content_type=AUTHOR,
        document_id="vanished",
        direction=Direction.TO_CREATE,
    )

    plan = compute_sync_plan(report, [*_select(report, ("authors", "auth-1")), stray])

    assert [item.document_id for item in plan.items()] == ["auth-1"]
    assert plan.items()[0].selection_ids == (1,)


def test_selections_outdated_by_a_recompare_are_skipped() -> None:
    source = {AUTHOR: [author("auth-1", "Ada", id=1), author("auth-2", "Bea", id=2)]}
    first = _report(source, {})
    selections = _select(first, ("authors", "auth-1"), ("authors", "auth-2"))

    recompared = _report(
        source,
        {AUTHOR: [author("auth-1", "Ada", id=7), author("auth-2", "Bea", id=8, bio="old")]},
    )
    assert {
        result.document_id: result.state for result in recompared.collections["authors"]
    } == {"auth-1": CompareState.IDENTICAL, "auth-2": CompareState.DIFFERENT}

    plan = compute_sync_plan(recompared, selections)

    assert plan.batches == []
    assert plan.items() == []
