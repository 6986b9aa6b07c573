"""Comparison results and derived relationships."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field

from cmsync.domain.model.content import ContentEntry, FileAsset
from cmsync.domain.model.enums import (
    FILE_CONTENT_TYPE,
    FILES_TABLE,
    CompareState,
    ContentKind,
)


@dataclass(frozen=True, slots=True, kw_only=True)
class ComparisonResult:
    table_name: str
    content_type: str
    kind: ContentKind
    state: CompareState
    source: ContentEntry | None = None
    target: ContentEntry | None = None

    def __post_init__(self) -> None:
        if self.source is None and self.target is None:
            raise ValueError(f"Comparison result for {self.table_name} has no side populated")

    @property
    def document_id(self) -> str:
        """Stable selection id: the source document id, else the target's."""

        if self.source is not None:
            return self.source.document_id
        assert self.target is not None
        return self.target.document_id


@dataclass(frozen=True, slots=True, kw_only=True)
class FileComparisonResult:
    state: CompareState
    source: FileAsset | None = None
    target: FileAsset | None = None

    def __post_init__(self) -> None:
        if self.source is None and self.target is None:
            raise ValueError("File comparison result has no side populated")

    table_name = FILES_TABLE
    content_type = FILE_CONTENT_TYPE
    kind = ContentKind.FILES

    @property
    def document_id(self) -> str:
        if self.source is not None:
            return self.source.document_id
        assert self.target is not None
        return self.target.document_id


@dataclass(frozen=True, slots=True, kw_only=True)
class EntryRelationship:
    source_content_type: str
    source_table: str
    source_document_id: str
    field: str
    target_content_type: str
    target_table: str
    target_document_id: str
    relation: str | None
    bidirectional: bool
    compare_status: CompareState


@dataclass(slots=True, kw_only=True)
class ComparisonReport:
    """Classification of every entry slot of one merge request."""

    files: list[FileComparisonResult] = field(default_factory=list["FileComparisonResult"])
    singles: dict[str, ComparisonResult] = field(default_factory=dict["str", "ComparisonResult"])
    collections: dict[str, list[ComparisonResult]] = field(
        default_factory=dict["str", "list[ComparisonResult]"]
    )
    relationships: list[EntryRelationship] = field(
        default_factory=list["EntryRelationship"]
    )

    def content_results(self) -> Iterator[ComparisonResult]:
        for table in sorted(self.singles):
            yield self.singles[table]
        for table in sorted(self.collections):
            yield from self.collections[table]

    def lookup(
        self, table: str, document_id: str
    ) -> ComparisonResult | FileComparisonResult | None:
        return self.index().get((table, document_id))

    def index(self) -> dict[tuple[str, str], ComparisonResult | FileComparisonResult]:
        """Results keyed by (table, selection id)."""

        indexed: dict[tuple[str, str], ComparisonResult | FileComparisonResult] = {}
        for file_result in self.files:
            indexed[(FILES_TABLE, file_result.document_id)] = file_result
        for result in self.content_results():
            indexed[(result.table_name, result.document_id)] = result
        return indexed

    def results_for_table(self, table: str) -> list[ComparisonResult | FileComparisonResult]:
        if table == FILES_TABLE:
            return list(self.files)
        if table in self.singles:
            return [self.singles[table]]
        return list(self.collections.get(table, []))

    def classification(self) -> dict[tuple[str, str], CompareState]:
        return {key: result.state for key, result in self.index().items()}

    def counts(self) -> dict[CompareState, int]:
        totals = dict.fromkeys(CompareState, 0)
        for state in self.classification().values():
            totals[state] += 1
        return totals

    def relationship_mismatches(self) -> list[EntryRelationship]:
        return [
            relationship
            for relationship in self.relationships
            if relationship.compare_status is not CompareState.IDENTICAL
        ]
