"""Turn a comparison and a set of selections into an ordered sync plan.

Create/update items depend on what their source entry links to; delete items on what their
target entry links to. Dependencies between selected items of the same group become edges,
dependencies on entries already present on the target are satisfied, everything else is
reported as missing (the item is still scheduled).

Strongly connected components with more than one member, or a self link, are held out of the
batches: they are applied after all batches without their mutual links, which are patched in
afterwards.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING, Any

from cmsync.domain.comparison.engine import LinkResolver
from cmsync.domain.errors import CycleDetected
from cmsync.domain.model import (
    DIRECTION_BY_STATE,
    FILES_TABLE,
    CompareState,
    ContentKind,
    Direction,
)
from cmsync.domain.planning.graph import strongly_connected_components, topological_levels

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from cmsync.domain.model import (
        ComparisonReport,
        ComparisonResult,
        FileComparisonResult,
        Link,
        Selection,
    )

log = getLogger(__name__)

REASON_NOT_IN_COMPARISON = "Referenced entity not found in comparison"
REASON_NOT_SELECTED = "Dependency not selected and not present in target"

type NodeKey = tuple[str, str]

_KIND_ORDER = {ContentKind.SINGLE: 0, ContentKind.COLLECTION: 1, ContentKind.FILES: 2}


@dataclass(frozen=True, slots=True, kw_only=True)
class PlanItem:
    table_name: str
    content_type: str
    document_id: str
    direction: Direction
    kind: ContentKind
    selection_ids: tuple[int, ...] = ()

    @property
    def key(self) -> NodeKey:
        return (self.table_name, self.document_id)

    @property
    def label(self) -> str:
        return f"{self.table_name}:{self.document_id}"

    @property
    def is_file(self) -> bool:
        return self.table_name == FILES_TABLE

    @property
    def is_delete(self) -> bool:
        return self.direction is Direction.TO_DELETE

    def to_payload(self) -> dict[str, Any]:
        return {
            "tableName": self.table_name,
            "contentType": self.content_type,
            "documentId": self.document_id,
            "direction": str(self.direction),
            "kind": str(self.kind),
        }


@dataclass(frozen=True, slots=True, kw_only=True)
class MissingDependency:
    table_name: str
    document_id: str
    field: str
    target_table: str
    target_document_id: str | None
    target_id: int | None
    reason: str

    def to_payload(self) -> dict[str, Any]:
        return {
            "tableName": self.table_name,
            "documentId": self.document_id,
            "field": self.field,
            "targetTable": self.target_table,
            "targetDocumentId": self.target_document_id,
            "targetId": self.target_id,
            "reason": self.reason,
        }


@dataclass(frozen=True, slots=True, kw_only=True)
class PlanEdge:
    """``from`` depends on ``to`` through ``field``."""

    from_table: str
    from_document_id: str
    to_table: str
    to_document_id: str
    field: str

    @property
    def from_key(self) -> NodeKey:
        return (self.from_table, self.from_document_id)

    @property
    def to_key(self) -> NodeKey:
        return (self.to_table, self.to_document_id)

    def to_payload(self) -> dict[str, Any]:
        return {
            "fromTable": self.from_table,
            "fromDocumentId": self.from_document_id,
            "toTable": self.to_table,
            "toDocumentId": self.to_document_id,
            "field": self.field,
        }


CircularEdge = PlanEdge


@dataclass(slots=True, kw_only=True)
class SyncPlan:
    batches: list[list[PlanItem]] = field(default_factory=list["list[PlanItem]"])
    missing_dependencies: list[MissingDependency] = field(
        default_factory=list["MissingDependency"]
    )
    circular_edges: list[CircularEdge] = field(default_factory=list["CircularEdge"])
    edges: list[PlanEdge] = field(default_factory=list["PlanEdge"])
    cycle_members: list[PlanItem] = field(default_factory=list["PlanItem"])

    @property
    def apply_batches(self) -> list[list[PlanItem]]:
        """Create/update batches, files first."""

        return [batch for batch in self.batches if batch and not batch[0].is_delete]

    @property
    def delete_batches(self) -> list[list[PlanItem]]:
        return [batch for batch in self.batches if batch and batch[0].is_delete]

    @property
    def cycle_keys(self) -> frozenset[NodeKey]:
        return frozenset(item.key for item in self.cycle_members)

    def items(self) -> list[PlanItem]:
        return [item for batch in self.batches for item in batch] + list(self.cycle_members)

    def dependencies_of(self, key: NodeKey) -> list[NodeKey]:
        return [edge.to_key for edge in self.edges if edge.from_key == key]

    def batch_index(self) -> dict[NodeKey, int]:
        return {item.key: index for index, batch in enumerate(self.batches) for item in batch}

    def raise_for_cycles(self) -> None:
        if not self.circular_edges:
            return
        members = tuple(item.label for item in self.cycle_members)
        raise CycleDetected(
            f"Circular dependencies between {len(members)} item(s): {', '.join(members)}",
            members=members,
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "batches": [[item.to_payload() for item in batch] for batch in self.batches],
            "missingDependencies": [item.to_payload() for item in self.missing_dependencies],
            "circularEdges": [edge.to_payload() for edge in self.circular_edges],
            "edges": [edge.to_payload() for edge in self.edges],
            "cycleMembers": [item.to_payload() for item in self.cycle_members],
        }


def plan_sort_key(item: PlanItem) -> tuple[int, str, str]:
    return (_KIND_ORDER.get(item.kind, 3), item.table_name, item.document_id)


def compute_sync_plan(
    report: ComparisonReport,
    selections: Iterable[Selection],
    mapped_document_ids: Iterable[tuple[str, str]] = (),
) -> SyncPlan:
    """Build the plan for ``selections``.

    ``mapped_document_ids`` holds ``(content_type, source_document_id)`` pairs that already
    have a counterpart on the target.
    """

    index = report.index()
    mapped = set(mapped_document_ids)
    items = _plan_items(index, selections)

    apply_items = {key: item for key, item in items.items() if not item.is_delete}
    delete_items = {key: item for key, item in items.items() if item.is_delete}

    plan = SyncPlan()
    source_resolver = LinkResolver.for_side(report, "source")
    target_resolver = LinkResolver.for_side(report, "target")

    apply_edges: list[PlanEdge] = []
    for key, item in sorted(apply_items.items(), key=lambda pair: plan_sort_key(pair[1])):
        entry = index[key].source
        for link in _links_of(entry):
            linked = source_resolver.resolve(link)
            if linked is None:
                plan.missing_dependencies.append(_missing(item, link, REASON_NOT_IN_COMPARISON))
                continue
            linked_key = (linked.table_name, linked.document_id)
            if linked_key in apply_items:
                apply_edges.append(_edge(item, linked_key, link.field))
            elif linked.state in {CompareState.IDENTICAL, CompareState.DIFFERENT}:
                continue
            elif (linked.content_type, linked.document_id) in mapped:
                continue
            else:
                plan.missing_dependencies.append(_missing(item, link, REASON_NOT_SELECTED))

    delete_edges: list[PlanEdge] = []
    for key, item in sorted(delete_items.items(), key=lambda pair: plan_sort_key(pair[1])):
        entry = index[key].target
        for link in _links_of(entry):
            linked = target_resolver.resolve(link)
            if linked is None:
                plan.missing_dependencies.append(_missing(item, link, REASON_NOT_IN_COMPARISON))
                continue
            linked_key = (linked.table_name, linked.document_id)
            if linked_key in delete_items:
                delete_edges.append(_edge(item, linked_key, link.field))
    plan.edges = apply_edges + delete_edges

    components = _cycle_components(apply_items, apply_edges, "apply")
    components.update(_cycle_components(delete_items, delete_edges, "delete"))
    cycle_keys = set(components)
    plan.circular_edges = [
        edge
        for edge in plan.edges
        if edge.from_key in components
        and components[edge.from_key] == components.get(edge.to_key)
    ]
    plan.cycle_members = sorted(
        (items[key] for key in cycle_keys),
        key=lambda item: (item.is_delete, *plan_sort_key(item)),
    )

    file_batch = sorted(
        (item for key, item in apply_items.items() if item.is_file and key not in cycle_keys),
        key=plan_sort_key,
    )
    if file_batch:
        plan.batches.append(file_batch)

    content_nodes = [
        key for key, item in apply_items.items() if not item.is_file and key not in cycle_keys
    ]
    dependencies: dict[NodeKey, list[NodeKey]] = defaultdict(list)
    for edge in apply_edges:
        dependencies[edge.from_key].append(edge.to_key)
    for level in topological_levels(
        content_nodes, dependencies, sort_key=lambda key: plan_sort_key(items[key])
    ):
        plan.batches.append([items[key] for key in level])

    # Deletes run referrers first: level on reversed edges.
    reversed_dependencies: dict[NodeKey, list[NodeKey]] = defaultdict(list)
    for edge in delete_edges:
        reversed_dependencies[edge.to_key].append(edge.from_key)
    delete_nodes = [key for key in delete_items if key not in cycle_keys]
    for level in topological_levels(
        delete_nodes, reversed_dependencies, sort_key=lambda key: plan_sort_key(items[key])
    ):
        plan.batches.append([items[key] for key in level])

    log.debug(
        f"Plan: {len(plan.batches)} batch(es), {len(plan.cycle_members)} cycle member(s), "
        f"{len(plan.missing_dependencies)} missing dependenc(ies)"
    )
    return plan


def _plan_items(
    index: dict[NodeKey, ComparisonResult | FileComparisonResult],
    selections: Iterable[Selection],
) -> dict[NodeKey, PlanItem]:
    grouped: dict[NodeKey, list[Selection]] = defaultdict(list)
    for selection in selections:
        grouped[(selection.table_name, selection.document_id)].append(selection)

    items: dict[NodeKey, PlanItem] = {}
    for key, group in grouped.items():
        result = index.get(key)
        if result is None:
            log.warning(f"Selection {key[0]}:{key[1]} is not part of the comparison; skipping")
            continue
        # Selections made before a recompare may no longer match the entry's state.
        expected = DIRECTION_BY_STATE.get(result.state)
        matching = [s for s in group if s.direction is expected]
        if not matching:
            log.warning(
                f"Selection {key[0]}:{key[1]} no longer matches its state {result.state}; skipping"
            )
            continue
        selection = matching[0]
        items[key] = PlanItem(
            table_name=selection.table_name,
            content_type=result.content_type,
            document_id=selection.document_id,
            direction=selection.direction,
            kind=result.kind,
            selection_ids=tuple(sorted(s.id for s in matching if s.id is not None)),
        )
    return items


def _links_of(entry: Any) -> Sequence[Link]:
    # File assets carry no links.
    return getattr(entry, "links", ()) if entry is not None else ()


def _cycle_components(
    nodes: dict[NodeKey, PlanItem], edges: list[PlanEdge], group: str
) -> dict[NodeKey, tuple[str, int]]:
    """Members of non-trivial strongly connected components, mapped to their component."""

    successors: dict[NodeKey, list[NodeKey]] = defaultdict(list)
    self_linked: set[NodeKey] = set()
    for edge in edges:
        successors[edge.from_key].append(edge.to_key)
        if edge.from_key == edge.to_key:
            self_linked.add(edge.from_key)

    members: dict[NodeKey, tuple[str, int]] = {}
    components = strongly_connected_components(sorted(nodes), successors)
    for number, component in enumerate(components):
        if len(component) > 1 or component[0] in self_linked:
            members.update(dict.fromkeys(component, (group, number)))
    return members


def _edge(item: PlanItem, linked_key: NodeKey, field_name: str) -> PlanEdge:
    return PlanEdge(
        from_table=item.table_name,
        from_document_id=item.document_id,
        to_table=linked_key[0],
        to_document_id=linked_key[1],
        field=field_name,
    )


def _missing(item: PlanItem, link: Link, reason: str) -> MissingDependency:
    return MissingDependency(
        table_name=item.table_name,
        document_id=item.document_id,
        field=link.field,
        target_table=link.target_table,
        target_document_id=link.target_document_id,
        target_id=link.target_id,
        reason=reason,
    )
