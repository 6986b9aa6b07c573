"""Graph algorithms over hashable node keys."""

from __future__ import annotations

from collections.abc import Callable, Hashable, Iterable, Mapping


def strongly_connected_components[N: Hashable](
    nodes: Iterable[N],
    successors: Mapping[N, Iterable[N]],
) -> list[list[N]]:
    """Tarjan's algorithm, iterative so deep dependency chains do not hit the recursion limit.

    Components are returned in reverse topological order (a component comes before every
    component that reaches it).
    """

    index_of: dict[N, int] = {}
    lowlink: dict[N, int] = {}
    on_stack: set[N] = set()
    stack: list[N] = []
    components: list[list[N]] = []
    counter = 0

    for root in nodes:
        if root in index_of:
            continue
        work: list[tuple[N, list[N], int]] = [(root, list(successors.get(root, ())), 0)]
        index_of[root] = lowlink[root] = counter
        counter += 1
        stack.append(root)
        on_stack.add(root)

        while work:
            node, children, position = work[-1]
            if position < len(children):
                work[-1] = (node, children, position + 1)
                child = children[position]
                if child not in index_of:
                    index_of[child] = lowlink[child] = counter
                    counter += 1
                    stack.append(child)
                    on_stack.add(child)
                    work.append((child, list(successors.get(child, ())), 0))
                elif child in on_stack:
                    lowlink[node] = min(lowlink[node], index_of[child])
                continue

            work.pop()
            if work:
                parent = work[-1][0]
                lowlink[parent] = min(lowlink[parent], lowlink[node])
            if lowlink[node] == index_of[node]:
                component: list[N] = []
                while True:
                    member = stack.pop()
                    on_stack.discard(member)
                    component.append(member)
                    if member == node:
                        break
                components.append(component)

    return components


def topological_levels[N: Hashable](
    nodes: Iterable[N],
    dependencies: Mapping[N, Iterable[N]],
    *,
    sort_key: Callable[[N], object],
) -> list[list[N]]:
    """Kahn levelling: level 0 holds nodes without dependencies inside ``nodes``.

    Dependencies on nodes outside ``nodes`` are ignored. Each level is sorted by ``sort_key``.
    Raises ``ValueError`` when the remaining graph is cyclic.
    """

    members = list(dict.fromkeys(nodes))
    member_set = set(members)
    pending = {
        node: {dependency for dependency in dependencies.get(node, ()) if dependency in member_set}
        for node in members
    }
    dependents: dict[N, list[N]] = {node: [] for node in members}
    for node, node_dependencies in pending.items():
        for dependency in node_dependencies:
            dependents[dependency].append(node)

    levels: list[list[N]] = []
    current = sorted((node for node, deps in pending.items() if not deps), key=sort_key)
    placed = 0
    while current:
        levels.append(current)
        placed += len(current)
        ready: list[N] = []
        for node in current:
            for dependent in dependents[node]:
                remaining = pending[dependent]
                remaining.discard(node)
                if not remaining:
                    ready.append(dependent)
        current = sorted(ready, key=sort_key)

    if placed != len(members):
        raise ValueError("Graph contains a cycle; levelling is impossible")
    return levels
