"""Deterministic adjacency-list directed graph utilities."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator, Sequence
from heapq import heapify, heappop, heappush
from typing import Any


class CycleError(ValueError):
    """Raised when a strict ordering is requested on a cyclic graph."""

    cycles: tuple[tuple[str, ...], ...]

    def __init__(self, cycles: Iterable[Sequence[str]]) -> None:
        normalized: tuple[tuple[str, ...], ...] = tuple(tuple(path) for path in cycles)
        self.cycles = normalized

        if not normalized:
            message = "Graph contains at least one cycle."
        else:
            preview = ", ".join(" -> ".join(path) for path in normalized[:3])
            suffix = "..." if len(normalized) > 3 else ""
            message = f"Graph contains cycle(s): {preview}{suffix}"
        super().__init__(message)


class DirectedGraph:
    """Directed graph with deterministic traversal.

    An edge ``parent -> child`` reads "child comes after parent". For file
    graphs that is "parent imports child"; for action graphs it is "child
    depends on parent".
    """

    __slots__ = ("_nodes", "_children", "_parents")

    def __init__(
        self,
        nodes: Iterable[str] | None = None,
        edges: Iterable[tuple[str, str]] | None = None,
    ) -> None:
        self._nodes: set[str] = set()
        self._children: dict[str, set[str]] = {}
        self._parents: dict[str, set[str]] = {}

        if nodes is not None:
            for node_id in nodes:
                self.add_node(node_id)

        if edges is not None:
            for parent, child in edges:
                self.add_edge(parent, child)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    @property
    def nodes(self) -> tuple[str, ...]:
        """All node IDs in deterministic order."""
        return tuple(sorted(self._nodes))

    @property
    def edges(self) -> tuple[tuple[str, str], ...]:
        """All edges as ``(parent, child)`` pairs in deterministic order."""
        return tuple(
            (parent, child)
            for parent in sorted(self._nodes)
            for child in sorted(self._children[parent])
        )

    def add_node(self, node_id: str) -> None:
        if not node_id:
            raise ValueError("Node ID must be non-empty.")
        if node_id in self._nodes:
            return
        self._nodes.add(node_id)
        self._children[node_id] = set()
        self._parents[node_id] = set()

    def add_edge(self, parent: str, child: str) -> None:
        """Add a directed edge ``parent -> child``, creating missing nodes."""
        self.add_node(parent)
        self.add_node(child)
        self._children[parent].add(child)
        self._parents[child].add(parent)

    def children(self, node_id: str) -> tuple[str, ...]:
        self._assert_node_exists(node_id)
        return tuple(sorted(self._children[node_id]))

    def parents(self, node_id: str) -> tuple[str, ...]:
        self._assert_node_exists(node_id)
        return tuple(sorted(self._parents[node_id]))

    def descendants(self, node_id: str) -> tuple[str, ...]:
        """Return every node reachable from ``node_id``."""
        self._assert_node_exists(node_id)
        visited: set[str] = set()
        pending: list[str] = list(self._children[node_id])
        while pending:
            node = pending.pop()
            if node in visited:
                continue
            visited.add(node)
            pending.extend(child for child in self._children[node] if child not in visited)
        return tuple(sorted(visited))

    def topological_sort(self) -> tuple[str, ...]:
        """Return a deterministic topological ordering or raise ``CycleError``."""
        order, released = self.priority_order()
        if released:
            raise CycleError(self.detect_cycles())
        return order

    def priority_order(
        self,
        key: Callable[[str], Any] | None = None,
    ) -> tuple[tuple[str, ...], tuple[str, ...]]:
        """Topological order that prefers the smallest ``key`` among ready nodes.

        Cycles do not block the ordering: when no node is ready, the remaining
        node with the smallest key is released regardless of its unfinished
        parents. Returns ``(order, released_nodes)``; ``released_nodes`` is
        empty exactly when the graph is acyclic.
        """
        rank = key if key is not None else _identity_key
        indegree: dict[str, int] = {node: len(self._parents[node]) for node in self._nodes}
        ready: list[tuple[Any, str]] = [
            (rank(node), node) for node, degree in indegree.items() if degree == 0
        ]
        heapify(ready)

        emitted: set[str] = set()
        order: list[str] = []
        released: list[str] = []
        while len(order) < len(self._nodes):
            if not ready:
                remaining = sorted(
                    (node for node in self._nodes if node not in emitted),
                    key=lambda node: (rank(node), node),
                )
                forced = remaining[0]
                released.append(forced)
                heappush(ready, (rank(forced), forced))

            _, node = heappop(ready)
            if node in emitted:
                continue
            emitted.add(node)
            order.append(node)

            for child in sorted(self._children[node]):
                if child in emitted:
                    continue
                indegree[child] -= 1
                if indegree[child] == 0:
                    heappush(ready, (rank(child), child))

        return tuple(order), tuple(released)

    def detect_cycles(self) -> tuple[tuple[str, ...], ...]:
        """
        Detect directed cycles with an iterative depth-first search.

        Each node is unvisited (0), visiting (1, on the current path) or
        visited (2). Returns cycle paths as closed paths in canonical
        rotation, e.g. ``("A", "B", "C", "A")``.
        """
        state: dict[str, int] = {}
        stack: list[str] = []
        stack_index: dict[str, int] = {}
        cycles: dict[tuple[str, ...], None] = {}

        for start in sorted(self._nodes):
            if state.get(start, 0) != 0:
                continue

            state[start] = 1
            stack.append(start)
            stack_index[start] = 0
            frames: list[tuple[str, Iterator[str]]] = [(start, iter(sorted(self._children[start])))]

            while frames:
                node, child_iter = frames[-1]

                try:
                    child = next(child_iter)
                except StopIteration:
                    frames.pop()
                    state[node] = 2
                    stack.pop()
                    del stack_index[node]
                    continue

                child_state = state.get(child, 0)
                if child_state == 0:
                    state[child] = 1
                    stack_index[child] = len(stack)
                    stack.append(child)
                    frames.append((child, iter(sorted(self._children[child]))))
                elif child_state == 1:
                    cycle = tuple(stack[stack_index[child] :] + [child])
                    cycles[canonical_cycle(cycle)] = None

        return tuple(sorted(cycles))

    def _assert_node_exists(self, node_id: str) -> None:
        if node_id not in self._nodes:
            raise KeyError(f"Unknown node: {node_id}")


def canonical_cycle(cycle: Sequence[str]) -> tuple[str, ...]:
    """Rotate a closed path so its smallest member comes first."""
    if len(cycle) < 2:
        raise ValueError("Cycle path must contain at least two nodes.")

    core = tuple(cycle[:-1])
    best = core
    for offset in range(1, len(core)):
        rotated = core[offset:] + core[:offset]
        if rotated < best:
            best = rotated
    return best + (best[0],)


def _identity_key(node: str) -> str:
    return node


__all__ = ["CycleError", "DirectedGraph", "canonical_cycle"]
