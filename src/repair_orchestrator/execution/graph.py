"""Deterministic dependency graph for repair and workflow phases."""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Sequence, Set
from heapq import heapify, heappop, heappush

from repair_orchestrator.errors import ConfigurationError, DependencyCycleError


class DependencyGraph:
    """
    Directed graph of phase ids where an edge ``dependency -> dependent`` orders execution.

    Ready nodes are released by ascending ``priority``, then declaration order.
    """

    __slots__ = ("_children", "_declared", "_parents", "_priority")

    def __init__(self) -> None:
        self._declared: dict[str, int] = {}
        self._priority: dict[str, int] = {}
        self._children: dict[str, set[str]] = {}
        self._parents: dict[str, set[str]] = {}

    @classmethod
    def from_dependencies(
        cls,
        nodes: Iterable[tuple[str, Sequence[str], int]],
    ) -> DependencyGraph:
        """
        Build a graph from ``(node_id, dependencies, priority)`` triples.

        Raises ``ConfigurationError`` for duplicate ids or dependencies on unknown ids.
        """

        declared = list(nodes)
        graph = cls()
        for node_id, _, priority in declared:
            if node_id in graph._declared:
                raise ConfigurationError(f"duplicate phase id: {node_id}")
            graph.add_node(node_id, priority=priority)
        for node_id, dependencies, _ in declared:
            for dependency in dependencies:
                if dependency not in graph._declared:
                    raise ConfigurationError(
                        f"phase {node_id!r} depends on unknown phase {dependency!r}"
                    )
                graph.add_dependency(node_id, dependency)
        return graph

    @property
    def nodes(self) -> tuple[str, ...]:
        """Node ids in declaration order."""
        return tuple(self._declared)

    def add_node(self, node_id: str, *, priority: int = 0) -> None:
        if not isinstance(node_id, str) or not node_id.strip():
            raise ValueError("node id must be a non-empty string")
        if node_id in self._declared:
            return
        self._declared[node_id] = len(self._declared)
        self._priority[node_id] = priority
        self._children[node_id] = set()
        self._parents[node_id] = set()

    def add_dependency(self, node_id: str, depends_on: str) -> None:
        self._assert_node_exists(node_id)
        self._assert_node_exists(depends_on)
        self._children[depends_on].add(node_id)
        self._parents[node_id].add(depends_on)

    def topological_order(self) -> tuple[str, ...]:
        """Return a deterministic execution order or raise ``DependencyCycleError``."""
        indegree = {node: len(self._parents[node]) for node in self._declared}
        ready = [self._sort_key(node) for node, degree in indegree.items() if degree == 0]
        heapify(ready)

        order: list[str] = []
        while ready:
            _, _, node = heappop(ready)
            order.append(node)
            for child in self._children[node]:
                indegree[child] -= 1
                if indegree[child] == 0:
                    heappush(ready, self._sort_key(child))

        if len(order) != len(self._declared):
            raise DependencyCycleError(self.detect_cycles())
        return tuple(order)

    def detect_cycles(self) -> tuple[tuple[str, ...], ...]:
        """
        Detect directed cycles.

        Returns cycle paths as closed paths, e.g. ``("A", "B", "A")``.
        """
        state: dict[str, int] = {}
        stack: list[str] = []
        stack_index: dict[str, int] = {}
        cycles: dict[tuple[str, ...], None] = {}

        for start in self._declared:
            if state.get(start, 0) != 0:
                continue
            state[start] = 1
            stack_index[start] = len(stack)
            stack.append(start)
            frames: list[tuple[str, Iterator[str]]] = [(start, iter(self._ordered(start)))]

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
                    frames.append((child, iter(self._ordered(child))))
                elif child_state == 1:
                    cycle = tuple(stack[stack_index[child] :] + [child])
                    cycles[_canonicalize_cycle(cycle)] = None

        return tuple(sorted(cycles))

    def dependencies(self, node_id: str) -> tuple[str, ...]:
        self._assert_node_exists(node_id)
        return tuple(sorted(self._parents[node_id], key=self._declared.__getitem__))

    def dependents(self, node_id: str, *, transitive: bool = False) -> tuple[str, ...]:
        self._assert_node_exists(node_id)
        if not transitive:
            return tuple(sorted(self._children[node_id], key=self._declared.__getitem__))
        seen: set[str] = set()
        pending = list(self._children[node_id])
        while pending:
            current = pending.pop()
            if current in seen:
                continue
            seen.add(current)
            pending.extend(self._children[current])
        return tuple(sorted(seen, key=self._declared.__getitem__))

    def runnable(self, completed: Set[str]) -> tuple[str, ...]:
        """Nodes not yet completed whose dependencies are all in ``completed``."""
        return tuple(
            node
            for node in self._declared
            if node not in completed and self._parents[node] <= completed
        )

    def _sort_key(self, node_id: str) -> tuple[int, int, str]:
        return (self._priority[node_id], self._declared[node_id], node_id)

    def _ordered(self, node_id: str) -> list[str]:
        return sorted(self._children[node_id], key=self._declared.__getitem__)

    def _assert_node_exists(self, node_id: str) -> None:
        if node_id not in self._declared:
            raise ConfigurationError(f"unknown phase id: {node_id}")


def _canonicalize_cycle(cycle: Sequence[str]) -> tuple[str, ...]:
    core = tuple(cycle[:-1])
    if len(core) == 1:
        return (core[0], core[0])
    best = min(core[offset:] + core[:offset] for offset in range(len(core)))
    return best + (best[0],)


__all__ = ["DependencyGraph"]
