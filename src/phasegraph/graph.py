"""Dependency graph engine: edge index, edge validation and phase computation."""

import logging
from collections import defaultdict, deque
from collections.abc import Iterable
from dataclasses import dataclass

from phasegraph.errors import (
    CycleError,
    CyclicNodesWarning,
    DuplicateEdgeError,
    SelfDependencyError,
)
from phasegraph.models import Edge, PhaseResult

logger = logging.getLogger(__name__)

SENTINEL_PHASE = 1


@dataclass
class EdgeStore:
    """Read-only adjacency index over one snapshot of a project's edges."""

    dependencies: dict[str, set[str]]  # node -> nodes it depends on
    dependents: dict[str, set[str]]  # node -> nodes depending on it

    @classmethod
    def load(cls, edges: Iterable[Edge]) -> "EdgeStore":
        """Build forward and reverse adjacency maps from a flat edge list."""
        dependencies: dict[str, set[str]] = defaultdict(set)
        dependents: dict[str, set[str]] = defaultdict(set)

        for edge in edges:
            dependencies[edge.from_id].add(edge.to_id)
            dependents[edge.to_id].add(edge.from_id)

        return cls(dependencies=dict(dependencies), dependents=dict(dependents))

    @property
    def nodes(self) -> set[str]:
        """Every node that appears on either end of an edge."""
        return set(self.dependencies) | set(self.dependents)

    @property
    def edge_count(self) -> int:
        return sum(len(targets) for targets in self.dependencies.values())

    def has_edge(self, from_id: str, to_id: str) -> bool:
        return to_id in self.dependencies.get(from_id, ())

    def dependencies_of(self, node: str) -> set[str]:
        """Get IDs the given node depends on."""
        return self.dependencies.get(node, set()).copy()

    def dependents_of(self, node: str) -> set[str]:
        """Get IDs that depend on the given node."""
        return self.dependents.get(node, set()).copy()

    def path_between(self, start: str, goal: str) -> list[str] | None:
        """Find a dependency path from start to goal, following dependency edges.

        Returns the list of node IDs from start to goal (both included), or
        None when goal is not reachable from start.
        """
        parents: dict[str, str | None] = {start: None}
        queue = deque([start])

        while queue:
            current = queue.popleft()
            if current == goal:
                path = []
                node: str | None = current
                while node is not None:
                    path.append(node)
                    node = parents[node]
                return list(reversed(path))
            for dependency in sorted(self.dependencies.get(current, ())):
                if dependency not in parents:
                    parents[dependency] = current
                    queue.append(dependency)

        return None

    def transitive_dependencies(self, node: str) -> list[str]:
        """Get all transitive dependencies in topological order (deepest first).

        The starting node is never included, even when it sits on a cycle.
        """
        visited = {node}
        result: list[str] = []
        work = [(node, iter(sorted(self.dependencies.get(node, ()))))]

        while work:
            current, children = work[-1]
            for child in children:
                if child not in visited:
                    visited.add(child)
                    work.append((child, iter(sorted(self.dependencies.get(child, ())))))
                    break
            else:
                work.pop()
                if current != node:
                    result.append(current)

        return result

    def cyclic_nodes(self, within: set[str] | None = None) -> set[str]:
        """Return nodes that lie on a directed cycle.

        Strongly connected components are found with an iterative Tarjan
        walk; a component counts when it has more than one member or a
        self-loop. When `within` is given, only that subgraph is searched.
        """
        candidates = self.nodes if within is None else within
        index: dict[str, int] = {}
        low: dict[str, int] = {}
        stack: list[str] = []
        on_stack: set[str] = set()
        cyclic: set[str] = set()

        def successors(node: str) -> list[str]:
            return sorted(self.dependencies.get(node, set()) & candidates)

        for root in sorted(candidates):
            if root in index:
                continue
            index[root] = low[root] = len(index)
            stack.append(root)
            on_stack.add(root)
            work = [(root, iter(successors(root)))]

            while work:
                node, children = work[-1]
                for child in children:
                    if child not in index:
                        index[child] = low[child] = len(index)
                        stack.append(child)
                        on_stack.add(child)
                        work.append((child, iter(successors(child))))
                        break
                    if child in on_stack:
                        low[node] = min(low[node], index[child])
                else:
                    work.pop()
                    if work:
                        parent = work[-1][0]
                        low[parent] = min(low[parent], low[node])
                    if low[node] == index[node]:
                        component = []
                        while True:
                            member = stack.pop()
                            on_stack.discard(member)
                            component.append(member)
                            if member == node:
                                break
                        if len(component) > 1 or self.has_edge(node, node):
                            cyclic.update(component)

        return cyclic


class EdgeValidator:
    """Decides whether a candidate edge may be inserted into a snapshot."""

    def can_add(self, store: EdgeStore, from_id: str, to_id: str) -> None:
        """
        Check that from_id -> to_id can be added.

        Raises:
            SelfDependencyError: If from_id == to_id.
            DuplicateEdgeError: If the edge already exists.
            CycleError: If to_id already (transitively) depends on from_id.
        """
        if from_id == to_id:
            raise SelfDependencyError(from_id, to_id)

        if store.has_edge(from_id, to_id):
            raise DuplicateEdgeError(from_id, to_id)

        # BFS from to_id following dependency edges to see if we reach from_id
        path = store.path_between(to_id, from_id)
        if path is not None:
            raise CycleError(from_id, to_id, path)


class PhaseCalculator:
    """Assigns every node a phase greater than the phase of each of its dependencies."""

    def compute_phases(self, store: EdgeStore, all_nodes: Iterable[str] = ()) -> PhaseResult:
        """Compute phases for a whole snapshot in one topological pass.

        Nodes with no dependencies get phase 1; every other node gets one more
        than its highest dependency. Nodes on a cycle cannot be ordered: they
        get the sentinel phase 1 and are reported through the result's
        `cyclic_nodes` and `warning`. Nodes depending on a cycle are still
        placed after it.
        """
        nodes = store.nodes | set(all_nodes)
        pending = {node: len(store.dependencies.get(node, ())) for node in nodes}
        candidate: dict[str, int] = {}
        phases: dict[str, int] = {}
        cyclic: set[str] = set()

        queue = deque(sorted(node for node, count in pending.items() if count == 0))

        def release(node: str) -> None:
            for dependent in sorted(store.dependents.get(node, ())):
                if dependent in phases or dependent in cyclic:
                    continue
                candidate[dependent] = max(candidate.get(dependent, 0), phases[node] + 1)
                pending[dependent] -= 1
                if pending[dependent] == 0:
                    queue.append(dependent)

        while True:
            while queue:
                node = queue.popleft()
                phases[node] = candidate.get(node, 1)
                release(node)

            unresolved = nodes - phases.keys()
            if not unresolved:
                break

            stuck = store.cyclic_nodes(within=unresolved)
            cyclic |= stuck
            for node in sorted(stuck):
                phases[node] = SENTINEL_PHASE
            for node in sorted(stuck):
                release(node)

        warning = None
        if cyclic:
            warning = CyclicNodesWarning(cyclic)
            logger.warning("%s; assigned sentinel phase %d", warning, SENTINEL_PHASE)

        return PhaseResult(phases=phases, cyclic_nodes=cyclic, warning=warning)
