"""Business logic services for phasegraph."""

import logging
from collections.abc import Iterable
from datetime import datetime

from phasegraph.errors import EdgeNotFoundError, ItemNotFoundError
from phasegraph.graph import EdgeStore, EdgeValidator, PhaseCalculator
from phasegraph.models import (
    Edge,
    NodeKind,
    PhaseResult,
    WorkItem,
    generate_id,
    sequence_number,
    status_for,
)
from phasegraph.storage import EdgeStorage, WorkItemStorage

logger = logging.getLogger(__name__)


class GraphService:
    """Dependency operations over one edge storage, for any project and node kind."""

    def __init__(
        self,
        storage: EdgeStorage,
        validator: EdgeValidator | None = None,
        calculator: PhaseCalculator | None = None,
    ):
        self.storage = storage
        self.validator = validator or EdgeValidator()
        self.calculator = calculator or PhaseCalculator()
        self._stores: dict[tuple[str, NodeKind], EdgeStore] = {}

    def _invalidate(self, project: str, kind: NodeKind) -> None:
        """Invalidate cached snapshot when edges change."""
        self._stores.pop((project, kind), None)

    def snapshot(self, project: str, kind: NodeKind) -> EdgeStore:
        """Build a fresh snapshot straight from storage, bypassing the cache."""
        return EdgeStore.load(self.storage.list_edges(project, kind))

    def _get_store(self, project: str, kind: NodeKind) -> EdgeStore:
        """Get or build the cached snapshot."""
        key = (project, kind)
        if key not in self._stores:
            self._stores[key] = self.snapshot(project, kind)
        return self._stores[key]

    def add_dependency(self, project: str, kind: NodeKind, from_id: str, to_id: str) -> Edge:
        """
        Add dependency: from_id depends on to_id.

        Validation always runs against a freshly loaded snapshot, never the cache.

        Raises:
            SelfDependencyError: If from_id == to_id.
            DuplicateEdgeError: If the dependency already exists.
            CycleError: If adding the dependency would create a cycle.
        """
        store = self.snapshot(project, kind)
        self.validator.can_add(store, from_id, to_id)

        edge = self.storage.insert_edge(project, kind, from_id, to_id)
        self._invalidate(project, kind)
        logger.info("Added %s dependency %s -> %s in %s", kind.value, from_id, to_id, project)
        return edge

    def remove_dependency(self, project: str, kind: NodeKind, from_id: str, to_id: str) -> None:
        """
        Remove dependency: from_id no longer depends on to_id.

        Raises:
            EdgeNotFoundError: If the dependency does not exist.
        """
        if not self.storage.delete_edge(project, kind, from_id, to_id):
            raise EdgeNotFoundError(from_id, to_id)

        self._invalidate(project, kind)
        logger.info("Removed %s dependency %s -> %s in %s", kind.value, from_id, to_id, project)

    def remove_node(self, project: str, kind: NodeKind, node: str) -> int:
        """Delete every edge touching node. Returns the number of edges removed."""
        removed = self.storage.delete_edges_for_node(project, kind, node)
        if removed:
            self._invalidate(project, kind)
            logger.info("Removed %d %s dependencies of %s", removed, kind.value, node)
        return removed

    def list_dependencies(self, project: str, kind: NodeKind, node: str) -> set[str]:
        """Get IDs node depends on directly."""
        return self._get_store(project, kind).dependencies_of(node)

    def list_dependents(self, project: str, kind: NodeKind, node: str) -> set[str]:
        """Get IDs depending directly on node."""
        return self._get_store(project, kind).dependents_of(node)

    def list_transitive_dependencies(self, project: str, kind: NodeKind, node: str) -> list[str]:
        return self._get_store(project, kind).transitive_dependencies(node)

    def compute_project_phases(
        self, project: str, kind: NodeKind, all_nodes: Iterable[str] = ()
    ) -> PhaseResult:
        """Compute phases for every node of a project from a single snapshot."""
        store = self.snapshot(project, kind)
        return self.calculator.compute_phases(store, all_nodes)

    def find_cycles(self, project: str, kind: NodeKind) -> set[str]:
        """Find nodes on dependency cycles already present in persisted data."""
        return self.snapshot(project, kind).cyclic_nodes()


class WorkItemService:
    """Business logic layer for epics and tasks."""

    def __init__(self, storage: WorkItemStorage, graph: GraphService):
        self.storage = storage
        self.graph = graph

    def create_item(
        self,
        project: str,
        kind: NodeKind,
        title: str,
        description: str = "",
        depends_on: list[str] | None = None,
    ) -> WorkItem:
        """Create a new item, optionally depending on existing items of the same kind."""
        # All references must resolve before anything is written
        dependencies = {
            dep.id: dep
            for dep in (self.resolve_item(project, kind, ref) for ref in depends_on or [])
        }

        number = self.storage.next_sequence_number(project, kind)
        item_id = generate_id(kind.prefix)
        while self.storage.read_item(project, kind, item_id) is not None:
            item_id = generate_id(kind.prefix)
        item = WorkItem(
            id=item_id,
            project=project,
            kind=kind,
            title=title,
            display_key=kind.display_key(project, number),
            description=description,
        )
        self.storage.write_item(item)
        logger.info("Created %s %s (%s) in %s", kind.value, item.id, item.display_key, project)

        for dependency_id in dependencies:
            self.graph.add_dependency(project, kind, item.id, dependency_id)

        return item

    def get_item(self, project: str, kind: NodeKind, item_id: str) -> WorkItem | None:
        """Get an item by ID."""
        return self.storage.read_item(project, kind, item_id)

    def resolve_item(self, project: str, kind: NodeKind, ref: str) -> WorkItem:
        """Get item by ID or display key.

        Raises:
            ItemNotFoundError: If nothing matches ref.
        """
        item = self.storage.read_item(project, kind, ref)
        if item is None:
            item = self.storage.find_by_display_key(project, kind, ref)
        if item is None:
            raise ItemNotFoundError(ref)
        return item

    def list_items(self, project: str, kind: NodeKind, status: str | None = None) -> list[WorkItem]:
        """List items, optionally filtered by status, in display-key order."""
        items = self.storage.list_items(project, kind)
        if status is not None:
            wanted = status_for(kind, status)
            items = [i for i in items if i.status == wanted]
        return sorted(items, key=_display_order)

    def set_status(self, project: str, kind: NodeKind, ref: str, status: str) -> WorkItem:
        item = self.resolve_item(project, kind, ref)
        item.status = status_for(kind, status)
        item.updated_at = datetime.now()
        self.storage.write_item(item)
        return item

    def delete_item(self, project: str, kind: NodeKind, ref: str) -> WorkItem:
        """Delete an item along with every dependency pointing to or from it."""
        item = self.resolve_item(project, kind, ref)
        self.graph.remove_node(project, kind, item.id)
        self.storage.delete_item(project, kind, item.id)
        logger.info("Deleted %s %s in %s", kind.value, item.id, project)
        return item

    def add_dependency(self, project: str, kind: NodeKind, ref: str, depends_on_ref: str) -> Edge:
        """
        Add dependency between two items referenced by ID or display key.

        Raises:
            ItemNotFoundError: If either item doesn't exist.
            EdgeError: If the graph rejects the edge.
        """
        item = self.resolve_item(project, kind, ref)
        dependency = self.resolve_item(project, kind, depends_on_ref)
        return self.graph.add_dependency(project, kind, item.id, dependency.id)

    def remove_dependency(self, project: str, kind: NodeKind, ref: str, depends_on_ref: str) -> None:
        item = self.resolve_item(project, kind, ref)
        dependency = self.resolve_item(project, kind, depends_on_ref)
        self.graph.remove_dependency(project, kind, item.id, dependency.id)

    def list_dependencies(self, project: str, kind: NodeKind, ref: str) -> list[WorkItem]:
        """Get the items ref depends on directly."""
        item = self.resolve_item(project, kind, ref)
        return self._items_for(project, kind, self.graph.list_dependencies(project, kind, item.id))

    def list_dependents(self, project: str, kind: NodeKind, ref: str) -> list[WorkItem]:
        item = self.resolve_item(project, kind, ref)
        return self._items_for(project, kind, self.graph.list_dependents(project, kind, item.id))

    def list_transitive_dependencies(self, project: str, kind: NodeKind, ref: str) -> list[WorkItem]:
        """Get everything ref depends on, directly or not, deepest first."""
        item = self.resolve_item(project, kind, ref)
        ids = self.graph.list_transitive_dependencies(project, kind, item.id)
        found = (self.storage.read_item(project, kind, node_id) for node_id in ids)
        return [dependency for dependency in found if dependency is not None]

    def compute_phases(self, project: str, kind: NodeKind) -> tuple[list[WorkItem], PhaseResult]:
        """Compute phases for every item of a kind, including items without edges."""
        items = self.list_items(project, kind)
        result = self.graph.compute_project_phases(project, kind, [i.id for i in items])
        return items, result

    def item_views(self, project: str, kind: NodeKind) -> list[dict]:
        """Build API-style views of every item with `phase` and `dependsOn` fields.

        Phases and dependencies come from one snapshot.
        """
        views, _ = self._build_views(project, kind)
        return views

    def phase_waves(self, project: str, kind: NodeKind) -> list[list[dict]]:
        """Item views grouped by phase, lowest first, in display-key order within a phase."""
        views, result = self._build_views(project, kind)
        by_id = {view["id"]: view for view in views}
        position = {view["id"]: n for n, view in enumerate(views)}
        waves = []
        for wave in result.waves():
            # Edge endpoints without an item file have no view
            known = sorted((n for n in wave if n in by_id), key=position.__getitem__)
            if known:
                waves.append([by_id[node_id] for node_id in known])
        return waves

    def _build_views(self, project: str, kind: NodeKind) -> tuple[list[dict], PhaseResult]:
        items = self.list_items(project, kind)
        store = self.graph.snapshot(project, kind)
        result = self.graph.calculator.compute_phases(store, [i.id for i in items])
        keys = {item.id: item.display_key for item in items}
        views = []
        for item in items:
            depends_on = store.dependencies_of(item.id)
            views.append(
                {
                    "id": item.id,
                    "displayKey": item.display_key,
                    "projectId": item.project,
                    "title": item.title,
                    "status": item.status.value,
                    "phase": result.phases[item.id],
                    "dependsOn": sorted(keys.get(d, d) for d in depends_on),
                    "inCycle": item.id in result.cyclic_nodes,
                }
            )
        return views, result

    def ready_items(self, project: str, kind: NodeKind) -> list[WorkItem]:
        """Open items whose dependencies are all done."""
        items = self.list_items(project, kind)
        done_ids = {i.id for i in items if i.is_done()}
        return [
            item
            for item in items
            if not item.is_done()
            and self.graph.list_dependencies(project, kind, item.id) <= done_ids
        ]

    def _items_for(self, project: str, kind: NodeKind, ids: set[str]) -> list[WorkItem]:
        items = [
            item
            for item_id in ids
            if (item := self.storage.read_item(project, kind, item_id)) is not None
        ]
        return sorted(items, key=_display_order)


def _display_order(item: WorkItem) -> tuple[int, str]:
    """Sort key: numeric part of the display key, then ID."""
    return (sequence_number(item.display_key) or 0, item.id)
