"""File storage for phasegraph: YAML edge lists and markdown work items."""

import logging
from datetime import datetime
from pathlib import Path

import frontmatter
import yaml

from phasegraph.errors import DuplicateEdgeError
from phasegraph.models import (
    Edge,
    NodeKind,
    WorkItem,
    sequence_number,
    status_for,
    validate_project_key,
)

logger = logging.getLogger(__name__)


def _parse_datetime(value: str | datetime | None) -> datetime:
    """Parse datetime from string or return datetime directly."""
    if value is None:
        return datetime.now()
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


class EdgeStorage:
    """Persist dependency edges per project and node kind as YAML lists."""

    def __init__(self, root: Path):
        self.root = root
        self.projects_dir = root / "projects"

    def ensure_initialized(self) -> None:
        """Create .phasegraph/projects/ if not exists."""
        self.projects_dir.mkdir(parents=True, exist_ok=True)

    def edges_path(self, project: str, kind: NodeKind) -> Path:
        """Get the path to the edge file for a project and kind."""
        project_dir = self.projects_dir / validate_project_key(project)
        return project_dir / f"{kind.value}_dependencies.yml"

    def list_edges(self, project: str, kind: NodeKind) -> list[Edge]:
        """Load every edge of one project and kind."""
        path = self.edges_path(project, kind)
        if not path.exists():
            return []
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        edges = [
            Edge(
                from_id=entry["from"],
                to_id=entry["to"],
                created_at=_parse_datetime(entry.get("created_at")),
            )
            for entry in data.get("edges", []) or []
        ]
        logger.debug("Loaded %d %s edges for project %s", len(edges), kind.value, project)
        return edges

    def insert_edge(self, project: str, kind: NodeKind, from_id: str, to_id: str) -> Edge:
        """Append an edge. Raises DuplicateEdgeError if the pair is already stored."""
        edges = self.list_edges(project, kind)
        edge = Edge(from_id=from_id, to_id=to_id, created_at=datetime.now())
        if edge in edges:
            raise DuplicateEdgeError(from_id, to_id)
        edges.append(edge)
        self._save_edges(project, kind, edges)
        return edge

    def delete_edge(self, project: str, kind: NodeKind, from_id: str, to_id: str) -> bool:
        """Delete an edge. Returns True if deleted."""
        edges = self.list_edges(project, kind)
        target = Edge(from_id=from_id, to_id=to_id)
        if target not in edges:
            return False
        self._save_edges(project, kind, [e for e in edges if e != target])
        return True

    def delete_edges_for_node(self, project: str, kind: NodeKind, node_id: str) -> int:
        """Delete every edge touching a node in either direction. Returns the count removed."""
        edges = self.list_edges(project, kind)
        kept = [e for e in edges if node_id not in (e.from_id, e.to_id)]
        removed = len(edges) - len(kept)
        if removed:
            self._save_edges(project, kind, kept)
        return removed

    def _save_edges(self, project: str, kind: NodeKind, edges: list[Edge]) -> None:
        path = self.edges_path(project, kind)
        path.parent.mkdir(parents=True, exist_ok=True)
        data = {
            "edges": [
                {
                    "from": edge.from_id,
                    "to": edge.to_id,
                    "created_at": (edge.created_at or datetime.now()).isoformat(),
                }
                for edge in edges
            ]
        }
        with open(path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)


class WorkItemStorage:
    """Read/write epics and tasks as markdown files with YAML frontmatter."""

    def __init__(self, root: Path):
        self.root = root
        self.projects_dir = root / "projects"

    def ensure_initialized(self) -> None:
        self.projects_dir.mkdir(parents=True, exist_ok=True)

    def items_dir(self, project: str, kind: NodeKind) -> Path:
        return self.projects_dir / validate_project_key(project) / kind.plural

    def item_path(self, project: str, kind: NodeKind, item_id: str) -> Path:
        """Get the path to an item's markdown file."""
        return self.items_dir(project, kind) / f"{item_id}.md"

    def read_item(self, project: str, kind: NodeKind, item_id: str) -> WorkItem | None:
        """Read and parse a single item file."""
        if Path(item_id).name != item_id:
            return None
        path = self.item_path(project, kind, item_id)
        if not path.exists():
            return None
        post = frontmatter.load(path)
        return self._parse_item(post, project, kind)

    def write_item(self, item: WorkItem) -> None:
        path = self.item_path(item.project, item.kind, item.id)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self._serialize_item(item))

    def delete_item(self, project: str, kind: NodeKind, item_id: str) -> bool:
        """Delete an item file. Returns True if deleted."""
        path = self.item_path(project, kind, item_id)
        if path.exists():
            path.unlink()
            return True
        return False

    def list_item_ids(self, project: str, kind: NodeKind) -> list[str]:
        """List item IDs from filenames."""
        items_dir = self.items_dir(project, kind)
        if not items_dir.exists():
            return []
        return sorted(p.stem for p in items_dir.glob("*.md"))

    def list_items(self, project: str, kind: NodeKind) -> list[WorkItem]:
        return [
            item
            for item_id in self.list_item_ids(project, kind)
            if (item := self.read_item(project, kind, item_id)) is not None
        ]

    def find_by_display_key(self, project: str, kind: NodeKind, display_key: str) -> WorkItem | None:
        """Find item by display key (case-insensitive)."""
        key_upper = display_key.upper()
        for item in self.list_items(project, kind):
            if item.display_key.upper() == key_upper:
                return item
        return None

    def next_sequence_number(self, project: str, kind: NodeKind) -> int:
        """Next display-key number; epics and tasks are numbered separately."""
        numbers = [sequence_number(item.display_key) for item in self.list_items(project, kind)]
        return max((n for n in numbers if n is not None), default=0) + 1

    def _parse_item(self, post: frontmatter.Post, project: str, kind: NodeKind) -> WorkItem:
        """Parse frontmatter Post into WorkItem dataclass."""
        metadata = post.metadata
        return WorkItem(
            id=metadata["id"],
            project=metadata.get("project", project),
            kind=kind,
            title=metadata["title"],
            display_key=metadata.get("display_key", ""),
            status=status_for(kind, metadata.get("status")),
            description=post.content.strip(),
            created_at=_parse_datetime(metadata.get("created_at")),
            updated_at=_parse_datetime(metadata.get("updated_at")),
        )

    def _serialize_item(self, item: WorkItem) -> str:
        """Serialize WorkItem to markdown with YAML frontmatter."""
        metadata = {
            "id": item.id,
            "project": item.project,
            "kind": item.kind.value,
            "display_key": item.display_key,
            "title": item.title,
            "status": item.status.value,
            "created_at": item.created_at.isoformat(),
            "updated_at": item.updated_at.isoformat(),
        }
        post = frontmatter.Post(item.description, **metadata)
        return frontmatter.dumps(post)
