"""Tests for phasegraph.storage."""

from datetime import datetime
from pathlib import Path

import pytest
import yaml

from phasegraph.errors import DuplicateEdgeError, InvalidProjectKeyError
from phasegraph.models import Edge, NodeKind, TaskStatus, WorkItem
from phasegraph.storage import EdgeStorage, WorkItemStorage


@pytest.fixture
def root(tmp_path: Path) -> Path:
    return tmp_path / ".phasegraph"


@pytest.fixture
def edges(root: Path) -> EdgeStorage:
    storage = EdgeStorage(root)
    storage.ensure_initialized()
    return storage


@pytest.fixture
def items(root: Path) -> WorkItemStorage:
    storage = WorkItemStorage(root)
    storage.ensure_initialized()
    return storage


class TestEdgeStorage:
    def test_ensure_initialized_creates_directories(self, tmp_path: Path):
        root = tmp_path / ".phasegraph"
        EdgeStorage(root).ensure_initialized()
        assert (root / "projects").is_dir()

    def test_edges_path(self, edges: EdgeStorage, root: Path):
        path = edges.edges_path("CORE", NodeKind.EPIC)
        assert path == root / "projects" / "CORE" / "epic_dependencies.yml"

    def test_list_edges_empty(self, edges: EdgeStorage):
        assert edges.list_edges("CORE", NodeKind.TASK) == []

    def test_insert_and_list(self, edges: EdgeStorage):
        edge = edges.insert_edge("CORE", NodeKind.TASK, "tk-a", "tk-b")

        assert edge == Edge("tk-a", "tk-b")
        assert edge.created_at is not None
        loaded = edges.list_edges("CORE", NodeKind.TASK)
        assert loaded == [Edge("tk-a", "tk-b")]
        assert loaded[0].created_at == edge.created_at

    def test_insert_rejects_duplicate(self, edges: EdgeStorage):
        edges.insert_edge("CORE", NodeKind.TASK, "tk-a", "tk-b")
        with pytest.raises(DuplicateEdgeError):
            edges.insert_edge("CORE", NodeKind.TASK, "tk-a", "tk-b")

    def test_kinds_and_projects_are_separate(self, edges: EdgeStorage):
        edges.insert_edge("CORE", NodeKind.TASK, "a", "b")
        edges.insert_edge("CORE", NodeKind.EPIC, "a", "b")
        edges.insert_edge("OTHER", NodeKind.TASK, "a", "b")

        assert len(edges.list_edges("CORE", NodeKind.TASK)) == 1
        assert len(edges.list_edges("CORE", NodeKind.EPIC)) == 1
        assert len(edges.list_edges("OTHER", NodeKind.TASK)) == 1

    def test_file_format(self, edges: EdgeStorage):
        edges.insert_edge("CORE", NodeKind.EPIC, "ep-a", "ep-b")

        with open(edges.edges_path("CORE", NodeKind.EPIC)) as f:
            data = yaml.safe_load(f)
        assert data["edges"][0]["from"] == "ep-a"
        assert data["edges"][0]["to"] == "ep-b"
        assert "created_at" in data["edges"][0]

    def test_delete_edge(self, edges: EdgeStorage):
        edges.insert_edge("CORE", NodeKind.TASK, "a", "b")
        edges.insert_edge("CORE", NodeKind.TASK, "a", "c")

        assert edges.delete_edge("CORE", NodeKind.TASK, "a", "b") is True
        assert edges.list_edges("CORE", NodeKind.TASK) == [Edge("a", "c")]

    def test_delete_missing_edge(self, edges: EdgeStorage):
        edges.insert_edge("CORE", NodeKind.TASK, "a", "b")

        assert edges.delete_edge("CORE", NodeKind.TASK, "b", "a") is False
        assert edges.list_edges("CORE", NodeKind.TASK) == [Edge("a", "b")]

    def test_delete_edges_for_node(self, edges: EdgeStorage):
        edges.insert_edge("CORE", NodeKind.TASK, "a", "b")
        edges.insert_edge("CORE", NodeKind.TASK, "b", "c")
        edges.insert_edge("CORE", NodeKind.TASK, "a", "c")

        assert edges.delete_edges_for_node("CORE", NodeKind.TASK, "b") == 2
        assert edges.list_edges("CORE", NodeKind.TASK) == [Edge("a", "c")]


class TestWorkItemStorage:
    def test_item_path(self, items: WorkItemStorage, root: Path):
        path = items.item_path("CORE", NodeKind.TASK, "tk-1234")
        assert path == root / "projects" / "CORE" / "tasks" / "tk-1234.md"

    def test_write_and_read_roundtrip(self, items: WorkItemStorage):
        item = WorkItem(
            id="tk-test",
            project="CORE",
            kind=NodeKind.TASK,
            title="Test Task",
            display_key="CORE-1",
            status=TaskStatus.IN_PROGRESS,
            description="Some description.",
            created_at=datetime(2025, 1, 6, 10, 0, 0),
            updated_at=datetime(2025, 1, 6, 12, 0, 0),
        )

        items.write_item(item)
        loaded = items.read_item("CORE", NodeKind.TASK, "tk-test")

        assert loaded == item

    def test_read_nonexistent_returns_none(self, items: WorkItemStorage):
        assert items.read_item("CORE", NodeKind.EPIC, "ep-missing") is None

    def test_delete_item(self, items: WorkItemStorage):
        items.write_item(WorkItem(id="ep-del", project="CORE", kind=NodeKind.EPIC, title="x"))

        assert items.delete_item("CORE", NodeKind.EPIC, "ep-del") is True
        assert items.read_item("CORE", NodeKind.EPIC, "ep-del") is None
        assert items.delete_item("CORE", NodeKind.EPIC, "ep-del") is False

    def test_list_items_by_kind(self, items: WorkItemStorage):
        items.write_item(WorkItem(id="ep-1", project="CORE", kind=NodeKind.EPIC, title="Epic"))
        items.write_item(WorkItem(id="tk-1", project="CORE", kind=NodeKind.TASK, title="Task"))

        assert [i.id for i in items.list_items("CORE", NodeKind.EPIC)] == ["ep-1"]
        assert [i.id for i in items.list_items("CORE", NodeKind.TASK)] == ["tk-1"]

    def test_find_by_display_key(self, items: WorkItemStorage):
        items.write_item(
            WorkItem(id="tk-1", project="CORE", kind=NodeKind.TASK, title="T", display_key="CORE-7")
        )

        found = items.find_by_display_key("CORE", NodeKind.TASK, "core-7")
        assert found is not None
        assert found.id == "tk-1"
        assert items.find_by_display_key("CORE", NodeKind.TASK, "CORE-8") is None

    def test_next_sequence_number_per_kind(self, items: WorkItemStorage):
        assert items.next_sequence_number("CORE", NodeKind.EPIC) == 1

        items.write_item(
            WorkItem(id="ep-1", project="CORE", kind=NodeKind.EPIC, title="E", display_key="CORE-E2")
        )
        items.write_item(
            WorkItem(id="tk-1", project="CORE", kind=NodeKind.TASK, title="T", display_key="CORE-4")
        )

        assert items.next_sequence_number("CORE", NodeKind.EPIC) == 3
        assert items.next_sequence_number("CORE", NodeKind.TASK) == 5
        assert items.next_sequence_number("OTHER", NodeKind.TASK) == 1

    def test_read_item_ignores_path_components(self, items: WorkItemStorage, root: Path):
        (root / "projects" / "stray.md").write_text("---\nid: tk-stray\ntitle: Stray\n---\n")

        assert items.read_item("CORE", NodeKind.TASK, "../../stray") is None

    def test_rejects_invalid_project_key(self, items: WorkItemStorage, edges: EdgeStorage):
        with pytest.raises(InvalidProjectKeyError):
            items.items_dir("../escaped", NodeKind.TASK)
        with pytest.raises(InvalidProjectKeyError):
            edges.insert_edge("../escaped", NodeKind.TASK, "a", "b")
