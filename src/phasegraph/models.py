"""Data models for phasegraph."""

import re
import secrets
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from phasegraph.errors import CyclicNodesWarning, InvalidProjectKeyError

PROJECT_KEY_PATTERN = re.compile(r"[A-Z0-9]+")
MAX_PROJECT_KEY_LENGTH = 10


class NodeKind(Enum):
    EPIC = "epic"
    TASK = "task"

    @property
    def prefix(self) -> str:
        """Prefix used for generated item IDs."""
        return "ep" if self is NodeKind.EPIC else "tk"

    @property
    def plural(self) -> str:
        return f"{self.value}s"

    @property
    def key_infix(self) -> str:
        """Marker between project key and number: CORE-E3 is an epic, CORE-3 a task."""
        return "E" if self is NodeKind.EPIC else ""

    def display_key(self, project: str, number: int) -> str:
        return f"{project}-{self.key_infix}{number}"


class EpicStatus(Enum):
    PLANNING = "planning"
    IN_PROGRESS = "in_progress"
    BLOCKED = "blocked"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TaskStatus(Enum):
    BACKLOG = "backlog"
    READY = "ready"
    IN_PROGRESS = "in_progress"
    IN_REVIEW = "in_review"
    BLOCKED = "blocked"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


DONE_STATUSES = {"completed", "cancelled"}


def status_for(kind: NodeKind, value: str | None = None) -> EpicStatus | TaskStatus:
    """Parse a status value for the given kind, or return the kind's initial status."""
    if kind is NodeKind.EPIC:
        return EpicStatus(value) if value else EpicStatus.PLANNING
    return TaskStatus(value) if value else TaskStatus.BACKLOG


@dataclass(frozen=True)
class Edge:
    """A dependency edge: from_id depends on to_id."""

    from_id: str
    to_id: str
    created_at: datetime | None = field(default=None, compare=False)


@dataclass
class WorkItem:
    id: str
    project: str
    kind: NodeKind
    title: str
    display_key: str = ""
    status: EpicStatus | TaskStatus | None = None
    description: str = ""
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    def __post_init__(self) -> None:
        if self.status is None:
            self.status = status_for(self.kind)

    def is_done(self) -> bool:
        """Completed and cancelled items no longer hold up their dependents."""
        return self.status.value in DONE_STATUSES


@dataclass
class PhaseResult:
    """Phases computed for one project snapshot."""

    phases: dict[str, int]
    cyclic_nodes: set[str] = field(default_factory=set)
    warning: CyclicNodesWarning | None = None

    def waves(self) -> list[list[str]]:
        """Group node IDs by phase, lowest phase first."""
        if not self.phases:
            return []
        waves: list[list[str]] = [[] for _ in range(max(self.phases.values()))]
        for node_id, phase in self.phases.items():
            waves[phase - 1].append(node_id)
        return [sorted(wave) for wave in waves if wave]


def generate_id(prefix: str = "tk") -> str:
    """Generate a short hash-based ID like 'tk-a3f8'."""
    return f"{prefix}-{secrets.token_hex(2)}"


def sequence_number(display_key: str) -> int | None:
    """Numeric part of a display key such as 'CORE-7' or 'CORE-E7'."""
    _, _, tail = display_key.rpartition("-")
    tail = tail.removeprefix("E")
    return int(tail) if tail.isdigit() else None


def validate_project_key(project: str) -> str:
    """Return project unchanged if it is a valid key: 1-10 uppercase letters or digits.

    Raises:
        InvalidProjectKeyError: For anything else, including path separators.
    """
    if len(project) > MAX_PROJECT_KEY_LENGTH or not PROJECT_KEY_PATTERN.fullmatch(project):
        raise InvalidProjectKeyError(project)
    return project
