"""Error types for phasegraph.

Hard errors carry the HTTP status a REST layer should answer with.
"""


class EdgeError(Exception):
    """Raised when a dependency edge cannot be added."""

    http_status = 400

    def __init__(self, from_id: str, to_id: str, message: str):
        self.from_id = from_id
        self.to_id = to_id
        super().__init__(message)


class SelfDependencyError(EdgeError):
    def __init__(self, from_id: str, to_id: str):
        super().__init__(from_id, to_id, f"{from_id} cannot depend on itself")


class DuplicateEdgeError(EdgeError):
    def __init__(self, from_id: str, to_id: str):
        super().__init__(from_id, to_id, f"Dependency already exists: {from_id} -> {to_id}")


class CycleError(EdgeError):
    def __init__(self, from_id: str, to_id: str, path: list[str] | None = None):
        self.path = path or []
        message = f"Cannot add dependency: {from_id} -> {to_id} would create a cycle"
        if self.path:
            message += f" ({' -> '.join([from_id, *self.path])})"
        super().__init__(from_id, to_id, message)


class InvalidProjectKeyError(Exception):
    """Project keys are 1-10 uppercase letters or digits and name a directory."""

    http_status = 400

    def __init__(self, project: str):
        self.project = project
        super().__init__(
            f"Invalid project key: {project!r} (use 1-10 uppercase letters or digits)"
        )


class NotFoundError(Exception):
    http_status = 404


class EdgeNotFoundError(NotFoundError):
    def __init__(self, from_id: str, to_id: str):
        self.from_id = from_id
        self.to_id = to_id
        super().__init__(f"Dependency not found between {from_id} and {to_id}")


class ItemNotFoundError(NotFoundError):
    def __init__(self, ref: str):
        self.ref = ref
        super().__init__(f"Item not found: {ref}")


class CyclicNodesWarning(UserWarning):
    """Loaded data contains dependency cycles; the listed nodes got phase 1."""

    def __init__(self, nodes: set[str]):
        self.nodes = frozenset(nodes)
        super().__init__(f"Dependency cycle detected among: {', '.join(sorted(self.nodes))}")
