from __future__ import annotations


class CanvasError(Exception):
    """Base class for every error the canvas core reports to its caller."""


class MissingCredential(CanvasError):
    def __init__(self, message: str = "A Gemini API key is required") -> None:
        super().__init__(message)


class InvalidInput(CanvasError):
    pass


class NodeNotFound(CanvasError):
    def __init__(self, node_id: str) -> None:
        super().__init__(f"node '{node_id}' does not exist")
        self.node_id = node_id


class SessionActive(CanvasError):
    def __init__(self) -> None:
        super().__init__("an analysis is already running on this canvas")


class SessionCancelled(CanvasError):
    def __init__(self) -> None:
        super().__init__("the analysis was cancelled")


class UpstreamTimeout(CanvasError):
    pass


class UpstreamFailure(CanvasError):
    pass


class HasDownstreamDependents(CanvasError):
    """Raised when deleting a node that still has nodes connected below it."""

    def __init__(self, node_id: str, title: str, dependents: list[str]) -> None:
        super().__init__(
            f"Cannot delete '{title}' because it has connected nodes below it. "
            "Please delete the connected nodes first."
        )
        self.node_id = node_id
        self.dependents = dependents


class LoadFormatError(CanvasError):
    pass
