from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any

from creative_canvas.canvas.models import Edge, Node, edge_from_dict, edge_to_dict, node_from_dict, node_to_dict
from creative_canvas.config import settings
from creative_canvas.errors import InvalidInput, LoadFormatError

if TYPE_CHECKING:
    from creative_canvas.canvas.editor import Canvas

logger = logging.getLogger(__name__)

PROJECT_VERSION = "1.0"
PROJECT_SUFFIX = ".banana"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _safe_filename(name: str) -> str:
    # Prevent path traversal, then reduce to something every filesystem accepts.
    base = os.path.basename(name.strip()).replace("..", "_")
    slug = re.sub(r"[^\w\-. ]+", "_", base).strip(" .")
    return slug or "untitled"


@dataclass(frozen=True)
class ProjectDocument:
    name: str
    nodes: list[Node]
    edges: list[Edge]
    timestamp: str | None = None


def dump_project(canvas: Canvas) -> dict[str, Any]:
    return {
        "projectName": canvas.project_name,
        "nodes": [node_to_dict(n) for n in canvas.graph.nodes],
        "edges": [edge_to_dict(e) for e in canvas.graph.edges],
        "timestamp": _now_iso(),
        "version": PROJECT_VERSION,
    }


def load_project(document: dict[str, Any] | str | bytes) -> ProjectDocument:
    """
    Parse a saved project.

    Either the whole document parses or LoadFormatError is raised; callers apply
    the result to a canvas only afterwards.
    """
    if isinstance(document, (str, bytes)):
        try:
            document = json.loads(document)
        except ValueError as exc:
            raise LoadFormatError(f"Project file is not valid JSON: {exc}") from exc
    if not isinstance(document, dict):
        raise LoadFormatError("Project file must contain a JSON object")

    version = document.get("version", PROJECT_VERSION)
    if str(version) != PROJECT_VERSION:
        raise LoadFormatError(f"Unsupported project version: {version}")

    raw_nodes = document.get("nodes")
    raw_edges = document.get("edges")
    if not isinstance(raw_nodes, list) or not isinstance(raw_edges, list):
        raise LoadFormatError("Invalid project file format: nodes and edges must be lists")

    try:
        nodes = [node_from_dict(n) for n in raw_nodes]
        edges = [edge_from_dict(e) for e in raw_edges]
    except (InvalidInput, AttributeError, TypeError) as exc:
        raise LoadFormatError(f"Invalid project file format: {exc}") from exc

    ids = [n.id for n in nodes]
    if len(set(ids)) != len(ids):
        raise LoadFormatError("Invalid project file format: duplicate node ids")

    return ProjectDocument(
        name=str(document.get("projectName") or ""),
        nodes=nodes,
        edges=edges,
        timestamp=document.get("timestamp"),
    )


@dataclass(frozen=True)
class SavedProject:
    filename: str
    name: str
    saved_at: str | None
    node_count: int


class ProjectStore:
    def __init__(self, root_dir: Path | None = None) -> None:
        self.root_dir = Path(root_dir or settings.data_dir).resolve()
        self.projects_dir = self.root_dir / "projects"
        self.projects_dir.mkdir(parents=True, exist_ok=True)

    def save(self, canvas: Canvas) -> Path:
        data = dump_project(canvas)
        path = self.projects_dir / f"{_safe_filename(canvas.project_name)}{PROJECT_SUFFIX}"
        path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
        logger.info("saved project '%s' to %s", canvas.project_name, path)
        return path

    def list_projects(self) -> list[SavedProject]:
        out: list[SavedProject] = []
        for path in sorted(self.projects_dir.glob(f"*{PROJECT_SUFFIX}")):
            try:
                data = json.loads(path.read_text("utf-8"))
            except (OSError, ValueError):
                logger.warning("skipping unreadable project file %s", path.name)
                continue
            if not isinstance(data, dict):
                continue
            nodes = data.get("nodes")
            out.append(
                SavedProject(
                    filename=path.name,
                    name=str(data.get("projectName") or path.stem),
                    saved_at=data.get("timestamp"),
                    node_count=len(nodes) if isinstance(nodes, list) else 0,
                )
            )
        return out

    def read(self, filename: str) -> ProjectDocument:
        name = _safe_filename(filename)
        if not name.endswith(PROJECT_SUFFIX):
            name += PROJECT_SUFFIX
        path = self.projects_dir / name
        if not path.exists():
            raise InvalidInput(f"no saved project named '{filename}'")
        return load_project(path.read_text("utf-8"))
