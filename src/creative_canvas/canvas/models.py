from __future__ import annotations

import base64
import binascii
import re
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any

from creative_canvas.errors import InvalidInput


class NodeType(str, Enum):
    PRODUCT = "product"
    CONCEPT = "concept"
    CREATIVE = "creative"


class NodeStatus(str, Enum):
    IDLE = "idle"
    GENERATING = "generating"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass(frozen=True)
class Position:
    x: float
    y: float


@dataclass(frozen=True)
class NodeData:
    title: str = ""
    content: str = ""
    status: NodeStatus = NodeStatus.IDLE
    image_url: str | None = None
    concept: str | None = None
    parent_product_id: str | None = None
    parent_generated_id: str | None = None
    parent_concept_id: str | None = None
    parent_product_image_url: str | None = None
    parent_generated_image_url: str | None = None
    from_knowledge_graph: bool = False
    just_completed: bool = False
    auto_edit: bool = False
    # Any other UI-bound fields found in a loaded project; kept as-is.
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Node:
    id: str
    type: NodeType
    position: Position
    data: NodeData

    @property
    def title(self) -> str:
        return self.data.title

    @property
    def status(self) -> NodeStatus:
        return self.data.status

    def with_data(self, **updates: Any) -> Node:
        return replace(self, data=merge_data(self.data, updates))


@dataclass(frozen=True)
class Edge:
    id: str
    source: str
    target: str
    extra: dict[str, Any] = field(default_factory=dict)


def edge_between(source: str, target: str) -> Edge:
    return Edge(id=f"edge-{source}-{target}", source=source, target=target)


_DATA_FIELDS = {f.name for f in fields(NodeData)} - {"extra"}


def merge_data(data: NodeData, updates: dict[str, Any]) -> NodeData:
    """Merge `updates` into `data`; keys NodeData doesn't know land in `extra`."""
    known = {k: v for k, v in updates.items() if k in _DATA_FIELDS}
    unknown = {k: v for k, v in updates.items() if k not in _DATA_FIELDS}
    if "status" in known:
        try:
            known["status"] = NodeStatus(known["status"])
        except ValueError as exc:
            raise InvalidInput(f"unknown node status: {known['status']!r}") from exc
    if unknown:
        known["extra"] = {**data.extra, **unknown}
    return replace(data, **known)


def check_concept_parents(data: NodeData) -> None:
    has_product = bool(data.parent_product_id)
    has_generated = bool(data.parent_generated_id)
    if has_product == has_generated:
        raise InvalidInput("a concept needs exactly one parent: a product or a creative")


# --- image payloads ---------------------------------------------------------

_DATA_URL_RE = re.compile(r"^data:(?P<mime>[^;,]+)?(?:;[^,]*)?,(?P<data>.*)$", re.DOTALL)


@dataclass(frozen=True)
class ImagePayload:
    data_b64: str
    mime_type: str = "image/png"

    @classmethod
    def from_bytes(cls, content: bytes, mime_type: str | None = None) -> ImagePayload:
        return cls(data_b64=base64.b64encode(content).decode("ascii"), mime_type=mime_type or "image/png")

    @classmethod
    def from_data_url(cls, url: str) -> ImagePayload:
        m = _DATA_URL_RE.match(url.strip())
        if not m or not m.group("data"):
            raise InvalidInput("image is not a base64 data URL")
        return cls(data_b64=m.group("data"), mime_type=m.group("mime") or "image/png")

    def to_bytes(self) -> bytes:
        try:
            return base64.b64decode(self.data_b64, validate=False)
        except (binascii.Error, ValueError) as exc:
            raise InvalidInput(f"image payload is not valid base64: {exc}") from exc

    def to_data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.data_b64}"


def is_data_url(url: str | None) -> bool:
    return bool(url) and url.startswith("data:")


# --- project file wire format -------------------------------------------------

_WIRE_NAMES = {
    "title": "title",
    "content": "content",
    "status": "status",
    "image_url": "imageUrl",
    "concept": "concept",
    "parent_product_id": "parentProductId",
    "parent_generated_id": "parentGeneratedId",
    "parent_concept_id": "parentConceptId",
    "parent_product_image_url": "parentProductImageUrl",
    "parent_generated_image_url": "parentGeneratedImageUrl",
    "from_knowledge_graph": "fromKnowledgeGraph",
    "just_completed": "justCompleted",
    "auto_edit": "autoEdit",
}
_FROM_WIRE = {v: k for k, v in _WIRE_NAMES.items()}
_DEFAULT_DATA = NodeData()


def node_to_dict(node: Node) -> dict[str, Any]:
    data: dict[str, Any] = dict(node.data.extra)
    for attr, wire in _WIRE_NAMES.items():
        value = getattr(node.data, attr)
        if value is None:
            continue
        # Flags are only written when set, like the UI does.
        if isinstance(value, bool) and value is False and getattr(_DEFAULT_DATA, attr) is False:
            continue
        data[wire] = value.value if isinstance(value, Enum) else value
    return {
        "id": node.id,
        "type": node.type.value,
        "position": {"x": node.position.x, "y": node.position.y},
        "data": data,
    }


def node_from_dict(raw: dict[str, Any]) -> Node:
    try:
        node_id = str(raw["id"])
        node_type = NodeType(raw["type"])
        pos = raw.get("position") or {}
        position = Position(x=float(pos.get("x", 0)), y=float(pos.get("y", 0)))
    except (KeyError, TypeError, ValueError) as exc:
        raise InvalidInput(f"malformed node: {exc}") from exc

    raw_data = raw.get("data") or {}
    if not isinstance(raw_data, dict):
        raise InvalidInput(f"node '{node_id}' has a non-object data field")
    known: dict[str, Any] = {}
    extra: dict[str, Any] = {}
    for key, value in raw_data.items():
        attr = _FROM_WIRE.get(key)
        if attr is None:
            extra[key] = value
        else:
            known[attr] = value
    try:
        if "status" in known:
            known["status"] = NodeStatus(known["status"])
    except ValueError as exc:
        raise InvalidInput(f"node '{node_id}' has an unknown status") from exc
    return Node(id=node_id, type=node_type, position=position, data=NodeData(extra=extra, **known))


def edge_to_dict(edge: Edge) -> dict[str, Any]:
    return {**edge.extra, "id": edge.id, "source": edge.source, "target": edge.target}


def edge_from_dict(raw: dict[str, Any]) -> Edge:
    try:
        extra = {k: v for k, v in raw.items() if k not in ("id", "source", "target")}
        return Edge(id=str(raw["id"]), source=str(raw["source"]), target=str(raw["target"]), extra=extra)
    except (KeyError, TypeError) as exc:
        raise InvalidInput(f"malformed edge: {exc}") from exc
