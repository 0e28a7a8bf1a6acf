from __future__ import annotations

import itertools
import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, replace
from typing import Any

from creative_canvas.canvas.models import Edge, Node, NodeType, check_concept_parents
from creative_canvas.errors import HasDownstreamDependents, InvalidInput, NodeNotFound

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GraphChange:
    kind: str  # add|delete|update|replace
    node_ids: tuple[str, ...]


GraphListener = Callable[[GraphChange], None]


class IdGenerator:
    """Timestamp plus a per-canvas counter, so two ids minted in the same millisecond differ."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._counter = itertools.count()

    def __call__(self, prefix: str) -> str:
        return f"{prefix}-{int(self._clock() * 1000)}-{next(self._counter)}"


class GraphStore:
    """Owns the canvas nodes and edges. Every other component mutates through here."""

    def __init__(self) -> None:
        self._nodes: dict[str, Node] = {}
        self._edges: dict[str, Edge] = {}
        self._listeners: list[GraphListener] = []

    # -- queries --

    @property
    def nodes(self) -> list[Node]:
        return list(self._nodes.values())

    @property
    def edges(self) -> list[Edge]:
        return list(self._edges.values())

    def find(self, node_id: str) -> Node | None:
        return self._nodes.get(node_id)

    def get(self, node_id: str) -> Node:
        node = self._nodes.get(node_id)
        if node is None:
            raise NodeNotFound(node_id)
        return node

    def by_type(self, node_type: NodeType) -> list[Node]:
        return [n for n in self._nodes.values() if n.type == node_type]

    def outgoing(self, node_id: str) -> list[Edge]:
        return [e for e in self._edges.values() if e.source == node_id]

    def children(self, node_id: str) -> list[Node]:
        return [self._nodes[e.target] for e in self.outgoing(node_id) if e.target in self._nodes]

    def parents(self, node_id: str) -> list[Node]:
        return [self._nodes[e.source] for e in self._edges.values() if e.target == node_id and e.source in self._nodes]

    # -- mutations --

    def add_node(self, node: Node) -> Node:
        self._check_new_node(node, self._nodes)
        self._nodes[node.id] = node
        self._notify("add", node.id)
        return node

    def add_edge(self, edge: Edge) -> Edge:
        # No self-loop or endpoint check; the editor's connector is permissive.
        self._edges[edge.id] = edge
        self._notify("add", edge.source, edge.target)
        return edge

    def add_many(self, nodes: Iterable[Node], edges: Iterable[Edge]) -> None:
        """Insert a batch atomically: everything is validated before anything is stored."""
        nodes = list(nodes)
        edges = list(edges)
        staged = dict(self._nodes)
        for node in nodes:
            self._check_new_node(node, staged)
            staged[node.id] = node
        for edge in edges:
            self._edges[edge.id] = edge
        self._nodes = staged
        self._notify("add", *(n.id for n in nodes))

    def delete_node(self, node_id: str) -> Node:
        node = self.get(node_id)
        downstream = self.outgoing(node_id)
        if downstream:
            logger.info("refusing to delete %s: %d downstream edge(s)", node_id, len(downstream))
            raise HasDownstreamDependents(node_id, node.title or node.type.value, [e.target for e in downstream])

        del self._nodes[node_id]
        self._edges = {k: e for k, e in self._edges.items() if e.source != node_id and e.target != node_id}
        self._notify("delete", node_id)
        return node

    def update_node_data(self, node_id: str, **updates: Any) -> Node:
        node = self.get(node_id).with_data(**updates)
        self._nodes[node_id] = node
        self._notify("update", node_id)
        return node

    def update_title(self, node_id: str, title: str) -> Node:
        node = self.get(node_id)
        updates: dict[str, Any] = {"title": title}
        if node.type == NodeType.CONCEPT:
            updates["concept"] = title
        return self.update_node_data(node_id, **updates)

    def update_content(self, node_id: str, content: str, title: str | None = None) -> Node:
        updates: dict[str, Any] = {"content": content, "auto_edit": False}
        if title:
            updates["title"] = title
            updates["concept"] = title
        return self.update_node_data(node_id, **updates)

    def move_node(self, node_id: str, x: float, y: float) -> Node:
        node = self.get(node_id)
        moved = replace(node, position=replace(node.position, x=x, y=y))
        self._nodes[node_id] = moved
        self._notify("update", node_id)
        return moved

    def replace_all(self, nodes: Iterable[Node], edges: Iterable[Edge]) -> None:
        self._nodes = {n.id: n for n in nodes}
        self._edges = {e.id: e for e in edges}
        self._notify("replace", *self._nodes)

    # -- observers --

    def subscribe(self, listener: GraphListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, kind: str, *node_ids: str) -> None:
        change = GraphChange(kind=kind, node_ids=tuple(node_ids))
        for listener in list(self._listeners):
            listener(change)

    @staticmethod
    def _check_new_node(node: Node, existing: dict[str, Node]) -> None:
        if node.id in existing:
            raise InvalidInput(f"node id '{node.id}' is already in use")
        if node.type == NodeType.CONCEPT:
            check_concept_parents(node.data)
