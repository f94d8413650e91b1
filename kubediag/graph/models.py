"""Data structures for the resource relationship graph."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from kubediag.errors import GraphIntegrityError


class Relation(StrEnum):
    """Closed vocabulary of directed relationships between graph nodes."""

    OWNED_BY = "owned-by"
    ROUTES_TO = "routes-to"
    SELECTS = "selects"
    BACKED_BY = "backed-by"
    TARGETS = "targets"
    USES_SERVICE = "uses-service"
    BLOCKED_BY = "blocked-by"
    EGRESS_BLOCKED_BY = "egress-blocked-by"
    ALLOWS_FROM = "allows-from"
    ALLOWS_TO = "allows-to"
    ALLOWS_FROM_NAMESPACE = "allows-from-namespace"
    ALLOWS_TO_NAMESPACE = "allows-to-namespace"
    ATTACHED_TO = "attached-to"
    APPLIES_TO = "applies-to"
    AUTHORIZES = "authorizes"
    PROFILES = "profiles"
    BINDS = "binds"


def node_id(kind: str, namespace: str, name: str, group: str = "") -> str:
    """Deterministic node id: ``kind[.group]/namespace/name``.

    Kind and group are lowercased; cluster-scoped objects drop the
    namespace segment.
    """
    prefix = kind.lower()
    if group:
        prefix = f"{prefix}.{group.lower()}"
    if namespace:
        return f"{prefix}/{namespace}/{name}"
    return f"{prefix}/{name}"


@dataclass(frozen=True)
class GraphNode:
    """A node in the relationship graph representing a cluster object."""

    kind: str
    namespace: str
    name: str
    group: str = ""
    attributes: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @property
    def id(self) -> str:
        return node_id(self.kind, self.namespace, self.name, self.group)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"id": self.id, "kind": self.kind, "name": self.name}
        if self.namespace:
            data["namespace"] = self.namespace
        if self.attributes:
            data["details"] = dict(self.attributes)
        return data


@dataclass(frozen=True)
class GraphEdge:
    """A typed, directed edge between two node ids."""

    from_id: str
    to_id: str
    relation: Relation

    def to_dict(self) -> dict[str, str]:
        return {"from": self.from_id, "to": self.to_id, "relation": str(self.relation)}


class Graph:
    """Node/edge graph for one diagnostic query.

    Nodes are unique by id and merge attributes on re-add.  Edges are
    unique by ``(from, to, relation)`` and require both endpoints to exist.
    Once :meth:`freeze` is called the graph is an immutable snapshot.
    """

    def __init__(self) -> None:
        self._nodes: dict[str, GraphNode] = {}
        self._edges: dict[tuple[str, str, Relation], GraphEdge] = {}
        self._frozen = False

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, node: object) -> bool:
        if isinstance(node, GraphNode):
            return node.id in self._nodes
        return node in self._nodes

    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def nodes(self) -> list[GraphNode]:
        return list(self._nodes.values())

    @property
    def edges(self) -> list[GraphEdge]:
        return list(self._edges.values())

    def freeze(self) -> Graph:
        self._frozen = True
        return self

    def _check_mutable(self) -> None:
        if self._frozen:
            raise GraphIntegrityError("graph snapshot is frozen")

    def get(self, node_id_: str) -> GraphNode | None:
        return self._nodes.get(node_id_)

    def add_node(self, node: GraphNode) -> tuple[str, bool]:
        """Add or merge ``node``.  Returns ``(id, created)``."""
        self._check_mutable()
        existing = self._nodes.get(node.id)
        if existing is None:
            self._nodes[node.id] = node
            return node.id, True
        if node.attributes:
            merged = {**existing.attributes, **{k: v for k, v in node.attributes.items() if v is not None}}
            self._nodes[node.id] = GraphNode(existing.kind, existing.namespace, existing.name, existing.group, merged)
        return node.id, False

    def add_edge(self, from_id: str, to_id: str, relation: Relation | str) -> bool:
        """Add an edge between existing nodes.  Returns False for duplicates."""
        self._check_mutable()
        relation = Relation(relation)
        for endpoint in (from_id, to_id):
            if endpoint not in self._nodes:
                raise GraphIntegrityError(f"edge {from_id} -[{relation}]-> {to_id} references missing node {endpoint}")
        key = (from_id, to_id, relation)
        if key in self._edges:
            return False
        self._edges[key] = GraphEdge(from_id, to_id, relation)
        return True

    def merge(self, outcome: RuleOutcome) -> list[str]:
        """Apply a rule outcome, nodes before edges.  Returns ids of new nodes."""
        created: list[str] = []
        for node in outcome.nodes:
            nid, new = self.add_node(node)
            if new:
                created.append(nid)
        for edge in outcome.edges:
            self.add_edge(edge.from_id, edge.to_id, edge.relation)
        return created

    def neighbors(self, node_id_: str, relation: Relation | None = None, *, reverse: bool = False) -> list[GraphNode]:
        """Nodes linked from ``node_id_`` (or to it, with ``reverse``)."""
        found: list[GraphNode] = []
        for edge in self._edges.values():
            if relation is not None and edge.relation != relation:
                continue
            if reverse and edge.to_id == node_id_:
                found.append(self._nodes[edge.from_id])
            elif not reverse and edge.from_id == node_id_:
                found.append(self._nodes[edge.to_id])
        return found

    def nodes_of_kind(self, kind: str) -> list[GraphNode]:
        return sorted((n for n in self._nodes.values() if n.kind == kind), key=lambda n: n.id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "nodes": [self._nodes[key].to_dict() for key in sorted(self._nodes)],
            "edges": [edge.to_dict() for edge in self._edges.values()],
        }


@dataclass
class RuleOutcome:
    """What a relation rule contributes: new nodes, edges and warnings."""

    nodes: list[GraphNode] = field(default_factory=list)
    edges: list[GraphEdge] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def link(self, source: GraphNode, target: GraphNode, relation: Relation) -> None:
        """Record both endpoints and the edge between them."""
        self.nodes.append(source)
        self.nodes.append(target)
        self.edges.append(GraphEdge(source.id, target.id, relation))

    def extend(self, other: RuleOutcome) -> None:
        self.nodes.extend(other.nodes)
        self.edges.extend(other.edges)
        self.warnings.extend(other.warnings)
