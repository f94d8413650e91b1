"""Graph builder: bounded breadth traversal over the relation rule table.

Build order:
    1. Fetch the root object directly (a missing root is fatal).
    2. Snapshot the namespace (list failures become warnings).
    3. Expand nodes breadth-first through ``RELATION_RULES`` up to
       ``MAX_HOPS`` hops from the root.
    4. Apply the NetworkPolicy family, then the mesh family when requested.

Any rule that fails is recorded as a warning and the traversal continues.
"""

from __future__ import annotations

from collections import deque

from kubediag.errors import KubeDiagError, ValidationError
from kubediag.graph.mesh import add_mesh_graph
from kubediag.graph.models import Graph, GraphNode
from kubediag.graph.network import add_network_policy_graph
from kubediag.graph.rules import KIND_RESOURCES, RELATION_RULES, make_node
from kubediag.graph.snapshot import ClusterSnapshot
from kubediag.kube.client import ClusterReader
from kubediag.kube.objects import SelectorError
from kubediag.kube.resolver import ResourceResolver, builtin_identity
from kubediag.observability.logging import get_logger
from kubediag.observability.metrics import graph_builds_total, graph_warnings_total

_log = get_logger("graph.builder")

MAX_HOPS = 6

ROOT_KINDS = tuple(KIND_RESOURCES)


def _dedupe(warnings: list[str]) -> list[str]:
    return list(dict.fromkeys(warnings))


class GraphBuilder:
    """Builds relationship graphs rooted at one namespaced object."""

    def __init__(self, client: ClusterReader, resolver: ResourceResolver) -> None:
        self._client = client
        self._resolver = resolver

    async def build(
        self,
        root_kind: str,
        namespace: str,
        root_name: str,
        include_mesh: bool = False,
        *,
        cluster_scope: bool = False,
        graph: Graph | None = None,
    ) -> tuple[Graph, list[str]]:
        """Build the graph around ``root_kind/namespace/root_name``.

        Pass ``graph`` to have nodes written into a caller-owned graph, so a
        request that hits its deadline still holds the partial result.
        """
        if not namespace:
            raise ValidationError("namespace is required")
        if not root_name:
            raise ValidationError("name is required")
        identity = builtin_identity(root_kind)
        if identity is None or identity.kind not in ROOT_KINDS:
            supported = ", ".join(kind.lower() for kind in ROOT_KINDS)
            raise ValidationError(f"unsupported graph root kind {root_kind!r}; supported: {supported}")

        graph = graph if graph is not None else Graph()
        root_obj = await self._client.get(identity.resource, root_name, namespace)
        root = make_node(identity.kind, root_obj)
        graph.add_node(root)

        snapshot, warnings = await ClusterSnapshot.load(self._client, namespace, cluster_scope=cluster_scope)
        warnings.extend(await self._traverse(graph, root, snapshot))
        policy_name = root_name if identity.kind == "NetworkPolicy" else None
        warnings.extend(await add_network_policy_graph(graph, snapshot, policy_name=policy_name))
        if include_mesh:
            warnings.extend(await add_mesh_graph(graph, snapshot, self._resolver))

        warnings = _dedupe(warnings)
        graph_builds_total.labels(root_kind=identity.kind).inc()
        graph_warnings_total.inc(len(warnings))
        _log.info(
            "graph_built",
            root=root.id,
            nodes=len(graph),
            edges=len(graph.edges),
            warnings=len(warnings),
            include_mesh=include_mesh,
        )
        return graph, warnings

    async def _traverse(self, graph: Graph, root: GraphNode, snapshot: ClusterSnapshot) -> list[str]:
        warnings: list[str] = []
        queue: deque[tuple[GraphNode, int]] = deque([(root, 0)])
        expanded: set[str] = set()
        while queue:
            node, depth = queue.popleft()
            if node.id in expanded or depth >= MAX_HOPS:
                continue
            expanded.add(node.id)
            for rule in RELATION_RULES.get(node.kind, ()):
                try:
                    outcome = await rule(node, snapshot)
                except (KubeDiagError, SelectorError) as exc:
                    warnings.append(f"{rule.__name__} failed for {node.id}: {exc}")
                    continue
                warnings.extend(outcome.warnings)
                for new_id in graph.merge(outcome):
                    new_node = graph.get(new_id)
                    if new_node is not None and new_node.kind in RELATION_RULES:
                        queue.append((new_node, depth + 1))
        return warnings
