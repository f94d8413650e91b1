"""Resource relationship graph.

Built per query from the cluster's declared configuration: owner
references, Service selectors and Endpoints, Ingress backends,
NetworkPolicy peers and, optionally, service-mesh routing objects.
"""

from kubediag.graph.builder import MAX_HOPS, GraphBuilder
from kubediag.graph.mesh import add_mesh_graph
from kubediag.graph.models import Graph, GraphEdge, GraphNode, Relation, RuleOutcome, node_id
from kubediag.graph.network import add_network_policy_graph
from kubediag.graph.rules import RELATION_RULES

__all__ = [
    "MAX_HOPS",
    "RELATION_RULES",
    "Graph",
    "GraphBuilder",
    "GraphEdge",
    "GraphNode",
    "Relation",
    "RuleOutcome",
    "add_mesh_graph",
    "add_network_policy_graph",
    "node_id",
]
