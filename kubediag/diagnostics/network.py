"""Service connectivity and service-mesh diagnostics built on the graph."""

from __future__ import annotations

from typing import Any

from kubediag.diagnostics.base import graph_for, record_warnings
from kubediag.errors import NotFoundError
from kubediag.evidence.collector import resource_ref
from kubediag.graph.mesh import sidecar_meshes
from kubediag.graph.models import Graph, GraphNode, Relation, node_id
from kubediag.graph.network import blocking_policies
from kubediag.kube.objects import name_of
from kubediag.models.analysis import Analysis, Severity
from kubediag.observability.logging import get_logger
from kubediag.tools.context import ToolRequest

_logger = get_logger("diagnostics.network")

# meshes that inject a proxy sidecar into workload pods
_SIDECAR_MESHES = frozenset({"istio", "linkerd"})


def service_pods(graph: Graph, service_id: str) -> list[GraphNode]:
    """Pods the service selects or routes to, sorted by name."""
    pods: dict[str, GraphNode] = {}
    for relation in (Relation.SELECTS, Relation.ROUTES_TO):
        for node in graph.neighbors(service_id, relation):
            if node.kind == "Pod":
                pods[node.id] = node
    return sorted(pods.values(), key=lambda n: n.name)


def ready_endpoints(graph: Graph, service_id: str) -> int:
    return sum(int(n.attributes.get("readyAddresses", 0)) for n in graph.neighbors(service_id, Relation.BACKED_BY))


async def _service_graph(
    request: ToolRequest, analysis: Analysis, service: str, include_mesh: bool
) -> tuple[Graph, str] | None:
    try:
        graph, warnings, cached = await graph_for(request, "service", service, include_mesh)
    except NotFoundError:
        analysis.add_cause("Service missing", f"Service {request.namespace}/{service} does not exist", Severity.HIGH)
        return None
    analysis.add_resource(resource_ref("services", request.namespace, service))
    analysis.add_evidence("graph", {"nodes": len(graph), "edges": len(graph.edges), "cached": cached})
    record_warnings(analysis, warnings)
    return graph, node_id("Service", request.namespace, service)


async def network_debug(request: ToolRequest) -> dict[str, Any]:
    """Explain why traffic does not reach a service's pods."""
    namespace = request.namespace
    service = request.str_arg("service", required=True)
    analysis = request.begin_analysis()

    built = await _service_graph(request, analysis, service, include_mesh=False)
    if built is None:
        analysis.add_next_check("Check the service name and namespace")
        return request.render()
    graph, service_id = built

    svc = graph.get(service_id)
    ready = ready_endpoints(graph, service_id)
    pods = service_pods(graph, service_id)
    analysis.add_evidence(
        f"service {service}",
        {"selector": svc.attributes.get("selector", {}) if svc else {}, "readyEndpoints": ready},
    )
    analysis.add_evidence(
        "pods",
        [{"name": p.name, "phase": p.attributes.get("phase", ""), "ready": p.attributes.get("ready", False)} for p in pods],
    )
    if ready == 0:
        analysis.add_cause(
            "No ready endpoints",
            f"Service {service} has no ready endpoint addresses ({len(pods)} matching pods)",
            Severity.HIGH,
        )

    policies = sorted(n.name for n in graph.nodes_of_kind("NetworkPolicy"))
    if policies:
        analysis.add_evidence("networkPolicies", policies)
    for pod in pods:
        analysis.add_resource(resource_ref("pods", namespace, pod.name))
        ingress, egress = blocking_policies(graph, pod.id)
        if ingress:
            analysis.add_cause(
                "NetworkPolicy blocks ingress",
                f"pod {pod.name} is selected by {', '.join(ingress)} with no ingress rules",
                Severity.HIGH,
            )
        if egress:
            analysis.add_cause(
                "NetworkPolicy blocks egress",
                f"pod {pod.name} is selected by {', '.join(egress)} with no egress rules",
                Severity.HIGH,
            )

    if not analysis.has_causes:
        analysis.add_evidence("status", "no explicit network errors found")
    analysis.add_next_check("Test connectivity from a client pod to the service port")
    _logger.info("network_debug", namespace=namespace, service=service, causes=len(analysis.causes))
    return request.render()


def mesh_objects_for(graph: Graph, service_id: str) -> list[GraphNode]:
    """Mesh objects linked to the service, plus the mesh objects they attach to."""
    found: dict[str, GraphNode] = {}
    for node in graph.neighbors(service_id, reverse=True):
        if node.attributes.get("mesh"):
            found[node.id] = node
    for node in list(found.values()):
        for neighbor in graph.neighbors(node.id):
            if neighbor.attributes.get("mesh"):
                found.setdefault(neighbor.id, neighbor)
    return sorted(found.values(), key=lambda n: n.id)


async def mesh_debug(request: ToolRequest) -> dict[str, Any]:
    """Check mesh routing objects and sidecar injection for a service."""
    namespace = request.namespace
    service = request.str_arg("service", required=True)
    analysis = request.begin_analysis()

    built = await _service_graph(request, analysis, service, include_mesh=True)
    if built is None:
        analysis.add_next_check("Check the service name and namespace")
        return request.render()
    graph, service_id = built

    objects = mesh_objects_for(graph, service_id)
    if not objects:
        analysis.add_evidence("mesh", "no mesh resources reference service")
        analysis.add_next_check("Confirm the mesh routes for this service are defined in this namespace")
        return request.render()

    analysis.add_evidence("meshObjects", [{"id": n.id, "mesh": n.attributes.get("mesh", "")} for n in objects])
    meshes = sorted({str(n.attributes.get("mesh")) for n in objects} & _SIDECAR_MESHES)

    svc = graph.get(service_id)
    selector = svc.attributes.get("selector", {}) if svc else {}
    pods = await request.context.collector.related_pods(namespace, selector)
    missing = sorted(
        name_of(pod) for pod in pods if meshes and not set(meshes) & set(sidecar_meshes(pod))
    )
    analysis.add_evidence("sidecars", {name_of(pod): sidecar_meshes(pod) for pod in pods})
    if missing:
        analysis.add_cause(
            "Pods missing mesh sidecar",
            f"{', '.join(meshes)} objects route to {service} but pods lack a proxy: {', '.join(missing)}",
            Severity.MEDIUM,
        )

    if not analysis.has_causes:
        analysis.add_evidence("status", "no explicit mesh errors found")
    analysis.add_next_check("Check proxy status and config for the service's pods")
    return request.render()
