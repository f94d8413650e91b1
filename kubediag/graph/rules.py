"""Declarative relation rules for the graph traversal.

``RELATION_RULES`` maps a node kind to the rules that expand it.  Each rule
is a coroutine ``(node, snapshot) -> RuleOutcome``: it reads objects from
the snapshot and reports new nodes, edges and warnings without touching
the graph, so the breadth traversal in :mod:`kubediag.graph.builder` stays
generic.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

from kubediag.graph.models import GraphNode, Relation, RuleOutcome
from kubediag.graph.snapshot import ClusterSnapshot
from kubediag.kube.objects import (
    find_condition,
    get_list,
    get_map,
    get_str,
    is_owned_by,
    labels_match,
    labels_of,
    name_of,
    namespace_of,
    owner_references,
    selector_matches,
)

RelationRule = Callable[[GraphNode, ClusterSnapshot], Awaitable[RuleOutcome]]

# kind -> resource plural for the kinds the traversal reads
KIND_RESOURCES = {
    "Service": "services",
    "Endpoints": "endpoints",
    "Pod": "pods",
    "ReplicaSet": "replicasets",
    "Deployment": "deployments",
    "StatefulSet": "statefulsets",
    "DaemonSet": "daemonsets",
    "Ingress": "ingresses",
    "NetworkPolicy": "networkpolicies",
}


# ---------------------------------------------------------------------------
# Node construction
# ---------------------------------------------------------------------------


def _pod_attributes(pod: dict[str, Any]) -> dict[str, Any]:
    statuses = get_list(pod, "status", "containerStatuses")
    ready_cond = find_condition(pod, "Ready")
    return {
        "phase": get_str(pod, "status", "phase"),
        "ready": bool(ready_cond and ready_cond.get("status") == "True"),
        "restarts": sum(int(s.get("restartCount") or 0) for s in statuses),
        "node": get_str(pod, "spec", "nodeName"),
    }


def _workload_attributes(obj: dict[str, Any]) -> dict[str, Any]:
    return {
        "replicas": get_map(obj, "spec").get("replicas"),
        "readyReplicas": get_map(obj, "status").get("readyReplicas", 0),
    }


def _service_attributes(svc: dict[str, Any]) -> dict[str, Any]:
    return {
        "type": get_str(svc, "spec", "type", default="ClusterIP"),
        "selector": get_map(svc, "spec", "selector"),
    }


def _endpoints_attributes(endpoints: dict[str, Any]) -> dict[str, Any]:
    ready = sum(len(subset.get("addresses") or []) for subset in get_list(endpoints, "subsets"))
    not_ready = sum(len(subset.get("notReadyAddresses") or []) for subset in get_list(endpoints, "subsets"))
    return {"readyAddresses": ready, "notReadyAddresses": not_ready}


_ATTRIBUTES: dict[str, Callable[[dict[str, Any]], dict[str, Any]]] = {
    "Pod": _pod_attributes,
    "Service": _service_attributes,
    "Endpoints": _endpoints_attributes,
    "Deployment": _workload_attributes,
    "ReplicaSet": _workload_attributes,
    "StatefulSet": _workload_attributes,
}


def make_node(kind: str, obj: dict[str, Any], group: str = "") -> GraphNode:
    """Build a graph node for ``obj`` with kind-specific display attributes."""
    attributes: dict[str, Any] = {}
    labels = labels_of(obj)
    if labels:
        attributes["labels"] = dict(labels)
    extractor = _ATTRIBUTES.get(kind)
    if extractor is not None:
        attributes.update(extractor(obj))
    return GraphNode(kind=kind, namespace=namespace_of(obj), name=name_of(obj), group=group, attributes=attributes)


def _group_from_api_version(api_version: str) -> str:
    return api_version.split("/", 1)[0] if "/" in api_version else ""


async def _object_for(node: GraphNode, snapshot: ClusterSnapshot) -> dict[str, Any] | None:
    return await snapshot.get(KIND_RESOURCES[node.kind], node.name)


def _endpoint_pod_names(endpoints: dict[str, Any]) -> list[str]:
    names: set[str] = set()
    for subset in get_list(endpoints, "subsets"):
        for address in (subset.get("addresses") or []) + (subset.get("notReadyAddresses") or []):
            ref = address.get("targetRef") or {}
            if ref.get("kind") == "Pod" and ref.get("name"):
                names.add(ref["name"])
    return sorted(names)


# ---------------------------------------------------------------------------
# Service / Endpoints
# ---------------------------------------------------------------------------


async def service_endpoints(node: GraphNode, snapshot: ClusterSnapshot) -> RuleOutcome:
    """Service -backed-by-> Endpoints, Service -routes-to-> targeted Pods."""
    out = RuleOutcome()
    endpoints = await snapshot.get("endpoints", node.name)
    if endpoints is None:
        out.warnings.append(f"endpoints not found for service {node.name}")
        return out
    ep_node = make_node("Endpoints", endpoints)
    out.link(node, ep_node, Relation.BACKED_BY)
    for pod_name in _endpoint_pod_names(endpoints):
        pod = await snapshot.get("pods", pod_name)
        if pod is None:
            out.warnings.append(f"pod {pod_name} targeted by endpoints {node.name} not found")
            continue
        pod_node = make_node("Pod", pod)
        out.link(node, pod_node, Relation.ROUTES_TO)
        out.link(ep_node, pod_node, Relation.TARGETS)
    return out


async def service_selector(node: GraphNode, snapshot: ClusterSnapshot) -> RuleOutcome:
    out = RuleOutcome()
    svc = await _object_for(node, snapshot)
    selector = get_map(svc, "spec", "selector")
    if not selector:
        out.warnings.append(f"service {node.name} has no selector")
        return out
    for pod in await snapshot.list("pods"):
        if labels_match(selector, labels_of(pod)):
            out.link(node, make_node("Pod", pod), Relation.SELECTS)
    return out


async def endpoints_targets(node: GraphNode, snapshot: ClusterSnapshot) -> RuleOutcome:
    out = RuleOutcome()
    endpoints = await _object_for(node, snapshot)
    if endpoints is None:
        return out
    svc = await snapshot.get("services", node.name)
    if svc is not None:
        out.link(make_node("Service", svc), node, Relation.BACKED_BY)
    for pod_name in _endpoint_pod_names(endpoints):
        pod = await snapshot.get("pods", pod_name)
        if pod is not None:
            out.link(node, make_node("Pod", pod), Relation.TARGETS)
    return out


# ---------------------------------------------------------------------------
# Ownership
# ---------------------------------------------------------------------------


async def pod_owners(node: GraphNode, snapshot: ClusterSnapshot) -> RuleOutcome:
    """Pod -owned-by-> each owner; known workload kinds are fetched."""
    out = RuleOutcome()
    pod = await _object_for(node, snapshot)
    refs = owner_references(pod)
    if not refs:
        out.warnings.append(f"pod {node.name} has no owner references")
        return out
    for ref in refs:
        kind = ref.get("kind", "")
        owner_name = ref.get("name", "")
        resource = KIND_RESOURCES.get(kind)
        if resource is None:
            owner = GraphNode(
                kind=kind,
                namespace=node.namespace,
                name=owner_name,
                group=_group_from_api_version(ref.get("apiVersion", "")),
                attributes={"apiVersion": ref.get("apiVersion", "")},
            )
            out.link(node, owner, Relation.OWNED_BY)
            continue
        owner_obj = await snapshot.get(resource, owner_name)
        if owner_obj is None:
            out.warnings.append(f"{kind.lower()} {owner_name} owning pod {node.name} not found")
            continue
        if not is_owned_by(pod, owner_obj, kind):
            out.warnings.append(f"{kind.lower()} {owner_name} uid does not match owner reference of pod {node.name}")
            continue
        out.link(node, make_node(kind, owner_obj), Relation.OWNED_BY)
    return out


async def pod_services(node: GraphNode, snapshot: ClusterSnapshot) -> RuleOutcome:
    out = RuleOutcome()
    pod_labels = node.attributes.get("labels") or {}
    if not pod_labels:
        return out
    for svc in await snapshot.list("services"):
        if labels_match(get_map(svc, "spec", "selector"), pod_labels):
            out.link(make_node("Service", svc), node, Relation.SELECTS)
    return out


async def replicaset_owner(node: GraphNode, snapshot: ClusterSnapshot) -> RuleOutcome:
    out = RuleOutcome()
    rs = await _object_for(node, snapshot)
    for ref in owner_references(rs):
        if ref.get("kind") != "Deployment":
            continue
        deploy = await snapshot.get("deployments", ref.get("name", ""))
        if deploy is None:
            out.warnings.append(f"deployment {ref.get('name')} owning replicaset {node.name} not found")
        elif is_owned_by(rs, deploy, "Deployment"):
            out.link(node, make_node("Deployment", deploy), Relation.OWNED_BY)
    return out


def _owned_pods(owner_kind: str) -> RelationRule:
    async def rule(node: GraphNode, snapshot: ClusterSnapshot) -> RuleOutcome:
        out = RuleOutcome()
        owner = await _object_for(node, snapshot)
        if owner is None:
            return out
        for pod in await snapshot.list("pods"):
            if is_owned_by(pod, owner, owner_kind):
                out.link(make_node("Pod", pod), node, Relation.OWNED_BY)
        return out

    rule.__name__ = f"{owner_kind.lower()}_pods"
    return rule


replicaset_pods = _owned_pods("ReplicaSet")
statefulset_pods = _owned_pods("StatefulSet")
daemonset_pods = _owned_pods("DaemonSet")


async def deployment_replicasets(node: GraphNode, snapshot: ClusterSnapshot) -> RuleOutcome:
    out = RuleOutcome()
    deploy = await _object_for(node, snapshot)
    if deploy is None:
        return out
    selector = get_map(deploy, "spec", "selector")
    for rs in await snapshot.list("replicasets"):
        if selector_matches(selector, labels_of(rs)) and is_owned_by(rs, deploy, "Deployment"):
            out.link(make_node("ReplicaSet", rs), node, Relation.OWNED_BY)
    return out


async def statefulset_service(node: GraphNode, snapshot: ClusterSnapshot) -> RuleOutcome:
    out = RuleOutcome()
    sts = await _object_for(node, snapshot)
    service_name = get_str(sts, "spec", "serviceName")
    if not service_name:
        return out
    svc = await snapshot.get("services", service_name)
    if svc is None:
        out.warnings.append(f"headless service {service_name} for statefulset {node.name} not found")
        return out
    out.link(node, make_node("Service", svc), Relation.USES_SERVICE)
    return out


# ---------------------------------------------------------------------------
# Ingress
# ---------------------------------------------------------------------------


def ingress_backend_services(ingress: dict[str, Any]) -> list[str]:
    """Sorted, de-duplicated backend service names of an Ingress."""
    names: set[str] = set()
    default = get_str(ingress, "spec", "defaultBackend", "service", "name")
    if default:
        names.add(default)
    for rule in get_list(ingress, "spec", "rules"):
        for path in get_list(rule, "http", "paths"):
            backend = get_str(path, "backend", "service", "name")
            if backend:
                names.add(backend)
    return sorted(names)


async def ingress_backends(node: GraphNode, snapshot: ClusterSnapshot) -> RuleOutcome:
    out = RuleOutcome()
    ingress = await _object_for(node, snapshot)
    backends = ingress_backend_services(ingress or {})
    if not backends:
        out.warnings.append(f"ingress {node.name} has no backend services")
        return out
    for service_name in backends:
        svc = await snapshot.get("services", service_name)
        if svc is None:
            out.warnings.append(f"service not found: {service_name}")
            continue
        out.link(node, make_node("Service", svc), Relation.ROUTES_TO)
    return out


RELATION_RULES: dict[str, tuple[RelationRule, ...]] = {
    "Service": (service_endpoints, service_selector),
    "Endpoints": (endpoints_targets,),
    "Pod": (pod_owners, pod_services),
    "ReplicaSet": (replicaset_owner, replicaset_pods),
    "Deployment": (deployment_replicasets,),
    "StatefulSet": (statefulset_pods, statefulset_service),
    "DaemonSet": (daemonset_pods,),
    "Ingress": (ingress_backends,),
}
