"""Service-mesh relation family.

Gateway API, Istio and Linkerd kinds are CRDs, so each kind is resolved at
build time through the Resource Resolver and listed through the dynamic
client.  A mesh whose API groups are not served produces a warning, never
an error.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

from kubediag.errors import ClusterAPIError, KubeDiagError, NotFoundError, ResolutionError
from kubediag.graph.models import Graph, GraphNode, Relation, RuleOutcome
from kubediag.graph.rules import make_node
from kubediag.graph.snapshot import ClusterSnapshot
from kubediag.kube.objects import get_list, get_map, get_str, labels_match, labels_of, name_of
from kubediag.kube.resolver import ResourceIdentity, ResourceResolver

GATEWAY_API_GROUP = "gateway.networking.k8s.io"
ISTIO_NETWORKING_GROUP = "networking.istio.io"
ISTIO_SECURITY_GROUP = "security.istio.io"
LINKERD_GROUP = "linkerd.io"
LINKERD_POLICY_GROUP = "policy.linkerd.io"

MESH_GROUPS: dict[str, tuple[str, ...]] = {
    "gateway-api": (GATEWAY_API_GROUP,),
    "istio": (ISTIO_NETWORKING_GROUP, ISTIO_SECURITY_GROUP),
    "linkerd": (LINKERD_GROUP, LINKERD_POLICY_GROUP),
}

# sidecar container names injected by each mesh
SIDECAR_CONTAINERS = {"istio-proxy": "istio", "linkerd-proxy": "linkerd"}

_PRINCIPAL = re.compile(r"^(?:spiffe://)?(?:[^/]+/)?ns/([^/]+)/sa/([^/]+)$")


@dataclass(frozen=True)
class MeshKind:
    mesh: str
    kind: str
    group: str


MESH_KINDS: tuple[MeshKind, ...] = (
    MeshKind("gateway-api", "Gateway", GATEWAY_API_GROUP),
    MeshKind("gateway-api", "HTTPRoute", GATEWAY_API_GROUP),
    MeshKind("istio", "VirtualService", ISTIO_NETWORKING_GROUP),
    MeshKind("istio", "DestinationRule", ISTIO_NETWORKING_GROUP),
    MeshKind("istio", "Gateway", ISTIO_NETWORKING_GROUP),
    MeshKind("istio", "AuthorizationPolicy", ISTIO_SECURITY_GROUP),
    MeshKind("linkerd", "ServiceProfile", LINKERD_GROUP),
    MeshKind("linkerd", "Server", LINKERD_POLICY_GROUP),
    MeshKind("linkerd", "ServerAuthorization", LINKERD_POLICY_GROUP),
)


def build_service_index(services: list[dict[str, Any]], namespace: str) -> dict[str, str]:
    """Map every in-cluster host form of a service to its name."""
    index: dict[str, str] = {}
    for svc in services:
        name = name_of(svc)
        for host in (name, f"{name}.{namespace}", f"{name}.{namespace}.svc", f"{name}.{namespace}.svc.cluster.local"):
            index[host] = name
    return index


def parse_principal(principal: str) -> tuple[str, str] | None:
    """``spiffe://cluster.local/ns/X/sa/Y``, ``cluster.local/ns/X/sa/Y`` or ``ns/X/sa/Y`` -> ``(X, Y)``."""
    match = _PRINCIPAL.match(principal)
    return (match.group(1), match.group(2)) if match else None


class _MeshLinker:
    """Builds mesh edges for one namespace from the listed mesh objects."""

    def __init__(self, namespace: str, services: list[dict[str, Any]], pods: list[dict[str, Any]]) -> None:
        self.namespace = namespace
        self.services = {name_of(svc): svc for svc in services}
        self.index = build_service_index(services, namespace)
        self.pods = pods
        self.objects: dict[tuple[str, str, str, str], GraphNode] = {}
        self.out = RuleOutcome()

    def register(self, mesh_kind: MeshKind, identity: ResourceIdentity, obj: dict[str, Any]) -> GraphNode:
        node = make_node(mesh_kind.kind, obj, group=mesh_kind.group)
        node.attributes.update(
            {"mesh": mesh_kind.mesh, "apiVersion": identity.api_version, "resource": identity.resource}
        )
        self.objects[(mesh_kind.group, mesh_kind.kind, node.namespace, node.name)] = node
        self.out.nodes.append(node)
        return node

    def _find(self, group: str, kind: str, name: str, namespace: str = "") -> GraphNode | None:
        return self.objects.get((group, kind, namespace or self.namespace, name))

    def _service(self, host: str) -> GraphNode | None:
        name = self.index.get(host)
        return make_node("Service", self.services[name]) if name else None

    def _link_service(self, node: GraphNode, host: str, relation: Relation) -> None:
        svc = self._service(host)
        if svc is not None:
            self.out.link(node, svc, relation)

    def link(self, mesh_kind: MeshKind, node: GraphNode, obj: dict[str, Any]) -> None:
        spec = get_map(obj, "spec")
        self._link_hosts(node, spec)
        self._link_selector(node, spec)
        self._link_target_refs(node, spec)

        if mesh_kind.kind == "ServerAuthorization":
            server = get_str(spec, "server", "name")
            target = self._find(LINKERD_POLICY_GROUP, "Server", server) if server else None
            if target is not None:
                self.out.link(node, target, Relation.BINDS)
            elif server:
                self.out.warnings.append(f"server {server} referenced by serverauthorization {node.name} not found")
        elif mesh_kind.kind == "VirtualService":
            self._link_istio_gateways(node, spec)
        elif mesh_kind.kind == "ServiceProfile":
            self._link_service(node, node.name, Relation.PROFILES)
        elif mesh_kind.kind == "AuthorizationPolicy":
            self._link_principals(node, spec)
        elif mesh_kind.kind == "HTTPRoute":
            self._link_http_route(node, spec)

    def _link_hosts(self, node: GraphNode, spec: dict[str, Any]) -> None:
        hosts = [spec["host"]] if isinstance(spec.get("host"), str) else []
        hosts.extend(h for h in spec.get("hosts") or [] if isinstance(h, str))
        for http in spec.get("http") or []:
            for route in http.get("route") or []:
                dest = get_str(route, "destination", "host")
                if dest:
                    hosts.append(dest)
        for host in hosts:
            self._link_service(node, host, Relation.ROUTES_TO)

    def _link_selector(self, node: GraphNode, spec: dict[str, Any]) -> None:
        selector = (
            get_map(spec, "selector", "matchLabels")
            or get_map(spec, "workloadSelector", "labels")
            or get_map(spec, "podSelector", "matchLabels")
        )
        if not selector:
            return
        for pod in self.pods:
            if labels_match(selector, labels_of(pod)):
                self.out.link(node, make_node("Pod", pod), Relation.APPLIES_TO)

    def _link_target_refs(self, node: GraphNode, spec: dict[str, Any]) -> None:
        refs = [spec["targetRef"]] if isinstance(spec.get("targetRef"), dict) else []
        refs.extend(ref for ref in spec.get("targetRefs") or [] if isinstance(ref, dict))
        for ref in refs:
            kind, name = ref.get("kind", ""), ref.get("name", "")
            if kind == "Service":
                self._link_service(node, name, Relation.TARGETS)
                continue
            group = ref.get("group") or node.group
            target = self._find(group, kind, name, ref.get("namespace", ""))
            if target is not None:
                self.out.link(node, target, Relation.TARGETS)

    def _link_istio_gateways(self, node: GraphNode, spec: dict[str, Any]) -> None:
        for ref in spec.get("gateways") or []:
            if not isinstance(ref, str) or ref == "mesh":
                continue
            namespace, _, name = ref.rpartition("/")
            target = self._find(ISTIO_NETWORKING_GROUP, "Gateway", name, namespace)
            if target is not None:
                self.out.link(node, target, Relation.ATTACHED_TO)
            else:
                self.out.warnings.append(f"gateway {ref} referenced by virtualservice {node.name} not found")

    def _link_principals(self, node: GraphNode, spec: dict[str, Any]) -> None:
        for rule in spec.get("rules") or []:
            for source in rule.get("from") or []:
                for principal in get_list(source, "source", "principals"):
                    parsed = parse_principal(str(principal))
                    if parsed is None:
                        continue
                    sa_namespace, sa_name = parsed
                    sa = GraphNode(kind="ServiceAccount", namespace=sa_namespace, name=sa_name)
                    self.out.link(node, sa, Relation.AUTHORIZES)

    def _link_http_route(self, node: GraphNode, spec: dict[str, Any]) -> None:
        for parent in spec.get("parentRefs") or []:
            if parent.get("kind", "Gateway") != "Gateway":
                continue
            target = self._find(GATEWAY_API_GROUP, "Gateway", parent.get("name", ""), parent.get("namespace", ""))
            if target is not None:
                self.out.link(node, target, Relation.ATTACHED_TO)
            else:
                self.out.warnings.append(f"gateway {parent.get('name')} referenced by httproute {node.name} not found")
        for rule in spec.get("rules") or []:
            for backend in rule.get("backendRefs") or []:
                if backend.get("kind", "Service") == "Service":
                    self._link_service(node, backend.get("name", ""), Relation.ROUTES_TO)


async def _mesh_objects(
    snapshot: ClusterSnapshot, resolver: ResourceResolver, found_groups: list[str]
) -> tuple[list[tuple[MeshKind, ResourceIdentity, dict[str, Any]]], list[str]]:
    objects: list[tuple[MeshKind, ResourceIdentity, dict[str, Any]]] = []
    warnings: list[str] = []
    for mesh_kind in MESH_KINDS:
        if mesh_kind.group not in found_groups:
            continue
        try:
            identity, resolve_warnings = await resolver.resolve_with_warnings(mesh_kind.kind, mesh_kind.group)
        except ResolutionError as exc:
            warnings.append(f"{mesh_kind.kind.lower()}.{mesh_kind.group} not resolved: {exc.message}")
            continue
        warnings.extend(resolve_warnings)
        if identity.group != mesh_kind.group:
            warnings.append(f"{mesh_kind.kind.lower()}.{mesh_kind.group} not served")
            continue
        try:
            items = await snapshot.client.list_custom(identity, snapshot.namespace)
        except NotFoundError:
            continue
        except ClusterAPIError as exc:
            warnings.append(f"{identity.group_resource} list failed: {exc.message}")
            continue
        objects.extend((mesh_kind, identity, item) for item in sorted(items, key=name_of))
    return objects, warnings


async def add_mesh_graph(graph: Graph, snapshot: ClusterSnapshot, resolver: ResourceResolver) -> list[str]:
    """Add Gateway API, Istio and Linkerd objects and their edges to ``graph``."""
    all_groups = [group for groups in MESH_GROUPS.values() for group in groups]
    try:
        _, found, warnings = await resolver.groups_present(all_groups)
    except ResolutionError as exc:
        return [f"mesh detection failed: {exc.message}"]

    for mesh, groups in MESH_GROUPS.items():
        if not set(groups) & set(found):
            warnings.append(f"{mesh} not detected")

    objects, list_warnings = await _mesh_objects(snapshot, resolver, found)
    warnings.extend(list_warnings)
    if not objects:
        return warnings

    try:
        services = await snapshot.list("services")
        pods = await snapshot.list("pods")
    except KubeDiagError as exc:
        warnings.append(f"mesh linking skipped: {exc.message}")
        services, pods = [], []

    linker = _MeshLinker(snapshot.namespace, services, pods)
    registered = [(mesh_kind, linker.register(mesh_kind, identity, obj), obj) for mesh_kind, identity, obj in objects]
    for mesh_kind, node, obj in registered:
        linker.link(mesh_kind, node, obj)
    graph.merge(linker.out)
    warnings.extend(linker.out.warnings)
    return warnings


def sidecar_meshes(pod: dict[str, Any]) -> list[str]:
    """Meshes whose proxy container is injected into ``pod``."""
    names = [c.get("name", "") for c in get_list(pod, "spec", "containers")]
    names += [c.get("name", "") for c in get_list(pod, "spec", "initContainers")]
    return sorted({SIDECAR_CONTAINERS[n] for n in names if n in SIDECAR_CONTAINERS})
