"""In-memory cluster double and object factories for kubediag tests.

``FakeCluster`` implements the ``ClusterReader`` protocol over plain dicts
shaped like the camelCase objects the real client returns.  Factories
build those dicts with only the fields the code under test reads.
"""

from __future__ import annotations

import asyncio
import copy
import itertools
from typing import Any

from kubediag.cache.graph_cache import GraphCache
from kubediag.diagnostics import register_k8s_tools
from kubediag.errors import NotFoundError
from kubediag.kube.objects import get_str, labels_of, name_of, namespace_of
from kubediag.kube.resolver import BUILTIN_RESOURCES, CachedDiscovery, ResourceIdentity, ResourceResolver
from kubediag.models.config import CacheConfig, KubeDiagConfig, SafetyConfig, ToolConfig
from kubediag.policy import Authorizer, User
from kubediag.tools.context import ToolContext
from kubediag.tools.invoker import ToolInvoker
from kubediag.tools.registry import ToolRegistry

_uids = itertools.count(1)


# ---------------------------------------------------------------------------
# Fake cluster
# ---------------------------------------------------------------------------


def _core_discovery() -> list[dict[str, Any]]:
    lists: dict[str, list[dict[str, Any]]] = {}
    for ident in BUILTIN_RESOURCES.values():
        lists.setdefault(ident.api_version, []).append(
            {"name": ident.resource, "kind": ident.kind, "namespaced": ident.namespaced, "singularName": ""}
        )
    return [{"groupVersion": gv, "resources": resources} for gv, resources in lists.items()]


def _parse_selector(selector: str) -> dict[str, str]:
    pairs = [part.split("=", 1) for part in selector.split(",") if part]
    return {key: value for key, value in pairs}


class FakeCluster:
    """Dict-backed stand-in for :class:`kubediag.kube.client.ClusterClient`."""

    def __init__(self) -> None:
        # (resource, namespace) -> name -> object; custom resources use group_resource
        self._objects: dict[tuple[str, str], dict[str, dict[str, Any]]] = {}
        self._namespaced: dict[str, bool] = {r: i.namespaced for r, i in BUILTIN_RESOURCES.items()}
        self.discovery_lists = _core_discovery()
        self.failed_groups: dict[str, str] = {}
        self.failures: dict[str, Exception] = {}
        self.delays: dict[str, float] = {}
        self.calls: list[tuple[str, str, str]] = []
        self.deleted: list[tuple[str, str, str]] = []
        self.discovery_calls = 0

    # -- seeding -----------------------------------------------------------

    def add(self, resource: str, obj: dict[str, Any]) -> dict[str, Any]:
        namespace = namespace_of(obj) if self._namespaced.get(resource, True) else ""
        self._objects.setdefault((resource, namespace), {})[name_of(obj)] = obj
        return obj

    def add_custom(self, identity: ResourceIdentity, obj: dict[str, Any]) -> dict[str, Any]:
        self._namespaced[identity.group_resource] = identity.namespaced
        return self.add(identity.group_resource, obj)

    def add_api_group(self, group_version: str, resources: list[tuple[str, str, bool]]) -> None:
        """Serve ``resources`` as ``(plural, kind, namespaced)`` under ``group_version``."""
        self.discovery_lists.append(
            {
                "groupVersion": group_version,
                "resources": [
                    {"name": plural, "kind": kind, "namespaced": namespaced, "singularName": kind.lower()}
                    for plural, kind, namespaced in resources
                ],
            }
        )

    def fail_group(self, group_version: str, reason: str = "service unavailable") -> None:
        self.failed_groups[group_version] = reason

    # -- ClusterReader -----------------------------------------------------

    async def _enter(self, verb: str, resource: str, namespace: str) -> None:
        self.calls.append((verb, resource, namespace))
        delay = self.delays.get(resource)
        if delay:
            await asyncio.sleep(delay)
        failure = self.failures.get(resource)
        if failure is not None:
            raise failure

    def _bucket(self, resource: str, namespace: str) -> dict[str, dict[str, Any]]:
        if not self._namespaced.get(resource, True):
            namespace = ""
        return self._objects.get((resource, namespace), {})

    async def get(self, resource: str, name: str, namespace: str = "") -> dict[str, Any]:
        await self._enter("get", resource, namespace)
        obj = self._bucket(resource, namespace).get(name)
        if obj is None:
            raise NotFoundError(resource, name, namespace)
        return copy.deepcopy(obj)

    async def list(
        self,
        resource: str,
        namespace: str = "",
        *,
        label_selector: str = "",
        field_selector: str = "",
    ) -> list[dict[str, Any]]:
        await self._enter("list", resource, namespace)
        if namespace or not self._namespaced.get(resource, True):
            items = list(self._bucket(resource, namespace).values())
        else:
            items = [obj for (res, _), objs in self._objects.items() if res == resource for obj in objs.values()]
        wanted = _parse_selector(label_selector)
        if wanted:
            items = [obj for obj in items if all(labels_of(obj).get(k) == v for k, v in wanted.items())]
        for path, value in _parse_selector(field_selector).items():
            items = [obj for obj in items if get_str(obj, *path.split(".")) == value]
        return copy.deepcopy(items)

    async def delete(self, resource: str, name: str, namespace: str = "") -> dict[str, Any]:
        await self._enter("delete", resource, namespace)
        bucket = self._bucket(resource, namespace)
        if name not in bucket:
            raise NotFoundError(resource, name, namespace)
        del bucket[name]
        self.deleted.append((resource, namespace, name))
        return {"kind": "Status", "status": "Success"}

    async def get_custom(self, identity: ResourceIdentity, name: str, namespace: str = "") -> dict[str, Any]:
        return await self.get(identity.group_resource, name, namespace)

    async def list_custom(self, identity: ResourceIdentity, namespace: str = "") -> list[dict[str, Any]]:
        return await self.list(identity.group_resource, namespace)

    async def server_preferred_resources(self) -> tuple[list[dict[str, Any]], dict[str, str]]:
        self.discovery_calls += 1
        return copy.deepcopy(self.discovery_lists), dict(self.failed_groups)


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def make_config(
    *,
    safety: SafetyConfig | None = None,
    graph_ttl: int = 30,
    timeout: int = 30,
) -> KubeDiagConfig:
    return KubeDiagConfig(
        safety=safety or SafetyConfig(),
        cache=CacheConfig(graph_ttl_seconds=graph_ttl, discovery_ttl_seconds=300),
        tools=ToolConfig(timeout_seconds=timeout),
    )


def make_invoker(
    cluster: FakeCluster,
    *,
    safety: SafetyConfig | None = None,
    graph_ttl: int = 30,
    timeout: float = 30.0,
    api_keys: dict[str, User] | None = None,
) -> ToolInvoker:
    """A ToolInvoker with the k8s toolset registered against ``cluster``."""
    config = make_config(safety=safety, graph_ttl=graph_ttl)
    policy = Authorizer(api_keys)
    registry = ToolRegistry(config.safety)
    register_k8s_tools(registry)
    context = ToolContext(
        config=config,
        client=cluster,
        resolver=ResourceResolver(CachedDiscovery(cluster)),
        graph_cache=GraphCache(),
        policy=policy,
    )
    return ToolInvoker(registry, policy, context, timeout_seconds=timeout)


CLUSTER_USER = User.cluster_admin("tester")
DEV_USER = User.namespaced("dev", ["default"])


# ---------------------------------------------------------------------------
# Object factories
# ---------------------------------------------------------------------------


def meta(
    name: str,
    namespace: str = "default",
    labels: dict[str, str] | None = None,
    owner: dict[str, Any] | None = None,
    **extra: Any,
) -> dict[str, Any]:
    metadata: dict[str, Any] = {"name": name, "uid": f"uid-{next(_uids)}", **extra}
    if namespace:
        metadata["namespace"] = namespace
    if labels:
        metadata["labels"] = labels
    if owner is not None:
        metadata["ownerReferences"] = [
            {
                "apiVersion": owner.get("apiVersion", "apps/v1"),
                "kind": owner["kind"],
                "name": name_of(owner),
                "uid": owner["metadata"]["uid"],
                "controller": True,
            }
        ]
    return metadata


def make_deployment(name: str, namespace: str = "default", labels: dict[str, str] | None = None) -> dict[str, Any]:
    labels = labels or {"app": name}
    return {
        "kind": "Deployment",
        "metadata": meta(name, namespace, labels),
        "spec": {"replicas": 1, "selector": {"matchLabels": labels}},
        "status": {"readyReplicas": 1},
    }


def make_replicaset(
    name: str,
    namespace: str = "default",
    labels: dict[str, str] | None = None,
    owner: dict[str, Any] | None = None,
) -> dict[str, Any]:
    labels = labels or {"app": name}
    return {
        "kind": "ReplicaSet",
        "metadata": meta(name, namespace, labels, owner),
        "spec": {"replicas": 1, "selector": {"matchLabels": labels}},
        "status": {"readyReplicas": 1},
    }


def make_pod(
    name: str,
    namespace: str = "default",
    labels: dict[str, str] | None = None,
    owner: dict[str, Any] | None = None,
    *,
    phase: str = "Running",
    containers: list[str] | None = None,
    claims: list[str] | None = None,
    container_statuses: list[dict[str, Any]] | None = None,
    service_account: str = "",
    conditions: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    spec: dict[str, Any] = {"containers": [{"name": c, "image": f"{c}:1"} for c in containers or ["app"]]}
    if claims:
        spec["volumes"] = [{"name": c, "persistentVolumeClaim": {"claimName": c}} for c in claims]
    if service_account:
        spec["serviceAccountName"] = service_account
    default_conditions = [{"type": "Ready", "status": "True" if phase == "Running" else "False"}]
    return {
        "kind": "Pod",
        "metadata": meta(name, namespace, labels, owner),
        "spec": spec,
        "status": {
            "phase": phase,
            "conditions": conditions if conditions is not None else default_conditions,
            "containerStatuses": container_statuses or [],
        },
    }


def make_service(name: str, namespace: str = "default", selector: dict[str, str] | None = None) -> dict[str, Any]:
    spec: dict[str, Any] = {"type": "ClusterIP", "ports": [{"port": 80}]}
    if selector:
        spec["selector"] = selector
    return {"kind": "Service", "metadata": meta(name, namespace), "spec": spec}


def make_endpoints(name: str, namespace: str = "default", pods: list[str] | None = None, ready: bool = True) -> dict[str, Any]:
    addresses = [
        {"ip": f"10.0.0.{i + 1}", "targetRef": {"kind": "Pod", "name": pod, "namespace": namespace}}
        for i, pod in enumerate(pods or [])
    ]
    subsets = [{"addresses" if ready else "notReadyAddresses": addresses}] if addresses else []
    return {"kind": "Endpoints", "metadata": meta(name, namespace), "subsets": subsets}


def make_network_policy(
    name: str,
    namespace: str = "default",
    pod_selector: dict[str, Any] | None = None,
    policy_types: list[str] | None = None,
    ingress: list[dict[str, Any]] | None = None,
    egress: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    spec: dict[str, Any] = {"podSelector": pod_selector if pod_selector is not None else {}}
    if policy_types is not None:
        spec["policyTypes"] = policy_types
    if ingress is not None:
        spec["ingress"] = ingress
    if egress is not None:
        spec["egress"] = egress
    return {"kind": "NetworkPolicy", "metadata": meta(name, namespace), "spec": spec}


def make_pvc(
    name: str,
    namespace: str = "default",
    *,
    phase: str = "Pending",
    storage_class: str = "",
    volume_name: str = "",
    access_modes: list[str] | None = None,
    storage: str = "1Gi",
) -> dict[str, Any]:
    spec: dict[str, Any] = {
        "accessModes": access_modes or ["ReadWriteOnce"],
        "resources": {"requests": {"storage": storage}},
    }
    if storage_class:
        spec["storageClassName"] = storage_class
    if volume_name:
        spec["volumeName"] = volume_name
    return {"kind": "PersistentVolumeClaim", "metadata": meta(name, namespace), "spec": spec, "status": {"phase": phase}}


def make_pv(
    name: str,
    *,
    phase: str = "Available",
    storage_class: str = "",
    access_modes: list[str] | None = None,
    capacity: str = "10Gi",
    volume_mode: str | None = None,
) -> dict[str, Any]:
    spec: dict[str, Any] = {
        "accessModes": access_modes or ["ReadWriteOnce"],
        "capacity": {"storage": capacity},
    }
    if storage_class:
        spec["storageClassName"] = storage_class
    if volume_mode:
        spec["volumeMode"] = volume_mode
    return {"kind": "PersistentVolume", "metadata": meta(name, ""), "spec": spec, "status": {"phase": phase}}


def service_scenario(cluster: FakeCluster, namespace: str = "default") -> None:
    """Deployment api -> ReplicaSet api-rs -> Pod api-1, fronted by Service api."""
    deploy = cluster.add("deployments", make_deployment("api", namespace, {"app": "api"}))
    rs = cluster.add("replicasets", make_replicaset("api-rs", namespace, {"app": "api"}, owner=deploy))
    cluster.add("pods", make_pod("api-1", namespace, {"app": "api"}, owner=rs))
    cluster.add("services", make_service("api", namespace, {"app": "api"}))
    cluster.add("endpoints", make_endpoints("api", namespace, ["api-1"]))
