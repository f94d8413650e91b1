"""Per-build listing of the objects a traversal needs.

One graph build lists each relevant kind in the root's namespace once and
serves every relation rule from memory.  A list that fails is recorded as a
warning and the snapshot falls back to direct API reads for that kind.
"""

from __future__ import annotations

from typing import Any

from kubediag.errors import ClusterAPIError, NotFoundError
from kubediag.kube.client import ClusterReader
from kubediag.kube.objects import name_of

PREFETCH_RESOURCES = (
    "services",
    "endpoints",
    "pods",
    "deployments",
    "replicasets",
    "statefulsets",
    "daemonsets",
    "ingresses",
    "networkpolicies",
)

# resource plural -> singular used in warning text
_SINGULAR = {
    "services": "service",
    "endpoints": "endpoints",
    "pods": "pod",
    "deployments": "deployment",
    "replicasets": "replicaset",
    "statefulsets": "statefulset",
    "daemonsets": "daemonset",
    "ingresses": "ingress",
    "networkpolicies": "networkpolicy",
}


class ClusterSnapshot:
    """Namespace-scoped object lists shared by the rules of one build."""

    def __init__(self, client: ClusterReader, namespace: str, *, cluster_scope: bool = False) -> None:
        self.client = client
        self.namespace = namespace
        self.cluster_scope = cluster_scope
        self.namespaces: list[dict[str, Any]] | None = None
        self._items: dict[str, list[dict[str, Any]]] = {}

    @classmethod
    async def load(
        cls, client: ClusterReader, namespace: str, *, cluster_scope: bool = False
    ) -> tuple[ClusterSnapshot, list[str]]:
        snapshot = cls(client, namespace, cluster_scope=cluster_scope)
        warnings: list[str] = []
        for resource in PREFETCH_RESOURCES:
            try:
                snapshot._items[resource] = await client.list(resource, namespace)
            except NotFoundError:
                snapshot._items[resource] = []
            except ClusterAPIError as exc:
                warnings.append(f"{_SINGULAR.get(resource, resource)} list failed: {exc.message}")
        if cluster_scope:
            try:
                snapshot.namespaces = await client.list("namespaces")
            except (ClusterAPIError, NotFoundError) as exc:
                warnings.append(f"namespace list failed: {exc.message}")
        return snapshot, warnings

    def loaded(self, resource: str) -> bool:
        return resource in self._items

    async def list(self, resource: str) -> list[dict[str, Any]]:
        """Objects of ``resource`` in the namespace, listing on first use."""
        if resource not in self._items:
            self._items[resource] = await self.client.list(resource, self.namespace)
        return self._items[resource]

    async def get(self, resource: str, name: str) -> dict[str, Any] | None:
        """One object by name, or None when it does not exist."""
        if resource in self._items:
            for obj in self._items[resource]:
                if name_of(obj) == name:
                    return obj
            return None
        try:
            return await self.client.get(resource, name, self.namespace)
        except NotFoundError:
            return None
