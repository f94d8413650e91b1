"""Resource resolution: user-facing kind strings to API resource identities.

Built-in kinds resolve from a static table without touching the API server.
Everything else (CRDs, mesh kinds, autoscaler kinds) goes through
:class:`CachedDiscovery`, which tolerates partial discovery failures: groups
that cannot be listed are reported as warnings and only fail a resolution
when the requested group is one of them.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any, Protocol

from kubediag.errors import KubeDiagError, PartialDiscoveryWarning, ResolutionError, ValidationError
from kubediag.observability.logging import get_logger

_log = get_logger("kube.resolver")


@dataclass(frozen=True)
class ResourceIdentity:
    """Resolved form of a kind string.  Never mutated after creation."""

    group: str
    version: str
    resource: str
    kind: str
    namespaced: bool

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}" if self.group else self.version

    @property
    def group_resource(self) -> str:
        return f"{self.resource}.{self.group}" if self.group else self.resource


class DiscoveryClient(Protocol):
    """The part of the cluster client discovery relies on."""

    async def server_preferred_resources(self) -> tuple[list[dict[str, Any]], dict[str, str]]: ...


# ---------------------------------------------------------------------------
# Built-in kinds
# ---------------------------------------------------------------------------

_BUILTINS: tuple[tuple[ResourceIdentity, tuple[str, ...]], ...] = (
    (ResourceIdentity("", "v1", "pods", "Pod", True), ("po",)),
    (ResourceIdentity("", "v1", "services", "Service", True), ("svc",)),
    (ResourceIdentity("", "v1", "endpoints", "Endpoints", True), ("ep",)),
    (ResourceIdentity("", "v1", "events", "Event", True), ("ev",)),
    (ResourceIdentity("", "v1", "persistentvolumeclaims", "PersistentVolumeClaim", True), ("pvc",)),
    (ResourceIdentity("", "v1", "persistentvolumes", "PersistentVolume", False), ("pv",)),
    (ResourceIdentity("", "v1", "namespaces", "Namespace", False), ("ns",)),
    (ResourceIdentity("", "v1", "nodes", "Node", False), ("no",)),
    (ResourceIdentity("", "v1", "serviceaccounts", "ServiceAccount", True), ("sa",)),
    (ResourceIdentity("", "v1", "resourcequotas", "ResourceQuota", True), ("quota",)),
    (ResourceIdentity("", "v1", "limitranges", "LimitRange", True), ("limits",)),
    (ResourceIdentity("", "v1", "replicationcontrollers", "ReplicationController", True), ("rc",)),
    (ResourceIdentity("", "v1", "configmaps", "ConfigMap", True), ("cm",)),
    (ResourceIdentity("", "v1", "secrets", "Secret", True), ()),
    (ResourceIdentity("apps", "v1", "deployments", "Deployment", True), ("deploy",)),
    (ResourceIdentity("apps", "v1", "replicasets", "ReplicaSet", True), ("rs",)),
    (ResourceIdentity("apps", "v1", "statefulsets", "StatefulSet", True), ("sts",)),
    (ResourceIdentity("apps", "v1", "daemonsets", "DaemonSet", True), ("ds",)),
    (ResourceIdentity("networking.k8s.io", "v1", "ingresses", "Ingress", True), ("ing",)),
    (ResourceIdentity("networking.k8s.io", "v1", "networkpolicies", "NetworkPolicy", True), ("netpol",)),
    (ResourceIdentity("storage.k8s.io", "v1", "storageclasses", "StorageClass", False), ("sc",)),
    (ResourceIdentity("storage.k8s.io", "v1", "volumeattachments", "VolumeAttachment", False), ()),
    (ResourceIdentity("rbac.authorization.k8s.io", "v1", "roles", "Role", True), ()),
    (ResourceIdentity("rbac.authorization.k8s.io", "v1", "rolebindings", "RoleBinding", True), ()),
    (ResourceIdentity("rbac.authorization.k8s.io", "v1", "clusterroles", "ClusterRole", False), ()),
    (ResourceIdentity("rbac.authorization.k8s.io", "v1", "clusterrolebindings", "ClusterRoleBinding", False), ()),
    (ResourceIdentity("autoscaling", "v2", "horizontalpodautoscalers", "HorizontalPodAutoscaler", True), ("hpa",)),
    (ResourceIdentity("scheduling.k8s.io", "v1", "priorityclasses", "PriorityClass", False), ("pc",)),
)

BUILTIN_RESOURCES: dict[str, ResourceIdentity] = {ident.resource: ident for ident, _ in _BUILTINS}


def _alias_table() -> dict[str, ResourceIdentity]:
    table: dict[str, ResourceIdentity] = {}
    for ident, short_names in _BUILTINS:
        for alias in (ident.resource, ident.kind.lower(), *short_names):
            table[alias] = ident
    return table


_ALIASES = _alias_table()


def builtin_identity(name: str, group: str = "") -> ResourceIdentity | None:
    """Return the built-in identity for ``name`` if it is one, else None."""
    ident = _ALIASES.get(name.lower())
    if ident is None:
        return None
    if group and group != ident.group:
        return None
    return ident


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------


class CachedDiscovery:
    """Server-preferred API resources, cached for ``ttl_seconds``.

    A TTL of zero re-reads discovery on every call.  Groups that failed to
    load are kept alongside the successful lists.
    """

    def __init__(
        self,
        client: DiscoveryClient,
        ttl_seconds: int = 300,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = client
        self._ttl = ttl_seconds
        self._clock = clock
        self._lists: list[dict[str, Any]] | None = None
        self._failed: dict[str, str] = {}
        self._loaded_at = 0.0
        self._lock = asyncio.Lock()

    async def resources(self) -> tuple[list[dict[str, Any]], dict[str, str]]:
        """Return ``(resource_lists, failed_group_versions)``."""
        async with self._lock:
            if self._lists is None or self._clock() - self._loaded_at >= self._ttl:
                lists, failed = await self._client.server_preferred_resources()
                if failed:
                    _log.warning("discovery_partial", failed_groups=sorted(failed))
                self._lists, self._failed, self._loaded_at = lists, failed, self._clock()
            return self._lists, dict(self._failed)

    def invalidate(self) -> None:
        self._lists = None
        self._failed = {}


def _group_of(group_version: str) -> str:
    return group_version.split("/", 1)[0] if "/" in group_version else ""


def _version_of(group_version: str) -> str:
    return group_version.split("/", 1)[1] if "/" in group_version else group_version


def _candidates(lists: Iterable[dict[str, Any]], name: str) -> list[ResourceIdentity]:
    found: list[ResourceIdentity] = []
    for resource_list in lists:
        group_version = resource_list.get("groupVersion", "")
        for res in resource_list.get("resources") or []:
            res_name = res.get("name", "")
            if not res_name or "/" in res_name:
                continue
            aliases = {
                res_name.lower(),
                (res.get("singularName") or "").lower(),
                (res.get("kind") or "").lower(),
                *(short.lower() for short in res.get("shortNames") or []),
            }
            if name in aliases:
                found.append(
                    ResourceIdentity(
                        group=_group_of(group_version),
                        version=_version_of(group_version),
                        resource=res_name,
                        kind=res.get("kind", ""),
                        namespaced=bool(res.get("namespaced", False)),
                    )
                )
    return found


class ResourceResolver:
    """Maps ``(kind_or_resource, group_hint)`` to a :class:`ResourceIdentity`."""

    def __init__(self, discovery: CachedDiscovery) -> None:
        self._discovery = discovery

    @property
    def discovery(self) -> CachedDiscovery:
        return self._discovery

    async def resolve(self, kind_or_resource: str, group_hint: str = "") -> ResourceIdentity:
        identity, _ = await self.resolve_with_warnings(kind_or_resource, group_hint)
        return identity

    async def resolve_with_warnings(
        self, kind_or_resource: str, group_hint: str = ""
    ) -> tuple[ResourceIdentity, list[str]]:
        """Resolve and also return partial-discovery warnings.

        ``resource.group`` input pins the group strictly; a ``group_hint``
        only breaks ties between candidates from different groups.
        """
        text = kind_or_resource.strip()
        if not text:
            raise ValidationError("kind is required")
        name, pinned_group = text, ""
        if "." in text:
            name, pinned_group = text.split(".", 1)
        hint = pinned_group or group_hint.strip()

        builtin = builtin_identity(name, pinned_group)
        if builtin is not None and (not hint or hint == builtin.group):
            return builtin, []

        try:
            lists, failed = await self._discovery.resources()
        except KubeDiagError as exc:
            raise ResolutionError(f"api discovery failed: {exc.message}") from exc

        warnings = [str(PartialDiscoveryWarning(failed))] if failed else []
        candidates = _candidates(lists, name.lower())

        if hint:
            exact = [cand for cand in candidates if cand.group == hint]
            if exact:
                return exact[0], warnings
            if hint in {_group_of(gv) for gv in failed}:
                raise ResolutionError(f"cannot resolve {name}: discovery failed for api group {hint}")
            if pinned_group:
                raise ResolutionError(f"no matching resource found for {name} in group {pinned_group}")

        if candidates:
            if len(candidates) > 1:
                _log.debug(
                    "ambiguous_kind",
                    kind=name,
                    groups=[cand.group for cand in candidates],
                    chosen=candidates[0].group,
                )
            return candidates[0], warnings

        if failed:
            raise ResolutionError(
                f"no matching resource found for kind {name}; discovery failed for {', '.join(sorted(failed))}"
            )
        raise ResolutionError(f"no matching resource found for kind {name}")

    async def groups_present(self, groups: Iterable[str]) -> tuple[bool, list[str], list[str]]:
        """Report which of ``groups`` the cluster serves.

        Returns ``(any_present, sorted_found, warnings)``.  Groups whose
        discovery failed count as absent and are named in the warnings.
        """
        wanted = set(groups)
        try:
            lists, failed = await self._discovery.resources()
        except KubeDiagError as exc:
            raise ResolutionError(f"api discovery failed: {exc.message}") from exc
        served = {_group_of(item.get("groupVersion", "")) for item in lists}
        found = sorted(wanted & served)
        warnings = [str(PartialDiscoveryWarning(failed))] if failed else []
        return bool(found), found, warnings
