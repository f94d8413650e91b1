"""Cluster client over kubernetes-asyncio.

Wraps the typed API groups and ``CustomObjectsApi`` behind one small async
surface that speaks camelCase dicts.  ``ApiException`` is translated at this
boundary: 404 becomes :class:`NotFoundError`, anything else
:class:`ClusterAPIError`.
"""

from __future__ import annotations

import asyncio
from typing import Any, Protocol

from kubernetes_asyncio import client as k8s_client  # type: ignore[import-untyped]
from kubernetes_asyncio import config as k8s_config  # type: ignore[import-untyped]
from kubernetes_asyncio.client.exceptions import ApiException  # type: ignore[import-untyped]

from kubediag.errors import ClusterAPIError, NotFoundError
from kubediag.kube.resolver import ResourceIdentity
from kubediag.models.config import KubeConfig
from kubediag.observability.logging import get_logger

_log = get_logger("kube.client")

# resource plural -> (typed API class name, method stem, namespaced)
_TYPED: dict[str, tuple[str, str, bool]] = {
    "pods": ("CoreV1Api", "pod", True),
    "services": ("CoreV1Api", "service", True),
    "endpoints": ("CoreV1Api", "endpoints", True),
    "events": ("CoreV1Api", "event", True),
    "persistentvolumeclaims": ("CoreV1Api", "persistent_volume_claim", True),
    "persistentvolumes": ("CoreV1Api", "persistent_volume", False),
    "namespaces": ("CoreV1Api", "namespace", False),
    "nodes": ("CoreV1Api", "node", False),
    "serviceaccounts": ("CoreV1Api", "service_account", True),
    "resourcequotas": ("CoreV1Api", "resource_quota", True),
    "limitranges": ("CoreV1Api", "limit_range", True),
    "replicationcontrollers": ("CoreV1Api", "replication_controller", True),
    "configmaps": ("CoreV1Api", "config_map", True),
    "secrets": ("CoreV1Api", "secret", True),
    "deployments": ("AppsV1Api", "deployment", True),
    "replicasets": ("AppsV1Api", "replica_set", True),
    "statefulsets": ("AppsV1Api", "stateful_set", True),
    "daemonsets": ("AppsV1Api", "daemon_set", True),
    "ingresses": ("NetworkingV1Api", "ingress", True),
    "networkpolicies": ("NetworkingV1Api", "network_policy", True),
    "storageclasses": ("StorageV1Api", "storage_class", False),
    "volumeattachments": ("StorageV1Api", "volume_attachment", False),
    "roles": ("RbacAuthorizationV1Api", "role", True),
    "rolebindings": ("RbacAuthorizationV1Api", "role_binding", True),
    "clusterroles": ("RbacAuthorizationV1Api", "cluster_role", False),
    "clusterrolebindings": ("RbacAuthorizationV1Api", "cluster_role_binding", False),
    "horizontalpodautoscalers": ("AutoscalingV2Api", "horizontal_pod_autoscaler", True),
    "priorityclasses": ("SchedulingV1Api", "priority_class", False),
}


class ClusterReader(Protocol):
    """The read/delete surface the rest of kubediag depends on.

    :class:`ClusterClient` implements it against a live API server; tests
    substitute an in-memory fake.
    """

    async def get(self, resource: str, name: str, namespace: str = "") -> dict[str, Any]: ...

    async def list(
        self,
        resource: str,
        namespace: str = "",
        *,
        label_selector: str = "",
        field_selector: str = "",
    ) -> list[dict[str, Any]]: ...

    async def delete(self, resource: str, name: str, namespace: str = "") -> dict[str, Any]: ...

    async def get_custom(self, identity: ResourceIdentity, name: str, namespace: str = "") -> dict[str, Any]: ...

    async def list_custom(self, identity: ResourceIdentity, namespace: str = "") -> list[dict[str, Any]]: ...

    async def server_preferred_resources(self) -> tuple[list[dict[str, Any]], dict[str, str]]: ...


def _translate(exc: ApiException, resource: str, name: str = "", namespace: str = "") -> Exception:
    if exc.status == 404:
        return NotFoundError(resource, name or "<list>", namespace)
    return ClusterAPIError(exc.status or 0, exc.reason or "", f"{resource} request failed: {exc.status} {exc.reason}")


class ClusterClient:
    """kubernetes-asyncio backed implementation of :class:`ClusterReader`."""

    def __init__(self, api_client: k8s_client.ApiClient) -> None:
        self._api_client = api_client
        self._apis: dict[str, Any] = {}

    @classmethod
    async def from_config(cls, config: KubeConfig) -> ClusterClient:
        """Load in-cluster config, falling back to kubeconfig."""
        if config.kubeconfig:
            await k8s_config.load_kube_config(config_file=config.kubeconfig, context=config.context or None)
            _log.info("k8s client configured from kubeconfig", path=config.kubeconfig)
        else:
            try:
                # load_incluster_config() is synchronous in kubernetes-asyncio
                k8s_config.load_incluster_config()
                _log.info("k8s client configured from in-cluster service account")
            except k8s_config.ConfigException:
                await k8s_config.load_kube_config(context=config.context or None)
                _log.info("k8s client configured from kubeconfig")
        return cls(k8s_client.ApiClient())

    async def close(self) -> None:
        await self._api_client.close()

    def _api(self, class_name: str) -> Any:
        if class_name not in self._apis:
            self._apis[class_name] = getattr(k8s_client, class_name)(self._api_client)
        return self._apis[class_name]

    def _typed(self, resource: str) -> tuple[Any, str, bool]:
        try:
            class_name, stem, namespaced = _TYPED[resource]
        except KeyError:
            raise ClusterAPIError(0, "unsupported", f"no typed client for resource {resource}") from None
        return self._api(class_name), stem, namespaced

    def _to_dict(self, obj: Any) -> dict[str, Any]:
        return self._api_client.sanitize_for_serialization(obj)  # type: ignore[no-any-return]

    # ------------------------------------------------------------------
    # Typed reads
    # ------------------------------------------------------------------

    async def get(self, resource: str, name: str, namespace: str = "") -> dict[str, Any]:
        api, stem, namespaced = self._typed(resource)
        try:
            if namespaced:
                obj = await getattr(api, f"read_namespaced_{stem}")(name, namespace)
            else:
                obj = await getattr(api, f"read_{stem}")(name)
        except ApiException as exc:
            raise _translate(exc, resource, name, namespace) from exc
        return self._to_dict(obj)

    async def list(
        self,
        resource: str,
        namespace: str = "",
        *,
        label_selector: str = "",
        field_selector: str = "",
    ) -> list[dict[str, Any]]:
        api, stem, namespaced = self._typed(resource)
        kwargs: dict[str, Any] = {}
        if label_selector:
            kwargs["label_selector"] = label_selector
        if field_selector:
            kwargs["field_selector"] = field_selector
        try:
            if namespaced and namespace:
                result = await getattr(api, f"list_namespaced_{stem}")(namespace, **kwargs)
            elif namespaced:
                result = await getattr(api, f"list_{stem}_for_all_namespaces")(**kwargs)
            else:
                result = await getattr(api, f"list_{stem}")(**kwargs)
        except ApiException as exc:
            raise _translate(exc, resource, namespace=namespace) from exc
        return self._to_dict(result).get("items") or []

    async def delete(self, resource: str, name: str, namespace: str = "") -> dict[str, Any]:
        api, stem, namespaced = self._typed(resource)
        try:
            if namespaced:
                status = await getattr(api, f"delete_namespaced_{stem}")(name, namespace)
            else:
                status = await getattr(api, f"delete_{stem}")(name)
        except ApiException as exc:
            raise _translate(exc, resource, name, namespace) from exc
        return self._to_dict(status) or {}

    # ------------------------------------------------------------------
    # Dynamic reads
    # ------------------------------------------------------------------

    async def get_custom(self, identity: ResourceIdentity, name: str, namespace: str = "") -> dict[str, Any]:
        if not identity.group:
            return await self.get(identity.resource, name, namespace)
        api = self._api("CustomObjectsApi")
        try:
            if identity.namespaced:
                return await api.get_namespaced_custom_object(  # type: ignore[no-any-return]
                    identity.group, identity.version, namespace, identity.resource, name
                )
            return await api.get_cluster_custom_object(  # type: ignore[no-any-return]
                identity.group, identity.version, identity.resource, name
            )
        except ApiException as exc:
            raise _translate(exc, identity.group_resource, name, namespace) from exc

    async def list_custom(self, identity: ResourceIdentity, namespace: str = "") -> list[dict[str, Any]]:
        if not identity.group:
            return await self.list(identity.resource, namespace)
        api = self._api("CustomObjectsApi")
        try:
            if identity.namespaced and namespace:
                result = await api.list_namespaced_custom_object(
                    identity.group, identity.version, namespace, identity.resource
                )
            else:
                result = await api.list_cluster_custom_object(identity.group, identity.version, identity.resource)
        except ApiException as exc:
            raise _translate(exc, identity.group_resource, namespace=namespace) from exc
        return result.get("items") or []

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    async def server_preferred_resources(self) -> tuple[list[dict[str, Any]], dict[str, str]]:
        """Return preferred resource lists plus failed group-versions.

        Raises :class:`ClusterAPIError` only when discovery fails as a whole
        (core or group list unreachable).
        """
        try:
            core = await self._api("CoreV1Api").get_api_resources()
            groups = await self._api("ApisApi").get_api_versions()
        except ApiException as exc:
            raise _translate(exc, "discovery") from exc

        lists: list[dict[str, Any]] = [self._to_dict(core)]
        lists[0].setdefault("groupVersion", "v1")
        group_versions = [
            group.preferred_version.group_version
            for group in groups.groups or []
            if group.preferred_version is not None
        ]

        custom = self._api("CustomObjectsApi")

        async def _fetch(group_version: str) -> dict[str, Any]:
            group, version = group_version.split("/", 1)
            return self._to_dict(await custom.get_api_resources(group, version))

        results = await asyncio.gather(*(_fetch(gv) for gv in group_versions), return_exceptions=True)
        failed: dict[str, str] = {}
        for group_version, result in zip(group_versions, results, strict=True):
            if isinstance(result, ApiException):
                failed[group_version] = f"{result.status} {result.reason}"
            elif isinstance(result, Exception):
                failed[group_version] = str(result)
            elif isinstance(result, BaseException):
                raise result
            else:
                result.setdefault("groupVersion", group_version)
                lists.append(result)
        return lists, failed
