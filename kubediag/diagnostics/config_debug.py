"""ConfigMap and Secret reference checks.

A pod that references a missing ConfigMap or Secret, or a key that is not
in it, sits in ``CreateContainerConfigError`` or mounts an incomplete
volume.  The handler walks every reference a pod spec can make (envFrom,
env key refs, configMap/secret volumes and projected sources) and checks
each against the live object.  Secret values are never read into the
evidence, only their key names.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

from kubediag.errors import NotFoundError, ValidationError
from kubediag.evidence.collector import resource_ref
from kubediag.kube.objects import get_bool, get_list, get_map, name_of
from kubediag.models.analysis import Severity
from kubediag.observability.logging import get_logger
from kubediag.tools.context import ToolRequest

_logger = get_logger("diagnostics.config")

CONFIG_KINDS = {"configmap": "configmaps", "secret": "secrets"}
_TITLES = {"configmap": "ConfigMap", "secret": "Secret"}


@dataclass
class ConfigRef:
    """One reference from a pod spec (or the caller) to a config object."""

    kind: str
    name: str
    source: str
    keys: list[str] = field(default_factory=list)
    optional: bool = False
    container: str = ""


@dataclass
class ConfigIssue:
    kind: str
    name: str
    namespace: str
    source: str
    container: str
    optional: bool
    missing: bool = False
    missing_keys: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["missingKeys"] = data.pop("missing_keys")
        return data


def _item_keys(source: dict[str, Any]) -> list[str]:
    return [item["key"] for item in get_list(source, "items") if isinstance(item, dict) and item.get("key")]


def _ref(
    kind: str, source: str, ref: dict[str, Any], keys: list[str], container: str = "", name_key: str = "name"
) -> ConfigRef:
    return ConfigRef(kind, ref.get(name_key, ""), source, keys, get_bool(ref, "optional"), container)


def pod_config_refs(pod: dict[str, Any]) -> list[ConfigRef]:
    """Every ConfigMap and Secret reference in ``pod``, in spec order."""
    refs: list[ConfigRef] = []
    containers = get_list(pod, "spec", "initContainers") + get_list(pod, "spec", "containers")
    for container in containers:
        cname = container.get("name", "")
        for env_from in get_list(container, "envFrom"):
            for key, kind in (("configMapRef", "configmap"), ("secretRef", "secret")):
                ref = get_map(env_from, key)
                if ref:
                    refs.append(_ref(kind, "envFrom", ref, [], cname))
        for env in get_list(container, "env"):
            for key, kind in (("configMapKeyRef", "configmap"), ("secretKeyRef", "secret")):
                ref = get_map(env, "valueFrom", key)
                if ref:
                    refs.append(_ref(kind, "env", ref, [ref["key"]] if ref.get("key") else [], cname))

    for volume in get_list(pod, "spec", "volumes"):
        config_map = get_map(volume, "configMap")
        if config_map:
            refs.append(_ref("configmap", "volume", config_map, _item_keys(config_map)))
        secret = get_map(volume, "secret")
        if secret:
            refs.append(_ref("secret", "volume", secret, _item_keys(secret), name_key="secretName"))
        for source in get_list(volume, "projected", "sources"):
            for key, kind in (("configMap", "configmap"), ("secret", "secret")):
                projected = get_map(source, key)
                if projected:
                    refs.append(_ref(kind, "projected", projected, _item_keys(projected)))
    return refs


def present_keys(kind: str, obj: dict[str, Any]) -> set[str]:
    keys = set(get_map(obj, "data"))
    if kind == "configmap":
        keys |= set(get_map(obj, "binaryData"))
    return keys


class _ConfigLookup:
    """Per-request memo so a pod referencing one object many times reads it once."""

    def __init__(self, request: ToolRequest, namespace: str) -> None:
        self._client = request.context.client
        self._namespace = namespace
        self._seen: dict[tuple[str, str], set[str] | None] = {}

    async def keys(self, kind: str, name: str) -> set[str] | None:
        """Key names of the object, or None when it does not exist."""
        if (kind, name) not in self._seen:
            try:
                obj = await self._client.get(CONFIG_KINDS[kind], name, self._namespace)
            except NotFoundError:
                self._seen[(kind, name)] = None
            else:
                self._seen[(kind, name)] = present_keys(kind, obj)
        return self._seen[(kind, name)]

    async def check(self, ref: ConfigRef) -> ConfigIssue:
        issue = ConfigIssue(ref.kind, ref.name, self._namespace, ref.source, ref.container, ref.optional)
        keys = await self.keys(ref.kind, ref.name) if ref.name else None
        if keys is None:
            issue.missing = True
        else:
            issue.missing_keys = [key for key in ref.keys if key not in keys]
        return issue


def _required_keys(request: ToolRequest) -> list[str]:
    value = request.arguments.get("required_keys")
    if value is None:
        return []
    if isinstance(value, str):
        return [key.strip() for key in value.split(",") if key.strip()]
    if isinstance(value, list) and all(isinstance(key, str) for key in value):
        return [key.strip() for key in value if key.strip()]
    raise ValidationError("required_keys must be a list of strings or a comma-separated string")


async def config_debug(request: ToolRequest) -> dict[str, Any]:
    namespace = request.namespace
    pod_name = request.str_arg("pod")
    name = request.str_arg("name")
    kind = request.str_arg("kind", default="configmap").lower() or "configmap"
    required = _required_keys(request)
    if not pod_name and not name:
        raise ValidationError("pod or name is required")
    if name and kind not in CONFIG_KINDS:
        raise ValidationError(f"unsupported kind: {kind}; expected configmap or secret")
    analysis = request.begin_analysis()
    lookup = _ConfigLookup(request, namespace)

    refs: list[ConfigRef] = []
    if pod_name:
        try:
            pod = await request.context.client.get("pods", pod_name, namespace)
        except NotFoundError:
            analysis.add_evidence("pod", f"pod {pod_name} not found")
        else:
            analysis.add_resource(resource_ref("pods", namespace, name_of(pod)))
            refs.extend(pod_config_refs(pod))
    if name:
        refs.append(ConfigRef(kind, name, "direct", required))
    issues = [await lookup.check(ref) for ref in refs]

    if not issues:
        analysis.add_evidence("status", "no config references found")
    else:
        analysis.add_evidence("issues", [issue.to_dict() for issue in issues])
    for issue in issues:
        if issue.name:
            analysis.add_resource(resource_ref(CONFIG_KINDS[issue.kind], namespace, issue.name))
        if issue.optional:
            continue
        target = f"{_TITLES[issue.kind]} {namespace}/{issue.name}"
        if issue.missing:
            analysis.add_cause("Config missing", f"{target} missing", Severity.HIGH)
        elif issue.missing_keys:
            detail = f"{target} missing keys: {', '.join(issue.missing_keys)}"
            analysis.add_cause("Missing keys", detail, Severity.MEDIUM)

    _logger.info("config_debug", namespace=namespace, pod=pod_name, references=len(refs), causes=len(analysis.causes))
    analysis.add_next_check("Ensure ConfigMap/Secret keys match pod references and redeploy pods")
    return request.render()
