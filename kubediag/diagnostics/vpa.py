"""VerticalPodAutoscaler diagnostics."""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from kubediag.diagnostics.base import cluster_gated
from kubediag.errors import KubeDiagError, NotFoundError
from kubediag.evidence.collector import resource_ref
from kubediag.kube.objects import find_condition, get_list, get_map, get_str, name_of, parse_quantity
from kubediag.kube.resolver import ResourceIdentity, builtin_identity
from kubediag.models.analysis import Analysis, Severity
from kubediag.observability.logging import get_logger
from kubediag.tools.context import ToolRequest

_logger = get_logger("diagnostics.vpa")

VPA_GROUP = "autoscaling.k8s.io"
METRICS_GROUP = "metrics.k8s.io"

_CAPACITY_RESOURCES = ("cpu", "memory")


def _quantity(value: Any) -> Decimal | None:
    if value in (None, ""):
        return None
    try:
        return parse_quantity(value)
    except ValueError:
        return None


def largest_allocatable(nodes: list[dict[str, Any]]) -> dict[str, Decimal]:
    """Largest allocatable cpu and memory over ``nodes``."""
    largest: dict[str, Decimal] = {}
    for node in nodes:
        allocatable = get_map(node, "status", "allocatable")
        for resource in _CAPACITY_RESOURCES:
            amount = _quantity(allocatable.get(resource))
            if amount is not None and amount > largest.get(resource, Decimal(-1)):
                largest[resource] = amount
    return largest


def oversized_recommendations(vpa: dict[str, Any], largest: dict[str, Decimal]) -> list[str]:
    """``container:resource`` pairs whose target exceeds every node."""
    over: list[str] = []
    for rec in get_list(vpa, "status", "recommendation", "containerRecommendations"):
        target = rec.get("target") or {}
        for resource in _CAPACITY_RESOURCES:
            wanted = _quantity(target.get(resource))
            ceiling = largest.get(resource)
            if wanted is not None and ceiling is not None and wanted > ceiling:
                over.append(f"{rec.get('containerName', '')}:{resource}")
    return over


class _VPARun:
    def __init__(self, request: ToolRequest, analysis: Analysis, namespace: str) -> None:
        self.request = request
        self.ctx = request.context
        self.analysis = analysis
        self.namespace = namespace
        self._metrics_identity: ResourceIdentity | None = None
        self._metrics_checked = False
        self._largest: dict[str, Decimal] | None = None

    async def _pod_metrics_identity(self) -> ResourceIdentity | None:
        if not self._metrics_checked:
            self._metrics_checked = True
            present, _, _ = await self.ctx.resolver.groups_present([METRICS_GROUP])
            if present:
                self._metrics_identity = await self.ctx.resolver.resolve("pods", METRICS_GROUP)
            else:
                self.analysis.add_evidence("podMetrics", "metrics.k8s.io not available")
        return self._metrics_identity

    async def _target_pods(self, vpa_name: str, target: dict[str, Any]) -> list[dict[str, Any]]:
        kind, target_name = target.get("kind", ""), target.get("name", "")
        identity = builtin_identity(kind) if kind else None
        if identity is None or not target_name:
            self.analysis.add_evidence(f"vpa {vpa_name} target", f"unsupported targetRef kind {kind!r}")
            return []
        try:
            workload = await self.ctx.client.get(identity.resource, target_name, self.namespace)
        except NotFoundError:
            self.analysis.add_cause(
                "VPA target missing",
                f"VPA {vpa_name} targets {kind}/{target_name}, which does not exist",
                Severity.HIGH,
            )
            return []
        self.analysis.add_resource(resource_ref(identity.resource, self.namespace, target_name))
        selector = get_map(workload, "spec", "selector", "matchLabels")
        return await self.ctx.collector.related_pods(self.namespace, selector)

    async def _record_metrics(self, vpa_name: str, pods: list[dict[str, Any]]) -> None:
        identity = await self._pod_metrics_identity()
        if identity is None or not pods:
            return
        wanted = {name_of(pod) for pod in pods}
        usage = [
            {
                "pod": name_of(item),
                "containers": [
                    {"name": c.get("name", ""), "usage": c.get("usage") or {}} for c in get_list(item, "containers")
                ],
            }
            for item in await self.ctx.client.list_custom(identity, self.namespace)
            if name_of(item) in wanted
        ]
        if usage:
            self.analysis.add_evidence(f"pod metrics {vpa_name}", sorted(usage, key=lambda u: u["pod"]))

    async def _check_capacity(self, vpa: dict[str, Any]) -> None:
        if not cluster_gated(self.request, self.analysis, "nodeCapacityCheck"):
            return
        if self._largest is None:
            self._largest = largest_allocatable(await self.ctx.client.list("nodes"))
            self.analysis.add_evidence("largestNodeAllocatable", {k: str(v) for k, v in self._largest.items()})
        over = oversized_recommendations(vpa, self._largest)
        if over:
            self.analysis.add_cause(
                "VPA recommendation exceeds node capacity",
                f"VPA {name_of(vpa)} recommends more than any node can allocate: {', '.join(over)}",
                Severity.MEDIUM,
            )

    async def analyze(self, vpa: dict[str, Any], identity: ResourceIdentity) -> None:
        name = name_of(vpa)
        self.analysis.add_resource(resource_ref(identity.group_resource, self.namespace, name))
        target = get_map(vpa, "spec", "targetRef")
        update_mode = get_str(vpa, "spec", "updatePolicy", "updateMode", default="Auto")
        recommendations = get_list(vpa, "status", "recommendation", "containerRecommendations")
        self.analysis.add_evidence(
            f"vpa {name}",
            {
                "targetRef": target,
                "updateMode": update_mode,
                "conditions": get_list(vpa, "status", "conditions"),
                "recommendations": recommendations,
            },
        )
        if update_mode == "Off":
            self.analysis.add_cause("VPA updates disabled", f"VPA {name} has updateMode Off", Severity.MEDIUM)
        if not recommendations:
            detail = f"VPA {name} has not produced a recommendation yet"
            provided = find_condition(vpa, "RecommendationProvided")
            if provided and provided.get("message"):
                detail = f"{detail}: {provided['message']}"
            self.analysis.add_cause("No VPA recommendation", detail, Severity.LOW)

        pods = await self._target_pods(name, target)
        await self._record_metrics(name, pods)
        if recommendations:
            await self._check_capacity(vpa)


async def vpa_debug(request: ToolRequest) -> dict[str, Any]:
    namespace = request.namespace
    vpa_name = request.str_arg("name")
    ctx = request.context
    analysis = request.begin_analysis()

    present, _, warnings = await ctx.resolver.groups_present([VPA_GROUP])
    if warnings:
        analysis.add_evidence("discoveryWarnings", warnings)
    if not present:
        analysis.add_evidence("vpa", "vpa not detected")
        analysis.add_next_check("Install the VerticalPodAutoscaler CRDs and recommender")
        return request.render()

    identity = await ctx.resolver.resolve("VerticalPodAutoscaler", VPA_GROUP)
    if vpa_name:
        try:
            vpas = [await ctx.client.get_custom(identity, vpa_name, namespace)]
        except NotFoundError:
            analysis.add_evidence("vpa", f"vpa not found: {vpa_name}")
            analysis.add_next_check("Check the VPA name and namespace")
            return request.render()
    else:
        vpas = sorted(await ctx.client.list_custom(identity, namespace), key=name_of)
        if not vpas:
            analysis.add_evidence("status", "no vpas found")

    run = _VPARun(request, analysis, namespace)
    for vpa in vpas:
        try:
            await run.analyze(vpa, identity)
        except KubeDiagError as exc:
            analysis.add_evidence(f"vpa {name_of(vpa)} error", exc.message)

    if vpas and not analysis.has_causes:
        analysis.add_evidence("status", "no explicit vpa issues found")
    analysis.add_next_check("Compare VPA recommendations with container requests and limits")
    _logger.info("vpa_debug", namespace=namespace, vpas=len(vpas), causes=len(analysis.causes))
    return request.render()
