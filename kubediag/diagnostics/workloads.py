"""Pod lifecycle diagnostics: crash loops, scheduling and HPA."""

from __future__ import annotations

from typing import Any

from kubediag.diagnostics.base import cluster_gated
from kubediag.errors import KubeDiagError, NotFoundError
from kubediag.evidence.collector import pod_status_summary, resource_ref, summarize_event
from kubediag.kube.objects import find_condition, get_list, get_map, get_str, name_of, parse_quantity, uid_of
from kubediag.kube.resolver import builtin_identity
from kubediag.models.analysis import Analysis, Severity
from kubediag.observability.logging import get_logger
from kubediag.tools.context import ToolRequest

_logger = get_logger("diagnostics.workloads")

CRASH_REASONS = frozenset({"CrashLoopBackOff", "ImagePullBackOff", "ErrImagePull"})
SCHEDULING_EVENT_REASONS = frozenset({"FailedScheduling", "Preempted", "Preempting", "ExceededQuota"})


async def _pods_in_scope(request: ToolRequest, analysis: Analysis, namespace: str, pod_name: str) -> list[dict[str, Any]]:
    client = request.context.client
    if pod_name:
        try:
            return [await client.get("pods", pod_name, namespace)]
        except NotFoundError:
            analysis.add_evidence("pod", f"pod {pod_name} not found")
            return []
    return sorted(await client.list("pods", namespace), key=name_of)


# ---------------------------------------------------------------------------
# Crash loops
# ---------------------------------------------------------------------------


def crash_findings(pod: dict[str, Any]) -> list[tuple[str, str]]:
    """``(title, detail)`` pairs for every crashing container of ``pod``."""
    findings: list[tuple[str, str]] = []
    statuses = get_list(pod, "status", "initContainerStatuses") + get_list(pod, "status", "containerStatuses")
    for status in statuses:
        container = status.get("name", "")
        waiting = get_map(status, "state", "waiting")
        last = get_map(status, "lastState", "terminated")
        current = get_map(status, "state", "terminated")
        reason = waiting.get("reason", "")
        if reason in CRASH_REASONS:
            detail = f"pod {name_of(pod)} container {container}: {reason}"
            if waiting.get("message"):
                detail += f" ({waiting['message']})"
            if last:
                detail += f"; last terminated {last.get('reason', 'unknown')} exit code {last.get('exitCode')}"
            findings.append((reason, detail))
        if "OOMKilled" in (last.get("reason"), current.get("reason")):
            findings.append(
                (
                    "Container OOMKilled",
                    f"pod {name_of(pod)} container {container} was killed for exceeding its memory limit",
                )
            )
    return findings


async def crashloop_debug(request: ToolRequest) -> dict[str, Any]:
    """Find crash-looping and image-pull-failing pods."""
    namespace = request.namespace
    pod_name = request.str_arg("pod")
    collector = request.context.collector
    analysis = request.begin_analysis()

    failing = 0
    for pod in await _pods_in_scope(request, analysis, namespace, pod_name):
        findings = crash_findings(pod)
        if not findings:
            continue
        failing += 1
        name = name_of(pod)
        analysis.add_resource(resource_ref("pods", namespace, name))
        for title, detail in findings:
            analysis.add_cause(title, detail, Severity.HIGH)
        analysis.add_evidence(f"pod {name}", pod_status_summary(pod))
        try:
            chain = await collector.owner_chain(pod, namespace)
            if chain:
                analysis.add_evidence(f"owners {name}", chain)
            events = await collector.events_for_object(namespace, uid_of(pod))
            if events:
                analysis.add_evidence(f"events pod {name}", events)
        except KubeDiagError as exc:
            analysis.add_evidence(f"pod {name} error", exc.message)

    if not failing:
        analysis.add_evidence("status", "no crash loop pods found")
    analysis.add_next_check("Inspect previous container logs with kubectl logs --previous")
    return request.render()


# ---------------------------------------------------------------------------
# Scheduling
# ---------------------------------------------------------------------------


def exhausted_quota_resources(quota: dict[str, Any]) -> list[str]:
    """Resources whose usage has reached the quota's hard limit."""
    hard = get_map(quota, "status", "hard") or get_map(quota, "spec", "hard")
    used = get_map(quota, "status", "used")
    exhausted: list[str] = []
    for resource, limit in sorted(hard.items()):
        if resource not in used:
            continue
        try:
            if parse_quantity(used[resource]) >= parse_quantity(limit):
                exhausted.append(resource)
        except ValueError:
            continue
    return exhausted


def _is_scheduling_event(event: dict[str, Any]) -> bool:
    reason = event.get("reason", "")
    return reason in SCHEDULING_EVENT_REASONS or "quota" in (event.get("message") or "").lower()


async def scheduling_debug(request: ToolRequest) -> dict[str, Any]:
    """Explain why pods stay Pending."""
    namespace = request.namespace
    pod_name = request.str_arg("pod")
    client = request.context.client
    analysis = request.begin_analysis()

    try:
        for quota in sorted(await client.list("resourcequotas", namespace), key=name_of):
            quota_name = name_of(quota)
            analysis.add_evidence(
                f"resourcequota {quota_name}",
                {"hard": get_map(quota, "status", "hard"), "used": get_map(quota, "status", "used")},
            )
            exhausted = exhausted_quota_resources(quota)
            if exhausted:
                analysis.add_cause(
                    "ResourceQuota exhausted",
                    f"ResourceQuota {quota_name} is at its limit for {', '.join(exhausted)}",
                    Severity.HIGH,
                )
        limit_ranges = await client.list("limitranges", namespace)
        if limit_ranges:
            analysis.add_evidence(
                "limitRanges",
                {name_of(lr): get_list(lr, "spec", "limits") for lr in sorted(limit_ranges, key=name_of)},
            )
    except KubeDiagError as exc:
        analysis.add_evidence("quota error", exc.message)

    pending: list[dict[str, Any]] = []
    for pod in await _pods_in_scope(request, analysis, namespace, pod_name):
        if get_str(pod, "status", "phase") != "Pending":
            continue
        pending.append(pod)
        name = name_of(pod)
        analysis.add_resource(resource_ref("pods", namespace, name))
        scheduled = find_condition(pod, "PodScheduled")
        if scheduled and scheduled.get("status") == "False":
            analysis.add_cause(
                "Unschedulable pod",
                f"pod {name}: {scheduled.get('reason', '')} {scheduled.get('message', '')}".strip(),
                Severity.HIGH,
            )
        analysis.add_evidence(
            f"pod {name}",
            {
                "priorityClassName": get_str(pod, "spec", "priorityClassName"),
                "nodeSelector": get_map(pod, "spec", "nodeSelector"),
                "tolerations": get_list(pod, "spec", "tolerations"),
                "scheduledCondition": scheduled,
            },
        )

    try:
        events = [summarize_event(e) for e in await client.list("events", namespace) if _is_scheduling_event(e)]
        if events:
            analysis.add_evidence("schedulingEvents", sorted(events, key=lambda e: e["lastTimestamp"]))
    except KubeDiagError as exc:
        analysis.add_evidence("events error", exc.message)

    wanted = sorted({get_str(pod, "spec", "priorityClassName") for pod in pending} - {""})
    if wanted and cluster_gated(request, analysis, "priorityClasses"):
        classes = {name_of(pc): pc for pc in await client.list("priorityclasses")}
        analysis.add_evidence(
            "priorityClasses",
            {
                name: (
                    {"value": classes[name].get("value"), "preemptionPolicy": classes[name].get("preemptionPolicy", "")}
                    if name in classes
                    else "not found"
                )
                for name in wanted
            },
        )

    if not pending:
        analysis.add_evidence("status", "no pending pods found")
    analysis.add_next_check("Compare pod requests with node allocatable and taints")
    return request.render()


# ---------------------------------------------------------------------------
# HorizontalPodAutoscaler
# ---------------------------------------------------------------------------


async def _check_hpa(request: ToolRequest, analysis: Analysis, namespace: str, hpa: dict[str, Any]) -> None:
    name = name_of(hpa)
    analysis.add_resource(resource_ref("horizontalpodautoscalers", namespace, name))
    target = get_map(hpa, "spec", "scaleTargetRef")
    conditions = get_list(hpa, "status", "conditions")
    analysis.add_evidence(
        f"hpa {name}",
        {
            "scaleTargetRef": target,
            "minReplicas": get_map(hpa, "spec").get("minReplicas", 1),
            "maxReplicas": get_map(hpa, "spec").get("maxReplicas"),
            "currentReplicas": get_map(hpa, "status").get("currentReplicas"),
            "desiredReplicas": get_map(hpa, "status").get("desiredReplicas"),
            "metrics": get_list(hpa, "spec", "metrics"),
            "currentMetrics": get_list(hpa, "status", "currentMetrics"),
            "conditions": conditions,
        },
    )
    for condition in conditions:
        if condition.get("status") == "False":
            analysis.add_cause(
                "HPA condition false",
                f"hpa {name} {condition.get('type', '')}: {condition.get('reason', '')} {condition.get('message', '')}".strip(),
                Severity.MEDIUM,
            )

    identity = builtin_identity(target.get("kind", ""))
    target_name = target.get("name", "")
    if identity is None or not target_name:
        analysis.add_evidence(f"hpa {name} target", f"unsupported scaleTargetRef kind {target.get('kind', '')!r}")
        return
    try:
        await request.context.client.get(identity.resource, target_name, namespace)
    except NotFoundError:
        analysis.add_cause(
            "HPA target missing",
            f"hpa {name} scales {identity.kind}/{target_name}, which does not exist",
            Severity.HIGH,
        )
        return
    analysis.add_resource(resource_ref(identity.resource, namespace, target_name))


async def hpa_debug(request: ToolRequest) -> dict[str, Any]:
    namespace = request.namespace
    hpa_name = request.str_arg("name")
    client = request.context.client
    analysis = request.begin_analysis()

    if hpa_name:
        try:
            hpas = [await client.get("horizontalpodautoscalers", hpa_name, namespace)]
        except NotFoundError:
            analysis.add_evidence("hpa", f"hpa not found: {hpa_name}")
            hpas = []
    else:
        hpas = sorted(await client.list("horizontalpodautoscalers", namespace), key=name_of)

    for hpa in hpas:
        try:
            await _check_hpa(request, analysis, namespace, hpa)
        except KubeDiagError as exc:
            analysis.add_evidence(f"hpa {name_of(hpa)} error", exc.message)

    if not hpas:
        analysis.add_evidence("status", "no hpas found")
    analysis.add_next_check("Verify metrics-server and the metrics the HPA scales on")
    _logger.debug("hpa_debug", namespace=namespace, hpas=len(hpas), causes=len(analysis.causes))
    return request.render()
