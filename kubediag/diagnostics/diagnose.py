"""Keyword triage across pods.

The entry point for an operator who knows a name fragment or a label but
not which diagnostic fits: matching pods are summarized and the two most
common failure shapes (crash loops and unschedulable pods) are named.
"""

from __future__ import annotations

from typing import Any

from kubediag.diagnostics.workloads import crash_findings
from kubediag.errors import KubeDiagError
from kubediag.evidence.collector import pod_status_summary, resource_ref
from kubediag.kube.objects import find_condition, get_str, labels_of, name_of, uid_of
from kubediag.models.analysis import Analysis, Severity
from kubediag.observability.logging import get_logger
from kubediag.tools.context import ToolRequest

_logger = get_logger("diagnostics.diagnose")

MAX_MATCHES = 10


def pod_matches(pod: dict[str, Any], keyword: str) -> bool:
    """True when the pod name, or any label key or value, contains ``keyword``."""
    if keyword in name_of(pod):
        return True
    return any(keyword in key or keyword in value for key, value in labels_of(pod).items())


def _once(analysis: Analysis, check: str) -> None:
    if check not in analysis.next_checks:
        analysis.add_next_check(check)


def unschedulable_message(pod: dict[str, Any]) -> str | None:
    """The scheduler's message for a Pending pod it cannot place, else None."""
    if get_str(pod, "status", "phase") != "Pending":
        return None
    condition = find_condition(pod, "PodScheduled")
    if not condition or condition.get("reason") != "Unschedulable":
        return None
    return condition.get("message") or f"pod {name_of(pod)} is unschedulable"


async def _search_namespaces(request: ToolRequest, namespace: str) -> list[str]:
    if namespace:
        return [namespace]
    # the invoker only lets the cluster role through without a namespace
    listed = await request.context.client.list("namespaces")
    return request.context.policy.filter_namespaces(request.user, [name_of(ns) for ns in listed])


async def diagnose(request: ToolRequest) -> dict[str, Any]:
    """Summarize pods matching ``keyword`` and name obvious failures."""
    keyword = request.str_arg("keyword", required=True)
    namespace = request.str_arg("namespace")
    ctx = request.context
    analysis = request.begin_analysis()

    matches = 0
    for ns in await _search_namespaces(request, namespace):
        if matches >= MAX_MATCHES:
            break
        pods = sorted(await ctx.client.list("pods", ns), key=name_of)
        for pod in pods:
            if not pod_matches(pod, keyword):
                continue
            matches += 1
            name = name_of(pod)
            analysis.add_evidence(f"{ns}/{name}", pod_status_summary(pod))
            analysis.add_resource(resource_ref("pods", ns, name))
            if any(title == "CrashLoopBackOff" for title, _ in crash_findings(pod)):
                analysis.add_cause("CrashLoopBackOff", f"Pod {name} is crash looping", Severity.HIGH)
                _once(analysis, "Review container logs and recent changes")
            message = unschedulable_message(pod)
            if message is not None:
                analysis.add_cause("Unschedulable pod", message, Severity.HIGH)
                _once(analysis, "Check node capacity and taints")
            try:
                events = await ctx.collector.events_for_object(ns, uid_of(pod))
            except KubeDiagError as exc:
                analysis.add_evidence(f"{ns}/{name} error", exc.message)
            else:
                if events:
                    analysis.add_evidence(f"{ns}/{name} events", events)
            if matches >= MAX_MATCHES:
                break

    if not matches:
        analysis.add_evidence("status", "no matching pods found")
        analysis.add_next_check("Verify namespace and keyword")
    _logger.info("diagnose", namespace=namespace or "*", keyword=keyword, matches=matches, causes=len(analysis.causes))
    return request.render()
