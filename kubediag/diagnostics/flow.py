"""Guided debugging flows.

A flow builds the graph around the object the operator named, then runs
the diagnostic capabilities that fit the reported symptom as nested
invocations.  Each step goes through the invoker, so the caller's
namespace scope and the deadline apply to it as well.  Step results are
merged into one analysis with the step name in front of every evidence
label.
"""

from __future__ import annotations

from typing import Any

from kubediag.diagnostics.base import graph_for, record_warnings
from kubediag.errors import KubeDiagError, NotFoundError, RequestAborted, ValidationError
from kubediag.kube.resolver import builtin_identity
from kubediag.models.analysis import Analysis
from kubediag.observability.logging import get_logger
from kubediag.tools.context import ToolRequest

_logger = get_logger("diagnostics.flow")

# scenario -> ordered (step, tool) pairs
SCENARIOS: dict[str, tuple[tuple[str, str], ...]] = {
    "traffic": (("network", "k8s.network_debug"),),
    "networkpolicy": (("network", "k8s.network_debug"),),
    "mesh": (("mesh", "k8s.mesh_debug"), ("network", "k8s.network_debug")),
    "pending": (("scheduling", "k8s.scheduling_debug"),),
    "crashloop": (("crashloop", "k8s.crashloop_debug"),),
    "autoscaling": (("hpa", "k8s.hpa_debug"), ("vpa", "k8s.vpa_debug")),
    "storage": (("storage", "k8s.storage_debug"),),
    "permission": (("permission", "k8s.permission_debug"),),
}

_SERVICE_TOOLS = frozenset({"k8s.network_debug", "k8s.mesh_debug"})
_POD_TOOLS = frozenset({"k8s.crashloop_debug", "k8s.scheduling_debug", "k8s.storage_debug", "k8s.permission_debug"})


def is_kind(kind: str, expected: str) -> bool:
    """True when ``kind`` is ``expected`` or one of its aliases."""
    identity = builtin_identity(kind)
    return identity is not None and identity.kind == expected


def merge_rendered(analysis: Analysis, step: str, result: dict[str, Any]) -> None:
    """Fold a rendered analysis from a nested call into ``analysis``."""
    for cause in result.get("likelyRootCauses", []):
        analysis.add_cause(cause["summary"], cause["details"], cause["severity"])
    for entry in result.get("evidence", []):
        analysis.add_evidence(f"{step}: {entry['summary']}", entry.get("details"))
    for check in result.get("recommendedNextChecks", []):
        if check not in analysis.next_checks:
            analysis.add_next_check(check)
    for ref in result.get("resourcesExamined", []):
        analysis.add_resource(ref)


def step_arguments(tool: str, namespace: str, root_kind: str, root_name: str, services: list[str]) -> list[dict[str, Any]]:
    """Argument sets for one step; service tools run once per service."""
    base: dict[str, Any] = {"namespace": namespace}
    if tool in _SERVICE_TOOLS:
        return [{**base, "service": svc} for svc in services]
    if tool in _POD_TOOLS and is_kind(root_kind, "Pod"):
        return [{**base, "pod": root_name}]
    return [base]


async def debug_flow(request: ToolRequest) -> dict[str, Any]:
    namespace = request.namespace
    kind = request.str_arg("kind", required=True).lower()
    name = request.str_arg("name", required=True)
    scenario = request.str_arg("scenario", required=True).lower()
    steps = SCENARIOS.get(scenario)
    if steps is None:
        raise ValidationError(f"unknown scenario {scenario!r}; expected one of {', '.join(sorted(SCENARIOS))}")
    analysis = request.begin_analysis()

    try:
        graph, warnings, cached = await graph_for(request, kind, name, include_mesh=scenario == "mesh")
    except NotFoundError as exc:
        analysis.add_evidence("graph", exc.message)
        analysis.add_next_check("Check the object name, kind and namespace")
        return request.render()
    analysis.add_evidence("graph", {"nodes": len(graph), "edges": len(graph.edges), "cached": cached})
    record_warnings(analysis, warnings)

    services = sorted(node.name for node in graph.nodes_of_kind("Service"))
    if is_kind(kind, "Service"):
        services = [name]
    ran: list[str] = []
    for step, tool in steps:
        arg_sets = step_arguments(tool, namespace, kind, name, services)
        if not arg_sets:
            analysis.add_evidence(f"{step}: skipped", f"no services related to {kind}/{name}")
            continue
        for args in arg_sets:
            try:
                result = await request.call_tool(tool, args)
            except KubeDiagError as exc:
                # keep what an aborted step gathered before its deadline
                if isinstance(exc, RequestAborted) and exc.partial.get("analysis"):
                    merge_rendered(analysis, step, exc.partial["analysis"])
                analysis.add_evidence(f"{step}: error", {"code": exc.code, "message": exc.message})
                continue
            ran.append(tool)
            merge_rendered(analysis, step, result)

    analysis.add_evidence("steps", ran)
    _logger.info("debug_flow", namespace=namespace, scenario=scenario, steps=len(ran), causes=len(analysis.causes))
    return request.render()
