"""The ``k8s`` toolset: every diagnostic capability and its safety class."""

from __future__ import annotations

from kubediag.diagnostics.config_debug import config_debug
from kubediag.diagnostics.diagnose import diagnose
from kubediag.diagnostics.flow import debug_flow
from kubediag.diagnostics.graph import graph_tool
from kubediag.diagnostics.mutate import delete_object
from kubediag.diagnostics.network import mesh_debug, network_debug
from kubediag.diagnostics.permission import permission_debug
from kubediag.diagnostics.storage import storage_debug
from kubediag.diagnostics.vpa import vpa_debug
from kubediag.diagnostics.workloads import crashloop_debug, hpa_debug, scheduling_debug
from kubediag.tools.registry import Safety, ToolRegistry, ToolSpec

TOOLSET = "k8s"

K8S_TOOLS: tuple[ToolSpec, ...] = (
    ToolSpec(
        "k8s.graph",
        "Relationship graph around a service, workload, pod, ingress or network policy",
        TOOLSET,
        Safety.READ_ONLY,
        graph_tool,
    ),
    ToolSpec(
        "k8s.diagnose",
        "Summarize pods matching a keyword and name obvious failures",
        TOOLSET,
        Safety.READ_ONLY,
        diagnose,
    ),
    ToolSpec(
        "k8s.debug_flow",
        "Build the graph and run the diagnostics matching a symptom scenario",
        TOOLSET,
        Safety.READ_ONLY,
        debug_flow,
    ),
    ToolSpec(
        "k8s.config_debug",
        "Missing ConfigMaps, Secrets and keys referenced by a pod",
        TOOLSET,
        Safety.READ_ONLY,
        config_debug,
    ),
    ToolSpec("k8s.crashloop_debug", "Crash-looping and image-pull-failing pods", TOOLSET, Safety.READ_ONLY, crashloop_debug),
    ToolSpec("k8s.scheduling_debug", "Pending pods, quotas and priority", TOOLSET, Safety.READ_ONLY, scheduling_debug),
    ToolSpec("k8s.hpa_debug", "HorizontalPodAutoscaler conditions and targets", TOOLSET, Safety.READ_ONLY, hpa_debug),
    ToolSpec("k8s.vpa_debug", "VerticalPodAutoscaler recommendations and fit", TOOLSET, Safety.READ_ONLY, vpa_debug),
    ToolSpec("k8s.storage_debug", "PVC binding, PV and volume attachment problems", TOOLSET, Safety.READ_ONLY, storage_debug),
    ToolSpec(
        "k8s.permission_debug",
        "ServiceAccount RBAC bindings and IRSA trust",
        TOOLSET,
        Safety.READ_ONLY,
        permission_debug,
    ),
    ToolSpec("k8s.network_debug", "Service endpoints and blocking network policies", TOOLSET, Safety.READ_ONLY, network_debug),
    ToolSpec("k8s.mesh_debug", "Mesh routing objects and sidecar injection", TOOLSET, Safety.READ_ONLY, mesh_debug),
    ToolSpec("k8s.delete", "Delete one object by kind, namespace and name", TOOLSET, Safety.DESTRUCTIVE, delete_object),
)


def register_k8s_tools(registry: ToolRegistry) -> list[str]:
    """Add the k8s toolset; returns the names the safety config admitted."""
    return [spec.name for spec in K8S_TOOLS if registry.add(spec)]
