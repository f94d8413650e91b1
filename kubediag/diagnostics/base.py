"""Helpers shared by the diagnostic handlers."""

from __future__ import annotations

from typing import Any

from kubediag.cache.graph_cache import graph_cache_key
from kubediag.graph.models import Graph
from kubediag.models.analysis import Analysis
from kubediag.tools.context import ToolRequest

NEEDS_CLUSTER_ROLE = "requires cluster role"


async def graph_for(request: ToolRequest, kind: str, name: str, include_mesh: bool = False) -> tuple[Graph, list[str], bool]:
    """Build (or reuse) the graph around ``kind/name`` in the request namespace."""
    ctx = request.context
    namespace = request.namespace
    cluster_scope = request.cluster_access
    key = graph_cache_key(kind, namespace, name, include_mesh, cluster_scope)

    async def build() -> tuple[Graph, list[str]]:
        return await ctx.builder.build(
            kind,
            namespace,
            name,
            include_mesh,
            cluster_scope=cluster_scope,
            graph=request.begin_graph(),
        )

    return await ctx.graph_cache.get_or_build(key, ctx.config.cache.graph_ttl_seconds, build)


def record_warnings(analysis: Analysis, warnings: list[str], label: str = "graphWarnings") -> None:
    if warnings:
        analysis.add_evidence(label, list(warnings))


def cluster_gated(request: ToolRequest, analysis: Analysis, label: str) -> bool:
    """True when the caller has cluster scope; otherwise record the gate."""
    if request.cluster_access:
        return True
    analysis.add_evidence(label, NEEDS_CLUSTER_ROLE)
    return False


def sorted_names(objects: list[dict[str, Any]]) -> list[str]:
    return sorted((obj.get("metadata") or {}).get("name", "") for obj in objects)
