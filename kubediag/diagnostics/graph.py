"""The raw relationship-graph capability."""

from __future__ import annotations

from typing import Any

from kubediag.diagnostics.base import graph_for
from kubediag.tools.context import ToolRequest


async def graph_tool(request: ToolRequest) -> dict[str, Any]:
    """Return the graph around ``kind/name`` with its build warnings."""
    kind = request.str_arg("kind", required=True)
    name = request.str_arg("name", required=True)
    include_mesh = request.bool_arg("include_mesh")
    graph, warnings, cached = await graph_for(request, kind, name, include_mesh)
    return {
        "graph": request.context.renderer.render_value(graph.to_dict()),
        "warnings": list(warnings),
        "cached": cached,
    }
