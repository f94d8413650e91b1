"""Prometheus metrics for kubediag.

All metrics live in the default registry and are exposed by the REST API
on ``/metrics``.
"""

from __future__ import annotations

from prometheus_client import Counter, Histogram

graph_builds_total = Counter(
    "kubediag_graph_builds_total",
    "Relationship graphs built, by root kind.",
    ["root_kind"],
)

graph_cache_lookups_total = Counter(
    "kubediag_graph_cache_lookups_total",
    "Graph cache lookups, by result (hit, miss, bypass).",
    ["result"],
)

graph_warnings_total = Counter(
    "kubediag_graph_warnings_total",
    "Non-fatal warnings recorded while building graphs.",
)

tool_invocations_total = Counter(
    "kubediag_tool_invocations_total",
    "Tool invocations, by tool and outcome.",
    ["tool", "outcome"],
)

tool_duration_seconds = Histogram(
    "kubediag_tool_duration_seconds",
    "Wall-clock duration of tool invocations.",
    ["tool"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
)

causes_total = Counter(
    "kubediag_causes_total",
    "Likely root causes emitted, by severity.",
    ["severity"],
)
