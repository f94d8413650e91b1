"""Integration tests: degraded API discovery through the full tool path.

An API group that fails discovery must never fail a request that does not
need it.  These tests drive the invoker (and once the REST layer) against a
cluster where one aggregated group is unreachable and check that the
failure surfaces only as a warning in the evidence.
"""

from __future__ import annotations

from typing import Any

import pytest
from fastapi.testclient import TestClient

from kubediag.api.app import create_app
from kubediag.kube.resolver import ResourceIdentity
from kubediag.policy import Authorizer
from kubediag.tools.invoker import ToolInvoker
from tests.fakes import CLUSTER_USER, FakeCluster, make_deployment, make_invoker, meta, service_scenario

pytestmark = pytest.mark.integration

VPAS = ResourceIdentity("autoscaling.k8s.io", "v1", "verticalpodautoscalers", "VerticalPodAutoscaler", True)
METRICS_FAILURE = "partial discovery: unreachable api groups: metrics.k8s.io/v1beta1"


def _evidence(result: dict[str, Any], label: str) -> Any:
    matches = [entry["details"] for entry in result["evidence"] if entry["summary"] == label]
    assert matches, f"no evidence labeled {label!r}"
    return matches[0]


def _vpa_cluster(cluster: FakeCluster) -> None:
    cluster.add_api_group("autoscaling.k8s.io/v1", [("verticalpodautoscalers", "VerticalPodAutoscaler", True)])
    cluster.fail_group("metrics.k8s.io/v1beta1")
    cluster.add("deployments", make_deployment("api"))
    cluster.add_custom(
        VPAS,
        {
            "kind": "VerticalPodAutoscaler",
            "metadata": meta("api"),
            "spec": {
                "targetRef": {"apiVersion": "apps/v1", "kind": "Deployment", "name": "api"},
                "updatePolicy": {"updateMode": "Off"},
            },
            "status": {},
        },
    )


# ---------------------------------------------------------------------------
# Unreachable metrics group
# ---------------------------------------------------------------------------


class TestUnreachableMetricsGroup:
    async def test_vpa_analysis_continues(self, cluster: FakeCluster, invoker: ToolInvoker) -> None:
        _vpa_cluster(cluster)
        result = await invoker.call(CLUSTER_USER, "k8s.vpa_debug", {"namespace": "default"})
        assert _evidence(result, "discoveryWarnings") == [METRICS_FAILURE]
        assert "VPA updates disabled" in [cause["summary"] for cause in result["likelyRootCauses"]]
        assert "deployments/default/api" in result["resourcesExamined"]

    def test_rest_call_returns_200(self, cluster: FakeCluster) -> None:
        _vpa_cluster(cluster)
        client = TestClient(create_app(invoker=make_invoker(cluster), policy=Authorizer()))
        response = client.post("/api/v1/tools/k8s.vpa_debug", json={"arguments": {"namespace": "default"}})
        assert response.status_code == 200
        assert _evidence(response.json(), "discoveryWarnings") == [METRICS_FAILURE]

    async def test_discovery_fetched_once_across_tools(self, cluster: FakeCluster, invoker: ToolInvoker) -> None:
        _vpa_cluster(cluster)
        await invoker.call(CLUSTER_USER, "k8s.vpa_debug", {"namespace": "default"})
        await invoker.call(CLUSTER_USER, "k8s.vpa_debug", {"namespace": "default", "name": "api"})
        assert cluster.discovery_calls == 1


# ---------------------------------------------------------------------------
# Unreachable mesh group inside a guided flow
# ---------------------------------------------------------------------------


class TestMeshFlow:
    async def test_failed_mesh_group_is_a_graph_warning(self, cluster: FakeCluster, invoker: ToolInvoker) -> None:
        service_scenario(cluster)
        cluster.fail_group("linkerd.io/v1alpha2")

        result = await invoker.call(
            CLUSTER_USER,
            "k8s.debug_flow",
            {"namespace": "default", "kind": "service", "name": "api", "scenario": "mesh"},
        )

        warnings = _evidence(result, "graphWarnings")
        assert any("linkerd.io/v1alpha2" in warning for warning in warnings)
        assert "linkerd not detected" in warnings
        assert "k8s.network_debug" in _evidence(result, "steps")

    async def test_repeat_flow_reuses_cached_graph(self, cluster: FakeCluster, invoker: ToolInvoker) -> None:
        service_scenario(cluster)
        args = {"namespace": "default", "kind": "deployment", "name": "api", "scenario": "traffic"}

        first = await invoker.call(CLUSTER_USER, "k8s.debug_flow", args)
        second = await invoker.call(CLUSTER_USER, "k8s.debug_flow", args)

        assert _evidence(first, "graph")["cached"] is False
        assert _evidence(second, "graph")["cached"] is True
        assert _evidence(first, "graph")["nodes"] == _evidence(second, "graph")["nodes"]
