"""Tests for the kubediag REST API.

Exercises the three routes through ``TestClient`` against a real
ToolInvoker wired to the in-memory cluster, plus a hypothesis fuzz of the
tool-call body that checks no malformed input produces a 500.
"""

from __future__ import annotations

import asyncio
from typing import Any
from unittest.mock import AsyncMock

from fastapi.testclient import TestClient
from hypothesis import given, settings
from hypothesis import strategies as st

from kubediag import __version__
from kubediag.api.app import create_app
from kubediag.models.config import SafetyConfig
from kubediag.policy import Authorizer, User
from kubediag.tools.context import ToolRequest
from kubediag.tools.invoker import ToolInvoker
from kubediag.tools.registry import Safety, ToolSpec
from tests.fakes import FakeCluster, make_invoker, make_pod, service_scenario

# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


def _make_client(invoker: ToolInvoker, api_keys: dict[str, User] | None = None, **kwargs: Any) -> TestClient:
    return TestClient(create_app(invoker=invoker, policy=Authorizer(api_keys)), **kwargs)


def _call(client: TestClient, tool: str, arguments: dict[str, Any], **kwargs: Any) -> Any:
    return client.post(f"/api/v1/tools/{tool}", json={"arguments": arguments}, **kwargs)


# ---------------------------------------------------------------------------
# Health and listing
# ---------------------------------------------------------------------------


class TestHealthAndTools:
    def test_health(self, invoker: ToolInvoker) -> None:
        response = _make_client(invoker).get("/api/v1/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "version": __version__, "tools": len(invoker.registry)}

    def test_tools_sorted_with_safety(self, cluster: FakeCluster) -> None:
        invoker = make_invoker(cluster, safety=SafetyConfig(disable_destructive=False))
        tools = _make_client(invoker).get("/api/v1/tools").json()["tools"]
        names = [tool["name"] for tool in tools]
        assert names == sorted(names)
        delete = next(tool for tool in tools if tool["name"] == "k8s.delete")
        assert delete["safety"] == "destructive"

    def test_metrics_mounted(self, invoker: ToolInvoker) -> None:
        response = _make_client(invoker).get("/metrics/")
        assert response.status_code == 200
        assert "kubediag_" in response.text


# ---------------------------------------------------------------------------
# Tool calls
# ---------------------------------------------------------------------------


class TestToolCalls:
    def test_analysis_result(self, cluster: FakeCluster, invoker: ToolInvoker) -> None:
        service_scenario(cluster)
        response = _call(_make_client(invoker), "k8s.network_debug", {"namespace": "default", "service": "api"})
        assert response.status_code == 200
        body = response.json()
        assert body["likelyRootCauses"] == []
        assert "generatedAt" in body

    def test_unknown_tool_is_404(self, invoker: ToolInvoker) -> None:
        response = _call(_make_client(invoker), "k8s.nope", {})
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "not_found"

    def test_missing_argument_is_400(self, invoker: ToolInvoker) -> None:
        response = _call(_make_client(invoker), "k8s.network_debug", {"namespace": "default"})
        assert response.status_code == 400
        assert response.json()["error"] == {
            "code": "invalid_request",
            "message": "service is required",
            "hint": "Check required arguments and their formats.",
            "retryable": False,
        }

    def test_confirmation_required_is_428(self, cluster: FakeCluster) -> None:
        cluster.add("pods", make_pod("api-1"))
        invoker = make_invoker(cluster, safety=SafetyConfig(disable_destructive=False))
        client = _make_client(invoker)
        args = {"namespace": "default", "kind": "pod", "name": "api-1"}

        response = _call(client, "k8s.delete", args)
        assert response.status_code == 428
        assert cluster.deleted == []

        response = client.post("/api/v1/tools/k8s.delete", json={"arguments": args, "confirm": True})
        assert response.status_code == 200
        assert cluster.deleted == [("pods", "default", "api-1")]

    def test_malformed_body_is_400(self, invoker: ToolInvoker) -> None:
        response = _make_client(invoker).post("/api/v1/tools/k8s.graph", json={"arguments": "nope"})
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "invalid_request"

    def test_timeout_returns_partial_details(self, cluster: FakeCluster) -> None:
        invoker = make_invoker(cluster, timeout=0.05)

        async def slow(request: ToolRequest) -> dict[str, Any]:
            request.begin_analysis().add_evidence("started", True)
            await asyncio.sleep(5)
            return {}

        invoker.registry.add(ToolSpec("test.slow", "slow", "test", Safety.READ_ONLY, slow))
        response = _call(_make_client(invoker), "test.slow", {"namespace": "default"})
        assert response.status_code == 504
        body = response.json()
        assert body["error"]["retryable"] is True
        assert body["details"]["analysis"]["evidence"] == [{"summary": "started", "details": True}]

    def test_unexpected_error_is_500_without_trace(self, invoker: ToolInvoker) -> None:
        invoker.registry.add(
            ToolSpec("test.boom", "boom", "test", Safety.READ_ONLY, AsyncMock(side_effect=RuntimeError("secret detail")))
        )
        client = _make_client(invoker, raise_server_exceptions=False)
        response = _call(client, "test.boom", {"namespace": "default"})
        assert response.status_code == 500
        assert response.json()["error"]["message"] == "an unexpected error occurred"


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


class TestApiKeys:
    def _client(self, invoker: ToolInvoker) -> TestClient:
        keys = {"admin-key": User.cluster_admin("admin"), "dev-key": User.namespaced("dev", ["default"])}
        return _make_client(invoker, keys)

    def test_missing_key_is_403(self, invoker: ToolInvoker) -> None:
        response = _call(self._client(invoker), "k8s.crashloop_debug", {"namespace": "default"})
        assert response.status_code == 403

    def test_namespace_key_outside_scope(self, invoker: ToolInvoker) -> None:
        response = _call(
            self._client(invoker), "k8s.crashloop_debug", {"namespace": "prod"}, headers={"X-API-Key": "dev-key"}
        )
        assert response.status_code == 403
        assert response.json()["error"]["message"] == "namespace not allowed: prod"

    def test_namespace_key_inside_scope(self, invoker: ToolInvoker) -> None:
        response = _call(
            self._client(invoker), "k8s.crashloop_debug", {"namespace": "default"}, headers={"X-API-Key": "dev-key"}
        )
        assert response.status_code == 200


# ---------------------------------------------------------------------------
# Fuzz
# ---------------------------------------------------------------------------

_json_values = st.recursive(
    st.none() | st.booleans() | st.integers() | st.text(max_size=20),
    lambda children: st.lists(children, max_size=3) | st.dictionaries(st.text(max_size=8), children, max_size=3),
    max_leaves=10,
)


class TestFuzz:
    @settings(max_examples=50, deadline=None)
    @given(arguments=st.dictionaries(st.sampled_from(["namespace", "kind", "name", "include_mesh"]), _json_values))
    def test_graph_never_500s(self, arguments: dict[str, Any]) -> None:
        cluster = FakeCluster()
        service_scenario(cluster)
        client = _make_client(make_invoker(cluster))
        response = _call(client, "k8s.graph", arguments)
        assert response.status_code != 500
        assert response.headers["content-type"] == "application/json"
        if response.status_code != 200:
            assert set(response.json()) >= {"error"}
