"""Tests for k8s.vpa_debug and k8s.permission_debug."""

from __future__ import annotations

import json
from typing import Any

import pytest

from kubediag.diagnostics.permission import binds_service_account, is_valid_role_arn, trust_policy_text
from kubediag.diagnostics.vpa import largest_allocatable, oversized_recommendations
from kubediag.errors import ClusterAPIError
from kubediag.kube.resolver import ResourceIdentity
from kubediag.tools.context import ToolRequest
from kubediag.tools.invoker import ToolInvoker
from kubediag.tools.registry import Safety, ToolSpec
from tests.fakes import CLUSTER_USER, DEV_USER, FakeCluster, make_deployment, make_pod, meta

VPAS = ResourceIdentity("autoscaling.k8s.io", "v1", "verticalpodautoscalers", "VerticalPodAutoscaler", True)
POD_METRICS = ResourceIdentity("metrics.k8s.io", "v1beta1", "pods", "PodMetrics", True)
ROLE_ARN = "arn:aws:iam::123456789012:role/api-reader"


def _causes(result: dict[str, Any]) -> list[str]:
    return [cause["summary"] for cause in result["likelyRootCauses"]]


def _evidence(result: dict[str, Any], label: str) -> Any:
    matches = [entry["details"] for entry in result["evidence"] if entry["summary"] == label]
    assert matches, f"no evidence labeled {label!r}"
    return matches[0]


def _vpa(name: str, target: str, *, mode: str = "Auto", cpu: str | None = "500m") -> dict[str, Any]:
    status: dict[str, Any] = {}
    if cpu is not None:
        status["recommendation"] = {
            "containerRecommendations": [{"containerName": "app", "target": {"cpu": cpu, "memory": "256Mi"}}]
        }
    return {
        "kind": "VerticalPodAutoscaler",
        "metadata": meta(name),
        "spec": {
            "targetRef": {"apiVersion": "apps/v1", "kind": "Deployment", "name": target},
            "updatePolicy": {"updateMode": mode},
        },
        "status": status,
    }


def _node(name: str, cpu: str, memory: str) -> dict[str, Any]:
    return {"kind": "Node", "metadata": meta(name, ""), "status": {"allocatable": {"cpu": cpu, "memory": memory}}}


def _install_vpa(cluster: FakeCluster) -> None:
    cluster.add_api_group("autoscaling.k8s.io/v1", [("verticalpodautoscalers", "VerticalPodAutoscaler", True)])


# ---------------------------------------------------------------------------
# VPA
# ---------------------------------------------------------------------------


class TestVpaHelpers:
    def test_largest_allocatable(self) -> None:
        largest = largest_allocatable([_node("a", "2", "4Gi"), _node("b", "8", "2Gi")])
        assert {k: str(v) for k, v in largest.items()} == {"cpu": "8", "memory": str(4 * 2**30)}

    def test_oversized(self) -> None:
        largest = largest_allocatable([_node("a", "2", "4Gi")])
        assert oversized_recommendations(_vpa("v", "api", cpu="3"), largest) == ["app:cpu"]
        assert oversized_recommendations(_vpa("v", "api", cpu="1"), largest) == []


class TestVpaDebug:
    async def test_not_installed(self, invoker: ToolInvoker) -> None:
        result = await invoker.call(CLUSTER_USER, "k8s.vpa_debug", {"namespace": "default"})
        assert _evidence(result, "vpa") == "vpa not detected"
        assert result["likelyRootCauses"] == []

    async def test_named_vpa_missing(self, cluster: FakeCluster, invoker: ToolInvoker) -> None:
        _install_vpa(cluster)
        result = await invoker.call(CLUSTER_USER, "k8s.vpa_debug", {"namespace": "default", "name": "nope"})
        assert _evidence(result, "vpa") == "vpa not found: nope"

    async def test_recommendation_problems(self, cluster: FakeCluster, invoker: ToolInvoker) -> None:
        _install_vpa(cluster)
        cluster.add_custom(VPAS, _vpa("off", "gone", mode="Off", cpu=None))
        result = await invoker.call(CLUSTER_USER, "k8s.vpa_debug", {"namespace": "default"})
        assert _causes(result) == ["VPA updates disabled", "No VPA recommendation", "VPA target missing"]

    async def test_oversized_recommendation_and_metrics(self, cluster: FakeCluster, invoker: ToolInvoker) -> None:
        _install_vpa(cluster)
        cluster.add_api_group("metrics.k8s.io/v1beta1", [("pods", "PodMetrics", True)])
        cluster.add("deployments", make_deployment("api"))
        cluster.add("pods", make_pod("api-1", labels={"app": "api"}))
        cluster.add_custom(POD_METRICS, {"metadata": meta("api-1"), "containers": [{"name": "app", "usage": {"cpu": "3"}}]})
        cluster.add("nodes", _node("n1", "2", "8Gi"))
        cluster.add_custom(VPAS, _vpa("api", "api", cpu="4"))

        result = await invoker.call(CLUSTER_USER, "k8s.vpa_debug", {"namespace": "default"})

        assert _causes(result) == ["VPA recommendation exceeds node capacity"]
        assert _evidence(result, "pod metrics api")[0]["pod"] == "api-1"
        assert "deployments/default/api" in result["resourcesExamined"]

    async def test_capacity_check_gated(self, cluster: FakeCluster, invoker: ToolInvoker) -> None:
        _install_vpa(cluster)
        cluster.add("deployments", make_deployment("api"))
        cluster.add_custom(VPAS, _vpa("api", "api"))
        result = await invoker.call(DEV_USER, "k8s.vpa_debug", {"namespace": "default"})
        assert _evidence(result, "nodeCapacityCheck") == "requires cluster role"
        assert _evidence(result, "podMetrics") == "metrics.k8s.io not available"


# ---------------------------------------------------------------------------
# Permissions
# ---------------------------------------------------------------------------


def _service_account(name: str = "api", **annotations: str) -> dict[str, Any]:
    return {"kind": "ServiceAccount", "metadata": meta(name, annotations=annotations) if annotations else meta(name)}


def _binding(kind: str, name: str, role_kind: str, role_name: str, sa: str = "api") -> dict[str, Any]:
    namespace = "default" if kind == "RoleBinding" else ""
    return {
        "kind": kind,
        "metadata": meta(name, namespace),
        "roleRef": {"kind": role_kind, "name": role_name},
        "subjects": [{"kind": "ServiceAccount", "name": sa, "namespace": "default"}],
    }


def _register_iam(invoker: ToolInvoker, role: dict[str, Any] | Exception) -> None:
    async def get_role(request: ToolRequest) -> dict[str, Any]:
        if isinstance(role, Exception):
            raise role
        return role

    invoker.registry.add(ToolSpec("aws.iam.get_role", "IAM role lookup", "aws", Safety.READ_ONLY, get_role))


class TestPermissionHelpers:
    @pytest.mark.parametrize(
        ("arn", "valid"),
        [(ROLE_ARN, True), ("arn:aws-cn:iam::123456789012:role/x", True), ("arn:aws:iam::123:role/x", False), ("", False)],
    )
    def test_role_arn(self, arn: str, valid: bool) -> None:
        assert is_valid_role_arn(arn) is valid

    def test_binding_subject_namespace_defaults(self) -> None:
        binding = {"subjects": [{"kind": "ServiceAccount", "name": "api"}]}
        assert binds_service_account(binding, "default", "api")
        assert not binds_service_account(binding, "default", "web")

    def test_trust_policy_text(self) -> None:
        assert trust_policy_text({"AssumeRolePolicyDocument": "%7B%22a%22%3A1%7D"}) == '{"a":1}'
        assert trust_policy_text({"trustPolicy": {"b": 2}}) == '{"b": 2}'


class TestPermissionDebug:
    async def test_missing_account_and_bindings(self, invoker: ToolInvoker) -> None:
        result = await invoker.call(CLUSTER_USER, "k8s.permission_debug", {"namespace": "default", "service_account": "api"})
        assert _causes(result) == ["ServiceAccount missing", "No RoleBindings found"]

    async def test_pod_account_bindings_and_rules(self, cluster: FakeCluster, invoker: ToolInvoker) -> None:
        pod = make_pod("api-1", service_account="api")
        pod["spec"]["automountServiceAccountToken"] = False
        cluster.add("pods", pod)
        cluster.add("serviceaccounts", _service_account())
        cluster.add("rolebindings", _binding("RoleBinding", "api-read", "Role", "reader"))
        cluster.add("roles", {"metadata": meta("reader"), "rules": [{"verbs": ["get"], "resources": ["pods"]}]})
        cluster.add("clusterrolebindings", _binding("ClusterRoleBinding", "api-view", "ClusterRole", "view"))

        result = await invoker.call(CLUSTER_USER, "k8s.permission_debug", {"namespace": "default", "pod": "api-1"})

        assert _causes(result) == ["ServiceAccount token disabled"]
        assert _evidence(result, "serviceAccount") == "api"
        assert _evidence(result, "rolebinding api-read")["rules"] == [{"verbs": ["get"], "resources": ["pods"]}]
        assert _evidence(result, "roleWarnings") == ["clusterrole not found: view"]

    async def test_namespace_user_cannot_read_cluster_rbac(self, cluster: FakeCluster, invoker: ToolInvoker) -> None:
        cluster.add("serviceaccounts", _service_account())
        cluster.add("rolebindings", _binding("RoleBinding", "api-view", "ClusterRole", "view"))
        result = await invoker.call(DEV_USER, "k8s.permission_debug", {"namespace": "default", "service_account": "api"})
        assert _evidence(result, "clusterRoleBindings") == "requires cluster role"
        assert _evidence(result, "clusterrole view") == "requires cluster role"
        assert _evidence(result, "status") == "no explicit RBAC errors found"

    async def test_irsa_capability_unavailable(self, cluster: FakeCluster, invoker: ToolInvoker) -> None:
        cluster.add("serviceaccounts", _service_account(**{"eks.amazonaws.com/role-arn": ROLE_ARN}))
        cluster.add("rolebindings", _binding("RoleBinding", "rb", "Role", "reader"))
        result = await invoker.call(CLUSTER_USER, "k8s.permission_debug", {"namespace": "default", "service_account": "api"})
        assert _evidence(result, "iamRole") == "capability unavailable"

    async def test_irsa_invalid_arn(self, cluster: FakeCluster, invoker: ToolInvoker) -> None:
        cluster.add("serviceaccounts", _service_account(**{"eks.amazonaws.com/role-arn": "not-an-arn"}))
        cluster.add("rolebindings", _binding("RoleBinding", "rb", "Role", "reader"))
        result = await invoker.call(CLUSTER_USER, "k8s.permission_debug", {"namespace": "default", "service_account": "api"})
        assert _causes(result) == ["Invalid IAM role ARN"]

    async def test_irsa_trust_policy(self, cluster: FakeCluster, invoker: ToolInvoker) -> None:
        cluster.add("serviceaccounts", _service_account(**{"eks.amazonaws.com/role-arn": ROLE_ARN}))
        cluster.add("rolebindings", _binding("RoleBinding", "rb", "Role", "reader"))
        policy = {"Statement": [{"Condition": {"StringEquals": {"sub": "system:serviceaccount:other:api"}}}]}
        _register_iam(invoker, {"trustPolicy": json.dumps(policy)})
        result = await invoker.call(CLUSTER_USER, "k8s.permission_debug", {"namespace": "default", "service_account": "api"})
        assert _causes(result) == ["IAM trust policy mismatch"]

    async def test_irsa_lookup_failure(self, cluster: FakeCluster, invoker: ToolInvoker) -> None:
        cluster.add("serviceaccounts", _service_account(**{"eks.amazonaws.com/role-arn": ROLE_ARN}))
        cluster.add("rolebindings", _binding("RoleBinding", "rb", "Role", "reader"))
        _register_iam(invoker, ClusterAPIError(503, "Unavailable", "iam endpoint down"))
        result = await invoker.call(CLUSTER_USER, "k8s.permission_debug", {"namespace": "default", "service_account": "api"})
        assert _causes(result) == ["IAM role lookup failed"]
