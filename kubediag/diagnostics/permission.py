"""ServiceAccount, RBAC and IRSA diagnostics for a workload identity.

The service account comes from the pod when one is named, otherwise from
the ``service_account`` argument, otherwise ``default``.  Cluster-scoped
RBAC objects are only read for callers holding the cluster role.

When the account carries an IRSA role annotation the handler asks the
``aws.iam.get_role`` capability (if registered) for the role's trust
policy and checks that it names this service account.
"""

from __future__ import annotations

import json
import re
from typing import Any
from urllib.parse import unquote

from kubediag.diagnostics.base import NEEDS_CLUSTER_ROLE, cluster_gated
from kubediag.errors import KubeDiagError, NotFoundError, ToolNotFoundError
from kubediag.evidence.collector import resource_ref
from kubediag.kube.objects import annotations_of, get_list, get_map, get_str, lookup, name_of
from kubediag.models.analysis import Analysis, Severity
from kubediag.observability.logging import get_logger
from kubediag.tools.context import ToolRequest

_logger = get_logger("diagnostics.permission")

IRSA_ANNOTATION = "eks.amazonaws.com/role-arn"
IAM_ROLE_TOOL = "aws.iam.get_role"

_ROLE_ARN = re.compile(r"^arn:aws[a-zA-Z-]*:iam::\d{12}:role/[\w+=,.@/-]+$")


def is_valid_role_arn(arn: str) -> bool:
    return bool(_ROLE_ARN.match(arn))


def binds_service_account(binding: dict[str, Any], namespace: str, service_account: str) -> bool:
    """True if ``binding`` has the service account among its subjects."""
    for subject in get_list(binding, "subjects"):
        if subject.get("kind") != "ServiceAccount" or subject.get("name") != service_account:
            continue
        if (subject.get("namespace") or namespace) == namespace:
            return True
    return False


def trust_policy_text(role: dict[str, Any]) -> str:
    """The role's trust policy as text, URL-decoded when needed."""
    document = role.get("trustPolicy")
    if document is None:
        document = role.get("AssumeRolePolicyDocument", "")
    if isinstance(document, str):
        return unquote(document)
    return json.dumps(document, sort_keys=True)


class _PermissionRun:
    def __init__(self, request: ToolRequest, analysis: Analysis, namespace: str, service_account: str) -> None:
        self.request = request
        self.client = request.context.client
        self.analysis = analysis
        self.namespace = namespace
        self.service_account = service_account
        self.role_warnings: list[str] = []

    async def service_account_object(self) -> dict[str, Any] | None:
        try:
            sa = await self.client.get("serviceaccounts", self.service_account, self.namespace)
        except NotFoundError:
            self.analysis.add_cause(
                "ServiceAccount missing",
                f"ServiceAccount {self.namespace}/{self.service_account} does not exist",
                Severity.HIGH,
            )
            return None
        self.analysis.add_resource(resource_ref("serviceaccounts", self.namespace, self.service_account))
        automount, found = lookup(sa, "automountServiceAccountToken")
        self.analysis.add_evidence(
            f"serviceaccount {self.service_account}",
            {
                "automountServiceAccountToken": automount if found else None,
                "annotations": annotations_of(sa),
                "imagePullSecrets": [s.get("name", "") for s in get_list(sa, "imagePullSecrets")],
            },
        )
        return sa

    async def _role_rules(self, kind: str, name: str) -> list[Any] | None:
        if kind == "ClusterRole":
            if not self.request.cluster_access:
                self.analysis.add_evidence(f"clusterrole {name}", NEEDS_CLUSTER_ROLE)
                return None
            resource, namespace = "clusterroles", ""
        else:
            resource, namespace = "roles", self.namespace
        try:
            role = await self.client.get(resource, name, namespace)
        except NotFoundError:
            self.role_warnings.append(f"{kind.lower()} not found: {name}")
            return None
        self.analysis.add_resource(resource_ref(resource, namespace, name))
        return get_list(role, "rules")

    async def role_bindings(self) -> None:
        bindings = [
            rb
            for rb in await self.client.list("rolebindings", self.namespace)
            if binds_service_account(rb, self.namespace, self.service_account)
        ]
        if not bindings:
            self.analysis.add_cause(
                "No RoleBindings found",
                f"No RoleBinding in {self.namespace} grants anything to ServiceAccount {self.service_account}",
                Severity.HIGH,
            )
            return
        for rb in sorted(bindings, key=name_of):
            await self._record_binding("rolebinding", rb)

    async def cluster_role_bindings(self) -> None:
        if not cluster_gated(self.request, self.analysis, "clusterRoleBindings"):
            return
        bindings = [
            crb
            for crb in await self.client.list("clusterrolebindings")
            if binds_service_account(crb, self.namespace, self.service_account)
        ]
        if not bindings:
            self.analysis.add_evidence("clusterRoleBindings", [])
        for crb in sorted(bindings, key=name_of):
            await self._record_binding("clusterrolebinding", crb)

    async def _record_binding(self, label: str, binding: dict[str, Any]) -> None:
        name = name_of(binding)
        role_kind = get_str(binding, "roleRef", "kind")
        role_name = get_str(binding, "roleRef", "name")
        resource = "rolebindings" if label == "rolebinding" else "clusterrolebindings"
        self.analysis.add_resource(resource_ref(resource, self.namespace if label == "rolebinding" else "", name))
        entry: dict[str, Any] = {"roleRef": get_map(binding, "roleRef")}
        rules = await self._role_rules(role_kind, role_name)
        if rules is not None:
            entry["rules"] = rules
        self.analysis.add_evidence(f"{label} {name}", entry)

    async def irsa(self, sa: dict[str, Any]) -> None:
        arn = annotations_of(sa).get(IRSA_ANNOTATION, "")
        if not arn:
            return
        if not is_valid_role_arn(arn):
            self.analysis.add_cause(
                "Invalid IAM role ARN",
                f"ServiceAccount {self.service_account} annotation {IRSA_ANNOTATION} is not a role ARN: {arn}",
                Severity.HIGH,
            )
            return
        try:
            role = await self.request.call_tool(IAM_ROLE_TOOL, {"role_arn": arn, "namespace": self.namespace})
        except ToolNotFoundError:
            self.analysis.add_evidence("iamRole", "capability unavailable")
            return
        except KubeDiagError as exc:
            self.analysis.add_cause("IAM role lookup failed", f"{arn}: {exc.message}", Severity.MEDIUM)
            return
        self.analysis.add_evidence("iamRole", role)
        subject = f"system:serviceaccount:{self.namespace}:{self.service_account}"
        if subject not in trust_policy_text(role):
            self.analysis.add_cause(
                "IAM trust policy mismatch",
                f"Trust policy of {arn} does not allow {subject}",
                Severity.HIGH,
            )


async def permission_debug(request: ToolRequest) -> dict[str, Any]:
    """Diagnose why a workload identity lacks permissions."""
    namespace = request.namespace
    pod_name = request.str_arg("pod")
    service_account = request.str_arg("service_account")
    analysis = request.begin_analysis()

    pod: dict[str, Any] | None = None
    if pod_name:
        try:
            pod = await request.context.client.get("pods", pod_name, namespace)
        except NotFoundError:
            analysis.add_evidence("pod", f"pod {pod_name} not found")
        else:
            analysis.add_resource(resource_ref("pods", namespace, pod_name))
            service_account = get_str(pod, "spec", "serviceAccountName") or service_account
    service_account = service_account or "default"
    analysis.add_evidence("serviceAccount", service_account)

    run = _PermissionRun(request, analysis, namespace, service_account)
    sa = await run.service_account_object()

    sa_automount, sa_set = lookup(sa, "automountServiceAccountToken") if sa else (None, False)
    pod_automount, pod_set = lookup(pod, "spec", "automountServiceAccountToken") if pod else (None, False)
    # the pod field overrides the service account field
    disabled = pod_automount is False if pod_set else (sa_set and sa_automount is False)
    if disabled:
        analysis.add_cause(
            "ServiceAccount token disabled",
            f"automountServiceAccountToken is false for {service_account}; the API token is not mounted",
            Severity.MEDIUM,
        )

    for step in (run.role_bindings, run.cluster_role_bindings):
        try:
            await step()
        except KubeDiagError as exc:
            analysis.add_evidence(f"{step.__name__} error", exc.message)
    if run.role_warnings:
        analysis.add_evidence("roleWarnings", run.role_warnings)
    if sa is not None:
        await run.irsa(sa)

    if not analysis.has_causes:
        analysis.add_evidence("status", "no explicit RBAC errors found")
    analysis.add_next_check("Run kubectl auth can-i --as=system:serviceaccount:<ns>:<sa> for the failing verb")
    _logger.info("permission_debug", namespace=namespace, service_account=service_account, causes=len(analysis.causes))
    return request.render()
