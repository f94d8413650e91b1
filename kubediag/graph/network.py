"""NetworkPolicy relation family.

Adds policy nodes, the pods each policy selects, default-deny edges and
explicit ingress/egress peers (pod selectors, namespace selectors and CIDR
blocks) to a graph.
"""

from __future__ import annotations

from typing import Any

from kubediag.errors import KubeDiagError
from kubediag.graph.models import Graph, GraphNode, Relation, RuleOutcome
from kubediag.graph.rules import make_node
from kubediag.graph.snapshot import ClusterSnapshot
from kubediag.kube.objects import (
    SelectorError,
    get_list,
    labels_of,
    lookup,
    name_of,
    selector_matches,
)


def policy_types(policy: dict[str, Any]) -> tuple[bool, bool]:
    """Return ``(ingress_applies, egress_applies)`` for a policy.

    Without explicit policyTypes ingress always applies and egress applies
    only when egress rules are present.
    """
    types = get_list(policy, "spec", "policyTypes")
    if not types:
        return True, bool(get_list(policy, "spec", "egress"))
    return "Ingress" in types, "Egress" in types


def policy_selects(policy: dict[str, Any], pod: dict[str, Any]) -> bool:
    selector, found = lookup(policy, "spec", "podSelector")
    return selector_matches(selector if found and isinstance(selector, dict) else {}, labels_of(pod))


def _peer_outcome(
    policy_node: GraphNode,
    peer: dict[str, Any],
    relation: Relation,
    namespace_relation: Relation,
    pods: list[dict[str, Any]],
    snapshot: ClusterSnapshot,
) -> RuleOutcome:
    out = RuleOutcome()
    ip_block = peer.get("ipBlock")
    if isinstance(ip_block, dict) and ip_block.get("cidr"):
        block = GraphNode(
            kind="IPBlock",
            namespace="",
            name=ip_block["cidr"],
            attributes={"cidr": ip_block["cidr"], "except": list(ip_block.get("except") or [])},
        )
        out.link(policy_node, block, relation)
        return out

    pod_selector = peer.get("podSelector")
    namespace_selector = peer.get("namespaceSelector")
    own_namespace_selected = namespace_selector is None
    if namespace_selector is not None:
        if snapshot.namespaces is None:
            out.warnings.append("namespace selector present but namespaces not available")
        else:
            for ns in sorted(snapshot.namespaces, key=name_of):
                if selector_matches(namespace_selector, labels_of(ns)):
                    ns_node = GraphNode(kind="Namespace", namespace="", name=name_of(ns))
                    out.link(policy_node, ns_node, namespace_relation)
                    if name_of(ns) == snapshot.namespace:
                        own_namespace_selected = True

    if pod_selector is not None and own_namespace_selected:
        for pod in pods:
            if selector_matches(pod_selector, labels_of(pod)):
                out.link(policy_node, make_node("Pod", pod), relation)
    return out


def policy_outcome(policy: dict[str, Any], pods: list[dict[str, Any]], snapshot: ClusterSnapshot) -> RuleOutcome:
    """Everything one policy contributes to the graph."""
    out = RuleOutcome()
    policy_node = make_node("NetworkPolicy", policy)
    out.nodes.append(policy_node)
    ingress_applies, egress_applies = policy_types(policy)
    ingress_rules = get_list(policy, "spec", "ingress")
    egress_rules = get_list(policy, "spec", "egress")

    for pod in pods:
        if not policy_selects(policy, pod):
            continue
        pod_node = make_node("Pod", pod)
        out.link(policy_node, pod_node, Relation.SELECTS)
        if ingress_applies and not ingress_rules:
            out.link(pod_node, policy_node, Relation.BLOCKED_BY)
        if egress_applies and not egress_rules:
            out.link(pod_node, policy_node, Relation.EGRESS_BLOCKED_BY)

    for rule in ingress_rules:
        for peer in get_list(rule, "from"):
            out.extend(
                _peer_outcome(policy_node, peer, Relation.ALLOWS_FROM, Relation.ALLOWS_FROM_NAMESPACE, pods, snapshot)
            )
    for rule in egress_rules:
        for peer in get_list(rule, "to"):
            out.extend(
                _peer_outcome(policy_node, peer, Relation.ALLOWS_TO, Relation.ALLOWS_TO_NAMESPACE, pods, snapshot)
            )
    return out


async def add_network_policy_graph(
    graph: Graph,
    snapshot: ClusterSnapshot,
    *,
    policy_name: str | None = None,
) -> list[str]:
    """Add NetworkPolicy relations to ``graph``.

    With ``policy_name`` only that policy is added.  Otherwise every policy
    that selects at least one pod already in the graph is added.
    """
    try:
        policies = await snapshot.list("networkpolicies")
        pods = await snapshot.list("pods")
    except KubeDiagError as exc:
        return [f"networkpolicy list failed: {exc.message}"]

    graph_pods = {node.name for node in graph.nodes_of_kind("Pod")}
    warnings: list[str] = []
    for policy in sorted(policies, key=name_of):
        name = name_of(policy)
        try:
            if policy_name is not None:
                if name != policy_name:
                    continue
            elif not any(policy_selects(policy, pod) for pod in pods if name_of(pod) in graph_pods):
                continue
            outcome = policy_outcome(policy, pods, snapshot)
        except SelectorError as exc:
            warnings.append(f"networkpolicy {name} skipped: {exc}")
            continue
        graph.merge(outcome)
        warnings.extend(outcome.warnings)
    return warnings


def blocking_policies(graph: Graph, pod_node_id: str) -> tuple[list[str], list[str]]:
    """Names of policies blocking ingress and egress of a pod node."""
    ingress = sorted(n.name for n in graph.neighbors(pod_node_id, Relation.BLOCKED_BY))
    egress = sorted(n.name for n in graph.neighbors(pod_node_id, Relation.EGRESS_BLOCKED_BY))
    return ingress, egress
