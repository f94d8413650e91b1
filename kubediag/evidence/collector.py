"""Evidence probes shared by the diagnostic handlers."""

from __future__ import annotations

from typing import Any

from kubediag.errors import NotFoundError
from kubediag.kube.client import ClusterReader
from kubediag.kube.objects import find_condition, get_list, get_map, get_str, name_of, owner_references, selector_string
from kubediag.kube.resolver import builtin_identity

MAX_OWNER_DEPTH = 4


def resource_ref(resource: str, namespace: str, name: str) -> str:
    """``resource/namespace/name``, or ``resource/name`` when cluster-scoped."""
    if namespace:
        return f"{resource}/{namespace}/{name}"
    return f"{resource}/{name}"


def summarize_event(event: dict[str, Any]) -> dict[str, Any]:
    return {
        "type": event.get("type", ""),
        "reason": event.get("reason", ""),
        "message": event.get("message", ""),
        "count": event.get("count") or 1,
        "firstTimestamp": event.get("firstTimestamp") or event.get("eventTime") or "",
        "lastTimestamp": event.get("lastTimestamp") or event.get("eventTime") or "",
    }


def _container_state(status: dict[str, Any]) -> dict[str, Any]:
    state: dict[str, Any] = {
        "name": status.get("name", ""),
        "ready": bool(status.get("ready")),
        "restartCount": status.get("restartCount") or 0,
    }
    waiting = get_map(status, "state", "waiting")
    if waiting:
        state["waiting"] = {"reason": waiting.get("reason", ""), "message": waiting.get("message", "")}
    terminated = get_map(status, "state", "terminated")
    if terminated:
        state["terminated"] = {"reason": terminated.get("reason", ""), "exitCode": terminated.get("exitCode")}
    last = get_map(status, "lastState", "terminated")
    if last:
        state["lastTerminated"] = {"reason": last.get("reason", ""), "exitCode": last.get("exitCode")}
    return state


def pod_status_summary(pod: dict[str, Any]) -> dict[str, Any]:
    ready = find_condition(pod, "Ready")
    return {
        "phase": get_str(pod, "status", "phase"),
        "ready": bool(ready and ready.get("status") == "True"),
        "node": get_str(pod, "spec", "nodeName"),
        "containers": [_container_state(s) for s in get_list(pod, "status", "containerStatuses")],
    }


class EvidenceCollector:
    """Direct API reads that supplement the relationship graph."""

    def __init__(self, client: ClusterReader) -> None:
        self._client = client

    async def events_for_object(self, namespace: str, uid: str, limit: int = 20) -> list[dict[str, Any]]:
        """Events whose involvedObject has ``uid``, oldest first, newest ``limit``."""
        if not uid:
            return []
        events = await self._client.list("events", namespace, field_selector=f"involvedObject.uid={uid}")
        summaries = sorted((summarize_event(e) for e in events), key=lambda e: e["lastTimestamp"])
        return summaries[-limit:]

    async def owner_chain(self, obj: dict[str, Any], namespace: str) -> list[str]:
        """Follow controller owner references up to ``MAX_OWNER_DEPTH`` levels."""
        chain: list[str] = []
        current = obj
        for _ in range(MAX_OWNER_DEPTH):
            refs = owner_references(current)
            if not refs:
                break
            ref = next((r for r in refs if r.get("controller")), refs[0])
            kind, name = ref.get("kind", ""), ref.get("name", "")
            identity = builtin_identity(kind)
            if identity is None:
                chain.append(f"{kind}/{name}")
                break
            try:
                current = await self._client.get(identity.resource, name, namespace)
            except NotFoundError:
                chain.append(f"{kind}/{name} (missing)")
                break
            chain.append(f"{kind}/{name}")
        return chain

    async def related_pods(self, namespace: str, selector: dict[str, str]) -> list[dict[str, Any]]:
        if not selector:
            return []
        pods = await self._client.list("pods", namespace, label_selector=selector_string(selector))
        return sorted(pods, key=name_of)

