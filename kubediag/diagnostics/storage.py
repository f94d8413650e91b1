"""Storage diagnostics: PVC, PV, StorageClass and VolumeAttachment checks.

Scope is one pod's claims, one named claim, or every claim in the
namespace.  Each claim is analyzed independently; an API error on one
claim becomes evidence and the rest are still analyzed.  The PV,
StorageClass and VolumeAttachment checks read cluster-scoped objects and
are gated on the cluster role.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from kubediag.diagnostics.base import cluster_gated
from kubediag.errors import KubeDiagError, NotFoundError
from kubediag.evidence.collector import resource_ref
from kubediag.kube.objects import get_list, get_map, get_str, name_of, parse_quantity, uid_of
from kubediag.models.analysis import Analysis, Severity
from kubediag.observability.logging import get_logger
from kubediag.tools.context import ToolRequest

_logger = get_logger("diagnostics.storage")

NO_PROVISIONER = "kubernetes.io/no-provisioner"


def _requested_storage(pvc: dict[str, Any]) -> Decimal | None:
    raw = get_str(pvc, "spec", "resources", "requests", "storage")
    if not raw:
        return None
    try:
        return parse_quantity(raw)
    except ValueError:
        return None


def _pv_capacity(pv: dict[str, Any]) -> Decimal | None:
    raw = get_str(pv, "spec", "capacity", "storage")
    if not raw:
        return None
    try:
        return parse_quantity(raw)
    except ValueError:
        return None


def find_matching_pvs(pvc: dict[str, Any], pvs: list[dict[str, Any]]) -> list[str]:
    """Names of Available PVs that could bind ``pvc``, sorted ascending.

    A candidate has the same storage class, the same volume mode
    (Filesystem when unset), a superset of the requested access modes and,
    when both sides declare sizes, enough capacity.
    """
    storage_class = get_str(pvc, "spec", "storageClassName")
    volume_mode = get_str(pvc, "spec", "volumeMode", default="Filesystem")
    access_modes = set(get_list(pvc, "spec", "accessModes"))
    requested = _requested_storage(pvc)

    matches: list[str] = []
    for pv in pvs:
        if get_str(pv, "status", "phase") != "Available":
            continue
        if get_str(pv, "spec", "storageClassName") != storage_class:
            continue
        if get_str(pv, "spec", "volumeMode", default="Filesystem") != volume_mode:
            continue
        if not access_modes <= set(get_list(pv, "spec", "accessModes")):
            continue
        capacity = _pv_capacity(pv)
        if requested is not None and capacity is not None and capacity < requested:
            continue
        matches.append(name_of(pv))
    return sorted(matches)


def _claims_in_pod(pod: dict[str, Any]) -> list[str]:
    names = {
        get_str(volume, "persistentVolumeClaim", "claimName")
        for volume in get_list(pod, "spec", "volumes")
        if get_str(volume, "persistentVolumeClaim", "claimName")
    }
    return sorted(names)


class _StorageRun:
    """State for one storage_debug request."""

    def __init__(self, request: ToolRequest, analysis: Analysis, namespace: str, include_events: bool) -> None:
        self.request = request
        self.client = request.context.client
        self.collector = request.context.collector
        self.analysis = analysis
        self.namespace = namespace
        self.include_events = include_events
        self._pods: list[dict[str, Any]] | None = None

    async def scope(self, pod_name: str, pvc_name: str) -> list[str]:
        if pod_name:
            try:
                pod = await self.client.get("pods", pod_name, self.namespace)
            except NotFoundError:
                self.analysis.add_evidence("pod", f"pod {pod_name} not found")
                return []
            self.analysis.add_resource(resource_ref("pods", self.namespace, pod_name))
            claims = _claims_in_pod(pod)
            if not claims:
                self.analysis.add_evidence("status", "no pvc references found in pod volumes")
            return claims
        if pvc_name:
            return [pvc_name]
        claims = sorted(name_of(pvc) for pvc in await self.client.list("persistentvolumeclaims", self.namespace))
        if not claims:
            self.analysis.add_evidence("status", "no pvcs found")
        return claims

    async def analyze(self, name: str) -> None:
        analysis = self.analysis
        try:
            pvc = await self.client.get("persistentvolumeclaims", name, self.namespace)
        except NotFoundError:
            analysis.add_evidence(f"pvc {name}", "pvc not found")
            analysis.add_cause("PVC missing", f"PersistentVolumeClaim {self.namespace}/{name} does not exist", Severity.HIGH)
            return

        analysis.add_resource(resource_ref("persistentvolumeclaims", self.namespace, name))
        phase = get_str(pvc, "status", "phase")
        storage_class = get_str(pvc, "spec", "storageClassName")
        volume_name = get_str(pvc, "spec", "volumeName")
        analysis.add_evidence(
            f"pvc {name}",
            {
                "phase": phase,
                "storageClass": storage_class,
                "volumeName": volume_name,
                "accessModes": get_list(pvc, "spec", "accessModes"),
                "requests": get_map(pvc, "spec", "resources", "requests"),
                "conditions": get_list(pvc, "status", "conditions"),
            },
        )
        if phase == "Pending":
            analysis.add_cause("PVC pending", f"PVC {name} is Pending and not bound to a volume", Severity.HIGH)
        elif phase == "Lost":
            analysis.add_cause("PVC lost", f"PVC {name} lost its bound volume {volume_name}", Severity.HIGH)

        if self.include_events:
            events = await self.collector.events_for_object(self.namespace, uid_of(pvc))
            if events:
                analysis.add_evidence(f"events pvc {name}", events)

        storage_class_obj = None
        if cluster_gated(self.request, analysis, "storageClassCheck"):
            storage_class_obj = await self._check_storage_class(name, storage_class)
        if cluster_gated(self.request, analysis, "persistentVolumeCheck"):
            if volume_name:
                await self._check_volume(volume_name)
            else:
                await self._check_candidates(pvc, phase, storage_class, storage_class_obj)

        users = await self._pods_using(name)
        if users:
            analysis.add_evidence(f"pods using pvc {name}", users)

    async def _check_storage_class(self, claim: str, storage_class: str) -> dict[str, Any] | None:
        if not storage_class:
            self.analysis.add_evidence("storageClass", f"pvc {claim} sets no storageClassName")
            return None
        try:
            sc = await self.client.get("storageclasses", storage_class)
        except NotFoundError:
            self.analysis.add_cause(
                "StorageClass missing",
                f"PVC {claim} references StorageClass {storage_class}, which does not exist",
                Severity.HIGH,
            )
            return None
        self.analysis.add_resource(resource_ref("storageclasses", "", storage_class))
        self.analysis.add_evidence(
            f"storageclass {storage_class}",
            {
                "provisioner": sc.get("provisioner", ""),
                "reclaimPolicy": sc.get("reclaimPolicy", ""),
                "volumeBindingMode": sc.get("volumeBindingMode", ""),
                "allowVolumeExpansion": bool(sc.get("allowVolumeExpansion")),
            },
        )
        return sc

    async def _check_volume(self, volume_name: str) -> None:
        try:
            pv = await self.client.get("persistentvolumes", volume_name)
        except NotFoundError:
            self.analysis.add_cause("PV missing", f"PersistentVolume {volume_name} does not exist", Severity.HIGH)
            return
        self.analysis.add_resource(resource_ref("persistentvolumes", "", volume_name))
        pv_phase = get_str(pv, "status", "phase")
        self.analysis.add_evidence(
            f"pv {volume_name}",
            {
                "phase": pv_phase,
                "capacity": get_map(pv, "spec", "capacity"),
                "accessModes": get_list(pv, "spec", "accessModes"),
                "storageClass": get_str(pv, "spec", "storageClassName"),
                "reclaimPolicy": get_str(pv, "spec", "persistentVolumeReclaimPolicy"),
                "claimRef": get_map(pv, "spec", "claimRef"),
            },
        )
        if pv_phase != "Bound":
            self.analysis.add_cause("PV not bound", f"PV {volume_name} phase is {pv_phase or 'unknown'}", Severity.MEDIUM)

        attachments = [
            va
            for va in await self.client.list("volumeattachments")
            if get_str(va, "spec", "source", "persistentVolumeName") == volume_name
        ]
        for va in sorted(attachments, key=name_of):
            va_name = name_of(va)
            attach_error = get_map(va, "status", "attachError")
            detach_error = get_map(va, "status", "detachError")
            self.analysis.add_evidence(
                f"volumeattachment {va_name}",
                {
                    "node": get_str(va, "spec", "nodeName"),
                    "attacher": get_str(va, "spec", "attacher"),
                    "attached": bool(get_map(va, "status").get("attached")),
                },
            )
            if attach_error:
                self.analysis.add_cause(
                    "VolumeAttachment error",
                    f"{va_name}: {attach_error.get('message', '')}",
                    Severity.HIGH,
                )
            if detach_error:
                self.analysis.add_cause(
                    "VolumeAttachment detach error",
                    f"{va_name}: {detach_error.get('message', '')}",
                    Severity.MEDIUM,
                )

    async def _check_candidates(
        self,
        pvc: dict[str, Any],
        phase: str,
        storage_class: str,
        storage_class_obj: dict[str, Any] | None,
    ) -> None:
        candidates = find_matching_pvs(pvc, await self.client.list("persistentvolumes"))
        name = name_of(pvc)
        if candidates:
            self.analysis.add_evidence(f"matchingPVCandidates {name}", candidates)
            return
        static_binding = (not storage_class) or (
            storage_class_obj is not None and storage_class_obj.get("provisioner") == NO_PROVISIONER
        )
        if phase == "Pending" and static_binding:
            self.analysis.add_cause(
                "No matching PV",
                f"No Available PV matches class, volume mode, access modes and size of PVC {name}",
                Severity.HIGH,
            )

    async def _pods_using(self, claim: str) -> list[str]:
        if self._pods is None:
            self._pods = await self.client.list("pods", self.namespace)
        return sorted(name_of(pod) for pod in self._pods if claim in _claims_in_pod(pod))


async def storage_debug(request: ToolRequest) -> dict[str, Any]:
    """Diagnose PVC binding and attachment problems."""
    namespace = request.namespace
    pod_name = request.str_arg("pod")
    pvc_name = request.str_arg("pvc")
    include_events = request.bool_arg("include_events", True)
    analysis = request.begin_analysis()

    run = _StorageRun(request, analysis, namespace, include_events)
    claims = await run.scope(pod_name, pvc_name)
    for claim in claims:
        try:
            await run.analyze(claim)
        except KubeDiagError as exc:
            analysis.add_evidence(f"pvc {claim} error", exc.message)

    if claims and not analysis.has_causes:
        analysis.add_evidence("status", "no explicit storage errors found")
    analysis.add_next_check("Review storageclass provisioner and CSI driver logs")
    _logger.info("storage_debug", namespace=namespace, claims=len(claims), causes=len(analysis.causes))
    return request.render()
