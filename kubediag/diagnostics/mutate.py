"""The single mutating capability, guarded by the confirmation gate."""

from __future__ import annotations

from typing import Any

from kubediag.errors import ValidationError
from kubediag.evidence.collector import resource_ref
from kubediag.kube.objects import get_str
from kubediag.kube.resolver import BUILTIN_RESOURCES
from kubediag.observability.logging import get_logger
from kubediag.tools.context import ToolRequest

_logger = get_logger("diagnostics.mutate")


async def delete_object(request: ToolRequest) -> dict[str, Any]:
    """Delete one built-in object by kind, namespace and name."""
    namespace = request.namespace
    kind = request.str_arg("kind", required=True)
    name = request.str_arg("name", required=True)
    ctx = request.context

    identity = await ctx.resolver.resolve(kind)
    if identity.resource not in BUILTIN_RESOURCES:
        raise ValidationError(f"delete supports built-in kinds only, got {identity.group_resource}")
    if not identity.namespaced:
        ctx.policy.require_cluster(request.user)
        namespace = ""

    status = await ctx.client.delete(identity.resource, name, namespace)
    ctx.graph_cache.invalidate()
    ref = resource_ref(identity.resource, namespace, name)
    _logger.warning("object_deleted", ref=ref, user=request.user.id)
    return {"deleted": ref, "status": get_str(status, "status")}
