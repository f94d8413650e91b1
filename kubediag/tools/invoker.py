"""Typed invocation of registered capabilities.

Every call, including nested calls one handler makes to another, goes
through the same sequence:

    lookup -> policy gate -> confirmation gate -> handler under deadline
           -> audit log + metrics

A call that hits its deadline raises :class:`RequestAborted` carrying the
evidence the handler had accumulated.  Raw task cancellation is logged and
re-raised.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any

from kubediag.errors import ConfirmationRequired, KubeDiagError, RequestAborted, ToolNotFoundError
from kubediag.observability.logging import get_logger
from kubediag.observability.metrics import tool_duration_seconds, tool_invocations_total
from kubediag.policy import Authorizer, User
from kubediag.tools.context import ToolContext, ToolRequest
from kubediag.tools.registry import ToolRegistry, ToolSpec

_log = get_logger("tools.invoker")
_audit = get_logger("audit")


class ToolInvoker:
    """Dispatches calls by name through the policy and confirmation gates."""

    def __init__(
        self,
        registry: ToolRegistry,
        policy: Authorizer,
        context: ToolContext,
        *,
        timeout_seconds: float = 30.0,
    ) -> None:
        self._registry = registry
        self._policy = policy
        self._context = context
        self._timeout = timeout_seconds
        context.invoker = self

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    @property
    def context(self) -> ToolContext:
        return self._context

    def _authorize(self, spec: ToolSpec, user: User, arguments: dict[str, Any]) -> None:
        if spec.namespaced:
            namespace = arguments.get("namespace") or ""
            self._policy.check_namespace(user, namespace if isinstance(namespace, str) else "", namespaced=True)
        else:
            self._policy.require_cluster(user)

    async def call(
        self,
        user: User,
        name: str,
        arguments: dict[str, Any] | None = None,
        *,
        confirm: bool = False,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        spec = self._registry.get(name)
        if spec is None:
            tool_invocations_total.labels(tool=name, outcome="not_found").inc()
            raise ToolNotFoundError(name)

        args = dict(arguments or {})
        confirmed = args.pop("confirm", False) is True or confirm
        try:
            self._authorize(spec, user, args)
        except KubeDiagError as exc:
            tool_invocations_total.labels(tool=name, outcome=exc.code).inc()
            _log.warning("tool_denied", tool=name, user=user.id, reason=exc.message)
            raise

        if spec.safety.requires_confirmation and not confirmed:
            tool_invocations_total.labels(tool=name, outcome="confirmation_required").inc()
            _log.info("tool_confirmation_required", tool=name, user=user.id, safety=str(spec.safety))
            raise ConfirmationRequired(name)

        request = ToolRequest(user=user, arguments=args, context=self._context, tool=name, confirmed=confirmed)
        deadline = timeout if timeout is not None else self._timeout
        outcome = "ok"
        start = time.monotonic()
        try:
            async with asyncio.timeout(deadline):
                return await spec.handler(request)
        except TimeoutError as exc:
            outcome = "timeout"
            raise RequestAborted(
                f"{name} exceeded its {deadline:g}s deadline",
                code="timeout",
                partial=request.partial_result(),
            ) from exc
        except asyncio.CancelledError:
            outcome = "canceled"
            _log.warning("tool_canceled", tool=name, user=user.id, partial=sorted(request.partial_result()))
            raise
        except KubeDiagError as exc:
            outcome = exc.code
            raise
        finally:
            elapsed = time.monotonic() - start
            tool_duration_seconds.labels(tool=name).observe(elapsed)
            tool_invocations_total.labels(tool=name, outcome=outcome).inc()
            _audit.info(
                "tool_invoked",
                tool=name,
                user=user.id,
                role=str(user.role),
                namespace=args.get("namespace", ""),
                safety=str(spec.safety),
                outcome=outcome,
                duration_ms=int(elapsed * 1000),
            )
