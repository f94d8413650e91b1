"""Error taxonomy for kubediag.

Every error that crosses a component boundary derives from
:class:`KubeDiagError` and carries a stable ``code``.  The REST and CLI
layers present errors through :func:`error_envelope` so callers never have
to inspect raw ``kubernetes_asyncio`` exceptions.

Fatal to a request:
    ValidationError, PolicyError, ResolutionError, ConfirmationRequired,
    NotFoundError (root object only), RequestAborted.

Non-fatal:
    PartialDiscoveryWarning -- collected as a warning string.
"""

from __future__ import annotations

import asyncio
from typing import Any


class KubeDiagError(Exception):
    """Base class for all kubediag errors."""

    code = "internal"
    hint = "Check the server logs for details."
    retryable = False
    http_status = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(KubeDiagError):
    """A required argument is missing or malformed."""

    code = "invalid_request"
    hint = "Check required arguments and their formats."
    http_status = 400


class PolicyError(KubeDiagError):
    """The user may not see the requested namespace or cluster scope."""

    code = "forbidden"
    hint = "Request access to the namespace or retry as a cluster-scoped user."
    http_status = 403


class ResolutionError(KubeDiagError):
    """A kind or resource name cannot be mapped to any API resource."""

    code = "not_found"
    hint = "Verify the kind is installed and the API group is reachable."
    http_status = 404


class NotFoundError(KubeDiagError):
    """A specific cluster object does not exist."""

    code = "not_found"
    hint = "Verify the resource name and namespace."
    http_status = 404

    def __init__(self, resource: str, name: str, namespace: str = "") -> None:
        target = f"{namespace}/{name}" if namespace else name
        super().__init__(f"{resource} {target} not found")
        self.resource = resource
        self.name = name
        self.namespace = namespace


class ClusterAPIError(KubeDiagError):
    """The Kubernetes API returned an error other than 404."""

    def __init__(self, status: int, reason: str, message: str = "") -> None:
        super().__init__(message or f"kubernetes api error {status}: {reason}")
        self.status = status
        self.reason = reason
        self.code, self.hint, self.retryable = _classify_status(status)
        self.http_status = 502 if status >= 500 else (status or 502)


class ConfirmationRequired(KubeDiagError):
    """A mutating capability was invoked without explicit confirmation."""

    code = "confirmation_required"
    hint = "Re-run with confirm=true once the change has been reviewed."
    http_status = 428

    def __init__(self, tool: str) -> None:
        super().__init__(f"confirmation required: set confirm=true to run {tool}")
        self.tool = tool


class ToolNotFoundError(KubeDiagError):
    """No capability is registered under the requested name."""

    code = "not_found"
    hint = "List registered tools and check the toolset is enabled."
    http_status = 404

    def __init__(self, name: str) -> None:
        super().__init__(f"tool not found: {name}")
        self.name = name


class RequestAborted(KubeDiagError):
    """A request hit its deadline or was cancelled mid-flight.

    ``partial`` holds the rendered evidence accumulated before the abort so
    callers can still present it.
    """

    http_status = 504

    def __init__(self, message: str, *, code: str = "timeout", partial: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.retryable = code == "timeout"
        self.hint = "Narrow the query scope or raise the tool timeout." if code == "timeout" else "Retry the request."
        self.partial = partial or {}


class GraphIntegrityError(KubeDiagError):
    """An edge referenced a missing node, or a frozen graph was mutated."""


class PartialDiscoveryWarning(Warning):
    """Some API groups could not be discovered; others still resolved."""

    def __init__(self, failed_groups: dict[str, str]) -> None:
        self.failed_groups = dict(sorted(failed_groups.items()))
        names = ", ".join(self.failed_groups)
        super().__init__(f"partial discovery: unreachable api groups: {names}")


def _classify_status(status: int) -> tuple[str, str, bool]:
    if status == 401:
        return "unauthorized", "Check the kubeconfig credentials.", False
    if status == 403:
        return "forbidden", "The service account lacks RBAC permission for this read.", False
    if status == 404:
        return "not_found", "Verify the resource name and namespace.", False
    if status == 409:
        return "conflict", "The object changed concurrently; retry.", True
    if status == 429 or status >= 500:
        return "unavailable", "The API server is overloaded or unreachable; retry later.", True
    if 400 <= status < 500:
        return "invalid_request", "Check the request arguments.", False
    return "internal", "Check the server logs for details.", False


def error_envelope(exc: BaseException, details: dict[str, Any] | None = None) -> dict[str, Any]:
    """Build the structured error payload presented by the API and CLI."""
    if isinstance(exc, KubeDiagError):
        code, message, hint, retryable = exc.code, exc.message, exc.hint, exc.retryable
    elif isinstance(exc, TimeoutError):
        code, message, hint, retryable = "timeout", "request timed out", "Retry with a longer timeout.", True
    elif isinstance(exc, asyncio.CancelledError):
        code, message, hint, retryable = "canceled", "request canceled", "Retry the request.", True
    else:
        code, message, hint, retryable = "internal", str(exc) or type(exc).__name__, KubeDiagError.hint, False

    envelope: dict[str, Any] = {
        "error": {
            "code": code,
            "message": message,
            "hint": hint,
            "retryable": retryable,
        }
    }
    if details:
        envelope["details"] = details
    return envelope
