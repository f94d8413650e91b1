"""Rendering of analyses, graphs and errors into output mappings."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from kubediag.errors import error_envelope
from kubediag.models.analysis import Analysis
from kubediag.observability.metrics import causes_total
from kubediag.render.redaction import redact


class Renderer:
    """Turns request results into redacted, JSON-ready mappings."""

    def __init__(self, redactor: Callable[[Any], Any] = redact) -> None:
        self._redact = redactor

    def render(self, analysis: Analysis) -> dict[str, Any]:
        for cause in analysis.causes:
            causes_total.labels(severity=str(cause.severity)).inc()
        output: dict[str, Any] = self._redact(analysis.render())
        output["generatedAt"] = analysis.generated_at.isoformat()
        return output

    def render_value(self, value: Any) -> Any:
        return self._redact(value)

    def render_error(self, exc: BaseException, partial: dict[str, Any] | None = None) -> dict[str, Any]:
        return error_envelope(exc, details=partial)
