"""Renderer and redactor applied to everything kubediag returns."""

from kubediag.render.redaction import REDACTED, redact, redact_dict, redact_value
from kubediag.render.renderer import Renderer

__all__ = ["REDACTED", "Renderer", "redact", "redact_dict", "redact_value"]
