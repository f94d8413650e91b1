"""Redaction of secret material in evidence payloads.

Applied to everything the Renderer emits.  Three layers:
    1. Values under secret-looking keys (password, token, ...) are replaced,
       unless the key names a reference such as ``secretName`` or
       ``tokenSecretRef``.
    2. JWTs anywhere in a string are replaced.
    3. Long opaque tokens (32+ base64/hex-like characters containing both a
       digit and a letter) are replaced.  Content digests such as
       ``sha256:<hex>`` are image references and stay readable.
"""

from __future__ import annotations

import re
from typing import Any

REDACTED = "[REDACTED]"

_SECRET_KEY = re.compile(r"(password|passwd|secret|token|api[_-]?key|credential|private[_-]?key)", re.IGNORECASE)
_REFERENCE_KEY = re.compile(r"(name|ref)$", re.IGNORECASE)

_JWT = re.compile(r"eyJ[A-Za-z0-9_\-]+\.[A-Za-z0-9_\-]+\.[A-Za-z0-9_\-]+")

_OPAQUE = re.compile(
    r"(?<![A-Za-z0-9+/=_])(?<!sha256:)(?<!sha512:)"
    r"(?=[A-Za-z0-9+/=_]*\d)(?=[A-Za-z0-9+/=_]*[A-Za-z])"
    r"[A-Za-z0-9+/=_]{32,}"
    r"(?![A-Za-z0-9+/=_])"
)


def is_secret_key(key: str) -> bool:
    return bool(_SECRET_KEY.search(key)) and not _REFERENCE_KEY.search(key)


def redact_value(value: str) -> str:
    """Replace JWTs and opaque tokens inside a string."""
    return _OPAQUE.sub(REDACTED, _JWT.sub(REDACTED, value))


def redact_dict(data: dict[str, Any]) -> dict[str, Any]:
    """Return a redacted deep copy of ``data``."""
    result: dict[str, Any] = {}
    for key, value in data.items():
        if isinstance(value, str) and is_secret_key(str(key)):
            result[key] = REDACTED
        else:
            result[key] = redact(value)
    return result


def redact(value: Any) -> Any:
    """Recursively redact strings, dicts, lists and tuples."""
    if isinstance(value, str):
        return redact_value(value)
    if isinstance(value, dict):
        return redact_dict(value)
    if isinstance(value, (list, tuple)):
        return [redact(item) for item in value]
    return value
