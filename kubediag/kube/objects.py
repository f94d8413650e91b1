"""Helpers for reading loosely typed Kubernetes objects.

Objects travel through kubediag as the camelCase dicts the API server
returns (typed client models are sanitized into the same shape).  Nothing
here assumes a field is present: :func:`lookup` returns ``(value, found)``
and the typed accessors fall back to empty values.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any

_BINARY_SUFFIXES = {
    "Ki": Decimal(2) ** 10,
    "Mi": Decimal(2) ** 20,
    "Gi": Decimal(2) ** 30,
    "Ti": Decimal(2) ** 40,
    "Pi": Decimal(2) ** 50,
    "Ei": Decimal(2) ** 60,
}

_DECIMAL_SUFFIXES = {
    "n": Decimal("1e-9"),
    "u": Decimal("1e-6"),
    "m": Decimal("1e-3"),
    "": Decimal(1),
    "k": Decimal("1e3"),
    "M": Decimal("1e6"),
    "G": Decimal("1e9"),
    "T": Decimal("1e12"),
    "P": Decimal("1e15"),
    "E": Decimal("1e18"),
}


class SelectorError(ValueError):
    """A label selector uses an operator kubediag cannot evaluate."""


def lookup(obj: Any, *path: str | int) -> tuple[Any, bool]:
    """Walk ``path`` through nested dicts/lists, returning ``(value, found)``."""
    current = obj
    for key in path:
        if isinstance(key, int):
            if not isinstance(current, list) or not -len(current) <= key < len(current):
                return None, False
        elif not isinstance(current, dict) or key not in current:
            return None, False
        current = current[key]
    return current, True


def get_str(obj: Any, *path: str | int, default: str = "") -> str:
    value, found = lookup(obj, *path)
    if not found or value is None:
        return default
    return value if isinstance(value, str) else str(value)


def get_map(obj: Any, *path: str | int) -> dict[str, Any]:
    value, found = lookup(obj, *path)
    return value if found and isinstance(value, dict) else {}


def get_list(obj: Any, *path: str | int) -> list[Any]:
    value, found = lookup(obj, *path)
    return value if found and isinstance(value, list) else []


def get_bool(obj: Any, *path: str | int, default: bool = False) -> bool:
    value, found = lookup(obj, *path)
    return value if found and isinstance(value, bool) else default


# ---------------------------------------------------------------------------
# Metadata accessors
# ---------------------------------------------------------------------------


def name_of(obj: Any) -> str:
    return get_str(obj, "metadata", "name")


def namespace_of(obj: Any) -> str:
    return get_str(obj, "metadata", "namespace")


def uid_of(obj: Any) -> str:
    return get_str(obj, "metadata", "uid")


def labels_of(obj: Any) -> dict[str, str]:
    return get_map(obj, "metadata", "labels")


def annotations_of(obj: Any) -> dict[str, str]:
    return get_map(obj, "metadata", "annotations")


def owner_references(obj: Any) -> list[dict[str, Any]]:
    return [ref for ref in get_list(obj, "metadata", "ownerReferences") if isinstance(ref, dict)]


def is_owned_by(obj: Any, owner: Any, owner_kind: str) -> bool:
    """True when ``obj`` lists ``owner`` among its owner references.

    A UID match is preferred when both sides carry one; otherwise the
    reference matches on ``{kind, name}``.
    """
    owner_uid = uid_of(owner)
    owner_name = name_of(owner)
    for ref in owner_references(obj):
        if ref.get("kind") != owner_kind:
            continue
        ref_uid = ref.get("uid") or ""
        if ref_uid and owner_uid:
            if ref_uid == owner_uid:
                return True
            continue
        if ref.get("name") == owner_name:
            return True
    return False


def find_condition(obj: Any, condition_type: str) -> dict[str, Any] | None:
    for cond in get_list(obj, "status", "conditions"):
        if isinstance(cond, dict) and cond.get("type") == condition_type:
            return cond
    return None


# ---------------------------------------------------------------------------
# Label selectors
# ---------------------------------------------------------------------------


def labels_match(selector: dict[str, str], labels: dict[str, str]) -> bool:
    """Equality-based match of a plain selector map (Service style).

    An empty selector matches nothing; callers decide what "no selector"
    means for their relation.
    """
    if not selector:
        return False
    return all(labels.get(key) == value for key, value in selector.items())


def selector_matches(selector: dict[str, Any] | None, labels: dict[str, str]) -> bool:
    """Evaluate a ``LabelSelector`` (matchLabels plus matchExpressions).

    ``None`` matches nothing; an empty selector ``{}`` matches everything,
    which is how NetworkPolicy ``podSelector: {}`` selects a whole namespace.
    """
    if selector is None:
        return False
    for key, value in (selector.get("matchLabels") or {}).items():
        if labels.get(key) != value:
            return False
    for expr in selector.get("matchExpressions") or []:
        key = expr.get("key", "")
        operator = expr.get("operator", "")
        values = expr.get("values") or []
        if operator == "In":
            if key not in labels or labels[key] not in values:
                return False
        elif operator == "NotIn":
            if key in labels and labels[key] in values:
                return False
        elif operator == "Exists":
            if key not in labels:
                return False
        elif operator == "DoesNotExist":
            if key in labels:
                return False
        else:
            raise SelectorError(f"unsupported selector operator {operator!r}")
    return True


def selector_string(selector: dict[str, str]) -> str:
    """Render a plain selector map as an API ``labelSelector`` string."""
    return ",".join(f"{key}={value}" for key, value in sorted(selector.items()))


# ---------------------------------------------------------------------------
# Quantities
# ---------------------------------------------------------------------------


def parse_quantity(value: Any) -> Decimal:
    """Parse a resource quantity such as ``"250m"``, ``"1Gi"`` or ``2``."""
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    text = str(value).strip()
    if not text:
        raise ValueError("empty quantity")
    for suffix, factor in _BINARY_SUFFIXES.items():
        if text.endswith(suffix):
            return _decimal(text[: -len(suffix)], value) * factor
    suffix = text[-1] if text[-1] in _DECIMAL_SUFFIXES and not text[-1].isdigit() else ""
    number = text[: -len(suffix)] if suffix else text
    return _decimal(number, value) * _DECIMAL_SUFFIXES[suffix]


def _decimal(number: str, original: Any) -> Decimal:
    try:
        return Decimal(number)
    except InvalidOperation as exc:
        raise ValueError(f"invalid quantity {original!r}") from exc
