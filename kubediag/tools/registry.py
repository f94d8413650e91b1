"""Capability registry: an explicit ``name -> {safety, handler}`` table."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from kubediag.models.config import SafetyConfig
from kubediag.observability.logging import get_logger

if TYPE_CHECKING:
    from kubediag.tools.context import ToolRequest

_log = get_logger("tools.registry")

Handler = Callable[["ToolRequest"], Awaitable[dict[str, Any]]]


class Safety(StrEnum):
    """Mutation risk tier of a capability."""

    READ_ONLY = "read_only"
    WRITE = "write"
    RISKY_WRITE = "risky_write"
    DESTRUCTIVE = "destructive"

    @property
    def requires_confirmation(self) -> bool:
        return self is not Safety.READ_ONLY


@dataclass(frozen=True)
class ToolSpec:
    """A registered capability.

    ``namespaced`` tools are policy-checked against their ``namespace``
    argument; the rest require cluster scope.
    """

    name: str
    description: str
    toolset: str
    safety: Safety
    handler: Handler
    namespaced: bool = True


class ToolRegistry:
    """Holds the tools allowed by the safety configuration."""

    def __init__(self, safety: SafetyConfig | None = None) -> None:
        self._safety = safety or SafetyConfig()
        self._tools: dict[str, ToolSpec] = {}

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def allowed(self, spec: ToolSpec) -> bool:
        if spec.safety is Safety.READ_ONLY:
            return True
        if self._safety.read_only:
            return False
        if spec.safety is Safety.DESTRUCTIVE and self._safety.disable_destructive:
            return spec.name in self._safety.allow_destructive_tools
        return True

    def add(self, spec: ToolSpec) -> bool:
        """Register ``spec``; returns False when safety config excludes it."""
        if spec.name in self._tools:
            raise ValueError(f"tool already registered: {spec.name}")
        if not self.allowed(spec):
            _log.info("tool_skipped", tool=spec.name, safety=str(spec.safety))
            return False
        self._tools[spec.name] = spec
        return True

    def get(self, name: str) -> ToolSpec | None:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return sorted(self._tools)

    def specs(self) -> list[ToolSpec]:
        return [self._tools[name] for name in self.names()]
