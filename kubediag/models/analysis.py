"""Evidence and root-cause accumulator for one diagnostic request."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any


class Severity(StrEnum):
    """Severity of a likely root cause."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class LikelyRootCause:
    """A severity-tagged hypothesis explaining an observed failure."""

    title: str
    detail: str
    severity: Severity

    def to_dict(self) -> dict[str, str]:
        return {"summary": self.title, "details": self.detail, "severity": str(self.severity)}


@dataclass(frozen=True)
class EvidenceEntry:
    """One labeled fact gathered during diagnosis.  Labels may repeat."""

    label: str
    payload: Any

    def to_dict(self) -> dict[str, Any]:
        return {"summary": self.label, "details": self.payload}


@dataclass
class Analysis:
    """Append-only accumulator of evidence, causes, checks and references.

    Contract:
        - Entries keep call order; nothing is ever removed.
        - Resource references are recorded once per distinct object.
        - ``render()`` is deterministic for a given call sequence.
    """

    evidence: list[EvidenceEntry] = field(default_factory=list)
    causes: list[LikelyRootCause] = field(default_factory=list)
    next_checks: list[str] = field(default_factory=list)
    resources: list[str] = field(default_factory=list)
    generated_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))

    def add_evidence(self, label: str, payload: Any) -> None:
        self.evidence.append(EvidenceEntry(label, payload))

    def add_resource(self, ref: str) -> None:
        if ref and ref not in self.resources:
            self.resources.append(ref)

    def add_cause(self, title: str, detail: str, severity: Severity | str) -> None:
        self.causes.append(LikelyRootCause(title, detail, Severity(severity)))

    def add_next_check(self, text: str) -> None:
        self.next_checks.append(text)

    def merge(self, other: Analysis, prefix: str = "") -> None:
        """Append everything from ``other``, prefixing its evidence labels."""
        for entry in other.evidence:
            self.add_evidence(f"{prefix}{entry.label}", entry.payload)
        self.causes.extend(other.causes)
        for check in other.next_checks:
            self.add_next_check(check)
        for ref in other.resources:
            self.add_resource(ref)

    @property
    def has_causes(self) -> bool:
        return bool(self.causes)

    @property
    def empty(self) -> bool:
        return not (self.evidence or self.causes or self.next_checks or self.resources)

    def render(self) -> dict[str, Any]:
        return {
            "likelyRootCauses": [cause.to_dict() for cause in self.causes],
            "evidence": [entry.to_dict() for entry in self.evidence],
            "recommendedNextChecks": list(self.next_checks),
            "resourcesExamined": list(self.resources),
        }
