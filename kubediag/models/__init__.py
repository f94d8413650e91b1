"""Core data structures for kubediag."""

from kubediag.models.analysis import Analysis, EvidenceEntry, LikelyRootCause, Severity
from kubediag.models.config import KubeDiagConfig

__all__ = [
    "Analysis",
    "EvidenceEntry",
    "KubeDiagConfig",
    "LikelyRootCause",
    "Severity",
]
