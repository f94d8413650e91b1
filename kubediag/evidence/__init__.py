"""Evidence probes feeding the analysis accumulator."""

from kubediag.evidence.collector import EvidenceCollector, pod_status_summary, resource_ref, summarize_event

__all__ = ["EvidenceCollector", "pod_status_summary", "resource_ref", "summarize_event"]
