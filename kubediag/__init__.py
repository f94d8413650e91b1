"""kubediag: relationship-graph driven Kubernetes troubleshooting.

Builds the topology slice around a resource, runs domain diagnostics over it
and renders ranked likely root causes with supporting evidence.
"""

__version__ = "0.3.0"
