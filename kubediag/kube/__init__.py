"""Kubernetes access layer: cluster client, discovery and resource resolution."""

from kubediag.kube.client import ClusterClient, ClusterReader
from kubediag.kube.resolver import CachedDiscovery, ResourceIdentity, ResourceResolver

__all__ = [
    "CachedDiscovery",
    "ClusterClient",
    "ClusterReader",
    "ResourceIdentity",
    "ResourceResolver",
]
