"""Cache layer for kubediag.

Submodules:
    ttl         -- Lock-guarded key/value store with expiry-on-read.
    graph_cache -- TTL cache of built relationship graphs.
"""

from kubediag.cache.graph_cache import GraphCache, graph_cache_key
from kubediag.cache.ttl import TTLStore

__all__ = ["GraphCache", "TTLStore", "graph_cache_key"]
