"""TTL cache of built relationship graphs.

The cache is the only state shared between concurrent requests.  Builds
run outside the lock, so two concurrent misses on one key may both build;
rebuilds are read-only against the cluster so the duplicate work is
harmless.  Only positive results are stored; warnings are returned to the
request that built the graph and never replayed from the cache.
"""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable

from kubediag.cache.ttl import TTLStore
from kubediag.graph.models import Graph
from kubediag.kube.resolver import builtin_identity
from kubediag.observability.logging import get_logger
from kubediag.observability.metrics import graph_cache_lookups_total

_log = get_logger("cache.graph")

BuildFn = Callable[[], Awaitable[tuple[Graph, list[str]]]]


def graph_cache_key(
    root_kind: str,
    namespace: str,
    name: str,
    include_mesh: bool,
    cluster_scope: bool,
) -> str:
    """Derive the cache key from every input that changes the built graph.

    Aliases of one kind (``svc``, ``service``, ``services``) share a key.
    ``cluster_scope`` is part of the key because a cluster-scoped build
    also lists namespaces to resolve NetworkPolicy namespace selectors.
    """
    identity = builtin_identity(root_kind)
    kind = identity.kind if identity is not None else root_kind
    return (
        f"graph:{kind.lower()}:{namespace}:{name}"
        f":mesh={str(include_mesh).lower()}:cluster={str(cluster_scope).lower()}"
    )


class GraphCache:
    """Process-wide graph cache, injected through the tool context."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._store: TTLStore[Graph] = TTLStore(clock=clock)

    def __len__(self) -> int:
        return len(self._store)

    async def get_or_build(self, key: str, ttl: float, build_fn: BuildFn) -> tuple[Graph, list[str], bool]:
        """Return ``(graph, warnings, from_cache)``.

        ``ttl <= 0`` bypasses the cache entirely.
        """
        if ttl > 0:
            cached = self._store.get(key)
            if cached is not None:
                graph_cache_lookups_total.labels(result="hit").inc()
                _log.debug("graph_cache_hit", key=key)
                return cached, [], True
            graph_cache_lookups_total.labels(result="miss").inc()
        else:
            graph_cache_lookups_total.labels(result="bypass").inc()

        graph, warnings = await build_fn()
        graph.freeze()
        if ttl > 0:
            self._store.set(key, graph, ttl)
            _log.debug("graph_cache_store", key=key, ttl=ttl, nodes=len(graph))
        return graph, warnings, False

    def invalidate(self, key: str | None = None) -> None:
        if key is None:
            self._store.clear()
        else:
            self._store.delete(key)
