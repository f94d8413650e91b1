"""Server bootstrap for kubediag.

Builds the long-lived collaborators once, in dependency order:

    config -> logging -> cluster client -> resolver -> graph cache
           -> tool registry and invoker -> uvicorn

and tears them down in the opposite order.  A failure while closing one
collaborator is logged and the rest are still released.
"""

from __future__ import annotations

import asyncio
import signal
from typing import TYPE_CHECKING

from kubediag.config import load_config
from kubediag.models.config import KubeDiagConfig
from kubediag.observability.logging import get_logger, setup_logging

if TYPE_CHECKING:
    import structlog
    import uvicorn  # type: ignore[import-untyped]

    from kubediag.cache.graph_cache import GraphCache
    from kubediag.kube.client import ClusterClient
    from kubediag.tools.invoker import ToolInvoker

_STOP_TIMEOUT_SECONDS = 15
_LISTEN_HOST = "0.0.0.0"


class StartupError(Exception):
    """A collaborator the server cannot run without failed to initialise."""

    def __init__(self, stage: str, cause: Exception) -> None:
        super().__init__(f"kubediag startup failed at {stage}: {cause}")
        self.stage = stage
        self.cause = cause


class KubeDiagServer:
    """Owns the cluster client, caches, invoker and HTTP server.

    ``stop()`` is idempotent and safe on a server that never started.
    """

    def __init__(self, config: KubeDiagConfig | None = None) -> None:
        self.config = config
        self.client: ClusterClient | None = None
        self.graph_cache: GraphCache | None = None
        self.invoker: ToolInvoker | None = None
        self._http: uvicorn.Server | None = None
        self._serve_task: asyncio.Task[None] | None = None
        self._log: structlog.stdlib.BoundLogger = get_logger("server")
        self._started = False

    @property
    def running(self) -> bool:
        return self._started and self._serve_task is not None and not self._serve_task.done()

    async def start(self) -> None:
        if self.config is None:
            self.config = load_config()
        setup_logging(self.config.log.level)
        self._log = get_logger("server")

        from kubediag import __version__

        self._log.info("kubediag_starting", version=__version__, read_only=self.config.safety.read_only)
        self.client = await self._connect(self.config)
        self.invoker = self._build_invoker(self.config, self.client)
        self._serve_task = self._launch_http(self.config, self.invoker)
        self._started = True
        self._log.info("kubediag_started", port=self.config.api.port)

    async def _connect(self, config: KubeDiagConfig) -> ClusterClient:
        from kubediag.kube.client import ClusterClient

        try:
            return await ClusterClient.from_config(config.kube)
        except Exception as exc:
            raise StartupError("cluster client", exc) from exc

    def _build_invoker(self, config: KubeDiagConfig, client: ClusterClient) -> ToolInvoker:
        from kubediag.cache.graph_cache import GraphCache
        from kubediag.diagnostics import register_k8s_tools
        from kubediag.kube.resolver import CachedDiscovery, ResourceResolver
        from kubediag.policy import Authorizer, parse_api_keys
        from kubediag.tools.context import ToolContext
        from kubediag.tools.invoker import ToolInvoker
        from kubediag.tools.registry import ToolRegistry

        try:
            policy = Authorizer(parse_api_keys(config.api.api_keys))
        except ValueError as exc:
            raise StartupError("api keys", exc) from exc

        self.graph_cache = GraphCache()
        registry = ToolRegistry(config.safety)
        tools = register_k8s_tools(registry)
        context = ToolContext(
            config=config,
            client=client,
            resolver=ResourceResolver(CachedDiscovery(client, ttl_seconds=config.cache.discovery_ttl_seconds)),
            graph_cache=self.graph_cache,
            policy=policy,
        )
        self._log.info(
            "tools_ready",
            tools=tools,
            graph_ttl=config.cache.graph_ttl_seconds,
            discovery_ttl=config.cache.discovery_ttl_seconds,
            authenticated=bool(config.api.api_keys),
        )
        return ToolInvoker(registry, policy, context, timeout_seconds=float(config.tools.timeout_seconds))

    def _launch_http(self, config: KubeDiagConfig, invoker: ToolInvoker) -> asyncio.Task[None]:
        import uvicorn

        from kubediag.api import create_app

        try:
            web_app = create_app(invoker=invoker, policy=invoker.context.policy, config=config)
            # log_config=None leaves structlog as the only log configuration
            self._http = uvicorn.Server(
                uvicorn.Config(app=web_app, host=_LISTEN_HOST, port=config.api.port, log_config=None, access_log=False)
            )
        except Exception as exc:
            raise StartupError("http server", exc) from exc
        return asyncio.create_task(self._http.serve(), name="kubediag-http")

    async def stop(self) -> None:
        if not self._started and self.client is None:
            return
        self._started = False
        self._log.info("kubediag_stopping")

        if self._http is not None:
            self._http.should_exit = True
        if self._serve_task is not None and not self._serve_task.done():
            try:
                await asyncio.wait_for(self._serve_task, timeout=_STOP_TIMEOUT_SECONDS)
            except TimeoutError:
                self._log.warning("http_stop_timeout", timeout=_STOP_TIMEOUT_SECONDS)
            except Exception as exc:
                self._log.error("http_stop_failed", error=str(exc))
        self._serve_task = None
        self._http = None

        self.invoker = None
        if self.graph_cache is not None:
            self.graph_cache.invalidate()
            self.graph_cache = None
        if self.client is not None:
            try:
                await self.client.close()
            except Exception as exc:
                self._log.debug("client_close_failed", error=str(exc))
            self.client = None
        self._log.info("kubediag_stopped")


async def main() -> None:
    """Run the server until SIGTERM/SIGINT or until uvicorn exits."""
    server = KubeDiagServer()
    stop_requested = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, stop_requested.set)

    try:
        await server.start()
        while server.running and not stop_requested.is_set():
            try:
                await asyncio.wait_for(stop_requested.wait(), timeout=1)
            except TimeoutError:
                continue
    except StartupError as exc:
        get_logger("server").critical("kubediag_startup_failed", stage=exc.stage, error=str(exc.cause))
        raise SystemExit(1) from exc
    finally:
        await server.stop()
