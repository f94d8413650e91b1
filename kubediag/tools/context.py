"""Shared tool context and the per-request object handed to handlers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from kubediag.cache.graph_cache import GraphCache
from kubediag.errors import ValidationError
from kubediag.evidence.collector import EvidenceCollector
from kubediag.graph.builder import GraphBuilder
from kubediag.graph.models import Graph
from kubediag.kube.client import ClusterReader
from kubediag.kube.resolver import ResourceResolver
from kubediag.models.analysis import Analysis
from kubediag.models.config import KubeDiagConfig
from kubediag.policy import Authorizer, User
from kubediag.render.renderer import Renderer

if TYPE_CHECKING:
    from kubediag.tools.invoker import ToolInvoker


@dataclass
class ToolContext:
    """Process-wide collaborators, built once at startup.

    The graph cache lives here rather than in a module global so tests can
    substitute a fresh one per case.
    """

    config: KubeDiagConfig
    client: ClusterReader
    resolver: ResourceResolver
    graph_cache: GraphCache
    policy: Authorizer
    renderer: Renderer = field(default_factory=Renderer)
    builder: GraphBuilder = field(init=False)
    collector: EvidenceCollector = field(init=False)
    invoker: ToolInvoker | None = None

    def __post_init__(self) -> None:
        self.builder = GraphBuilder(self.client, self.resolver)
        self.collector = EvidenceCollector(self.client)


@dataclass
class ToolRequest:
    """One invocation: caller, arguments and request-local results.

    ``analysis`` and ``graph`` are request-local and never shared, so the
    invoker can still report them when the request is aborted.
    """

    user: User
    arguments: dict[str, Any]
    context: ToolContext
    tool: str = ""
    confirmed: bool = False
    analysis: Analysis | None = None
    graph: Graph | None = None

    # ------------------------------------------------------------------
    # Arguments
    # ------------------------------------------------------------------

    def str_arg(self, name: str, *, required: bool = False, default: str = "") -> str:
        value = self.arguments.get(name, default)
        if value is None:
            value = default
        if not isinstance(value, str):
            raise ValidationError(f"{name} must be a string")
        value = value.strip()
        if required and not value:
            raise ValidationError(f"{name} is required")
        return value

    def bool_arg(self, name: str, default: bool = False) -> bool:
        value = self.arguments.get(name, default)
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.lower() in ("true", "false"):
            return value.lower() == "true"
        raise ValidationError(f"{name} must be a boolean")

    @property
    def namespace(self) -> str:
        return self.str_arg("namespace", required=True)

    @property
    def cluster_access(self) -> bool:
        return self.context.policy.has_cluster_access(self.user)

    # ------------------------------------------------------------------
    # Request-local results
    # ------------------------------------------------------------------

    def begin_analysis(self) -> Analysis:
        if self.analysis is None:
            self.analysis = Analysis()
        return self.analysis

    def begin_graph(self) -> Graph:
        if self.graph is None:
            self.graph = Graph()
        return self.graph

    def render(self) -> dict[str, Any]:
        return self.context.renderer.render(self.begin_analysis())

    def partial_result(self) -> dict[str, Any]:
        partial: dict[str, Any] = {}
        if self.analysis is not None and not self.analysis.empty:
            partial["analysis"] = self.context.renderer.render(self.analysis)
        if self.graph is not None and len(self.graph):
            partial["graph"] = self.context.renderer.render_value(self.graph.to_dict())
        return partial

    # ------------------------------------------------------------------
    # Nested invocation
    # ------------------------------------------------------------------

    async def call_tool(self, name: str, arguments: dict[str, Any], *, confirm: bool = False) -> dict[str, Any]:
        """Invoke another capability as the same user, through the policy gate."""
        if self.context.invoker is None:
            raise RuntimeError("tool context has no invoker bound")
        return await self.context.invoker.call(self.user, name, arguments, confirm=confirm)
