"""Configuration data structures."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class KubeConfig:
    """Kubernetes client configuration.

    Empty ``kubeconfig`` means in-cluster config first, then the default
    kubeconfig location.
    """

    kubeconfig: str = ""
    context: str = ""


@dataclass
class SafetyConfig:
    """Which tool safety classes may be registered."""

    read_only: bool = False
    disable_destructive: bool = True
    allow_destructive_tools: list[str] = field(default_factory=list)


@dataclass
class CacheConfig:
    """Graph and discovery cache TTLs, in seconds."""

    graph_ttl_seconds: int = 30
    discovery_ttl_seconds: int = 300


@dataclass
class ToolConfig:
    """Tool invocation limits."""

    timeout_seconds: int = 30


@dataclass
class APIConfig:
    """REST API configuration.

    An empty ``api_keys`` list disables authentication and every caller is
    treated as the local cluster-scoped user.
    """

    port: int = 8080
    api_keys: list[str] = field(default_factory=list)


@dataclass
class LogConfig:
    """Logging configuration."""

    level: str = "info"


@dataclass
class KubeDiagConfig:
    """Top-level kubediag configuration."""

    kube: KubeConfig = field(default_factory=KubeConfig)
    safety: SafetyConfig = field(default_factory=SafetyConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    tools: ToolConfig = field(default_factory=ToolConfig)
    api: APIConfig = field(default_factory=APIConfig)
    log: LogConfig = field(default_factory=LogConfig)
