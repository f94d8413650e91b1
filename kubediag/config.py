"""Configuration loading from environment variables."""

from __future__ import annotations

import os

from kubediag.models.config import (
    APIConfig,
    CacheConfig,
    KubeConfig,
    KubeDiagConfig,
    LogConfig,
    SafetyConfig,
    ToolConfig,
)


def _env(key: str, default: str = "") -> str:
    return os.environ.get(f"KUBEDIAG_{key}", default)


def _env_bool(key: str, default: bool = False) -> bool:
    val = _env(key, str(default).lower())
    return val.lower() in ("true", "1", "yes")


def _env_int(key: str, default: int, min_val: int | None = None, max_val: int | None = None) -> int:
    val = int(_env(key, str(default)))
    if min_val is not None:
        val = max(val, min_val)
    if max_val is not None:
        val = min(val, max_val)
    return val


def _env_list(key: str) -> list[str]:
    return [item.strip() for item in _env(key).split(",") if item.strip()]


def _validate_log_level(value: str) -> str:
    valid = {"debug", "info", "warning", "error"}
    if value.lower() not in valid:
        raise ValueError(f"Invalid log level: {value}. Must be one of {valid}")
    return value.lower()


def load_config() -> KubeDiagConfig:
    """Load configuration from KUBEDIAG_* environment variables."""
    return KubeDiagConfig(
        kube=KubeConfig(
            kubeconfig=_env("KUBECONFIG", ""),
            context=_env("CONTEXT", ""),
        ),
        safety=SafetyConfig(
            read_only=_env_bool("READ_ONLY", False),
            disable_destructive=_env_bool("DISABLE_DESTRUCTIVE", True),
            allow_destructive_tools=_env_list("ALLOW_DESTRUCTIVE_TOOLS"),
        ),
        cache=CacheConfig(
            graph_ttl_seconds=_env_int("GRAPH_CACHE_TTL", 30, min_val=0, max_val=3600),
            discovery_ttl_seconds=_env_int("DISCOVERY_TTL", 300, min_val=0, max_val=86400),
        ),
        tools=ToolConfig(
            timeout_seconds=_env_int("TOOL_TIMEOUT", 30, min_val=1, max_val=600),
        ),
        api=APIConfig(
            port=_env_int("API_PORT", 8080, min_val=1024, max_val=65535),
            api_keys=_env_list("API_KEYS"),
        ),
        log=LogConfig(
            level=_validate_log_level(_env("LOG_LEVEL", "info")),
        ),
    )
