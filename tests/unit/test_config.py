"""Tests for environment configuration and the error taxonomy."""

from __future__ import annotations

import asyncio

import pytest

from kubediag.config import load_config
from kubediag.errors import (
    ClusterAPIError,
    ConfirmationRequired,
    NotFoundError,
    PartialDiscoveryWarning,
    RequestAborted,
    error_envelope,
)


class TestLoadConfig:
    def test_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        for key in ("GRAPH_CACHE_TTL", "TOOL_TIMEOUT", "READ_ONLY", "API_KEYS", "LOG_LEVEL"):
            monkeypatch.delenv(f"KUBEDIAG_{key}", raising=False)
        config = load_config()
        assert config.cache.graph_ttl_seconds == 30
        assert config.tools.timeout_seconds == 30
        assert config.safety.read_only is False
        assert config.safety.disable_destructive is True
        assert config.api.api_keys == []
        assert config.log.level == "info"

    def test_env_overrides_and_clamps(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("KUBEDIAG_GRAPH_CACHE_TTL", "-5")
        monkeypatch.setenv("KUBEDIAG_TOOL_TIMEOUT", "9999")
        monkeypatch.setenv("KUBEDIAG_READ_ONLY", "yes")
        monkeypatch.setenv("KUBEDIAG_API_KEYS", "a=cluster, b=namespace:dev")
        monkeypatch.setenv("KUBEDIAG_ALLOW_DESTRUCTIVE_TOOLS", "k8s.delete")
        config = load_config()
        assert config.cache.graph_ttl_seconds == 0
        assert config.tools.timeout_seconds == 600
        assert config.safety.read_only is True
        assert config.api.api_keys == ["a=cluster", "b=namespace:dev"]
        assert config.safety.allow_destructive_tools == ["k8s.delete"]

    def test_invalid_log_level(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("KUBEDIAG_LOG_LEVEL", "verbose")
        with pytest.raises(ValueError, match="Invalid log level"):
            load_config()


class TestErrors:
    @pytest.mark.parametrize(
        ("status", "code", "http_status", "retryable"),
        [
            (403, "forbidden", 403, False),
            (409, "conflict", 409, True),
            (429, "unavailable", 429, True),
            (503, "unavailable", 502, True),
        ],
    )
    def test_cluster_status_classification(self, status: int, code: str, http_status: int, retryable: bool) -> None:
        exc = ClusterAPIError(status, "reason")
        assert (exc.code, exc.http_status, exc.retryable) == (code, http_status, retryable)

    def test_not_found_message(self) -> None:
        assert NotFoundError("services", "api", "default").message == "services default/api not found"
        assert NotFoundError("nodes", "n1").message == "nodes n1 not found"

    def test_envelope_for_kubediag_error(self) -> None:
        envelope = error_envelope(ConfirmationRequired("k8s.delete"))
        assert envelope == {
            "error": {
                "code": "confirmation_required",
                "message": "confirmation required: set confirm=true to run k8s.delete",
                "hint": "Re-run with confirm=true once the change has been reviewed.",
                "retryable": False,
            }
        }

    def test_envelope_for_timeout_and_cancel(self) -> None:
        assert error_envelope(TimeoutError())["error"]["code"] == "timeout"
        assert error_envelope(asyncio.CancelledError())["error"]["code"] == "canceled"

    def test_aborted_carries_partial(self) -> None:
        exc = RequestAborted("stopped", code="canceled", partial={"graph": {}})
        assert exc.retryable is False
        assert error_envelope(exc, exc.partial)["details"] == {"graph": {}}

    def test_partial_discovery_warning_sorted(self) -> None:
        warning = PartialDiscoveryWarning({"b.io/v1": "x", "a.io/v1": "y"})
        assert str(warning) == "partial discovery: unreachable api groups: a.io/v1, b.io/v1"
