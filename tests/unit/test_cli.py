"""Tests for the kubediag CLI.

HTTP helpers are patched out; the commands are driven through click's
CliRunner and checked on their output and the requests they would send.
"""

from __future__ import annotations

from typing import Any
from unittest.mock import patch

import click
import httpx
import pytest
from click.testing import CliRunner

from kubediag.cli.main import _handle_error_response, _parse_arguments, cli

_ANALYSIS: dict[str, Any] = {
    "likelyRootCauses": [{"summary": "CrashLoopBackOff", "details": "pod api-1 restarting", "severity": "high"}],
    "evidence": [{"summary": "owners api-1", "details": ["ReplicaSet/api-rs", "Deployment/api"]}],
    "recommendedNextChecks": ["kubectl logs api-1 --previous"],
    "resourcesExamined": ["pods/default/api-1"],
}


def _response(status: int, body: Any) -> httpx.Response:
    request = httpx.Request("POST", "http://localhost:8080/api/v1/tools/x")
    if isinstance(body, str):
        return httpx.Response(status, text=body, request=request)
    return httpx.Response(status, json=body, request=request)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class TestParseArguments:
    def test_pairs_and_booleans(self) -> None:
        assert _parse_arguments(("namespace=default", "include_mesh=TRUE", "selector=a=b")) == {
            "namespace": "default",
            "include_mesh": True,
            "selector": "a=b",
        }

    @pytest.mark.parametrize("pair", ["namespace", "=default"])
    def test_malformed_pair(self, pair: str) -> None:
        with pytest.raises(click.BadParameter):
            _parse_arguments((pair,))


class TestHandleErrorResponse:
    def test_envelope_with_hint_and_details(self) -> None:
        body = {
            "error": {"code": "timeout", "message": "too slow", "hint": "Raise the timeout.", "retryable": True},
            "details": {"analysis": {"evidence": []}},
        }
        with pytest.raises(click.ClickException) as excinfo:
            _handle_error_response(_response(504, body))
        message = excinfo.value.message
        assert message.startswith("timeout: too slow\nhint: Raise the timeout.")
        assert "partial result:" in message

    def test_non_json_body(self) -> None:
        with pytest.raises(click.ClickException, match="HTTP 502: bad gateway"):
            _handle_error_response(_response(502, "bad gateway"))

    def test_json_without_envelope(self) -> None:
        with pytest.raises(click.ClickException, match="HTTP 500"):
            _handle_error_response(_response(500, ["unexpected"]))


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


class TestCallCommand:
    def test_prints_analysis(self) -> None:
        runner = CliRunner()
        with patch("kubediag.cli.main._post", return_value=_ANALYSIS) as post:
            result = runner.invoke(cli, ["call", "k8s.crashloop_debug", "-a", "namespace=default"])
        assert result.exit_code == 0, result.output
        assert "[HIGH]" in result.output
        assert "CrashLoopBackOff" in result.output
        assert "kubectl logs api-1 --previous" in result.output
        post.assert_called_once_with(
            "http://localhost:8080",
            "/api/v1/tools/k8s.crashloop_debug",
            {"arguments": {"namespace": "default"}, "confirm": False},
            api_key=None,
        )

    def test_confirm_and_api_key(self) -> None:
        runner = CliRunner()
        deleted = {"deleted": "pods/default/api-1", "status": "Success"}
        with patch("kubediag.cli.main._post", return_value=deleted) as post:
            result = runner.invoke(
                cli,
                ["--api-key", "k1", "call", "k8s.delete", "-a", "kind=pod", "-a", "name=api-1", "--confirm"],
            )
        assert result.exit_code == 0, result.output
        assert '"deleted": "pods/default/api-1"' in result.output
        _, _, body = post.call_args.args
        assert body["confirm"] is True
        assert post.call_args.kwargs == {"api_key": "k1"}

    def test_healthy_analysis(self) -> None:
        runner = CliRunner()
        with patch("kubediag.cli.main._post", return_value={**_ANALYSIS, "likelyRootCauses": []}):
            result = runner.invoke(cli, ["call", "k8s.crashloop_debug", "-a", "namespace=default"])
        assert "No likely root causes found." in result.output

    def test_bad_argument_exits_2(self) -> None:
        result = CliRunner().invoke(cli, ["call", "k8s.graph", "-a", "oops"])
        assert result.exit_code == 2


class TestToolsCommand:
    def test_lists_tools(self) -> None:
        data = {
            "tools": [
                {"name": "k8s.graph", "safety": "read_only", "description": "Build a graph"},
                {"name": "k8s.delete", "safety": "destructive", "description": "Delete an object"},
            ]
        }
        runner = CliRunner()
        with patch("kubediag.cli.main._get", return_value=data) as get:
            result = runner.invoke(cli, ["--api-url", "http://diag:9000", "tools"])
        assert result.exit_code == 0, result.output
        assert "k8s.graph" in result.output
        assert "Delete an object" in result.output
        get.assert_called_once_with("http://diag:9000", "/api/v1/tools", api_key=None)

    def test_server_error_surfaces_message(self) -> None:
        runner = CliRunner()
        with patch("kubediag.cli.main._get", side_effect=click.ClickException("Cannot connect to kubediag")):
            result = runner.invoke(cli, ["tools"])
        assert result.exit_code == 1
        assert "Cannot connect to kubediag" in result.output
