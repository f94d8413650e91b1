"""kubediag command-line interface.

Commands:
    serve -- run the API server in the foreground
    tools -- list the tools the server exposes
    call  -- invoke one tool and print its analysis
"""

from __future__ import annotations

import json
from typing import Any

import click
import httpx

_DEFAULT_API_URL = "http://localhost:8080"
_TIMEOUT = httpx.Timeout(connect=5.0, read=660.0, write=10.0, pool=5.0)

_SEVERITY_COLORS = {"high": "red", "medium": "yellow", "low": "cyan"}
_SAFETY_COLORS = {"read_only": "green", "write": "yellow", "risky_write": "yellow", "destructive": "red"}


def _severity_color(severity: str) -> str:
    return _SEVERITY_COLORS.get(severity, "white")


def _headers(api_key: str | None) -> dict[str, str]:
    return {"X-API-Key": api_key} if api_key else {}


def _handle_error_response(response: httpx.Response) -> None:
    """Raise a ClickException describing an error envelope response."""
    try:
        body = response.json()
    except Exception:
        raise click.ClickException(f"HTTP {response.status_code}: {response.text[:200]}") from None
    error = body.get("error") if isinstance(body, dict) else None
    if not isinstance(error, dict):
        raise click.ClickException(f"HTTP {response.status_code}: {response.text[:200]}")
    message = f"{error.get('code', 'error')}: {error.get('message', '')}"
    if error.get("hint"):
        message += f"\nhint: {error['hint']}"
    if body.get("details"):
        message += f"\npartial result:\n{json.dumps(body['details'], indent=2)}"
    raise click.ClickException(message)


def _get(base_url: str, path: str, params: dict[str, Any] | None = None, api_key: str | None = None) -> Any:
    url = f"{base_url.rstrip('/')}{path}"
    try:
        with httpx.Client(timeout=_TIMEOUT) as client:
            response = client.get(url, params=params, headers=_headers(api_key))
            response.raise_for_status()
            return response.json()
    except httpx.ConnectError:
        raise click.ClickException(f"Cannot connect to kubediag at {base_url}") from None
    except httpx.HTTPStatusError as exc:
        _handle_error_response(exc.response)


def _post(base_url: str, path: str, body: dict[str, Any], api_key: str | None = None) -> Any:
    url = f"{base_url.rstrip('/')}{path}"
    try:
        with httpx.Client(timeout=_TIMEOUT) as client:
            response = client.post(url, json=body, headers=_headers(api_key))
            response.raise_for_status()
            return response.json()
    except httpx.ConnectError:
        raise click.ClickException(f"Cannot connect to kubediag at {base_url}") from None
    except httpx.HTTPStatusError as exc:
        _handle_error_response(exc.response)


def _parse_arguments(pairs: tuple[str, ...]) -> dict[str, Any]:
    """Turn ``key=value`` pairs into tool arguments; true/false become booleans."""
    arguments: dict[str, Any] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected key=value, got {pair!r}", param_hint="--arg")
        lowered = value.lower()
        arguments[key] = lowered == "true" if lowered in ("true", "false") else value
    return arguments


def _print_analysis(result: dict[str, Any]) -> None:
    causes = result.get("likelyRootCauses", [])
    if causes:
        click.echo(click.style("Likely root causes:", bold=True))
        for cause in causes:
            severity = cause.get("severity", "")
            label = click.style(f"[{severity.upper()}]", fg=_severity_color(severity), bold=True)
            click.echo(f"  {label} {cause.get('summary', '')}")
            click.echo(f"         {cause.get('details', '')}")
    else:
        click.echo(click.style("No likely root causes found.", fg="green"))

    evidence = result.get("evidence", [])
    if evidence:
        click.echo(click.style("\nEvidence:", bold=True))
        for entry in evidence:
            details = entry.get("details")
            rendered = details if isinstance(details, str) else json.dumps(details, sort_keys=True)
            click.echo(f"  - {entry.get('summary', '')}: {rendered}")

    checks = result.get("recommendedNextChecks", [])
    if checks:
        click.echo(click.style("\nNext checks:", bold=True))
        for check in checks:
            click.echo(f"  * {check}")


@click.group()
@click.option(
    "--api-url",
    envvar="KUBEDIAG_API_URL",
    default=_DEFAULT_API_URL,
    show_default=True,
    help="Base URL of the kubediag API.",
)
@click.option("--api-key", envvar="KUBEDIAG_CLIENT_API_KEY", default=None, help="API key sent as X-API-Key.")
@click.pass_context
def cli(ctx: click.Context, api_url: str, api_key: str | None) -> None:
    """kubediag: Kubernetes troubleshooting engine."""
    ctx.ensure_object(dict)
    ctx.obj["api_url"] = api_url
    ctx.obj["api_key"] = api_key


@cli.command()
def serve() -> None:
    """Run the kubediag API server."""
    import asyncio

    from kubediag.app import main

    asyncio.run(main())


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Print raw JSON.")
@click.pass_context
def tools(ctx: click.Context, as_json: bool) -> None:
    """List the tools the server exposes."""
    data = _get(ctx.obj["api_url"], "/api/v1/tools", api_key=ctx.obj["api_key"])
    if as_json:
        click.echo(json.dumps(data, indent=2))
        return
    for tool in data.get("tools", []):
        safety = tool.get("safety", "")
        click.echo(
            f"{tool.get('name', ''):<24} "
            f"{click.style(safety, fg=_SAFETY_COLORS.get(safety, 'white')):<20} "
            f"{tool.get('description', '')}"
        )


@cli.command()
@click.argument("tool")
@click.option("-a", "--arg", "args", multiple=True, help="Tool argument as key=value; repeatable.")
@click.option("--confirm", is_flag=True, help="Confirm a mutating tool.")
@click.option("--json", "as_json", is_flag=True, help="Print raw JSON.")
@click.pass_context
def call(ctx: click.Context, tool: str, args: tuple[str, ...], confirm: bool, as_json: bool) -> None:
    """Invoke TOOL with the given arguments."""
    body = {"arguments": _parse_arguments(args), "confirm": confirm}
    result = _post(ctx.obj["api_url"], f"/api/v1/tools/{tool}", body, api_key=ctx.obj["api_key"])
    if as_json or "likelyRootCauses" not in result:
        click.echo(json.dumps(result, indent=2))
        return
    _print_analysis(result)
