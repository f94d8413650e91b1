"""REST routes: health, tool listing and tool invocation."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Header, Request

from kubediag.api.schemas import HealthResponse, ToolCallRequest, ToolInfo, ToolListResponse
from kubediag.observability.logging import bind_request, clear_request

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health(request: Request) -> HealthResponse:
    from kubediag import __version__

    return HealthResponse(version=__version__, tools=len(request.app.state.invoker.registry))


@router.get("/tools", response_model=ToolListResponse)
async def list_tools(request: Request) -> ToolListResponse:
    registry = request.app.state.invoker.registry
    return ToolListResponse(
        tools=[
            ToolInfo(
                name=spec.name,
                description=spec.description,
                toolset=spec.toolset,
                safety=str(spec.safety),
                namespaced=spec.namespaced,
            )
            for spec in registry.specs()
        ]
    )


@router.post("/tools/{name}")
async def call_tool(
    name: str,
    body: ToolCallRequest,
    request: Request,
    x_api_key: str | None = Header(default=None),
) -> dict[str, Any]:
    """Invoke one tool as the user the API key maps to.

    Errors propagate to the exception handlers in :mod:`kubediag.api.app`,
    which render the error envelope.
    """
    user = request.app.state.policy.authenticate(x_api_key)
    bind_request(tool=name, user=user.id)
    try:
        return await request.app.state.invoker.call(user, name, body.arguments, confirm=body.confirm)
    finally:
        clear_request()
