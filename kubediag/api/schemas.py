"""Request and response models for the kubediag REST API."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class ToolCallRequest(BaseModel):
    """Body of ``POST /api/v1/tools/{name}``."""

    arguments: dict[str, Any] = Field(default_factory=dict)
    confirm: bool = False


class ToolInfo(BaseModel):
    name: str
    description: str
    toolset: str
    safety: str
    namespaced: bool


class ToolListResponse(BaseModel):
    tools: list[ToolInfo]


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str
    tools: int


class ErrorBody(BaseModel):
    code: str
    message: str
    hint: str = ""
    retryable: bool = False


class ErrorResponse(BaseModel):
    """Structured error envelope returned for every failed request."""

    error: ErrorBody
    details: dict[str, Any] | None = None
