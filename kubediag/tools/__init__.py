"""Tool registry, invocation and request context."""

from kubediag.tools.context import ToolContext, ToolRequest
from kubediag.tools.invoker import ToolInvoker
from kubediag.tools.registry import Safety, ToolRegistry, ToolSpec

__all__ = ["Safety", "ToolContext", "ToolInvoker", "ToolRegistry", "ToolRequest", "ToolSpec"]
