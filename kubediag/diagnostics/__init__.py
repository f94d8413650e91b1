"""Diagnostic handlers and the k8s toolset registration."""

from kubediag.diagnostics.toolset import K8S_TOOLS, register_k8s_tools

__all__ = ["K8S_TOOLS", "register_k8s_tools"]
