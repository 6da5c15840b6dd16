"""Tooling layer for schema-validated execution."""

from agent_conductor.tools.gateway import ToolExecutor, ToolRunResult
from agent_conductor.tools.registry import (
    ToolSpec,
    build_registry,
    enabled_tools,
    list_tools,
    needs_confirmation,
    tool_definitions,
)

__all__ = [
    "ToolExecutor",
    "ToolRunResult",
    "ToolSpec",
    "build_registry",
    "enabled_tools",
    "list_tools",
    "needs_confirmation",
    "tool_definitions",
]
