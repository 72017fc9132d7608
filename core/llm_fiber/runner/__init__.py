"""Tool runtime."""

from llm_fiber.runner.tool_registry import (
    LocalToolRuntime,
    ToolContext,
    ToolRuntime,
    ToolSpec,
)

__all__ = ["LocalToolRuntime", "ToolContext", "ToolRuntime", "ToolSpec"]
