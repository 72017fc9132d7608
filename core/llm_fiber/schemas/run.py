"""
Run Schema - what a caller hands to the engine for one run.
"""

from typing import Any, Literal

from pydantic import BaseModel, Field

from llm_fiber.runner.tool_registry import ToolSpec


class ChatMessage(BaseModel):
    """One conversation turn."""

    role: Literal["system", "user", "assistant", "tool"]
    content: str

    model_config = {"extra": "forbid"}


class RunInput(BaseModel):
    """
    Input for a single streamed run.

    ``params`` are provider parameters (temperature, max_tokens, ...) merged
    verbatim into the request body, overriding the explicit fields on
    collision.
    """

    model: str | None = None
    messages: list[ChatMessage] = Field(min_length=1)
    tools: list[ToolSpec] = Field(default_factory=list)
    params: dict[str, Any] = Field(default_factory=dict)

    model_config = {"extra": "forbid"}
