"""llm-fiber: stream chat completions as typed events, running tool calls in between."""

from llm_fiber.config import EngineConfig
from llm_fiber.llm import (
    ErrorEvent,
    Event,
    MetaEvent,
    StatusEvent,
    TokenEvent,
    ToolCallEvent,
    ToolResultEvent,
    decode_event,
    encode_event,
)
from llm_fiber.runner import LocalToolRuntime, ToolContext, ToolSpec
from llm_fiber.runtime import (
    Budget,
    BudgetExceededError,
    BudgetTracker,
    CancellationToken,
    ErrorCode,
    LlmError,
    normalize_error,
)
from llm_fiber.runtime.engine import BuiltinEngine, RunHandle
from llm_fiber.schemas import ChatMessage, RunInput

__all__ = [
    "EngineConfig",
    "BuiltinEngine",
    "RunHandle",
    "RunInput",
    "ChatMessage",
    "Event",
    "TokenEvent",
    "ToolCallEvent",
    "ToolResultEvent",
    "MetaEvent",
    "StatusEvent",
    "ErrorEvent",
    "encode_event",
    "decode_event",
    "LocalToolRuntime",
    "ToolContext",
    "ToolSpec",
    "Budget",
    "BudgetTracker",
    "BudgetExceededError",
    "CancellationToken",
    "ErrorCode",
    "LlmError",
    "normalize_error",
]
