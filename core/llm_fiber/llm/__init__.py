"""LLM streaming: public events, wire codec, SSE framing, and the provider."""

from llm_fiber.llm.provider import ChatCompletionsProvider
from llm_fiber.llm.sse import DONE, iter_sse_data, read_sse
from llm_fiber.llm.stream_events import (
    EVENT_TYPES,
    ErrorEvent,
    Event,
    MetaEvent,
    Phase,
    SerializedError,
    StatusEvent,
    TokenEvent,
    TokenUsage,
    ToolCallEvent,
    ToolResultEvent,
    is_meta_event,
    is_token_event,
)
from llm_fiber.llm.wire import WireDecodeError, WireEvent, decode_event, encode_event

__all__ = [
    "ChatCompletionsProvider",
    "DONE",
    "iter_sse_data",
    "read_sse",
    "EVENT_TYPES",
    "Event",
    "TokenEvent",
    "ToolCallEvent",
    "ToolResultEvent",
    "MetaEvent",
    "StatusEvent",
    "ErrorEvent",
    "Phase",
    "SerializedError",
    "TokenUsage",
    "is_meta_event",
    "is_token_event",
    "WireEvent",
    "WireDecodeError",
    "encode_event",
    "decode_event",
]
