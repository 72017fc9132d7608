"""Compact wire encoding for public events.

The wire form uses short keys and drops optional numbers instead of sending
nulls, so ``decode_event(encode_event(e)) == e`` for every event.

    token        {"t": "token", "c": chunk}
    tool_call    {"t": "tool_call", "n": name, "a": args}
    tool_result  {"t": "tool_result", "n": name, "r": result}
    meta         {"t": "meta", "pt"?: int, "ct"?: int, "$"?: float}
    status       {"t": "status", "p": phase}
    error        {"t": "error", "e": {"n": name, "m": message, "c"?: code}}
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from llm_fiber.llm.stream_events import (
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
)

WireEvent = dict[str, Any]


class WireDecodeError(ValueError):
    """A wire payload does not describe any known event."""


def encode_event(event: Event) -> WireEvent:
    """Encode a public event into its wire form."""
    match event:
        case TokenEvent(chunk=chunk):
            return {"t": "token", "c": chunk}
        case ToolCallEvent(name=name, args=args):
            return {"t": "tool_call", "n": name, "a": args}
        case ToolResultEvent(name=name, result=result):
            return {"t": "tool_result", "n": name, "r": result}
        case MetaEvent(tokens=tokens, cost_usd=cost_usd):
            wire: WireEvent = {"t": "meta"}
            if tokens is not None and tokens.prompt is not None:
                wire["pt"] = tokens.prompt
            if tokens is not None and tokens.completion is not None:
                wire["ct"] = tokens.completion
            if cost_usd is not None:
                wire["$"] = cost_usd
            return wire
        case StatusEvent(phase=phase):
            return {"t": "status", "p": str(phase)}
        case ErrorEvent(error=error):
            payload: dict[str, Any] = {"n": error.name, "m": error.message}
            if error.code is not None:
                payload["c"] = error.code
            return {"t": "error", "e": payload}
    raise TypeError(f"Cannot encode {type(event).__name__} as a wire event")


def decode_event(wire: Mapping[str, Any]) -> Event:
    """Decode a wire payload back into a public event."""
    tag = wire.get("t")
    try:
        match tag:
            case "token":
                return TokenEvent(chunk=wire["c"])
            case "tool_call":
                return ToolCallEvent(name=wire["n"], args=wire.get("a"))
            case "tool_result":
                return ToolResultEvent(name=wire["n"], result=wire.get("r"))
            case "meta":
                tokens = TokenUsage(prompt=wire.get("pt"), completion=wire.get("ct"))
                return MetaEvent(tokens=tokens, cost_usd=wire.get("$"))
            case "status":
                return StatusEvent(phase=Phase(wire["p"]))
            case "error":
                e = wire["e"]
                return ErrorEvent(
                    error=SerializedError(name=e["n"], message=e["m"], code=e.get("c"))
                )
    except (KeyError, TypeError, ValueError) as exc:
        raise WireDecodeError(f"Malformed {tag!r} wire event: {exc}") from exc
    raise WireDecodeError(f"Unknown wire event tag: {tag!r}")
