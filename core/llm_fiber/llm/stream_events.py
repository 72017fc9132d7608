"""Public event types for streamed runs.

Defines a discriminated union of frozen dataclasses representing every event
a run can hand to its consumer. These types form the contract between the
run engine, the wire codec, the budget tracker, and whatever renders the
stream.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Literal


class Phase(StrEnum):
    """Coarse run-progress marker carried by StatusEvent."""

    PLAN = "plan"
    EXECUTE = "execute"
    CRITIC = "critic"
    DONE = "done"


@dataclass(frozen=True)
class SerializedError:
    """In-band error payload."""

    name: str
    message: str
    code: str | None = None


@dataclass(frozen=True)
class TokenUsage:
    """Token counts reported by the provider. Either side may be unreported."""

    prompt: int | None = None
    completion: int | None = None

    @property
    def is_empty(self) -> bool:
        return self.prompt is None and self.completion is None


@dataclass(frozen=True)
class TokenEvent:
    """An incremental piece of assistant output."""

    chunk: str = ""
    type: Literal["token"] = "token"


@dataclass(frozen=True)
class ToolCallEvent:
    """The model requested a tool; name and args are fully assembled."""

    name: str = ""
    args: Any = None
    type: Literal["tool_call"] = "tool_call"


@dataclass(frozen=True)
class ToolResultEvent:
    """Outcome of executing a tool call."""

    name: str = ""
    result: Any = None
    type: Literal["tool_result"] = "tool_result"


@dataclass(frozen=True)
class MetaEvent:
    """Usage/cost accounting. Every field is independently optional."""

    tokens: TokenUsage | None = None
    cost_usd: float | None = None
    type: Literal["meta"] = "meta"

    def __post_init__(self) -> None:
        # A usage block with no counts is the same as no usage block
        if self.tokens is not None and self.tokens.is_empty:
            object.__setattr__(self, "tokens", None)


@dataclass(frozen=True)
class StatusEvent:
    """Run-progress marker."""

    phase: Phase = Phase.DONE
    type: Literal["status"] = "status"

    def __post_init__(self) -> None:
        object.__setattr__(self, "phase", Phase(self.phase))


@dataclass(frozen=True)
class ErrorEvent:
    """A terminal or recoverable failure signalled in-band."""

    error: SerializedError = SerializedError(name="Error", message="")
    type: Literal["error"] = "error"


# Discriminated union of all public event types
Event = TokenEvent | ToolCallEvent | ToolResultEvent | MetaEvent | StatusEvent | ErrorEvent

EVENT_TYPES: tuple[type, ...] = (
    TokenEvent,
    ToolCallEvent,
    ToolResultEvent,
    MetaEvent,
    StatusEvent,
    ErrorEvent,
)


def is_token_event(event: Event) -> bool:
    return isinstance(event, TokenEvent)


def is_meta_event(event: Event) -> bool:
    return isinstance(event, MetaEvent)
