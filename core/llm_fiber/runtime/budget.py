"""Spend and token budget tracking.

Counters only move on ``MetaEvent``s, which is where providers report usage.
The tracker raises; deciding whether that ends a run is up to whoever is
consuming the stream.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Literal

from llm_fiber.llm.stream_events import Event, MetaEvent

logger = logging.getLogger(__name__)

BudgetKind = Literal["usd", "prompt_tokens", "completion_tokens"]


@dataclass(frozen=True)
class Budget:
    """Optional ceilings. ``None`` means unbounded."""

    max_usd: float | None = None
    max_prompt_tokens: int | None = None
    max_completion_tokens: int | None = None


@dataclass
class BudgetCounter:
    usd: float = 0.0
    prompt_tokens: int = 0
    completion_tokens: int = 0


class BudgetExceededError(Exception):
    """A counter went past its ceiling."""

    def __init__(self, kind: BudgetKind, value: float, limit: float):
        self.kind = kind
        self.value = value
        self.limit = limit
        super().__init__(f"Budget exceeded for {kind}: {value} > {limit}")


class BudgetTracker:
    """Accumulates usage from meta events and enforces a Budget."""

    def __init__(self, budget: Budget | None = None):
        self.budget = budget or Budget()
        self._counters = BudgetCounter()

    def get(self) -> BudgetCounter:
        """Return a snapshot of the counters."""
        return replace(self._counters)

    def update(self, event: Event) -> None:
        """Apply a meta event; raises BudgetExceededError on the first ceiling crossed."""
        if not isinstance(event, MetaEvent):
            return

        if event.cost_usd is not None:
            self._add("usd", event.cost_usd, self.budget.max_usd)
        if event.tokens is not None and event.tokens.prompt is not None:
            self._add("prompt_tokens", event.tokens.prompt, self.budget.max_prompt_tokens)
        if event.tokens is not None and event.tokens.completion is not None:
            self._add(
                "completion_tokens", event.tokens.completion, self.budget.max_completion_tokens
            )

    def _add(self, kind: BudgetKind, amount: float, limit: float | None) -> None:
        if amount < 0:
            logger.warning("Ignoring negative %s increment: %s", kind, amount)
            return
        value = getattr(self._counters, kind) + amount
        setattr(self._counters, kind, value)
        if limit is not None and value > limit:
            raise BudgetExceededError(kind, value, limit)
