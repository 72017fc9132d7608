"""Run-time support: cancellation, budgets, error taxonomy, and the engine."""

from llm_fiber.runtime.budget import Budget, BudgetCounter, BudgetExceededError, BudgetTracker
from llm_fiber.runtime.cancellation import CancellationToken
from llm_fiber.runtime.errors import (
    ErrorCode,
    LlmError,
    ProviderHTTPError,
    RunAbortedError,
    ToolNotFoundError,
    normalize_error,
)

__all__ = [
    "Budget",
    "BudgetCounter",
    "BudgetExceededError",
    "BudgetTracker",
    "CancellationToken",
    "ErrorCode",
    "LlmError",
    "ProviderHTTPError",
    "RunAbortedError",
    "ToolNotFoundError",
    "normalize_error",
]
