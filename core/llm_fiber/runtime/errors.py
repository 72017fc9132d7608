"""Error taxonomy and normalization.

Every failure surfaced to a consumer is reduced to an ``LlmError`` carrying one
``ErrorCode``. ``normalize_error`` accepts anything that was raised (or any
error-shaped value received from elsewhere) and picks the code.
"""

from __future__ import annotations

import asyncio
import json
import re
from collections.abc import Mapping
from enum import StrEnum
from typing import Any

import httpx


class ErrorCode(StrEnum):
    """Classification codes for surfaced failures."""

    RATE_LIMIT = "rate_limit"
    AUTH = "auth"
    CONTENT_POLICY = "content_policy"
    TOOL_FAILURE = "tool_failure"
    NETWORK = "network"
    PARSE = "parse"
    TIMEOUT = "timeout"
    ABORTED = "aborted"
    UNKNOWN = "unknown"


class LlmError(Exception):
    """A normalized failure."""

    def __init__(self, code: ErrorCode | str, message: str, cause: Any = None):
        super().__init__(message)
        self.code = ErrorCode(code)
        self.message = message
        self.cause = cause

    def __repr__(self) -> str:
        return f"LlmError(code={self.code.value!r}, message={self.message!r})"


class ProviderHTTPError(Exception):
    """The provider answered with a non-success status."""

    def __init__(self, status_code: int, body: str = ""):
        self.status_code = status_code
        self.body = body
        message = f"Provider error {status_code}"
        if body:
            message = f"{message}: {body}"
        super().__init__(message)


class RunAbortedError(Exception):
    """A run was cancelled before it finished."""


class ToolNotFoundError(LookupError):
    """No implementation is registered for a tool name."""


# Checked in order; the first match wins.
_MESSAGE_RULES: tuple[tuple[re.Pattern[str], ErrorCode], ...] = (
    (re.compile(r"rate", re.IGNORECASE), ErrorCode.RATE_LIMIT),
    (re.compile(r"auth|key|unauthor", re.IGNORECASE), ErrorCode.AUTH),
    (re.compile(r"policy|content", re.IGNORECASE), ErrorCode.CONTENT_POLICY),
    (re.compile(r"timeout", re.IGNORECASE), ErrorCode.TIMEOUT),
    (re.compile(r"network|fetch|socket", re.IGNORECASE), ErrorCode.NETWORK),
    (re.compile(r"parse|json", re.IGNORECASE), ErrorCode.PARSE),
)


def _is_abort(value: Any) -> bool:
    if isinstance(value, asyncio.CancelledError | RunAbortedError):
        return True
    if isinstance(value, Mapping):
        return value.get("name") == "AbortError"
    return getattr(value, "name", None) == "AbortError"


def _extract_message(value: Any) -> str:
    if isinstance(value, str):
        return value or "Unknown error"
    if isinstance(value, Mapping):
        message = value.get("message")
    elif isinstance(value, BaseException):
        message = getattr(value, "message", None) or str(value)
    else:
        message = getattr(value, "message", None)
    return str(message) if message else "Unknown error"


def _code_from_type(value: Any) -> ErrorCode | None:
    if isinstance(value, ProviderHTTPError):
        if value.status_code == 429:
            return ErrorCode.RATE_LIMIT
        if value.status_code in (401, 403):
            return ErrorCode.AUTH
        return None
    if isinstance(value, TimeoutError | httpx.TimeoutException):
        return ErrorCode.TIMEOUT
    if isinstance(value, httpx.NetworkError):
        return ErrorCode.NETWORK
    if isinstance(value, json.JSONDecodeError):
        return ErrorCode.PARSE
    return None


def classify_message(message: str) -> ErrorCode:
    """Classify a failure by its wording."""
    for pattern, code in _MESSAGE_RULES:
        if pattern.search(message):
            return code
    return ErrorCode.UNKNOWN


def normalize_error(value: Any) -> LlmError:
    """Best-effort normalization of an arbitrary failure value."""
    if isinstance(value, LlmError):
        return value
    if _is_abort(value):
        return LlmError(ErrorCode.ABORTED, "Operation aborted", value)

    message = _extract_message(value)
    code = _code_from_type(value) or classify_message(message)
    return LlmError(code, message, value)
