"""
Structured logging with run-scoped trace context.

Every run sets its ``run_id`` once in a ContextVar; each run's producer task
owns a copy of the context, so plain ``logger.info()`` calls anywhere below it
(provider, tool runtime, user tools) carry the id without passing it around.

Two output modes:
- JSON lines for production (``StructuredFormatter``)
- Colorized single lines for development (``HumanReadableFormatter``)
"""

import json
import logging
import os
import re
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

trace_context: ContextVar[dict[str, Any] | None] = ContextVar("trace_context", default=None)

ANSI_ESCAPE_PATTERN = re.compile(r"\x1b\[[0-9;]*m")

# LogRecord attributes copied into JSON output when a caller passes them via extra=
EXTRA_FIELDS = ("event", "tool_name", "status_code", "latency_ms", "model")

THIRD_PARTY_LOGGERS = ("httpx", "httpcore")


def strip_ansi_codes(text: str) -> str:
    """Remove ANSI escape codes from text for clean JSON logging."""
    return ANSI_ESCAPE_PATTERN.sub("", text)


class StructuredFormatter(logging.Formatter):
    """JSON formatter: timestamp, level, logger, message, trace context, extras."""

    def format(self, record: logging.LogRecord) -> str:
        context = trace_context.get() or {}

        log_entry: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": strip_ansi_codes(record.getMessage()),
        }
        log_entry.update(context)

        for name in EXTRA_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                log_entry[name] = value

        if record.exc_info:
            log_entry["exception"] = strip_ansi_codes(self.formatException(record.exc_info))

        return json.dumps(log_entry, default=str)


class HumanReadableFormatter(logging.Formatter):
    """Colorized ``[LEVEL] [run:abcd1234] message`` lines."""

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        context = trace_context.get() or {}
        run_id = context.get("run_id", "")
        prefix = f"[run:{run_id[:8]}] " if run_id else ""

        color = self.COLORS.get(record.levelname, "")
        level = f"{record.levelname:<8}"
        line = f"{color}[{level}]{self.RESET} {prefix}{record.getMessage()}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def configure_logging(
    level: str = "INFO",
    format: str = "auto",  # "json", "human", or "auto"
) -> None:
    """
    Configure root logging once at startup (CLI entry point, app main, tests).

    Args:
        level: Log level name.
        format: "json", "human", or "auto" (JSON when LOG_FORMAT=json or
            ENV=production, otherwise human).
    """
    if format == "auto":
        log_format_env = os.getenv("LOG_FORMAT", "").lower()
        env = os.getenv("ENV", "development").lower()
        format = "json" if log_format_env == "json" or env == "production" else "human"

    formatter: logging.Formatter
    if format == "json":
        formatter = StructuredFormatter()
        os.environ["NO_COLOR"] = "1"
    else:
        formatter = HumanReadableFormatter()

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level.upper())

    # Route HTTP client logs through our handler, and keep them quiet below DEBUG
    for logger_name in THIRD_PARTY_LOGGERS:
        third_party = logging.getLogger(logger_name)
        third_party.handlers.clear()
        third_party.propagate = True
        if root_logger.level > logging.DEBUG:
            third_party.setLevel(logging.WARNING)


def set_trace_context(**kwargs: Any) -> None:
    """Merge fields (run_id, ...) into the current trace context."""
    current = trace_context.get() or {}
    trace_context.set({**current, **kwargs})


def get_trace_context() -> dict:
    """Return a copy of the current trace context (empty if unset)."""
    context = trace_context.get() or {}
    return context.copy()


def clear_trace_context() -> None:
    trace_context.set(None)
