"""
Command-line interface for llm-fiber.

Usage:
    llm-fiber chat "What is the capital of France?"
    llm-fiber chat "Summarize this" --system "Be terse" --model gpt-4o-mini
    llm-fiber chat "Hi" --base-url http://localhost:4000 --header "authorization=Bearer sk-..."
    llm-fiber chat "Hi" --max-usd 0.05 --json
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

from llm_fiber.config import EngineConfig
from llm_fiber.llm.stream_events import (
    ErrorEvent,
    Event,
    MetaEvent,
    StatusEvent,
    TokenEvent,
    ToolCallEvent,
    ToolResultEvent,
)
from llm_fiber.llm.wire import encode_event
from llm_fiber.observability import configure_logging
from llm_fiber.runtime.budget import Budget, BudgetExceededError, BudgetTracker
from llm_fiber.runtime.engine import BuiltinEngine

logger = logging.getLogger(__name__)


def _parse_key_values(pairs: list[str], *, parse_json: bool = False) -> dict[str, Any]:
    """Turn ``["k=v", ...]`` into a dict; values are JSON-decoded when asked."""
    result: dict[str, Any] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise argparse.ArgumentTypeError(f"Expected KEY=VALUE, got {pair!r}")
        if parse_json:
            try:
                result[key] = json.loads(value)
            except json.JSONDecodeError:
                result[key] = value
        else:
            result[key] = value
    return result


def _render(event: Event, as_json: bool) -> None:
    if as_json:
        print(json.dumps(encode_event(event)), flush=True)
        return

    match event:
        case TokenEvent(chunk=chunk):
            sys.stdout.write(chunk)
            sys.stdout.flush()
        case ToolCallEvent(name=name, args=args):
            print(f"\n[tool_call] {name} {json.dumps(args, default=str)}", file=sys.stderr)
        case ToolResultEvent(name=name, result=result):
            print(f"[tool_result] {name} {json.dumps(result, default=str)}", file=sys.stderr)
        case ErrorEvent(error=error):
            print(f"\n[error] {error.name} ({error.code}): {error.message}", file=sys.stderr)
        case StatusEvent():
            sys.stdout.write("\n")
        case MetaEvent():
            pass


async def _chat(args: argparse.Namespace) -> int:
    config = EngineConfig.from_env(
        base_url=args.base_url,
        default_model=args.model,
        headers=_parse_key_values(args.header),
    )
    engine = BuiltinEngine(config)

    messages = []
    if args.system:
        messages.append({"role": "system", "content": args.system})
    messages.append({"role": "user", "content": args.prompt})

    tracker = BudgetTracker(
        Budget(
            max_usd=args.max_usd,
            max_prompt_tokens=args.max_prompt_tokens,
            max_completion_tokens=args.max_completion_tokens,
        )
    )

    handle = await engine.run(
        {"messages": messages, "params": _parse_key_values(args.param, parse_json=True)}
    )
    exit_code = 1
    async with handle:
        async for event in handle:
            _render(event, args.json)
            try:
                tracker.update(event)
            except BudgetExceededError as e:
                logger.warning("Aborting run %s: %s", handle.id, e)
                print(f"\n[budget] {e}", file=sys.stderr)
                break
            if isinstance(event, StatusEvent) and event.phase == "done":
                exit_code = 0

    counters = tracker.get()
    logger.info(
        "Usage: prompt_tokens=%d completion_tokens=%d usd=%.6f",
        counters.prompt_tokens,
        counters.completion_tokens,
        counters.usd,
    )
    return exit_code


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="llm-fiber",
        description="Stream chat completions from an OpenAI-compatible proxy",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        help="Log level (DEBUG, INFO, WARNING, ...)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    chat = subparsers.add_parser("chat", help="Run one streamed chat turn")
    chat.add_argument("prompt", help="User message")
    chat.add_argument("--system", help="System prompt")
    chat.add_argument("--model", help="Model (defaults to the configured model)")
    chat.add_argument("--base-url", help="Proxy base URL (overrides configuration)")
    chat.add_argument(
        "--header",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Extra request header (repeatable)",
    )
    chat.add_argument(
        "--param",
        action="append",
        default=[],
        metavar="KEY=JSON",
        help="Provider parameter merged into the request body (repeatable)",
    )
    chat.add_argument("--max-usd", type=float, help="Abort when spend exceeds this")
    chat.add_argument("--max-prompt-tokens", type=int, help="Abort above this many prompt tokens")
    chat.add_argument(
        "--max-completion-tokens", type=int, help="Abort above this many completion tokens"
    )
    chat.add_argument("--json", action="store_true", help="Print wire-encoded events, one per line")
    chat.set_defaults(func=_chat)
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(level=args.log_level)

    try:
        return asyncio.run(args.func(args))
    except (ValueError, argparse.ArgumentTypeError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
