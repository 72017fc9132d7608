"""
Builtin run engine.

A run is at most two passes against the provider:

    PASS1_STREAMING -> FINALIZING                          (no tool calls)
    PASS1_STREAMING -> TOOLS_PENDING -> EXECUTING_TOOLS
                    -> PASS2_STREAMING -> FINALIZING       (tool calls)

and ends in DONE (after a single ``status{done}``) or FAILED (after a single
``error``). Token/meta/status/error deltas from either pass are forwarded as
they arrive. Tool-call fragments are only accumulated on pass one, and tools
are not offered again on pass two, so a run performs one tool round at most.

Events reach the consumer through an unbounded queue drained by async
iteration over the RunHandle. The producer task starts on first iteration.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from collections.abc import AsyncIterator, Awaitable, Callable, Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from llm_fiber.config import EngineConfig
from llm_fiber.llm.provider import (
    ChatCompletionsProvider,
    ChunkSink,
    build_request_body,
    to_openai_messages,
    to_openai_tools,
)
from llm_fiber.llm.stream_events import (
    ErrorEvent,
    Event,
    MetaEvent,
    Phase,
    SerializedError,
    StatusEvent,
    TokenEvent,
    ToolCallEvent,
    ToolResultEvent,
)
from llm_fiber.llm.wire import WireEvent, decode_event
from llm_fiber.observability import set_trace_context
from llm_fiber.runner.tool_registry import ToolContext, ToolRuntime
from llm_fiber.runtime.cancellation import CancellationToken
from llm_fiber.runtime.errors import ErrorCode, normalize_error
from llm_fiber.schemas.run import RunInput

logger = logging.getLogger(__name__)

UNKNOWN_TOOL_NAME = "unknown_tool"

# Event kinds a pass forwards to the consumer unchanged
FORWARDED_EVENTS = (TokenEvent, MetaEvent, StatusEvent, ErrorEvent)


class RunState(StrEnum):
    PASS1_STREAMING = "pass1_streaming"
    TOOLS_PENDING = "tools_pending"
    EXECUTING_TOOLS = "executing_tools"
    PASS2_STREAMING = "pass2_streaming"
    FINALIZING = "finalizing"
    DONE = "done"
    FAILED = "failed"


def safe_json_parse(text: str) -> Any:
    """Parse JSON, falling back to the raw text; the tool may accept it."""
    try:
        return json.loads(text)
    except (json.JSONDecodeError, TypeError):
        return text


@dataclass
class PendingToolCall:
    """A tool call being assembled from streamed fragments."""

    id: str = ""
    name: str | None = None
    args: str = ""


class ToolCallAccumulator:
    """
    Collects tool-call fragments keyed by their positional index.

    Replay order is first-seen order, which providers do not guarantee to
    match numeric index order. The dict's insertion order records it.
    """

    def __init__(self) -> None:
        self._calls: dict[int, PendingToolCall] = {}

    def __len__(self) -> int:
        return len(self._calls)

    def feed(self, chunk: Mapping[str, Any]) -> None:
        """Absorb the ``choices[0].delta.tool_calls`` fragments of one chunk."""
        choices = chunk.get("choices")
        if not isinstance(choices, list) or not choices or not isinstance(choices[0], Mapping):
            return
        delta = choices[0].get("delta") or {}
        fragments = delta.get("tool_calls") if isinstance(delta, Mapping) else None
        if not isinstance(fragments, list):
            return

        for fragment in fragments:
            if not isinstance(fragment, Mapping):
                continue
            index = fragment.get("index")
            if not isinstance(index, int):
                index = 0

            call = self._calls.get(index)
            if call is None:
                call = self._calls[index] = PendingToolCall()

            # Continuation fragments usually omit id and name: first write wins
            if fragment.get("id") and not call.id:
                call.id = fragment["id"]
            function = fragment.get("function")
            if not isinstance(function, Mapping):
                function = {}
            if function.get("name") and call.name is None:
                call.name = function["name"]
            if isinstance(function.get("arguments"), str):
                call.args += function["arguments"]

    def ordered(self) -> list[tuple[int, PendingToolCall]]:
        """(index, call) pairs in first-seen order."""
        return list(self._calls.items())


class RunHandle:
    """
    One orchestrated run: its id, its event stream, and its abort switch.

    Iterate it (once) to receive events::

        handle = await engine.run({"messages": [...]})
        async with handle:
            async for event in handle:
                ...

    Closing the stream before it ends (``aclose()``, or leaving the
    ``async with`` block) aborts the run without a terminal event.
    """

    def __init__(
        self,
        run_id: str,
        cancellation: CancellationToken,
        driver: Callable[[RunHandle], Awaitable[None]],
    ) -> None:
        self.id = run_id
        self.state = RunState.PASS1_STREAMING
        self.cancellation = cancellation
        self._queue: asyncio.Queue[Event] = asyncio.Queue()
        self._driver = driver
        self._task: asyncio.Task | None = None
        self._iterator: AsyncIterator[Event] | None = None
        self._closed_by_consumer = False

    def abort(self) -> None:
        """Cancel the run. Events already emitted stay valid."""
        self.cancellation.cancel()

    @property
    def done(self) -> bool:
        return self.state in (RunState.DONE, RunState.FAILED)

    def __aiter__(self) -> AsyncIterator[Event]:
        if self._iterator is not None:
            raise RuntimeError(f"Run {self.id} event stream can only be consumed once")
        self._iterator = self._iterate()
        return self._iterator

    async def aclose(self) -> None:
        """Close the event stream, aborting the run if it is still live."""
        if self._iterator is not None:
            await self._iterator.aclose()  # type: ignore[attr-defined]
        if self._task is None or not self._task.done():
            if not self.done:
                self._closed_by_consumer = True
                self.abort()
        if self._task is not None:
            await asyncio.wait({self._task})

    async def __aenter__(self) -> RunHandle:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def collect(self) -> list[Event]:
        """Drain the whole stream into a list."""
        return [event async for event in self]

    # -- producer side ------------------------------------------------------

    def _emit(self, event: Event) -> None:
        self._queue.put_nowait(event)

    def _set_state(self, state: RunState) -> None:
        logger.debug("Run %s: %s -> %s", self.id, self.state, state)
        self.state = state

    def _start(self) -> asyncio.Task:
        if self._task is None:
            self._task = asyncio.create_task(self._driver(self), name=f"llm-fiber-run-{self.id}")
        return self._task

    # -- consumer side ------------------------------------------------------

    async def _iterate(self) -> AsyncIterator[Event]:
        task = self._start()
        try:
            while True:
                if not self._queue.empty():
                    yield self._queue.get_nowait()
                    continue
                if task.done():
                    return

                getter = asyncio.ensure_future(self._queue.get())
                try:
                    await asyncio.wait({getter, task}, return_when=asyncio.FIRST_COMPLETED)
                finally:
                    if not getter.done():
                        getter.cancel()
                if getter.done() and not getter.cancelled():
                    yield getter.result()
        finally:
            if not task.done():
                self._closed_by_consumer = True
                self.abort()


class BuiltinEngine:
    """
    Streams chat completions and runs requested tools in between.

    Args:
        config: Where and how to reach the provider.
        tools: Tool runtime used for tool calls. Without one, each tool call
            produces a recoverable ``ToolRuntimeMissing`` error event.
        provider: Override the provider (defaults to one built from config).
    """

    def __init__(
        self,
        config: EngineConfig,
        tools: ToolRuntime | None = None,
        *,
        provider: ChatCompletionsProvider | None = None,
    ):
        self.config = config
        self.tools = tools
        self.provider = provider or ChatCompletionsProvider(
            config.base_url, config.headers, timeout=config.timeout
        )

    async def run(
        self,
        run_input: RunInput | Mapping[str, Any],
        *,
        cancellation: CancellationToken | None = None,
    ) -> RunHandle:
        """
        Start a run and return its handle.

        Args:
            run_input: Messages, optional model, tools and provider params.
            cancellation: Outer token; when it fires the run is aborted.
        """
        if not isinstance(run_input, RunInput):
            run_input = RunInput.model_validate(run_input)

        token = CancellationToken()
        unlink = token.link(cancellation) if cancellation is not None else None

        async def drive(handle: RunHandle) -> None:
            try:
                await self._drive(handle, run_input)
            finally:
                if unlink is not None:
                    unlink()

        return RunHandle(uuid.uuid4().hex, token, drive)

    # -- state machine ------------------------------------------------------

    async def _drive(self, handle: RunHandle, run_input: RunInput) -> None:
        set_trace_context(run_id=handle.id)
        model = run_input.model or self.config.default_model
        logger.info(
            "Run started: model=%s messages=%d tools=%d",
            model,
            len(run_input.messages),
            len(run_input.tools),
        )
        accumulator = ToolCallAccumulator()
        messages = to_openai_messages(run_input.messages)

        unsubscribe: Callable[[], None] | None = None
        try:
            handle.cancellation.raise_if_cancelled()
            # From here on, firing the token cancels whatever this task is awaiting
            task = asyncio.current_task()
            assert task is not None
            unsubscribe = handle.cancellation.on_cancel(task.cancel)

            await self._stream_pass(
                handle,
                build_request_body(
                    messages,
                    model=model,
                    tools=to_openai_tools(run_input.tools),
                    params=run_input.params,
                ),
                on_chunk=accumulator.feed,
            )

            if len(accumulator):
                tool_messages = await self._execute_tools(handle, accumulator)

                handle._set_state(RunState.PASS2_STREAMING)
                await self._stream_pass(
                    handle,
                    build_request_body(
                        messages + tool_messages, model=model, params=run_input.params
                    ),
                    on_chunk=None,
                )

            handle._set_state(RunState.FINALIZING)
            handle._emit(StatusEvent(phase=Phase.DONE))
            handle._set_state(RunState.DONE)
            logger.info("Run finished: tool_calls=%d", len(accumulator))

        except asyncio.CancelledError:
            handle._set_state(RunState.FAILED)
            if handle._closed_by_consumer or not handle.cancellation.cancelled:
                logger.info("Run cancelled")
                raise
            logger.info("Run aborted")
            handle._emit(
                ErrorEvent(
                    error=SerializedError(
                        name="RunAborted", message="Run aborted", code=ErrorCode.ABORTED
                    )
                )
            )

        except Exception as e:
            handle._set_state(RunState.FAILED)
            normalized = normalize_error(e)
            logger.warning("Run failed (%s): %s", normalized.code, normalized.message)
            handle._emit(
                ErrorEvent(
                    error=SerializedError(
                        name=type(e).__name__,
                        message=normalized.message,
                        code=normalized.code,
                    )
                )
            )

        finally:
            if unsubscribe is not None:
                unsubscribe()

    async def _stream_pass(
        self,
        handle: RunHandle,
        body: dict[str, Any],
        on_chunk: ChunkSink | None,
    ) -> None:
        def forward(wire: WireEvent) -> None:
            event = decode_event(wire)
            if isinstance(event, FORWARDED_EVENTS):
                handle._emit(event)

        await self.provider.stream_chat(
            body,
            on_delta=forward,
            on_chunk=on_chunk or _ignore_chunk,
            cancellation=handle.cancellation,
        )

    async def _execute_tools(
        self, handle: RunHandle, accumulator: ToolCallAccumulator
    ) -> list[dict[str, str]]:
        """Run every accumulated call in first-seen order; return pass-two tool messages."""
        handle._set_state(RunState.TOOLS_PENDING)
        handle._set_state(RunState.EXECUTING_TOOLS)
        tool_messages: list[dict[str, str]] = []

        for index, call in accumulator.ordered():
            name = call.name or UNKNOWN_TOOL_NAME
            args = safe_json_parse(call.args)
            handle._emit(ToolCallEvent(name=name, args=args))

            if self.tools is None:
                logger.warning("Tool '%s' requested but no tool runtime is configured", name)
                handle._emit(
                    ErrorEvent(
                        error=SerializedError(
                            name="ToolRuntimeMissing",
                            message=f'Tool "{name}" was requested but no tool runtime is configured',
                            code=ErrorCode.TOOL_FAILURE,
                        )
                    )
                )
            else:
                logger.debug("Executing tool '%s' (index=%d id=%s)", name, index, call.id)
                try:
                    result = await self.tools.call(
                        name, args, ToolContext(run_id=handle.id, cancellation=handle.cancellation)
                    )
                except asyncio.CancelledError as e:
                    # Only an abort of the run itself propagates; a tool that
                    # cancels on its own is just a failed tool
                    task = asyncio.current_task()
                    if handle.cancellation.cancelled or (task is not None and task.cancelling()):
                        raise
                    _emit_tool_failure(handle, name, str(e) or "Tool call was cancelled")
                except Exception as e:
                    _emit_tool_failure(handle, name, str(e))
                else:
                    handle._emit(ToolResultEvent(name=name, result=result))

            envelope: dict[str, Any] = {"ok": True}
            if call.args:
                envelope["input"] = args
            tool_messages.append({"role": "tool", "content": json.dumps(envelope)})

        return tool_messages


def _emit_tool_failure(handle: RunHandle, name: str, message: str) -> None:
    logger.warning("Tool '%s' failed: %s", name, message)
    handle._emit(
        ErrorEvent(
            error=SerializedError(
                name="ToolExecutionError", message=message, code=ErrorCode.TOOL_FAILURE
            )
        )
    )


def _ignore_chunk(chunk: dict[str, Any]) -> None:
    return None
