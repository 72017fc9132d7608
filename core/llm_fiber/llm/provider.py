"""OpenAI-compatible chat completions provider (LiteLLM proxy and friends).

The provider knows nothing about tools beyond passing schemas through. Each
streamed vendor chunk is handed to two sinks: the raw chunk as received, and
the compact wire deltas derived from it (token text and usage).
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping
from typing import Any

import httpx

from llm_fiber.llm.sse import DONE, iter_sse_data
from llm_fiber.llm.stream_events import MetaEvent, TokenEvent, TokenUsage
from llm_fiber.llm.wire import WireEvent, encode_event
from llm_fiber.runner.tool_registry import ToolSpec
from llm_fiber.runtime.cancellation import CancellationToken
from llm_fiber.runtime.errors import ProviderHTTPError

logger = logging.getLogger(__name__)

CHAT_COMPLETIONS_PATH = "/v1/chat/completions"
ERROR_BODY_LIMIT = 500

DeltaSink = Callable[[WireEvent], Awaitable[None] | None]
ChunkSink = Callable[[dict[str, Any]], Awaitable[None] | None]


def to_openai_messages(messages: Iterable[Any]) -> list[dict[str, str]]:
    """Map chat messages (models or mappings) to ``{role, content}`` dicts."""
    result: list[dict[str, str]] = []
    for message in messages:
        if isinstance(message, Mapping):
            result.append({"role": message["role"], "content": message["content"]})
        else:
            result.append({"role": message.role, "content": message.content})
    return result


def to_openai_tools(tools: Iterable[ToolSpec]) -> list[dict[str, Any]]:
    """Map tool specs to the OpenAI ``tools`` request schema."""
    return [
        {
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.description,
                "parameters": tool.schema
                or {"type": "object", "properties": {}, "additionalProperties": True},
            },
        }
        for tool in tools
    ]


def build_request_body(
    messages: list[dict[str, Any]],
    *,
    model: str | None = None,
    tools: list[dict[str, Any]] | None = None,
    params: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    """Build a streaming request body. ``params`` win on key collisions."""
    body: dict[str, Any] = {"stream": True, "messages": messages}
    if model:
        body["model"] = model
    if tools:
        body["tools"] = tools
    body.update(params or {})
    return body


def derive_wire_deltas(chunk: Mapping[str, Any]) -> list[WireEvent]:
    """Derive token/meta wire deltas from one vendor chunk (zero, one or two)."""
    deltas: list[WireEvent] = []
    choices = chunk.get("choices")
    choice: Mapping[str, Any] = {}
    if isinstance(choices, list) and choices and isinstance(choices[0], Mapping):
        choice = choices[0]
    delta = choice.get("delta") or {}

    content = delta.get("content") if isinstance(delta, Mapping) else None
    if isinstance(content, str) and content:
        deltas.append(encode_event(TokenEvent(chunk=content)))

    usage = chunk.get("usage") or choice.get("usage")
    if isinstance(usage, Mapping):
        prompt = usage.get("prompt_tokens")
        completion = usage.get("completion_tokens")
        if prompt is not None or completion is not None:
            deltas.append(
                encode_event(MetaEvent(tokens=TokenUsage(prompt=prompt, completion=completion)))
            )
    return deltas


async def _emit(sink: Callable[[Any], Awaitable[None] | None], value: Any) -> None:
    result = sink(value)
    if inspect.isawaitable(result):
        await result


class ChatCompletionsProvider:
    """
    Streams ``/v1/chat/completions`` from an OpenAI-compatible endpoint.

    One instance can serve any number of passes; each ``stream_chat`` call is
    one request.
    """

    def __init__(
        self,
        base_url: str,
        headers: Mapping[str, str] | None = None,
        *,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.headers = dict(headers or {})
        self.timeout = timeout
        self._transport = transport

    @property
    def url(self) -> str:
        return f"{self.base_url}{CHAT_COMPLETIONS_PATH}"

    async def stream_chat(
        self,
        body: Mapping[str, Any],
        *,
        on_delta: DeltaSink,
        on_chunk: ChunkSink,
        cancellation: CancellationToken | None = None,
    ) -> None:
        """
        Run one streaming pass.

        Raises:
            ProviderHTTPError: the endpoint answered with a non-2xx status.
            asyncio.CancelledError: *cancellation* fired; no further bytes are
                processed.
        """
        if cancellation is not None:
            cancellation.raise_if_cancelled()

        headers = {"content-type": "application/json", **self.headers}
        logger.debug(
            "Chat completion request: url=%s model=%s tools=%d",
            self.url,
            body.get("model"),
            len(body.get("tools") or []),
        )

        async with httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout), transport=self._transport
        ) as client:
            async with client.stream("POST", self.url, json=dict(body), headers=headers) as response:
                if not response.is_success:
                    excerpt = await self._read_error_excerpt(response)
                    logger.warning(
                        "Chat completion failed: status=%d body=%r",
                        response.status_code,
                        excerpt[:200],
                    )
                    raise ProviderHTTPError(response.status_code, excerpt)

                async for message in iter_sse_data(response.aiter_bytes()):
                    if cancellation is not None:
                        cancellation.raise_if_cancelled()
                    if message == DONE or not isinstance(message, dict):
                        continue

                    await _emit(on_chunk, message)
                    for wire in derive_wire_deltas(message):
                        await _emit(on_delta, wire)

    @staticmethod
    async def _read_error_excerpt(response: httpx.Response) -> str:
        try:
            raw = await response.aread()
        except httpx.HTTPError:
            return ""
        return raw.decode("utf-8", errors="replace")[:ERROR_BODY_LIMIT]
