"""Tests for the chat completions provider adapter."""

import asyncio
import json

import httpx
import pytest

from llm_fiber.llm.provider import (
    ChatCompletionsProvider,
    build_request_body,
    derive_wire_deltas,
    to_openai_messages,
    to_openai_tools,
)
from llm_fiber.runner.tool_registry import ToolSpec
from llm_fiber.runtime.cancellation import CancellationToken
from llm_fiber.runtime.errors import ProviderHTTPError
from llm_fiber.schemas.run import ChatMessage


def sse(*payloads) -> bytes:
    """Encode payloads as an SSE body terminated by [DONE]."""
    frames = [f"data: {json.dumps(p)}\n\n" for p in payloads]
    frames.append("data: [DONE]\n\n")
    return "".join(frames).encode()


def content_chunk(text: str) -> dict:
    return {"choices": [{"delta": {"content": text}}]}


class Recorder:
    def __init__(self):
        self.deltas: list[dict] = []
        self.chunks: list[dict] = []

    def on_delta(self, wire):
        self.deltas.append(wire)

    def on_chunk(self, chunk):
        self.chunks.append(chunk)


# ---------------------------------------------------------------------------
# Request building
# ---------------------------------------------------------------------------


class TestRequestBody:
    def test_minimal_body(self):
        body = build_request_body([{"role": "user", "content": "hi"}])
        assert body == {"stream": True, "messages": [{"role": "user", "content": "hi"}]}

    def test_model_and_tools(self):
        tools = to_openai_tools([ToolSpec(name="search")])
        body = build_request_body([], model="gpt-4o", tools=tools)
        assert body["model"] == "gpt-4o"
        assert body["tools"][0]["function"]["name"] == "search"

    def test_empty_tools_omitted(self):
        assert "tools" not in build_request_body([], tools=[])

    def test_params_win_on_collision(self):
        body = build_request_body([], model="a", params={"model": "b", "temperature": 0.2})
        assert body["model"] == "b"
        assert body["temperature"] == 0.2

    def test_tool_schema_defaults_to_open_object(self):
        (tool,) = to_openai_tools([ToolSpec(name="echo", description="Echo back")])
        assert tool == {
            "type": "function",
            "function": {
                "name": "echo",
                "description": "Echo back",
                "parameters": {"type": "object", "properties": {}, "additionalProperties": True},
            },
        }

    def test_messages_from_models_and_mappings(self):
        messages = to_openai_messages(
            [ChatMessage(role="system", content="s"), {"role": "user", "content": "u"}]
        )
        assert messages == [{"role": "system", "content": "s"}, {"role": "user", "content": "u"}]


# ---------------------------------------------------------------------------
# Delta derivation
# ---------------------------------------------------------------------------


class TestDeriveWireDeltas:
    def test_content_becomes_token(self):
        assert derive_wire_deltas(content_chunk("Hi")) == [{"t": "token", "c": "Hi"}]

    def test_empty_content_yields_nothing(self):
        assert derive_wire_deltas(content_chunk("")) == []

    def test_usage_becomes_meta(self):
        chunk = {"choices": [], "usage": {"prompt_tokens": 12, "completion_tokens": 3}}
        assert derive_wire_deltas(chunk) == [{"t": "meta", "pt": 12, "ct": 3}]

    def test_content_and_usage_in_one_chunk(self):
        chunk = {**content_chunk("x"), "usage": {"completion_tokens": 1}}
        assert derive_wire_deltas(chunk) == [{"t": "token", "c": "x"}, {"t": "meta", "ct": 1}]

    def test_usage_on_choice(self):
        chunk = {"choices": [{"delta": {}, "usage": {"prompt_tokens": 4}}]}
        assert derive_wire_deltas(chunk) == [{"t": "meta", "pt": 4}]

    def test_non_list_choices_ignored(self):
        chunk = {"choices": {"0": {"delta": {"content": "x"}}}, "usage": {"prompt_tokens": 2}}
        assert derive_wire_deltas(chunk) == [{"t": "meta", "pt": 2}]

    def test_tool_call_chunk_yields_nothing(self):
        chunk = {"choices": [{"delta": {"tool_calls": [{"index": 0, "function": {"name": "f"}}]}}]}
        assert derive_wire_deltas(chunk) == []


# ---------------------------------------------------------------------------
# Streaming over HTTP
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_stream_chat_posts_and_fans_out():
    captured: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["headers"] = request.headers
        captured["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            headers={"content-type": "text/event-stream"},
            content=sse(
                content_chunk("Hel"),
                content_chunk("lo"),
                {"choices": [], "usage": {"prompt_tokens": 5, "completion_tokens": 2}},
            ),
        )

    provider = ChatCompletionsProvider(
        "http://proxy.test/",
        {"authorization": "Bearer sk-test"},
        transport=httpx.MockTransport(handler),
    )
    recorder = Recorder()
    body = build_request_body([{"role": "user", "content": "hi"}], model="m")

    await provider.stream_chat(body, on_delta=recorder.on_delta, on_chunk=recorder.on_chunk)

    assert captured["url"] == "http://proxy.test/v1/chat/completions"
    assert captured["headers"]["authorization"] == "Bearer sk-test"
    assert captured["headers"]["content-type"] == "application/json"
    assert captured["body"]["stream"] is True
    assert recorder.deltas == [
        {"t": "token", "c": "Hel"},
        {"t": "token", "c": "lo"},
        {"t": "meta", "pt": 5, "ct": 2},
    ]
    assert len(recorder.chunks) == 3
    assert recorder.chunks[0] == content_chunk("Hel")


@pytest.mark.asyncio
async def test_stream_chat_accepts_async_sinks():
    transport = httpx.MockTransport(lambda request: httpx.Response(200, content=sse(content_chunk("a"))))
    provider = ChatCompletionsProvider("http://proxy.test", transport=transport)
    seen: list = []

    async def on_delta(wire):
        await asyncio.sleep(0)
        seen.append(wire)

    async def on_chunk(chunk):
        seen.append("chunk")

    await provider.stream_chat({"messages": []}, on_delta=on_delta, on_chunk=on_chunk)
    assert seen == ["chunk", {"t": "token", "c": "a"}]


@pytest.mark.asyncio
async def test_non_success_status_raises_with_excerpt():
    transport = httpx.MockTransport(
        lambda request: httpx.Response(401, content=b'{"error": "invalid api key"}')
    )
    provider = ChatCompletionsProvider("http://proxy.test", transport=transport)
    recorder = Recorder()

    with pytest.raises(ProviderHTTPError) as exc_info:
        await provider.stream_chat(
            {"messages": []}, on_delta=recorder.on_delta, on_chunk=recorder.on_chunk
        )

    assert exc_info.value.status_code == 401
    assert "invalid api key" in exc_info.value.body
    assert "401" in str(exc_info.value)
    assert recorder.deltas == []


@pytest.mark.asyncio
async def test_error_excerpt_is_capped():
    transport = httpx.MockTransport(lambda request: httpx.Response(500, content=b"x" * 5000))
    provider = ChatCompletionsProvider("http://proxy.test", transport=transport)

    with pytest.raises(ProviderHTTPError) as exc_info:
        await provider.stream_chat({"messages": []}, on_delta=print, on_chunk=print)
    assert len(exc_info.value.body) == 500


@pytest.mark.asyncio
async def test_cancelled_token_stops_before_request():
    calls = []
    transport = httpx.MockTransport(lambda request: calls.append(request) or httpx.Response(200))
    provider = ChatCompletionsProvider("http://proxy.test", transport=transport)
    token = CancellationToken()
    token.cancel()

    with pytest.raises(asyncio.CancelledError):
        await provider.stream_chat(
            {"messages": []}, on_delta=print, on_chunk=print, cancellation=token
        )
    assert calls == []


@pytest.mark.asyncio
async def test_cancellation_mid_stream_stops_processing():
    token = CancellationToken()
    recorder = Recorder()

    async def body():
        yield sse(content_chunk("first"))
        token.cancel()
        yield sse(content_chunk("second"))

    transport = httpx.MockTransport(lambda request: httpx.Response(200, content=body()))
    provider = ChatCompletionsProvider("http://proxy.test", transport=transport)

    with pytest.raises(asyncio.CancelledError):
        await provider.stream_chat(
            {"messages": []},
            on_delta=recorder.on_delta,
            on_chunk=recorder.on_chunk,
            cancellation=token,
        )
    assert recorder.deltas == [{"t": "token", "c": "first"}]
