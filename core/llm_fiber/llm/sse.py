"""Server-sent-event frame reader.

Turns a raw byte stream into the JSON documents carried on its ``data:``
lines. Frames are separated by a blank line; a frame may hold several data
lines. The final frame of a stream is not guaranteed to be terminated, so
whatever is left in the buffer at end of input is scanned the same way.
"""

from __future__ import annotations

import codecs
import inspect
import json
import logging
from collections.abc import AsyncIterable, AsyncIterator, Awaitable, Callable
from typing import Any

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
DONE = "[DONE]"
FRAME_DELIMITER = "\n\n"


def _parse_frame(frame: str) -> list[Any]:
    """Return the messages carried by one frame, dropping malformed JSON."""
    messages: list[Any] = []
    for line in frame.split("\n"):
        if not line.startswith(DATA_PREFIX):
            continue
        raw = line[len(DATA_PREFIX) :].strip()
        if not raw:
            continue
        if raw == DONE:
            messages.append(DONE)
            continue
        try:
            messages.append(json.loads(raw))
        except json.JSONDecodeError as e:
            logger.warning("Dropping malformed SSE data line (%s): %r", e, raw[:200])
    return messages


async def iter_sse_data(byte_stream: AsyncIterable[bytes]) -> AsyncIterator[Any]:
    """Yield each parsed ``data:`` payload (or ``DONE``) in arrival order."""
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    buffer = ""

    async for chunk in byte_stream:
        buffer += decoder.decode(chunk)
        # A lone trailing "\r" stays put until its "\n" arrives
        buffer = buffer.replace("\r\n", "\n")

        while (idx := buffer.find(FRAME_DELIMITER)) >= 0:
            frame = buffer[:idx]
            buffer = buffer[idx + len(FRAME_DELIMITER) :]
            for message in _parse_frame(frame):
                yield message

    buffer += decoder.decode(b"", final=True)
    remainder = buffer.replace("\r\n", "\n").strip()
    if remainder:
        for message in _parse_frame(remainder):
            yield message


async def read_sse(
    byte_stream: AsyncIterable[bytes],
    on_data: Callable[[Any], Awaitable[None] | None],
) -> None:
    """Feed every message of *byte_stream* to *on_data*, one at a time.

    *on_data* may be a plain function or a coroutine function; an awaitable
    result is awaited before the next message is read.
    """
    async for message in iter_sse_data(byte_stream):
        result = on_data(message)
        if inspect.isawaitable(result):
            await result
