"""Tests for CancellationToken."""

import asyncio
import logging

import pytest

from llm_fiber.runtime.cancellation import CancellationToken


def test_cancel_fires_callbacks_once():
    token = CancellationToken()
    fired = []
    token.on_cancel(lambda: fired.append("a"))
    token.on_cancel(lambda: fired.append("b"))

    token.cancel()
    token.cancel()

    assert token.cancelled
    assert fired == ["a", "b"]


def test_subscribe_after_cancel_runs_immediately():
    token = CancellationToken()
    token.cancel()
    fired = []
    token.on_cancel(lambda: fired.append(True))
    assert fired == [True]


def test_unsubscribe():
    token = CancellationToken()
    fired = []
    unsubscribe = token.on_cancel(lambda: fired.append(True))
    unsubscribe()
    token.cancel()
    assert fired == []


def test_failing_callback_does_not_block_others(caplog):
    token = CancellationToken()
    fired = []

    def broken():
        raise RuntimeError("boom")

    token.on_cancel(broken)
    token.on_cancel(lambda: fired.append(True))

    with caplog.at_level(logging.ERROR, logger="llm_fiber.runtime.cancellation"):
        token.cancel()

    assert fired == [True]
    assert "Cancellation callback failed" in caplog.text


def test_link_propagates_outer_to_inner_only():
    outer, inner = CancellationToken(), CancellationToken()
    inner.link(outer)

    inner.cancel()
    assert not outer.cancelled

    other_inner = CancellationToken()
    other_inner.link(outer)
    outer.cancel()
    assert other_inner.cancelled


def test_unlink_stops_propagation():
    outer, inner = CancellationToken(), CancellationToken()
    unlink = inner.link(outer)
    unlink()
    outer.cancel()
    assert not inner.cancelled


def test_link_to_already_cancelled_outer():
    outer = CancellationToken()
    outer.cancel()
    inner = CancellationToken()
    inner.link(outer)
    assert inner.cancelled


def test_raise_if_cancelled():
    token = CancellationToken()
    token.raise_if_cancelled()
    token.cancel()
    with pytest.raises(asyncio.CancelledError):
        token.raise_if_cancelled()


@pytest.mark.asyncio
async def test_wait_resumes_on_cancel():
    token = CancellationToken()
    waiter = asyncio.create_task(token.wait())
    await asyncio.sleep(0)
    assert not waiter.done()

    token.cancel()
    await asyncio.wait_for(waiter, timeout=1)


@pytest.mark.asyncio
async def test_wait_on_cancelled_token_returns():
    token = CancellationToken()
    token.cancel()
    await asyncio.wait_for(token.wait(), timeout=1)
