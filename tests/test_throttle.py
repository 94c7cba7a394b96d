"""Tests for ProgressThrottle (leading + trailing edge)."""

import asyncio

import pytest

from bingbot.providers.throttle import ProgressThrottle


@pytest.mark.asyncio
async def test_first_push_fires_immediately():
    calls = []
    throttle = ProgressThrottle(calls.append, interval=0.05)

    throttle.push(1)

    assert calls == [1]
    throttle.cancel()


@pytest.mark.asyncio
async def test_pushes_inside_interval_collapse_to_latest():
    calls = []
    throttle = ProgressThrottle(calls.append, interval=0.05)

    throttle.push(1)
    throttle.push(2)
    throttle.push(3)
    assert calls == [1]

    await asyncio.sleep(0.1)
    assert calls == [1, 3]
    throttle.cancel()


@pytest.mark.asyncio
async def test_flush_delivers_pending_then_closes():
    calls = []
    throttle = ProgressThrottle(calls.append, interval=10)

    throttle.push(1)
    throttle.push(2)
    throttle.flush()
    throttle.push(3)

    assert calls == [1, 2]


@pytest.mark.asyncio
async def test_flush_without_pending_does_not_repeat():
    calls = []
    throttle = ProgressThrottle(calls.append, interval=10)

    throttle.push(1)
    throttle.flush()

    assert calls == [1]


@pytest.mark.asyncio
async def test_cancel_drops_pending():
    calls = []
    throttle = ProgressThrottle(calls.append, interval=0.05)

    throttle.push(1)
    throttle.push(2)
    throttle.cancel()
    await asyncio.sleep(0.1)

    assert calls == [1]


@pytest.mark.asyncio
async def test_drain_waits_for_async_callbacks():
    seen = []

    async def callback(value):
        await asyncio.sleep(0.01)
        seen.append(value)

    throttle = ProgressThrottle(callback, interval=0)
    throttle.push("a")
    throttle.flush()
    await throttle.drain()

    assert seen == ["a"]


@pytest.mark.asyncio
async def test_callback_errors_are_contained():
    def callback(value):
        raise RuntimeError("render failed")

    throttle = ProgressThrottle(callback, interval=0)

    throttle.push(1)
    throttle.push(2)
    throttle.flush()


@pytest.mark.asyncio
async def test_steady_stream_is_limited_to_one_call_per_interval():
    calls = []
    throttle = ProgressThrottle(calls.append, interval=0.5)
    loop = asyncio.get_running_loop()
    start = loop.time()

    # 40 snapshots, one every 50ms, for 2 seconds
    for i in range(40):
        await asyncio.sleep(max(0.0, start + i * 0.05 - loop.time()))
        throttle.push(i)
    throttle.flush()

    assert len(calls) <= 5
    assert calls[0] == 0
    assert calls[-1] == 39
    assert calls == sorted(calls)
