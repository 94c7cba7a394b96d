"""Tests for SingleFlight."""

import asyncio

import pytest

from bingbot.utils.singleflight import SingleFlight


@pytest.mark.asyncio
async def test_concurrent_calls_share_one_execution():
    flight = SingleFlight()
    calls = 0

    async def work():
        nonlocal calls
        calls += 1
        await asyncio.sleep(0.01)
        return calls

    results = await asyncio.gather(*(flight.do("k", work) for _ in range(5)))

    assert results == [1, 1, 1, 1, 1]
    assert calls == 1
    assert flight.in_flight("k") is False


@pytest.mark.asyncio
async def test_key_is_released_after_completion():
    flight = SingleFlight()
    calls = 0

    async def work():
        nonlocal calls
        calls += 1
        return calls

    assert await flight.do("k", work) == 1
    assert await flight.do("k", work) == 2


@pytest.mark.asyncio
async def test_failure_is_shared_and_not_cached():
    flight = SingleFlight()
    attempts = 0

    async def failing():
        nonlocal attempts
        attempts += 1
        await asyncio.sleep(0.01)
        raise ValueError("nope")

    results = await asyncio.gather(*(flight.do("k", failing) for _ in range(3)), return_exceptions=True)

    assert attempts == 1
    assert all(isinstance(r, ValueError) for r in results)

    with pytest.raises(ValueError):
        await flight.do("k", failing)
    assert attempts == 2


@pytest.mark.asyncio
async def test_cancelled_waiter_does_not_cancel_shared_call():
    flight = SingleFlight()

    async def work():
        await asyncio.sleep(0.02)
        return "done"

    impatient = asyncio.create_task(flight.do("k", work))
    patient = asyncio.create_task(flight.do("k", work))
    await asyncio.sleep(0)
    impatient.cancel()

    assert await patient == "done"
    with pytest.raises(asyncio.CancelledError):
        await impatient
