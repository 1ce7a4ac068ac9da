import asyncio

import pytest

from backend.cancel import CancelToken
from backend.errors import GenerationCancelled


@pytest.mark.asyncio
async def test_wait_times_out_when_not_cancelled():
    token = CancelToken()
    assert await token.wait(0.01) is False
    assert not token.cancelled


@pytest.mark.asyncio
async def test_cancel_wakes_sleep():
    token = CancelToken()
    asyncio.get_running_loop().call_later(0.02, token.cancel, "stop")

    with pytest.raises(GenerationCancelled):
        await asyncio.wait_for(token.sleep(30), timeout=1)
    assert token.reason == "stop"


def test_first_reason_wins():
    token = CancelToken()
    token.cancel("first")
    token.cancel("second")
    assert token.reason == "first"
    with pytest.raises(GenerationCancelled):
        token.raise_if_cancelled()


@pytest.mark.asyncio
async def test_race_returns_result():
    async def work():
        return 7

    assert await CancelToken().race(work()) == 7


@pytest.mark.asyncio
async def test_race_propagates_errors():
    async def work():
        raise ValueError("bad")

    with pytest.raises(ValueError):
        await CancelToken().race(work())


@pytest.mark.asyncio
async def test_race_cancels_pending_work():
    token = CancelToken()
    finished = []

    async def slow():
        try:
            await asyncio.sleep(10)
        finally:
            finished.append(True)

    asyncio.get_running_loop().call_later(0.02, token.cancel)
    with pytest.raises(GenerationCancelled):
        await token.race(slow())
    assert finished == [True]
