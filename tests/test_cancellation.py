from __future__ import annotations

import asyncio

import pytest

from mapsearch.services.cancellation import CancellationToken
from mapsearch.services.errors import RequestCancelled


@pytest.mark.asyncio
async def test_run_returns_result_when_not_cancelled():
    async def work():
        await asyncio.sleep(0)
        return 42

    assert await CancellationToken().run(work()) == 42


@pytest.mark.asyncio
async def test_run_propagates_work_errors():
    async def work():
        raise KeyError("boom")

    with pytest.raises(KeyError):
        await CancellationToken().run(work())


@pytest.mark.asyncio
async def test_cancel_abandons_pending_work():
    token = CancellationToken()
    started = asyncio.Event()
    stopped = asyncio.Event()

    async def work():
        started.set()
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            stopped.set()
            raise

    task = asyncio.create_task(token.run(work()))
    await started.wait()
    token.cancel("superseded")

    with pytest.raises(RequestCancelled, match="superseded"):
        await task
    await asyncio.wait_for(stopped.wait(), 1)


@pytest.mark.asyncio
async def test_already_cancelled_token_never_starts_work():
    token = CancellationToken()
    token.cancel("closed")
    ran = []

    async def work():
        ran.append(True)

    with pytest.raises(RequestCancelled):
        await token.run(work())
    await asyncio.sleep(0)
    assert ran == []


def test_first_reason_wins():
    token = CancellationToken()
    token.cancel("superseded")
    token.cancel("closed")

    assert token.cancelled
    assert token.reason == "superseded"
    with pytest.raises(RequestCancelled):
        token.raise_if_cancelled()
