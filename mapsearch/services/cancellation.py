from __future__ import annotations

import asyncio
from typing import Awaitable, Optional, TypeVar

from mapsearch.services.errors import RequestCancelled

T = TypeVar("T")


class CancellationToken:
    """Cooperative cancellation signal threaded through a search request.

    Cancelling is best-effort: `run` abandons the awaited work as soon as the
    token fires, but a response that already resolved may still come back.
    Callers pair this with a sequence check before mutating any state.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "superseded") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise RequestCancelled(self.reason or "cancelled")

    async def run(self, awaitable: Awaitable[T]) -> T:
        """Await `awaitable`, cancelling it if the token fires first."""
        work = asyncio.ensure_future(awaitable)
        if self._event.is_set():
            work.cancel()
            raise RequestCancelled(self.reason or "cancelled")

        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            work.cancel()
            raise
        finally:
            waiter.cancel()

        if work.done():
            return work.result()
        work.cancel()
        raise RequestCancelled(self.reason or "cancelled")
