from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

from .errors import AbortedOutcome

T = TypeVar("T")


class AbortSignal:
    """Advisory cancellation flag shared by every fetch of one generation."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def aborted(self) -> bool:
        return self._event.is_set()

    def abort(self, reason: str | None = None) -> None:
        if self._event.is_set():
            return
        self.reason = reason
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_aborted(self) -> None:
        if self.aborted:
            raise AbortedOutcome(self.reason)


async def race_signal(awaitable: Awaitable[T], signal: AbortSignal | None) -> T:
    """Await ``awaitable`` unless ``signal`` fires first, in which case raise AbortedOutcome."""
    if signal is None:
        return await awaitable

    if signal.aborted:
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise AbortedOutcome(signal.reason)

    work = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(signal.wait())
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
    # Let the loser unwind before reporting the abort; its outcome no longer matters.
    await asyncio.gather(work, return_exceptions=True)
    raise AbortedOutcome(signal.reason)
