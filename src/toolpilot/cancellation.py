"""Cooperative cancellation shared by the loop, adapters and backoff sleeps."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

from toolpilot.errors import OperationCancelledError

T = TypeVar("T")


class CancellationToken:
    """Cancellation signal threaded through every suspension point.

    ``cancel`` must be called from the event loop thread (for example from
    ``loop.add_signal_handler``).
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason = "cancelled"

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str:
        return self._reason

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelledError(self._reason)

    async def sleep(self, seconds: float) -> None:
        """Sleep for ``seconds`` unless cancelled first."""
        self.raise_if_cancelled()
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except TimeoutError:
            return
        raise OperationCancelledError(self._reason)

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless cancelled first, in which case it is cancelled too."""
        self.raise_if_cancelled()
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except BaseException:
            task.cancel()
            raise
        finally:
            waiter.cancel()
        if task.done():
            return task.result()
        task.cancel()
        raise OperationCancelledError(self._reason)
