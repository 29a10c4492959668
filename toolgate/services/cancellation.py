"""Cooperative cancellation shared across all suspension points of a task."""

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

from toolgate.errors import OperationCancelledError
from toolgate.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

CANCELLED_MESSAGE = "Operation was cancelled by user."


class CancellationToken:
    """Task-scoped abort signal.

    Every await that may block (approval, process exit, network, file IO)
    goes through `race` so that a single `cancel()` unblocks all of them.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        """Whether cancel() was called."""
        return self._event.is_set()

    def cancel(self) -> None:
        """Fire the token. Idempotent."""
        self._event.set()

    def raise_if_cancelled(self) -> None:
        """Raise OperationCancelledError if the token fired."""
        if self._event.is_set():
            raise OperationCancelledError(CANCELLED_MESSAGE)

    async def wait(self) -> None:
        """Block until the token fires."""
        await self._event.wait()

    async def race(self, awaitable: Awaitable[T]) -> T:
        """Await `awaitable` unless the token fires first.

        The losing side is cancelled. Exceptions raised by the awaitable
        propagate unchanged.
        """
        if self.cancelled and asyncio.iscoroutine(awaitable):
            awaitable.close()
        self.raise_if_cancelled()

        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self.wait())
        try:
            await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            work.cancel()
            waiter.cancel()
            raise

        if work.done():
            waiter.cancel()
            return work.result()

        work.cancel()
        await asyncio.wait({work})
        if not work.cancelled() and work.exception() is not None:
            logger.debug(f"Cancelled operation finished with error: {work.exception()!r}")
        raise OperationCancelledError(CANCELLED_MESSAGE)
