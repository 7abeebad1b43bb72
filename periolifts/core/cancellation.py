import asyncio
import inspect
from typing import Awaitable, TypeVar

from periolifts.core.exceptions import FetchCancelledError

T = TypeVar("T")


class CancellationToken:
    """Cooperative cancellation for repository fetches.

    The presentation side cancels the token when the user navigates away;
    any fetch guarded by it stops awaiting the store and reports
    ``FetchCancelledError`` instead of a result nobody will look at.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str | None = None) -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise FetchCancelledError(details={"reason": self.reason} if self.reason else None)

    async def run(self, awaitable: Awaitable[T]) -> T:
        if self._event.is_set():
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            self.raise_if_cancelled()
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            waiter.cancel()
            raise
        waiter.cancel()

        if self._event.is_set():
            if not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
            elif not task.cancelled():
                # Mark the outcome as retrieved; the caller only sees the cancellation.
                task.exception()
            self.raise_if_cancelled()
        return task.result()
