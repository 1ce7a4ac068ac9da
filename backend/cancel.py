import asyncio
from typing import Awaitable, Optional, TypeVar

from .errors import GenerationCancelled

T = TypeVar("T")


class CancelToken:
    """
    Cooperative cancellation handle owned by the caller of a generation.
    Triggering it aborts an in-flight request and wakes any pending sleep.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled by user") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise GenerationCancelled()

    async def wait(self, timeout: Optional[float] = None) -> bool:
        """Wait until cancelled or ``timeout`` elapses. Returns True if cancelled."""
        if self._event.is_set():
            return True
        try:
            await asyncio.wait_for(self._event.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True

    async def sleep(self, seconds: float) -> None:
        """Interruptible sleep; raises GenerationCancelled if triggered meanwhile."""
        if await self.wait(seconds):
            raise GenerationCancelled()

    async def race(self, aw: Awaitable[T]) -> T:
        """
        Run ``aw`` until it completes or the token fires, whichever comes first.
        On cancellation the pending operation is cancelled and GenerationCancelled is raised.
        """
        if self.cancelled:
            if asyncio.iscoroutine(aw):
                aw.close()
            raise GenerationCancelled()
        work = asyncio.ensure_future(aw)
        watcher = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({work, watcher}, return_when=asyncio.FIRST_COMPLETED)
        except BaseException:
            work.cancel()
            raise
        finally:
            watcher.cancel()

        if not work.done():
            work.cancel()
            await asyncio.gather(work, return_exceptions=True)
            raise GenerationCancelled()
        return work.result()
