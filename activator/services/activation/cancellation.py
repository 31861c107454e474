"""
Cooperative cancellation for activation runs.

Cancellation takes effect at suspension points only: explicit checks between
steps, backoff sleeps, and waits on open-ended collaborators (token capture,
diagnostics, conversion). An in-flight HTTP attempt is never interrupted.
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional

from activator.services.activation.exceptions import ActivationCancelled


class CancellationToken:
    def __init__(self):
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: Optional[str] = None) -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise ActivationCancelled()

    async def guard(self, awaitable: Awaitable[Any], timeout: Optional[float] = None) -> Any:
        """
        Await `awaitable` unless cancellation or the timeout comes first.

        Raises:
            ActivationCancelled: the token was cancelled while waiting
            asyncio.TimeoutError: `timeout` seconds elapsed first
        """
        self.raise_if_cancelled()
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait(
                {task, waiter}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if task in done:
            return task.result()

        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        if self._event.is_set():
            raise ActivationCancelled()
        raise asyncio.TimeoutError()

    async def sleep(self, delay: float, sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep) -> None:
        self.raise_if_cancelled()
        await self.guard(sleep(delay))
