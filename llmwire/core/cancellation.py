"""
llmwire - Cancellation

Cooperative cancellation for in-flight requests and streams.

A CancellationToken is created by the caller and passed in RequestConfig.
Cancelling it aborts the current network await, wakes any pending backoff
sleep, and cascades to child tokens. Cancelling twice is a no-op.
Tokens are meant to be used from the event loop thread.
"""

import asyncio
from typing import Any, Awaitable, Callable, List, Optional, TypeVar


T = TypeVar("T")


class OperationCancelled(RuntimeError):
    """Raised when a CancellationToken fires during an operation."""

    def __init__(self, reason: Optional[str] = None):
        self.reason = reason
        super().__init__(reason or "operation cancelled")


class CancellationToken:
    """
    Cancellation signal shared between a caller and the request engine.

    Child tokens are cancelled with their parent.
    """

    def __init__(self, *, parent: Optional["CancellationToken"] = None):
        self._cancelled = False
        self._reason: Optional[str] = None
        self._event = asyncio.Event()
        self._children: List["CancellationToken"] = []
        self._callbacks: List[Callable[[Optional[str]], Any]] = []
        if parent is not None:
            parent.link_child(self)

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def cancel(self, reason: Optional[str] = None) -> None:
        """Request cancellation. Later calls are ignored."""
        if self._cancelled:
            return
        self._cancelled = True
        self._reason = reason
        self._event.set()
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback(reason)
        for child in list(self._children):
            child.cancel(reason)

    def link_child(self, token: "CancellationToken") -> "CancellationToken":
        self._children.append(token)
        if self._cancelled:
            token.cancel(self._reason)
        return token

    def child(self) -> "CancellationToken":
        return CancellationToken(parent=self)

    def add_callback(self, callback: Callable[[Optional[str]], Any]) -> Callable[[], None]:
        """
        Run callback(reason) on cancellation.

        Runs immediately if already cancelled. Returns a function that
        unregisters the callback.
        """
        if self._cancelled:
            callback(self._reason)
            return lambda: None
        self._callbacks.append(callback)

        def remove() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return remove

    async def wait(self) -> Optional[str]:
        """Suspend until cancelled; returns the reason."""
        await self._event.wait()
        return self._reason

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise OperationCancelled(self._reason)

    def __repr__(self) -> str:
        return (
            f"CancellationToken(cancelled={self._cancelled}, "
            f"reason={self._reason!r}, children={len(self._children)})"
        )


async def run_cancellable(
    awaitable: Awaitable[T],
    token: Optional[CancellationToken],
) -> T:
    """
    Await `awaitable`, aborting it as soon as `token` fires.

    The aborted awaitable is cancelled and drained before
    OperationCancelled is raised, so no work outlives the call.
    """
    if token is None:
        return await awaitable

    if token.cancelled:
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise OperationCancelled(token.reason)

    work = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(token.wait())
    try:
        await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        if not work.done():
            work.cancel()
            await asyncio.gather(work, return_exceptions=True)
        if not waiter.done():
            waiter.cancel()
            await asyncio.gather(waiter, return_exceptions=True)

    if work.cancelled() or (token.cancelled and not _finished_cleanly(work)):
        raise OperationCancelled(token.reason)
    return work.result()


def _finished_cleanly(task: "asyncio.Future[Any]") -> bool:
    return task.done() and not task.cancelled() and task.exception() is None


async def cancellable_sleep(
    delay: float,
    token: Optional[CancellationToken],
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> None:
    """Sleep for `delay` seconds, waking early with OperationCancelled."""
    await run_cancellable(sleep(delay), token)
