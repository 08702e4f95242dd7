"""Caller-owned cancellation signal shared by every stage of a run."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Optional, TypeVar

from .exceptions import OrchestrationCancelled

T = TypeVar("T")


class CancellationToken:
    """Wraps an ``asyncio.Event``; every suspension point races against it."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def cancel(self, reason: str = "cancelled by caller") -> None:
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    def raise_if_cancelled(self, stage: str = "unknown") -> None:
        if self._event.is_set():
            raise OrchestrationCancelled(self._message(), stage=stage)

    async def guard(self, awaitable: Awaitable[T], *, stage: str = "unknown") -> T:
        """Await ``awaitable`` unless the token fires first.

        The pending operation is cancelled (aborting any in-flight request)
        and :class:`OrchestrationCancelled` is raised in its place.
        """
        if self._event.is_set():
            # Close the coroutine so it is not reported as never awaited.
            close = getattr(awaitable, "close", None)
            if close is not None:
                close()
            raise OrchestrationCancelled(self._message(), stage=stage)

        operation = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait(
                {operation, waiter}, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            operation.cancel()
            waiter.cancel()
            raise

        if operation in done:
            waiter.cancel()
            return operation.result()

        operation.cancel()
        await asyncio.gather(operation, return_exceptions=True)
        raise OrchestrationCancelled(self._message(), stage=stage)

    async def sleep(self, seconds: float, *, stage: str = "unknown") -> None:
        await self.guard(asyncio.sleep(max(0.0, seconds)), stage=stage)

    def _message(self) -> str:
        return f"Orchestration cancelled: {self._reason or 'cancelled by caller'}"
