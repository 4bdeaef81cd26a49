"""Async concurrency primitives used by the orchestrator."""

from __future__ import annotations

import asyncio
from contextlib import suppress
from typing import TYPE_CHECKING, Generic, TypeVar

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Iterable

T = TypeVar("T")


class CancellationToken:
    """Cooperative cancellation token backed by ``asyncio.Event``."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> bool:
        """Request cancellation; returns whether the request took effect."""

        self._event.set()
        return True

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise asyncio.CancelledError("operation cancelled")


class ShieldedCancellationToken(CancellationToken):
    """Cancellation token that can be locked against further cancel requests.

    Once ``shield()`` has been called, ``cancel()`` is a no-op. A cancellation that
    was already requested before shielding stays in effect.
    """

    def __init__(self) -> None:
        super().__init__()
        self._shielded = False

    def shield(self) -> None:
        self._shielded = True

    @property
    def is_shielded(self) -> bool:
        return self._shielded

    def cancel(self) -> bool:
        if self._shielded:
            return False
        return super().cancel()


class WorkerPool(Generic[T]):
    """Run awaitables with at most ``max_concurrency`` in flight.

    Results are yielded in completion order. If one awaitable raises, the others are
    cancelled and awaited before the exception propagates.
    """

    def __init__(self, max_concurrency: int) -> None:
        if max_concurrency <= 0:
            raise ValueError("max_concurrency must be > 0")
        self.max_concurrency = max_concurrency
        self.in_flight = 0
        self.peak_in_flight = 0
        self._slots: asyncio.Semaphore | None = None

    async def run(self, jobs: Iterable[Awaitable[T]]) -> AsyncIterator[T]:
        self._slots = asyncio.Semaphore(self.max_concurrency)
        pending: set[asyncio.Future[T]] = {
            asyncio.ensure_future(self._guarded(job)) for job in jobs
        }
        try:
            while pending:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                for future in done:
                    yield future.result()
        finally:
            await _cancel_and_drain(pending)

    async def _guarded(self, job: Awaitable[T]) -> T:
        assert self._slots is not None
        async with self._slots:
            self.in_flight += 1
            self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
            try:
                return await job
            finally:
                self.in_flight -= 1


async def _cancel_and_drain(futures: set[asyncio.Future[T]]) -> None:
    for future in futures:
        future.cancel()
    if futures:
        with suppress(Exception):
            await asyncio.gather(*futures, return_exceptions=True)


__all__ = [
    "CancellationToken",
    "ShieldedCancellationToken",
    "WorkerPool",
]
