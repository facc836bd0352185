"""Suspension points for coroutines driven by the bridge.

Coroutines running on ``ThreadPoolHost`` have no asyncio loop, so they
suspend through these helpers instead of ``asyncio.sleep``/``asyncio.Future``:

    async def fetch(pool):
        await yield_now()
        return await wait_future(pool.submit(load_rows))

Both also work under ``AsyncioHost``.
"""

from __future__ import annotations

import concurrent.futures
from collections.abc import Generator
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class _YieldNow:
    __slots__ = ()

    def __await__(self) -> Generator[None, None, None]:
        yield None


class _WaitFuture(Generic[T]):
    __slots__ = ("_future",)

    def __init__(self, future: concurrent.futures.Future[T]) -> None:
        self._future = future

    def __await__(self) -> Generator[Any, None, T]:
        while not self._future.done():
            yield self._future
        return self._future.result()


def yield_now() -> _YieldNow:
    """Suspend once and let the executor reschedule this coroutine immediately."""
    return _YieldNow()


def wait_future(future: concurrent.futures.Future[T]) -> _WaitFuture[T]:
    """Suspend until ``future`` completes, then return its result or raise its exception."""
    return _WaitFuture(future)


__all__ = [
    "wait_future",
    "yield_now",
]
