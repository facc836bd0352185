"""Executor that polls bridged coroutines from a dedicated asyncio loop thread.

Polling from loop callbacks means the loop is the running loop during every
coroutine step, so bridged coroutines may await real asyncio primitives
(``asyncio.sleep``, futures created on the loop).

Usage:
    host = AsyncioHost()
    result = host.block_on(adapter)   # from synchronous code
    host.shutdown()
"""

from __future__ import annotations

import asyncio
import threading
from typing import Any

from loguru import logger

from corobridge._vendor import Result
from corobridge.config import ExecutorKind
from corobridge.executor.base import HostExecutor, _Task
from corobridge.poll import Pollable

log = logger.bind(component="asyncio_host")


class AsyncioHost(HostExecutor):
    """Manages a dedicated asyncio event loop in a background thread.

    Thread Safety:
        - start() is thread-safe and idempotent
        - spawn() and block_on() are thread-safe
        - shutdown() is thread-safe

    Lifecycle:
        - Lazy initialization (loop starts on first spawn)
        - Daemon thread (auto-cleanup on process exit)
    """

    kind = ExecutorKind.ASYNCIO

    def __init__(self, *, thread_name: str = "corobridge-asyncio") -> None:
        super().__init__()
        self._thread_name = thread_name
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._started = threading.Event()
        self._lock = threading.Lock()

    def start(self) -> None:
        """Start the background loop thread. Blocks until the loop is ready."""
        self._start()

    @property
    def loop(self) -> asyncio.AbstractEventLoop | None:
        return self._loop

    @property
    def is_running(self) -> bool:
        return (
            self._thread is not None
            and self._thread.is_alive()
            and self._loop is not None
        )

    def _block_on(self, pollable: Pollable) -> Result[Any]:
        # Runs on the loop thread; the caller only waits for the outcome
        return self.spawn(pollable).result()

    def _start(self) -> None:
        with self._lock:
            starting = self._thread is None or not self._thread.is_alive()
            if starting:
                self._started.clear()
                self._thread = threading.Thread(
                    target=self._run_loop,
                    name=self._thread_name,
                    daemon=True,
                )
                self._thread.start()

        # Every caller waits for the loop, including those that lost the race
        # to start it (outside lock to avoid deadlock)
        self._started.wait()
        if starting:
            log.info("Started asyncio loop thread {}", self._thread_name)

    def _run_loop(self) -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        self._loop = loop
        self._started.set()
        try:
            loop.run_forever()
        finally:
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()
            self._loop = None

    def _schedule(self, task: _Task) -> None:
        loop = self._loop
        if self._closed or loop is None or loop.is_closed():
            task.abandon(f"{type(self).__name__} shut down before the task completed")
            return
        try:
            loop.call_soon_threadsafe(task.run)
        except RuntimeError:
            # Loop closed between the check and the call
            task.abandon(f"{type(self).__name__} shut down before the task completed")

    def _stop(self, timeout: float) -> bool:
        with self._lock:
            loop = self._loop
            thread = self._thread
            if loop is None or thread is None:
                return True
            loop.call_soon_threadsafe(loop.stop)

        thread.join(timeout=timeout)
        stopped = not thread.is_alive()
        if stopped:
            self._thread = None
        return stopped


__all__ = [
    "AsyncioHost",
]
