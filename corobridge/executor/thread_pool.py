"""Poll-based executor backed by a fixed pool of worker threads."""

from __future__ import annotations

import queue
import threading
from typing import Any

from loguru import logger

from corobridge._vendor import Result
from corobridge.config import ExecutorKind
from corobridge.executor.base import HostExecutor, _Task, block_on_current_thread
from corobridge.poll import Pollable

log = logger.bind(component="thread_pool_host")


class ThreadPoolHost(HostExecutor):
    """Runs spawned pollables on worker threads fed from a shared run queue.

    Workers start lazily on the first ``spawn()``. ``block_on()`` does not use
    the workers: it polls on the calling thread and sleeps between wake-ups.

    Example:
        host = ThreadPoolHost(workers=2)
        future = host.spawn(adapter)
        result = future.result()  # Ok(...) or Err(DynamicException)
        host.shutdown()
    """

    kind = ExecutorKind.THREAD_POOL

    def __init__(self, workers: int = 4, *, thread_name_prefix: str = "corobridge-worker") -> None:
        if workers < 1:
            raise ValueError(f"workers must be >= 1, got {workers}")
        super().__init__()
        self.workers = workers
        self._thread_name_prefix = thread_name_prefix
        self._queue: queue.SimpleQueue[_Task | None] = queue.SimpleQueue()
        self._threads: list[threading.Thread] = []
        self._lock = threading.Lock()

    def _block_on(self, pollable: Pollable) -> Result[Any]:
        return block_on_current_thread(pollable)

    @property
    def is_running(self) -> bool:
        return any(thread.is_alive() for thread in self._threads)

    def _start(self) -> None:
        with self._lock:
            if self._threads:
                return
            for index in range(self.workers):
                thread = threading.Thread(
                    target=self._work,
                    name=f"{self._thread_name_prefix}-{index}",
                    daemon=True,
                )
                thread.start()
                self._threads.append(thread)
        log.info("Started {} worker threads", self.workers)

    def _work(self) -> None:
        while True:
            task = self._queue.get()
            if task is None:
                return
            task.run()

    def _schedule(self, task: _Task) -> None:
        if self._closed:
            task.abandon(f"{type(self).__name__} shut down before the task completed")
            return
        self._queue.put(task)

    def _stop(self, timeout: float) -> bool:
        with self._lock:
            threads = list(self._threads)
            for _ in threads:
                self._queue.put(None)
        for thread in threads:
            thread.join(timeout=timeout)
        stopped = not any(thread.is_alive() for thread in threads)
        if stopped:
            self._threads = []
        return stopped


__all__ = [
    "ThreadPoolHost",
]
