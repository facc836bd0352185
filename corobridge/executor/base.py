"""Host executor base class and the task state machine shared by executors.

A spawned pollable is wrapped in a ``_Task``. The task's waker moves it
through these states:

    IDLE --wake--> SCHEDULED --run--> RUNNING --Pending--> IDLE
                                         |  \\--wake--> NOTIFIED --Pending--> SCHEDULED
                                         \\--Ready--> COMPLETE

so a task is never polled by two threads at once and a wake that arrives
during a poll is never lost.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from enum import Enum, auto
from typing import Any, ClassVar

from loguru import logger

from corobridge._vendor import Result
from corobridge.config import ExecutorKind
from corobridge.poll import Context, Pollable, Ready, Waker

log = logger.bind(component="executor")


class TaskStatus(Enum):
    """Scheduling state of a spawned task."""

    IDLE = auto()
    SCHEDULED = auto()
    RUNNING = auto()
    NOTIFIED = auto()
    COMPLETE = auto()


class _Task:
    def __init__(
        self,
        pollable: Pollable,
        schedule: Callable[[_Task], None],
        on_complete: Callable[[_Task], None],
    ) -> None:
        self.pollable = pollable
        self.future: concurrent.futures.Future[Result[Any]] = concurrent.futures.Future()
        self.status = TaskStatus.IDLE
        self._schedule = schedule
        self._on_complete = on_complete
        self._mutex = threading.Lock()
        self.context = Context(Waker(self.wake))

    def wake(self) -> None:
        with self._mutex:
            if self.status is TaskStatus.RUNNING:
                self.status = TaskStatus.NOTIFIED
                return
            if self.status is not TaskStatus.IDLE:
                return
            self.status = TaskStatus.SCHEDULED
        self._schedule(self)

    def run(self) -> None:
        with self._mutex:
            if self.status is not TaskStatus.SCHEDULED:
                return
            self.status = TaskStatus.RUNNING

        if self.future.done():
            # Cancelled by its owner while waiting to run
            self._complete()
            return

        try:
            outcome = self.pollable.poll(self.context)
        except BaseException as exc:
            self._complete()
            self._resolve(exception=exc)
            return

        if isinstance(outcome, Ready):
            self._complete()
            self._resolve(result=outcome.result)
            return

        with self._mutex:
            if self.status is TaskStatus.NOTIFIED:
                self.status = TaskStatus.SCHEDULED
                reschedule = True
            else:
                self.status = TaskStatus.IDLE
                reschedule = False
        if reschedule:
            self._schedule(self)

    def abandon(self, reason: str) -> None:
        """Cancel the pollable and fail the future; used on executor shutdown."""
        with self._mutex:
            self.status = TaskStatus.COMPLETE
        self.pollable.cancel()
        self._resolve(exception=RuntimeError(reason))

    def _complete(self) -> None:
        with self._mutex:
            self.status = TaskStatus.COMPLETE
        self._on_complete(self)

    def _resolve(
        self,
        result: Result[Any] | None = None,
        exception: BaseException | None = None,
    ) -> None:
        try:
            if exception is not None:
                self.future.set_exception(exception)
            else:
                self.future.set_result(result)
        except concurrent.futures.InvalidStateError:
            log.debug("Task future was cancelled before it could be resolved")


def block_on_current_thread(pollable: Pollable) -> Result[Any]:
    """Poll ``pollable`` on the calling thread until it is ready."""
    woken = threading.Event()
    cx = Context(Waker(woken.set))
    while True:
        woken.clear()
        outcome = pollable.poll(cx)
        if isinstance(outcome, Ready):
            return outcome.result
        woken.wait()


class HostExecutor(ABC):
    """Base class for poll-based host executors.

    Subclasses must implement:
    - _block_on: Drive a pollable to completion for a synchronous caller
    - _start: Bring up the executor's threads (called lazily, idempotent)
    - _schedule: Arrange for ``task.run()`` to be called soon
    - _stop: Stop the executor's threads
    """

    kind: ClassVar[ExecutorKind]

    def __init__(self) -> None:
        self._tasks: set[_Task] = set()
        self._tasks_mutex = threading.Lock()
        self._closed = False

    def spawn(self, pollable: Pollable) -> concurrent.futures.Future[Result[Any]]:
        """Schedule ``pollable`` and return a future resolved with its ``Result``.

        Misuse errors raised by ``poll()`` are set as the future's exception.
        """
        if self._closed:
            raise RuntimeError(f"Cannot spawn on {type(self).__name__} after shutdown")
        self._start()
        task = _Task(pollable, self._schedule, self._forget)
        with self._tasks_mutex:
            self._tasks.add(task)
        task.wake()
        return task.future

    def block_on(self, pollable: Pollable) -> Result[Any]:
        """Drive ``pollable`` to completion and return its ``Result``.

        Raises:
            RuntimeError: If called from a thread with a running event loop,
                which would be blocked for the whole drive.
        """
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return self._block_on(pollable)
        raise RuntimeError(
            "block_on() cannot be called from a running event loop; spawn and await instead"
        )

    @property
    @abstractmethod
    def is_running(self) -> bool: ...

    def shutdown(self, timeout: float = 5.0) -> bool:
        """Stop the executor and fail every task still pending.

        Returns:
            True if the executor's threads stopped within ``timeout``.
        """
        self._closed = True
        stopped = self._stop(timeout)
        with self._tasks_mutex:
            abandoned = list(self._tasks)
            self._tasks.clear()
        for task in abandoned:
            task.abandon(f"{type(self).__name__} shut down before the task completed")
        log.info(
            "{} shut down (stopped={}, abandoned tasks={})",
            type(self).__name__,
            stopped,
            len(abandoned),
        )
        return stopped

    @abstractmethod
    def _block_on(self, pollable: Pollable) -> Result[Any]: ...

    @abstractmethod
    def _start(self) -> None: ...

    @abstractmethod
    def _schedule(self, task: _Task) -> None: ...

    @abstractmethod
    def _stop(self, timeout: float) -> bool: ...

    def _forget(self, task: _Task) -> None:
        with self._tasks_mutex:
            self._tasks.discard(task)


__all__ = [
    "HostExecutor",
    "TaskStatus",
    "block_on_current_thread",
]
