"""Exposes a one-shot awaitable through the host poll contract.

Each ``poll()`` advances the underlying coroutine by exactly one step while
holding the interpreter lock, and releases the lock before returning, whether
the result is ``PENDING`` or ``Ready``. What the coroutine yields at a
suspension point decides how the waker is armed:

- ``None``: a cooperative yield, the waker fires immediately
- an object with ``add_done_callback`` (``concurrent.futures.Future``,
  ``asyncio.Future``): the waker is registered as its done-callback
- anything else: a ``RuntimeError`` is thrown back into the coroutine on the
  next step, as an asyncio task does for a bad yield

Exceptions raised by the coroutine are captured and returned as
``Ready(Err(DynamicException))``; they never propagate out of ``poll()``.
"""

from __future__ import annotations

import asyncio
import inspect
import threading
from collections.abc import Iterator
from typing import Any

from loguru import logger

from corobridge._vendor import Err, Ok, Result
from corobridge.errors import AlreadyConsumed, DynamicException, InvalidHandle, LockAcquisitionFailure
from corobridge.handles import AwaitableHandle, HandleRegistry
from corobridge.lock import LockToken
from corobridge.poll import PENDING, Context, Poll, Ready, Waker
from corobridge.state import AwaitableState

log = logger.bind(component="adapter")


def _iterate(awaitable: Any) -> Iterator[Any]:
    if inspect.iscoroutine(awaitable) or inspect.isgenerator(awaitable):
        return awaitable
    return awaitable.__await__()


class _WakeRelay:
    """Done-callback that forwards to a waker until disarmed."""

    __slots__ = ("waker",)

    def __init__(self, waker: Waker) -> None:
        self.waker: Waker | None = waker

    def __call__(self, *_args: Any) -> None:
        waker = self.waker
        if waker is not None:
            waker.wake()


class CoroutineFutureAdapter:
    """Pollable wrapper around a ``FRESH`` ``AwaitableHandle``.

    The first ``poll()`` moves the handle to ``IN_PROGRESS``; completion or a
    raised exception moves it to ``CONSUMED``; ``cancel()`` moves it to
    ``INVALID``. Only one thread may poll an adapter at a time.

    Args:
        handle: A fresh awaitable handle.
        registry: Registry owning the handle's reference.
        debug: Log every poll step at debug level.

    Raises:
        AlreadyConsumed: ``handle`` is not fresh.
        InvalidHandle: ``handle`` was cancelled or released.
    """

    def __init__(
        self,
        handle: AwaitableHandle,
        registry: HandleRegistry,
        *,
        debug: bool = False,
    ) -> None:
        handle.state_machine.require_fresh()
        self._handle = handle
        self._registry = registry
        self._lock = registry.lock
        self._debug = debug
        self._iterator: Iterator[Any] | None = None
        self._started = False
        self._pending_throw: BaseException | None = None
        self._waker: Waker | None = None
        self._relay: _WakeRelay | None = None
        self._polling = threading.Lock()
        self.steps = 0

    @property
    def handle(self) -> AwaitableHandle:
        return self._handle

    @property
    def state(self) -> AwaitableState:
        return self._handle.state

    def poll(self, cx: Context) -> Poll:
        """Advance the awaitable by one step.

        Raises:
            LockAcquisitionFailure: The calling thread holds the interpreter
                lock, or another thread is polling this adapter.
            AlreadyConsumed: The handle was already driven by someone else.
            InvalidHandle: The adapter was cancelled.
        """
        if self._lock.is_held():
            raise LockAcquisitionFailure(
                "poll() entered while holding the interpreter lock; "
                "it would be held across a suspension point"
            )
        if not self._polling.acquire(blocking=False):
            raise LockAcquisitionFailure("Adapter is already being polled by another thread")
        try:
            self._enter_progress()
            self._waker = cx.waker
            ready, yielded = self._step()
            # Interpreter lock is released from here on
            if ready is not None:
                return ready
            self._arm_waker(yielded, cx)
            return PENDING
        finally:
            self._polling.release()

    def cancel(self) -> bool:
        """Cancel before completion. Idempotent.

        An adapter may only cancel an awaitable that is still fresh or that it
        is driving itself. The last waker handed to ``poll()`` is fired so the
        driver observes the cancellation instead of waiting on a future that
        may never complete.

        Returns:
            True if this call cancelled the awaitable, False if it had
            already completed, been cancelled, or is driven by another adapter.
        """
        handle = self._handle
        with self._lock.acquire() as token:
            if not handle.state_machine.invalidate(owner=self):
                return False
            self._close(token)
            self._registry.release(handle, token)
        relay, self._relay = self._relay, None
        if relay is not None:
            relay.waker = None
        log.debug("Cancelled {!r} after {} steps", handle, self.steps)
        if self._waker is not None:
            self._waker.wake()
        return True

    def _enter_progress(self) -> None:
        machine = self._handle.state_machine
        if not self._started:
            machine.begin(owner=self)
            self._started = True
            return
        state = machine.state
        if state is AwaitableState.INVALID:
            raise InvalidHandle("Awaitable was cancelled")
        if state is AwaitableState.CONSUMED:
            raise AlreadyConsumed("Awaitable was already driven to completion")

    def _step(self) -> tuple[Ready[Any] | None, Any]:
        handle = self._handle
        with self._lock.acquire() as token:
            if handle.state is AwaitableState.INVALID:
                raise InvalidHandle("Awaitable was cancelled")
            self.steps += 1
            raw = handle.get()
            to_throw, self._pending_throw = self._pending_throw, None
            try:
                if self._iterator is None:
                    self._iterator = _iterate(raw)
                if to_throw is None:
                    yielded = self._iterator.send(None)
                else:
                    yielded = self._iterator.throw(to_throw)
            except StopIteration as stop:
                return self._finish(Ok(stop.value), token), None
            except (KeyboardInterrupt, SystemExit):
                handle.state_machine.invalidate(owner=self)
                self._iterator = None
                self._registry.release(handle, token)
                raise
            except (Exception, asyncio.CancelledError) as exc:
                return self._finish(Err(DynamicException.from_exception(exc)), token), None

            if self._debug:
                log.debug("Step {} of {!r} suspended on {!r}", self.steps, handle, yielded)
            return None, yielded

    def _finish(self, result: Result[Any], token: LockToken) -> Ready[Any]:
        self._handle.state_machine.complete()
        self._iterator = None
        self._registry.release(self._handle, token)
        if self._debug:
            log.debug("Step {} of {!r} finished with {!r}", self.steps, self._handle, result)
        return Ready(result)

    def _arm_waker(self, yielded: Any, cx: Context) -> None:
        if yielded is None:
            cx.waker.wake()
            return
        add_done_callback = getattr(yielded, "add_done_callback", None)
        if add_done_callback is None:
            self._pending_throw = RuntimeError(f"Bridged coroutine got bad yield: {yielded!r}")
            cx.waker.wake()
            return
        if getattr(yielded, "_asyncio_future_blocking", False):
            yielded._asyncio_future_blocking = False
        relay = _WakeRelay(cx.waker)
        self._relay = relay
        add_done_callback(relay)
        if self._handle.state is AwaitableState.INVALID:
            # Cancelled between the step and arming; cancel() already woke the driver
            relay.waker = None

    def _close(self, token: LockToken) -> None:
        token.ensure_held()
        target = self._iterator if self._iterator is not None else self._handle._ref.obj
        self._iterator = None
        close = getattr(target, "close", None)
        if close is None:
            return
        try:
            close()
        except Exception:
            log.opt(exception=True).warning("Failed to close {!r} on cancellation", self._handle)

    def __repr__(self) -> str:
        return f"CoroutineFutureAdapter({self._handle!r}, steps={self.steps})"


__all__ = [
    "CoroutineFutureAdapter",
]
