"""Turns handles into fresh awaitables ready to be driven."""

from __future__ import annotations

import inspect

from loguru import logger

from corobridge.errors import DynamicException, InvalidHandle
from corobridge.handles import AwaitableHandle, CallableHandle, Handle, HandleRegistry

log = logger.bind(component="dispatcher")


class InvocationDispatcher:
    """Produces a ``FRESH`` ``AwaitableHandle`` from any handle.

    Callables are invoked with no arguments under the interpreter lock; each
    invocation yields an independent awaitable. Awaitable handles are checked
    and returned unchanged.
    """

    def __init__(self, registry: HandleRegistry) -> None:
        self.registry = registry

    def obtain_awaitable(self, handle: Handle) -> AwaitableHandle:
        """Return a fresh awaitable for ``handle``.

        Raises:
            AlreadyConsumed: ``handle`` is an awaitable that was already driven.
            InvalidHandle: ``handle`` was released or cancelled.
            DynamicException: The callable raised, or returned a non-awaitable.
        """
        if isinstance(handle, AwaitableHandle):
            handle.state_machine.require_fresh()
            if handle.released:
                raise InvalidHandle("AwaitableHandle was already released")
            return handle

        if isinstance(handle, CallableHandle):
            return self._invoke(handle)

        raise InvalidHandle(f"Expected a registered handle, got {type(handle).__name__}")

    def _invoke(self, handle: CallableHandle) -> AwaitableHandle:
        target = handle.get()
        with self.registry.lock.acquire() as token:
            try:
                produced = target()
            except Exception as exc:
                log.debug("Callable {!r} raised {!r}", handle, exc)
                raise DynamicException.from_exception(exc) from exc

            if not inspect.isawaitable(produced):
                raise DynamicException(
                    "TypeError",
                    f"object {type(produced).__name__} can't be used in 'await' expression",
                )
            return self.registry.wrap_awaitable(produced, token)


__all__ = [
    "InvocationDispatcher",
]
