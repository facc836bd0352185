"""Handles owning references that cross into the bridge, and their registry.

A raw reference is classified exactly once, when it is registered:

- awaitables (coroutines and objects implementing ``__await__``) become an
  ``AwaitableHandle`` carrying a single-use ``AwaitableStateMachine``
- any other callable becomes a ``CallableHandle``, reusable without limit

Call sites branch on the handle type instead of re-inspecting the raw object.
The registry owns every reference for the lifetime of its handle and drops it
under the interpreter lock, either explicitly through ``release()`` or when
the handle object is garbage collected.
"""

from __future__ import annotations

import inspect
import threading
import weakref
from typing import Any, TypeAlias

from loguru import logger

from corobridge.errors import InvalidHandle
from corobridge.lock import InterpreterLock, LockToken, get_interpreter_lock
from corobridge.state import AwaitableState, AwaitableStateMachine

log = logger.bind(component="handle_registry")


class _Reference:
    """Owned slot for a raw reference; emptied exactly once on release."""

    __slots__ = ("obj", "released")

    def __init__(self, obj: Any) -> None:
        self.obj = obj
        self.released = False


class _HandleBase:
    __slots__ = ("_ref", "_finalizer", "__weakref__")

    def __init__(self, ref: _Reference) -> None:
        self._ref = ref
        self._finalizer: weakref.finalize | None = None

    @property
    def released(self) -> bool:
        return self._ref.released

    def get(self) -> Any:
        """Return the owned raw reference, or raise ``InvalidHandle`` if released."""
        if self._ref.released:
            raise InvalidHandle(f"{type(self).__name__} was already released")
        return self._ref.obj


class CallableHandle(_HandleBase):
    """Reusable reference to a zero-argument callable returning an awaitable."""

    __slots__ = ()

    def __repr__(self) -> str:
        if self.released:
            return "CallableHandle(<released>)"
        target = self._ref.obj
        name = getattr(target, "__qualname__", type(target).__name__)
        return f"CallableHandle({name})"


class AwaitableHandle(_HandleBase):
    """Reference to a one-shot coroutine or awaitable."""

    __slots__ = ("state_machine",)

    def __init__(self, ref: _Reference) -> None:
        super().__init__(ref)
        self.state_machine = AwaitableStateMachine()

    @property
    def state(self) -> AwaitableState:
        return self.state_machine.state

    def __repr__(self) -> str:
        return f"AwaitableHandle({self.state.name})"


Handle: TypeAlias = CallableHandle | AwaitableHandle


def _ensure_not_started(raw: Any) -> None:
    if inspect.iscoroutine(raw):
        state = inspect.getcoroutinestate(raw)
        closed, created = inspect.CORO_CLOSED, inspect.CORO_CREATED
    elif inspect.isgenerator(raw):
        state = inspect.getgeneratorstate(raw)
        closed, created = inspect.GEN_CLOSED, inspect.GEN_CREATED
    else:
        return
    if state == closed:
        raise InvalidHandle(f"{type(raw).__name__} is closed or already completed")
    if state != created:
        raise InvalidHandle(f"{type(raw).__name__} was already started outside the bridge")


def _close_awaitable(raw: Any) -> None:
    if not (inspect.iscoroutine(raw) or inspect.isgenerator(raw)):
        return
    try:
        raw.close()
    except Exception:
        log.opt(exception=True).warning("Failed to close {!r} on release", raw)


class HandleRegistry:
    """Classifies raw references into handles and owns their release.

    Attributes:
        lock: Interpreter lock guarding every release.
    """

    def __init__(self, lock: InterpreterLock | None = None) -> None:
        self.lock = lock if lock is not None else get_interpreter_lock()
        self._live = 0
        self._count_mutex = threading.Lock()

    @property
    def live_count(self) -> int:
        """Number of handles registered and not yet released."""
        return self._live

    def register(self, raw_ref: Any) -> Handle:
        """Classify ``raw_ref`` and return a handle owning it.

        Raises:
            InvalidHandle: For ``None``, a released handle, a closed or
                already-started coroutine, or an object that is neither
                awaitable nor callable.
        """
        if raw_ref is None:
            raise InvalidHandle("Cannot register a null reference")
        if isinstance(raw_ref, _HandleBase):
            if raw_ref.released:
                raise InvalidHandle(f"{type(raw_ref).__name__} was already released")
            return raw_ref
        if inspect.isawaitable(raw_ref):
            _ensure_not_started(raw_ref)
            return self._track(AwaitableHandle(_Reference(raw_ref)))
        if callable(raw_ref):
            return self._track(CallableHandle(_Reference(raw_ref)))
        raise InvalidHandle(
            f"Expected a callable or an awaitable, got {type(raw_ref).__name__}"
        )

    def wrap_awaitable(self, raw_awaitable: Any, token: LockToken) -> AwaitableHandle:
        """Register an awaitable produced while ``token`` is held."""
        token.ensure_held()
        if not inspect.isawaitable(raw_awaitable):
            raise InvalidHandle(f"{type(raw_awaitable).__name__} is not awaitable")
        _ensure_not_started(raw_awaitable)
        handle = AwaitableHandle(_Reference(raw_awaitable))
        self._track(handle)
        return handle

    def release(self, handle: Handle, token: LockToken | None = None) -> bool:
        """Drop the handle's reference. Idempotent.

        An awaitable handle released before completion becomes ``INVALID``
        and its coroutine is closed.

        When ``token`` is given it must be held by the caller; otherwise the
        lock is acquired for the duration of the release.

        Returns:
            True if this call released the reference, False if it was already released.
        """
        if token is not None:
            return self._release_handle(handle, token)
        with self.lock.acquire() as own_token:
            return self._release_handle(handle, own_token)

    def _track(self, handle: Handle) -> Handle:
        with self._count_mutex:
            self._live += 1
        handle._finalizer = weakref.finalize(handle, self._finalize, handle._ref)
        log.debug("Registered {!r}", handle)
        return handle

    def _release_handle(self, handle: Handle, token: LockToken) -> bool:
        token.ensure_held()
        if isinstance(handle, AwaitableHandle) and handle.state_machine.invalidate():
            # Released before completion: a suspended coroutine is closed now
            _close_awaitable(handle._ref.obj)
        return self._release_reference(handle._ref, token)

    def _release_reference(self, ref: _Reference, token: LockToken) -> bool:
        token.ensure_held()
        if ref.released:
            return False
        ref.obj = None
        ref.released = True
        with self._count_mutex:
            self._live -= 1
        log.debug("Released reference, {} live handles", self._live)
        return True

    def _finalize(self, ref: _Reference) -> None:
        if ref.released:
            return
        with self.lock.acquire() as token:
            self._release_reference(ref, token)


__all__ = [
    "AwaitableHandle",
    "CallableHandle",
    "Handle",
    "HandleRegistry",
]
