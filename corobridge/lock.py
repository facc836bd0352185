"""Scoped access to the interpreter lock.

All stepping of bridged coroutines, every callable invocation and every
reference release happen while holding the process-wide ``InterpreterLock``.
Access is only ever granted through a ``LockToken`` used as a context manager,
so the lock is released on every exit path of the enclosing block:

    lock = get_interpreter_lock()
    with lock.acquire() as token:
        ...  # exclusive access; token.held is True

The token is single-use. Entering it a second time, or using it after the
block exits, raises ``LockAcquisitionFailure``. Acquisition is reentrant on
the same thread, so nested blocks do not deadlock.

The one rule callers must keep: never suspend (return ``Pending`` to a host
executor) inside a ``with`` block. ``depth()`` exposes the calling thread's
nesting level so the adapter can detect violations.
"""

from __future__ import annotations

import threading
from enum import Enum, auto
from types import TracebackType

from loguru import logger

from corobridge.errors import LockAcquisitionFailure

log = logger.bind(component="interpreter_lock")


class _TokenState(Enum):
    UNUSED = auto()
    HELD = auto()
    SPENT = auto()


class LockToken:
    """Permit proving exclusive access to bridged coroutine state."""

    __slots__ = ("_lock", "_timeout", "_owner", "_state")

    def __init__(self, lock: InterpreterLock, timeout: float | None) -> None:
        self._lock = lock
        self._timeout = timeout
        self._owner: int | None = None
        self._state = _TokenState.UNUSED

    def __enter__(self) -> LockToken:
        if self._state is not _TokenState.UNUSED:
            raise LockAcquisitionFailure("LockToken is single-use and cannot be re-entered")
        self._lock._acquire(self._timeout)
        self._owner = threading.get_ident()
        self._state = _TokenState.HELD
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self._state = _TokenState.SPENT
        self._lock._release()

    @property
    def held(self) -> bool:
        """True while inside the token's ``with`` block on the owning thread."""
        return self._state is _TokenState.HELD and self._owner == threading.get_ident()

    def ensure_held(self) -> None:
        """Raise ``LockAcquisitionFailure`` unless this token is currently held."""
        if self._state is _TokenState.UNUSED:
            raise LockAcquisitionFailure("LockToken was never entered")
        if self._state is _TokenState.SPENT:
            raise LockAcquisitionFailure("LockToken used after its scope exited")
        if self._owner != threading.get_ident():
            raise LockAcquisitionFailure("LockToken used from a thread that does not hold it")


class InterpreterLock:
    """Reentrant, instrumented mutual exclusion for the bridged runtime.

    Attributes:
        default_timeout: Seconds ``acquire()`` waits when no timeout is given.
            ``None`` waits forever.
    """

    def __init__(self, default_timeout: float | None = None) -> None:
        self.default_timeout = default_timeout
        self._lock = threading.RLock()
        self._local = threading.local()

    def acquire(self, timeout: float | None = None) -> LockToken:
        """Return a token that acquires the lock when its ``with`` block is entered."""
        return LockToken(self, timeout)

    def depth(self) -> int:
        """Nesting depth of the lock held by the calling thread (0 when not held)."""
        return getattr(self._local, "depth", 0)

    def is_held(self) -> bool:
        return self.depth() > 0

    def _acquire(self, timeout: float | None) -> None:
        if timeout is None:
            timeout = self.default_timeout
        acquired = self._lock.acquire(timeout=-1 if timeout is None else timeout)
        if not acquired:
            log.warning("Interpreter lock not acquired within {}s", timeout)
            raise LockAcquisitionFailure(
                f"Timed out after {timeout}s waiting for the interpreter lock"
            )
        self._local.depth = self.depth() + 1

    def _release(self) -> None:
        depth = self.depth()
        if depth <= 0:
            raise LockAcquisitionFailure("Interpreter lock released by a thread that does not hold it")
        self._local.depth = depth - 1
        self._lock.release()


_interpreter_lock = InterpreterLock()


def get_interpreter_lock() -> InterpreterLock:
    """Return the process-wide interpreter lock."""
    return _interpreter_lock


__all__ = [
    "InterpreterLock",
    "LockToken",
    "get_interpreter_lock",
]
