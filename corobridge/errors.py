"""Bridge error types."""

from __future__ import annotations

from enum import Enum
from typing import ClassVar


class ErrorKind(str, Enum):
    """Machine-readable kind carried by every bridge error."""

    INVALID_HANDLE = "invalid_handle"
    ALREADY_CONSUMED = "already_consumed"
    DYNAMIC_EXCEPTION = "dynamic_exception"
    LOCK_ACQUISITION_FAILURE = "lock_acquisition_failure"
    EXECUTOR_MISMATCH = "executor_mismatch"
    NOT_INITIALIZED = "not_initialized"


class BridgeError(Exception):
    """Base class for all errors surfaced by the bridge.

    Attributes:
        kind: The error kind, stable across releases.
        message: Human readable description.
    """

    kind: ClassVar[ErrorKind]

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class InvalidHandle(BridgeError):
    """Raised for a null, stale or released reference."""

    kind = ErrorKind.INVALID_HANDLE


class AlreadyConsumed(BridgeError):
    """Raised when a one-shot awaitable is driven a second time."""

    kind = ErrorKind.ALREADY_CONSUMED


class LockAcquisitionFailure(BridgeError):
    """Raised when the interpreter lock discipline is violated.

    Common causes:
    - Polling an adapter while the calling thread holds the interpreter lock
    - Re-entering a spent LockToken
    - Acquisition timing out (see ``BridgeConfig.lock_timeout``)
    """

    kind = ErrorKind.LOCK_ACQUISITION_FAILURE


class ExecutorMismatch(BridgeError):
    """Raised when the bridge is initialized with a second, different executor."""

    kind = ErrorKind.EXECUTOR_MISMATCH


class BridgeNotInitialized(BridgeError):
    """Raised when a bridging operation runs before ``init_bridge()``."""

    kind = ErrorKind.NOT_INITIALIZED


class DynamicException(BridgeError):
    """An exception raised by bridged code, captured at the adapter boundary.

    ``message`` mirrors the text of the original exception so callers can log
    it as-is; ``exc_type`` is the original exception's qualified type name.

    Example:
        >>> err = DynamicException.from_exception(ValueError("bad input"))
        >>> err.exc_type, err.message
        ('ValueError', 'bad input')
    """

    kind = ErrorKind.DYNAMIC_EXCEPTION

    def __init__(
        self,
        exc_type: str,
        message: str,
        original: BaseException | None = None,
    ) -> None:
        self.exc_type = exc_type
        self.original = original
        super().__init__(message)

    @classmethod
    def from_exception(cls, exc: BaseException) -> DynamicException:
        exc_type = type(exc).__qualname__
        module = type(exc).__module__
        if module not in ("builtins", "__main__"):
            exc_type = f"{module}.{exc_type}"
        error = cls(exc_type, str(exc), exc)
        error.__cause__ = exc
        return error

    def __str__(self) -> str:
        if not self.message:
            return self.exc_type
        return f"{self.exc_type}: {self.message}"

    def __repr__(self) -> str:
        return f"DynamicException({self.exc_type!r}, {self.message!r})"


__all__ = [
    "AlreadyConsumed",
    "BridgeError",
    "BridgeNotInitialized",
    "DynamicException",
    "ErrorKind",
    "ExecutorMismatch",
    "InvalidHandle",
    "LockAcquisitionFailure",
]
