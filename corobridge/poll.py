"""Poll contract shared by adapters and host executors.

A host executor calls ``poll(context)`` on a pollable. The pollable either
returns ``Ready(result)`` or returns ``PENDING`` after arranging for
``context.waker.wake()`` to be called once progress is possible. The executor
then polls again.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Final, Generic, Protocol, TypeAlias, TypeVar, runtime_checkable

from corobridge._vendor import Result

T = TypeVar("T")


@dataclass(frozen=True)
class Pending:
    """Not ready; the waker will be called when it is worth polling again."""


PENDING: Final[Pending] = Pending()


@dataclass(frozen=True)
class Ready(Generic[T]):
    """Finished with ``Ok(value)`` or ``Err(DynamicException)``."""

    result: Result[T]


Poll: TypeAlias = Pending | Ready[Any]


class Waker:
    """Schedules another poll of the task it belongs to. Safe from any thread."""

    __slots__ = ("_wake",)

    def __init__(self, wake: Callable[[], None]) -> None:
        self._wake = wake

    def wake(self) -> None:
        self._wake()

    def __call__(self, *_args: Any) -> None:
        # Usable directly as a future done-callback
        self._wake()


@dataclass(frozen=True)
class Context:
    """Per-poll context handed to a pollable by its executor."""

    waker: Waker


@runtime_checkable
class Pollable(Protocol):
    """Anything a host executor can drive."""

    def poll(self, cx: Context) -> Poll: ...

    def cancel(self) -> bool: ...


__all__ = [
    "PENDING",
    "Context",
    "Pending",
    "Poll",
    "Pollable",
    "Ready",
    "Waker",
]
