"""Single-use lifecycle of an awaitable handle."""

from __future__ import annotations

import threading
from enum import Enum, auto

from corobridge.errors import AlreadyConsumed, BridgeError, InvalidHandle


class AwaitableState(Enum):
    """Lifecycle state of an awaitable handle."""

    FRESH = auto()
    """Not yet driven; may be handed to exactly one adapter."""

    IN_PROGRESS = auto()
    """Being driven by an adapter."""

    CONSUMED = auto()
    """Driven to completion (value or exception)."""

    INVALID = auto()
    """Cancelled or released before completion."""


def _misuse_error(state: AwaitableState) -> BridgeError:
    if state is AwaitableState.IN_PROGRESS:
        return AlreadyConsumed("Awaitable is already being driven by another adapter")
    if state is AwaitableState.CONSUMED:
        return AlreadyConsumed("Awaitable was already driven to completion")
    return InvalidHandle("Awaitable was cancelled or released")


class AwaitableStateMachine:
    """Enforces ``FRESH -> IN_PROGRESS -> CONSUMED`` at most once.

    Any path may instead end in ``INVALID`` through ``invalidate()``. Both
    terminal states are final. Transitions are atomic across threads.
    """

    __slots__ = ("_state", "_owner", "_mutex")

    def __init__(self) -> None:
        self._state = AwaitableState.FRESH
        self._owner: object | None = None
        self._mutex = threading.Lock()

    @property
    def state(self) -> AwaitableState:
        return self._state

    def require_fresh(self) -> None:
        """Raise ``AlreadyConsumed`` or ``InvalidHandle`` unless still fresh."""
        state = self._state
        if state is not AwaitableState.FRESH:
            raise _misuse_error(state)

    def begin(self, owner: object | None = None) -> None:
        """Move ``FRESH -> IN_PROGRESS``; raise for any other state.

        ``owner`` is the driver that won the transition; only it may later
        invalidate the awaitable while it is in progress.
        """
        with self._mutex:
            if self._state is not AwaitableState.FRESH:
                raise _misuse_error(self._state)
            self._state = AwaitableState.IN_PROGRESS
            self._owner = owner

    def complete(self) -> bool:
        """Move ``IN_PROGRESS -> CONSUMED``. Returns False if no longer in progress."""
        with self._mutex:
            if self._state is not AwaitableState.IN_PROGRESS:
                return False
            self._state = AwaitableState.CONSUMED
            self._owner = None
            return True

    def invalidate(self, owner: object | None = None) -> bool:
        """Move a non-terminal state to ``INVALID``.

        With ``owner`` given, an ``IN_PROGRESS`` awaitable is only invalidated
        if ``owner`` is the driver that began it. Without ``owner`` the
        transition is unconditional (used by the registry on release).

        Returns:
            False if already terminal, or in progress under another owner.
        """
        with self._mutex:
            if self._state in (AwaitableState.CONSUMED, AwaitableState.INVALID):
                return False
            if (
                owner is not None
                and self._state is AwaitableState.IN_PROGRESS
                and self._owner is not owner
            ):
                return False
            self._state = AwaitableState.INVALID
            self._owner = None
            return True

    def __repr__(self) -> str:
        return f"AwaitableStateMachine({self._state.name})"


__all__ = [
    "AwaitableState",
    "AwaitableStateMachine",
]
