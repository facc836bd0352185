"""Tests for handle classification and locked release."""

from __future__ import annotations

import gc
import inspect
import threading

import pytest

from corobridge import (
    AwaitableHandle,
    AwaitableState,
    CallableHandle,
    CoroutineFutureAdapter,
    HandleRegistry,
    InterpreterLock,
    InvalidHandle,
    LockAcquisitionFailure,
    Ok,
    Ready,
    yield_now,
)


async def greet() -> str:
    return "hello, world"


async def suspends_once() -> int:
    await yield_now()
    return 1


class Answer:
    def __await__(self):
        yield
        return 42


def test_callable_is_classified_once(registry: HandleRegistry) -> None:
    handle = registry.register(greet)
    assert isinstance(handle, CallableHandle)
    assert handle.get() is greet
    assert registry.live_count == 1


def test_coroutine_is_classified_as_awaitable(registry: HandleRegistry) -> None:
    coro = greet()
    handle = registry.register(coro)
    assert isinstance(handle, AwaitableHandle)
    assert handle.state is AwaitableState.FRESH
    assert handle.get() is coro
    coro.close()


def test_custom_awaitable_is_classified_as_awaitable(registry: HandleRegistry) -> None:
    handle = registry.register(Answer())
    assert isinstance(handle, AwaitableHandle)


@pytest.mark.parametrize("raw", [None, 42, "text", object()])
def test_unusable_references_are_rejected(registry: HandleRegistry, raw: object) -> None:
    with pytest.raises(InvalidHandle):
        registry.register(raw)
    assert registry.live_count == 0


def test_closed_coroutine_is_rejected(registry: HandleRegistry) -> None:
    coro = greet()
    coro.close()
    with pytest.raises(InvalidHandle, match="closed"):
        registry.register(coro)


def test_coroutine_started_elsewhere_is_rejected(registry: HandleRegistry) -> None:
    coro = suspends_once()
    coro.send(None)
    try:
        with pytest.raises(InvalidHandle, match="already started"):
            registry.register(coro)
    finally:
        coro.close()


def test_registering_a_live_handle_returns_it(registry: HandleRegistry) -> None:
    handle = registry.register(greet)
    assert registry.register(handle) is handle
    assert registry.live_count == 1


def test_release_is_idempotent(registry: HandleRegistry) -> None:
    handle = registry.register(greet)
    assert registry.release(handle) is True
    assert registry.release(handle) is False
    assert handle.released
    assert registry.live_count == 0
    with pytest.raises(InvalidHandle):
        handle.get()
    with pytest.raises(InvalidHandle, match="already released"):
        registry.register(handle)


def test_release_with_held_token(lock: InterpreterLock, registry: HandleRegistry) -> None:
    handle = registry.register(greet)
    with lock.acquire() as token:
        assert registry.release(handle, token) is True
        assert lock.depth() == 1
    assert lock.depth() == 0


def test_release_with_spent_token_is_rejected(lock: InterpreterLock, registry: HandleRegistry) -> None:
    handle = registry.register(greet)
    with lock.acquire() as token:
        pass
    with pytest.raises(LockAcquisitionFailure):
        registry.release(handle, token)
    assert not handle.released


def test_release_requires_the_lock() -> None:
    lock = InterpreterLock(default_timeout=0.05)
    registry = HandleRegistry(lock)
    handle = registry.register(greet)
    holding = threading.Event()
    done = threading.Event()

    def holder() -> None:
        with lock.acquire(timeout=5):
            holding.set()
            done.wait(5)

    thread = threading.Thread(target=holder)
    thread.start()
    holding.wait(5)
    try:
        with pytest.raises(LockAcquisitionFailure):
            registry.release(handle)
        assert not handle.released
    finally:
        done.set()
        thread.join()
    assert registry.release(handle) is True


def test_dropping_a_handle_releases_its_reference(registry: HandleRegistry) -> None:
    handle = registry.register(greet)
    assert registry.live_count == 1
    del handle
    gc.collect()
    assert registry.live_count == 0


def test_wrap_awaitable_requires_held_token(lock: InterpreterLock, registry: HandleRegistry) -> None:
    coro = greet()
    with lock.acquire() as token:
        handle = registry.wrap_awaitable(coro, token)
    assert handle.state is AwaitableState.FRESH
    with pytest.raises(LockAcquisitionFailure):
        registry.wrap_awaitable(Answer(), token)
    coro.close()


def test_release_invalidates_a_fresh_awaitable(registry: HandleRegistry) -> None:
    coro = greet()
    handle = registry.register(coro)
    assert registry.release(handle) is True
    assert handle.state is AwaitableState.INVALID
    assert inspect.getcoroutinestate(coro) == inspect.CORO_CLOSED


def test_release_closes_a_suspended_coroutine(registry: HandleRegistry, recorder) -> None:
    events: list[str] = []

    async def guarded() -> None:
        try:
            await yield_now()
            await yield_now()
        finally:
            events.append("closed")

    handle = registry.register(guarded())
    adapter = CoroutineFutureAdapter(handle, registry)
    adapter.poll(recorder.context)

    assert registry.release(handle) is True
    assert handle.state is AwaitableState.INVALID
    assert events == ["closed"]
    with pytest.raises(InvalidHandle):
        adapter.poll(recorder.context)


def test_release_after_completion_keeps_consumed(registry: HandleRegistry, recorder) -> None:
    handle = registry.register(greet())
    adapter = CoroutineFutureAdapter(handle, registry)
    assert adapter.poll(recorder.context) == Ready(Ok("hello, world"))
    assert registry.release(handle) is False
    assert handle.state is AwaitableState.CONSUMED
