"""
Pytest configuration for bridge tests.

Provides an isolated lock/registry per test, host executor fixtures
(parameterized over both executor implementations), and makes sure the
process-wide bridge never leaks from one test into the next.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterator
from typing import Any

import pytest

from corobridge import (
    AsyncioHost,
    Context,
    CoroutineFutureAdapter,
    ExecutorBridge,
    HandleRegistry,
    HostExecutor,
    InterpreterLock,
    InvocationDispatcher,
    Ready,
    ThreadPoolHost,
    Waker,
    init_bridge,
    shutdown_bridge,
)
from corobridge._vendor import Result


class WakeRecorder:
    """Poll context whose waker only counts how often it was called."""

    def __init__(self) -> None:
        self.wakes = 0
        self._mutex = threading.Lock()
        self.context = Context(Waker(self._wake))

    def _wake(self) -> None:
        with self._mutex:
            self.wakes += 1


@pytest.fixture(autouse=True)
def _isolated_bridge(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Clear COROBRIDGE_* variables and tear down the process bridge after each test."""
    for name in ("COROBRIDGE_EXECUTOR", "COROBRIDGE_WORKERS", "COROBRIDGE_LOCK_TIMEOUT", "COROBRIDGE_DEBUG"):
        monkeypatch.delenv(name, raising=False)
    shutdown_bridge()
    yield
    shutdown_bridge()


@pytest.fixture
def lock() -> InterpreterLock:
    return InterpreterLock()


@pytest.fixture
def registry(lock: InterpreterLock) -> HandleRegistry:
    return HandleRegistry(lock)


@pytest.fixture
def dispatcher(registry: HandleRegistry) -> InvocationDispatcher:
    return InvocationDispatcher(registry)


@pytest.fixture
def recorder() -> WakeRecorder:
    return WakeRecorder()


@pytest.fixture
def adapt(registry: HandleRegistry, dispatcher: InvocationDispatcher) -> Callable[[Any], CoroutineFutureAdapter]:
    """Register a raw callable/awaitable on the test registry and wrap it."""

    def _adapt(raw: Any) -> CoroutineFutureAdapter:
        handle = registry.register(raw)
        return CoroutineFutureAdapter(dispatcher.obtain_awaitable(handle), registry)

    return _adapt


@pytest.fixture
def poll_until_ready(
    recorder: WakeRecorder, lock: InterpreterLock
) -> Callable[[CoroutineFutureAdapter], Result[Any]]:
    """Drive an adapter by hand, checking the lock is free after every poll."""

    def _drive(adapter: CoroutineFutureAdapter, max_polls: int = 1000) -> Result[Any]:
        for _ in range(max_polls):
            outcome = adapter.poll(recorder.context)
            assert lock.depth() == 0
            if isinstance(outcome, Ready):
                return outcome.result
        raise AssertionError(f"{adapter!r} not ready after {max_polls} polls")

    return _drive


@pytest.fixture
def wait_until() -> Callable[[Callable[[], bool]], None]:
    def _wait(predicate: Callable[[], bool], timeout: float = 5.0) -> None:
        deadline = time.monotonic() + timeout
        while not predicate():
            if time.monotonic() > deadline:
                raise AssertionError("condition not met before timeout")
            time.sleep(0.001)

    return _wait


@pytest.fixture
def thread_pool_host() -> Iterator[ThreadPoolHost]:
    host = ThreadPoolHost(workers=4)
    yield host
    host.shutdown()


@pytest.fixture
def asyncio_host() -> Iterator[AsyncioHost]:
    host = AsyncioHost()
    yield host
    host.shutdown()


@pytest.fixture(params=["thread_pool", "asyncio"])
def host(request: pytest.FixtureRequest) -> Iterator[HostExecutor]:
    """Parameterized fixture providing both host executor implementations."""
    executor: HostExecutor
    if request.param == "thread_pool":
        executor = ThreadPoolHost(workers=4)
    else:
        executor = AsyncioHost()
    yield executor
    executor.shutdown()


@pytest.fixture
def bridge() -> ExecutorBridge:
    """Process-wide bridge on a four-worker thread pool."""
    return init_bridge(ThreadPoolHost(workers=4))
