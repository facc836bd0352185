"""Drives adapted coroutines to completion on the process's host executor.

Design:
    - Exactly one bridge, bound to one executor, exists per process.
    - ``init_bridge()`` creates it; calling it again is a no-op unless it asks
      for a different executor kind, which raises ``ExecutorMismatch``.
    - Every other module-level function raises ``BridgeNotInitialized`` until
      ``init_bridge()`` has run.

Usage::

    from corobridge import call, init_bridge, spawn

    async def greet():
        return "hello, world"

    init_bridge()
    call(greet)                 # Ok('hello, world')
    invocation = spawn(greet)   # returns immediately
    invocation.result()         # Ok('hello, world')
"""

from __future__ import annotations

import asyncio
import atexit
import concurrent.futures
import dataclasses
import os
import threading
from collections.abc import Generator
from typing import Any

from loguru import logger

from corobridge._vendor import Err, Result
from corobridge.adapter import CoroutineFutureAdapter
from corobridge.config import BridgeConfig
from corobridge.dispatcher import InvocationDispatcher
from corobridge.errors import BridgeNotInitialized, DynamicException, ExecutorMismatch, InvalidHandle
from corobridge.executor import HostExecutor, create_executor
from corobridge.handles import HandleRegistry

log = logger.bind(component="bridge")


class Invocation:
    """A spawned drive of one awaitable on the host executor.

    ``result()`` blocks for the outcome; ``await invocation`` waits from
    asyncio code. Cancelling the awaiting asyncio task cancels the invocation.
    """

    def __init__(
        self,
        adapter: CoroutineFutureAdapter | None,
        future: concurrent.futures.Future[Result[Any]],
    ) -> None:
        self.adapter = adapter
        self.cancelled = False
        self._future = future

    def done(self) -> bool:
        return self._future.done()

    def result(self, timeout: float | None = None) -> Result[Any]:
        """Block until the coroutine finishes and return its ``Result``.

        Raises:
            TimeoutError: ``timeout`` elapsed first; the invocation keeps running.
            InvalidHandle: The invocation was cancelled.
        """
        try:
            return self._future.result(timeout)
        except concurrent.futures.CancelledError:
            raise InvalidHandle("Invocation was cancelled") from None

    def cancel(self) -> bool:
        """Cancel the invocation. Idempotent; no effect once completed.

        Returns:
            True if this call cancelled a still-running invocation.
        """
        if self.adapter is None:
            return False
        cancelled = self.adapter.cancel()
        if cancelled:
            self.cancelled = True
            self._future.cancel()
        return cancelled

    async def _wait(self) -> Result[Any]:
        try:
            return await asyncio.wrap_future(self._future)
        except asyncio.CancelledError:
            if self.cancelled:
                raise InvalidHandle("Invocation was cancelled") from None
            # cancel() waits for the interpreter lock; keep it off the loop thread
            await asyncio.shield(asyncio.to_thread(self.cancel))
            raise

    def __await__(self) -> Generator[Any, None, Result[Any]]:
        return self._wait().__await__()

    def __repr__(self) -> str:
        status = "cancelled" if self.cancelled else ("done" if self.done() else "pending")
        target = self.adapter.handle if self.adapter is not None else "<failed to start>"
        return f"Invocation({target!r}, {status})"


class ExecutorBridge:
    """Binds a registry, a dispatcher and one host executor together.

    Args:
        executor: The host executor all adapters are driven by.
        config: Bridge settings. Defaults to a config naming ``executor``'s kind.
        registry: Handle registry; a fresh one on the process lock by default.

    Raises:
        ExecutorMismatch: ``executor`` is not of the kind ``config`` names.
    """

    def __init__(
        self,
        executor: HostExecutor,
        config: BridgeConfig | None = None,
        registry: HandleRegistry | None = None,
    ) -> None:
        if config is None:
            config = BridgeConfig(executor=executor.kind)
        if executor.kind is not config.executor:
            raise ExecutorMismatch(
                f"Bridge configured for the {config.executor.value} executor "
                f"but given {type(executor).__name__} ({executor.kind.value})"
            )
        self.executor = executor
        self.config = config
        self.registry = registry if registry is not None else HandleRegistry()
        if config.lock_timeout is not None:
            self.registry.lock.default_timeout = config.lock_timeout
        self.dispatcher = InvocationDispatcher(self.registry)

    def adapt(self, raw_ref: Any) -> CoroutineFutureAdapter:
        """Register ``raw_ref`` and wrap a fresh awaitable obtained from it."""
        handle = self.registry.register(raw_ref)
        awaitable = self.dispatcher.obtain_awaitable(handle)
        return CoroutineFutureAdapter(awaitable, self.registry, debug=self.config.debug)

    def run_to_completion(self, adapter: CoroutineFutureAdapter) -> Result[Any]:
        """Drive ``adapter`` until ready, blocking the calling thread."""
        return self.executor.block_on(adapter)

    def run_spawned(self, adapter: CoroutineFutureAdapter) -> Invocation:
        """Schedule ``adapter`` on the executor and return immediately."""
        return Invocation(adapter, self.executor.spawn(adapter))

    def call(self, raw_ref: Any) -> Result[Any]:
        """Adapt a raw callable or awaitable and run it to completion.

        A callable that raises, or returns something that is not awaitable,
        yields ``Err(DynamicException)`` like a coroutine that raises.
        """
        try:
            adapter = self.adapt(raw_ref)
        except DynamicException as exc:
            return Err(exc)
        return self.run_to_completion(adapter)

    def spawn(self, raw_ref: Any) -> Invocation:
        """Adapt a raw callable or awaitable and spawn it.

        If the callable itself fails, the returned invocation is already
        resolved with ``Err(DynamicException)``.
        """
        try:
            adapter = self.adapt(raw_ref)
        except DynamicException as exc:
            failed: concurrent.futures.Future[Result[Any]] = concurrent.futures.Future()
            failed.set_result(Err(exc))
            return Invocation(None, failed)
        return self.run_spawned(adapter)


# ---------------------------------------------------------------------------
# Process-wide bridge
# ---------------------------------------------------------------------------


@dataclasses.dataclass
class _BridgeState:
    bridge: ExecutorBridge | None = None
    lock: threading.Lock = dataclasses.field(default_factory=threading.Lock)
    atexit_registered: bool = False


_state = _BridgeState()


def _resolve_config(executor: HostExecutor | None, config: BridgeConfig | None) -> BridgeConfig:
    if config is not None:
        return config
    env_config = BridgeConfig.from_env()
    if executor is not None and "COROBRIDGE_EXECUTOR" not in os.environ:
        return dataclasses.replace(env_config, executor=executor.kind)
    return env_config


def init_bridge(
    executor: HostExecutor | None = None,
    *,
    config: BridgeConfig | None = None,
) -> ExecutorBridge:
    """Initialize the process-wide bridge. Idempotent.

    Without arguments the configuration comes from ``COROBRIDGE_*``
    environment variables and the executor is built from it.

    Raises:
        ExecutorMismatch: The bridge is already bound to a different executor
            kind, or ``executor`` disagrees with ``config``.
    """
    with _state.lock:
        bridge = _state.bridge
        if bridge is not None:
            requested = executor.kind if executor is not None else (
                config.executor if config is not None else None
            )
            if requested is not None and requested is not bridge.executor.kind:
                raise ExecutorMismatch(
                    f"Bridge already initialized with the {bridge.executor.kind.value} "
                    f"executor; cannot switch to {requested.value}"
                )
            return bridge

        config = _resolve_config(executor, config)
        if executor is None:
            executor = create_executor(config)
        bridge = ExecutorBridge(executor, config)
        _state.bridge = bridge
        if not _state.atexit_registered:
            atexit.register(shutdown_bridge)
            _state.atexit_registered = True

    log.info("Bridge initialized with {}", type(executor).__name__)
    return bridge


def get_bridge() -> ExecutorBridge:
    """Return the process-wide bridge.

    Raises:
        BridgeNotInitialized: ``init_bridge()`` has not been called.
    """
    bridge = _state.bridge
    if bridge is None:
        raise BridgeNotInitialized("init_bridge() must be called before any bridging operation")
    return bridge


def is_initialized() -> bool:
    return _state.bridge is not None


def shutdown_bridge(timeout: float = 5.0) -> bool:
    """Shut down the process-wide bridge and its executor.

    After this ``init_bridge()`` may be called again.

    Returns:
        True if the executor stopped within ``timeout`` (or nothing was running).
    """
    with _state.lock:
        bridge = _state.bridge
        _state.bridge = None
    if bridge is None:
        return True
    if bridge.config.lock_timeout is not None:
        bridge.registry.lock.default_timeout = None
    return bridge.executor.shutdown(timeout)


def run_to_completion(adapter: CoroutineFutureAdapter) -> Result[Any]:
    """Drive ``adapter`` to completion on the process bridge."""
    return get_bridge().run_to_completion(adapter)


def run_spawned(adapter: CoroutineFutureAdapter) -> Invocation:
    """Spawn ``adapter`` on the process bridge."""
    return get_bridge().run_spawned(adapter)


def adapt(raw_ref: Any) -> CoroutineFutureAdapter:
    return get_bridge().adapt(raw_ref)


def call(raw_ref: Any) -> Result[Any]:
    """Run a raw callable or awaitable to completion on the process bridge."""
    return get_bridge().call(raw_ref)


def spawn(raw_ref: Any) -> Invocation:
    """Spawn a raw callable or awaitable on the process bridge."""
    return get_bridge().spawn(raw_ref)


__all__ = [
    "ExecutorBridge",
    "Invocation",
    "adapt",
    "call",
    "get_bridge",
    "init_bridge",
    "is_initialized",
    "run_spawned",
    "run_to_completion",
    "shutdown_bridge",
    "spawn",
]
