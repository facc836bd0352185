"""Bridge configuration."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum


class ExecutorKind(str, Enum):
    """Host executor implementations the bridge can be initialized with."""

    THREAD_POOL = "thread_pool"
    ASYNCIO = "asyncio"


def _default_workers() -> int:
    # Same default as concurrent.futures.ThreadPoolExecutor
    return min(32, (os.cpu_count() or 1) + 4)


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes")


@dataclass(frozen=True)
class BridgeConfig:
    """Settings for the process-wide bridge.

    Attributes:
        executor: Executor kind the bridge must be driven by.
        workers: Worker thread count for ``ThreadPoolHost``.
        lock_timeout: Seconds to wait for the interpreter lock before raising
            ``LockAcquisitionFailure``. ``None`` waits forever.
        debug: Emit a debug log line for every poll step.
    """

    executor: ExecutorKind = ExecutorKind.THREAD_POOL
    workers: int = 4
    lock_timeout: float | None = None
    debug: bool = False

    def __post_init__(self) -> None:
        if not isinstance(self.executor, ExecutorKind):
            object.__setattr__(self, "executor", ExecutorKind(self.executor))
        if self.workers < 1:
            raise ValueError(f"workers must be >= 1, got {self.workers}")
        if self.lock_timeout is not None and self.lock_timeout <= 0:
            raise ValueError(f"lock_timeout must be positive, got {self.lock_timeout}")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> BridgeConfig:
        """Build a config from ``COROBRIDGE_*`` environment variables.

        Recognized variables:
            COROBRIDGE_EXECUTOR: ``thread_pool`` or ``asyncio``
            COROBRIDGE_WORKERS: positive integer
            COROBRIDGE_LOCK_TIMEOUT: seconds, float
            COROBRIDGE_DEBUG: ``1``/``true``/``yes``
        """
        env = os.environ if environ is None else environ

        executor_name = env.get("COROBRIDGE_EXECUTOR", ExecutorKind.THREAD_POOL.value)
        try:
            executor = ExecutorKind(executor_name.strip().lower())
        except ValueError:
            choices = ", ".join(kind.value for kind in ExecutorKind)
            raise ValueError(
                f"COROBRIDGE_EXECUTOR must be one of {choices}, got {executor_name!r}"
            ) from None

        workers_raw = env.get("COROBRIDGE_WORKERS")
        try:
            workers = int(workers_raw) if workers_raw else _default_workers()
        except ValueError:
            raise ValueError(f"COROBRIDGE_WORKERS must be an integer, got {workers_raw!r}") from None

        timeout_raw = env.get("COROBRIDGE_LOCK_TIMEOUT")
        try:
            lock_timeout = float(timeout_raw) if timeout_raw else None
        except ValueError:
            raise ValueError(
                f"COROBRIDGE_LOCK_TIMEOUT must be a number of seconds, got {timeout_raw!r}"
            ) from None

        return cls(
            executor=executor,
            workers=workers,
            lock_timeout=lock_timeout,
            debug=_parse_bool(env.get("COROBRIDGE_DEBUG", "")),
        )


__all__ = [
    "BridgeConfig",
    "ExecutorKind",
]
