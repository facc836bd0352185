"""Host executors that drive bridged pollables.

- ThreadPoolHost: worker threads fed from a run queue
- AsyncioHost: a dedicated asyncio loop in a background thread
"""

from __future__ import annotations

from corobridge.config import BridgeConfig, ExecutorKind
from corobridge.executor.asyncio_host import AsyncioHost
from corobridge.executor.base import HostExecutor, TaskStatus, block_on_current_thread
from corobridge.executor.thread_pool import ThreadPoolHost


def create_executor(config: BridgeConfig) -> HostExecutor:
    """Build the executor named by ``config.executor``."""
    if config.executor is ExecutorKind.ASYNCIO:
        return AsyncioHost()
    return ThreadPoolHost(workers=config.workers)


__all__ = [
    "AsyncioHost",
    "HostExecutor",
    "TaskStatus",
    "ThreadPoolHost",
    "block_on_current_thread",
    "create_executor",
]
