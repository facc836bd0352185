"""
corobridge - drive coroutines from a poll-based host executor.

Coroutines and zero-argument async callables are registered as handles,
turned into single-use awaitables, and polled to completion by a host
executor. Every coroutine step runs under one process-wide interpreter lock
that is never held across a suspension point.

Example:
    >>> from corobridge import call, init_bridge
    >>>
    >>> async def greet():
    ...     return "hello, world"
    >>>
    >>> init_bridge()
    >>> call(greet)
    Ok(value='hello, world')
"""

from corobridge._vendor import Err, Ok, Result
from corobridge.adapter import CoroutineFutureAdapter
from corobridge.awaitables import wait_future, yield_now
from corobridge.bridge import (
    ExecutorBridge,
    Invocation,
    adapt,
    call,
    get_bridge,
    init_bridge,
    is_initialized,
    run_spawned,
    run_to_completion,
    shutdown_bridge,
    spawn,
)
from corobridge.config import BridgeConfig, ExecutorKind
from corobridge.dispatcher import InvocationDispatcher
from corobridge.errors import (
    AlreadyConsumed,
    BridgeError,
    BridgeNotInitialized,
    DynamicException,
    ErrorKind,
    ExecutorMismatch,
    InvalidHandle,
    LockAcquisitionFailure,
)
from corobridge.executor import AsyncioHost, HostExecutor, ThreadPoolHost
from corobridge.handles import AwaitableHandle, CallableHandle, Handle, HandleRegistry
from corobridge.lock import InterpreterLock, LockToken, get_interpreter_lock
from corobridge.poll import PENDING, Context, Pending, Poll, Ready, Waker
from corobridge.state import AwaitableState, AwaitableStateMachine

__version__ = "0.1.0"

__all__ = [
    # Result types
    "Err",
    "Ok",
    "Result",
    # Handles
    "AwaitableHandle",
    "CallableHandle",
    "Handle",
    "HandleRegistry",
    "AwaitableState",
    "AwaitableStateMachine",
    # Lock
    "InterpreterLock",
    "LockToken",
    "get_interpreter_lock",
    # Poll contract
    "PENDING",
    "Context",
    "Pending",
    "Poll",
    "Ready",
    "Waker",
    # Driving
    "CoroutineFutureAdapter",
    "InvocationDispatcher",
    "ExecutorBridge",
    "Invocation",
    "AsyncioHost",
    "HostExecutor",
    "ThreadPoolHost",
    "wait_future",
    "yield_now",
    # Process-wide bridge
    "BridgeConfig",
    "ExecutorKind",
    "adapt",
    "call",
    "get_bridge",
    "init_bridge",
    "is_initialized",
    "run_spawned",
    "run_to_completion",
    "shutdown_bridge",
    "spawn",
    # Errors
    "AlreadyConsumed",
    "BridgeError",
    "BridgeNotInitialized",
    "DynamicException",
    "ErrorKind",
    "ExecutorMismatch",
    "InvalidHandle",
    "LockAcquisitionFailure",
]
