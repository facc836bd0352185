import os

import pytest

from corobridge import BridgeConfig, ExecutorKind


def test_defaults() -> None:
    config = BridgeConfig()
    assert config.executor is ExecutorKind.THREAD_POOL
    assert config.workers == 4
    assert config.lock_timeout is None
    assert config.debug is False


def test_executor_name_is_coerced() -> None:
    assert BridgeConfig(executor="asyncio").executor is ExecutorKind.ASYNCIO


@pytest.mark.parametrize(
    "kwargs",
    [
        {"executor": "tokio"},
        {"workers": 0},
        {"lock_timeout": 0},
        {"lock_timeout": -1.0},
    ],
)
def test_invalid_values_are_rejected(kwargs: dict) -> None:
    with pytest.raises(ValueError):
        BridgeConfig(**kwargs)


def test_from_env_defaults() -> None:
    config = BridgeConfig.from_env({})
    assert config.executor is ExecutorKind.THREAD_POOL
    assert config.workers == min(32, (os.cpu_count() or 1) + 4)
    assert config.lock_timeout is None
    assert config.debug is False


def test_from_env_reads_every_variable() -> None:
    config = BridgeConfig.from_env(
        {
            "COROBRIDGE_EXECUTOR": " AsyncIO ",
            "COROBRIDGE_WORKERS": "8",
            "COROBRIDGE_LOCK_TIMEOUT": "0.5",
            "COROBRIDGE_DEBUG": "true",
        }
    )
    assert config == BridgeConfig(
        executor=ExecutorKind.ASYNCIO,
        workers=8,
        lock_timeout=0.5,
        debug=True,
    )


def test_from_env_uses_process_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("COROBRIDGE_WORKERS", "2")
    assert BridgeConfig.from_env().workers == 2


@pytest.mark.parametrize(
    ("name", "value", "message"),
    [
        ("COROBRIDGE_EXECUTOR", "tokio", "COROBRIDGE_EXECUTOR"),
        ("COROBRIDGE_WORKERS", "many", "COROBRIDGE_WORKERS"),
        ("COROBRIDGE_WORKERS", "0", "workers"),
        ("COROBRIDGE_LOCK_TIMEOUT", "soon", "COROBRIDGE_LOCK_TIMEOUT"),
    ],
)
def test_from_env_rejects_bad_values(name: str, value: str, message: str) -> None:
    with pytest.raises(ValueError, match=message):
        BridgeConfig.from_env({name: value})


@pytest.mark.parametrize("value", ["0", "false", "no", ""])
def test_debug_flag_is_off_for_falsy_values(value: str) -> None:
    assert BridgeConfig.from_env({"COROBRIDGE_DEBUG": value}).debug is False
