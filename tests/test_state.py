import threading

import pytest

from corobridge import AlreadyConsumed, AwaitableState, AwaitableStateMachine, InvalidHandle


def test_fresh_to_in_progress_to_consumed() -> None:
    machine = AwaitableStateMachine()
    assert machine.state is AwaitableState.FRESH
    machine.begin()
    assert machine.state is AwaitableState.IN_PROGRESS
    assert machine.complete() is True
    assert machine.state is AwaitableState.CONSUMED


def test_begin_twice_raises_already_consumed() -> None:
    machine = AwaitableStateMachine()
    machine.begin()
    with pytest.raises(AlreadyConsumed, match="already being driven"):
        machine.begin()


def test_begin_after_consumed_raises_already_consumed() -> None:
    machine = AwaitableStateMachine()
    machine.begin()
    machine.complete()
    with pytest.raises(AlreadyConsumed, match="already driven to completion"):
        machine.begin()
    with pytest.raises(AlreadyConsumed):
        machine.require_fresh()


@pytest.mark.parametrize("started", [False, True])
def test_invalidate_from_non_terminal_states(started: bool) -> None:
    machine = AwaitableStateMachine()
    if started:
        machine.begin()
    assert machine.invalidate() is True
    assert machine.state is AwaitableState.INVALID
    with pytest.raises(InvalidHandle):
        machine.begin()


def test_terminal_states_are_final() -> None:
    consumed = AwaitableStateMachine()
    consumed.begin()
    consumed.complete()
    assert consumed.invalidate() is False
    assert consumed.complete() is False
    assert consumed.state is AwaitableState.CONSUMED

    invalid = AwaitableStateMachine()
    invalid.begin()
    invalid.invalidate()
    assert invalid.invalidate() is False
    assert invalid.complete() is False
    assert invalid.state is AwaitableState.INVALID


def test_complete_requires_in_progress() -> None:
    machine = AwaitableStateMachine()
    assert machine.complete() is False
    assert machine.state is AwaitableState.FRESH


def test_only_one_thread_wins_begin() -> None:
    machine = AwaitableStateMachine()
    barrier = threading.Barrier(16)
    winners: list[int] = []
    losers: list[int] = []

    def contend(index: int) -> None:
        barrier.wait()
        try:
            machine.begin()
        except AlreadyConsumed:
            losers.append(index)
        else:
            winners.append(index)

    threads = [threading.Thread(target=contend, args=(i,)) for i in range(16)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(winners) == 1
    assert len(losers) == 15


def test_only_the_owner_invalidates_an_awaitable_in_progress() -> None:
    machine = AwaitableStateMachine()
    owner, bystander = object(), object()
    machine.begin(owner=owner)

    assert machine.invalidate(owner=bystander) is False
    assert machine.state is AwaitableState.IN_PROGRESS
    assert machine.invalidate(owner=owner) is True
    assert machine.state is AwaitableState.INVALID


def test_any_owner_may_invalidate_a_fresh_awaitable() -> None:
    machine = AwaitableStateMachine()
    assert machine.invalidate(owner=object()) is True
    assert machine.state is AwaitableState.INVALID


def test_invalidate_without_owner_is_unconditional() -> None:
    machine = AwaitableStateMachine()
    machine.begin(owner=object())
    assert machine.invalidate() is True
    assert machine.state is AwaitableState.INVALID
