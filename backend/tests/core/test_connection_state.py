"""Connection State Machine — tests for legal lifecycle transitions."""

import pytest

from app.core.connection_state import ConnectionStateMachine
from app.core.domain_types import ConnectionState as C
from app.core.errors import InvalidStateError


def test_initial_state_is_closed():
    assert ConnectionStateMachine().state == C.CLOSED


def test_full_reconnect_cycle():
    machine = ConnectionStateMachine()
    seen = []
    machine.add_listener(lambda old, new: seen.append((old, new)))
    for target in (C.CONNECTING, C.OPEN, C.RECONNECT_WAIT, C.CONNECTING, C.OPEN):
        machine.transition(target)
    assert machine.is_open
    assert seen[2] == (C.OPEN, C.RECONNECT_WAIT)
    assert len(seen) == 5


def test_connect_failure_goes_to_reconnect_wait():
    machine = ConnectionStateMachine()
    machine.transition(C.CONNECTING)
    machine.transition(C.RECONNECT_WAIT)
    assert machine.state == C.RECONNECT_WAIT


@pytest.mark.parametrize("path", [
    (C.OPEN,),
    (C.CONNECTING, C.CLOSED),
    (C.CONNECTING, C.OPEN, C.CONNECTING),
])
def test_illegal_transitions_raise(path):
    machine = ConnectionStateMachine()
    with pytest.raises(InvalidStateError):
        for target in path:
            machine.transition(target)


def test_shutdown_from_any_state():
    machine = ConnectionStateMachine()
    machine.transition(C.CONNECTING)
    machine.transition(C.OPEN)
    machine.shutdown()
    assert machine.state == C.CLOSED


def test_removed_listener_not_called():
    machine = ConnectionStateMachine()
    seen = []
    remove = machine.add_listener(lambda old, new: seen.append(new))
    remove()
    machine.transition(C.CONNECTING)
    assert seen == []
