"""Tests for the connection state machine."""

import pytest

from rtc_session.errors import InvariantViolationError
from rtc_session.event_bus import EventBus
from rtc_session.state_machine import TRANSITIONS, ConnectionStateMachine
from rtc_session.types import ConnectionState, ConnectionStatus, EventKind

_S = ConnectionStatus

HANDLE = object()


def _state_for(status):
    return {
        _S.IDLE: ConnectionState.idle(),
        _S.CONNECTING: ConnectionState.connecting(1),
        _S.CONNECTED: ConnectionState.connected(HANDLE, since=0.0),
        _S.RECONNECTING: ConnectionState.reconnecting(1, "network"),
        _S.DISCONNECTING: ConnectionState.disconnecting(),
        _S.FAILED: ConnectionState.failed("network"),
    }[status]


def _machine_in(status):
    """Drive a fresh machine into *status* along legal edges."""
    path = {
        _S.IDLE: [],
        _S.CONNECTING: [_S.CONNECTING],
        _S.CONNECTED: [_S.CONNECTING, _S.CONNECTED],
        _S.RECONNECTING: [_S.CONNECTING, _S.CONNECTED, _S.RECONNECTING],
        _S.DISCONNECTING: [_S.CONNECTING, _S.DISCONNECTING],
        _S.FAILED: [_S.CONNECTING, _S.FAILED],
    }[status]
    machine = ConnectionStateMachine()
    for step in path:
        machine.transition(_state_for(step))
    return machine


class TestTransitions:
    def test_starts_idle(self):
        assert ConnectionStateMachine().status == _S.IDLE

    @pytest.mark.parametrize("old", list(_S))
    @pytest.mark.parametrize("new", list(_S))
    def test_table_is_enforced(self, old, new):
        machine = _machine_in(old)
        if new in TRANSITIONS[old]:
            machine.transition(_state_for(new))
            assert machine.status == new
        else:
            with pytest.raises(InvariantViolationError):
                machine.transition(_state_for(new))
            assert machine.status == old

    def test_connected_requires_handle(self):
        machine = _machine_in(_S.CONNECTING)
        with pytest.raises(InvariantViolationError):
            machine.transition(ConnectionState(_S.CONNECTED))

    def test_handle_forbidden_outside_connected(self):
        machine = _machine_in(_S.CONNECTED)
        with pytest.raises(InvariantViolationError):
            machine.transition(ConnectionState(_S.RECONNECTING, attempt=1, handle=HANDLE))

    def test_disconnecting_may_hold_handle(self):
        machine = _machine_in(_S.CONNECTED)
        machine.transition(ConnectionState.disconnecting(HANDLE))
        assert machine.state.handle is HANDLE

    def test_can_transition(self):
        machine = ConnectionStateMachine()
        assert machine.can_transition(_S.CONNECTING)
        assert not machine.can_transition(_S.CONNECTED)


class TestNotifications:
    def test_publishes_state_changed(self):
        bus = EventBus()
        seen = []
        bus.subscribe(EventKind.STATE_CHANGED, seen.append)
        machine = ConnectionStateMachine(bus)
        machine.transition(ConnectionState.connecting(1))
        assert len(seen) == 1
        assert seen[0].old.status == _S.IDLE
        assert seen[0].new.status == _S.CONNECTING

    def test_observer_sees_committed_state(self):
        bus = EventBus()
        machine = ConnectionStateMachine(bus)
        observed = []
        bus.subscribe("state_changed", lambda ev: observed.append(machine.status))
        machine.transition(ConnectionState.connecting(1))
        assert observed == [_S.CONNECTING]

    def test_rejected_transition_not_published(self):
        bus = EventBus()
        seen = []
        bus.subscribe("state_changed", seen.append)
        machine = ConnectionStateMachine(bus)
        with pytest.raises(InvariantViolationError):
            machine.transition(ConnectionState.failed("network"))
        assert seen == []
