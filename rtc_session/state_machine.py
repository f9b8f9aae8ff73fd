# =============================================================================
# RTC Session -- Connection State Machine
# =============================================================================
#
# Single source of truth for session state.  Every accepted transition is
# published as StateChanged before transition() returns.
# =============================================================================

from __future__ import annotations

from ._logging import logger
from .errors import InvariantViolationError
from .event_bus import EventBus
from .types import ConnectionState, ConnectionStatus, StateChanged

_S = ConnectionStatus

# Connecting/Reconnecting -> Disconnecting covers leave() during a sequence,
# Failed -> Idle covers leave() after a terminal failure.
TRANSITIONS: dict[ConnectionStatus, frozenset[ConnectionStatus]] = {
    _S.IDLE: frozenset({_S.CONNECTING}),
    _S.CONNECTING: frozenset(
        {_S.CONNECTING, _S.CONNECTED, _S.FAILED, _S.DISCONNECTING}
    ),
    _S.CONNECTED: frozenset({_S.RECONNECTING, _S.DISCONNECTING}),
    _S.RECONNECTING: frozenset(
        {_S.RECONNECTING, _S.CONNECTED, _S.FAILED, _S.DISCONNECTING}
    ),
    _S.DISCONNECTING: frozenset({_S.IDLE}),
    _S.FAILED: frozenset({_S.CONNECTING, _S.IDLE}),
}

_HANDLE_STATES = frozenset({_S.CONNECTED, _S.DISCONNECTING})


class ConnectionStateMachine:
    """Owns the one :class:`ConnectionState` of a session manager.

    Illegal transitions raise :class:`InvariantViolationError`; they mean
    the caller has a bug, so they are never silently ignored.
    """

    def __init__(self, bus: EventBus | None = None) -> None:
        self._bus = bus if bus is not None else EventBus()
        self._state = ConnectionState.idle()

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def status(self) -> ConnectionStatus:
        return self._state.status

    @property
    def bus(self) -> EventBus:
        return self._bus

    def can_transition(self, status: ConnectionStatus) -> bool:
        return status in TRANSITIONS[self._state.status]

    def transition(self, new: ConnectionState) -> ConnectionState:
        old = self._state
        if new.status not in TRANSITIONS[old.status]:
            self._violation(
                f"Illegal transition {old.status.value} -> {new.status.value}"
            )
        if new.status == _S.CONNECTED and new.handle is None:
            self._violation("CONNECTED requires a transport handle")
        if new.handle is not None and new.status not in _HANDLE_STATES:
            self._violation(f"{new.status.value} must not hold a transport handle")

        self._state = new
        logger.debug("State: %s -> %s", old.status.value, new.status.value)
        self._bus.publish(StateChanged(old=old, new=new))
        return new

    @staticmethod
    def _violation(message: str) -> None:
        logger.error("Invariant violation: %s", message)
        raise InvariantViolationError(message)
