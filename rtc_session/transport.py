# =============================================================================
# RTC Session -- Transport Protocols
# =============================================================================
#
# The media transport is an external capability.  SessionManager only
# talks to it through these protocols.
# =============================================================================

from __future__ import annotations

from typing import Any, Callable, Protocol, runtime_checkable

from .types import Credential

DisconnectCallback = Callable[[str], Any]
LatencyCallback = Callable[[float | None], Any]
Unsubscribe = Callable[[], None]


@runtime_checkable
class SessionHandle(Protocol):
    """Opaque live connection returned by :meth:`Transport.connect`."""

    @property
    def endpoint(self) -> str: ...


@runtime_checkable
class Transport(Protocol):
    """Minimal transport contract.

    ``connect`` raises :class:`~rtc_session.errors.TransportError` (or any
    exception the classifier can bucket) on failure.
    ``on_unsolicited_disconnect`` registers a callback invoked with a reason
    string when the connection drops without ``disconnect`` being called,
    and returns a callable that removes the registration.
    """

    async def connect(
        self,
        endpoint: str,
        channel_id: str,
        credential: Credential,
        identity: str,
        timeout: float,
    ) -> SessionHandle: ...

    async def disconnect(self, handle: Any) -> None: ...

    def on_unsolicited_disconnect(
        self, handle: Any, callback: DisconnectCallback
    ) -> Unsubscribe: ...


@runtime_checkable
class HealthCheckingTransport(Protocol):
    """Optional: lets the reconnect grace window detect self-healed links."""

    def is_active(self, handle: Any) -> bool: ...


@runtime_checkable
class RenewableTransport(Protocol):
    """Optional: swap the token on a live connection."""

    async def renew_token(self, handle: Any, token: str) -> None: ...


@runtime_checkable
class LatencyReportingTransport(Protocol):
    """Optional: stream round-trip latency samples in milliseconds.

    The callback receives ``None`` for a heartbeat that got no answer.
    """

    def on_latency_sample(
        self, handle: Any, callback: LatencyCallback
    ) -> Unsubscribe: ...
