"""Resilient real-time session connection manager.

Async usage::

    from rtc_session import SessionConfig, connect

    config = SessionConfig(endpoints=["wss://edge-1/rtc", "wss://edge-2/rtc"])
    async with connect(config, token_url="https://api/rtc/token") as session:
        session.on("state_changed", lambda ev: print(ev.new.status))
        await session.join("room-42", "user-7")
        ...

Custom transports implement :class:`Transport` and are passed straight
to :class:`SessionManager`.
"""

from __future__ import annotations

from typing import Any

from ._version import __version__
from .classifier import classify_error, describe_reason
from .config import SessionConfig
from .credentials import CredentialIssuer
from .errors import (
    InvalidArgumentError,
    InvariantViolationError,
    IssuerUnavailableError,
    JoinCancelledError,
    JoinFailedError,
    SessionError,
    TransportError,
)
from .event_bus import Subscription
from .http_issuer import HttpTokenIssuer
from .manager import SessionManager
from .transport import (
    HealthCheckingTransport,
    LatencyReportingTransport,
    RenewableTransport,
    SessionHandle,
    Transport,
)
from .types import (
    ANONYMOUS,
    AttemptRecord,
    ConnectionQuality,
    ConnectionState,
    ConnectionStatus,
    CredentialFallback,
    CredentialMode,
    ErrorKind,
    EventKind,
    JoinFailed,
    ReconnectAttempt,
    SessionStats,
    StateChanged,
    Token,
    TokenRenewed,
)
from .ws_transport import WebSocketTransport


def connect(
    config: SessionConfig,
    *,
    token_url: str | None = None,
    issuer: CredentialIssuer | None = None,
    **transport_kwargs: Any,
) -> SessionManager:
    """Create a :class:`SessionManager` over :class:`WebSocketTransport`.

    Use as an async context manager; leaving the block calls ``leave()``.

    Args:
        config: Endpoints and retry policy.
        token_url: Token endpoint for :class:`HttpTokenIssuer`.  Ignored
            when *issuer* is given.
        issuer: Explicit credential issuer.  With neither argument every
            join is anonymous.
        **transport_kwargs: Passed to :class:`WebSocketTransport`.
    """
    if issuer is None and token_url is not None:
        issuer = HttpTokenIssuer(token_url)
    return SessionManager(WebSocketTransport(**transport_kwargs), config, issuer=issuer)


__all__ = [
    "__version__",
    "connect",
    "SessionManager",
    "SessionConfig",
    "Transport",
    "SessionHandle",
    "HealthCheckingTransport",
    "RenewableTransport",
    "LatencyReportingTransport",
    "WebSocketTransport",
    "CredentialIssuer",
    "HttpTokenIssuer",
    "Subscription",
    "ConnectionStatus",
    "ConnectionState",
    "ConnectionQuality",
    "CredentialMode",
    "ErrorKind",
    "EventKind",
    "AttemptRecord",
    "SessionStats",
    "Token",
    "ANONYMOUS",
    "StateChanged",
    "ReconnectAttempt",
    "JoinFailed",
    "CredentialFallback",
    "TokenRenewed",
    "classify_error",
    "describe_reason",
    "SessionError",
    "InvalidArgumentError",
    "InvariantViolationError",
    "TransportError",
    "IssuerUnavailableError",
    "JoinFailedError",
    "JoinCancelledError",
]
