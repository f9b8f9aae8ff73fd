# =============================================================================
# RTC Session -- Type Definitions
# =============================================================================

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, ClassVar


class ConnectionStatus(str, Enum):
    """Lifecycle status of one logical session.

    Typical flow: IDLE -> CONNECTING -> CONNECTED -> DISCONNECTING -> IDLE.
    RECONNECTING is entered automatically after an unsolicited drop,
    FAILED is terminal until ``retry()`` or ``leave()``.
    """

    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    DISCONNECTING = "disconnecting"
    FAILED = "failed"


class ErrorKind(str, Enum):
    """Classification bucket for a failed attempt.

    The value is also the stable reason code surfaced on ``Failed``.
    """

    NETWORK = "network"
    AUTH_REJECTED = "auth_rejected"
    INVALID_CHANNEL = "invalid_channel"
    UNKNOWN = "unknown"


class CredentialMode(str, Enum):
    TOKEN = "token"
    ANONYMOUS = "anonymous"


class FallbackDecision(str, Enum):
    """What the credential strategy wants the attempt loop to do next."""

    NOT_APPLICABLE = "not-applicable"
    RETRY_WITH_FALLBACK = "retry-with-fallback"
    EXHAUSTED = "exhausted"


class EndpointStatus(str, Enum):
    HEALTHY = "healthy"
    SUSPECT = "suspect"


class AttemptOutcome(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILURE = "failure"


class ConnectionQuality(str, Enum):
    """Network quality derived from latency, jitter, and packet loss.

    Thresholds: EXCELLENT (<=50ms, <=25ms jitter, <=0.1% loss),
    GOOD (<=150ms, <=50ms, <=1%), FAIR (<=300ms, <=100ms, <=3%),
    POOR (anything worse).
    """

    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"
    UNKNOWN = "unknown"


class EventKind(str, Enum):
    """Notification kinds published on the session event bus."""

    STATE_CHANGED = "state_changed"
    RECONNECT_ATTEMPT = "reconnect_attempt"
    JOIN_FAILED = "join_failed"
    CREDENTIAL_FALLBACK = "credential_fallback"
    TOKEN_RENEWED = "token_renewed"


# -- Identity / credentials ---------------------------------------------------


@dataclass(frozen=True, slots=True)
class SessionIdentity:
    """Who joins which channel.  Fixed for one join sequence."""

    user_id: str
    channel_id: str


@dataclass(frozen=True, slots=True)
class Token:
    """Authentication token from the external issuer.

    Attributes:
        value: Opaque token string presented to the transport.
        expires_at: Expiry as ``time.time()`` seconds, ``None`` if unknown.
    """

    value: str
    expires_at: float | None = None

    mode: ClassVar[CredentialMode] = CredentialMode.TOKEN

    def expires_within(self, seconds: float, now: float | None = None) -> bool:
        if self.expires_at is None:
            return False
        now = time.time() if now is None else now
        return self.expires_at - now <= seconds

    def __repr__(self) -> str:
        return f"Token(value=<redacted>, expires_at={self.expires_at!r})"


@dataclass(frozen=True, slots=True)
class AnonymousCredential:
    """Unauthenticated join mode."""

    mode: ClassVar[CredentialMode] = CredentialMode.ANONYMOUS


ANONYMOUS = AnonymousCredential()

Credential = Token | AnonymousCredential


# -- Endpoints / attempts -----------------------------------------------------


@dataclass
class Endpoint:
    """A candidate server address and its health bookkeeping."""

    address: str
    status: EndpointStatus = EndpointStatus.HEALTHY
    last_failure_at: float | None = None
    failures: int = 0
    successes: int = 0

    @property
    def is_healthy(self) -> bool:
        return self.status == EndpointStatus.HEALTHY


@dataclass
class AttemptRecord:
    """Diagnostics for a single connect attempt.  Not authoritative state."""

    attempt: int
    endpoint: str
    credential_mode: CredentialMode
    outcome: AttemptOutcome = AttemptOutcome.PENDING
    error_kind: ErrorKind | None = None
    detail: str | None = None
    timestamp: float = field(default_factory=time.time)


# -- Connection state ---------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ConnectionState:
    """Authoritative state value held by the state machine.

    Only the fields relevant to ``status`` are populated: ``attempt`` for
    CONNECTING/RECONNECTING, ``handle``/``since`` for CONNECTED (and
    optionally ``handle`` for DISCONNECTING), ``reason`` for
    RECONNECTING/FAILED and ``attempts`` for FAILED.
    """

    status: ConnectionStatus = ConnectionStatus.IDLE
    attempt: int = 0
    handle: Any = None
    since: float | None = None
    reason: str | None = None
    attempts: tuple[AttemptRecord, ...] = ()

    @classmethod
    def idle(cls) -> ConnectionState:
        return cls()

    @classmethod
    def connecting(cls, attempt: int) -> ConnectionState:
        return cls(ConnectionStatus.CONNECTING, attempt=attempt)

    @classmethod
    def connected(cls, handle: Any, since: float) -> ConnectionState:
        return cls(ConnectionStatus.CONNECTED, handle=handle, since=since)

    @classmethod
    def reconnecting(cls, attempt: int, reason: str) -> ConnectionState:
        return cls(ConnectionStatus.RECONNECTING, attempt=attempt, reason=reason)

    @classmethod
    def disconnecting(cls, handle: Any = None) -> ConnectionState:
        return cls(ConnectionStatus.DISCONNECTING, handle=handle)

    @classmethod
    def failed(
        cls, reason: str, attempts: tuple[AttemptRecord, ...] = ()
    ) -> ConnectionState:
        return cls(ConnectionStatus.FAILED, reason=reason, attempts=attempts)


# -- Events -------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class StateChanged:
    old: ConnectionState
    new: ConnectionState

    kind: ClassVar[EventKind] = EventKind.STATE_CHANGED


@dataclass(frozen=True, slots=True)
class ReconnectAttempt:
    """A retry is about to run (join retry or automatic reconnect)."""

    attempt: int
    reason: str

    kind: ClassVar[EventKind] = EventKind.RECONNECT_ATTEMPT


@dataclass(frozen=True, slots=True)
class JoinFailed:
    reason: str
    attempts: tuple[AttemptRecord, ...]

    kind: ClassVar[EventKind] = EventKind.JOIN_FAILED


@dataclass(frozen=True, slots=True)
class CredentialFallback:
    """The session switched from token to anonymous join mode."""

    channel_id: str
    reason: str

    kind: ClassVar[EventKind] = EventKind.CREDENTIAL_FALLBACK


@dataclass(frozen=True, slots=True)
class TokenRenewed:
    expires_at: float | None

    kind: ClassVar[EventKind] = EventKind.TOKEN_RENEWED


SessionEvent = (
    StateChanged | ReconnectAttempt | JoinFailed | CredentialFallback | TokenRenewed
)


# -- Diagnostics ----------------------------------------------------------------


@dataclass
class NetworkDiagnostics:
    """Snapshot of network quality analysis from :class:`NetworkMonitor`.

    Attributes:
        quality: Classified connection quality.
        stability: 1.0 = perfect, 0.0 = unusable.
        jitter: Average delta between consecutive RTT samples (ms).
        packet_loss: Estimated loss percentage (0--100).
        round_trip_time: Average RTT in milliseconds.
        suggestions: Hints for degraded connections.
        last_analysis: ``time.monotonic()`` of the last analysis run.
    """

    quality: ConnectionQuality
    stability: float
    jitter: float
    packet_loss: float
    round_trip_time: float
    suggestions: list[str] = field(default_factory=list)
    last_analysis: float | None = None


@dataclass(frozen=True)
class SessionStats:
    """Read-only snapshot returned by ``SessionManager.get_stats()``."""

    status: ConnectionStatus
    channel_id: str | None
    total_attempts: int
    current_endpoint: str | None
    credential_mode: CredentialMode
    retry_count: int
    uptime: float | None
    connection_quality: ConnectionQuality = ConnectionQuality.UNKNOWN
    latency_ms: float | None = None
    endpoints: tuple[dict[str, Any], ...] = ()

    def as_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        data["credential_mode"] = self.credential_mode.value
        data["connection_quality"] = self.connection_quality.value
        data["endpoints"] = list(self.endpoints)
        return data
