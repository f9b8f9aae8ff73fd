# =============================================================================
# RTC Session -- Error Classification
# =============================================================================
#
# Buckets raw transport failures into ErrorKind and maps stable reason
# codes to user-facing text.
# =============================================================================

from __future__ import annotations

import asyncio

from .constants import (
    WS_CLOSE_ABNORMAL,
    WS_CLOSE_AUTH_EXPIRED,
    WS_CLOSE_AUTH_FAILED,
    WS_CLOSE_GOING_AWAY,
    WS_CLOSE_INVALID_CHANNEL,
    WS_CLOSE_POLICY_VIOLATION,
    WS_CLOSE_SERVER_ERROR,
)
from .errors import TransportError
from .types import ErrorKind

_AUTH_CODES = frozenset(
    {
        "AUTH_REJECTED",
        "INVALID_TOKEN",
        "TOKEN_EXPIRED",
        "DYNAMIC_USE_STATIC_KEY",
        4096,
        401,
        403,
        WS_CLOSE_AUTH_FAILED,
        WS_CLOSE_AUTH_EXPIRED,
        WS_CLOSE_POLICY_VIOLATION,
    }
)

_INVALID_CHANNEL_CODES = frozenset(
    {
        "INVALID_CHANNEL",
        "INVALID_CHANNEL_NAME",
        WS_CLOSE_INVALID_CHANNEL,
    }
)

_NETWORK_CODES = frozenset(
    {
        "NETWORK_ERROR",
        "CAN_NOT_GET_GATEWAY_SERVER",
        "JOIN_TIMEOUT",
        "CONNECTION_REFUSED",
        "TIMEOUT",
        502,
        503,
        504,
        WS_CLOSE_GOING_AWAY,
        WS_CLOSE_ABNORMAL,
        WS_CLOSE_SERVER_ERROR,
    }
)

# Checked in order; the first match wins
_MESSAGE_PATTERNS: tuple[tuple[str, ErrorKind], ...] = (
    ("invalid channel", ErrorKind.INVALID_CHANNEL),
    ("dynamic use static key", ErrorKind.AUTH_REJECTED),
    ("invalid token", ErrorKind.AUTH_REJECTED),
    ("token expired", ErrorKind.AUTH_REJECTED),
    ("unauthorized", ErrorKind.AUTH_REJECTED),
    ("forbidden", ErrorKind.AUTH_REJECTED),
    ("timed out", ErrorKind.NETWORK),
    ("timeout", ErrorKind.NETWORK),
    ("gateway", ErrorKind.NETWORK),
    ("unreachable", ErrorKind.NETWORK),
    ("connection refused", ErrorKind.NETWORK),
    ("network", ErrorKind.NETWORK),
)

REASON_MESSAGES: dict[str, str] = {
    ErrorKind.NETWORK.value: "Network connection issue. Please check your internet.",
    ErrorKind.AUTH_REJECTED.value: "Authentication failed. Please sign in again.",
    ErrorKind.INVALID_CHANNEL.value: "This session is not available. Check the link and try again.",
    ErrorKind.UNKNOWN.value: "Connection issue. Please try again.",
    "cancelled": "Joining was cancelled.",
}


def classify_error(exc: BaseException) -> ErrorKind:
    """Map any exception raised by a connect attempt to an :class:`ErrorKind`.

    Structured codes win over message text, message text over the
    exception type.
    """
    if isinstance(exc, TransportError):
        kind = _classify_code(exc.code)
        if kind is not None:
            return kind
        kind = _classify_message(exc.message)
        if kind is not None:
            return kind
    else:
        code = getattr(exc, "code", None)
        if code is not None:
            kind = _classify_code(code)
            if kind is not None:
                return kind
        kind = _classify_message(str(exc))
        if kind is not None:
            return kind

    if isinstance(exc, (TimeoutError, asyncio.TimeoutError, ConnectionError, OSError)):
        return ErrorKind.NETWORK
    return ErrorKind.UNKNOWN


def is_fatal(kind: ErrorKind) -> bool:
    """True for kinds that end a sequence regardless of attempt budget."""
    return kind == ErrorKind.INVALID_CHANNEL


def describe_reason(reason: ErrorKind | str | None) -> str:
    """Human-readable text for a stable reason code."""
    code = getattr(reason, "value", reason)
    return REASON_MESSAGES.get(code or "", REASON_MESSAGES[ErrorKind.UNKNOWN.value])


def _classify_code(code: object) -> ErrorKind | None:
    if code is None:
        return None
    if isinstance(code, str):
        normalized: object = code.strip().upper()
        if isinstance(normalized, str) and normalized.isdigit():
            normalized = int(normalized)
    else:
        normalized = code
    if normalized in _INVALID_CHANNEL_CODES:
        return ErrorKind.INVALID_CHANNEL
    if normalized in _AUTH_CODES:
        return ErrorKind.AUTH_REJECTED
    if normalized in _NETWORK_CODES:
        return ErrorKind.NETWORK
    return None


def _classify_message(message: str | None) -> ErrorKind | None:
    if not message:
        return None
    lowered = message.lower()
    for pattern, kind in _MESSAGE_PATTERNS:
        if pattern in lowered:
            return kind
    return None
