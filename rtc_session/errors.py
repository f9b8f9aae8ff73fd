# =============================================================================
# RTC Session -- Error Types
# =============================================================================

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .types import AttemptRecord, ErrorKind


class SessionError(Exception):
    """Base exception for all session manager errors."""


class InvalidArgumentError(SessionError):
    """Caller error: bad input, or an operation that is not valid right now."""


class InvariantViolationError(SessionError):
    """An internal rule was broken (illegal transition, racing handles)."""


class TransportError(SessionError):
    """Failure reported by a transport implementation.

    Args:
        code: Structured error code (string or numeric close/status code).
        message: Human-readable description.
    """

    def __init__(self, code: Any = None, message: str = "") -> None:
        self.code = code
        self.message = message
        super().__init__(f"[{code}] {message}" if code is not None else message)


class IssuerUnavailableError(SessionError):
    """The credential issuer could not be reached or returned garbage."""


class JoinFailedError(SessionError):
    """A join sequence ended in ``Failed``.

    Attributes:
        reason: Stable reason code (see :class:`~rtc_session.types.ErrorKind`).
        attempts: Full attempt history of the failed sequence.
    """

    def __init__(
        self,
        reason: ErrorKind | str,
        attempts: tuple[AttemptRecord, ...] = (),
        message: str | None = None,
    ) -> None:
        self.reason = reason
        self.attempts = attempts
        code = getattr(reason, "value", reason)
        super().__init__(
            message or f"Join failed ({code}) after {len(attempts)} attempt(s)"
        )


class JoinCancelledError(JoinFailedError):
    """The join sequence was cancelled by ``leave()`` or ``retry()``."""

    def __init__(self, attempts: tuple[AttemptRecord, ...] = ()) -> None:
        super().__init__("cancelled", attempts, "Join cancelled")
