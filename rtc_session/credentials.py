# =============================================================================
# RTC Session -- Credential Strategy
# =============================================================================
#
# Chooses between token and anonymous join, falling back at most once.
# =============================================================================

from __future__ import annotations

import time
from typing import Callable, Protocol, runtime_checkable

from ._logging import logger
from .constants import TOKEN_RENEW_MARGIN
from .errors import IssuerUnavailableError
from .types import (
    ANONYMOUS,
    Credential,
    CredentialMode,
    ErrorKind,
    FallbackDecision,
    Token,
)


@runtime_checkable
class CredentialIssuer(Protocol):
    """External token service.

    Implementations raise :class:`IssuerUnavailableError` when the service
    cannot be reached or answers with something unusable.
    """

    async def request_token(self, channel_id: str, identity: str) -> Token: ...


class CredentialStrategy:
    """Decides which credential kind to present on the next attempt.

    Starts in TOKEN mode when an issuer is configured, otherwise ANONYMOUS.
    An ``AUTH_REJECTED`` failure (or an unreachable issuer) switches to
    ANONYMOUS once; a second rejection is terminal.

    Args:
        issuer: Token source, or ``None`` for anonymous-only sessions.
        allow_fallback: Permit the single TOKEN -> ANONYMOUS switch.
        renew_margin: Cached tokens expiring within this many seconds are
            not reused.
        clock: Wall-clock source compared against ``Token.expires_at``.
    """

    def __init__(
        self,
        issuer: CredentialIssuer | None = None,
        *,
        allow_fallback: bool = True,
        renew_margin: float = TOKEN_RENEW_MARGIN,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._issuer = issuer
        self._allow_fallback = allow_fallback
        self._renew_margin = renew_margin
        self._clock = clock
        self._initial_mode = (
            CredentialMode.TOKEN if issuer is not None else CredentialMode.ANONYMOUS
        )
        self._mode = self._initial_mode
        self._fell_back = False
        self._fallback_reason: str | None = None
        self._cached: Token | None = None

    @property
    def mode(self) -> CredentialMode:
        return self._mode

    @property
    def fell_back(self) -> bool:
        return self._fell_back

    @property
    def fallback_reason(self) -> str | None:
        return self._fallback_reason

    async def acquire(self, channel_id: str, identity: str) -> Credential:
        """Return the credential to present on the next attempt.

        Raises:
            IssuerUnavailableError: The issuer failed and fallback is not
                permitted.
        """
        if self._mode == CredentialMode.ANONYMOUS:
            return ANONYMOUS

        cached = self._cached
        if cached is not None and not cached.expires_within(
            self._renew_margin, self._clock()
        ):
            return cached

        assert self._issuer is not None
        try:
            token = await self._issuer.request_token(channel_id, identity)
        except IssuerUnavailableError as exc:
            return self._fallback_on_issuer_error(exc)
        except Exception as exc:
            return self._fallback_on_issuer_error(IssuerUnavailableError(str(exc)))

        self._cached = token
        return token

    async def renew(self, channel_id: str, identity: str) -> Token:
        """Fetch a fresh token for a live session.  Never falls back.

        Raises:
            IssuerUnavailableError: No issuer, or the issuer failed.
        """
        if self._issuer is None:
            raise IssuerUnavailableError("No credential issuer configured")
        try:
            token = await self._issuer.request_token(channel_id, identity)
        except IssuerUnavailableError:
            raise
        except Exception as exc:
            raise IssuerUnavailableError(str(exc)) from exc
        self._cached = token
        return token

    def report_failure(self, kind: ErrorKind) -> FallbackDecision:
        """Tell the strategy an attempt failed.

        Only ``AUTH_REJECTED`` matters here; everything else is handled by
        endpoint rotation and backoff.
        """
        if kind != ErrorKind.AUTH_REJECTED:
            return FallbackDecision.NOT_APPLICABLE

        self._cached = None
        if self._can_fall_back():
            self._switch_to_anonymous(ErrorKind.AUTH_REJECTED.value)
            return FallbackDecision.RETRY_WITH_FALLBACK

        logger.warning("Credential rejected in %s mode, no fallback left", self._mode.value)
        return FallbackDecision.EXHAUSTED

    def invalidate(self) -> None:
        """Drop the cached token so the next acquire asks the issuer again."""
        self._cached = None

    def reset(self) -> None:
        """Start a fresh join sequence."""
        self._mode = self._initial_mode
        self._fell_back = False
        self._fallback_reason = None
        self._cached = None

    # -- Internal ---------------------------------------------------------------

    def _can_fall_back(self) -> bool:
        return (
            self._allow_fallback
            and not self._fell_back
            and self._mode == CredentialMode.TOKEN
        )

    def _switch_to_anonymous(self, reason: str) -> None:
        self._mode = CredentialMode.ANONYMOUS
        self._fell_back = True
        self._fallback_reason = reason
        self._cached = None
        logger.info("Falling back to anonymous join (%s)", reason)

    def _fallback_on_issuer_error(self, exc: IssuerUnavailableError) -> Credential:
        if not self._can_fall_back():
            raise exc
        logger.warning("Credential issuer unavailable: %s", exc)
        self._switch_to_anonymous("issuer_unavailable")
        return ANONYMOUS
