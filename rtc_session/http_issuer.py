# =============================================================================
# RTC Session -- HTTP Token Issuer
# =============================================================================
#
# CredentialIssuer backed by a JSON token endpoint.
#
#   POST {url}  {"channel_id": ..., "uid": ...}
#   ->  {"token": "...", "expires_at": <unix seconds>}
#   or  {"token": "...", "expires_in": <seconds>}
# =============================================================================

from __future__ import annotations

import time
from typing import Any

import httpx

from ._logging import logger
from .errors import IssuerUnavailableError
from .types import Token

DEFAULT_TIMEOUT = 10.0


class HttpTokenIssuer:
    """Fetch join tokens over HTTP.

    Args:
        url: Token endpoint.
        auth_token: Bearer token for the endpoint itself, if it needs one.
        timeout: Request timeout in seconds.
        client: Shared ``httpx.AsyncClient``.  When omitted the issuer
            creates and owns one; call :meth:`aclose` when done.
    """

    def __init__(
        self,
        url: str,
        *,
        auth_token: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = url
        self._auth_token = auth_token
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def __aenter__(self) -> HttpTokenIssuer:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    async def request_token(self, channel_id: str, identity: str) -> Token:
        headers = {}
        if self._auth_token:
            headers["Authorization"] = f"Bearer {self._auth_token}"
        try:
            resp = await self._client.post(
                self._url,
                json={"channel_id": channel_id, "uid": identity},
                headers=headers,
            )
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPStatusError as exc:
            raise IssuerUnavailableError(
                f"Token endpoint returned HTTP {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise IssuerUnavailableError(f"Token request failed: {exc}") from exc
        except ValueError as exc:
            raise IssuerUnavailableError("Token endpoint returned invalid JSON") from exc

        token = _parse_token(data)
        logger.debug("Issued token for %s (expires_at=%s)", channel_id, token.expires_at)
        return token

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def _parse_token(data: Any) -> Token:
    if not isinstance(data, dict):
        raise IssuerUnavailableError("Token response must be a JSON object")
    value = data.get("token")
    if not isinstance(value, str) or not value:
        raise IssuerUnavailableError("Token response has no 'token'")

    expires_at = data.get("expires_at")
    expires_in = data.get("expires_in")
    try:
        if expires_at is not None:
            return Token(value, float(expires_at))
        if expires_in is not None:
            return Token(value, time.time() + float(expires_in))
    except (TypeError, ValueError):
        raise IssuerUnavailableError("Token response has an invalid expiry") from None
    return Token(value)
