# =============================================================================
# RTC Session -- WebSocket Transport
# =============================================================================
#
# Transport implementation over the websockets asyncio client: handshake
# with bearer auth, receive loop that reports unsolicited closes, and a
# ping heartbeat that reports latency.
# =============================================================================

from __future__ import annotations

import asyncio
import json as _json
from dataclasses import dataclass, field
from typing import Any, Callable
from urllib.parse import urlencode
from uuid import uuid4

import websockets
import websockets.asyncio.client
from websockets.exceptions import ConnectionClosed, InvalidStatus, InvalidURI
from websockets.protocol import State

from ._logging import logger
from .constants import (
    CLOSE_TIMEOUT,
    HEARTBEAT_INTERVAL,
    MAX_MESSAGE_SIZE,
    WS_CLOSE_ABNORMAL,
    WS_CLOSE_NORMAL,
)
from .errors import TransportError
from .transport import DisconnectCallback, LatencyCallback, Unsubscribe
from .types import Credential, Token

MessageCallback = Callable[["WebSocketHandle", str | bytes], Any]


@dataclass(eq=False)
class WebSocketHandle:
    """A live WebSocket session returned by :meth:`WebSocketTransport.connect`."""

    endpoint: str
    channel_id: str
    identity: str
    ws: websockets.asyncio.client.ClientConnection
    id: str = field(default_factory=lambda: uuid4().hex)
    closing: bool = False
    closed: bool = False
    close_reason: str | None = None
    recv_task: asyncio.Task[None] | None = None
    heartbeat_task: asyncio.Task[None] | None = None
    disconnect_callbacks: list[DisconnectCallback] = field(default_factory=list)
    latency_callbacks: list[LatencyCallback] = field(default_factory=list)

    def __repr__(self) -> str:
        return f"WebSocketHandle(id={self.id!r}, endpoint={self.endpoint!r})"


class WebSocketTransport:
    """Connects to ``{endpoint}?channel=...&uid=...``.

    Args:
        extra_headers: Additional HTTP headers for the handshake.
        heartbeat_interval: Seconds between pings, ``0`` disables them.
        on_message: Receives every application frame with its handle.
    """

    def __init__(
        self,
        *,
        extra_headers: dict[str, str] | None = None,
        heartbeat_interval: float = HEARTBEAT_INTERVAL,
        on_message: MessageCallback | None = None,
    ) -> None:
        self._extra_headers = extra_headers or {}
        self._heartbeat_interval = heartbeat_interval
        self._on_message = on_message

    # -- Transport protocol ---------------------------------------------------

    async def connect(
        self,
        endpoint: str,
        channel_id: str,
        credential: Credential,
        identity: str,
        timeout: float,
    ) -> WebSocketHandle:
        headers = dict(self._extra_headers)
        if isinstance(credential, Token):
            headers["Authorization"] = f"Bearer {credential.value}"
        url = self._build_url(endpoint, channel_id, identity)

        try:
            ws = await asyncio.wait_for(
                websockets.asyncio.client.connect(
                    url,
                    additional_headers=headers,
                    max_size=MAX_MESSAGE_SIZE,
                    open_timeout=None,  # asyncio.wait_for handles timeout
                    ping_interval=None,  # own heartbeat below
                    close_timeout=CLOSE_TIMEOUT,
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            raise TransportError(
                "JOIN_TIMEOUT", f"Handshake with {endpoint} timed out after {timeout}s"
            ) from None
        except InvalidStatus as exc:
            status = exc.response.status_code
            raise TransportError(status, f"Handshake rejected with HTTP {status}") from exc
        except InvalidURI as exc:
            raise TransportError("INVALID_ENDPOINT", str(exc)) from exc
        except OSError as exc:
            raise TransportError("NETWORK_ERROR", f"Failed to connect: {exc}") from exc
        except websockets.exceptions.WebSocketException as exc:
            raise TransportError("TRANSPORT_INTERNAL", str(exc)) from exc

        handle = WebSocketHandle(
            endpoint=endpoint, channel_id=channel_id, identity=identity, ws=ws
        )
        handle.recv_task = asyncio.create_task(self._recv_loop(handle))
        if self._heartbeat_interval > 0:
            handle.heartbeat_task = asyncio.create_task(self._heartbeat_loop(handle))
        logger.debug("WebSocket open: %r", handle)
        return handle

    async def disconnect(self, handle: WebSocketHandle) -> None:
        handle.closing = True
        tasks = [
            t
            for t in (handle.heartbeat_task, handle.recv_task)
            if t is not None and not t.done()
        ]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        handle.heartbeat_task = None
        handle.recv_task = None

        try:
            await handle.ws.close(WS_CLOSE_NORMAL, "Client leave")
        except Exception as exc:
            logger.debug("Close failed on %r: %s", handle, exc)
        handle.closed = True

    def on_unsolicited_disconnect(
        self, handle: WebSocketHandle, callback: DisconnectCallback
    ) -> Unsubscribe:
        handle.disconnect_callbacks.append(callback)
        if handle.close_reason is not None:
            # Peer closed before anyone was listening
            asyncio.get_running_loop().call_soon(
                _notify_late, handle.disconnect_callbacks, callback, handle.close_reason
            )
        return _remover(handle.disconnect_callbacks, callback)

    # -- Optional capabilities ------------------------------------------------

    def is_active(self, handle: WebSocketHandle) -> bool:
        return not handle.closed and handle.ws.state is State.OPEN

    def on_latency_sample(
        self, handle: WebSocketHandle, callback: LatencyCallback
    ) -> Unsubscribe:
        handle.latency_callbacks.append(callback)
        return _remover(handle.latency_callbacks, callback)

    async def renew_token(self, handle: WebSocketHandle, token: str) -> None:
        msg = {"t": "renew_token", "p": {"token": token}}
        try:
            await handle.ws.send(_json.dumps(msg, separators=(",", ":")))
        except ConnectionClosed as exc:
            raise TransportError("NETWORK_ERROR", "Connection closed during renewal") from exc

    async def send(self, handle: WebSocketHandle, data: str | bytes) -> bool:
        """Send an application frame.  Returns True on success."""
        try:
            await handle.ws.send(data)
            return True
        except ConnectionClosed:
            logger.debug("Send failed: connection closed")
            return False

    # -- Internal: loops ------------------------------------------------------

    async def _recv_loop(self, handle: WebSocketHandle) -> None:
        try:
            async for message in handle.ws:
                if self._on_message:
                    self._on_message(handle, message)
        except asyncio.CancelledError:
            return
        except ConnectionClosed:
            pass
        except Exception as exc:
            logger.warning("Receive loop error on %r: %s", handle, exc)
        self._handle_closed(handle)

    async def _heartbeat_loop(self, handle: WebSocketHandle) -> None:
        interval = self._heartbeat_interval
        while not handle.closing:
            try:
                await asyncio.sleep(interval)
            except asyncio.CancelledError:
                return
            try:
                pong_waiter = await handle.ws.ping()
                latency = await asyncio.wait_for(pong_waiter, timeout=interval)
            except asyncio.CancelledError:
                return
            except asyncio.TimeoutError:
                logger.debug("Heartbeat unanswered on %r", handle)
                self._notify_latency(handle, None)
                continue
            except ConnectionClosed:
                return
            self._notify_latency(handle, latency * 1000.0)

    def _notify_latency(self, handle: WebSocketHandle, latency_ms: float | None) -> None:
        for callback in list(handle.latency_callbacks):
            try:
                callback(latency_ms)
            except Exception as exc:
                logger.error("Latency callback error: %s", exc)

    def _handle_closed(self, handle: WebSocketHandle) -> None:
        if handle.closing or handle.closed:
            return
        handle.closed = True
        if handle.heartbeat_task is not None:
            handle.heartbeat_task.cancel()
            handle.heartbeat_task = None

        code = handle.ws.close_code or WS_CLOSE_ABNORMAL
        text = handle.ws.close_reason or ""
        reason = f"closed:{code}" + (f" {text}" if text else "")
        handle.close_reason = reason
        logger.debug("WebSocket closed by peer: %r %s", handle, reason)
        for callback in list(handle.disconnect_callbacks):
            try:
                callback(reason)
            except Exception as exc:
                logger.error("Disconnect callback error: %s", exc)

    # -- URL building ---------------------------------------------------------

    @staticmethod
    def _build_url(endpoint: str, channel_id: str, identity: str) -> str:
        sep = "&" if "?" in endpoint else "?"
        return endpoint + sep + urlencode({"channel": channel_id, "uid": identity})


def _remover(callbacks: list[Any], callback: Any) -> Unsubscribe:
    """Build an idempotent remover for *callback*."""

    def remove() -> None:
        try:
            callbacks.remove(callback)
        except ValueError:
            pass

    return remove


def _notify_late(callbacks: list[Any], callback: Any, reason: str) -> None:
    if callback not in callbacks:
        return
    try:
        callback(reason)
    except Exception as exc:
        logger.error("Disconnect callback error: %s", exc)
