# =============================================================================
# RTC Session -- Session Manager
# =============================================================================
#
# Join / retry / reconnect orchestration for one channel membership.
# The only component that performs transport I/O.
# =============================================================================

from __future__ import annotations

import asyncio
import random
import time
from functools import partial
from typing import Any, Callable

from ._logging import logger
from .backoff import BackoffScheduler
from .classifier import classify_error, is_fatal
from .config import SessionConfig
from .credentials import CredentialIssuer, CredentialStrategy
from .endpoint_pool import EndpointPool
from .errors import (
    InvalidArgumentError,
    InvariantViolationError,
    IssuerUnavailableError,
    JoinCancelledError,
    JoinFailedError,
    TransportError,
)
from .event_bus import AsyncEventHandler, EventBus, EventHandler, Subscription
from .network_monitor import NetworkMonitor
from .state_machine import ConnectionStateMachine
from .transport import (
    HealthCheckingTransport,
    LatencyReportingTransport,
    RenewableTransport,
    SessionHandle,
    Transport,
    Unsubscribe,
)
from .types import (
    AttemptOutcome,
    AttemptRecord,
    ConnectionState,
    ConnectionStatus,
    Credential,
    CredentialFallback,
    CredentialMode,
    Endpoint,
    ErrorKind,
    EventKind,
    FallbackDecision,
    JoinFailed,
    ReconnectAttempt,
    SessionIdentity,
    SessionStats,
    Token,
    TokenRenewed,
)

_S = ConnectionStatus


class SessionManager:
    """Resilient connection manager for a single channel membership.

    ``join()`` drives the attempt loop: credential selection, endpoint
    failover, per-attempt timeout, classified retry with backoff.  After a
    successful join, unsolicited transport drops are reconnected
    automatically with the original channel and identity.  ``leave()``
    always succeeds and cancels anything in flight.

    Args:
        transport: Media transport (see :class:`~rtc_session.transport.Transport`).
        config: Endpoints and retry policy.
        issuer: Token issuer.  Without one every join is anonymous.
        rng: Random source for backoff jitter.
        clock: Monotonic clock used for uptime.

    Example::

        manager = SessionManager(transport, SessionConfig(endpoints=[...]))
        manager.on("state_changed", lambda ev: print(ev.new.status))
        async with manager:
            await manager.join("room-1", "u42")
            ...
    """

    def __init__(
        self,
        transport: Transport,
        config: SessionConfig,
        *,
        issuer: CredentialIssuer | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._transport = transport
        self._config = config
        self._clock = clock

        self._bus = EventBus()
        self._machine = ConnectionStateMachine(self._bus)
        self._pool = EndpointPool(config.endpoints, cooldown=config.endpoint_cooldown)
        self._credentials = CredentialStrategy(
            issuer,
            allow_fallback=config.allow_credential_fallback,
            renew_margin=config.token_renew_margin,
        )
        self._backoff = BackoffScheduler(
            config.backoff_base, config.backoff_max, config.jitter_window, rng=rng
        )
        self._monitor = NetworkMonitor()

        # Session parameters, retained for reconnection
        self._identity: SessionIdentity | None = None
        self._handle: SessionHandle | None = None
        self._credential: Credential | None = None
        self._listeners: list[Unsubscribe] = []

        # Bookkeeping
        self._attempts: list[AttemptRecord] = []
        self._total_attempts = 0
        self._retry_count = 0

        # Concurrency
        self._loop: asyncio.AbstractEventLoop | None = None
        self._epoch = 0
        self._cancel_event: asyncio.Event | None = None
        self._sequence_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._renew_task: asyncio.Task[None] | None = None
        self._leave_future: asyncio.Future[None] | None = None
        self._background_tasks: set[asyncio.Task[Any]] = set()
        self._destroyed = False

    # -- Context manager ------------------------------------------------------

    async def __aenter__(self) -> SessionManager:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.leave()

    # -- Properties -----------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._machine.state

    @property
    def status(self) -> ConnectionStatus:
        return self._machine.status

    @property
    def is_connected(self) -> bool:
        return self._machine.status == _S.CONNECTED

    @property
    def identity(self) -> SessionIdentity | None:
        return self._identity

    @property
    def config(self) -> SessionConfig:
        return self._config

    @property
    def attempts(self) -> list[AttemptRecord]:
        """Attempt history of the sequence in progress (copy)."""
        return list(self._attempts)

    # -- Public API -----------------------------------------------------------

    async def join(self, channel_id: str, identity: str) -> None:
        """Join *channel_id* as *identity*.

        Returns once ``Connected``.

        Raises:
            InvalidArgumentError: Bad arguments, or a sequence is already
                running / the session is already joined.
            InvariantViolationError: A ``leave()`` is still pending.
            JoinFailedError: The sequence ended in ``Failed``.
            JoinCancelledError: ``leave()`` interrupted the sequence.
        """
        self._check_alive()
        if not isinstance(channel_id, str) or not channel_id.strip():
            raise InvalidArgumentError("channel_id must be a non-empty string")
        if not isinstance(identity, str) or not identity.strip():
            raise InvalidArgumentError("identity must be a non-empty string")
        self._check_can_start()

        self._identity = SessionIdentity(user_id=identity, channel_id=channel_id)
        self._pool.reset()
        self._credentials.reset()
        self._retry_count = 0
        await self._start_sequence()

    async def retry(self) -> None:
        """Restart a ``Failed`` session from scratch.

        Pool health, credential mode and attempt history are all reset.
        """
        self._check_alive()
        if self._leave_future is not None:
            raise InvariantViolationError(
                "leave() is still in progress; await it before retry()"
            )
        if self._machine.status != _S.FAILED:
            raise InvalidArgumentError(
                f"retry() is only valid after a failed join "
                f"(state is {self._machine.status.value})"
            )
        if self._identity is None:
            raise InvariantViolationError("Failed state without join parameters")

        logger.info("Retrying join to %s", self._identity.channel_id)
        self._pool.reset()
        self._credentials.reset()
        self._retry_count = 0
        await self._start_sequence()

    async def leave(self) -> None:
        """Leave the channel.  Always ends in ``Idle``.

        Cancels any pending backoff wait or connect attempt.  Transport
        teardown is best-effort; its failures are logged, never raised.
        """
        if self._leave_future is not None:
            await asyncio.shield(self._leave_future)
            return
        if self._machine.status == _S.IDLE:
            return

        self._leave_future = asyncio.get_running_loop().create_future()
        try:
            await self._teardown()
        finally:
            future, self._leave_future = self._leave_future, None
            if not future.done():
                future.set_result(None)

    async def destroy(self) -> None:
        """Leave and drop every subscriber.  The manager is unusable after."""
        if self._destroyed:
            return
        await self.leave()
        self._destroyed = True
        self._bus.clear()
        tasks = list(self._background_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def get_stats(self) -> SessionStats:
        """Point-in-time snapshot.  Pure read."""
        state = self._machine.state
        uptime = None
        if state.status == _S.CONNECTED and state.since is not None:
            uptime = max(0.0, self._clock() - state.since)
        diag = self._monitor.analyze()
        return SessionStats(
            status=state.status,
            channel_id=self._identity.channel_id if self._identity else None,
            total_attempts=self._total_attempts,
            current_endpoint=self._pool.current_address,
            credential_mode=self._credentials.mode,
            retry_count=self._retry_count,
            uptime=uptime,
            connection_quality=diag.quality,
            latency_ms=self._monitor.last_latency,
            endpoints=tuple(self._pool.get_stats()),
        )

    def report_quality_level(self, level: int) -> None:
        """Feed a vendor network-quality level (0 unknown .. 6 down)."""
        self._monitor.record_quality_level(level)

    # -- Handler registration -------------------------------------------------

    def on(
        self,
        kind: EventKind | str,
        handler: EventHandler | AsyncEventHandler | None = None,
    ) -> Any:
        """Subscribe to session events.

        With a handler, returns the :class:`Subscription` token.  Without
        one, returns a decorator::

            @manager.on("join_failed")
            def handle(event: JoinFailed):
                print(describe_reason(event.reason))
        """
        if handler is None:

            def decorator(
                fn: EventHandler | AsyncEventHandler,
            ) -> EventHandler | AsyncEventHandler:
                self._bus.subscribe(kind, fn)
                return fn

            return decorator
        return self._bus.subscribe(kind, handler)

    def off(
        self,
        kind: EventKind | str | Subscription,
        handler: EventHandler | AsyncEventHandler | None = None,
    ) -> bool:
        """Remove a subscription by token, or by ``(kind, handler)``."""
        if isinstance(kind, Subscription):
            return self._bus.unsubscribe(kind)
        if handler is None:
            raise InvalidArgumentError("off() needs a handler or a Subscription")
        return self._bus.unsubscribe_handler(kind, handler)

    # -- Internal: sequence control -------------------------------------------

    def _check_alive(self) -> None:
        if self._destroyed:
            raise InvalidArgumentError("SessionManager has been destroyed")

    def _check_can_start(self) -> None:
        status = self._machine.status
        if self._leave_future is not None or status == _S.DISCONNECTING:
            raise InvariantViolationError(
                "leave() is still in progress; await it before calling join()"
            )
        if status in (_S.CONNECTING, _S.RECONNECTING):
            raise InvalidArgumentError("A join sequence is already in progress")
        if status == _S.CONNECTED:
            assert self._identity is not None
            raise InvalidArgumentError(
                f"Already joined {self._identity.channel_id!r}; call leave() first"
            )
        if status == _S.FAILED:
            raise InvalidArgumentError(
                "Previous join failed; call retry() or leave() first"
            )

    async def _start_sequence(self) -> None:
        self._loop = asyncio.get_running_loop()
        self._epoch += 1
        epoch = self._epoch
        self._attempts = []
        self._cancel_event = asyncio.Event()
        records = self._attempts

        self._machine.transition(ConnectionState.connecting(1))
        task = self._loop.create_task(self._run_sequence(epoch))
        self._sequence_task = task
        try:
            await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            raise JoinCancelledError(tuple(records)) from None
        finally:
            if self._sequence_task is task:
                self._sequence_task = None

    async def _run_sequence(self, epoch: int, reconnect_reason: str | None = None) -> None:
        """The attempt loop shared by join, retry and reconnection."""
        try:
            await self._attempt_loop(epoch, reconnect_reason)
        except asyncio.CancelledError:
            if epoch == self._epoch:
                # Cancelled from outside (caller gave up), not by leave()
                self._abort_sequence()
            raise

    async def _attempt_loop(self, epoch: int, reconnect_reason: str | None) -> None:
        cfg = self._config
        identity = self._identity
        assert identity is not None
        records = self._attempts
        cancel = self._cancel_event
        slot = 1
        last_kind = ErrorKind.UNKNOWN

        while True:
            endpoint = self._pool.current()
            mode_before = self._credentials.mode
            rotate = True
            try:
                credential = await self._credentials.acquire(
                    identity.channel_id, identity.user_id
                )
            except IssuerUnavailableError as exc:
                self._guard_epoch(epoch, records)
                record = self._open_record(records, slot, endpoint, self._credentials.mode)
                kind = ErrorKind.NETWORK
                rotate = False
                self._close_record(record, kind, f"issuer unavailable: {exc}")
            else:
                self._guard_epoch(epoch, records)
                if self._credentials.mode != mode_before:
                    self._publish_fallback(identity)
                record = self._open_record(records, slot, endpoint, credential.mode)
                try:
                    handle = await self._connect_once(endpoint.address, credential, identity)
                except Exception as exc:
                    self._guard_epoch(epoch, records)
                    kind = classify_error(exc)
                    self._close_record(record, kind, str(exc) or type(exc).__name__)
                else:
                    record.outcome = AttemptOutcome.SUCCESS
                    self._on_connected(epoch, handle, endpoint, credential)
                    return

            last_kind = kind
            logger.warning(
                "Attempt %d/%d to %s via %s failed: %s (%s)",
                slot,
                cfg.max_attempts,
                identity.channel_id,
                endpoint.address,
                kind.value,
                record.detail,
            )

            if is_fatal(kind):
                break

            if kind == ErrorKind.AUTH_REJECTED:
                decision = self._credentials.report_failure(kind)
                if decision == FallbackDecision.RETRY_WITH_FALLBACK:
                    # Same slot, same endpoint, no backoff
                    self._publish_fallback(identity)
                    self._bus.publish(ReconnectAttempt(attempt=slot, reason=kind.value))
                    continue
                break

            if rotate:
                self._pool.mark_failed(endpoint)
                self._pool.advance()

            if slot >= cfg.max_attempts:
                break

            if not await self._backoff.wait(slot, cancel):
                raise JoinCancelledError(tuple(records))
            self._guard_epoch(epoch, records)

            slot += 1
            self._retry_count += 1
            if reconnect_reason is None:
                self._machine.transition(ConnectionState.connecting(slot))
            else:
                self._machine.transition(
                    ConnectionState.reconnecting(slot, reconnect_reason)
                )
            self._bus.publish(ReconnectAttempt(attempt=slot, reason=kind.value))

        self._fail_sequence(last_kind, records)
        raise JoinFailedError(last_kind, tuple(records))

    async def _connect_once(
        self, address: str, credential: Credential, identity: SessionIdentity
    ) -> SessionHandle:
        """One transport connect, bounded by the per-attempt timeout.

        The connect runs as its own task so a transport that ignores
        cancellation can't hand us a handle after we moved on.
        """
        timeout = self._config.per_attempt_timeout
        assert self._loop is not None
        connect_task = self._loop.create_task(
            self._transport.connect(
                address, identity.channel_id, credential, identity.user_id, timeout
            )
        )
        try:
            return await asyncio.wait_for(asyncio.shield(connect_task), timeout=timeout)
        except asyncio.TimeoutError:
            self._abandon_connect(connect_task)
            raise TransportError(
                "JOIN_TIMEOUT", f"Connect to {address} timed out after {timeout:.1f}s"
            ) from None
        except asyncio.CancelledError:
            self._abandon_connect(connect_task)
            raise

    def _abandon_connect(self, task: asyncio.Task[Any]) -> None:
        if not task.done():
            task.cancel()
        task.add_done_callback(self._discard_late_result)

    def _discard_late_result(self, task: asyncio.Task[Any]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.debug("Abandoned connect finished with error: %s", exc)
            return
        handle = task.result()
        logger.info("Discarding late connect result %r", handle)
        self._fire_task(self._safe_disconnect(handle))

    def _guard_epoch(self, epoch: int, records: list[AttemptRecord]) -> None:
        if epoch != self._epoch:
            raise JoinCancelledError(tuple(records))

    def _open_record(
        self,
        records: list[AttemptRecord],
        slot: int,
        endpoint: Endpoint,
        mode: CredentialMode,
    ) -> AttemptRecord:
        record = AttemptRecord(attempt=slot, endpoint=endpoint.address, credential_mode=mode)
        records.append(record)
        self._total_attempts += 1
        return record

    @staticmethod
    def _close_record(record: AttemptRecord, kind: ErrorKind, detail: str) -> None:
        record.outcome = AttemptOutcome.FAILURE
        record.error_kind = kind
        record.detail = detail

    def _publish_fallback(self, identity: SessionIdentity) -> None:
        self._bus.publish(
            CredentialFallback(
                channel_id=identity.channel_id,
                reason=self._credentials.fallback_reason or "",
            )
        )

    def _fail_sequence(self, kind: ErrorKind, records: list[AttemptRecord]) -> None:
        attempts = tuple(records)
        self._attempts = []
        logger.error(
            "Session %s failed after %d attempt(s): %s",
            self._identity.channel_id if self._identity else "?",
            len(attempts),
            kind.value,
        )
        self._machine.transition(ConnectionState.failed(kind.value, attempts))
        self._bus.publish(JoinFailed(reason=kind.value, attempts=attempts))

    def _abort_sequence(self) -> None:
        """Return to Idle after the sequence task was cancelled externally."""
        self._epoch += 1
        if self._machine.status in (_S.CONNECTING, _S.RECONNECTING):
            self._machine.transition(ConnectionState.disconnecting())
            self._machine.transition(ConnectionState.idle())
        self._attempts = []

    def _on_connected(
        self, epoch: int, handle: Any, endpoint: Endpoint, credential: Credential
    ) -> None:
        self._pool.mark_healthy(endpoint)
        self._handle = handle
        self._credential = credential
        self._monitor.reset()

        unsubscribe = self._transport.on_unsolicited_disconnect(
            handle, partial(self._on_transport_disconnect, epoch, handle)
        )
        if unsubscribe is not None:
            self._listeners.append(unsubscribe)
        if isinstance(self._transport, LatencyReportingTransport):
            unsubscribe = self._transport.on_latency_sample(
                handle, self._monitor.record_latency
            )
            if unsubscribe is not None:
                self._listeners.append(unsubscribe)

        self._retry_count = 0
        self._attempts = []
        self._machine.transition(ConnectionState.connected(handle, since=self._clock()))
        assert self._identity is not None
        logger.info(
            "Joined %s via %s (%s)",
            self._identity.channel_id,
            endpoint.address,
            credential.mode.value,
        )
        self._schedule_token_renewal(epoch, credential)
        if isinstance(self._transport, HealthCheckingTransport) and not self._transport.is_active(
            handle
        ):
            # Link died before the disconnect listener was in place
            self._on_transport_disconnect(epoch, handle, "closed before registration")

    # -- Internal: reconnection -----------------------------------------------

    def _on_transport_disconnect(self, epoch: int, handle: Any, reason: str = "") -> None:
        """Transport callback; must run on the event loop thread."""
        if (
            epoch != self._epoch
            or handle is not self._handle
            or self._machine.status != _S.CONNECTED
        ):
            logger.debug("Ignoring disconnect from stale handle %r", handle)
            return
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return

        reason = reason or "disconnected"
        logger.warning(
            "Transport dropped (%s), reconnecting after %.1fs grace",
            reason,
            self._config.reconnect_grace_period,
        )
        assert self._loop is not None
        self._reconnect_task = self._loop.create_task(
            self._reconnect(epoch, handle, reason)
        )

    async def _reconnect(self, epoch: int, handle: Any, reason: str) -> None:
        if self._config.reconnect_grace_period > 0:
            await asyncio.sleep(self._config.reconnect_grace_period)
        if epoch != self._epoch or handle is not self._handle:
            return
        if isinstance(self._transport, HealthCheckingTransport) and self._transport.is_active(
            handle
        ):
            logger.info("Transport recovered within grace period")
            return

        self._release_handle()
        self._credentials.invalidate()
        self._attempts = []
        self._cancel_event = asyncio.Event()
        self._retry_count += 1
        self._machine.transition(ConnectionState.reconnecting(1, reason))
        self._bus.publish(ReconnectAttempt(attempt=1, reason=reason))
        self._fire_task(self._safe_disconnect(handle))

        try:
            await self._run_sequence(epoch, reconnect_reason=reason)
        except JoinCancelledError:
            logger.debug("Reconnection cancelled")
        except JoinFailedError as exc:
            logger.error("Reconnection gave up: %s", exc)

    # -- Internal: token renewal ----------------------------------------------

    def _schedule_token_renewal(self, epoch: int, credential: Credential) -> None:
        self._cancel_renewal()
        if not isinstance(credential, Token) or credential.expires_at is None:
            return
        if not isinstance(self._transport, RenewableTransport):
            return
        assert self._loop is not None
        self._renew_task = self._loop.create_task(self._renew_loop(epoch, credential))

    async def _renew_loop(self, epoch: int, token: Token) -> None:
        margin = self._config.token_renew_margin
        current = token
        while current.expires_at is not None:
            delay = current.expires_at - time.time() - margin
            await asyncio.sleep(max(self._config.backoff_base, delay))
            if epoch != self._epoch or self._machine.status != _S.CONNECTED:
                return
            identity = self._identity
            assert identity is not None
            try:
                fresh = await self._credentials.renew(identity.channel_id, identity.user_id)
                await self._transport.renew_token(self._handle, fresh.value)  # type: ignore[attr-defined]
            except Exception as exc:
                logger.warning("Token renewal failed: %s", exc)
                return
            if epoch != self._epoch:
                return
            self._credential = fresh
            logger.debug("Token renewed for %s", identity.channel_id)
            self._bus.publish(TokenRenewed(expires_at=fresh.expires_at))
            current = fresh

    def _cancel_renewal(self) -> None:
        task = self._renew_task
        self._renew_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    # -- Internal: teardown -------------------------------------------------------

    async def _teardown(self) -> None:
        self._epoch += 1
        if self._cancel_event is not None:
            self._cancel_event.set()

        current = asyncio.current_task()
        tasks = [
            t
            for t in (self._sequence_task, self._reconnect_task)
            if t is not None and not t.done() and t is not current
        ]
        for task in tasks:
            task.cancel()
        self._cancel_renewal()

        handle = self._release_handle()
        if self._machine.status == _S.FAILED:
            self._machine.transition(ConnectionState.idle())
        else:
            self._machine.transition(ConnectionState.disconnecting(handle))
            if tasks:
                await asyncio.gather(*tasks, return_exceptions=True)
            if handle is not None:
                await self._safe_disconnect(handle)
            self._machine.transition(ConnectionState.idle())

        logger.info(
            "Left %s", self._identity.channel_id if self._identity else "session"
        )
        self._identity = None
        self._attempts = []
        self._retry_count = 0
        self._sequence_task = None
        self._reconnect_task = None

    def _release_handle(self) -> Any:
        """Detach from the current handle and drop every transport listener."""
        for unsubscribe in self._listeners:
            try:
                unsubscribe()
            except Exception as exc:
                logger.warning("Listener removal failed: %s", exc)
        self._listeners.clear()
        self._cancel_renewal()
        handle, self._handle = self._handle, None
        self._credential = None
        return handle

    async def _safe_disconnect(self, handle: Any) -> None:
        try:
            await asyncio.wait_for(
                self._transport.disconnect(handle),
                timeout=self._config.per_attempt_timeout,
            )
        except Exception as exc:
            logger.warning("Transport disconnect failed (ignored): %s", exc)

    def _fire_task(self, coro: Any) -> None:
        """Schedule a coroutine with a strong reference to prevent GC."""
        assert self._loop is not None
        task = self._loop.create_task(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
