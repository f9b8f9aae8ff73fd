"""Shared fixtures and in-memory fakes for session manager tests."""

import asyncio
import itertools
import time

import pytest

from rtc_session.config import SessionConfig
from rtc_session.errors import TransportError
from rtc_session.types import Token

ENDPOINTS = ["ws://a", "ws://b", "ws://c"]


class FakeHandle:
    def __init__(self, endpoint, channel_id, credential, identity):
        self.endpoint = endpoint
        self.channel_id = channel_id
        self.credential = credential
        self.identity = identity
        self.active = True
        self.callbacks = []

    def __repr__(self):
        return f"FakeHandle({self.endpoint!r})"


class FakeTransport:
    """Scripted transport.

    ``script(endpoint, *outcomes)`` queues outcomes for the next connects to
    *endpoint*: an exception is raised, ``"hang"`` never returns, an
    ``asyncio.Event`` is awaited (ignoring cancellation) before succeeding,
    ``"dead"`` succeeds with a handle whose link is already down, anything
    else succeeds.  ``fail_always`` sets a fallback error used when the
    queue is empty.
    """

    def __init__(self):
        self._scripts = {}
        self._always = {}
        self.connect_calls = []
        self.disconnect_calls = []
        self.handles = []
        self.disconnect_gate = None

    def script(self, endpoint, *outcomes):
        self._scripts.setdefault(endpoint, []).extend(outcomes)

    def fail_always(self, error, endpoint=None):
        self._always[endpoint] = error

    async def connect(self, endpoint, channel_id, credential, identity, timeout):
        self.connect_calls.append(
            {
                "endpoint": endpoint,
                "channel_id": channel_id,
                "credential": credential,
                "identity": identity,
                "timeout": timeout,
            }
        )
        queue = self._scripts.get(endpoint)
        if queue:
            outcome = queue.pop(0)
        else:
            outcome = self._always.get(endpoint, self._always.get(None))

        if isinstance(outcome, BaseException):
            raise outcome
        if outcome == "hang":
            await asyncio.get_running_loop().create_future()
        if isinstance(outcome, asyncio.Event):
            while not outcome.is_set():
                try:
                    await outcome.wait()
                except asyncio.CancelledError:
                    continue

        handle = FakeHandle(endpoint, channel_id, credential, identity)
        if outcome == "dead":
            handle.active = False
        self.handles.append(handle)
        return handle

    async def disconnect(self, handle):
        self.disconnect_calls.append(handle)
        handle.active = False
        if self.disconnect_gate is not None:
            await self.disconnect_gate.wait()

    def on_unsolicited_disconnect(self, handle, callback):
        handle.callbacks.append(callback)

        def remove():
            if callback in handle.callbacks:
                handle.callbacks.remove(callback)

        return remove

    def drop(self, handle, reason="closed:1006"):
        """Simulate the link going away underneath the session."""
        handle.active = False
        for callback in list(handle.callbacks):
            callback(reason)


class CapableTransport(FakeTransport):
    """FakeTransport with every optional capability."""

    def __init__(self):
        super().__init__()
        self.renewed = []
        self.latency_callbacks = []

    def is_active(self, handle):
        return handle.active

    async def renew_token(self, handle, token):
        self.renewed.append(token)

    def on_latency_sample(self, handle, callback):
        self.latency_callbacks.append(callback)
        return lambda: self.latency_callbacks.remove(callback)


class FakeIssuer:
    """Issues ``tok-1``, ``tok-2``, ... unless an error is queued."""

    def __init__(self, ttl=None):
        self.ttl = ttl
        self.calls = []
        self.errors = []
        self.fail_forever = None
        self._counter = itertools.count(1)

    async def request_token(self, channel_id, identity):
        self.calls.append((channel_id, identity))
        if self.errors:
            raise self.errors.pop(0)
        if self.fail_forever is not None:
            raise self.fail_forever
        expires_at = time.time() + self.ttl if self.ttl is not None else None
        return Token(f"tok-{next(self._counter)}", expires_at)


def network_error():
    return TransportError("NETWORK_ERROR", "gateway unreachable")


def fast_config(**overrides):
    options = dict(
        endpoints=list(ENDPOINTS),
        max_attempts=3,
        per_attempt_timeout=0.5,
        backoff_base=0.001,
        backoff_max=0.004,
        jitter_window=0.0,
        reconnect_grace_period=0.01,
        token_renew_margin=0.0,
    )
    options.update(overrides)
    return SessionConfig(**options)


async def wait_until(predicate, timeout=1.0):
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.001)


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def capable_transport():
    return CapableTransport()


@pytest.fixture
def issuer():
    return FakeIssuer()


@pytest.fixture
def config():
    return fast_config()
