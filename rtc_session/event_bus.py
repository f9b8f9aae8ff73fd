# =============================================================================
# RTC Session -- Event Bus
# =============================================================================
#
# Synchronous, ordered publish/subscribe for session notifications.
# =============================================================================

from __future__ import annotations

import asyncio
import itertools
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from ._logging import logger
from .errors import InvalidArgumentError
from .types import EventKind, SessionEvent

EventHandler = Callable[[SessionEvent], Any]
AsyncEventHandler = Callable[[SessionEvent], Awaitable[Any]]


@dataclass(frozen=True, slots=True)
class Subscription:
    """Token returned by :meth:`EventBus.subscribe`."""

    kind: EventKind
    id: int


def coerce_kind(kind: EventKind | str) -> EventKind:
    try:
        return EventKind(kind)
    except ValueError:
        raise InvalidArgumentError(f"Unknown event kind: {kind!r}") from None


class EventBus:
    """Typed pub/sub.  Handlers run in registration order on ``publish``.

    A failing handler is logged and skipped; it never stops delivery to
    the rest.  Coroutine handlers are scheduled as tasks on the running
    loop.  Nothing is replayed to late subscribers.
    """

    def __init__(self) -> None:
        self._handlers: dict[
            EventKind, list[tuple[int, EventHandler | AsyncEventHandler]]
        ] = defaultdict(list)
        self._ids = itertools.count(1)
        self._background_tasks: set[asyncio.Task[Any]] = set()

    def subscribe(
        self, kind: EventKind | str, handler: EventHandler | AsyncEventHandler
    ) -> Subscription:
        kind = coerce_kind(kind)
        sub_id = next(self._ids)
        self._handlers[kind].append((sub_id, handler))
        return Subscription(kind=kind, id=sub_id)

    def unsubscribe(self, token: Subscription) -> bool:
        handlers = self._handlers.get(token.kind, [])
        for idx, (sub_id, _) in enumerate(handlers):
            if sub_id == token.id:
                del handlers[idx]
                return True
        return False

    def unsubscribe_handler(
        self, kind: EventKind | str, handler: EventHandler | AsyncEventHandler
    ) -> bool:
        """Remove the first registration of *handler* for *kind*."""
        handlers = self._handlers.get(coerce_kind(kind), [])
        for idx, (_, fn) in enumerate(handlers):
            if fn == handler:
                del handlers[idx]
                return True
        return False

    def publish(self, event: SessionEvent) -> None:
        # Copy: handlers subscribed during delivery only see later events
        handlers = list(self._handlers.get(event.kind, ()))
        for _, handler in handlers:
            try:
                result = handler(event)
                if asyncio.iscoroutine(result):
                    self._fire_task(result)
            except Exception:
                logger.exception("Handler error for '%s'", event.kind.value)

    def handler_count(self, kind: EventKind | str | None = None) -> int:
        if kind is None:
            return sum(len(h) for h in self._handlers.values())
        return len(self._handlers.get(coerce_kind(kind), ()))

    def clear(self) -> None:
        self._handlers.clear()

    def _fire_task(self, coro: Any) -> None:
        """Schedule a coroutine with a strong reference to prevent GC."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            logger.warning("Async handler dropped: no running event loop")
            return
        task = loop.create_task(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
