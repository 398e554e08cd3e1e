"""Async pub/sub event bus for device and system events."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Coroutine
from uuid import uuid4

from sparkcloud.utils.logging import get_logger

log = get_logger(__name__)

DEFAULT_TTL = 60


# ---------------------------------------------------------------------------
# Event
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Event:
    name: str
    data: str | None = None
    device_id: str | None = None
    user_id: str | None = None
    is_public: bool = False
    ttl: int = DEFAULT_TTL
    published_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    id: str = field(default_factory=lambda: uuid4().hex[:12])


# ---------------------------------------------------------------------------
# Bus
# ---------------------------------------------------------------------------

Handler = Callable[[Event], Coroutine[Any, Any, None]]


@dataclass
class _Subscription:
    prefix: str
    handler: Handler
    queue: asyncio.Queue[Event]


class EventBus:
    """Delivers events to subscribers whose prefix matches the event name.

    Every subscription has its own queue and consumer task, so a slow
    handler only delays its own events.
    """

    def __init__(self, max_queue_size: int = 256) -> None:
        self._subscriptions: list[_Subscription] = []
        self._max_queue_size = max_queue_size
        self._running = False
        self._tasks: list[asyncio.Task[None]] = []

    def subscribe(self, prefix: str, handler: Handler) -> None:
        queue: asyncio.Queue[Event] = asyncio.Queue(maxsize=self._max_queue_size)
        subscription = _Subscription(prefix, handler, queue)
        self._subscriptions.append(subscription)
        if self._running:
            self._spawn(subscription)

    def publish(self, event: Event) -> None:
        for subscription in self._subscriptions:
            if not event.name.startswith(subscription.prefix):
                continue
            try:
                subscription.queue.put_nowait(event)
            except asyncio.QueueFull:
                log.warning(
                    "event_queue_full",
                    event_name=event.name,
                    handler=subscription.handler.__qualname__,
                )

    async def start(self) -> None:
        self._running = True
        for subscription in self._subscriptions:
            self._spawn(subscription)

    def _spawn(self, subscription: _Subscription) -> None:
        task = asyncio.create_task(
            self._consumer(subscription),
            name=f"bus-{subscription.prefix or '*'}-{subscription.handler.__qualname__}",
        )
        self._tasks.append(task)

    async def _consumer(self, subscription: _Subscription) -> None:
        while self._running:
            try:
                event = await asyncio.wait_for(subscription.queue.get(), timeout=1.0)
            except asyncio.TimeoutError:
                continue
            try:
                await subscription.handler(event)
            except Exception:
                log.exception("handler_error", event_name=event.name)

    async def stop(self) -> None:
        self._running = False
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
