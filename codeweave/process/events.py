"""Typed event channel for process output."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

EventKind = Literal["started", "stdout", "stderr", "exited"]


class ProcessEvent(BaseModel):
    """One observation of a running child process."""

    kind: EventKind
    instance_id: Optional[str] = None
    data: str = ""
    exit_code: Optional[int] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class Subscription:
    """Async iterator over the events of one channel subscriber."""

    def __init__(self, channel: "EventChannel") -> None:
        self._channel = channel
        self._queue: asyncio.Queue[Optional[ProcessEvent]] = asyncio.Queue()

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> ProcessEvent:
        event = await self._queue.get()
        if event is None:
            self._channel._detach(self)
            raise StopAsyncIteration
        return event

    def _push(self, event: Optional[ProcessEvent]) -> None:
        self._queue.put_nowait(event)

    def close(self) -> None:
        self._channel._detach(self)


class EventChannel:
    """Fan-out of process events to any number of subscribers.

    Publishers never block on slow subscribers: every subscriber owns an
    unbounded queue. ``close`` ends all subscriptions once their queues drain.
    """

    def __init__(self) -> None:
        self._subscribers: List[Subscription] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def publish(self, event: ProcessEvent) -> None:
        if self._closed:
            return
        for subscription in list(self._subscribers):
            subscription._push(event)

    def subscribe(self) -> Subscription:
        """Receive every event published from now until the channel closes."""
        subscription = Subscription(self)
        if self._closed:
            subscription._push(None)
        else:
            self._subscribers.append(subscription)
        return subscription

    def _detach(self, subscription: Subscription) -> None:
        if subscription in self._subscribers:
            self._subscribers.remove(subscription)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for subscription in self._subscribers:
            subscription._push(None)
        self._subscribers = []
