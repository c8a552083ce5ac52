"""
DiaryFlow Backend — Notification Channels
===========================================

What:  A small in-process publish/subscribe primitive.
How:   `publish()` fans a value out to synchronous listeners and to every
       subscriber queue. `subscribe()` returns an async iterator that ends
       when the channel is closed.
Who:   DraftService (audio-ready paths, transcription status) and
       EntryService (per-user entry events for the SSE stream).

Everything runs on the single event loop, so no locking is needed.
"""

import asyncio
import logging
from typing import Callable, Dict, Generic, List, Optional, Set, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

_CLOSED = object()


class Subscription(Generic[T]):
    """Async iterator over the values published after subscribing."""

    def __init__(self, channel: "EventChannel[T]"):
        self._channel = channel
        self._queue: asyncio.Queue = asyncio.Queue()
        self._done = False

    def _push(self, value) -> None:
        self._queue.put_nowait(value)

    async def _next(self):
        if self._done:
            return _CLOSED
        value = await self._queue.get()
        if value is _CLOSED:
            self._done = True
        return value

    @property
    def finished(self) -> bool:
        return self._done

    def __aiter__(self) -> "Subscription[T]":
        return self

    async def __anext__(self) -> T:
        value = await self._next()
        if value is _CLOSED:
            raise StopAsyncIteration
        return value

    async def get(self, timeout: Optional[float] = None) -> Optional[T]:
        """
        Next value, or None when `timeout` elapses first or the channel closes.

        Used by the SSE stream to interleave keep-alive comments.
        """
        try:
            value = await asyncio.wait_for(self._next(), timeout)
        except asyncio.TimeoutError:
            return None
        return None if value is _CLOSED else value

    def close(self) -> None:
        """Detaches from the channel; pending iteration ends."""
        if not self._done:
            self._channel._subscribers.discard(self)
            self._queue.put_nowait(_CLOSED)


class EventChannel(Generic[T]):
    """
    Single-producer, multi-consumer notification channel.

    Listeners registered with `listen()` are called synchronously inside
    `publish()`, in registration order. A listener that raises is logged and
    does not stop delivery to the others.
    """

    def __init__(self, name: str = "channel"):
        self.name = name
        self._listeners: List[Callable[[T], None]] = []
        self._subscribers: Set[Subscription[T]] = set()
        self.closed = False

    def listen(self, callback: Callable[[T], None]) -> Callable[[], None]:
        """Registers a callback; returns a function that unregisters it."""
        self._listeners.append(callback)

        def _remove() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return _remove

    def subscribe(self) -> Subscription[T]:
        subscription: Subscription[T] = Subscription(self)
        if self.closed:
            subscription._push(_CLOSED)
        else:
            self._subscribers.add(subscription)
        return subscription

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, value: T) -> None:
        if self.closed:
            logger.debug("Dropping event on closed channel %s", self.name)
            return

        for callback in list(self._listeners):
            try:
                callback(value)
            except Exception:
                logger.exception("Listener on channel %s failed", self.name)

        for subscription in list(self._subscribers):
            subscription._push(value)

    def close(self) -> None:
        """Ends every subscriber iterator and drops all listeners."""
        if self.closed:
            return
        self.closed = True
        self._listeners.clear()
        for subscription in list(self._subscribers):
            subscription._push(_CLOSED)
        self._subscribers.clear()


class ChannelRegistry(Generic[T]):
    """Lazily created channels keyed by an id (one per user for entry events)."""

    def __init__(self, prefix: str):
        self.prefix = prefix
        self._channels: Dict[str, EventChannel[T]] = {}

    def get(self, key: str) -> EventChannel[T]:
        channel = self._channels.get(key)
        if channel is None or channel.closed:
            channel = EventChannel(name=f"{self.prefix}:{key}")
            self._channels[key] = channel
        return channel

    def publish(self, key: str, value: T) -> None:
        # No channel means nobody has subscribed for this key yet
        channel = self._channels.get(key)
        if channel is not None:
            channel.publish(value)

    def close_all(self) -> None:
        for channel in self._channels.values():
            channel.close()
        self._channels.clear()
