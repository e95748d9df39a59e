"""
Log Stream — ordered per-room event log with fan-out to live viewers.

Each room has one channel: a bounded replay buffer plus one unbounded queue
per subscriber. The room's workflow task is the only writer; appending never
awaits, so a slow viewer can't hold up the orchestrator or other viewers.

A new subscriber gets the buffered backlog followed by live events with no
gap. Across a reconnect it may see events again unless it passes the last
sequence number it saw.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from datetime import timedelta
from typing import Any

from models.schemas import LogEvent, LogLevel, utcnow

log = logging.getLogger(__name__)

_CLOSED = object()


class Subscription:
    """Async iterator over one viewer's events. Ends when the room finishes."""

    def __init__(self, stream: "LogStream", room_id: str):
        self._stream = stream
        self.room_id = room_id
        self.queue: asyncio.Queue = asyncio.Queue()
        self.active = True

    def __aiter__(self):
        return self

    async def __anext__(self) -> LogEvent:
        if not self.active and self.queue.empty():
            raise StopAsyncIteration
        item = await self.queue.get()
        if item is _CLOSED:
            self.active = False
            raise StopAsyncIteration
        return item

    async def get(self, timeout: float | None = None) -> LogEvent | None:
        """Next event, or None once the stream is closed."""
        try:
            return await asyncio.wait_for(self.__anext__(), timeout)
        except StopAsyncIteration:
            return None

    def close(self) -> None:
        self._stream.unsubscribe(self)


class RoomChannel:
    def __init__(self, room_id: str, buffer_size: int):
        self.room_id = room_id
        self.buffer: deque[LogEvent] = deque(maxlen=buffer_size)
        self.subscribers: set[Subscription] = set()
        self.closed = False
        self.last_seq = 0
        self.last_timestamp = None


class LogStream:
    def __init__(self, buffer_size: int = 100, retention_sec: float = 300.0):
        self.buffer_size = buffer_size
        self.retention_sec = retention_sec
        self._channels: dict[str, RoomChannel] = {}

    def _channel(self, room_id: str) -> RoomChannel:
        channel = self._channels.get(room_id)
        if channel is None:
            channel = RoomChannel(room_id, self.buffer_size)
            self._channels[room_id] = channel
        return channel

    # ── Producer side ─────────────────────────────────────────────────

    def append(self, event: LogEvent) -> LogEvent:
        """Stamp ``event`` with the next sequence number and fan it out."""
        channel = self._channel(event.room_id)
        channel.last_seq += 1
        event.seq = channel.last_seq

        # Timestamps strictly increase per room even if the clock doesn't
        ts = event.timestamp
        if channel.last_timestamp is not None and ts <= channel.last_timestamp:
            ts = channel.last_timestamp + timedelta(microseconds=1)
        event.timestamp = channel.last_timestamp = ts

        channel.buffer.append(event)
        if channel.closed:
            log.debug("[LOGS] %s appended after close: %s", event.room_id, event.message)
            return event
        for sub in channel.subscribers:
            sub.queue.put_nowait(event)
        log.debug("[LOGS] %s #%d %s/%s: %s", event.room_id, event.seq,
                  event.agent, event.level.value, event.message)
        return event

    def emit(
        self,
        room_id: str,
        agent: str,
        level: LogLevel,
        message: str,
        metadata: dict[str, Any] | None = None,
    ) -> LogEvent:
        return self.append(LogEvent(
            room_id=room_id, agent=agent, level=level,
            message=message, metadata=metadata or {},
        ))

    def close(self, room_id: str) -> None:
        """End every subscription for the room and schedule its buffer for removal."""
        channel = self._channel(room_id)
        if not channel.closed:
            channel.closed = True
            for sub in channel.subscribers:
                sub.queue.put_nowait(_CLOSED)
            channel.subscribers.clear()
            log.info("[LOGS] Closed stream for %s (%d events buffered)", room_id, len(channel.buffer))
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        loop.call_later(self.retention_sec, self._drop, room_id, channel)

    def _drop(self, room_id: str, channel: RoomChannel) -> None:
        if self._channels.get(room_id) is channel and channel.closed:
            del self._channels[room_id]
            log.debug("[LOGS] Dropped buffer for %s", room_id)

    # ── Consumer side ─────────────────────────────────────────────────

    def subscribe(self, room_id: str, after_seq: int | None = None) -> Subscription:
        """Backlog (events with seq > ``after_seq``) then live events, in append order."""
        channel = self._channel(room_id)
        sub = Subscription(self, room_id)
        # Snapshot and registration happen without yielding: no gap, no reordering.
        for event in channel.buffer:
            if after_seq is None or event.seq > after_seq:
                sub.queue.put_nowait(event)
        if channel.closed:
            sub.queue.put_nowait(_CLOSED)
        else:
            channel.subscribers.add(sub)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        channel = self._channels.get(sub.room_id)
        if channel is not None:
            channel.subscribers.discard(sub)
        if sub.active:
            sub.active = False
            sub.queue.put_nowait(_CLOSED)

    def backlog(self, room_id: str) -> list[LogEvent]:
        channel = self._channels.get(room_id)
        return list(channel.buffer) if channel else []

    def subscriber_count(self, room_id: str) -> int:
        channel = self._channels.get(room_id)
        return len(channel.subscribers) if channel else 0

    def is_closed(self, room_id: str) -> bool:
        channel = self._channels.get(room_id)
        return bool(channel and channel.closed)
