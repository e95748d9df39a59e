#!/usr/bin/env python3
"""
Log stream tests: ordering, backlog replay, fan-out, bounded buffer and close.
"""

import asyncio
import unittest

from features.logstream import LogStream
from models.schemas import LogLevel


def emit_n(stream, room_id, n, start=0):
    for i in range(start, start + n):
        stream.emit(room_id, "story", LogLevel.INFO, f"event {i}")


async def drain(sub, count, timeout=1.0):
    return [await sub.get(timeout=timeout) for _ in range(count)]


class TestOrdering(unittest.IsolatedAsyncioTestCase):

    async def test_sequence_numbers_increase_per_room(self):
        stream = LogStream()
        emit_n(stream, "room-a", 3)
        emit_n(stream, "room-b", 2)
        self.assertEqual([e.seq for e in stream.backlog("room-a")], [1, 2, 3])
        self.assertEqual([e.seq for e in stream.backlog("room-b")], [1, 2])

    async def test_concurrent_subscribers_see_append_order(self):
        stream = LogStream()
        subs = [stream.subscribe("room-1") for _ in range(3)]
        emit_n(stream, "room-1", 20)
        for sub in subs:
            events = await drain(sub, 20)
            self.assertEqual([e.message for e in events], [f"event {i}" for i in range(20)])

    async def test_slow_subscriber_does_not_block_others(self):
        stream = LogStream()
        slow = stream.subscribe("room-1")
        fast = stream.subscribe("room-1")
        emit_n(stream, "room-1", 50)
        self.assertEqual(len(await drain(fast, 50)), 50)
        self.assertEqual(slow.queue.qsize(), 50)


class TestReplay(unittest.IsolatedAsyncioTestCase):

    async def test_late_subscriber_gets_backlog_before_live(self):
        stream = LogStream()
        emit_n(stream, "room-1", 5)
        sub = stream.subscribe("room-1")
        emit_n(stream, "room-1", 2, start=5)
        events = await drain(sub, 7)
        self.assertEqual([e.seq for e in events], list(range(1, 8)))

    async def test_buffer_is_bounded_oldest_evicted(self):
        stream = LogStream(buffer_size=10)
        emit_n(stream, "room-1", 25)
        backlog = stream.backlog("room-1")
        self.assertEqual(len(backlog), 10)
        self.assertEqual(backlog[0].seq, 16)
        sub = stream.subscribe("room-1")
        self.assertEqual((await sub.get(timeout=1)).seq, 16)

    async def test_reconnect_with_last_seen_seq_skips_backlog(self):
        stream = LogStream()
        emit_n(stream, "room-1", 6)
        sub = stream.subscribe("room-1", after_seq=4)
        events = await drain(sub, 2)
        self.assertEqual([e.seq for e in events], [5, 6])


class TestClose(unittest.IsolatedAsyncioTestCase):

    async def test_close_ends_iteration_after_backlog(self):
        stream = LogStream()
        sub = stream.subscribe("room-1")
        emit_n(stream, "room-1", 3)
        stream.close("room-1")
        seen = [e.seq async for e in sub]
        self.assertEqual(seen, [1, 2, 3])
        self.assertEqual(stream.subscriber_count("room-1"), 0)

    async def test_subscribe_after_close_replays_and_ends(self):
        stream = LogStream()
        emit_n(stream, "room-1", 2)
        stream.close("room-1")
        sub = stream.subscribe("room-1")
        self.assertEqual([e.seq async for e in sub], [1, 2])

    async def test_unsubscribe_stops_delivery(self):
        stream = LogStream()
        sub = stream.subscribe("room-1")
        sub.close()
        emit_n(stream, "room-1", 2)
        self.assertIsNone(await sub.get(timeout=1))
        self.assertEqual(stream.subscriber_count("room-1"), 0)

    async def test_buffer_dropped_after_retention(self):
        stream = LogStream(retention_sec=0.01)
        emit_n(stream, "room-1", 2)
        stream.close("room-1")
        await asyncio.sleep(0.05)
        self.assertEqual(stream.backlog("room-1"), [])

    async def test_get_times_out_without_events(self):
        stream = LogStream()
        sub = stream.subscribe("room-1")
        with self.assertRaises(asyncio.TimeoutError):
            await sub.get(timeout=0.01)


if __name__ == "__main__":
    unittest.main()
