# -*- coding: utf-8 -*-
from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone

import pytest

from backend.app.core.errors_core import SinkWriteFailure
from backend.app.services.broadcast_service import (
    Broadcaster,
    Checkpoint,
    QueueSink,
    SubscriberRegistry,
    entry_message,
    format_sse,
    sse_stream,
)

NOW = datetime(2024, 5, 17, 12, 0, tzinfo=timezone.utc)


class RecordingSink:
    def __init__(self) -> None:
        self.messages = []
        self.closed = False

    async def send(self, message):
        self.messages.append(message)

    def close(self):
        self.closed = True


class FailingSink(RecordingSink):
    def __init__(self, fail_after: int = 0) -> None:
        super().__init__()
        self.fail_after = fail_after

    async def send(self, message):
        if len(self.messages) >= self.fail_after:
            raise SinkWriteFailure("boom")
        await super().send(message)


@pytest.fixture
def registry():
    return SubscriberRegistry(clock=lambda: NOW)


async def test_register_sends_connection_ack_first(registry):
    sink = RecordingSink()

    await registry.register(1, sink)

    assert sink.messages[0]["type"] == "connection"
    assert sink.messages[0]["message"] == "Connection established"
    assert registry.is_active(1)
    assert registry.checkpoint(1) == Checkpoint(last_checked_at=NOW, opened_at=NOW)


async def test_first_subscriber_starts_watcher_and_last_stops_it(registry):
    started = []
    gate = asyncio.Event()

    async def timer(event_id):
        started.append(event_id)
        await gate.wait()

    registry.attach_timer(timer)
    a, b = RecordingSink(), RecordingSink()

    await registry.register(7, a)
    await registry.register(7, b)
    await asyncio.sleep(0)
    task = next(t for t in asyncio.all_tasks() if t.get_name() == "watcher:event:7")

    assert started == [7]
    assert registry.subscriber_count(7) == 2

    await registry.unregister(7, a)
    assert not task.done()

    await registry.unregister(7, b)
    with pytest.raises(asyncio.CancelledError):
        await task
    assert not registry.is_active(7)
    assert registry.checkpoint(7) is None


async def test_failed_ack_unregisters_channel(registry):
    with pytest.raises(SinkWriteFailure):
        await registry.register(3, FailingSink())

    assert registry.subscriber_count(3) == 0
    assert not registry.is_active(3)


async def test_publish_isolates_failing_subscriber(registry):
    good_a, good_b, bad = RecordingSink(), RecordingSink(), FailingSink(fail_after=1)
    for sink in (good_a, bad, good_b):
        await registry.register(5, sink)
    broadcaster = Broadcaster(registry)

    delivered = await broadcaster.publish(5, {"type": "entry", "n": 1})

    assert delivered == 2
    assert bad.closed
    assert registry.subscriber_count(5) == 2
    assert good_a.messages[-1] == {"type": "entry", "n": 1}
    assert good_b.messages[-1] == {"type": "entry", "n": 1}


async def test_late_subscriber_gets_no_replay(registry):
    broadcaster = Broadcaster(registry)
    early = RecordingSink()
    await registry.register(2, early)
    await broadcaster.publish(2, {"type": "entry", "n": 1})

    late = RecordingSink()
    await registry.register(2, late)
    await broadcaster.publish(2, {"type": "entry", "n": 2})

    assert [m.get("n") for m in early.messages] == [None, 1, 2]
    assert [m.get("n") for m in late.messages] == [None, 2]


async def test_publish_to_inactive_event_delivers_nothing(registry):
    assert await Broadcaster(registry).publish(99, {"type": "entry"}) == 0


async def test_unregister_twice_is_noop(registry):
    sink = RecordingSink()
    await registry.register(4, sink)

    assert await registry.unregister(4, sink) is True
    assert await registry.unregister(4, sink) is False


async def test_queue_sink_rejects_when_full_or_closed():
    sink = QueueSink(maxsize=1)
    await sink.send({"n": 1})

    with pytest.raises(SinkWriteFailure):
        await sink.send({"n": 2})

    sink.close()
    with pytest.raises(SinkWriteFailure):
        await sink.send({"n": 3})


async def test_sse_stream_yields_frames_and_unregisters_on_close(registry):
    sink = QueueSink(maxsize=10)
    broadcaster = Broadcaster(registry)
    stream = sse_stream(registry, 8, sink, keepalive_sec=0.05)
    assert not registry.is_active(8)

    ack = await stream.__anext__()
    assert registry.subscriber_count(8) == 1
    assert ack.startswith("data: ")
    assert json.loads(ack[len("data: "):])["type"] == "connection"

    await broadcaster.publish(8, {"type": "entry", "totalEntries": 1})
    frame = await stream.__anext__()
    assert frame.endswith("\n\n")
    assert json.loads(frame[len("data: "):].strip()) == {"type": "entry", "totalEntries": 1}

    assert await stream.__anext__() == ": keep-alive\n\n"

    await stream.aclose()
    assert sink.closed
    assert not registry.is_active(8)


async def test_sse_stream_that_never_started_leaves_no_subscriber(registry):
    stream = sse_stream(registry, 6, QueueSink(maxsize=10), keepalive_sec=0.05)

    await stream.aclose()

    assert registry.subscriber_count(6) == 0
    assert not registry.is_active(6)


async def test_cancelled_stream_unregisters_while_event_lock_is_held(registry):
    sink = QueueSink(maxsize=10)
    stream = sse_stream(registry, 9, sink, keepalive_sec=10)
    await stream.__anext__()

    async def read_next():
        return await stream.__anext__()

    reader = asyncio.create_task(read_next())
    await asyncio.sleep(0.01)

    async with registry.lock(9):
        reader.cancel()
        with pytest.raises(asyncio.CancelledError):
            await reader
        assert sink.closed
        assert registry.subscriber_count(9) == 0
        assert not registry.is_active(9)


async def test_owns_watcher_tracks_current_task(registry):
    gate = asyncio.Event()

    async def timer(event_id):
        await gate.wait()

    registry.attach_timer(timer)
    await registry.register(11, RecordingSink())
    task = next(t for t in asyncio.all_tasks() if t.get_name() == "watcher:event:11")

    assert registry.owns_watcher(11, task)
    assert not registry.owns_watcher(11)
    assert not registry.owns_watcher(12, task)
    await registry.close()


async def test_close_cancels_watchers_and_closes_sinks(registry):
    async def timer(event_id):
        await asyncio.sleep(3600)

    registry.attach_timer(timer)
    sinks = [RecordingSink(), RecordingSink()]
    await registry.register(1, sinks[0])
    await registry.register(2, sinks[1])

    await registry.close()

    assert registry.active_events() == []
    assert all(s.closed for s in sinks)
    assert not any(t.get_name().startswith("watcher:event:") for t in asyncio.all_tasks())


def test_entry_message_fills_missing_entrant_fields():
    created = datetime(2024, 5, 17, 11, 59, 30, tzinfo=timezone.utc)

    msg = entry_message(
        entry_id=10,
        event_id=2,
        created_at=created,
        first_name=None,
        last_name="",
        email=None,
        total_entries=42,
        now=NOW,
    )

    assert msg["type"] == "entry"
    assert msg["entry"]["entrant"] == {
        "firstName": "Unknown",
        "lastName": "Unknown",
        "email": "unknown@example.com",
    }
    assert msg["entry"]["eventId"] == 2
    assert msg["totalEntries"] == 42
    assert format_sse(msg).startswith('data: {"type":"entry"')
