# -*- coding: utf-8 -*-
from __future__ import annotations

import asyncio

import pytest

from backend.app.core.utils_core import utcnow
from backend.app.models import Entry
from backend.app.services.broadcast_service import Broadcaster, SubscriberRegistry
from backend.app.services.change_watcher import ChangeWatcher
from backend.app.services.draw_service import svc_create_entries


class RecordingSink:
    def __init__(self) -> None:
        self.messages = []

    async def send(self, message):
        self.messages.append(message)

    def entries(self):
        return [m for m in self.messages if m["type"] == "entry"]


@pytest.fixture
def registry():
    return SubscriberRegistry()


@pytest.fixture
def watcher(registry, session_factory):
    # интервал опроса большой: доставку в тестах делают poll() и push-хук
    return ChangeWatcher(registry, Broadcaster(registry), session_factory, interval_sec=3600)


async def _add_entries(session_factory, event_id, email, quantity, watcher=None):
    async with session_factory() as session:
        return await svc_create_entries(
            session,
            event_id,
            first_name="Dana",
            last_name="Diaz",
            email=email,
            quantity=quantity,
            watcher=watcher,
        )


async def test_entries_before_subscription_are_not_replayed(seed, registry, watcher):
    seeded = await seed(status="OPEN", entrants=(("Abe", "Ames", "abe@example.com", 4),))
    sink = RecordingSink()
    await registry.register(seeded.event_id, sink)

    assert await watcher.poll(seeded.event_id) == 0
    assert sink.entries() == []


async def test_push_hook_delivers_new_entry(seed, registry, watcher, session_factory):
    seeded = await seed(status="OPEN", entrants=(("Abe", "Ames", "abe@example.com", 2),))
    sink = RecordingSink()
    await registry.register(seeded.event_id, sink)

    out = await _add_entries(session_factory, seeded.event_id, "dana@example.com", 1, watcher)

    [msg] = sink.entries()
    assert msg["entry"]["id"] == out["entry_ids"][0]
    assert msg["entry"]["eventId"] == seeded.event_id
    assert msg["entry"]["entrant"] == {"firstName": "Dana", "lastName": "Diaz", "email": "dana@example.com"}
    assert msg["entry"]["createdAt"].endswith("Z")
    assert msg["totalEntries"] == 3


async def test_each_entry_is_delivered_once(seed, registry, watcher, session_factory):
    seeded = await seed(status="OPEN")
    sink = RecordingSink()
    await registry.register(seeded.event_id, sink)

    await _add_entries(session_factory, seeded.event_id, "dana@example.com", 3)
    assert await watcher.poll(seeded.event_id) == 3
    assert await watcher.poll(seeded.event_id) == 0

    await _add_entries(session_factory, seeded.event_id, "eli@example.com", 1)
    assert await watcher.poll(seeded.event_id) == 1

    ids = [m["entry"]["id"] for m in sink.entries()]
    assert ids == sorted(ids)
    assert len(ids) == len(set(ids)) == 4
    checkpoint = registry.checkpoint(seeded.event_id)
    assert checkpoint.last_entry_id == ids[-1]


async def test_poll_without_subscribers_is_noop(seed, watcher, session_factory):
    seeded = await seed(status="OPEN")
    await _add_entries(session_factory, seeded.event_id, "dana@example.com", 1)

    assert await watcher.poll(seeded.event_id) == 0
    assert await watcher.notify_entry_created(seeded.event_id) == 0


async def test_entries_of_other_events_stay_out(seed, registry, watcher, session_factory):
    watched = await seed(status="OPEN")
    other = await seed(status="OPEN", name="Other")
    sink = RecordingSink()
    await registry.register(watched.event_id, sink)

    await _add_entries(session_factory, other.event_id, "dana@example.com", 2)

    assert await watcher.poll(watched.event_id) == 0
    assert sink.entries() == []


async def test_attached_watcher_polls_until_last_subscriber_leaves(seed, session_factory):
    registry = SubscriberRegistry()
    ChangeWatcher(registry, Broadcaster(registry), session_factory, interval_sec=0.02).attach()
    seeded = await seed(status="OPEN")
    sink = RecordingSink()
    await registry.register(seeded.event_id, sink)
    task = next(t for t in asyncio.all_tasks() if t.get_name() == f"watcher:event:{seeded.event_id}")

    # без push-хука: записи подхватывает только цикл опроса
    await _add_entries(session_factory, seeded.event_id, "dana@example.com", 2)

    for _ in range(200):
        if len(sink.entries()) == 2:
            break
        await asyncio.sleep(0.01)
    assert len(sink.entries()) == 2

    await registry.unregister(seeded.event_id, sink)
    await asyncio.wait([task], timeout=1)
    assert task.done()


async def test_entry_committed_after_a_later_stamped_one_is_still_delivered(
    seed, registry, watcher, session_factory
):
    seeded = await seed(status="OPEN")
    sink = RecordingSink()
    await registry.register(seeded.event_id, sink)
    await asyncio.sleep(0.01)
    # момент, когда «медленная» транзакция проставила created_at
    stamped_early = utcnow()
    await asyncio.sleep(0.01)

    out = await _add_entries(session_factory, seeded.event_id, "dana@example.com", 1, watcher)
    assert len(sink.entries()) == 1

    async with session_factory() as session:
        late = Entry(event_id=seeded.event_id, entrant_id=out["entrant_id"], created_at=stamped_early)
        session.add(late)
        await session.commit()
        late_id = late.id

    assert await watcher.poll(seeded.event_id) == 1
    assert await watcher.poll(seeded.event_id) == 0

    ids = [m["entry"]["id"] for m in sink.entries()]
    assert ids == [out["entry_ids"][0], late_id]
    assert ids.count(late_id) == 1
    checkpoint = registry.checkpoint(seeded.event_id)
    assert checkpoint.last_checked_at >= stamped_early


async def test_watcher_loop_that_lost_ownership_exits(seed, session_factory):
    registry = SubscriberRegistry()
    watcher = ChangeWatcher(registry, Broadcaster(registry), session_factory, interval_sec=0.01).attach()
    seeded = await seed(status="OPEN")
    await registry.register(seeded.event_id, RecordingSink())
    current = next(t for t in asyncio.all_tasks() if t.get_name() == f"watcher:event:{seeded.event_id}")

    stray = asyncio.create_task(watcher.run_for_event(seeded.event_id))
    await asyncio.wait([stray], timeout=1)

    assert stray.done()
    assert not current.done()
    assert registry.is_active(seeded.event_id)
    await registry.close()
