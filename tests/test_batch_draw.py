# -*- coding: utf-8 -*-
from __future__ import annotations

import random

import pytest

from backend.app.core.errors_core import (
    EntriesNotAccepted,
    InsufficientEntries,
    InvalidEventState,
    NotFoundError,
    ValidationError,
)
from backend.app.crud.raffle_crud import RaffleCRUD
from backend.app.services.draw_service import (
    svc_batch_draw,
    svc_close_event,
    svc_create_entries,
    svc_get_winners,
    svc_leaderboard,
    svc_open_event,
    svc_redraw_event,
)
from backend.app.services.draw_session_service import DrawSessionRegistry
from backend.app.services.winner_selector import WinnerSelector

THREE = (
    ("Abe", "Ames", "abe@example.com", 3),
    ("Bea", "Bell", "bea@example.com", 5),
    ("Cara", "Cole", "cara@example.com", 1),
)


class CountingWatcher:
    def __init__(self) -> None:
        self.calls = []

    async def notify_entry_created(self, event_id: int) -> int:
        self.calls.append(event_id)
        return 0


async def test_batch_draw_awards_every_prize_to_distinct_entrants(seed, db):
    seeded = await seed(prizes=(("Third", 3), ("First", 1), ("Second", 2)), entrants=THREE)

    out = await svc_batch_draw(db, seeded.event_id, selector=WinnerSelector(random.Random(3)))

    assert out["status"] == "DRAWN"
    assert out["drawn_at"] is not None
    assert [w["prize_name"] for w in out["winners"]] == ["First", "Second", "Third"]
    assert len({w["entrant_id"] for w in out["winners"]}) == 3

    winners = await svc_get_winners(db, seeded.event_id)
    by_prize = {p["prize_id"]: p["winner"]["entrant_id"] for p in winners["prizes"]}
    assert by_prize == {w["prize_id"]: w["entrant_id"] for w in out["winners"]}


async def test_batch_draw_needs_an_entrant_per_prize(seed, db, session_factory):
    seeded = await seed(
        prizes=(("One", 1), ("Two", 2)),
        entrants=(("Abe", "Ames", "abe@example.com", 10),),
    )

    with pytest.raises(InsufficientEntries):
        await svc_batch_draw(db, seeded.event_id)

    async with session_factory() as other:
        event = await RaffleCRUD(other).get_event(seeded.event_id)
        assert event.status == "CLOSED"
        assert event.drawn_at is None


async def test_batch_draw_twice_is_rejected(seed, db):
    seeded = await seed(entrants=THREE)
    await svc_batch_draw(db, seeded.event_id)

    with pytest.raises(InvalidEventState):
        await svc_batch_draw(db, seeded.event_id)


async def test_batch_draw_without_prizes(seed, db):
    seeded = await seed(prizes=(), entrants=THREE)

    with pytest.raises(InvalidEventState):
        await svc_batch_draw(db, seeded.event_id)


async def test_batch_draw_of_draft_event(seed, db):
    seeded = await seed(status="DRAFT", entrants=THREE)

    with pytest.raises(InvalidEventState):
        await svc_batch_draw(db, seeded.event_id)


async def test_batch_draw_unknown_event(db):
    with pytest.raises(NotFoundError):
        await svc_batch_draw(db, 12345)


async def test_redraw_event_clears_results_and_reopens(seed, db, session_factory):
    seeded = await seed(prizes=(("One", 1), ("Two", 2)), entrants=THREE)
    await svc_batch_draw(db, seeded.event_id)

    async with session_factory() as other:
        out = await svc_redraw_event(other, seeded.event_id)

    assert out["status"] == "OPEN"
    assert out["drawn_at"] is None
    async with session_factory() as other:
        prizes = await RaffleCRUD(other).list_prizes_ordered(seeded.event_id)
        assert [p.winning_entry_id for p in prizes] == [None, None]


async def test_redraw_event_before_draw_is_rejected(seed, db):
    seeded = await seed(entrants=THREE)

    with pytest.raises(InvalidEventState):
        await svc_redraw_event(db, seeded.event_id)


async def test_create_entries_reuses_entrant_by_email(seed, db):
    seeded = await seed(status="OPEN")
    watcher = CountingWatcher()

    first = await svc_create_entries(
        db, seeded.event_id, first_name="Abe", last_name="Ames", email="abe@example.com", quantity=2, watcher=watcher
    )
    second = await svc_create_entries(
        db, seeded.event_id, first_name="Abe", last_name="Ames", email="ABE@example.com", quantity=3, watcher=watcher
    )

    assert first["entrant_id"] == second["entrant_id"]
    assert len(first["entry_ids"]) == 2
    assert len(second["entry_ids"]) == 3
    assert second["total_entries"] == 5
    assert watcher.calls == [seeded.event_id, seeded.event_id]


async def test_create_entries_on_closed_event(seed, db):
    seeded = await seed(status="CLOSED")

    with pytest.raises(EntriesNotAccepted):
        await svc_create_entries(db, seeded.event_id, first_name="A", last_name="B", email="a@example.com")


@pytest.mark.parametrize("quantity", [0, 101])
async def test_create_entries_quantity_bounds(seed, db, quantity):
    seeded = await seed(status="OPEN")

    with pytest.raises(ValidationError):
        await svc_create_entries(
            db, seeded.event_id, first_name="A", last_name="B", email="a@example.com", quantity=quantity
        )


async def test_leaderboard_orders_by_entry_count(seed, db):
    seeded = await seed(entrants=THREE)

    board = await svc_leaderboard(db, seeded.event_id)

    assert [r["email"] for r in board["entrants"]] == [
        "bea@example.com",
        "abe@example.com",
        "cara@example.com",
    ]
    assert board["total_entries"] == 9


async def test_open_and_close_transitions(seed, db):
    seeded = await seed(status="DRAFT")

    opened = await svc_open_event(db, seeded.event_id)
    assert opened["status"] == "OPEN"
    with pytest.raises(InvalidEventState):
        await svc_open_event(db, seeded.event_id)

    closed = await svc_close_event(db, seeded.event_id)
    assert closed["status"] == "CLOSED"
    with pytest.raises(InvalidEventState):
        await svc_close_event(db, seeded.event_id)


async def test_batch_draw_and_open_wait_for_the_draw_session(seed, db, session_factory):
    seeded = await seed(prizes=(("One", 1), ("Two", 2)), entrants=THREE)
    sessions = DrawSessionRegistry()
    await sessions.start(db, seeded.event_id)

    async with session_factory() as other:
        with pytest.raises(InvalidEventState):
            await svc_batch_draw(other, seeded.event_id, sessions=sessions)
        with pytest.raises(InvalidEventState):
            await svc_open_event(other, seeded.event_id, sessions=sessions)

    async with session_factory() as other:
        crud = RaffleCRUD(other)
        assert (await crud.get_event(seeded.event_id)).status == "CLOSED"
        assert all(p.winning_entry_id is None for p in await crud.list_prizes_ordered(seeded.event_id))

    assert await sessions.close(seeded.event_id) is True
    out = await svc_batch_draw(db, seeded.event_id, sessions=sessions)
    assert out["status"] == "DRAWN"
