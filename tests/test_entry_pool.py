# -*- coding: utf-8 -*-
from __future__ import annotations

import pytest

from backend.app.core.errors_core import NoEligibleEntrants
from backend.app.services.entry_pool import build_eligible_pool

ENTRANTS = (
    ("Cara", "Cole", "cara@example.com", 2),
    ("Abe", "Ames", "abe@example.com", 5),
    ("Bea", "Bell", "bea@example.com", 3),
)


async def test_pool_weights_are_entry_counts_in_entrant_order(seed, db):
    seeded = await seed(entrants=ENTRANTS)

    pool = await build_eligible_pool(db, seeded.event_id)

    ids = [m.entrant_id for m in pool.members]
    assert ids == sorted(ids)
    by_email = {m.email: m.entry_count for m in pool.members}
    assert by_email == {"cara@example.com": 2, "abe@example.com": 5, "bea@example.com": 3}
    assert pool.total_entries == 10


async def test_pool_excludes_previous_winners(seed, db):
    seeded = await seed(entrants=ENTRANTS)
    abe = seeded.entrant_ids["abe@example.com"]

    pool = await build_eligible_pool(db, seeded.event_id, {abe})

    assert abe not in {m.entrant_id for m in pool.members}
    assert pool.total_entries == 5


async def test_first_entry_id_points_at_entrants_own_entry(seed, db):
    seeded = await seed(entrants=ENTRANTS)

    pool = await build_eligible_pool(db, seeded.event_id)

    first_ids = [m.first_entry_id for m in pool.members]
    assert len(set(first_ids)) == len(first_ids)


async def test_empty_pool_after_exclusions_raises(seed, db):
    seeded = await seed(entrants=ENTRANTS)

    with pytest.raises(NoEligibleEntrants):
        await build_eligible_pool(db, seeded.event_id, set(seeded.entrant_ids.values()))


async def test_event_without_entries_raises(seed, db):
    seeded = await seed(entrants=())

    with pytest.raises(NoEligibleEntrants):
        await build_eligible_pool(db, seeded.event_id)


async def test_entries_of_other_events_are_ignored(seed, db):
    first = await seed(entrants=(("Abe", "Ames", "abe@example.com", 4),))
    await seed(name="Other", entrants=(("Dan", "Dale", "dan@example.com", 9),))

    pool = await build_eligible_pool(db, first.event_id)

    assert [m.email for m in pool.members] == ["abe@example.com"]
    assert pool.total_entries == 4
