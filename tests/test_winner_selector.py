# -*- coding: utf-8 -*-
from __future__ import annotations

import random
from collections import Counter

import pytest

from backend.app.core.errors_core import EmptyPool
from backend.app.services.entry_pool import EligiblePool, PoolMember
from backend.app.services.winner_selector import WinnerSelector


class FixedRandom(random.Random):
    def __init__(self, value: float) -> None:
        super().__init__(0)
        self.value = value

    def random(self) -> float:
        return self.value


def _member(entrant_id: int, count: int) -> PoolMember:
    return PoolMember(
        entrant_id=entrant_id,
        first_name=f"First{entrant_id}",
        last_name=f"Last{entrant_id}",
        email=f"user{entrant_id}@example.com",
        entry_count=count,
        first_entry_id=entrant_id * 100,
    )


def _pool(*counts: int) -> EligiblePool:
    return EligiblePool.from_members([_member(i + 1, c) for i, c in enumerate(counts)])


def test_selection_is_proportional_to_entry_count():
    selector = WinnerSelector(random.Random(20240517))
    pool = _pool(5, 3, 2)

    wins = Counter(selector.select(pool).member.entrant_id for _ in range(10_000))

    assert 4_700 <= wins[1] <= 5_300
    assert 2_700 <= wins[2] <= 3_300
    assert 1_700 <= wins[3] <= 2_300


def test_single_member_always_wins():
    selector = WinnerSelector(random.Random(7))
    pool = _pool(1)

    for _ in range(50):
        selection = selector.select(pool)
        assert selection.member.entrant_id == 1
        assert selection.probability == pytest.approx(1.0)


def test_empty_pool_raises():
    with pytest.raises(EmptyPool):
        WinnerSelector(random.Random(1)).select(EligiblePool())


@pytest.mark.parametrize(
    "r, expected",
    [
        (0.0, 1),
        (0.49, 1),
        (0.5, 2),  # граница: r < cumulative, поэтому 0.5 уже у второго
        (0.79, 2),
        (0.81, 3),
        (0.999999, 3),
    ],
)
def test_cumulative_scan_boundaries(r, expected):
    selection = WinnerSelector(FixedRandom(r)).select(_pool(5, 3, 2))
    assert selection.member.entrant_id == expected
    assert selection.r == r


def test_float_drift_falls_back_to_last_member():
    selection = WinnerSelector(FixedRandom(1.0)).select(_pool(5, 3, 2))
    assert selection.member.entrant_id == 3


def test_inconsistent_total_is_renormalized():
    pool = EligiblePool(members=[_member(1, 5), _member(2, 3), _member(3, 2)], total_entries=20)

    weights = WinnerSelector.probabilities(pool)

    assert sum(weights) == pytest.approx(1.0)
    assert weights == pytest.approx([0.5, 0.3, 0.2])


def test_seeded_selector_is_reproducible():
    pool = _pool(4, 1, 7, 2)
    one, two = WinnerSelector(random.Random(99)), WinnerSelector(random.Random(99))
    first = [one.select(pool).member.entrant_id for _ in range(20)]
    again = [two.select(pool).member.entrant_id for _ in range(20)]
    assert first == again
