# -*- coding: utf-8 -*-
# backend/app/services/winner_selector.py
# =============================================================================
# Назначение кода:
#   Взвешенный выбор победителя из пула: вероятность участника пропорциональна
#   числу его записей.
#
# Канон/инварианты:
#   • Вероятности p_i = entry_count_i / total_entries, сумма = 1 (±1e-4, иначе
#     веса нормализуются заново).
#   • r ∈ [0, 1) из криптостойкого источника ОС (random.SystemRandom); если ОС
#     его не даёт - обычный random.Random.
#   • Обход кумулятивной суммы в порядке пула: первый член с r < cumulative.
#     При плавающей погрешности возвращается последний член.
#   • Пустой пул → EmptyPool.
#
# ИИ-защита:
#   • RNG внедряемый (тесты подают random.Random(seed)); DRAW_RNG_SEED - только
#     для демо/тестов.
#
# Запреты:
#   • Никаких обращений к БД: selector работает только с готовым пулом.
# =============================================================================

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import List, Optional

from backend.app.core.config_core import get_settings
from backend.app.core.errors_core import EmptyPool
from backend.app.core.logging_core import get_logger
from backend.app.services.entry_pool import EligiblePool, PoolMember

logger = get_logger(__name__)
settings = get_settings()

WEIGHT_SUM_TOLERANCE = 1e-4


@dataclass(frozen=True, slots=True)
class Selection:
    member: PoolMember
    probability: float
    r: float


def default_rng() -> random.Random:
    """SystemRandom, если ОС даёт источник энтропии; иначе (или при DRAW_RNG_SEED) - Random."""
    if settings.DRAW_RNG_SEED is not None:
        return random.Random(settings.DRAW_RNG_SEED)
    rng = random.SystemRandom()
    try:
        rng.random()
    except NotImplementedError:
        logger.warning("os entropy source unavailable, falling back to PRNG")
        return random.Random()
    return rng


class WinnerSelector:
    """Взвешенный выбор одного победителя из EligiblePool."""

    def __init__(self, rng: Optional[random.Random] = None) -> None:
        self._rng = rng if rng is not None else default_rng()

    @staticmethod
    def probabilities(pool: EligiblePool) -> List[float]:
        total = pool.total_entries if pool.total_entries > 0 else sum(m.entry_count for m in pool.members)
        if total <= 0:
            raise EmptyPool(details={"members": len(pool.members)})
        weights = [m.entry_count / total for m in pool.members]
        weight_sum = sum(weights)
        if abs(weight_sum - 1.0) > WEIGHT_SUM_TOLERANCE:
            logger.warning("renormalizing draw weights", extra={"weight_sum": weight_sum})
            weights = [w / weight_sum for w in weights]
        return weights

    def select(self, pool: EligiblePool) -> Selection:
        if not pool.members:
            raise EmptyPool()

        weights = self.probabilities(pool)
        r = self._rng.random()

        cumulative = 0.0
        for member, weight in zip(pool.members, weights):
            cumulative += weight
            if r < cumulative:
                return Selection(member=member, probability=weight, r=r)

        # Плавающая погрешность: r «проскочил» последнюю границу
        return Selection(member=pool.members[-1], probability=weights[-1], r=r)


__all__ = ["Selection", "WinnerSelector", "default_rng", "WEIGHT_SUM_TOLERANCE"]
