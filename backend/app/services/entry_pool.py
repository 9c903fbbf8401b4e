# -*- coding: utf-8 -*-
# backend/app/services/entry_pool.py
# =============================================================================
# Назначение кода:
#   Построение пула претендентов на приз: участники события с числом их записей
#   (вес), за вычетом уже выигравших в текущем розыгрыше.
#
# Канон/инварианты:
#   • Вес участника = количество его записей в событии.
#   • Порядок членов пула - entrant_id ASC (стабильный; сид RNG воспроизводит
#     результат).
#   • Пул пересчитывается перед КАЖДЫМ розыгрышем приза, никогда не кэшируется.
#   • Пустой пул после исключений → NoEligibleEntrants.
#
# Запреты:
#   • Никакого выбора победителя здесь - только данные для WinnerSelector.
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass, field
from typing import AbstractSet, List

from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.errors_core import NoEligibleEntrants
from backend.app.core.logging_core import get_logger
from backend.app.crud.raffle_crud import RaffleCRUD

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class PoolMember:
    entrant_id: int
    first_name: str
    last_name: str
    email: str
    entry_count: int
    # Запись, которая фиксируется как выигрышная (первая запись участника)
    first_entry_id: int


@dataclass(slots=True)
class EligiblePool:
    members: List[PoolMember] = field(default_factory=list)
    total_entries: int = 0

    def __len__(self) -> int:
        return len(self.members)

    @classmethod
    def from_members(cls, members: List[PoolMember]) -> "EligiblePool":
        return cls(members=list(members), total_entries=sum(m.entry_count for m in members))


async def build_eligible_pool(
    db: AsyncSession,
    event_id: int,
    won_entrant_ids: AbstractSet[int] = frozenset(),
) -> EligiblePool:
    """
    Пул претендентов события без уже выигравших.
    Бросает NoEligibleEntrants, если никого не осталось.
    """
    rows = await RaffleCRUD(db).entrant_entry_counts(event_id, exclude_entrant_ids=won_entrant_ids)
    pool = EligiblePool.from_members(
        [
            PoolMember(
                entrant_id=r.entrant_id,
                first_name=r.first_name,
                last_name=r.last_name,
                email=r.email,
                entry_count=r.entry_count,
                first_entry_id=r.first_entry_id,
            )
            for r in rows
            if r.entry_count > 0
        ]
    )
    if not pool.members:
        logger.info(
            "eligible pool is empty",
            extra={"event_id": event_id, "excluded": len(won_entrant_ids)},
        )
        raise NoEligibleEntrants(
            details={"event_id": event_id, "excluded_entrants": len(won_entrant_ids)}
        )
    return pool


__all__ = ["PoolMember", "EligiblePool", "build_eligible_pool"]
