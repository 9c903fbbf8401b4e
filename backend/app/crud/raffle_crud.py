# -*- coding: utf-8 -*-
# backend/app/crud/raffle_crud.py
# =============================================================================
# Назначение:
#   • Доступ к данным розыгрышей: события, призы, записи и участники.
#   • Агрегаты для пула участников (кол-во записей на участника), курсорная
#     выборка новых записей для вотчера, запись/сброс победителей.
#
# Канон/инварианты:
#   • CRUD не проводит розыгрыш, а только читает/фиксирует данные.
#   • Призы всегда отдаются по возрастанию (order, id).
#   • Новые записи - только курсорно: created_at > граница окна минус уже
#     доставленные id, без OFFSET.
#   • Коммит - ответственность сервиса (unit of work); CRUD делает только flush.
#
# Запреты:
#   • Никакого выбора победителя и машины состояний внутри слоя CRUD.
# =============================================================================
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.models import Entrant, Entry, Event, Prize


@dataclass(slots=True)
class EntrantCount:
    """Строка агрегата: участник и число его записей в событии."""

    entrant_id: int
    first_name: str
    last_name: str
    email: str
    entry_count: int
    first_entry_id: int


class RaffleCRUD:
    """CRUD-обёртка для событий/призов/записей без логики розыгрыша."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # ------------------------------------------------------------------ events

    async def get_event(self, event_id: int, *, fresh: bool = False) -> Event | None:
        """Получить событие по id; fresh=True перечитывает строку из БД поверх identity map."""

        if fresh:
            stmt = select(Event).where(Event.id == int(event_id)).execution_options(populate_existing=True)
            return await self.session.scalar(stmt)
        return await self.session.get(Event, int(event_id))

    async def set_event_status(
        self,
        event: Event,
        status: str,
        *,
        drawn_at: Optional[datetime] = None,
        clear_drawn_at: bool = False,
    ) -> Event:
        """Сменить статус события (и при необходимости отметку розыгрыша)."""

        event.status = status
        if drawn_at is not None:
            event.drawn_at = drawn_at
        elif clear_drawn_at:
            event.drawn_at = None
        await self.session.flush()
        return event

    # ------------------------------------------------------------------ prizes

    async def list_prizes_ordered(self, event_id: int) -> list[Prize]:
        stmt = (
            select(Prize)
            .where(Prize.event_id == int(event_id))
            .order_by(Prize.order.asc(), Prize.id.asc())
        )
        rows: Iterable[Prize] = await self.session.scalars(stmt)
        return list(rows)

    async def get_prize(self, event_id: int, prize_id: int) -> Prize | None:
        """Приз, принадлежащий событию (иначе None)."""

        prize = await self.session.get(Prize, int(prize_id))
        if prize is None or prize.event_id != int(event_id):
            return None
        return prize

    async def set_prize_winner(self, prize: Prize, entry_id: int) -> Prize:
        prize.winning_entry_id = int(entry_id)
        await self.session.flush()
        return prize

    async def clear_all_winners(self, event_id: int) -> int:
        """Сбросить победителей всех призов события; вернуть число строк."""

        result = await self.session.execute(
            update(Prize)
            .where(Prize.event_id == int(event_id))
            .values(winning_entry_id=None)
            .execution_options(synchronize_session="fetch")
        )
        await self.session.flush()
        return int(result.rowcount or 0)

    async def list_winners(
        self, event_id: int
    ) -> list[Tuple[Prize, Optional[Entry], Optional[Entrant]]]:
        """Призы по порядку розыгрыша с записью и участником-победителем."""

        stmt = (
            select(Prize, Entry, Entrant)
            .outerjoin(Entry, Entry.id == Prize.winning_entry_id)
            .outerjoin(Entrant, Entrant.id == Entry.entrant_id)
            .where(Prize.event_id == int(event_id))
            .order_by(Prize.order.asc(), Prize.id.asc())
        )
        result = await self.session.execute(stmt)
        return [(row[0], row[1], row[2]) for row in result.all()]

    # ---------------------------------------------------------------- entrants

    async def get_entrant_by_email(self, email: str) -> Entrant | None:
        stmt = select(Entrant).where(func.lower(Entrant.email) == email.strip().lower())
        return await self.session.scalar(stmt)

    async def create_entrant(self, *, first_name: str, last_name: str, email: str) -> Entrant:
        entrant = Entrant(first_name=first_name, last_name=last_name, email=email.strip())
        self.session.add(entrant)
        await self.session.flush()
        return entrant

    # ----------------------------------------------------------------- entries

    async def create_entries(self, *, event_id: int, entrant_id: int, quantity: int = 1) -> list[Entry]:
        """Создать quantity записей участника в событии (по одной строке на билет)."""

        entries = [Entry(event_id=int(event_id), entrant_id=int(entrant_id)) for _ in range(quantity)]
        self.session.add_all(entries)
        await self.session.flush()
        return entries

    async def count_entries(self, event_id: int) -> int:
        stmt = select(func.count(Entry.id)).where(Entry.event_id == int(event_id))
        return int(await self.session.scalar(stmt) or 0)

    async def list_entries_after(
        self,
        event_id: int,
        *,
        after: datetime,
        exclude_ids: Iterable[int] = (),
        limit: int = 500,
    ) -> list[Tuple[Entry, Entrant]]:
        """
        Записи события с created_at > after, кроме exclude_ids, по возрастанию
        (created_at, id).
        """

        stmt = (
            select(Entry, Entrant)
            .join(Entrant, Entrant.id == Entry.entrant_id)
            .where(Entry.event_id == int(event_id), Entry.created_at > after)
        )
        excluded = [int(x) for x in exclude_ids]
        if excluded:
            stmt = stmt.where(Entry.id.not_in(excluded))
        stmt = stmt.order_by(Entry.created_at.asc(), Entry.id.asc()).limit(limit)
        result = await self.session.execute(stmt)
        return [(row[0], row[1]) for row in result.all()]

    async def entrant_entry_counts(
        self,
        event_id: int,
        *,
        exclude_entrant_ids: Iterable[int] = (),
        order_by_count: bool = False,
    ) -> list[EntrantCount]:
        """
        Агрегат «участник → число записей» по событию.

        По умолчанию порядок - entrant_id ASC (стабильный, для воспроизводимого
        розыгрыша); order_by_count=True - рейтинг (count DESC, entrant_id ASC).
        """

        entry_count = func.count(Entry.id).label("entry_count")
        stmt = (
            select(
                Entrant.id,
                Entrant.first_name,
                Entrant.last_name,
                Entrant.email,
                entry_count,
                func.min(Entry.id).label("first_entry_id"),
            )
            .join(Entry, Entry.entrant_id == Entrant.id)
            .where(Entry.event_id == int(event_id))
            .group_by(Entrant.id, Entrant.first_name, Entrant.last_name, Entrant.email)
        )
        excluded = [int(x) for x in exclude_entrant_ids]
        if excluded:
            stmt = stmt.where(Entrant.id.not_in(excluded))
        if order_by_count:
            stmt = stmt.order_by(entry_count.desc(), Entrant.id.asc())
        else:
            stmt = stmt.order_by(Entrant.id.asc())

        result = await self.session.execute(stmt)
        return [
            EntrantCount(
                entrant_id=int(r[0]),
                first_name=r[1],
                last_name=r[2],
                email=r[3],
                entry_count=int(r[4]),
                first_entry_id=int(r[5]),
            )
            for r in result.all()
        ]
