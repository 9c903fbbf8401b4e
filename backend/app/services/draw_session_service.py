# -*- coding: utf-8 -*-
# backend/app/services/draw_session_service.py
# =============================================================================
# Назначение кода:
#   Интерактивный розыгрыш «приз за призом»: оператор тянет победителя
#   текущего приза, при необходимости перетягивает, фиксирует и переходит к
#   следующему. Сессия живёт в памяти процесса, результаты - в БД.
#
# Канон/инварианты:
#   • Стадии приза: ready → drawing → revealed → (locked | redrawing),
#     redrawing → drawing. Сессия: active → complete.
#   • Призы разыгрываются строго по возрастанию (order, id).
#   • Один участник выигрывает в событии не более одного приза
#     (won_entrant_ids только растёт, кроме перерозыгрыша текущего приза и
#     общего сброса).
#   • Зафиксированный (locked) приз не перетягивается: PrizeLocked.
#   • Ошибка любой операции не меняет ни сессию, ни БД: выбор победителя
#     вычисляется до любых изменений, память меняется после коммита.
#
# ИИ-защита/самовосстановление:
#   • Старт поверх уже сохранённых победителей возобновляет сессию: такие
#     призы считаются зафиксированными.
#   • Все операции события сериализуются одним asyncio.Lock на event_id;
#     пакетный розыгрыш и открытие события берут тот же замок (guard) и
#     отказывают, пока сессия жива.
#   • Перед каждой записью победителя событие перечитывается из БД: если
#     его статус сменили в обход сессии, розыгрыш отказывает.
#
# Запреты:
#   • Никакой презентации (анимации, конфетти) - только состояние.
# =============================================================================

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Set

from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.errors_core import (
    InvalidEventState,
    NotFoundError,
    PrizeLocked,
)
from backend.app.core.logging_core import get_logger
from backend.app.core.utils_core import KeyedLocks, utcnow
from backend.app.crud.raffle_crud import RaffleCRUD
from backend.app.models import EVENT_STATUS_CLOSED, EVENT_STATUS_DRAWN, Event
from backend.app.services.entry_pool import build_eligible_pool
from backend.app.services.notification_service import (
    NotificationDispatcher,
    WinnerNotification,
)
from backend.app.services.winner_selector import Selection, WinnerSelector

logger = get_logger(__name__)

# -----------------------------------------------------------------------------
# Стадии
# -----------------------------------------------------------------------------
STAGE_READY = "ready"
STAGE_DRAWING = "drawing"
STAGE_REVEALED = "revealed"
STAGE_LOCKED = "locked"
STAGE_REDRAWING = "redrawing"

SESSION_ACTIVE = "active"
SESSION_COMPLETE = "complete"

_ALLOWED_TRANSITIONS = {
    STAGE_READY: {STAGE_DRAWING},
    STAGE_DRAWING: {STAGE_REVEALED},
    STAGE_REVEALED: {STAGE_LOCKED, STAGE_REDRAWING},
    STAGE_REDRAWING: {STAGE_DRAWING},
    STAGE_LOCKED: set(),
}


@dataclass(slots=True)
class SessionWinner:
    entry_id: int
    entrant_id: int
    first_name: str
    last_name: str
    email: str
    entry_count: int
    probability: Optional[float] = None

    @classmethod
    def from_selection(cls, selection: Selection) -> "SessionWinner":
        m = selection.member
        return cls(
            entry_id=m.first_entry_id,
            entrant_id=m.entrant_id,
            first_name=m.first_name,
            last_name=m.last_name,
            email=m.email,
            entry_count=m.entry_count,
            probability=selection.probability,
        )


@dataclass(slots=True)
class PrizeSlot:
    prize_id: int
    name: str
    order: int
    stage: str = STAGE_READY
    winner: Optional[SessionWinner] = None

    def move(self, stage: str) -> None:
        if stage not in _ALLOWED_TRANSITIONS[self.stage]:
            raise InvalidEventState(
                f"Cannot move prize from '{self.stage}' to '{stage}'.",
                details={"prize_id": self.prize_id, "stage": self.stage},
            )
        self.stage = stage


@dataclass(slots=True)
class DrawSession:
    """Состояние одной интерактивной сессии (чистые переходы, без БД)."""

    event_id: int
    slots: List[PrizeSlot]
    initial_status: str = EVENT_STATUS_CLOSED
    current_index: int = 0
    won_entrant_ids: Set[int] = field(default_factory=set)
    status: str = SESSION_ACTIVE

    def __post_init__(self) -> None:
        self.slots.sort(key=lambda s: (s.order, s.prize_id))
        self._skip_locked()

    @property
    def current(self) -> Optional[PrizeSlot]:
        if self.status == SESSION_COMPLETE or self.current_index >= len(self.slots):
            return None
        return self.slots[self.current_index]

    def _skip_locked(self) -> None:
        while self.current_index < len(self.slots) and self.slots[self.current_index].stage == STAGE_LOCKED:
            self.current_index += 1
        if self.current_index >= len(self.slots):
            self.status = SESSION_COMPLETE

    def log_context(self, slot: Optional[PrizeSlot] = None) -> Dict[str, Any]:
        ctx: Dict[str, Any] = {"event_id": self.event_id, "index": self.current_index}
        if slot is not None:
            ctx.update(prize_id=slot.prize_id, stage=slot.stage)
        return ctx

    # ---------------------------------------------------------- проверки

    def require_drawable(self) -> PrizeSlot:
        slot = self.current
        if slot is None:
            raise InvalidEventState("Draw session is already complete.", details=self.log_context())
        if slot.stage != STAGE_READY:
            raise InvalidEventState("Current prize is not ready to be drawn.", details=self.log_context(slot))
        return slot

    def require_redrawable(self) -> PrizeSlot:
        slot = self.current
        if slot is None:
            last = self.slots[-1] if self.slots else None
            raise PrizeLocked(details=self.log_context(last))
        if slot.stage == STAGE_LOCKED:
            raise PrizeLocked(details=self.log_context(slot))
        if slot.stage != STAGE_REVEALED or slot.winner is None:
            raise InvalidEventState("Only a revealed winner can be redrawn.", details=self.log_context(slot))
        return slot

    def require_advanceable(self) -> PrizeSlot:
        slot = self.current
        if slot is None:
            raise InvalidEventState("Draw session is already complete.", details=self.log_context())
        if slot.stage != STAGE_REVEALED:
            raise InvalidEventState("Reveal a winner before moving on.", details=self.log_context(slot))
        return slot

    def redraw_exclusions(self, slot: PrizeSlot) -> Set[int]:
        excluded = set(self.won_entrant_ids)
        if slot.winner is not None:
            excluded.discard(slot.winner.entrant_id)
        return excluded

    # ---------------------------------------------------------- переходы

    def reveal(self, slot: PrizeSlot, winner: SessionWinner) -> None:
        slot.move(STAGE_DRAWING)
        slot.move(STAGE_REVEALED)
        slot.winner = winner
        self.won_entrant_ids.add(winner.entrant_id)

    def replace(self, slot: PrizeSlot, winner: SessionWinner) -> None:
        if slot.winner is not None:
            self.won_entrant_ids.discard(slot.winner.entrant_id)
        slot.move(STAGE_REDRAWING)
        slot.winner = None
        self.reveal(slot, winner)

    def lock_and_advance(self, slot: PrizeSlot) -> None:
        slot.move(STAGE_LOCKED)
        self.current_index += 1
        self._skip_locked()

    def snapshot(self) -> Dict[str, Any]:
        current = self.current
        return {
            "event_id": self.event_id,
            "status": self.status,
            "current_index": self.current_index,
            "current_prize_id": current.prize_id if current is not None else None,
            "won_entrant_ids": sorted(self.won_entrant_ids),
            "prizes": [
                {
                    "prize_id": s.prize_id,
                    "name": s.name,
                    "order": s.order,
                    "stage": s.stage,
                    "winner": (
                        {
                            "entry_id": s.winner.entry_id,
                            "entrant_id": s.winner.entrant_id,
                            "first_name": s.winner.first_name,
                            "last_name": s.winner.last_name,
                            "email": s.winner.email,
                            "entry_count": s.winner.entry_count,
                            "probability": s.winner.probability,
                        }
                        if s.winner is not None
                        else None
                    ),
                }
                for s in self.slots
            ],
        }


# -----------------------------------------------------------------------------
# Реестр сессий (оркестрация с БД)
# -----------------------------------------------------------------------------
class DrawSessionRegistry:
    """
    Сессии по event_id. Экземпляр создаётся в lifespan приложения.
    Методы принимают AsyncSession и сами делают commit.
    """

    def __init__(
        self,
        *,
        dispatcher: Optional[NotificationDispatcher] = None,
        selector: Optional[WinnerSelector] = None,
    ) -> None:
        self._sessions: Dict[int, DrawSession] = {}
        self._locks = KeyedLocks()
        self._dispatcher = dispatcher
        self._selector = selector or WinnerSelector()

    def __len__(self) -> int:
        return len(self._sessions)

    @asynccontextmanager
    async def guard(self, event_id: int) -> AsyncIterator[None]:
        """
        Замок события для операций в обход сессии (пакетный розыгрыш,
        открытие события): пока сессия жива - InvalidEventState.
        """
        event_id = int(event_id)
        async with self._locks.hold(event_id):
            if event_id in self._sessions:
                raise InvalidEventState(
                    "A draw session is in progress for this event.",
                    details={"event_id": event_id},
                )
            yield

    def _require(self, event_id: int) -> DrawSession:
        session = self._sessions.get(int(event_id))
        if session is None:
            raise NotFoundError("No active draw session for this event.", details={"event_id": event_id})
        return session

    def _notify(self, session: DrawSession, slot: PrizeSlot) -> None:
        if self._dispatcher is None or slot.winner is None:
            return
        self._dispatcher.dispatch(
            WinnerNotification(
                event_id=session.event_id,
                prize_id=slot.prize_id,
                winning_entry_id=slot.winner.entry_id,
                prize_name=slot.name,
            )
        )

    async def _require_event_unchanged(self, crud: RaffleCRUD, session: DrawSession) -> Event:
        """
        Событие из БД (не из identity map) в том же статусе, что и при старте
        сессии, и не разыгранное: иначе его изменили в обход сессии.
        """
        event = await crud.get_event(session.event_id, fresh=True)
        if event is None:
            raise NotFoundError("Event not found.", details={"event_id": session.event_id})
        if event.status != session.initial_status or event.drawn_at is not None:
            raise InvalidEventState(
                "Event changed outside the draw session; reset or close the session.",
                details={
                    "event_id": session.event_id,
                    "status": event.status,
                    "expected_status": session.initial_status,
                },
            )
        return event

    async def _select_and_persist(
        self, db: AsyncSession, session: DrawSession, slot: PrizeSlot, excluded: Set[int]
    ) -> SessionWinner:
        crud = RaffleCRUD(db)
        await self._require_event_unchanged(crud, session)

        pool = await build_eligible_pool(db, session.event_id, excluded)
        selection = self._selector.select(pool)

        prize = await crud.get_prize(session.event_id, slot.prize_id)
        if prize is None:
            raise NotFoundError("Prize not found.", details={"prize_id": slot.prize_id})
        await crud.set_prize_winner(prize, selection.member.first_entry_id)
        await db.commit()
        return SessionWinner.from_selection(selection)

    # ---------------------------------------------------------- операции

    async def start(self, db: AsyncSession, event_id: int) -> Dict[str, Any]:
        event_id = int(event_id)
        async with self._locks.hold(event_id):
            existing = self._sessions.get(event_id)
            if existing is not None:
                return existing.snapshot()

            crud = RaffleCRUD(db)
            event = await crud.get_event(event_id)
            if event is None:
                raise NotFoundError("Event not found.", details={"event_id": event_id})
            if event.status != EVENT_STATUS_CLOSED:
                raise InvalidEventState(
                    "Close the event before starting a draw.",
                    details={"event_id": event_id, "status": event.status},
                )

            rows = await crud.list_winners(event_id)
            if not rows:
                raise InvalidEventState("Event has no prizes to draw.", details={"event_id": event_id})

            counts = {c.entrant_id: c.entry_count for c in await crud.entrant_entry_counts(event_id)}
            slots: List[PrizeSlot] = []
            won: Set[int] = set()
            for prize, entry, entrant in rows:
                slot = PrizeSlot(prize_id=prize.id, name=prize.name, order=prize.order)
                if entry is not None and entrant is not None:
                    slot.stage = STAGE_LOCKED
                    slot.winner = SessionWinner(
                        entry_id=entry.id,
                        entrant_id=entrant.id,
                        first_name=entrant.first_name,
                        last_name=entrant.last_name,
                        email=entrant.email,
                        entry_count=counts.get(entrant.id, 0),
                    )
                    won.add(entrant.id)
                slots.append(slot)

            session = DrawSession(
                event_id=event_id,
                slots=slots,
                initial_status=event.status,
                won_entrant_ids=won,
            )
            self._sessions[event_id] = session
            logger.info(
                "draw session started",
                extra={"event_id": event_id, "prizes": len(slots), "resumed_locked": len(won), "status": session.status},
            )
            return session.snapshot()

    async def get(self, event_id: int) -> Dict[str, Any]:
        return self._require(event_id).snapshot()

    async def draw(self, db: AsyncSession, event_id: int) -> Dict[str, Any]:
        async with self._locks.hold(int(event_id)):
            session = self._require(event_id)
            slot = session.require_drawable()
            winner = await self._select_and_persist(db, session, slot, set(session.won_entrant_ids))
            session.reveal(slot, winner)
            logger.info(
                "prize drawn",
                extra={**session.log_context(slot), "entrant_id": winner.entrant_id, "entry_id": winner.entry_id},
            )
            self._notify(session, slot)
            return session.snapshot()

    async def redraw(self, db: AsyncSession, event_id: int) -> Dict[str, Any]:
        async with self._locks.hold(int(event_id)):
            session = self._require(event_id)
            slot = session.require_redrawable()
            previous = slot.winner.entrant_id if slot.winner else None
            winner = await self._select_and_persist(db, session, slot, session.redraw_exclusions(slot))
            session.replace(slot, winner)
            logger.info(
                "prize redrawn",
                extra={**session.log_context(slot), "previous_entrant_id": previous, "entrant_id": winner.entrant_id},
            )
            self._notify(session, slot)
            return session.snapshot()

    async def advance(self, event_id: int) -> Dict[str, Any]:
        async with self._locks.hold(int(event_id)):
            session = self._require(event_id)
            slot = session.require_advanceable()
            session.lock_and_advance(slot)
            logger.info("prize locked", extra={**session.log_context(slot), "session_status": session.status})
            return session.snapshot()

    async def reset(self, db: AsyncSession, event_id: int) -> Dict[str, Any]:
        event_id = int(event_id)
        async with self._locks.hold(event_id):
            session = self._require(event_id)
            crud = RaffleCRUD(db)
            event = await crud.get_event(event_id, fresh=True)
            if event is None:
                raise NotFoundError("Event not found.", details={"event_id": event_id})
            if event.status == EVENT_STATUS_DRAWN:
                raise InvalidEventState(
                    "Event results are already finalized.",
                    details={"event_id": event_id, "status": event.status},
                )
            cleared = await crud.clear_all_winners(event_id)
            await crud.set_event_status(event, session.initial_status, clear_drawn_at=True)
            await db.commit()
            self._sessions.pop(event_id, None)
            logger.info("draw session reset", extra={"event_id": event_id, "cleared": cleared})
            return {"event_id": event_id, "status": event.status, "drawn_at": None}

    async def finalize(self, db: AsyncSession, event_id: int) -> Dict[str, Any]:
        event_id = int(event_id)
        async with self._locks.hold(event_id):
            session = self._require(event_id)
            if session.status != SESSION_COMPLETE:
                raise InvalidEventState(
                    "Lock every prize before finalizing.",
                    details={"event_id": event_id, "index": session.current_index},
                )
            crud = RaffleCRUD(db)
            event = await self._require_event_unchanged(crud, session)
            await crud.set_event_status(event, EVENT_STATUS_DRAWN, drawn_at=utcnow())
            await db.commit()
            self._sessions.pop(event_id, None)
            logger.info("draw session finalized", extra={"event_id": event_id})
            return {"event_id": event_id, "status": event.status, "drawn_at": event.drawn_at}

    async def close(self, event_id: int) -> bool:
        async with self._locks.hold(int(event_id)):
            removed = self._sessions.pop(int(event_id), None) is not None
        if removed:
            logger.info("draw session closed", extra={"event_id": event_id})
        return removed


__all__ = [
    "STAGE_READY",
    "STAGE_DRAWING",
    "STAGE_REVEALED",
    "STAGE_LOCKED",
    "STAGE_REDRAWING",
    "SESSION_ACTIVE",
    "SESSION_COMPLETE",
    "SessionWinner",
    "PrizeSlot",
    "DrawSession",
    "DrawSessionRegistry",
]
