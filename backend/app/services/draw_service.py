# -*- coding: utf-8 -*-
# backend/app/services/draw_service.py
# =============================================================================
# Назначение кода:
#   Операции события розыгрыша вне интерактивной сессии: пакетный розыгрыш
#   всех призов за один вызов, общий сброс результатов, приём записей
#   участников, смена статуса (open/close), рейтинг и список победителей,
#   ручное уведомление победителя.
#
# Канон/инварианты:
#   • Пакетный розыгрыш использует тот же взвешенный выбор с исключением уже
#     выигравших, что и интерактивная сессия; призы - по (order, id).
#   • Пакетный розыгрыш атомарен: либо все призы получают победителей и
#     событие становится DRAWN, либо ничего не меняется.
#   • Записи принимаются только в статусах DRAFT/OPEN; 1..100 за раз.
#   • Сброс результатов (redraw) возвращает событие в OPEN, drawn_at = NULL.
#   • Пока по событию идёт интерактивная сессия, пакетный розыгрыш и открытие
#     события отказывают (InvalidEventState) под замком реестра сессий.
#
# ИИ-защита/самовосстановление:
#   • Новая запись сразу уходит подписчикам через push-хук вотчера; если хук
#     не сработал, её доставит ближайший тик опроса.
#
# Запреты:
#   • Никаких денежных операций и никакой «ручной» подстановки победителя.
# =============================================================================

from __future__ import annotations

from contextlib import nullcontext
from typing import Any, AsyncContextManager, Dict, List, Optional, Set

from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.errors_core import (
    EntriesNotAccepted,
    InsufficientEntries,
    InvalidEventState,
    NotFoundError,
    ValidationError,
)
from backend.app.core.logging_core import get_logger
from backend.app.core.utils_core import utcnow
from backend.app.crud.raffle_crud import RaffleCRUD
from backend.app.models import (
    ENTRY_ACCEPTING_STATUSES,
    EVENT_STATUS_CLOSED,
    EVENT_STATUS_DRAFT,
    EVENT_STATUS_DRAWN,
    EVENT_STATUS_OPEN,
    Event,
)
from backend.app.services.change_watcher import ChangeWatcher
from backend.app.services.draw_session_service import DrawSessionRegistry
from backend.app.services.entry_pool import build_eligible_pool
from backend.app.services.notification_service import (
    NotificationDispatcher,
    WinnerNotification,
)
from backend.app.services.winner_selector import WinnerSelector

logger = get_logger(__name__)

MAX_ENTRIES_PER_REQUEST = 100


# -----------------------------------------------------------------------------
# Утилиты
# -----------------------------------------------------------------------------
async def _require_event(crud: RaffleCRUD, event_id: int) -> Event:
    event = await crud.get_event(event_id)
    if event is None:
        raise NotFoundError("Event not found.", details={"event_id": event_id})
    return event


def _status_out(event: Event, message: Optional[str] = None) -> Dict[str, Any]:
    return {
        "success": True,
        "event_id": event.id,
        "status": event.status,
        "drawn_at": event.drawn_at,
        "message": message,
    }


def _session_guard(sessions: Optional[DrawSessionRegistry], event_id: int) -> AsyncContextManager[None]:
    """Замок сессий события (отказ, пока сессия жива) или пустой контекст."""
    if sessions is None:
        return nullcontext()
    return sessions.guard(event_id)


# -----------------------------------------------------------------------------
# Пакетный розыгрыш
# -----------------------------------------------------------------------------
async def svc_batch_draw(
    db: AsyncSession,
    event_id: int,
    *,
    selector: Optional[WinnerSelector] = None,
    sessions: Optional[DrawSessionRegistry] = None,
) -> Dict[str, Any]:
    """
    Разыграть все призы события за один вызов.

    Ошибки:
      • по событию идёт интерактивная сессия → InvalidEventState;
      • событие уже разыграно / у приза уже есть победитель / нет призов → InvalidEventState;
      • событие не OPEN/CLOSED → InvalidEventState;
      • участников меньше, чем призов → InsufficientEntries.
    """
    async with _session_guard(sessions, event_id):
        return await _batch_draw(db, event_id, selector)


async def _batch_draw(db: AsyncSession, event_id: int, selector: Optional[WinnerSelector]) -> Dict[str, Any]:
    crud = RaffleCRUD(db)
    event = await _require_event(crud, event_id)

    if event.status == EVENT_STATUS_DRAWN or event.drawn_at is not None:
        raise InvalidEventState("Event has already been drawn.", details={"event_id": event_id})
    if event.status not in (EVENT_STATUS_OPEN, EVENT_STATUS_CLOSED):
        raise InvalidEventState(
            "Event must be open or closed to draw.",
            details={"event_id": event_id, "status": event.status},
        )

    prizes = await crud.list_prizes_ordered(event_id)
    if not prizes:
        raise InvalidEventState("Event has no prizes to draw.", details={"event_id": event_id})
    if any(p.winning_entry_id is not None for p in prizes):
        raise InvalidEventState(
            "Some prizes already have winners; reset the draw first.",
            details={"event_id": event_id},
        )

    entrants = await crud.entrant_entry_counts(event_id)
    if len(entrants) < len(prizes):
        raise InsufficientEntries(
            details={"event_id": event_id, "entrants": len(entrants), "prizes": len(prizes)}
        )

    selector = selector or WinnerSelector()
    won: Set[int] = set()
    winners: List[Dict[str, Any]] = []
    for prize in prizes:
        pool = await build_eligible_pool(db, event_id, won)
        selection = selector.select(pool)
        member = selection.member
        await crud.set_prize_winner(prize, member.first_entry_id)
        won.add(member.entrant_id)
        winners.append(
            {
                "prize_id": prize.id,
                "prize_name": prize.name,
                "entry_id": member.first_entry_id,
                "entrant_id": member.entrant_id,
                "first_name": member.first_name,
                "last_name": member.last_name,
                "email": member.email,
                "probability": selection.probability,
            }
        )
        logger.info(
            "batch draw: prize awarded",
            extra={"event_id": event_id, "prize_id": prize.id, "entrant_id": member.entrant_id},
        )

    await crud.set_event_status(event, EVENT_STATUS_DRAWN, drawn_at=utcnow())
    await db.commit()
    logger.info("batch draw complete", extra={"event_id": event_id, "prizes": len(prizes)})
    return {
        "success": True,
        "event_id": event.id,
        "status": event.status,
        "drawn_at": event.drawn_at,
        "winners": winners,
    }


async def svc_redraw_event(
    db: AsyncSession,
    event_id: int,
    *,
    sessions: Optional[DrawSessionRegistry] = None,
) -> Dict[str, Any]:
    """Сбросить результаты розыгрыша: победители очищены, событие снова OPEN."""
    crud = RaffleCRUD(db)
    event = await _require_event(crud, event_id)
    if event.drawn_at is None and event.status != EVENT_STATUS_DRAWN:
        raise InvalidEventState(
            "Event has not been drawn yet.",
            details={"event_id": event_id, "status": event.status},
        )

    cleared = await crud.clear_all_winners(event_id)
    await crud.set_event_status(event, EVENT_STATUS_OPEN, clear_drawn_at=True)
    await db.commit()
    if sessions is not None:
        await sessions.close(event_id)
    logger.info("event draw reset", extra={"event_id": event_id, "cleared": cleared})
    return _status_out(event, "Draw results cleared. Event is open again.")


# -----------------------------------------------------------------------------
# Статусы события
# -----------------------------------------------------------------------------
async def svc_open_event(
    db: AsyncSession,
    event_id: int,
    *,
    sessions: Optional[DrawSessionRegistry] = None,
) -> Dict[str, Any]:
    crud = RaffleCRUD(db)
    async with _session_guard(sessions, event_id):
        event = await _require_event(crud, event_id)
        if event.status not in (EVENT_STATUS_DRAFT, EVENT_STATUS_CLOSED):
            raise InvalidEventState(
                "Only draft or closed events can be opened.",
                details={"event_id": event_id, "status": event.status},
            )
        await crud.set_event_status(event, EVENT_STATUS_OPEN)
        await db.commit()
    logger.info("event opened", extra={"event_id": event_id})
    return _status_out(event)


async def svc_close_event(db: AsyncSession, event_id: int) -> Dict[str, Any]:
    crud = RaffleCRUD(db)
    event = await _require_event(crud, event_id)
    if event.status != EVENT_STATUS_OPEN:
        raise InvalidEventState(
            "Only open events can be closed.",
            details={"event_id": event_id, "status": event.status},
        )
    await crud.set_event_status(event, EVENT_STATUS_CLOSED)
    await db.commit()
    logger.info("event closed", extra={"event_id": event_id})
    return _status_out(event)


# -----------------------------------------------------------------------------
# Записи участников
# -----------------------------------------------------------------------------
async def svc_create_entries(
    db: AsyncSession,
    event_id: int,
    *,
    first_name: str,
    last_name: str,
    email: str,
    quantity: int = 1,
    watcher: Optional[ChangeWatcher] = None,
) -> Dict[str, Any]:
    """
    Создать записи участника (участник ищется по e-mail, иначе создаётся).
    После коммита дёргает push-хук вотчера.
    """
    if not 1 <= quantity <= MAX_ENTRIES_PER_REQUEST:
        raise ValidationError(
            f"quantity must be between 1 and {MAX_ENTRIES_PER_REQUEST}.",
            details={"quantity": quantity},
        )

    crud = RaffleCRUD(db)
    event = await _require_event(crud, event_id)
    if event.status not in ENTRY_ACCEPTING_STATUSES:
        raise EntriesNotAccepted(
            details={"event_id": event_id, "status": event.status},
        )

    entrant = await crud.get_entrant_by_email(email)
    if entrant is None:
        entrant = await crud.create_entrant(first_name=first_name, last_name=last_name, email=email)

    entries = await crud.create_entries(event_id=event_id, entrant_id=entrant.id, quantity=quantity)
    total = await crud.count_entries(event_id)
    await db.commit()
    logger.info(
        "entries created",
        extra={"event_id": event_id, "entrant_id": entrant.id, "quantity": quantity},
    )

    if watcher is not None:
        await watcher.notify_entry_created(event_id)

    return {
        "success": True,
        "entrant_id": entrant.id,
        "entry_ids": [e.id for e in entries],
        "total_entries": total,
    }


# -----------------------------------------------------------------------------
# Чтение: рейтинг и победители
# -----------------------------------------------------------------------------
async def svc_get_event(db: AsyncSession, event_id: int) -> Dict[str, Any]:
    """Краткая карточка события; NotFoundError для неизвестного id."""
    event = await _require_event(RaffleCRUD(db), event_id)
    return {"event_id": event.id, "name": event.name, "status": event.status, "drawn_at": event.drawn_at}


async def svc_leaderboard(db: AsyncSession, event_id: int) -> Dict[str, Any]:
    crud = RaffleCRUD(db)
    await _require_event(crud, event_id)
    rows = await crud.entrant_entry_counts(event_id, order_by_count=True)
    return {
        "event_id": event_id,
        "total_entries": sum(r.entry_count for r in rows),
        "entrants": [
            {
                "entrant_id": r.entrant_id,
                "first_name": r.first_name,
                "last_name": r.last_name,
                "email": r.email,
                "entry_count": r.entry_count,
            }
            for r in rows
        ],
    }


async def svc_get_winners(db: AsyncSession, event_id: int) -> Dict[str, Any]:
    crud = RaffleCRUD(db)
    event = await _require_event(crud, event_id)
    prizes: List[Dict[str, Any]] = []
    for prize, entry, entrant in await crud.list_winners(event_id):
        winner = None
        if entry is not None and entrant is not None:
            winner = {
                "entry_id": entry.id,
                "entrant_id": entrant.id,
                "first_name": entrant.first_name,
                "last_name": entrant.last_name,
                "email": entrant.email,
            }
        prizes.append(
            {
                "prize_id": prize.id,
                "name": prize.name,
                "description": prize.description,
                "order": prize.order,
                "winner": winner,
            }
        )
    return {"event_id": event.id, "status": event.status, "drawn_at": event.drawn_at, "prizes": prizes}


# -----------------------------------------------------------------------------
# Ручное уведомление победителя
# -----------------------------------------------------------------------------
async def svc_notify_winner(
    db: AsyncSession,
    event_id: int,
    *,
    prize_id: int,
    winner_id: int,
    prize_name: Optional[str],
    dispatcher: NotificationDispatcher,
) -> Dict[str, Any]:
    """Поставить уведомление в очередь; результат отправки на ответ не влияет."""
    crud = RaffleCRUD(db)
    await _require_event(crud, event_id)
    prize = await crud.get_prize(event_id, prize_id)
    if prize is None:
        raise NotFoundError("Prize not found.", details={"event_id": event_id, "prize_id": prize_id})

    dispatcher.dispatch(
        WinnerNotification(
            event_id=event_id,
            prize_id=prize.id,
            winning_entry_id=int(winner_id),
            prize_name=prize_name or prize.name,
        )
    )
    return {"success": True, "message": "Winner notification queued."}


__all__ = [
    "MAX_ENTRIES_PER_REQUEST",
    "svc_batch_draw",
    "svc_redraw_event",
    "svc_open_event",
    "svc_close_event",
    "svc_create_entries",
    "svc_get_event",
    "svc_leaderboard",
    "svc_get_winners",
    "svc_notify_winner",
]
