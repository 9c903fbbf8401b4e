# -*- coding: utf-8 -*-
# backend/app/routes/events_routes.py
# =============================================================================
# Назначение кода:
#   HTTP-ручки события розыгрыша: живой поток новых записей (SSE), приём
#   записей, пакетный розыгрыш и его сброс, уведомление победителя, смена
#   статуса, рейтинг участников и список победителей.
#
# Канон/инварианты:
#   • Поток (SSE) без истории: первым кадром идёт подтверждение соединения,
#     затем - только записи, появившиеся после подключения.
#   • Операторские ручки (draw, redraw, notify-winner, open/close) - только
#     с заголовком X-Admin: true.
#   • Доменные ошибки переводятся в JSON глобальными обработчиками
#     (errors_core), роуты их не перехватывают.
#
# Запреты:
#   • Никакой логики розыгрыша в роутере - только вызов сервисов.
# =============================================================================

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.database_core import lifespan_session
from backend.app.core.logging_core import get_logger
from backend.app.deps import (
    event_context,
    get_db,
    get_dispatcher,
    get_registry,
    get_sessions,
    get_watcher,
    require_admin,
)
from backend.app.schemas.raffle_schemas import (
    BatchDrawOut,
    EntryCreateIn,
    EntryCreateOut,
    EventStatusOut,
    LeaderboardOut,
    NotifyWinnerIn,
    NotifyWinnerOut,
    WinnersOut,
)
from backend.app.services.broadcast_service import (
    SSE_HEADERS,
    QueueSink,
    SubscriberRegistry,
    sse_stream,
)
from backend.app.services.change_watcher import ChangeWatcher
from backend.app.services.draw_service import (
    svc_batch_draw,
    svc_close_event,
    svc_create_entries,
    svc_get_event,
    svc_get_winners,
    svc_leaderboard,
    svc_notify_winner,
    svc_open_event,
    svc_redraw_event,
)
from backend.app.services.draw_session_service import DrawSessionRegistry
from backend.app.services.notification_service import NotificationDispatcher

logger = get_logger(__name__)
router = APIRouter(prefix="/events", tags=["events"])


# -----------------------------------------------------------------------------
# Живой поток записей (SSE)
# -----------------------------------------------------------------------------
@router.get("/{event_id}/stream")
async def stream_event(
    request: Request,
    event_id: int = Depends(event_context),
    registry: SubscriberRegistry = Depends(get_registry),
) -> StreamingResponse:
    # Короткая сессия: соединение с БД не держим всё время потока
    async with lifespan_session(getattr(request.app.state, "session_factory", None)) as db:
        await svc_get_event(db, event_id)

    # Подписка происходит в самом генераторе: ответ, который так и не начали
    # отдавать, не оставляет канал в реестре
    sink = QueueSink()
    logger.info("stream opened", extra={"event_id": event_id})
    return StreamingResponse(
        sse_stream(registry, event_id, sink),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


# -----------------------------------------------------------------------------
# Записи участников
# -----------------------------------------------------------------------------
@router.post("/{event_id}/entries", response_model=EntryCreateOut, status_code=status.HTTP_201_CREATED)
async def create_entries(
    payload: EntryCreateIn,
    event_id: int = Depends(event_context),
    db: AsyncSession = Depends(get_db),
    watcher: ChangeWatcher = Depends(get_watcher),
) -> EntryCreateOut:
    result = await svc_create_entries(
        db,
        event_id,
        first_name=payload.first_name,
        last_name=payload.last_name,
        email=payload.email,
        quantity=payload.quantity,
        watcher=watcher,
    )
    return EntryCreateOut(**result)


@router.get("/{event_id}/leaderboard", response_model=LeaderboardOut)
async def get_leaderboard(
    event_id: int = Depends(event_context),
    db: AsyncSession = Depends(get_db),
) -> LeaderboardOut:
    return LeaderboardOut(**await svc_leaderboard(db, event_id))


@router.get("/{event_id}/winners", response_model=WinnersOut)
async def get_winners(
    event_id: int = Depends(event_context),
    db: AsyncSession = Depends(get_db),
) -> WinnersOut:
    return WinnersOut(**await svc_get_winners(db, event_id))


# -----------------------------------------------------------------------------
# Операторские действия
# -----------------------------------------------------------------------------
@router.post("/{event_id}/draw", response_model=BatchDrawOut, dependencies=[Depends(require_admin)])
async def batch_draw(
    event_id: int = Depends(event_context),
    db: AsyncSession = Depends(get_db),
    sessions: DrawSessionRegistry = Depends(get_sessions),
) -> BatchDrawOut:
    return BatchDrawOut(**await svc_batch_draw(db, event_id, sessions=sessions))


@router.post("/{event_id}/redraw", response_model=EventStatusOut, dependencies=[Depends(require_admin)])
async def redraw_event(
    event_id: int = Depends(event_context),
    db: AsyncSession = Depends(get_db),
    sessions: DrawSessionRegistry = Depends(get_sessions),
) -> EventStatusOut:
    return EventStatusOut(**await svc_redraw_event(db, event_id, sessions=sessions))


@router.post("/{event_id}/notify-winner", response_model=NotifyWinnerOut, dependencies=[Depends(require_admin)])
async def notify_winner(
    payload: NotifyWinnerIn,
    event_id: int = Depends(event_context),
    db: AsyncSession = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> NotifyWinnerOut:
    if payload.prize_id is None or payload.winner_id is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="prizeId and winnerId are required")
    result = await svc_notify_winner(
        db,
        event_id,
        prize_id=payload.prize_id,
        winner_id=payload.winner_id,
        prize_name=payload.prize_name,
        dispatcher=dispatcher,
    )
    return NotifyWinnerOut(**result)


@router.post("/{event_id}/open", response_model=EventStatusOut, dependencies=[Depends(require_admin)])
async def open_event(
    event_id: int = Depends(event_context),
    db: AsyncSession = Depends(get_db),
    sessions: DrawSessionRegistry = Depends(get_sessions),
) -> EventStatusOut:
    return EventStatusOut(**await svc_open_event(db, event_id, sessions=sessions))


@router.post("/{event_id}/close", response_model=EventStatusOut, dependencies=[Depends(require_admin)])
async def close_event(
    event_id: int = Depends(event_context),
    db: AsyncSession = Depends(get_db),
) -> EventStatusOut:
    return EventStatusOut(**await svc_close_event(db, event_id))


__all__ = ["router"]
