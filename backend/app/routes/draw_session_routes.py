# -*- coding: utf-8 -*-
# backend/app/routes/draw_session_routes.py
# =============================================================================
# Назначение кода:
#   Операторские HTTP-ручки интерактивного розыгрыша: старт/возобновление
#   сессии, розыгрыш текущего приза, перерозыгрыш, фиксация и переход,
#   общий сброс, финализация и закрытие сессии.
#
# Канон/инварианты:
#   • Все ручки - только с X-Admin: true.
#   • PrizeLocked → 409 prize_locked (через глобальный обработчик).
#
# Запреты:
#   • Никакой логики переходов в роутере - только DrawSessionRegistry.
# =============================================================================

from __future__ import annotations

from typing import Dict

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.deps import event_context, get_db, get_sessions, require_admin
from backend.app.schemas.raffle_schemas import DrawSessionOut, EventStatusOut
from backend.app.services.draw_session_service import DrawSessionRegistry

router = APIRouter(
    prefix="/events/{event_id}/draw-session",
    tags=["draw-session"],
    dependencies=[Depends(require_admin)],
)


@router.post("", response_model=DrawSessionOut)
async def start_session(
    event_id: int = Depends(event_context),
    db: AsyncSession = Depends(get_db),
    sessions: DrawSessionRegistry = Depends(get_sessions),
) -> DrawSessionOut:
    """Старт сессии (или возврат уже идущей)."""
    return DrawSessionOut(**await sessions.start(db, event_id))


@router.get("", response_model=DrawSessionOut)
async def get_session(
    event_id: int = Depends(event_context),
    sessions: DrawSessionRegistry = Depends(get_sessions),
) -> DrawSessionOut:
    return DrawSessionOut(**await sessions.get(event_id))


@router.post("/draw", response_model=DrawSessionOut)
async def draw_current(
    event_id: int = Depends(event_context),
    db: AsyncSession = Depends(get_db),
    sessions: DrawSessionRegistry = Depends(get_sessions),
) -> DrawSessionOut:
    return DrawSessionOut(**await sessions.draw(db, event_id))


@router.post("/redraw", response_model=DrawSessionOut)
async def redraw_current(
    event_id: int = Depends(event_context),
    db: AsyncSession = Depends(get_db),
    sessions: DrawSessionRegistry = Depends(get_sessions),
) -> DrawSessionOut:
    return DrawSessionOut(**await sessions.redraw(db, event_id))


@router.post("/advance", response_model=DrawSessionOut)
async def advance(
    event_id: int = Depends(event_context),
    sessions: DrawSessionRegistry = Depends(get_sessions),
) -> DrawSessionOut:
    return DrawSessionOut(**await sessions.advance(event_id))


@router.post("/reset", response_model=EventStatusOut)
async def reset_session(
    event_id: int = Depends(event_context),
    db: AsyncSession = Depends(get_db),
    sessions: DrawSessionRegistry = Depends(get_sessions),
) -> EventStatusOut:
    return EventStatusOut(**await sessions.reset(db, event_id), message="Draw session reset.")


@router.post("/finalize", response_model=EventStatusOut)
async def finalize_session(
    event_id: int = Depends(event_context),
    db: AsyncSession = Depends(get_db),
    sessions: DrawSessionRegistry = Depends(get_sessions),
) -> EventStatusOut:
    return EventStatusOut(**await sessions.finalize(db, event_id), message="Draw results saved.")


@router.delete("")
async def close_session(
    event_id: int = Depends(event_context),
    sessions: DrawSessionRegistry = Depends(get_sessions),
) -> Dict[str, bool]:
    """Закрытие окна розыгрыша: сессия забывается, БД не меняется."""
    return {"success": await sessions.close(event_id)}


__all__ = ["router"]
