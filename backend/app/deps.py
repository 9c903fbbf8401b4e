# -*- coding: utf-8 -*-
# backend/app/deps.py
# =============================================================================
# Raffle Draw - Общие зависимости FastAPI: БД-сессия, админ-гейт и доступ к
#               сервисам процесса (реестры подписчиков/сессий, вотчер,
#               диспетчер уведомлений), созданным в lifespan приложения.
# -----------------------------------------------------------------------------
# Канон/требования:
#   • Сервисы процесса живут на app.state, роуты получают их только через Depends.
#   • Операторские маршруты (розыгрыш, сессии, статусы) - за require_admin.
#
# Этот модуль НЕ делает бизнес-логику, только инфраструктуру/валидацию.
# =============================================================================
from __future__ import annotations

from dataclasses import dataclass
from typing import AsyncIterator

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.database_core import lifespan_session
from backend.app.core.logging_core import get_logger, set_request_context
from backend.app.services.broadcast_service import SubscriberRegistry
from backend.app.services.change_watcher import ChangeWatcher
from backend.app.services.draw_session_service import DrawSessionRegistry
from backend.app.services.notification_service import NotificationDispatcher

logger = get_logger(__name__)


async def get_db(request: Request) -> AsyncIterator[AsyncSession]:
    """
    Выдаёт AsyncSession для роутов/сервисов.
    • Роут/сервис сам решает - коммитить или нет (паттерн unit of work).
    • При исключении в стеке зависимостей - безопасный rollback().
    """
    factory = getattr(request.app.state, "session_factory", None)
    async with lifespan_session(factory) as session:
        yield session


# -----------------------------------------------------------------------------
# Сервисы процесса (app.state)
# -----------------------------------------------------------------------------
def get_registry(request: Request) -> SubscriberRegistry:
    return request.app.state.registry


def get_watcher(request: Request) -> ChangeWatcher:
    return request.app.state.watcher


def get_sessions(request: Request) -> DrawSessionRegistry:
    return request.app.state.sessions


def get_dispatcher(request: Request) -> NotificationDispatcher:
    return request.app.state.dispatcher


def event_context(event_id: int) -> int:
    """Пробрасывает event_id в контекст логов запроса."""
    set_request_context(event_id=event_id)
    return event_id


# -----------------------------------------------------------------------------
# Админ-гейт (аутентификация вне этого сервиса; доверенный заголовок)
# -----------------------------------------------------------------------------
@dataclass
class AuthContext:
    is_admin: bool = False


def get_auth_context(request: Request) -> AuthContext:
    is_admin_raw = request.headers.get("X-Admin")
    is_admin = str(is_admin_raw).lower() == "true" if is_admin_raw is not None else False
    return AuthContext(is_admin=is_admin)


async def require_admin(ctx: AuthContext = Depends(get_auth_context)) -> AuthContext:
    if not ctx.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return ctx


__all__ = [
    "get_db",
    "get_registry",
    "get_watcher",
    "get_sessions",
    "get_dispatcher",
    "event_context",
    "AuthContext",
    "get_auth_context",
    "require_admin",
]
