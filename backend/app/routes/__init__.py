# -*- coding: utf-8 -*-
# backend/app/routes/__init__.py
# =============================================================================
# Назначение кода:
#   Единая точка подключения HTTP-роутов Raffle Draw:
#     • общий APIRouter (api_router), в который «вмонтированы» все роуты;
#     • функция register(app, prefix="") для подключения в FastAPI;
#     • list_registered_routes() для диагностики.
#
# Канон/инварианты:
#   • Каждый модуль роутов сам содержит свой prefix ("/events", ...).
#
# Запреты:
#   • Нет прямых SQL, нет вызовов сервисов - только import и include_router.
# =============================================================================

from __future__ import annotations

from typing import List

from fastapi import APIRouter, FastAPI

from backend.app.core.logging_core import get_logger
from backend.app.routes import draw_session_routes, events_routes

logger = get_logger(__name__)

ROUTERS: tuple = (events_routes, draw_session_routes)

api_router = APIRouter()
for _module in ROUTERS:
    api_router.include_router(_module.router)


def list_registered_routes() -> List[str]:
    """Пути всех подключённых ручек (для логов/диагностики)."""
    return sorted({getattr(r, "path", "") for r in api_router.routes})


def register(app: FastAPI, prefix: str = "") -> None:
    app.include_router(api_router, prefix=prefix)
    logger.info("routes registered", extra={"count": len(api_router.routes), "prefix": prefix or "/"})


__all__ = ["api_router", "register", "list_registered_routes"]
