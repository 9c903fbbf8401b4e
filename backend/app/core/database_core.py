# -*- coding: utf-8 -*-
# backend/app/core/database_core.py
# =============================================================================
# Назначение кода:
#   • Единая точка работы с БД Raffle Draw (PostgreSQL + asyncpg + SQLAlchemy 2.0).
#   • Declarative Base всех моделей.
#   • Создание и конфигурация AsyncEngine и async_sessionmaker.
#   • Безопасная выдача сессий для FastAPI-роутов, сервисов и вотчера.
#
# Канон / инварианты:
#   • Только async-движок (create_async_engine), никаких sync-engine.
#   • DSN берём из Settings.database_url_asyncpg() - там единый источник истины.
#   • Сессии expire_on_commit=False (объекты валидны после commit()).
#
# ИИ-защита:
#   • db_ping() для healthcheck.
#
# Запреты:
#   • Никакой бизнес-логики розыгрыша в этом модуле.
#   • Никаких Alembic-миграций/DDL здесь - только подключения и сессии.
# =============================================================================

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from backend.app.core.config_core import get_settings
from backend.app.core.logging_core import get_logger

logger = get_logger(__name__)
settings = get_settings()


class Base(DeclarativeBase):
    """Единый Declarative Base проекта (метаданные для Alembic)."""


# -----------------------------------------------------------------------------
# Глобальные объекты: движок и фабрика сессий
# -----------------------------------------------------------------------------
_engine: Optional[AsyncEngine] = None
_SessionFactory: Optional[async_sessionmaker[AsyncSession]] = None
_engine_lock = asyncio.Lock()


def _create_engine() -> AsyncEngine:
    """
    Создаёт новый AsyncEngine на базе актуальных настроек.

    • pool_pre_ping - раннее обнаружение "умерших" соединений.
    • Параметры пула передаются только для PostgreSQL.
    • echo включается только в DEBUG-режиме.
    """
    dsn = settings.database_url_asyncpg()
    logger.info("Creating async DB engine", extra={"dsn_set": bool(dsn)})
    kwargs: Dict[str, Any] = {"pool_pre_ping": True, "echo": settings.DEBUG}
    if dsn.startswith("postgresql"):
        kwargs["pool_size"] = settings.DB_POOL_SIZE
        kwargs["max_overflow"] = settings.DB_MAX_OVERFLOW
    return create_async_engine(dsn, **kwargs)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """
    Строит async_sessionmaker поверх переданного движка.

    • expire_on_commit=False - объекты остаются валидными после commit().
    • autoflush=False - явный контроль flush при необходимости.
    """
    return async_sessionmaker(
        bind=engine,
        expire_on_commit=False,
        autoflush=False,
        class_=AsyncSession,
    )


async def dispose_engine() -> None:
    """Закрывает пул соединений при остановке приложения."""
    global _engine, _SessionFactory

    async with _engine_lock:
        if _engine is not None:
            await _engine.dispose()
            logger.info("DB engine disposed")
        _engine = None
        _SessionFactory = None


def get_engine() -> AsyncEngine:
    """
    Возвращает текущий AsyncEngine; создаёт его лениво при первом вызове.
    """
    global _engine, _SessionFactory

    if _engine is None:
        _engine = _create_engine()
        _SessionFactory = create_session_factory(_engine)
        logger.info("DB engine lazily initialized")
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Возвращает фабрику сессий (гарантирует, что движок создан)."""
    global _SessionFactory

    if _SessionFactory is None:
        _SessionFactory = create_session_factory(get_engine())
        logger.info("Session factory initialized")
    return _SessionFactory


@asynccontextmanager
async def lifespan_session(
    factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> AsyncIterator[AsyncSession]:
    """
    Сессия на время блока: rollback при исключении, close всегда.
    Коммит - ответственность вызывающего кода (unit of work).
    """
    session = (factory or get_session_factory())()
    try:
        yield session
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


# -----------------------------------------------------------------------------
# Health-check / ping
# -----------------------------------------------------------------------------
async def db_ping(engine: Optional[AsyncEngine] = None) -> bool:
    """
    Простейший health-check БД: True - если SELECT 1 прошёл.
    """
    try:
        async with (engine or get_engine()).connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except (OperationalError, DBAPIError, OSError) as exc:
        logger.error(
            "DB ping failed: DB is not reachable",
            extra={"error": str(exc)},
        )
        return False


# ВАЖНО:
# • Движок не создаётся при импорте, чтобы не ломать миграции/Alembic
#   и вспомогательные скрипты без БД.
# =============================================================================

__all__ = [
    "Base",
    "AsyncSession",
    "AsyncEngine",
    "create_session_factory",
    "get_engine",
    "get_session_factory",
    "lifespan_session",
    "db_ping",
    "dispose_engine",
]
