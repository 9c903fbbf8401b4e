# ==============================================================================
# Raffle Draw - FastAPI application factory
# ------------------------------------------------------------------------------
# Назначение: создаёт и конфигурирует FastAPI-приложение розыгрышей, поднимает
# сервисы процесса (реестр подписчиков, рассылка, вотчер записей, диспетчер
# уведомлений, реестр интерактивных сессий) и подключает роутеры.
#
# Канон/инварианты:
#   • Сервисы процесса создаются в lifespan и живут на app.state; при
#     остановке вотчеры отменяются, уведомления в пути дожидаются.
#   • Доменные ошибки → JSON через setup_exception_handlers.
#   • Каждый запрос получает X-Request-ID (CorrelationIdMiddleware).
#
# ИИ-защита/самовосстановление:
#   • create_app() можно вызывать многократно (тесты): состояние не глобальное,
#     фабрику сессий БД можно подать снаружи.
#
# Запреты:
#   • Один процесс: реестры в памяти не синхронизируются между воркерами.
# ==============================================================================
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import FastAPI, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .core import core_health
from .core.config_core import get_settings
from .core.database_core import db_ping, dispose_engine, get_session_factory
from .core.errors_core import setup_exception_handlers
from .core.logging_core import CorrelationIdMiddleware, get_logger
from .routes import register as register_routes
from .services.broadcast_service import Broadcaster, SubscriberRegistry
from .services.change_watcher import ChangeWatcher
from .services.draw_session_service import DrawSessionRegistry
from .services.notification_service import NotificationDispatcher

logger = get_logger(__name__)


def create_app(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    *,
    dispatcher: Optional[NotificationDispatcher] = None,
) -> FastAPI:
    """Создать FastAPI-приложение с middleware, сервисами процесса и роутерами."""

    settings = get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        factory = session_factory or get_session_factory()
        registry = SubscriberRegistry()
        broadcaster = Broadcaster(registry)
        watcher = ChangeWatcher(registry, broadcaster, factory).attach()
        notifier = dispatcher or NotificationDispatcher()

        app.state.session_factory = factory
        app.state.registry = registry
        app.state.broadcaster = broadcaster
        app.state.watcher = watcher
        app.state.dispatcher = notifier
        app.state.sessions = DrawSessionRegistry(dispatcher=notifier)
        logger.info("raffle services started", extra={"env": settings.env_normalized})
        try:
            yield
        finally:
            await registry.close()
            await notifier.aclose()
            if session_factory is None:
                await dispose_engine()
            logger.info("raffle services stopped")

    app = FastAPI(title=settings.PROJECT_NAME, version=settings.APP_VERSION, lifespan=lifespan)
    app.add_middleware(CorrelationIdMiddleware)
    setup_exception_handlers(app)
    register_routes(app)

    @app.get("/health", tags=["health"])
    async def health(request: Request) -> Dict[str, Any]:
        """Живость сервиса, доступность БД и счётчики потоков/сессий."""

        factory = request.app.state.session_factory
        engine = factory.kw.get("bind")
        registry: SubscriberRegistry = request.app.state.registry
        return {
            "status": "ok",
            "db": await db_ping(engine),
            "active_streams": len(registry.active_events()),
            "subscribers": registry.subscriber_count(),
            "draw_sessions": len(request.app.state.sessions),
            **core_health(),
        }

    logger.info("FastAPI app initialised")
    return app


__all__ = ["create_app"]


# ==============================================================================
# Пояснения «для чайника»:
#   • Поток /events/{id}/stream держит вотчер события, пока есть хотя бы один
#     зритель; последний ушедший зритель останавливает вотчер.
#   • Интерактивные сессии розыгрыша живут в памяти; результаты пишутся в БД
#     сразу при каждом розыгрыше приза.
# ==============================================================================
