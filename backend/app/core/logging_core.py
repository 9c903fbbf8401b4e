# -*- coding: utf-8 -*-
# backend/app/core/logging_core.py
# =============================================================================
# Назначение кода:
#   Централизованная настройка логирования Raffle Draw:
#   • формат и хэндлеры;
#   • контекст корреляции (request_id, event_id);
#   • защита от утечек секретов;
#   • удобные утилиты для модулей розыгрыша и live-стрима.
#
# Канон / инварианты:
#   • Единый стиль логов во всём приложении:
#       - prod - JSON (структурированные логи для агрегаторов),
#       - dev/local - человекочитаемый формат.
#   • Каждое действие розыгрыша логируется с event_id/prize_id/stage, чтобы
#     по логам можно было восстановить последовательность розыгрышей (аудит).
#
# ИИ-защита:
#   • Фильтр редактирует чувствительные значения (DSN, токены) в логах.
#   • Корреляция контекста через contextvars - не смешиваются запросы.
#
# Запреты:
#   • Никакого логирования e-mail участников целиком в prod-сообщениях аудита
#     сверх необходимого (только id сущностей).
#   • Никаких сетевых/блокирующих операций в форматерах/фильтрах.
# =============================================================================

from __future__ import annotations

import contextvars
import logging
import sys
import uuid
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Mapping, MutableMapping, Optional, Tuple

from pythonjsonlogger.json import JsonFormatter

from backend.app.core.config_core import get_settings

ASGIApp = Callable[
    [Mapping[str, Any], Callable[..., Awaitable[Any]], Callable[..., Awaitable[Any]]],
    Awaitable[Any],
]


# -----------------------------------------------------------------------------
# Контекст корреляции (contextvars) - безопасно для асинхронного кода
# -----------------------------------------------------------------------------
_rid_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "rid",
    default=None,
)  # request_id
_eid_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "eid",
    default=None,
)  # event_id (строкой, чтобы не типизировать в логах)


def set_request_context(
    *,
    request_id: Optional[str] = None,
    event_id: Optional[int | str] = None,
) -> None:
    """
    Присвоить контекст корреляции текущему асинхронному потоку.

    Используется middleware и сервисами, чтобы все логи запроса/тика вотчера
    автоматически включали request_id / event_id.
    """
    if request_id is not None:
        _rid_var.set(str(request_id))
    if event_id is not None:
        _eid_var.set(str(event_id))


def clear_request_context() -> None:
    """
    Очистить контекст корреляции (после завершения запроса/таски).

    Вызывается в finally-блоках, чтобы contextvars не «текли» между задачами.
    """
    _rid_var.set(None)
    _eid_var.set(None)


# -----------------------------------------------------------------------------
# Фильтры логирования
# -----------------------------------------------------------------------------
class ContextFilter(logging.Filter):
    """
    Впрыскивает в запись логера структурированные поля из contextvars и настроек.

    Поля:
      • env  - нормализованная среда (local/dev/prod);
      • svc  - имя сервиса (PROJECT_NAME);
      • rid  - request_id (корреляция запросов);
      • eid  - event_id (корреляция розыгрыша/стрима).
    """

    def __init__(self, env: str, service: str) -> None:
        super().__init__()
        self._env = env
        self._svc = service

    def filter(self, record: logging.LogRecord) -> bool:
        # Поля, переданные через extra, имеют приоритет над контекстом
        if not hasattr(record, "env"):
            record.env = self._env
        if not hasattr(record, "svc"):
            record.svc = self._svc
        if not hasattr(record, "rid"):
            record.rid = _rid_var.get() or "-"
        if not hasattr(record, "eid"):
            record.eid = _eid_var.get() or "-"
        return True


class RedactingFilter(logging.Filter):
    """
    Редактирует потенциально чувствительные значения в сообщении/параметрах,
    чтобы избежать случайной утечки секретов в логи.

    Маскирует конкретные значения секретов, извлечённых из настроек,
    не полагаясь только на имена ключей.
    """

    MASK = "****"
    SECRET_KEYS: Tuple[str, ...] = (
        "DATABASE_URL",
        "NOTIFY_WEBHOOK_TOKEN",
    )

    def __init__(self, settings_obj: object) -> None:
        super().__init__()
        self._secrets: list[str] = []
        for key in self.SECRET_KEYS:
            val = getattr(settings_obj, key, None)
            if val and isinstance(val, str):
                self._secrets.append(val)

    def _redact_text(self, text: str) -> str:
        if not text:
            return text
        redacted = text
        for secret in self._secrets:
            if secret in redacted:
                redacted = redacted.replace(secret, self.MASK)
        return redacted

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        # Редактируем только message/args; extra-поля сериализует форматер.
        if not self._secrets:
            return True
        if isinstance(record.msg, str):
            record.msg = self._redact_text(record.msg)
        if isinstance(record.args, tuple):
            record.args = tuple(
                self._redact_text(arg) if isinstance(arg, str) else arg
                for arg in record.args
            )
        return True


# -----------------------------------------------------------------------------
# Форматеры
# -----------------------------------------------------------------------------
class DevFormatter(logging.Formatter):
    """
    Человекочитаемый формат для local/dev-окружений.

    Пример строки:
    2025-11-22 12:00:00 | INFO     | Raffle Draw | backend.app... | rid=... eid=7 | msg
    """

    def __init__(self) -> None:
        super().__init__(
            fmt=(
                "%(asctime)s | %(levelname)-8s | %(svc)s | %(name)s | "
                "rid=%(rid)s eid=%(eid)s | %(message)s"
            ),
            datefmt="%Y-%m-%d %H:%M:%S",
        )


class RaffleJsonFormatter(JsonFormatter):
    """
    JSON-форматер для продакшн-окружения.

    Структура JSON:
        {"time", "level", "service", "logger", "env", "rid", "eid", "msg",
         ...extra-поля (prize_id, stage, ...)}
    """

    _RENAMES = {
        "asctime": "time",
        "levelname": "level",
        "svc": "service",
        "name": "logger",
        "message": "msg",
    }

    def process_log_record(self, log_data: Dict[str, Any]) -> Dict[str, Any]:
        base = super().process_log_record(log_data)
        return {self._RENAMES.get(key, key): value for key, value in base.items()}


def _make_json_formatter() -> logging.Formatter:
    fmt = "%(asctime)s %(levelname)s %(svc)s %(name)s %(env)s %(rid)s %(eid)s %(message)s"
    return RaffleJsonFormatter(fmt=fmt)


# -----------------------------------------------------------------------------
# Инициализация логирования
# -----------------------------------------------------------------------------
def setup_logging() -> None:
    """
    Полностью настраивает логирование:

      • root-логгер, формат, уровни;
      • консоль (stdout) и файл (в local);
      • фильтры контекста и редактирования;
      • uvicorn/fastapi-логгеры → в root (единый формат);
      • SQLAlchemy-логгер в режиме DEBUG.
    """
    settings = get_settings()
    env = settings.env_normalized
    debug = bool(settings.DEBUG)
    service = settings.PROJECT_NAME

    root = logging.getLogger()
    root.handlers.clear()
    level = logging.DEBUG if debug else logging.getLevelName(settings.LOG_LEVEL)
    root.setLevel(level)

    ctx_filter = ContextFilter(env=env, service=service)
    redact_filter = RedactingFilter(settings_obj=settings)

    # --- Консольный хэндлер ---
    console_handler = logging.StreamHandler(sys.stdout)
    if settings.log_json_effective:
        formatter: logging.Formatter = _make_json_formatter()
    else:
        formatter = DevFormatter()
    console_handler.setFormatter(formatter)
    console_handler.addFilter(ctx_filter)
    console_handler.addFilter(redact_filter)
    root.addHandler(console_handler)

    # --- Локальный файл логов (только local) ---
    if env == "local":
        logs_dir = Path(".local_artifacts") / "logs"
        logs_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(
            logs_dir / "app.log",
            encoding="utf-8",
        )
        file_handler.setFormatter(DevFormatter())
        file_handler.addFilter(ctx_filter)
        file_handler.addFilter(redact_filter)
        root.addHandler(file_handler)

    # --- Перехват uvicorn/fastapi ---
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access", "fastapi"):
        logger = logging.getLogger(name)
        logger.handlers.clear()
        logger.setLevel(level)
        logger.propagate = True

    # --- SQLAlchemy (минимальный уровень шума) ---
    if debug:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO)

    logging.getLogger(__name__).info(
        "Logging initialized",
        extra={"debug": debug, "level": logging.getLevelName(level)},
    )


def get_logger(name: Optional[str] = None, **extra: Any) -> logging.Logger:
    """
    Получить логгер по имени и (опционально) привязать дополнительные поля
    через LoggerAdapter.

    Пример:
        log = get_logger(__name__, component="watcher")
        log.info("tick", extra={"event_id": 7})
    """
    base = logging.getLogger(name)
    if not extra:
        return base
    return logging.LoggerAdapter(base, extra)  # type: ignore[return-value]


# -----------------------------------------------------------------------------
# ASGI-middleware для корреляции (подключается в create_app)
# -----------------------------------------------------------------------------
class CorrelationIdMiddleware:
    """
    Впрыскивает X-Request-ID из HTTP-заголовков в contextvars, чтобы все логи
    запроса автоматически содержали rid, и возвращает его в ответе.

    Правила:
      • Если X-Request-ID отсутствует - генерируется UUID4 (hex).
      • event_id в этом слое не извлекается; сервисы вызывают
        set_request_context(event_id=...) сами.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(
        self,
        scope: Mapping[str, Any],
        receive: Callable[..., Awaitable[Any]],
        send: Callable[..., Awaitable[Any]],
    ) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        raw_headers: MutableMapping[bytes, bytes] = dict(
            scope.get("headers") or [],
        )
        headers: Dict[str, str] = {
            key.decode().lower(): value.decode()
            for key, value in raw_headers.items()
        }
        rid = headers.get("x-request-id") or uuid.uuid4().hex
        set_request_context(request_id=rid)

        async def send_wrapper(message: Mapping[str, Any]) -> None:
            if message.get("type") == "http.response.start":
                headers_list: list[Tuple[bytes, bytes]] = list(
                    message.get("headers") or [],
                )
                headers_list.append((b"x-request-id", rid.encode("utf-8")))
                new_message: Dict[str, Any] = dict(message)
                new_message["headers"] = headers_list
                await send(new_message)
                return
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            clear_request_context()


# -----------------------------------------------------------------------------
# Автоконфигурация при импорте
# -----------------------------------------------------------------------------
setup_logging()

__all__ = [
    "setup_logging",
    "get_logger",
    "set_request_context",
    "clear_request_context",
    "CorrelationIdMiddleware",
]
# =============================================================================
# Пояснения «для чайника»:
#   • В dev/local вы увидите читаемые строки; в prod - структурированный JSON
#     с ключами env/rid/eid и всеми extra-полями (prize_id, stage, ...).
#   • CorrelationIdMiddleware подключается в create_app(): каждая HTTP-ручка
#     автоматически получает и возвращает уникальный X-Request-ID.
#   • DSN и токен вебхука в логах автоматически заменяются на "****".
# =============================================================================
