# -*- coding: utf-8 -*-
# backend/app/core/errors_core.py
# =============================================================================
# Назначение кода:
#   • Единый слой ошибок/исключений Raffle Draw.
#   • Канонические коды ошибок для фронтенда оператора и логов.
#   • Унифицированные JSON-ответы для FastAPI.
#
# Канон / инварианты:
#   • Сервисы розыгрыша бросают ТОЛЬКО доменные исключения из этого модуля.
#   • Ошибка выбора/машины состояний возвращается оператору синхронно и не
#     меняет ни сессию, ни хранилище.
#   • SinkWriteFailure и NotificationDispatchFailure - внутренние: наружу
#     (другим подписчикам/в ход розыгрыша) не пробрасываются.
#
# ИИ-защита:
#   • Любая неизвестная ошибка логируется как INTERNAL, но наружу выдаётся
#     безопасное сообщение "internal_error" без деталей.
#   • HTTPException пропускается, но дополняется стандартным JSON-форматом.
#
# Запреты:
#   • Не включать сюда бизнес-логику розыгрыша.
#   • Не логировать здесь секреты/конфиденциальные данные (см. logging_core).
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple, cast

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse

from backend.app.core.logging_core import get_logger

logger = get_logger(__name__)


# -----------------------------------------------------------------------------
# Базовая доменная ошибка
# -----------------------------------------------------------------------------
@dataclass(eq=False)
class RaffleError(Exception):
    """
    Базовое доменное исключение.

    Поля:
      • code         - стабильный машинный код ошибки (snake_case).
      • message      - короткое безопасное сообщение для клиента.
      • http_status  - HTTP код по умолчанию.
      • details      - безопасные детали (event_id, prize_id, stage, ...).
    """

    code: str
    message: str
    http_status: int = status.HTTP_400_BAD_REQUEST
    details: Dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        """Готовит JSON-ответ для клиента."""
        payload: Dict[str, Any] = {
            "error": self.code,
            "message": self.message,
        }
        if self.details:
            payload["details"] = self.details
        return payload

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


# -----------------------------------------------------------------------------
# Общие ошибки
# -----------------------------------------------------------------------------
class NotFoundError(RaffleError):
    """Ресурс не найден (событие, приз, запись)."""

    def __init__(
        self,
        message: str = "Resource not found.",
        *,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            code="not_found",
            message=message,
            http_status=status.HTTP_404_NOT_FOUND,
            details=details or {},
        )


class ValidationError(RaffleError):
    """Некорректные входные данные."""

    def __init__(
        self,
        message: str = "Invalid data.",
        *,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            code="validation_error",
            message=message,
            http_status=422,
            details=details or {},
        )


class EntriesNotAccepted(RaffleError):
    """Событие не принимает записи (не DRAFT/OPEN)."""

    def __init__(
        self,
        message: str = "Event is not accepting entries.",
        *,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            code="entries_not_accepted",
            message=message,
            http_status=status.HTTP_400_BAD_REQUEST,
            details=details or {},
        )


# -----------------------------------------------------------------------------
# Ошибки розыгрыша
# -----------------------------------------------------------------------------
class NoEligibleEntrants(RaffleError):
    """После исключения уже выигравших не осталось участников."""

    def __init__(
        self,
        message: str = "No eligible entrants remain for this draw.",
        *,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            code="no_eligible_entrants",
            message=message,
            http_status=422,
            details=details or {},
        )


class EmptyPool(RaffleError):
    """WinnerSelector получил пустой пул."""

    def __init__(
        self,
        message: str = "Cannot select a winner from an empty pool.",
        *,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            code="empty_pool",
            message=message,
            http_status=422,
            details=details or {},
        )


class InsufficientEntries(RaffleError):
    """В пакетном розыгрыше участников меньше, чем призов."""

    def __init__(
        self,
        message: str = "Not enough eligible entrants for all prizes.",
        *,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            code="insufficient_entries",
            message=message,
            http_status=422,
            details=details or {},
        )


class PrizeLocked(RaffleError):
    """Попытка перерозыгрыша уже зафиксированного приза."""

    def __init__(
        self,
        message: str = "This winner has already been confirmed and cannot be redrawn.",
        *,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            code="prize_locked",
            message=message,
            http_status=status.HTTP_409_CONFLICT,
            details=details or {},
        )


class InvalidEventState(RaffleError):
    """Событие/сессия не в том состоянии, которое требует операция."""

    def __init__(
        self,
        message: str = "Operation is not allowed in the current state.",
        *,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            code="invalid_event_state",
            message=message,
            http_status=status.HTTP_409_CONFLICT,
            details=details or {},
        )


# -----------------------------------------------------------------------------
# Внутренние ошибки (не доходят до клиента)
# -----------------------------------------------------------------------------
class SinkWriteFailure(RuntimeError):
    """
    Запись в канал подписчика не удалась (очередь переполнена/закрыта).
    Приводит к тихой отписке этого канала, другие подписчики не затрагиваются.
    """


class NotificationDispatchFailure(RuntimeError):
    """
    Внешний сервис уведомлений недоступен/ответил ошибкой.
    Только логируется; в ход розыгрыша не пробрасывается.
    """


# -----------------------------------------------------------------------------
# Нормализация исключений → (status_code, payload)
# -----------------------------------------------------------------------------
def normalize_exception(
    exc: BaseException,
) -> Tuple[int, Dict[str, Any]]:
    """
    Приводит произвольное исключение к каноническому HTTP-ответу.

    Правила:
      • RaffleError      → свой http_status + to_payload().
      • HTTPException    → status_code + {"error": "http_error", "message", ...}.
      • Любая другая     → 500 + {"error": "internal_error"} (без деталей).
    """
    if isinstance(exc, RaffleError):
        return exc.http_status, exc.to_payload()

    if isinstance(exc, HTTPException):
        msg: str
        if isinstance(exc.detail, str):
            msg = exc.detail
            details: Dict[str, Any] = {}
        elif isinstance(exc.detail, dict):
            details = cast(Dict[str, Any], exc.detail)
            msg = details.get("message") or details.get("detail") or "HTTP error."
        else:
            msg = "HTTP error."
            details = {}

        payload: Dict[str, Any] = {
            "error": "http_error",
            "message": msg,
        }
        if details:
            payload["details"] = details
        return exc.status_code, payload

    logger.exception("Unhandled exception", extra={"error_type": type(exc).__name__})
    return (
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        {
            "error": "internal_error",
            "message": "Internal server error.",
        },
    )


# -----------------------------------------------------------------------------
# FastAPI-хендлеры исключений
# -----------------------------------------------------------------------------
async def raffle_error_handler(
    request: Request, exc: RaffleError
) -> JSONResponse:
    """Обработчик RaffleError: структурированный JSON с кодом ошибки."""
    status_code, payload = normalize_exception(exc)
    logger.warning(
        "RaffleError handled",
        extra={
            "path": request.url.path,
            "error": exc.code,
            "status": status_code,
            "details": exc.details,
        },
    )
    return JSONResponse(status_code=status_code, content=payload)


async def generic_exception_handler(
    request: Request, exc: Exception
) -> JSONResponse:
    """
    Обработчик "на всё остальное".

    Логируем stack trace и тип исключения, клиенту отдаём только internal_error.
    """
    status_code, payload = normalize_exception(exc)
    logger.error(
        "Unhandled exception handled by generic handler",
        extra={
            "path": request.url.path,
            "status": status_code,
            "exc_type": type(exc).__name__,
        },
    )
    return JSONResponse(status_code=status_code, content=payload)


# -----------------------------------------------------------------------------
# Регистрация хендлеров в приложении FastAPI
# -----------------------------------------------------------------------------
def setup_exception_handlers(app: FastAPI) -> None:
    """
    Подключает все необходимые обработчики исключений.

    Вызывать один раз при создании приложения:
        app = FastAPI(...)
        setup_exception_handlers(app)
    """
    app.add_exception_handler(RaffleError, raffle_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, generic_exception_handler)

    logger.info("Exception handlers registered for RaffleError/Exception")


# =============================================================================
# Пояснения «для чайника»:
#   • Если розыгрыш невозможен по бизнес-правилам, сервис бросает наследника
#     RaffleError - фронт оператора видит стабильный error_code и message.
#   • PrizeLocked проверяется ДО выбора победителя: состояние не меняется.
#   • SinkWriteFailure/NotificationDispatchFailure - не для клиента, их ловят
#     Broadcaster и NotificationDispatcher и только пишут в лог.
# =============================================================================

__all__ = [
    "RaffleError",
    "NotFoundError",
    "ValidationError",
    "EntriesNotAccepted",
    "NoEligibleEntrants",
    "EmptyPool",
    "InsufficientEntries",
    "PrizeLocked",
    "InvalidEventState",
    "SinkWriteFailure",
    "NotificationDispatchFailure",
    "normalize_exception",
    "setup_exception_handlers",
]
