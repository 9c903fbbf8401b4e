# -*- coding: utf-8 -*-
# backend/app/schemas/raffle_schemas.py
# =============================================================================
# Назначение кода:
# Pydantic-схемы раздела «Розыгрыши»: приём записей участников, уведомление
# победителя, результаты пакетного розыгрыша, интерактивная сессия, рейтинг
# участников и список победителей.
#
# Канон / инварианты:
# • Наружу поля отдаются в camelCase (firstName, totalEntries, drawnAt ...),
#   как их ожидает фронтенд; внутри кода - snake_case.
# • Время - ISO-8601 UTC.
# • quantity записей за один запрос: 1..100.
#
# Запреты:
# • В схемах нет бизнес-логики, только форма данных и простая валидация.
# =============================================================================

from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

SessionStage = Literal["ready", "drawing", "revealed", "locked", "redrawing"]
SessionStatus = Literal["active", "complete"]


class CamelModel(BaseModel):
    """База схем: camelCase наружу, snake_case внутри."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# Записи участников
# -----------------------------------------------------------------------------
class EntryCreateIn(CamelModel):
    first_name: str = Field(..., min_length=1, max_length=120, description="Имя")
    last_name: str = Field(..., min_length=1, max_length=120, description="Фамилия")
    email: str = Field(..., min_length=3, max_length=320, description="E-mail участника")
    quantity: int = Field(1, ge=1, le=100, description="Сколько записей создать")

    @field_validator("first_name", "last_name")
    @classmethod
    def _strip_names(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, value: str) -> str:
        value = value.strip().lower()
        local, sep, domain = value.partition("@")
        if not sep or not local or "." not in domain:
            raise ValueError("invalid e-mail address")
        return value


class EntryCreateOut(CamelModel):
    success: bool = True
    entrant_id: int
    entry_ids: List[int]
    total_entries: int


# =============================================================================
# Уведомление победителя
# -----------------------------------------------------------------------------
class NotifyWinnerIn(CamelModel):
    """Поля необязательны на уровне схемы: отсутствие prizeId/winnerId → 400 в роуте."""

    prize_id: Optional[int] = None
    winner_id: Optional[int] = None
    prize_name: Optional[str] = Field(None, max_length=200)


class NotifyWinnerOut(CamelModel):
    success: bool
    message: str


# =============================================================================
# Победители / рейтинг
# -----------------------------------------------------------------------------
class WinnerInfoOut(CamelModel):
    entry_id: int
    entrant_id: int
    first_name: str
    last_name: str
    email: str


class PrizeWinnerOut(CamelModel):
    prize_id: int
    name: str
    description: Optional[str] = None
    order: int
    winner: Optional[WinnerInfoOut] = None


class WinnersOut(CamelModel):
    event_id: int
    status: str
    drawn_at: Optional[datetime] = None
    prizes: List[PrizeWinnerOut]


class LeaderboardRowOut(CamelModel):
    entrant_id: int
    first_name: str
    last_name: str
    email: str
    entry_count: int


class LeaderboardOut(CamelModel):
    event_id: int
    total_entries: int
    entrants: List[LeaderboardRowOut]


# =============================================================================
# Пакетный розыгрыш / статусы события
# -----------------------------------------------------------------------------
class BatchDrawWinnerOut(CamelModel):
    prize_id: int
    prize_name: str
    entry_id: int
    entrant_id: int
    first_name: str
    last_name: str
    email: str
    probability: float


class BatchDrawOut(CamelModel):
    success: bool = True
    event_id: int
    status: str
    drawn_at: Optional[datetime] = None
    winners: List[BatchDrawWinnerOut]


class EventStatusOut(CamelModel):
    success: bool = True
    event_id: int
    status: str
    drawn_at: Optional[datetime] = None
    message: Optional[str] = None


# =============================================================================
# Интерактивная сессия
# -----------------------------------------------------------------------------
class SessionWinnerOut(CamelModel):
    entry_id: int
    entrant_id: int
    first_name: str
    last_name: str
    email: str
    entry_count: int
    probability: Optional[float] = None


class SessionPrizeOut(CamelModel):
    prize_id: int
    name: str
    order: int
    stage: SessionStage
    winner: Optional[SessionWinnerOut] = None


class DrawSessionOut(CamelModel):
    event_id: int
    status: SessionStatus
    current_index: int
    current_prize_id: Optional[int] = None
    won_entrant_ids: List[int]
    prizes: List[SessionPrizeOut]


__all__ = [
    "CamelModel",
    "SessionStage",
    "SessionStatus",
    "EntryCreateIn",
    "EntryCreateOut",
    "NotifyWinnerIn",
    "NotifyWinnerOut",
    "WinnerInfoOut",
    "PrizeWinnerOut",
    "WinnersOut",
    "LeaderboardRowOut",
    "LeaderboardOut",
    "BatchDrawWinnerOut",
    "BatchDrawOut",
    "EventStatusOut",
    "SessionWinnerOut",
    "SessionPrizeOut",
    "DrawSessionOut",
]
