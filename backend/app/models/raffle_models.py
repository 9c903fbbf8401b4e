# -*- coding: utf-8 -*-
# backend/app/models/raffle_models.py
# =============================================================================
# Назначение кода:
#   SQLAlchemy-модели розыгрышей: события, участники, записи (билеты) и призы.
#
# Канон/инварианты:
#   • Статусы события: DRAFT|OPEN|CLOSED|DRAWN (CHECK-ограничение).
#   • Вес участника = количество его записей (Entry) в событии.
#   • Prize.winning_entry_id - NULL до розыгрыша; после фиксации (lock) меняется
#     только общим сбросом розыгрыша (redraw-all).
#   • Индекс (event_id, created_at, id) обслуживает курсорный опрос вотчера.
#
# ИИ-защита/самовосстановление:
#   • Явные CHECK/UNIQUE-ограничения предотвращают «мусорные» состояния.
#   • Время создаётся на стороне приложения в UTC, чтобы порядок записей был
#     одинаковым в PostgreSQL и SQLite (тесты).
#
# Запреты:
#   • Никакой логики розыгрыша в моделях - только структура данных.
# =============================================================================

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..core.config_core import get_settings
from ..core.database_core import Base
from ..core.utils_core import utcnow

_settings = get_settings()
SCHEMA = _settings.schema_or_none

# -----------------------------------------------------------------------------
# Константы статусов (строковые ENUM)
# -----------------------------------------------------------------------------

EVENT_STATUS_DRAFT = "DRAFT"
EVENT_STATUS_OPEN = "OPEN"
EVENT_STATUS_CLOSED = "CLOSED"
EVENT_STATUS_DRAWN = "DRAWN"
EVENT_STATUS_ENUM = (
    EVENT_STATUS_DRAFT,
    EVENT_STATUS_OPEN,
    EVENT_STATUS_CLOSED,
    EVENT_STATUS_DRAWN,
)

# В каких статусах событие принимает новые записи
ENTRY_ACCEPTING_STATUSES = (EVENT_STATUS_DRAFT, EVENT_STATUS_OPEN)


def _fk(target: str) -> str:
    """'events.id' → '<schema>.events.id' при заданной схеме."""
    return f"{SCHEMA}.{target}" if SCHEMA else target


# =============================================================================
# МОДЕЛИ
# =============================================================================

class Event(Base):
    """Событие-розыгрыш: статус жизненного цикла и момент розыгрыша."""

    __tablename__ = "events"
    __table_args__ = (
        CheckConstraint(f"status IN {EVENT_STATUS_ENUM}", name="event_status_check"),
        Index("ix_event_status", "status"),
        {"schema": SCHEMA},
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=EVENT_STATUS_DRAFT)
    drawn_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    prizes: Mapped[List["Prize"]] = relationship(
        back_populates="event", cascade="all, delete-orphan", lazy="raise_on_sql"
    )
    entries: Mapped[List["Entry"]] = relationship(
        back_populates="event", cascade="all, delete-orphan", lazy="raise_on_sql"
    )


class Entrant(Base):
    """
    Участник (человек). Может держать много записей в одном событии.
    Личность неизменна после того, как на неё сослалась хотя бы одна запись.
    """

    __tablename__ = "entrants"
    __table_args__ = (
        UniqueConstraint("email", name="uq_entrant_email"),
        {"schema": SCHEMA},
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    first_name: Mapped[str] = mapped_column(String(120), nullable=False)
    last_name: Mapped[str] = mapped_column(String(120), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    entries: Mapped[List["Entry"]] = relationship(back_populates="entrant", lazy="raise_on_sql")


class Entry(Base):
    """Одна запись (билет) участника в событии."""

    __tablename__ = "entries"
    __table_args__ = (
        Index("ix_entry_event_cursor", "event_id", "created_at", "id"),
        Index("ix_entry_event_entrant", "event_id", "entrant_id"),
        {"schema": SCHEMA},
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey(_fk("events.id"), ondelete="CASCADE"),
        nullable=False,
    )
    entrant_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey(_fk("entrants.id"), ondelete="RESTRICT"),
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    event: Mapped["Event"] = relationship(back_populates="entries", lazy="raise_on_sql")
    entrant: Mapped["Entrant"] = relationship(back_populates="entries", lazy="raise_on_sql")


class Prize(Base):
    """
    Приз события. Разыгрывается строго по возрастанию order
    (при равенстве - по id).
    """

    __tablename__ = "prizes"
    __table_args__ = (
        Index("ix_prize_event_order", "event_id", "order", "id"),
        {"schema": SCHEMA},
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey(_fk("events.id"), ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    winning_entry_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey(_fk("entries.id"), ondelete="SET NULL"),
        nullable=True,
    )

    event: Mapped["Event"] = relationship(back_populates="prizes", lazy="raise_on_sql")
