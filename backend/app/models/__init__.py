# -*- coding: utf-8 -*-
# backend/app/models/__init__.py
# =============================================================================
# Назначение кода:
# Единая точка входа слоя моделей Raffle Draw. Централизует:
#  • загрузку ORM-базиса (Base);
#  • импорт всех моделей, чтобы Base.metadata был полным для Alembic;
#  • реестр MODEL_REGISTRY для удобного доступа к классам моделей.
#
# Канон/инварианты (важно):
#  • Модели описывают структуру данных, НЕ содержат логики розыгрыша.
#
# Запреты:
#  • Не размещать в __init__ бизнес-операции, DDL/DML и «create_all()».
# =============================================================================

from __future__ import annotations

from typing import Dict, Type

from ..core.database_core import Base
from .raffle_models import (
    ENTRY_ACCEPTING_STATUSES,
    EVENT_STATUS_CLOSED,
    EVENT_STATUS_DRAFT,
    EVENT_STATUS_DRAWN,
    EVENT_STATUS_ENUM,
    EVENT_STATUS_OPEN,
    Entrant,
    Entry,
    Event,
    Prize,
)

MODEL_REGISTRY: Dict[str, Type[Base]] = {
    "Event": Event,
    "Entrant": Entrant,
    "Entry": Entry,
    "Prize": Prize,
}

__all__ = [
    "Base",
    "MODEL_REGISTRY",
    "Event",
    "Entrant",
    "Entry",
    "Prize",
    "EVENT_STATUS_DRAFT",
    "EVENT_STATUS_OPEN",
    "EVENT_STATUS_CLOSED",
    "EVENT_STATUS_DRAWN",
    "EVENT_STATUS_ENUM",
    "ENTRY_ACCEPTING_STATUSES",
]
