# -*- coding: utf-8 -*-
# backend/app/schemas/__init__.py
# =============================================================================
# Назначение кода:
# Фасад Pydantic-схем Raffle Draw. Единый импорт:
#     from backend.app.schemas import DrawSessionOut, EntryCreateIn, ...
#
# Запреты:
# • Никакой бизнес-логики и доступа к БД - только агрегация схем.
# =============================================================================

from __future__ import annotations

from backend.app.schemas.raffle_schemas import *  # noqa: F401,F403
from backend.app.schemas.raffle_schemas import __all__ as _raffle_all

SCHEMAS_VERSION: str = "v1.0"

__all__ = ["SCHEMAS_VERSION", *_raffle_all]
