# -*- coding: utf-8 -*-
# backend/app/core/__init__.py
# =============================================================================
# Назначение кода:
# Единая точка входа ядра Raffle Draw: загрузка настроек, первичная
# инициализация логирования и безопасный экспорт ключевых утилит ядра во
# внешние модули (сервисы, роуты, вотчер).
#
# Канон/инварианты (важно):
# • Источником истины служит config_core.get_settings() - никаких локальных
#   дублей констант здесь не создаём.
# • Логирование настраивается при импорте logging_core (один раз).
#
# Запреты:
# • Не определяем здесь бизнес-логики и не импортируем тяжёлые слои (CRUD/Services).
# =============================================================================

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict

from .config_core import get_settings  # единый источник настроек
from .logging_core import get_logger   # унификация логирования по проекту

# Версия ядра (повышать при несовместимых изменениях ядра)
CORE_VERSION = "1.0.0"

logger = get_logger(__name__)

__all__ = [
    "CORE_VERSION",
    "get_settings",
    "get_logger",
    "core_health",
]


def core_health() -> Dict[str, Any]:
    """
    Сводка состояния ядра для /health: версия, безопасный дамп настроек
    (без секретов) и время сервера.
    """
    settings = get_settings()
    return {
        "core_version": CORE_VERSION,
        "server_time": datetime.now(timezone.utc).isoformat(),
        "settings": settings.debug_dump(),
    }
