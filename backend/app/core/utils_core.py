# -*- coding: utf-8 -*-
# backend/app/core/utils_core.py
# =============================================================================
# Назначение:
#   • Базовые утилиты уровня "core" без зависимостей от FastAPI/SQLAlchemy.
#   • Время/таймстемпы в UTC и их ISO-представление для сообщений стрима.
#   • KeyedLocks - по одному asyncio.Lock на ключ (event_id) со сборкой
#     «мусора»: замок живёт, пока им кто-то пользуется.
#
# Канон:
#   • Все времена - UTC с tzinfo. Наивные datetime из БД (SQLite) считаются UTC.
#   • Блокировки разделены по event_id; межсобытийных блокировок нет.
#
# ИИ-защита:
#   • KeyedLocks не растёт неограниченно: запись удаляется, когда последний
#     пользователь вышел из критической секции.
# =============================================================================

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Dict, Hashable, Optional


# -----------------------------------------------------------------------------
# Время / таймстемпы
# -----------------------------------------------------------------------------
def utcnow() -> datetime:
    """Текущее время в UTC с tzinfo=UTC."""
    return datetime.now(tz=timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Приводит datetime к UTC; наивное значение трактуется как UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def iso_utc(value: Optional[datetime] = None) -> str:
    """ISO-8601 c миллисекундами и суффиксом Z: 2025-01-01T12:00:00.000Z."""
    moment = as_utc(value) if value is not None else utcnow()
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


# -----------------------------------------------------------------------------
# Замки по ключу
# -----------------------------------------------------------------------------
class _KeyedLockEntry:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.users = 0


class KeyedLocks:
    """
    Набор asyncio.Lock, по одному на ключ.

    Пример:
        locks = KeyedLocks()
        async with locks.hold(event_id):
            ...  # единственный писатель состояния этого события
    """

    def __init__(self) -> None:
        self._entries: Dict[Hashable, _KeyedLockEntry] = {}

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        entry = self._entries.get(key)
        if entry is None:
            entry = self._entries[key] = _KeyedLockEntry()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                self._entries.pop(key, None)

    def locked(self, key: Hashable) -> bool:
        entry = self._entries.get(key)
        return bool(entry and entry.lock.locked())

    def __len__(self) -> int:
        return len(self._entries)


__all__ = ["utcnow", "as_utc", "iso_utc", "KeyedLocks"]
