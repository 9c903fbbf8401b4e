# -*- coding: utf-8 -*-
# backend/app/services/change_watcher.py
# =============================================================================
# Назначение кода:
#   Вотчер новых записей события: для каждого события с подписчиками раз в
#   STREAM_POLL_INTERVAL_SEC читает записи после checkpoint и рассылает их.
#   Плюс push-хук: при создании записи через API опрос выполняется сразу.
#
# Канон/инварианты:
#   • Внутри одного опроса записи идут по возрастанию (created_at, id).
#   • created_at ставится до коммита, поэтому запись с меньшим created_at
#     может стать видимой позже соседки. Опрос перечитывает окно
#     STREAM_COMMIT_GRACE_SEC до checkpoint и пропускает id, уже доставленные
#     в этом окне: опоздавшая запись приходит позже, но не теряется.
#   • Checkpoint только растёт и не опускается ниже момента подписки.
#   • Опрос и push-хук работают с одним checkpoint под одним замком события:
#     одна запись не доставляется дважды.
#   • Цикл опроса живёт, пока его задача - действующий вотчер события.
#   • Ошибка тика логируется, цикл продолжается.
#
# Запреты:
#   • Никакой записи в БД: вотчер только читает.
# =============================================================================

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import timedelta
from typing import List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.app.core.config_core import get_settings
from backend.app.core.database_core import lifespan_session
from backend.app.core.logging_core import get_logger
from backend.app.core.utils_core import as_utc
from backend.app.crud.raffle_crud import RaffleCRUD
from backend.app.models import Entrant, Entry
from backend.app.services.broadcast_service import (
    Broadcaster,
    Checkpoint,
    SubscriberRegistry,
    entry_message,
)

logger = get_logger(__name__)
settings = get_settings()


class ChangeWatcher:
    def __init__(
        self,
        registry: SubscriberRegistry,
        broadcaster: Broadcaster,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        *,
        interval_sec: Optional[float] = None,
        batch_limit: int = 500,
        grace_sec: Optional[float] = None,
    ) -> None:
        self._registry = registry
        self._broadcaster = broadcaster
        self._session_factory = session_factory
        self._interval = interval_sec if interval_sec is not None else settings.STREAM_POLL_INTERVAL_SEC
        self._batch_limit = batch_limit
        self._grace = timedelta(seconds=settings.STREAM_COMMIT_GRACE_SEC if grace_sec is None else grace_sec)

    def attach(self) -> "ChangeWatcher":
        """Подключить вотчер к реестру: задача стартует на первом подписчике."""
        self._registry.attach_timer(self.run_for_event)
        return self

    # ------------------------------------------------------------ цикл

    async def run_for_event(self, event_id: int) -> None:
        logger.info("watcher started", extra={"event_id": event_id, "interval": self._interval})
        try:
            while self._registry.owns_watcher(event_id):
                await asyncio.sleep(self._interval)
                if not self._registry.owns_watcher(event_id):
                    break
                try:
                    await self.poll(event_id)
                except Exception:
                    logger.exception("watcher tick failed", extra={"event_id": event_id})
        except asyncio.CancelledError:
            logger.debug("watcher cancelled", extra={"event_id": event_id})
            raise
        finally:
            logger.info("watcher stopped", extra={"event_id": event_id})

    # ------------------------------------------------------------ один тик

    async def poll(self, event_id: int) -> int:
        """
        Доставить записи события после checkpoint. Возвращает число записей,
        ушедших подписчикам (0, если событие никто не смотрит).
        """
        event_id = int(event_id)
        async with self._registry.lock(event_id):
            checkpoint = self._registry.checkpoint(event_id)
            if checkpoint is None:
                return 0

            async with lifespan_session(self._session_factory) as db:
                crud = RaffleCRUD(db)
                rows = await crud.list_entries_after(
                    event_id,
                    after=checkpoint.window_start(self._grace),
                    exclude_ids=checkpoint.recent.keys(),
                    limit=self._batch_limit,
                )
                if not rows:
                    return 0
                total_entries = await crud.count_entries(event_id)

            self._registry.advance_checkpoint(event_id, _advance(checkpoint, rows, self._grace))

            for entry, entrant in rows:
                await self._broadcaster.publish_locked(
                    event_id,
                    entry_message(
                        entry_id=entry.id,
                        event_id=event_id,
                        created_at=entry.created_at,
                        first_name=entrant.first_name if entrant else None,
                        last_name=entrant.last_name if entrant else None,
                        email=entrant.email if entrant else None,
                        total_entries=total_entries,
                    ),
                )

        logger.debug("watcher delivered entries", extra={"event_id": event_id, "count": len(rows)})
        return len(rows)

    async def notify_entry_created(self, event_id: int) -> int:
        """Push-хук после коммита новой записи: опрос сразу, без ожидания тика."""
        if not self._registry.is_active(event_id):
            return 0
        try:
            return await self.poll(event_id)
        except Exception:
            # Запись уже сохранена; доставку подхватит ближайший тик опроса
            logger.exception("entry push hook failed", extra={"event_id": event_id})
            return 0


def _advance(
    checkpoint: Checkpoint,
    rows: List[Tuple[Entry, Optional[Entrant]]],
    grace: timedelta,
) -> Checkpoint:
    """Новый checkpoint после доставки rows: граница только растёт, окно помнит id."""
    high = checkpoint.last_checked_at
    for entry, _ in rows:
        created = as_utc(entry.created_at)
        if created > high:
            high = created

    moved = replace(checkpoint, last_checked_at=high, last_entry_id=rows[-1][0].id, recent={})
    start = moved.window_start(grace)
    recent = {eid: ts for eid, ts in checkpoint.recent.items() if ts > start}
    for entry, _ in rows:
        created = as_utc(entry.created_at)
        if created > start:
            recent[entry.id] = created
    return replace(moved, recent=recent)


__all__ = ["ChangeWatcher"]
