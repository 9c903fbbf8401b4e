# -*- coding: utf-8 -*-
# backend/app/services/notification_service.py
# =============================================================================
# Назначение кода:
#   Уведомление победителя приза: фоновая (fire-and-forget) отправка во внешний
#   сервис уведомлений. Без настроенного webhook - только запись в лог.
#
# Канон/инварианты:
#   • Уведомление никогда не блокирует и не ломает ход розыгрыша: любая ошибка
#     превращается в NotificationDispatchFailure и только логируется.
#   • Незавершённые задачи ждутся/отменяются при остановке приложения.
#
# Запреты:
#   • Никаких изменений данных розыгрыша из этого модуля.
# =============================================================================

from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass
from typing import Optional, Set

from backend.app.core.errors_core import NotificationDispatchFailure
from backend.app.core.logging_core import get_logger
from backend.app.core.utils_core import iso_utc
from backend.app.integrations.notify_webhook import WinnerWebhookClient

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class WinnerNotification:
    event_id: int
    prize_id: int
    winning_entry_id: int
    prize_name: Optional[str] = None

    def to_payload(self) -> dict:
        data = asdict(self)
        return {
            "eventId": data["event_id"],
            "prizeId": data["prize_id"],
            "winnerId": data["winning_entry_id"],
            "prizeName": data["prize_name"],
            "timestamp": iso_utc(),
        }


class NotificationDispatcher:
    def __init__(self, client: Optional[WinnerWebhookClient] = None) -> None:
        self._client = client or WinnerWebhookClient()
        self._pending: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._pending)

    def dispatch(self, notification: WinnerNotification) -> asyncio.Task:
        """Запланировать отправку и сразу вернуть управление."""
        task = asyncio.create_task(
            self.send(notification),
            name=f"notify:event:{notification.event_id}:prize:{notification.prize_id}",
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def send(self, notification: WinnerNotification) -> bool:
        """Выполнить отправку. True - доставлено (или залогировано без webhook)."""
        ctx = {
            "event_id": notification.event_id,
            "prize_id": notification.prize_id,
            "winning_entry_id": notification.winning_entry_id,
        }
        if not self._client.configured:
            logger.info(
                "winner notification (webhook not configured)",
                extra={**ctx, "prize_name": notification.prize_name},
            )
            return True
        try:
            await self._client.post(notification.to_payload())
        except NotificationDispatchFailure as exc:
            logger.warning("winner notification failed", extra={**ctx, "error": str(exc)})
            return False
        except Exception:
            logger.exception("winner notification crashed", extra=ctx)
            return False
        logger.info("winner notification sent", extra=ctx)
        return True

    async def aclose(self, timeout: float = 5.0) -> None:
        """Дождаться отправок в пути (не дольше timeout), остальное отменить."""
        if self._pending:
            _, still_running = await asyncio.wait(set(self._pending), timeout=timeout)
            for task in still_running:
                task.cancel()
            if still_running:
                await asyncio.gather(*still_running, return_exceptions=True)
                logger.warning("cancelled pending notifications", extra={"count": len(still_running)})
        await self._client.aclose()


__all__ = ["WinnerNotification", "NotificationDispatcher"]
