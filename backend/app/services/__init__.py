# -*- coding: utf-8 -*-
# backend/app/services/__init__.py
# =============================================================================
# Raffle Draw - сервисный слой (единая точка входа)
# -----------------------------------------------------------------------------
# Назначение файла:
#   • Дать единый, стабильный вход для доменных сервисов розыгрыша и живых
#     обновлений, чтобы роуты не бегали по отдельным файлам.
#
# Важные принципы:
#   • Никакой бизнес-логики здесь нет - только импорты.
#   • Никаких HTTP-запросов/блокирующих операций на уровне импорта.
# =============================================================================

from __future__ import annotations

from .broadcast_service import (  # noqa: F401
    SSE_HEADERS,
    Broadcaster,
    Checkpoint,
    QueueSink,
    SubscriberRegistry,
    connection_message,
    entry_message,
    sse_stream,
)
from .change_watcher import ChangeWatcher  # noqa: F401
from .draw_service import (  # noqa: F401
    svc_batch_draw,
    svc_close_event,
    svc_create_entries,
    svc_get_event,
    svc_get_winners,
    svc_leaderboard,
    svc_notify_winner,
    svc_open_event,
    svc_redraw_event,
)
from .draw_session_service import DrawSession, DrawSessionRegistry  # noqa: F401
from .entry_pool import EligiblePool, PoolMember, build_eligible_pool  # noqa: F401
from .notification_service import NotificationDispatcher, WinnerNotification  # noqa: F401
from .winner_selector import Selection, WinnerSelector  # noqa: F401

__all__ = [
    "SSE_HEADERS",
    "Broadcaster",
    "Checkpoint",
    "QueueSink",
    "SubscriberRegistry",
    "connection_message",
    "entry_message",
    "sse_stream",
    "ChangeWatcher",
    "svc_batch_draw",
    "svc_close_event",
    "svc_create_entries",
    "svc_get_winners",
    "svc_get_event",
    "svc_leaderboard",
    "svc_notify_winner",
    "svc_open_event",
    "svc_redraw_event",
    "DrawSession",
    "DrawSessionRegistry",
    "EligiblePool",
    "PoolMember",
    "build_eligible_pool",
    "NotificationDispatcher",
    "WinnerNotification",
    "Selection",
    "WinnerSelector",
]
