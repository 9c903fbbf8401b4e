# -*- coding: utf-8 -*-
# backend/app/services/broadcast_service.py
# =============================================================================
# Назначение кода:
#   Живые обновления по событию розыгрыша: реестр подписчиков (SSE-каналы),
#   рассылка сообщений всем подписчикам события и SSE-рендер очереди канала.
#
# Канон/инварианты:
#   • Подписчик первым получает подтверждение соединения ("connection"), и
#     только потом - данные. Истории не бывает: показываются только записи,
#     появившиеся после подключения.
#   • Первый подписчик события создаёт checkpoint (сейчас) и запускает
#     вотчер события; уход последнего подписчика их уничтожает.
#   • Все изменения состояния события - под одним asyncio.Lock на event_id.
#   • Сбой записи в канал → канал сразу отписывается, остальные подписчики
#     получают сообщение как обычно.
#
# ИИ-защита/самовосстановление:
#   • Очередь канала ограничена (STREAM_QUEUE_MAXSIZE): медленный клиент не
#     раздувает память - его канал отключается.
#   • Отписка идемпотентна, генератор SSE отписывает канал в finally при
#     любом разрыве соединения.
#
# Запреты:
#   • Никакого доступа к БД: данные поставляет ChangeWatcher.
#   • Никаких межпроцессных шин: реестр живёт в памяти одного процесса.
# =============================================================================

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import (
    Any,
    AsyncContextManager,
    AsyncIterator,
    Awaitable,
    Callable,
    Dict,
    List,
    Optional,
    Protocol,
)

from backend.app.core.config_core import get_settings
from backend.app.core.errors_core import SinkWriteFailure
from backend.app.core.logging_core import get_logger
from backend.app.core.utils_core import KeyedLocks, iso_utc, utcnow

logger = get_logger(__name__)
settings = get_settings()

Message = Dict[str, Any]
TimerFactory = Callable[[int], Awaitable[None]]

SSE_HEADERS: Dict[str, str] = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


# -----------------------------------------------------------------------------
# Сообщения
# -----------------------------------------------------------------------------
def connection_message(now: Optional[datetime] = None) -> Message:
    return {
        "type": "connection",
        "message": "Connection established",
        "timestamp": iso_utc(now),
    }


def entry_message(
    *,
    entry_id: int,
    event_id: int,
    created_at: datetime,
    first_name: Optional[str],
    last_name: Optional[str],
    email: Optional[str],
    total_entries: int,
    now: Optional[datetime] = None,
) -> Message:
    """Сообщение о новой записи; пустые поля участника заменяются заглушками."""
    return {
        "type": "entry",
        "entry": {
            "id": entry_id,
            "entrant": {
                "firstName": first_name or "Unknown",
                "lastName": last_name or "Unknown",
                "email": email or "unknown@example.com",
            },
            "eventId": event_id,
            "createdAt": iso_utc(created_at),
        },
        "totalEntries": total_entries,
        "timestamp": iso_utc(now),
    }


def format_sse(message: Message) -> str:
    return f"data: {json.dumps(message, ensure_ascii=False, separators=(',', ':'))}\n\n"


# -----------------------------------------------------------------------------
# Каналы и состояние события
# -----------------------------------------------------------------------------
class SubscriberSink(Protocol):
    async def send(self, message: Message) -> None: ...


@dataclass(slots=True)
class SubscriberChannel:
    event_id: int
    sink: SubscriberSink
    registered_at: datetime


@dataclass(frozen=True, slots=True)
class Checkpoint:
    """
    Курсор вотчера. last_checked_at - created_at самой поздней доставленной
    записи (или момент подписки), opened_at - момент подписки: записи раньше
    него не показываются. recent - id → created_at записей, уже доставленных
    внутри окна досрочного коммита; по нему окно перечитывается без повторов.
    """

    last_checked_at: datetime
    last_entry_id: Optional[int] = None
    opened_at: Optional[datetime] = None
    recent: Dict[int, datetime] = field(default_factory=dict)

    def window_start(self, grace: timedelta) -> datetime:
        """Нижняя граница опроса: checkpoint минус окно, но не раньше подписки."""
        start = self.last_checked_at - grace
        if self.opened_at is not None and self.opened_at > start:
            return self.opened_at
        return start


@dataclass(slots=True)
class _EventState:
    checkpoint: Checkpoint
    channels: Dict[int, SubscriberChannel] = field(default_factory=dict)
    watcher: Optional[asyncio.Task] = None


class SubscriberRegistry:
    """
    event_id → упорядоченный набор каналов подписчиков + checkpoint + задача
    вотчера. Экземпляр создаётся в lifespan приложения.
    """

    def __init__(self, *, clock: Callable[[], datetime] = utcnow) -> None:
        self._clock = clock
        self._locks = KeyedLocks()
        self._states: Dict[int, _EventState] = {}
        self._timer_factory: Optional[TimerFactory] = None

    def attach_timer(self, factory: TimerFactory) -> None:
        """Фабрика корутины вотчера: factory(event_id) запускается на первом подписчике."""
        self._timer_factory = factory

    def lock(self, event_id: int) -> AsyncContextManager[None]:
        return self._locks.hold(int(event_id))

    # ------------------------------------------------------------ подписка

    async def register(self, event_id: int, sink: SubscriberSink) -> SubscriberChannel:
        event_id = int(event_id)
        async with self.lock(event_id):
            state = self._states.get(event_id)
            if state is None:
                now = self._clock()
                state = _EventState(checkpoint=Checkpoint(last_checked_at=now, opened_at=now))
                self._states[event_id] = state
                if self._timer_factory is not None:
                    state.watcher = asyncio.create_task(
                        self._timer_factory(event_id), name=f"watcher:event:{event_id}"
                    )
                logger.info("event stream activated", extra={"event_id": event_id})

            channel = SubscriberChannel(event_id=event_id, sink=sink, registered_at=self._clock())
            state.channels[id(sink)] = channel

            try:
                await sink.send(connection_message(self._clock()))
            except Exception as exc:
                self.unregister_locked(event_id, sink)
                raise SinkWriteFailure(f"connection ack failed: {exc}") from exc

            logger.info(
                "subscriber registered",
                extra={"event_id": event_id, "subscribers": len(state.channels)},
            )
            return channel

    async def unregister(self, event_id: int, sink: SubscriberSink) -> bool:
        async with self.lock(event_id):
            return self.unregister_locked(int(event_id), sink)

    def discard(self, event_id: int, sink: SubscriberSink) -> bool:
        """
        Отписка без ожидания замка (finally SSE-генератора, в т.ч. при отмене).
        Внутри нет await, поэтому шаг атомарен для остальных задач цикла.
        """
        return self.unregister_locked(int(event_id), sink)

    def unregister_locked(self, event_id: int, sink: SubscriberSink) -> bool:
        """Отписка под уже взятым замком события. Повторный вызов - no-op."""
        state = self._states.get(event_id)
        if state is None or state.channels.pop(id(sink), None) is None:
            return False

        logger.info(
            "subscriber unregistered",
            extra={"event_id": event_id, "subscribers": len(state.channels)},
        )
        if not state.channels:
            self._teardown(event_id)
        return True

    def _teardown(self, event_id: int) -> None:
        state = self._states.pop(event_id, None)
        if state is None:
            return
        task = state.watcher
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        logger.info("event stream deactivated", extra={"event_id": event_id})

    # ------------------------------------------------------------ checkpoint

    def checkpoint(self, event_id: int) -> Optional[Checkpoint]:
        state = self._states.get(int(event_id))
        return state.checkpoint if state is not None else None

    def advance_checkpoint(self, event_id: int, checkpoint: Checkpoint) -> None:
        state = self._states.get(int(event_id))
        if state is not None:
            state.checkpoint = checkpoint

    # ------------------------------------------------------------ диагностика

    def is_active(self, event_id: int) -> bool:
        return int(event_id) in self._states

    def owns_watcher(self, event_id: int, task: Optional[asyncio.Task] = None) -> bool:
        """True, если task (по умолчанию текущая) - действующий вотчер события."""
        state = self._states.get(int(event_id))
        if state is None:
            return False
        return state.watcher is (task if task is not None else asyncio.current_task())

    def subscriber_count(self, event_id: Optional[int] = None) -> int:
        if event_id is not None:
            state = self._states.get(int(event_id))
            return len(state.channels) if state is not None else 0
        return sum(len(s.channels) for s in self._states.values())

    def active_events(self) -> List[int]:
        return list(self._states)

    def sinks(self, event_id: int) -> List[SubscriberSink]:
        state = self._states.get(int(event_id))
        return [c.sink for c in state.channels.values()] if state is not None else []

    # ------------------------------------------------------------ shutdown

    async def close(self) -> None:
        """Остановить все вотчеры и забыть подписчиков (shutdown приложения)."""
        tasks: List[asyncio.Task] = []
        for event_id in list(self._states):
            state = self._states.pop(event_id)
            for channel in state.channels.values():
                _close_sink(channel.sink)
            if state.watcher is not None and not state.watcher.done():
                state.watcher.cancel()
                tasks.append(state.watcher)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("subscriber registry closed", extra={"watchers": len(tasks)})


def _close_sink(sink: SubscriberSink) -> None:
    closer = getattr(sink, "close", None)
    if callable(closer):
        closer()


# -----------------------------------------------------------------------------
# Рассылка
# -----------------------------------------------------------------------------
class Broadcaster:
    """Доставка сообщения всем подписчикам события с изоляцией сбоев."""

    def __init__(self, registry: SubscriberRegistry) -> None:
        self._registry = registry

    @property
    def registry(self) -> SubscriberRegistry:
        return self._registry

    async def publish(self, event_id: int, message: Message) -> int:
        async with self._registry.lock(event_id):
            return await self.publish_locked(int(event_id), message)

    async def publish_locked(self, event_id: int, message: Message) -> int:
        """Рассылка под уже взятым замком события; возвращает число успешных доставок."""
        delivered = 0
        for sink in self._registry.sinks(event_id):
            try:
                await sink.send(message)
            except Exception as exc:
                logger.warning(
                    "subscriber write failed, dropping channel",
                    extra={"event_id": event_id, "error": str(exc), "message_type": message.get("type")},
                )
                self._registry.unregister_locked(event_id, sink)
                _close_sink(sink)
                continue
            delivered += 1
        return delivered


# -----------------------------------------------------------------------------
# SSE-канал на очереди
# -----------------------------------------------------------------------------
class QueueSink:
    """Канал подписчика поверх ограниченной asyncio.Queue (читает SSE-генератор)."""

    def __init__(self, maxsize: Optional[int] = None) -> None:
        self._queue: asyncio.Queue[Message] = asyncio.Queue(
            maxsize=maxsize if maxsize is not None else settings.STREAM_QUEUE_MAXSIZE
        )
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        self._closed = True

    async def send(self, message: Message) -> None:
        if self._closed:
            raise SinkWriteFailure("subscriber channel is closed")
        try:
            self._queue.put_nowait(message)
        except asyncio.QueueFull as exc:
            raise SinkWriteFailure("subscriber queue is full") from exc

    async def get(self, timeout: float) -> Optional[Message]:
        """Следующее сообщение или None по таймауту / после закрытия пустого канала."""
        if self._closed and self._queue.empty():
            return None
        try:
            return await asyncio.wait_for(self._queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None


async def sse_stream(
    registry: SubscriberRegistry,
    event_id: int,
    sink: QueueSink,
    *,
    keepalive_sec: Optional[float] = None,
) -> AsyncIterator[str]:
    """
    SSE-генератор для StreamingResponse: подписывает канал при первом шаге,
    отдаёт data-кадры из очереди и комментарии keep-alive в паузах. При
    разрыве соединения (или отмене) отписывает канал синхронно в finally.
    Генератор, который так и не начали читать, никого не подписывает.
    """
    keepalive = keepalive_sec if keepalive_sec is not None else settings.STREAM_KEEPALIVE_SEC
    try:
        await registry.register(event_id, sink)
    except SinkWriteFailure:
        logger.warning("stream closed before connection ack", extra={"event_id": event_id})
        return
    try:
        while True:
            message = await sink.get(timeout=keepalive)
            if message is None:
                if sink.closed:
                    break
                yield ": keep-alive\n\n"
                continue
            yield format_sse(message)
    finally:
        sink.close()
        registry.discard(event_id, sink)


__all__ = [
    "SSE_HEADERS",
    "Message",
    "connection_message",
    "entry_message",
    "format_sse",
    "SubscriberSink",
    "SubscriberChannel",
    "Checkpoint",
    "SubscriberRegistry",
    "Broadcaster",
    "QueueSink",
    "sse_stream",
]
