# -*- coding: utf-8 -*-
# backend/app/integrations/notify_webhook.py
# =============================================================================
# Назначение кода:
#   Лёгкий HTTP-клиент внешнего сервиса уведомлений победителей (webhook).
#   POST JSON на NOTIFY_WEBHOOK_URL, опционально с Bearer-токеном.
#
# Канон/инварианты:
#   • Таймауты httpx предотвращают зависания.
#   • Сетевая ошибка или ответ не 2xx → NotificationDispatchFailure; решение,
#     что с ошибкой делать, принимает сервис уведомлений.
#
# Запреты:
#   • Модуль не знает о розыгрыше: получает готовый payload.
# =============================================================================

from __future__ import annotations

from typing import Any, Dict, Optional

import httpx

from backend.app.core.config_core import get_settings
from backend.app.core.errors_core import NotificationDispatchFailure
from backend.app.core.logging_core import get_logger

logger = get_logger(__name__)
settings = get_settings()


class WinnerWebhookClient:
    """Клиент webhook уведомлений. Клиент httpx можно подать снаружи (тесты: MockTransport)."""

    def __init__(
        self,
        url: Optional[str] = None,
        *,
        token: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.url = url if url is not None else settings.NOTIFY_WEBHOOK_URL
        self.token = token if token is not None else settings.NOTIFY_WEBHOOK_TOKEN
        self.timeout_seconds = float(timeout_seconds or settings.NETWORK_REQUEST_TIMEOUT_SEC)
        self._client = client
        self._owns_client = client is None

    @property
    def configured(self) -> bool:
        return bool(self.url)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout_seconds)
        return self._client

    async def post(self, payload: Dict[str, Any]) -> int:
        """Отправить payload; вернуть HTTP-статус ответа."""
        if not self.url:
            raise RuntimeError("NOTIFY_WEBHOOK_URL is not configured")
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        try:
            response = await self._get_client().post(self.url, json=payload, headers=headers)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise NotificationDispatchFailure(f"{type(exc).__name__}: {exc}") from exc
        logger.debug("[Webhook] delivered", extra={"status": response.status_code})
        return response.status_code

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None


__all__ = ["WinnerWebhookClient"]
