# -*- coding: utf-8 -*-
from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from backend.app.core.errors_core import NotificationDispatchFailure
from backend.app.integrations.notify_webhook import WinnerWebhookClient
from backend.app.services.notification_service import (
    NotificationDispatcher,
    WinnerNotification,
)

URL = "https://notify.example.com/winners"
NOTE = WinnerNotification(event_id=3, prize_id=9, winning_entry_id=41, prize_name="Bike")


def _dispatcher(handler, *, token=None):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return NotificationDispatcher(WinnerWebhookClient(URL, token=token, client=client)), client


async def test_send_posts_camel_case_payload_with_bearer_token():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(202)

    dispatcher, client = _dispatcher(handler, token="s3cret")

    assert await dispatcher.send(NOTE) is True

    [request] = seen
    assert str(request.url) == URL
    assert request.headers["Authorization"] == "Bearer s3cret"
    body = json.loads(request.content)
    assert body["eventId"] == 3
    assert body["prizeId"] == 9
    assert body["winnerId"] == 41
    assert body["prizeName"] == "Bike"
    assert body["timestamp"].endswith("Z")
    await client.aclose()


async def test_server_error_is_logged_not_raised():
    dispatcher, client = _dispatcher(lambda request: httpx.Response(500))

    assert await dispatcher.send(NOTE) is False
    await client.aclose()


async def test_connection_error_is_logged_not_raised():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    dispatcher, client = _dispatcher(handler)

    assert await dispatcher.send(NOTE) is False
    await client.aclose()


async def test_client_wraps_http_errors():
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(404)))
    webhook = WinnerWebhookClient(URL, client=client)

    with pytest.raises(NotificationDispatchFailure):
        await webhook.post({"eventId": 1})
    await client.aclose()


async def test_unconfigured_webhook_only_logs():
    dispatcher = NotificationDispatcher(WinnerWebhookClient(""))

    assert await dispatcher.send(NOTE) is True
    await dispatcher.aclose()


async def test_dispatch_runs_in_background():
    delivered = asyncio.Event()

    def handler(request):
        delivered.set()
        return httpx.Response(200)

    dispatcher, client = _dispatcher(handler)

    task = dispatcher.dispatch(NOTE)
    assert dispatcher.pending == 1
    assert await task is True
    assert delivered.is_set()
    await asyncio.sleep(0)
    assert dispatcher.pending == 0
    await client.aclose()


async def test_aclose_cancels_stuck_notifications():
    gate = asyncio.Event()

    async def handler(request):
        await gate.wait()
        return httpx.Response(200)

    dispatcher, client = _dispatcher(handler)
    task = dispatcher.dispatch(NOTE)
    await asyncio.sleep(0)

    await dispatcher.aclose(timeout=0.05)

    assert task.cancelled()
    await client.aclose()


class BrokenWebhookClient(WinnerWebhookClient):
    async def post(self, payload):
        raise ValueError("payload rejected by serializer")


async def test_unexpected_client_error_is_logged_not_raised():
    dispatcher = NotificationDispatcher(BrokenWebhookClient(URL))

    assert await dispatcher.send(NOTE) is False

    task = dispatcher.dispatch(NOTE)
    assert await task is False
    await dispatcher.aclose()
