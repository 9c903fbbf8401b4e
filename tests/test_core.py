# -*- coding: utf-8 -*-
from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pydantic
import pytest
from fastapi import HTTPException

from backend.app.core.config_core import Settings
from backend.app.core.errors_core import PrizeLocked, normalize_exception
from backend.app.core.utils_core import KeyedLocks, as_utc, iso_utc
from backend.app.routes import list_registered_routes


async def test_keyed_locks_serialize_same_key_only():
    locks = KeyedLocks()
    order = []

    async def worker(key, tag):
        async with locks.hold(key):
            order.append(f"{tag}:in")
            await asyncio.sleep(0.01)
            order.append(f"{tag}:out")

    await asyncio.gather(worker(1, "a"), worker(1, "b"))
    assert order == ["a:in", "a:out", "b:in", "b:out"]

    async with locks.hold(2):
        assert locks.locked(2)
        assert not locks.locked(3)
    # замок освобождён и забыт после последнего пользователя
    assert len(locks) == 0


def test_time_helpers_render_utc_with_z_suffix():
    naive = datetime(2024, 5, 17, 12, 0, 0, 123456)
    plus_two = datetime(2024, 5, 17, 14, 0, tzinfo=timezone(timedelta(hours=2)))

    assert as_utc(naive).tzinfo == timezone.utc
    assert iso_utc(naive) == "2024-05-17T12:00:00.123Z"
    assert iso_utc(plus_two) == "2024-05-17T12:00:00.000Z"


@pytest.mark.parametrize(
    "field, value",
    [
        ("STREAM_POLL_INTERVAL_SEC", 0),
        ("STREAM_KEEPALIVE_SEC", -1),
        ("STREAM_COMMIT_GRACE_SEC", 0),
        ("STREAM_QUEUE_MAXSIZE", 0),
        ("LOG_LEVEL", "LOUD"),
    ],
)
def test_settings_reject_bad_values(field, value):
    with pytest.raises(pydantic.ValidationError):
        Settings(**{field: value})


def test_settings_normalize_dsn_and_schema():
    settings = Settings(DATABASE_URL="postgres://u:p@db/raffle", DB_SCHEMA_RAFFLE="  ", ENV="staging")

    assert settings.database_url_asyncpg() == "postgresql+asyncpg://u:p@db/raffle"
    assert settings.schema_or_none is None
    assert settings.is_prod
    assert "u:p" not in str(settings.debug_dump())


def test_normalize_exception_shapes():
    status, payload = normalize_exception(PrizeLocked(details={"prize_id": 3}))
    assert status == 409
    assert payload["error"] == "prize_locked"
    assert payload["details"] == {"prize_id": 3}

    status, payload = normalize_exception(HTTPException(status_code=403, detail="Admin access required"))
    assert status == 403
    assert payload == {"error": "http_error", "message": "Admin access required"}

    status, payload = normalize_exception(RuntimeError("secret detail"))
    assert status == 500
    assert "secret" not in payload["message"]


def test_routes_are_registered():
    paths = list_registered_routes()

    assert "/events/{event_id}/stream" in paths
    assert "/events/{event_id}/draw-session/finalize" in paths
