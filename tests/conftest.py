# -*- coding: utf-8 -*-
# tests/conftest.py
# =============================================================================
# Общие фикстуры: окружение, SQLite-движок на файле во временной папке,
# фабрика сессий, наполнение данными и HTTP-клиент приложения.
# =============================================================================
from __future__ import annotations

import os

# Окружение задаётся ДО импорта приложения: настройки кэшируются при импорте
os.environ["ENV"] = "test"
os.environ["DB_SCHEMA_RAFFLE"] = ""
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["LOG_JSON"] = "false"
os.environ.pop("NOTIFY_WEBHOOK_URL", None)
os.environ.pop("DRAW_RNG_SEED", None)

from dataclasses import dataclass, field  # noqa: E402
from typing import Dict, List, Sequence, Tuple  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402
from sqlalchemy.ext.asyncio import create_async_engine  # noqa: E402

from backend.app import create_app  # noqa: E402
from backend.app.core.database_core import Base, create_session_factory  # noqa: E402
from backend.app.models import Entrant, Entry, Event, Prize  # noqa: E402


@dataclass
class Seeded:
    event_id: int
    prize_ids: List[int] = field(default_factory=list)
    entrant_ids: Dict[str, int] = field(default_factory=dict)


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'raffle.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def seed(session_factory):
    """
    seed(status=..., prizes=[(name, order)], entrants=[(first, last, email, n_entries)])
    создаёт событие с призами и записями, возвращает Seeded.
    """

    async def _seed(
        *,
        status: str = "CLOSED",
        name: str = "Spring Raffle",
        prizes: Sequence[Tuple[str, int]] = (("Grand prize", 1),),
        entrants: Sequence[Tuple[str, str, str, int]] = (),
    ) -> Seeded:
        async with session_factory() as session:
            event = Event(name=name, status=status)
            session.add(event)
            await session.flush()

            seeded = Seeded(event_id=event.id)
            for prize_name, order in prizes:
                prize = Prize(event_id=event.id, name=prize_name, order=order)
                session.add(prize)
                await session.flush()
                seeded.prize_ids.append(prize.id)

            for first, last, email, count in entrants:
                entrant = Entrant(first_name=first, last_name=last, email=email)
                session.add(entrant)
                await session.flush()
                seeded.entrant_ids[email] = entrant.id
                session.add_all([Entry(event_id=event.id, entrant_id=entrant.id) for _ in range(count)])
                await session.flush()

            await session.commit()
            return seeded

    return _seed


@pytest.fixture
async def app(session_factory):
    application = create_app(session_factory)
    async with application.router.lifespan_context(application):
        yield application


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
