# -*- coding: utf-8 -*-
"""Alembic environment for Raffle Draw (async).

Назначение:
    • Настроить Alembic для работы с async SQLAlchemy (PostgreSQL/asyncpg).
    • Подтянуть Declarative Base со всеми моделями розыгрышей.
    • Запустить миграции в оффлайн/онлайн-режиме.

Канон/инварианты:
    • Не выполняет бизнес-логики, только DDL.
    • Единственный источник правды для DSN/схемы - config_core.
    • Таблица версий Alembic живёт в схеме розыгрышей.

Запреты:
    • Никаких create_all/drop_all здесь - DDL описана в файлах версий.
"""

from __future__ import annotations

import asyncio
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlalchemy.ext.asyncio import async_engine_from_config

import backend.app.models  # noqa: F401  регистрирует модели в Base.metadata
from backend.app.core.config_core import get_settings
from backend.app.core.database_core import Base
from backend.app.core.logging_core import get_logger

# -----------------------------------------------------------------------------
# Базовая конфигурация Alembic
# -----------------------------------------------------------------------------
config = context.config
if config.config_file_name:
    fileConfig(config.config_file_name, disable_existing_loggers=False)

logger = get_logger(__name__)
settings = get_settings()

# Единственный источник URL БД (приводим к asyncpg)
db_url = settings.database_url_asyncpg()
config.set_main_option("sqlalchemy.url", db_url)

target_metadata = Base.metadata
VERSION_TABLE_SCHEMA = settings.schema_or_none


# -----------------------------------------------------------------------------
# Оффлайн-режим (генерация SQL без подключения)
# -----------------------------------------------------------------------------
def run_migrations_offline() -> None:
    """Запускает миграции без подключения к БД (выводит SQL)."""

    context.configure(
        url=db_url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        include_schemas=True,
        version_table_schema=VERSION_TABLE_SCHEMA,
        compare_type=True,
    )

    with context.begin_transaction():
        context.run_migrations()


# -----------------------------------------------------------------------------
# Онлайн-режим (async engine)
# -----------------------------------------------------------------------------
def do_run_migrations(connection) -> None:
    """Оборачивает context.run_migrations для sync-API внутри async соединения."""

    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        compare_type=True,
        include_schemas=True,
        version_table_schema=VERSION_TABLE_SCHEMA,
    )
    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    """Создаёт async engine и запускает миграции."""

    connectable = async_engine_from_config(
        config.get_section(config.config_ini_section) or {},
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    async with connectable.connect() as connection:
        if VERSION_TABLE_SCHEMA:
            await connection.exec_driver_sql(f"CREATE SCHEMA IF NOT EXISTS {VERSION_TABLE_SCHEMA}")
            await connection.commit()
        await connection.run_sync(do_run_migrations)

    await connectable.dispose()
    logger.info("migrations applied", extra={"schema": VERSION_TABLE_SCHEMA})


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
