# -*- coding: utf-8 -*-
"""Initial migration for Raffle Draw.

Назначение:
    • Создать схему розыгрышей и таблицы events, entrants, entries, prizes.
    • Задать ограничения и индексы: статус события (CHECK), уникальный e-mail
      участника, курсорный индекс записей (event_id, created_at, id).

Канон/инварианты:
    • Только DDL, никаких данных.
    • Prize.winning_entry_id - NULL до розыгрыша (ON DELETE SET NULL).

Запреты:
    • Нет ручного create_all вне Alembic; здесь единственная точка создания.
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

from backend.app.core.config_core import get_settings
from backend.app.core.logging_core import get_logger

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: str | None = None
branch_labels = None
depends_on = None

logger = get_logger(__name__)
settings = get_settings()

SCHEMA = settings.schema_or_none


def _fk(target: str) -> str:
    return f"{SCHEMA}.{target}" if SCHEMA else target


def upgrade() -> None:
    """Создать схему и таблицы розыгрышей."""

    if SCHEMA:
        logger.info("Creating schema if missing", extra={"schema": SCHEMA})
        op.execute(sa.text(f"CREATE SCHEMA IF NOT EXISTS {SCHEMA}"))

    op.create_table(
        "events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="DRAFT"),
        sa.Column("drawn_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "status IN ('DRAFT', 'OPEN', 'CLOSED', 'DRAWN')", name="event_status_check"
        ),
        schema=SCHEMA,
    )
    op.create_index("ix_event_status", "events", ["status"], schema=SCHEMA)

    op.create_table(
        "entrants",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("first_name", sa.String(120), nullable=False),
        sa.Column("last_name", sa.String(120), nullable=False),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("email", name="uq_entrant_email"),
        schema=SCHEMA,
    )

    op.create_table(
        "entries",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "event_id",
            sa.Integer(),
            sa.ForeignKey(_fk("events.id"), ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "entrant_id",
            sa.Integer(),
            sa.ForeignKey(_fk("entrants.id"), ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        schema=SCHEMA,
    )
    op.create_index("ix_entry_event_cursor", "entries", ["event_id", "created_at", "id"], schema=SCHEMA)
    op.create_index("ix_entry_event_entrant", "entries", ["event_id", "entrant_id"], schema=SCHEMA)

    op.create_table(
        "prizes",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "event_id",
            sa.Integer(),
            sa.ForeignKey(_fk("events.id"), ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "winning_entry_id",
            sa.Integer(),
            sa.ForeignKey(_fk("entries.id"), ondelete="SET NULL"),
            nullable=True,
        ),
        schema=SCHEMA,
    )
    op.create_index("ix_prize_event_order", "prizes", ["event_id", "order", "id"], schema=SCHEMA)


def downgrade() -> None:
    """Удалить таблицы розыгрышей (и схему, если она своя)."""

    op.drop_index("ix_prize_event_order", table_name="prizes", schema=SCHEMA)
    op.drop_table("prizes", schema=SCHEMA)
    op.drop_index("ix_entry_event_entrant", table_name="entries", schema=SCHEMA)
    op.drop_index("ix_entry_event_cursor", table_name="entries", schema=SCHEMA)
    op.drop_table("entries", schema=SCHEMA)
    op.drop_table("entrants", schema=SCHEMA)
    op.drop_index("ix_event_status", table_name="events", schema=SCHEMA)
    op.drop_table("events", schema=SCHEMA)
    if SCHEMA:
        op.execute(sa.text(f"DROP SCHEMA IF EXISTS {SCHEMA} CASCADE"))


# ============================================================================
# Пояснения «для чайника»:
#   • Порядок создания важен: prizes ссылается на entries, entries - на events
#     и entrants.
#   • Время создания в приложении ставится в UTC самим ORM; server_default
#     нужен только для ручных вставок SQL.
# ============================================================================
