"""Raffle Draw CRUD facade.

======================================================================
Назначение модуля:
    • Экспортировать CRUD-классы для доменных таблиц (events, entrants,
      entries, prizes).
    • Не содержит логики розыгрыша - только доступ к БД.

Канон/инварианты:
    • Курсоры вместо OFFSET; коммит выполняют сервисы.
======================================================================
"""

from backend.app.crud.raffle_crud import EntrantCount, RaffleCRUD

__all__ = ["RaffleCRUD", "EntrantCount"]
