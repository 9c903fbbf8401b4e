# -*- coding: utf-8 -*-
# backend/app/core/config_core.py
# =============================================================================
# Назначение:
#   • Единый конфигурационный модуль Raffle Draw (FastAPI + SQLAlchemy async).
#   • Канонический источник всех настроек: БД, live-стрим, уведомления, логи.
#
# Канон / инварианты:
#   1) Интервалы опроса/keep-alive строго > 0 - иначе вотчер крутится вхолостую.
#   2) DSN всегда приводится к async-виду (postgresql+asyncpg://).
#   3) Секреты (DATABASE_URL, NOTIFY_WEBHOOK_TOKEN) читаются только из ENV.
#
# ИИ-защита / самодиагностика:
#   • initialize_runtime() проверяет DSN, создаёт локальные артефакты и выводит
#     предупреждения по отсутствующим настройкам, но не роняет процесс.
#
# Запреты:
#   • Никаких сетевых вызовов при загрузке настроек.
#   • Никаких «магических» значений розыгрыша вне этого модуля.
# =============================================================================

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Dict, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# =============================================================================
# Док-описания полей (используются в Swagger и как подсказки «для чайника»)
# =============================================================================


class _Doc:
    # Приложение
    PROJECT_NAME = "Имя проекта (отображается в Swagger/health)."
    ENV = "Окружение: production/dev/local (нормализуется в prod/dev/local)."
    DEBUG = "Расширенные логи и трассировки (только для dev/local)."
    APP_VERSION = "Версия приложения (попадает в /health)."
    APP_HOST = "Адрес для uvicorn (обычно 0.0.0.0)."
    APP_PORT = "Порт для uvicorn (например, 8000)."

    # БД
    DATABASE_URL = (
        "DSN PostgreSQL. "
        "Будет автоматически приведён к async (postgresql+asyncpg://)."
    )
    DB_POOL_SIZE = "Размер пула соединений SQLAlchemy."
    DB_MAX_OVERFLOW = "Дополнительные соединения в пике."
    DB_SCHEMA_RAFFLE = "Схема таблиц розыгрышей (пусто - схема по умолчанию)."

    # Live-стрим
    STREAM_POLL_INTERVAL_SEC = "Интервал опроса новых записей вотчером (сек)."
    STREAM_KEEPALIVE_SEC = "Интервал keep-alive комментариев SSE (сек)."
    STREAM_QUEUE_MAXSIZE = "Ёмкость очереди одного подписчика (сообщений)."
    STREAM_COMMIT_GRACE_SEC = "Окно перечитывания записей до checkpoint: записи, закоммиченные с опозданием (сек)."

    # Розыгрыш
    DRAW_RNG_SEED = (
        "Фиксированный seed ГСЧ (только демо/тесты; в проде - пусто, "
        "используется криптостойкий источник ОС)."
    )

    # Уведомления
    NOTIFY_WEBHOOK_URL = "URL внешнего сервиса уведомлений победителей (POST JSON)."
    NOTIFY_WEBHOOK_TOKEN = "Bearer-токен для сервиса уведомлений (опционально)."
    NETWORK_REQUEST_TIMEOUT_SEC = "Таймаут сетевых запросов (сек)."

    # Logging
    LOG_LEVEL = "Уровень логирования (INFO/DEBUG/WARNING/ERROR)."
    LOG_JSON = "Лог в JSON (true/false); по умолчанию - только в prod."


# =============================================================================
# Настройки приложения (единственный источник истины)
# =============================================================================


class Settings(BaseSettings):
    """
    Контейнер переменных окружения Raffle Draw.

    Важное:
      • Секреты берём только из ENV - в код не шьём.
      • Интервалы live-стрима валидируются (строго > 0).
      • DSN приводится к asyncpg-формату методом database_url_asyncpg().
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # --------------------------- БАЗОВЫЕ НАСТРОЙКИ ---------------------------
    PROJECT_NAME: str = Field("Raffle Draw", description=_Doc.PROJECT_NAME)
    ENV: str = Field("production", description=_Doc.ENV)
    DEBUG: bool = Field(False, description=_Doc.DEBUG)
    APP_VERSION: str = Field("1.0.0", description=_Doc.APP_VERSION)

    APP_HOST: str = Field("0.0.0.0", description=_Doc.APP_HOST)
    APP_PORT: int = Field(8000, description=_Doc.APP_PORT)

    # --------------------------------- БАЗА ----------------------------------
    DATABASE_URL: Optional[str] = Field(None, description=_Doc.DATABASE_URL)
    DB_POOL_SIZE: int = Field(10, description=_Doc.DB_POOL_SIZE)
    DB_MAX_OVERFLOW: int = Field(10, description=_Doc.DB_MAX_OVERFLOW)
    DB_SCHEMA_RAFFLE: str = Field("raffle", description=_Doc.DB_SCHEMA_RAFFLE)

    # ------------------------------ LIVE-СТРИМ -------------------------------
    STREAM_POLL_INTERVAL_SEC: float = Field(
        3.0,
        description=_Doc.STREAM_POLL_INTERVAL_SEC,
    )
    STREAM_KEEPALIVE_SEC: float = Field(
        15.0,
        description=_Doc.STREAM_KEEPALIVE_SEC,
    )
    STREAM_QUEUE_MAXSIZE: int = Field(
        1000,
        description=_Doc.STREAM_QUEUE_MAXSIZE,
    )
    STREAM_COMMIT_GRACE_SEC: float = Field(
        10.0,
        description=_Doc.STREAM_COMMIT_GRACE_SEC,
    )

    # ------------------------------- РОЗЫГРЫШ --------------------------------
    DRAW_RNG_SEED: Optional[int] = Field(None, description=_Doc.DRAW_RNG_SEED)

    # ------------------------------ УВЕДОМЛЕНИЯ ------------------------------
    NOTIFY_WEBHOOK_URL: Optional[str] = Field(
        None,
        description=_Doc.NOTIFY_WEBHOOK_URL,
    )
    NOTIFY_WEBHOOK_TOKEN: Optional[str] = Field(
        None,
        description=_Doc.NOTIFY_WEBHOOK_TOKEN,
    )
    NETWORK_REQUEST_TIMEOUT_SEC: float = Field(
        10.0,
        description=_Doc.NETWORK_REQUEST_TIMEOUT_SEC,
    )

    # -------------------------------- LOGGING --------------------------------
    LOG_LEVEL: str = Field("INFO", description=_Doc.LOG_LEVEL)
    LOG_JSON: Optional[bool] = Field(None, description=_Doc.LOG_JSON)

    # =========================== ВАЛИДАТОРЫ (ИИ-защита) ======================

    @field_validator(
        "STREAM_POLL_INTERVAL_SEC",
        "STREAM_KEEPALIVE_SEC",
        "STREAM_COMMIT_GRACE_SEC",
        "NETWORK_REQUEST_TIMEOUT_SEC",
    )
    @classmethod
    def _v_positive_interval(cls, value: float) -> float:
        """Интервалы и таймауты должны быть > 0 (0 означал бы busy-loop)."""
        if value <= 0:
            raise ValueError("интервалы/таймауты должны быть > 0")
        return value

    @field_validator("STREAM_QUEUE_MAXSIZE")
    @classmethod
    def _v_queue_size(cls, value: int) -> int:
        if value < 1:
            raise ValueError("STREAM_QUEUE_MAXSIZE должен быть >= 1")
        return value

    @field_validator("LOG_LEVEL")
    @classmethod
    def _v_log_level(cls, value: str) -> str:
        level = (value or "INFO").strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"неизвестный LOG_LEVEL: {value!r}")
        return level

    # =========================== Удобные свойства/методы =====================

    # ---- ENV флаги ----
    @property
    def env_normalized(self) -> str:
        """Нормализует ENV к одному из: prod/dev/local."""
        value = (self.ENV or "").strip().lower()
        if value.startswith("prod") or value == "production":
            return "prod"
        if value.startswith("dev"):
            return "dev"
        if value.startswith("loc") or value == "local":
            return "local"
        if value.startswith("test"):
            return "dev"
        return "prod"

    @property
    def is_prod(self) -> bool:
        return self.env_normalized == "prod"

    @property
    def log_json_effective(self) -> bool:
        """JSON-логи: явный LOG_JSON или (по умолчанию) только в prod."""
        if self.LOG_JSON is not None:
            return bool(self.LOG_JSON)
        return self.is_prod

    @property
    def schema_or_none(self) -> Optional[str]:
        """Имя схемы для моделей; пустая строка означает схему по умолчанию."""
        value = (self.DB_SCHEMA_RAFFLE or "").strip()
        return value or None

    # ---- База данных / DSN ----
    def database_url_asyncpg(self) -> str:
        """
        Возвращает DSN для SQLAlchemy async:
          postgres://   → postgresql+asyncpg://
          postgresql:// → postgresql+asyncpg:// при отсутствии драйвера.
        Прочие схемы (например, sqlite+aiosqlite://) возвращаются как есть.
        """
        if not self.DATABASE_URL:
            raise RuntimeError(
                "DATABASE_URL не задан (нужен DSN PostgreSQL).",
            )
        url = self.DATABASE_URL
        if url.startswith("postgres://"):
            url = url.replace("postgres://", "postgresql+asyncpg://", 1)
        elif url.startswith("postgresql://"):
            url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        return url

    # ---- Health/диагностика ----
    def assert_required_secrets(self) -> None:
        """
        Мягкая самодиагностика. Печатает WARN, но не падает
        (логирование ещё не настроено на этом этапе).
        """
        if not self.DATABASE_URL:
            print("[WARN] DATABASE_URL не задан - БД будет недоступна.")
        if not self.NOTIFY_WEBHOOK_URL:
            print(
                "[WARN] NOTIFY_WEBHOOK_URL не задан - уведомления победителей "
                "будут только записываться в лог.",
            )
        if self.is_prod and self.DRAW_RNG_SEED is not None:
            print(
                "[WARN] DRAW_RNG_SEED задан в prod - розыгрыш станет "
                "воспроизводимым. Уберите seed.",
            )

    def debug_dump(self) -> Dict[str, str]:
        """Безопасный дамп ключевых настроек (без секретов) для /health и логов."""
        return {
            "env": self.env_normalized,
            "projectName": self.PROJECT_NAME,
            "version": self.APP_VERSION,
            "dbUrlSet": "yes" if bool(self.DATABASE_URL) else "no",
            "schema": self.schema_or_none or "-",
            "pollIntervalSec": str(self.STREAM_POLL_INTERVAL_SEC),
            "notifyWebhookSet": "yes" if bool(self.NOTIFY_WEBHOOK_URL) else "no",
            "seededRng": "yes" if self.DRAW_RNG_SEED is not None else "no",
        }

    # ---- Инициализация рантайма ----
    def ensure_local_artifacts(self) -> None:
        """Создаёт каталог .local_artifacts для local-режима (логи/временные файлы)."""
        if self.env_normalized == "local":
            Path(".local_artifacts").mkdir(exist_ok=True)

    def initialize_runtime(self) -> None:
        """
        Единая точка инициализации конфигурации при старте приложения:
          • Приведение DSN БД к async-формату (ранняя проверка).
          • Создание локальных артефактов для local.
          • Мягкая самодиагностика.
        """
        if self.DATABASE_URL:
            _ = self.database_url_asyncpg()

        self.ensure_local_artifacts()
        self.assert_required_secrets()


# =============================================================================
# Синглтон настроек для всего приложения
# =============================================================================


@lru_cache()
def get_settings() -> Settings:
    """Создаёт и кэширует объект Settings, выполняя initialize_runtime()."""
    settings_obj = Settings()
    settings_obj.initialize_runtime()
    return settings_obj


# Удобный глобальный экспорт:
# from backend.app.core.config_core import settings
settings: Settings = get_settings()

__all__ = ["Settings", "get_settings", "settings"]

# =============================================================================
# Пояснения «для чайника»:
#   • Все значения читаются из ENV/.env; в коде только значения по умолчанию.
#   • STREAM_POLL_INTERVAL_SEC - как часто вотчер ищет новые записи (резервный
#     путь; основной - push-хук при создании записи через API).
#   • DRAW_RNG_SEED нужен только для демо/тестов; в проде оставьте пустым.
# =============================================================================
