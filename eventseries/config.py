# eventseries/config.py

from __future__ import annotations

import logging
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

log = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    Единый конфиг проекта. Читает переменные окружения.
    Pydantic v2 + pydantic-settings.
    """
    model_config = SettingsConfigDict(
        # Переменные окружения приходят из docker-compose, .env файл не читаем
        case_sensitive=False,
        extra="ignore",
    )

    # --- Основные настройки ---
    ENVIRONMENT: str = Field("dev", description="Application environment (dev, test, prod)")

    # --- База данных ---
    DATABASE_URL: str = Field(..., description="Async database connection URL (e.g., postgresql+asyncpg://...)")

    # --- Redis / Celery ---
    REDIS_URL: str = Field("redis://redis:6379/0", description="URL for Redis connection")
    CELERY_BROKER_URL: Optional[str] = Field(None, description="Celery broker URL (defaults to REDIS_URL)")
    CELERY_RESULT_BACKEND: Optional[str] = Field(None, description="Celery result backend URL (defaults to REDIS_URL)")

    # --- Серии событий ---
    SERIES_TIMEZONE: str = Field("Asia/Ho_Chi_Minh", description="IANA zone all series times are expressed in")
    DEFAULT_DURATION_MINUTES: int = Field(120, gt=0, description="Duration used when a series omits one")
    GENERATE_MONTHS_AHEAD: int = Field(6, ge=1, description="How far ahead instances are materialized")
    EXTEND_THRESHOLD_MONTHS: int = Field(5, ge=0, description="Extend series whose watermark is closer than this")
    MAX_SLUG_RETRIES: int = Field(3, ge=1, description="Attempts to find a free series slug")
    SLUG_MAX_LENGTH: int = Field(50, ge=8, description="Max length of the sanitized title part of a slug")
    MAX_EXPANSION_ITERATIONS: int = Field(5000, ge=1, description="Safety cap for a single rule walk")

    # --- Планировщик ---
    EXTEND_SERIES_CRON_HOUR: int = Field(3, ge=0, le=23, description="UTC hour of the daily extension run")

    @field_validator("SERIES_TIMEZONE")
    @classmethod
    def check_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone: {value}") from exc
        return value

    # --- Динамические значения по умолчанию для Celery ---
    @model_validator(mode='after')
    def set_celery_defaults(self) -> 'Settings':
        if self.CELERY_BROKER_URL is None:
            log.debug("Setting CELERY_BROKER_URL default from REDIS_URL")
            self.CELERY_BROKER_URL = self.REDIS_URL
        if self.CELERY_RESULT_BACKEND is None:
            log.debug("Setting CELERY_RESULT_BACKEND default from REDIS_URL")
            self.CELERY_RESULT_BACKEND = self.REDIS_URL
        return self

    @property
    def series_zone(self) -> ZoneInfo:
        return ZoneInfo(self.SERIES_TIMEZONE)


try:
    settings = Settings()
    log.info("Settings loaded successfully for ENVIRONMENT=%s", settings.ENVIRONMENT)
    log.debug(
        "Loaded settings: DB URL=%s..., Redis URL=%s, timezone=%s",
        str(settings.DATABASE_URL)[:25],
        settings.REDIS_URL,
        settings.SERIES_TIMEZONE,
    )
except Exception:
    log.exception("Failed to instantiate Settings.")
    raise
