"""Глобальные настройки PriceWatch.

Настройки разделены по доменам (провайдер цен, трекинг, кеш, алерты и т.д.),
что позволяет подключать новые сети и токены без переписывания базового кода.
Вся конфигурация загружается из переменных окружения через Pydantic Settings.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import (
    AnyHttpUrl,
    BaseModel,
    Field,
    PositiveFloat,
    PositiveInt,
    SecretStr,
    field_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parent.parent
ACCESSIBLE_ENV_FILE = BASE_DIR / "config" / "runtime.env"
DEFAULT_ENV_FILE = BASE_DIR / ".env"
ENV_FILE = ACCESSIBLE_ENV_FILE if ACCESSIBLE_ENV_FILE.exists() else DEFAULT_ENV_FILE


def _lower_keys_and_values(mapping: dict) -> dict:
    result = {}
    for key, value in mapping.items():
        if isinstance(value, str):
            value = value.strip().lower()
        elif isinstance(value, list):
            value = [item.strip().lower() for item in value if item and item.strip()]
        result[key.strip().lower()] = value
    return result


class ProviderSettings(BaseModel):
    """Доступ к Moralis EVM API."""

    api_key: SecretStr = Field(..., description="Ключ Moralis (заголовок X-API-Key)")
    base_url: AnyHttpUrl = Field(
        "https://deep-index.moralis.io/api/v2.2",
        description="Базовый URL REST API",
    )
    chains: dict[str, str] = Field(
        default_factory=lambda: {
            "ethereum": "0x1",
            "polygon": "0x89",
            "bsc": "0x38",
            "arbitrum": "0xa4b1",
        },
        description="Логическое имя сети -> код сети у провайдера",
    )
    request_timeout: PositiveFloat = 10.0

    @field_validator("chains", mode="after")
    @classmethod
    def _normalize_chains(cls, value: dict[str, str]) -> dict[str, str]:
        return _lower_keys_and_values(value)


class RateLimitSettings(BaseModel):
    """Окно ограничения частоты запросов к провайдеру."""

    window_seconds: PositiveFloat = 1.0
    max_requests: PositiveInt = 25


class RetrySettings(BaseModel):
    """Экспоненциальный backoff для внешних вызовов."""

    max_retries: int = Field(3, ge=0)
    base_delay: PositiveFloat = 1.0
    max_delay: PositiveFloat = 30.0


class TrackingSettings(BaseModel):
    """Какие токены отслеживаем и как часто."""

    tracked_tokens: dict[str, list[str]] = Field(
        default_factory=dict,
        description="Сеть -> список адресов токенов",
    )
    native_tokens: dict[str, str] = Field(
        default_factory=lambda: {
            "ethereum": "0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2",
            "polygon": "0x0d500b1d8e8ef31e21c99d1db9a6444d3adf1270",
        },
        description="Сеть -> адрес wrapped native токена",
    )
    significant_change_threshold: PositiveFloat = 3.0
    lookback_minutes: PositiveInt = 60
    interval_sec: PositiveInt = 300
    hourly_window_hours: PositiveInt = 24
    refresh_metadata: bool = True

    @field_validator("tracked_tokens", "native_tokens", mode="after")
    @classmethod
    def _normalize_tokens(cls, value: dict) -> dict:
        return _lower_keys_and_values(value)


class CacheSettings(BaseModel):
    """Настройки кешей (aiocache поддерживает memory / redis)."""

    backend: Literal["memory", "redis"] = "memory"
    ttl_seconds: PositiveInt = 300
    metadata_ttl_multiplier: PositiveInt = 12
    redis_dsn: str | None = None

    @property
    def metadata_ttl_seconds(self) -> int:
        return self.ttl_seconds * self.metadata_ttl_multiplier


class DatabaseSettings(BaseModel):
    """SQLModel + aiosqlite (по умолчанию) и готовность к Postgres."""

    dsn: str = Field(
        "sqlite+aiosqlite:///./database/tracker.db",
        description="Строка подключения SQLAlchemy/SQLModel",
    )
    echo: bool = False
    create_tables: bool = True


class AlertSettings(BaseModel):
    """Пользовательские и системные алерты."""

    user_check_interval_sec: PositiveInt = 60
    significant_check_interval_sec: PositiveInt = 300
    max_alerts_per_user: PositiveInt = 10
    default_threshold_percent: PositiveFloat = 3.0
    default_time_frame_minutes: PositiveInt = 60
    default_recipient_email: str = "alerts@pricewatch.local"
    advance_last_checked_on_empty: bool = Field(
        True,
        description="Сдвигать last_checked_at даже если значимых изменений не найдено",
    )


class NotificationSettings(BaseModel):
    """Куда уходят уведомления (транспорт писем живёт за webhook-шлюзом)."""

    backend: Literal["log", "webhook"] = "log"
    webhook_url: AnyHttpUrl | None = None
    timeout: PositiveFloat = 5.0

    @field_validator("webhook_url", mode="before")
    @classmethod
    def _empty_str_to_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value


class AppSettings(BaseSettings):
    """Главный контейнер настроек PriceWatch."""

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE),
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    environment: Literal["dev", "prod"] = "dev"
    log_json: bool = False
    log_level: str = "DEBUG"
    provider: ProviderSettings
    rate_limit: RateLimitSettings = RateLimitSettings()
    retry: RetrySettings = RetrySettings()
    tracking: TrackingSettings = TrackingSettings()
    cache: CacheSettings = CacheSettings()
    database: DatabaseSettings = DatabaseSettings()
    alerts: AlertSettings = AlertSettings()
    notifications: NotificationSettings = NotificationSettings()

    @property
    def is_production(self) -> bool:
        """True, если сервис запущен в продовой среде."""

        return self.environment == "prod"


# Ленивый синглтон (избегаем глобальных переменных в модулях).
_settings: AppSettings | None = None


def get_settings() -> AppSettings:
    """Возвращает единый экземпляр настроек.

    Значения кэшируются, поэтому .env читается ровно один раз за процесс.
    """

    global _settings
    if _settings is None:
        _settings = AppSettings()  # type: ignore[call-arg]
    return _settings


__all__ = [
    "AlertSettings",
    "AppSettings",
    "CacheSettings",
    "DatabaseSettings",
    "NotificationSettings",
    "ProviderSettings",
    "RateLimitSettings",
    "RetrySettings",
    "TrackingSettings",
    "get_settings",
]
