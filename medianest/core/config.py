"""
Application configuration and settings.

Centralises all external configuration (env-vars / .env) and
version discovery.  MongoDB, Redis and RabbitMQ connectivity
live in ``medianest.core.mongo``, ``medianest.core.redis`` and
``medianest.services.publisher``; FastAPI dependency injection
in ``medianest.api.deps``.
"""

from __future__ import annotations

import importlib.metadata
import logging
from functools import lru_cache
from urllib.parse import quote

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


# ── Package version (single source of truth from pyproject.toml) ────────


def get_version() -> str:
    """Return the installed package version.

    Falls back to ``"0.0.0-dev"`` when the package metadata
    is not available (e.g. when running from a source checkout).

    Returns:
        Semantic version string.
    """
    try:
        return importlib.metadata.version("medianest-api")
    except importlib.metadata.PackageNotFoundError:
        return "0.0.0-dev"


# ── Settings ────────────────────────────────────────────────────────────────


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_ignore_empty=True,
        extra="ignore",
    )

    # General
    APP_NAME: str = "MediaNest API"
    API_V1_STR: str = "/api/v1"
    ROOT_PATH: str = ""
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # CORS
    CORS_ORIGINS: list[str] = ["*"]

    # ── MongoDB (durable store) ─────────────────────────────────────
    MONGO_URI: str = "mongodb://mongo:27017"
    MONGO_DB: str = "medianest"
    MONGO_ITEMS_COLLECTION: str = "items"
    MONGO_COUNTERS_COLLECTION: str = "counters"
    STORE_READ_TIMEOUT: float = 5.0  # seconds

    # ── Redis (status cache) ────────────────────────────────────────
    REDIS_HOST: str = "redis"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_SOCKET_TIMEOUT: float = 2.0  # seconds

    # ── Status cache ────────────────────────────────────────────────
    CACHE_ENABLED: bool = True
    CACHE_TTL: int = 900  # seconds (15 min)
    CACHE_STALE_AFTER: int = 840  # seconds (14 min)

    # ── RabbitMQ (job hand-off) ─────────────────────────────────────
    RABBITMQ_HOST: str = "rabbitmq"
    RABBITMQ_PORT: int = 5672
    RABBITMQ_USER: str = "guest"
    RABBITMQ_PASSWORD: str = "guest"
    RABBITMQ_VHOST: str = "/"

    EXCHANGE_NAME: str = "media_exchange"
    QUEUE_NAME: str = "media_queue"
    ROUTING_KEY: str = "media_key"
    DEAD_LETTER_EXCHANGE: str = "dlx_media_exchange"
    DEAD_LETTER_QUEUE: str = "dlq_media_queue"
    QUEUE_MESSAGE_TTL_MS: int = 300_000  # 5 min
    QUEUE_MAX_LENGTH: int = 10_000

    PUBLISH_MAX_ATTEMPTS: int = 3
    PUBLISH_TIMEOUT: float = 10.0  # seconds per attempt
    BROKER_CONNECT_MAX_RETRIES: int = 3
    MESSAGE_SOURCE: str = "medianest"

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def _parse_cors(cls, v: str | list[str]) -> list[str]:
        """Accept a JSON-encoded string or a list."""
        if isinstance(v, str):
            import json

            return json.loads(v)
        return v

    @field_validator("PUBLISH_MAX_ATTEMPTS")
    @classmethod
    def _positive_attempts(cls, v: int) -> int:
        """At least one publish attempt is always made."""
        if v < 1:
            raise ValueError("PUBLISH_MAX_ATTEMPTS must be >= 1")
        return v

    @model_validator(mode="after")
    def _check_cache_windows(self) -> Settings:
        """The near-expiry window must close before the TTL does."""
        if self.CACHE_STALE_AFTER >= self.CACHE_TTL:
            raise ValueError(
                "CACHE_STALE_AFTER must be smaller than CACHE_TTL "
                f"({self.CACHE_STALE_AFTER} >= {self.CACHE_TTL})"
            )
        return self

    # Derived URLs
    @property
    def REDIS_URL(self) -> str:  # noqa: N802
        """Full Redis connection URL."""
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    @property
    def BROKER_URL(self) -> str:  # noqa: N802
        """AMQP URL for the RabbitMQ broker."""
        vhost = quote(self.RABBITMQ_VHOST, safe="")
        return (
            f"amqp://{self.RABBITMQ_USER}:{self.RABBITMQ_PASSWORD}"
            f"@{self.RABBITMQ_HOST}:{self.RABBITMQ_PORT}/{vhost}"
        )


@lru_cache
def get_settings() -> Settings:
    """Return a cached Settings singleton.

    Using ``lru_cache`` ensures the .env file is read exactly
    once.  Override in tests via ``app.dependency_overrides``
    or by passing explicit settings to the service factories.
    """
    return Settings()
