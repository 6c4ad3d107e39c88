"""
Environment-driven configuration.
Values are read when the config object is created so tests can tweak os.environ first.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

BASE_DIR = Path(__file__).resolve().parent.parent

_TRUTHY = {"1", "true", "yes", "on"}


def _env_float(name: str, default: Optional[float]) -> Optional[float]:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logging.getLogger(__name__).warning(f"CONFIG_BAD_NUMBER | key={name} | value={raw!r}")
        return default


class BaseConfig:
    def __init__(self) -> None:
        self.SECRET_KEY: str = os.getenv("FLASK_SECRET_KEY", "dev-secret-change-me")
        self.JSON_SORT_KEYS: bool = False
        self.APP_ENV: str = os.getenv("APP_ENV", os.getenv("FLASK_ENV", "development")).lower()

        # Upstream prediction API
        self.FLOWISE_API_URL: str = os.getenv("FLOWISE_API_URL", "http://localhost:3000").strip()
        self.FLOWISE_API_KEY: str = os.getenv("FLOWISE_API_KEY", "").strip()
        self.FLOWISE_CHATFLOW_ID: str = os.getenv("FLOWISE_CHATFLOW_ID", "").strip()

        # Retry: attempts are total calls, backoff is attempt * base
        self.UPSTREAM_MAX_ATTEMPTS: int = int(os.getenv("UPSTREAM_MAX_ATTEMPTS", "3"))
        self.UPSTREAM_RETRY_BASE_MS: int = int(os.getenv("UPSTREAM_RETRY_BASE_MS", "1000"))
        self.UPSTREAM_TIMEOUT_SECONDS: Optional[float] = _env_float("UPSTREAM_TIMEOUT_SECONDS", None)

        # Pipeline
        self.DELIVERED_DELAY_MS: int = int(os.getenv("DELIVERED_DELAY_MS", "500"))

        # Ticket webhooks
        self.WEBHOOK_TIMEOUT_SECONDS: float = _env_float("WEBHOOK_TIMEOUT_SECONDS", 10.0) or 10.0

        # HTTP surface
        self.CORS_ORIGIN: str = os.getenv("CORS_ORIGIN", "*")
        self.RATE_LIMIT: str = os.getenv("RATE_LIMIT", "100 per 15 minutes")
        self.RATELIMIT_ENABLED: bool = os.getenv("RATELIMIT_ENABLED", "true").lower() in _TRUTHY
        self.RATELIMIT_STORAGE_URI: str = os.getenv("RATELIMIT_STORAGE_URI", "memory://")
        self.MAX_CONTENT_LENGTH: int = int(os.getenv("MAX_CONTENT_LENGTH", str(10 * 1024 * 1024)))

        self.LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    @property
    def is_production(self) -> bool:
        return self.APP_ENV == "production"

    @property
    def chatflow_configured(self) -> bool:
        return bool(self.FLOWISE_CHATFLOW_ID)


class DevelopmentConfig(BaseConfig):
    DEBUG: bool = True


class ProductionConfig(BaseConfig):
    DEBUG: bool = False


class TestingConfig(BaseConfig):
    TESTING: bool = True

    def __init__(self) -> None:
        super().__init__()
        self.UPSTREAM_RETRY_BASE_MS = 0
        self.DELIVERED_DELAY_MS = 0
        self.RATELIMIT_STORAGE_URI = "memory://"


def get_config() -> BaseConfig:
    """Get configuration instance directly - no complex manager."""
    env = os.getenv("APP_ENV", os.getenv("FLASK_ENV", "development")).lower()
    mapping = {
        "development": DevelopmentConfig,
        "production": ProductionConfig,
        "testing": TestingConfig,
        "test": TestingConfig,
    }
    config_class = mapping.get(env, DevelopmentConfig)
    cfg = config_class()

    log = logging.getLogger(__name__)
    if not hasattr(get_config, "_logged_startup"):
        log.info(f"⚙️ CONFIG_STARTUP | env={env} | config_class={config_class.__name__}")
        log.info(
            f"🤖 FLOWISE_CONFIG | url={cfg.FLOWISE_API_URL} | chatflow={cfg.FLOWISE_CHATFLOW_ID or 'NOT SET'} "
            f"| api_key={'configured' if cfg.FLOWISE_API_KEY else 'not configured'}"
        )
        log.info(
            f"🔁 RETRY_CONFIG | max_attempts={cfg.UPSTREAM_MAX_ATTEMPTS} | base_ms={cfg.UPSTREAM_RETRY_BASE_MS} "
            f"| timeout_s={cfg.UPSTREAM_TIMEOUT_SECONDS}"
        )
        log.info(f"🚦 RATE_LIMIT_CONFIG | limit={cfg.RATE_LIMIT} | storage={cfg.RATELIMIT_STORAGE_URI}")
        get_config._logged_startup = True

    return cfg
