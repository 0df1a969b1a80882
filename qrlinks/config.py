"""Configuration management for the QR links service.

This module provides centralized configuration management using Pydantic BaseSettings
with environment variable support and caching for performance.

Flow Diagram — get_settings()
=============================
::
    ┌─────────────┐
    │  Call get_  │
    │  settings() │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Check cache  │
    │ (lru_cache)  │
    └──────┬──────┘
    HIT?  │
    ┌─────┴─────┐
    │ NO         │ YES
    ▼            ▼
┌─────────┐  ┌─────────┐
│ Create  │  │ Return  │
│ Settings│  │ cached  │
│ instance│  │ value   │
└─────────┘  └─────────┘

How to Use
===========
**Step 1 — Import**::
    from qrlinks.config import get_settings

**Step 2 — Get settings**::
    settings = get_settings()
    db_url = settings.DATABASE_URL

**Step 3 — Build an explicit instance (tests, scripts)**::
    settings = Settings(DATABASE_URL="sqlite+aiosqlite:///./qrlinks.db")

Key Behaviours
===============
- Settings are cached after first access for performance.
- Environment variables override defaults automatically.
- ``Settings`` instances are passed explicitly to ``ServiceManager``; nothing
  else reads the environment.

Classes:
    Settings:  Pydantic model for all configuration values.

"""

__all__ = ["Settings", "get_settings"]

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    APP_NAME: str = "qr-links"
    APP_ENV: str = "development"
    LOG_LEVEL: str = "INFO"

    # Public origin encoded into every QR image (<PUBLIC_BASE_URL>/r/<slug>)
    PUBLIC_BASE_URL: str = "http://localhost:8080"

    # Database
    DATABASE_URL: str = "postgresql+asyncpg://qrlinks:qrlinks@db:5432/qrlinks"
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10
    DB_POOL_TIMEOUT_SECONDS: float = 30.0
    AUTO_CREATE_TABLES: bool = True

    # Redis resolution cache
    REDIS_URL: str = "redis://redis:6379/0"
    RESOLUTION_CACHE_TTL_SECONDS: int = 60

    # Slugs
    SLUG_LENGTH: int = 7
    SLUG_FALLBACK_LENGTH: int = 11
    SLUG_MIN_LENGTH: int = 3
    SLUG_MAX_LENGTH: int = 64
    SLUG_GENERATION_ATTEMPTS: int = 5

    # Target ledger
    RETARGET_MAX_ATTEMPTS: int = 5

    # Scan recording
    RECORD_PREFETCH_SCANS: bool = True
    SCAN_QUEUE_MAX_SIZE: int = 10000
    SCAN_WRITE_BATCH_SIZE: int = 100
    SCAN_SHUTDOWN_FLUSH_SECONDS: float = 5.0
    TRUST_FORWARDED_FOR: bool = True
    GEOIP_DATABASE_PATH: str | None = None

    # Owner identity supplied by the upstream session gateway
    OWNER_HEADER: str = "X-Owner-Id"

    # Rendering
    QR_MARGIN: int = 2
    QR_PIXEL_SIZE: int = 512
    PREVIEW_CONTENT: str = "https://preview.local/qr"
    UPLOADS_DIR: str = "public/uploads"
    UPLOADS_URL_PREFIX: str = "/uploads/"
    LOGO_FETCH_REMOTE: bool = False
    LOGO_FETCH_TIMEOUT_SECONDS: float = 2.0
    LOGO_MAX_BYTES: int = 512 * 1024

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
    )


@lru_cache()
def get_settings() -> Settings:
    return Settings()
