"""
Environment configuration — single source of truth for all settings.

Uses pydantic-settings for type-safe config with .env file support.
All values have sensible defaults for local development.

Usage:
    from backend.app.core.config import settings
    print(settings.PUSH_PROVIDER)
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

# FCM rejects multicast requests with more than 500 registration tokens.
PROVIDER_MAX_BATCH_SIZE = 500


class Settings(BaseSettings):
    """
    Application-wide settings loaded from environment variables or .env file.

    Precedence: env var > .env file > default value
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # ── Application ──
    APP_NAME: str = "SafeZone Epidemic Core"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"  # development | staging | production
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"  # DEBUG | INFO | WARNING | ERROR | CRITICAL

    # ── GIS ──
    DEFAULT_GRID_SIZE_DEG: float = 0.1          # ~11 km at the equator
    DEFAULT_CLUSTER_DISTANCE_DEG: float = 0.05  # ~5 km at the equator

    # ── Push notifications ──
    PUSH_PROVIDER: str = "simulation"  # simulation | fcm | disabled
    FIREBASE_CREDENTIALS_FILE: str = "firebase-service-account.json"
    FIREBASE_PROJECT_ID: Optional[str] = None
    FIREBASE_CLIENT_EMAIL: Optional[str] = None
    FIREBASE_PRIVATE_KEY: Optional[str] = None
    PUSH_BATCH_SIZE: int = PROVIDER_MAX_BATCH_SIZE
    PUSH_MAX_CONCURRENT_BATCHES: int = 4
    PUSH_BROADCAST_TOPIC: str = "all"
    ALERT_LANGUAGE: str = "vi"  # vi | en
    ALERT_COOLDOWN_SECONDS: int = 0  # 0 disables the zone-entry cooldown

    # ── Reverse geocoding ──
    GEOCODER_ENABLED: bool = True
    GEOCODER_URL: str = "https://nominatim.openstreetmap.org/reverse"
    GEOCODER_USER_AGENT: str = "SafeZone/1.0"
    GEOCODER_LANGUAGE: str = "vi"
    GEOCODER_TIMEOUT: float = 10.0

    # ── Redis ──
    CACHE_ENABLED: bool = False
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_CACHE_TTL: int = 300  # default cache TTL in seconds (5 min)
    GIS_CACHE_TTL: int = 60     # grid / cluster results

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT == "development"

    @property
    def push_batch_size(self) -> int:
        """Configured batch size, never above the provider hard limit."""
        return max(1, min(self.PUSH_BATCH_SIZE, PROVIDER_MAX_BATCH_SIZE))


@lru_cache()
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()


settings = get_settings()
