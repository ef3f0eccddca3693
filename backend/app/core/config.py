"""
Environment configuration — single source of truth for all settings.

Uses pydantic-settings for type-safe config with .env file support.
All values have sensible defaults for local development: with no
provider credentials every channel runs in simulation mode.

Usage:
    from backend.app.core.config import get_settings
    settings = get_settings()
    print(settings.RISK_THRESHOLD_EMERGENCY)
"""

from __future__ import annotations

from functools import lru_cache
from typing import Dict, List, Optional

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# Hand-authored neighbour map of the pit benches. Override per deployment
# with ZONE_ADJACENCY='{"zone-1": ["zone-2"], ...}'.
DEFAULT_ZONE_ADJACENCY: Dict[str, List[str]] = {
    "zone-1": ["zone-2", "zone-3"],
    "zone-2": ["zone-1", "zone-4"],
    "zone-3": ["zone-1", "zone-5"],
    "zone-4": ["zone-2", "zone-6"],
    "zone-5": ["zone-3", "zone-6"],
    "zone-6": ["zone-4", "zone-5"],
}


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
    APP_NAME: str = "Rockfall Alert Dispatch"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"  # development | staging | production
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"  # DEBUG | INFO | WARNING | ERROR | CRITICAL

    # ── CORS ──
    CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
        "http://127.0.0.1:3000",
    ]
    CORS_ALLOW_ALL: bool = True  # Set False in production

    # ── Risk thresholds (0–10 score scale) ──
    RISK_THRESHOLD_HIGH: float = 6.0       # below → no alert
    RISK_THRESHOLD_CRITICAL: float = 7.5   # ≥ → high severity
    RISK_THRESHOLD_EMERGENCY: float = 8.5  # ≥ → critical severity

    # ── Dispatch ──
    DISPATCH_MAX_CONCURRENCY: int = 10     # parallel provider calls per pass
    ALERT_DEDUP_WINDOW_SECONDS: int = 300  # same zone + severity suppressed
    ALERT_CACHE_CLEANUP_INTERVAL_SECONDS: int = 600  # 0 disables the cleanup task

    # ── Zones ──
    ZONE_ADJACENCY: Dict[str, List[str]] = DEFAULT_ZONE_ADJACENCY
    SITE_TIMEZONE: str = "UTC"  # quiet hours and {timestamp} use site time

    # ── Storage ──
    STORE_BACKEND: str = "memory"  # memory | database
    DATABASE_URL: str = "sqlite+aiosqlite:///./rockfall_alerts.db"
    DATABASE_ECHO: bool = False

    # ── SMS (Twilio) ──
    TWILIO_ACCOUNT_SID: Optional[str] = None
    TWILIO_AUTH_TOKEN: Optional[str] = None
    TWILIO_FROM_NUMBER: Optional[str] = None
    SMS_TIMEOUT_SECONDS: float = 15.0

    # ── Email (SendGrid) ──
    SENDGRID_API_KEY: Optional[str] = None
    SENDGRID_FROM_EMAIL: str = "alerts@rockfall.system"
    SENDGRID_FROM_NAME: str = "Rockfall Alert System"
    EMAIL_TIMEOUT_SECONDS: float = 20.0

    # ── Push (Web Push / FCM) ──
    VAPID_PUBLIC_KEY: Optional[str] = None
    VAPID_PRIVATE_KEY: Optional[str] = None
    VAPID_SUBJECT: str = "mailto:admin@rockfall.system"
    FCM_PROJECT_ID: Optional[str] = None
    FCM_ACCESS_TOKEN: Optional[str] = None  # OAuth2 bearer, rotated externally
    PUSH_TIMEOUT_SECONDS: float = 10.0

    # ── Simulation (used when a channel has no usable credentials) ──
    SIMULATED_PUSH_SUCCESS_RATE: float = 0.95
    SIMULATED_SMS_SUCCESS_RATE: float = 0.98
    SIMULATED_EMAIL_SUCCESS_RATE: float = 0.99
    SIMULATION_DELAY_SCALE: float = 1.0  # 0 disables the synthetic latency

    # ── Contacts rendered into critical emails ──
    EMERGENCY_CONTACT: str = "Mine Safety Office"

    @field_validator(
        "SIMULATED_PUSH_SUCCESS_RATE",
        "SIMULATED_SMS_SUCCESS_RATE",
        "SIMULATED_EMAIL_SUCCESS_RATE",
    )
    @classmethod
    def _rate_in_unit_interval(cls, value: float) -> float:
        if not 0.0 <= value <= 1.0:
            raise ValueError("success rate must be within [0, 1]")
        return value

    @field_validator("DISPATCH_MAX_CONCURRENCY")
    @classmethod
    def _positive_concurrency(cls, value: int) -> int:
        if value < 1:
            raise ValueError("DISPATCH_MAX_CONCURRENCY must be at least 1")
        return value

    @model_validator(mode="after")
    def _thresholds_ascending(self) -> "Settings":
        if not (
            self.RISK_THRESHOLD_HIGH
            <= self.RISK_THRESHOLD_CRITICAL
            <= self.RISK_THRESHOLD_EMERGENCY
        ):
            raise ValueError(
                "risk thresholds must ascend: HIGH ≤ CRITICAL ≤ EMERGENCY"
            )
        return self

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT == "development"


@lru_cache()
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()
