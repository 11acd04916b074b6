# Central place for all configurable settings. We use Pydantic's
# BaseSettings so values can be read from env vars or a .env file.
# Program-level knobs (hold days, payout minimum, tier rates) can be
# overridden at runtime through the affiliate_program_config table.

from typing import Annotated, Dict, List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
    )

    # Core DB connection string, like sqlite:///./funnel.db or a Postgres URL.
    DATABASE_URL: str

    # Toggle SQLAlchemy echo logs. Useful for debugging queries locally.
    DB_ECHO: bool = False

    # Level for the JSON request/engine loggers.
    LOG_LEVEL: str = "INFO"

    # Public site used when building referral links.
    APP_BASE_URL: str = "http://localhost:3000"

    # Commission hold window before a commission becomes payable.
    COMMISSION_HOLD_DAYS: int = Field(default=30, ge=0)

    # Smallest available balance an affiliate can be paid out.
    MINIMUM_PAYOUT: float = Field(default=50, ge=0)

    # Informational payout cadence shown on dashboards.
    PAYOUT_SCHEDULE: str = "monthly"

    # Default commission rate per affiliate tier, as a fraction of sale value.
    AFFILIATE_TIER_COMMISSION_RATES: Dict[str, float] = Field(
        default_factory=lambda: {"quiz": 0.10, "creator": 0.15, "agency": 0.20}
    )

    # Click dedup windows. Redirect links and homepage visits are tracked
    # by different entry points and keep separate windows.
    REDIRECT_CLICK_DEDUP_SECONDS: int = Field(default=3600, gt=0)
    HOMEPAGE_CLICK_DEDUP_SECONDS: int = Field(default=120, gt=0)

    # Double-submit guard for conversions of the same type.
    CONVERSION_DEDUP_SECONDS: int = Field(default=30, gt=0)

    # Appointment statuses the auto-assigner will pick up.
    ASSIGNABLE_APPOINTMENT_STATUSES: Annotated[List[str], NoDecode] = Field(
        default_factory=lambda: ["scheduled", "confirmed"]
    )

    # Proxy/client IP extraction settings for click tracking.
    TRUST_PROXY_HEADERS: bool = False
    TRUSTED_IP_HEADERS: Annotated[List[str], NoDecode] = Field(
        default_factory=lambda: [
            "CF-Connecting-IP",
            "X-Forwarded-For",
            "X-Real-IP",
        ]
    )

    @field_validator("TRUSTED_IP_HEADERS", "ASSIGNABLE_APPOINTMENT_STATUSES", mode="before")
    @classmethod
    def _parse_list_values(cls, value):
        if isinstance(value, str):
            parts = [p.strip() for p in value.split(",") if p.strip()]
            return parts
        return value

    @field_validator("AFFILIATE_TIER_COMMISSION_RATES")
    @classmethod
    def _validate_tier_rates(cls, value):
        for tier, rate in value.items():
            if rate < 0 or rate > 1:
                raise ValueError(f"Commission rate for tier {tier!r} must be between 0 and 1")
        return value


# Instantiate a single settings object for app-wide import.
# Any module can just `from app.core.config import settings`.
settings = Settings()
