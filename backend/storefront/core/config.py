"""Application configuration via pydantic settings."""

from decimal import Decimal
from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Typed application configuration."""

    app_env: str = Field("local", alias="APP_ENV")
    app_name: str = "Storefront Reservations API"
    api_v1_prefix: str = "/api/v1"
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    cors_allow_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:5173"], alias="CORS_ALLOW_ORIGINS"
    )

    database_url: str = Field(
        "sqlite+aiosqlite:///./storefront.db", alias="DATABASE_URL"
    )
    sync_database_url: str | None = Field(default=None, alias="SYNC_DATABASE_URL")

    default_timezone: str = Field("UTC", alias="DEFAULT_TIMEZONE")
    default_rsvp_duration_minutes: int = Field(
        60, alias="DEFAULT_RSVP_DURATION_MINUTES"
    )
    next_opening_scan_days: int = Field(14, alias="NEXT_OPENING_SCAN_DAYS")
    check_in_code_length: int = Field(8, alias="CHECK_IN_CODE_LENGTH")
    unpaid_reservation_ttl_minutes: int = Field(
        30, alias="UNPAID_RESERVATION_TTL_MINUTES"
    )

    platform_fee_rate: Decimal = Field(Decimal("0.01"), alias="PLATFORM_FEE_RATE")
    fee_tax_rate: Decimal = Field(Decimal("0.05"), alias="FEE_TAX_RATE")

    model_config = SettingsConfigDict(
        env_file=Path(__file__).resolve().parents[3] / ".env",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator(
        "default_rsvp_duration_minutes",
        "next_opening_scan_days",
        "unpaid_reservation_ttl_minutes",
    )
    @classmethod
    def _positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be a positive number of minutes/days")
        return value


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""
    return Settings()  # type: ignore[call-arg]
