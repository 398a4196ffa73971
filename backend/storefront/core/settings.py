"""Specialized settings adapters for the ledger and scheduling services."""

from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel

from storefront.core.config import get_settings


class LedgerSettings(BaseModel):
    """Slim view of fee-related configuration."""

    platform_fee_rate: Decimal = Decimal("0.01")
    fee_tax_rate: Decimal = Decimal("0.05")


class SchedulingSettings(BaseModel):
    """Slim view of reservation scheduling configuration."""

    default_timezone: str = "UTC"
    default_duration_minutes: int = 60
    next_opening_scan_days: int = 14
    check_in_code_length: int = 8
    unpaid_reservation_ttl_minutes: int = 30


def get_ledger_settings() -> LedgerSettings:
    """Return ledger-specific configuration."""

    settings = get_settings()
    return LedgerSettings(
        platform_fee_rate=settings.platform_fee_rate,
        fee_tax_rate=settings.fee_tax_rate,
    )


def get_scheduling_settings() -> SchedulingSettings:
    """Return scheduling-specific configuration."""

    settings = get_settings()
    return SchedulingSettings(
        default_timezone=settings.default_timezone,
        default_duration_minutes=settings.default_rsvp_duration_minutes,
        next_opening_scan_days=settings.next_opening_scan_days,
        check_in_code_length=settings.check_in_code_length,
        unpaid_reservation_ttl_minutes=settings.unpaid_reservation_ttl_minutes,
    )
