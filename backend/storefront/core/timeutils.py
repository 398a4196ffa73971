"""Conversions between aware datetimes and epoch milliseconds."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta


def coerce_utc(moment: datetime) -> datetime:
    """Return ``moment`` as an aware UTC datetime (naive values are UTC)."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC)


def to_epoch_ms(moment: datetime) -> int:
    return int(coerce_utc(moment).timestamp() * 1000)


def from_epoch_ms(value: int) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=UTC)


def minutes_to_ms(minutes: int) -> int:
    return int(timedelta(minutes=minutes).total_seconds() * 1000)
