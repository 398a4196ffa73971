"""Evaluate weekly business-hours schedules against concrete instants."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import UTC, datetime, time, timedelta
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import ValidationError as PydanticValidationError

from storefront.core.settings import get_scheduling_settings
from storefront.core.timeutils import coerce_utc
from storefront.schemas.business_hours import WeeklySchedule

logger = logging.getLogger(__name__)


def parse_schedule(
    raw: str | bytes | Mapping[str, Any] | WeeklySchedule | None,
) -> WeeklySchedule | None:
    """Parse stored schedule JSON; ``None`` means unrestricted.

    Malformed input is logged and treated as unrestricted so that a bad
    schedule never blocks bookings.
    """
    if raw is None or raw == "" or raw == b"":
        return None
    if isinstance(raw, WeeklySchedule):
        return raw
    try:
        if isinstance(raw, (str, bytes)):
            return WeeklySchedule.model_validate_json(raw)
        return WeeklySchedule.model_validate(raw)
    except PydanticValidationError as exc:
        logger.warning(
            "Ignoring malformed business hours (%d errors)", exc.error_count()
        )
        return None


def _zone_for(schedule: WeeklySchedule, timezone: str | None) -> ZoneInfo:
    name = schedule.time_zone or timezone or get_scheduling_settings().default_timezone
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown time zone %r; evaluating hours in UTC", name)
        return ZoneInfo("UTC")


def is_open_at(
    schedule: WeeklySchedule | None,
    instant: datetime,
    timezone: str | None = None,
) -> bool:
    """Return whether ``instant`` falls inside an opening range of ``schedule``."""
    if schedule is None:
        return True
    local = coerce_utc(instant).astimezone(_zone_for(schedule, timezone))
    if schedule.is_holiday(local.date()):
        return False
    minute_of_day = local.hour * 60 + local.minute
    return any(
        window.contains(minute_of_day) for window in schedule.ranges_for(local.weekday())
    )


def next_opening(
    schedule: WeeklySchedule | None,
    instant: datetime,
    timezone: str | None = None,
    *,
    scan_days: int | None = None,
) -> datetime | None:
    """Return the next range start at or after ``instant``, in UTC.

    Days are scanned forward from the local date of ``instant``; ``None`` is
    returned when nothing opens within ``scan_days``.
    """
    if schedule is None:
        return coerce_utc(instant)
    zone = _zone_for(schedule, timezone)
    local = coerce_utc(instant).astimezone(zone)
    current_minute = local.hour * 60 + local.minute
    days = scan_days if scan_days is not None else get_scheduling_settings().next_opening_scan_days

    for offset in range(days):
        day = local.date() + timedelta(days=offset)
        if schedule.is_holiday(day):
            continue
        starts = sorted(window.start_minute for window in schedule.ranges_for(day.weekday()))
        if offset == 0:
            starts = [start for start in starts if start >= current_minute]
        if not starts:
            continue
        hours, minutes = divmod(starts[0], 60)
        if hours >= 24:
            continue
        opening = datetime.combine(day, time(hours, minutes), tzinfo=zone)
        return opening.astimezone(UTC)
    return None
