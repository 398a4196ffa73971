"""Weekly business-hours schedules as stored on stores, facilities and staff."""

from __future__ import annotations

from datetime import date
from typing import Literal, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, field_validator

_TIME_PATTERN = r"^(([01]\d|2[0-3]):[0-5]\d|24:00)$"

WEEKDAY_NAMES: tuple[str, ...] = (
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
    "Sunday",
)


def _minutes(value: str) -> int:
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


class TimeRange(BaseModel):
    """An ``HH:MM`` opening range; ``from`` after ``to`` wraps past midnight."""

    start: str = Field(alias="from", pattern=_TIME_PATTERN)
    end: str = Field(alias="to", pattern=_TIME_PATTERN)

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @property
    def start_minute(self) -> int:
        return _minutes(self.start)

    @property
    def end_minute(self) -> int:
        return _minutes(self.end)

    @property
    def spans_midnight(self) -> bool:
        return self.start_minute > self.end_minute

    def contains(self, minute_of_day: int) -> bool:
        if self.spans_midnight:
            return minute_of_day >= self.start_minute or minute_of_day < self.end_minute
        return self.start_minute <= minute_of_day < self.end_minute


DayHours = Union[list[TimeRange], Literal["closed"]]


class WeeklySchedule(BaseModel):
    """Opening ranges per weekday, plus whole-day holidays."""

    monday: DayHours | None = Field(default=None, alias="Monday")
    tuesday: DayHours | None = Field(default=None, alias="Tuesday")
    wednesday: DayHours | None = Field(default=None, alias="Wednesday")
    thursday: DayHours | None = Field(default=None, alias="Thursday")
    friday: DayHours | None = Field(default=None, alias="Friday")
    saturday: DayHours | None = Field(default=None, alias="Saturday")
    sunday: DayHours | None = Field(default=None, alias="Sunday")
    holidays: list[date] = Field(default_factory=list)
    time_zone: str | None = Field(default=None, alias="timeZone")

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    @field_validator("time_zone")
    @classmethod
    def _known_zone(cls, value: str | None) -> str | None:
        if not value:
            return None
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"unknown time zone {value!r}") from exc
        return value

    def ranges_for(self, weekday: int) -> list[TimeRange]:
        """Return opening ranges for ``weekday`` (0 = Monday); closed days are empty."""
        hours = getattr(self, WEEKDAY_NAMES[weekday].lower())
        if hours is None or hours == "closed":
            return []
        return list(hours)

    def is_holiday(self, day: date) -> bool:
        return day in self.holidays
