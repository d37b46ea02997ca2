"""Provider availability data models."""

import datetime as dt
from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from booking_engine.utils import Interval, parse_hhmm


class Weekday(str, Enum):
    """Days of the week, ordered to match ``date.weekday()``."""
    MONDAY = "monday"
    TUESDAY = "tuesday"
    WEDNESDAY = "wednesday"
    THURSDAY = "thursday"
    FRIDAY = "friday"
    SATURDAY = "saturday"
    SUNDAY = "sunday"

    @classmethod
    def of(cls, day: date) -> "Weekday":
        return list(cls)[day.weekday()]


class TimeSlot(BaseModel):
    """A declared opening within one day, as HH:MM strings."""
    start: str
    end: str
    is_active: bool = True

    @field_validator("start")
    @classmethod
    def _check_start(cls, value: str) -> str:
        parse_hhmm(value)
        return value

    @field_validator("end")
    @classmethod
    def _check_end(cls, value: str) -> str:
        parse_hhmm(value, allow_end_of_day=True)
        return value

    @model_validator(mode="after")
    def _check_order(self) -> "TimeSlot":
        if parse_hhmm(self.start) >= parse_hhmm(self.end, allow_end_of_day=True):
            raise ValueError(f"Slot start {self.start} must be before end {self.end}")
        return self

    def to_interval(self) -> Interval:
        return Interval(parse_hhmm(self.start), parse_hhmm(self.end, allow_end_of_day=True))


class DaySchedule(BaseModel):
    """Recurring schedule for one weekday."""
    is_available: bool = False
    time_slots: list[TimeSlot] = Field(default_factory=list)


def _closed_week() -> dict[Weekday, DaySchedule]:
    return {day: DaySchedule() for day in Weekday}


class DateOverride(BaseModel):
    """Single-day exception that fully replaces the weekly pattern."""
    date: dt.date
    is_available: bool
    time_slots: list[TimeSlot] = Field(default_factory=list)
    reason: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class BlockedPeriod(BaseModel):
    """Inclusive date range in which no bookings are possible."""
    block_id: str
    start_date: date
    end_date: date
    title: str
    reason: str
    notes: Optional[str] = None
    created_by: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @model_validator(mode="after")
    def _check_range(self) -> "BlockedPeriod":
        if self.start_date > self.end_date:
            raise ValueError(
                f"Blocked period start {self.start_date} is after end {self.end_date}"
            )
        return self

    def covers(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date


class BufferTime(BaseModel):
    """Padding, in minutes, kept around existing bookings."""
    before_booking: int = Field(default=15, ge=0)
    after_booking: int = Field(default=15, ge=0)

    @property
    def conflict_buffer(self) -> int:
        """Buffer applied on each side of an existing booking at conflict-check time."""
        return max(self.before_booking, self.after_booking)


class ProviderAvailability(BaseModel):
    """Everything needed to decide when a provider can be booked."""
    provider_id: str
    weekly_schedule: dict[Weekday, DaySchedule] = Field(default_factory=_closed_week)
    date_overrides: list[DateOverride] = Field(default_factory=list)
    blocked_periods: list[BlockedPeriod] = Field(default_factory=list)
    timezone: str = "UTC"
    buffer_time: BufferTime = Field(default_factory=BufferTime)
    max_advance_booking_days: int = Field(default=30, ge=0)
    auto_accept_bookings: bool = False

    @field_validator("weekly_schedule")
    @classmethod
    def _fill_missing_days(cls, value: dict[Weekday, DaySchedule]) -> dict[Weekday, DaySchedule]:
        return {day: value.get(day, DaySchedule()) for day in Weekday}

    def day_schedule(self, day: date) -> DaySchedule:
        return self.weekly_schedule[Weekday.of(day)]

    def override_for(self, day: date) -> Optional[DateOverride]:
        for override in self.date_overrides:
            if override.date == day:
                return override
        return None

    def blocked_period_for(self, day: date) -> Optional[BlockedPeriod]:
        for period in self.blocked_periods:
            if period.covers(day):
                return period
        return None
