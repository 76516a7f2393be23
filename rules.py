from datetime import datetime, time
from typing import Optional

from errors import (
    InvalidDurationError,
    InvalidRangeError,
    InvalidTimeError,
    OutsideBusinessHoursError,
)
from time_parser import ZonedInstant

BUSINESS_START = time(8, 0)
BUSINESS_END = time(20, 0)
MIN_DURATION_MIN = 15
MAX_DURATION_MIN = 4 * 60
BUSINESS_WEEKDAYS = range(0, 5)  # Mon-Fri


def duration_minutes(start: datetime, end: datetime) -> int:
    # Whole minutes, half up
    return int((end - start).total_seconds() / 60 + 0.5)


def business_window(local: datetime):
    # 08:00-20:00 on the local calendar date
    return (
        local.replace(hour=BUSINESS_START.hour, minute=BUSINESS_START.minute, second=0, microsecond=0),
        local.replace(hour=BUSINESS_END.hour, minute=BUSINESS_END.minute, second=0, microsecond=0),
    )


def validate_booking_window(start: Optional[ZonedInstant], end: Optional[ZonedInstant]) -> int:
    # First failing check wins; returns the duration in minutes
    if start is None or end is None:
        raise InvalidTimeError()

    if start.instant >= end.instant:
        raise InvalidRangeError()

    minutes = duration_minutes(start.instant, end.instant)
    if minutes < MIN_DURATION_MIN or minutes > MAX_DURATION_MIN:
        raise InvalidDurationError(
            f"Booking duration must be between {MIN_DURATION_MIN} and {MAX_DURATION_MIN} minutes"
        )

    if start.local.weekday() not in BUSINESS_WEEKDAYS or end.local.weekday() not in BUSINESS_WEEKDAYS:
        raise OutsideBusinessHoursError()

    # The end is measured against the start date's window, so it cannot roll over midnight.
    opens, closes = business_window(start.local)
    if start.local < opens or end.local > closes:
        raise OutsideBusinessHoursError()

    return minutes
