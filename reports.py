import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from errors import InternalStorageError, InvalidRangeError
from models import Booking, BookingStatus, Room
from rules import BUSINESS_WEEKDAYS, business_window
from schemas import RoomUtilization
from time_parser import ensure_utc, parse_flexible_datetime, resolve_timezone

logger = logging.getLogger(__name__)


def _overlap_minutes(start: datetime, end: datetime, lower: datetime, upper: datetime) -> float:
    overlap = min(end, upper) - max(start, lower)
    return max(0.0, overlap.total_seconds() / 60)


def business_minutes_between(lower: datetime, upper: datetime, timezone_name: str) -> float:
    """Minutes of Mon-Fri 08:00-20:00 room-local time inside ``[lower, upper)``."""
    zone = resolve_timezone(timezone_name)
    if zone is None:
        return 0.0

    # Walk room-local calendar days, not UTC days: a UTC-midnight cursor lands on the
    # previous local date west of UTC and would miss that day's 08:00-20:00 window.
    # For UTC rooms both walks are the same.
    total = 0.0
    day = lower.astimezone(zone).date()
    last_day = upper.astimezone(zone).date()
    while True:
        if day.weekday() in BUSINESS_WEEKDAYS:
            opens, closes = business_window(datetime(day.year, day.month, day.day, tzinfo=zone))
            total += _overlap_minutes(opens, closes, lower, upper)
        if day >= last_day:
            return total
        day += timedelta(days=1)


async def room_utilization(
    session: AsyncSession, from_raw: Optional[str], to_raw: Optional[str]
) -> List[RoomUtilization]:
    """Booked vs. available business minutes per room over ``[from, to)``, in id order."""
    if not from_raw or not to_raw:
        raise InvalidRangeError("from and to query parameters are required")
    lower = parse_flexible_datetime(from_raw, "UTC")
    upper = parse_flexible_datetime(to_raw, "UTC")
    if lower is None or upper is None or lower.instant >= upper.instant:
        raise InvalidRangeError("Invalid from/to range")
    lower, upper = lower.instant, upper.instant

    try:
        # One transaction so rooms and bookings come from the same snapshot
        async with session.begin():
            rooms = (await session.execute(select(Room).order_by(Room.id))).scalars().all()
            bookings = (
                await session.execute(
                    select(Booking).where(
                        Booking.status == BookingStatus.confirmed,
                        Booking.end_time > lower,
                        Booking.start_time < upper,
                    )
                )
            ).scalars().all()
    except SQLAlchemyError as exc:
        logger.exception("Storage failure while building utilization report")
        raise InternalStorageError() from exc

    booked: Dict[int, float] = defaultdict(float)
    for booking in bookings:
        booked[booking.room_id] += _overlap_minutes(
            ensure_utc(booking.start_time), ensure_utc(booking.end_time), lower, upper
        )

    report = []
    for room in rooms:
        booked_minutes = booked[room.id]
        try:
            available = business_minutes_between(lower, upper, room.timezone)
        except OverflowError as exc:
            # Range edge falls outside the datetime range once shifted to the room zone
            raise InvalidRangeError(f"Range cannot be evaluated in timezone {room.timezone}") from exc
        utilization = 0.0 if available == 0 else booked_minutes / available
        report.append(
            RoomUtilization(
                room_id=room.id,
                room_name=room.name,
                total_booking_hours=round(booked_minutes / 60, 2),
                utilization_percent=round(utilization, 4),
            )
        )
    return report
