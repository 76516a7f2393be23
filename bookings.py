import logging
from datetime import datetime
from typing import List, NamedTuple, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

import idempotency
from database import constraint_violated
from errors import (
    BookingError,
    IdempotencyInProgressError,
    InternalStorageError,
    InvalidTimeError,
    NotFoundError,
    OverlapConflictError,
)
from idempotency import ClaimState
from models import OVERLAP_CONSTRAINT, Booking, BookingStatus, Room, utcnow
from rules import validate_booking_window
from schemas import BookingCreate
from time_parser import parse_flexible_datetime

logger = logging.getLogger(__name__)


class BookingResult(NamedTuple):
    booking: Booking
    replayed: bool = False


async def create_booking(
    session: AsyncSession,
    request: BookingCreate,
    idempotency_key: Optional[str] = None,
    now: Optional[datetime] = None,
) -> BookingResult:
    """Validate and insert a booking atomically, replaying a keyed retry."""
    key = idempotency_key or request.idempotency_key
    try:
        async with session.begin():
            room = await session.get(Room, request.room_id)
            if room is None:
                raise NotFoundError("Unknown room")

            # Plain values only: a failed flush expires every ORM object in the session
            room_id = room.id
            tz = room.timezone or "UTC"
            start = parse_flexible_datetime(request.start_time, tz, now)
            end = parse_flexible_datetime(request.end_time, tz, now)
            validate_booking_window(start, end)

            claimed = await idempotency.claim(session, request.organizer_email, key)
            if claimed.state is ClaimState.REPLAY:
                return BookingResult(claimed.booking, replayed=True)
            if claimed.state is ClaimState.IN_PROGRESS:
                logger.warning("Rejected duplicate for in-flight key %r", key)
                raise IdempotencyInProgressError()

            booking = Booking(
                room_id=room_id,
                title=request.title,
                organizer_email=request.organizer_email,
                start_time=start.instant,
                end_time=end.instant,
                status=request.status,
                idempotency_key=key,
            )
            if request.status == BookingStatus.cancelled:
                booking.cancelled_at = utcnow()
            session.add(booking)
            try:
                await session.flush()
            except IntegrityError as exc:
                if constraint_violated(exc, OVERLAP_CONSTRAINT):
                    logger.warning(
                        "Overlap on room %s for %s - %s", room_id, start.instant, end.instant
                    )
                    raise OverlapConflictError() from exc
                raise

            await idempotency.finalize(session, claimed, booking)
    except BookingError:
        raise
    except SQLAlchemyError as exc:
        logger.exception("Storage failure while creating booking")
        raise InternalStorageError() from exc

    logger.info("Booking %s created on room %s", booking.id, booking.room_id)
    return BookingResult(booking)


async def cancel_booking(
    session: AsyncSession, booking_id: int, now: Optional[datetime] = None
) -> Booking:
    """Cancel a booking; cancelling twice returns the stored state unchanged."""
    try:
        async with session.begin():
            booking = await session.get(
                Booking, booking_id, with_for_update=True, populate_existing=True
            )
            if booking is None:
                raise NotFoundError("Booking not found")

            # Already cancelled?
            if booking.status == BookingStatus.cancelled:
                return booking

            booking.status = BookingStatus.cancelled
            booking.cancelled_at = now or utcnow()
            session.add(booking)
    except BookingError:
        raise
    except SQLAlchemyError as exc:
        logger.exception("Storage failure while cancelling booking %s", booking_id)
        raise InternalStorageError() from exc

    logger.info("Booking %s cancelled", booking_id)
    return booking


async def list_bookings(
    session: AsyncSession,
    room_id: Optional[int] = None,
    from_raw: Optional[str] = None,
    to_raw: Optional[str] = None,
    limit: int = 20,
    offset: int = 0,
) -> Tuple[List[Booking], int]:
    # from: bookings ending at/after it; to: bookings starting at/before it
    clauses = []
    if room_id is not None:
        clauses.append(Booking.room_id == room_id)
    if from_raw:
        lower = parse_flexible_datetime(from_raw, "UTC")
        if lower is None:
            raise InvalidTimeError(f"Invalid 'from' value: {from_raw!r}")
        clauses.append(Booking.end_time >= lower.instant)
    if to_raw:
        upper = parse_flexible_datetime(to_raw, "UTC")
        if upper is None:
            raise InvalidTimeError(f"Invalid 'to' value: {to_raw!r}")
        clauses.append(Booking.start_time <= upper.instant)

    try:
        async with session.begin():
            items = await session.execute(
                select(Booking)
                .where(*clauses)
                .order_by(Booking.start_time, Booking.id)
                .limit(limit)
                .offset(offset)
            )
            total = await session.execute(select(func.count(Booking.id)).where(*clauses))
            return list(items.scalars().all()), total.scalar_one()
    except SQLAlchemyError as exc:
        logger.exception("Storage failure while listing bookings")
        raise InternalStorageError() from exc
