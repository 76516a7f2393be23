"""At-most-once booking creation per (organizer email, idempotency key)."""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from database import constraint_violated
from models import IDEMPOTENCY_CONSTRAINT, Booking, IdempotencyRecord, IdempotencyStatus

logger = logging.getLogger(__name__)


class ClaimState(Enum):
    BYPASS = "bypass"  # no key supplied
    CLAIMED = "claimed"  # this request inserted the in_progress placeholder
    ADOPTED = "adopted"  # completed record with no booking behind it; reused
    REPLAY = "replay"  # key already produced a booking
    IN_PROGRESS = "in_progress"  # a concurrent duplicate holds the key


@dataclass(frozen=True)
class IdempotencyClaim:
    state: ClaimState
    organizer_email: str
    key: Optional[str] = None
    record: Optional[IdempotencyRecord] = None
    booking: Optional[Booking] = None

    @property
    def owns_record(self) -> bool:
        return self.state in (ClaimState.CLAIMED, ClaimState.ADOPTED)


async def claim(session: AsyncSession, organizer_email: str, key: Optional[str]) -> IdempotencyClaim:
    """Claim ``key`` for ``organizer_email`` inside the caller's transaction."""
    if not key:
        return IdempotencyClaim(ClaimState.BYPASS, organizer_email)

    record = IdempotencyRecord(
        organizer_email=organizer_email,
        idempotency_key=key,
        status=IdempotencyStatus.in_progress,
    )
    try:
        # SAVEPOINT so a uniqueness failure leaves the outer transaction usable
        async with session.begin_nested():
            session.add(record)
    except IntegrityError as exc:
        if not constraint_violated(exc, IDEMPOTENCY_CONSTRAINT, "idempotency_keys."):
            raise
        return await _resolve_existing(session, organizer_email, key)

    return IdempotencyClaim(ClaimState.CLAIMED, organizer_email, key, record=record)


async def _resolve_existing(session: AsyncSession, organizer_email: str, key: str) -> IdempotencyClaim:
    result = await session.execute(
        select(IdempotencyRecord).where(
            IdempotencyRecord.organizer_email == organizer_email,
            IdempotencyRecord.idempotency_key == key,
        )
    )
    existing = result.scalars().first()
    if existing is None:
        # The owner rolled back after our insert collided; the caller may retry.
        return IdempotencyClaim(ClaimState.IN_PROGRESS, organizer_email, key)

    if existing.booking_id is not None:
        booking = await session.get(Booking, existing.booking_id)
        if booking is not None:
            logger.info("Idempotent replay of booking %s for key %r", booking.id, key)
            return IdempotencyClaim(ClaimState.REPLAY, organizer_email, key, existing, booking)

    if existing.status == IdempotencyStatus.in_progress:
        return IdempotencyClaim(ClaimState.IN_PROGRESS, organizer_email, key, existing)

    # completed but unlinked
    result = await session.execute(
        select(Booking)
        .where(Booking.idempotency_key == key, Booking.organizer_email == organizer_email)
        .order_by(Booking.id)
    )
    booking = result.scalars().first()
    if booking is not None:
        logger.info("Idempotent replay of booking %s for unlinked key %r", booking.id, key)
        return IdempotencyClaim(ClaimState.REPLAY, organizer_email, key, existing, booking)

    logger.warning("Completed idempotency record %s has no booking; reusing it", existing.id)
    return IdempotencyClaim(ClaimState.ADOPTED, organizer_email, key, existing)


async def finalize(session: AsyncSession, claimed: IdempotencyClaim, booking: Booking) -> None:
    """Mark the owned record completed and link ``booking`` in one UPDATE."""
    if not claimed.owns_record:
        return
    record = claimed.record
    record.status = IdempotencyStatus.completed
    record.booking_id = booking.id
    session.add(record)
    await session.flush()
