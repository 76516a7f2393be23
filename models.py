from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from sqlalchemy import JSON, CheckConstraint, Column, DateTime, DDL, UniqueConstraint, event
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BookingStatus(str, Enum):
    confirmed = "confirmed"
    cancelled = "cancelled"


class IdempotencyStatus(str, Enum):
    in_progress = "in_progress"
    completed = "completed"


OVERLAP_CONSTRAINT = "no_overlap_confirmed_bookings"
IDEMPOTENCY_CONSTRAINT = "uq_idempotency_organizer_key"


class Room(SQLModel, table=True):
    __tablename__ = "rooms"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    capacity: int
    floor: Optional[int] = None
    amenities: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    timezone: str = Field(default="UTC")


class Booking(SQLModel, table=True):
    __tablename__ = "bookings"
    __table_args__ = (
        CheckConstraint("start_time < end_time", name="ck_bookings_start_before_end"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    room_id: int = Field(foreign_key="rooms.id", index=True)
    title: str
    organizer_email: str = Field(index=True)
    start_time: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    end_time: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    status: BookingStatus = Field(default=BookingStatus.confirmed, index=True)
    idempotency_key: Optional[str] = Field(default=None, index=True)
    created_at: datetime = Field(
        default_factory=utcnow, sa_column=Column(DateTime(timezone=True), nullable=False)
    )
    cancelled_at: Optional[datetime] = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )


class IdempotencyRecord(SQLModel, table=True):
    __tablename__ = "idempotency_keys"
    __table_args__ = (
        # CRITICAL: serialization point for retried/concurrent keyed requests
        UniqueConstraint("organizer_email", "idempotency_key", name=IDEMPOTENCY_CONSTRAINT),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    organizer_email: str
    idempotency_key: str
    status: IdempotencyStatus = Field(default=IdempotencyStatus.in_progress)
    booking_id: Optional[int] = Field(default=None, foreign_key="bookings.id")
    created_at: datetime = Field(
        default_factory=utcnow, sa_column=Column(DateTime(timezone=True), nullable=False)
    )


# CRITICAL: Database-level protection against double booking.
# PostgreSQL gets a real exclusion constraint; SQLite (dev/tests) a trigger
# that aborts the insert with the same constraint name.
event.listen(
    SQLModel.metadata,
    "before_create",
    DDL("CREATE EXTENSION IF NOT EXISTS btree_gist").execute_if(dialect="postgresql"),
)
event.listen(
    Booking.__table__,
    "after_create",
    DDL(
        f"ALTER TABLE bookings ADD CONSTRAINT {OVERLAP_CONSTRAINT} "
        "EXCLUDE USING gist (room_id WITH =, tstzrange(start_time, end_time, '[)') WITH &&) "
        "WHERE (status = 'confirmed')"
    ).execute_if(dialect="postgresql"),
)
event.listen(
    Booking.__table__,
    "after_create",
    DDL(
        f"CREATE TRIGGER {OVERLAP_CONSTRAINT} BEFORE INSERT ON bookings "
        "FOR EACH ROW WHEN NEW.status = 'confirmed' "
        f"BEGIN SELECT RAISE(ABORT, '{OVERLAP_CONSTRAINT}') "
        "WHERE EXISTS (SELECT 1 FROM bookings b WHERE b.room_id = NEW.room_id "
        "AND b.status = 'confirmed' AND b.start_time < NEW.end_time "
        "AND NEW.start_time < b.end_time); END"
    ).execute_if(dialect="sqlite"),
)
