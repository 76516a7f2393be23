from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

from models import Booking, BookingStatus
from time_parser import ensure_utc


class CamelModel(BaseModel):
    # camelCase on the wire, snake_case accepted on input
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# Pydantic Schemas for Request/Response
class RoomCreate(CamelModel):
    name: str = Field(min_length=1)
    capacity: int = Field(ge=1)
    floor: Optional[int] = None
    amenities: List[str] = Field(default_factory=list)
    timezone: str = "UTC"


class RoomRead(CamelModel):
    id: int
    name: str
    capacity: int
    floor: Optional[int]
    amenities: List[str]
    timezone: str


class BookingCreate(CamelModel):
    room_id: int
    title: str = Field(min_length=1)
    organizer_email: EmailStr
    # Any non-empty string; semantic parsing happens in the booking core
    start_time: str = Field(min_length=1)
    end_time: str = Field(min_length=1)
    status: BookingStatus = BookingStatus.confirmed
    idempotency_key: Optional[str] = Field(default=None, min_length=1)


class BookingRead(CamelModel):
    id: int
    room_id: int
    title: str
    organizer_email: str
    start_time: datetime
    end_time: datetime
    status: BookingStatus
    idempotency_key: Optional[str]

    @field_validator("start_time", "end_time")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @classmethod
    def from_booking(cls, booking: Booking) -> "BookingRead":
        return cls.model_validate(booking)


class BookingPage(CamelModel):
    items: List[BookingRead]
    total: int
    limit: int
    offset: int


class RoomUtilization(CamelModel):
    room_id: int
    room_name: str
    total_booking_hours: float
    utilization_percent: float
