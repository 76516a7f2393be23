"""Classified failures raised by the booking core; main.py maps kinds to HTTP status."""

from enum import Enum
from typing import Dict, Optional


class ErrorKind(str, Enum):
    NOT_FOUND = "NotFound"
    INVALID_TIME = "InvalidTime"
    INVALID_RANGE = "InvalidRange"
    INVALID_DURATION = "InvalidDuration"
    OUTSIDE_BUSINESS_HOURS = "OutsideBusinessHours"
    IDEMPOTENCY_IN_PROGRESS = "IdempotencyInProgress"
    OVERLAP_CONFLICT = "OverlapConflict"
    INTERNAL_STORAGE_ERROR = "InternalStorageError"


class BookingError(Exception):
    """Base class for domain/service errors."""

    kind: ErrorKind = ErrorKind.INTERNAL_STORAGE_ERROR
    default_message = "Booking operation failed"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, str]:
        return {"error": self.kind.value, "message": self.message}


class NotFoundError(BookingError):
    kind = ErrorKind.NOT_FOUND
    default_message = "Resource not found"


class InvalidTimeError(BookingError):
    kind = ErrorKind.INVALID_TIME
    default_message = (
        'Invalid time format. Use formats like "2025-12-13T10:00", '
        '"2025-12-13 10:00", "6 AM", "5:30PM", or "17:00"'
    )


class InvalidRangeError(BookingError):
    kind = ErrorKind.INVALID_RANGE
    default_message = "startTime must be before endTime"


class InvalidDurationError(BookingError):
    kind = ErrorKind.INVALID_DURATION
    default_message = "Booking duration is out of bounds"


class OutsideBusinessHoursError(BookingError):
    kind = ErrorKind.OUTSIDE_BUSINESS_HOURS
    default_message = "Bookings allowed Mon-Fri, 08:00-20:00 in room local time"


class IdempotencyInProgressError(BookingError):
    kind = ErrorKind.IDEMPOTENCY_IN_PROGRESS
    default_message = "Idempotent request already in progress"


class OverlapConflictError(BookingError):
    kind = ErrorKind.OVERLAP_CONFLICT
    default_message = "Booking overlaps with existing confirmed booking"


class InternalStorageError(BookingError):
    kind = ErrorKind.INTERNAL_STORAGE_ERROR
    default_message = "Internal storage error"
