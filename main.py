import logging
from typing import List, Optional

from fastapi import Depends, FastAPI, Header, Query, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

import bookings
import config
import reports
from database import dispose_engine, get_session, init_db
from errors import BookingError, ErrorKind
from models import Room
from schemas import BookingCreate, BookingPage, BookingRead, RoomCreate, RoomRead, RoomUtilization
from time_parser import resolve_timezone

logger = logging.getLogger(__name__)

app = FastAPI(title="Meeting Room Booking System")

# Transport status for each error kind
STATUS_BY_KIND = {
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.INVALID_TIME: status.HTTP_400_BAD_REQUEST,
    ErrorKind.INVALID_RANGE: status.HTTP_400_BAD_REQUEST,
    ErrorKind.INVALID_DURATION: status.HTTP_400_BAD_REQUEST,
    ErrorKind.OUTSIDE_BUSINESS_HOURS: status.HTTP_400_BAD_REQUEST,
    ErrorKind.IDEMPOTENCY_IN_PROGRESS: status.HTTP_409_CONFLICT,
    ErrorKind.OVERLAP_CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.INTERNAL_STORAGE_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


@app.on_event("startup")
async def on_startup():
    config.configure_logging()
    await init_db()


@app.on_event("shutdown")
async def on_shutdown():
    await dispose_engine()


@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError) -> JSONResponse:
    status_code = STATUS_BY_KIND.get(exc.kind, status.HTTP_500_INTERNAL_SERVER_ERROR)
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=status_code, content=exc.to_dict())


# --- Rooms ---
@app.post("/rooms", response_model=RoomRead, status_code=status.HTTP_201_CREATED)
async def create_room(room_data: RoomCreate, session: AsyncSession = Depends(get_session)):
    if resolve_timezone(room_data.timezone) is None:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "InvalidTimezone", "message": f"Unknown timezone {room_data.timezone!r}"},
        )

    async with session.begin():
        # Room names are unique case-insensitively
        existing = await session.execute(
            select(Room.id).where(func.lower(Room.name) == room_data.name.lower())
        )
        if existing.first() is not None:
            return JSONResponse(
                status_code=status.HTTP_400_BAD_REQUEST,
                content={"error": "DuplicateRoom", "message": "Room name must be unique (case-insensitive)"},
            )
        room = Room(
            name=room_data.name,
            capacity=room_data.capacity,
            floor=room_data.floor,
            amenities=list(room_data.amenities),
            timezone=room_data.timezone,
        )
        session.add(room)
    return RoomRead.model_validate(room)


@app.get("/rooms", response_model=List[RoomRead])
async def list_rooms(
    min_capacity: Optional[int] = Query(default=None, alias="minCapacity", ge=1),
    amenity: Optional[str] = None,
    session: AsyncSession = Depends(get_session),
):
    statement = select(Room).order_by(Room.id)
    if min_capacity is not None:
        statement = statement.where(Room.capacity >= min_capacity)
    result = await session.execute(statement)
    rooms = result.scalars().all()
    # JSON amenities are filtered here to stay portable across backends
    if amenity:
        rooms = [room for room in rooms if amenity in room.amenities]
    return [RoomRead.model_validate(room) for room in rooms]


# --- Bookings ---
@app.post("/bookings", response_model=BookingRead, status_code=status.HTTP_201_CREATED)
async def create_booking(
    booking_data: BookingCreate,
    response: Response,
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
    session: AsyncSession = Depends(get_session),
):
    result = await bookings.create_booking(session, booking_data, idempotency_key=idempotency_key)
    if result.replayed:
        response.status_code = status.HTTP_200_OK
    return BookingRead.from_booking(result.booking)


@app.get("/bookings", response_model=BookingPage)
async def list_bookings(
    room_id: Optional[int] = Query(default=None, alias="roomId"),
    from_: Optional[str] = Query(default=None, alias="from"),
    to: Optional[str] = None,
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    session: AsyncSession = Depends(get_session),
):
    items, total = await bookings.list_bookings(
        session, room_id=room_id, from_raw=from_, to_raw=to, limit=limit, offset=offset
    )
    return BookingPage(
        items=[BookingRead.from_booking(b) for b in items], total=total, limit=limit, offset=offset
    )


@app.post("/bookings/{booking_id}/cancel", response_model=BookingRead)
async def cancel_booking(booking_id: int, session: AsyncSession = Depends(get_session)):
    booking = await bookings.cancel_booking(session, booking_id)
    return BookingRead.from_booking(booking)


# --- Reports ---
@app.get("/reports/room-utilization", response_model=List[RoomUtilization])
async def room_utilization(
    from_: Optional[str] = Query(default=None, alias="from"),
    to: Optional[str] = None,
    session: AsyncSession = Depends(get_session),
):
    return await reports.room_utilization(session, from_, to)


app.add_middleware(
    CORSMiddleware,
    allow_origins=config.cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
