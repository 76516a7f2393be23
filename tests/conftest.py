from datetime import datetime, timezone

import pytest
import pytest_asyncio

from database import build_engine, build_session_factory, init_db
from models import Room
from schemas import BookingCreate

# Tuesday
TUESDAY = "2025-12-16"
SATURDAY = "2025-12-20"
NOW = datetime(2025, 12, 16, 6, 0, tzinfo=timezone.utc)


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'booking.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


async def add_room(session_factory, name="Atlas", timezone_name="UTC", **kwargs):
    async with session_factory() as session:
        async with session.begin():
            room = Room(
                name=name,
                capacity=kwargs.get("capacity", 8),
                floor=kwargs.get("floor", 2),
                amenities=kwargs.get("amenities", ["tv", "whiteboard"]),
                timezone=timezone_name,
            )
            session.add(room)
    return room


@pytest_asyncio.fixture
async def room(session_factory):
    return await add_room(session_factory)


def make_request(room_id, start="09:00", end="10:00", day=TUESDAY, **overrides) -> BookingCreate:
    data = {
        "room_id": room_id,
        "title": "Planning",
        "organizer_email": "alice@example.com",
        "start_time": f"{day}T{start}",
        "end_time": f"{day}T{end}",
    }
    data.update(overrides)
    return BookingCreate(**data)
