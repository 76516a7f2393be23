import logging
from typing import AsyncIterator, Optional

from sqlalchemy import event
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

import config
import models  # noqa: F401  registers tables and storage constraints on the metadata

logger = logging.getLogger(__name__)

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker] = None


def _serialize_sqlite_writers(engine: AsyncEngine) -> None:
    # aiosqlite's implicit BEGIN breaks SAVEPOINT; emit our own, taking the
    # write lock up front so concurrent transactions queue in the engine.
    @event.listens_for(engine.sync_engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def constraint_violated(exc: IntegrityError, name: str, *hints: str) -> bool:
    # SQLite names the overlap trigger but only the columns on UNIQUE failures
    orig = exc.orig
    if getattr(orig, "constraint_name", None) == name:
        return True
    message = str(orig)
    return name in message or any(hint in message for hint in hints)


def build_engine(url: str, echo: bool = False) -> AsyncEngine:
    engine = create_async_engine(url, echo=echo, future=True)
    if engine.dialect.name == "sqlite":
        _serialize_sqlite_writers(engine)
    return engine


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


def get_engine() -> AsyncEngine:
    global _engine, _session_factory
    if _engine is None:
        _engine = build_engine(config.get_database_url(), echo=config.sql_echo())
        _session_factory = build_session_factory(_engine)
    return _engine


async def init_db(engine: Optional[AsyncEngine] = None) -> None:
    engine = engine or get_engine()
    async with engine.begin() as conn:
        # This creates the tables if they don't exist
        await conn.run_sync(SQLModel.metadata.create_all)
    logger.info("Database schema ready (%s)", engine.dialect.name)


async def dispose_engine() -> None:
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None


async def get_session() -> AsyncIterator[AsyncSession]:
    get_engine()
    async with _session_factory() as session:
        yield session
