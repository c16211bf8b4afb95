"""
Great Pearl Coffee Finance - Database Configuration

This module handles database connection setup using SQLAlchemy 2.0 async.
"""

from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy import MetaData, event
from sqlalchemy.exc import IntegrityError

from app.config import settings
from app.utils.error_handling import AlreadyProcessedException, ConcurrentUpdateException


# Naming convention for constraints (helps with migrations)
convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s"
}


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    metadata = MetaData(naming_convention=convention)


def _engine_options() -> dict:
    options = {
        "echo": settings.debug and not settings.is_sqlite,  # Log SQL queries in debug mode
        "pool_pre_ping": True,   # Verify connections before use
    }
    # SQLite uses a static/singleton pool that does not accept sizing arguments
    if not settings.is_sqlite:
        options["pool_size"] = settings.database_pool_size
        options["max_overflow"] = settings.database_max_overflow
    return options


# Create async engine
engine = create_async_engine(settings.database_url_async, **_engine_options())

# Create async session factory
async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)

# Used by background tasks and startup hooks outside the request cycle
async_session_factory = async_session_maker


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency for getting async database session.
    Use with FastAPI's Depends().
    """
    async with async_session_maker() as session:
        try:
            yield session
        finally:
            await session.close()


# Alias for backward compatibility
get_db = get_async_session


async def init_db():
    """
    Initialize database - create all tables.
    Use this for development/testing only.
    For production, use Alembic migrations.
    """
    import app.models  # noqa: F401  (register all models on the metadata)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db():
    """Close database connections."""
    await engine.dispose()


def enable_sqlite_savepoints(target_engine) -> None:
    """
    Let SQLAlchemy control BEGIN on SQLite so SAVEPOINTs nest correctly.

    The sqlite3 driver otherwise defers BEGIN until the first DML statement,
    which turns a leading SAVEPOINT into the outermost transaction.
    """
    @event.listens_for(target_engine.sync_engine, "connect")
    def _do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(target_engine.sync_engine, "begin")
    def _do_begin(conn):
        conn.exec_driver_sql("BEGIN")


if settings.is_sqlite:
    enable_sqlite_savepoints(engine)


async def commit_or_conflict(session: AsyncSession, resource_type: str) -> None:
    """
    Commit, translating a lost optimistic lock into a 409.

    Versioned rows (balances, requests, deposits) raise StaleDataError when a
    concurrent writer got there first; the whole transaction is rolled back.
    """
    try:
        await session.commit()
    except StaleDataError as e:
        await session.rollback()
        raise ConcurrentUpdateException(resource_type, original_error=e)


async def flush_or_conflict(
    session: AsyncSession,
    resource_type: str,
    duplicate_message: Optional[str] = None,
) -> None:
    """
    Flush pending changes before side effects such as notifications.

    A lost optimistic lock becomes a 409. When duplicate_message is given,
    a unique-constraint violation becomes AlreadyProcessedException.
    """
    try:
        await session.flush()
    except StaleDataError as e:
        await session.rollback()
        raise ConcurrentUpdateException(resource_type, original_error=e)
    except IntegrityError:
        await session.rollback()
        if duplicate_message is None:
            raise
        raise AlreadyProcessedException(duplicate_message, resource_type)
