"""Engine and session factory construction.

Nothing here is a process-wide singleton: the application factory (or a test)
builds an engine and a session factory and hands them to the components that
need them.
"""

from typing import AsyncGenerator

from fastapi import Request
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from parking_core.db.base import Base


def _install_sqlite_transaction_hooks(engine: AsyncEngine) -> None:
    """Make SQLite honour BEGIN/SAVEPOINT the way a server database does.

    The driver's implicit transaction handling breaks SAVEPOINT, so it is
    switched off and an explicit ``BEGIN IMMEDIATE`` is emitted instead. Writers
    then serialize on the database lock rather than failing late on upgrade.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(database_url: str, echo: bool = False, busy_timeout: float = 5.0) -> AsyncEngine:
    """Create an async engine for the given URL.

    ``busy_timeout`` only applies to SQLite: it bounds how long a connection
    blocks on another writer before failing with "database is locked".
    """
    if database_url.startswith("sqlite"):
        engine = create_async_engine(
            database_url,
            echo=echo,
            connect_args={"timeout": busy_timeout},
        )
        _install_sqlite_transaction_hooks(engine)
        return engine

    return create_async_engine(
        database_url,
        echo=echo,
        pool_pre_ping=True,
        pool_recycle=300,
    )


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def create_schema(engine: AsyncEngine) -> None:
    """Create all tables, constraints and indexes."""
    # Import models so they register on the metadata
    import parking_core.db.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_schema(engine: AsyncEngine) -> None:
    import parking_core.db.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding a session from the application's factory."""
    session_factory: async_sessionmaker = request.app.state.session_factory
    async with session_factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
