"""Shared SQLAlchemy base, engine and session factory for the clinic store."""

from sqlalchemy import MetaData
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from clinic_core.core.config import get_settings

# Deterministic constraint names so unique violations are recognizable in logs
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    metadata = MetaData(naming_convention=NAMING_CONVENTION)


_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


async def create_tables(engine: AsyncEngine) -> None:
    """Create every clinic table that does not exist yet."""
    # Import all models so metadata is populated before create_all
    import clinic_core.db.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def bind_engine(engine: AsyncEngine | None) -> None:
    """Install (or clear, with None) the engine behind get_session_factory()."""
    global _engine, _session_factory

    _engine = engine
    _session_factory = (
        async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        if engine is not None
        else None
    )


async def init_db(url: str | None = None) -> None:
    """Initialize the async engine and session factory, then create tables."""
    if _engine is not None:
        return

    settings = get_settings()
    engine = create_async_engine(url or settings.database_url, echo=settings.debug, pool_pre_ping=True)
    bind_engine(engine)
    await create_tables(engine)


async def close_db() -> None:
    """Dispose of the engine and release all connections."""
    if _engine is not None:
        await _engine.dispose()
    bind_engine(None)


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the configured session factory.

    Raises RuntimeError if init_db() has not been called.
    """
    if _session_factory is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _session_factory
