"""Async SQLAlchemy engine, session factory, declarative base, and unit of work."""

import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from app.config import settings

_pool_options = {} if settings.async_database_url.startswith("sqlite") else {"pool_size": 10, "max_overflow": 20}

engine = create_async_engine(
    settings.async_database_url,
    echo=settings.debug,
    pool_pre_ping=True,
    **_pool_options,
)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


def utcnow() -> datetime:
    """Current UTC time as a naive datetime (all columns store UTC)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class TimestampMixin:
    """Mixin that adds created_at and updated_at columns."""

    created_at: Mapped[datetime] = mapped_column(default=utcnow, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
    )


class UUIDPrimaryKeyMixin:
    """Mixin that adds a UUID primary key column."""

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)


class UnitOfWork:
    """A transactional scope shared by service calls that must commit together.

    Services receive a ``UnitOfWork`` and only ever ``flush()``; whoever owns
    the unit of work decides when to commit or roll back. Wrap the request
    session to join the request transaction::

        uow = UnitOfWork(db)

    or open a standalone scope (scripts, background jobs)::

        async with UnitOfWork.begin() as uow:
            await check_and_expire_subscriptions(uow)
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def flush(self) -> None:
        await self.session.flush()

    async def commit(self) -> None:
        await self.session.commit()

    async def rollback(self) -> None:
        await self.session.rollback()

    @classmethod
    @asynccontextmanager
    async def begin(
        cls,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
    ) -> AsyncIterator["UnitOfWork"]:
        """Open a session, yield a unit of work, commit on success, roll back on error."""
        factory = session_factory or async_session_factory
        async with factory() as session:
            uow = cls(session)
            try:
                yield uow
                await session.commit()
            except Exception:
                await session.rollback()
                raise


async def get_db() -> AsyncIterator[AsyncSession]:
    """Yield an async database session for FastAPI dependency injection.

    Usage::

        @app.get("/items")
        async def get_items(db: AsyncSession = Depends(get_db)):
            ...
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db() -> None:
    """Create all tables registered on ``Base.metadata``."""
    import app.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
