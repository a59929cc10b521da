"""settlement.database
=================
Mini-README: Provides SQLAlchemy database connectivity for the settlement core.
Defines the Base declarative class and builds the async engine and session maker on
demand. The FastAPI application owns the engine (stored on ``app.state``) so no
component reaches a module-level connection handle directly.
"""

from collections.abc import AsyncGenerator

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from .config import Settings


class Base(DeclarativeBase):
    """Declarative base class for ORM models."""


def create_engine_and_sessionmaker(
    settings: Settings,
) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """Build the async engine and a session factory bound to it."""

    engine = create_async_engine(settings.database_url, echo=settings.database_echo, future=True)
    session_maker = async_sessionmaker(engine, expire_on_commit=False)
    return engine, session_maker


async def get_db_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Yield a database session for request-scoped use."""

    async with request.app.state.session_maker() as session:
        yield session


async def init_db(engine: AsyncEngine) -> None:
    """Create database tables based on declarative metadata."""

    async with engine.begin() as conn:
        from . import models  # Import inside to ensure metadata is populated.

        await conn.run_sync(models.Base.metadata.create_all)
