"""
Database Connection and Session Management.

This module sets up the asynchronous SQLAlchemy engine and session factory
shared by the execution repositories.
"""

from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession

from questforge_ai.execution.repos.sql import create_all, create_engine, create_sessionmaker
from questforge_ai.server.core.config import settings

"""
engine:
    The global SQLAlchemy AsyncEngine instance, built from ``DATABASE_URL``.
"""
engine = create_engine(settings.database_url, echo=settings.database_echo)

"""
async_session_maker:
    A global factory for new AsyncSession instances bound to ``engine``.
"""
async_session_maker = create_sessionmaker(engine)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency generator for database sessions.

    Yields:
        AsyncSession: An asynchronous SQLAlchemy session.
    """
    async with async_session_maker() as session:
        yield session


async def init_db() -> None:
    """Create the ``qf_`` tables if they do not exist."""
    await create_all(engine)
