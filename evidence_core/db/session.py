"""
Session helpers.

Services only flush; whoever opens the session decides when to commit.
Endpoints take a request-scoped session from `get_db` and commit after the
service call returns. Scripts and workers open one with `get_db_context`
and wrap their writes in `transaction`:

    async with get_db_context() as db:
        async with transaction(db):
            await IngestionTracker(db).start_run(source_id)
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncSession

from evidence_core.db.base import AsyncSessionLocal


@asynccontextmanager
async def get_db_context() -> AsyncGenerator[AsyncSession, None]:
    """Open a session; anything left uncommitted is rolled back on exit."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            if session.in_transaction():
                await session.rollback()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency; a request that raises never commits its flushes."""
    async with get_db_context() as session:
        yield session


@asynccontextmanager
async def transaction(session: AsyncSession) -> AsyncGenerator[AsyncSession, None]:
    """Commit on success, roll back and re-raise otherwise."""
    try:
        yield session
    except Exception:
        await session.rollback()
        raise
    await session.commit()
