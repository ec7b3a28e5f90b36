"""Pytest configuration and shared fixtures."""

from collections.abc import AsyncGenerator, Generator
from datetime import date
from pathlib import Path

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from evidence_core.db import Base, get_db
from evidence_core.db.enums import Frequency, RegimeTag, SourceTier
from evidence_core.db.models import IngestionRun, Series, Source
from evidence_core.main import app
from evidence_core.services import (
    IngestionTracker,
    LocalBlobStore,
    MockComplianceClient,
    ObservationStore,
    StewardshipService,
)


@pytest.fixture
def client() -> Generator[TestClient, None, None]:
    """Create a synchronous test client for FastAPI."""
    with TestClient(app) as test_client:
        yield test_client


# =============================================================================
# Database
# =============================================================================


@pytest_asyncio.fixture(scope="function")
async def db_engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """
    A fresh SQLite database per test.

    pysqlite's own transaction handling breaks SAVEPOINT; the listeners hand
    BEGIN back to SQLAlchemy so begin_nested() behaves as on PostgreSQL.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, _connection_record) -> None:
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn) -> None:
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(db_engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for testing."""
    async_session = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    async with async_session() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def async_client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Create an asynchronous test client for FastAPI with DB override."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


# =============================================================================
# Registry and ingestion
# =============================================================================


@pytest.fixture
def blob_store(tmp_path: Path) -> LocalBlobStore:
    """Blob store rooted in the test's temp dir."""
    return LocalBlobStore(tmp_path / "blobs")


@pytest.fixture
def tracker(db_session: AsyncSession, blob_store: LocalBlobStore) -> IngestionTracker:
    return IngestionTracker(db_session, blob_store=blob_store, retry_max_wait=0)


@pytest.fixture
def store(db_session: AsyncSession) -> ObservationStore:
    return ObservationStore(db_session, retry_max_wait=0)


@pytest_asyncio.fixture
async def source(db_session: AsyncSession) -> Source:
    """A T1 source."""
    return await StewardshipService(db_session, actor="test").register_source(
        "SRC-001", "Central Bank of Yemen - Aden", tier=SourceTier.T1, cadence=Frequency.DAILY
    )


@pytest_asyncio.fixture
async def other_source(db_session: AsyncSession) -> Source:
    """A second T1 source."""
    return await StewardshipService(db_session, actor="test").register_source(
        "SRC-002", "Central Bank of Yemen - Sanaa", tier=SourceTier.T1, cadence=Frequency.DAILY
    )


@pytest_asyncio.fixture
async def run(tracker: IngestionTracker, source: Source) -> IngestionRun:
    return await tracker.start_run(source.id, {"endpoint": "/rates"})


@pytest_asyncio.fixture
async def series(store: ObservationStore, source: Source) -> Series:
    return await store.get_or_create_series(
        "FX_RATE_PARALLEL",
        "YE",
        RegimeTag.IRG_ADEN,
        source.id,
        frequency=Frequency.DAILY,
        unit="YER/USD",
    )


# =============================================================================
# Content
# =============================================================================


@pytest.fixture
def compliance() -> MockComplianceClient:
    """A compliance client that flags nothing unless told to."""
    return MockComplianceClient(flagged_terms={"incite": 0.9, "rumour": 0.3})


@pytest.fixture
def obs_date() -> date:
    return date(2024, 1, 1)
