"""Unit tests for ingestion runs and the raw evidence store."""

import pytest
from uuid6 import uuid7

from evidence_core.core.exceptions import AlreadySealed, EvidenceStorageError, InvalidReference, InvalidStateTransition
from evidence_core.db.enums import IngestionRunStatus
from evidence_core.db.models import IngestionRun, RawObject, Source
from evidence_core.services import IngestionTracker, LocalBlobStore, StewardshipService

pytestmark = pytest.mark.asyncio


class FlakyBlobStore:
    """Blob store that fails a fixed number of writes before succeeding."""

    def __init__(self, failures: int):
        self.failures = failures
        self.attempts = 0
        self.blobs: dict[str, bytes] = {}

    async def put(self, sha256: str, content: bytes) -> str:
        self.attempts += 1
        if self.attempts <= self.failures:
            raise OSError("disk unavailable")
        self.blobs[sha256] = content
        return f"memory://{sha256}"

    async def get(self, uri: str) -> bytes:
        return self.blobs[uri.removeprefix("memory://")]


class TestRunLifecycle:
    """Tests for run start, completion and cancellation."""

    async def test_start_run(self, run: IngestionRun, source: Source) -> None:
        assert run.status == IngestionRunStatus.RUNNING
        assert run.source_id == source.id
        assert run.ended_at is None
        assert run.run_context == {"endpoint": "/rates"}

    async def test_start_run_unknown_source(self, tracker: IngestionTracker) -> None:
        with pytest.raises(InvalidReference):
            await tracker.start_run(uuid7())

    async def test_start_run_for_inactive_source_is_allowed(
        self, db_session, tracker: IngestionTracker, source: Source
    ) -> None:
        await StewardshipService(db_session).deactivate_source(source.id, reason="retired")
        run = await tracker.start_run(source.id)
        assert run.status == IngestionRunStatus.RUNNING

    async def test_complete_seals_once(self, tracker: IngestionTracker, run: IngestionRun) -> None:
        done = await tracker.complete_run(run.id, IngestionRunStatus.SUCCESS, {"pages": 2}, rows_ingested=40)

        assert done.status == IngestionRunStatus.SUCCESS
        assert done.ended_at is not None
        assert done.rows_ingested == 40
        assert done.retry_count == 0

        with pytest.raises(AlreadySealed):
            await tracker.complete_run(run.id, IngestionRunStatus.FAILED)

    async def test_complete_with_running_rejected(self, tracker: IngestionTracker, run: IngestionRun) -> None:
        with pytest.raises(InvalidStateTransition):
            await tracker.complete_run(run.id, IngestionRunStatus.RUNNING)

    async def test_cancel_keeps_raw_objects(self, tracker: IngestionTracker, run: IngestionRun) -> None:
        await tracker.store_raw_object(run.id, b"page-1", "html")

        cancelled = await tracker.cancel_run(run.id, "operator stop", cancelled_by="ops")

        assert cancelled.status == IngestionRunStatus.FAILED
        assert "cancelled" in cancelled.error_summary
        assert len(await tracker.list_raw_objects(run.id)) == 1
        with pytest.raises(AlreadySealed):
            await tracker.cancel_run(run.id, "again")


class TestRawObjects:
    """Tests for content-addressed raw object storage."""

    async def test_same_bytes_stored_once(
        self, tracker: IngestionTracker, run: IngestionRun, blob_store: LocalBlobStore
    ) -> None:
        first = await tracker.store_raw_object(run.id, b'{"rate": 1530}', "json", "application/json")
        second = await tracker.store_raw_object(run.id, b'{"rate": 1530}', "json", "application/json")

        assert first.id == second.id
        assert first.sha256 == RawObject.compute_hash(b'{"rate": 1530}')
        assert first.size_bytes == 14
        assert run.objects_written == 1
        assert await blob_store.get(first.storage_uri) == b'{"rate": 1530}'

    async def test_sealed_run_rejects_new_bytes_but_returns_existing(
        self, tracker: IngestionTracker, run: IngestionRun
    ) -> None:
        stored = await tracker.store_raw_object(run.id, b"a", "csv")
        await tracker.complete_run(run.id, IngestionRunStatus.SUCCESS)

        assert (await tracker.store_raw_object(run.id, b"a", "csv")).id == stored.id
        with pytest.raises(AlreadySealed):
            await tracker.store_raw_object(run.id, b"b", "csv")

    async def test_transient_storage_failure_is_retried(self, db_session, source: Source) -> None:
        blobs = FlakyBlobStore(failures=2)
        tracker = IngestionTracker(db_session, blob_store=blobs, max_attempts=3, retry_max_wait=0)
        run = await tracker.start_run(source.id)

        raw = await tracker.store_raw_object(run.id, b"payload", "json")

        assert blobs.attempts == 3
        assert raw.storage_uri.startswith("memory://")
        assert run.status == IngestionRunStatus.RUNNING
        assert run.retry_count == 2

        done = await tracker.complete_run(run.id, IngestionRunStatus.SUCCESS, retry_count=1)
        assert done.retry_count == 3

    async def test_exhausted_storage_fails_run(self, db_session, source: Source) -> None:
        blobs = FlakyBlobStore(failures=10)
        tracker = IngestionTracker(db_session, blob_store=blobs, max_attempts=2, retry_max_wait=0)
        run = await tracker.start_run(source.id)

        with pytest.raises(EvidenceStorageError):
            await tracker.store_raw_object(run.id, b"payload", "json")

        await db_session.rollback()
        failed = await tracker.get_run(run.id)
        assert failed.status == IngestionRunStatus.FAILED
        assert failed.ended_at is not None
        assert failed.error_context["attempts"] == 2
        assert failed.retry_count == 1
        assert await tracker.list_raw_objects(run.id) == []
