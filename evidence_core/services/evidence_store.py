"""
Ingestion run tracker and evidence store.

Raw fetchers hand (source, bytes, kind) to this module; it records one
IngestionRun per attempt and stores every captured artifact as an
immutable, content-addressed RawObject.

Features:
- Run lifecycle: start, complete (seal), external cancellation
- SHA256 content addressing; re-storing identical bytes under the same run
  returns the existing row
- Bounded retry with random exponential backoff on transient blob-store
  failures; on exhaustion the run is sealed FAILED and the error surfaced
- INGEST ledger entries for source -> run and run -> raw object

The tracker has no timers: whoever detects a timeout calls complete_run
or cancel_run.
"""

import asyncio
import os
import uuid
from pathlib import Path
from typing import Any, Protocol

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import AsyncRetrying, RetryError, retry_if_exception_type, stop_after_attempt, wait_random_exponential

from evidence_core.core.config import settings
from evidence_core.core.exceptions import (
    AlreadySealed,
    EvidenceStorageError,
    InvalidReference,
    InvalidStateTransition,
    NotFound,
)
from evidence_core.core.logging import get_logger
from evidence_core.db.enums import IngestionRunStatus, LedgerAction
from evidence_core.db.models import IngestionRun, RawObject, Source
from evidence_core.services.provenance import ProvenanceLedger, Ref

logger = get_logger(__name__)


# =============================================================================
# Blob Storage
# =============================================================================


class BlobStore(Protocol):
    """Byte storage keyed by content hash."""

    async def put(self, sha256: str, content: bytes) -> str:
        """Store bytes and return their storage URI. Must be idempotent."""
        ...

    async def get(self, uri: str) -> bytes:
        """Read bytes back from a storage URI."""
        ...


class LocalBlobStore:
    """
    Filesystem blob store laid out as <root>/<sha[:2]>/<sha>.

    Writes go to a temporary file first and are renamed into place, so a
    partially written blob is never visible under its final name.
    """

    def __init__(self, root: str | Path | None = None):
        self.root = Path(root or settings.blob_storage_root)

    def path_for(self, sha256: str) -> Path:
        return self.root / sha256[:2] / sha256

    async def put(self, sha256: str, content: bytes) -> str:
        path = self.path_for(sha256)
        await asyncio.to_thread(self._write, path, content)
        return path.as_uri()

    async def get(self, uri: str) -> bytes:
        path = Path(uri.removeprefix("file://"))
        return await asyncio.to_thread(path.read_bytes)

    @staticmethod
    def _write(path: Path, content: bytes) -> None:
        if path.exists():
            return
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")
        tmp.write_bytes(content)
        os.replace(tmp, path)


# =============================================================================
# Ingestion Run Tracker
# =============================================================================


class IngestionTracker:
    """
    Records ingestion attempts and the raw evidence they capture.

    Usage:
        tracker = IngestionTracker(db)
        run = await tracker.start_run(source.id)
        raw = await tracker.store_raw_object(run.id, payload, "json")
        await tracker.complete_run(run.id, IngestionRunStatus.SUCCESS, {"pages": 3})
        await db.commit()
    """

    def __init__(
        self,
        db: AsyncSession,
        blob_store: BlobStore | None = None,
        max_attempts: int | None = None,
        retry_max_wait: float | None = None,
    ):
        """
        Initialize the tracker.

        Args:
            db: Database session
            blob_store: Where raw bytes go (defaults to LocalBlobStore)
            max_attempts: Blob write attempts before the run is failed
            retry_max_wait: Upper bound of the backoff between attempts
        """
        self.db = db
        self.blob_store = blob_store or LocalBlobStore()
        self.max_attempts = max_attempts or settings.storage_max_attempts
        self.retry_max_wait = settings.storage_retry_max_wait if retry_max_wait is None else retry_max_wait
        self.ledger = ProvenanceLedger(db)

    # =========================================================================
    # Run Lifecycle
    # =========================================================================

    async def start_run(self, source_id: uuid.UUID, run_context: dict[str, Any] | None = None) -> IngestionRun:
        """
        Open a new RUNNING ingestion run for a source.

        Raises:
            InvalidReference: If the source does not exist
        """
        source = await self.db.get(Source, source_id)
        if source is None:
            raise InvalidReference(f"Source {source_id} does not exist")
        if not source.active:
            logger.warning("Starting run for inactive source", source_id=str(source_id), src_id=source.src_id)

        run = IngestionRun(source_id=source_id, run_context=run_context or {})
        self.db.add(run)
        await self.db.flush()

        await self.ledger.record(
            LedgerAction.INGEST,
            inputs=[Ref("source", source_id)],
            outputs=[Ref("ingestion_run", run.id)],
            ingestion_run_id=run.id,
            recorded_by="ingestion_tracker",
        )

        logger.info("Ingestion run started", run_id=str(run.id), src_id=source.src_id)
        return run

    async def get_run(self, run_id: uuid.UUID) -> IngestionRun:
        """
        Get a run by id.

        Raises:
            NotFound: If no such run exists
        """
        run = await self.db.get(IngestionRun, run_id)
        if run is None:
            raise NotFound("ingestion_run", run_id)
        return run

    async def complete_run(
        self,
        run_id: uuid.UUID,
        status: IngestionRunStatus,
        metrics: dict[str, Any] | None = None,
        rows_ingested: int | None = None,
        error_summary: str | None = None,
        http_status: int | None = None,
        retry_count: int = 0,
    ) -> IngestionRun:
        """
        Seal a run with its final status.

        `retry_count` adds retries the fetcher made on its side to those
        counted for blob writes.

        Raises:
            NotFound: If the run does not exist
            AlreadySealed: If the run already has an end time
            InvalidStateTransition: If status is RUNNING
        """
        run = await self.get_run(run_id)
        if run.is_sealed:
            raise AlreadySealed(run_id)
        if not status.is_terminal:
            raise InvalidStateTransition(f"Cannot complete run {run_id} with non-terminal status {status.value}")

        run.seal(status)
        run.metrics = metrics
        run.rows_ingested = rows_ingested
        run.http_status = http_status
        run.retry_count += retry_count
        if error_summary:
            run.error_summary = error_summary
        await self.db.flush()

        logger.info(
            "Ingestion run completed",
            run_id=str(run_id),
            status=status.value,
            rows_ingested=rows_ingested,
            objects_written=run.objects_written,
            retry_count=run.retry_count,
        )
        return run

    async def cancel_run(self, run_id: uuid.UUID, reason: str, cancelled_by: str | None = None) -> IngestionRun:
        """
        Record an external cancellation as FAILED.

        Raw objects already written by the run are kept.

        Raises:
            NotFound: If the run does not exist
            AlreadySealed: If the run already has an end time
        """
        run = await self.get_run(run_id)
        if run.is_sealed:
            raise AlreadySealed(run_id)

        run.fail(f"cancelled: {reason}", cancelled_by=cancelled_by)
        await self.db.flush()

        logger.warning("Ingestion run cancelled", run_id=str(run_id), reason=reason, cancelled_by=cancelled_by)
        return run

    # =========================================================================
    # Evidence Store
    # =========================================================================

    async def store_raw_object(
        self,
        run_id: uuid.UUID,
        content: bytes,
        kind: str,
        content_type: str | None = None,
    ) -> RawObject:
        """
        Store raw bytes captured by a run.

        Returns the existing row when the same bytes were already stored
        under this run, even if the run has since been sealed.

        Raises:
            NotFound: If the run does not exist
            AlreadySealed: If the run is sealed and the bytes are new
            EvidenceStorageError: If the blob store kept failing; the run
                is sealed FAILED and that state is committed before raising
        """
        run = await self.get_run(run_id)
        sha256 = RawObject.compute_hash(content)

        existing = await self._find_raw_object(run_id, sha256)
        if existing is not None:
            logger.debug("Raw object already stored", run_id=str(run_id), sha256=sha256)
            return existing

        if run.is_sealed:
            raise AlreadySealed(run_id)

        storage_uri = await self._write_blob(run, sha256, content)

        raw = RawObject.create(
            ingestion_run_id=run_id,
            content=content,
            kind=kind,
            storage_uri=storage_uri,
            content_type=content_type,
        )
        try:
            async with self.db.begin_nested():
                self.db.add(raw)
        except IntegrityError:
            # A concurrent writer stored the same bytes under this run
            existing = await self._find_raw_object(run_id, sha256)
            if existing is None:
                raise
            return existing

        run.objects_written += 1
        await self.ledger.record(
            LedgerAction.INGEST,
            inputs=[Ref("ingestion_run", run_id)],
            outputs=[Ref("raw_object", raw.id)],
            ingestion_run_id=run_id,
            recorded_by="ingestion_tracker",
        )

        logger.info("Raw object stored", run_id=str(run_id), sha256=sha256, size_bytes=raw.size_bytes, kind=kind)
        return raw

    async def list_raw_objects(self, run_id: uuid.UUID) -> list[RawObject]:
        """All raw objects of a run, oldest first."""
        result = await self.db.execute(
            select(RawObject)
            .where(RawObject.ingestion_run_id == run_id)
            .order_by(RawObject.created_at, RawObject.id)
        )
        return list(result.scalars().all())

    async def _find_raw_object(self, run_id: uuid.UUID, sha256: str) -> RawObject | None:
        result = await self.db.execute(
            select(RawObject).where(
                RawObject.ingestion_run_id == run_id,
                RawObject.sha256 == sha256,
            )
        )
        return result.scalar_one_or_none()

    async def _write_blob(self, run: IngestionRun, sha256: str, content: bytes) -> str:
        """Write to the blob store with bounded retries; fail the run on exhaustion."""
        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(OSError),
                stop=stop_after_attempt(self.max_attempts),
                wait=wait_random_exponential(multiplier=0.1, max=self.retry_max_wait),
            ):
                with attempt:
                    if attempt.retry_state.attempt_number > 1:
                        run.retry_count += 1
                        logger.warning(
                            "Retrying blob write",
                            run_id=str(run.id),
                            sha256=sha256,
                            attempt=attempt.retry_state.attempt_number,
                            retry_count=run.retry_count,
                        )
                    return await self.blob_store.put(sha256, content)
        except RetryError as e:
            cause = e.last_attempt.exception()
            run.fail(
                f"Blob storage failed after {self.max_attempts} attempts: {cause}",
                exception=type(cause).__name__,
                attempts=self.max_attempts,
                sha256=sha256,
            )
            # The FAILED mark must survive the caller rolling back on the raise
            await self.db.commit()
            logger.error("Blob storage exhausted, run failed", run_id=str(run.id), sha256=sha256, error=str(cause))
            raise EvidenceStorageError(str(run.error_summary)) from cause
        raise EvidenceStorageError("Blob storage retry loop ended without a result")
