"""
Ingestion run and raw object models.

An IngestionRun is one attempt to pull from a Source; RawObjects are the
immutable artifacts that attempt captured.

Key features:
- Run lifecycle (RUNNING -> SUCCESS / PARTIAL / FAILED), sealed by ended_at
- Error capture with diagnostic context and HTTP status
- Content-addressed raw objects, idempotent per (run, sha256)
- Raw objects of failed runs are retained as evidence
"""

import hashlib
import uuid
from datetime import datetime

from sqlalchemy import BigInteger, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from evidence_core.db.base import Base, CreatedAtMixin, JSONType, UUIDMixin, append_only, utcnow
from evidence_core.db.enums import IngestionRunStatus


class IngestionRun(UUIDMixin, Base):
    """
    One attempt to pull from a Source at a point in time.

    Attributes:
        id: UUID7 primary key
        source_id: The source being pulled
        status: RUNNING until sealed
        started_at: When the attempt began
        ended_at: When the attempt was sealed (NULL while running)
        retry_count: Fetcher-side retries within this attempt
        rows_ingested: Observations produced, if reported
        objects_written: Raw objects captured by this run
        error_summary: Human-readable error detail
        error_context: Diagnostic details (exception type, attempts)
        http_status: Last HTTP status seen by the fetcher
        metrics: Fetcher-reported metrics
        run_context: Parameters the run was started with

    Lifecycle:
        RUNNING -> SUCCESS
               |-> PARTIAL
               |-> FAILED

    A run is sealed once ended_at is set; sealing is one-way.
    """

    # === Foreign Keys ===
    source_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("sources.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
        comment="The source this run pulls from",
    )

    # === Status ===
    status: Mapped[IngestionRunStatus] = mapped_column(
        nullable=False,
        default=IngestionRunStatus.RUNNING,
        comment="Current run state",
    )

    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        comment="When the attempt began",
    )

    ended_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="When the attempt was sealed",
    )

    # === Counters ===
    retry_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    rows_ingested: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
        comment="Observations produced by this run",
    )

    objects_written: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Raw objects captured by this run",
    )

    # === Error Tracking ===
    error_summary: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
        comment="Error detail if the run failed",
    )

    error_context: Mapped[dict | None] = mapped_column(
        JSONType,
        nullable=True,
        comment="Diagnostic details: {exception, attempts, cancelled_by}",
    )

    http_status: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
    )

    # === Run Data ===
    metrics: Mapped[dict | None] = mapped_column(
        JSONType,
        nullable=True,
        comment="Fetcher-reported metrics",
    )

    run_context: Mapped[dict | None] = mapped_column(
        JSONType,
        nullable=True,
        default=dict,
        comment="Parameters the run was started with",
    )

    def __repr__(self) -> str:
        return f"<IngestionRun(id={self.id}, source={self.source_id}, status={self.status.value})>"

    # === Status Management ===
    def seal(self, status: IngestionRunStatus) -> None:
        """Set the final status and end time."""
        self.status = status
        self.ended_at = utcnow()

    def fail(self, error: str, **context) -> None:
        """
        Seal the run as FAILED with error details.

        Args:
            error: Human-readable error summary
            **context: Diagnostic details stored in error_context
        """
        self.seal(IngestionRunStatus.FAILED)
        self.error_summary = error
        self.error_context = context or None

    # === Properties ===
    @property
    def is_sealed(self) -> bool:
        """Check if the run has an end time."""
        return self.ended_at is not None


@append_only
class RawObject(UUIDMixin, CreatedAtMixin, Base):
    """
    An immutable artifact captured by an ingestion run.

    Attributes:
        id: UUID7 primary key
        ingestion_run_id: The run that observed these bytes
        sha256: Content hash (64 hex chars)
        storage_uri: Where the blob store put the bytes
        size_bytes: Byte length
        kind: Content kind ("json", "csv", "pdf", "html", ...)
        content_type: Optional MIME type

    Constraints:
        - (ingestion_run_id, sha256) is unique: re-storing identical bytes
          under the same run returns the existing row, while the same bytes
          under another run are a distinct row.
    """

    # === Foreign Keys ===
    ingestion_run_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("ingestion_runs.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
        comment="The run that captured this object",
    )

    # === Core Fields ===
    sha256: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        index=True,
        comment="SHA256 of the raw bytes",
    )

    storage_uri: Mapped[str] = mapped_column(
        String(1000),
        nullable=False,
        comment="Blob location",
    )

    size_bytes: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
    )

    kind: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        comment="Content kind (json, csv, pdf, html, ...)",
    )

    content_type: Mapped[str | None] = mapped_column(
        String(200),
        nullable=True,
    )

    # === Table Constraints ===
    __table_args__ = (
        UniqueConstraint(
            "ingestion_run_id",
            "sha256",
            name="uq_raw_objects_run_sha256",
        ),
    )

    def __repr__(self) -> str:
        return f"<RawObject(run={self.ingestion_run_id}, sha256={self.sha256[:12]}, kind={self.kind})>"

    @staticmethod
    def compute_hash(content: bytes) -> str:
        """
        Compute the SHA256 content hash of raw bytes.

        Returns:
            64-character hex string
        """
        return hashlib.sha256(content).hexdigest()

    @classmethod
    def create(
        cls,
        ingestion_run_id: uuid.UUID,
        content: bytes,
        kind: str,
        storage_uri: str,
        content_type: str | None = None,
    ) -> "RawObject":
        """
        Factory method to create a RawObject with auto-computed hash and size.

        Args:
            ingestion_run_id: ID of the capturing run
            content: The raw bytes
            kind: Content kind
            storage_uri: Blob location returned by the blob store
            content_type: Optional MIME type

        Returns:
            New RawObject instance
        """
        return cls(
            ingestion_run_id=ingestion_run_id,
            sha256=cls.compute_hash(content),
            storage_uri=storage_uri,
            size_bytes=len(content),
            kind=kind,
            content_type=content_type,
        )


# === Indexes ===
Index("ix_ingestion_runs_source_started", IngestionRun.source_id, IngestionRun.started_at.desc())
Index("ix_ingestion_runs_status_started", IngestionRun.status, IngestionRun.started_at)
