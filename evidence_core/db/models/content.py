"""
Governed content models.

A ContentItem is a publishable artifact (report, update, narrative) that
must pass the approval pipeline before it becomes visible. Its
ContentEvidence rows are the claims it makes and what each claim cites.

Key features:
- Bilingual title/body (EN/AR), visibility tier, lifecycle status
- evidence_set_hash frozen at publish time
- Claims cite sources, observations, documents (by id and page) or URLs
"""

import hashlib
import uuid
from datetime import date, datetime

from sqlalchemy import Date, DateTime, ForeignKey, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from evidence_core.db.base import Base, TimestampMixin, UUIDMixin
from evidence_core.db.enums import ContentStatus, ContentVisibility, LangCode


class ContentItem(UUIDMixin, TimestampMixin, Base):
    """
    A governed publishable artifact.

    Attributes:
        id: UUID7 primary key
        content_type: Policy key ("daily_update", "monthly_report", ...)
        title_en / title_ar / body_en / body_ar: Bilingual content
        visibility: PUBLIC, PREMIUM or INTERNAL
        status: DRAFT -> UNDER_REVIEW -> PUBLISHED (-> RETRACTED / ARCHIVED)
        period_start / period_end: Period the content covers
        evidence_set_hash: Hash of the cited evidence set, set on publish
        published_at: When the item was published
        created_by: Author label
        review_round: Submission counter; agent runs of earlier rounds
            no longer count toward the pipeline

    Relationships:
        evidence: Claims with citations (owned, deleted with the item)
    """

    content_type: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        index=True,
        comment="Approval policy key",
    )

    # === Bilingual Content ===
    title_en: Mapped[str | None] = mapped_column(String(500), nullable=True)

    title_ar: Mapped[str | None] = mapped_column(String(500), nullable=True)

    body_en: Mapped[str | None] = mapped_column(Text, nullable=True)

    body_ar: Mapped[str | None] = mapped_column(Text, nullable=True)

    # === Governance ===
    visibility: Mapped[ContentVisibility] = mapped_column(
        nullable=False,
        default=ContentVisibility.PUBLIC,
    )

    status: Mapped[ContentStatus] = mapped_column(
        nullable=False,
        default=ContentStatus.DRAFT,
        index=True,
    )

    period_start: Mapped[date | None] = mapped_column(Date, nullable=True)

    period_end: Mapped[date | None] = mapped_column(Date, nullable=True)

    evidence_set_hash: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        comment="SHA256 of the cited evidence set at publish time",
    )

    published_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_by: Mapped[str | None] = mapped_column(String(100), nullable=True)

    review_round: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Incremented on every submission for review",
    )

    # === Relationships ===
    evidence: Mapped[list["ContentEvidence"]] = relationship(
        "ContentEvidence",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="ContentEvidence.id",
    )

    def __repr__(self) -> str:
        return f"<ContentItem(id={self.id}, type={self.content_type}, status={self.status.value})>"

    def text_for(self, lang: LangCode) -> tuple[str | None, str | None]:
        """Return (title, body) in one language."""
        if lang == LangCode.AR:
            return self.title_ar, self.body_ar
        return self.title_en, self.body_en


class ContentEvidence(UUIDMixin, TimestampMixin, Base):
    """
    One claim made by a content item, with its citation targets.

    A claim counts as cited when at least one of source_id, observation_id,
    document_id or url is set.

    Attributes:
        content_item_id: Owning content item
        claim_text: The claim as written
        lang: Language of the claim
        source_id: Cited source
        observation_id: Cited observation
        document_id: Cited document (supplied by the document collaborator)
        page_ref: Page reference inside the document
        url: Cited URL
        extracted_quote: Supporting quote
    """

    # Explicit table name (evidence is uncountable)
    __tablename__ = "content_evidence"

    content_item_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("content_items.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    claim_text: Mapped[str] = mapped_column(Text, nullable=False)

    lang: Mapped[LangCode] = mapped_column(nullable=False, default=LangCode.EN)

    # === Citation Targets ===
    source_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("sources.id", ondelete="RESTRICT"),
        nullable=True,
    )

    observation_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("observations.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )

    document_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        nullable=True,
        comment="Document id owned by the document collaborator",
    )

    page_ref: Mapped[str | None] = mapped_column(String(50), nullable=True)

    url: Mapped[str | None] = mapped_column(String(2000), nullable=True)

    extracted_quote: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        preview = self.claim_text[:50] + "..." if len(self.claim_text) > 50 else self.claim_text
        return f"<ContentEvidence(item={self.content_item_id}, claim={preview!r})>"

    @property
    def is_cited(self) -> bool:
        """Check if the claim has at least one citation reference."""
        return any(
            target is not None
            for target in (self.source_id, self.observation_id, self.document_id, self.url)
        )


def compute_evidence_set_hash(evidence: list[ContentEvidence]) -> str:
    """
    Hash the cited evidence set of a content item.

    Order-independent: citation tuples are sorted before hashing.
    """
    parts = sorted(
        "|".join(
            str(value) if value is not None else ""
            for value in (ev.source_id, ev.observation_id, ev.document_id, ev.page_ref, ev.url)
        )
        for ev in evidence
        if ev.is_cited
    )
    return hashlib.sha256("\n".join(parts).encode("utf-8")).hexdigest()


# === Indexes ===
Index("ix_content_items_type_status", ContentItem.content_type, ContentItem.status)
