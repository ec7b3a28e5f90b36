"""
Stewardship audit trail.

Append-only records of source edits, policy edits and content status
changes, each with snapshots of the row before and after.
"""

import uuid
from enum import Enum

from sqlalchemy import Index, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from evidence_core.db.base import Base, CreatedAtMixin, JSONType, UUIDMixin, append_only


class AuditAction(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DEACTIVATE = "DEACTIVATE"
    STATUS_CHANGE = "STATUS_CHANGE"


@append_only
class AuditLog(UUIDMixin, CreatedAtMixin, Base):
    """
    One change to a mutable record.

    `old_data` is empty for CREATE. `record_id` is not a foreign key, so the
    trail of a source or policy outlives the row it describes.
    """

    table_name: Mapped[str] = mapped_column(String(100), nullable=False, comment="Name of the affected table")
    record_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), nullable=False, comment="UUID of the affected record"
    )
    action: Mapped[str] = mapped_column(
        String(20), nullable=False, comment="Type of action (CREATE, UPDATE, DEACTIVATE, STATUS_CHANGE)"
    )
    actor: Mapped[str | None] = mapped_column(String(100), comment="Who performed the action")
    old_data: Mapped[dict | None] = mapped_column(JSONType, comment="Record state before the action")
    new_data: Mapped[dict | None] = mapped_column(JSONType, comment="Record state after the action")
    reason: Mapped[str | None] = mapped_column(Text, comment="Optional context for why this action occurred")

    def __repr__(self) -> str:
        return f"<AuditLog({self.action} {self.table_name}/{self.record_id})>"

    @classmethod
    def create_insert(
        cls,
        table_name: str,
        record_id: uuid.UUID,
        new_data: dict,
        actor: str | None = None,
        reason: str | None = None,
    ) -> "AuditLog":
        return cls(
            table_name=table_name,
            record_id=record_id,
            action=AuditAction.CREATE.value,
            actor=actor,
            new_data=new_data,
            reason=reason,
        )

    @classmethod
    def create_update(
        cls,
        table_name: str,
        record_id: uuid.UUID,
        old_data: dict,
        new_data: dict,
        actor: str | None = None,
        reason: str | None = None,
        action: AuditAction = AuditAction.UPDATE,
    ) -> "AuditLog":
        """Record a change; `action` narrows UPDATE to DEACTIVATE or STATUS_CHANGE."""
        return cls(
            table_name=table_name,
            record_id=record_id,
            action=action.value,
            actor=actor,
            old_data=old_data,
            new_data=new_data,
            reason=reason,
        )


Index("ix_audit_logs_table_record", AuditLog.table_name, AuditLog.record_id)
Index("ix_audit_logs_created_at", AuditLog.created_at.desc())
