"""
Declarative base, engine and shared column mixins.

Every model inherits `Base` and takes its primary key from `UUIDMixin`.
Immutable record types (raw objects, observations, ledger entries, agent
runs) add `CreatedAtMixin` and the `append_only` decorator; mutable ones
(sources, series, content items) add `TimestampMixin`.
"""

import enum
import re
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import JSON, DateTime, MetaData, Uuid, event, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncAttrs, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, declared_attr, mapped_column
from uuid6 import uuid7

from evidence_core.core.config import settings
from evidence_core.core.exceptions import ImmutableRecordError

# Constraint names must match between the models and the Alembic migrations
NAMING_CONVENTION: dict[str, str] = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

metadata = MetaData(naming_convention=NAMING_CONVENTION)

# JSONB on PostgreSQL, plain JSON on SQLite
JSONType = JSON().with_variant(JSONB(), "postgresql")

engine = create_async_engine(
    settings.db_url,
    echo=settings.is_development,
    pool_pre_ping=True,
    pool_size=5,
    max_overflow=10,
)

# Services read attributes after commit and flush explicitly
AsyncSessionLocal = async_sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _json_safe(value: Any) -> Any:
    if isinstance(value, (uuid.UUID, Decimal)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, enum.Enum):
        return value.value
    return value


class Base(AsyncAttrs, DeclarativeBase):
    """
    Base class for all models.

    Table names default to the pluralized snake_case class name
    (IngestionRun -> ingestion_runs, ApprovalPolicy -> approval_policies).
    """

    metadata = metadata
    type_annotation_map = {uuid.UUID: Uuid(as_uuid=True)}

    __name__: str

    @declared_attr.directive
    def __tablename__(cls) -> str:
        name = _CAMEL_BOUNDARY.sub("_", cls.__name__).lower()
        if name.endswith("y"):
            return f"{name[:-1]}ies"
        return f"{name}es" if name.endswith("s") else f"{name}s"

    def to_dict(self) -> dict[str, Any]:
        """Column values as JSON-safe primitives, for audit snapshots."""
        return {column.key: _json_safe(getattr(self, column.key)) for column in self.__table__.columns}


class UUIDMixin:
    # UUID7 ids are time-ordered, so id order breaks created_at ties
    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid7, sort_order=-100)


class CreatedAtMixin:
    # Set client-side so the value is readable right after flush under AsyncSession
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False, sort_order=100
    )


class TimestampMixin(CreatedAtMixin):
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        server_default=func.now(),
        nullable=False,
        sort_order=101,
    )


def append_only(cls: type) -> type:
    """
    Class decorator that forbids ORM UPDATE and DELETE of a mapped class.

    Corrections are new rows; database-level cascades (e.g. deleting a
    Series) are not affected.
    """

    def _refuse_update(_mapper, _connection, target) -> None:
        raise ImmutableRecordError(f"{type(target).__name__} {target.id} is append-only and cannot be updated")

    def _refuse_delete(_mapper, _connection, target) -> None:
        raise ImmutableRecordError(f"{type(target).__name__} {target.id} is append-only and cannot be deleted")

    event.listen(cls, "before_update", _refuse_update)
    event.listen(cls, "before_delete", _refuse_delete)
    return cls


async def dispose_engine() -> None:
    """Close pooled connections; called on API shutdown."""
    await engine.dispose()
