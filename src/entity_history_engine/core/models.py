"""SQLAlchemy ORM models for the entity history engine.

All models use the `hist_` table prefix.

Models:
- ChangeEventRecord  — IMMUTABLE change event log (append-only)
- ReadStatusRecord   — per (entity, principal) last-viewed timestamp
- Item               — sample tracked entity exposed by the API

IMPORTANT: ChangeEventRecord rows are written ONLY via ChangesetRepository.append()
and never updated or deleted.
"""

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Index, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from entity_history_engine.database import Base, UTCDateTime

_JSON = JSON().with_variant(JSONB(), "postgresql")


class ChangeEventRecord(Base):
    """IMMUTABLE field-level change event of a tracked entity.

    Events of one entity are totally ordered by (created_at, sequence). The
    unique (entity_name, entity_id, sequence) constraint makes the second of two
    concurrent writers of the same entity fail instead of interleaving.

    Attributes:
        id: Event UUID.
        entity_name: Logical type name of the tracked entity.
        entity_id: String form of the entity key.
        action: Create | Update | Delete | Restore | Read.
        field_changes: New values of the changed fields only (JSON).
        created_by: Principal that caused the change.
        created_at: UTC timestamp of the change.
        sequence: Per-entity monotonic sequence number.
    """

    __tablename__ = "hist_change_events"
    __table_args__ = (
        UniqueConstraint("entity_name", "entity_id", "sequence", name="uq_hist_change_events_sequence"),
        Index("ix_hist_change_events_order", "entity_name", "entity_id", "created_at", "sequence"),
        Index("ix_hist_change_events_principal", "entity_name", "created_by", "action"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    entity_name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Logical type name of the tracked entity",
    )
    entity_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="String form of the entity key",
    )
    action: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        comment="Create | Update | Delete | Restore | Read",
    )
    field_changes: Mapped[dict[str, Any]] = mapped_column(
        _JSON,
        nullable=False,
        default=dict,
        comment="New values of the changed fields only",
    )
    created_by: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Principal that caused the change",
    )
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        comment="UTC timestamp of the change",
    )
    sequence: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Per-entity monotonic sequence number, starting at 1",
    )


class ReadStatusRecord(Base):
    """When a principal last viewed an entity.

    Independent of the change event log: created on first view, overwritten on
    every later view, removed by mark-unread.
    """

    __tablename__ = "hist_read_statuses"

    entity_name: Mapped[str] = mapped_column(String(255), primary_key=True)
    entity_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    principal: Mapped[str] = mapped_column(String(255), primary_key=True)
    last_viewed_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


class Item(Base):
    """Sample tracked entity.

    Attributes:
        id: Item UUID.
        name: Display name.
        value: Free-form value.
        description: Optional longer description.
    """

    __tablename__ = "hist_items"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    value: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
