"""Change event schema and changeset shapes for the entity history engine.

Every mutation of a tracked entity is captured as an immutable ChangeEvent
carrying only the fields whose value differs from the prior version. Events
for one entity are totally ordered by (created_at, sequence).
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ChangeAction(StrEnum):
    """The nature of a recorded change."""

    CREATE = "Create"
    UPDATE = "Update"
    DELETE = "Delete"
    RESTORE = "Restore"
    READ = "Read"


# Actions that alter entity state. Read events never do.
MATERIAL_ACTIONS: frozenset[ChangeAction] = frozenset(
    {ChangeAction.CREATE, ChangeAction.UPDATE, ChangeAction.DELETE, ChangeAction.RESTORE}
)


class DeltaMode(StrEnum):
    """Shape of a delta response."""

    SNAPSHOT = "Snapshot"
    DIFFERENTIAL = "Differential"


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    """Normalize a datetime to aware UTC.

    Args:
        value: A datetime. If naive, treated as UTC.

    Returns:
        The same instant as an aware UTC datetime.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class ChangeEvent(BaseModel):
    """Immutable record of one change to a tracked entity.

    Attributes:
        id: Globally unique event identifier.
        entity_name: Logical type name of the tracked entity.
        entity_id: String form of the affected entity's key.
        action: The nature of the change.
        field_changes: New values of the fields that changed. None marks a
            field whose value was removed.
        created_by: Principal that caused the change.
        created_at: Aware UTC timestamp of the change.
        sequence: Per-entity monotonic sequence number, starting at 1.
    """

    model_config = ConfigDict(frozen=True)

    id: uuid.UUID = Field(default_factory=uuid.uuid4, description="Unique event identifier")
    entity_name: str = Field(..., description="Logical type name of the tracked entity")
    entity_id: str = Field(..., description="Key of the affected entity")
    action: ChangeAction = Field(..., description="The nature of the change")
    field_changes: dict[str, Any] = Field(
        default_factory=dict,
        description="Only the fields whose value differs from the prior version",
    )
    created_by: str = Field(..., description="Principal that caused the change")
    created_at: datetime = Field(..., description="Aware UTC timestamp of the change")
    sequence: int = Field(..., ge=1, description="Per-entity monotonic sequence number")

    @property
    def order_key(self) -> tuple[datetime, int]:
        """Total-order key of the event within its entity's history."""
        return (self.created_at, self.sequence)


class SnapshotChangeset(BaseModel):
    """Fully reconstructed entity state as of to_ts.

    Attributes:
        entity_name: Logical type name of the entity.
        entity_id: String form of the entity key.
        from_ts: Lower bound used to decide which fields count as new.
            None means the start of history.
        to_ts: Upper bound of the reconstruction. None means "now".
        state: Entity field values folded from every event through to_ts.
        deleted: True when the last material event through to_ts is a Delete.
        changed_fields: Fields changed by events in (from_ts, to_ts].
    """

    model_config = ConfigDict(frozen=True)

    mode: DeltaMode = DeltaMode.SNAPSHOT
    entity_name: str
    entity_id: str
    from_ts: datetime | None = None
    to_ts: datetime | None = None
    state: dict[str, Any]
    deleted: bool = False
    changed_fields: list[str] = Field(default_factory=list)


class DifferentialChangeset(BaseModel):
    """Ordered raw change events with from_ts < created_at <= to_ts."""

    model_config = ConfigDict(frozen=True)

    mode: DeltaMode = DeltaMode.DIFFERENTIAL
    entity_name: str
    entity_id: str
    from_ts: datetime | None = None
    to_ts: datetime | None = None
    events: list[ChangeEvent]


class ReadableStatusMetadata(BaseModel):
    """Read tracking metadata of one entity for one principal."""

    model_config = ConfigDict(frozen=True)

    last_viewed: datetime | None = None
    new_stuff_available: bool = False


class ReadableStatus(BaseModel):
    """An entity paired with its read tracking metadata."""

    model_config = ConfigDict(frozen=True)

    data: Any
    metadata: ReadableStatusMetadata
