"""Pydantic request and response schemas for the entity history API.

Item payloads are validated here; ItemData conversion happens in to_item().
Change events and changesets are served with the models from
history/events.py; this module holds the item resource schemas.

Resources:
- Item — the sample tracked entity
- ReadableItem — an item paired with the caller's read metadata
- Delta — what-changed queries
"""

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from entity_history_engine.core.items import ItemData
from entity_history_engine.history.events import DeltaMode, ReadableStatusMetadata


# ---------------------------------------------------------------------------
# Item schemas
# ---------------------------------------------------------------------------


class ItemCreateRequest(BaseModel):
    """Request body for creating an item."""

    id: uuid.UUID | None = Field(default=None, description="Optional client-chosen UUID")
    name: str | None = Field(default=None, max_length=255, description="Display name")
    value: str | None = Field(default=None, description="Free-form value")
    description: str | None = Field(default=None, description="Optional longer description")

    def to_item(self) -> ItemData:
        return ItemData(id=self.id, name=self.name, value=self.value, description=self.description)


class ItemUpdateRequest(BaseModel):
    """Request body replacing every tracked field of an item.

    Omitted fields are cleared.
    """

    name: str | None = Field(default=None, max_length=255, description="Display name")
    value: str | None = Field(default=None, description="Free-form value")
    description: str | None = Field(default=None, description="Optional longer description")

    def to_item(self, item_id: uuid.UUID) -> ItemData:
        return ItemData(id=item_id, name=self.name, value=self.value, description=self.description)


class ItemResponse(BaseModel):
    """Response schema for an item."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID = Field(description="Item UUID")
    name: str | None = Field(description="Display name")
    value: str | None = Field(description="Free-form value")
    description: str | None = Field(description="Optional longer description")


class ReadableItemResponse(BaseModel):
    """An item paired with the caller's read metadata."""

    data: ItemResponse
    metadata: ReadableStatusMetadata


# ---------------------------------------------------------------------------
# Delta schemas
# ---------------------------------------------------------------------------


class DeltaRequest(BaseModel):
    """Request body for a delta query.

    The mode is accepted as a plain string so that unknown modes are reported
    as an unsupported-mode error rather than a schema error.
    """

    model_config = ConfigDict(populate_by_name=True)

    from_ts: datetime | None = Field(
        default=None,
        alias="from",
        description="Exclusive lower bound. Defaults to the caller's last view of the item.",
    )
    to_ts: datetime | None = Field(
        default=None,
        alias="to",
        description="Inclusive upper bound. Defaults to no upper bound.",
    )
    mode: str = Field(default=DeltaMode.SNAPSHOT.value, description="Snapshot | Differential")
