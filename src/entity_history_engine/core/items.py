"""Item — the sample tracked entity and its descriptor.

The descriptor lists the tracked fields statically and declares the explicit
mapping between ItemData and the state dicts the history core works on.
"""

import uuid
from typing import Any

from pydantic import BaseModel, Field

from entity_history_engine.history.change_detector import EntityDescriptor


class ItemData(BaseModel):
    """Domain value of an Item."""

    id: uuid.UUID | None = Field(default=None, description="Item UUID, generated on create when omitted")
    name: str | None = Field(default=None, description="Display name")
    value: str | None = Field(default=None, description="Free-form value")
    description: str | None = Field(default=None, description="Optional longer description")


def item_to_state(item: ItemData) -> dict[str, Any]:
    return {
        "id": item.id,
        "name": item.name,
        "value": item.value,
        "description": item.description,
    }


def item_from_state(state: dict[str, Any]) -> ItemData:
    raw_id = state.get("id")
    return ItemData(
        id=uuid.UUID(str(raw_id)) if raw_id is not None else None,
        name=state.get("name"),
        value=state.get("value"),
        description=state.get("description"),
    )


ITEM_DESCRIPTOR: EntityDescriptor[ItemData] = EntityDescriptor(
    entity_name="Item",
    fields=("name", "value", "description"),
    to_state=item_to_state,
    from_state=item_from_state,
    id_field="id",
    new_id=uuid.uuid4,
    parse_key=uuid.UUID,
)
