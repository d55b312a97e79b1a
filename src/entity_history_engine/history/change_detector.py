"""Field-level change detection driven by static entity descriptors.

Each tracked entity type declares an EntityDescriptor: its logical name, its
identifier field, the static tuple of tracked fields and the explicit functions
that convert between the caller's entity type and a plain state dict. The
history core works on state dicts only and never inspects entity types.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

EntityT = TypeVar("EntityT")


def diff(
    original: Mapping[str, Any] | None,
    modified: Mapping[str, Any],
    fields: Sequence[str],
    id_field: str = "id",
) -> dict[str, Any]:
    """Return the new values of every tracked field that differs.

    A field is included when the original value is absent and the modified one
    is present, when both are present and unequal, or when the original value is
    present and the modified one is absent. A removed value is recorded as None.
    The identifier field is never included.

    Args:
        original: Prior state, or None when there is no prior version.
        modified: New state.
        fields: Tracked field names to compare.
        id_field: Name of the identifier field, always skipped.

    Returns:
        Mapping of changed field name to new value. Empty iff the two states
        are field-wise equal.
    """
    before: Mapping[str, Any] = original or {}
    changes: dict[str, Any] = {}
    for name in fields:
        if name == id_field:
            continue
        old_value = before.get(name)
        new_value = modified.get(name)
        if old_value is None:
            if new_value is not None:
                changes[name] = new_value
        elif old_value != new_value:
            changes[name] = new_value
    return changes


@dataclass(frozen=True)
class EntityDescriptor(Generic[EntityT]):
    """Static description of one tracked entity type.

    Attributes:
        entity_name: Logical type name stamped on every change event.
        fields: Tracked field names, excluding the identifier.
        to_state: Converts an entity into a state dict (identifier included).
        from_state: Builds an entity from a state dict.
        id_field: Name of the identifier field in state dicts.
        new_id: Generates a fresh identifier for creates and copies.
        parse_key: Rebuilds a native key from its string form on change events.
    """

    entity_name: str
    fields: tuple[str, ...]
    to_state: Callable[[EntityT], dict[str, Any]]
    from_state: Callable[[dict[str, Any]], EntityT]
    id_field: str = "id"
    new_id: Callable[[], Any] = field(default=uuid.uuid4)
    parse_key: Callable[[str], Any] = field(default=str)

    def diff(self, original: Mapping[str, Any] | None, modified: Mapping[str, Any]) -> dict[str, Any]:
        """Diff two states of this entity type."""
        return diff(original, modified, self.fields, self.id_field)

    def materialize(self, entity_id: Any, values: Mapping[str, Any]) -> dict[str, Any]:
        """Build a complete state dict: identifier plus every tracked field.

        Fields missing from values are set to None.
        """
        state: dict[str, Any] = {self.id_field: entity_id}
        for name in self.fields:
            state[name] = values.get(name)
        return state

    @staticmethod
    def key(entity_id: Any) -> str:
        """String form of an entity key as stored on change events."""
        return str(entity_id)
