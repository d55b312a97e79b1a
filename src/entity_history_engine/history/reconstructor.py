"""Entity state reconstruction from an ordered change event log.

Folding applies each event's field changes in (created_at, sequence) order.
A Create event starts from a blank state, so an id created again after a
delete does not inherit the earlier values. Update and Restore events merge
their field changes into the state and mark the entity live. Delete marks it
deleted while keeping the last materialized field values. Read events carry
no changes and are skipped.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from entity_history_engine.history.events import ChangeAction, ChangeEvent


@dataclass
class ReconstructedState:
    """Result of folding an entity's history.

    Attributes:
        values: Field values as of the last folded event (identifier excluded).
        exists: True if the entity is live after the last folded event.
        event_count: Number of material events folded.
    """

    values: dict[str, Any] = field(default_factory=dict)
    exists: bool = False
    event_count: int = 0


def fold(events: Iterable[ChangeEvent]) -> ReconstructedState:
    """Fold ordered change events into an entity state.

    Args:
        events: Events of a single entity, ascending by (created_at, sequence).

    Returns:
        The reconstructed state.
    """
    result = ReconstructedState()
    for event in events:
        if event.action == ChangeAction.READ:
            continue
        result.event_count += 1
        if event.action == ChangeAction.DELETE:
            result.exists = False
            continue
        if event.action == ChangeAction.CREATE:
            result.values = {}
        result.values.update(event.field_changes)
        result.exists = True
    return result


def fold_through(events: Iterable[ChangeEvent], last: ChangeEvent) -> ReconstructedState:
    """Fold events up to and including a specific event.

    Args:
        events: Events of a single entity, ascending by (created_at, sequence).
        last: The event at which to stop (inclusive), matched by sequence.

    Returns:
        The reconstructed state as of that event.
    """
    return fold(event for event in events if event.sequence <= last.sequence)


def changed_fields(events: Iterable[ChangeEvent]) -> list[str]:
    """Return the names of fields touched by the given events, in first-seen order."""
    seen: dict[str, None] = {}
    for event in events:
        for name in event.field_changes:
            seen.setdefault(name, None)
    return list(seen)
