"""Append-only in-memory change event store.

Stores ChangeEvent instances keyed by (entity_name, entity_id) with events
sorted by (created_at, sequence). There is no way to
replace or remove a stored event.

Backs the in-memory adapters (adapters/memory.py). The SQLAlchemy
ChangesetRepository in adapters/repositories.py provides the same contract on
a database.
"""

from __future__ import annotations

import bisect
import sys
import uuid
from collections.abc import Collection
from datetime import datetime

from entity_history_engine.errors import ChangesetNotFoundError, ConcurrentModificationError
from entity_history_engine.history.events import ChangeAction, ChangeEvent

_EntityKey = tuple[str, str]
_OrderKey = tuple[datetime, int]


class InMemoryChangesetStore:
    """Append-only event store for ChangeEvent instances.

    Maintains per-entity event lists sorted by (created_at, sequence) so that
    range queries are O(log n) + O(k) where k is the result size.

    All methods are synchronous because in-memory access does not block.
    """

    def __init__(self) -> None:
        """Initialize an empty event store."""
        # { (entity_name, entity_id): list[ChangeEvent] } sorted by order key ascending
        self._events: dict[_EntityKey, list[ChangeEvent]] = {}
        # Parallel list of (created_at, sequence) keys for bisect operations
        self._keys: dict[_EntityKey, list[_OrderKey]] = {}
        self._sequences: dict[_EntityKey, set[int]] = {}
        self._by_id: dict[uuid.UUID, ChangeEvent] = {}

    def check_append(self, event: ChangeEvent) -> None:
        """Raise if appending the event would break the store's invariants.

        Args:
            event: The candidate event.

        Raises:
            ConcurrentModificationError: If the entity already has an event with
                the same sequence number.
            ValueError: If an event with the same id is already stored.
        """
        if event.id in self._by_id:
            raise ValueError(f"Change event {event.id} already stored")
        entity_key = (event.entity_name, event.entity_id)
        if event.sequence in self._sequences.get(entity_key, ()):
            raise ConcurrentModificationError(event.entity_name, event.entity_id)

    def append(self, event: ChangeEvent) -> uuid.UUID:
        """Append a ChangeEvent to the store.

        Uses bisect to maintain sort order by (created_at, sequence).

        Args:
            event: The immutable ChangeEvent to store.

        Returns:
            The stored event's id.
        """
        self.check_append(event)
        entity_key = (event.entity_name, event.entity_id)
        events = self._events.setdefault(entity_key, [])
        keys = self._keys.setdefault(entity_key, [])

        index = bisect.bisect_right(keys, event.order_key)
        events.insert(index, event)
        keys.insert(index, event.order_key)
        self._sequences.setdefault(entity_key, set()).add(event.sequence)
        self._by_id[event.id] = event
        return event.id

    def get(self, event_id: uuid.UUID) -> ChangeEvent:
        """Return one event by id.

        Raises:
            ChangesetNotFoundError: If no event has that id.
        """
        event = self._by_id.get(event_id)
        if event is None:
            raise ChangesetNotFoundError(event_id)
        return event

    def query_by_entity(
        self,
        entity_name: str,
        entity_id: str,
        from_ts: datetime | None = None,
        to_ts: datetime | None = None,
        actions: Collection[ChangeAction] | None = None,
        created_by: str | None = None,
    ) -> list[ChangeEvent]:
        """Return events for one entity with from_ts < created_at <= to_ts.

        Args:
            entity_name: Logical type name of the entity.
            entity_id: String form of the entity key.
            from_ts: Exclusive lower bound. None means the start of history.
            to_ts: Inclusive upper bound. None means no upper bound.
            actions: Optional allow-list of actions.
            created_by: Optional principal filter.

        Returns:
            Matching events sorted by (created_at, sequence) ascending.
        """
        entity_key = (entity_name, entity_id)
        if entity_key not in self._keys:
            return []

        keys = self._keys[entity_key]
        events = self._events[entity_key]

        low = 0 if from_ts is None else bisect.bisect_right(keys, (from_ts, sys.maxsize))
        high = len(keys) if to_ts is None else bisect.bisect_right(keys, (to_ts, sys.maxsize))

        result = events[low:high]
        if actions is not None:
            allowed = set(actions)
            result = [e for e in result if e.action in allowed]
        if created_by is not None:
            result = [e for e in result if e.created_by == created_by]
        return result

    def query_by_principal(
        self,
        entity_name: str,
        created_by: str,
        actions: Collection[ChangeAction] | None = None,
    ) -> list[ChangeEvent]:
        """Return every event of an entity type caused by one principal.

        Returns:
            Matching events sorted by (created_at, sequence) ascending.
        """
        allowed = set(actions) if actions is not None else None
        result = [
            event
            for (name, _), events in self._events.items()
            if name == entity_name
            for event in events
            if event.created_by == created_by and (allowed is None or event.action in allowed)
        ]
        result.sort(key=lambda e: e.order_key)
        return result

    def count(self, entity_name: str, entity_id: str) -> int:
        """Return the number of events stored for one entity."""
        return len(self._events.get((entity_name, entity_id), []))
