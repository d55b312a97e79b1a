"""Tests for the append-only in-memory changeset store."""

import uuid
from datetime import UTC, datetime, timedelta

import pytest

from entity_history_engine.errors import ChangesetNotFoundError, ConcurrentModificationError
from entity_history_engine.history.event_store import InMemoryChangesetStore
from entity_history_engine.history.events import ChangeAction, ChangeEvent

T0 = datetime(2024, 1, 1, tzinfo=UTC)


def make_event(
    sequence: int,
    seconds: int,
    action: ChangeAction = ChangeAction.UPDATE,
    entity_id: str = "e1",
    created_by: str = "alice",
    **changes: object,
) -> ChangeEvent:
    return ChangeEvent(
        entity_name="Item",
        entity_id=entity_id,
        action=action,
        field_changes=changes,
        created_by=created_by,
        created_at=T0 + timedelta(seconds=seconds),
        sequence=sequence,
    )


class TestInMemoryChangesetStore:
    """Ordering, range bounds and append-only guarantees."""

    def test_query_returns_events_in_order(self) -> None:
        store = InMemoryChangesetStore()
        second = make_event(2, 10)
        first = make_event(1, 5, ChangeAction.CREATE)
        store.append(second)
        store.append(first)

        assert store.query_by_entity("Item", "e1") == [first, second]

    def test_same_timestamp_is_ordered_by_sequence(self) -> None:
        store = InMemoryChangesetStore()
        events = [make_event(n, 0) for n in (3, 1, 2)]
        for event in events:
            store.append(event)

        assert [e.sequence for e in store.query_by_entity("Item", "e1")] == [1, 2, 3]

    def test_range_is_exclusive_below_and_inclusive_above(self) -> None:
        store = InMemoryChangesetStore()
        for sequence, seconds in ((1, 0), (2, 10), (3, 20), (4, 30)):
            store.append(make_event(sequence, seconds))

        result = store.query_by_entity("Item", "e1", T0 + timedelta(seconds=10), T0 + timedelta(seconds=30))
        assert [e.sequence for e in result] == [3, 4]

    def test_range_excludes_every_event_at_lower_bound(self) -> None:
        store = InMemoryChangesetStore()
        store.append(make_event(1, 10))
        store.append(make_event(2, 10))
        store.append(make_event(3, 11))

        result = store.query_by_entity("Item", "e1", from_ts=T0 + timedelta(seconds=10))
        assert [e.sequence for e in result] == [3]

    def test_action_and_principal_filters(self) -> None:
        store = InMemoryChangesetStore()
        store.append(make_event(1, 0, ChangeAction.CREATE))
        store.append(make_event(2, 1, ChangeAction.READ, created_by="bob"))
        store.append(make_event(3, 2, ChangeAction.UPDATE, created_by="bob"))

        reads = store.query_by_entity("Item", "e1", actions=[ChangeAction.READ])
        assert [e.sequence for e in reads] == [2]
        by_bob = store.query_by_entity("Item", "e1", created_by="bob")
        assert [e.sequence for e in by_bob] == [2, 3]

    def test_duplicate_sequence_is_a_concurrent_modification(self) -> None:
        store = InMemoryChangesetStore()
        store.append(make_event(1, 0))

        with pytest.raises(ConcurrentModificationError):
            store.append(make_event(1, 1))
        assert store.count("Item", "e1") == 1

    def test_duplicate_event_id_is_rejected(self) -> None:
        store = InMemoryChangesetStore()
        event = make_event(1, 0)
        store.append(event)

        with pytest.raises(ValueError, match="already stored"):
            store.append(event)

    def test_get_unknown_event_raises(self) -> None:
        with pytest.raises(ChangesetNotFoundError):
            InMemoryChangesetStore().get(uuid.uuid4())

    def test_query_by_principal_spans_entities(self) -> None:
        store = InMemoryChangesetStore()
        store.append(make_event(1, 5, ChangeAction.READ, entity_id="e1"))
        store.append(make_event(1, 2, ChangeAction.READ, entity_id="e2"))
        store.append(make_event(2, 9, ChangeAction.READ, entity_id="e2", created_by="bob"))

        result = store.query_by_principal("Item", "alice", [ChangeAction.READ])
        assert [e.entity_id for e in result] == ["e2", "e1"]

    def test_store_exposes_no_mutation_of_existing_events(self) -> None:
        store = InMemoryChangesetStore()
        assert not hasattr(store, "update")
        assert not hasattr(store, "delete")

    def test_unknown_entity_has_empty_history(self) -> None:
        assert InMemoryChangesetStore().query_by_entity("Item", "missing") == []
