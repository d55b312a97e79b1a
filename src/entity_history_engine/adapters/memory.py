"""In-memory backend for the entity history engine.

Mirrors the SQLAlchemy adapters without database infrastructure, which makes
service tests hermetic and lets the engine be embedded in short-lived tools.

Each InMemoryUnitOfWork stages its entity writes and event appends privately
and applies them to the shared InMemoryDatabase in one step on commit, so
other units of work never observe partial state. Read statuses are written
straight through: they are idempotent upserts outside entity transactions.
"""

from __future__ import annotations

import uuid
from collections.abc import Collection
from contextlib import AbstractAsyncContextManager
from datetime import datetime
from typing import Any

from entity_history_engine.core.locks import EntityLocks
from entity_history_engine.errors import EntityNotFoundError
from entity_history_engine.history.change_detector import EntityDescriptor
from entity_history_engine.history.event_store import InMemoryChangesetStore
from entity_history_engine.history.events import ChangeAction, ChangeEvent, as_utc
from entity_history_engine.observability import get_logger

logger = get_logger(__name__)

_EntityKey = tuple[str, Any]


class InMemoryDatabase:
    """Committed state shared by every in-memory unit of work."""

    def __init__(self) -> None:
        self.entities: dict[str, dict[Any, dict[str, Any]]] = {}
        self.changesets = InMemoryChangesetStore()
        self.read_statuses: dict[tuple[str, str, str], datetime] = {}
        self.locks = EntityLocks()


class InMemoryUnitOfWork:
    """Staged writes over an InMemoryDatabase, applied atomically on commit.

    Args:
        database: The shared committed state.
    """

    def __init__(self, database: InMemoryDatabase) -> None:
        self.database = database
        # { (entity_name, entity_id): state dict, or None for a pending delete }
        self._pending_entities: dict[_EntityKey, dict[str, Any] | None] = {}
        self._pending_events: list[ChangeEvent] = []

    # -- staging ---------------------------------------------------------

    def stage_entity(self, entity_name: str, entity_id: Any, state: dict[str, Any] | None) -> None:
        self._pending_entities[(entity_name, entity_id)] = None if state is None else dict(state)

    def stage_event(self, event: ChangeEvent) -> None:
        self.database.changesets.check_append(event)
        for pending in self._pending_events:
            if (pending.entity_name, pending.entity_id, pending.sequence) == (
                event.entity_name,
                event.entity_id,
                event.sequence,
            ):
                raise ValueError(f"Sequence {event.sequence} staged twice for {event.entity_id}")
        self._pending_events.append(event)

    def lookup_entity(self, entity_name: str, entity_id: Any) -> dict[str, Any] | None:
        key = (entity_name, entity_id)
        if key in self._pending_entities:
            return self._pending_entities[key]
        return self.database.entities.get(entity_name, {}).get(entity_id)

    def entity_ids(self, entity_name: str) -> list[Any]:
        ids = dict.fromkeys(self.database.entities.get(entity_name, {}))
        for name, entity_id in self._pending_entities:
            if name == entity_name:
                ids.setdefault(entity_id, None)
        return list(ids)

    @property
    def pending_events(self) -> list[ChangeEvent]:
        return list(self._pending_events)

    # -- IUnitOfWork -----------------------------------------------------

    async def commit(self) -> None:
        """Apply every staged write to the shared database.

        Raises:
            ConcurrentModificationError: If another unit of work committed an
                event with the same entity sequence first. Nothing is applied.
        """
        try:
            for event in self._pending_events:
                self.database.changesets.check_append(event)
        except Exception:
            await self.rollback()
            raise

        for (entity_name, entity_id), state in self._pending_entities.items():
            table = self.database.entities.setdefault(entity_name, {})
            if state is None:
                table.pop(entity_id, None)
            else:
                table[entity_id] = state
        for event in self._pending_events:
            self.database.changesets.append(event)

        logger.debug(
            "In-memory unit of work committed",
            entities=len(self._pending_entities),
            events=len(self._pending_events),
        )
        self._pending_entities.clear()
        self._pending_events.clear()

    async def rollback(self) -> None:
        """Discard every staged write."""
        self._pending_entities.clear()
        self._pending_events.clear()

    def entity_lock(self, entity_name: str, entity_id: str) -> AbstractAsyncContextManager[None]:
        return self.database.locks.hold(entity_name, entity_id)


class InMemoryEntityRepository:
    """Entity repository of one tracked type over an in-memory unit of work.

    Args:
        uow: The unit of work staging this repository's writes.
        descriptor: The entity type's static descriptor.
    """

    def __init__(self, uow: InMemoryUnitOfWork, descriptor: EntityDescriptor[Any]) -> None:
        self._uow = uow
        self._descriptor = descriptor

    def _require(self, entity_id: Any) -> dict[str, Any]:
        state = self._uow.lookup_entity(self._descriptor.entity_name, entity_id)
        if state is None:
            raise EntityNotFoundError(self._descriptor.entity_name, entity_id)
        return state

    async def create(self, state: dict[str, Any]) -> dict[str, Any]:
        entity_id = state[self._descriptor.id_field]
        stored = self._descriptor.materialize(entity_id, state)
        self._uow.stage_entity(self._descriptor.entity_name, entity_id, stored)
        return dict(stored)

    async def get_by_id(self, entity_id: Any, for_update: bool = False) -> dict[str, Any]:
        return dict(self._require(entity_id))

    async def exists(self, entity_id: Any) -> bool:
        return self._uow.lookup_entity(self._descriptor.entity_name, entity_id) is not None

    async def list_all(self) -> list[dict[str, Any]]:
        states = []
        for entity_id in self._uow.entity_ids(self._descriptor.entity_name):
            state = self._uow.lookup_entity(self._descriptor.entity_name, entity_id)
            if state is not None:
                states.append(dict(state))
        return states

    async def update(self, entity_id: Any, state: dict[str, Any]) -> dict[str, Any]:
        self._require(entity_id)
        stored = self._descriptor.materialize(entity_id, state)
        self._uow.stage_entity(self._descriptor.entity_name, entity_id, stored)
        return dict(stored)

    async def delete(self, entity_id: Any) -> dict[str, Any]:
        state = self._require(entity_id)
        self._uow.stage_entity(self._descriptor.entity_name, entity_id, None)
        return dict(state)


class InMemoryChangesetRepository:
    """Append-only changeset repository: committed events plus this unit of work's pending ones.

    Args:
        uow: The unit of work staging appended events.
    """

    def __init__(self, uow: InMemoryUnitOfWork) -> None:
        self._uow = uow

    @property
    def _store(self) -> InMemoryChangesetStore:
        return self._uow.database.changesets

    async def append(self, event: ChangeEvent) -> uuid.UUID:
        self._uow.stage_event(event)
        return event.id

    async def get(self, event_id: uuid.UUID) -> ChangeEvent:
        for event in self._uow.pending_events:
            if event.id == event_id:
                return event
        return self._store.get(event_id)

    async def query_by_entity(
        self,
        entity_name: str,
        entity_id: str,
        from_ts: datetime | None = None,
        to_ts: datetime | None = None,
        *,
        actions: Collection[ChangeAction] | None = None,
        created_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[ChangeEvent]:
        lower = as_utc(from_ts) if from_ts is not None else None
        upper = as_utc(to_ts) if to_ts is not None else None
        events = self._store.query_by_entity(
            entity_name, entity_id, lower, upper, actions=actions, created_by=created_by
        )
        allowed = set(actions) if actions is not None else None
        for event in self._uow.pending_events:
            if (event.entity_name, event.entity_id) != (entity_name, entity_id):
                continue
            if lower is not None and event.created_at <= lower:
                continue
            if upper is not None and event.created_at > upper:
                continue
            if allowed is not None and event.action not in allowed:
                continue
            if created_by is not None and event.created_by != created_by:
                continue
            events.append(event)

        events.sort(key=lambda e: e.order_key, reverse=descending)
        if limit is not None:
            events = events[:limit]
        return events

    async def latest(
        self,
        entity_name: str,
        entity_id: str,
        actions: Collection[ChangeAction] | None = None,
    ) -> ChangeEvent | None:
        events = await self.query_by_entity(entity_name, entity_id, actions=actions, descending=True, limit=1)
        return events[0] if events else None

    async def query_by_principal(
        self,
        entity_name: str,
        created_by: str,
        actions: Collection[ChangeAction] | None = None,
    ) -> list[ChangeEvent]:
        events = self._store.query_by_principal(entity_name, created_by, actions)
        allowed = set(actions) if actions is not None else None
        events.extend(
            event
            for event in self._uow.pending_events
            if event.entity_name == entity_name
            and event.created_by == created_by
            and (allowed is None or event.action in allowed)
        )
        events.sort(key=lambda e: e.order_key)
        return events


class InMemoryReadStatusRepository:
    """Read status repository writing straight to the shared database."""

    def __init__(self, database: InMemoryDatabase) -> None:
        self._database = database

    async def upsert(self, entity_name: str, entity_id: str, principal: str, at: datetime) -> None:
        self._database.read_statuses[(entity_name, entity_id, principal)] = as_utc(at)

    async def get(self, entity_name: str, entity_id: str, principal: str) -> datetime | None:
        return self._database.read_statuses.get((entity_name, entity_id, principal))

    async def clear(
        self,
        entity_name: str,
        entity_id: str | None = None,
        principal: str | None = None,
    ) -> int:
        matching = [
            key
            for key in self._database.read_statuses
            if key[0] == entity_name
            and (entity_id is None or key[1] == entity_id)
            and (principal is None or key[2] == principal)
        ]
        for key in matching:
            del self._database.read_statuses[key]
        return len(matching)

    async def list_for_principal(self, entity_name: str, principal: str) -> dict[str, datetime]:
        return {
            entity_id: last_viewed_at
            for (name, entity_id, who), last_viewed_at in self._database.read_statuses.items()
            if name == entity_name and who == principal
        }
