"""Abstract interfaces (Protocol classes) for the entity history engine.

Services are written against these structural types only, so the same
service code runs on the SQLAlchemy backend, the in-memory backend or AsyncMock
collaborators in tests.

Protocols defined:
- IEntityRepository
- IChangesetRepository
- IReadStatusRepository
- IUnitOfWork
- IPrincipalProvider
- ICrudService, IHistoricalService, IReadStatusService, IDeltaService
"""

import uuid
from collections.abc import Collection
from contextlib import AbstractAsyncContextManager
from datetime import datetime
from typing import Any, Protocol

from entity_history_engine.history.events import (
    ChangeAction,
    ChangeEvent,
    DifferentialChangeset,
    SnapshotChangeset,
)


class IEntityRepository(Protocol):
    """Repository contract for one tracked entity type, expressed in state dicts."""

    async def create(self, state: dict[str, Any]) -> dict[str, Any]:
        """Persist a new entity.

        Args:
            state: Complete state dict, identifier included.

        Returns:
            The persisted state.
        """
        ...

    async def get_by_id(self, entity_id: Any, for_update: bool = False) -> dict[str, Any]:
        """Retrieve a live entity.

        Args:
            entity_id: The entity key.
            for_update: Lock the row until the unit of work ends, where supported.

        Returns:
            The entity state.

        Raises:
            EntityNotFoundError: If no live entity has that key.
        """
        ...

    async def exists(self, entity_id: Any) -> bool:
        """Return True if a live entity has that key."""
        ...

    async def list_all(self) -> list[dict[str, Any]]:
        """Return every live entity of this type."""
        ...

    async def update(self, entity_id: Any, state: dict[str, Any]) -> dict[str, Any]:
        """Replace the tracked fields of a live entity.

        Raises:
            EntityNotFoundError: If no live entity has that key.
        """
        ...

    async def delete(self, entity_id: Any) -> dict[str, Any]:
        """Remove a live entity and return its last state.

        Raises:
            EntityNotFoundError: If no live entity has that key.
        """
        ...


class IChangesetRepository(Protocol):
    """Append-only repository contract for ChangeEvent persistence."""

    async def append(self, event: ChangeEvent) -> uuid.UUID:
        """Append an immutable change event.

        Must run in the same unit of work as the entity mutation it documents.

        Returns:
            The stored event's id.

        Raises:
            ConcurrentModificationError: If the entity already has an event
                with the same sequence number.
        """
        ...

    async def get(self, event_id: uuid.UUID) -> ChangeEvent:
        """Retrieve one event.

        Raises:
            ChangesetNotFoundError: If no event has that id.
        """
        ...

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
        """Return events for one entity with from_ts < created_at <= to_ts.

        Args:
            entity_name: Logical type name.
            entity_id: String form of the entity key.
            from_ts: Exclusive lower bound, open when None.
            to_ts: Inclusive upper bound, open when None.
            actions: Optional allow-list of actions.
            created_by: Optional principal filter.
            descending: Newest first instead of oldest first.
            limit: Optional maximum number of events.

        Returns:
            Events ordered by (created_at, sequence).
        """
        ...

    async def latest(
        self,
        entity_name: str,
        entity_id: str,
        actions: Collection[ChangeAction] | None = None,
    ) -> ChangeEvent | None:
        """Return the newest event for one entity, or None."""
        ...

    async def query_by_principal(
        self,
        entity_name: str,
        created_by: str,
        actions: Collection[ChangeAction] | None = None,
    ) -> list[ChangeEvent]:
        """Return events of an entity type caused by one principal, oldest first."""
        ...


class IReadStatusRepository(Protocol):
    """Repository contract for per-principal read statuses."""

    async def upsert(self, entity_name: str, entity_id: str, principal: str, at: datetime) -> None:
        """Create or overwrite the last-viewed timestamp."""
        ...

    async def get(self, entity_name: str, entity_id: str, principal: str) -> datetime | None:
        """Return the last-viewed timestamp, or None if never viewed."""
        ...

    async def clear(
        self,
        entity_name: str,
        entity_id: str | None = None,
        principal: str | None = None,
    ) -> int:
        """Delete matching records; omitted keys match everything.

        Returns:
            Number of records removed.
        """
        ...

    async def list_for_principal(self, entity_name: str, principal: str) -> dict[str, datetime]:
        """Return {entity_id: last_viewed_at} for one principal."""
        ...


class IUnitOfWork(Protocol):
    """Transaction boundary spanning entity writes and event appends."""

    async def commit(self) -> None:
        """Make every pending write visible atomically.

        Raises:
            ConcurrentModificationError: If a concurrent writer won the race.
        """
        ...

    async def rollback(self) -> None:
        """Discard every pending write."""
        ...

    def entity_lock(self, entity_name: str, entity_id: str) -> AbstractAsyncContextManager[None]:
        """Serialize writers of one entity for the duration of the context."""
        ...


class IPrincipalProvider(Protocol):
    """Source of the acting principal identifier."""

    def get_principal_id(self) -> str:
        """Return the identifier of the acting principal."""
        ...


# ---------------------------------------------------------------------------
# Capability interfaces exposed to the outer layer
# ---------------------------------------------------------------------------


class ICrudService(Protocol):
    """Create/read/update/delete that transparently produces history."""

    async def create(self, entity: Any) -> Any: ...

    async def get_by_id(self, entity_id: Any) -> Any: ...

    async def get_all(self) -> list[Any]: ...

    async def exists(self, entity_id: Any) -> bool: ...

    async def update(self, entity_id: Any, entity: Any) -> Any: ...

    async def delete(self, entity_id: Any) -> Any: ...


class IHistoricalService(Protocol):
    """History listing, restore and copy."""

    async def get_history(self, entity_id: Any) -> list[ChangeEvent]: ...

    async def restore(self, entity_id: Any) -> Any: ...

    async def restore_from_changeset(self, entity_id: Any, changeset_id: uuid.UUID) -> Any: ...

    async def copy(self, entity_id: Any) -> Any: ...

    async def copy_from_changeset(self, entity_id: Any, changeset_id: uuid.UUID) -> Any: ...


class IReadStatusService(Protocol):
    """Per-principal read tracking."""

    async def mark_one_as_read(self, entity_id: Any) -> None: ...

    async def mark_one_as_unread(self, entity_id: Any) -> None: ...

    async def mark_all_as_read(self) -> None: ...

    async def mark_all_as_unread(self) -> None: ...


class IDeltaService(Protocol):
    """What-changed queries."""

    async def delta(
        self,
        entity_id: Any,
        from_ts: datetime | None = None,
        to_ts: datetime | None = None,
        mode: Any = ...,
    ) -> SnapshotChangeset | DifferentialChangeset: ...
