"""SQLAlchemy repositories for the entity history engine.

Each repository implements the corresponding interface from core/interfaces.py.
All repositories of one request share a single AsyncSession, so an entity write
and the change event documenting it are committed (or rolled back) together by
SqlAlchemyUnitOfWork.

Repositories:
- SqlAlchemyEntityRepository — tracked entity CRUD, in state dicts
- ChangesetRepository        — append-only ChangeEvent log
- ReadStatusRepository       — per-principal read status upserts

NOTE: ChangesetRepository intentionally has no update() or delete() method.
The change event log is immutable.
"""

import uuid
from collections.abc import Collection
from contextlib import AbstractAsyncContextManager
from datetime import datetime
from typing import Any

from pydantic_core import to_jsonable_python
from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from entity_history_engine.core.locks import EntityLocks
from entity_history_engine.core.models import ChangeEventRecord, ReadStatusRecord
from entity_history_engine.database import Base
from entity_history_engine.errors import (
    ChangesetNotFoundError,
    ConcurrentModificationError,
    EntityNotFoundError,
)
from entity_history_engine.history.change_detector import EntityDescriptor
from entity_history_engine.history.events import ChangeAction, ChangeEvent, as_utc
from entity_history_engine.observability import get_logger

logger = get_logger(__name__)


class SqlAlchemyUnitOfWork:
    """Transaction boundary over one AsyncSession.

    Args:
        session: The session shared by every repository of the unit of work.
        locks: Process-wide per-entity lock registry.
    """

    def __init__(self, session: AsyncSession, locks: EntityLocks) -> None:
        self._session = session
        self._locks = locks

    async def commit(self) -> None:
        """Commit the session's transaction."""
        await self._session.commit()

    async def rollback(self) -> None:
        """Roll back the session's transaction."""
        await self._session.rollback()

    def entity_lock(self, entity_name: str, entity_id: str) -> AbstractAsyncContextManager[None]:
        """Serialize in-process writers of one entity."""
        return self._locks.hold(entity_name, entity_id)


class SqlAlchemyEntityRepository:
    """Repository for one tracked ORM model, exposed as state dicts.

    Only the descriptor's identifier and tracked fields are read or written;
    the model's columns must carry the same names.

    Args:
        session: The unit-of-work session.
        model: The mapped ORM class of the tracked entity.
        descriptor: The entity type's static descriptor.
    """

    def __init__(self, session: AsyncSession, model: type[Base], descriptor: EntityDescriptor[Any]) -> None:
        self._session = session
        self._model = model
        self._descriptor = descriptor
        self._id_column = getattr(model, descriptor.id_field)

    def _to_state(self, row: Any) -> dict[str, Any]:
        state = {self._descriptor.id_field: getattr(row, self._descriptor.id_field)}
        for name in self._descriptor.fields:
            state[name] = getattr(row, name)
        return state

    async def _load(self, entity_id: Any, for_update: bool = False) -> Any:
        stmt = select(self._model).where(self._id_column == entity_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self._session.execute(stmt)
        row = result.scalar_one_or_none()
        if row is None:
            raise EntityNotFoundError(self._descriptor.entity_name, entity_id)
        return row

    async def create(self, state: dict[str, Any]) -> dict[str, Any]:
        row = self._model(**self._descriptor.materialize(state[self._descriptor.id_field], state))
        self._session.add(row)
        await self._session.flush()
        return self._to_state(row)

    async def get_by_id(self, entity_id: Any, for_update: bool = False) -> dict[str, Any]:
        return self._to_state(await self._load(entity_id, for_update=for_update))

    async def exists(self, entity_id: Any) -> bool:
        result = await self._session.execute(select(self._id_column).where(self._id_column == entity_id))
        return result.scalar_one_or_none() is not None

    async def list_all(self) -> list[dict[str, Any]]:
        result = await self._session.execute(select(self._model).order_by(self._id_column))
        return [self._to_state(row) for row in result.scalars().all()]

    async def update(self, entity_id: Any, state: dict[str, Any]) -> dict[str, Any]:
        row = await self._load(entity_id, for_update=True)
        for name in self._descriptor.fields:
            setattr(row, name, state.get(name))
        await self._session.flush()
        return self._to_state(row)

    async def delete(self, entity_id: Any) -> dict[str, Any]:
        row = await self._load(entity_id, for_update=True)
        state = self._to_state(row)
        await self._session.delete(row)
        await self._session.flush()
        return state


def _to_event(record: ChangeEventRecord) -> ChangeEvent:
    return ChangeEvent(
        id=record.id,
        entity_name=record.entity_name,
        entity_id=record.entity_id,
        action=ChangeAction(record.action),
        field_changes=dict(record.field_changes or {}),
        created_by=record.created_by,
        created_at=as_utc(record.created_at),
        sequence=record.sequence,
    )


class ChangesetRepository:
    """Append-only repository for ChangeEventRecord.

    IMPORTANT: This repository has no update() or delete() methods because the
    change event log is immutable. Once appended, an event is permanent.

    Args:
        session: The unit-of-work session.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def append(self, event: ChangeEvent) -> uuid.UUID:
        """Append an immutable change event.

        Args:
            event: The event to persist.

        Returns:
            The persisted event's id.

        Raises:
            ConcurrentModificationError: If the entity already has an event
                with this sequence number.
        """
        record = ChangeEventRecord(
            id=event.id,
            entity_name=event.entity_name,
            entity_id=event.entity_id,
            action=event.action.value,
            field_changes=to_jsonable_python(event.field_changes),
            created_by=event.created_by,
            created_at=event.created_at,
            sequence=event.sequence,
        )
        self._session.add(record)
        try:
            await self._session.flush()
        except IntegrityError as exc:
            logger.warning(
                "Change event sequence conflict",
                entity_name=event.entity_name,
                entity_id=event.entity_id,
                sequence=event.sequence,
            )
            raise ConcurrentModificationError(event.entity_name, event.entity_id) from exc
        return record.id

    async def get(self, event_id: uuid.UUID) -> ChangeEvent:
        """Retrieve one change event.

        Raises:
            ChangesetNotFoundError: If not found.
        """
        result = await self._session.execute(select(ChangeEventRecord).where(ChangeEventRecord.id == event_id))
        record = result.scalar_one_or_none()
        if record is None:
            raise ChangesetNotFoundError(event_id)
        return _to_event(record)

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
        """Query one entity's change events.

        Args:
            entity_name: Logical type name.
            entity_id: String form of the entity key.
            from_ts: Exclusive lower bound.
            to_ts: Inclusive upper bound.
            actions: Optional allow-list of actions.
            created_by: Optional principal filter.
            descending: Newest first.
            limit: Optional maximum number of events.

        Returns:
            Events ordered by (created_at, sequence).
        """
        stmt = select(ChangeEventRecord).where(
            ChangeEventRecord.entity_name == entity_name,
            ChangeEventRecord.entity_id == entity_id,
        )
        if from_ts is not None:
            stmt = stmt.where(ChangeEventRecord.created_at > as_utc(from_ts))
        if to_ts is not None:
            stmt = stmt.where(ChangeEventRecord.created_at <= as_utc(to_ts))
        if actions is not None:
            stmt = stmt.where(ChangeEventRecord.action.in_([a.value for a in actions]))
        if created_by is not None:
            stmt = stmt.where(ChangeEventRecord.created_by == created_by)

        if descending:
            stmt = stmt.order_by(ChangeEventRecord.created_at.desc(), ChangeEventRecord.sequence.desc())
        else:
            stmt = stmt.order_by(ChangeEventRecord.created_at.asc(), ChangeEventRecord.sequence.asc())
        if limit is not None:
            stmt = stmt.limit(limit)

        result = await self._session.execute(stmt)
        return [_to_event(record) for record in result.scalars().all()]

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
        stmt = select(ChangeEventRecord).where(
            ChangeEventRecord.entity_name == entity_name,
            ChangeEventRecord.created_by == created_by,
        )
        if actions is not None:
            stmt = stmt.where(ChangeEventRecord.action.in_([a.value for a in actions]))
        stmt = stmt.order_by(ChangeEventRecord.created_at.asc(), ChangeEventRecord.sequence.asc())
        result = await self._session.execute(stmt)
        return [_to_event(record) for record in result.scalars().all()]


class ReadStatusRepository:
    """Repository for ReadStatusRecord.

    Upserts are idempotent and use the dialect's ON CONFLICT support where
    available so concurrent views of the same entity never conflict.

    Args:
        session: The unit-of-work session.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def upsert(self, entity_name: str, entity_id: str, principal: str, at: datetime) -> None:
        values = {
            "entity_name": entity_name,
            "entity_id": entity_id,
            "principal": principal,
            "last_viewed_at": as_utc(at),
        }
        dialect = self._session.get_bind().dialect.name
        if dialect in ("postgresql", "sqlite"):
            insert = postgresql_insert if dialect == "postgresql" else sqlite_insert
            stmt = insert(ReadStatusRecord).values(**values)
            await self._session.execute(
                stmt.on_conflict_do_update(
                    index_elements=["entity_name", "entity_id", "principal"],
                    set_={"last_viewed_at": values["last_viewed_at"]},
                )
            )
        else:
            await self._session.merge(ReadStatusRecord(**values))
            await self._session.flush()

    async def get(self, entity_name: str, entity_id: str, principal: str) -> datetime | None:
        result = await self._session.execute(
            select(ReadStatusRecord.last_viewed_at).where(
                ReadStatusRecord.entity_name == entity_name,
                ReadStatusRecord.entity_id == entity_id,
                ReadStatusRecord.principal == principal,
            )
        )
        value = result.scalar_one_or_none()
        return as_utc(value) if value is not None else None

    async def clear(
        self,
        entity_name: str,
        entity_id: str | None = None,
        principal: str | None = None,
    ) -> int:
        stmt = delete(ReadStatusRecord).where(ReadStatusRecord.entity_name == entity_name)
        if entity_id is not None:
            stmt = stmt.where(ReadStatusRecord.entity_id == entity_id)
        if principal is not None:
            stmt = stmt.where(ReadStatusRecord.principal == principal)
        result = await self._session.execute(stmt)
        return result.rowcount or 0

    async def list_for_principal(self, entity_name: str, principal: str) -> dict[str, datetime]:
        result = await self._session.execute(
            select(ReadStatusRecord.entity_id, ReadStatusRecord.last_viewed_at).where(
                ReadStatusRecord.entity_name == entity_name,
                ReadStatusRecord.principal == principal,
            )
        )
        return {entity_id: as_utc(last_viewed_at) for entity_id, last_viewed_at in result.all()}
