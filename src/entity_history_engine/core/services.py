"""Core business logic services for the entity history engine.

Service classes:
- TransactionRunner: entity-locked, atomic, retried execution of one mutation
- ReadStatusTracker: per (entity, principal) last-viewed timestamps
- DeltaComputer: snapshot and differential "what changed" queries
- RestoreEngine: restore and copy from live or historical state
- HistoricalCrudService: the Crud / Historical / ReadStatus / Delta facade,
  composed from the services above by delegation

All services are async-first. They accept injected repositories through their
constructors and contain no framework code. Every entity write and the change
event documenting it go through TransactionRunner, so both land or neither does.
"""

import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any, Generic, TypeVar

from entity_history_engine.core.interfaces import (
    IChangesetRepository,
    IEntityRepository,
    IPrincipalProvider,
    IReadStatusRepository,
    IUnitOfWork,
)
from entity_history_engine.errors import (
    ChangesetNotFoundError,
    ConcurrentModificationError,
    EntityNotFoundError,
    InvalidRangeError,
    NothingToRestoreError,
    UnsupportedModeError,
    ValidationError,
)
from entity_history_engine.history.change_detector import EntityDescriptor
from entity_history_engine.history.events import (
    MATERIAL_ACTIONS,
    ChangeAction,
    ChangeEvent,
    DeltaMode,
    DifferentialChangeset,
    ReadableStatus,
    ReadableStatusMetadata,
    SnapshotChangeset,
    as_utc,
    utc_now,
)
from entity_history_engine.history.publisher import ChangeRecorder
from entity_history_engine.history.reconstructor import changed_fields, fold, fold_through
from entity_history_engine.observability import get_logger

logger = get_logger(__name__)

T = TypeVar("T")
EntityT = TypeVar("EntityT")


class TransactionRunner:
    """Runs one entity mutation atomically under that entity's lock.

    In auto-commit mode the unit of work is committed after the operation and
    the whole operation is retried when a concurrent writer of the same entity
    wins the race. In deferred mode the caller commits; nothing is retried.
    Any failure, cancellation included, rolls the unit of work back.

    Args:
        uow: The unit of work shared by the operation's repositories.
        auto_commit: Commit after every operation.
        max_retries: Retries after a ConcurrentModificationError (auto-commit only).
    """

    def __init__(self, uow: IUnitOfWork, auto_commit: bool = True, max_retries: int = 3) -> None:
        self._uow = uow
        self.auto_commit = auto_commit
        self._max_retries = max_retries

    async def run(self, entity_name: str, entity_id: str, operation: Callable[[], Awaitable[T]]) -> T:
        """Execute operation atomically for one entity.

        Args:
            entity_name: Logical type name of the entity being written.
            entity_id: String form of its key.
            operation: Coroutine factory doing the entity write and event append.

        Returns:
            Whatever the operation returns.

        Raises:
            ConcurrentModificationError: If retries are exhausted.
        """
        attempts = self._max_retries + 1 if self.auto_commit else 1
        attempt = 0
        while True:
            attempt += 1
            try:
                async with self._uow.entity_lock(entity_name, entity_id):
                    result = await operation()
                    if self.auto_commit:
                        await self._uow.commit()
                return result
            except ConcurrentModificationError:
                await self._uow.rollback()
                if attempt >= attempts:
                    raise
                logger.warning(
                    "Concurrent modification, retrying",
                    entity_name=entity_name,
                    entity_id=entity_id,
                    attempt=attempt,
                )
            except BaseException:
                await self._uow.rollback()
                raise

    async def commit(self) -> None:
        await self._uow.commit()

    async def rollback(self) -> None:
        await self._uow.rollback()


class ReadStatusTracker:
    """Tracks when each principal last viewed each entity.

    Independent of entity locking: upserts are idempotent and need no
    coordination across entities.

    Args:
        read_statuses: Read status repository.
        changesets: Changeset repository, for unseen-change detection.
        uow: Unit of work used to commit in auto-commit mode.
        auto_commit: Commit after every write.
        clock: Returns the current time.
    """

    def __init__(
        self,
        read_statuses: IReadStatusRepository,
        changesets: IChangesetRepository,
        uow: IUnitOfWork,
        auto_commit: bool = True,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._read_statuses = read_statuses
        self._changesets = changesets
        self._uow = uow
        self.auto_commit = auto_commit
        self._clock = clock

    async def mark_read(
        self,
        entity_name: str,
        entity_id: str,
        principal: str,
        at: datetime | None = None,
    ) -> datetime:
        """Record that principal viewed the entity at `at` (default: now).

        Returns:
            The stored last-viewed timestamp.
        """
        viewed_at = as_utc(at) if at is not None else as_utc(self._clock())
        await self._read_statuses.upsert(entity_name, entity_id, principal, viewed_at)
        if self.auto_commit:
            await self._uow.commit()
        logger.debug("Marked read", entity_name=entity_name, entity_id=entity_id, principal=principal)
        return viewed_at

    async def mark_unread(
        self,
        entity_name: str,
        entity_id: str | None = None,
        principal: str | None = None,
    ) -> int:
        """Clear read statuses. Omitted keys match every entity or principal.

        Returns:
            Number of read statuses removed.
        """
        removed = await self._read_statuses.clear(entity_name, entity_id, principal)
        if self.auto_commit:
            await self._uow.commit()
        logger.info(
            "Marked unread",
            entity_name=entity_name,
            entity_id=entity_id,
            principal=principal,
            removed=removed,
        )
        return removed

    async def get_status(self, entity_name: str, entity_id: str, principal: str) -> datetime | None:
        """Return when principal last viewed the entity, or None."""
        return await self._read_statuses.get(entity_name, entity_id, principal)

    async def list_statuses(self, entity_name: str, principal: str) -> dict[str, datetime]:
        """Return {entity_id: last_viewed_at} for every entity principal has viewed."""
        return await self._read_statuses.list_for_principal(entity_name, principal)

    async def has_unseen_changes(
        self,
        entity_name: str,
        entity_id: str,
        principal: str,
        last_viewed_at: datetime | None = None,
    ) -> bool:
        """True iff a non-Read event is newer than the principal's last view.

        Args:
            entity_name: Logical type name.
            entity_id: String form of the entity key.
            principal: The viewing principal.
            last_viewed_at: Already-fetched read status, to skip the lookup.
        """
        if last_viewed_at is None:
            last_viewed_at = await self.get_status(entity_name, entity_id, principal)
        newer = await self._changesets.query_by_entity(
            entity_name,
            entity_id,
            from_ts=last_viewed_at,
            actions=MATERIAL_ACTIONS,
            limit=1,
        )
        return bool(newer)


class DeltaComputer(Generic[EntityT]):
    """Computes what changed for an entity between two points in time.

    Args:
        descriptor: The entity type's static descriptor.
        changesets: Changeset repository.
        tracker: Read status tracker providing the default lower bound.
        clock: Returns the current time, the upper bound when to_ts is omitted.
    """

    def __init__(
        self,
        descriptor: EntityDescriptor[EntityT],
        changesets: IChangesetRepository,
        tracker: ReadStatusTracker,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._descriptor = descriptor
        self._changesets = changesets
        self._tracker = tracker
        self._clock = clock

    async def delta(
        self,
        entity_id: Any,
        principal: str,
        from_ts: datetime | None = None,
        to_ts: datetime | None = None,
        mode: DeltaMode | str = DeltaMode.SNAPSHOT,
    ) -> SnapshotChangeset | DifferentialChangeset:
        """Return a snapshot or differential changeset for one entity.

        Args:
            entity_id: The entity key.
            principal: Principal whose read status provides the default from_ts.
            from_ts: Exclusive lower bound. Defaults to the principal's last
                view, or the start of history if never viewed.
            to_ts: Inclusive upper bound. Defaults to no upper bound.
            mode: Snapshot or Differential.

        Returns:
            SnapshotChangeset with the state folded from every event through
            to_ts, or DifferentialChangeset with the events in (from_ts, to_ts].

        Raises:
            UnsupportedModeError: If mode is neither Snapshot nor Differential.
            InvalidRangeError: If from_ts is after to_ts, or after now when
                to_ts is omitted.
            EntityNotFoundError: If the entity has no recorded history.
        """
        try:
            resolved_mode = DeltaMode(mode)
        except ValueError as exc:
            raise UnsupportedModeError(mode) from exc

        name = self._descriptor.entity_name
        key = self._descriptor.key(entity_id)
        lower = as_utc(from_ts) if from_ts is not None else None
        upper = as_utc(to_ts) if to_ts is not None else None
        if lower is not None:
            bound = upper if upper is not None else as_utc(self._clock())
            if lower > bound:
                raise InvalidRangeError(lower, bound)

        if await self._changesets.latest(name, key) is None:
            raise EntityNotFoundError(name, entity_id)

        if lower is None:
            lower = await self._tracker.get_status(name, key, principal)
            if lower is not None and upper is not None and lower > upper:
                raise InvalidRangeError(lower, upper)

        if resolved_mode == DeltaMode.DIFFERENTIAL:
            events = await self._changesets.query_by_entity(name, key, from_ts=lower, to_ts=upper)
            return DifferentialChangeset(
                entity_name=name,
                entity_id=key,
                from_ts=lower,
                to_ts=upper,
                events=events,
            )

        events = await self._changesets.query_by_entity(name, key, to_ts=upper)
        folded = fold(events)
        recent = [event for event in events if lower is None or event.created_at > lower]
        return SnapshotChangeset(
            entity_name=name,
            entity_id=key,
            from_ts=lower,
            to_ts=upper,
            state=self._descriptor.materialize(entity_id, folded.values),
            deleted=folded.event_count > 0 and not folded.exists,
            changed_fields=changed_fields(recent),
        )


class RestoreEngine(Generic[EntityT]):
    """Restores or copies entities from live or historical state.

    History only grows: every restore appends a Restore event and every copy
    appends a Create event for the new entity. No prior event is touched.

    Args:
        descriptor: The entity type's static descriptor.
        entities: Entity repository.
        changesets: Changeset repository.
        recorder: Change recorder appending the new events.
        runner: Transaction runner for the atomic write path.
    """

    def __init__(
        self,
        descriptor: EntityDescriptor[EntityT],
        entities: IEntityRepository,
        changesets: IChangesetRepository,
        recorder: ChangeRecorder,
        runner: TransactionRunner,
    ) -> None:
        self._descriptor = descriptor
        self._entities = entities
        self._changesets = changesets
        self._recorder = recorder
        self._runner = runner

    async def _material_history(self, entity_id: Any) -> list[ChangeEvent]:
        name = self._descriptor.entity_name
        events = await self._changesets.query_by_entity(
            name, self._descriptor.key(entity_id), actions=MATERIAL_ACTIONS
        )
        if not events:
            raise EntityNotFoundError(name, entity_id)
        return events

    async def _changeset_of(self, entity_id: Any, changeset_id: uuid.UUID) -> ChangeEvent:
        event = await self._changesets.get(changeset_id)
        if event.entity_name != self._descriptor.entity_name or event.entity_id != self._descriptor.key(entity_id):
            raise ChangesetNotFoundError(changeset_id)
        return event

    async def _apply(self, entity_id: Any, target_values: dict[str, Any], history: list[ChangeEvent]) -> dict[str, Any]:
        """Make target_values the live state and append the Restore event."""
        target = self._descriptor.materialize(entity_id, target_values)
        if await self._entities.exists(entity_id):
            current = await self._entities.get_by_id(entity_id, for_update=True)
            restored = await self._entities.update(entity_id, target)
        else:
            current = self._descriptor.materialize(entity_id, fold(history).values)
            restored = await self._entities.create(target)

        await self._recorder.record(
            self._descriptor.entity_name,
            self._descriptor.key(entity_id),
            ChangeAction.RESTORE,
            self._descriptor.diff(current, restored),
        )
        return restored

    async def _create_copy(self, new_id: Any, values: dict[str, Any]) -> dict[str, Any]:
        created = await self._entities.create(self._descriptor.materialize(new_id, values))
        await self._recorder.record(
            self._descriptor.entity_name,
            self._descriptor.key(new_id),
            ChangeAction.CREATE,
            self._descriptor.diff(None, created),
        )
        return created

    async def restore(self, entity_id: Any) -> EntityT:
        """Undo the most recent material change of an entity.

        A latest Update or Restore is reverted; a latest Delete is undone by
        reinstating the entity with its last state.

        Raises:
            EntityNotFoundError: If the entity has no history.
            NothingToRestoreError: If the only material event is its Create.
        """

        async def operation() -> dict[str, Any]:
            history = await self._material_history(entity_id)
            if len(history) < 2:
                raise NothingToRestoreError(self._descriptor.entity_name, entity_id)
            target = fold(history[:-1]).values
            return await self._apply(entity_id, target, history)

        restored = await self._runner.run(self._descriptor.entity_name, self._descriptor.key(entity_id), operation)
        logger.info("Entity restored", entity_name=self._descriptor.entity_name, entity_id=str(entity_id))
        return self._descriptor.from_state(restored)

    async def restore_from_changeset(self, entity_id: Any, changeset_id: uuid.UUID) -> EntityT:
        """Make the state as of a specific change event the live state.

        Raises:
            EntityNotFoundError: If the entity has no history.
            ChangesetNotFoundError: If the event is unknown or belongs to another entity.
        """

        async def operation() -> dict[str, Any]:
            history = await self._material_history(entity_id)
            event = await self._changeset_of(entity_id, changeset_id)
            target = fold_through(history, event).values
            return await self._apply(entity_id, target, history)

        restored = await self._runner.run(self._descriptor.entity_name, self._descriptor.key(entity_id), operation)
        logger.info(
            "Entity restored from changeset",
            entity_name=self._descriptor.entity_name,
            entity_id=str(entity_id),
            changeset_id=str(changeset_id),
        )
        return self._descriptor.from_state(restored)

    async def copy(self, entity_id: Any) -> EntityT:
        """Create a new entity with the live state of an existing one.

        Raises:
            EntityNotFoundError: If there is no live entity with that key.
        """
        new_id = self._descriptor.new_id()

        async def operation() -> dict[str, Any]:
            source = await self._entities.get_by_id(entity_id)
            return await self._create_copy(new_id, source)

        created = await self._runner.run(self._descriptor.entity_name, self._descriptor.key(new_id), operation)
        logger.info(
            "Entity copied",
            entity_name=self._descriptor.entity_name,
            source_id=str(entity_id),
            new_id=str(new_id),
        )
        return self._descriptor.from_state(created)

    async def copy_from_changeset(self, entity_id: Any, changeset_id: uuid.UUID) -> EntityT:
        """Create a new entity with the state of an existing one as of a change event.

        Raises:
            EntityNotFoundError: If the entity has no history.
            ChangesetNotFoundError: If the event is unknown or belongs to another entity.
        """
        new_id = self._descriptor.new_id()

        async def operation() -> dict[str, Any]:
            history = await self._material_history(entity_id)
            event = await self._changeset_of(entity_id, changeset_id)
            return await self._create_copy(new_id, fold_through(history, event).values)

        created = await self._runner.run(self._descriptor.entity_name, self._descriptor.key(new_id), operation)
        logger.info(
            "Entity copied from changeset",
            entity_name=self._descriptor.entity_name,
            source_id=str(entity_id),
            changeset_id=str(changeset_id),
            new_id=str(new_id),
        )
        return self._descriptor.from_state(created)


class HistoricalCrudService(Generic[EntityT]):
    """CRUD over one tracked entity type that transparently produces history.

    Composes the Crud, Historical, ReadStatus and Delta capabilities. The
    principal provider stamps every change event and keys every read status.

    Args:
        descriptor: The entity type's static descriptor.
        entities: Entity repository.
        changesets: Changeset repository.
        read_statuses: Read status repository.
        uow: Unit of work shared by the three repositories.
        principals: Source of the acting principal.
        auto_commit: Commit each mutation immediately.
        max_retries: Retries after losing a concurrent write race.
        mark_read_on_get: Update the read status on get_by_id.
        record_read_events: Append a Read event whenever an entity is viewed.
        most_recently_used_limit: Default size of most_recently_used().
        clock: Returns the current time.
    """

    def __init__(
        self,
        descriptor: EntityDescriptor[EntityT],
        entities: IEntityRepository,
        changesets: IChangesetRepository,
        read_statuses: IReadStatusRepository,
        uow: IUnitOfWork,
        principals: IPrincipalProvider,
        auto_commit: bool = True,
        max_retries: int = 3,
        mark_read_on_get: bool = True,
        record_read_events: bool = True,
        most_recently_used_limit: int = 10,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._descriptor = descriptor
        self._entities = entities
        self._changesets = changesets
        self._principals = principals
        self._mark_read_on_get = mark_read_on_get
        self._record_read_events = record_read_events
        self._most_recently_used_limit = most_recently_used_limit

        self._runner = TransactionRunner(uow, auto_commit=auto_commit, max_retries=max_retries)
        self._recorder = ChangeRecorder(changesets, principals, clock=clock)
        self.read_status = ReadStatusTracker(read_statuses, changesets, uow, auto_commit=auto_commit, clock=clock)
        self.deltas = DeltaComputer(descriptor, changesets, self.read_status, clock=clock)
        self.restores = RestoreEngine(descriptor, entities, changesets, self._recorder, self._runner)

    @property
    def entity_name(self) -> str:
        return self._descriptor.entity_name

    @property
    def auto_commit(self) -> bool:
        return self._runner.auto_commit

    @auto_commit.setter
    def auto_commit(self, value: bool) -> None:
        self._runner.auto_commit = value
        self.read_status.auto_commit = value

    def _key(self, entity_id: Any) -> str:
        return self._descriptor.key(entity_id)

    async def commit(self) -> None:
        """Commit everything pending in deferred (auto_commit=False) mode."""
        await self._runner.commit()

    async def rollback(self) -> None:
        """Discard everything pending in deferred (auto_commit=False) mode."""
        await self._runner.rollback()

    # ------------------------------------------------------------------
    # Crud
    # ------------------------------------------------------------------

    async def create(self, entity: EntityT) -> EntityT:
        """Persist a new entity and record its Create event.

        Raises:
            ValidationError: If a live entity already has the given id.
        """
        state = self._descriptor.to_state(entity)
        entity_id = state.get(self._descriptor.id_field)
        if entity_id is None:
            entity_id = self._descriptor.new_id()
        state = self._descriptor.materialize(entity_id, state)

        async def operation() -> dict[str, Any]:
            if await self._entities.exists(entity_id):
                raise ValidationError(
                    message=f"{self.entity_name} '{entity_id}' already exists",
                    field=self._descriptor.id_field,
                )
            created = await self._entities.create(state)
            await self._recorder.record(
                self.entity_name, self._key(entity_id), ChangeAction.CREATE, self._descriptor.diff(None, created)
            )
            return created

        created = await self._runner.run(self.entity_name, self._key(entity_id), operation)
        logger.info("Entity created", entity_name=self.entity_name, entity_id=str(entity_id))
        return self._descriptor.from_state(created)

    async def get_by_id(self, entity_id: Any) -> EntityT:
        """Return a live entity, marking it read for the acting principal if configured.

        Raises:
            EntityNotFoundError: If there is no live entity with that key.
        """
        state = await self._entities.get_by_id(entity_id)
        if self._mark_read_on_get:
            await self._mark_viewed(entity_id)
        return self._descriptor.from_state(state)

    async def get_all(self) -> list[EntityT]:
        """Return every live entity."""
        return [self._descriptor.from_state(state) for state in await self._entities.list_all()]

    async def exists(self, entity_id: Any) -> bool:
        """Return True if a live entity has that key."""
        return await self._entities.exists(entity_id)

    async def update(self, entity_id: Any, entity: EntityT) -> EntityT:
        """Replace an entity's tracked fields and record an Update event.

        No event is recorded when nothing changed.

        Raises:
            EntityNotFoundError: If there is no live entity with that key.
        """
        modified = self._descriptor.materialize(entity_id, self._descriptor.to_state(entity))

        async def operation() -> dict[str, Any]:
            current = await self._entities.get_by_id(entity_id, for_update=True)
            changes = self._descriptor.diff(current, modified)
            if not changes:
                return current
            updated = await self._entities.update(entity_id, modified)
            await self._recorder.record(self.entity_name, self._key(entity_id), ChangeAction.UPDATE, changes)
            return updated

        updated = await self._runner.run(self.entity_name, self._key(entity_id), operation)
        logger.info("Entity updated", entity_name=self.entity_name, entity_id=str(entity_id))
        return self._descriptor.from_state(updated)

    async def delete(self, entity_id: Any) -> EntityT:
        """Remove a live entity and record a Delete event. Its history is kept.

        Raises:
            EntityNotFoundError: If there is no live entity with that key.
        """

        async def operation() -> dict[str, Any]:
            deleted = await self._entities.delete(entity_id)
            await self._recorder.record(self.entity_name, self._key(entity_id), ChangeAction.DELETE, {})
            return deleted

        deleted = await self._runner.run(self.entity_name, self._key(entity_id), operation)
        logger.info("Entity deleted", entity_name=self.entity_name, entity_id=str(entity_id))
        return self._descriptor.from_state(deleted)

    # ------------------------------------------------------------------
    # Historical
    # ------------------------------------------------------------------

    async def get_history(self, entity_id: Any) -> list[ChangeEvent]:
        """Return every change event of an entity, oldest first.

        Raises:
            EntityNotFoundError: If the entity has no history.
        """
        events = await self._changesets.query_by_entity(self.entity_name, self._key(entity_id))
        if not events:
            raise EntityNotFoundError(self.entity_name, entity_id)
        return events

    async def restore(self, entity_id: Any) -> EntityT:
        return await self.restores.restore(entity_id)

    async def restore_from_changeset(self, entity_id: Any, changeset_id: uuid.UUID) -> EntityT:
        return await self.restores.restore_from_changeset(entity_id, changeset_id)

    async def copy(self, entity_id: Any) -> EntityT:
        return await self.restores.copy(entity_id)

    async def copy_from_changeset(self, entity_id: Any, changeset_id: uuid.UUID) -> EntityT:
        return await self.restores.copy_from_changeset(entity_id, changeset_id)

    async def most_recently_used(self, limit: int | None = None) -> list[EntityT]:
        """Return the live entities the acting principal viewed most recently, newest first."""
        if limit is None:
            limit = self._most_recently_used_limit
        principal = self._principals.get_principal_id()
        reads = await self._changesets.query_by_principal(self.entity_name, principal, actions=[ChangeAction.READ])

        result: list[EntityT] = []
        seen: set[str] = set()
        for event in reversed(reads):
            if len(result) >= limit:
                break
            if event.entity_id in seen:
                continue
            seen.add(event.entity_id)
            entity_id = self._descriptor.parse_key(event.entity_id)
            if not await self._entities.exists(entity_id):
                continue
            result.append(self._descriptor.from_state(await self._entities.get_by_id(entity_id)))
        return result

    # ------------------------------------------------------------------
    # ReadStatus
    # ------------------------------------------------------------------

    async def _mark_viewed(self, entity_id: Any) -> None:
        key = self._key(entity_id)
        if self._record_read_events:

            async def operation() -> ChangeEvent:
                return await self._recorder.record(self.entity_name, key, ChangeAction.READ, {})

            await self._runner.run(self.entity_name, key, operation)
        await self.read_status.mark_read(self.entity_name, key, self._principals.get_principal_id())

    async def mark_one_as_read(self, entity_id: Any) -> None:
        """Mark one live entity as viewed now by the acting principal.

        Raises:
            EntityNotFoundError: If there is no live entity with that key.
        """
        if not await self._entities.exists(entity_id):
            raise EntityNotFoundError(self.entity_name, entity_id)
        await self._mark_viewed(entity_id)

    async def mark_one_as_unread(self, entity_id: Any) -> None:
        """Forget when the acting principal last viewed one entity."""
        await self.read_status.mark_unread(self.entity_name, self._key(entity_id), self._principals.get_principal_id())

    async def mark_all_as_read(self) -> None:
        """Mark every live entity as viewed now by the acting principal."""
        principal = self._principals.get_principal_id()
        for state in await self._entities.list_all():
            await self.read_status.mark_read(self.entity_name, self._key(state[self._descriptor.id_field]), principal)

    async def mark_all_as_unread(self) -> None:
        """Forget every read status of the acting principal for this entity type."""
        await self.read_status.mark_unread(self.entity_name, principal=self._principals.get_principal_id())

    async def _readable(self, state: dict[str, Any], last_viewed: datetime | None) -> ReadableStatus:
        key = self._key(state[self._descriptor.id_field])
        principal = self._principals.get_principal_id()
        return ReadableStatus(
            data=self._descriptor.from_state(state),
            metadata=ReadableStatusMetadata(
                last_viewed=last_viewed,
                new_stuff_available=await self.read_status.has_unseen_changes(
                    self.entity_name, key, principal, last_viewed_at=last_viewed
                ),
            ),
        )

    async def get_read_status(self) -> list[ReadableStatus]:
        """Return every live entity paired with the acting principal's read metadata."""
        statuses = await self.read_status.list_statuses(self.entity_name, self._principals.get_principal_id())
        result = []
        for state in await self._entities.list_all():
            last_viewed = statuses.get(self._key(state[self._descriptor.id_field]))
            result.append(await self._readable(state, last_viewed))
        return result

    async def get_read_status_by_id(self, entity_id: Any) -> ReadableStatus:
        """Return one live entity paired with the acting principal's read metadata.

        Raises:
            EntityNotFoundError: If there is no live entity with that key.
        """
        state = await self._entities.get_by_id(entity_id)
        last_viewed = await self.read_status.get_status(
            self.entity_name, self._key(entity_id), self._principals.get_principal_id()
        )
        return await self._readable(state, last_viewed)

    # ------------------------------------------------------------------
    # Delta
    # ------------------------------------------------------------------

    async def delta(
        self,
        entity_id: Any,
        from_ts: datetime | None = None,
        to_ts: datetime | None = None,
        mode: DeltaMode | str = DeltaMode.SNAPSHOT,
    ) -> SnapshotChangeset | DifferentialChangeset:
        """What changed for the acting principal. See DeltaComputer.delta."""
        return await self.deltas.delta(
            entity_id,
            self._principals.get_principal_id(),
            from_ts=from_ts,
            to_ts=to_ts,
            mode=mode,
        )
