"""Tests for the SQLAlchemy adapter layer.

Runs the repositories against an in-memory SQLite database (aiosqlite) with the
real schema, so query construction, ordering, the unique event sequence and
the read status upsert are exercised for real.

Tests verify:
- Immutability of ChangesetRepository (no update/delete)
- Range bounds and (created_at, sequence) ordering
- Duplicate sequences surface as ConcurrentModificationError
- Timestamps round-trip as aware UTC
- HistoricalCrudService works unchanged on the SQL backend
"""

import uuid
from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio
from conftest import FakeClock, make_item
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from entity_history_engine.adapters.repositories import (
    ChangesetRepository,
    ReadStatusRepository,
    SqlAlchemyEntityRepository,
    SqlAlchemyUnitOfWork,
)
from entity_history_engine.auth import StaticPrincipalProvider
from entity_history_engine.core.items import ITEM_DESCRIPTOR, ItemData
from entity_history_engine.core.locks import EntityLocks
from entity_history_engine.core.models import Item
from entity_history_engine.core.services import HistoricalCrudService
from entity_history_engine.database import Base
from entity_history_engine.errors import (
    ChangesetNotFoundError,
    ConcurrentModificationError,
    EntityNotFoundError,
)
from entity_history_engine.history.events import ChangeAction, ChangeEvent, DeltaMode

T0 = datetime(2024, 1, 1, 12, 0, 0, tzinfo=UTC)


@pytest_asyncio.fixture()
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """In-memory SQLite engine with the full schema created."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture()
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture()
async def session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


def make_event(
    sequence: int,
    seconds: int = 0,
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


class TestChangesetRepository:
    """Tests for ChangesetRepository — append-only event log."""

    def test_repository_has_no_update_or_delete_method(self, session: AsyncSession) -> None:
        repo = ChangesetRepository(session)

        assert not hasattr(repo, "update"), "ChangesetRepository must not have update()"
        assert not hasattr(repo, "delete"), "ChangesetRepository must not have delete()"

    @pytest.mark.asyncio()
    async def test_append_and_get_round_trip(self, session: AsyncSession) -> None:
        repo = ChangesetRepository(session)
        event = make_event(1, action=ChangeAction.CREATE, name="w", value=None)

        event_id = await repo.append(event)
        await session.commit()

        stored = await repo.get(event_id)
        assert stored == event
        assert stored.created_at.tzinfo is not None
        assert stored.field_changes == {"name": "w", "value": None}

    @pytest.mark.asyncio()
    async def test_get_unknown_event_raises(self, session: AsyncSession) -> None:
        with pytest.raises(ChangesetNotFoundError):
            await ChangesetRepository(session).get(uuid.uuid4())

    @pytest.mark.asyncio()
    async def test_query_bounds_and_order(self, session: AsyncSession) -> None:
        repo = ChangesetRepository(session)
        for sequence, seconds in ((3, 10), (1, 0), (2, 10), (4, 20)):
            await repo.append(make_event(sequence, seconds))
        await session.commit()

        everything = await repo.query_by_entity("Item", "e1")
        assert [e.sequence for e in everything] == [1, 2, 3, 4]

        ranged = await repo.query_by_entity("Item", "e1", T0, T0 + timedelta(seconds=10))
        assert [e.sequence for e in ranged] == [2, 3]

        newest = await repo.query_by_entity("Item", "e1", descending=True, limit=2)
        assert [e.sequence for e in newest] == [4, 3]

    @pytest.mark.asyncio()
    async def test_latest_with_action_filter(self, session: AsyncSession) -> None:
        repo = ChangesetRepository(session)
        await repo.append(make_event(1, 0, ChangeAction.CREATE))
        await repo.append(make_event(2, 1, ChangeAction.UPDATE))
        await repo.append(make_event(3, 2, ChangeAction.READ))

        assert (await repo.latest("Item", "e1")).sequence == 3
        assert (await repo.latest("Item", "e1", actions=[ChangeAction.UPDATE])).sequence == 2
        assert await repo.latest("Item", "missing") is None

    @pytest.mark.asyncio()
    async def test_duplicate_sequence_raises_concurrent_modification(self, session: AsyncSession) -> None:
        repo = ChangesetRepository(session)
        await repo.append(make_event(1))

        with pytest.raises(ConcurrentModificationError):
            await repo.append(make_event(1, 5))
        await session.rollback()

    @pytest.mark.asyncio()
    async def test_query_by_principal(self, session: AsyncSession) -> None:
        repo = ChangesetRepository(session)
        await repo.append(make_event(1, 3, ChangeAction.READ, entity_id="e1"))
        await repo.append(make_event(1, 1, ChangeAction.READ, entity_id="e2"))
        await repo.append(make_event(2, 2, ChangeAction.UPDATE, entity_id="e2"))
        await repo.append(make_event(2, 4, ChangeAction.READ, entity_id="e1", created_by="bob"))

        reads = await repo.query_by_principal("Item", "alice", [ChangeAction.READ])
        assert [(e.entity_id, e.sequence) for e in reads] == [("e2", 1), ("e1", 1)]


class TestReadStatusRepository:
    """Tests for ReadStatusRepository — idempotent upserts."""

    @pytest.mark.asyncio()
    async def test_upsert_overwrites(self, session: AsyncSession) -> None:
        repo = ReadStatusRepository(session)
        await repo.upsert("Item", "e1", "alice", T0)
        await repo.upsert("Item", "e1", "alice", T0 + timedelta(minutes=5))
        await session.commit()

        assert await repo.get("Item", "e1", "alice") == T0 + timedelta(minutes=5)
        assert await repo.list_for_principal("Item", "alice") == {"e1": T0 + timedelta(minutes=5)}

    @pytest.mark.asyncio()
    async def test_get_missing_returns_none(self, session: AsyncSession) -> None:
        assert await ReadStatusRepository(session).get("Item", "e1", "alice") is None

    @pytest.mark.asyncio()
    async def test_clear_by_subset(self, session: AsyncSession) -> None:
        repo = ReadStatusRepository(session)
        for entity_id in ("e1", "e2"):
            for principal in ("alice", "bob"):
                await repo.upsert("Item", entity_id, principal, T0)

        assert await repo.clear("Item", "e1", "alice") == 1
        assert await repo.clear("Item", principal="bob") == 2
        assert await repo.list_for_principal("Item", "alice") == {"e2": T0}
        assert await repo.list_for_principal("Item", "bob") == {}


class TestSqlAlchemyEntityRepository:
    """Tests for the state-dict entity repository over the Item model."""

    @pytest.mark.asyncio()
    async def test_crud(self, session: AsyncSession) -> None:
        repo = SqlAlchemyEntityRepository(session, Item, ITEM_DESCRIPTOR)
        item_id = uuid.uuid4()

        created = await repo.create({"id": item_id, "name": "w", "value": "a"})
        assert created == {"id": item_id, "name": "w", "value": "a", "description": None}
        assert await repo.exists(item_id)

        updated = await repo.update(item_id, {"name": "w", "value": "b", "description": "d"})
        assert updated["value"] == "b"
        assert (await repo.get_by_id(item_id))["description"] == "d"
        assert [s["id"] for s in await repo.list_all()] == [item_id]

        deleted = await repo.delete(item_id)
        assert deleted["value"] == "b"
        assert not await repo.exists(item_id)

    @pytest.mark.asyncio()
    async def test_missing_entity_raises(self, session: AsyncSession) -> None:
        repo = SqlAlchemyEntityRepository(session, Item, ITEM_DESCRIPTOR)

        with pytest.raises(EntityNotFoundError):
            await repo.get_by_id(uuid.uuid4())
        with pytest.raises(EntityNotFoundError):
            await repo.delete(uuid.uuid4())


class TestHistoricalCrudServiceOnSql:
    """The service layer over the SQLAlchemy backend."""

    @staticmethod
    def _service(
        session: AsyncSession,
        clock: FakeClock,
        principal: str = "alice",
        auto_commit: bool = True,
    ) -> HistoricalCrudService[ItemData]:
        return HistoricalCrudService(
            descriptor=ITEM_DESCRIPTOR,
            entities=SqlAlchemyEntityRepository(session, Item, ITEM_DESCRIPTOR),
            changesets=ChangesetRepository(session),
            read_statuses=ReadStatusRepository(session),
            uow=SqlAlchemyUnitOfWork(session, EntityLocks()),
            principals=StaticPrincipalProvider(principal),
            auto_commit=auto_commit,
            clock=clock,
        )

    @pytest.mark.asyncio()
    async def test_create_update_restore(self, session: AsyncSession, clock: FakeClock) -> None:
        service = self._service(session, clock)
        item_id = uuid.uuid4()
        t0 = clock()
        await service.create(make_item(item_id, value="a"))
        t1 = clock.advance()
        await service.update(item_id, make_item(item_id, value="b"))

        differential = await service.delta(item_id, from_ts=t0, to_ts=t1, mode=DeltaMode.DIFFERENTIAL)
        assert [e.field_changes for e in differential.events] == [{"value": "b"}]
        snapshot = await service.delta(item_id, to_ts=t1)
        assert snapshot.state["value"] == "b"

        clock.advance()
        restored = await service.restore(item_id)

        assert restored.value == "a"
        history = await service.get_history(item_id)
        assert [e.action for e in history] == [ChangeAction.CREATE, ChangeAction.UPDATE, ChangeAction.RESTORE]
        assert history[-1].field_changes == {"value": "a"}

    @pytest.mark.asyncio()
    async def test_delete_and_restore(self, session: AsyncSession, clock: FakeClock) -> None:
        service = self._service(session, clock)
        created = await service.create(make_item(value="a"))
        clock.advance()
        await service.delete(created.id)

        restored = await service.restore(created.id)

        assert restored.id == created.id
        assert (await service.get_by_id(created.id)).value == "a"

    @pytest.mark.asyncio()
    async def test_read_status_and_most_recently_used(self, session: AsyncSession, clock: FakeClock) -> None:
        service = self._service(session, clock)
        one = await service.create(make_item(name="one"))
        two = await service.create(make_item(name="two"))
        clock.advance()
        await service.get_by_id(two.id)
        clock.advance()
        await service.get_by_id(one.id)

        assert [item.id for item in await service.most_recently_used()] == [one.id, two.id]
        status = await service.get_read_status_by_id(one.id)
        assert status.metadata.last_viewed == clock()
        assert not status.metadata.new_stuff_available

    @pytest.mark.asyncio()
    async def test_deferred_rollback_discards_entity_and_event(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: FakeClock,
    ) -> None:
        async with session_factory() as session:
            service = self._service(session, clock, auto_commit=False)
            created = await service.create(make_item())
            await service.rollback()

        async with session_factory() as session:
            reader = self._service(session, clock)
            assert not await reader.exists(created.id)
            with pytest.raises(EntityNotFoundError):
                await reader.get_history(created.id)

    @pytest.mark.asyncio()
    async def test_deferred_commit_persists_entity_and_event(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: FakeClock,
    ) -> None:
        async with session_factory() as session:
            service = self._service(session, clock, auto_commit=False)
            created = await service.create(make_item())
            await service.commit()

        async with session_factory() as session:
            reader = self._service(session, clock)
            assert await reader.exists(created.id)
            assert len(await reader.get_history(created.id)) == 1
