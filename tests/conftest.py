"""Test fixtures for entity-history-engine.

Provides:
- FakeClock / clock: a manually advanced UTC clock
- principal: the default acting principal
- memory_db: a fresh in-memory database
- make_service: factory building Item HistoricalCrudService instances over memory_db
- make_item: builds ItemData values
"""

import uuid
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from entity_history_engine.adapters.memory import (
    InMemoryChangesetRepository,
    InMemoryDatabase,
    InMemoryEntityRepository,
    InMemoryReadStatusRepository,
    InMemoryUnitOfWork,
)
from entity_history_engine.auth import StaticPrincipalProvider
from entity_history_engine.core.items import ITEM_DESCRIPTOR, ItemData
from entity_history_engine.core.services import HistoricalCrudService

T0 = datetime(2024, 1, 1, 12, 0, 0, tzinfo=UTC)


class FakeClock:
    """Clock returning a fixed instant until advanced.

    Args:
        start: The initial instant.
    """

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 1.0) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


@pytest.fixture()
def clock() -> FakeClock:
    """Return a clock starting at T0."""
    return FakeClock()


@pytest.fixture()
def principal() -> str:
    return "alice"


@pytest.fixture()
def memory_db() -> InMemoryDatabase:
    """Return an empty in-memory database shared by every service of a test."""
    return InMemoryDatabase()


@pytest.fixture()
def make_service(
    memory_db: InMemoryDatabase,
    clock: FakeClock,
    principal: str,
) -> Callable[..., HistoricalCrudService[ItemData]]:
    """Factory for Item services over memory_db.

    Each call gets its own unit of work, like one request against a shared
    database.

    Args:
        memory_db: Injected in-memory database.
        clock: Injected fake clock.
        principal: Injected default principal.

    Returns:
        Callable accepting principal=... plus HistoricalCrudService keyword overrides.
    """

    def factory(principal_id: str | None = None, **overrides: Any) -> HistoricalCrudService[ItemData]:
        uow = InMemoryUnitOfWork(memory_db)
        kwargs: dict[str, Any] = {
            "descriptor": ITEM_DESCRIPTOR,
            "entities": InMemoryEntityRepository(uow, ITEM_DESCRIPTOR),
            "changesets": InMemoryChangesetRepository(uow),
            "read_statuses": InMemoryReadStatusRepository(memory_db),
            "uow": uow,
            "principals": StaticPrincipalProvider(principal_id or principal),
            "clock": clock,
        }
        kwargs.update(overrides)
        return HistoricalCrudService(**kwargs)

    return factory


@pytest.fixture()
def service(make_service: Callable[..., HistoricalCrudService[ItemData]]) -> HistoricalCrudService[ItemData]:
    """Auto-commit Item service acting as the default principal."""
    return make_service()


def make_item(
    item_id: uuid.UUID | None = None,
    name: str | None = "widget",
    value: str | None = "a",
    description: str | None = None,
) -> ItemData:
    """Build an ItemData for tests."""
    return ItemData(id=item_id, name=name, value=value, description=description)
