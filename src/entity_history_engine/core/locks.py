"""Per-entity asyncio locks.

Serializes writers of the same (entity_name, entity_id) inside one process.
Writers of different entities never wait on each other. Cross-process
serialization is the database's job (row locks and the unique event sequence).
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


class EntityLocks:
    """Registry of lazily created locks, one per entity, dropped when idle."""

    def __init__(self) -> None:
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}
        self._waiters: dict[tuple[str, str], int] = {}

    @asynccontextmanager
    async def hold(self, entity_name: str, entity_id: str) -> AsyncIterator[None]:
        """Hold the lock of one entity for the duration of the context."""
        key = (entity_name, entity_id)
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)
