"""Change recorder for the entity history engine.

Provides the dependency-injected helper that services use to append change
events. Handles UUID generation, principal stamping, timestamp calculation and
per-entity sequence assignment so callers only supply the action and the field
changes.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from datetime import datetime
from typing import TYPE_CHECKING, Any

from entity_history_engine.history.events import ChangeAction, ChangeEvent, as_utc, utc_now
from entity_history_engine.observability import get_logger

if TYPE_CHECKING:
    from entity_history_engine.core.interfaces import IChangesetRepository, IPrincipalProvider

logger = get_logger(__name__)


class ChangeRecorder:
    """Appends change events to the changeset repository.

    The caller must hold the entity lock of the unit of work the repository
    belongs to, so that sequence assignment cannot interleave with another
    writer of the same entity in this process. Writers in other processes are
    caught by the store's (entity, sequence) uniqueness.

    Args:
        changesets: The append-only changeset repository.
        principals: Source of the acting principal identifier.
        clock: Returns the current time. Defaults to the UTC wall clock.
    """

    def __init__(
        self,
        changesets: IChangesetRepository,
        principals: IPrincipalProvider,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._changesets = changesets
        self._principals = principals
        self._clock = clock

    async def record(
        self,
        entity_name: str,
        entity_id: str,
        action: ChangeAction,
        field_changes: dict[str, Any],
    ) -> ChangeEvent:
        """Build and append the next change event of an entity.

        The timestamp is clamped to the previous event's timestamp if the clock
        lags, so created_at never decreases along the sequence.

        Args:
            entity_name: Logical type name of the entity.
            entity_id: String form of the entity key.
            action: The nature of the change.
            field_changes: Only the fields that changed.

        Returns:
            The appended ChangeEvent.
        """
        previous = await self._changesets.latest(entity_name, entity_id)
        created_at = as_utc(self._clock())
        sequence = 1
        if previous is not None:
            sequence = previous.sequence + 1
            if created_at < previous.created_at:
                created_at = previous.created_at

        event = ChangeEvent(
            id=uuid.uuid4(),
            entity_name=entity_name,
            entity_id=entity_id,
            action=action,
            field_changes=dict(field_changes),
            created_by=self._principals.get_principal_id(),
            created_at=created_at,
            sequence=sequence,
        )
        await self._changesets.append(event)

        logger.info(
            "Change event recorded",
            event_id=str(event.id),
            entity_name=entity_name,
            entity_id=entity_id,
            action=action.value,
            sequence=sequence,
            fields=sorted(field_changes),
        )
        return event
