"""Typed error hierarchy for the entity history engine.

The core raises these errors and never translates them into transport status
codes. The API layer (api/router.py) owns that mapping.

Hierarchy:
- HistoryEngineError
  - NotFoundError
    - EntityNotFoundError
    - ChangesetNotFoundError
  - ValidationError
    - InvalidRangeError
    - UnsupportedModeError
  - NothingToRestoreError
  - ConcurrentModificationError
"""

from __future__ import annotations

from datetime import datetime
from typing import Any


class HistoryEngineError(Exception):
    """Base class for every error raised by the history engine.

    Args:
        message: Human-readable description of the failure.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(HistoryEngineError):
    """A requested resource does not exist.

    Args:
        resource: Name of the resource kind that was looked up.
        resource_id: String form of the identifier that was not found.
    """

    def __init__(self, resource: str, resource_id: str) -> None:
        super().__init__(f"{resource} '{resource_id}' not found")
        self.resource = resource
        self.resource_id = resource_id


class EntityNotFoundError(NotFoundError):
    """The tracked entity is unknown, or has been deleted when a live one is required."""

    def __init__(self, entity_name: str, entity_id: Any) -> None:
        super().__init__(resource=entity_name, resource_id=str(entity_id))
        self.entity_name = entity_name
        self.entity_id = entity_id


class ChangesetNotFoundError(NotFoundError):
    """The change event id is unknown, or belongs to a different entity."""

    def __init__(self, changeset_id: Any) -> None:
        super().__init__(resource="ChangeEvent", resource_id=str(changeset_id))
        self.changeset_id = changeset_id


class ValidationError(HistoryEngineError):
    """A request was well-formed but semantically invalid.

    Args:
        message: Description of the validation failure.
        field: Optional name of the offending request field.
    """

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class InvalidRangeError(ValidationError):
    """A delta was requested with a lower bound after its upper bound."""

    def __init__(self, from_ts: datetime, to_ts: datetime) -> None:
        super().__init__(
            message=f"Invalid range: from ({from_ts.isoformat()}) is after to ({to_ts.isoformat()})",
            field="from",
        )
        self.from_ts = from_ts
        self.to_ts = to_ts


class UnsupportedModeError(ValidationError):
    """A delta was requested with a mode other than Snapshot or Differential."""

    def __init__(self, mode: Any) -> None:
        super().__init__(
            message=f"Unsupported delta mode '{mode}'. Expected Snapshot or Differential.",
            field="mode",
        )
        self.mode = mode


class NothingToRestoreError(HistoryEngineError):
    """The entity has no earlier materialized state to restore to."""

    def __init__(self, entity_name: str, entity_id: Any) -> None:
        super().__init__(f"{entity_name} '{entity_id}' has no prior state to restore")
        self.entity_name = entity_name
        self.entity_id = entity_id


class ConcurrentModificationError(HistoryEngineError):
    """Another writer committed a change to the same entity first."""

    def __init__(self, entity_name: str, entity_id: Any) -> None:
        super().__init__(f"{entity_name} '{entity_id}' was modified concurrently")
        self.entity_name = entity_name
        self.entity_id = entity_id
