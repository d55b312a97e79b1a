"""Change log primitives: events, field-level diffing, folding and recording.

Works on plain state dicts described by an EntityDescriptor, so it has no
knowledge of ORM models or API schemas.
"""

from __future__ import annotations

from entity_history_engine.history.events import ChangeAction, ChangeEvent, DeltaMode
from entity_history_engine.history.change_detector import EntityDescriptor, diff
from entity_history_engine.history.event_store import InMemoryChangesetStore
from entity_history_engine.history.reconstructor import ReconstructedState, fold, fold_through
from entity_history_engine.history.publisher import ChangeRecorder

__all__ = [
    "ChangeAction",
    "ChangeEvent",
    "DeltaMode",
    "EntityDescriptor",
    "diff",
    "InMemoryChangesetStore",
    "ReconstructedState",
    "fold",
    "fold_through",
    "ChangeRecorder",
]
