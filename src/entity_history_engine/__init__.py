"""Entity history engine: CRUD over tracked entities with an append-only change log.

Every create, update, delete and restore of a tracked entity is recorded as a
field-level change event. The log supports restore, copy, per-principal read
tracking and snapshot/differential delta queries.
"""

__version__ = "0.1.0"
