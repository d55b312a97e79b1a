"""Adapters — storage backends for the entity history engine.

Contains:
- repositories.py — SQLAlchemy repositories and unit of work (PostgreSQL, SQLite)
- memory.py       — in-memory repositories and unit of work
"""

__all__: list[str] = []
