"""Service settings for entity-history-engine.

Settings use the ENTITY_HISTORY_ prefix and cover:
- Database connection and pool sizing
- Unit-of-work commit behaviour (AutoCommit)
- Read tracking behaviour
- Logging
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings for entity-history-engine.

    Environment variable prefix: ENTITY_HISTORY_
    """

    service_name: str = "entity-history-engine"

    # -------------------------------------------------------------------------
    # Database
    # -------------------------------------------------------------------------

    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/entity_history",
        description="SQLAlchemy async URL for the database holding entities, "
        "change events and read statuses. Entities and events must share it "
        "so that both are written in a single transaction.",
    )
    db_pool_size: int = Field(
        default=5,
        description="Connection pool size. Ignored by SQLite.",
    )
    db_max_overflow: int = Field(
        default=5,
        description="Max overflow connections above db_pool_size. Ignored by SQLite.",
    )
    db_pool_timeout: int = Field(
        default=30,
        description="Seconds to wait for a connection before raising an error.",
    )
    create_schema: bool = Field(
        default=False,
        description="Create missing tables at startup. Intended for local runs and tests.",
    )

    # -------------------------------------------------------------------------
    # History behaviour
    # -------------------------------------------------------------------------

    auto_commit: bool = Field(
        default=True,
        description="Commit each mutation and its change event immediately. "
        "When false the caller commits the unit of work explicitly.",
    )
    max_commit_retries: int = Field(
        default=3,
        ge=0,
        description="Retries after losing a concurrent write race on the same entity "
        "(auto-commit mode only).",
    )
    mark_read_on_get: bool = Field(
        default=True,
        description="Update the principal's read status whenever an entity is fetched by id.",
    )
    record_read_events: bool = Field(
        default=True,
        description="Append a Read change event whenever an entity is viewed.",
    )
    most_recently_used_limit: int = Field(
        default=10,
        ge=1,
        description="Default number of entries returned by the most-recently-used query.",
    )

    # -------------------------------------------------------------------------
    # Logging
    # -------------------------------------------------------------------------

    log_level: str = Field(default="INFO", description="Minimum log level.")
    log_json: bool = Field(default=False, description="Emit JSON log lines.")

    model_config = SettingsConfigDict(env_prefix="ENTITY_HISTORY_")
