"""docqueue configuration.

Queue settings loaded from environment variables with the DOCQUEUE_ prefix
(or a .env file), overridable by keyword arguments.

Example:
    >>> from docqueue.core.config import get_settings
    >>> settings = get_settings(visibility_timeout=60_000)
    >>> settings.options().visibility_timeout
    60000
    >>> settings.backend
    'memory'
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from docqueue.domain.models import QueueOptions


class QueueSettings(BaseSettings):
    """Queue settings.

    Loads from environment variables with DOCQUEUE_ prefix.

    Example:
        >>> s = QueueSettings(backend="mongo", mongo_collection="jobs")
        >>> s.mongo_collection
        'jobs'
        >>> s.max_retries
        5
    """

    model_config = SettingsConfigDict(
        env_prefix="DOCQUEUE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Protocol defaults (milliseconds)
    visibility_timeout: int = Field(default=30_000, gt=0, description="Lease length for pull/ping")
    delay: int = Field(default=0, ge=0, description="Visibility offset for push")
    max_retries: int = Field(default=5, ge=0, description="Redeliveries before dead-lettering")
    dead_letter_queue: str | None = Field(
        default=None, description="Name of the dead-letter queue; retries unenforced if unset"
    )

    # Store
    backend: Literal["memory", "filesystem", "mongo"] = Field(default="memory")
    path: Path = Field(default=Path("./data/queue.json"), description="Filesystem collection file")
    mongo_url: str = Field(default="mongodb://localhost:27017")
    mongo_database: str = Field(default="docqueue")
    mongo_collection: str = Field(default="messages")

    @model_validator(mode="after")
    def check_dead_letter_queue(self) -> QueueSettings:
        """Reject a dead-letter queue that resolves to the main queue's store."""
        name = self.dead_letter_queue
        if name is None:
            return self
        if self.backend == "filesystem" and self.path.with_name(f"{name}.json") == self.path:
            raise ValueError(f"dead_letter_queue {name!r} is the main queue file {self.path}")
        if self.backend == "mongo" and name == self.mongo_collection:
            raise ValueError(f"dead_letter_queue {name!r} is the main queue collection")
        return self

    def options(self) -> QueueOptions:
        return QueueOptions(
            visibility_timeout=self.visibility_timeout,
            delay=self.delay,
            max_retries=self.max_retries,
        )


def get_settings(**overrides: Any) -> QueueSettings:
    """Get settings with optional overrides.

    Example:
        >>> get_settings(delay=250).delay
        250
    """
    return QueueSettings(**overrides)
