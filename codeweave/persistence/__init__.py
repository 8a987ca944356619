"""Persistence layer for codeweave run history."""

from __future__ import annotations

from typing import Optional

from ..config import WeaveConfig
from .inmemory import InMemoryRunRepository
from .models import RunRecord, StepRecord
from .repository import RunRepository
from .sqlite import SQLiteRunRepository

_repository_instance: RunRepository | None = None


def get_repository(
    database_url: Optional[str] = None, config: Optional[WeaveConfig] = None
) -> RunRepository:
    """Factory function to obtain a run repository.

    The backend is selected from ``database_url``, provided explicitly or
    through ``config.database_url`` (which ``CODEWEAVE_DATABASE_URL``
    overrides). When no database is configured, an in-memory repository is
    returned.
    """

    global _repository_instance
    if _repository_instance is not None and database_url is None and config is None:
        return _repository_instance

    database_url = database_url or getattr(config, "database_url", None)

    if not database_url:
        _repository_instance = InMemoryRunRepository()
        return _repository_instance

    if database_url.startswith("sqlite://"):
        path = database_url.replace("sqlite://", "", 1)
        if config is not None and path != ":memory:":
            path = str(config.resolve(path))
        _repository_instance = SQLiteRunRepository(path)
    else:
        raise ValueError(f"Unsupported database backend: {database_url}")

    return _repository_instance


__all__ = [
    "RunRecord",
    "StepRecord",
    "RunRepository",
    "SQLiteRunRepository",
    "InMemoryRunRepository",
    "get_repository",
]
