"""Persistence layer for ledgerflow workflows."""

from __future__ import annotations

from typing import Optional

from ..config import LedgerflowConfig, load_config
from .inmemory import InMemoryWorkflowRepository
from .models import (
    ClaimedWorkflow,
    StepRecord,
    StepStatus,
    WorkflowRecord,
    WorkflowStatus,
)
from .repository import WorkflowRepository
from .sql import SQLWorkflowRepository

_repository_instance: WorkflowRepository | None = None


def to_async_url(database_url: str) -> str:
    """Map a plain database URL onto the async driver ledgerflow uses."""

    if "+" in database_url.split("://", 1)[0]:
        return database_url
    if database_url.startswith("sqlite://"):
        return database_url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    for prefix in ("postgres://", "postgresql://"):
        if database_url.startswith(prefix):
            return database_url.replace(prefix, "postgresql+asyncpg://", 1)
    raise ValueError(f"Unsupported database backend: {database_url}")


def get_repository(
    database_url: Optional[str] = None, config: Optional[LedgerflowConfig] = None
) -> WorkflowRepository:
    """Factory function to obtain a workflow repository.

    The repository backend is selected based on ``database_url`` which can be
    provided explicitly, via environment variable ``LEDGERFLOW_DATABASE_URL`` or
    ``DATABASE_URL``, or from loaded configuration. When no database is
    configured, an in-memory repository is returned.
    """

    global _repository_instance
    if _repository_instance is not None and database_url is None and config is None:
        return _repository_instance

    config = config or load_config()
    database_url = database_url or config.database_url

    if not database_url:
        _repository_instance = InMemoryWorkflowRepository()
        return _repository_instance

    _repository_instance = SQLWorkflowRepository(to_async_url(database_url))
    return _repository_instance


def set_repository(repository: WorkflowRepository | None) -> None:
    """Replace (or clear) the cached repository returned by ``get_repository``."""
    global _repository_instance
    _repository_instance = repository


__all__ = [
    "ClaimedWorkflow",
    "StepRecord",
    "StepStatus",
    "WorkflowRecord",
    "WorkflowStatus",
    "WorkflowRepository",
    "InMemoryWorkflowRepository",
    "SQLWorkflowRepository",
    "get_repository",
    "set_repository",
    "to_async_url",
]
