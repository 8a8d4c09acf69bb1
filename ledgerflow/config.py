from __future__ import annotations

import os
from typing import Optional

import yaml
from pydantic import BaseModel, Field

from .utils.retry import RetryPolicy

# Environment overrides for worker settings, keyed by WorkerConfig field.
WORKER_ENV_VARS = {
    "poll_interval_ms": "WORKFLOW_POLL_INTERVAL_MS",
    "concurrency": "WORKFLOW_CONCURRENCY",
    "lock_timeout_secs": "WORKFLOW_LOCK_TIMEOUT_SECS",
    "max_attempts": "WORKFLOW_MAX_ATTEMPTS",
    "retry_backoff_secs": "WORKFLOW_RETRY_BACKOFF_SECS",
}


class WorkerConfig(BaseModel):
    """Settings for workers, the dispatcher and wait handles."""

    poll_interval_ms: int = Field(default=1000, ge=1)
    concurrency: int = Field(default=4, ge=1)
    lock_timeout_secs: float = Field(default=30, gt=0)
    max_attempts: int = Field(default=3, ge=1)
    retry_backoff_secs: float = Field(default=5, ge=0)

    @property
    def poll_interval(self) -> float:
        """Poll interval in seconds."""
        return self.poll_interval_ms / 1000

    def retry_policy(self, max_attempts: Optional[int] = None) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=max_attempts or self.max_attempts,
            backoff_base_seconds=self.retry_backoff_secs,
        )


class LedgerflowConfig(BaseModel):
    """Top-level configuration model."""

    database_url: Optional[str] = None
    worker: WorkerConfig = WorkerConfig()


def load_config(path: Optional[str] = None) -> LedgerflowConfig:
    """Load configuration from YAML file and environment.

    Args:
        path: Optional path to config file. Falls back to LEDGERFLOW_CONFIG env
            variable or 'ledgerflow.yaml' in the current directory.
    """

    config_path = path or os.getenv("LEDGERFLOW_CONFIG", "ledgerflow.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = LedgerflowConfig(**data)
    else:
        config = LedgerflowConfig()

    env_db_url = os.getenv("LEDGERFLOW_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url

    overrides = {
        field: os.environ[env_var]
        for field, env_var in WORKER_ENV_VARS.items()
        if os.getenv(env_var)
    }
    if overrides:
        config.worker = WorkerConfig(**{**config.worker.model_dump(), **overrides})
    return config
