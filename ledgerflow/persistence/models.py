"""Data models for persisted workflow state."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict


class WorkflowStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (WorkflowStatus.COMPLETED, WorkflowStatus.FAILED)


class StepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class StepRecord(BaseModel):
    """Record of one step position within a workflow's execution history."""

    model_config = ConfigDict(from_attributes=True)

    id: Optional[int] = None
    workflow_id: int
    step_index: int
    step_name: str
    status: StepStatus = StepStatus.PENDING
    input: Optional[str] = None
    output: Optional[str] = None
    error: Optional[str] = None
    attempts: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class WorkflowRecord(BaseModel):
    """Persisted workflow instance data."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    status: WorkflowStatus = WorkflowStatus.PENDING
    input: str = "null"
    output: Optional[str] = None
    error: Optional[str] = None
    attempts: int = 0
    max_attempts: int = 3
    next_run_at: Optional[datetime] = None
    locked_until: Optional[datetime] = None
    worker_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class ClaimedWorkflow(BaseModel):
    """What a worker gets back from a successful claim."""

    id: int
    name: str
    input: str
    attempts: int
    max_attempts: int
    worker_id: str
    locked_until: datetime
