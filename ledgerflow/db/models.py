from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import Column, Index, Text, UniqueConstraint
from sqlmodel import Field, SQLModel

from ..utils.clock import utcnow


class Workflow(SQLModel, table=True):
    """One row per enqueued workflow instance."""

    __tablename__ = "workflows"
    __table_args__ = (Index("ix_workflows_status_next_run_at", "status", "next_run_at"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(max_length=255)
    status: str = Field(default="pending", max_length=16)
    input: str = Field(sa_column=Column(Text, nullable=False))
    output: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    error: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    attempts: int = 0
    max_attempts: int = 3
    next_run_at: Optional[datetime] = None
    locked_until: Optional[datetime] = None
    worker_id: Optional[str] = Field(default=None, max_length=128)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class WorkflowStep(SQLModel, table=True):
    """One row per step position within a workflow's execution history."""

    __tablename__ = "workflow_steps"
    __table_args__ = (
        UniqueConstraint("workflow_id", "step_index", name="uq_workflow_steps_position"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    workflow_id: int = Field(foreign_key="workflows.id", index=True)
    step_index: int
    step_name: str = Field(max_length=255)
    status: str = Field(default="pending", max_length=16)
    input: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    output: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    error: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    attempts: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
