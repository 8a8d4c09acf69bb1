"""Repository abstraction for workflow state persistence."""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Protocol

from .models import ClaimedWorkflow, StepRecord, WorkflowRecord, WorkflowStatus


class WorkflowRepository(Protocol):
    """Protocol for workflow state persistence backends.

    Every mutation made on behalf of an executing workflow takes the caller's
    ``worker_id`` and the ``attempt`` number its claim returned, and is
    applied only while that claim still owns the row (``worker_id`` and
    ``attempts`` match and ``status`` is ``running``). Any later claim of the
    same row, even by the same worker, bumps ``attempts`` and so fences off
    the earlier execution. A failed check raises
    :class:`~ledgerflow.errors.LeaseLostError` and writes nothing.
    """

    async def install_schema(self) -> None:
        """Create the backing tables if needed."""

    async def close(self) -> None:
        """Release connections."""

    # Workflows -----------------------------------------------------------
    async def insert_workflow(
        self,
        name: str,
        input: str,
        max_attempts: int,
        now: Optional[datetime] = None,
    ) -> WorkflowRecord:
        """Persist a new ``pending`` workflow eligible to run at ``now``."""

    async def get_workflow(self, workflow_id: int) -> WorkflowRecord | None:
        """Retrieve the workflow row by id."""

    async def list_workflows(
        self, status: Optional[WorkflowStatus] = None, limit: Optional[int] = None
    ) -> list[WorkflowRecord]:
        """Return persisted workflows, newest first."""

    async def claim_next_workflow(
        self, worker_id: str, lease_seconds: float, now: Optional[datetime] = None
    ) -> ClaimedWorkflow | None:
        """Atomically claim one runnable workflow, or return ``None``."""

    async def refresh_lease(
        self,
        workflow_id: int,
        worker_id: str,
        attempt: int,
        lease_seconds: float,
        now: Optional[datetime] = None,
    ) -> datetime:
        """Extend the lease held by ``worker_id``; returns the new expiry."""

    async def complete_workflow(
        self,
        workflow_id: int,
        worker_id: str,
        attempt: int,
        output: str,
        now: Optional[datetime] = None,
    ) -> None:
        """Record the final output and move to ``completed``."""

    async def requeue_workflow(
        self,
        workflow_id: int,
        worker_id: str,
        attempt: int,
        error: str,
        next_run_at: datetime,
        now: Optional[datetime] = None,
    ) -> None:
        """Release the lease and make the row claimable again at ``next_run_at``."""

    async def fail_workflow(
        self,
        workflow_id: int,
        worker_id: str,
        attempt: int,
        error: str,
        now: Optional[datetime] = None,
    ) -> None:
        """Move to ``failed`` permanently."""

    async def cancel_workflow(
        self, workflow_id: int, reason: str, now: Optional[datetime] = None
    ) -> bool:
        """Force a non-terminal workflow to ``failed``; ``False`` if already terminal."""

    # Steps ---------------------------------------------------------------
    async def list_steps(self, workflow_id: int) -> list[StepRecord]:
        """Return step rows ordered by index."""

    async def load_step(self, workflow_id: int, step_index: int) -> StepRecord | None:
        """Return the step row at ``step_index`` if one exists."""

    async def start_step(
        self,
        workflow_id: int,
        worker_id: str,
        attempt: int,
        step_index: int,
        step_name: str,
        input: str,
        lease_seconds: float,
        now: Optional[datetime] = None,
    ) -> StepRecord:
        """Insert the step as ``running`` or restart a failed/interrupted one."""

    async def complete_step(
        self,
        workflow_id: int,
        worker_id: str,
        attempt: int,
        step_index: int,
        output: str,
        lease_seconds: float,
        now: Optional[datetime] = None,
    ) -> None:
        """Record the step output and move it to ``completed``."""

    async def fail_step(
        self,
        workflow_id: int,
        worker_id: str,
        attempt: int,
        step_index: int,
        error: str,
        lease_seconds: float,
        now: Optional[datetime] = None,
    ) -> None:
        """Record the step error and move it to ``failed``."""
