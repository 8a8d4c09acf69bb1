"""In-memory implementation of the workflow repository."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Dict, Optional, Tuple

from ..errors import LeaseLostError
from ..utils.clock import seconds_from, utcnow
from .models import (
    ClaimedWorkflow,
    StepRecord,
    StepStatus,
    WorkflowRecord,
    WorkflowStatus,
)
from .repository import WorkflowRepository


class InMemoryWorkflowRepository(WorkflowRepository):
    """Store workflow state in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts. A single ``asyncio.Lock`` stands in
    for the database's row locking, so claims are atomic between workers
    sharing this instance.
    """

    def __init__(self) -> None:
        self._workflows: Dict[int, WorkflowRecord] = {}
        self._steps: Dict[Tuple[int, int], StepRecord] = {}
        self._workflow_id = 0
        self._step_id = 0
        self._lock = asyncio.Lock()

    async def install_schema(self) -> None:
        return None

    async def close(self) -> None:
        return None

    # ------------------------------------------------------------------
    def _owned(self, workflow_id: int, worker_id: str, attempt: int) -> WorkflowRecord:
        wf = self._workflows.get(workflow_id)
        if (
            wf is None
            or wf.worker_id != worker_id
            or wf.attempts != attempt
            or wf.status != WorkflowStatus.RUNNING
        ):
            raise LeaseLostError(workflow_id, worker_id, attempt)
        return wf

    def _guard(
        self,
        workflow_id: int,
        worker_id: str,
        attempt: int,
        lease_seconds: float,
        now: datetime,
    ) -> WorkflowRecord:
        wf = self._owned(workflow_id, worker_id, attempt)
        wf.locked_until = seconds_from(now, lease_seconds)
        wf.updated_at = now
        return wf

    @staticmethod
    def _claimable(wf: WorkflowRecord, now: datetime) -> bool:
        if wf.next_run_at is not None and wf.next_run_at > now:
            return False
        if wf.status == WorkflowStatus.PENDING:
            return wf.locked_until is None or wf.locked_until <= now
        if wf.status == WorkflowStatus.RUNNING:
            return wf.locked_until is None or wf.locked_until < now
        return False

    # ------------------------------------------------------------------
    async def insert_workflow(
        self,
        name: str,
        input: str,
        max_attempts: int,
        now: Optional[datetime] = None,
    ) -> WorkflowRecord:
        now = now or utcnow()
        async with self._lock:
            self._workflow_id += 1
            wf = WorkflowRecord(
                id=self._workflow_id,
                name=name,
                status=WorkflowStatus.PENDING,
                input=input,
                attempts=0,
                max_attempts=max_attempts,
                next_run_at=now,
                created_at=now,
                updated_at=now,
            )
            self._workflows[wf.id] = wf
            return wf.model_copy()

    async def get_workflow(self, workflow_id: int) -> WorkflowRecord | None:
        wf = self._workflows.get(workflow_id)
        return wf.model_copy() if wf else None

    async def list_workflows(
        self, status: Optional[WorkflowStatus] = None, limit: Optional[int] = None
    ) -> list[WorkflowRecord]:
        rows = [
            wf.model_copy()
            for wf in sorted(self._workflows.values(), key=lambda w: w.id, reverse=True)
            if status is None or wf.status == status
        ]
        return rows[:limit] if limit is not None else rows

    async def claim_next_workflow(
        self, worker_id: str, lease_seconds: float, now: Optional[datetime] = None
    ) -> ClaimedWorkflow | None:
        now = now or utcnow()
        async with self._lock:
            candidates = [
                wf for wf in self._workflows.values() if self._claimable(wf, now)
            ]
            if not candidates:
                return None
            wf = min(candidates, key=lambda w: (w.next_run_at or now, w.id))
            wf.status = WorkflowStatus.RUNNING
            wf.attempts += 1
            wf.worker_id = worker_id
            wf.locked_until = seconds_from(now, lease_seconds)
            wf.started_at = wf.started_at or now
            wf.updated_at = now
            return ClaimedWorkflow(
                id=wf.id,
                name=wf.name,
                input=wf.input,
                attempts=wf.attempts,
                max_attempts=wf.max_attempts,
                worker_id=worker_id,
                locked_until=wf.locked_until,
            )

    async def refresh_lease(
        self,
        workflow_id: int,
        worker_id: str,
        attempt: int,
        lease_seconds: float,
        now: Optional[datetime] = None,
    ) -> datetime:
        now = now or utcnow()
        async with self._lock:
            wf = self._guard(workflow_id, worker_id, attempt, lease_seconds, now)
            return wf.locked_until

    async def complete_workflow(
        self,
        workflow_id: int,
        worker_id: str,
        attempt: int,
        output: str,
        now: Optional[datetime] = None,
    ) -> None:
        now = now or utcnow()
        async with self._lock:
            wf = self._owned(workflow_id, worker_id, attempt)
            wf.status = WorkflowStatus.COMPLETED
            wf.output = output
            wf.error = None
            wf.completed_at = now
            wf.locked_until = None
            wf.worker_id = None
            wf.updated_at = now

    async def requeue_workflow(
        self,
        workflow_id: int,
        worker_id: str,
        attempt: int,
        error: str,
        next_run_at: datetime,
        now: Optional[datetime] = None,
    ) -> None:
        now = now or utcnow()
        async with self._lock:
            wf = self._owned(workflow_id, worker_id, attempt)
            wf.status = WorkflowStatus.PENDING
            wf.error = error
            wf.next_run_at = next_run_at
            wf.locked_until = None
            wf.worker_id = None
            wf.updated_at = now

    async def fail_workflow(
        self,
        workflow_id: int,
        worker_id: str,
        attempt: int,
        error: str,
        now: Optional[datetime] = None,
    ) -> None:
        now = now or utcnow()
        async with self._lock:
            wf = self._owned(workflow_id, worker_id, attempt)
            self._mark_failed(wf, error, now)

    async def cancel_workflow(
        self, workflow_id: int, reason: str, now: Optional[datetime] = None
    ) -> bool:
        now = now or utcnow()
        async with self._lock:
            wf = self._workflows.get(workflow_id)
            if wf is None or wf.status.is_terminal:
                return False
            self._mark_failed(wf, reason, now)
            return True

    @staticmethod
    def _mark_failed(wf: WorkflowRecord, error: str, now: datetime) -> None:
        wf.status = WorkflowStatus.FAILED
        wf.error = error
        wf.completed_at = now
        wf.locked_until = None
        wf.worker_id = None
        wf.updated_at = now

    # ------------------------------------------------------------------
    async def list_steps(self, workflow_id: int) -> list[StepRecord]:
        steps = [s for (wid, _), s in self._steps.items() if wid == workflow_id]
        return [s.model_copy() for s in sorted(steps, key=lambda s: s.step_index)]

    async def load_step(self, workflow_id: int, step_index: int) -> StepRecord | None:
        step = self._steps.get((workflow_id, step_index))
        return step.model_copy() if step else None

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
        now = now or utcnow()
        async with self._lock:
            self._guard(workflow_id, worker_id, attempt, lease_seconds, now)
            step = self._steps.get((workflow_id, step_index))
            if step is None:
                self._step_id += 1
                step = StepRecord(
                    id=self._step_id,
                    workflow_id=workflow_id,
                    step_index=step_index,
                    step_name=step_name,
                    attempts=0,
                    created_at=now,
                )
                self._steps[(workflow_id, step_index)] = step
            elif step.step_name != step_name or step.status == StepStatus.COMPLETED:
                raise ValueError(
                    f"Step {step_index} of workflow {workflow_id} cannot be restarted"
                )
            step.status = StepStatus.RUNNING
            step.input = input
            step.error = None
            step.attempts += 1
            step.started_at = now
            step.completed_at = None
            step.updated_at = now
            return step.model_copy()

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
        now = now or utcnow()
        async with self._lock:
            self._guard(workflow_id, worker_id, attempt, lease_seconds, now)
            step = self._steps[(workflow_id, step_index)]
            step.status = StepStatus.COMPLETED
            step.output = output
            step.error = None
            step.completed_at = now
            step.updated_at = now

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
        now = now or utcnow()
        async with self._lock:
            self._guard(workflow_id, worker_id, attempt, lease_seconds, now)
            step = self._steps[(workflow_id, step_index)]
            step.status = StepStatus.FAILED
            step.error = error
            step.completed_at = now
            step.updated_at = now
