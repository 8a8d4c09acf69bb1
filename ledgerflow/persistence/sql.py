"""SQL implementation of the workflow repository (SQLite and PostgreSQL)."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import and_, func, insert, or_, select, update
from sqlalchemy.ext.asyncio import AsyncConnection
from sqlmodel import col

from ..db import Workflow, WorkflowDB, WorkflowStep
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

PENDING = WorkflowStatus.PENDING.value
RUNNING = WorkflowStatus.RUNNING.value
COMPLETED = WorkflowStatus.COMPLETED.value
FAILED = WorkflowStatus.FAILED.value


def _claimable(now: datetime):
    """Rows a worker may claim at ``now``."""
    return and_(
        or_(col(Workflow.next_run_at).is_(None), col(Workflow.next_run_at) <= now),
        or_(
            and_(
                col(Workflow.status) == PENDING,
                or_(col(Workflow.locked_until).is_(None), col(Workflow.locked_until) <= now),
            ),
            and_(
                col(Workflow.status) == RUNNING,
                or_(col(Workflow.locked_until).is_(None), col(Workflow.locked_until) < now),
            ),
        ),
    )


def _owned_by(workflow_id: int, worker_id: str, attempt: int):
    """The row as claimed by ``worker_id`` on its ``attempt``-th claim."""
    return and_(
        col(Workflow.id) == workflow_id,
        col(Workflow.worker_id) == worker_id,
        col(Workflow.attempts) == attempt,
        col(Workflow.status) == RUNNING,
    )


def _step_at(workflow_id: int, step_index: int):
    return and_(
        col(WorkflowStep.workflow_id) == workflow_id,
        col(WorkflowStep.step_index) == step_index,
    )


class SQLWorkflowRepository(WorkflowRepository):
    """Persist workflow state through SQLAlchemy's async engine.

    Every write runs in its own transaction. Writes made for an executing
    workflow start with a conditional ``UPDATE`` of the workflow row (lease
    guard and refresh), so they acquire the row lock before anything else
    and abort when the lease is gone.
    """

    def __init__(self, database_url: str | None = None, db: WorkflowDB | None = None):
        if db is None:
            if database_url is None:
                raise ValueError("database_url or db is required")
            db = WorkflowDB(database_url)
        self._db = db

    @property
    def db(self) -> WorkflowDB:
        return self._db

    async def install_schema(self) -> None:
        await self._db.init_db()

    async def close(self) -> None:
        await self._db.dispose()

    # ------------------------------------------------------------------
    # Helper methods
    async def _guard(
        self,
        conn: AsyncConnection,
        workflow_id: int,
        worker_id: str,
        attempt: int,
        now: datetime,
        values: dict[str, Any],
    ) -> None:
        result = await conn.execute(
            update(Workflow)
            .where(_owned_by(workflow_id, worker_id, attempt))
            .values(updated_at=now, **values)
        )
        if result.rowcount != 1:
            raise LeaseLostError(workflow_id, worker_id, attempt)

    async def _refresh_in(
        self,
        conn: AsyncConnection,
        workflow_id: int,
        worker_id: str,
        attempt: int,
        lease_seconds: float,
        now: datetime,
    ) -> datetime:
        locked_until = seconds_from(now, lease_seconds)
        await self._guard(
            conn, workflow_id, worker_id, attempt, now, {"locked_until": locked_until}
        )
        return locked_until

    # ------------------------------------------------------------------
    # Repository API
    async def insert_workflow(
        self,
        name: str,
        input: str,
        max_attempts: int,
        now: Optional[datetime] = None,
    ) -> WorkflowRecord:
        now = now or utcnow()
        row = Workflow(
            name=name,
            status=PENDING,
            input=input,
            attempts=0,
            max_attempts=max_attempts,
            next_run_at=now,
            created_at=now,
            updated_at=now,
        )
        async with self._db.session() as session:
            session.add(row)
            await session.commit()
            await session.refresh(row)
        return WorkflowRecord.model_validate(row)

    async def get_workflow(self, workflow_id: int) -> WorkflowRecord | None:
        async with self._db.session() as session:
            row = await session.get(Workflow, workflow_id)
            return WorkflowRecord.model_validate(row) if row else None

    async def list_workflows(
        self, status: Optional[WorkflowStatus] = None, limit: Optional[int] = None
    ) -> list[WorkflowRecord]:
        stmt = select(Workflow).order_by(col(Workflow.id).desc())
        if status is not None:
            stmt = stmt.where(col(Workflow.status) == WorkflowStatus(status).value)
        if limit is not None:
            stmt = stmt.limit(limit)
        async with self._db.session() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [WorkflowRecord.model_validate(r) for r in rows]

    async def claim_next_workflow(
        self, worker_id: str, lease_seconds: float, now: Optional[datetime] = None
    ) -> ClaimedWorkflow | None:
        now = now or utcnow()
        locked_until = seconds_from(now, lease_seconds)
        # PostgreSQL renders FOR UPDATE SKIP LOCKED on the inner select; SQLite
        # ignores it and serializes the single UPDATE under its write lock.
        candidate = (
            select(Workflow.id)
            .where(_claimable(now))
            .order_by(col(Workflow.next_run_at).asc(), col(Workflow.id).asc())
            .limit(1)
            .with_for_update(skip_locked=True)
            .correlate(None)
            .scalar_subquery()
        )
        stmt = (
            update(Workflow)
            .where(col(Workflow.id) == candidate)
            .where(_claimable(now))
            .values(
                status=RUNNING,
                attempts=Workflow.attempts + 1,
                worker_id=worker_id,
                locked_until=locked_until,
                started_at=func.coalesce(Workflow.started_at, now),
                updated_at=now,
            )
            .returning(
                Workflow.id,
                Workflow.name,
                Workflow.input,
                Workflow.attempts,
                Workflow.max_attempts,
            )
        )
        async with self._db.transaction() as conn:
            row = (await conn.execute(stmt)).mappings().first()
        if row is None:
            return None
        return ClaimedWorkflow(
            **row, worker_id=worker_id, locked_until=locked_until
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
        async with self._db.transaction() as conn:
            return await self._refresh_in(conn, workflow_id, worker_id, attempt, lease_seconds, now)

    async def complete_workflow(
        self,
        workflow_id: int,
        worker_id: str,
        attempt: int,
        output: str,
        now: Optional[datetime] = None,
    ) -> None:
        now = now or utcnow()
        async with self._db.transaction() as conn:
            await self._guard(
                conn,
                workflow_id,
                worker_id,
                attempt,
                now,
                {
                    "status": COMPLETED,
                    "output": output,
                    "error": None,
                    "completed_at": now,
                    "locked_until": None,
                    "worker_id": None,
                },
            )

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
        async with self._db.transaction() as conn:
            await self._guard(
                conn,
                workflow_id,
                worker_id,
                attempt,
                now,
                {
                    "status": PENDING,
                    "error": error,
                    "next_run_at": next_run_at,
                    "locked_until": None,
                    "worker_id": None,
                },
            )

    async def fail_workflow(
        self,
        workflow_id: int,
        worker_id: str,
        attempt: int,
        error: str,
        now: Optional[datetime] = None,
    ) -> None:
        now = now or utcnow()
        async with self._db.transaction() as conn:
            await self._guard(
                conn,
                workflow_id,
                worker_id,
                attempt,
                now,
                {
                    "status": FAILED,
                    "error": error,
                    "completed_at": now,
                    "locked_until": None,
                    "worker_id": None,
                },
            )

    async def cancel_workflow(
        self, workflow_id: int, reason: str, now: Optional[datetime] = None
    ) -> bool:
        now = now or utcnow()
        async with self._db.transaction() as conn:
            result = await conn.execute(
                update(Workflow)
                .where(col(Workflow.id) == workflow_id)
                .where(col(Workflow.status).in_([PENDING, RUNNING]))
                .values(
                    status=FAILED,
                    error=reason,
                    completed_at=now,
                    locked_until=None,
                    worker_id=None,
                    updated_at=now,
                )
            )
        return result.rowcount == 1

    # ------------------------------------------------------------------
    async def list_steps(self, workflow_id: int) -> list[StepRecord]:
        stmt = (
            select(WorkflowStep)
            .where(col(WorkflowStep.workflow_id) == workflow_id)
            .order_by(col(WorkflowStep.step_index))
        )
        async with self._db.session() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [StepRecord.model_validate(r) for r in rows]

    async def load_step(self, workflow_id: int, step_index: int) -> StepRecord | None:
        stmt = select(WorkflowStep).where(_step_at(workflow_id, step_index))
        async with self._db.session() as session:
            row = (await session.execute(stmt)).scalars().first()
            return StepRecord.model_validate(row) if row else None

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
        async with self._db.transaction() as conn:
            await self._refresh_in(conn, workflow_id, worker_id, attempt, lease_seconds, now)
            restarted = await conn.execute(
                update(WorkflowStep)
                .where(_step_at(workflow_id, step_index))
                .where(col(WorkflowStep.step_name) == step_name)
                .where(col(WorkflowStep.status) != StepStatus.COMPLETED.value)
                .values(
                    status=StepStatus.RUNNING.value,
                    input=input,
                    error=None,
                    attempts=WorkflowStep.attempts + 1,
                    started_at=now,
                    completed_at=None,
                    updated_at=now,
                )
            )
            if restarted.rowcount == 0:
                await conn.execute(
                    insert(WorkflowStep).values(
                        workflow_id=workflow_id,
                        step_index=step_index,
                        step_name=step_name,
                        status=StepStatus.RUNNING.value,
                        input=input,
                        attempts=1,
                        created_at=now,
                        updated_at=now,
                        started_at=now,
                    )
                )
            row = (
                await conn.execute(
                    select(WorkflowStep.__table__).where(_step_at(workflow_id, step_index))
                )
            ).mappings().one()
        return StepRecord.model_validate(dict(row))

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
        async with self._db.transaction() as conn:
            await self._refresh_in(conn, workflow_id, worker_id, attempt, lease_seconds, now)
            await conn.execute(
                update(WorkflowStep)
                .where(_step_at(workflow_id, step_index))
                .values(
                    status=StepStatus.COMPLETED.value,
                    output=output,
                    error=None,
                    completed_at=now,
                    updated_at=now,
                )
            )

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
        async with self._db.transaction() as conn:
            await self._refresh_in(conn, workflow_id, worker_id, attempt, lease_seconds, now)
            await conn.execute(
                update(WorkflowStep)
                .where(_step_at(workflow_id, step_index))
                .values(
                    status=StepStatus.FAILED.value,
                    error=error,
                    completed_at=now,
                    updated_at=now,
                )
            )
