"""Execution of a single claimed workflow."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Optional

from .config import WorkerConfig
from .context import WorkflowContext
from .errors import (
    FATAL_ERRORS,
    DeterminismViolationError,
    LeaseLostError,
    PayloadSerializationError,
    RegistryError,
    StoreUnavailableError,
)
from .persistence import ClaimedWorkflow, WorkflowRepository
from .registry import REGISTRY, WorkflowRegistry
from .utils.clock import utcnow

logger = logging.getLogger(__name__)


class WorkflowExecutor:
    """Replays a claimed workflow and records its outcome.

    The executor owns the claimed row for the duration of :meth:`execute`:
    it keeps the lease alive with a heartbeat, runs the workflow function
    against a fresh :class:`WorkflowContext`, then completes, requeues or
    fails the row according to the retry policy.
    """

    def __init__(
        self,
        repository: WorkflowRepository,
        registry: WorkflowRegistry | None = None,
        config: WorkerConfig | None = None,
    ) -> None:
        self._repository = repository
        self._registry = registry or REGISTRY
        self._config = config or WorkerConfig()

    @property
    def lease_seconds(self) -> float:
        return self._config.lock_timeout_secs

    async def execute(self, claimed: ClaimedWorkflow) -> None:
        """Run ``claimed`` to a recorded outcome.

        Store errors, whether raised by step bookkeeping or while recording
        the outcome, are logged, not raised: nothing more is written, the
        lease expires and another claim picks the workflow up again.
        """
        heartbeat = asyncio.create_task(self._heartbeat(claimed))
        try:
            await self._execute(claimed)
        except (LeaseLostError, StoreUnavailableError) as e:
            logger.warning(f"Abandoning workflow {claimed.id}: {e}")
        except Exception:
            logger.exception(
                f"Could not record outcome of workflow {claimed.id}; "
                "it will be retried after its lease expires"
            )
        finally:
            heartbeat.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await heartbeat

    async def _execute(self, claimed: ClaimedWorkflow) -> None:
        if claimed.attempts > claimed.max_attempts:
            await self._fail(
                claimed,
                f"Workflow exceeded {claimed.max_attempts} attempts "
                "(last attempt did not finish before its lease expired)",
            )
            return

        try:
            definition = self._registry.get_workflow(claimed.name)
            value = definition.decode_input(claimed.input)
        except (RegistryError, PayloadSerializationError) as e:
            await self._fail(claimed, str(e))
            return

        ctx = WorkflowContext(
            workflow_id=claimed.id,
            worker_id=claimed.worker_id,
            repository=self._repository,
            lease_seconds=self.lease_seconds,
            registry=self._registry,
            attempt=claimed.attempts,
        )
        logger.info(
            f"Executing workflow {claimed.name} id={claimed.id} "
            f"attempt {claimed.attempts}/{claimed.max_attempts}"
        )

        try:
            result = await definition.invoke(ctx, value)
            output = definition.encode_output(result)
        except (LeaseLostError, StoreUnavailableError):
            raise
        except FATAL_ERRORS as e:
            if isinstance(e, DeterminismViolationError):
                logger.error(
                    f"Determinism violation in workflow {claimed.name} id={claimed.id}; "
                    f"the workflow definition changed its step order: {e}"
                )
            await self._fail(claimed, str(e))
            return
        except Exception as e:
            await self._retry_or_fail(claimed, f"{e}" or type(e).__name__)
            return

        await self._repository.complete_workflow(
            claimed.id, claimed.worker_id, claimed.attempts, output
        )
        logger.info(f"Workflow {claimed.name} id={claimed.id} completed")

    async def _retry_or_fail(self, claimed: ClaimedWorkflow, error: str) -> None:
        policy = self._config.retry_policy(claimed.max_attempts)
        if not policy.should_retry(claimed.attempts):
            await self._fail(claimed, error)
            return

        next_run_at = policy.next_run_at(claimed.attempts, utcnow())
        await self._repository.requeue_workflow(
            claimed.id, claimed.worker_id, claimed.attempts, error, next_run_at
        )
        logger.info(
            f"Workflow {claimed.name} id={claimed.id} attempt {claimed.attempts} failed, "
            f"retrying at {next_run_at.isoformat()}: {error}"
        )

    async def _fail(self, claimed: ClaimedWorkflow, error: str) -> None:
        await self._repository.fail_workflow(
            claimed.id, claimed.worker_id, claimed.attempts, error
        )
        logger.error(f"Workflow {claimed.name} id={claimed.id} failed: {error}")

    async def _heartbeat(self, claimed: ClaimedWorkflow, interval: Optional[float] = None) -> None:
        interval = interval or self.lease_seconds / 3
        while True:
            await asyncio.sleep(interval)
            try:
                await self._repository.refresh_lease(
                    claimed.id, claimed.worker_id, claimed.attempts, self.lease_seconds
                )
            except LeaseLostError:
                logger.warning(f"Lost lease on workflow {claimed.id}")
                return
            except Exception as e:
                logger.warning(f"Lease refresh failed for workflow {claimed.id}: {e}")
