"""Worker pool: polling loops that claim and execute workflows."""

from __future__ import annotations

import asyncio
import logging
import os
import secrets
from typing import Optional

from .config import WorkerConfig, load_config
from .execute import WorkflowExecutor
from .persistence import ClaimedWorkflow, WorkflowRepository, get_repository
from .registry import REGISTRY, WorkflowRegistry

logger = logging.getLogger(__name__)


def new_worker_id() -> str:
    return f"{os.getpid()}-{secrets.token_hex(8)}"


class WorkflowWorker:
    """Runs ``config.concurrency`` independent claim loops against one store.

    Loops share nothing but read-only configuration and the frozen registry;
    all coordination between loops, and between worker processes, happens
    through the claim query.
    """

    def __init__(
        self,
        repository: WorkflowRepository | None = None,
        registry: WorkflowRegistry | None = None,
        config: WorkerConfig | None = None,
        worker_id: Optional[str] = None,
    ) -> None:
        self._repository = repository or get_repository()
        self._registry = registry or REGISTRY
        self._config = config or load_config().worker
        self.worker_id = worker_id or new_worker_id()
        self._executor = WorkflowExecutor(self._repository, self._registry, self._config)
        self._stopping = asyncio.Event()

    @property
    def config(self) -> WorkerConfig:
        return self._config

    def stop(self) -> None:
        """Ask all loops to exit after their current workflow."""
        self._stopping.set()

    async def claim_once(self) -> ClaimedWorkflow | None:
        """Claim a single workflow for this worker, if any is runnable."""
        return await self._repository.claim_next_workflow(
            self.worker_id, self._config.lock_timeout_secs
        )

    async def run_once(self) -> bool:
        """One claim cycle: claim and execute at most one workflow.

        Returns ``True`` if a workflow was executed.
        """
        claimed = await self.claim_once()
        if claimed is None:
            return False
        logger.info(
            f"Worker {self.worker_id} claimed workflow {claimed.name} id={claimed.id}"
        )
        await self._executor.execute(claimed)
        return True

    async def run(self, lifespan: Optional[float] = None) -> None:
        """Run the pool until :meth:`stop` is called or ``lifespan`` elapses.

        Args:
            lifespan: Maximum time in seconds to run. If None, runs indefinitely.
        """
        self._registry.freeze()
        self._stopping.clear()
        logger.info(
            f"Worker {self.worker_id} starting {self._config.concurrency} loops "
            f"(poll {self._config.poll_interval_ms}ms, lease {self._config.lock_timeout_secs}s)"
        )
        loops = [
            asyncio.create_task(self._loop(n), name=f"ledgerflow-loop-{n}")
            for n in range(self._config.concurrency)
        ]
        try:
            if lifespan is None:
                await self._stopping.wait()
            else:
                try:
                    await asyncio.wait_for(self._stopping.wait(), timeout=lifespan)
                except asyncio.TimeoutError:
                    self._stopping.set()
            await asyncio.gather(*loops)
        finally:
            for task in loops:
                task.cancel()
            await asyncio.gather(*loops, return_exceptions=True)
            logger.info(f"Worker {self.worker_id} stopped")

    async def _loop(self, n: int) -> None:
        while not self._stopping.is_set():
            try:
                executed = await self.run_once()
            except Exception as e:
                logger.warning(f"Worker loop {n}: claim failed, will retry: {e}")
                executed = False
            if not executed:
                await self._idle()

    async def _idle(self) -> None:
        try:
            await asyncio.wait_for(
                self._stopping.wait(), timeout=self._config.poll_interval
            )
        except asyncio.TimeoutError:
            pass
