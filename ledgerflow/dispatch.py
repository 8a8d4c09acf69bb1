"""Workflow dispatcher for ledgerflow."""

from __future__ import annotations

import logging
from typing import Any, Optional

from .config import WorkerConfig, load_config
from .handle import WorkflowHandle
from .persistence import WorkflowRepository, get_repository
from .registry import REGISTRY, WorkflowRef, WorkflowRegistry

logger = logging.getLogger(__name__)


class WorkflowDispatcher:
    """Service responsible for enqueueing new workflows."""

    def __init__(
        self,
        repository: WorkflowRepository | None = None,
        registry: WorkflowRegistry | None = None,
        config: WorkerConfig | None = None,
    ) -> None:
        self._repository = repository or get_repository()
        self._registry = registry or REGISTRY
        self._config = config or load_config().worker

    def handle(self, workflow_id: int, workflow: Optional[WorkflowRef] = None) -> WorkflowHandle:
        """Handle for an existing workflow id."""
        definition = self._registry.get_workflow(workflow) if workflow is not None else None
        return WorkflowHandle(
            workflow_id,
            self._repository,
            definition=definition,
            poll_interval=self._config.poll_interval,
        )

    async def start_workflow(
        self,
        workflow: WorkflowRef,
        input: Any = None,
        *,
        max_attempts: Optional[int] = None,
    ) -> WorkflowHandle:
        """Enqueue ``workflow`` with ``input``.

        Args:
            workflow: Registered workflow name, definition or function.
            input: Initial argument, validated against the workflow's input
                shape and stored as JSON.
            max_attempts: Attempt ceiling for this instance. Defaults to the
                configured ``max_attempts``.

        Returns:
            Handle for polling or awaiting the workflow.

        Raises:
            ValueError: ``max_attempts`` is less than 1.
        """
        if max_attempts is None:
            max_attempts = self._config.max_attempts
        elif max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")

        definition = self._registry.get_workflow(workflow)
        payload = definition.encode_input(input)
        record = await self._repository.insert_workflow(
            definition.name, payload, max_attempts
        )
        logger.info(f"Enqueued workflow {definition.name} id={record.id}")
        return WorkflowHandle(
            record.id,
            self._repository,
            definition=definition,
            poll_interval=self._config.poll_interval,
        )

    async def run_workflow(
        self,
        workflow: WorkflowRef,
        input: Any = None,
        *,
        max_attempts: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """Enqueue ``workflow`` and wait for its output."""
        handle = await self.start_workflow(workflow, input, max_attempts=max_attempts)
        return await handle.wait(timeout=timeout)

    async def cancel_workflow(self, workflow_id: int, reason: str = "Cancelled") -> bool:
        """Stop scheduling further attempts by forcing the workflow to ``failed``."""
        cancelled = await self._repository.cancel_workflow(workflow_id, reason)
        if cancelled:
            logger.info(f"Cancelled workflow id={workflow_id}: {reason}")
        return cancelled
