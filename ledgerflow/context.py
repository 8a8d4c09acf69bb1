"""Workflow execution context: the step interceptor."""

from __future__ import annotations

import logging
from typing import Any, Awaitable, TypeVar

from .errors import (
    DeterminismViolationError,
    LedgerflowError,
    PayloadSerializationError,
    StepExecutionError,
    StoreUnavailableError,
)
from .persistence import StepStatus, WorkflowRepository
from .registry import REGISTRY, StepRef, WorkflowRegistry

logger = logging.getLogger(__name__)

T = TypeVar("T")

_NO_INPUT: Any = object()


class WorkflowContext:
    """Per-execution state handed to a workflow function as its first argument.

    Every step call goes through :meth:`run`, which assigns the next step
    index and memoizes results in ``workflow_steps``. Step calls must happen
    in the same order on every replay of a workflow; branching belongs inside
    a step, not around step calls.

    ``attempt`` is the attempt number returned by the claim. Every store
    write is fenced on it, so an execution whose workflow was reclaimed in
    the meantime cannot record anything.
    """

    def __init__(
        self,
        workflow_id: int,
        worker_id: str,
        repository: WorkflowRepository,
        lease_seconds: float,
        registry: WorkflowRegistry | None = None,
        attempt: int = 1,
    ) -> None:
        self.workflow_id = workflow_id
        self.worker_id = worker_id
        self.attempt = attempt
        self._repository = repository
        self._lease_seconds = lease_seconds
        self._registry = registry or REGISTRY
        self._step_index = 0

    @property
    def step_index(self) -> int:
        """Index the next step call will occupy."""
        return self._step_index

    async def run(self, step: StepRef, input: Any = _NO_INPUT) -> Any:
        """Execute ``step`` at the next position, or return its recorded output.

        Args:
            step: Registered step name, definition or function.
            input: Single argument for the step body. Omit for steps that
                take no argument.

        Raises:
            DeterminismViolationError: A different step is recorded at this index.
            StepExecutionError: The step body raised.
            PayloadSerializationError: Input or output is not JSON representable.
            LeaseLostError: This claim no longer owns the workflow.
            StoreUnavailableError: The store failed while recording the step.
        """
        definition = self._registry.get_step(step)
        index = self._step_index
        self._step_index += 1

        existing = await self._store(self._repository.load_step(self.workflow_id, index))
        if existing is not None:
            if existing.step_name != definition.name:
                raise DeterminismViolationError(index, definition.name, existing.step_name)
            if existing.status == StepStatus.COMPLETED:
                await self._store(
                    self._repository.refresh_lease(
                        self.workflow_id, self.worker_id, self.attempt, self._lease_seconds
                    )
                )
                logger.debug(
                    f"Replayed step {definition.name} (index {index}) for workflow {self.workflow_id}"
                )
                return definition.decode_output(existing.output)

        has_input = input is not _NO_INPUT
        input_json = "null"
        if has_input:
            input_json = definition.encode_input(input)
            input = definition.decode_input(input_json)

        record = await self._store(
            self._repository.start_step(
                self.workflow_id,
                self.worker_id,
                self.attempt,
                index,
                definition.name,
                input_json,
                self._lease_seconds,
            )
        )
        logger.info(
            f"Running step {definition.name} (index {index}, attempt {record.attempts}) "
            f"for workflow {self.workflow_id}"
        )

        try:
            result = await (definition.invoke(input) if has_input else definition.invoke())
        except Exception as e:
            await self._store(
                self._repository.fail_step(
                    self.workflow_id,
                    self.worker_id,
                    self.attempt,
                    index,
                    f"{type(e).__name__}: {e}",
                    self._lease_seconds,
                )
            )
            logger.warning(
                f"Step {definition.name} (index {index}) failed for workflow {self.workflow_id}: {e}"
            )
            raise StepExecutionError(definition.name, index, str(e)) from e

        try:
            output_json = definition.encode_output(result)
        except PayloadSerializationError as e:
            await self._store(
                self._repository.fail_step(
                    self.workflow_id,
                    self.worker_id,
                    self.attempt,
                    index,
                    str(e),
                    self._lease_seconds,
                )
            )
            raise

        await self._store(
            self._repository.complete_step(
                self.workflow_id,
                self.worker_id,
                self.attempt,
                index,
                output_json,
                self._lease_seconds,
            )
        )
        return definition.decode_output(output_json)

    async def _store(self, call: Awaitable[T]) -> T:
        try:
            return await call
        except LedgerflowError:
            raise
        except Exception as e:
            raise StoreUnavailableError(
                f"Store error while recording a step of workflow {self.workflow_id}: {e}"
            ) from e
