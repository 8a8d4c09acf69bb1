from __future__ import annotations

import asyncio
from typing import Any, Optional

from .errors import WorkflowFailedError, WorkflowNotFoundError
from .payloads import PayloadDeserializer
from .persistence import StepRecord, WorkflowRecord, WorkflowRepository, WorkflowStatus
from .registry import WorkflowDefinition


class WorkflowHandle:
    """Reference to an enqueued workflow, used to poll or await its result."""

    def __init__(
        self,
        workflow_id: int,
        repository: WorkflowRepository,
        definition: WorkflowDefinition | None = None,
        poll_interval: float = 1.0,
    ) -> None:
        self.id = workflow_id
        self._repository = repository
        self._definition = definition
        self._poll_interval = poll_interval

    def __repr__(self) -> str:
        return f"WorkflowHandle(id={self.id})"

    async def record(self) -> WorkflowRecord:
        wf = await self._repository.get_workflow(self.id)
        if wf is None:
            raise WorkflowNotFoundError(self.id)
        return wf

    async def status(self) -> WorkflowStatus:
        return (await self.record()).status

    async def steps(self) -> list[StepRecord]:
        return await self._repository.list_steps(self.id)

    async def output(self) -> Any:
        """Deserialized output, or ``None`` while the workflow is not completed.

        A completed workflow that returned ``None`` also yields ``None``;
        check :meth:`status` (or use :meth:`wait`) to tell the two apart.
        """
        wf = await self.record()
        if wf.status != WorkflowStatus.COMPLETED:
            return None
        return self._decode(wf.output)

    def _decode(self, data: Optional[str]) -> Any:
        if self._definition is not None:
            return self._definition.decode_output(data)
        return PayloadDeserializer.deserialize(data)

    async def wait(
        self, timeout: Optional[float] = None, poll_interval: Optional[float] = None
    ) -> Any:
        """Poll until the workflow is terminal and return its output.

        Raises:
            WorkflowFailedError: The workflow ended ``failed``.
            TimeoutError: ``timeout`` seconds passed first.
        """
        interval = poll_interval or self._poll_interval
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout if timeout is not None else None

        while True:
            wf = await self.record()
            if wf.status == WorkflowStatus.COMPLETED:
                return self._decode(wf.output)
            if wf.status == WorkflowStatus.FAILED:
                raise WorkflowFailedError(self.id, wf.error)
            if deadline is not None:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    raise TimeoutError(
                        f"Workflow {self.id} still {wf.status.value} after {timeout}s"
                    )
                await asyncio.sleep(min(interval, remaining))
            else:
                await asyncio.sleep(interval)
