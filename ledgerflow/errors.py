"""Exception hierarchy for ledgerflow."""

from __future__ import annotations

from typing import Optional


class LedgerflowError(Exception):
    """Base class for all engine errors."""


class RegistryError(LedgerflowError):
    """Problems with workflow or step registration."""


class WorkflowNotRegisteredError(RegistryError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Workflow '{name}' is not registered")
        self.name = name


class StepNotRegisteredError(RegistryError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Step '{name}' is not registered")
        self.name = name


class DuplicateRegistrationError(RegistryError):
    """A workflow or step name was registered twice."""


class RegistryFrozenError(RegistryError):
    """Registration attempted after the registry was frozen."""


class PayloadSerializationError(LedgerflowError):
    """A value cannot be represented in the JSON payload model.

    Fatal: raised at enqueue time or at a step boundary and never retried.
    """


class StepExecutionError(LedgerflowError):
    """A step body raised. The original exception is chained as ``__cause__``."""

    def __init__(self, step_name: str, step_index: int, message: str) -> None:
        super().__init__(f"Step '{step_name}' (index {step_index}) failed: {message}")
        self.step_name = step_name
        self.step_index = step_index


class DeterminismViolationError(LedgerflowError):
    """Replay reached a step index recorded under a different step name."""

    def __init__(self, step_index: int, expected: str, found: str) -> None:
        super().__init__(
            f"Workflow step mismatch at index {step_index}: expected '{expected}', "
            f"found '{found}'. Workflow steps must be deterministic."
        )
        self.step_index = step_index
        self.expected = expected
        self.found = found


class LeaseLostError(LedgerflowError):
    """The worker no longer holds the lease on a workflow it is executing."""

    def __init__(self, workflow_id: int, worker_id: str, attempt: Optional[int] = None) -> None:
        claim = f" (attempt {attempt})" if attempt is not None else ""
        super().__init__(
            f"Worker {worker_id}{claim} no longer holds the lease on workflow {workflow_id}"
        )
        self.workflow_id = workflow_id
        self.worker_id = worker_id
        self.attempt = attempt


class StoreUnavailableError(LedgerflowError):
    """The store failed while recording step bookkeeping.

    Never handed to workflow logic as a step failure: the executor abandons
    the execution and the workflow resumes once its lease expires.
    """


class WorkflowFailedError(LedgerflowError):
    """Raised by :meth:`WorkflowHandle.wait` when the workflow ended ``failed``."""

    def __init__(self, workflow_id: int, error: Optional[str]) -> None:
        super().__init__(f"Workflow {workflow_id} failed: {error or 'unknown error'}")
        self.workflow_id = workflow_id
        self.error = error


class WorkflowNotFoundError(LedgerflowError):
    def __init__(self, workflow_id: int) -> None:
        super().__init__(f"Workflow {workflow_id} not found")
        self.workflow_id = workflow_id


# Errors that retrying cannot fix.
FATAL_ERRORS = (DeterminismViolationError, PayloadSerializationError, RegistryError)
