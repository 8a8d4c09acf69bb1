"""ledgerflow: durable workflow execution on a relational store."""

from .config import LedgerflowConfig, WorkerConfig, load_config
from .context import WorkflowContext
from .dispatch import WorkflowDispatcher
from .execute import WorkflowExecutor
from .handle import WorkflowHandle
from .persistence import WorkflowStatus, StepStatus, get_repository
from .registry import REGISTRY, WorkflowRegistry, register_step, register_workflow
from .worker import WorkflowWorker

__version__ = "0.1.0"
__all__ = [
    "LedgerflowConfig",
    "WorkerConfig",
    "load_config",
    "WorkflowContext",
    "WorkflowDispatcher",
    "WorkflowExecutor",
    "WorkflowHandle",
    "WorkflowStatus",
    "StepStatus",
    "WorkflowWorker",
    "WorkflowRegistry",
    "REGISTRY",
    "register_step",
    "register_workflow",
    "get_repository",
]
