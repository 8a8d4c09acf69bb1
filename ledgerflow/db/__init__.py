from .models import Workflow, WorkflowStep
from .workflow_db import WorkflowDB, schema_ddl

__all__ = [
    "Workflow",
    "WorkflowStep",
    "WorkflowDB",
    "schema_ddl",
]
