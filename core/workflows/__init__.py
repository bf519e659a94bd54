"""
Workflow engine.

- WorkflowCatalog: built-in and custom workflow definitions
- WorkflowRunner: runs one workflow at a time, step by step
"""

from .catalog import BUILT_IN_WORKFLOWS, StepSpec, WorkflowCatalog, WorkflowDefinition
from .runner import RunStatus, WorkflowReport, WorkflowRun, WorkflowRunner

__all__ = [
    "BUILT_IN_WORKFLOWS",
    "StepSpec",
    "WorkflowCatalog",
    "WorkflowDefinition",
    "RunStatus",
    "WorkflowReport",
    "WorkflowRun",
    "WorkflowRunner",
]
