"""Exception types shared by the registry, the workflow engine and skills."""

from typing import Optional


class HQBotError(Exception):
    """Base error. `suggestion` is a corrective hint shown to the user."""

    def __init__(self, message: str, suggestion: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.suggestion = suggestion


class SkillError(HQBotError):
    """A skill could not be loaded, registered or executed."""


class WorkflowError(HQBotError):
    """Base class for workflow failures."""


class WorkflowConfigError(WorkflowError):
    """Malformed workflow definition or command (bad quoting, too many steps...)."""


class WorkflowNotFoundError(WorkflowError):
    def __init__(self, key: str):
        super().__init__(
            f'Workflow "{key}" not found', suggestion='Use "workflow list"'
        )
        self.key = key


class WorkflowBusyError(WorkflowError):
    def __init__(self, active_name: str):
        super().__init__(
            "A workflow is already running",
            suggestion=f'"{active_name}" is in progress. Use "workflow stop" first.',
        )
        self.active_name = active_name


class MissingArgumentsError(WorkflowError):
    def __init__(self, key: str, missing: list, required: list):
        usage = " ".join(f"<{a}>" for a in required)
        super().__init__(
            f"Missing arguments: {', '.join(missing)}",
            suggestion=f"Usage: workflow run {key} {usage}".rstrip(),
        )
        self.missing = list(missing)


class NoActiveWorkflowError(WorkflowError):
    pass


class StepFailedError(WorkflowError):
    """Raised inside the runner when a step result is unsuccessful."""
