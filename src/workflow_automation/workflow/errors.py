"""Exception taxonomy for workflow automation.

Only illegal requests against a specific execution (cancel/retry misuse) and
validation failures surface to callers. Everything that happens while a
workflow or action runs is recorded as data on the execution instead.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


class WorkflowAutomationError(Exception):
    pass


class InvalidWorkflowError(WorkflowAutomationError, ValueError):
    """A workflow definition violates a structural invariant."""


class InvalidTriggerConfigError(InvalidWorkflowError):
    """The trigger configuration is malformed.

    Raised at validation time only. Dispatch assumes pre-validated workflows.
    """


class ActionExecutionError(WorkflowAutomationError):
    """An action executor failed.

    Always caught by the pipeline and recorded on the ActionResult.
    """


class UnknownActionTypeError(ActionExecutionError, LookupError):
    pass


class ActionTimeoutError(ActionExecutionError, TimeoutError):
    pass


@dataclass(eq=False)
class ExecutionNotFoundError(WorkflowAutomationError, LookupError):
    execution_id: str

    def __str__(self) -> str:
        return f"Execution not found: {self.execution_id}"


@dataclass(eq=False)
class WorkflowNotFoundError(WorkflowAutomationError, LookupError):
    workflow_id: str

    def __str__(self) -> str:
        return f"Workflow not found: {self.workflow_id}"


@dataclass(eq=False)
class ExecutionNotCancellableError(WorkflowAutomationError):
    execution_id: str
    status: str

    def __str__(self) -> str:
        return f"Execution {self.execution_id} cannot be cancelled from status {self.status}"


@dataclass(eq=False)
class ExecutionNotRetryableError(WorkflowAutomationError):
    execution_id: str
    status: str
    reason: str = ""

    def __str__(self) -> str:
        message = f"Execution {self.execution_id} cannot be retried from status {self.status}"
        if self.reason:
            message += f" ({self.reason})"
        return message


@dataclass(eq=False)
class ManualInvocationDeniedError(WorkflowAutomationError):
    workflow_id: str
    role: str | None

    def __str__(self) -> str:
        return f"Role {self.role!r} may not run workflow {self.workflow_id} manually"


@dataclass(eq=False)
class DuplicateOccurrenceError(WorkflowAutomationError):
    """A cron occurrence was already dispatched for this workflow.

    Internal to schedule matching; never reaches callers.
    """

    workflow_id: str
    occurrence: datetime

    def __str__(self) -> str:
        return (
            f"Occurrence {self.occurrence.isoformat()} already fired for workflow "
            f"{self.workflow_id}"
        )
