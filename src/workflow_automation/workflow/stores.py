"""Collaborator contracts for workflow and execution persistence.

The engine only talks to the protocols below. The in-memory implementations
are what the CLI and the tests wire in; a database-backed store implements
the same methods.
"""

from __future__ import annotations

import builtins
import threading
from collections.abc import Iterable
from datetime import datetime
from typing import Protocol

from .errors import ExecutionNotFoundError, WorkflowNotFoundError
from .models import (
    ActionResult,
    ExecutionStatus,
    TriggerType,
    Workflow,
    WorkflowExecution,
    utc_now,
)


class WorkflowSource(Protocol):
    def list_enabled(self, trigger_type: TriggerType) -> list[Workflow]: ...

    def get(self, workflow_id: str) -> Workflow: ...

    def record_run(self, workflow_id: str, ran_at: datetime) -> Workflow:
        """Increment ``run_count`` and set ``last_run_at`` atomically."""
        ...


class ExecutionStore(Protocol):
    def create(self, execution: WorkflowExecution) -> WorkflowExecution: ...

    def update(self, execution: WorkflowExecution) -> WorkflowExecution: ...

    def get(self, execution_id: str) -> WorkflowExecution: ...

    def append_action_result(self, execution_id: str, result: ActionResult) -> None: ...

    def list(
        self,
        *,
        workflow_id: str | None = None,
        status: ExecutionStatus | None = None,
    ) -> builtins.list[WorkflowExecution]: ...


class InMemoryWorkflowStore:
    """Thread-safe workflow store; hands out copies so callers never share state."""

    def __init__(self, workflows: Iterable[Workflow] = ()) -> None:
        self._lock = threading.Lock()
        self._workflows: dict[str, Workflow] = {w.id: w.model_copy(deep=True) for w in workflows}

    def save(self, workflow: Workflow) -> Workflow:
        with self._lock:
            self._workflows[workflow.id] = workflow.model_copy(deep=True)
            return workflow.model_copy(deep=True)

    def delete(self, workflow_id: str) -> None:
        with self._lock:
            if self._workflows.pop(workflow_id, None) is None:
                raise WorkflowNotFoundError(workflow_id=workflow_id)

    def get(self, workflow_id: str) -> Workflow:
        with self._lock:
            workflow = self._workflows.get(workflow_id)
            if workflow is None:
                raise WorkflowNotFoundError(workflow_id=workflow_id)
            return workflow.model_copy(deep=True)

    def list(self, *, tenant_id: str | None = None) -> builtins.list[Workflow]:
        with self._lock:
            return [
                w.model_copy(deep=True)
                for w in self._workflows.values()
                if tenant_id is None or w.tenant_id == tenant_id
            ]

    def list_enabled(self, trigger_type: TriggerType) -> builtins.list[Workflow]:
        with self._lock:
            return [
                w.model_copy(deep=True)
                for w in self._workflows.values()
                if w.is_enabled and w.trigger_type == trigger_type
            ]

    def record_run(self, workflow_id: str, ran_at: datetime) -> Workflow:
        with self._lock:
            workflow = self._workflows.get(workflow_id)
            if workflow is None:
                raise WorkflowNotFoundError(workflow_id=workflow_id)
            updated = workflow.model_copy(
                update={"run_count": workflow.run_count + 1, "last_run_at": ran_at}
            )
            self._workflows[workflow_id] = updated
            return updated.model_copy(deep=True)


class InMemoryExecutionStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._executions: dict[str, WorkflowExecution] = {}

    def create(self, execution: WorkflowExecution) -> WorkflowExecution:
        with self._lock:
            if execution.id in self._executions:
                raise ValueError(f"Execution already exists: {execution.id}")
            self._executions[execution.id] = execution.model_copy(deep=True)
            return execution.model_copy(deep=True)

    def update(self, execution: WorkflowExecution) -> WorkflowExecution:
        with self._lock:
            if execution.id not in self._executions:
                raise ExecutionNotFoundError(execution_id=execution.id)
            self._executions[execution.id] = execution.model_copy(deep=True)
            return execution.model_copy(deep=True)

    def get(self, execution_id: str) -> WorkflowExecution:
        with self._lock:
            execution = self._executions.get(execution_id)
            if execution is None:
                raise ExecutionNotFoundError(execution_id=execution_id)
            return execution.model_copy(deep=True)

    def append_action_result(self, execution_id: str, result: ActionResult) -> None:
        with self._lock:
            execution = self._executions.get(execution_id)
            if execution is None:
                raise ExecutionNotFoundError(execution_id=execution_id)
            execution.actions_executed.append(result.model_copy(deep=True))

    def list(
        self,
        *,
        workflow_id: str | None = None,
        status: ExecutionStatus | None = None,
    ) -> builtins.list[WorkflowExecution]:
        with self._lock:
            matches = [
                e.model_copy(deep=True)
                for e in self._executions.values()
                if (workflow_id is None or e.workflow_id == workflow_id)
                and (status is None or e.status == status)
            ]
        return sorted(matches, key=lambda e: e.created_at, reverse=True)


def touch(workflow: Workflow, **updates: object) -> Workflow:
    """Return a copy of ``workflow`` with ``updates`` applied and ``updated_at`` refreshed."""

    return workflow.model_copy(update={**updates, "updated_at": utc_now()})
