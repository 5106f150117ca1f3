"""Operations exposed to the API layer.

CRUD over workflow definitions (always validated), dry-run testing, manual
execution and execution management. Nothing here knows about HTTP.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

from .conditions import ConditionEvaluator
from .context import TriggerContext
from .errors import InvalidWorkflowError, ManualInvocationDeniedError
from .events import ManualInvocation, stimulus_from_context
from .executions import ExecutionManager
from .metrics import WorkflowMetrics
from .models import ExecutionStatus, TriggerType, Workflow, WorkflowExecution, utc_now
from .stores import WorkflowSource, touch
from .templates import TemplateResolver
from .triggers import TriggerMatcher
from .validation import validate_workflow

# Fields a client may not overwrite through update_workflow.
_MANAGED_FIELDS = frozenset({"id", "tenant_id", "run_count", "last_run_at", "created_at"})


class WorkflowRepository(WorkflowSource, Protocol):
    def save(self, workflow: Workflow) -> Workflow: ...

    def delete(self, workflow_id: str) -> None: ...

    def list(self, *, tenant_id: str | None = None) -> list[Workflow]: ...


@dataclass(frozen=True, slots=True)
class TestResult:
    """Outcome of a dry run. ``preview`` lists each action with its resolved config."""

    __test__ = False

    would_trigger: bool
    conditions_met: bool
    preview: list[dict[str, Any]] = field(default_factory=list)


def _as_context(context: TriggerContext | Mapping[str, Any] | None) -> TriggerContext:
    if context is None:
        return TriggerContext()
    if isinstance(context, TriggerContext):
        return context
    return TriggerContext.model_validate(context)


class WorkflowService:
    def __init__(
        self,
        *,
        workflows: WorkflowRepository,
        executions: ExecutionManager,
        matcher: TriggerMatcher,
        evaluator: ConditionEvaluator | None = None,
        resolver: TemplateResolver | None = None,
    ) -> None:
        self._workflows = workflows
        self._executions = executions
        self._matcher = matcher
        self._evaluator = evaluator or ConditionEvaluator()
        self._resolver = resolver or TemplateResolver()

    # Workflows

    def create_workflow(self, data: Workflow | Mapping[str, Any]) -> Workflow:
        workflow = validate_workflow(data)
        now = utc_now()
        workflow = workflow.model_copy(update={"created_at": now, "updated_at": now})
        return self._workflows.save(workflow)

    def update_workflow(self, workflow_id: str, changes: Mapping[str, Any]) -> Workflow:
        current = self._workflows.get(workflow_id)
        merged = current.model_dump(mode="json")
        merged.update({k: v for k, v in changes.items() if k not in _MANAGED_FIELDS})
        workflow = validate_workflow(merged)
        return self._workflows.save(touch(workflow))

    def delete_workflow(self, workflow_id: str) -> None:
        self._workflows.delete(workflow_id)

    def enable_workflow(self, workflow_id: str) -> Workflow:
        current = self._workflows.get(workflow_id)
        workflow = validate_workflow(current.model_copy(update={"is_enabled": True}))
        return self._workflows.save(touch(workflow))

    def disable_workflow(self, workflow_id: str) -> Workflow:
        current = self._workflows.get(workflow_id)
        return self._workflows.save(touch(current, is_enabled=False))

    def get_workflow(self, workflow_id: str) -> Workflow:
        return self._workflows.get(workflow_id)

    def list_workflows(self, *, tenant_id: str | None = None) -> list[Workflow]:
        return self._workflows.list(tenant_id=tenant_id)

    # Dry run

    def test_workflow(
        self,
        workflow: Workflow | Mapping[str, Any],
        mock_context: TriggerContext | Mapping[str, Any] | None = None,
        *,
        at: datetime | None = None,
    ) -> TestResult:
        """Would ``mock_context`` trigger ``workflow``, and would its conditions hold?

        Never runs actions and never claims schedule occurrences.
        """

        parsed = validate_workflow(workflow)
        context = _as_context(mock_context)
        stimulus = stimulus_from_context(
            parsed.trigger_type, context, workflow_id=parsed.id, at=at
        )
        if isinstance(stimulus, ManualInvocation):
            context = stimulus.to_context()

        would_trigger = self._matcher.matches(
            parsed.trigger_config, stimulus, workflow_id=parsed.id, dry_run=True
        )
        conditions_met = self._evaluator.evaluate(parsed.conditions, context)
        preview = [
            {
                "action_type": action.type.value,
                "order": action.order,
                "config": self._resolver.resolve_config(action.config, context),
            }
            for action in parsed.ordered_actions()
        ]
        return TestResult(
            would_trigger=would_trigger, conditions_met=conditions_met, preview=preview
        )

    # Executions

    def execute_workflow(
        self,
        workflow_id: str,
        context: TriggerContext | Mapping[str, Any] | None = None,
        *,
        role: str | None = None,
        wait: bool = True,
    ) -> WorkflowExecution:
        """Run a workflow by hand, skipping trigger matching and conditions.

        MANUAL workflows still enforce their role allow-list.
        """

        workflow = self._workflows.get(workflow_id)
        invocation = ManualInvocation(
            role=role, workflow_id=workflow_id, context=_as_context(context)
        )
        if workflow.trigger_type == TriggerType.MANUAL and not self._matcher.matches(
            workflow.trigger_config, invocation, workflow_id=workflow_id
        ):
            raise ManualInvocationDeniedError(workflow_id=workflow_id, role=role)
        if not workflow.actions:
            raise InvalidWorkflowError(f"Workflow {workflow_id} has no actions to run")

        if wait:
            return self._executions.start(workflow, invocation.to_context())
        execution, _future = self._executions.submit(workflow, invocation.to_context())
        return execution

    def list_executions(
        self, *, workflow_id: str | None = None, status: ExecutionStatus | None = None
    ) -> list[WorkflowExecution]:
        return self._executions.list_executions(workflow_id=workflow_id, status=status)

    def get_execution(self, execution_id: str) -> WorkflowExecution:
        return self._executions.get(execution_id)

    def cancel_execution(self, execution_id: str) -> WorkflowExecution:
        return self._executions.cancel(execution_id)

    def retry_execution(self, execution_id: str, *, wait: bool = True) -> WorkflowExecution:
        return self._executions.retry(execution_id, wait=wait)

    def workflow_metrics(self, workflow_id: str) -> WorkflowMetrics:
        self._workflows.get(workflow_id)
        return self._executions.metrics.snapshot(workflow_id)
