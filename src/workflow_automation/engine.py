"""Wire the engine's components from settings."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from workflow_automation.config import EngineSettings
from workflow_automation.workflow.actions import ActionExecutorRegistry, logging_registry
from workflow_automation.workflow.conditions import ConditionEvaluator
from workflow_automation.workflow.dispatcher import Dispatcher
from workflow_automation.workflow.executions import ExecutionManager
from workflow_automation.workflow.models import Workflow
from workflow_automation.workflow.pipeline import ActionPipeline
from workflow_automation.workflow.resilience import ActionCircuitBreakers
from workflow_automation.workflow.schedule import JsonScheduleLedger, ScheduleLedger
from workflow_automation.workflow.service import WorkflowService
from workflow_automation.workflow.stores import InMemoryExecutionStore, InMemoryWorkflowStore
from workflow_automation.workflow.triggers import TriggerMatcher


@dataclass
class Engine:
    workflows: InMemoryWorkflowStore
    executions: InMemoryExecutionStore
    manager: ExecutionManager
    dispatcher: Dispatcher
    service: WorkflowService
    pipeline: ActionPipeline

    def shutdown(self, *, wait: bool = True) -> None:
        self.dispatcher.shutdown(wait=wait)
        self.manager.shutdown(wait=wait)


def build_engine(
    settings: EngineSettings,
    *,
    workflows: Iterable[Workflow] = (),
    registry: ActionExecutorRegistry | None = None,
    schedule_ledger: ScheduleLedger | None = None,
) -> Engine:
    """Build an engine over in-memory stores.

    Without an explicit registry every action type is handled by a logging
    executor; without an explicit ledger the JSON ledger under
    ``settings.state_path`` is used.
    """

    workflow_store = InMemoryWorkflowStore(workflows)
    execution_store = InMemoryExecutionStore()

    pipeline = ActionPipeline(
        registry or logging_registry(),
        breakers=ActionCircuitBreakers(
            failure_threshold=settings.breaker_failure_threshold,
            recovery_timeout_seconds=settings.breaker_recovery_seconds,
        ),
        default_timeout_seconds=settings.action_timeout_seconds,
        failure_policy=settings.failure_policy,
    )
    manager = ExecutionManager(
        workflows=workflow_store,
        store=execution_store,
        pipeline=pipeline,
        max_workers=settings.execution_workers,
    )
    matcher = TriggerMatcher(
        schedule_ledger=schedule_ledger or JsonScheduleLedger(settings.schedule_ledger_file),
        schedule_grace=settings.schedule_grace,
    )
    evaluator = ConditionEvaluator()
    dispatcher = Dispatcher(
        workflows=workflow_store,
        matcher=matcher,
        evaluator=evaluator,
        executions=manager,
        max_workers=settings.dispatch_workers,
    )
    service = WorkflowService(
        workflows=workflow_store,
        executions=manager,
        matcher=matcher,
        evaluator=evaluator,
    )
    return Engine(
        workflows=workflow_store,
        executions=execution_store,
        manager=manager,
        dispatcher=dispatcher,
        service=service,
        pipeline=pipeline,
    )
