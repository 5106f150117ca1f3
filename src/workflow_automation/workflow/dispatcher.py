"""Fan a stimulus out to every enabled workflow of its trigger type.

Trigger matching and condition evaluation for the candidates run concurrently
on a bounded evaluation pool. Matches are handed to the execution manager,
whose own pool runs the pipelines, so a slow webhook in one workflow never
holds up evaluation or dispatch of another.
"""

from __future__ import annotations

import logging
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass

from .conditions import ConditionEvaluator
from .context import TriggerContext
from .events import Stimulus
from .executions import ExecutionManager
from .models import Workflow, WorkflowExecution
from .stores import WorkflowSource
from .triggers import TriggerMatcher

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class _Submitted:
    execution: WorkflowExecution
    future: Future[WorkflowExecution]


class Dispatcher:
    def __init__(
        self,
        *,
        workflows: WorkflowSource,
        matcher: TriggerMatcher,
        evaluator: ConditionEvaluator,
        executions: ExecutionManager,
        pool: Executor | None = None,
        max_workers: int = 8,
    ) -> None:
        self._workflows = workflows
        self._matcher = matcher
        self._evaluator = evaluator
        self._executions = executions
        self._owns_pool = pool is None
        self._pool = pool or ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="workflow-dispatch"
        )

    def dispatch(self, stimulus: Stimulus, *, wait: bool = True) -> list[WorkflowExecution]:
        """Start an execution for every workflow the stimulus triggers.

        With ``wait`` the returned records are terminal; otherwise they are the
        freshly created PENDING records and the pipelines keep running.
        """

        candidates = self._workflows.list_enabled(stimulus.trigger_type)
        if not candidates:
            logger.debug(
                "No enabled workflows for stimulus",
                extra={"trigger_type": stimulus.trigger_type.value},
            )
            return []

        context = stimulus.to_context()
        futures = [
            (workflow, self._pool.submit(self._evaluate_and_submit, workflow, stimulus, context))
            for workflow in candidates
        ]

        submitted: list[_Submitted] = []
        for workflow, future in futures:
            try:
                result = future.result()
            except Exception:
                logger.exception(
                    "Workflow dispatch failed; continuing with others",
                    extra={"workflow_id": workflow.id},
                )
                continue
            if result is not None:
                submitted.append(result)

        logger.info(
            "Stimulus dispatched",
            extra={
                "trigger_type": stimulus.trigger_type.value,
                "candidates": len(candidates),
                "executions": len(submitted),
            },
        )
        if not wait:
            return [s.execution for s in submitted]
        return [self._await(s) for s in submitted]

    def _evaluate_and_submit(
        self, workflow: Workflow, stimulus: Stimulus, context: TriggerContext
    ) -> _Submitted | None:
        if not self._matcher.matches(workflow.trigger_config, stimulus, workflow_id=workflow.id):
            return None
        if not self._evaluator.evaluate(workflow.conditions, context):
            logger.debug("Conditions not met", extra={"workflow_id": workflow.id})
            return None
        execution, future = self._executions.submit(workflow, context)
        return _Submitted(execution=execution, future=future)

    def _await(self, submitted: _Submitted) -> WorkflowExecution:
        try:
            return submitted.future.result()
        except Exception:
            logger.exception(
                "Execution raised unexpectedly",
                extra={"execution_id": submitted.execution.id},
            )
            return self._executions.get(submitted.execution.id)

    def shutdown(self, *, wait: bool = True) -> None:
        if self._owns_pool:
            self._pool.shutdown(wait=wait)
