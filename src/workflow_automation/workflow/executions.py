"""Execution lifecycle: PENDING -> RUNNING -> COMPLETED | FAILED | CANCELLED.

The manager is the only writer of execution records. Every status change is a
compare-and-transition performed under one lock, so a cancel and a finalize
(or two retries) racing on the same record cannot both win.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from typing import Any

from .context import ExecutionContext, TriggerContext
from .errors import (
    ExecutionNotCancellableError,
    ExecutionNotRetryableError,
    WorkflowNotFoundError,
)
from .metrics import ExecutionMetrics
from .models import (
    ActionResult,
    ExecutionStatus,
    Workflow,
    WorkflowExecution,
    utc_now,
)
from .pipeline import ActionPipeline, CancellationToken
from .state_machine import transition
from .stores import ExecutionStore, WorkflowSource

logger = logging.getLogger(__name__)


class ExecutionManager:
    def __init__(
        self,
        *,
        workflows: WorkflowSource,
        store: ExecutionStore,
        pipeline: ActionPipeline,
        pool: Executor | None = None,
        max_workers: int = 8,
        metrics: ExecutionMetrics | None = None,
    ) -> None:
        self._workflows = workflows
        self._store = store
        self._pipeline = pipeline
        self._owns_pool = pool is None
        self._pool = pool or ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="workflow-execution"
        )
        self._metrics = metrics or ExecutionMetrics()

        self._lock = threading.RLock()
        self._tokens: dict[str, CancellationToken] = {}
        self._retries_in_flight: set[str] = set()

    @property
    def metrics(self) -> ExecutionMetrics:
        return self._metrics

    def start(
        self, workflow: Workflow, context: TriggerContext, *, retry_of: str | None = None
    ) -> WorkflowExecution:
        """Create an execution and run it to a terminal status on the calling thread."""

        execution, token = self._create(workflow, context, retry_of=retry_of)
        return self._run(workflow, execution.id, context, token)

    def submit(
        self, workflow: Workflow, context: TriggerContext, *, retry_of: str | None = None
    ) -> tuple[WorkflowExecution, Future[WorkflowExecution]]:
        """Create the PENDING record now and run the execution on the execution pool."""

        execution, token = self._create(workflow, context, retry_of=retry_of)
        future = self._pool.submit(self._run, workflow, execution.id, context, token)
        return execution, future

    def get(self, execution_id: str) -> WorkflowExecution:
        return self._store.get(execution_id)

    def list_executions(
        self, *, workflow_id: str | None = None, status: ExecutionStatus | None = None
    ) -> list[WorkflowExecution]:
        return self._store.list(workflow_id=workflow_id, status=status)

    def cancel(self, execution_id: str) -> WorkflowExecution:
        """Request cancellation.

        A PENDING execution is cancelled immediately. A RUNNING one stops before
        its next action starts; an action already in flight is never interrupted.
        """

        with self._lock:
            current = self._store.get(execution_id)
            if current.is_terminal:
                raise ExecutionNotCancellableError(
                    execution_id=execution_id, status=current.status.value
                )

            token = self._tokens.get(execution_id)
            if token is not None:
                token.cancel()

            if current.status != ExecutionStatus.PENDING:
                logger.info("Cancellation requested", extra={"execution_id": execution_id})
                return self._store.update(current.model_copy(update={"cancel_requested": True}))

            cancelled = self._store.update(
                current.model_copy(
                    update={
                        "status": transition(current=current.status, to=ExecutionStatus.CANCELLED),
                        "cancel_requested": True,
                        "completed_at": utc_now(),
                        "error": "Cancelled before start",
                    }
                )
            )

        logger.info("Execution cancelled before start", extra={"execution_id": execution_id})
        self._after_terminal(cancelled)
        return cancelled

    def retry(self, execution_id: str, *, wait: bool = True) -> WorkflowExecution:
        """Re-run a FAILED execution as a new record; the original is left untouched."""

        with self._lock:
            original = self._store.get(execution_id)
            if original.status != ExecutionStatus.FAILED:
                raise ExecutionNotRetryableError(
                    execution_id=execution_id, status=original.status.value
                )
            if execution_id in self._retries_in_flight:
                raise ExecutionNotRetryableError(
                    execution_id=execution_id,
                    status=original.status.value,
                    reason="a retry is already in progress",
                )
            self._retries_in_flight.add(execution_id)

        try:
            workflow = self._workflows.get(original.workflow_id)
            context = TriggerContext.model_validate(original.trigger_data)
            execution, future = self.submit(workflow, context, retry_of=execution_id)
        except Exception:
            self._release_retry(execution_id)
            raise
        future.add_done_callback(lambda _f: self._release_retry(execution_id))

        logger.info(
            "Retry scheduled",
            extra={"execution_id": execution.id, "retry_of": execution_id},
        )
        if wait:
            return future.result()
        return execution

    def shutdown(self, *, wait: bool = True) -> None:
        if self._owns_pool:
            self._pool.shutdown(wait=wait)

    # Internals

    def _release_retry(self, execution_id: str) -> None:
        with self._lock:
            self._retries_in_flight.discard(execution_id)

    def _create(
        self, workflow: Workflow, context: TriggerContext, *, retry_of: str | None
    ) -> tuple[WorkflowExecution, CancellationToken]:
        execution = WorkflowExecution(
            workflow_id=workflow.id,
            tenant_id=workflow.tenant_id,
            trigger_data=context.snapshot(),
            retry_of=retry_of,
        )
        token = CancellationToken()
        with self._lock:
            created = self._store.create(execution)
            self._tokens[created.id] = token
        logger.info(
            "Execution created",
            extra={"execution_id": created.id, "workflow_id": workflow.id, "retry_of": retry_of},
        )
        return created, token

    def _run(
        self,
        workflow: Workflow,
        execution_id: str,
        context: TriggerContext,
        token: CancellationToken,
    ) -> WorkflowExecution:
        try:
            with self._lock:
                current = self._store.get(execution_id)
                if current.status != ExecutionStatus.PENDING:
                    return current
                self._store.update(
                    current.model_copy(
                        update={
                            "status": transition(
                                current=current.status, to=ExecutionStatus.RUNNING
                            ),
                            "started_at": utc_now(),
                        }
                    )
                )

            outcome = self._pipeline.run(
                workflow.ordered_actions(),
                ExecutionContext(context),
                token,
                on_result=lambda result: self._append(execution_id, result),
            )
            return self._finalize(
                execution_id,
                status=outcome.status,
                actions_executed=list(outcome.actions_executed),
                error=outcome.error,
            )
        except Exception as e:
            logger.exception(
                "Execution crashed; marking failed",
                extra={"execution_id": execution_id, "workflow_id": workflow.id},
            )
            return self._finalize(execution_id, status=ExecutionStatus.FAILED, error=str(e))
        finally:
            with self._lock:
                self._tokens.pop(execution_id, None)

    def _append(self, execution_id: str, result: ActionResult) -> None:
        with self._lock:
            self._store.append_action_result(execution_id, result)

    def _finalize(
        self,
        execution_id: str,
        *,
        status: ExecutionStatus,
        actions_executed: list[ActionResult] | None = None,
        error: str | None = None,
    ) -> WorkflowExecution:
        with self._lock:
            current = self._store.get(execution_id)
            if current.is_terminal:
                return current

            if current.status == ExecutionStatus.PENDING:
                # Crashed before the pipeline started.
                current = current.model_copy(
                    update={
                        "status": transition(current=current.status, to=ExecutionStatus.RUNNING),
                        "started_at": utc_now(),
                    }
                )

            updates: dict[str, Any] = {
                "status": transition(current=current.status, to=status),
                "completed_at": utc_now(),
                "error": error,
            }
            if actions_executed is not None:
                updates["actions_executed"] = actions_executed
            finished = self._store.update(current.model_copy(update=updates))

        logger.info(
            "Execution finished",
            extra={
                "execution_id": finished.id,
                "workflow_id": finished.workflow_id,
                "status": finished.status.value,
                "actions": len(finished.actions_executed),
            },
        )
        self._after_terminal(finished)
        return finished

    def _after_terminal(self, execution: WorkflowExecution) -> None:
        ran_at = execution.completed_at or utc_now()
        try:
            self._workflows.record_run(execution.workflow_id, ran_at)
        except WorkflowNotFoundError:
            logger.warning(
                "Workflow disappeared before run was recorded",
                extra={"workflow_id": execution.workflow_id, "execution_id": execution.id},
            )
        self._metrics.record(execution)
