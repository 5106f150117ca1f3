"""Unit tests for the in-memory workflow and execution stores."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import pytest

from workflow_automation.workflow.errors import ExecutionNotFoundError, WorkflowNotFoundError
from workflow_automation.workflow.metrics import ExecutionMetrics
from workflow_automation.workflow.models import (
    ActionResult,
    ActionType,
    ExecutionStatus,
    TriggerType,
    Workflow,
    WorkflowExecution,
)
from workflow_automation.workflow.stores import InMemoryExecutionStore, InMemoryWorkflowStore

T0 = datetime(2024, 1, 1, tzinfo=UTC)


def test_workflow_store_hands_out_copies(make_workflow: Callable[..., Workflow]) -> None:
    workflow = make_workflow()
    store = InMemoryWorkflowStore([workflow])

    fetched = store.get(workflow.id)
    fetched.actions.clear()

    assert len(store.get(workflow.id).actions) == 2


def test_list_enabled_filters_by_trigger_type(make_workflow: Callable[..., Workflow]) -> None:
    event = make_workflow()
    disabled = make_workflow(is_enabled=False)
    manual = make_workflow(trigger_config={"type": "MANUAL"})
    store = InMemoryWorkflowStore([event, disabled, manual])

    assert [w.id for w in store.list_enabled(TriggerType.EVENT)] == [event.id]
    assert [w.id for w in store.list_enabled(TriggerType.MANUAL)] == [manual.id]
    assert store.list_enabled(TriggerType.SIGNAL) == []


def test_record_run_increments(make_workflow: Callable[..., Workflow]) -> None:
    workflow = make_workflow()
    store = InMemoryWorkflowStore([workflow])

    store.record_run(workflow.id, T0)
    updated = store.record_run(workflow.id, T0 + timedelta(minutes=1))

    assert updated.run_count == 2
    assert updated.last_run_at == T0 + timedelta(minutes=1)
    with pytest.raises(WorkflowNotFoundError):
        store.record_run("missing", T0)


def test_execution_store_lifecycle() -> None:
    store = InMemoryExecutionStore()
    execution = store.create(WorkflowExecution(workflow_id="wf-1", tenant_id="t", created_at=T0))

    with pytest.raises(ValueError):
        store.create(execution)

    store.append_action_result(
        execution.id, ActionResult(action_type=ActionType.NOTIFY, order=1, success=True)
    )
    assert len(store.get(execution.id).actions_executed) == 1

    with pytest.raises(ExecutionNotFoundError):
        store.get("missing")
    with pytest.raises(ExecutionNotFoundError):
        store.update(WorkflowExecution(workflow_id="wf-1", tenant_id="t"))


def test_execution_list_is_newest_first_and_filtered() -> None:
    store = InMemoryExecutionStore()
    older = store.create(WorkflowExecution(workflow_id="wf-1", tenant_id="t", created_at=T0))
    newer = store.create(
        WorkflowExecution(
            workflow_id="wf-1",
            tenant_id="t",
            created_at=T0 + timedelta(hours=1),
            status=ExecutionStatus.FAILED,
        )
    )
    store.create(WorkflowExecution(workflow_id="wf-2", tenant_id="t", created_at=T0))

    assert [e.id for e in store.list(workflow_id="wf-1")] == [newer.id, older.id]
    assert [e.id for e in store.list(status=ExecutionStatus.FAILED)] == [newer.id]


def test_metrics_ignore_non_terminal_executions() -> None:
    metrics = ExecutionMetrics()
    metrics.record(WorkflowExecution(workflow_id="wf-1", tenant_id="t"))
    metrics.record(
        WorkflowExecution(
            workflow_id="wf-1",
            tenant_id="t",
            status=ExecutionStatus.CANCELLED,
            started_at=T0,
            completed_at=T0 + timedelta(milliseconds=250),
        )
    )

    snapshot = metrics.snapshot("wf-1")
    assert snapshot.total == 1
    assert snapshot.by_status["CANCELLED"] == 1
    assert snapshot.by_status["COMPLETED"] == 0
    assert snapshot.success_rate is None
    assert snapshot.average_duration_ms == 250.0

    empty = metrics.snapshot("wf-2")
    assert empty.total == 0
    assert empty.last_status is None
