"""Unit tests for stimulus dispatch across workflows."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterator
from datetime import UTC, datetime
from typing import Any
from unittest.mock import Mock

import pytest

from workflow_automation.workflow.actions import ActionExecutorRegistry
from workflow_automation.workflow.conditions import ConditionEvaluator
from workflow_automation.workflow.dispatcher import Dispatcher
from workflow_automation.workflow.events import EventStimulus, ScheduleTick
from workflow_automation.workflow.executions import ExecutionManager
from workflow_automation.workflow.models import ActionType, ExecutionStatus, Workflow
from workflow_automation.workflow.pipeline import ActionPipeline
from workflow_automation.workflow.stores import InMemoryExecutionStore, InMemoryWorkflowStore
from workflow_automation.workflow.triggers import TriggerMatcher


class Recorder:
    def __init__(self) -> None:
        self.configs: list[dict[str, Any]] = []
        self._lock = threading.Lock()

    def execute(self, config: dict[str, Any]) -> Any:
        with self._lock:
            self.configs.append(config)
        return "sent"


class Gate:
    def __init__(self) -> None:
        self.release = threading.Event()

    def execute(self, config: dict[str, Any]) -> Any:
        self.release.wait(timeout=5)
        return "slow"


class Rig:
    def __init__(
        self,
        workflows: list[Workflow],
        executors: dict[ActionType, Any],
        matcher: TriggerMatcher | Mock | None = None,
    ) -> None:
        self.workflows = InMemoryWorkflowStore(workflows)
        self.pipeline = ActionPipeline(ActionExecutorRegistry(executors))
        self.manager = ExecutionManager(
            workflows=self.workflows,
            store=InMemoryExecutionStore(),
            pipeline=self.pipeline,
            max_workers=4,
        )
        self.dispatcher = Dispatcher(
            workflows=self.workflows,
            matcher=matcher or TriggerMatcher(),
            evaluator=ConditionEvaluator(),
            executions=self.manager,
            max_workers=4,
        )

    def close(self) -> None:
        self.dispatcher.shutdown()
        self.manager.shutdown()


@pytest.fixture
def rig_factory() -> Iterator[Callable[..., Rig]]:
    rigs: list[Rig] = []

    def _make(*args: Any, **kwargs: Any) -> Rig:
        rig = Rig(*args, **kwargs)
        rigs.append(rig)
        return rig

    yield _make
    for rig in rigs:
        rig.close()


def _blocked_item_update() -> EventStimulus:
    return EventStimulus(
        event_kind="updated",
        entity_kind="item",
        entity_id="item-1",
        payload={"name": "Item 1", "status": "blocked"},
    )


def test_end_to_end_event_dispatch(
    make_workflow: Callable[..., Workflow], rig_factory: Callable[..., Rig]
) -> None:
    notify, assign = Recorder(), Recorder()
    workflow = make_workflow()
    rig = rig_factory([workflow], {ActionType.NOTIFY: notify, ActionType.ASSIGN: assign})

    executions = rig.dispatcher.dispatch(_blocked_item_update())

    assert len(executions) == 1
    execution = executions[0]
    assert execution.status == ExecutionStatus.COMPLETED
    assert [r.success for r in execution.actions_executed] == [True, True]
    assert notify.configs[0]["message"] == "Item 1 is blocked"
    assert assign.configs == [{"assignee": "team_lead"}]

    stored = rig.workflows.get(workflow.id)
    assert stored.run_count == 1
    assert stored.last_run_at is not None


def test_unmet_conditions_and_other_kinds_do_not_dispatch(
    make_workflow: Callable[..., Workflow], rig_factory: Callable[..., Rig]
) -> None:
    notify = Recorder()
    rig = rig_factory([make_workflow()], {ActionType.NOTIFY: notify, ActionType.ASSIGN: Recorder()})

    done = EventStimulus(event_kind="updated", entity_kind="item", payload={"status": "done"})
    other = EventStimulus(event_kind="updated", entity_kind="deal", payload={"status": "blocked"})

    assert rig.dispatcher.dispatch(done) == []
    assert rig.dispatcher.dispatch(other) == []
    assert rig.dispatcher.dispatch(ScheduleTick(at=datetime(2024, 1, 1, tzinfo=UTC))) == []
    assert notify.configs == []


def test_disabled_workflows_are_ignored(
    make_workflow: Callable[..., Workflow], rig_factory: Callable[..., Rig]
) -> None:
    rig = rig_factory(
        [make_workflow(is_enabled=False)],
        {ActionType.NOTIFY: Recorder(), ActionType.ASSIGN: Recorder()},
    )
    assert rig.dispatcher.dispatch(_blocked_item_update()) == []


def test_slow_workflow_does_not_block_others(
    make_workflow: Callable[..., Workflow], rig_factory: Callable[..., Rig]
) -> None:
    gate = Gate()
    slow = make_workflow(
        name="slow",
        conditions=None,
        actions=[{"type": "WEBHOOK", "order": 1, "config": {"url": "https://example.com"}}],
    )
    fast = make_workflow(
        name="fast",
        conditions=None,
        actions=[{"type": "CHANGE_STATUS", "order": 1, "config": {"status": "escalated"}}],
    )
    rig = rig_factory(
        [slow, fast], {ActionType.WEBHOOK: gate, ActionType.CHANGE_STATUS: Recorder()}
    )

    try:
        executions = rig.dispatcher.dispatch(_blocked_item_update(), wait=False)
        assert len(executions) == 2
        fast_id = next(e.id for e in executions if e.workflow_id == fast.id)
        slow_id = next(e.id for e in executions if e.workflow_id == slow.id)

        deadline = time.monotonic() + 5
        while rig.manager.get(fast_id).status != ExecutionStatus.COMPLETED:
            assert time.monotonic() < deadline, "fast workflow was held up by the slow one"
            time.sleep(0.01)
        assert not rig.manager.get(slow_id).is_terminal
    finally:
        gate.release.set()


def test_error_in_one_workflow_is_isolated(
    make_workflow: Callable[..., Workflow], rig_factory: Callable[..., Rig]
) -> None:
    broken = make_workflow(name="broken")
    healthy = make_workflow(name="healthy")
    real = TriggerMatcher()

    def _matches(trigger: Any, stimulus: Any, *, workflow_id: str | None = None, **kw: Any) -> bool:
        if workflow_id == broken.id:
            raise RuntimeError("corrupt trigger")
        return real.matches(trigger, stimulus, workflow_id=workflow_id, **kw)

    matcher = Mock(spec=TriggerMatcher)
    matcher.matches.side_effect = _matches
    rig = rig_factory(
        [broken, healthy],
        {ActionType.NOTIFY: Recorder(), ActionType.ASSIGN: Recorder()},
        matcher=matcher,
    )

    executions = rig.dispatcher.dispatch(_blocked_item_update())

    assert [e.workflow_id for e in executions] == [healthy.id]
    assert matcher.matches.call_count == 2


def test_schedule_tick_dispatches_each_occurrence_once(
    make_workflow: Callable[..., Workflow], rig_factory: Callable[..., Rig]
) -> None:
    recorder = Recorder()
    workflow = make_workflow(
        trigger_config={"type": "SCHEDULE", "cron": "0 9 * * 1", "timezone": "UTC"},
        conditions=None,
        actions=[
            {
                "type": "WEBHOOK",
                "order": 1,
                "config": {"url": "https://example.com", "body": {"at": "{{metadata.timestamp}}"}},
            }
        ],
    )
    rig = rig_factory([workflow], {ActionType.WEBHOOK: recorder})
    tick = ScheduleTick(at=datetime(2024, 1, 8, 9, 0, 20, tzinfo=UTC))

    first = rig.dispatcher.dispatch(tick)
    second = rig.dispatcher.dispatch(ScheduleTick(at=datetime(2024, 1, 8, 9, 0, 40, tzinfo=UTC)))

    assert len(first) == 1
    assert second == []
    assert recorder.configs[0]["body"]["at"] == tick.at.isoformat()


def test_concurrent_dispatch_of_same_tick_creates_one_execution(
    make_workflow: Callable[..., Workflow], rig_factory: Callable[..., Rig]
) -> None:
    recorder = Recorder()
    workflow = make_workflow(
        trigger_config={"type": "SCHEDULE", "cron": "0 9 * * 1", "timezone": "UTC"},
        conditions=None,
        actions=[{"type": "WEBHOOK", "order": 1, "config": {"url": "https://example.com"}}],
    )
    rig = rig_factory([workflow], {ActionType.WEBHOOK: recorder})
    tick = ScheduleTick(at=datetime(2024, 1, 8, 9, 0, 20, tzinfo=UTC))
    barrier = threading.Barrier(2)
    results: list[list[Any]] = []
    results_lock = threading.Lock()

    def _dispatch() -> None:
        barrier.wait(timeout=5)
        executions = rig.dispatcher.dispatch(tick)
        with results_lock:
            results.append(executions)

    threads = [threading.Thread(target=_dispatch) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=5)

    assert sorted(len(r) for r in results) == [0, 1]
    assert len(rig.manager.list_executions(workflow_id=workflow.id)) == 1
    assert len(recorder.configs) == 1
