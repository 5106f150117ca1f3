"""Unit tests for stimulus parsing and context round trips."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from workflow_automation.workflow.context import TriggerContext
from workflow_automation.workflow.events import (
    EventStimulus,
    ManualInvocation,
    ScheduleTick,
    SignalStimulus,
    parse_stimulus,
    stimulus_from_context,
)
from workflow_automation.workflow.models import TriggerType


def test_parse_event_stimulus() -> None:
    stimulus = parse_stimulus(
        {
            "type": "event",
            "event_kind": "updated",
            "entity_kind": "item",
            "payload": {"status": "blocked"},
        }
    )
    assert stimulus == EventStimulus(
        event_kind="updated", entity_kind="item", payload={"status": "blocked"}
    )


def test_parse_schedule_tick_treats_naive_instants_as_utc() -> None:
    stimulus = parse_stimulus({"type": "SCHEDULE", "at": "2024-01-08T09:00:00"})
    assert stimulus == ScheduleTick(at=datetime(2024, 1, 8, 9, 0, tzinfo=UTC))

    zulu = parse_stimulus({"type": "SCHEDULE", "at": "2024-01-08T09:00:00Z"})
    assert isinstance(zulu, ScheduleTick)
    assert zulu.at == datetime(2024, 1, 8, 9, 0, tzinfo=UTC)


def test_parse_manual_invocation() -> None:
    stimulus = parse_stimulus(
        {"type": "MANUAL", "role": "admin", "workflow_id": "wf-1", "context": {"entity": {"a": 1}}}
    )
    assert isinstance(stimulus, ManualInvocation)
    assert stimulus.context == TriggerContext(entity={"a": 1})


@pytest.mark.parametrize(
    "data",
    [
        {"type": "WEBHOOK"},
        {"event_kind": "updated"},
        {"type": "EVENT", "event_kind": "updated"},
        {"type": "SIGNAL", "signal_id": "s", "colour": "red"},
        {"type": "SCHEDULE", "at": "next monday"},
    ],
)
def test_malformed_stimuli_raise_value_error(data: dict[str, object]) -> None:
    with pytest.raises(ValueError):
        parse_stimulus(data)


def test_signal_context_round_trip() -> None:
    signal = SignalStimulus(
        signal_id="sig-1", signal_type="HEALTH_SCORE", health="CRITICAL", previous_health="WARNING"
    )
    rebuilt = stimulus_from_context(TriggerType.SIGNAL, signal.to_context())
    assert rebuilt == signal


def test_event_context_round_trip() -> None:
    event = EventStimulus(
        event_kind="updated",
        entity_kind="deal",
        entity_id="deal-1",
        payload={"stage": "won"},
        previous_state={"stage": "proposal"},
    )
    assert stimulus_from_context(TriggerType.EVENT, event.to_context()) == event


def test_manual_context_carries_role_and_marks_origin() -> None:
    invocation = ManualInvocation(role="ops", context=TriggerContext(metadata={"source": "api"}))
    context = invocation.to_context()

    assert context.role == "ops"
    assert context.metadata == {"triggered_by": "manual", "source": "api"}
    assert context.lookup("role") == "ops"


def test_schedule_context_exposes_timestamp() -> None:
    tick = ScheduleTick(at=datetime(2024, 1, 8, 9, 0, tzinfo=UTC))
    assert tick.to_context().lookup("metadata.timestamp") == "2024-01-08T09:00:00+00:00"
