"""Stimuli fed into the dispatcher.

Producers (event bus consumers, signal monitors, the scheduler clock, manual
API calls) detect external facts and emit stimuli. Stimuli never perform work.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from .conditions import as_number
from .context import TriggerContext
from .models import TriggerType


@dataclass(frozen=True, slots=True)
class EventStimulus:
    """A domain event on an entity (created, updated, pr_merged, ...)."""

    event_kind: str
    entity_kind: str
    entity_id: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)
    previous_state: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def trigger_type(self) -> TriggerType:
        return TriggerType.EVENT

    def to_context(self) -> TriggerContext:
        return TriggerContext(
            event_type=self.event_kind,
            entity_type=self.entity_kind,
            entity_id=self.entity_id,
            entity=dict(self.payload),
            previous_state=dict(self.previous_state),
            metadata=dict(self.metadata),
        )


@dataclass(frozen=True, slots=True)
class SignalStimulus:
    """One observation of a metric signal, carrying the previous observation for edge detection."""

    signal_id: str
    signal_type: str | None = None
    health: str | None = None
    previous_health: str | None = None
    value: float | None = None
    previous_value: float | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def trigger_type(self) -> TriggerType:
        return TriggerType.SIGNAL

    def to_context(self) -> TriggerContext:
        return TriggerContext(
            signal={
                "id": self.signal_id,
                "type": self.signal_type,
                "health": self.health,
                "previous_health": self.previous_health,
                "value": self.value,
                "previous_value": self.previous_value,
            },
            metadata=dict(self.metadata),
        )


@dataclass(frozen=True, slots=True)
class ScheduleTick:
    """The clock reading at which schedule triggers are evaluated."""

    at: datetime

    @property
    def trigger_type(self) -> TriggerType:
        return TriggerType.SCHEDULE

    @classmethod
    def now(cls) -> ScheduleTick:
        return cls(at=datetime.now(tz=UTC))

    def to_context(self) -> TriggerContext:
        return TriggerContext(
            event_type="scheduled",
            metadata={"triggered_by": "schedule", "timestamp": self.at.isoformat()},
        )


@dataclass(frozen=True, slots=True)
class ManualInvocation:
    """A caller asking to run workflows by hand.

    When ``workflow_id`` is set only that workflow is considered.
    """

    role: str | None = None
    workflow_id: str | None = None
    context: TriggerContext | None = None

    @property
    def trigger_type(self) -> TriggerType:
        return TriggerType.MANUAL

    def to_context(self) -> TriggerContext:
        base = self.context or TriggerContext()
        metadata = {"triggered_by": "manual", **base.metadata}
        return base.model_copy(update={"role": self.role, "metadata": metadata})


Stimulus = EventStimulus | SignalStimulus | ScheduleTick | ManualInvocation


def _optional_str(value: object) -> str | None:
    return None if value is None else str(value)


def stimulus_from_context(
    trigger_type: TriggerType,
    context: TriggerContext,
    *,
    workflow_id: str | None = None,
    at: datetime | None = None,
) -> Stimulus:
    """Rebuild the stimulus a context would have come from, for dry runs."""

    if trigger_type == TriggerType.EVENT:
        return EventStimulus(
            event_kind=context.event_type or "",
            entity_kind=context.entity_type or "",
            entity_id=context.entity_id,
            payload=dict(context.entity),
            previous_state=dict(context.previous_state),
            metadata=dict(context.metadata),
        )
    if trigger_type == TriggerType.SIGNAL:
        signal = context.signal
        return SignalStimulus(
            signal_id=str(signal.get("id") or ""),
            signal_type=_optional_str(signal.get("type")),
            health=_optional_str(signal.get("health")),
            previous_health=_optional_str(signal.get("previous_health")),
            value=as_number(signal.get("value")),
            previous_value=as_number(signal.get("previous_value")),
            metadata=dict(context.metadata),
        )
    if trigger_type == TriggerType.SCHEDULE:
        return ScheduleTick(at=at or datetime.now(tz=UTC))
    return ManualInvocation(role=context.role, workflow_id=workflow_id, context=context)


def parse_stimulus(data: Mapping[str, Any]) -> Stimulus:
    """Build a stimulus from its JSON form: ``{"type": "EVENT", ...fields}``.

    Raises ``ValueError`` for an unknown type or malformed fields.
    """

    fields = dict(data)
    try:
        trigger_type = TriggerType(str(fields.pop("type", "")).upper())
    except ValueError as e:
        raise ValueError(f"Unknown stimulus type: {data.get('type')!r}") from e

    try:
        if trigger_type == TriggerType.EVENT:
            return EventStimulus(**fields)
        if trigger_type == TriggerType.SIGNAL:
            return SignalStimulus(**fields)
        if trigger_type == TriggerType.SCHEDULE:
            at = fields.get("at")
            if at is None:
                return ScheduleTick.now()
            instant = datetime.fromisoformat(str(at).replace("Z", "+00:00"))
            if instant.tzinfo is None:
                instant = instant.replace(tzinfo=UTC)
            return ScheduleTick(at=instant)
        context = fields.get("context")
        return ManualInvocation(
            role=fields.get("role"),
            workflow_id=fields.get("workflow_id"),
            context=TriggerContext.model_validate(context) if context is not None else None,
        )
    except TypeError as e:
        raise ValueError(f"Malformed {trigger_type.value} stimulus: {e}") from e
