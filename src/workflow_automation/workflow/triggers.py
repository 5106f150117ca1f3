"""Trigger matching: does this stimulus make this workflow a candidate?

One matcher per trigger type, held in a registry keyed by the trigger tag.
Signal matching is edge-triggered; schedule matching claims each cron
occurrence exactly once through the :class:`ScheduleLedger`.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import timedelta
from typing import Any

from .conditions import as_number, values_equal
from .context import lookup_path
from .errors import DuplicateOccurrenceError
from .events import EventStimulus, ManualInvocation, ScheduleTick, SignalStimulus, Stimulus
from .models import (
    EventTriggerConfig,
    ManualTriggerConfig,
    ScheduleTriggerConfig,
    SignalCondition,
    SignalTriggerConfig,
    TriggerType,
)
from .schedule import InMemoryScheduleLedger, ScheduleLedger, build_cron_trigger, due_occurrence

logger = logging.getLogger(__name__)

_PAYLOAD_PREFIX = "payload."

TriggerConfigModel = (
    EventTriggerConfig | SignalTriggerConfig | ScheduleTriggerConfig | ManualTriggerConfig
)


def _filter_holds(payload: dict[str, Any], path: str, expected: object) -> bool:
    if path.startswith(_PAYLOAD_PREFIX):
        path = path[len(_PAYLOAD_PREFIX) :]
    actual = lookup_path(payload, path)
    if isinstance(expected, list):
        return any(values_equal(actual, candidate) for candidate in expected)
    return values_equal(actual, expected)


def _normalize_health(value: object) -> str | None:
    if value is None:
        return None
    return str(value).strip().upper()


class TriggerMatcher:
    """Decides whether a stimulus fires a trigger.

    Schedule occurrences are claimed in ``schedule_ledger``; without one they
    are tracked in memory for the lifetime of the matcher.
    """

    def __init__(
        self,
        *,
        schedule_ledger: ScheduleLedger | None = None,
        schedule_grace: timedelta = timedelta(seconds=60),
    ) -> None:
        self._ledger = schedule_ledger if schedule_ledger is not None else InMemoryScheduleLedger()
        self._grace = schedule_grace
        self._matchers: dict[TriggerType, Callable[..., bool]] = {
            TriggerType.EVENT: self._match_event,
            TriggerType.SIGNAL: self._match_signal,
            TriggerType.SCHEDULE: self._match_schedule,
            TriggerType.MANUAL: self._match_manual,
        }

    def matches(
        self,
        trigger: TriggerConfigModel,
        stimulus: Stimulus,
        *,
        workflow_id: str | None = None,
        dry_run: bool = False,
    ) -> bool:
        """Return True when ``stimulus`` fires ``trigger``.

        ``dry_run`` evaluates without claiming schedule occurrences.
        """

        trigger_type = TriggerType(trigger.type)
        if stimulus.trigger_type != trigger_type:
            return False
        matcher = self._matchers[trigger_type]
        return matcher(trigger, stimulus, workflow_id=workflow_id, dry_run=dry_run)

    # Matchers

    def _match_event(
        self, trigger: EventTriggerConfig, stimulus: EventStimulus, **_: object
    ) -> bool:
        if stimulus.event_kind not in trigger.event_kinds:
            return False
        if stimulus.entity_kind not in trigger.entity_kinds:
            return False
        if not trigger.filters:
            return True
        return all(
            _filter_holds(stimulus.payload, path, expected)
            for path, expected in trigger.filters.items()
        )

    def _match_signal(
        self, trigger: SignalTriggerConfig, stimulus: SignalStimulus, **_: object
    ) -> bool:
        if trigger.signal not in {stimulus.signal_id, stimulus.signal_type}:
            return False

        if trigger.condition == SignalCondition.HEALTH_BECOMES:
            target = _normalize_health(trigger.value)
            current = _normalize_health(stimulus.health)
            previous = _normalize_health(stimulus.previous_health)
            return current == target and previous != target

        if trigger.condition == SignalCondition.CROSSES_THRESHOLD:
            threshold = as_number(trigger.value)
            current_value = as_number(stimulus.value)
            previous_value = as_number(stimulus.previous_value)
            if threshold is None or current_value is None or previous_value is None:
                return False
            return (previous_value >= threshold) != (current_value >= threshold)

        return False

    def _match_schedule(
        self,
        trigger: ScheduleTriggerConfig,
        stimulus: ScheduleTick,
        *,
        workflow_id: str | None,
        dry_run: bool,
    ) -> bool:
        if workflow_id is None and not dry_run:
            raise ValueError("Schedule triggers need a workflow_id to claim occurrences")

        cron = build_cron_trigger(trigger.cron, trigger.timezone)
        last_fired = self._ledger.last_fired(workflow_id) if workflow_id is not None else None
        occurrence = due_occurrence(cron, at=stimulus.at, last_fired=last_fired, grace=self._grace)
        if occurrence is None:
            return False
        if dry_run:
            return True

        try:
            self._ledger.claim(workflow_id, occurrence)
        except DuplicateOccurrenceError as e:
            logger.debug(
                "Schedule occurrence already dispatched; skipping",
                extra={"workflow_id": e.workflow_id, "occurrence": e.occurrence.isoformat()},
            )
            return False

        logger.info(
            "Schedule occurrence claimed",
            extra={"workflow_id": workflow_id, "occurrence": occurrence.isoformat()},
        )
        return True

    def _match_manual(
        self,
        trigger: ManualTriggerConfig,
        stimulus: ManualInvocation,
        *,
        workflow_id: str | None,
        **_: object,
    ) -> bool:
        if stimulus.workflow_id is not None and stimulus.workflow_id != workflow_id:
            return False
        if not trigger.allowed_roles:
            return True
        return stimulus.role is not None and stimulus.role in trigger.allowed_roles
