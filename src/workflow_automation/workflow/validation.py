"""Structural validation of workflow definitions.

Everything the dispatcher takes for granted is checked here, once, when a
workflow is created, updated or loaded: the trigger config parses (cron and
timezone included), action orders are contiguous, action configs match their
type's schema and rule values have the shape their operator needs.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from .conditions import as_number, parse_duration
from .errors import InvalidTriggerConfigError, InvalidWorkflowError
from .models import (
    ACTION_CONFIG_SCHEMAS,
    ConditionSet,
    EventTriggerConfig,
    RuleOperator,
    ScheduleTriggerConfig,
    SignalCondition,
    SignalTriggerConfig,
    Workflow,
    WorkflowAction,
)
from .schedule import build_cron_trigger

logger = logging.getLogger(__name__)

_LIST_OPERATORS = {RuleOperator.IN, RuleOperator.NOT_IN}
_DURATION_OPERATORS = {RuleOperator.OLDER_THAN, RuleOperator.NEWER_THAN}


def _format_errors(e: ValidationError) -> str:
    parts = []
    for err in e.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return "; ".join(parts)


def parse_workflow(data: Mapping[str, Any]) -> Workflow:
    try:
        return Workflow.model_validate(data)
    except ValidationError as e:
        if any(err.get("loc", ())[:1] == ("trigger_config",) for err in e.errors()):
            raise InvalidTriggerConfigError(_format_errors(e)) from e
        raise InvalidWorkflowError(_format_errors(e)) from e


def validate_trigger(workflow: Workflow) -> None:
    trigger = workflow.trigger_config
    if isinstance(trigger, EventTriggerConfig):
        if not trigger.event_kinds or not trigger.entity_kinds:
            raise InvalidTriggerConfigError(
                "EVENT trigger needs at least one event kind and one entity kind"
            )
    elif isinstance(trigger, SignalTriggerConfig):
        threshold = as_number(trigger.value)
        if trigger.condition == SignalCondition.CROSSES_THRESHOLD and threshold is None:
            raise InvalidTriggerConfigError(
                f"crosses_threshold needs a numeric value, got {trigger.value!r}"
            )
        if trigger.condition == SignalCondition.HEALTH_BECOMES and not str(trigger.value).strip():
            raise InvalidTriggerConfigError("health_becomes needs a target health level")
    elif isinstance(trigger, ScheduleTriggerConfig):
        try:
            build_cron_trigger(trigger.cron, trigger.timezone)
        except (ValueError, LookupError) as e:
            raise InvalidTriggerConfigError(f"Invalid schedule: {e}") from e


def validate_actions(workflow: Workflow) -> None:
    actions = workflow.actions
    if workflow.is_enabled and not actions:
        raise InvalidWorkflowError("An enabled workflow needs at least one action")

    orders = sorted(a.order for a in actions)
    if orders != list(range(1, len(actions) + 1)):
        raise InvalidWorkflowError(
            f"Action orders must be unique and contiguous from 1, got {orders}"
        )

    for action in actions:
        _validate_action_config(action)
        _validate_retry_policy(action)


def _validate_action_config(action: WorkflowAction) -> None:
    schema = ACTION_CONFIG_SCHEMAS.get(action.type)
    if schema is None:
        return
    try:
        schema.model_validate(action.config)
    except ValidationError as e:
        raise InvalidWorkflowError(
            f"Action {action.order} ({action.type.value}) config invalid: {_format_errors(e)}"
        ) from e


def _validate_retry_policy(action: WorkflowAction) -> None:
    policy = action.retry_policy
    if policy is not None and policy.max_delay_seconds < policy.initial_delay_seconds:
        raise InvalidWorkflowError(
            f"Action {action.order}: retry max_delay_seconds must be at least "
            "initial_delay_seconds"
        )


def validate_conditions(conditions: ConditionSet | None) -> None:
    if conditions is None:
        return
    for idx, rule in enumerate(conditions.rules):
        if not rule.field.strip():
            raise InvalidWorkflowError(f"Rule {idx}: field must not be empty")
        if rule.operator in _LIST_OPERATORS and not isinstance(rule.value, list):
            raise InvalidWorkflowError(
                f"Rule {idx}: operator {rule.operator.value} needs a list value"
            )
        if rule.operator in _DURATION_OPERATORS and parse_duration(rule.value) is None:
            raise InvalidWorkflowError(
                f"Rule {idx}: operator {rule.operator.value} needs a duration like 24h"
            )


def validate_workflow(workflow: Workflow | Mapping[str, Any]) -> Workflow:
    """Parse (when given raw data) and check a workflow; returns the parsed model.

    Raises :class:`InvalidTriggerConfigError` for trigger problems and
    :class:`InvalidWorkflowError` for everything else.
    """

    parsed = workflow if isinstance(workflow, Workflow) else parse_workflow(workflow)
    validate_trigger(parsed)
    validate_actions(parsed)
    validate_conditions(parsed.conditions)
    return parsed


def load_workflows(path: Path) -> list[Workflow]:
    """Load and validate workflow definitions from a JSON file.

    Accepts either a list of workflows or an object with a ``workflows`` list.
    """

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise InvalidWorkflowError(f"{path}: not valid JSON ({e})") from e

    if isinstance(raw, Mapping):
        raw = raw.get("workflows")
    if not isinstance(raw, list):
        raise InvalidWorkflowError(f"{path}: expected a list of workflows")

    workflows: list[Workflow] = []
    for idx, item in enumerate(raw):
        if not isinstance(item, Mapping):
            raise InvalidWorkflowError(f"{path}: workflow #{idx} is not an object")
        try:
            workflows.append(validate_workflow(item))
        except InvalidWorkflowError as e:
            raise type(e)(f"{path}: workflow #{idx}: {e}") from e

    logger.info("Workflows loaded", extra={"path": str(path), "count": len(workflows)})
    return workflows
