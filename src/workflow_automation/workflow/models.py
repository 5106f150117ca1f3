"""Workflow and execution records.

Trigger configurations are a tagged union keyed by ``type``; each action type
has its own config schema registered in :data:`ACTION_CONFIG_SCHEMAS`. The
records themselves are plain pydantic models so stores can persist them with
``model_dump(mode="json")``.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


def new_id() -> str:
    return uuid.uuid4().hex


class TriggerType(str, Enum):
    EVENT = "EVENT"
    SIGNAL = "SIGNAL"
    SCHEDULE = "SCHEDULE"
    MANUAL = "MANUAL"


class ExecutionStatus(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES: frozenset[ExecutionStatus] = frozenset(
    {ExecutionStatus.COMPLETED, ExecutionStatus.FAILED, ExecutionStatus.CANCELLED}
)


class ActionType(str, Enum):
    CHANGE_STATUS = "CHANGE_STATUS"
    NOTIFY = "NOTIFY"
    WEBHOOK = "WEBHOOK"
    CREATE_ENTITY = "CREATE_ENTITY"
    ASSIGN = "ASSIGN"
    UPDATE_FIELD = "UPDATE_FIELD"


class ConditionOperator(str, Enum):
    AND = "AND"
    OR = "OR"


class RuleOperator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    IN = "in"
    NOT_IN = "not_in"
    CONTAINS = "contains"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    OLDER_THAN = "older_than"
    NEWER_THAN = "newer_than"
    IS_NULL = "is_null"
    IS_NOT_NULL = "is_not_null"


class SignalCondition(str, Enum):
    HEALTH_BECOMES = "health_becomes"
    CROSSES_THRESHOLD = "crosses_threshold"


# Trigger configs


class EventTriggerConfig(BaseModel):
    type: Literal["EVENT"] = "EVENT"
    event_kinds: list[str] = Field(default_factory=list)
    entity_kinds: list[str] = Field(default_factory=list)

    # payload path -> expected value; a list means "one of"
    filters: dict[str, Any] | None = None


class SignalTriggerConfig(BaseModel):
    type: Literal["SIGNAL"] = "SIGNAL"
    signal: str
    condition: SignalCondition
    value: str | float


class ScheduleTriggerConfig(BaseModel):
    type: Literal["SCHEDULE"] = "SCHEDULE"
    cron: str
    timezone: str = "UTC"


class ManualTriggerConfig(BaseModel):
    type: Literal["MANUAL"] = "MANUAL"
    allowed_roles: list[str] = Field(default_factory=list)


TriggerConfig = Annotated[
    EventTriggerConfig | SignalTriggerConfig | ScheduleTriggerConfig | ManualTriggerConfig,
    Field(discriminator="type"),
]


# Conditions


class ConditionRule(BaseModel):
    field: str
    operator: RuleOperator
    value: Any = None


class ConditionSet(BaseModel):
    operator: ConditionOperator = ConditionOperator.AND
    rules: list[ConditionRule] = Field(default_factory=list)


# Actions


class RetryOn(str, Enum):
    TIMEOUT = "timeout"
    ERROR = "error"


class RetryPolicy(BaseModel):
    """Per-action retry with exponential backoff.

    The delay before attempt ``n + 1`` is
    ``initial_delay_seconds * backoff_multiplier ** (n - 1)``, capped at
    ``max_delay_seconds``. Only failures whose kind is listed in ``retry_on``
    are retried.
    """

    max_attempts: int = Field(default=3, ge=1, le=10)
    initial_delay_seconds: float = Field(default=1.0, ge=0)
    max_delay_seconds: float = Field(default=30.0, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1)
    retry_on: list[RetryOn] = Field(default_factory=lambda: [RetryOn.TIMEOUT])


class WorkflowAction(BaseModel):
    type: ActionType
    config: dict[str, Any] = Field(default_factory=dict)
    order: int
    timeout_seconds: float | None = Field(default=None, gt=0)
    retry_policy: RetryPolicy | None = None


class _ActionConfig(BaseModel):
    model_config = ConfigDict(extra="allow")


class ChangeStatusConfig(_ActionConfig):
    status: str


class NotifyConfig(_ActionConfig):
    channel: str
    recipients: list[str] = Field(min_length=1)
    message: str


class WebhookConfig(_ActionConfig):
    url: str
    method: Literal["GET", "POST", "PUT", "PATCH", "DELETE"] = "POST"
    headers: dict[str, str] = Field(default_factory=dict)
    body: Any = None


class CreateEntityConfig(_ActionConfig):
    entity_type: str
    data: dict[str, Any] = Field(default_factory=dict)


class AssignConfig(_ActionConfig):
    assignee: str
    fallback: str | None = None


class UpdateFieldConfig(_ActionConfig):
    field: str
    value: Any = None


ACTION_CONFIG_SCHEMAS: dict[ActionType, type[BaseModel]] = {
    ActionType.CHANGE_STATUS: ChangeStatusConfig,
    ActionType.NOTIFY: NotifyConfig,
    ActionType.WEBHOOK: WebhookConfig,
    ActionType.CREATE_ENTITY: CreateEntityConfig,
    ActionType.ASSIGN: AssignConfig,
    ActionType.UPDATE_FIELD: UpdateFieldConfig,
}


class Workflow(BaseModel):
    id: str = Field(default_factory=new_id)
    tenant_id: str
    name: str
    description: str | None = None
    is_enabled: bool = True

    trigger_config: TriggerConfig
    conditions: ConditionSet | None = None
    actions: list[WorkflowAction] = Field(default_factory=list)

    run_count: int = 0
    last_run_at: datetime | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def trigger_type(self) -> TriggerType:
        return TriggerType(self.trigger_config.type)

    def ordered_actions(self) -> list[WorkflowAction]:
        return sorted(self.actions, key=lambda a: a.order)


# Executions


class ActionResult(BaseModel):
    action_type: ActionType
    order: int
    success: bool
    result: Any = None
    error: str | None = None
    executed_at: datetime = Field(default_factory=utc_now)
    duration_ms: float = 0.0
    attempts: int = 1


class WorkflowExecution(BaseModel):
    id: str = Field(default_factory=new_id)
    workflow_id: str
    tenant_id: str
    status: ExecutionStatus = ExecutionStatus.PENDING

    trigger_data: dict[str, Any] = Field(default_factory=dict)

    created_at: datetime = Field(default_factory=utc_now)
    started_at: datetime | None = None
    completed_at: datetime | None = None

    actions_executed: list[ActionResult] = Field(default_factory=list)
    error: str | None = None

    # Id of the failed execution this one retries, if any.
    retry_of: str | None = None
    cancel_requested: bool = False

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal
