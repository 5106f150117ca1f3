"""Pre-built workflow templates.

A template is a workflow definition whose tunable parts are written as
``{{variables.<key>}}`` tokens. Applying a template substitutes the caller's
values (falling back to each variable's default), validates the result and
returns a :class:`Workflow` value; persisting it is up to the caller.

Other ``{{ ... }}`` tokens (``entity.name``, ``secrets.X``) are left alone and
resolved at run time like any other action template.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field

from .errors import InvalidWorkflowError
from .models import Workflow
from .templates import stringify
from .validation import validate_workflow

_VARIABLE_TOKEN = re.compile(r"\{\{\s*variables\.([A-Za-z0-9_]+)\s*\}\}")


class TemplateCategory(str, Enum):
    ESCALATION = "escalation"
    NOTIFICATION = "notification"
    ASSIGNMENT = "assignment"
    STATUS = "status"
    INTEGRATION = "integration"


class VariableOption(BaseModel):
    value: str
    label: str


class TemplateVariable(BaseModel):
    key: str
    label: str
    type: Literal["string", "number", "boolean", "select"]
    default: Any = None
    options: list[VariableOption] = Field(default_factory=list)
    required: bool = False
    description: str = ""


class WorkflowTemplate(BaseModel):
    id: str
    name: str
    description: str
    category: TemplateCategory

    # Raw definition; may contain {{variables.<key>}} tokens anywhere.
    trigger_config: dict[str, Any]
    conditions: dict[str, Any] | None = None
    actions: list[dict[str, Any]] = Field(default_factory=list)

    variables: list[TemplateVariable] = Field(default_factory=list)


def _substitute(node: Any, values: Mapping[str, Any]) -> Any:
    if isinstance(node, str):
        whole = _VARIABLE_TOKEN.fullmatch(node.strip())
        if whole and whole.group(1) in values:
            # A lone token keeps the value's type (numbers stay numbers).
            return values[whole.group(1)]
        return _VARIABLE_TOKEN.sub(
            lambda m: stringify(values[m.group(1)]) if m.group(1) in values else m.group(0),
            node,
        )
    if isinstance(node, Mapping):
        return {key: _substitute(item, values) for key, item in node.items()}
    if isinstance(node, list):
        return [_substitute(item, values) for item in node]
    return node


class TemplateCatalog:
    def __init__(self, templates: list[WorkflowTemplate] | None = None) -> None:
        source = BUILTIN_TEMPLATES if templates is None else templates
        self._templates: dict[str, WorkflowTemplate] = {t.id: t for t in source}

    def list_templates(
        self, category: TemplateCategory | str | None = None
    ) -> list[WorkflowTemplate]:
        if category is None:
            return list(self._templates.values())
        wanted = TemplateCategory(category)
        return [t for t in self._templates.values() if t.category == wanted]

    def get_template(self, template_id: str) -> WorkflowTemplate | None:
        return self._templates.get(template_id)

    def _require(self, template_id: str) -> WorkflowTemplate:
        template = self.get_template(template_id)
        if template is None:
            raise KeyError(template_id)
        return template

    def missing_variables(
        self, template_id: str, variables: Mapping[str, Any] | None = None
    ) -> list[str]:
        """Required variables that were neither supplied nor have a default."""

        template = self._require(template_id)
        supplied = variables or {}
        return [
            v.key
            for v in template.variables
            if v.required and v.key not in supplied and v.default is None
        ]

    def preview_template(
        self, template_id: str, variables: Mapping[str, Any] | None = None
    ) -> dict[str, Any]:
        """Return the definition with variables substituted, without validating it."""

        template = self._require(template_id)
        values = {v.key: v.default for v in template.variables if v.default is not None}
        values.update(variables or {})
        return {
            "name": template.name,
            "description": template.description,
            "trigger_config": _substitute(template.trigger_config, values),
            "conditions": _substitute(template.conditions, values),
            "actions": _substitute(template.actions, values),
        }

    def apply_template(
        self,
        template_id: str,
        *,
        tenant_id: str,
        variables: Mapping[str, Any] | None = None,
        name: str | None = None,
        is_enabled: bool = True,
    ) -> Workflow:
        missing = self.missing_variables(template_id, variables)
        if missing:
            raise InvalidWorkflowError(
                f"Template {template_id} is missing required variables: {', '.join(missing)}"
            )
        definition = self.preview_template(template_id, variables)
        definition.update({"tenant_id": tenant_id, "is_enabled": is_enabled})
        if name:
            definition["name"] = name
        return validate_workflow(definition)


BUILTIN_TEMPLATES: list[WorkflowTemplate] = [
    WorkflowTemplate(
        id="escalate-blocked",
        name="Escalate Blocked Items",
        description="Notify the team lead when an item has been blocked for too long",
        category=TemplateCategory.ESCALATION,
        trigger_config={
            "type": "EVENT",
            "event_kinds": ["updated"],
            "entity_kinds": ["slice"],
            "filters": {"payload.status": "blocked"},
        },
        conditions={
            "operator": "AND",
            "rules": [
                {"field": "entity.status", "operator": "equals", "value": "blocked"},
                {
                    "field": "entity.updated_at",
                    "operator": "older_than",
                    "value": "{{variables.blockedDays}}d",
                },
            ],
        },
        actions=[
            {
                "type": "NOTIFY",
                "order": 1,
                "config": {
                    "channel": "{{variables.notifyChannel}}",
                    "recipients": ["team_lead"],
                    "message": "Escalation: {{entity.name}} has been blocked for over "
                    "{{variables.blockedDays}} days. Please review.",
                },
            },
            {"type": "UPDATE_FIELD", "order": 2, "config": {"field": "priority", "value": "HIGH"}},
        ],
        variables=[
            TemplateVariable(
                key="blockedDays",
                label="Days Before Escalation",
                type="number",
                default=3,
                required=True,
                description="Number of days before escalation triggers",
            ),
            TemplateVariable(
                key="notifyChannel",
                label="Notification Channel",
                type="select",
                default="slack",
                options=[
                    VariableOption(value="slack", label="Slack"),
                    VariableOption(value="email", label="Email"),
                    VariableOption(value="in_app", label="In-App"),
                ],
                required=True,
                description="Where to send the notification",
            ),
        ],
    ),
    WorkflowTemplate(
        id="deal-stage-notify",
        name="Deal Stage Notifications",
        description="Notify a channel when a deal moves to a new stage",
        category=TemplateCategory.NOTIFICATION,
        trigger_config={"type": "EVENT", "event_kinds": ["updated"], "entity_kinds": ["deal"]},
        conditions={
            "operator": "AND",
            "rules": [
                {"field": "previous_state.stage", "operator": "is_not_null"},
                {"field": "entity.stage", "operator": "is_not_null"},
            ],
        },
        actions=[
            {
                "type": "NOTIFY",
                "order": 1,
                "config": {
                    "channel": "slack",
                    "recipients": ["{{variables.slackChannel}}"],
                    "message": "Deal Update: {{entity.name}} moved from "
                    "{{previous_state.stage}} to {{entity.stage}}. Value: ${{entity.value}}",
                },
            }
        ],
        variables=[
            TemplateVariable(
                key="slackChannel",
                label="Slack Channel",
                type="string",
                default="#sales",
                required=True,
                description="Slack channel for notifications",
            )
        ],
    ),
    WorkflowTemplate(
        id="health-alert",
        name="Customer Health Score Alert",
        description="Create a follow-up task when customer health degrades",
        category=TemplateCategory.ESCALATION,
        trigger_config={
            "type": "SIGNAL",
            "signal": "HEALTH_SCORE",
            "condition": "health_becomes",
            "value": "{{variables.healthThreshold}}",
        },
        actions=[
            {
                "type": "NOTIFY",
                "order": 1,
                "config": {
                    "channel": "email",
                    "recipients": ["owner"],
                    "message": "Urgent: customer health is now {{signal.health}}. "
                    "Immediate attention required.",
                },
            },
            {
                "type": "CREATE_ENTITY",
                "order": 2,
                "config": {
                    "entity_type": "task",
                    "data": {
                        "content": "Follow up on customer health decline - {{signal.id}}",
                        "priority": "HIGH",
                    },
                },
            },
        ],
        variables=[
            TemplateVariable(
                key="healthThreshold",
                label="Health Threshold",
                type="select",
                default="CRITICAL",
                options=[
                    VariableOption(value="WARNING", label="Warning"),
                    VariableOption(value="CRITICAL", label="Critical"),
                ],
                required=True,
                description="Health level that triggers the alert",
            )
        ],
    ),
    WorkflowTemplate(
        id="release-announce",
        name="Release Announcement",
        description="Send an announcement when a release is published",
        category=TemplateCategory.NOTIFICATION,
        trigger_config={
            "type": "EVENT",
            "event_kinds": ["updated"],
            "entity_kinds": ["release"],
            "filters": {"payload.status": "published"},
        },
        conditions={
            "operator": "AND",
            "rules": [
                {"field": "entity.status", "operator": "equals", "value": "published"},
                {"field": "previous_state.status", "operator": "not_equals", "value": "published"},
            ],
        },
        actions=[
            {
                "type": "NOTIFY",
                "order": 1,
                "config": {
                    "channel": "email",
                    "recipients": ["all_team"],
                    "message": "New Release: {{entity.name}} ({{entity.version}}) is now live!",
                },
            },
            {
                "type": "WEBHOOK",
                "order": 2,
                "config": {
                    "url": "{{variables.webhookUrl}}",
                    "method": "POST",
                    "body": {
                        "release": "{{entity.name}}",
                        "version": "{{entity.version}}",
                        "notes": "{{entity.notes}}",
                    },
                },
            },
        ],
        variables=[
            TemplateVariable(
                key="webhookUrl",
                label="Webhook URL",
                type="string",
                default="{{secrets.ANNOUNCEMENT_WEBHOOK}}",
                description="External webhook for announcements",
            )
        ],
    ),
    WorkflowTemplate(
        id="feature-triage",
        name="Feature Request Auto-Triage",
        description="Assign new feature requests automatically",
        category=TemplateCategory.ASSIGNMENT,
        trigger_config={
            "type": "EVENT",
            "event_kinds": ["created"],
            "entity_kinds": ["feature_request"],
        },
        actions=[
            {
                "type": "ASSIGN",
                "order": 1,
                "config": {"assignee": "{{variables.assignmentStrategy}}", "fallback": "team_lead"},
            },
            {
                "type": "NOTIFY",
                "order": 2,
                "config": {
                    "channel": "in_app",
                    "recipients": ["owner"],
                    "message": "New feature request assigned: {{entity.title}}",
                },
            },
        ],
        variables=[
            TemplateVariable(
                key="assignmentStrategy",
                label="Assignment Strategy",
                type="select",
                default="round_robin",
                options=[
                    VariableOption(value="round_robin", label="Round Robin"),
                    VariableOption(value="team_lead", label="Team Lead"),
                    VariableOption(value="least_loaded", label="Least Loaded"),
                ],
                required=True,
                description="How to assign new requests",
            )
        ],
    ),
    WorkflowTemplate(
        id="pr-autocomplete",
        name="Auto-Complete on PR Merge",
        description="Mark an item completed when its pull request is merged",
        category=TemplateCategory.STATUS,
        trigger_config={"type": "EVENT", "event_kinds": ["pr_merged"], "entity_kinds": ["slice"]},
        conditions={
            "operator": "AND",
            "rules": [{"field": "entity.status", "operator": "equals", "value": "in_progress"}],
        },
        actions=[
            {"type": "CHANGE_STATUS", "order": 1, "config": {"status": "completed"}},
            {
                "type": "CREATE_ENTITY",
                "order": 2,
                "config": {
                    "entity_type": "comment",
                    "data": {"content": "Automatically completed - PR merged"},
                },
            },
        ],
    ),
    WorkflowTemplate(
        id="weekly-summary",
        name="Weekly Summary Report",
        description="Send a weekly activity summary every Monday morning",
        category=TemplateCategory.INTEGRATION,
        trigger_config={
            "type": "SCHEDULE",
            "cron": "{{variables.cronSchedule}}",
            "timezone": "{{variables.timezone}}",
        },
        actions=[
            {
                "type": "WEBHOOK",
                "order": 1,
                "config": {
                    "url": "{{secrets.REPORT_WEBHOOK}}",
                    "method": "POST",
                    "body": {"type": "weekly_summary", "generated_at": "{{metadata.timestamp}}"},
                },
            },
            {
                "type": "NOTIFY",
                "order": 2,
                "config": {
                    "channel": "email",
                    "recipients": ["all_team"],
                    "message": "Your weekly summary report is ready.",
                },
            },
        ],
        variables=[
            TemplateVariable(
                key="cronSchedule",
                label="Schedule",
                type="string",
                default="0 9 * * 1",
                required=True,
                description="Cron expression for the schedule",
            ),
            TemplateVariable(
                key="timezone",
                label="Timezone",
                type="string",
                default="America/New_York",
                required=True,
                description="Timezone for the schedule",
            ),
        ],
    ),
    WorkflowTemplate(
        id="high-value-deal",
        name="High-Value Deal Alert",
        description="Alert leadership when a high-value deal is created or updated",
        category=TemplateCategory.NOTIFICATION,
        trigger_config={
            "type": "EVENT",
            "event_kinds": ["created", "updated"],
            "entity_kinds": ["deal"],
        },
        conditions={
            "operator": "AND",
            "rules": [
                {
                    "field": "entity.value",
                    "operator": "greater_than",
                    "value": "{{variables.valueThreshold}}",
                }
            ],
        },
        actions=[
            {
                "type": "NOTIFY",
                "order": 1,
                "config": {
                    "channel": "slack",
                    "recipients": ["team_lead"],
                    "message": "High-Value Deal Alert: {{entity.name}} - ${{entity.value}} "
                    "| Stage: {{entity.stage}}",
                },
            }
        ],
        variables=[
            TemplateVariable(
                key="valueThreshold",
                label="Value Threshold ($)",
                type="number",
                default=100000,
                required=True,
                description="Minimum deal value to trigger the alert",
            )
        ],
    ),
]
