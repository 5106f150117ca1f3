"""Test configuration and fixtures."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from workflow_automation.config import EngineSettings
from workflow_automation.workflow.models import Workflow

_ENGINE_ENV_VARS = (
    "LOG_LEVEL",
    "WORKFLOW_DISPATCH_WORKERS",
    "WORKFLOW_EXECUTION_WORKERS",
    "WORKFLOW_ACTION_TIMEOUT_SECONDS",
    "WORKFLOW_FAILURE_POLICY",
    "WORKFLOW_BREAKER_FAILURE_THRESHOLD",
    "WORKFLOW_BREAKER_RECOVERY_SECONDS",
    "WORKFLOW_SCHEDULE_GRACE_SECONDS",
    "WORKFLOW_STATE_PATH",
)


@pytest.fixture
def clean_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Run in an empty directory with no engine variables set."""
    for name in _ENGINE_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def settings(clean_env: Path) -> EngineSettings:
    """Provide settings that keep engine state inside the test's tmp dir."""
    return EngineSettings(
        _env_file=None,
        WORKFLOW_STATE_PATH=str(clean_env / "state"),
        WORKFLOW_ACTION_TIMEOUT_SECONDS=5,
        WORKFLOW_DISPATCH_WORKERS=4,
        WORKFLOW_EXECUTION_WORKERS=4,
    )


def workflow_data(**overrides: Any) -> dict[str, Any]:
    data: dict[str, Any] = {
        "tenant_id": "tenant-1",
        "name": "Escalate blocked items",
        "trigger_config": {
            "type": "EVENT",
            "event_kinds": ["updated"],
            "entity_kinds": ["item"],
        },
        "conditions": {
            "operator": "AND",
            "rules": [{"field": "entity.status", "operator": "equals", "value": "blocked"}],
        },
        "actions": [
            {
                "type": "NOTIFY",
                "order": 1,
                "config": {
                    "channel": "slack",
                    "recipients": ["team_lead"],
                    "message": "{{entity.name}} is blocked",
                },
            },
            {"type": "ASSIGN", "order": 2, "config": {"assignee": "team_lead"}},
        ],
    }
    data.update(overrides)
    return data


@pytest.fixture
def make_workflow() -> Callable[..., Workflow]:
    """Build a valid EVENT workflow; keyword arguments replace top-level fields."""

    def _make(**overrides: Any) -> Workflow:
        return Workflow.model_validate(workflow_data(**overrides))

    return _make


@pytest.fixture
def make_workflow_data() -> Callable[..., dict[str, Any]]:
    return workflow_data
