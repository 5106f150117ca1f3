"""Unit tests for the command line entrypoint."""

from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from workflow_automation import main as cli
from workflow_automation.engine import build_engine
from workflow_automation.workflow.actions import ActionExecutorRegistry


@pytest.fixture(autouse=True)
def quiet_logging(clean_env: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(cli, "configure_logging", lambda level: None)


def _write(path: Path, payload: Any) -> str:
    path.write_text(json.dumps(payload), encoding="utf-8")
    return str(path)


@pytest.fixture
def workflows_file(
    clean_env: Path, make_workflow_data: Callable[..., dict[str, Any]]
) -> str:
    return _write(
        clean_env / "workflows.json",
        {
            "workflows": [
                make_workflow_data(id="escalate"),
                make_workflow_data(
                    id="weekly",
                    name="Weekly report",
                    trigger_config={"type": "SCHEDULE", "cron": "0 9 * * 1", "timezone": "UTC"},
                    conditions=None,
                ),
            ]
        },
    )


def _blocked_stimulus(directory: Path) -> str:
    return _write(
        directory / "stimulus.json",
        {
            "type": "EVENT",
            "event_kind": "updated",
            "entity_kind": "item",
            "payload": {"name": "Item 1", "status": "blocked"},
        },
    )


def test_templates_lists_builtins(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.main(["templates", "--category", "integration"]) == 0
    out = capsys.readouterr().out
    assert out.strip() == "weekly-summary\tintegration\tWeekly Summary Report"


def test_validate(workflows_file: str, capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.main(["validate", "--workflows", workflows_file]) == 0
    assert "2 workflow(s) valid" in capsys.readouterr().out


def test_validate_reports_invalid_definitions(
    clean_env: Path,
    make_workflow_data: Callable[..., dict[str, Any]],
    capsys: pytest.CaptureFixture[str],
) -> None:
    path = _write(clean_env / "bad.json", [make_workflow_data(actions=[])])

    assert cli.main(["validate", "--workflows", path]) == 2
    assert "workflow #0" in capsys.readouterr().err


def test_dispatch_runs_matching_workflows(
    clean_env: Path, workflows_file: str, capsys: pytest.CaptureFixture[str]
) -> None:
    code = cli.main(
        ["dispatch", "--workflows", workflows_file, "--stimulus", _blocked_stimulus(clean_env)]
    )

    assert code == 0
    executions = json.loads(capsys.readouterr().out)
    assert [e["workflow_id"] for e in executions] == ["escalate"]
    assert executions[0]["status"] == "COMPLETED"
    assert executions[0]["actions_executed"][0]["result"]["config"]["message"] == (
        "Item 1 is blocked"
    )


def test_dispatch_exit_code_signals_failed_executions(
    clean_env: Path,
    workflows_file: str,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    def _without_executors(settings: Any, *, workflows: Any) -> Any:
        return build_engine(settings, workflows=workflows, registry=ActionExecutorRegistry())

    monkeypatch.setattr(cli, "build_engine", _without_executors)

    code = cli.main(
        ["dispatch", "--workflows", workflows_file, "--stimulus", _blocked_stimulus(clean_env)]
    )

    assert code == 3
    assert json.loads(capsys.readouterr().out)[0]["status"] == "FAILED"


def test_tick_fires_each_occurrence_once(
    workflows_file: str, capsys: pytest.CaptureFixture[str]
) -> None:
    assert cli.main(["tick", "--workflows", workflows_file, "--at", "2024-01-08T09:00:30"]) == 0
    first = json.loads(capsys.readouterr().out)
    assert [e["workflow_id"] for e in first] == ["weekly"]

    assert cli.main(["tick", "--workflows", workflows_file, "--at", "2024-01-08T09:00:45"]) == 0
    assert json.loads(capsys.readouterr().out) == []


def test_dry_run(
    clean_env: Path, workflows_file: str, capsys: pytest.CaptureFixture[str]
) -> None:
    context = _write(
        clean_env / "context.json",
        {"event_type": "updated", "entity_type": "item", "entity": {"status": "done"}},
    )

    code = cli.main(
        ["test", "--workflows", workflows_file, "--workflow-id", "escalate", "--context", context]
    )

    assert code == 0
    result = json.loads(capsys.readouterr().out)
    assert result["would_trigger"] is True
    assert result["conditions_met"] is False
    assert [p["order"] for p in result["preview"]] == [1, 2]


def test_unknown_workflow_and_bad_input_exit_2(
    clean_env: Path, workflows_file: str, capsys: pytest.CaptureFixture[str]
) -> None:
    context = _write(clean_env / "context.json", {})
    assert (
        cli.main(
            ["test", "--workflows", workflows_file, "--workflow-id", "nope", "--context", context]
        )
        == 2
    )

    stimulus = _write(clean_env / "stimulus.json", {"type": "TELEPATHY"})
    assert cli.main(["dispatch", "--workflows", workflows_file, "--stimulus", stimulus]) == 2
    assert cli.main(["validate", "--workflows", str(clean_env / "missing.json")]) == 2


def test_invalid_settings_exit_2(
    workflows_file: str, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    monkeypatch.setenv("WORKFLOW_EXECUTION_WORKERS", "0")

    assert cli.main(["validate", "--workflows", workflows_file]) == 2
    assert "Configuration error" in capsys.readouterr().err
