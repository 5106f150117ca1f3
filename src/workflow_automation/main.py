"""CLI entrypoint for the workflow engine.

Workflows are loaded from a JSON file into in-memory stores; actions are
executed by logging executors, so the CLI is safe to point at real definitions.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import asdict
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from workflow_automation import __version__
from workflow_automation.config import EngineSettings
from workflow_automation.engine import build_engine
from workflow_automation.logging import configure_logging
from workflow_automation.workflow.catalog import TemplateCatalog, TemplateCategory
from workflow_automation.workflow.errors import InvalidWorkflowError, WorkflowNotFoundError
from workflow_automation.workflow.events import ScheduleTick, parse_stimulus
from workflow_automation.workflow.models import ExecutionStatus, WorkflowExecution
from workflow_automation.workflow.validation import load_workflows

logger = logging.getLogger(__name__)


def _read_json(path: str) -> Any:
    return json.loads(Path(path).read_text(encoding="utf-8"))


def _parse_at(value: str | None) -> datetime:
    if value is None:
        return datetime.now(tz=UTC)
    instant = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=UTC)
    return instant


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False, default=str))


def _executions_exit_code(executions: list[WorkflowExecution]) -> int:
    if any(e.status == ExecutionStatus.FAILED for e in executions):
        return 3
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="workflow-automation",
        description="Trigger/condition/action workflow engine",
    )
    parser.add_argument(
        "--version", action="version", version=f"workflow-automation {__version__}"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    validate = subparsers.add_parser("validate", help="Validate workflow definitions")
    validate.add_argument("--workflows", required=True, help="JSON file of workflow definitions")

    test = subparsers.add_parser(
        "test", help="Dry-run one workflow against a mock context (no actions run)"
    )
    test.add_argument("--workflows", required=True, help="JSON file of workflow definitions")
    test.add_argument("--workflow-id", required=True, help="Id of the workflow to test")
    test.add_argument("--context", required=True, help="JSON file holding the mock context")
    test.add_argument(
        "--at",
        default=None,
        help="ISO-8601 instant used for schedule triggers (defaults to now)",
    )

    dispatch = subparsers.add_parser(
        "dispatch", help="Dispatch one stimulus and run every matching workflow"
    )
    dispatch.add_argument("--workflows", required=True, help="JSON file of workflow definitions")
    dispatch.add_argument(
        "--stimulus",
        required=True,
        help='JSON file holding the stimulus, e.g. {"type": "EVENT", "event_kind": ...}',
    )

    tick = subparsers.add_parser("tick", help="Evaluate schedule triggers at one instant")
    tick.add_argument("--workflows", required=True, help="JSON file of workflow definitions")
    tick.add_argument(
        "--at",
        default=None,
        help="ISO-8601 instant to evaluate (defaults to now; naive values are UTC)",
    )

    templates = subparsers.add_parser("templates", help="List built-in workflow templates")
    templates.add_argument(
        "--category",
        default=None,
        choices=[c.value for c in TemplateCategory],
        help="Only list templates of this category",
    )

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = EngineSettings()
    except ValidationError as e:
        # Logging isn't configured yet; keep it simple and actionable.
        print("Configuration error (check your .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return 2

    configure_logging(settings.log_level)

    try:
        if args.command == "templates":
            catalog = TemplateCatalog()
            for template in catalog.list_templates(args.category):
                print(f"{template.id}\t{template.category.value}\t{template.name}")
            return 0

        workflows = load_workflows(Path(args.workflows))

        if args.command == "validate":
            for workflow in workflows:
                print(f"{workflow.id}\t{workflow.trigger_type.value}\t{workflow.name}")
            print(f"{len(workflows)} workflow(s) valid")
            return 0

        engine = build_engine(settings, workflows=workflows)
        try:
            if args.command == "test":
                workflow = engine.service.get_workflow(args.workflow_id)
                result = engine.service.test_workflow(
                    workflow, _read_json(args.context), at=_parse_at(args.at)
                )
                _print_json(asdict(result))
                return 0

            if args.command == "dispatch":
                stimulus = parse_stimulus(_read_json(args.stimulus))
                executions = engine.dispatcher.dispatch(stimulus)
                _print_json([e.model_dump(mode="json") for e in executions])
                return _executions_exit_code(executions)

            if args.command == "tick":
                executions = engine.dispatcher.dispatch(ScheduleTick(at=_parse_at(args.at)))
                _print_json([e.model_dump(mode="json") for e in executions])
                return _executions_exit_code(executions)
        finally:
            engine.shutdown()

        logger.error("Unknown command", extra={"command": args.command})
        return 2

    except (InvalidWorkflowError, WorkflowNotFoundError) as e:
        logger.warning(str(e))
        print(str(e), file=sys.stderr)
        return 2

    except (ValueError, OSError) as e:
        # Unreadable input files, malformed JSON, stimuli or instants.
        logger.warning("Invalid input", extra={"error": str(e)})
        print(f"Invalid input: {e}", file=sys.stderr)
        return 2

    except Exception:
        logger.exception("Command failed")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
