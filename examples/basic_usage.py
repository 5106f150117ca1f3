#!/usr/bin/env python3
"""Programmatic engine example.

This demonstrates using the engine components directly:

* load settings from `.env`
* create a workflow from a built-in template
* dispatch a domain event and print the resulting execution

Actions are handled by logging executors, so nothing external is touched.
"""

from __future__ import annotations

import argparse
import json
from typing import Sequence

from workflow_automation.config import EngineSettings
from workflow_automation.engine import build_engine
from workflow_automation.logging import configure_logging
from workflow_automation.workflow.catalog import TemplateCatalog
from workflow_automation.workflow.events import EventStimulus


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Dispatch a deal update (programmatic example).")
    parser.add_argument("--tenant", default="demo", help="Tenant the workflow belongs to")
    parser.add_argument("--deal", default="Acme renewal", help="Deal name")
    parser.add_argument("--value", type=float, default=250000, help="Deal value")
    parser.add_argument(
        "--threshold",
        type=float,
        default=100000,
        help="Minimum deal value that triggers the alert",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)

    settings = EngineSettings()
    configure_logging(settings.log_level)

    workflow = TemplateCatalog().apply_template(
        "high-value-deal",
        tenant_id=args.tenant,
        variables={"valueThreshold": args.threshold},
    )

    engine = build_engine(settings)
    try:
        engine.service.create_workflow(workflow)
        executions = engine.dispatcher.dispatch(
            EventStimulus(
                event_kind="updated",
                entity_kind="deal",
                entity_id="deal-1",
                payload={"name": args.deal, "value": args.value, "stage": "negotiation"},
            )
        )
    finally:
        engine.shutdown()

    if not executions:
        print("Deal is below the threshold; no workflow ran.")
        return 0

    for execution in executions:
        print(json.dumps(execution.model_dump(mode="json"), indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
