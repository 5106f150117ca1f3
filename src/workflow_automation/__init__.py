"""Workflow automation core.

Watches for triggers (domain events, signal transitions, schedules, manual
calls), evaluates per-workflow conditions and runs ordered action pipelines
with a cancellable, retryable execution lifecycle:
- configuration loaded from the environment and `.env`
- structured JSON logging
- in-memory stores plus a JSON schedule ledger
"""

__version__ = "0.1.0"

from workflow_automation.config import EngineSettings

__all__ = ["__version__", "EngineSettings"]
