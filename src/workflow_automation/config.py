"""Engine configuration.

Configuration is loaded from:
- environment variables
- and a local `.env` file (if present)
"""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from workflow_automation.workflow.pipeline import FailurePolicy


class EngineSettings(BaseSettings):
    """Settings for the workflow engine.

    Environment variables:
    - LOG_LEVEL                         (optional)
    - WORKFLOW_DISPATCH_WORKERS         (optional)
    - WORKFLOW_EXECUTION_WORKERS        (optional)
    - WORKFLOW_ACTION_TIMEOUT_SECONDS   (optional)
    - WORKFLOW_FAILURE_POLICY           (optional, continue | halt)
    - WORKFLOW_BREAKER_FAILURE_THRESHOLD (optional)
    - WORKFLOW_BREAKER_RECOVERY_SECONDS (optional)
    - WORKFLOW_SCHEDULE_GRACE_SECONDS   (optional)
    - WORKFLOW_STATE_PATH               (optional)

    Notes:
        Tests can point at a specific env file with
        `EngineSettings(_env_file=path_to_env)`.
    """

    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Root logging level",
    )

    dispatch_workers: int = Field(
        default=8,
        ge=1,
        validation_alias="WORKFLOW_DISPATCH_WORKERS",
        description="Threads evaluating triggers and conditions for one stimulus",
    )
    execution_workers: int = Field(
        default=8,
        ge=1,
        validation_alias="WORKFLOW_EXECUTION_WORKERS",
        description="Threads running action pipelines",
    )

    action_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        validation_alias="WORKFLOW_ACTION_TIMEOUT_SECONDS",
        description="Default bound on one action call; actions may override it",
    )
    failure_policy: FailurePolicy = Field(
        default=FailurePolicy.CONTINUE,
        validation_alias="WORKFLOW_FAILURE_POLICY",
        description="'continue' runs every action after a failure, 'halt' stops at the first",
    )

    breaker_failure_threshold: int = Field(
        default=5,
        ge=1,
        validation_alias="WORKFLOW_BREAKER_FAILURE_THRESHOLD",
        description="Consecutive failures of one action type before its circuit opens",
    )
    breaker_recovery_seconds: float = Field(
        default=30.0,
        ge=0,
        validation_alias="WORKFLOW_BREAKER_RECOVERY_SECONDS",
        description="How long an open circuit rejects calls before a trial call",
    )

    schedule_grace_seconds: float = Field(
        default=60.0,
        ge=0,
        validation_alias="WORKFLOW_SCHEDULE_GRACE_SECONDS",
        description="How late a cron occurrence may be noticed and still fire",
    )

    state_path: Path = Field(
        default=Path("workflow_state"),
        validation_alias="WORKFLOW_STATE_PATH",
        description="Directory where local engine state is persisted",
    )

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
    )

    @property
    def schedule_grace(self) -> timedelta:
        return timedelta(seconds=self.schedule_grace_seconds)

    @property
    def schedule_ledger_file(self) -> Path:
        """Path where the last fired cron occurrence per workflow is persisted."""

        return self.state_path / "schedule_ledger.json"
