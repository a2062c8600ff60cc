"""Configuration for the CI gate.

Configuration is loaded from:
- environment variables
- and a local `.env` file (if present)

Nothing is required: without a workflow file the built-in crate workflow is
used, and a missing registry token only matters once `publish` runs.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from crate_ci_gate.workflow.jobs import REGISTRY_TOKEN_SECRET

WEBHOOK_SECRET_VAR = "CI_GATE_WEBHOOK_SECRET"

# Never inherited by job commands.
SETTINGS_SECRET_VARS: frozenset[str] = frozenset({REGISTRY_TOKEN_SECRET, WEBHOOK_SECRET_VAR})


class GateSettings(BaseSettings):
    """Settings for the gate, the job runner and the webhook server.

    Notes:
        Pydantic-settings supports overriding the env file in tests via:
        `GateSettings(_env_file=path_to_env)`.
    """

    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Root logging level",
    )

    workflow_path: Path | None = Field(
        default=None,
        validation_alias="CI_GATE_WORKFLOW",
        description="GitHub Actions style workflow YAML; unset uses the built-in crate workflow",
    )

    state_path: Path = Field(
        default=Path("ci_state"),
        validation_alias="CI_GATE_STATE_PATH",
        description="Directory where run records are persisted",
    )

    workdir: Path = Field(
        default=Path("."),
        validation_alias="CI_GATE_WORKDIR",
        description="Working directory (the source checkout) for job commands",
    )

    max_parallel_jobs: int = Field(
        default=4,
        ge=1,
        validation_alias="CI_GATE_MAX_PARALLEL_JOBS",
        description="How many independent jobs may run at once",
    )

    job_timeout_seconds: float = Field(
        default=0.0,
        ge=0,
        validation_alias="CI_GATE_JOB_TIMEOUT_SECONDS",
        description="Per-job timeout in seconds (0 means no timeout)",
    )

    cargo_registry_token: str = Field(
        default="",
        validation_alias=REGISTRY_TOKEN_SECRET,
        description="Registry token handed to the publish job only",
    )

    webhook_secret: str = Field(
        default="",
        validation_alias=WEBHOOK_SECRET_VAR,
        description="Shared secret used to verify X-Hub-Signature-256 on webhook deliveries",
    )

    execute_on_webhook: bool = Field(
        default=False,
        validation_alias="CI_GATE_EXECUTE_ON_WEBHOOK",
        description="If true, webhook pushes start a background run instead of only evaluating",
    )

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
    )

    @property
    def runs_state_file(self) -> Path:
        """Path where run records are persisted."""

        return self.state_path / "runs.json"

    def secrets(self) -> dict[str, str]:
        """Secret values by name; unset secrets are left out."""

        out: dict[str, str] = {}
        if self.cargo_registry_token.strip():
            out[REGISTRY_TOKEN_SECRET] = self.cargo_registry_token
        return out
