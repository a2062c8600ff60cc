"""Execute the jobs selected by the gate.

Each job is an external command. Independent jobs run concurrently; a job
with `needs` starts only once every prerequisite succeeded and is skipped as
soon as one of them did not.
"""

from __future__ import annotations

import logging
import os
import subprocess
import time
import uuid
from collections.abc import Mapping, Sequence
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Protocol

from crate_ci_gate.config import SETTINGS_SECRET_VARS, GateSettings
from crate_ci_gate.run_store import RunRecord, RunStatus, RunStore
from crate_ci_gate.workflow.definition import WorkflowDefinition
from crate_ci_gate.workflow.gate import GateDecision
from crate_ci_gate.workflow.jobs import JobSpec

logger = logging.getLogger(__name__)


class JobOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    PLANNED = "planned"


class MissingSecretError(RuntimeError):
    def __init__(self, job: str, secret: str) -> None:
        super().__init__(f"Job {job!r} requires secret {secret} but it is not set")
        self.job = job
        self.secret = secret


@dataclass(frozen=True, slots=True)
class JobResult:
    name: str
    outcome: JobOutcome
    exit_code: int | None = None
    duration_seconds: float = 0.0
    message: str = ""

    def to_json(self) -> dict[str, object]:
        return {
            "name": self.name,
            "outcome": self.outcome.value,
            "exit_code": self.exit_code,
            "duration_seconds": round(self.duration_seconds, 3),
            "message": self.message,
        }


@dataclass(frozen=True, slots=True)
class RunResult:
    decision: GateDecision
    results: dict[str, JobResult] = field(default_factory=dict, hash=False)
    dry_run: bool = False

    @property
    def ok(self) -> bool:
        return all(
            r.outcome in {JobOutcome.SUCCEEDED, JobOutcome.PLANNED} for r in self.results.values()
        )

    def names_with(self, outcome: JobOutcome) -> list[str]:
        return [name for name, r in self.results.items() if r.outcome is outcome]


class CommandExecutor(Protocol):
    """Run one command to completion and return its exit status."""

    def __call__(
        self,
        command: Sequence[str],
        *,
        env: Mapping[str, str],
        cwd: Path,
        timeout: float | None,
    ) -> int: ...


def subprocess_executor(
    command: Sequence[str],
    *,
    env: Mapping[str, str],
    cwd: Path,
    timeout: float | None,
) -> int:
    completed = subprocess.run(
        list(command), env=dict(env), cwd=cwd, timeout=timeout, check=False
    )
    return completed.returncode


class JobRunner:
    def __init__(
        self,
        *,
        workflow: WorkflowDefinition,
        settings: GateSettings,
        executor: CommandExecutor = subprocess_executor,
        base_env: Mapping[str, str] | None = None,
    ) -> None:
        self._workflow = workflow
        self._settings = settings
        self._executor = executor
        self._base_env = dict(os.environ if base_env is None else base_env)

    def _secret_values(self) -> dict[str, str]:
        values = {
            name: self._base_env[name]
            for name in self._workflow.secret_names
            if self._base_env.get(name, "").strip()
        }
        values.update(self._settings.secrets())
        return values

    def job_environment(self, job: JobSpec) -> dict[str, str]:
        """Build the explicit environment for one job invocation.

        Workflow secrets and the gate's own secret settings are stripped from
        the inherited environment. Workflow secrets are handed back only to
        the jobs that declare them.
        """

        hidden = self._workflow.secret_names | SETTINGS_SECRET_VARS
        env = {k: v for k, v in self._base_env.items() if k not in hidden}
        env.update(self._workflow.env)
        env.update(job.env)

        secret_values = self._secret_values()
        for secret in job.secrets:
            value = secret_values.get(secret)
            if value is None:
                raise MissingSecretError(job.name, secret)
            env[secret] = value
        return env

    def run(self, decision: GateDecision, *, dry_run: bool = False) -> RunResult:
        selected = [job for job in self._workflow.jobs if job.name in decision.jobs]
        if decision.filtered or not selected:
            return RunResult(decision=decision, results={}, dry_run=dry_run)

        if dry_run:
            planned = {
                job.name: JobResult(name=job.name, outcome=JobOutcome.PLANNED, message="dry run")
                for job in selected
            }
            return RunResult(decision=decision, results=planned, dry_run=True)

        selected_names = {job.name for job in selected}
        pending: dict[str, JobSpec] = {job.name: job for job in selected}
        results: dict[str, JobResult] = {}
        running: dict[Future[JobResult], str] = {}

        with ThreadPoolExecutor(
            max_workers=self._settings.max_parallel_jobs, thread_name_prefix="ci-job"
        ) as pool:
            while pending or running:
                progressed = True
                while progressed:
                    progressed = False
                    for name, job in list(pending.items()):
                        blocker = self._blocker(job, results, selected_names)
                        if blocker is not None:
                            del pending[name]
                            results[name] = JobResult(
                                name=name,
                                outcome=JobOutcome.SKIPPED,
                                message=f"prerequisite {blocker!r} did not succeed",
                            )
                            logger.info("Job skipped", extra={"job": name, "blocked_by": blocker})
                            progressed = True
                        elif all(n in results for n in job.needs):
                            del pending[name]
                            running[pool.submit(self._execute, job)] = name
                            progressed = True

                if not running:
                    break

                done, _ = wait(running, return_when=FIRST_COMPLETED)
                for future in done:
                    name = running.pop(future)
                    results[name] = future.result()

        for name in pending:
            results[name] = JobResult(
                name=name, outcome=JobOutcome.SKIPPED, message="prerequisites never resolved"
            )

        ordered = {job.name: results[job.name] for job in selected}
        return RunResult(decision=decision, results=ordered)

    @staticmethod
    def _blocker(
        job: JobSpec, results: Mapping[str, JobResult], selected: set[str]
    ) -> str | None:
        for prerequisite in job.needs:
            if prerequisite not in selected:
                return prerequisite
            result = results.get(prerequisite)
            if result is not None and result.outcome is not JobOutcome.SUCCEEDED:
                return prerequisite
        return None

    def _execute(self, job: JobSpec) -> JobResult:
        started = time.monotonic()
        try:
            env = self.job_environment(job)
        except MissingSecretError as e:
            logger.error(str(e), extra={"job": job.name, "secret": e.secret})
            return JobResult(name=job.name, outcome=JobOutcome.FAILED, message=str(e))

        timeout = self._settings.job_timeout_seconds or None
        exit_code = 0
        for step, command in enumerate(job.commands, start=1):
            remaining = None if timeout is None else timeout - (time.monotonic() - started)
            logger.info(
                "Job step started", extra={"job": job.name, "step": step, "command": list(command)}
            )
            try:
                if remaining is not None and remaining <= 0:
                    raise subprocess.TimeoutExpired(cmd=list(command), timeout=timeout)
                exit_code = self._executor(
                    command, env=env, cwd=self._settings.workdir, timeout=remaining
                )
            except subprocess.TimeoutExpired:
                duration = time.monotonic() - started
                logger.error(
                    "Job timed out",
                    extra={"job": job.name, "step": step, "timeout_seconds": timeout},
                )
                return JobResult(
                    name=job.name,
                    outcome=JobOutcome.FAILED,
                    duration_seconds=duration,
                    message=f"timed out after {timeout:g}s",
                )
            except OSError as e:
                duration = time.monotonic() - started
                logger.error(
                    "Job command could not be started",
                    extra={
                        "job": job.name,
                        "step": step,
                        "command": list(command),
                        "error": str(e),
                    },
                )
                return JobResult(
                    name=job.name,
                    outcome=JobOutcome.FAILED,
                    duration_seconds=duration,
                    message=str(e),
                )
            if exit_code != 0:
                break

        duration = time.monotonic() - started
        outcome = JobOutcome.SUCCEEDED if exit_code == 0 else JobOutcome.FAILED
        logger.info(
            "Job finished",
            extra={
                "job": job.name,
                "outcome": outcome.value,
                "exit_code": exit_code,
                "duration_seconds": round(duration, 3),
            },
        )
        message = ""
        if exit_code != 0:
            message = f"exited with status {exit_code}"
            if len(job.commands) > 1:
                message = f"step {step} {message}"
        return JobResult(
            name=job.name,
            outcome=outcome,
            exit_code=exit_code,
            duration_seconds=duration,
            message=message,
        )


def run_and_record(
    *,
    runner: JobRunner,
    decision: GateDecision,
    store: RunStore,
    dry_run: bool = False,
    run_id: str | None = None,
) -> tuple[RunRecord, RunResult]:
    """Run the decision's jobs and persist the outcome as a run record."""

    run_id = run_id or uuid.uuid4().hex
    if store.get(run_id) is None:
        create_run_record(store=store, decision=decision, run_id=run_id, dry_run=dry_run)

    if decision.filtered:
        record = store.update(run_id, status="filtered")
        return record, RunResult(decision=decision, dry_run=dry_run)

    store.update(run_id, status="running")
    try:
        result = runner.run(decision, dry_run=dry_run)
    except Exception as e:
        logger.exception("Run failed", extra={"run_id": run_id})
        store.update(run_id, status="failed", error=str(e))
        raise

    record = store.update(
        run_id,
        status=_run_status(result),
        jobs=[r.to_json() for r in result.results.values()],
    )
    logger.info(
        "Run finished",
        extra={"run_id": run_id, "status": record.status, "ref": decision.event.full_ref},
    )
    return record, result


def create_run_record(
    *, store: RunStore, decision: GateDecision, run_id: str, dry_run: bool = False
) -> RunRecord:
    return store.create(
        run_id=run_id,
        ref=decision.event.full_ref,
        ref_kind=decision.event.ref_kind.value,
        ref_name=decision.event.ref_name,
        gate_state=decision.state.value,
        selected_jobs=list(decision.jobs),
        dry_run=dry_run,
    )


def _run_status(result: RunResult) -> RunStatus:
    if result.dry_run:
        return "planned"
    return "succeeded" if result.ok else "failed"
