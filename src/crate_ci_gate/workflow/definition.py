"""Workflow definitions.

A workflow bundles the push trigger filter, the environment shared by every
job and the jobs themselves. The built-in definition mirrors the crate CI
workflow; other definitions are loaded from GitHub Actions style YAML.
"""

from __future__ import annotations

import logging
import re
import shlex
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .filters import DEFAULT_TRIGGER, RefFilter, TriggerFilter
from .jobs import (
    CARGO_ARGS,
    DEFAULT_RUNNER,
    JobSpec,
    UnsupportedConditionError,
    cargo_command,
    default_jobs,
    parse_condition,
    shell_command,
)

logger = logging.getLogger(__name__)

DEFAULT_ENV: dict[str, str] = {
    "CARGO_TERM_COLOR": "always",
    "RUSTFLAGS": "-Dwarnings",
}

_SECRET_REFERENCE = re.compile(r"^\$\{\{\s*secrets\.([A-Za-z_][A-Za-z0-9_]*)\s*\}\}$")


class WorkflowDefinitionError(ValueError):
    def __init__(self, source: Path | str, message: str) -> None:
        super().__init__(f"{source}: {message}")
        self.source = str(source)
        self.message = message


@dataclass(frozen=True, slots=True)
class WorkflowDefinition:
    name: str
    trigger: TriggerFilter
    env: dict[str, str] = field(default_factory=dict, hash=False)
    jobs: tuple[JobSpec, ...] = ()

    def job(self, name: str) -> JobSpec | None:
        for job in self.jobs:
            if job.name == name:
                return job
        return None

    @property
    def job_names(self) -> tuple[str, ...]:
        return tuple(job.name for job in self.jobs)

    @property
    def secret_names(self) -> frozenset[str]:
        return frozenset(name for job in self.jobs for name in job.secrets)


def default_workflow() -> WorkflowDefinition:
    return WorkflowDefinition(
        name="CI",
        trigger=DEFAULT_TRIGGER,
        env=dict(DEFAULT_ENV),
        jobs=default_jobs(),
    )


def dependency_waves(jobs: Iterable[JobSpec], *, source: str = "<workflow>") -> list[list[str]]:
    """Group jobs into waves; every job's prerequisites sit in earlier waves.

    Within a wave, names keep declaration order.
    """

    job_list = list(jobs)
    names = [job.name for job in job_list]
    known = set(names)

    in_degree: dict[str, int] = dict.fromkeys(names, 0)
    dependents: dict[str, list[str]] = {name: [] for name in names}
    for job in job_list:
        for prerequisite in job.needs:
            if prerequisite not in known:
                raise WorkflowDefinitionError(
                    source, f"job {job.name!r} needs unknown job {prerequisite!r}"
                )
            in_degree[job.name] += 1
            dependents[prerequisite].append(job.name)

    waves: list[list[str]] = []
    ready = [name for name in names if in_degree[name] == 0]
    placed = 0
    while ready:
        waves.append(ready)
        placed += len(ready)
        following: set[str] = set()
        for name in ready:
            for dependent in dependents[name]:
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    following.add(dependent)
        ready = [name for name in names if name in following]

    if placed != len(names):
        cyclic = sorted(name for name, degree in in_degree.items() if degree > 0)
        raise WorkflowDefinitionError(source, f"dependency cycle between jobs: {', '.join(cyclic)}")
    return waves


def load_workflow(path: Path) -> WorkflowDefinition:
    try:
        raw_text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise WorkflowDefinitionError(path, f"read failed: {exc}") from exc

    try:
        data = yaml.safe_load(raw_text)
    except yaml.YAMLError as exc:
        line_info = ""
        mark = getattr(exc, "problem_mark", None)
        if mark is not None:
            line_info = f":{mark.line + 1}:{mark.column + 1}"
        raise WorkflowDefinitionError(path, f"yaml parse error{line_info}: {exc}") from exc

    workflow = parse_workflow(data, source=str(path))
    logger.debug(
        "Workflow loaded",
        extra={"path": str(path), "workflow": workflow.name, "jobs": list(workflow.job_names)},
    )
    return workflow


def parse_workflow(data: object, *, source: str = "<workflow>") -> WorkflowDefinition:
    if not isinstance(data, dict):
        raise WorkflowDefinitionError(source, "top-level YAML must be a mapping")

    name = data.get("name")
    jobs_raw = data.get("jobs")
    if not isinstance(jobs_raw, dict) or not jobs_raw:
        raise WorkflowDefinitionError(source, "workflow must define at least one job under 'jobs'")

    # YAML 1.1 reads a bare `on` key as boolean true.
    on_raw = data["on"] if "on" in data else data.get(True)
    trigger = _parse_trigger(on_raw, source=source)
    env = _string_mapping(data.get("env"), what="env", source=source)

    jobs = tuple(
        _parse_job(str(job_id), job_raw, source=source) for job_id, job_raw in jobs_raw.items()
    )
    dependency_waves(jobs, source=source)

    return WorkflowDefinition(
        name=name if isinstance(name, str) and name.strip() else Path(source).stem,
        trigger=trigger,
        env=env,
        jobs=jobs,
    )


def _string_list(value: object, *, what: str, source: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    if isinstance(value, list) and all(isinstance(v, str) for v in value):
        return tuple(value)
    raise WorkflowDefinitionError(source, f"{what} must be a string or a list of strings")


def _string_mapping(value: object, *, what: str, source: str) -> dict[str, str]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise WorkflowDefinitionError(source, f"{what} must be a mapping")
    # YAML scalars such as `1` or `true` are passed to commands as text.
    return {str(k): _scalar_text(v) for k, v in value.items()}


def _scalar_text(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return "" if value is None else str(value)


def _ref_filter(
    push: Mapping[Any, Any], include_key: str, ignore_key: str, *, source: str
) -> RefFilter | None:
    if include_key in push and ignore_key in push:
        raise WorkflowDefinitionError(
            source, f"'{include_key}' and '{ignore_key}' cannot be combined"
        )
    if include_key in push:
        return RefFilter(_string_list(push[include_key], what=include_key, source=source))
    if ignore_key in push:
        return RefFilter(
            _string_list(push[ignore_key], what=ignore_key, source=source), ignore=True
        )
    return None


def _parse_trigger(on_raw: object, *, source: str) -> TriggerFilter:
    if on_raw is None:
        raise WorkflowDefinitionError(source, "workflow has no 'on' trigger")

    if isinstance(on_raw, str):
        on_raw = [on_raw]
    if isinstance(on_raw, list):
        if "push" not in on_raw:
            raise WorkflowDefinitionError(source, "workflow is not triggered by push events")
        return TriggerFilter()

    if not isinstance(on_raw, dict) or "push" not in on_raw:
        raise WorkflowDefinitionError(source, "workflow is not triggered by push events")

    push = on_raw["push"]
    if push is None:
        return TriggerFilter()
    if not isinstance(push, dict):
        raise WorkflowDefinitionError(source, "'on.push' must be a mapping")

    return TriggerFilter(
        branches=_ref_filter(push, "branches", "branches-ignore", source=source),
        tags=_ref_filter(push, "tags", "tags-ignore", source=source),
    )


def _secret_name(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    match = _SECRET_REFERENCE.match(value.strip())
    return match.group(1) if match else None


def _parse_job(job_id: str, job_raw: object, *, source: str) -> JobSpec:
    if not isinstance(job_raw, dict):
        raise WorkflowDefinitionError(source, f"job {job_id!r} must be a mapping")

    try:
        condition = parse_condition(_optional_str(job_raw.get("if")))
    except UnsupportedConditionError as exc:
        raise WorkflowDefinitionError(source, f"job {job_id!r}: {exc}") from exc

    needs = _string_list(job_raw.get("needs"), what=f"jobs.{job_id}.needs", source=source)
    runs_on = job_raw.get("runs-on", DEFAULT_RUNNER)
    env = _string_mapping(job_raw.get("env"), what=f"jobs.{job_id}.env", source=source)

    steps = job_raw.get("steps")
    if not isinstance(steps, list):
        raise WorkflowDefinitionError(source, f"job {job_id!r} must define a list of steps")

    commands: list[tuple[str, ...]] = []
    components: list[str] = []
    secrets: list[str] = []

    for step in steps:
        if not isinstance(step, dict):
            raise WorkflowDefinitionError(source, f"job {job_id!r} has a non-mapping step")
        uses = step.get("uses")
        with_raw = step.get("with") or {}
        if not isinstance(with_raw, dict):
            raise WorkflowDefinitionError(source, f"job {job_id!r}: step 'with' must be a mapping")

        if isinstance(uses, str):
            action = uses.split("@", 1)[0]
            if action == "actions/checkout":
                continue
            if action == "actions-rs/toolchain":
                components.extend(
                    c.strip() for c in str(with_raw.get("components", "")).split(",") if c.strip()
                )
                continue
            if action == "actions-rs/cargo":
                subcommand = with_raw.get("command")
                if not isinstance(subcommand, str) or not subcommand.strip():
                    raise WorkflowDefinitionError(
                        source, f"job {job_id!r}: actions-rs/cargo step needs a 'command'"
                    )
                args = tuple(shlex.split(str(with_raw.get("args", ""))))
                commands.append(cargo_command(subcommand.strip(), args))
                continue
            if action == "katyo/publish-crates":
                commands.append(cargo_command("publish", CARGO_ARGS))
                secret = _secret_name(with_raw.get("registry-token"))
                if secret is not None:
                    secrets.append(secret)
                continue
            logger.warning(
                "Ignoring unsupported action step",
                extra={"job": job_id, "uses": uses, "source": source},
            )
            continue

        run = step.get("run")
        if isinstance(run, str) and run.strip():
            commands.append(shell_command(run.strip()))

    if not commands:
        raise WorkflowDefinitionError(source, f"job {job_id!r} has no runnable step")

    return JobSpec(
        name=job_id,
        commands=tuple(commands),
        condition=condition,
        needs=needs,
        components=tuple(components),
        secrets=tuple(secrets),
        runs_on=str(runs_on),
        env=env,
    )


def _optional_str(value: object) -> str | None:
    if value is None:
        return None
    return str(value)
