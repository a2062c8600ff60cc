"""CLI entrypoint for the CI gate.

Exit codes are designed to be CI-friendly:
- 0: jobs selected (evaluate) / every job succeeded (run)
- 1: unexpected error
- 2: configuration error
- 3: invalid ref or workflow definition
- 4: a job failed or was skipped because a prerequisite failed
- 6: the push was filtered out by the trigger
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import shlex
import sys
from pathlib import Path

from pydantic import ValidationError

from crate_ci_gate import __version__
from crate_ci_gate.config import GateSettings
from crate_ci_gate.logging import configure_logging
from crate_ci_gate.run_store import RunStore
from crate_ci_gate.runner import JobRunner, RunResult, run_and_record
from crate_ci_gate.workflow.definition import (
    WorkflowDefinition,
    WorkflowDefinitionError,
    default_workflow,
    dependency_waves,
    load_workflow,
)
from crate_ci_gate.workflow.events import InvalidRefError, PushEvent
from crate_ci_gate.workflow.gate import GateDecision, TriggerGate

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CONFIG = 2
EXIT_INVALID_INPUT = 3
EXIT_JOBS_FAILED = 4
EXIT_FILTERED = 6


def _add_event_arguments(parser: argparse.ArgumentParser) -> None:
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument(
        "--ref",
        help="Fully qualified ref that was pushed, e.g. 'refs/heads/main' or 'refs/tags/v1.2.3'",
    )
    source.add_argument(
        "--from-env",
        action="store_true",
        help="Read the pushed ref from GITHUB_REF_TYPE/GITHUB_REF_NAME (or GITHUB_REF)",
    )


def _add_workflow_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--workflow",
        default=None,
        help="Workflow YAML to use instead of CI_GATE_WORKFLOW / the built-in crate workflow",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="crate-ci-gate",
        description="Decide and run the CI jobs a push triggers",
    )
    parser.add_argument("--version", action="version", version=f"crate-ci-gate {__version__}")

    subparsers = parser.add_subparsers(dest="command", required=True)

    evaluate = subparsers.add_parser("evaluate", help="Print the jobs a push would run")
    _add_event_arguments(evaluate)
    _add_workflow_argument(evaluate)
    evaluate.add_argument("--json", action="store_true", help="Print the decision as JSON")

    run = subparsers.add_parser("run", help="Evaluate a push and execute the selected jobs")
    _add_event_arguments(run)
    _add_workflow_argument(run)
    run.add_argument(
        "--dry-run",
        action="store_true",
        help="Record the planned jobs without executing any command",
    )

    plan = subparsers.add_parser("plan", help="Print jobs grouped in dependency order")
    _add_workflow_argument(plan)

    history = subparsers.add_parser("history", help="List persisted runs")
    history.add_argument(
        "--limit",
        type=int,
        default=20,
        help="Show at most this many of the most recent runs (0 means all)",
    )

    return parser


def _resolve_workflow(settings: GateSettings, override: str | None) -> WorkflowDefinition:
    path = Path(override) if override else settings.workflow_path
    if path is None:
        return default_workflow()
    return load_workflow(path)


def _resolve_event(args: argparse.Namespace) -> PushEvent:
    if args.from_env:
        return PushEvent.from_github_env(os.environ)
    return PushEvent.from_ref(args.ref)


def _print_decision(decision: GateDecision, *, as_json: bool) -> None:
    if as_json:
        print(json.dumps(decision.to_json(), ensure_ascii=False))
        return
    if decision.filtered:
        print(f"{decision.event.full_ref}: filtered by trigger, no jobs run")
        return
    print(f"{decision.event.full_ref}: {', '.join(sorted(decision.jobs))} ({decision.state.value})")


def _print_run(result: RunResult) -> None:
    for r in result.results.values():
        suffix = f" ({r.message})" if r.message else ""
        print(f"{r.name}: {r.outcome.value}{suffix}")


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = GateSettings()
    except ValidationError as e:
        # Logging isn't configured yet; keep it simple and actionable.
        print("Configuration error (check your environment or .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return EXIT_CONFIG

    configure_logging(settings.log_level)

    try:
        if args.command == "evaluate":
            workflow = _resolve_workflow(settings, args.workflow)
            decision = TriggerGate(workflow).decide(_resolve_event(args))
            _print_decision(decision, as_json=args.json)
            return EXIT_FILTERED if decision.filtered else EXIT_OK

        if args.command == "run":
            workflow = _resolve_workflow(settings, args.workflow)
            decision = TriggerGate(workflow).decide(_resolve_event(args))
            _print_decision(decision, as_json=False)

            store = RunStore(settings.runs_state_file)
            runner = JobRunner(workflow=workflow, settings=settings)
            record, result = run_and_record(
                runner=runner, decision=decision, store=store, dry_run=args.dry_run
            )
            _print_run(result)
            print(f"Run {record.run_id}: {record.status}")

            if decision.filtered:
                return EXIT_FILTERED
            return EXIT_OK if result.ok else EXIT_JOBS_FAILED

        if args.command == "plan":
            workflow = _resolve_workflow(settings, args.workflow)
            by_name = {job.name: job for job in workflow.jobs}
            for idx, wave in enumerate(dependency_waves(workflow.jobs), start=1):
                print(f"wave {idx}:")
                for name in wave:
                    job = by_name[name]
                    condition = ""
                    if job.condition.ref_kind is not None:
                        qualifier = "not" if job.condition.negate else "only"
                        condition = f" [{qualifier} on {job.condition.ref_kind.value}]"
                    commands = " && ".join(shlex.join(command) for command in job.commands)
                    print(f"  {name}: {commands}{condition}")
            return EXIT_OK

        if args.command == "history":
            runs = RunStore(settings.runs_state_file).list()
            if args.limit > 0:
                runs = runs[-args.limit :]
            if not runs:
                print("No runs recorded")
                return EXIT_OK
            for run in runs:
                jobs = ", ".join(f"{j.name}={j.outcome}" for j in run.jobs) or "-"
                print(f"{run.run_id} {run.created_at} {run.ref} {run.status} {jobs}")
            return EXIT_OK

        logger.error("Unknown command", extra={"command": args.command})
        return EXIT_CONFIG

    except (InvalidRefError, WorkflowDefinitionError) as e:
        logger.warning(str(e), extra={"command": args.command})
        print(str(e), file=sys.stderr)
        return EXIT_INVALID_INPUT

    except Exception:
        logger.exception("Command failed")
        return EXIT_ERROR


if __name__ == "__main__":
    raise SystemExit(main())
