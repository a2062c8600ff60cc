#!/usr/bin/env python3
"""Programmatic gate evaluation example.

This demonstrates using the gate components directly:

* load settings from `.env`
* load a workflow (or fall back to the built-in crate workflow)
* evaluate a pushed ref and optionally run the selected jobs

The ref is passed as an argument (not read from `.env`).
"""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Sequence

from crate_ci_gate.config import GateSettings
from crate_ci_gate.logging import configure_logging
from crate_ci_gate.runner import JobRunner
from crate_ci_gate.workflow import PushEvent, TriggerGate, default_workflow, load_workflow


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Evaluate a push (programmatic example).")
    parser.add_argument("--ref", required=True, help='Pushed ref, e.g. "refs/tags/v1.2.3"')
    parser.add_argument("--workflow", default="", help="Workflow YAML (optional)")
    parser.add_argument(
        "--execute",
        action="store_true",
        help="Run the selected jobs instead of only listing them",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)

    settings = GateSettings()
    configure_logging(settings.log_level)

    workflow = load_workflow(Path(args.workflow)) if args.workflow else default_workflow()
    decision = TriggerGate(workflow).decide(PushEvent.from_ref(args.ref))

    print(f"State: {decision.state.value}")
    print(f"Jobs: {', '.join(sorted(decision.jobs)) or 'none'}")
    if not args.execute:
        return 0

    result = JobRunner(workflow=workflow, settings=settings).run(decision)
    for job in result.results.values():
        print(f"{job.name}: {job.outcome.value}")
    return 0 if result.ok else 4


if __name__ == "__main__":
    raise SystemExit(main())
