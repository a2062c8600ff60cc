"""Background runner for webhook-triggered runs."""

from __future__ import annotations

import logging
import threading
import uuid

from crate_ci_gate.run_store import RunStore
from crate_ci_gate.runner import JobRunner, create_run_record, run_and_record
from crate_ci_gate.workflow.gate import GateDecision

logger = logging.getLogger(__name__)


def start_run(*, decision: GateDecision, runner: JobRunner, run_store: RunStore) -> str:
    """Record a queued run and execute it on a daemon thread."""

    run_id = uuid.uuid4().hex
    create_run_record(store=run_store, decision=decision, run_id=run_id)

    thread = threading.Thread(
        target=_run,
        name=f"ci-run-{decision.event.ref_name}-{run_id}",
        daemon=True,
        kwargs={
            "run_id": run_id,
            "decision": decision,
            "runner": runner,
            "run_store": run_store,
        },
    )
    thread.start()
    return run_id


def _run(*, run_id: str, decision: GateDecision, runner: JobRunner, run_store: RunStore) -> None:
    try:
        run_and_record(runner=runner, decision=decision, store=run_store, run_id=run_id)
    except Exception:
        # run_and_record already marked the record failed; the thread just ends.
        logger.error("Background run aborted", extra={"run_id": run_id})
