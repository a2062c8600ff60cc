from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from .definition import WorkflowDefinition, default_workflow
from .events import PushEvent
from .jobs import JobName, JobSpec, default_jobs
from .state_machine import GateState, received, transition

logger = logging.getLogger(__name__)

_DEFAULT_JOBS = default_jobs()


def evaluate(event: PushEvent, jobs: Iterable[JobSpec] | None = None) -> frozenset[str]:
    """Return the names of the jobs eligible to run for ``event``.

    With the built-in jobs, ``check``, ``test`` and ``clippy`` are always
    selected and ``publish`` is selected only for tag pushes. Pure: no side
    effects, and the same event always yields the same set.
    """

    candidates = _DEFAULT_JOBS if jobs is None else jobs
    return frozenset(job.name for job in candidates if job.selected_for(event))


@dataclass(frozen=True, slots=True)
class GateDecision:
    event: PushEvent
    state: GateState
    jobs: frozenset[str]

    @property
    def filtered(self) -> bool:
        return self.state is GateState.FILTERED

    @property
    def publishes(self) -> bool:
        return JobName.PUBLISH.value in self.jobs

    def to_json(self) -> dict[str, object]:
        return {
            "ref_kind": self.event.ref_kind.value,
            "ref_name": self.event.ref_name,
            "state": self.state.value,
            "jobs": sorted(self.jobs),
        }


class TriggerGate:
    """Decide which jobs of a workflow a push event starts."""

    def __init__(self, workflow: WorkflowDefinition | None = None) -> None:
        self._workflow = workflow or default_workflow()

    @property
    def workflow(self) -> WorkflowDefinition:
        return self._workflow

    def evaluate(self, event: PushEvent) -> frozenset[str]:
        return evaluate(event, self._workflow.jobs)

    def decide(self, event: PushEvent) -> GateDecision:
        """Apply the push trigger filter, then evaluate the job conditions."""

        snapshot = received(event)
        if not self._workflow.trigger.admits(event):
            snapshot = transition(current=snapshot, to=GateState.FILTERED)
            logger.info(
                "Push filtered by trigger",
                extra={"ref": event.full_ref, "workflow": self._workflow.name},
            )
            return GateDecision(event=event, state=snapshot.state, jobs=frozenset())

        jobs = self.evaluate(event)
        target = (
            GateState.GATE_OPEN_FOR_PUBLISH
            if JobName.PUBLISH.value in jobs
            else GateState.GATE_OPEN_FOR_CI
        )
        snapshot = transition(current=snapshot, to=target)
        logger.info(
            "Gate evaluated",
            extra={"ref": event.full_ref, "state": snapshot.state.value, "jobs": sorted(jobs)},
        )
        return GateDecision(event=event, state=snapshot.state, jobs=jobs)
