"""Workflow domain concepts.

This package introduces first-class types for:
- Push events (branch or tag)
- Ref filters that decide whether a push triggers the workflow at all
- Jobs, their conditions and their prerequisite edges
- The trigger gate that turns an event into a job set
"""

from .definition import WorkflowDefinition, WorkflowDefinitionError, default_workflow, load_workflow
from .events import InvalidRefError, PushEvent, RefKind
from .gate import GateDecision, TriggerGate, evaluate
from .jobs import JobName, JobSpec
from .state_machine import GateState

__all__ = [
    "GateDecision",
    "GateState",
    "InvalidRefError",
    "JobName",
    "JobSpec",
    "PushEvent",
    "RefKind",
    "TriggerGate",
    "WorkflowDefinition",
    "WorkflowDefinitionError",
    "default_workflow",
    "evaluate",
    "load_workflow",
]
