"""Crate CI gate.

Decides which CI jobs a push triggers and runs them:
- branch pushes run check, test and clippy
- version tag pushes additionally run publish, after the other three pass
"""

__version__ = "0.1.0"

from crate_ci_gate.config import GateSettings
from crate_ci_gate.workflow.events import PushEvent, RefKind
from crate_ci_gate.workflow.gate import TriggerGate, evaluate

__all__ = ["__version__", "GateSettings", "PushEvent", "RefKind", "TriggerGate", "evaluate"]
