"""REST server for the CI gate.

Receives GitHub push webhooks, evaluates them with the trigger gate and,
when enabled, runs the selected jobs in the background.
"""

from crate_ci_gate.server.app import create_app

__all__ = ["create_app"]
