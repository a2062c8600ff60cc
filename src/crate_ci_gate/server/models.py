"""Pydantic models for the webhook server."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict

from crate_ci_gate.workflow.gate import GateDecision


class EvaluateRequest(BaseModel):
    ref: str


class GitHubPushPayload(BaseModel):
    """The parts of a GitHub push delivery the gate looks at."""

    model_config = ConfigDict(extra="ignore")

    ref: str
    deleted: bool = False


class DecisionResponse(BaseModel):
    ref_kind: str
    ref_name: str
    state: str
    jobs: list[str]

    @classmethod
    def from_decision(cls, decision: GateDecision) -> DecisionResponse:
        return cls.model_validate(decision.to_json())


WebhookStatus = Literal["evaluated", "started", "ignored", "pong"]


class WebhookResponse(BaseModel):
    status: WebhookStatus
    decision: DecisionResponse | None = None
    run_id: str | None = None
