"""FastAPI app factory.

Endpoints are intentionally thin wrappers over the gate and the run store.
Serve with: `uvicorn crate_ci_gate.server.app:create_app --factory`.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging

from fastapi import FastAPI, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from crate_ci_gate import __version__
from crate_ci_gate.config import GateSettings
from crate_ci_gate.run_store import RunRecord, RunStore
from crate_ci_gate.runner import CommandExecutor, JobRunner, subprocess_executor
from crate_ci_gate.server.models import (
    DecisionResponse,
    EvaluateRequest,
    GitHubPushPayload,
    WebhookResponse,
)
from crate_ci_gate.server.run_launcher import start_run
from crate_ci_gate.workflow.definition import default_workflow, load_workflow
from crate_ci_gate.workflow.events import InvalidRefError, PushEvent
from crate_ci_gate.workflow.gate import TriggerGate

logger = logging.getLogger(__name__)

SIGNATURE_PREFIX = "sha256="


def verify_signature(secret: str, body: bytes, signature: str | None) -> bool:
    """Check a GitHub `X-Hub-Signature-256` header against the raw body."""

    if not signature or not signature.startswith(SIGNATURE_PREFIX):
        return False
    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature[len(SIGNATURE_PREFIX) :])


def create_app(
    settings: GateSettings | None = None,
    *,
    executor: CommandExecutor = subprocess_executor,
) -> FastAPI:
    settings = settings or GateSettings()
    workflow = (
        load_workflow(settings.workflow_path) if settings.workflow_path else default_workflow()
    )

    app = FastAPI(
        title="Crate CI Gate",
        version=__version__,
        description="Evaluate pushes against the crate CI workflow and run the selected jobs.",
        openapi_url="/api/openapi.json",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
    )

    # Expose settings for request handlers that want to read it.
    app.state.settings = settings

    gate = TriggerGate(workflow)
    run_store = RunStore(settings.runs_state_file)
    runner = JobRunner(workflow=workflow, settings=settings, executor=executor)

    def _event_from_ref(ref: str) -> PushEvent:
        try:
            return PushEvent.from_ref(ref)
        except InvalidRefError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e

    @app.get("/api/v1/health")
    def health() -> dict[str, str]:
        return {"status": "ok", "version": __version__, "workflow": workflow.name}

    @app.post("/api/v1/evaluate", response_model=DecisionResponse)
    def evaluate(req: EvaluateRequest) -> DecisionResponse:
        decision = gate.decide(_event_from_ref(req.ref))
        return DecisionResponse.from_decision(decision)

    @app.post("/api/v1/webhooks/github", response_model=WebhookResponse)
    async def github_webhook(
        request: Request,
        x_github_event: str = Header(default="push"),
        x_hub_signature_256: str | None = Header(default=None),
    ) -> WebhookResponse | JSONResponse:
        body = await request.body()

        if settings.webhook_secret and not verify_signature(
            settings.webhook_secret, body, x_hub_signature_256
        ):
            logger.warning("Webhook signature mismatch", extra={"event": x_github_event})
            raise HTTPException(status_code=401, detail="Invalid webhook signature")

        if x_github_event == "ping":
            return WebhookResponse(status="pong")
        if x_github_event != "push":
            return JSONResponse(
                status_code=status.HTTP_202_ACCEPTED,
                content=WebhookResponse(status="ignored").model_dump(mode="json"),
            )

        try:
            payload = GitHubPushPayload.model_validate(json.loads(body or b"{}"))
        except (json.JSONDecodeError, ValidationError) as e:
            raise HTTPException(status_code=400, detail=f"Invalid push payload: {e}") from e

        if payload.deleted:
            logger.info("Ignoring ref deletion", extra={"ref": payload.ref})
            return WebhookResponse(status="ignored")

        decision = gate.decide(_event_from_ref(payload.ref))
        response = DecisionResponse.from_decision(decision)

        if settings.execute_on_webhook and not decision.filtered:
            run_id = start_run(decision=decision, runner=runner, run_store=run_store)
            return WebhookResponse(status="started", decision=response, run_id=run_id)
        return WebhookResponse(status="evaluated", decision=response)

    @app.get("/api/v1/runs", response_model=list[RunRecord])
    def list_runs() -> list[RunRecord]:
        return run_store.list()

    @app.get("/api/v1/runs/{run_id}", response_model=RunRecord)
    def get_run(run_id: str) -> RunRecord:
        record = run_store.get(run_id)
        if record is None:
            raise HTTPException(status_code=404, detail="Run not found")
        return record

    return app
