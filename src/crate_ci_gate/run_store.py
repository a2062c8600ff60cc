"""Persisted run records.

Runs are appended to a JSON file under the state directory so the CLI
`history` command and the webhook server can report on past pushes.

This is intentionally minimal. Retention of build logs stays with whatever
CI runner hosts the gate.
"""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, ValidationError

RunStatus = Literal["queued", "running", "succeeded", "failed", "filtered", "planned"]


class JobRecord(BaseModel):
    name: str
    outcome: str
    exit_code: int | None = None
    duration_seconds: float = 0.0
    message: str = ""


class RunRecord(BaseModel):
    run_id: str
    ref: str
    ref_kind: str
    ref_name: str
    gate_state: str
    status: RunStatus
    created_at: str
    updated_at: str

    selected_jobs: list[str] = Field(default_factory=list)
    jobs: list[JobRecord] = Field(default_factory=list)
    dry_run: bool = False
    error: str | None = None


def _utc_iso_now() -> str:
    return datetime.now(tz=UTC).isoformat()


@dataclass
class RunStore:
    path: Path

    def __post_init__(self) -> None:
        self._lock = threading.Lock()

    def _load_unlocked(self) -> list[RunRecord]:
        if not self.path.exists():
            return []
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            return []
        if not isinstance(raw, list):
            return []
        try:
            return [RunRecord.model_validate(item) for item in raw]
        except ValidationError:
            return []

    def _save_unlocked(self, runs: list[RunRecord]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = [r.model_dump(mode="json") for r in runs]
        self.path.write_text(
            json.dumps(payload, indent=2, ensure_ascii=False) + "\n", encoding="utf-8"
        )

    def list(self) -> list[RunRecord]:
        with self._lock:
            return self._load_unlocked()

    def get(self, run_id: str) -> RunRecord | None:
        with self._lock:
            for run in self._load_unlocked():
                if run.run_id == run_id:
                    return run
            return None

    def create(
        self,
        *,
        run_id: str,
        ref: str,
        ref_kind: str,
        ref_name: str,
        gate_state: str,
        selected_jobs: list[str],
        status: RunStatus = "queued",
        dry_run: bool = False,
    ) -> RunRecord:
        with self._lock:
            runs = self._load_unlocked()
            now = _utc_iso_now()
            record = RunRecord(
                run_id=run_id,
                ref=ref,
                ref_kind=ref_kind,
                ref_name=ref_name,
                gate_state=gate_state,
                status=status,
                created_at=now,
                updated_at=now,
                selected_jobs=sorted(selected_jobs),
                dry_run=dry_run,
            )
            runs.append(record)
            self._save_unlocked(runs)
            return record

    def update(self, run_id: str, **updates: object) -> RunRecord:
        with self._lock:
            runs = self._load_unlocked()
            for idx, run in enumerate(runs):
                if run.run_id != run_id:
                    continue
                now = _utc_iso_now()
                merged = RunRecord.model_validate(
                    {**run.model_dump(mode="json"), "updated_at": now, **updates}
                )
                runs[idx] = merged
                self._save_unlocked(runs)
                return merged
            raise KeyError(run_id)
