"""Test configuration and fixtures."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from crate_ci_gate.config import GateSettings

GATE_ENV_VARS = (
    "LOG_LEVEL",
    "CI_GATE_WORKFLOW",
    "CI_GATE_STATE_PATH",
    "CI_GATE_WORKDIR",
    "CI_GATE_MAX_PARALLEL_JOBS",
    "CI_GATE_JOB_TIMEOUT_SECONDS",
    "CARGO_REGISTRY_TOKEN",
    "CI_GATE_WEBHOOK_SECRET",
    "CI_GATE_EXECUTE_ON_WEBHOOK",
    "GITHUB_REF",
    "GITHUB_REF_TYPE",
    "GITHUB_REF_NAME",
)

CRATE_WORKFLOW_YAML = """\
name: CI

on:
  push:
    branches:
      - "**"
    tags:
      - v[0-9]+.*
env:
  CARGO_TERM_COLOR: always
  RUSTFLAGS: "-Dwarnings"

jobs:
  check:
    runs-on: ubuntu-22.04
    steps:
      - uses: actions/checkout@v2
      - uses: actions-rs/toolchain@v1
        with:
          profile: minimal
          toolchain: stable
          override: true
      - uses: actions-rs/cargo@v1
        with:
          command: check
          args: --all-features --verbose

  test:
    runs-on: ubuntu-22.04
    steps:
      - uses: actions/checkout@v2
      - uses: actions-rs/cargo@v1
        with:
          command: test
          args: --all-features --verbose

  clippy:
    runs-on: ubuntu-22.04
    steps:
      - uses: actions/checkout@v2
      - uses: actions-rs/toolchain@v1
        with:
          toolchain: stable
          components: clippy
      - uses: actions-rs/cargo@v1
        with:
          command: clippy
          args: --all-features --verbose

  publish:
    runs-on: ubuntu-22.04
    if: github.ref_type == 'tag'
    steps:
      - uses: actions/checkout@v2
      - uses: katyo/publish-crates@v2
        with:
          registry-token: ${{ secrets.CARGO_REGISTRY_TOKEN }}
"""


@dataclass
class FakeExecutor:
    """Records commands instead of running them.

    Exit codes are looked up by cargo subcommand (``command[1]``).
    """

    exit_codes: dict[str, int] = field(default_factory=dict)
    errors: dict[str, BaseException] = field(default_factory=dict)
    calls: list[tuple[tuple[str, ...], dict[str, str]]] = field(default_factory=list)

    def __post_init__(self) -> None:
        self._lock = threading.Lock()

    def __call__(
        self,
        command: Sequence[str],
        *,
        env: Mapping[str, str],
        cwd: Path,
        timeout: float | None,
    ) -> int:
        key = command[1] if len(command) > 1 else command[0]
        with self._lock:
            self.calls.append((tuple(command), dict(env)))
        if key in self.errors:
            raise self.errors[key]
        return self.exit_codes.get(key, 0)

    def subcommands(self) -> list[str]:
        return [cmd[1] for cmd, _env in self.calls]

    def env_for(self, subcommand: str) -> dict[str, str]:
        for cmd, env in self.calls:
            if cmd[1] == subcommand:
                return env
        raise KeyError(subcommand)


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove gate-related variables inherited from the host environment."""
    for name in GATE_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def settings(tmp_path: Path, clean_env: None) -> GateSettings:
    """Provide settings isolated from any local `.env`."""
    return GateSettings(
        _env_file=None,
        CI_GATE_STATE_PATH=str(tmp_path / "ci_state"),
        CI_GATE_WORKDIR=str(tmp_path),
    )


@pytest.fixture
def workflow_file(tmp_path: Path) -> Path:
    """Provide the crate workflow as a YAML file (without explicit needs)."""
    path = tmp_path / ".github" / "workflows" / "ci.yml"
    path.parent.mkdir(parents=True)
    path.write_text(CRATE_WORKFLOW_YAML, encoding="utf-8")
    return path


@pytest.fixture
def fake_executor() -> FakeExecutor:
    return FakeExecutor()


@pytest.fixture(autouse=True)
def _restore_root_logging() -> Iterator[None]:
    """Undo `configure_logging` calls made by CLI tests."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
