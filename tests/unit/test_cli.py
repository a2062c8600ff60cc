"""Unit tests for the CLI entrypoint and its exit codes."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

import crate_ci_gate.main as cli
from crate_ci_gate.main import main
from crate_ci_gate.runner import JobRunner


@pytest.fixture
def workspace(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, clean_env: None) -> Path:
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def patched_runner(monkeypatch: pytest.MonkeyPatch, fake_executor):
    def factory(**kwargs):
        return JobRunner(executor=fake_executor, base_env={"PATH": "/usr/bin"}, **kwargs)

    monkeypatch.setattr(cli, "JobRunner", factory)
    return fake_executor


def test_evaluate_branch(workspace: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["evaluate", "--ref", "refs/heads/main"]) == 0
    out = capsys.readouterr().out
    assert out.strip() == "refs/heads/main: check, clippy, test (gate_open_for_ci)"


def test_evaluate_tag_as_json(workspace: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["evaluate", "--ref", "refs/tags/v1.2.3", "--json"]) == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["state"] == "gate_open_for_publish"
    assert payload["jobs"] == ["check", "clippy", "publish", "test"]


def test_evaluate_filtered_tag(workspace: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["evaluate", "--ref", "refs/tags/nightly"]) == 6
    assert "filtered" in capsys.readouterr().out


def test_evaluate_from_github_env(
    workspace: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    monkeypatch.setenv("GITHUB_REF_TYPE", "tag")
    monkeypatch.setenv("GITHUB_REF_NAME", "v2.0.0")
    assert main(["evaluate", "--from-env", "--json"]) == 0
    assert "publish" in json.loads(capsys.readouterr().out)["jobs"]


def test_invalid_ref_exits_3(workspace: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["evaluate", "--ref", "main"]) == 3
    assert "Not a branch or tag ref" in capsys.readouterr().err


def test_invalid_workflow_exits_3(workspace: Path) -> None:
    bad = workspace / "ci.yml"
    bad.write_text("name: CI\n", encoding="utf-8")
    assert main(["evaluate", "--ref", "refs/heads/main", "--workflow", str(bad)]) == 3


def test_configuration_error_exits_2(
    workspace: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    monkeypatch.setenv("CI_GATE_MAX_PARALLEL_JOBS", "zero")
    assert main(["evaluate", "--ref", "refs/heads/main"]) == 2
    assert "Configuration error" in capsys.readouterr().err


def test_evaluate_with_workflow_file(
    workspace: Path, workflow_file: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    assert main(["evaluate", "--ref", "refs/tags/v0.1.0", "--workflow", str(workflow_file)]) == 0
    assert "publish" in capsys.readouterr().out


def test_run_success_persists_history(
    workspace: Path, patched_runner, capsys: pytest.CaptureFixture[str]
) -> None:
    assert main(["run", "--ref", "refs/heads/main"]) == 0
    out = capsys.readouterr().out
    assert "check: succeeded" in out
    assert "publish" not in out
    assert sorted(patched_runner.subcommands()) == ["check", "clippy", "test"]

    assert main(["history"]) == 0
    history = capsys.readouterr().out
    assert "refs/heads/main succeeded" in history


def test_run_failure_exits_4(
    workspace: Path, patched_runner, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("CARGO_REGISTRY_TOKEN", "s3cret")
    patched_runner.exit_codes["clippy"] = 1
    assert main(["run", "--ref", "refs/tags/v1.2.3"]) == 4
    assert "publish" not in patched_runner.subcommands()


def test_run_filtered_exits_6(workspace: Path, patched_runner) -> None:
    assert main(["run", "--ref", "refs/tags/nightly"]) == 6
    assert patched_runner.calls == []


def test_run_dry_run(
    workspace: Path, patched_runner, capsys: pytest.CaptureFixture[str]
) -> None:
    assert main(["run", "--ref", "refs/tags/v1.2.3", "--dry-run"]) == 0
    assert "publish: planned (dry run)" in capsys.readouterr().out
    assert patched_runner.calls == []


def test_plan_prints_waves(workspace: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["plan"]) == 0
    out = capsys.readouterr().out
    assert out.index("wave 1:") < out.index("  check:") < out.index("wave 2:")
    assert "  publish: cargo publish --all-features --verbose [only on tag]" in out


def test_history_empty(workspace: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["history"]) == 0
    assert "No runs recorded" in capsys.readouterr().out
