"""CLI tests: every command and flag parses and behaves as documented."""

from __future__ import annotations

import json
import subprocess
import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

import click
import pytest

from autodev.cli import _resolve_engine, main
from autodev.engines.base import EngineResult

from conftest import BAD_OUTPUT, GOOD_OUTPUT


def _run_cli(args: list[str], cwd: Path | None = None, timeout: int = 30) -> subprocess.CompletedProcess:
    """Run autodev as a subprocess."""
    cmd = [sys.executable, "-m", "autodev"] + args
    return subprocess.run(
        cmd,
        cwd=cwd,
        capture_output=True,
        text=True,
        encoding="utf-8",
        errors="replace",
        timeout=timeout,
    )


@pytest.fixture
def cli_runner():
    """Click CliRunner for invoking the CLI in-process."""
    from click.testing import CliRunner
    return CliRunner()


@pytest.fixture
def plan_file(tmp_path: Path) -> Path:
    path = tmp_path / "plan.json"
    path.write_text(json.dumps({
        "projectName": "demo",
        "tasks": [
            {"id": "a", "title": "Task A", "phase": "foundation", "complexity": "medium"},
            {"id": "b", "title": "Task B", "phase": "mvp", "dependsOn": ["a"], "complexity": "simple"},
        ],
    }), encoding="utf-8")
    return path


@pytest.fixture
def cyclic_plan_file(tmp_path: Path) -> Path:
    path = tmp_path / "cyclic.json"
    path.write_text(json.dumps({
        "tasks": [
            {"id": "a", "title": "A", "dependsOn": ["b"]},
            {"id": "b", "title": "B", "dependsOn": ["a"]},
        ],
    }), encoding="utf-8")
    return path


def _fake_engine(result: EngineResult) -> MagicMock:
    engine = MagicMock()
    engine.name = "fake"
    engine.check_available.return_value = None
    engine.run_sync.return_value = result
    return engine


# ── Main entry and help ────────────────────────────────────────────────


class TestCliHelpAndVersion:
    """Basic entry: --help, --version, -h."""

    def test_help_long(self, cli_runner):
        r = cli_runner.invoke(main, ["--help"])
        assert r.exit_code == 0
        assert "autodev" in r.output
        for command in ("run", "validate", "assign", "analyze", "review"):
            assert command in r.output

    def test_help_short(self, cli_runner):
        r = cli_runner.invoke(main, ["-h"])
        assert r.exit_code == 0

    def test_version(self, cli_runner):
        r = cli_runner.invoke(main, ["--version"])
        assert r.exit_code == 0
        assert "autodev" in r.output.lower()
        assert "0.3.0" in r.output

    @pytest.mark.parametrize("command", ["run", "validate", "assign", "analyze", "review"])
    def test_subcommand_help(self, cli_runner, command):
        r = cli_runner.invoke(main, [command, "--help"])
        assert r.exit_code == 0

    def test_module_entry_point(self):
        r = _run_cli(["--version"])
        assert r.returncode == 0
        assert "0.3.0" in r.stdout


class TestResolveEngine:
    def test_default_is_claude(self):
        assert _resolve_engine(()) == "claude"

    def test_repeated_flag_is_fine(self):
        assert _resolve_engine(("opencode", "opencode")) == "opencode"

    def test_conflicting_flags(self):
        with pytest.raises(click.UsageError):
            _resolve_engine(("claude", "opencode"))


# ── run ─────────────────────────────────────────────────────────────────


class TestRunCommand:
    """run: dry-run, pre-flight checks and a full execution with a fake engine."""

    def test_dry_run(self, cli_runner, plan_file):
        r = cli_runner.invoke(main, ["run", str(plan_file), "--dry-run"])
        assert r.exit_code == 0
        assert "dry run" in r.output
        assert "Project: demo" in r.output
        assert "claude-sonnet" in r.output
        assert "First wave: a" in r.output

    def test_dry_run_reports_cycle(self, cli_runner, cyclic_plan_file):
        r = cli_runner.invoke(main, ["run", str(cyclic_plan_file), "--dry-run"])
        assert r.exit_code == 0
        assert "Dependency cycle" in r.output

    def test_missing_plan_file(self, cli_runner, tmp_path):
        r = cli_runner.invoke(main, ["run", str(tmp_path / "nope.json")])
        assert r.exit_code == 2

    def test_invalid_json_plan(self, cli_runner, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text("{oops", encoding="utf-8")
        r = cli_runner.invoke(main, ["run", str(path), "--dry-run"])
        assert r.exit_code == 1

    def test_conflicting_engines(self, cli_runner, plan_file):
        r = cli_runner.invoke(main, ["run", str(plan_file), "--claude", "--opencode"])
        assert r.exit_code == 2
        assert "Conflicting engine flags" in r.output

    def test_invalid_threshold_is_usage_error(self, cli_runner, plan_file):
        r = cli_runner.invoke(main, ["run", str(plan_file), "--threshold", "2"])
        assert r.exit_code == 2

    def test_engine_unavailable(self, cli_runner, plan_file):
        engine = _fake_engine(EngineResult())
        engine.check_available.return_value = "fake CLI not found"
        with patch("autodev.engines.registry.get_engine", return_value=engine):
            r = cli_runner.invoke(main, ["run", str(plan_file)])
        assert r.exit_code == 1
        engine.run_sync.assert_not_called()

    def test_successful_run(self, cli_runner, plan_file, tmp_path):
        engine = _fake_engine(EngineResult(text=GOOD_OUTPUT, input_tokens=10, output_tokens=5))
        events = tmp_path / "events.jsonl"
        with patch("autodev.engines.registry.get_engine", return_value=engine) as mock_get:
            r = cli_runner.invoke(main, ["run", str(plan_file), "--events", str(events), "--max-parallel", "2"])

        assert r.exit_code == 0, r.output
        assert mock_get.call_args.args[0] == "claude"
        assert engine.run_sync.call_count == 2
        assert "Execution complete!" in r.output
        assert "2/2 task(s) completed" in r.output

        types = [json.loads(line)["type"] for line in events.read_text(encoding="utf-8").splitlines()]
        assert types[0] == "phase_changed"
        assert types[-1] == "execution_completed"
        assert types.count("task_started") == 2

    def test_opencode_model_pinning(self, cli_runner, plan_file):
        engine = _fake_engine(EngineResult(text=GOOD_OUTPUT))
        with patch("autodev.engines.registry.get_engine", return_value=engine) as mock_get:
            r = cli_runner.invoke(
                main, ["run", str(plan_file), "--opencode", "--opencode-model", "openai/gpt-4o"]
            )
        assert r.exit_code == 0, r.output
        assert mock_get.call_args.args[0] == "opencode"
        assert mock_get.call_args.kwargs["opencode_model"] == "openai/gpt-4o"

    def test_failing_run_exits_nonzero(self, cli_runner, plan_file):
        engine = _fake_engine(EngineResult(error="boom", return_code=1))
        with patch("autodev.engines.registry.get_engine", return_value=engine):
            r = cli_runner.invoke(main, ["run", str(plan_file), "--no-retry"])

        assert r.exit_code == 1
        assert engine.run_sync.call_count == 1
        assert "Execution finished with failures." in r.output

    def test_validate_flag_rejects_cycle(self, cli_runner, cyclic_plan_file):
        engine = _fake_engine(EngineResult(text=GOOD_OUTPUT))
        with patch("autodev.engines.registry.get_engine", return_value=engine):
            r = cli_runner.invoke(main, ["run", str(cyclic_plan_file), "--validate"])
        assert r.exit_code == 1
        engine.run_sync.assert_not_called()

    def test_artifacts_written(self, cli_runner, plan_file, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        engine = _fake_engine(EngineResult(text=GOOD_OUTPUT))
        with patch("autodev.engines.registry.get_engine", return_value=engine):
            r = cli_runner.invoke(main, ["run", str(plan_file), "--artifacts"])

        assert r.exit_code == 0, r.output
        reports = sorted(p.name for p in tmp_path.glob("artifacts/run-*/reports/*.json"))
        assert reports == ["a.json", "b.json"]


# ── validate / assign / analyze / review ────────────────────────────────


class TestValidateCommand:
    def test_valid_plan(self, cli_runner, plan_file):
        r = cli_runner.invoke(main, ["validate", str(plan_file)])
        assert r.exit_code == 0
        # Long tmp paths may wrap the console line.
        assert "2 task(s), dependency graph OK" in " ".join(r.output.split())

    def test_cyclic_plan(self, cli_runner, cyclic_plan_file):
        r = cli_runner.invoke(main, ["validate", str(cyclic_plan_file)])
        assert r.exit_code == 1


class TestAssignCommand:
    def test_complex_task(self, cli_runner):
        r = cli_runner.invoke(main, ["assign", "complex"])
        assert r.exit_code == 0
        assert "Primary:  claude-opus (claude-sonnet-4-20250514, anthropic)" in r.output
        assert "Fallback: gpt-4o (gpt-4o)" in r.output
        assert "Est. cost: $0.0750 for 5000 tokens" in r.output

    def test_cost_priority_on_trivial(self, cli_runner):
        r = cli_runner.invoke(main, ["assign", "trivial", "--priority", "cost"])
        assert r.exit_code == 0
        assert "Primary:  gpt-4o-mini" in r.output
        assert "Fallback: none" in r.output

    def test_model_restriction(self, cli_runner):
        r = cli_runner.invoke(main, ["assign", "medium", "--model", "claude-sonnet-4"])
        assert r.exit_code == 0
        assert "Primary:  claude-opus" in r.output

    def test_unknown_complexity(self, cli_runner):
        r = cli_runner.invoke(main, ["assign", "galactic"])
        assert r.exit_code == 2


class TestAnalyzeCommand:
    def test_json_output(self, cli_runner):
        r = cli_runner.invoke(main, ["analyze", "Fix typo in README", "--json"])
        assert r.exit_code == 0
        data = json.loads(r.output)
        assert data["complexity"] == 2
        assert data["bucket"] == "trivial"
        assert data["factors"] == ["Simple typo fix"]
        assert data["capabilities"] == ["debugging", "documentation"]
        assert data["recommendedModel"] == "claude-sonnet-4-20250514"
        assert data["confidence"] == 57

    def test_text_output(self, cli_runner):
        r = cli_runner.invoke(main, ["analyze", "Design the security architecture"])
        assert r.exit_code == 0
        assert "Complexity:   9/10 (expert)" in r.output
        assert "Recommended:" in r.output


class TestReviewCommand:
    def test_passing_output(self, cli_runner, tmp_path):
        path = tmp_path / "out.md"
        path.write_text(GOOD_OUTPUT, encoding="utf-8")
        r = cli_runner.invoke(main, ["review", str(path), "--title", "Task A"])
        assert r.exit_code == 0
        assert "PASS score 1.00" in r.output

    def test_failing_output(self, cli_runner, tmp_path):
        path = tmp_path / "out.md"
        path.write_text(BAD_OUTPUT, encoding="utf-8")
        r = cli_runner.invoke(main, ["review", str(path), "--title", "Task A"])
        assert r.exit_code == 1
        assert "FAIL" in r.output
        assert "Use of eval() is a security risk" in r.output

    def test_json_and_threshold(self, cli_runner, tmp_path):
        path = tmp_path / "out.md"
        path.write_text(BAD_OUTPUT, encoding="utf-8")
        r = cli_runner.invoke(main, ["review", str(path), "--title", "Task A", "--threshold", "0.5", "--json"])
        assert r.exit_code == 0
        data = json.loads(r.output)
        assert data["passed"] is True
        assert data["score"] == pytest.approx(0.735)
