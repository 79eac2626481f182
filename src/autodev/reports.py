"""Artifacts directory, per-task JSON reports and the end-of-run summary."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

from rich.markup import escape

from autodev import log
from autodev.config import Config
from autodev.status import ExecutionPhase, ExecutionStatus
from autodev.tasks.model import Task


def init_artifacts_dir(cfg: Config, base: Path | None = None) -> str:
    """Create a timestamped artifacts directory and set it on *cfg*."""
    ts = datetime.now().strftime("%Y%m%d-%H%M%S")
    artifacts = Path(base or ".") / "artifacts" / f"run-{ts}"
    (artifacts / "reports").mkdir(parents=True, exist_ok=True)
    cfg.artifacts_dir = str(artifacts)
    log.info(f"Artifacts: {artifacts}")
    return cfg.artifacts_dir


def save_task_report(
    task: Task,
    artifacts_dir: str | Path,
    *,
    outcome: str = "",
    attempt: int | None = None,
) -> Path:
    """Write ``reports/<task-id>.json`` describing the task's latest attempt."""
    reports_dir = Path(artifacts_dir) / "reports"
    reports_dir.mkdir(parents=True, exist_ok=True)

    report = task.to_dict()
    report["taskId"] = report.pop("id")
    report["outcome"] = outcome or task.status.value
    report["timestamp"] = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    if attempt is not None:
        report["attempt"] = attempt
    if task.result is not None and task.result.error:
        report["errorMessage"] = task.result.error
        report["failureType"] = task.result.failure_type or "internal"

    path = reports_dir / f"{task.id}.json"
    path.write_text(json.dumps(report, indent=2), encoding="utf-8")
    return path


# ── Summary ──────────────────────────────────────────────────────────

_PHASE_HEADLINES = {
    ExecutionPhase.COMPLETED: "[green]Execution complete![/green]",
    ExecutionPhase.FAILED: "[red]Execution finished with failures.[/red]",
    ExecutionPhase.CANCELLED: "[yellow]Execution cancelled.[/yellow]",
}


def show_summary(status: ExecutionStatus) -> None:
    """Print the final run summary."""
    headline = _PHASE_HEADLINES.get(status.phase, f"Execution {status.phase.value}.")

    log.console.print("")
    log.console.print("[bold]============================================[/bold]")
    log.console.print(
        f"{headline} {status.completed_tasks}/{status.total_tasks} task(s) completed "
        f"({status.progress_percentage:.0f}%)."
    )
    log.console.print("[bold]============================================[/bold]")

    if status.failed:
        log.console.print("")
        log.console.print("[bold]>>> Failed[/bold]")
        for t in status.failed:
            line = f"  [red]x[/red] {escape(t.id)}: {escape(t.title[:45])}"
            if t.result and t.result.error:
                line += f" [dim]({escape(t.result.error)})[/dim]"
            log.console.print(line)

    if status.pending_review:
        log.console.print("")
        log.console.print("[bold]>>> Needs human review[/bold]")
        for t in status.pending_review:
            score = f"{t.review.score:.2f}" if t.review else "?"
            log.console.print(f"  [yellow]?[/yellow] {escape(t.id)}: {escape(t.title[:45])} (score {score})")

    if status.queued:
        log.console.print("")
        log.console.print(f"[dim]{status.queued_tasks} task(s) never started.[/dim]")

    log.console.print("")
    log.console.print("[bold]>>> Cost Summary[/bold]")
    log.console.print(f"Total tokens:  {status.total_tokens_used}")
    log.console.print(f"Est. cost:     ${status.total_cost:.4f}")
    log.console.print(f"Agent time:    {status.total_duration / 1000:.1f}s")
    log.console.print("[bold]============================================[/bold]")
