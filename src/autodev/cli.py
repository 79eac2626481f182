"""autodev CLI: run an execution plan and inspect the planning heuristics.

Installed as the ``autodev`` console_script.
"""

from __future__ import annotations

import json
import signal
import sys
from pathlib import Path

import click
from rich.markup import escape

from autodev import __version__
from autodev.config import Config, DEFAULT_ENGINES
from autodev.tasks.model import TaskComplexity

CONTEXT_SETTINGS = dict(help_option_names=["-h", "--help"])


def _resolve_engine(engine_flags: tuple[str, ...]) -> str:
    selected = list(dict.fromkeys(engine_flags))
    if len(selected) > 1:
        raise click.UsageError("Conflicting engine flags selected. Use only one of --claude/--opencode.")
    return selected[0] if selected else DEFAULT_ENGINES[0]


@click.group(context_settings=CONTEXT_SETTINGS)
@click.option("-v", "--verbose", is_flag=True, help="Show debug output")
@click.option("-q", "--quiet", is_flag=True, help="Only print warnings and errors")
@click.version_option(__version__, prog_name="autodev")
@click.pass_context
def main(ctx: click.Context, verbose: bool, quiet: bool) -> None:
    """autodev: run AI agents over a planned task graph.

    \b
    EXAMPLES:
      autodev run plan.json                      # Run with Claude Code
      autodev run plan.json --opencode --max-parallel 5
      autodev run plan.json --dry-run            # Show tiers and order only
      autodev assign complex --priority cost     # Inspect tier assignment
      autodev analyze "Refactor the auth API"    # Complexity + model advice
      autodev review output.md --title "Add login form"
    """
    from autodev import log as alog

    alog.set_verbose(verbose)
    alog.set_quiet(quiet)
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose


# ── Subcommand: run ──────────────────────────────────────────────


@main.command()
@click.argument("plan_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--claude", "engine_flags", flag_value="claude", multiple=True, help="Use Claude Code (default)")
@click.option("--opencode", "engine_flags", flag_value="opencode", multiple=True, help="Use OpenCode")
@click.option("--opencode-model", default="", help="Pin every task to this OpenCode model")
@click.option("--max-parallel", type=int, default=None, help="Max concurrent agents [3]")
@click.option("--max-retries", type=int, default=None, help="Attempts per task before escalation [3]")
@click.option("--no-retry", is_flag=True, help="Fail tasks on the first executor error")
@click.option("--threshold", type=float, default=None, help="Auto-review pass score [0.85]")
@click.option("--timeout", type=float, default=None, help="Seconds per agent call (0 = no limit)")
@click.option("--retry-delay", type=float, default=None, help="Seconds before a retried task is eligible")
@click.option("--validate", "validate", is_flag=True, help="Reject cyclic or dangling plans up front")
@click.option("--events", "events_file", type=click.Path(dir_okay=False, path_type=Path), default=None,
              help="Append status events as JSON lines to this file")
@click.option("--artifacts", is_flag=True, help="Write per-task JSON reports under artifacts/")
@click.option("--dry-run", is_flag=True, help="Show the plan without executing")
@click.pass_context
def run(
    ctx: click.Context,
    plan_file: Path,
    engine_flags: tuple[str, ...],
    opencode_model: str,
    max_parallel: int | None,
    max_retries: int | None,
    no_retry: bool,
    threshold: float | None,
    timeout: float | None,
    retry_delay: float | None,
    validate: bool,
    events_file: Path | None,
    artifacts: bool,
    dry_run: bool,
) -> None:
    """Execute the plan in PLAN_FILE with bounded parallelism."""
    from autodev import log as alog
    from autodev.broadcast import JsonLinesChannel, StatusBroadcaster
    from autodev.engines.registry import get_engine
    from autodev.errors import OrchestratorError
    from autodev.executor import EngineExecutor
    from autodev.orchestrator import ExecutionOrchestrator
    from autodev.reports import init_artifacts_dir, show_summary
    from autodev.status import ExecutionPhase
    from autodev.tasks.plan import load_plan

    try:
        cfg = Config(
            max_parallel=max_parallel,
            max_retries=max_retries,
            retry_on_failure=False if no_retry else None,
            retry_delay=retry_delay,
            task_timeout=timeout,
            review_threshold=threshold,
            validate_plan=validate,
            engine=_resolve_engine(engine_flags),
            opencode_model=opencode_model,
            verbose=ctx.obj.get("verbose", False),
        )
    except ValueError as e:
        raise click.UsageError(str(e)) from e

    try:
        plan = load_plan(plan_file, max_retries=cfg.max_retries)
    except OrchestratorError as e:
        alog.error(escape(str(e)))
        sys.exit(1)

    if dry_run:
        _show_dry_run(plan)
        sys.exit(0)

    # ── Pre-flight: engine check ─────────────────────────────────
    engine = get_engine(cfg.engine, opencode_model=cfg.opencode_model)
    err = engine.check_available()
    if err:
        alog.error(err)
        sys.exit(1)

    broadcaster = StatusBroadcaster()
    if events_file is not None:
        broadcaster.set_channel(JsonLinesChannel(events_file))
    if artifacts:
        init_artifacts_dir(cfg)

    orch = ExecutionOrchestrator(
        cfg,
        EngineExecutor(engine, timeout=cfg.task_timeout or None),
        broadcaster=broadcaster,
    )

    _show_banner(cfg, plan)
    previous = _install_signal_handlers(orch)
    try:
        status = orch.execute(plan)
    except OrchestratorError as e:
        alog.error(escape(str(e)))
        sys.exit(1)
    finally:
        _restore_signal_handlers(previous)

    show_summary(status)
    if status.phase != ExecutionPhase.COMPLETED:
        sys.exit(1)


def _install_signal_handlers(orch: object) -> dict[int, object]:
    """Map Ctrl-C (and SIGTERM) to a cancel of the running execution."""
    from autodev import log as alog
    from autodev.orchestrator import ExecutionOrchestrator

    assert isinstance(orch, ExecutionOrchestrator)
    interrupts = 0

    def on_signal(signum: int, _frame: object) -> None:
        nonlocal interrupts
        interrupts += 1
        if interrupts == 1:
            alog.warn(f"Interrupt received (signal {signum}). Cancelling agents...")
            orch.cancel()
        else:
            raise KeyboardInterrupt

    originals: dict[int, object] = {}
    signals_to_handle = [signal.SIGINT]
    if hasattr(signal, "SIGTERM"):
        signals_to_handle.append(signal.SIGTERM)
    for sig in signals_to_handle:
        try:
            originals[sig] = signal.getsignal(sig)
            signal.signal(sig, on_signal)
        except (OSError, RuntimeError, ValueError):
            continue
    return originals


def _restore_signal_handlers(originals: dict[int, object]) -> None:
    for sig, handler in originals.items():
        try:
            signal.signal(sig, handler)  # type: ignore[arg-type]
        except (OSError, RuntimeError, ValueError):
            continue


def _show_dry_run(plan: object) -> None:
    from autodev import log as alog
    from autodev.graph import TaskGraph
    from autodev.tasks.model import ExecutionPlan

    assert isinstance(plan, ExecutionPlan)

    alog.console.print("")
    alog.console.print("[bold]============================================[/bold]")
    alog.console.print("[bold]autodev[/bold] (dry run, no execution)")
    if plan.project_name:
        alog.console.print(f"Project: [cyan]{escape(plan.project_name)}[/cyan]")

    if not plan.tasks:
        alog.success("Plan has no tasks.")
        alog.console.print("[bold]============================================[/bold]")
        return

    alog.info(f"Tasks: {len(plan.tasks)} (est. {plan.total_estimate_minutes} min, ${plan.estimated_cost:.4f})")
    for t in plan.tasks:
        tier = t.model_assignment.primary.value if t.model_assignment else "?"
        deps = f" [dim]after {', '.join(t.depends_on)}[/dim]" if t.depends_on else ""
        alog.console.print(f"  - \\[{escape(t.id)}] {escape(t.title)} [yellow]{tier}[/yellow]{deps}")

    graph = TaskGraph()
    graph.seed(plan.tasks)
    ready = graph.ready_tasks(set())
    if ready:
        alog.console.print(f"First wave: {escape(', '.join(t.id for t in ready))}")
    for tid, missing in graph.unresolved_dependencies().items():
        alog.warn(f"{escape(tid)} depends on unknown task(s): {escape(', '.join(missing))}")
    cycle = graph.find_cycle()
    if cycle:
        alog.warn(f"Dependency cycle: {escape(' -> '.join(cycle))}")

    alog.console.print("[bold]============================================[/bold]")


def _show_banner(cfg: Config, plan: object) -> None:
    from autodev import log as alog
    from autodev.tasks.model import ExecutionPlan

    assert isinstance(plan, ExecutionPlan)

    engine_display = {
        "opencode": "[cyan]OpenCode[/cyan]",
        "claude": "[magenta]Claude Code[/magenta]",
    }.get(cfg.engine, cfg.engine)

    alog.console.print("[bold]============================================[/bold]")
    alog.console.print("[bold]autodev[/bold] running until the plan is complete")
    alog.console.print(f"Engine: {engine_display}")
    if plan.project_name:
        alog.console.print(f"Project: [cyan]{escape(plan.project_name)}[/cyan] ({len(plan.tasks)} tasks)")

    parts = [f"parallel:{cfg.max_parallel}", f"retries:{cfg.max_retries}", f"threshold:{cfg.review_threshold}"]
    if not cfg.retry_on_failure:
        parts.append("no-retry")
    if cfg.task_timeout:
        parts.append(f"timeout:{cfg.task_timeout:g}s")
    if cfg.validate_plan:
        parts.append("validate")
    alog.console.print(f"Mode: [yellow]{' '.join(parts)}[/yellow]")
    alog.console.print("[bold]============================================[/bold]")


# ── Subcommand: validate ─────────────────────────────────────────


@main.command()
@click.argument("plan_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def validate(plan_file: Path) -> None:
    """Check PLAN_FILE for duplicate ids, unknown dependencies and cycles."""
    from autodev import log as alog
    from autodev.errors import OrchestratorError
    from autodev.tasks.plan import load_plan, validate_plan

    try:
        plan = load_plan(plan_file)
        validate_plan(plan)
    except OrchestratorError as e:
        alog.error(escape(str(e)))
        sys.exit(1)
    alog.success(f"{escape(str(plan_file))}: {len(plan.tasks)} task(s), dependency graph OK")


# ── Subcommand: assign ───────────────────────────────────────────


@main.command()
@click.argument("complexity", type=click.Choice([c.value for c in TaskComplexity]))
@click.option("--priority", type=click.Choice(["quality", "speed", "cost"]), default="quality",
              help="Optimization preference")
@click.option("--model", "models", multiple=True, help="Allowed model name (repeatable)")
@click.option("--tokens", type=int, default=5000, help="Token estimate for the cost line")
def assign(complexity: str, priority: str, models: tuple[str, ...], tokens: int) -> None:
    """Show the model tier assigned to a task of COMPLEXITY."""
    from autodev import log as alog
    from autodev.models.selector import ModelSelector
    from autodev.tasks.model import PlanPreferences

    selector = ModelSelector()
    assignment = selector.assign(complexity, PlanPreferences(models=models, priority=priority))
    primary = assignment.primary

    alog.console.print(f"Primary:  [cyan]{primary.value}[/cyan] ({selector.model_id(primary)}, {selector.provider(primary)})")
    if assignment.fallback is not None:
        fallback = assignment.fallback
        alog.console.print(f"Fallback: {fallback.value} ({selector.model_id(fallback)})")
    else:
        alog.console.print("Fallback: none")
    alog.console.print(f"Est. cost: ${selector.estimate_cost(primary, tokens):.4f} for {tokens} tokens")
    alog.console.print(f"[dim]{escape(assignment.reason)}[/dim]")


# ── Subcommand: analyze ──────────────────────────────────────────


@main.command()
@click.argument("title")
@click.option("--description", "-d", default="", help="Longer task description")
@click.option("--prefer-cost", is_flag=True, help="Favor cheaper models")
@click.option("--prefer-quality", is_flag=True, help="Favor higher-quality models")
@click.option("--json", "as_json", is_flag=True, help="Print JSON instead of text")
def analyze(title: str, description: str, prefer_cost: bool, prefer_quality: bool, as_json: bool) -> None:
    """Estimate complexity and recommend a model for a task TITLE."""
    from autodev import log as alog
    from autodev.models.recommend import (
        calculate_complexity,
        complexity_from_score,
        detect_capabilities,
        recommend_model,
    )

    score, factors = calculate_complexity(title, description)
    capabilities = detect_capabilities(title, description)
    rec = recommend_model(
        score,
        capabilities,
        prioritize_cost=prefer_cost,
        prioritize_quality=prefer_quality,
    )

    if as_json:
        click.echo(json.dumps({
            "complexity": score,
            "bucket": complexity_from_score(score).value,
            "factors": factors,
            "capabilities": capabilities,
            "recommendedModel": rec.model_id,
            "confidence": rec.confidence,
            "reasoning": list(rec.reasoning),
        }, indent=2))
        return

    alog.console.print(f"Complexity:   {score}/10 ({complexity_from_score(score).value})")
    if factors:
        alog.console.print(f"Factors:      {', '.join(factors)}")
    alog.console.print(f"Capabilities: {', '.join(capabilities)}")
    alog.console.print(f"Recommended:  [cyan]{rec.model_id}[/cyan] (confidence {rec.confidence})")
    for reason in rec.reasoning:
        alog.console.print(f"  [dim]- {escape(reason)}[/dim]")


# ── Subcommand: review ───────────────────────────────────────────


@main.command()
@click.argument("output_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--title", "-t", default="", help="Task title the output should address")
@click.option("--threshold", type=float, default=None, help="Pass score [0.85]")
@click.option("--json", "as_json", is_flag=True, help="Print JSON instead of text")
def review(output_file: Path, title: str, threshold: float | None, as_json: bool) -> None:
    """Auto-review an agent OUTPUT_FILE; exits 1 when the review fails."""
    from autodev import log as alog
    from autodev.review import AutoReviewer
    from autodev.tasks.model import Task, TaskResult

    try:
        cfg = Config(review_threshold=threshold)
    except ValueError as e:
        raise click.UsageError(str(e)) from e

    text = output_file.read_text(encoding="utf-8", errors="replace")
    task = Task(id=output_file.stem, title=title or output_file.stem)
    result = AutoReviewer(threshold=cfg.review_threshold).review(
        task, TaskResult(success=True, output=text)
    )

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
    else:
        verdict = "[green]PASS[/green]" if result.passed else "[red]FAIL[/red]"
        alog.console.print(f"{verdict} score {result.score:.2f} (threshold {cfg.review_threshold})")
        colors = {"error": "red", "warning": "yellow", "info": "blue"}
        for issue in result.issues:
            color = colors[issue.severity.value]
            alog.console.print(f"  [{color}]{issue.severity.value}[/{color}] {escape(issue.message)}")
        for suggestion in result.suggestions:
            alog.console.print(f"  [dim]- {escape(suggestion)}[/dim]")

    if not result.passed:
        sys.exit(1)


if __name__ == "__main__":
    main()
