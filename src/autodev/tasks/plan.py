"""Build execution plans from planner JSON and validate their task graph."""

from __future__ import annotations

import json
from dataclasses import replace
from pathlib import Path
from typing import Any

from autodev.errors import PlanValidationError
from autodev.models.recommend import calculate_complexity, complexity_from_score
from autodev.models.selector import ModelSelector
from autodev.tasks.model import (
    ExecutionPlan,
    Feature,
    PhaseInfo,
    PlanPreferences,
    ProjectPhase,
    Task,
    TaskComplexity,
    now_ms,
)

PHASE_WEIGHTS: dict[str, int] = {
    "foundation": 1000,
    "mvp": 750,
    "scale": 500,
    "polish": 250,
}
DEFAULT_PHASE_WEIGHT = 500

DEFAULT_ESTIMATED_MINUTES = 30
DEFAULT_ESTIMATED_TOKENS = 5000
DEFAULT_MAX_RETRIES = 3


def calculate_priority(phase: str, index: int) -> int:
    """Phase-weighted priority; earlier tasks in a phase rank higher."""
    return PHASE_WEIGHTS.get(phase, DEFAULT_PHASE_WEIGHT) - index


def derive_blocked_by(tasks: list[Task] | tuple[Task, ...]) -> dict[str, tuple[str, ...]]:
    """Inverse of ``depends_on``: which tasks wait on each task id."""
    blocked: dict[str, list[str]] = {t.id: [] for t in tasks}
    for t in tasks:
        for dep in t.depends_on:
            if dep in blocked:
                blocked[dep].append(t.id)
    return {tid: tuple(ids) for tid, ids in blocked.items()}


def _phase(raw: Any) -> ProjectPhase:
    try:
        return ProjectPhase(str(raw))
    except ValueError:
        return ProjectPhase.MVP


def _complexity(raw: dict[str, Any]) -> TaskComplexity:
    value = raw.get("complexity")
    if value:
        try:
            return TaskComplexity(str(value))
        except ValueError:
            pass
    score, _ = calculate_complexity(raw.get("title", ""), raw.get("description", ""))
    return complexity_from_score(score)


def preferences_from_dict(raw: dict[str, Any] | None) -> PlanPreferences:
    raw = raw or {}
    return PlanPreferences(
        models=tuple(raw.get("models") or ()),
        priority=raw.get("priority") or "quality",
        max_parallel_tasks=raw.get("maxParallelTasks"),
        auto_approve_threshold=raw.get("autoApproveThreshold"),
    )


def build_tasks(
    raw_tasks: list[dict[str, Any]],
    preferences: PlanPreferences,
    selector: ModelSelector,
    *,
    max_retries: int = DEFAULT_MAX_RETRIES,
) -> list[Task]:
    """Turn planner task dicts into :class:`Task` records with assignments."""
    tasks: list[Task] = []
    for index, raw in enumerate(raw_tasks):
        complexity = _complexity(raw)
        phase = _phase(raw.get("phase", ""))
        assignment = selector.assign(complexity, preferences)
        tokens = int(raw.get("estimatedTokens") or DEFAULT_ESTIMATED_TOKENS)
        tasks.append(
            Task(
                id=str(raw.get("id") or f"task-{index + 1}"),
                title=raw.get("title", ""),
                description=raw.get("description", ""),
                instructions=raw.get("instructions", ""),
                complexity=complexity,
                phase=phase,
                feature_id=raw.get("featureId", ""),
                depends_on=tuple(str(d) for d in raw.get("dependsOn") or () if d),
                model_assignment=assignment,
                estimated_minutes=int(raw.get("estimatedMinutes") or DEFAULT_ESTIMATED_MINUTES),
                estimated_tokens=tokens,
                estimated_cost=selector.estimate_cost(assignment.primary, tokens),
                priority=int(raw.get("priority", calculate_priority(str(raw.get("phase", "")), index))),
                max_retries=int(raw.get("maxRetries", max_retries)),
            )
        )

    blocked = derive_blocked_by(tasks)
    return [replace(t, blocked_by=blocked[t.id]) for t in tasks]


def plan_from_dict(
    data: dict[str, Any],
    *,
    selector: ModelSelector | None = None,
    preferences: PlanPreferences | None = None,
    max_retries: int = DEFAULT_MAX_RETRIES,
) -> ExecutionPlan:
    """Build an :class:`ExecutionPlan` from the planner's JSON document."""
    selector = selector or ModelSelector()
    prefs = preferences or preferences_from_dict(data.get("preferences"))
    tasks = build_tasks(data.get("tasks") or [], prefs, selector, max_retries=max_retries)

    features = tuple(
        Feature(
            id=str(f.get("id", "")),
            name=f.get("name", ""),
            description=f.get("description", ""),
            phase=_phase(f.get("phase", "")),
            task_ids=tuple(t.id for t in tasks if t.feature_id == f.get("id")),
            priority=int(f.get("priority", 0)),
            estimated_minutes=sum(
                t.estimated_minutes for t in tasks if t.feature_id == f.get("id")
            ),
        )
        for f in data.get("features") or []
    )

    raw_phases = data.get("phases") or [
        {"phase": p.value, "name": p.value.title(), "order": i + 1}
        for i, p in enumerate(ProjectPhase)
    ]
    phases = tuple(
        PhaseInfo(
            phase=_phase(p.get("phase", "")),
            name=p.get("name", ""),
            description=p.get("description", ""),
            task_ids=tuple(t.id for t in tasks if t.phase.value == p.get("phase")),
            estimated_minutes=sum(
                t.estimated_minutes for t in tasks if t.phase.value == p.get("phase")
            ),
            order=int(p.get("order", 0)),
        )
        for p in raw_phases
    )

    return ExecutionPlan(
        id=str(data.get("id") or f"plan-{now_ms()}"),
        project_name=data.get("projectName", ""),
        original_idea=data.get("originalIdea", ""),
        tasks=tuple(tasks),
        phases=phases,
        features=features,
        total_estimate_minutes=sum(t.estimated_minutes for t in tasks),
        estimated_cost=sum(t.estimated_cost for t in tasks),
        status=data.get("status", "approved"),
    )


def load_plan(path: Path | str, **kwargs: Any) -> ExecutionPlan:
    """Read a plan JSON file (markdown code fences are tolerated)."""
    raw = Path(path).read_text(encoding="utf-8").strip()
    if raw.startswith("```"):
        raw = raw.split("\n", 1)[1] if "\n" in raw else ""
        raw = raw.rsplit("```", 1)[0]
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise PlanValidationError(f"Plan file {path} is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise PlanValidationError(f"Plan file {path} must contain a JSON object")
    return plan_from_dict(data, **kwargs)


# ── validation ───────────────────────────────────────────────────────


def dangling_dependencies(tasks: list[Task] | tuple[Task, ...]) -> dict[str, list[str]]:
    """Map task id -> dependency ids that name no task in the plan."""
    known = {t.id for t in tasks}
    dangling: dict[str, list[str]] = {}
    for t in tasks:
        missing = [d for d in t.depends_on if d not in known]
        if missing:
            dangling[t.id] = missing
    return dangling


def find_cycle(deps: dict[str, tuple[str, ...]]) -> list[str]:
    """Return one dependency cycle as ``[a, b, ..., a]``, or ``[]``."""
    WHITE, GREY, BLACK = 0, 1, 2
    color = {tid: WHITE for tid in deps}

    for root in deps:
        if color[root] != WHITE:
            continue
        path: list[str] = [root]
        stack = [(root, iter(deps[root]))]
        color[root] = GREY
        while stack:
            node, children = stack[-1]
            advanced = False
            for child in children:
                if child not in color:
                    continue
                if color[child] == GREY:
                    return path[path.index(child):] + [child]
                if color[child] == WHITE:
                    color[child] = GREY
                    path.append(child)
                    stack.append((child, iter(deps[child])))
                    advanced = True
                    break
            if not advanced:
                color[node] = BLACK
                path.pop()
                stack.pop()
    return []


def validate_plan(plan: ExecutionPlan) -> None:
    """Raise :class:`PlanValidationError` for duplicate ids, dangling deps or cycles."""
    seen: set[str] = set()
    for t in plan.tasks:
        if t.id in seen:
            raise PlanValidationError(f"Duplicate task id: {t.id}")
        seen.add(t.id)

    dangling = dangling_dependencies(plan.tasks)
    if dangling:
        detail = "; ".join(f"{tid} -> {', '.join(ids)}" for tid, ids in dangling.items())
        raise PlanValidationError(f"Unknown dependencies: {detail}", dangling=dangling)

    cycle = find_cycle(plan.dependencies)
    if cycle:
        raise PlanValidationError(f"Dependency cycle: {' -> '.join(cycle)}", cycle=cycle)
