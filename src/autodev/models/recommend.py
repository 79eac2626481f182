"""Keyword heuristics for complexity, capabilities and model recommendation.

Used upstream of task creation: free text in, a 1-10 complexity score, a
capability set and a recommended model out.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field

from autodev.tasks.model import TaskComplexity


@dataclass(frozen=True)
class ModelCapabilities:
    model_id: str
    provider: str
    capabilities: tuple[str, ...]
    max_tokens: int
    cost_per_1k_input: float
    cost_per_1k_output: float
    speed_rating: int
    quality_rating: int
    best_for: tuple[str, ...]


# Iteration order is the tie-break order for recommend_model.
MODEL_CAPABILITIES: tuple[ModelCapabilities, ...] = (
    ModelCapabilities(
        model_id="claude-sonnet-4-20250514",
        provider="anthropic",
        capabilities=("coding", "analysis", "documentation", "testing", "debugging"),
        max_tokens=200_000,
        cost_per_1k_input=0.003,
        cost_per_1k_output=0.015,
        speed_rating=9,
        quality_rating=9,
        best_for=("complex-coding", "architecture", "code-review"),
    ),
    ModelCapabilities(
        model_id="claude-3-5-haiku-20241022",
        provider="anthropic",
        capabilities=("coding", "simple-tasks", "formatting"),
        max_tokens=200_000,
        cost_per_1k_input=0.00025,
        cost_per_1k_output=0.00125,
        speed_rating=10,
        quality_rating=7,
        best_for=("simple-tasks", "formatting", "quick-fixes"),
    ),
    ModelCapabilities(
        model_id="gpt-4o",
        provider="openai",
        capabilities=("coding", "analysis", "documentation", "research"),
        max_tokens=128_000,
        cost_per_1k_input=0.005,
        cost_per_1k_output=0.015,
        speed_rating=8,
        quality_rating=9,
        best_for=("research", "analysis", "documentation"),
    ),
    ModelCapabilities(
        model_id="gpt-4o-mini",
        provider="openai",
        capabilities=("coding", "simple-tasks", "formatting"),
        max_tokens=128_000,
        cost_per_1k_input=0.00015,
        cost_per_1k_output=0.0006,
        speed_rating=10,
        quality_rating=7,
        best_for=("simple-tasks", "formatting", "quick-edits"),
    ),
)

# (keywords, delta, factor)
_COMPLEXITY_RULES: tuple[tuple[tuple[str, ...], int, str], ...] = (
    (("architecture", "design"), 2, "Architecture/Design work"),
    (("security", "vulnerability"), 2, "Security considerations"),
    (("performance", "optimization"), 1, "Performance optimization"),
    (("database", "migration"), 1, "Database operations"),
    (("test", "testing"), 1, "Testing requirements"),
    (("refactor",), 1, "Refactoring"),
    (("integration", "api"), 1, "Integration work"),
    (("fix typo", "typo"), -3, "Simple typo fix"),
    (("update readme", "documentation"), -2, "Documentation update"),
    (("rename", "move file"), -2, "Simple file operation"),
)

_CAPABILITY_RULES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("coding", ("code", "implement", "function", "class")),
    ("testing", ("test", "spec", "coverage")),
    ("debugging", ("debug", "fix", "error")),
    ("documentation", ("document", "readme", "comment")),
    ("analysis", ("analyze", "review", "audit")),
    ("research", ("research", "investigate", "explore")),
    ("security", ("security", "vulnerability")),
    ("optimization", ("performance", "optimize")),
)


def _text(title: str, description: str) -> str:
    return f"{title} {description}".lower()


def calculate_complexity(title: str, description: str = "") -> tuple[int, list[str]]:
    """Score free text 1-10 and list the factors that moved the score."""
    text = _text(title, description)
    score = 5
    factors: list[str] = []
    for keywords, delta, factor in _COMPLEXITY_RULES:
        if any(k in text for k in keywords):
            score += delta
            factors.append(factor)
    return max(1, min(10, score)), factors


def detect_capabilities(title: str, description: str = "") -> list[str]:
    """Return capability tags implied by the text; ``["coding"]`` if none."""
    text = _text(title, description)
    found = [tag for tag, keywords in _CAPABILITY_RULES if any(k in text for k in keywords)]
    return found or ["coding"]


def complexity_from_score(score: int) -> TaskComplexity:
    """Bucket a 1-10 complexity score into a :class:`TaskComplexity`."""
    if score <= 2:
        return TaskComplexity.TRIVIAL
    if score <= 4:
        return TaskComplexity.SIMPLE
    if score <= 6:
        return TaskComplexity.MEDIUM
    if score <= 8:
        return TaskComplexity.COMPLEX
    return TaskComplexity.EXPERT


@dataclass(frozen=True)
class Recommendation:
    model_id: str
    confidence: int
    score: float
    reasoning: tuple[str, ...] = field(default_factory=tuple)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def score_model(
    model: ModelCapabilities,
    complexity: int,
    capabilities: list[str] | tuple[str, ...],
    *,
    prioritize_cost: bool = False,
    prioritize_quality: bool = False,
) -> float:
    """Score one candidate model for a task profile."""
    matched = [
        c for c in capabilities
        if c in model.capabilities or any(c in b for b in model.best_for)
    ]
    score = 20.0 * len(matched)

    cost_term = 10 - model.cost_per_1k_output * 1000
    if complexity >= 7:
        score += model.quality_rating * 5
    elif complexity <= 3:
        score += model.speed_rating * 3
        score += cost_term * 2
    else:
        score += model.quality_rating * 3
        score += model.speed_rating * 2

    if prioritize_cost:
        score += cost_term * 5
    if prioritize_quality:
        score += model.quality_rating * 5
    return score


def recommend_model(
    complexity: int,
    capabilities: list[str] | tuple[str, ...],
    *,
    prioritize_cost: bool = False,
    prioritize_quality: bool = False,
    candidates: tuple[ModelCapabilities, ...] = MODEL_CAPABILITIES,
) -> Recommendation:
    """Pick the best-scoring candidate; the first maximal one wins ties."""
    best = candidates[0]
    best_score = 0.0
    notes: list[str] = []

    for model in candidates:
        score = score_model(
            model,
            complexity,
            capabilities,
            prioritize_cost=prioritize_cost,
            prioritize_quality=prioritize_quality,
        )
        if complexity >= 7 and model.quality_rating >= 9:
            notes.append("High quality model for complex task")
        elif complexity <= 3 and model.speed_rating >= 9:
            notes.append("Fast model for simple task")
        if score > best_score:
            best_score = score
            best = model

    kind = "high-quality" if best.quality_rating >= 9 else "efficient"
    reasoning = (
        f"Best match for {', '.join(capabilities)}",
        f"Complexity {complexity}/10 suits {kind} model",
        *notes,
    )
    return Recommendation(
        model_id=best.model_id,
        confidence=min(95, _round_half_up(best_score)),
        score=best_score,
        reasoning=reasoning,
    )
