"""Per-task model tier assignment based on complexity and preferences."""

from __future__ import annotations

from dataclasses import dataclass

from autodev.tasks.model import (
    TIER_ORDER,
    ModelAssignment,
    ModelTier,
    PlanPreferences,
    TaskComplexity,
)


@dataclass(frozen=True)
class TierConfig:
    tier: ModelTier
    model_id: str
    provider: str
    cost_per_1k_tokens: float
    speed_rating: int  # 1-10
    quality_rating: int  # 1-10
    max_tokens: int
    best_for: tuple[TaskComplexity, ...]


TIER_CONFIGS: tuple[TierConfig, ...] = (
    TierConfig(
        tier=ModelTier.CLAUDE_OPUS,
        model_id="claude-sonnet-4-20250514",
        provider="anthropic",
        cost_per_1k_tokens=0.015,
        speed_rating=7,
        quality_rating=10,
        max_tokens=200_000,
        best_for=(TaskComplexity.EXPERT, TaskComplexity.COMPLEX),
    ),
    TierConfig(
        tier=ModelTier.GPT_4O,
        model_id="gpt-4o",
        provider="openai",
        cost_per_1k_tokens=0.01,
        speed_rating=8,
        quality_rating=9,
        max_tokens=128_000,
        best_for=(TaskComplexity.COMPLEX, TaskComplexity.MEDIUM),
    ),
    TierConfig(
        tier=ModelTier.CLAUDE_SONNET,
        model_id="claude-3-5-sonnet-20241022",
        provider="anthropic",
        cost_per_1k_tokens=0.003,
        speed_rating=9,
        quality_rating=9,
        max_tokens=200_000,
        best_for=(TaskComplexity.MEDIUM, TaskComplexity.SIMPLE),
    ),
    TierConfig(
        tier=ModelTier.GPT_4O_MINI,
        model_id="gpt-4o-mini",
        provider="openai",
        cost_per_1k_tokens=0.00015,
        speed_rating=10,
        quality_rating=7,
        max_tokens=128_000,
        best_for=(TaskComplexity.SIMPLE, TaskComplexity.TRIVIAL),
    ),
)

COMPLEXITY_TO_TIER: dict[TaskComplexity, ModelTier] = {
    TaskComplexity.EXPERT: ModelTier.CLAUDE_OPUS,
    TaskComplexity.COMPLEX: ModelTier.CLAUDE_OPUS,
    TaskComplexity.MEDIUM: ModelTier.CLAUDE_SONNET,
    TaskComplexity.SIMPLE: ModelTier.GPT_4O_MINI,
    TaskComplexity.TRIVIAL: ModelTier.GPT_4O_MINI,
}

# One step down the ordered tier list; the bottom tier has no fallback.
TIER_FALLBACKS: dict[ModelTier, ModelTier | None] = {
    ModelTier.CLAUDE_OPUS: ModelTier.GPT_4O,
    ModelTier.GPT_4O: ModelTier.CLAUDE_SONNET,
    ModelTier.CLAUDE_SONNET: ModelTier.GPT_4O_MINI,
    ModelTier.GPT_4O_MINI: None,
}

# Preference downgrades stay within a provider family where one exists.
TIER_DOWNGRADES: dict[ModelTier, ModelTier] = {
    ModelTier.CLAUDE_OPUS: ModelTier.CLAUDE_SONNET,
    ModelTier.GPT_4O: ModelTier.GPT_4O_MINI,
    ModelTier.CLAUDE_SONNET: ModelTier.GPT_4O_MINI,
    ModelTier.GPT_4O_MINI: ModelTier.GPT_4O_MINI,
}

DEFAULT_TIER = ModelTier.CLAUDE_SONNET


def tiers_from_models(models: tuple[str, ...] | list[str]) -> list[ModelTier]:
    """Map model-name strings to the tiers they allow, first-seen order."""
    tiers: list[ModelTier] = []
    for model in models:
        name = model.lower()
        if "opus" in name or "sonnet-4" in name:
            tiers.append(ModelTier.CLAUDE_OPUS)
        if "gpt-4o" in name and "mini" not in name:
            tiers.append(ModelTier.GPT_4O)
        if "sonnet" in name and "sonnet-4" not in name:
            tiers.append(ModelTier.CLAUDE_SONNET)
        if "mini" in name or "haiku" in name:
            tiers.append(ModelTier.GPT_4O_MINI)
    return list(dict.fromkeys(tiers))


def closest_tier(target: ModelTier, available: list[ModelTier]) -> ModelTier:
    """Search outward from *target* (up first, then down) for an allowed tier."""
    index = TIER_ORDER.index(target)
    for radius in range(len(TIER_ORDER)):
        up = index - radius
        down = index + radius
        if up >= 0 and TIER_ORDER[up] in available:
            return TIER_ORDER[up]
        if down < len(TIER_ORDER) and TIER_ORDER[down] in available:
            return TIER_ORDER[down]
    return available[0] if available else DEFAULT_TIER


class ModelSelector:
    """Assigns model tiers and resolves tiers to concrete models.

    Holds only its tier table; safe to share across executions.
    """

    def __init__(self, configs: tuple[TierConfig, ...] = TIER_CONFIGS) -> None:
        self._configs = {c.tier: c for c in configs}

    def assign(
        self,
        complexity: TaskComplexity | str,
        preferences: PlanPreferences | None = None,
    ) -> ModelAssignment:
        """Return the primary/fallback tier for a task of *complexity*."""
        prefs = preferences or PlanPreferences()
        complexity = TaskComplexity(complexity)

        tier = COMPLEXITY_TO_TIER[complexity]
        if prefs.priority == "speed":
            tier = TIER_DOWNGRADES[tier]
        elif prefs.priority == "cost":
            tier = TIER_DOWNGRADES[TIER_DOWNGRADES[tier]]

        if prefs.models:
            allowed = tiers_from_models(prefs.models)
            if allowed and tier not in allowed:
                tier = closest_tier(tier, allowed)

        return ModelAssignment(
            primary=tier,
            fallback=TIER_FALLBACKS[tier],
            reason=self._reason(complexity, tier, prefs),
        )

    def config(self, tier: ModelTier) -> TierConfig | None:
        return self._configs.get(tier)

    def model_id(self, tier: ModelTier) -> str:
        cfg = self.config(tier)
        if cfg is None:
            return self._configs[DEFAULT_TIER].model_id
        return cfg.model_id

    def provider(self, tier: ModelTier) -> str:
        cfg = self.config(tier)
        return cfg.provider if cfg else "anthropic"

    def estimate_cost(self, tier: ModelTier, tokens: int) -> float:
        """Linear cost estimate for *tokens* on *tier* (USD)."""
        cfg = self.config(tier)
        if cfg is None:
            return 0.0
        return (tokens / 1000) * cfg.cost_per_1k_tokens

    def _reason(
        self,
        complexity: TaskComplexity,
        tier: ModelTier,
        prefs: PlanPreferences,
    ) -> str:
        reasons = [f"Task complexity: {complexity.value}"]
        if prefs.priority == "speed":
            reasons.append("optimized for speed")
        elif prefs.priority == "cost":
            reasons.append("optimized for cost")
        else:
            reasons.append("optimized for quality")
        cfg = self.config(tier)
        if cfg:
            reasons.append(f"using {cfg.model_id}")
        return ", ".join(reasons)
