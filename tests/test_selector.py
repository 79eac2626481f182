"""Tests for model tier assignment."""

from __future__ import annotations

import pytest

from autodev.models.selector import (
    DEFAULT_TIER,
    TIER_CONFIGS,
    ModelSelector,
    closest_tier,
    tiers_from_models,
)
from autodev.tasks.model import ModelTier, PlanPreferences, TaskComplexity


@pytest.fixture
def selector() -> ModelSelector:
    return ModelSelector()


class TestBaselineAssignment:
    """Complexity alone picks the tier; the fallback is one step down."""

    @pytest.mark.parametrize(
        ("complexity", "primary", "fallback"),
        [
            (TaskComplexity.EXPERT, ModelTier.CLAUDE_OPUS, ModelTier.GPT_4O),
            (TaskComplexity.COMPLEX, ModelTier.CLAUDE_OPUS, ModelTier.GPT_4O),
            (TaskComplexity.MEDIUM, ModelTier.CLAUDE_SONNET, ModelTier.GPT_4O_MINI),
            (TaskComplexity.SIMPLE, ModelTier.GPT_4O_MINI, None),
            (TaskComplexity.TRIVIAL, ModelTier.GPT_4O_MINI, None),
        ],
    )
    def test_tier_by_complexity(self, selector, complexity, primary, fallback):
        assignment = selector.assign(complexity)
        assert assignment.primary == primary
        assert assignment.fallback == fallback

    def test_accepts_string_complexity(self, selector):
        assert selector.assign("complex").primary == ModelTier.CLAUDE_OPUS

    def test_unknown_complexity_raises(self, selector):
        with pytest.raises(ValueError):
            selector.assign("galactic")

    def test_reason_mentions_complexity_priority_and_model(self, selector):
        reason = selector.assign(TaskComplexity.MEDIUM).reason
        assert "Task complexity: medium" in reason
        assert "optimized for quality" in reason
        assert "claude-3-5-sonnet-20241022" in reason

    def test_fallback_never_equals_primary(self, selector):
        for complexity in TaskComplexity:
            for priority in ("speed", "quality", "cost"):
                a = selector.assign(complexity, PlanPreferences(priority=priority))
                assert a.fallback != a.primary


class TestPreferences:
    """Speed and cost priorities downgrade; model lists restrict."""

    def test_speed_downgrades_once(self, selector):
        a = selector.assign(TaskComplexity.COMPLEX, PlanPreferences(priority="speed"))
        assert a.primary == ModelTier.CLAUDE_SONNET
        assert "optimized for speed" in a.reason

    def test_cost_downgrades_twice(self, selector):
        a = selector.assign(TaskComplexity.COMPLEX, PlanPreferences(priority="cost"))
        assert a.primary == ModelTier.GPT_4O_MINI

    def test_cost_on_trivial_saturates_at_bottom(self, selector):
        a = selector.assign(TaskComplexity.TRIVIAL, PlanPreferences(priority="cost"))
        assert a.primary == ModelTier.GPT_4O_MINI
        assert a.fallback is None

    def test_models_restrict_to_closest_allowed_tier(self, selector):
        prefs = PlanPreferences(models=("claude-sonnet-4",))
        assert selector.assign(TaskComplexity.MEDIUM, prefs).primary == ModelTier.CLAUDE_OPUS

    def test_allowed_tier_kept(self, selector):
        prefs = PlanPreferences(models=("gpt-4o-mini", "claude-3-5-sonnet"))
        assert selector.assign(TaskComplexity.MEDIUM, prefs).primary == ModelTier.CLAUDE_SONNET

    def test_unrecognized_models_do_not_restrict(self, selector):
        prefs = PlanPreferences(models=("llama-3",))
        assert selector.assign(TaskComplexity.MEDIUM, prefs).primary == ModelTier.CLAUDE_SONNET


class TestTierHelpers:
    def test_tiers_from_models(self):
        assert tiers_from_models(["claude-opus", "gpt-4o", "gpt-4o-mini", "haiku"]) == [
            ModelTier.CLAUDE_OPUS,
            ModelTier.GPT_4O,
            ModelTier.GPT_4O_MINI,
        ]

    def test_closest_prefers_higher_quality(self):
        assert closest_tier(ModelTier.GPT_4O, [ModelTier.CLAUDE_OPUS, ModelTier.GPT_4O_MINI]) == ModelTier.CLAUDE_OPUS

    def test_closest_searches_down(self):
        assert closest_tier(ModelTier.CLAUDE_SONNET, [ModelTier.GPT_4O_MINI]) == ModelTier.GPT_4O_MINI

    def test_closest_with_nothing_available(self):
        assert closest_tier(ModelTier.GPT_4O, []) == DEFAULT_TIER


class TestTierResolution:
    """Tier to concrete model, provider and cost."""

    def test_model_and_provider(self, selector):
        assert selector.model_id(ModelTier.CLAUDE_OPUS) == "claude-sonnet-4-20250514"
        assert selector.provider(ModelTier.CLAUDE_OPUS) == "anthropic"
        assert selector.model_id(ModelTier.GPT_4O_MINI) == "gpt-4o-mini"
        assert selector.provider(ModelTier.GPT_4O) == "openai"

    def test_estimate_cost_is_linear(self, selector):
        assert selector.estimate_cost(ModelTier.CLAUDE_SONNET, 2000) == pytest.approx(0.006)
        assert selector.estimate_cost(ModelTier.GPT_4O, 0) == 0.0

    def test_missing_tier_config(self):
        partial = ModelSelector(configs=TIER_CONFIGS[:1])
        assert partial.config(ModelTier.GPT_4O_MINI) is None
        assert partial.estimate_cost(ModelTier.GPT_4O_MINI, 1000) == 0.0
        assert partial.provider(ModelTier.GPT_4O_MINI) == "anthropic"
