"""Tests for complexity scoring, capability detection and model recommendation."""

from __future__ import annotations

import pytest

from autodev.models.recommend import (
    MODEL_CAPABILITIES,
    calculate_complexity,
    complexity_from_score,
    detect_capabilities,
    recommend_model,
    score_model,
)
from autodev.tasks.model import TaskComplexity


class TestCalculateComplexity:
    def test_neutral_text_scores_five(self):
        assert calculate_complexity("Add a button") == (5, [])

    def test_typo_fix_is_trivial(self):
        score, factors = calculate_complexity("Fix typo in README")
        assert score == 2
        assert factors == ["Simple typo fix"]
        assert complexity_from_score(score) == TaskComplexity.TRIVIAL

    def test_security_architecture(self):
        score, factors = calculate_complexity("Design the security architecture")
        assert score == 9
        assert "Architecture/Design work" in factors
        assert "Security considerations" in factors

    def test_description_counts(self):
        score, _ = calculate_complexity("Task", "requires a database migration")
        assert score == 6

    def test_clamped_high(self):
        text = "architecture security performance database test refactor api"
        assert calculate_complexity(text)[0] == 10

    def test_clamped_low(self):
        assert calculate_complexity("fix typo, rename, update readme")[0] == 1


class TestComplexityBuckets:
    @pytest.mark.parametrize(
        ("score", "expected"),
        [
            (1, TaskComplexity.TRIVIAL),
            (2, TaskComplexity.TRIVIAL),
            (3, TaskComplexity.SIMPLE),
            (4, TaskComplexity.SIMPLE),
            (5, TaskComplexity.MEDIUM),
            (6, TaskComplexity.MEDIUM),
            (7, TaskComplexity.COMPLEX),
            (8, TaskComplexity.COMPLEX),
            (9, TaskComplexity.EXPERT),
            (10, TaskComplexity.EXPERT),
        ],
    )
    def test_bucket(self, score, expected):
        assert complexity_from_score(score) == expected


class TestDetectCapabilities:
    def test_default_is_coding(self):
        assert detect_capabilities("Something vague") == ["coding"]

    def test_multiple_tags_in_rule_order(self):
        caps = detect_capabilities("Implement class and add test coverage", "debug the error")
        assert caps == ["coding", "testing", "debugging"]

    def test_security_and_optimization(self):
        caps = detect_capabilities("Audit security", "optimize performance")
        assert caps == ["analysis", "security", "optimization"]


class TestRecommendModel:
    def test_medium_complexity_prefers_sonnet(self):
        rec = recommend_model(5, ["coding"])
        assert rec.model_id == "claude-sonnet-4-20250514"
        assert rec.confidence == 65

    def test_simple_task_prefers_cheapest(self):
        rec = recommend_model(2, ["coding"])
        assert rec.model_id == "gpt-4o-mini"
        assert rec.score == pytest.approx(68.8)
        assert rec.confidence == 69
        assert "Fast model for simple task" in rec.reasoning

    def test_tie_goes_to_first_candidate(self):
        rec = recommend_model(8, ["coding"])
        assert rec.model_id == "claude-sonnet-4-20250514"
        assert rec.confidence == 65
        assert "High quality model for complex task" in rec.reasoning

    def test_confidence_capped(self):
        rec = recommend_model(9, ["coding", "analysis", "documentation"], prioritize_quality=True)
        assert rec.confidence == 95

    def test_reasoning_lists_capabilities(self):
        rec = recommend_model(5, ["coding", "testing"])
        assert rec.reasoning[0] == "Best match for coding, testing"
        assert rec.reasoning[1] == "Complexity 5/10 suits high-quality model"

    def test_best_for_substring_counts_as_match(self):
        sonnet = MODEL_CAPABILITIES[0]
        # "review" only appears inside best_for's "code-review".
        assert score_model(sonnet, 5, ["review"]) == score_model(sonnet, 5, ["coding"])
        assert score_model(sonnet, 5, ["research"]) == score_model(sonnet, 5, ["coding"]) - 20

    def test_cost_priority_shifts_choice(self):
        rec = recommend_model(5, ["coding"], prioritize_cost=True)
        assert rec.model_id == "gpt-4o-mini"
