"""Tests for ValueScorer.

Tests cover:
- Heartbeat work always routes to the cheapest tier
- Security-sensitive work gets the mid-capability floor in every budget state
- Paused and reduced budget rules
- Capability ceilings in the normal state
- Same-class preference for the newest revision
- Keyword complexity estimate
"""

from __future__ import annotations

import pytest

from cascade_router.model_router.types import (
    BudgetState,
    TaskCategory,
    TaskComplexity,
    ValueScoreInput,
)
from cascade_router.model_router.value_scorer import ValueScorer


@pytest.fixture
def scorer(registry, tables) -> ValueScorer:
    return ValueScorer(registry, tables.value_scorer)


def _input(
    complexity: TaskComplexity = TaskComplexity.STANDARD,
    *,
    stakes: float = 5.0,
    quality: float = 5.0,
    pressure: float = 2.0,
    history: float = 5.0,
    category: TaskCategory = TaskCategory.QUERY,
    security: bool = False,
) -> ValueScoreInput:
    return ValueScoreInput(
        complexity=complexity,
        stakes=stakes,
        quality_priority=quality,
        budget_pressure=pressure,
        historical_performance=history,
        security_sensitive=security,
        category=category,
    )


MAXED = {"stakes": 10.0, "quality": 10.0, "pressure": 0.0, "history": 10.0}


# ------------------------------------------------------------------ #
# Hard rules
# ------------------------------------------------------------------ #


@pytest.mark.parametrize("state", list(BudgetState))
def test_heartbeat_routes_to_cheapest(scorer, state):
    result = scorer.score(
        _input(TaskComplexity.CRITICAL, category=TaskCategory.HEARTBEAT, **MAXED),
        state,
    )

    assert result.recommended_tier == "claude-haiku-3"
    assert result.is_floor is False
    assert "Heartbeat task" in result.reasoning


@pytest.mark.parametrize("state", list(BudgetState))
def test_security_sensitive_gets_mid_floor(scorer, state):
    result = scorer.score(
        _input(TaskComplexity.TRIVIAL, stakes=0, quality=0, pressure=10, history=0, security=True),
        state,
    )

    assert result.recommended_tier == "claude-sonnet-4.5"
    assert result.is_floor is True
    assert result.applied_rules == ("security_floor",)


@pytest.mark.parametrize("state", list(BudgetState))
def test_heartbeat_beats_security(scorer, state):
    result = scorer.score(
        _input(TaskComplexity.TRIVIAL, category=TaskCategory.HEARTBEAT, security=True, **MAXED),
        state,
    )

    assert result.recommended_tier == "claude-haiku-3"
    assert result.is_floor is False
    assert result.applied_rules == ("heartbeat_cheapest",)


def test_paused_high_value_keeps_floor(scorer):
    result = scorer.score(_input(TaskComplexity.CRITICAL, **MAXED), BudgetState.PAUSE)

    assert result.score >= 80
    assert result.recommended_tier == "claude-sonnet-4.5"
    assert result.is_floor is True


def test_paused_low_value_goes_cheapest(scorer):
    result = scorer.score(_input(TaskComplexity.SIMPLE, pressure=10), BudgetState.PAUSE)

    assert result.score < 80
    assert result.recommended_tier == "claude-haiku-3"
    assert "Budget paused" in result.reasoning


def test_reduced_high_value_gets_mid_tier(scorer):
    result = scorer.score(_input(TaskComplexity.CRITICAL, **MAXED), BudgetState.REDUCE)

    assert result.recommended_tier == "claude-sonnet-4.5"
    assert result.is_floor is False


def test_reduced_low_value_gets_low_cost_tier(scorer):
    result = scorer.score(
        _input(TaskComplexity.TRIVIAL, stakes=1, quality=2, pressure=10),
        BudgetState.REDUCE,
    )

    assert result.score == pytest.approx(9.0)
    assert result.recommended_tier == "claude-haiku-4.5"
    assert "Budget reduced" in result.reasoning


# ------------------------------------------------------------------ #
# Capability ceilings
# ------------------------------------------------------------------ #


@pytest.mark.parametrize("category", [TaskCategory.PLANNING, TaskCategory.ANALYSIS])
def test_top_score_reaches_top_tier(scorer, category):
    result = scorer.score(_input(TaskComplexity.CRITICAL, category=category, **MAXED), BudgetState.NORMAL)

    assert result.score == pytest.approx(100.0)
    assert result.recommended_tier == "claude-opus-4.6"


@pytest.mark.parametrize("category", [TaskCategory.QUERY, TaskCategory.CODE_GENERATION, TaskCategory.CHAT])
def test_top_tier_reserved_for_planning_and_analysis(scorer, category):
    result = scorer.score(_input(TaskComplexity.CRITICAL, category=category, **MAXED), BudgetState.NORMAL)

    assert result.score == pytest.approx(100.0)
    assert result.recommended_tier == "claude-sonnet-4.5"
    assert result.applied_rules == ("capability_ceiling_8",)


def test_high_score_capped_at_mid_class(scorer):
    result = scorer.score(
        _input(TaskComplexity.COMPLEX, stakes=7, quality=8, pressure=2),
        BudgetState.NORMAL,
    )

    assert result.score == pytest.approx(76.0)
    assert result.recommended_tier == "claude-sonnet-4.5"


@pytest.mark.parametrize(
    ("category", "expected"),
    [
        (TaskCategory.CODE_GENERATION, "claude-sonnet-4.5"),
        (TaskCategory.PLANNING, "claude-sonnet-4.5"),
        (TaskCategory.QUERY, "claude-haiku-4.5"),
        (TaskCategory.CHAT, "claude-haiku-4.5"),
    ],
)
def test_medium_score_ceiling_depends_on_category(scorer, category, expected):
    result = scorer.score(_input(quality=6, category=category), BudgetState.NORMAL)

    assert result.score == pytest.approx(60.0)
    assert result.recommended_tier == expected


def test_low_score_stays_cheap_class(scorer):
    result = scorer.score(_input(TaskComplexity.TRIVIAL, stakes=1, quality=2), BudgetState.NORMAL)

    assert result.score < 50
    assert result.recommended_tier == "claude-haiku-4.5"


# ------------------------------------------------------------------ #
# Weights and bounds
# ------------------------------------------------------------------ #


@pytest.mark.parametrize("state", list(BudgetState))
def test_weights_sum_to_one(scorer, state):
    assert scorer.weights_for(state).total() == pytest.approx(1.0)


def test_weights_follow_budget_state(scorer):
    normal = scorer.weights_for("normal")
    reduce = scorer.weights_for(BudgetState.REDUCE)
    pause = scorer.weights_for(BudgetState.PAUSE)

    assert normal.quality > reduce.quality > pause.quality
    assert normal.cost < reduce.cost < pause.cost


def test_result_reports_applied_weights(scorer):
    result = scorer.score(_input(), BudgetState.REDUCE)

    assert result.weights == scorer.weights_for(BudgetState.REDUCE)


@pytest.mark.parametrize("state", list(BudgetState))
@pytest.mark.parametrize("complexity", list(TaskComplexity))
def test_score_within_bounds(scorer, state, complexity):
    for kwargs in (MAXED, {"stakes": 0.0, "quality": 0.0, "pressure": 10.0, "history": 0.0}):
        result = scorer.score(_input(complexity, **kwargs), state)
        assert 0.0 <= result.score <= 100.0


def test_reasoning_is_auditable(scorer):
    result = scorer.score(_input(TaskComplexity.COMPLEX, stakes=7), BudgetState.NORMAL)

    assert "Complexity: complex" in result.reasoning
    assert "Stakes: 7/10" in result.reasoning
    assert "Final score:" in result.reasoning
    assert result.recommended_tier in result.reasoning


def test_out_of_range_input_rejected():
    with pytest.raises(ValueError):
        _input(stakes=11)


# ------------------------------------------------------------------ #
# Tier ladder
# ------------------------------------------------------------------ #


def test_mid_floor_prefers_newest_revision(scorer):
    assert scorer.mid_floor_tier() == "claude-sonnet-4.5"


def test_mid_floor_falls_back_to_older_revision(scorer, registry):
    registry.set_availability("claude-sonnet-4.5", False)

    assert scorer.mid_floor_tier() == "claude-sonnet-4"


def test_mid_floor_without_eligible_tier_uses_best_available(scorer, registry):
    for tier in ("claude-sonnet-4", "claude-sonnet-4.5", "claude-opus-4.5", "claude-opus-4.6"):
        registry.set_availability(tier, False)

    assert scorer.mid_floor_tier() == "claude-haiku-4.5"


def test_cheapest_tier_skips_unavailable(scorer, registry):
    registry.set_availability("claude-haiku-3", False)

    assert scorer.cheapest_tier() == "claude-haiku-4.5"


def test_newly_enabled_revision_becomes_ceiling_pick(scorer, registry):
    registry.set_availability("claude-sonnet-5", True)

    result = scorer.score(
        _input(TaskComplexity.CRITICAL, category=TaskCategory.PLANNING, **MAXED),
        BudgetState.NORMAL,
    )

    assert result.recommended_tier == "claude-opus-4.6"
    assert scorer.mid_floor_tier() == "claude-sonnet-4.5"


# ------------------------------------------------------------------ #
# Keyword complexity estimate
# ------------------------------------------------------------------ #


@pytest.mark.parametrize(
    ("content", "category", "expected"),
    [
        ("Explain the quantum chromodynamics of the universe", TaskCategory.HEARTBEAT, TaskComplexity.TRIVIAL),
        ("Refactor the billing class", TaskCategory.PARSE_COMMAND, TaskComplexity.TRIVIAL),
        ("hello there", TaskCategory.QUERY, TaskComplexity.TRIVIAL),
        ("first fetch the page, then store it", TaskCategory.QUERY, TaskComplexity.SIMPLE),
        ("Explain the tradeoff", TaskCategory.QUERY, TaskComplexity.STANDARD),
        ("Rotate the credential and explain why", TaskCategory.QUERY, TaskComplexity.COMPLEX),
        (
            "Check the auth flow, explain it, then implement the fix",
            TaskCategory.SECURITY,
            TaskComplexity.CRITICAL,
        ),
    ],
)
def test_classify_complexity(scorer, content, category, expected):
    assert scorer.classify_complexity(content, category) is expected


def test_classify_complexity_large_input_bonus(scorer):
    content = "word " * 2000

    assert scorer.classify_complexity(content, "query") is TaskComplexity.SIMPLE
