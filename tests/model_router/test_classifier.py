"""Tests for RequestClassifier.

Tests cover:
- Short conversational asks stay trivial
- Heartbeat work is capped at the bottom of the scale
- Security-sensitive work never lands below complex
- Category detection and the security override
- Chain suggestion
- Signal ranges, confidence and reasoning text
"""

from __future__ import annotations

import pytest

from cascade_router.model_router.classifier import RequestClassifier
from cascade_router.model_router.types import (
    Request,
    TaskCategory,
    TaskComplexity,
    TrustLevel,
    Turn,
)

CACHE_REQUEST = (
    "Implement a read-through cache in `OrderRepository` so that `get_order` checks Redis "
    "before querying Postgres. Use a TTL of 300 seconds, key entries by tenant and order id, "
    "invalidate the entry inside `update_order` after the transaction commits, and add unit "
    "tests in tests/test_order_repository.py covering hit, miss, expiry and invalidation "
    "paths with pytest fixtures."
)


@pytest.fixture
def classifier() -> RequestClassifier:
    return RequestClassifier()


# ------------------------------------------------------------------ #
# Composite gates
# ------------------------------------------------------------------ #


def test_ping_is_trivial(classifier):
    result = classifier.classify(Request("ping"))

    assert result.complexity is TaskComplexity.TRIVIAL
    assert result.score < 2.0
    assert result.suggested_chain == "frugal"


def test_heartbeat_capped(classifier):
    """Test heartbeat work stays at the very bottom whatever its content."""
    content = "Run the distributed consensus health probe and explain why replication lags"
    result = classifier.classify(Request(content, category=TaskCategory.HEARTBEAT))

    assert result.score <= 1.0
    assert result.complexity is TaskComplexity.TRIVIAL


@pytest.mark.parametrize(
    "category",
    [TaskCategory.QUERY, TaskCategory.CHAT, TaskCategory.SUMMARIZE],
)
def test_security_sensitive_is_at_least_complex(classifier, category):
    result = classifier.classify(Request("hi", category=category, security_sensitive=True))

    assert result.score >= 5.0
    assert result.complexity.level >= TaskComplexity.COMPLEX.level
    assert result.suggested_chain == "security"


def test_heartbeat_cap_applies_after_security_floor(classifier):
    """Test heartbeat stays trivial even when flagged security sensitive."""
    result = classifier.classify(Request("ping", category=TaskCategory.HEARTBEAT, security_sensitive=True))

    assert result.score <= 1.0
    assert result.complexity is TaskComplexity.TRIVIAL
    assert result.suggested_chain == "security"


def test_declared_security_category_floored(classifier):
    result = classifier.classify(Request("Review the login flow", category=TaskCategory.SECURITY))

    assert result.score >= 5.0


def test_hostile_guardian_metadata_triggers_floor(classifier):
    request = Request("summarize this", agent="guardian", trust_level=TrustLevel.HOSTILE)

    result = classifier.classify(request)

    assert result.signals.task_metadata >= 7
    assert result.score >= 5.0


def test_detailed_request_has_low_ambiguity(classifier):
    result = classifier.classify(Request(CACHE_REQUEST, category=TaskCategory.CODE_GENERATION))

    assert result.signals.ambiguity_penalty < 4.0
    assert result.signals.content_analysis > 2.0


def test_vague_request_has_high_ambiguity(classifier):
    result = classifier.classify(Request("just make it work, you know, fix it"))

    assert result.signals.ambiguity_penalty >= 6.0


# ------------------------------------------------------------------ #
# Signals
# ------------------------------------------------------------------ #


def test_first_turn_has_no_conversation_signal(classifier):
    result = classifier.classify(Request("Explain how sharding works"))

    assert result.signals.conversation_context == 0.0


def test_long_conversation_raises_context_signal(classifier):
    turns = []
    for i in range(6):
        turns.append(Turn("user", f"Question {i} about the billing export"))
        turns.append(Turn("assistant", "I'm not sure, it is unclear from the logs."))

    result = classifier.classify(Request("Now write a poem on autumn leaves", messages=turns))

    # depth > 10, topic shift, prior uncertainty
    assert result.signals.conversation_context >= 5.0


def test_all_signals_in_range(classifier):
    content = "```python\nimport threading\n```\n" * 5 + "1. first\n2. then\n3. finally\n" + CACHE_REQUEST
    result = classifier.classify(
        Request(content, agent="guardian", trust_level="hostile", priority="URGENT")
    )

    for value in result.signals.as_dict().values():
        assert 0.0 <= value <= 10.0
    assert 0.0 <= result.score <= 10.0


def test_confidence_bounds(classifier):
    for content in ("ping", CACHE_REQUEST, "why?"):
        confidence = classifier.classify(Request(content)).confidence
        assert 0.3 <= confidence <= 1.0


def test_reasoning_mentions_composite_and_bucket(classifier):
    result = classifier.classify(Request("ping"))

    assert result.reasoning.startswith("Composite: ")
    assert "trivial" in result.reasoning
    assert "Confidence:" in result.reasoning


def test_classification_is_deterministic(classifier):
    request = Request(CACHE_REQUEST)

    assert classifier.classify(request) == classifier.classify(request)


# ------------------------------------------------------------------ #
# Category and chain
# ------------------------------------------------------------------ #


def test_code_generation_detected(classifier):
    result = classifier.classify(Request("Write a function that parses ISO dates in Python"))

    assert result.suggested_category is TaskCategory.CODE_GENERATION
    assert result.suggested_chain == "code"


def test_security_override_wins(classifier):
    result = classifier.classify(Request("Write a function and check it for SQL injection"))

    assert result.suggested_category is TaskCategory.SECURITY


def test_weak_evidence_keeps_declared_category(classifier):
    result = classifier.classify(Request("Give me a brief recap of the release", category=TaskCategory.ANALYSIS))

    assert result.suggested_category is TaskCategory.ANALYSIS


def test_weak_evidence_refines_generic_category(classifier):
    result = classifier.classify(Request("Give me a brief recap of the release"))

    assert result.suggested_category is TaskCategory.SUMMARIZE


@pytest.mark.parametrize(
    ("complexity", "category", "sensitive", "expected"),
    [
        (TaskComplexity.SIMPLE, TaskCategory.CHAT, False, "frugal"),
        (TaskComplexity.STANDARD, TaskCategory.CODE_GENERATION, False, "code"),
        (TaskComplexity.TRIVIAL, TaskCategory.CHAT, True, "security"),
        (TaskComplexity.CRITICAL, TaskCategory.CODE_GENERATION, False, "quality"),
        (TaskComplexity.CRITICAL, TaskCategory.QUERY, True, "security"),
    ],
)
def test_suggest_chain(classifier, complexity, category, sensitive, expected):
    assert classifier.suggest_chain(complexity, category, sensitive) == expected


@pytest.mark.parametrize(
    ("score", "expected"),
    [
        (0.0, TaskComplexity.TRIVIAL),
        (1.99, TaskComplexity.TRIVIAL),
        (2.0, TaskComplexity.SIMPLE),
        (4.0, TaskComplexity.STANDARD),
        (5.0, TaskComplexity.COMPLEX),
        (6.99, TaskComplexity.COMPLEX),
        (7.0, TaskComplexity.CRITICAL),
        (10.0, TaskComplexity.CRITICAL),
    ],
)
def test_score_to_complexity_boundaries(classifier, score, expected):
    assert classifier.score_to_complexity(score) is expected
