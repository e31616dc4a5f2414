"""Value scoring - how much model capability a piece of work is worth.

``score()`` blends the situational inputs into a 0-100 value score with a
weight vector chosen by the current budget state, then applies tier
recommendation rules in priority order:

1. Heartbeat-class work -> cheapest tier, unconditionally
2. Security-sensitive -> mid-capability floor, in every budget state
3. Budget paused -> mid floor when the score is >= 80, else cheapest tier
4. Budget reduced -> mid tier when the score is >= 70, else low-cost tier
5. Otherwise the score sets a capability ceiling and the highest-ranked
   available tier at or below it wins

Candidate tiers come from the routing tables and are ranked by the model
registry, so a newer revision in the same capability class is always
preferred over the one it replaces.

``classify_complexity()`` is a cheaper keyword-weighted complexity estimate
that works without the full multi-signal classifier.
"""

from __future__ import annotations

import structlog

from cascade_router.model_router.registry import ModelDefinition, ModelRegistry
from cascade_router.model_router.tables import ValueScorerTables, compile_pattern, default_tables
from cascade_router.model_router.types import (
    BudgetState,
    TaskCategory,
    TaskComplexity,
    ValueScoreInput,
    ValueScoreResult,
    ValueWeights,
)

log = structlog.get_logger(__name__)


class ValueScorer:
    """Maps complexity and situational inputs to a value score and tier."""

    def __init__(self, registry: ModelRegistry, tables: ValueScorerTables | None = None) -> None:
        self._registry = registry
        self._tables = tables or default_tables().value_scorer
        self._keyword_bonuses = [
            (entry.name, compile_pattern(entry.pattern), entry.bonus)
            for entry in self._tables.keyword_bonuses
        ]

    # ------------------------------------------------------------------ #
    # Complexity
    # ------------------------------------------------------------------ #

    def classify_complexity(self, content: str, category: TaskCategory | str) -> TaskComplexity:
        """Additive keyword estimate of complexity.

        Args:
            content: Request text
            category: Declared task category

        Returns:
            TaskComplexity bucket
        """
        t = self._tables
        category = TaskCategory(category)
        if category.value in t.trivial_categories:
            return TaskComplexity.TRIVIAL

        score = 0
        for _name, pattern, bonus in self._keyword_bonuses:
            if pattern.search(content):
                score += bonus
        if category is TaskCategory.SECURITY:
            score += t.security_category_bonus
        if len(content) / 4 > t.large_token_threshold:
            score += t.large_token_bonus

        buckets = t.complexity_buckets
        if score < buckets["trivial"]:
            return TaskComplexity.TRIVIAL
        if score < buckets["simple"]:
            return TaskComplexity.SIMPLE
        if score < buckets["standard"]:
            return TaskComplexity.STANDARD
        if score < buckets["complex"]:
            return TaskComplexity.COMPLEX
        return TaskComplexity.CRITICAL

    # ------------------------------------------------------------------ #
    # Scoring
    # ------------------------------------------------------------------ #

    def weights_for(self, budget_state: BudgetState | str) -> ValueWeights:
        vector = self._tables.budget_weights[BudgetState(budget_state).value]
        return ValueWeights(
            quality=vector.quality,
            cost=vector.cost,
            complexity=vector.complexity,
            stakes=vector.stakes,
            history=vector.history,
        )

    def score(self, value_input: ValueScoreInput, budget_state: BudgetState | str) -> ValueScoreResult:
        """Score one unit of work under the given budget state.

        Args:
            value_input: Complexity plus situational inputs
            budget_state: Current spending posture

        Returns:
            ValueScoreResult with clamped score, recommended tier, the applied
            weight vector and audit reasoning
        """
        budget_state = BudgetState(budget_state)
        weights = self.weights_for(budget_state)
        complexity_value = self._tables.complexity_scale[value_input.complexity.value]

        raw = (
            weights.quality * value_input.quality_priority
            + weights.cost * (10.0 - value_input.budget_pressure)
            + weights.complexity * complexity_value
            + weights.stakes * value_input.stakes
            + weights.history * value_input.historical_performance
        )
        score = max(0.0, min(100.0, raw * 10.0))

        tier, is_floor, rules = self._recommend(score, budget_state, value_input)

        reasoning = self._build_reasoning(value_input, budget_state, complexity_value, score, tier, rules)
        log.debug(
            "value_scorer.scored",
            score=round(score, 2),
            tier=tier,
            budget_state=budget_state.value,
            is_floor=is_floor,
            rules=rules,
        )
        return ValueScoreResult(
            score=score,
            recommended_tier=tier,
            weights=weights,
            reasoning=reasoning,
            is_floor=is_floor,
            applied_rules=tuple(rules),
        )

    def _recommend(
        self,
        score: float,
        budget_state: BudgetState,
        value_input: ValueScoreInput,
    ) -> tuple[str, bool, list[str]]:
        t = self._tables

        if value_input.category.value in t.cheapest_categories:
            return self.cheapest_tier(), False, ["heartbeat_cheapest"]

        if value_input.security_sensitive:
            return self.mid_floor_tier(), True, ["security_floor"]

        if budget_state is BudgetState.PAUSE:
            if score >= t.pause_floor_score:
                return self.mid_floor_tier(), True, ["pause_high_value_floor"]
            return self.cheapest_tier(), False, ["pause_cheapest"]

        if budget_state is BudgetState.REDUCE:
            if score >= t.reduce_upgrade_score:
                return self.mid_floor_tier(), False, ["reduce_high_value"]
            return self.low_cost_tier(), False, ["reduce_low_cost"]

        ceiling = self._capability_ceiling(score, value_input.category)
        return self._best_under_ceiling(ceiling), False, [f"capability_ceiling_{ceiling}"]

    def _capability_ceiling(self, score: float, category: TaskCategory) -> int:
        for rule in self._tables.capability_ceilings:
            if score < rule.min_score:
                continue
            if rule.categories is not None and category.value not in rule.categories:
                continue
            return rule.max_quality
        return min(rule.max_quality for rule in self._tables.capability_ceilings)

    # ------------------------------------------------------------------ #
    # Tier ladder
    # ------------------------------------------------------------------ #

    def _ladder(self) -> list[ModelDefinition]:
        """Available candidate tiers, lowest capability rank first."""
        candidates = set(self._tables.candidate_tiers)
        return [model for model in self._registry.list_models(available_only=True) if model.id in candidates]

    def cheapest_tier(self) -> str:
        ladder = self._ladder()
        if not ladder:
            return self._registry.cheapest_available().id
        return min(ladder, key=lambda m: (m.cost_per_1m_output, m.cost_per_1m_input)).id

    def low_cost_tier(self) -> str:
        """First capability class above the cheapest tier, newest revision first."""
        ladder = self._ladder()
        cheapest_id = self.cheapest_tier()
        cheapest = self._registry.get_model(cheapest_id)
        cheapest_rank = self._registry.capability_rank(cheapest_id)
        above = [
            m for m in ladder
            if self._registry.capability_rank(m.id) > cheapest_rank and not m.same_class_as(cheapest)
        ]
        if not above:
            return cheapest_id
        same_class = [m.id for m in above if m.same_class_as(above[0])]
        return self._registry.prefer(same_class) or above[0].id

    def mid_floor_tier(self) -> str:
        """Lowest capability class meeting the mid-quality floor, newest revision first."""
        ladder = self._ladder()
        if not ladder:
            return self._registry.highest_quality_available().id
        floor = self._tables.mid_quality_floor
        eligible = [m for m in ladder if m.quality >= floor]
        if not eligible:
            fallback = ladder[-1].id
            log.warning("value_scorer.mid_floor_unavailable", floor=floor, fallback=fallback)
            return fallback
        same_class = [m.id for m in eligible if m.same_class_as(eligible[0])]
        return self._registry.prefer(same_class) or eligible[0].id

    def _best_under_ceiling(self, max_quality: int) -> str:
        ladder = self._ladder()
        under = [m for m in ladder if m.quality <= max_quality]
        if not under:
            return self.cheapest_tier()
        return under[-1].id

    def _build_reasoning(
        self,
        value_input: ValueScoreInput,
        budget_state: BudgetState,
        complexity_value: float,
        score: float,
        tier: str,
        rules: list[str],
    ) -> str:
        parts = [
            f"Complexity: {value_input.complexity.value} ({complexity_value:g}/10)",
            f"Stakes: {value_input.stakes:g}/10",
            f"Quality priority: {value_input.quality_priority:g}/10",
            f"Budget state: {budget_state.value}",
        ]
        if "security_floor" in rules:
            parts.append("Security-sensitive: mid-capability floor required")
        if "heartbeat_cheapest" in rules:
            parts.append("Heartbeat task: routed to cheapest tier")
        if "pause_cheapest" in rules:
            parts.append("Budget paused: using minimum cost model")
        if budget_state is BudgetState.REDUCE:
            parts.append("Budget reduced: downgrading to cost-efficient tier")
        parts.append(f"Final score: {score:.1f}/100")
        parts.append(f"Selected: {tier}")
        return ". ".join(parts)
