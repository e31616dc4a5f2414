"""Per-tier, per-category performance tracking.

The PerformanceTracker aggregates the outcome of every attempted cascade
step. It feeds the value scorer's historical-performance input and can
recommend the best tier for a task category from observed data.

Metrics tracked per (tier, category):
- Calls, successes and errors
- Quality sum (successful calls only)
- Latency and cost sums
- Last use

Storage is in-memory and process-local.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import UTC, datetime

import structlog

from cascade_router.model_router.types import TaskCategory

log = structlog.get_logger(__name__)


@dataclass
class _Aggregate:
    tier: str
    category: str
    calls: int = 0
    successes: int = 0
    errors: int = 0
    quality_sum: float = 0.0
    latency_sum: float = 0.0
    cost_sum: float = 0.0
    last_used: datetime | None = None

    @property
    def avg_quality(self) -> float:
        return self.quality_sum / self.successes if self.successes else 0.0

    @property
    def avg_latency_ms(self) -> float:
        return self.latency_sum / self.calls if self.calls else 0.0

    @property
    def error_rate(self) -> float:
        return self.errors / self.calls if self.calls else 0.0

    @property
    def avg_cost(self) -> float:
        return self.cost_sum / self.calls if self.calls else 0.0


@dataclass(frozen=True)
class CategoryPerformance:
    """Averages for one tier in one category.

    Attributes:
        tier: Model tier
        category: Task category
        avg_quality: Mean quality of successful calls (0.0-1.0)
        avg_latency_ms: Mean latency over all calls
        error_rate: Failed calls / total calls
        total_calls: Number of recorded calls
        total_cost: USD spent
        last_used: Timestamp of the most recent call
    """

    tier: str
    category: str
    avg_quality: float
    avg_latency_ms: float
    error_rate: float
    total_calls: int
    total_cost: float
    last_used: datetime | None


@dataclass(frozen=True)
class PerformanceStats:
    tier: str | None
    categories: list[CategoryPerformance] = field(default_factory=list)
    overall_avg_quality: float = 0.0
    overall_avg_latency_ms: float = 0.0
    overall_error_rate: float = 0.0
    total_calls: int = 0
    total_cost: float = 0.0


class PerformanceTracker:
    """Thread-safe in-memory performance aggregates."""

    # Calls needed before observed data is trusted
    MIN_CALLS = 5
    NEUTRAL_HISTORY = 5.0

    # Recommendation weights
    QUALITY_WEIGHT = 0.4
    SPEED_WEIGHT = 0.3
    RELIABILITY_WEIGHT = 0.2
    COST_WEIGHT = 0.1

    # Normalisation ceilings for the speed and cost terms
    SLOW_LATENCY_MS = 10_000.0
    EXPENSIVE_CALL_USD = 0.1

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._metrics: dict[tuple[str, str], _Aggregate] = {}

    def record(
        self,
        tier: str,
        category: TaskCategory | str,
        *,
        quality: float | None,
        latency_ms: float,
        cost: float,
        success: bool,
    ) -> None:
        """Record one attempted call.

        Args:
            tier: Tier that served the call
            category: Task category of the request
            quality: Response quality (0.0-1.0). Ignored for failed calls.
            latency_ms: Call latency
            cost: USD cost of the call
            success: Whether the provider returned a response
        """
        category = TaskCategory(category).value
        with self._lock:
            entry = self._metrics.get((tier, category))
            if entry is None:
                entry = _Aggregate(tier=tier, category=category)
                self._metrics[(tier, category)] = entry

            entry.calls += 1
            entry.latency_sum += latency_ms
            entry.cost_sum += cost
            entry.last_used = datetime.now(UTC)
            if success:
                entry.successes += 1
                entry.quality_sum += quality if quality is not None else 0.0
            else:
                entry.errors += 1

        log.debug(
            "performance_tracker.recorded",
            tier=tier,
            category=category,
            success=success,
            quality=quality,
            latency_ms=round(latency_ms, 1),
        )

    def stats(self, tier: str | None = None) -> PerformanceStats:
        """Per-category averages and overall figures, optionally for one tier."""
        with self._lock:
            entries = [e for e in self._metrics.values() if tier is None or e.tier == tier]
            categories = [
                CategoryPerformance(
                    tier=e.tier,
                    category=e.category,
                    avg_quality=e.avg_quality,
                    avg_latency_ms=e.avg_latency_ms,
                    error_rate=e.error_rate,
                    total_calls=e.calls,
                    total_cost=e.cost_sum,
                    last_used=e.last_used,
                )
                for e in entries
            ]
            calls = sum(e.calls for e in entries)
            successes = sum(e.successes for e in entries)
            quality_sum = sum(e.quality_sum for e in entries)
            latency_sum = sum(e.latency_sum for e in entries)
            errors = sum(e.errors for e in entries)
            cost = sum(e.cost_sum for e in entries)

        return PerformanceStats(
            tier=tier,
            categories=categories,
            overall_avg_quality=quality_sum / successes if successes else 0.0,
            overall_avg_latency_ms=latency_sum / calls if calls else 0.0,
            overall_error_rate=errors / calls if calls else 0.0,
            total_calls=calls,
            total_cost=cost,
        )

    def historical_performance(self, category: TaskCategory | str) -> float:
        """Value-scorer history input (0-10) for a category.

        Mean quality of successful calls across all tiers, scaled to 0-10.
        Neutral 5.0 until the category has enough calls.
        """
        category = TaskCategory(category).value
        with self._lock:
            entries = [e for e in self._metrics.values() if e.category == category]
            calls = sum(e.calls for e in entries)
            successes = sum(e.successes for e in entries)
            quality_sum = sum(e.quality_sum for e in entries)

        if calls < self.MIN_CALLS or successes == 0:
            return self.NEUTRAL_HISTORY
        return max(0.0, min(10.0, quality_sum / successes * 10.0))

    def recommendation(self, category: TaskCategory | str) -> str | None:
        """Best observed tier for a category.

        Tiers with at least ``MIN_CALLS`` calls are ranked by quality (40%),
        speed (30%), reliability (20%) and cost (10%). Without such tiers the
        most used one is returned, and None when the category has no data.
        """
        category = TaskCategory(category).value
        with self._lock:
            entries = [e for e in self._metrics.values() if e.category == category]
            if not entries:
                return None

            viable = [e for e in entries if e.calls >= self.MIN_CALLS]
            if not viable:
                return max(entries, key=lambda e: e.calls).tier

            scored = [(self._weighted_score(e), e.tier) for e in viable]

        best_score, best_tier = max(scored, key=lambda item: item[0])
        log.debug(
            "performance_tracker.recommendation",
            category=category,
            tier=best_tier,
            score=round(best_score, 3),
            candidates=len(scored),
        )
        return best_tier

    def _weighted_score(self, entry: _Aggregate) -> float:
        speed = max(0.0, 1.0 - entry.avg_latency_ms / self.SLOW_LATENCY_MS)
        reliability = 1.0 - entry.error_rate
        cost = max(0.0, 1.0 - entry.avg_cost / self.EXPENSIVE_CALL_USD)
        return (
            entry.avg_quality * self.QUALITY_WEIGHT
            + speed * self.SPEED_WEIGHT
            + reliability * self.RELIABILITY_WEIGHT
            + cost * self.COST_WEIGHT
        )

    def clear(self) -> None:
        with self._lock:
            self._metrics.clear()
