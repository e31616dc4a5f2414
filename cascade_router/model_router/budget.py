"""Budget collaborator boundary.

The router does not do billing-cycle accounting. It only needs two things
from whoever owns the budget:

- The current spending posture (``BudgetStateProvider``), which selects the
  value scorer's weight vector and downgrade rules
- A place to report what each attempted step cost (``CostSink``)

``StaticBudgetState`` pins a posture (from settings by default).
``SpendGauge`` tracks spend against a limit in memory and moves to
``reduce`` at 80% and ``pause`` at 95%.
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING, Protocol, runtime_checkable

import structlog

from cascade_router.model_router.types import BudgetState, TaskCategory

if TYPE_CHECKING:
    from cascade_router.config import Settings

log = structlog.get_logger(__name__)


@runtime_checkable
class BudgetStateProvider(Protocol):
    def budget_state(self) -> BudgetState: ...


@runtime_checkable
class CostSink(Protocol):
    def record_cost(self, tier: str, cost: float, category: TaskCategory | str) -> None: ...


class StaticBudgetState:
    """Fixed budget posture. Costs reported to it are only logged."""

    def __init__(self, state: BudgetState | str = BudgetState.NORMAL) -> None:
        self._state = BudgetState(state)

    @classmethod
    def from_settings(cls, settings: Settings) -> StaticBudgetState:
        return cls(settings.budget_state)

    def budget_state(self) -> BudgetState:
        return self._state

    def record_cost(self, tier: str, cost: float, category: TaskCategory | str) -> None:
        log.debug("budget.cost_recorded", tier=tier, cost=cost, category=TaskCategory(category).value)


class SpendGauge:
    """In-memory spend against a fixed limit.

    Not persisted and never reset automatically; call ``reset()`` at the
    start of a new budget period.
    """

    # Alert thresholds (fraction of limit)
    REDUCE_THRESHOLD = 0.80
    PAUSE_THRESHOLD = 0.95

    def __init__(self, limit_usd: float) -> None:
        """Initialize the gauge.

        Args:
            limit_usd: Spend limit for the period, in USD

        Raises:
            ValueError: If the limit is not positive
        """
        if limit_usd <= 0:
            raise ValueError(f"limit_usd must be positive, got {limit_usd}")
        self._limit = limit_usd
        self._spent = 0.0
        self._by_tier: dict[str, float] = {}
        self._lock = threading.Lock()

    @property
    def limit(self) -> float:
        return self._limit

    @property
    def spent(self) -> float:
        with self._lock:
            return self._spent

    def spent_by_tier(self) -> dict[str, float]:
        with self._lock:
            return dict(self._by_tier)

    def budget_state(self) -> BudgetState:
        return self._state_for(self.spent)

    def _state_for(self, spent: float) -> BudgetState:
        used = spent / self._limit
        if used >= self.PAUSE_THRESHOLD:
            return BudgetState.PAUSE
        if used >= self.REDUCE_THRESHOLD:
            return BudgetState.REDUCE
        return BudgetState.NORMAL

    def record_cost(self, tier: str, cost: float, category: TaskCategory | str) -> None:
        if cost < 0:
            raise ValueError(f"cost must be non-negative, got {cost}")
        with self._lock:
            before = self._state_for(self._spent)
            self._spent += cost
            self._by_tier[tier] = self._by_tier.get(tier, 0.0) + cost
            spent = self._spent
            after = self._state_for(spent)

        log.debug("budget.cost_recorded", tier=tier, cost=cost, category=TaskCategory(category).value)
        if after is not before:
            log_fn = log.critical if after is BudgetState.PAUSE else log.warning
            log_fn(
                "budget.state_changed",
                previous=before.value,
                current=after.value,
                usage_pct=round(spent / self._limit * 100, 1),
                spent=round(spent, 6),
                limit=self._limit,
            )

    def reset(self) -> None:
        with self._lock:
            self._spent = 0.0
            self._by_tier.clear()
