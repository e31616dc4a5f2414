"""End-to-end routing pipeline.

RoutingOrchestrator wires the components together for one request:

    classify -> value-score -> pick chain -> cascade -> record

The classifier's suggested chain is executed. When the value scorer marks
its recommendation as a floor (security-sensitive work, or high-value work
while the budget is paused), the cascade skips steps ranked below the
recommended tier. Every attempted step is fed back into the performance
tracker and its cost forwarded to the budget collaborator as soon as the step
finishes, so failed or cancelled cascades keep what they already spent.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from cascade_router.model_router.budget import BudgetStateProvider, CostSink, StaticBudgetState
from cascade_router.model_router.cascade import CascadeResult, CascadeRouter
from cascade_router.model_router.circuit_breaker import CircuitBreakerConfig, CircuitBreakerRegistry
from cascade_router.model_router.classifier import RequestClassifier
from cascade_router.model_router.errors import EmptyRequestError
from cascade_router.model_router.events import LoggingListener, RoutingListener, StepCompleted, StepOutcome
from cascade_router.model_router.metrics import PerformanceTracker
from cascade_router.model_router.providers import ProviderRegistry
from cascade_router.model_router.registry import ModelRegistry
from cascade_router.model_router.tables import RoutingTables, default_tables, load_routing_tables
from cascade_router.model_router.types import (
    BudgetState,
    ClassificationResult,
    Request,
    TaskCategory,
    ValueScoreInput,
    ValueScoreResult,
)
from cascade_router.model_router.value_scorer import ValueScorer
from cascade_router.telemetry.logging import bind_route_context

if TYPE_CHECKING:
    from cascade_router.config import Settings
    from cascade_router.llm import LLMClient

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class RoutedResult:
    """Everything decided and produced for one routed request."""

    request_id: str
    classification: ClassificationResult
    value: ValueScoreResult
    budget_state: BudgetState
    cascade: CascadeResult

    @property
    def content(self) -> str:
        return self.cascade.response.content

    @property
    def model(self) -> str:
        return self.cascade.model


class _StepRecorder(RoutingListener):
    """Feeds each attempted step of one routed request to the tracker and cost sink."""

    def __init__(self, tracker: PerformanceTracker, cost_sink: CostSink | None, category: TaskCategory) -> None:
        self._tracker = tracker
        self._cost_sink = cost_sink
        self._category = category

    def on_step_complete(self, event: StepCompleted) -> None:
        record = event.record
        self._tracker.record(
            record.tier,
            self._category,
            quality=record.quality,
            latency_ms=record.duration_ms,
            cost=record.cost,
            success=record.outcome is not StepOutcome.FAILED,
        )
        if self._cost_sink is not None and record.cost:
            self._cost_sink.record_cost(record.tier, record.cost, self._category)


class RoutingOrchestrator:
    """Routes requests through classification, value scoring and the cascade."""

    def __init__(
        self,
        cascade: CascadeRouter,
        model_registry: ModelRegistry,
        *,
        tables: RoutingTables | None = None,
        classifier: RequestClassifier | None = None,
        value_scorer: ValueScorer | None = None,
        tracker: PerformanceTracker | None = None,
        budget: BudgetStateProvider | None = None,
        cost_sink: CostSink | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            cascade: Cascade router used for execution
            model_registry: Tier catalog shared with the cascade
            tables: Routing tables. The packaged tables if omitted.
            classifier: Request classifier
            value_scorer: Value scorer
            tracker: Performance tracker fed with every attempted step
            budget: Budget posture provider. Normal posture if omitted.
            cost_sink: Receives the cost of every attempted step. Defaults to
                ``budget`` when it also implements ``record_cost``.
        """
        self._tables = tables or default_tables()
        self.cascade = cascade
        self.registry = model_registry
        self.classifier = classifier or RequestClassifier(self._tables.classifier)
        self.value_scorer = value_scorer or ValueScorer(model_registry, self._tables.value_scorer)
        self.tracker = tracker or PerformanceTracker()
        self.budget = budget or StaticBudgetState()
        if cost_sink is None and isinstance(self.budget, CostSink):
            cost_sink = self.budget
        self.cost_sink = cost_sink

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        *,
        client: LLMClient | None = None,
        budget: BudgetStateProvider | None = None,
    ) -> RoutingOrchestrator:
        """Build the full pipeline from application settings."""
        if settings is None:
            from cascade_router.config import get_settings

            settings = get_settings()

        if settings.routing_tables_path:
            tables = load_routing_tables(settings.routing_tables_path)
        else:
            tables = default_tables()
        router_tables = tables.router.model_copy(update={"default_chain": settings.default_chain})

        registry = ModelRegistry.from_tables(tables)
        providers = ProviderRegistry.from_settings(registry, settings, client)
        breakers = CircuitBreakerRegistry(CircuitBreakerConfig.from_settings(settings))
        cascade = CascadeRouter(
            registry,
            providers,
            breakers,
            tables=router_tables,
            listeners=[LoggingListener()],
            default_max_tokens=settings.default_max_tokens,
        )
        return cls(
            cascade,
            registry,
            tables=tables,
            budget=budget or StaticBudgetState.from_settings(settings),
        )

    def value_input(
        self,
        classification: ClassificationResult,
        request: Request,
        budget_state: BudgetState,
    ) -> ValueScoreInput:
        """Derive the value scorer's situational inputs from the tables and tracker."""
        t = self._tables.value_scorer
        category = classification.suggested_category
        return ValueScoreInput(
            complexity=classification.complexity,
            stakes=t.stakes_by_category.get(category.value, 5.0),
            quality_priority=t.quality_priority_by_complexity[classification.complexity.value],
            budget_pressure=t.budget_pressure_by_state[budget_state.value],
            historical_performance=self.tracker.historical_performance(category),
            security_sensitive=request.security_sensitive or category is TaskCategory.SECURITY,
            category=category,
        )

    async def route(
        self,
        request: Request,
        *,
        budget_state: BudgetState | str | None = None,
        request_id: str | None = None,
    ) -> RoutedResult:
        """Route one request end to end.

        Args:
            request: Routing request
            budget_state: Budget posture override. Asked from the budget
                collaborator when omitted.
            request_id: Correlation id bound to every log entry. Generated
                when omitted.

        Returns:
            RoutedResult with classification, value score and cascade result

        Raises:
            EmptyRequestError: Request content is blank
            CascadeExhaustedError: No step of the chain could be attempted
            ProviderError: The last attempted step failed
        """
        request_id = bind_route_context(request_id, agent=request.agent)
        if not request.content or not request.content.strip():
            raise EmptyRequestError("Request content must not be empty")

        classification = self.classifier.classify(request)
        state = BudgetState(budget_state) if budget_state is not None else self.budget.budget_state()
        value = self.value_scorer.score(self.value_input(classification, request, state), state)

        min_tier = value.recommended_tier if value.is_floor else None
        log.info(
            "orchestrator.routing",
            complexity=classification.complexity.value,
            category=classification.suggested_category.value,
            chain=classification.suggested_chain,
            value_score=round(value.score, 1),
            recommended_tier=value.recommended_tier,
            min_tier=min_tier,
            budget_state=state.value,
        )

        recorder = _StepRecorder(self.tracker, self.cost_sink, classification.suggested_category)
        result = await self.cascade.execute(
            request,
            classification.suggested_chain,
            min_tier=min_tier,
            listeners=[recorder],
        )

        log.info(
            "orchestrator.routed",
            model=result.model,
            steps=result.total_steps,
            cost=round(result.total_cost, 6),
            duration_ms=round(result.duration_ms, 1),
        )
        return RoutedResult(
            request_id=request_id,
            classification=classification,
            value=value,
            budget_state=state,
            cascade=result,
        )

