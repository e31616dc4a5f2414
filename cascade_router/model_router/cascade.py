"""Cascade router - quality-gated escalation through ordered tier chains.

A chain is an ordered list of (tier, quality threshold) steps, usually
cheapest first. ``execute`` walks the steps in order:

- A step whose tier is unavailable, has no provider, sits below the
  requested capability floor or whose circuit is OPEN is skipped. Skips are
  not attempts.
- Otherwise the provider is called. Failures are recorded on the tier's
  circuit breaker and the cascade moves on.
- A response whose heuristic quality meets the step threshold is accepted.
  The last eligible step is always accepted, whatever its quality.
- If the last attempted step fails, its error propagates, even when an
  earlier step returned a sub-threshold response. That response is only
  returned when the remaining steps drop out as ineligible.

Steps run strictly one after another because each decision depends on the
previous outcome. Cancellation stops further attempts; breaker and cost
effects of completed steps stay recorded.

Default chains (from the routing tables):
- frugal:    cheapest first, up to Sonnet
- balanced:  Claude only, Haiku -> Sonnet -> Opus
- quality:   minimum Sonnet
- code:      GPT-4.1 mini -> Sonnet -> Opus
- bulk:      high-volume cheap tiers
- reasoning: o4-mini -> o3 -> Opus
- security:  Sonnet -> Opus
"""

from __future__ import annotations

import threading
import time
from collections.abc import Iterable
from dataclasses import dataclass

import structlog

from cascade_router.model_router.circuit_breaker import CircuitBreakerRegistry
from cascade_router.model_router.errors import (
    CascadeExhaustedError,
    ChainDefinitionError,
    EmptyRequestError,
    NoProviderError,
    ProviderError,
    UnknownChainError,
)
from cascade_router.model_router.events import (
    CascadeCompleted,
    CascadeStarted,
    EventDispatcher,
    RoutingListener,
    SkipReason,
    StepCompleted,
    StepOutcome,
    StepRecord,
)
from cascade_router.model_router.providers import CompletionResponse, ProviderRegistry
from cascade_router.model_router.quality import HeuristicQualityScorer, QualityScorer
from cascade_router.model_router.registry import ModelRegistry
from cascade_router.model_router.tables import ChainSpec, RouterTables, default_tables
from cascade_router.model_router.types import Request, TaskCategory, TaskComplexity

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CascadeStep:
    """One escalation step.

    Attributes:
        tier: Tier to call
        threshold: Minimum quality (0.0-1.0) to stop at this step
    """

    tier: str
    threshold: float

    def __post_init__(self) -> None:
        if not self.tier or not self.tier.strip():
            raise ChainDefinitionError("Cascade step tier must be a non-empty string")
        if not 0.0 <= self.threshold <= 1.0:
            raise ChainDefinitionError(f"Cascade step threshold must be within 0-1, got {self.threshold}")


@dataclass(frozen=True)
class CascadeChain:
    id: str
    name: str
    steps: tuple[CascadeStep, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "steps", tuple(self.steps))
        if not self.id or not self.id.strip():
            raise ChainDefinitionError("Cascade chain id must be a non-empty string")
        if not self.steps:
            raise ChainDefinitionError(f"Cascade chain {self.id!r} has no steps")

    @classmethod
    def from_spec(cls, spec: ChainSpec) -> CascadeChain:
        return cls(
            id=spec.id,
            name=spec.name,
            steps=tuple(CascadeStep(tier=s.tier, threshold=s.threshold) for s in spec.steps),
        )


@dataclass(frozen=True)
class CascadeResult:
    """Outcome of one ``execute`` call.

    Attributes:
        response: Accepted response
        chain_id: Chain that was executed
        trace: Every step in chain order, including skipped ones
        total_cost: USD spent across all attempted steps
        duration_ms: Wall time of the whole cascade
    """

    response: CompletionResponse
    chain_id: str
    trace: tuple[StepRecord, ...]
    total_cost: float
    duration_ms: float

    @property
    def model(self) -> str:
        return self.response.tier

    @property
    def total_steps(self) -> int:
        """Attempted steps. Skipped steps are not counted."""
        return sum(1 for record in self.trace if record.attempted)


class CascadeRouter:
    """Owns the named chains and executes requests through them."""

    def __init__(
        self,
        model_registry: ModelRegistry,
        providers: ProviderRegistry,
        breakers: CircuitBreakerRegistry | None = None,
        *,
        quality_scorer: QualityScorer | None = None,
        tables: RouterTables | None = None,
        chains: Iterable[CascadeChain] | None = None,
        listeners: Iterable[RoutingListener] = (),
        default_max_tokens: int = 4096,
    ) -> None:
        """Initialize the router.

        Args:
            model_registry: Tier catalog and availability
            providers: Provider registry used for every step
            breakers: Per-tier circuit breakers. A fresh registry if omitted.
            quality_scorer: Response scorer. Table-driven heuristic if omitted.
            tables: Router tables (default chains, category map)
            chains: Chains to register instead of the defaults from ``tables``
            listeners: Event listeners, called synchronously in order
            default_max_tokens: Output token cap when the request sets none
        """
        self._models = model_registry
        self._providers = providers
        self._breakers = breakers or CircuitBreakerRegistry()
        self._quality = quality_scorer or HeuristicQualityScorer()
        self._tables = tables or default_tables().router
        self._default_max_tokens = default_max_tokens
        self.events = EventDispatcher(listeners)
        self._breakers.add_listener(self.events.circuit_transition)

        self._chains_lock = threading.Lock()
        self._chains: dict[str, CascadeChain] = {}
        if chains is None:
            chains = [CascadeChain.from_spec(spec) for spec in self._tables.chains]
        for chain in chains:
            self.register_chain(chain)

    @property
    def breakers(self) -> CircuitBreakerRegistry:
        return self._breakers

    # ------------------------------------------------------------------ #
    # Chain management
    # ------------------------------------------------------------------ #

    def register_chain(self, chain: CascadeChain, *, replace: bool = False) -> None:
        """Register a chain.

        Raises:
            ChainDefinitionError: If the id is taken and ``replace`` is False
        """
        with self._chains_lock:
            if chain.id in self._chains and not replace:
                raise ChainDefinitionError(f"Cascade chain already registered: {chain.id}")
            self._chains[chain.id] = chain
        log.debug("cascade.chain_registered", chain=chain.id, steps=[s.tier for s in chain.steps])

    def get_chain(self, chain_id: str) -> CascadeChain:
        chain = self._chains.get(chain_id)
        if chain is None:
            raise UnknownChainError(chain_id)
        return chain

    def list_chains(self) -> list[CascadeChain]:
        with self._chains_lock:
            return list(self._chains.values())

    def select_chain(
        self,
        category: TaskCategory | str,
        security_sensitive: bool,
        complexity: TaskComplexity | str,
    ) -> str:
        """Pick a chain id for a category, security flag and complexity.

        Security-sensitive work always uses the security chain and critical
        work the quality chain. Complex work in a category without its own
        chain is upgraded to the balanced chain.
        """
        t = self._tables
        if security_sensitive:
            return t.security_chain

        complexity = TaskComplexity(complexity)
        from_category = t.chain_by_category.get(TaskCategory(category).value)

        if complexity is TaskComplexity.CRITICAL:
            return t.critical_chain
        if complexity is TaskComplexity.COMPLEX and from_category is None:
            return t.complex_fallback_chain
        return from_category or t.default_chain

    # ------------------------------------------------------------------ #
    # Execution
    # ------------------------------------------------------------------ #

    def _skip_reason(self, step: CascadeStep, floor_rank: tuple | None) -> SkipReason | None:
        if not self._models.is_available(step.tier):
            return SkipReason.UNAVAILABLE
        if floor_rank is not None and self._models.capability_rank(step.tier) < floor_rank:
            return SkipReason.BELOW_FLOOR
        if not self._providers.has_provider_for(step.tier):
            return SkipReason.NO_PROVIDER
        if not self._breakers.allow_request(step.tier):
            return SkipReason.CIRCUIT_OPEN
        return None

    def _floor_rank(self, chain: CascadeChain, min_tier: str | None) -> tuple | None:
        """Capability floor, unless it would rule out every step of the chain."""
        if min_tier is None or min_tier not in self._models:
            return None
        floor = self._models.capability_rank(min_tier)
        reachable = any(
            step.tier in self._models and self._models.capability_rank(step.tier) >= floor
            for step in chain.steps
        )
        if not reachable:
            log.info("cascade.floor_ignored", chain=chain.id, min_tier=min_tier)
            return None
        return floor

    async def execute(
        self,
        request: Request,
        chain_id: str | None = None,
        *,
        max_tokens: int | None = None,
        min_tier: str | None = None,
        listeners: Iterable[RoutingListener] = (),
    ) -> CascadeResult:
        """Run a request through a chain.

        Args:
            request: Routing request
            chain_id: Chain to walk. The tables' default chain if omitted.
            max_tokens: Output token cap per step
            min_tier: Skip steps ranked below this tier's capability
            listeners: Extra listeners that only see this execution's events,
                after the router's own listeners

        Returns:
            CascadeResult with the accepted response and the step trace

        Raises:
            EmptyRequestError: Request content is blank
            UnknownChainError: ``chain_id`` is not registered
            CascadeExhaustedError: Every step was skipped
            ProviderError: The last attempted step failed at the provider
        """
        if not request.content or not request.content.strip():
            raise EmptyRequestError("Request content must not be empty")
        chain = self.get_chain(chain_id or self._tables.default_chain)
        chain_log = log.bind(chain=chain.id)

        messages = request.to_messages()
        tokens = max_tokens or request.max_tokens or self._default_max_tokens
        floor_rank = self._floor_rank(chain, min_tier)
        extra = list(listeners)
        events = self.events.extended(extra) if extra else self.events

        events.emit(
            CascadeStarted(chain_id=chain.id, query_length=sum(len(m["content"]) for m in messages))
        )

        start = time.perf_counter()
        trace: list[StepRecord] = []
        total_cost = 0.0
        best_effort: CompletionResponse | None = None
        last_error: ProviderError | None = None

        for index, step in enumerate(chain.steps):
            reason = self._skip_reason(step, floor_rank)
            if reason is not None:
                trace.append(
                    StepRecord(index, step.tier, step.threshold, StepOutcome.SKIPPED, skip_reason=reason)
                )
                chain_log.info("cascade.step_skipped", step=index, tier=step.tier, reason=reason.value)
                continue

            is_last = not any(
                self._skip_reason(later, floor_rank) is None for later in chain.steps[index + 1 :]
            )

            try:
                response = await self._providers.complete(
                    step.tier,
                    messages,
                    max_tokens=tokens,
                    caching_enabled=request.caching_enabled,
                )
            except NoProviderError:
                trace.append(
                    StepRecord(
                        index, step.tier, step.threshold, StepOutcome.SKIPPED, skip_reason=SkipReason.NO_PROVIDER
                    )
                )
                chain_log.info("cascade.step_skipped", step=index, tier=step.tier, reason="no_provider")
                continue
            except ProviderError as exc:
                self._breakers.record_failure(step.tier)
                last_error = exc
                record = StepRecord(index, step.tier, step.threshold, StepOutcome.FAILED, error=str(exc))
                trace.append(record)
                chain_log.warning("cascade.step_failed", step=index, tier=step.tier, error=str(exc))
                events.emit(StepCompleted(chain.id, record))
                continue

            self._breakers.record_success(step.tier)
            last_error = None
            total_cost += response.cost
            quality = self._quality.score(request.content, response.content)
            accepted = is_last or quality >= step.threshold

            record = StepRecord(
                index,
                step.tier,
                step.threshold,
                StepOutcome.ACCEPTED if accepted else StepOutcome.ESCALATED,
                quality=quality,
                cost=response.cost,
                duration_ms=response.duration_ms,
            )
            trace.append(record)
            chain_log.info(
                "cascade.step_completed",
                step=index,
                tier=step.tier,
                quality=round(quality, 3),
                threshold=step.threshold,
                accepted=accepted,
                last_step=is_last,
            )
            events.emit(StepCompleted(chain.id, record))

            if accepted:
                return self._complete(events, chain, response, trace, total_cost, start)
            best_effort = response

        if best_effort is not None and last_error is None:
            # Later steps became ineligible after a sub-threshold response
            chain_log.info("cascade.best_effort_returned", tier=best_effort.tier)
            return self._complete(events, chain, best_effort, trace, total_cost, start)

        if last_error is not None:
            chain_log.error(
                "cascade.last_attempt_failed",
                attempted=[r.tier for r in trace if r.attempted],
                error=str(last_error),
            )
            raise last_error

        skipped = [r.tier for r in trace]
        chain_log.error("cascade.exhausted", skipped=skipped)
        raise CascadeExhaustedError(chain.id, skipped)

    def _complete(
        self,
        events: EventDispatcher,
        chain: CascadeChain,
        response: CompletionResponse,
        trace: list[StepRecord],
        total_cost: float,
        start: float,
    ) -> CascadeResult:
        result = CascadeResult(
            response=response,
            chain_id=chain.id,
            trace=tuple(trace),
            total_cost=total_cost,
            duration_ms=(time.perf_counter() - start) * 1000,
        )
        events.emit(
            CascadeCompleted(
                chain_id=chain.id,
                final_model=result.model,
                total_steps=result.total_steps,
                total_cost=total_cost,
                duration_ms=result.duration_ms,
            )
        )
        return result
