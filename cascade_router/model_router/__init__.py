"""Tiered model routing with quality-gated cascades.

This package picks an LLM tier for each request and escalates through
ordered chains of tiers until a response is good enough:

- RequestClassifier scores request complexity from six weighted signals
- ValueScorer turns complexity and budget posture into a value score and
  a recommended tier
- ModelRegistry holds the tier catalog, pricing and capability ranking
- CircuitBreakerRegistry keeps failing tiers out of rotation
- CascadeRouter walks a chain, scoring each response against its step
  threshold
- RoutingOrchestrator runs the whole pipeline for one request

Routing data (vocabulary, weights, chains, catalog) is loaded from the
versioned tables in ``data/routing_tables.json``.
"""

from __future__ import annotations

from cascade_router.model_router.budget import (
    BudgetStateProvider,
    CostSink,
    SpendGauge,
    StaticBudgetState,
)
from cascade_router.model_router.cascade import (
    CascadeChain,
    CascadeResult,
    CascadeRouter,
    CascadeStep,
)
from cascade_router.model_router.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitState,
)
from cascade_router.model_router.classifier import RequestClassifier
from cascade_router.model_router.errors import (
    CascadeExhaustedError,
    ChainDefinitionError,
    EmptyRequestError,
    NoProviderError,
    ProviderError,
    ProviderTimeoutError,
    RoutingError,
    UnknownChainError,
    UnknownModelError,
    UsageError,
)
from cascade_router.model_router.events import (
    EventDispatcher,
    LoggingListener,
    RoutingListener,
    StepOutcome,
    StepRecord,
)
from cascade_router.model_router.metrics import PerformanceTracker
from cascade_router.model_router.orchestrator import RoutedResult, RoutingOrchestrator
from cascade_router.model_router.providers import (
    CompletionResponse,
    LiteLLMProvider,
    Provider,
    ProviderRegistry,
)
from cascade_router.model_router.quality import HeuristicQualityScorer, QualityScorer
from cascade_router.model_router.registry import ModelDefinition, ModelRegistry
from cascade_router.model_router.tables import RoutingTables, default_tables, load_routing_tables
from cascade_router.model_router.types import (
    BudgetState,
    ClassificationResult,
    Priority,
    Request,
    TaskCategory,
    TaskComplexity,
    TrustLevel,
    Turn,
    ValueScoreInput,
    ValueScoreResult,
)
from cascade_router.model_router.value_scorer import ValueScorer

__all__ = [
    "BudgetState",
    "BudgetStateProvider",
    "CascadeChain",
    "CascadeExhaustedError",
    "CascadeResult",
    "CascadeRouter",
    "CascadeStep",
    "ChainDefinitionError",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerRegistry",
    "CircuitState",
    "ClassificationResult",
    "CompletionResponse",
    "CostSink",
    "EmptyRequestError",
    "EventDispatcher",
    "HeuristicQualityScorer",
    "LiteLLMProvider",
    "LoggingListener",
    "ModelDefinition",
    "ModelRegistry",
    "NoProviderError",
    "PerformanceTracker",
    "Priority",
    "Provider",
    "ProviderError",
    "ProviderRegistry",
    "ProviderTimeoutError",
    "QualityScorer",
    "Request",
    "RequestClassifier",
    "RoutedResult",
    "RoutingError",
    "RoutingListener",
    "RoutingOrchestrator",
    "RoutingTables",
    "SpendGauge",
    "StaticBudgetState",
    "StepOutcome",
    "StepRecord",
    "TaskCategory",
    "TaskComplexity",
    "TrustLevel",
    "Turn",
    "UnknownChainError",
    "UnknownModelError",
    "UsageError",
    "ValueScoreInput",
    "ValueScoreResult",
    "ValueScorer",
    "default_tables",
    "load_routing_tables",
]
