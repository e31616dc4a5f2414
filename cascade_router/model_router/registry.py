"""Model registry - catalog of routable tiers.

Each tier carries pricing, a 0-10 quality and speed rating and a runtime
availability flag. Tiers are ordered by capability rank::

    (quality, output price, registration sequence)

Two tiers with equal quality and output price are in the same capability
class. Within a class the tier registered later ranks higher, so a newer
revision (e.g. claude-sonnet-4.5 after claude-sonnet-4) is always preferred
while both are available. Re-registering a tier moves it to the newest
position.

Availability and registration are the only mutable state. Writes are
serialized with a lock; reads work on a snapshot taken under the same lock.
"""

from __future__ import annotations

import math
import threading
from collections.abc import Iterable
from dataclasses import dataclass, field, replace

import structlog

from cascade_router.model_router.errors import RoutingError, UnknownModelError
from cascade_router.model_router.tables import ModelSpec, RoutingTables, default_tables

log = structlog.get_logger(__name__)

_TOKENS_PER_PRICE_UNIT = 1_000_000


@dataclass(frozen=True)
class ModelDefinition:
    """Registry metadata for a single tier.

    Attributes:
        id: Tier identifier used throughout routing (e.g. "claude-sonnet-4.5")
        provider: Upstream vendor ("anthropic", "openai", "google", "xai", ...)
        quality: Relative quality rating (0-10)
        speed: Relative speed rating (0-10)
        cost_per_1m_input: USD per million fresh input tokens
        cost_per_1m_output: USD per million output tokens
        cost_per_1m_cache_read: USD per million cached input tokens
        max_context_tokens: Context window size
        supports_caching: Whether prompt caching is honoured
        is_available: Runtime availability flag
        capabilities: Capability tags ("text", "code", "reasoning", "vision", "tools")
        api_model_id: LiteLLM model string, defaults to "<provider>/<id>"
    """

    id: str
    provider: str
    quality: int
    speed: int
    cost_per_1m_input: float
    cost_per_1m_output: float
    cost_per_1m_cache_read: float = 0.0
    max_context_tokens: int = 200_000
    supports_caching: bool = True
    is_available: bool = True
    capabilities: frozenset[str] = field(default_factory=frozenset)
    api_model_id: str = ""

    def __post_init__(self) -> None:
        if not self.id or not self.id.strip():
            raise ValueError("Model id must be a non-empty string")
        if not 0 <= self.quality <= 10:
            raise ValueError("quality must be within 0-10")
        if not 0 <= self.speed <= 10:
            raise ValueError("speed must be within 0-10")
        if min(self.cost_per_1m_input, self.cost_per_1m_output, self.cost_per_1m_cache_read) < 0:
            raise ValueError("prices cannot be negative")
        object.__setattr__(self, "capabilities", frozenset(self.capabilities))
        if not self.api_model_id:
            object.__setattr__(self, "api_model_id", f"{self.provider}/{self.id}")

    @classmethod
    def from_spec(cls, spec: ModelSpec) -> ModelDefinition:
        return cls(
            id=spec.id,
            provider=spec.provider,
            quality=spec.quality,
            speed=spec.speed,
            cost_per_1m_input=spec.cost_per_1m_input,
            cost_per_1m_output=spec.cost_per_1m_output,
            cost_per_1m_cache_read=spec.cost_per_1m_cache_read,
            max_context_tokens=spec.max_context_tokens,
            supports_caching=spec.supports_caching,
            is_available=spec.is_available,
            capabilities=frozenset(spec.capabilities),
            api_model_id=spec.api_model_id or "",
        )

    def same_class_as(self, other: ModelDefinition) -> bool:
        """True when both tiers share quality and output price."""
        return (
            self.quality == other.quality
            and self.cost_per_1m_output == other.cost_per_1m_output
        )


class ModelRegistry:
    """Thread-safe tier catalog with a deterministic capability ranking."""

    def __init__(self, models: Iterable[ModelDefinition] | None = None) -> None:
        self._lock = threading.Lock()
        self._models: dict[str, ModelDefinition] = {}
        self._sequence: dict[str, int] = {}
        self._next_sequence = 0
        for model in models or ():
            self.register_model(model)

    @classmethod
    def from_tables(cls, tables: RoutingTables | None = None) -> ModelRegistry:
        """Build a registry from the catalog section of the routing tables."""
        tables = tables or default_tables()
        registry = cls(ModelDefinition.from_spec(spec) for spec in tables.models)
        log.info(
            "model_registry.loaded",
            tables_version=tables.version,
            models=len(registry),
            available=len(registry.list_available()),
        )
        return registry

    def __len__(self) -> int:
        return len(self._models)

    def __contains__(self, tier: object) -> bool:
        return tier in self._models

    def register_model(self, definition: ModelDefinition) -> None:
        """Add a tier, or replace it and move it to the newest registration slot."""
        with self._lock:
            replaced = definition.id in self._models
            self._models[definition.id] = definition
            self._sequence[definition.id] = self._next_sequence
            self._next_sequence += 1
        log.debug(
            "model_registry.registered",
            tier=definition.id,
            provider=definition.provider,
            replaced=replaced,
        )

    def get_model(self, tier: str) -> ModelDefinition:
        """Look up a tier.

        Raises:
            UnknownModelError: If the tier is not registered
        """
        model = self._models.get(tier)
        if model is None:
            raise UnknownModelError(tier)
        return model

    def set_availability(self, tier: str, available: bool) -> None:
        """Toggle a tier on or off, e.g. during an upstream incident."""
        with self._lock:
            model = self._models.get(tier)
            if model is None:
                raise UnknownModelError(tier)
            if model.is_available == available:
                return
            self._models[tier] = replace(model, is_available=available)
        log.info("model_registry.availability_changed", tier=tier, available=available)

    def is_available(self, tier: str) -> bool:
        """Unknown tiers are reported as unavailable."""
        model = self._models.get(tier)
        return model is not None and model.is_available

    def capability_rank(self, tier: str) -> tuple[int, float, int]:
        model = self.get_model(tier)
        return (model.quality, model.cost_per_1m_output, self._sequence[tier])

    def _snapshot(self) -> list[tuple[ModelDefinition, int]]:
        with self._lock:
            return [(model, self._sequence[tier]) for tier, model in self._models.items()]

    def list_models(self, available_only: bool = False) -> list[ModelDefinition]:
        """All tiers, lowest capability rank first."""
        ranked = sorted(
            self._snapshot(),
            key=lambda item: (item[0].quality, item[0].cost_per_1m_output, item[1]),
        )
        return [model for model, _ in ranked if model.is_available or not available_only]

    def list_available(self) -> list[str]:
        """Available tier ids, lowest capability rank first."""
        return [model.id for model in self.list_models(available_only=True)]

    def models_by_provider(self, provider: str) -> list[ModelDefinition]:
        return [model for model in self.list_models() if model.provider == provider]

    def prefer(self, tiers: Iterable[str]) -> str | None:
        """Pick the highest-ranked available tier among ``tiers``.

        Returns None if none of them is registered and available.
        """
        candidates = [tier for tier in tiers if self.is_available(tier)]
        if not candidates:
            return None
        return max(candidates, key=self.capability_rank)

    def cheapest_available(self) -> ModelDefinition:
        """Lowest output price; ties go to the lower capability rank."""
        available = self.list_models(available_only=True)
        if not available:
            raise RoutingError("No models available")
        return min(available, key=lambda m: (m.cost_per_1m_output, m.cost_per_1m_input))

    def highest_quality_available(self) -> ModelDefinition:
        available = self.list_models(available_only=True)
        if not available:
            raise RoutingError("No models available")
        return available[-1]

    def get_cost(
        self,
        tier: str,
        input_tokens: int,
        output_tokens: int,
        cached_input_tokens: int = 0,
    ) -> float:
        """Cost in USD of one call.

        Cached input tokens are billed at the cache-read price, the rest of the
        input at the full input price.
        """
        model = self.get_model(tier)
        fresh_input = max(0, input_tokens - cached_input_tokens)
        return (
            fresh_input * model.cost_per_1m_input
            + cached_input_tokens * model.cost_per_1m_cache_read
            + output_tokens * model.cost_per_1m_output
        ) / _TOKENS_PER_PRICE_UNIT

    def estimate_cost(
        self,
        tier: str,
        input_tokens: int,
        output_ratio: float = 0.3,
        cache_hit_rate: float = 0.0,
    ) -> float:
        """Pre-flight cost estimate from an expected output/input ratio."""
        output_tokens = math.ceil(input_tokens * output_ratio)
        cached_tokens = math.floor(input_tokens * cache_hit_rate)
        return self.get_cost(tier, input_tokens, output_tokens, cached_tokens)
