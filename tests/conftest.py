"""
Shared test fixtures for pytest.

Provides common fakes for the routing tests:
- fake_clock: Manually advanced monotonic clock (seconds)
- tables: Packaged routing tables
- registry: Model registry loaded from the packaged catalog
- breakers: Circuit breaker registry driven by fake_clock
- provider: Scripted provider double serving every catalogued tier
- providers: Provider registry with the scripted provider registered
- quality: Stub quality scorer keyed by response text
- make_router: Factory for CascadeRouter wired to the fakes above
- make_provider: Factory for additional scripted providers
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from typing import Any

import pytest
import structlog

from cascade_router.config import get_settings
from cascade_router.model_router.circuit_breaker import CircuitBreakerConfig, CircuitBreakerRegistry
from cascade_router.model_router.cascade import CascadeRouter
from cascade_router.model_router.providers import CompletionResponse, ProviderRegistry
from cascade_router.model_router.registry import ModelDefinition, ModelRegistry
from cascade_router.model_router.tables import RoutingTables, default_tables


# ------------------------------------------------------------------ #
# Settings / logging isolation
# ------------------------------------------------------------------ #


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    """Clear the lru_cache on get_settings so test overrides take effect."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture(autouse=True)
def _clear_log_context():
    structlog.contextvars.clear_contextvars()
    yield
    structlog.contextvars.clear_contextvars()


@pytest.fixture(autouse=True)
def _reset_logging():
    """Undo configure_logging so one test's handlers never outlive its capture."""
    yield
    structlog.reset_defaults()
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(logging.WARNING)


# ------------------------------------------------------------------ #
# Fakes
# ------------------------------------------------------------------ #


class FakeClock:
    """Monotonic clock in seconds that only moves when told to."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance_ms(self, ms: float) -> None:
        self.now += ms / 1000.0


class ScriptedProvider:
    """Provider double returning scripted replies per tier.

    Each tier has a queue of replies. A string becomes the response content,
    an exception instance is raised. When a queue is empty the provider
    answers with ``default_reply``.
    """

    def __init__(
        self,
        replies: dict[str, list[str | Exception]] | None = None,
        *,
        provider_id: str = "scripted",
        tiers: Iterable[str] | None = None,
        default_reply: str = "default reply",
    ) -> None:
        self.id = provider_id
        self.replies = {tier: list(queue) for tier, queue in (replies or {}).items()}
        self._tiers = set(tiers) if tiers is not None else None
        self.default_reply = default_reply
        self.calls: list[str] = []
        self.kwargs: list[dict[str, Any]] = []

    def script(self, tier: str, *replies: str | Exception) -> None:
        self.replies.setdefault(tier, []).extend(replies)

    def supports_model(self, tier: str) -> bool:
        return self._tiers is None or tier in self._tiers

    async def complete(
        self,
        model: ModelDefinition,
        messages: list[dict[str, Any]],
        *,
        max_tokens: int,
        caching_enabled: bool,
    ) -> CompletionResponse:
        self.calls.append(model.id)
        self.kwargs.append({"messages": messages, "max_tokens": max_tokens, "caching_enabled": caching_enabled})
        queue = self.replies.get(model.id) or []
        reply = queue.pop(0) if queue else self.default_reply
        if isinstance(reply, BaseException):
            raise reply
        return CompletionResponse(
            content=reply,
            tier=model.id,
            input_tokens=1_000,
            output_tokens=500,
            duration_ms=12.0,
        )


class StubQualityScorer:
    """Quality scorer returning fixed scores per response text (default 0.5)."""

    def __init__(self, scores: dict[str, float] | None = None, default: float = 0.5) -> None:
        self.scores = dict(scores or {})
        self.default = default
        self.calls: list[tuple[str, str]] = []

    def score(self, query: str, response: str) -> float:
        self.calls.append((query, response))
        return self.scores.get(response, self.default)


# ------------------------------------------------------------------ #
# Fixtures
# ------------------------------------------------------------------ #


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def tables() -> RoutingTables:
    return default_tables()


@pytest.fixture
def registry(tables: RoutingTables) -> ModelRegistry:
    return ModelRegistry.from_tables(tables)


@pytest.fixture
def breakers(fake_clock: FakeClock) -> CircuitBreakerRegistry:
    return CircuitBreakerRegistry(CircuitBreakerConfig(), clock=fake_clock)


@pytest.fixture
def provider() -> ScriptedProvider:
    return ScriptedProvider()


@pytest.fixture
def providers(registry: ModelRegistry, provider: ScriptedProvider) -> ProviderRegistry:
    registry_ = ProviderRegistry(registry)
    registry_.register_provider(provider)
    return registry_


@pytest.fixture
def quality() -> StubQualityScorer:
    return StubQualityScorer({"weak": 0.2, "okay": 0.6, "strong": 0.95})


@pytest.fixture
def make_router(
    registry: ModelRegistry,
    providers: ProviderRegistry,
    breakers: CircuitBreakerRegistry,
    quality: StubQualityScorer,
    tables: RoutingTables,
) -> Callable[..., CascadeRouter]:
    """Factory so tests can override individual collaborators."""

    def _make(**overrides: Any) -> CascadeRouter:
        kwargs: dict[str, Any] = {
            "quality_scorer": quality,
            "tables": tables.router,
        }
        kwargs.update(overrides)
        return CascadeRouter(registry, providers, breakers, **kwargs)

    return _make


@pytest.fixture
def make_provider() -> Callable[..., ScriptedProvider]:
    """Factory for extra scripted providers (restricted tiers, custom ids)."""
    return ScriptedProvider
