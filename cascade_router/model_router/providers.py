"""Provider registry - "can I call tier X" and "call tier X with these messages".

The cascade router only ever talks to ``ProviderRegistry``. Each registered
provider serves one upstream vendor; the model registry says which vendor a
tier belongs to. Cost is computed here from registry pricing, never by the
provider, so every transport is billed the same way.

Per-step timeouts are enforced here as well and surface as
``ProviderTimeoutError``. Any other failure a provider raises is normalised to
``ProviderError`` so the router has a single failure type to record against
the circuit breaker. Cancellation is never caught.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Iterable
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any, Protocol

import structlog

from cascade_router.model_router.errors import (
    NoProviderError,
    ProviderError,
    ProviderTimeoutError,
    UnknownModelError,
)
from cascade_router.model_router.registry import ModelDefinition, ModelRegistry

if TYPE_CHECKING:
    from cascade_router.config import Settings
    from cascade_router.llm import LLMClient

log = structlog.get_logger(__name__)

Messages = list[dict[str, Any]]


@dataclass(frozen=True)
class CompletionResponse:
    """Normalised completion returned by every provider.

    Attributes:
        content: Assistant text
        tier: Tier that produced the response
        input_tokens: Prompt tokens billed
        output_tokens: Completion tokens billed
        cost: USD cost, filled in by the provider registry
        duration_ms: Wall time of the upstream call
        finish_reason: Upstream finish reason ("stop", "length", ...)
        cached_input_tokens: Prompt tokens served from the provider cache
    """

    content: str
    tier: str
    input_tokens: int = 0
    output_tokens: int = 0
    cost: float = 0.0
    duration_ms: float = 0.0
    finish_reason: str = "stop"
    cached_input_tokens: int = 0

    @property
    def model(self) -> str:
        return self.tier


class Provider(Protocol):
    """One upstream transport serving one or more tiers."""

    id: str

    def supports_model(self, tier: str) -> bool: ...

    async def complete(
        self,
        model: ModelDefinition,
        messages: Messages,
        *,
        max_tokens: int,
        caching_enabled: bool,
    ) -> CompletionResponse: ...


def _with_cache_marker(messages: Messages) -> Messages:
    """Mark the final message as a prompt-cache breakpoint (Anthropic style)."""
    if not messages:
        return messages
    *head, last = messages
    content = last.get("content")
    if not isinstance(content, str):
        return messages
    marked = {
        **last,
        "content": [{"type": "text", "text": content, "cache_control": {"type": "ephemeral"}}],
    }
    return [*head, marked]


class LiteLLMProvider:
    """Provider backed by ``LLMClient``; serves every tier of one vendor."""

    def __init__(self, provider_id: str, client: LLMClient, tiers: Iterable[str]) -> None:
        self.id = provider_id
        self._client = client
        self._tiers = set(tiers)

    def supports_model(self, tier: str) -> bool:
        return tier in self._tiers

    async def complete(
        self,
        model: ModelDefinition,
        messages: Messages,
        *,
        max_tokens: int,
        caching_enabled: bool,
    ) -> CompletionResponse:
        payload = messages
        if caching_enabled and model.supports_caching and model.provider == "anthropic":
            payload = _with_cache_marker(messages)

        start = time.perf_counter()
        response = await self._client.complete(
            messages=payload,
            model=model.api_model_id,
            max_tokens=max_tokens,
        )
        duration_ms = (time.perf_counter() - start) * 1000
        input_tokens, output_tokens, cached = self._client.extract_usage(response)

        return CompletionResponse(
            content=self._client.extract_text(response),
            tier=model.id,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            duration_ms=duration_ms,
            finish_reason=self._client.extract_finish_reason(response),
            cached_input_tokens=cached,
        )


class ProviderRegistry:
    """Maps tiers to providers and runs completions with timeout and costing."""

    def __init__(
        self,
        model_registry: ModelRegistry,
        *,
        timeout_seconds: float | None = None,
    ) -> None:
        self._models = model_registry
        self._timeout = timeout_seconds
        self._providers: dict[str, Provider] = {}

    @classmethod
    def from_settings(
        cls,
        model_registry: ModelRegistry,
        settings: Settings,
        client: LLMClient | None = None,
    ) -> ProviderRegistry:
        """One LiteLLM-backed provider per vendor in the catalog, sharing a client."""
        from cascade_router.llm import LLMClient

        client = client or LLMClient(settings)
        registry = cls(model_registry, timeout_seconds=settings.litellm_timeout_seconds)
        vendors: dict[str, list[str]] = {}
        for model in model_registry.list_models():
            vendors.setdefault(model.provider, []).append(model.id)
        for vendor, tiers in vendors.items():
            registry.register_provider(LiteLLMProvider(vendor, client, tiers))
        return registry

    def register_provider(self, provider: Provider) -> None:
        self._providers[provider.id] = provider
        log.info("provider_registry.registered", provider=provider.id)

    def unregister_provider(self, provider_id: str) -> None:
        if self._providers.pop(provider_id, None) is not None:
            log.info("provider_registry.unregistered", provider=provider_id)

    def list_providers(self) -> list[str]:
        return list(self._providers)

    def _find_provider(self, tier: str) -> Provider | None:
        try:
            provider = self._providers.get(self._models.get_model(tier).provider)
        except UnknownModelError:
            provider = None
        if provider is not None:
            return provider
        # Not mapped through the catalog, ask each provider directly
        for candidate in self._providers.values():
            if candidate.supports_model(tier):
                return candidate
        return None

    def get_provider_for_model(self, tier: str) -> Provider:
        """Raises NoProviderError if no registered provider serves ``tier``."""
        provider = self._find_provider(tier)
        if provider is None:
            raise NoProviderError(tier)
        return provider

    def has_provider_for(self, tier: str) -> bool:
        return self._find_provider(tier) is not None

    async def complete(
        self,
        tier: str,
        messages: Messages,
        *,
        max_tokens: int,
        caching_enabled: bool = True,
    ) -> CompletionResponse:
        """Run one completion on ``tier`` and price it from the model registry.

        Raises:
            NoProviderError: No provider serves the tier
            ProviderTimeoutError: The call exceeded the per-step timeout
            ProviderError: The provider failed for any other reason
        """
        provider = self.get_provider_for_model(tier)
        model = self._models.get_model(tier)

        try:
            response = await asyncio.wait_for(
                provider.complete(
                    model,
                    messages,
                    max_tokens=max_tokens,
                    caching_enabled=caching_enabled,
                ),
                timeout=self._timeout,
            )
        except TimeoutError as exc:
            raise ProviderTimeoutError(
                f"Provider {provider.id} timed out after {self._timeout}s for model: {tier}",
                tier=tier,
            ) from exc
        except ProviderError:
            raise
        except Exception as exc:
            raise ProviderError(f"Provider {provider.id} failed for model {tier}: {exc}", tier=tier) from exc

        cost = self._models.get_cost(
            tier,
            response.input_tokens,
            response.output_tokens,
            response.cached_input_tokens,
        )
        log.debug(
            "provider_registry.completed",
            tier=tier,
            provider=provider.id,
            input_tokens=response.input_tokens,
            output_tokens=response.output_tokens,
            cost=cost,
        )
        return replace(response, tier=tier, cost=cost)
