"""Exception taxonomy for the routing core.

Usage errors are caller mistakes and are never retried. Provider errors are
upstream failures that the cascade recovers from locally by moving to the next
step. Quality shortfalls and open circuits are not exceptions at all; they show
up in the step trace.
"""

from __future__ import annotations


class RoutingError(Exception):
    """Base exception for all routing failures."""


class UsageError(RoutingError, ValueError):
    """Caller supplied something the router cannot act on."""


class UnknownChainError(UsageError):
    """No cascade chain is registered under the requested id."""

    def __init__(self, chain_id: str) -> None:
        super().__init__(f"Unknown cascade chain: {chain_id}")
        self.chain_id = chain_id


class EmptyRequestError(UsageError):
    """Request content is empty or whitespace only."""


class ChainDefinitionError(UsageError):
    """A chain definition is malformed or collides with an existing id."""


class UnknownModelError(UsageError):
    """Tier identifier is not registered in the model registry."""

    def __init__(self, tier: str) -> None:
        super().__init__(f"Model not found: {tier}")
        self.tier = tier


class ProviderError(RoutingError):
    """Upstream provider call failed."""

    def __init__(self, message: str, *, tier: str | None = None) -> None:
        super().__init__(message)
        self.tier = tier


class NoProviderError(ProviderError):
    """No registered provider serves the requested tier."""

    def __init__(self, tier: str) -> None:
        super().__init__(f"No provider available for model: {tier}", tier=tier)


class ProviderTimeoutError(ProviderError):
    """Provider call exceeded the per-step timeout."""


class CascadeExhaustedError(RoutingError):
    """Every step of a chain was skipped, so nothing could be attempted."""

    def __init__(self, chain_id: str, skipped: list[str]) -> None:
        super().__init__(
            f"No available models in cascade chain: {chain_id} (skipped: {', '.join(skipped)})"
        )
        self.chain_id = chain_id
        self.skipped = skipped
