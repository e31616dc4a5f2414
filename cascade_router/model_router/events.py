"""Step traces and the routing event surface.

The cascade router returns its step trace as a plain value and also reports
progress to listeners, synchronously and in order, right after each state
change:

- ``cascade:started``        {chain, queryLength}
- ``cascade:step_complete``  {step, tier, quality, escalated}
- ``cascade:complete``       {chain, finalModel, totalSteps}
- ``circuit:state_changed``  {tier, from, to}

A listener that raises is logged and ignored; it can never change the outcome
of a routing decision.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar

import structlog

from cascade_router.model_router.circuit_breaker import CircuitTransition

log = structlog.get_logger(__name__)


class StepOutcome(str, Enum):
    ACCEPTED = "accepted"
    ESCALATED = "escalated"  # Quality below the step threshold
    FAILED = "failed"  # Provider error, recorded on the breaker
    SKIPPED = "skipped"  # Never attempted


class SkipReason(str, Enum):
    UNAVAILABLE = "unavailable"
    CIRCUIT_OPEN = "circuit_open"
    NO_PROVIDER = "no_provider"
    BELOW_FLOOR = "below_floor"


@dataclass(frozen=True)
class StepRecord:
    """One entry of an execution trace.

    Attributes:
        index: Position of the step in the chain (0-based)
        tier: Tier configured for the step
        threshold: Quality threshold configured for the step
        outcome: What happened to the step
        quality: Heuristic quality of the response, None if nothing came back
        cost: USD spent on the step
        duration_ms: Provider call duration
        skip_reason: Set when the step was skipped
        error: Provider error message when the step failed
    """

    index: int
    tier: str
    threshold: float
    outcome: StepOutcome
    quality: float | None = None
    cost: float = 0.0
    duration_ms: float = 0.0
    skip_reason: SkipReason | None = None
    error: str | None = None

    @property
    def attempted(self) -> bool:
        return self.outcome is not StepOutcome.SKIPPED

    @property
    def escalated(self) -> bool:
        return self.outcome in (StepOutcome.ESCALATED, StepOutcome.FAILED)


@dataclass(frozen=True)
class CascadeStarted:
    name: ClassVar[str] = "cascade:started"

    chain_id: str
    query_length: int

    def payload(self) -> dict[str, Any]:
        return {"chain": self.chain_id, "queryLength": self.query_length}


@dataclass(frozen=True)
class StepCompleted:
    name: ClassVar[str] = "cascade:step_complete"

    chain_id: str
    record: StepRecord

    def payload(self) -> dict[str, Any]:
        return {
            "step": self.record.index,
            "tier": self.record.tier,
            "quality": self.record.quality if self.record.quality is not None else 0.0,
            "escalated": self.record.escalated,
        }


@dataclass(frozen=True)
class CascadeCompleted:
    name: ClassVar[str] = "cascade:complete"

    chain_id: str
    final_model: str
    total_steps: int
    total_cost: float
    duration_ms: float

    def payload(self) -> dict[str, Any]:
        return {
            "chain": self.chain_id,
            "finalModel": self.final_model,
            "totalSteps": self.total_steps,
        }


@dataclass(frozen=True)
class CircuitStateChanged:
    name: ClassVar[str] = "circuit:state_changed"

    transition: CircuitTransition

    def payload(self) -> dict[str, Any]:
        return {
            "tier": self.transition.name,
            "from": self.transition.previous.value,
            "to": self.transition.current.value,
        }


class RoutingListener:
    """Observer base class. Override only the hooks you care about."""

    def on_cascade_started(self, event: CascadeStarted) -> None:
        pass

    def on_step_complete(self, event: StepCompleted) -> None:
        pass

    def on_cascade_complete(self, event: CascadeCompleted) -> None:
        pass

    def on_circuit_state_changed(self, event: CircuitStateChanged) -> None:
        pass


class LoggingListener(RoutingListener):
    """Mirrors every routing event into the structured log."""

    def on_cascade_started(self, event: CascadeStarted) -> None:
        log.debug(event.name, **event.payload())

    def on_step_complete(self, event: StepCompleted) -> None:
        log.info(event.name, chain=event.chain_id, **event.payload())

    def on_cascade_complete(self, event: CascadeCompleted) -> None:
        log.info(
            event.name,
            **event.payload(),
            total_cost=event.total_cost,
            duration_ms=event.duration_ms,
        )

    def on_circuit_state_changed(self, event: CircuitStateChanged) -> None:
        log.info(event.name, **event.payload())


_HOOKS: dict[type, str] = {
    CascadeStarted: "on_cascade_started",
    StepCompleted: "on_step_complete",
    CascadeCompleted: "on_cascade_complete",
    CircuitStateChanged: "on_circuit_state_changed",
}


class EventDispatcher:
    """Delivers events to listeners in registration order."""

    def __init__(self, listeners: Iterable[RoutingListener] = ()) -> None:
        self._listeners: list[RoutingListener] = list(listeners)

    def add(self, listener: RoutingListener) -> None:
        self._listeners.append(listener)

    def remove(self, listener: RoutingListener) -> None:
        self._listeners.remove(listener)

    def __len__(self) -> int:
        return len(self._listeners)

    def extended(self, listeners: Iterable[RoutingListener]) -> EventDispatcher:
        """A new dispatcher delivering to these listeners after the current ones."""
        return EventDispatcher([*self._listeners, *listeners])

    def emit(self, event: CascadeStarted | StepCompleted | CascadeCompleted | CircuitStateChanged) -> None:
        hook = _HOOKS[type(event)]
        for listener in list(self._listeners):
            try:
                getattr(listener, hook)(event)
            except Exception:
                log.exception(
                    "routing_events.listener_failed",
                    event_name=event.name,
                    listener=type(listener).__name__,
                )

    def circuit_transition(self, transition: CircuitTransition) -> None:
        """Adapter for ``CircuitBreakerRegistry(on_transition=...)``."""
        self.emit(CircuitStateChanged(transition))
