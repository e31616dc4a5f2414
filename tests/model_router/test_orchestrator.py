"""Tests for RoutingOrchestrator (classify -> value-score -> cascade -> record)."""

from __future__ import annotations

import asyncio
from unittest.mock import MagicMock

import pytest
import structlog

from cascade_router.config import Settings
from cascade_router.llm import LLMClient
from cascade_router.model_router.budget import SpendGauge, StaticBudgetState
from cascade_router.model_router.errors import EmptyRequestError, ProviderError
from cascade_router.model_router.events import SkipReason
from cascade_router.model_router.metrics import PerformanceTracker
from cascade_router.model_router.orchestrator import RoutingOrchestrator
from cascade_router.model_router.types import BudgetState, Request, TaskCategory, TaskComplexity


@pytest.fixture
def tracker() -> PerformanceTracker:
    return PerformanceTracker()


@pytest.fixture
def make_orchestrator(make_router, registry, tables, tracker):
    def _make(**kwargs) -> RoutingOrchestrator:
        kwargs.setdefault("tracker", tracker)
        return RoutingOrchestrator(make_router(), registry, tables=tables, **kwargs)

    return _make


# ------------------------------------------------------------------ #
# Routing
# ------------------------------------------------------------------ #


@pytest.mark.asyncio
async def test_trivial_request_accepted_on_cheapest_step(make_orchestrator, provider):
    provider.script("gemini-2.5-flash-lite", "strong")

    result = await make_orchestrator().route(Request("ping"))

    assert result.classification.complexity is TaskComplexity.TRIVIAL
    assert result.cascade.chain_id == "frugal"
    assert result.model == "gemini-2.5-flash-lite"
    assert result.content == "strong"
    assert result.budget_state is BudgetState.NORMAL


@pytest.mark.asyncio
async def test_security_sensitive_request_uses_security_chain(make_orchestrator, provider):
    result = await make_orchestrator().route(Request("hi", security_sensitive=True))

    assert result.cascade.chain_id == "security"
    assert result.value.is_floor is True
    assert result.value.recommended_tier == "claude-sonnet-4.5"
    assert provider.calls[0] == "claude-sonnet-4.5"


@pytest.mark.asyncio
async def test_detected_security_work_skips_tiers_below_floor(make_orchestrator, provider):
    """Test the value floor keeps security-flavoured work off the cheap tiers."""
    result = await make_orchestrator().route(Request("Is this endpoint vulnerable to xss?"))

    assert result.classification.suggested_category is TaskCategory.SECURITY
    assert provider.calls == ["claude-sonnet-4.5"]
    skipped = [r for r in result.cascade.trace if not r.attempted]
    assert all(r.skip_reason is SkipReason.BELOW_FLOOR for r in skipped)


@pytest.mark.asyncio
async def test_heartbeat_value_routes_cheapest(make_orchestrator):
    result = await make_orchestrator().route(Request("ping", category=TaskCategory.HEARTBEAT))

    assert result.classification.score <= 1.0
    assert result.value.recommended_tier == "claude-haiku-3"
    assert result.value.is_floor is False


@pytest.mark.asyncio
async def test_budget_state_override(make_orchestrator):
    orchestrator = make_orchestrator(budget=StaticBudgetState(BudgetState.NORMAL))

    result = await orchestrator.route(Request("ping"), budget_state="pause")

    assert result.budget_state is BudgetState.PAUSE
    assert result.value.weights == orchestrator.value_scorer.weights_for(BudgetState.PAUSE)


@pytest.mark.asyncio
async def test_budget_collaborator_supplies_state(make_orchestrator):
    result = await make_orchestrator(budget=StaticBudgetState("reduce")).route(Request("ping"))

    assert result.budget_state is BudgetState.REDUCE


@pytest.mark.asyncio
async def test_empty_request_rejected(make_orchestrator, provider):
    with pytest.raises(EmptyRequestError):
        await make_orchestrator().route(Request("   "))

    assert provider.calls == []


# ------------------------------------------------------------------ #
# Recording
# ------------------------------------------------------------------ #


@pytest.mark.asyncio
async def test_attempted_steps_fed_to_tracker(make_orchestrator, provider, tracker):
    provider.script("gemini-2.5-flash-lite", "weak")
    provider.script("claude-haiku-4.5", "okay")

    result = await make_orchestrator().route(Request("ping"))

    assert result.cascade.total_steps == 2
    assert tracker.stats().total_calls == 2
    assert tracker.stats("gemini-2.5-flash-lite").overall_avg_quality == pytest.approx(0.2)
    assert tracker.stats("claude-haiku-4.5").overall_avg_quality == pytest.approx(0.6)


@pytest.mark.asyncio
async def test_failed_steps_recorded_as_errors(make_orchestrator, provider, tracker):
    provider.script("gemini-2.5-flash-lite", ProviderError("upstream 503", tier="gemini-2.5-flash-lite"))
    provider.script("claude-haiku-4.5", "okay")

    await make_orchestrator().route(Request("ping"))

    assert tracker.stats("gemini-2.5-flash-lite").overall_error_rate == 1.0
    assert tracker.stats("claude-haiku-4.5").overall_error_rate == 0.0


@pytest.mark.asyncio
async def test_costs_forwarded_to_budget(make_orchestrator, provider):
    gauge = SpendGauge(100.0)
    provider.script("gemini-2.5-flash-lite", "weak")
    provider.script("claude-haiku-4.5", "okay")

    result = await make_orchestrator(budget=gauge).route(Request("ping"))

    assert gauge.spent == pytest.approx(result.cascade.total_cost)
    assert set(gauge.spent_by_tier()) == {"gemini-2.5-flash-lite", "claude-haiku-4.5"}


@pytest.mark.asyncio
async def test_all_failed_steps_still_reach_tracker(make_orchestrator, provider, tracker):
    for tier in ("gemini-2.5-flash-lite", "claude-haiku-4.5", "claude-sonnet-4.5"):
        provider.script(tier, ProviderError(f"{tier} down", tier=tier))

    with pytest.raises(ProviderError):
        await make_orchestrator().route(Request("ping"))

    stats = tracker.stats()
    assert stats.total_calls == 3
    for tier in ("gemini-2.5-flash-lite", "claude-haiku-4.5", "claude-sonnet-4.5"):
        assert tracker.stats(tier).overall_error_rate == 1.0


@pytest.mark.asyncio
async def test_cancelled_route_keeps_completed_step_costs(make_orchestrator, provider, registry, tracker):
    """Test cancelling mid-cascade leaves finished steps in the cost sink and tracker."""
    sink = MagicMock()
    original = provider.complete

    async def slow_haiku(model, messages, **kwargs):
        if model.id == "claude-haiku-4.5":
            await asyncio.sleep(10)
        return await original(model, messages, **kwargs)

    provider.complete = slow_haiku
    provider.script("gemini-2.5-flash-lite", "weak")

    task = asyncio.create_task(make_orchestrator(cost_sink=sink).route(Request("ping")))
    await asyncio.sleep(0.05)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert provider.calls == ["gemini-2.5-flash-lite"]
    sink.record_cost.assert_called_once()
    tier, cost, category = sink.record_cost.call_args.args
    assert tier == "gemini-2.5-flash-lite"
    assert cost == pytest.approx(registry.get_cost("gemini-2.5-flash-lite", 1_000, 500))
    assert category is TaskCategory.QUERY
    assert tracker.stats().total_calls == 1


@pytest.mark.asyncio
async def test_separate_cost_sink(make_orchestrator):
    sink = MagicMock()

    result = await make_orchestrator(cost_sink=sink).route(Request("ping"))

    assert sink.record_cost.call_count == result.cascade.total_steps


def test_history_flows_into_value_input(make_orchestrator, tracker):
    for _ in range(5):
        tracker.record("claude-haiku-4.5", "query", quality=0.9, latency_ms=10, cost=0.0, success=True)
    orchestrator = make_orchestrator()
    request = Request("ping")
    classification = orchestrator.classifier.classify(request)

    value_input = orchestrator.value_input(classification, request, BudgetState.REDUCE)

    assert value_input.historical_performance == pytest.approx(9.0)
    assert value_input.budget_pressure == 7
    assert value_input.quality_priority == 2
    assert value_input.stakes == 3


# ------------------------------------------------------------------ #
# Log context
# ------------------------------------------------------------------ #


@pytest.mark.asyncio
async def test_request_id_bound_to_log_context(make_orchestrator):
    result = await make_orchestrator().route(Request("ping", agent="planner"), request_id="req_fixed")

    assert result.request_id == "req_fixed"
    context = structlog.contextvars.get_contextvars()
    assert context["request_id"] == "req_fixed"
    assert context["agent"] == "planner"


@pytest.mark.asyncio
async def test_request_id_generated(make_orchestrator):
    result = await make_orchestrator().route(Request("ping"))

    assert result.request_id.startswith("req_")


# ------------------------------------------------------------------ #
# Wiring
# ------------------------------------------------------------------ #


@pytest.mark.asyncio
async def test_from_settings_wires_litellm_pipeline():
    client = MagicMock(spec=LLMClient)
    client.complete.return_value = MagicMock()
    client.extract_text.return_value = "Here is the answer."
    client.extract_usage.return_value = (10, 5, 0)
    client.extract_finish_reason.return_value = "stop"
    settings = Settings(environment="test", default_chain="balanced", budget_state="reduce")

    orchestrator = RoutingOrchestrator.from_settings(settings, client=client)
    default_run = await orchestrator.cascade.execute(Request("hi"))
    routed = await orchestrator.route(Request("ping"))

    assert default_run.chain_id == "balanced"
    assert routed.budget_state is BudgetState.REDUCE
    assert routed.content == "Here is the answer."
    assert client.complete.await_count >= 2
