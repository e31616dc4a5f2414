"""Cascade router developer CLI.

Inspect routing decisions offline, without calling any provider.

Commands::

    cascade-router classify TEXT [--category --security --priority --trust --agent]
    cascade-router score --complexity C [--stakes --quality --pressure --history
                                         --category --budget-state --security]
    cascade-router chains
    cascade-router models [--available]

Every command prints JSON on stdout. Logs go to stderr.

Usage::

    python -m cascade_router classify "Review this auth middleware for injection"
    python -m cascade_router score --complexity complex --stakes 8 --budget-state reduce
"""

from __future__ import annotations

import argparse
import json
import sys
import textwrap
from typing import Any

from cascade_router.config import get_settings
from cascade_router.model_router.cascade import CascadeRouter
from cascade_router.model_router.classifier import RequestClassifier
from cascade_router.model_router.errors import RoutingError
from cascade_router.model_router.providers import ProviderRegistry
from cascade_router.model_router.registry import ModelRegistry
from cascade_router.model_router.tables import RoutingTables, default_tables, load_routing_tables
from cascade_router.model_router.types import (
    BudgetState,
    Priority,
    Request,
    TaskCategory,
    TaskComplexity,
    TrustLevel,
    ValueScoreInput,
)
from cascade_router.model_router.value_scorer import ValueScorer
from cascade_router.telemetry.logging import configure_logging


def _emit(payload: Any) -> None:
    print(json.dumps(payload, indent=2, sort_keys=False))


def _err(msg: str) -> None:
    print(f"error: {msg}", file=sys.stderr)


def _load_tables(args: argparse.Namespace) -> RoutingTables:
    path = args.tables or get_settings().routing_tables_path
    return load_routing_tables(path) if path else default_tables()


# ------------------------------------------------------------------ #
# Commands
# ------------------------------------------------------------------ #


def cmd_classify(args: argparse.Namespace) -> int:
    """Classify a request and print the signals."""
    tables = _load_tables(args)
    classifier = RequestClassifier(tables.classifier)
    request = Request(
        content=args.text,
        category=args.category,
        agent=args.agent,
        trust_level=args.trust,
        priority=args.priority,
        security_sensitive=args.security,
    )
    result = classifier.classify(request)
    _emit(
        {
            "complexity": result.complexity.value,
            "score": round(result.score, 2),
            "confidence": result.confidence,
            "category": result.suggested_category.value,
            "chain": result.suggested_chain,
            "signals": {k: round(v, 2) for k, v in result.signals.as_dict().items()},
            "reasoning": result.reasoning,
        }
    )
    return 0


def cmd_score(args: argparse.Namespace) -> int:
    """Value-score a unit of work and print the recommended tier."""
    tables = _load_tables(args)
    scorer = ValueScorer(ModelRegistry.from_tables(tables), tables.value_scorer)
    value_input = ValueScoreInput(
        complexity=TaskComplexity(args.complexity),
        stakes=args.stakes,
        quality_priority=args.quality,
        budget_pressure=args.pressure,
        historical_performance=args.history,
        security_sensitive=args.security,
        category=TaskCategory(args.category),
    )
    result = scorer.score(value_input, args.budget_state)
    _emit(
        {
            "score": round(result.score, 2),
            "recommended_tier": result.recommended_tier,
            "is_floor": result.is_floor,
            "rules": list(result.applied_rules),
            "weights": {
                "quality": result.weights.quality,
                "cost": result.weights.cost,
                "complexity": result.weights.complexity,
                "stakes": result.weights.stakes,
                "history": result.weights.history,
            },
            "reasoning": result.reasoning,
        }
    )
    return 0


def cmd_chains(args: argparse.Namespace) -> int:
    """List the registered cascade chains."""
    tables = _load_tables(args)
    registry = ModelRegistry.from_tables(tables)
    router = CascadeRouter(registry, ProviderRegistry(registry), tables=tables.router)
    _emit(
        [
            {
                "id": chain.id,
                "name": chain.name,
                "default": chain.id == tables.router.default_chain,
                "steps": [{"tier": s.tier, "threshold": s.threshold} for s in chain.steps],
            }
            for chain in router.list_chains()
        ]
    )
    return 0


def cmd_models(args: argparse.Namespace) -> int:
    """List catalogued tiers, lowest capability first."""
    registry = ModelRegistry.from_tables(_load_tables(args))
    _emit(
        [
            {
                "id": m.id,
                "provider": m.provider,
                "api_model_id": m.api_model_id,
                "quality": m.quality,
                "speed": m.speed,
                "cost_per_1m_input": m.cost_per_1m_input,
                "cost_per_1m_output": m.cost_per_1m_output,
                "max_context_tokens": m.max_context_tokens,
                "available": m.is_available,
                "capabilities": sorted(m.capabilities),
            }
            for m in registry.list_models(available_only=args.available)
        ]
    )
    return 0


# ------------------------------------------------------------------ #
# Argument parsing
# ------------------------------------------------------------------ #


def _values(enum: type) -> list[str]:
    return [member.value for member in enum]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cascade-router",
        description="Cascade router developer CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent(
            """\
            Examples:
              cascade-router classify "hi"
              cascade-router classify "Audit the token refresh flow" --security
              cascade-router score --complexity standard --stakes 5 --budget-state reduce
              cascade-router chains
              cascade-router models --available
            """
        ),
    )
    parser.add_argument("--tables", default=None, help="Routing tables JSON (default: packaged tables)")
    parser.add_argument("--log-level", default="WARNING", help="Log level for stderr output")

    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")

    classify_parser = subparsers.add_parser("classify", help="Classify request complexity")
    classify_parser.add_argument("text", help="Request content")
    classify_parser.add_argument("--category", choices=_values(TaskCategory), default=TaskCategory.QUERY.value)
    classify_parser.add_argument("--security", action="store_true", help="Mark as security-sensitive")
    classify_parser.add_argument("--priority", choices=_values(Priority), default=Priority.STANDARD.value)
    classify_parser.add_argument("--trust", choices=_values(TrustLevel), default=TrustLevel.SYSTEM.value)
    classify_parser.add_argument("--agent", default="core", help="Originating agent")

    score_parser = subparsers.add_parser("score", help="Value-score a unit of work")
    score_parser.add_argument("--complexity", choices=_values(TaskComplexity), required=True)
    score_parser.add_argument("--stakes", type=float, default=5.0, help="0-10")
    score_parser.add_argument("--quality", type=float, default=5.0, help="Quality priority, 0-10")
    score_parser.add_argument("--pressure", type=float, default=2.0, help="Budget pressure, 0-10")
    score_parser.add_argument("--history", type=float, default=5.0, help="Historical performance, 0-10")
    score_parser.add_argument("--category", choices=_values(TaskCategory), default=TaskCategory.QUERY.value)
    score_parser.add_argument("--budget-state", choices=_values(BudgetState), default=BudgetState.NORMAL.value)
    score_parser.add_argument("--security", action="store_true", help="Mark as security-sensitive")

    subparsers.add_parser("chains", help="List cascade chains")

    models_parser = subparsers.add_parser("models", help="List catalogued model tiers")
    models_parser.add_argument("--available", action="store_true", help="Only available tiers")

    return parser


# ------------------------------------------------------------------ #
# Dispatch
# ------------------------------------------------------------------ #

_COMMANDS = {
    "classify": cmd_classify,
    "score": cmd_score,
    "chains": cmd_chains,
    "models": cmd_models,
}


def main(argv: list[str] | None = None) -> int:
    """Entry point for the cascade router CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    handler = _COMMANDS.get(args.command)
    if handler is None:
        parser.print_help()
        return 0

    try:
        configure_logging(json_logs=get_settings().json_logs, log_level=args.log_level)
        return handler(args)
    except (RoutingError, ValueError, FileNotFoundError) as exc:
        _err(str(exc))
        return 1


if __name__ == "__main__":
    sys.exit(main())
