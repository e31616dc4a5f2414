"""Versioned routing tables.

Vocabulary, regex patterns, signal weights, default chains and the model
catalog all live in ``data/routing_tables.json`` and are validated here with
pydantic. The scoring code only consumes the parsed tables, so tuning a weight
or adding a term never touches a branch in Python.

Regexes are stored as plain strings and compiled case-insensitively. Use an
inline ``(?m)`` flag when a pattern needs multiline anchors.
"""

from __future__ import annotations

import json
import re
from functools import lru_cache
from pathlib import Path
from typing import Annotated, Any

import structlog
from pydantic import AfterValidator, BaseModel, Field, field_validator, model_validator

log = structlog.get_logger(__name__)

DEFAULT_TABLES_PATH = Path(__file__).parent / "data" / "routing_tables.json"


def compile_pattern(pattern: str) -> re.Pattern[str]:
    """Compile a table pattern with the flags every table regex shares."""
    return re.compile(pattern, re.IGNORECASE)


def _check_pattern(pattern: str) -> str:
    try:
        re.compile(pattern)
    except re.error as e:
        raise ValueError(f"Invalid pattern {pattern!r}: {e}") from e
    return pattern


RegexStr = Annotated[str, AfterValidator(_check_pattern)]


class ModelSpec(BaseModel):
    """One catalog entry as stored in the tables file."""

    id: str = Field(min_length=1)
    provider: str
    api_model_id: str | None = None
    quality: int = Field(ge=0, le=10)
    speed: int = Field(ge=0, le=10)
    cost_per_1m_input: float = Field(ge=0)
    cost_per_1m_output: float = Field(ge=0)
    cost_per_1m_cache_read: float = Field(default=0.0, ge=0)
    max_context_tokens: int = Field(default=200_000, gt=0)
    supports_caching: bool = True
    is_available: bool = True
    capabilities: list[str] = Field(default_factory=list)


class ChainStepSpec(BaseModel):
    tier: str = Field(min_length=1)
    threshold: float = Field(ge=0.0, le=1.0)


class ChainSpec(BaseModel):
    id: str = Field(min_length=1)
    name: str
    steps: list[ChainStepSpec] = Field(min_length=1)


class RouterTables(BaseModel):
    """Default chains and the category-to-chain map used by ``select_chain``."""

    chains: list[ChainSpec]
    chain_by_category: dict[str, str]
    default_chain: str = "frugal"
    security_chain: str = "security"
    critical_chain: str = "quality"
    complex_fallback_chain: str = "balanced"

    @model_validator(mode="after")
    def _chain_references_exist(self) -> RouterTables:
        known = {chain.id for chain in self.chains}
        referenced = set(self.chain_by_category.values()) | {
            self.default_chain,
            self.security_chain,
            self.critical_chain,
            self.complex_fallback_chain,
        }
        missing = referenced - known
        if missing:
            raise ValueError(f"Router tables reference unknown chains: {sorted(missing)}")
        return self


class VocabularyTerm(BaseModel):
    weight: float
    domains: list[str] = Field(default_factory=list)


class WeightedPattern(BaseModel):
    pattern: RegexStr
    weight: float
    reason: str = ""


class CategoryPattern(BaseModel):
    category: str
    weight: int
    patterns: list[RegexStr]


class KeywordBonus(BaseModel):
    name: str
    bonus: int
    pattern: RegexStr


class CapabilityCeiling(BaseModel):
    min_score: float
    max_quality: int
    categories: list[str] | None = None


class ClassifierTables(BaseModel):
    """Everything the request classifier needs apart from its own arithmetic."""

    signal_weights: dict[str, float]
    complexity_thresholds: dict[str, float]
    security_floor: float = 5.0
    heartbeat_ceiling: float = 1.0
    short_request_ceiling: float = 2.0
    vocabulary: dict[str, VocabularyTerm]
    structure_patterns: dict[str, RegexStr]
    ambiguity_patterns: list[WeightedPattern]
    pronoun_pattern: RegexStr
    specific_target_patterns: list[RegexStr]
    uncertainty_pattern: RegexStr
    capability_patterns: dict[str, RegexStr]
    capability_scores: dict[str, float]
    long_context_tokens: int = 10_000
    security_sensitive_bonus: float = 4.0
    agent_scores: dict[str, float]
    trust_scores: dict[str, float]
    priority_scores: dict[str, float]
    category_boosts: dict[str, float]
    category_patterns: list[CategoryPattern]
    security_override_pattern: RegexStr
    chain_by_category: dict[str, str]
    default_chain: str = "frugal"
    security_chain: str = "security"
    critical_chain: str = "quality"

    @field_validator("signal_weights")
    @classmethod
    def _weights_sum_to_one(cls, v: dict[str, float]) -> dict[str, float]:
        expected = {
            "content_analysis",
            "structural_analysis",
            "conversation_context",
            "task_metadata",
            "capability_requirements",
            "ambiguity_penalty",
        }
        if set(v) != expected:
            raise ValueError(f"signal_weights must define exactly {sorted(expected)}")
        if abs(sum(v.values()) - 1.0) > 1e-6:
            raise ValueError("signal_weights must sum to 1.0")
        return v

    @field_validator("complexity_thresholds")
    @classmethod
    def _thresholds_ascending(cls, v: dict[str, float]) -> dict[str, float]:
        ordered = [v[name] for name in ("trivial", "simple", "standard", "complex")]
        if ordered != sorted(ordered):
            raise ValueError("complexity_thresholds must ascend trivial < simple < standard < complex")
        return v


class WeightVector(BaseModel):
    quality: float = Field(ge=0)
    cost: float = Field(ge=0)
    complexity: float = Field(ge=0)
    stakes: float = Field(ge=0)
    history: float = Field(ge=0)

    @model_validator(mode="after")
    def _sums_to_one(self) -> WeightVector:
        total = self.quality + self.cost + self.complexity + self.stakes + self.history
        if abs(total - 1.0) > 1e-6:
            raise ValueError(f"Weight vector must sum to 1.0, got {total}")
        return self


class ValueScorerTables(BaseModel):
    complexity_scale: dict[str, float]
    budget_weights: dict[str, WeightVector]
    candidate_tiers: list[str] = Field(min_length=1)
    mid_quality_floor: int = 8
    pause_floor_score: float = 80
    reduce_upgrade_score: float = 70
    capability_ceilings: list[CapabilityCeiling]
    cheapest_categories: list[str]
    trivial_categories: list[str]
    keyword_bonuses: list[KeywordBonus]
    security_category_bonus: int = 2
    large_token_threshold: int = 2000
    large_token_bonus: int = 1
    complexity_buckets: dict[str, float]
    stakes_by_category: dict[str, float]
    quality_priority_by_complexity: dict[str, float]
    budget_pressure_by_state: dict[str, float]

    @field_validator("budget_weights")
    @classmethod
    def _all_budget_states(cls, v: dict[str, WeightVector]) -> dict[str, WeightVector]:
        missing = {"normal", "reduce", "pause"} - set(v)
        if missing:
            raise ValueError(f"budget_weights missing states: {sorted(missing)}")
        return v


class QualityTables(BaseModel):
    neutral: float = 0.5
    long_query_chars: int = 100
    short_response_chars: int = 20
    short_response_penalty: float = 0.3
    adequate_length_ratio: float = 0.3
    adequate_length_bonus: float = 0.15
    uncertainty_penalty: float = 0.1
    json_valid_bonus: float = 0.15
    json_invalid_penalty: float = 0.15
    code_block_bonus: float = 0.1
    refusal_penalty: float = 0.3
    confidence_bonus: float = 0.05
    uncertainty_patterns: list[RegexStr]
    refusal_patterns: list[RegexStr]
    confidence_patterns: list[RegexStr]
    code_block_pattern: RegexStr


class RoutingTables(BaseModel):
    """Top-level document of ``routing_tables.json``."""

    version: str
    models: list[ModelSpec] = Field(min_length=1)
    router: RouterTables
    classifier: ClassifierTables
    value_scorer: ValueScorerTables
    quality: QualityTables

    @model_validator(mode="after")
    def _tiers_are_catalogued(self) -> RoutingTables:
        catalogued = {model.id for model in self.models}
        referenced = {step.tier for chain in self.router.chains for step in chain.steps}
        referenced |= set(self.value_scorer.candidate_tiers)
        missing = referenced - catalogued
        if missing:
            raise ValueError(f"Tables reference uncatalogued tiers: {sorted(missing)}")
        return self


def load_routing_tables(path: str | Path | None = None) -> RoutingTables:
    """Load and validate routing tables.

    Args:
        path: JSON file to load. Defaults to the tables packaged with the router.

    Returns:
        Validated RoutingTables

    Raises:
        FileNotFoundError: If the file does not exist
        pydantic.ValidationError: If the document does not match the schema
    """
    source = Path(path) if path is not None else DEFAULT_TABLES_PATH
    raw: dict[str, Any] = json.loads(source.read_text(encoding="utf-8"))
    tables = RoutingTables.model_validate(raw)
    log.info(
        "routing_tables.loaded",
        path=str(source),
        version=tables.version,
        models=len(tables.models),
        chains=len(tables.router.chains),
        vocabulary=len(tables.classifier.vocabulary),
    )
    return tables


@lru_cache
def default_tables() -> RoutingTables:
    """Packaged tables, parsed once per process."""
    return load_routing_tables()
