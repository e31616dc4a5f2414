"""Response quality scoring used as the cascade escalation trigger.

The scorer is pluggable: anything with ``score(query, response) -> float`` in
[0, 1] can be handed to the cascade router. The default heuristic approximates
adequacy from cheap textual signals:

1. Length of the response relative to the query
2. Hedging / uncertainty markers
3. Structural completeness (JSON validity, fenced code)
4. Refusals
5. Assertive, specific phrasing
"""

from __future__ import annotations

import json
from typing import Protocol

from cascade_router.model_router.tables import QualityTables, compile_pattern, default_tables


class QualityScorer(Protocol):
    def score(self, query: str, response: str) -> float: ...


class HeuristicQualityScorer:
    """Table-driven heuristic starting from a neutral 0.5."""

    def __init__(self, tables: QualityTables | None = None) -> None:
        self._tables = tables or default_tables().quality
        self._uncertainty = [compile_pattern(p) for p in self._tables.uncertainty_patterns]
        self._refusal = [compile_pattern(p) for p in self._tables.refusal_patterns]
        self._confidence = [compile_pattern(p) for p in self._tables.confidence_patterns]
        self._code_block = compile_pattern(self._tables.code_block_pattern)

    def score(self, query: str, response: str) -> float:
        t = self._tables
        score = t.neutral

        # Very short answers to long queries are suspect
        if len(query) > t.long_query_chars and len(response) < t.short_response_chars:
            score -= t.short_response_penalty
        elif len(response) > len(query) * t.adequate_length_ratio:
            score += t.adequate_length_bonus

        score -= t.uncertainty_penalty * sum(1 for p in self._uncertainty if p.search(response))

        stripped = response.strip()
        if stripped.startswith(("{", "[")):
            try:
                json.loads(stripped)
            except ValueError:
                score -= t.json_invalid_penalty
            else:
                score += t.json_valid_bonus

        if self._code_block.search(response):
            score += t.code_block_bonus

        if any(p.search(response) for p in self._refusal):
            score -= t.refusal_penalty

        score += t.confidence_bonus * sum(1 for p in self._confidence if p.search(response))

        return max(0.0, min(1.0, score))
