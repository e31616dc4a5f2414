"""Multi-signal request classification for cascade routing.

The RequestClassifier scores a request on six independent signals (each 0-10)
and blends them into a composite score that drives complexity bucketing and
chain selection:

Signals analyzed:
- Content: domain vocabulary, multi-domain spread, length, sentence length
- Structure: code blocks, lists, conditionals, file references, multi-part asks
- Conversation: turn depth, accumulated volume, topic shifts, prior uncertainty
- Metadata: security flag, agent role, trust level, priority, declared category
- Capabilities: reasoning, code, tools, vision and long-context needs
- Ambiguity: vague phrasing, very short asks, pronoun density, missing targets

Score -> complexity mapping (from the routing tables):
- < 2.0: trivial
- < 4.0: simple
- < 5.0: standard
- < 7.0: complex
- >= 7.0: critical

Vocabulary, patterns and weights are loaded from the routing tables. Only the
shape of each signal (increments and caps) lives here. Classification is pure:
no I/O, no shared mutable state.
"""

from __future__ import annotations

import math
import re

import structlog

from cascade_router.model_router.tables import ClassifierTables, compile_pattern, default_tables
from cascade_router.model_router.types import (
    ClassificationResult,
    Request,
    SignalScores,
    TaskCategory,
    TaskComplexity,
)

log = structlog.get_logger(__name__)

_WORD_SPLIT = re.compile(r"\s+")
_SENTENCE_SPLIT = re.compile(r"[.!?]+")

_SIGNAL_LABELS = (
    ("Content", "content_analysis"),
    ("Structure", "structural_analysis"),
    ("Context", "conversation_context"),
    ("Metadata", "task_metadata"),
    ("Capabilities", "capability_requirements"),
    ("Ambiguity", "ambiguity_penalty"),
)


def _clamp(value: float, low: float = 0.0, high: float = 10.0) -> float:
    return max(low, min(high, value))


def _words(text: str) -> list[str]:
    return [w for w in _WORD_SPLIT.split(text) if w]


def _count(pattern: re.Pattern[str], text: str) -> int:
    return sum(1 for _ in pattern.finditer(text))


class RequestClassifier:
    """Scores requests across six signals and buckets them by complexity."""

    # Content signal shape
    CONTENT_BASE = 2.0
    DOMAIN_CAP = 6.0
    LONG_SENTENCE_WORDS = 25

    # Conversation signal shape
    TOPIC_SHIFT_MAJOR = 0.1
    TOPIC_SHIFT_MODERATE = 0.3

    # Ambiguity signal shape
    AMBIGUITY_BASE = 2.0
    DETAILED_REQUEST_WORDS = 50

    # Confidence: stddev 0 -> 1.0, floor at 0.3
    CONFIDENCE_FLOOR = 0.3
    CONFIDENCE_STDDEV_SCALE = 5.0

    SHORT_REQUEST_WORDS = 5

    def __init__(self, tables: ClassifierTables | None = None) -> None:
        self._tables = tables or default_tables().classifier
        t = self._tables
        self._vocabulary = [
            (compile_pattern(rf"\b{re.escape(term)}(?:s|es)?\b"), entry.weight, entry.domains)
            for term, entry in t.vocabulary.items()
        ]
        self._structure = {name: compile_pattern(p) for name, p in t.structure_patterns.items()}
        self._ambiguity = [(compile_pattern(p.pattern), p.weight) for p in t.ambiguity_patterns]
        self._pronoun = compile_pattern(t.pronoun_pattern)
        self._specific_targets = [compile_pattern(p) for p in t.specific_target_patterns]
        self._uncertainty = compile_pattern(t.uncertainty_pattern)
        self._capabilities = {name: compile_pattern(p) for name, p in t.capability_patterns.items()}
        self._categories = [
            (TaskCategory(entry.category), [compile_pattern(p) for p in entry.patterns], entry.weight)
            for entry in t.category_patterns
        ]
        self._security_override = compile_pattern(t.security_override_pattern)

    def classify(self, request: Request) -> ClassificationResult:
        """Classify a request.

        Args:
            request: Routing request

        Returns:
            ClassificationResult with composite score, complexity bucket,
            per-signal breakdown, confidence, category and chain suggestion
        """
        content = self._full_content(request)

        signals = SignalScores(
            content_analysis=self._analyze_content(content),
            structural_analysis=self._analyze_structure(content),
            conversation_context=self._analyze_conversation(request),
            task_metadata=self._analyze_metadata(request),
            capability_requirements=self._analyze_capabilities(content, request.category),
            ambiguity_penalty=self._analyze_ambiguity(content),
        )

        weights = self._tables.signal_weights
        composite = sum(value * weights[name] for name, value in signals.as_dict().items())
        composite = self._apply_gates_and_interactions(composite, signals, request)

        complexity = self.score_to_complexity(composite)
        confidence = self._confidence(signals)
        category = self._detect_category(content, request.category)
        chain = self.suggest_chain(complexity, category, request.security_sensitive)

        result = ClassificationResult(
            complexity=complexity,
            score=composite,
            signals=signals,
            confidence=confidence,
            suggested_category=category,
            suggested_chain=chain,
            reasoning=self._build_reasoning(signals, composite, complexity, confidence),
        )

        log.debug(
            "request_classifier.classified",
            complexity=complexity.value,
            score=round(composite, 3),
            confidence=confidence,
            category=category.value,
            chain=chain,
        )
        return result

    # ------------------------------------------------------------------ #
    # Signals
    # ------------------------------------------------------------------ #

    def _analyze_content(self, content: str) -> float:
        """Domain vocabulary plus length and sentence-structure bonuses."""
        score = self.CONTENT_BASE

        domain_score = 0.0
        domains: set[str] = set()
        for pattern, weight, term_domains in self._vocabulary:
            if pattern.search(content):
                domain_score += weight
                domains.update(term_domains)

        # Cross-cutting requests are harder
        if len(domains) >= 3:
            domain_score += 1.5
        elif len(domains) >= 2:
            domain_score += 0.5
        score += min(domain_score, self.DOMAIN_CAP)

        estimated_tokens = len(content) / 4
        if estimated_tokens > 5000:
            score += 1.5
        elif estimated_tokens > 2000:
            score += 1.0
        elif estimated_tokens > 500:
            score += 0.5

        sentences = [s for s in _SENTENCE_SPLIT.split(content) if s.strip()]
        if sentences and len(_words(content)) / len(sentences) > self.LONG_SENTENCE_WORDS:
            score += 0.5

        return _clamp(score)

    def _analyze_structure(self, content: str) -> float:
        """Code blocks, list items, conditionals, file references, multi-part asks."""
        s = self._structure
        score = 0.0

        code_blocks = [m.group(0) for m in s["code_block"].finditer(content)]
        if code_blocks:
            score += min(len(code_blocks) * 1.5, 4.0)
            if sum(len(block) for block in code_blocks) > 1000:
                score += 1.0

        list_items = _count(s["numbered_list"], content) + _count(s["bullet_list"], content)
        if list_items > 5:
            score += 2.0
        elif list_items > 2:
            score += 1.0
        elif list_items > 0:
            score += 0.5

        score += min(_count(s["conditional_logic"], content) * 1.0, 3.0)
        score += min(_count(s["file_reference"], content) * 0.5, 2.0)
        score += min(_count(s["multi_part"], content) * 0.5, 2.0)
        score += min(_count(s["technical_terms"], content) * 0.3, 2.0)

        if _count(s["question_mark"], content) > 2:
            score += 1.0

        return _clamp(score)

    def _analyze_conversation(self, request: Request) -> float:
        """Zero for a first turn, grows with depth, volume and topic shifts."""
        turns = request.messages
        if not turns:
            return 0.0

        score = 0.0
        if len(turns) > 10:
            score += 3.0
        elif len(turns) > 5:
            score += 2.0
        elif len(turns) > 2:
            score += 1.0

        total_tokens = sum(len(turn.content) for turn in turns) / 4
        if total_tokens > 10_000:
            score += 2.0
        elif total_tokens > 3000:
            score += 1.0

        user_texts = [turn.content for turn in turns if turn.role == "user"]
        if not user_texts or user_texts[-1] != request.content:
            user_texts.append(request.content)
        if len(user_texts) >= 2:
            similarity = self._jaccard(user_texts[-1], user_texts[-2])
            if similarity < self.TOPIC_SHIFT_MAJOR:
                score += 1.5
            elif similarity < self.TOPIC_SHIFT_MODERATE:
                score += 0.5

        if any(turn.role == "assistant" and self._uncertainty.search(turn.content) for turn in turns):
            score += 1.5

        return _clamp(score)

    @staticmethod
    def _jaccard(a: str, b: str) -> float:
        words_a = {w for w in _words(a.lower()) if len(w) > 3}
        words_b = {w for w in _words(b.lower()) if len(w) > 3}
        union = words_a | words_b
        if not union:
            return 1.0
        return len(words_a & words_b) / len(union)

    def _analyze_metadata(self, request: Request) -> float:
        """Fixed bonuses for security flag, agent, trust, priority and category."""
        t = self._tables
        score = 0.0
        if request.security_sensitive:
            score += t.security_sensitive_bonus
        score += t.agent_scores.get(request.agent, 0.0)
        score += t.trust_scores.get(request.trust_level.value, 0.0)
        score += t.priority_scores.get(request.priority.value, 0.0)
        score += t.category_boosts.get(request.category.value, 0.0)
        return _clamp(score)

    def _analyze_capabilities(self, content: str, category: TaskCategory) -> float:
        """Credit per required capability plus a bonus for combinations."""
        t = self._tables
        detected: set[str] = set()
        for name, pattern in self._capabilities.items():
            if pattern.search(content):
                detected.add(name)
        if category in (TaskCategory.CODE_GENERATION, TaskCategory.CODE_REVIEW):
            detected.add("code")

        score = sum(t.capability_scores.get(name, 0.0) for name in detected)

        estimated_tokens = len(content) / 4
        if estimated_tokens > t.long_context_tokens:
            detected.add("long_context")
            score += t.capability_scores.get("long_context", 0.0)
        elif estimated_tokens > 3000:
            score += 1.0

        if len(detected) >= 3:
            score += 2.0
        elif len(detected) >= 2:
            score += 1.0

        return _clamp(score)

    def _analyze_ambiguity(self, content: str) -> float:
        """Higher means the model has to infer more of the intent."""
        score = self.AMBIGUITY_BASE

        for pattern, weight in self._ambiguity:
            if pattern.search(content):
                score += weight

        word_count = len(_words(content))
        if word_count <= 3:
            score += 2.0
        elif word_count <= 8:
            score += 1.0
        elif word_count > self.DETAILED_REQUEST_WORDS:
            score -= 1.0

        density = _count(self._pronoun, content) / word_count if word_count else 0.0
        if density > 0.15:
            score += 1.5
        elif density > 0.08:
            score += 0.5

        has_target = any(p.search(content) for p in self._specific_targets)
        if not has_target and word_count > 5:
            score += 1.0

        return _clamp(score)

    # ------------------------------------------------------------------ #
    # Composite
    # ------------------------------------------------------------------ #

    def _apply_gates_and_interactions(
        self,
        score: float,
        signals: SignalScores,
        request: Request,
    ) -> float:
        t = self._tables
        security_category = request.category is TaskCategory.SECURITY

        # Security floor guarantees at least "complex"
        if request.security_sensitive or security_category or signals.task_metadata >= 7:
            score = max(score, t.security_floor)

        # Very short conversational asks stay cheap
        if (
            len(_words(request.content)) <= self.SHORT_REQUEST_WORDS
            and not request.security_sensitive
            and not security_category
            and signals.content_analysis < 3
            and signals.task_metadata < 3
        ):
            score = min(score, t.short_request_ceiling)

        if request.category is TaskCategory.HEARTBEAT:
            return _clamp(min(score, t.heartbeat_ceiling))

        # Correlated signals amplify each other
        if signals.content_analysis > 5 and signals.structural_analysis > 4:
            score += 0.8
        if signals.conversation_context > 3 and signals.content_analysis > 5:
            score += 0.6
        if signals.ambiguity_penalty > 5 and signals.conversation_context > 4:
            score += 0.5
        if signals.capability_requirements > 5 and signals.content_analysis > 5:
            score += 0.5

        return _clamp(score)

    def score_to_complexity(self, score: float) -> TaskComplexity:
        thresholds = self._tables.complexity_thresholds
        if score < thresholds["trivial"]:
            return TaskComplexity.TRIVIAL
        if score < thresholds["simple"]:
            return TaskComplexity.SIMPLE
        if score < thresholds["standard"]:
            return TaskComplexity.STANDARD
        if score < thresholds["complex"]:
            return TaskComplexity.COMPLEX
        return TaskComplexity.CRITICAL

    def _confidence(self, signals: SignalScores) -> float:
        """Signal agreement: low spread means high confidence."""
        values = list(signals.as_dict().values())
        mean = sum(values) / len(values)
        stddev = math.sqrt(sum((v - mean) ** 2 for v in values) / len(values))
        confidence = max(self.CONFIDENCE_FLOOR, 1.0 - stddev / self.CONFIDENCE_STDDEV_SCALE)
        return round(_clamp(confidence, 0.0, 1.0), 2)

    # ------------------------------------------------------------------ #
    # Category and chain
    # ------------------------------------------------------------------ #

    def _detect_category(self, content: str, declared: TaskCategory) -> TaskCategory:
        best, best_weight = declared, 0
        for category, patterns, weight in self._categories:
            if any(p.search(content) for p in patterns) and weight > best_weight:
                best, best_weight = category, weight

        if self._security_override.search(content):
            return TaskCategory.SECURITY

        # Weak pattern evidence never overrides a specific declared category
        if best_weight < 2 and declared not in (TaskCategory.QUERY, TaskCategory.CHAT):
            return declared
        return best

    def suggest_chain(
        self,
        complexity: TaskComplexity,
        category: TaskCategory,
        security_sensitive: bool,
    ) -> str:
        t = self._tables
        if security_sensitive:
            return t.security_chain
        if complexity is TaskComplexity.CRITICAL:
            return t.critical_chain
        return t.chain_by_category.get(category.value, t.default_chain)

    def _build_reasoning(
        self,
        signals: SignalScores,
        composite: float,
        complexity: TaskComplexity,
        confidence: float,
    ) -> str:
        parts = [
            f"Composite: {composite:.2f}/10 -> {complexity.value}",
            f"Confidence: {confidence * 100:.0f}%",
        ]
        values = signals.as_dict()
        significant = [
            f"{label}:{values[name]:.1f}" for label, name in _SIGNAL_LABELS if values[name] >= 3.0
        ]
        if significant:
            parts.append("Key signals: " + ", ".join(significant))
        return " | ".join(parts)

    def _full_content(self, request: Request) -> str:
        """Request content plus the latest prior user turn when it differs."""
        for turn in reversed(request.messages):
            if turn.role == "user":
                if turn.content != request.content:
                    return f"{request.content}\n{turn.content}"
                break
        return request.content
