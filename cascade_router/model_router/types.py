"""Core request and classification types shared across the routing pipeline.

Everything in here is a plain value object. Requests are created per call by
the caller and are read-only to the router; classification and value-score
results are recomputed on every call and never stored.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class TaskCategory(str, Enum):
    """Caller-declared (or classifier-detected) kind of work."""

    QUERY = "query"
    SUMMARIZE = "summarize"
    CHAT = "chat"
    CODE_GENERATION = "code_generation"
    CODE_REVIEW = "code_review"
    ANALYSIS = "analysis"
    PLANNING = "planning"
    SECURITY = "security"
    HEARTBEAT = "heartbeat"
    PARSE_COMMAND = "parse_command"


class TaskComplexity(str, Enum):
    """Complexity buckets, ordered from cheapest to most demanding."""

    TRIVIAL = "trivial"
    SIMPLE = "simple"
    STANDARD = "standard"
    COMPLEX = "complex"
    CRITICAL = "critical"

    @property
    def level(self) -> int:
        return _COMPLEXITY_ORDER.index(self)


_COMPLEXITY_ORDER = list(TaskComplexity)


class Priority(str, Enum):
    BACKGROUND = "BACKGROUND"
    STANDARD = "STANDARD"
    URGENT = "URGENT"


class TrustLevel(str, Enum):
    SYSTEM = "system"
    OPERATOR = "operator"
    VERIFIED = "verified"
    STANDARD = "standard"
    UNTRUSTED = "untrusted"
    HOSTILE = "hostile"


class BudgetState(str, Enum):
    """Coarse system-wide spending posture supplied by the budget collaborator."""

    NORMAL = "normal"
    REDUCE = "reduce"
    PAUSE = "pause"


@dataclass(frozen=True)
class Turn:
    """One prior conversation turn.

    Attributes:
        role: "user" or "assistant"
        content: Message text
    """

    role: str
    content: str

    def __post_init__(self) -> None:
        if self.role not in ("user", "assistant"):
            raise ValueError(f"Turn role must be 'user' or 'assistant', got {self.role!r}")


@dataclass(frozen=True)
class Request:
    """Immutable routing request.

    Attributes:
        content: Free-text task content
        category: Declared task category
        messages: Prior conversation turns (oldest first)
        agent: Originating agent identifier (e.g. "core", "guardian")
        trust_level: Trust level of the content source
        priority: Scheduling priority
        security_sensitive: Forces the security floor everywhere
        caching_enabled: Passed through to providers that support prompt caching
        max_tokens: Optional output token cap for provider calls
    """

    content: str
    category: TaskCategory = TaskCategory.QUERY
    messages: tuple[Turn, ...] = ()
    agent: str = "core"
    trust_level: TrustLevel = TrustLevel.SYSTEM
    priority: Priority = Priority.STANDARD
    security_sensitive: bool = False
    caching_enabled: bool = True
    max_tokens: int | None = None

    def __post_init__(self) -> None:
        # Accept plain strings / lists from callers and normalise them
        object.__setattr__(self, "category", TaskCategory(self.category))
        object.__setattr__(self, "trust_level", TrustLevel(self.trust_level))
        object.__setattr__(self, "priority", Priority(self.priority))
        object.__setattr__(self, "messages", tuple(self.messages))
        if self.max_tokens is not None and self.max_tokens < 1:
            raise ValueError("max_tokens must be positive")

    def to_messages(self) -> list[dict[str, str]]:
        """Render prior turns plus the current content as chat messages."""
        rendered = [{"role": turn.role, "content": turn.content} for turn in self.messages]
        if not rendered or rendered[-1] != {"role": "user", "content": self.content}:
            rendered.append({"role": "user", "content": self.content})
        return rendered


@dataclass(frozen=True)
class SignalScores:
    """Per-signal breakdown of a classification, each on a 0-10 scale."""

    content_analysis: float
    structural_analysis: float
    conversation_context: float
    task_metadata: float
    capability_requirements: float
    ambiguity_penalty: float

    def as_dict(self) -> dict[str, float]:
        return {
            "content_analysis": self.content_analysis,
            "structural_analysis": self.structural_analysis,
            "conversation_context": self.conversation_context,
            "task_metadata": self.task_metadata,
            "capability_requirements": self.capability_requirements,
            "ambiguity_penalty": self.ambiguity_penalty,
        }


@dataclass(frozen=True)
class ClassificationResult:
    """Result of classifying one request.

    Attributes:
        complexity: Complexity bucket derived from ``score``
        score: Composite score (0-10)
        signals: Per-signal breakdown
        confidence: Agreement between signals (0-1)
        suggested_category: Detected category (may override the caller's)
        suggested_chain: Recommended cascade chain id
        reasoning: Human-readable explanation
    """

    complexity: TaskComplexity
    score: float
    signals: SignalScores
    confidence: float
    suggested_category: TaskCategory
    suggested_chain: str
    reasoning: str


@dataclass(frozen=True)
class ValueScoreInput:
    """Situational inputs for value scoring. All numeric fields are 0-10."""

    complexity: TaskComplexity
    stakes: float
    quality_priority: float
    budget_pressure: float
    historical_performance: float = 5.0
    security_sensitive: bool = False
    category: TaskCategory = TaskCategory.QUERY

    def __post_init__(self) -> None:
        object.__setattr__(self, "complexity", TaskComplexity(self.complexity))
        object.__setattr__(self, "category", TaskCategory(self.category))
        for name in ("stakes", "quality_priority", "budget_pressure", "historical_performance"):
            value = getattr(self, name)
            if not 0.0 <= value <= 10.0:
                raise ValueError(f"{name} must be within 0-10, got {value}")


@dataclass(frozen=True)
class ValueWeights:
    """Weight vector applied by the value scorer. Always sums to 1.0."""

    quality: float
    cost: float
    complexity: float
    stakes: float
    history: float

    def total(self) -> float:
        return self.quality + self.cost + self.complexity + self.stakes + self.history


@dataclass(frozen=True)
class ValueScoreResult:
    """Value score outcome.

    Attributes:
        score: 0-100, clamped
        recommended_tier: Tier identifier recommended for this work
        weights: Weight vector actually applied
        reasoning: Audit text (complexity, stakes and final score included)
        is_floor: True when the recommendation is a minimum, not a target
    """

    score: float
    recommended_tier: str
    weights: ValueWeights
    reasoning: str
    is_floor: bool = False
    applied_rules: tuple[str, ...] = field(default_factory=tuple)
