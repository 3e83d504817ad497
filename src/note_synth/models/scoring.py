"""Strategic scoring models: impact, effort, confidence, priority."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

HIGH_IMPACT_THRESHOLD = 5
LOW_EFFORT_THRESHOLD = 8


class EffortSource(Enum):
    """Where an effort estimate came from."""

    EXTRACTED = "extracted"
    HEURISTIC = "heuristic"


class Quadrant(Enum):
    """Impact/effort quadrant."""

    QUICK_WINS = "high_impact_low_effort"
    STRATEGIC_BETS = "high_impact_high_effort"
    INCREMENTAL = "low_impact_low_effort"
    AVOID = "low_impact_high_effort"

    @property
    def label(self) -> str:
        """Display label with emoji."""
        return {
            Quadrant.QUICK_WINS: "🌟 Quick Wins",
            Quadrant.STRATEGIC_BETS: "🚀 Strategic Bets",
            Quadrant.INCREMENTAL: "⚡ Incremental",
            Quadrant.AVOID: "⏸ Avoid",
        }[self]


class SortingStrategy(Enum):
    """How a scored task list is filtered and ordered."""

    BALANCED = "balanced"
    QUICK_WINS = "quick_wins"
    STRATEGIC_BETS = "strategic_bets"
    URGENT = "urgent"
    FOCUS_MODE = "focus_mode"


@dataclass
class ImpactEstimate:
    """Estimated impact of a task on the outcome (0-10)."""

    impact: float
    reasoning: str
    keywords: list[str]
    confidence: float

    def __post_init__(self) -> None:
        """Validate impact data."""
        if not 0.0 <= self.impact <= 10.0:
            raise ValueError(f"impact must be between 0 and 10, got {self.impact}")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"Confidence must be between 0.0 and 1.0, got {self.confidence}")


@dataclass
class EffortEstimate:
    """Estimated effort of a task in hours."""

    effort: float
    source: EffortSource
    hint: str | None = None
    complexity_modifiers: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        """Validate effort data."""
        if not 0.5 <= self.effort <= 160:
            raise ValueError(f"effort must be between 0.5 and 160 hours, got {self.effort}")


@dataclass
class ConfidenceBreakdown:
    """Weighted components of a confidence score."""

    similarity: float
    dependency: float
    history: float

    @property
    def total(self) -> float:
        """Combined confidence, rounded to three places."""
        return round(0.6 * self.similarity + 0.3 * self.dependency + 0.1 * self.history, 3)


@dataclass
class StrategicScore:
    """Full strategic score for one task."""

    task_id: str
    impact: float
    effort: float
    confidence: float
    priority: float
    impact_keywords: list[str] = field(default_factory=list)
    effort_source: EffortSource = EffortSource.HEURISTIC
    effort_hint: str | None = None
    complexity_modifiers: list[str] = field(default_factory=list)
    confidence_breakdown: ConfidenceBreakdown | None = None
    is_placeholder: bool = False
    scored_at: datetime = field(default_factory=datetime.now)

    @property
    def quadrant(self) -> Quadrant:
        """Impact/effort quadrant for this score."""
        high_impact = self.impact >= HIGH_IMPACT_THRESHOLD
        low_effort = self.effort <= LOW_EFFORT_THRESHOLD
        if high_impact and low_effort:
            return Quadrant.QUICK_WINS
        if high_impact:
            return Quadrant.STRATEGIC_BETS
        if low_effort:
            return Quadrant.INCREMENTAL
        return Quadrant.AVOID

    def to_dict(self) -> dict:
        """Serialize to a JSON-friendly dict."""
        return {
            "task_id": self.task_id,
            "impact": self.impact,
            "effort": self.effort,
            "confidence": self.confidence,
            "priority": self.priority,
            "quadrant": self.quadrant.value,
            "reasoning": {
                "impact_keywords": list(self.impact_keywords),
                "effort_source": self.effort_source.value,
                "effort_hint": self.effort_hint,
                "complexity_modifiers": list(self.complexity_modifiers),
            },
            "is_placeholder": self.is_placeholder,
            "scored_at": self.scored_at.isoformat(),
        }
