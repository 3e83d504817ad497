"""Models for task quality, coverage, clustering, drafts and gaps."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class VerbStrength(Enum):
    """Whether a task opens with a concrete action verb."""

    STRONG = "strong"
    WEAK = "weak"


class EstimatedSize(Enum):
    """Rough size bucket derived from task text length."""

    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"


class CalculationMethod(Enum):
    """How a quality score was produced."""

    AI = "ai"
    HEURISTIC = "heuristic"


class QualityBadge(Enum):
    """Display badge for a clarity score.

    - CLEAR: green, score >= 0.8
    - REVIEW: yellow, score >= 0.5
    - NEEDS_WORK: red, below 0.5
    """

    CLEAR = "Clear"
    REVIEW = "Review"
    NEEDS_WORK = "Needs Work"

    @property
    def color(self) -> str:
        """Badge color name."""
        return {
            QualityBadge.CLEAR: "green",
            QualityBadge.REVIEW: "yellow",
            QualityBadge.NEEDS_WORK: "red",
        }[self]


@dataclass
class SpecificityIndicators:
    """Signals that a task is measurable."""

    has_metrics: bool
    has_acceptance_criteria: bool
    contains_numbers: bool


@dataclass
class GranularityFlags:
    """Signals about task size and whether it should be split."""

    estimated_size: EstimatedSize
    is_atomic: bool


@dataclass
class QualityMetadata:
    """Result of evaluating a task's clarity."""

    clarity_score: float
    verb_strength: VerbStrength
    specificity_indicators: SpecificityIndicators
    granularity_flags: GranularityFlags
    improvement_suggestions: list[str]
    calculation_method: CalculationMethod
    calculated_at: datetime = field(default_factory=datetime.now)

    def __post_init__(self) -> None:
        """Validate quality data."""
        if not 0.0 <= self.clarity_score <= 1.0:
            raise ValueError(f"clarity_score must be between 0.0 and 1.0, got {self.clarity_score}")

    @property
    def badge(self) -> QualityBadge:
        """Badge for this score."""
        if self.clarity_score >= 0.8:
            return QualityBadge.CLEAR
        if self.clarity_score >= 0.5:
            return QualityBadge.REVIEW
        return QualityBadge.NEEDS_WORK

    def to_dict(self) -> dict:
        """Serialize to a JSON-friendly dict."""
        return {
            "clarity_score": self.clarity_score,
            "verb_strength": self.verb_strength.value,
            "specificity_indicators": {
                "has_metrics": self.specificity_indicators.has_metrics,
                "has_acceptance_criteria": self.specificity_indicators.has_acceptance_criteria,
                "contains_numbers": self.specificity_indicators.contains_numbers,
            },
            "granularity_flags": {
                "estimated_size": self.granularity_flags.estimated_size.value,
                "is_atomic": self.granularity_flags.is_atomic,
            },
            "improvement_suggestions": list(self.improvement_suggestions),
            "calculation_method": self.calculation_method.value,
            "calculated_at": self.calculated_at.isoformat(),
            "badge": self.badge.value,
        }


@dataclass
class CoverageAnalysis:
    """How well the current task set covers an outcome."""

    coverage_percentage: int
    missing_areas: list[str]
    goal_embedding: list[float]
    task_cluster_centroid: list[float]
    task_count: int
    threshold_used: float = 0.7
    analyzed_at: datetime = field(default_factory=datetime.now)

    def __post_init__(self) -> None:
        """Validate coverage data."""
        if not 0 <= self.coverage_percentage <= 100:
            raise ValueError(
                f"coverage_percentage must be between 0 and 100, got {self.coverage_percentage}"
            )

    @property
    def should_generate_drafts(self) -> bool:
        """Whether coverage is low enough to propose new tasks."""
        return self.coverage_percentage < round(self.threshold_used * 100)


@dataclass
class TaskCluster:
    """A group of semantically similar tasks."""

    task_ids: list[str]
    centroid: list[float]
    average_similarity: float


@dataclass
class ClusteringResult:
    """Output of complete-linkage task clustering."""

    clusters: list[TaskCluster]
    ungrouped_task_ids: list[str]
    threshold_used: float


class DraftSource(Enum):
    """Where a draft task suggestion came from."""

    SEMANTIC_GAP = "semantic_gap"
    DEPENDENCY_GAP = "dependency_gap"

    @property
    def label(self) -> str:
        """Display label for the source."""
        if self is DraftSource.SEMANTIC_GAP:
            return "🎯 Semantic Gap"
        return "🔗 Dependency Gap"


class CognitionLevel(Enum):
    """Mental effort a task requires."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass
class DraftTask:
    """An AI-proposed task filling a coverage gap."""

    id: str
    task_text: str
    estimated_hours: float
    cognition_level: CognitionLevel
    reasoning: str
    gap_area: str
    confidence_score: float
    source: DraftSource
    deduplication_hash: str
    embedding: list[float] | None = None

    def __post_init__(self) -> None:
        """Validate draft data."""
        if not 10 <= len(self.task_text) <= 200:
            raise ValueError(f"task_text must be 10-200 characters, got {len(self.task_text)}")
        # Bridging work for dependency gaps is sized in days, semantic drafts in hours.
        max_hours = 160.0 if self.source is DraftSource.DEPENDENCY_GAP else 8.0
        if not 0.25 <= self.estimated_hours <= max_hours:
            raise ValueError(
                f"estimated_hours must be 0.25-{max_hours:g}, got {self.estimated_hours}"
            )
        if not 0.0 <= self.confidence_score <= 1.0:
            raise ValueError(
                f"confidence_score must be between 0.0 and 1.0, got {self.confidence_score}"
            )

    @property
    def source_label(self) -> str:
        """Display label for where this draft came from."""
        return self.source.label

    def to_dict(self) -> dict:
        """Serialize to a JSON-friendly dict."""
        return {
            "id": self.id,
            "task_text": self.task_text,
            "estimated_hours": self.estimated_hours,
            "cognition_level": self.cognition_level.value,
            "reasoning": self.reasoning,
            "gap_area": self.gap_area,
            "confidence_score": self.confidence_score,
            "source": self.source.value,
            "source_label": self.source_label,
            "deduplication_hash": self.deduplication_hash,
        }


@dataclass
class DeduplicationStats:
    """Counts from merging semantic and dependency drafts."""

    dependency_total: int
    dependency_suppressed: int
    final_count: int


@dataclass
class GapIndicators:
    """Signals that work is missing between two adjacent tasks."""

    time_gap: bool
    action_type_jump: bool
    no_dependency: bool
    skill_jump: bool

    @property
    def count(self) -> int:
        """Number of indicators that fired."""
        return sum([self.time_gap, self.action_type_jump, self.no_dependency, self.skill_jump])


@dataclass
class DetectedGap:
    """A likely gap between two consecutive tasks."""

    id: str
    predecessor_task_id: str
    successor_task_id: str
    indicators: GapIndicators
    confidence: float
    detected_at: datetime = field(default_factory=datetime.now)


@dataclass
class GapAnalysis:
    """Result of scanning a task sequence for gaps."""

    gaps: list[DetectedGap]
    total_pairs_analyzed: int
    analysis_duration_ms: int

    @property
    def gaps_detected(self) -> int:
        """Number of gaps returned."""
        return len(self.gaps)
