"""Prioritization loop and plan models."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


@dataclass
class IncludedTask:
    """A task the generator kept in the plan."""

    task_id: str
    inclusion_reason: str
    alignment_score: float


@dataclass
class ExcludedTask:
    """A task the generator filtered out."""

    task_id: str
    exclusion_reason: str
    alignment_score: float


@dataclass
class TaskScore:
    """Generator's per-task impact/effort/confidence estimate."""

    task_id: str
    impact: float
    effort: float
    confidence: float
    reasoning: str
    brief_reasoning: str
    dependencies: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        """Validate score data."""
        if not 0.0 <= self.impact <= 10.0:
            raise ValueError(f"impact must be between 0 and 10, got {self.impact}")
        if not 0.5 <= self.effort <= 160:
            raise ValueError(f"effort must be between 0.5 and 160, got {self.effort}")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"Confidence must be between 0.0 and 1.0, got {self.confidence}")


@dataclass
class GeneratorThoughts:
    """Reasoning the generator shows alongside its result."""

    outcome_analysis: str
    filtering_rationale: str
    prioritization_strategy: str
    self_check_notes: str = ""


@dataclass
class PrioritizationResult:
    """Structured output of one generator iteration."""

    thoughts: GeneratorThoughts
    included_tasks: list[IncludedTask]
    excluded_tasks: list[ExcludedTask]
    ordered_task_ids: list[str]
    per_task_scores: dict[str, TaskScore]
    confidence: float
    critical_path_reasoning: str = ""
    corrections_made: str = ""

    def __post_init__(self) -> None:
        """Validate result data."""
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"Confidence must be between 0.0 and 1.0, got {self.confidence}")

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-friendly dict."""
        return {
            "thoughts": {
                "outcome_analysis": self.thoughts.outcome_analysis,
                "filtering_rationale": self.thoughts.filtering_rationale,
                "prioritization_strategy": self.thoughts.prioritization_strategy,
                "self_check_notes": self.thoughts.self_check_notes,
            },
            "included_tasks": [
                {
                    "task_id": t.task_id,
                    "inclusion_reason": t.inclusion_reason,
                    "alignment_score": t.alignment_score,
                }
                for t in self.included_tasks
            ],
            "excluded_tasks": [
                {
                    "task_id": t.task_id,
                    "exclusion_reason": t.exclusion_reason,
                    "alignment_score": t.alignment_score,
                }
                for t in self.excluded_tasks
            ],
            "ordered_task_ids": list(self.ordered_task_ids),
            "per_task_scores": {
                task_id: {
                    "task_id": s.task_id,
                    "impact": s.impact,
                    "effort": s.effort,
                    "confidence": s.confidence,
                    "reasoning": s.reasoning,
                    "brief_reasoning": s.brief_reasoning,
                    "dependencies": list(s.dependencies),
                }
                for task_id, s in self.per_task_scores.items()
            },
            "confidence": self.confidence,
            "critical_path_reasoning": self.critical_path_reasoning,
            "corrections_made": self.corrections_made,
        }


class EvaluationStatus(Enum):
    """Evaluator verdict on a generator result."""

    PASS = "PASS"
    NEEDS_IMPROVEMENT = "NEEDS_IMPROVEMENT"
    FAIL = "FAIL"


@dataclass
class CriteriaScores:
    """Evaluator scores (0-10) per quality criterion."""

    outcome_alignment: float
    strategic_coherence: float
    reflection_integration: float
    continuity: float


@dataclass
class EvaluationResult:
    """Evaluator output for one generator result."""

    status: EvaluationStatus
    feedback: str
    criteria_scores: CriteriaScores
    evaluation_duration_ms: int = 0


@dataclass
class ChainOfThoughtStep:
    """Record of one generator iteration inside the loop."""

    iteration: int
    confidence: float
    corrections: str
    evaluator_feedback: str | None = None
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class HybridLoopMetadata:
    """Summary of how the generator/evaluator loop ran."""

    iterations: int
    duration_ms: int
    evaluation_triggered: bool
    converged: bool
    final_confidence: float
    chain_of_thought: list[ChainOfThoughtStep] = field(default_factory=list)


@dataclass
class TaskDependency:
    """A dependency edge inferred by the generator."""

    source_task_id: str
    target_task_id: str
    relationship_type: str = "prerequisite"
    confidence: float = 1.0
    detection_method: str = "ai_inference"


@dataclass
class ExecutionWave:
    """A group of tasks that can be worked on together."""

    wave_number: int
    task_ids: list[str]
    parallel_execution: bool = False


@dataclass
class PrioritizedPlan:
    """The ordered plan presented to the user."""

    ordered_task_ids: list[str]
    execution_waves: list[ExecutionWave]
    dependencies: list[TaskDependency]
    confidence_scores: dict[str, float]
    synthesis_summary: str
    task_annotations: list[dict[str, Any]] = field(default_factory=list)
    removed_tasks: list[dict[str, str]] = field(default_factory=list)
    created_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-friendly dict."""
        return {
            "ordered_task_ids": list(self.ordered_task_ids),
            "execution_waves": [
                {
                    "wave_number": w.wave_number,
                    "task_ids": list(w.task_ids),
                    "parallel_execution": w.parallel_execution,
                }
                for w in self.execution_waves
            ],
            "dependencies": [
                {
                    "source_task_id": d.source_task_id,
                    "target_task_id": d.target_task_id,
                    "relationship_type": d.relationship_type,
                    "confidence": d.confidence,
                    "detection_method": d.detection_method,
                }
                for d in self.dependencies
            ],
            "confidence_scores": dict(self.confidence_scores),
            "synthesis_summary": self.synthesis_summary,
            "task_annotations": list(self.task_annotations),
            "removed_tasks": list(self.removed_tasks),
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class MovedTask:
    """A task whose position changed after reflection re-ranking."""

    task_id: str
    from_position: int
    to_position: int
    reason: str


@dataclass
class AdjustedPlan:
    """A plan re-ranked against the user's reflections."""

    ordered_task_ids: list[str]
    confidence_scores: dict[str, float]
    moved: list[MovedTask]
    filtered: list[str] = field(default_factory=list)
    adjusted_at: datetime = field(default_factory=datetime.now)
