"""Data models for note-synth."""

from note_synth.models.intelligence import (
    CoverageAnalysis,
    DraftSource,
    DraftTask,
    QualityBadge,
    QualityMetadata,
)
from note_synth.models.manual import ManualTask, ManualTaskAnalysis, ManualTaskStatus
from note_synth.models.plan import EvaluationResult, PrioritizationResult, PrioritizedPlan
from note_synth.models.reflections import ReflectionEffect, ReflectionIntent
from note_synth.models.reviews import ReviewDocument, ReviewIssue, Severity
from note_synth.models.scoring import Quadrant, SortingStrategy, StrategicScore
from note_synth.models.tasks import Outcome, PlanTask, Reflection, Task, TaskRelationship

__all__ = [
    "CoverageAnalysis",
    "DraftSource",
    "DraftTask",
    "EvaluationResult",
    "ManualTask",
    "ManualTaskAnalysis",
    "ManualTaskStatus",
    "Outcome",
    "PlanTask",
    "PrioritizationResult",
    "PrioritizedPlan",
    "QualityBadge",
    "QualityMetadata",
    "Quadrant",
    "Reflection",
    "ReflectionEffect",
    "ReflectionIntent",
    "ReviewDocument",
    "ReviewIssue",
    "Severity",
    "SortingStrategy",
    "StrategicScore",
    "Task",
    "TaskRelationship",
]
