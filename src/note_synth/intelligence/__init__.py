"""Task intelligence services for note-synth."""

from note_synth.intelligence.clustering import cluster_tasks
from note_synth.intelligence.coverage import CoverageAnalyzer
from note_synth.intelligence.dependencies import detect_cycle, insert_bridging_tasks
from note_synth.intelligence.drafts import (
    DraftGenerationError,
    DraftGenerator,
    DraftPipeline,
    deduplicate_drafts,
)
from note_synth.intelligence.gaps import MissingTaskError, detect_gaps
from note_synth.intelligence.quality import QualityEvaluator, evaluate_quality_heuristics
from note_synth.intelligence.reflections import (
    ReflectionInterpreter,
    build_heuristic_effects,
    rank_with_reflections,
)
from note_synth.intelligence.retry import RetryQueue
from note_synth.intelligence.strategic import (
    StrategicScorer,
    apply_sorting_strategy,
    calculate_priority,
)
from note_synth.intelligence.vectors import cosine_similarity

__all__ = [
    "CoverageAnalyzer",
    "DraftGenerationError",
    "DraftGenerator",
    "DraftPipeline",
    "MissingTaskError",
    "QualityEvaluator",
    "ReflectionInterpreter",
    "RetryQueue",
    "StrategicScorer",
    "apply_sorting_strategy",
    "build_heuristic_effects",
    "calculate_priority",
    "cluster_tasks",
    "cosine_similarity",
    "deduplicate_drafts",
    "detect_cycle",
    "detect_gaps",
    "evaluate_quality_heuristics",
    "insert_bridging_tasks",
    "rank_with_reflections",
]
