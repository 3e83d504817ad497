"""Prioritization agents, loop and manual task placement."""

from note_synth.orchestrator.agents import (
    ManualPlacementAgent,
    PrioritizationContext,
    PrioritizationEvaluator,
    PrioritizationGenerator,
)
from note_synth.orchestrator.loop import HybridPrioritizationLoop, LoopResult, needs_evaluation
from note_synth.orchestrator.orchestrator import AgentOrchestrator, InsufficientAgentsError
from note_synth.orchestrator.placement import (
    ManualTaskInvalidStateError,
    ManualTaskNotFoundError,
    ManualTaskPlacementError,
    ManualTaskPlacer,
)

__all__ = [
    "AgentOrchestrator",
    "HybridPrioritizationLoop",
    "InsufficientAgentsError",
    "LoopResult",
    "ManualPlacementAgent",
    "ManualTaskInvalidStateError",
    "ManualTaskNotFoundError",
    "ManualTaskPlacementError",
    "ManualTaskPlacer",
    "PrioritizationContext",
    "PrioritizationEvaluator",
    "PrioritizationGenerator",
    "needs_evaluation",
]
