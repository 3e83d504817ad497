"""Generator/evaluator prioritization loop."""

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from note_synth.models.plan import (
    ChainOfThoughtStep,
    EvaluationResult,
    EvaluationStatus,
    ExecutionWave,
    HybridLoopMetadata,
    PrioritizationResult,
    PrioritizedPlan,
    TaskDependency,
)
from note_synth.orchestrator.agents import (
    GeneratorValidationError,
    PrioritizationContext,
    PrioritizationGenerator,
    apply_brief_reasoning_fallback,
    parse_prioritization_result,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 3
MIN_ITERATIONS = 1
GENERATOR_ATTEMPTS = 3
HIGH_CONFIDENCE = 0.85
LOW_CONFIDENCE = 0.7
MIN_INCLUDED_TASKS = 10
MAX_CORRECTIONS_LENGTH = 100
MAJOR_MOVE_POSITIONS = 5
MAJOR_MOVE_SHARE = 0.3
CHAIN_CORRECTIONS_LENGTH = 500
CHAIN_FEEDBACK_LENGTH = 1000


class Evaluator(Protocol):
    async def evaluate(
        self, result: PrioritizationResult, context: PrioritizationContext
    ) -> EvaluationResult | None: ...


@dataclass
class ProgressUpdate:
    """Progress reported while the loop runs."""

    stage: str  # started, draft, refining, completed
    iteration: int
    total_iterations: int
    total_tasks: int
    scored_tasks: int
    ordered_count: int
    confidence: float
    progress_pct: float
    plan: PrioritizedPlan | None = None


@dataclass
class LoopResult:
    """Final plan with the result and metadata that produced it."""

    plan: PrioritizedPlan
    result: PrioritizationResult
    metadata: HybridLoopMetadata
    evaluation: EvaluationResult | None = None


def has_major_movement(result: PrioritizationResult, previous_plan: PrioritizedPlan) -> bool:
    """Whether more than 30% of tasks moved more than five positions."""
    if not previous_plan.ordered_task_ids or not result.ordered_task_ids:
        return False

    previous = {task_id: i + 1 for i, task_id in enumerate(previous_plan.ordered_task_ids)}
    major = sum(
        1
        for i, task_id in enumerate(result.ordered_task_ids)
        if task_id in previous and abs(previous[task_id] - (i + 1)) > MAJOR_MOVE_POSITIONS
    )
    return major / len(result.ordered_task_ids) > MAJOR_MOVE_SHARE


def needs_evaluation(
    result: PrioritizationResult, previous_plan: PrioritizedPlan | None = None
) -> bool:
    """Decide whether a draft is uncertain enough to need an evaluator pass."""
    if result.confidence >= HIGH_CONFIDENCE:
        return False
    if result.confidence < LOW_CONFIDENCE:
        return True
    if len(result.included_tasks) < MIN_INCLUDED_TASKS:
        return True
    if len(result.corrections_made or "") > MAX_CORRECTIONS_LENGTH:
        return True
    return previous_plan is not None and has_major_movement(result, previous_plan)


def convert_result_to_plan(result: PrioritizationResult) -> PrioritizedPlan:
    """Turn a generator result into the plan shown to the user."""
    dependencies = [
        TaskDependency(source_task_id=dep_id, target_task_id=score.task_id)
        for score in result.per_task_scores.values()
        for dep_id in score.dependencies
    ]
    return PrioritizedPlan(
        ordered_task_ids=list(result.ordered_task_ids),
        execution_waves=[ExecutionWave(wave_number=1, task_ids=list(result.ordered_task_ids))],
        dependencies=dependencies,
        confidence_scores={s.task_id: s.confidence for s in result.per_task_scores.values()},
        synthesis_summary=result.thoughts.prioritization_strategy,
        task_annotations=[
            {
                "task_id": t.task_id,
                "reasoning": t.inclusion_reason,
                "confidence": result.per_task_scores[t.task_id].confidence
                if t.task_id in result.per_task_scores
                else None,
            }
            for t in result.included_tasks
        ],
        removed_tasks=[
            {"task_id": t.task_id, "removal_reason": t.exclusion_reason}
            for t in result.excluded_tasks
        ],
    )


def _truncate(text: str, max_length: int) -> str:
    if not text:
        return ""
    return text[: max_length - 3] + "..." if len(text) > max_length else text


def _chain_step(iteration: int, result: PrioritizationResult) -> ChainOfThoughtStep:
    fallback = (
        "Initial draft - awaiting evaluator feedback."
        if iteration == 1
        else "Refinement iteration completed."
    )
    return ChainOfThoughtStep(
        iteration=iteration,
        confidence=result.confidence,
        corrections=_truncate(result.corrections_made or fallback, CHAIN_CORRECTIONS_LENGTH),
    )


class HybridPrioritizationLoop:
    """Drafts a prioritization, then refines it with evaluator feedback.

    Confident drafts are accepted as-is. Otherwise the evaluator reviews
    each draft until it passes or the iteration budget runs out.
    """

    def __init__(
        self,
        generator: PrioritizationGenerator,
        evaluator: Evaluator,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        generator_timeout_seconds: float = 60,
        evaluator_timeout_seconds: float = 30,
    ) -> None:
        """Initialize the loop.

        Args:
            generator: Agent producing prioritization drafts
            evaluator: Single evaluator or evaluator panel
            max_iterations: Generator iterations allowed, clamped to 1-3
            generator_timeout_seconds: Per-attempt generator timeout
            evaluator_timeout_seconds: Per-evaluation timeout
        """
        self.generator = generator
        self.evaluator = evaluator
        self.max_iterations = min(DEFAULT_MAX_ITERATIONS, max(MIN_ITERATIONS, int(max_iterations)))
        self.generator_timeout_seconds = generator_timeout_seconds
        self.evaluator_timeout_seconds = evaluator_timeout_seconds

    async def run(
        self,
        context: PrioritizationContext,
        on_progress: Callable[[ProgressUpdate], None] | None = None,
    ) -> LoopResult:
        """Prioritize the context's tasks.

        Args:
            context: Outcome, tasks, reflections and previous plan
            on_progress: Optional progress callback

        Returns:
            LoopResult with the final plan and loop metadata

        Raises:
            GeneratorValidationError: If the generator never returns a usable result
            LLMError: If the generator's LLM calls keep failing
        """
        start = time.monotonic()
        total_tasks = len(context.tasks)
        chain: list[ChainOfThoughtStep] = []
        iteration = 1
        converged = False
        last_evaluation: EvaluationResult | None = None

        def report(stage: str, current_iteration: int, result: PrioritizationResult | None) -> None:
            if on_progress is None:
                return
            scored = len(result.included_tasks) + len(result.excluded_tasks) if result else 0
            coverage = min(scored / total_tasks, 1) if total_tasks else 0
            ratio = min(current_iteration / self.max_iterations, 1)
            blended = max(0.0, min(0.95, 0.35 * coverage + 0.25 * ratio))
            pct = 1.0 if stage == "completed" else max(0.05 if scored else 0.0, blended)
            on_progress(
                ProgressUpdate(
                    stage=stage,
                    iteration=current_iteration,
                    total_iterations=self.max_iterations,
                    total_tasks=total_tasks,
                    scored_tasks=scored,
                    ordered_count=len(result.ordered_task_ids) if result else 0,
                    confidence=result.confidence if result else 0.0,
                    progress_pct=pct,
                    plan=convert_result_to_plan(result) if result else None,
                )
            )

        report("started", 0, None)

        current = await self._generate(
            self.generator.build_instructions(context, iteration, self.max_iterations)
        )
        chain.append(_chain_step(iteration, current))
        report("draft", iteration, current)

        evaluation_triggered = needs_evaluation(current, context.previous_plan)
        if not evaluation_triggered:
            converged = True
            logger.info(f"Draft accepted without evaluation (confidence {current.confidence:.2f})")

        while evaluation_triggered:
            evaluation = await asyncio.wait_for(
                self.evaluator.evaluate(current, context),
                timeout=self.evaluator_timeout_seconds,
            )
            if evaluation is None:
                logger.warning("Evaluator returned no usable result; keeping best effort")
                break

            last_evaluation = evaluation
            chain[-1].evaluator_feedback = _truncate(evaluation.feedback, CHAIN_FEEDBACK_LENGTH)

            if evaluation.status is EvaluationStatus.PASS:
                converged = True
                break
            if iteration >= self.max_iterations:
                break

            iteration += 1
            logger.info(f"Refining prioritization (iteration {iteration}): {evaluation.status.value}")
            current = await self._generate(
                self.generator.build_instructions(
                    context,
                    iteration,
                    self.max_iterations,
                    evaluation_feedback=evaluation.feedback,
                    chain_of_thought=chain,
                )
            )
            chain.append(_chain_step(iteration, current))
            report("refining", iteration, current)

        plan = convert_result_to_plan(current)
        metadata = HybridLoopMetadata(
            iterations=len(chain),
            duration_ms=int((time.monotonic() - start) * 1000),
            evaluation_triggered=evaluation_triggered,
            converged=converged,
            final_confidence=current.confidence,
            chain_of_thought=chain,
        )
        report("completed", iteration, current)

        logger.info(
            f"Prioritization finished: {metadata.iterations} iterations, "
            f"converged={converged}, confidence={current.confidence:.2f}"
        )
        return LoopResult(plan=plan, result=current, metadata=metadata, evaluation=last_evaluation)

    async def _generate(self, instructions: str) -> PrioritizationResult:
        """Run the generator with retries, repairing brief reasoning on the last attempt."""
        last_error: Exception | None = None

        for attempt in range(1, GENERATOR_ATTEMPTS + 1):
            prompt = instructions
            if attempt > 1:
                prompt = self.generator.build_retry_instructions(instructions, attempt)
            try:
                return await asyncio.wait_for(
                    self.generator.generate(prompt), timeout=self.generator_timeout_seconds
                )
            except Exception as e:
                last_error = e
                logger.warning(f"Generator attempt {attempt} failed: {e}")

        if isinstance(last_error, GeneratorValidationError) and last_error.payload:
            payload = last_error.payload
            try:
                apply_brief_reasoning_fallback(payload)
                result = parse_prioritization_result(payload)
                logger.info("Applied brief_reasoning fallback after max retries")
                return result
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                logger.warning(f"Fallback parse failed after applying brief_reasoning: {e}")

        raise last_error
