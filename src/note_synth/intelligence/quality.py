"""Task clarity evaluation using an LLM with a heuristic fallback.

The heuristic score is built from:
- a length bucket (too short and too long both score 0.4)
- +0.1 when the task opens with a strong action verb
- +0.2 when the task contains a number
capped at 1.0.
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Any

from note_synth.llm.client import LLMClient
from note_synth.models.intelligence import (
    CalculationMethod,
    EstimatedSize,
    GranularityFlags,
    QualityBadge,
    QualityMetadata,
    SpecificityIndicators,
    VerbStrength,
)

logger = logging.getLogger(__name__)

STRONG_VERBS = {
    "build",
    "create",
    "develop",
    "implement",
    "test",
    "deploy",
    "fix",
    "configure",
    "setup",
    "integrate",
}

ACCEPTANCE_PATTERN = re.compile(r"acceptance|criteria|target|goal|require")
NUMBER_PATTERN = re.compile(r"\d+")
COMPOUND_PATTERN = re.compile(r"and|then|also")

QUALITY_SYSTEM_PROMPT = """You are an intelligent assistant that evaluates task quality.

Evaluate:
1. Verb strength: is the action verb strong and specific ("Build", "Test", "Deploy") or weak ("Improve", "Optimize")?
2. Specificity: does the task include metrics, measurements or acceptance criteria?
3. Granularity: is the task appropriately sized?

You MUST respond with valid JSON in this exact format:
{
    "clarity_score": 0.0,
    "verb_strength": "strong|weak",
    "specificity_indicators": {
        "has_metrics": false,
        "has_acceptance_criteria": false,
        "contains_numbers": false
    },
    "granularity_flags": {
        "estimated_size": "small|medium|large",
        "is_atomic": true
    },
    "improvement_suggestions": ["..."]
}
"""


def _length_score(length: int) -> float:
    if length < 10:
        return 0.4
    if length <= 30:
        return 0.7
    if length <= 80:
        return 0.9
    return 0.4


def evaluate_quality_heuristics(task_text: str) -> QualityMetadata:
    """Score a task's clarity with deterministic text heuristics.

    Args:
        task_text: The task to evaluate

    Returns:
        QualityMetadata with calculation_method HEURISTIC
    """
    length = len(task_text)
    lower = task_text.lower()
    score = _length_score(length)

    first_word = lower.split(" ")[0]
    verb_strength = VerbStrength.WEAK
    if first_word in STRONG_VERBS:
        verb_strength = VerbStrength.STRONG
        score += 0.1

    has_numbers = bool(NUMBER_PATTERN.search(task_text))
    if has_numbers:
        score += 0.2

    indicators = SpecificityIndicators(
        has_metrics=has_numbers,
        has_acceptance_criteria=bool(ACCEPTANCE_PATTERN.search(lower)),
        contains_numbers=has_numbers,
    )

    if length <= 30:
        size = EstimatedSize.SMALL
    elif length > 80:
        size = EstimatedSize.LARGE
    else:
        size = EstimatedSize.MEDIUM

    is_atomic = not (COMPOUND_PATTERN.search(lower) or len(task_text.split(" ")) > 10)

    suggestions = []
    if verb_strength == VerbStrength.WEAK:
        suggestions.append("Use a more specific action verb")
    if not indicators.has_metrics:
        suggestions.append("Add specific metrics or measurements")
    if not indicators.has_acceptance_criteria:
        suggestions.append("Define clear acceptance criteria")
    if size == EstimatedSize.LARGE:
        suggestions.append("Consider breaking this task into smaller subtasks")

    return QualityMetadata(
        clarity_score=round(min(score, 1.0), 4),
        verb_strength=verb_strength,
        specificity_indicators=indicators,
        granularity_flags=GranularityFlags(estimated_size=size, is_atomic=is_atomic),
        improvement_suggestions=suggestions,
        calculation_method=CalculationMethod.HEURISTIC,
    )


@dataclass
class TaskQuality:
    """Quality evaluation for one task in a batch."""

    task_id: str
    metadata: QualityMetadata

    @property
    def badge(self) -> QualityBadge:
        """Badge for this task's score."""
        return self.metadata.badge


@dataclass
class QualitySummary:
    """Aggregate quality numbers across a task set."""

    average_score: float
    clear_count: int
    review_count: int
    needs_work_count: int


def summarize_quality(results: list[TaskQuality]) -> QualitySummary:
    """Average score and badge counts for a batch of evaluations."""
    if not results:
        return QualitySummary(0.0, 0, 0, 0)

    badges = [r.badge for r in results]
    average = sum(r.metadata.clarity_score for r in results) / len(results)
    return QualitySummary(
        average_score=round(average, 3),
        clear_count=badges.count(QualityBadge.CLEAR),
        review_count=badges.count(QualityBadge.REVIEW),
        needs_work_count=badges.count(QualityBadge.NEEDS_WORK),
    )


class QualityEvaluator:
    """Evaluates task clarity, preferring the LLM and falling back to heuristics."""

    def __init__(
        self,
        client: LLMClient | None = None,
        retry_delay_seconds: float = 2.0,
        chunk_size: int = 10,
        chunk_delay_seconds: float = 0.5,
    ) -> None:
        """Initialize the evaluator.

        Args:
            client: LLM client (None means heuristics only)
            retry_delay_seconds: Wait before the single retry of a failed LLM call
            chunk_size: Tasks evaluated concurrently per batch chunk
            chunk_delay_seconds: Pause between batch chunks
        """
        self.client = client
        self.retry_delay_seconds = retry_delay_seconds
        self.chunk_size = max(1, chunk_size)
        self.chunk_delay_seconds = chunk_delay_seconds

    async def evaluate(self, task_text: str, force_heuristic: bool = False) -> QualityMetadata:
        """Evaluate one task.

        Args:
            task_text: The task to evaluate
            force_heuristic: Skip the LLM entirely

        Returns:
            Quality metadata from the LLM or the heuristics
        """
        if force_heuristic or self.client is None:
            return evaluate_quality_heuristics(task_text)

        try:
            return await self._evaluate_ai(task_text)
        except Exception as e:
            logger.warning(f"AI quality evaluation failed, retrying in {self.retry_delay_seconds}s: {e}")

        await asyncio.sleep(self.retry_delay_seconds)
        try:
            return await self._evaluate_ai(task_text)
        except Exception as e:
            logger.warning(f"AI quality evaluation failed again, using heuristics: {e}")
            return evaluate_quality_heuristics(task_text)

    async def evaluate_batch(
        self, tasks: list[dict[str, str]], force_heuristic: bool = False
    ) -> list[TaskQuality]:
        """Evaluate many tasks in rate-limited chunks.

        Args:
            tasks: Items with "id" and "text" keys
            force_heuristic: Skip the LLM entirely

        Returns:
            One TaskQuality per input, in input order
        """
        results: list[TaskQuality] = []

        for start in range(0, len(tasks), self.chunk_size):
            chunk = tasks[start : start + self.chunk_size]
            metadata = await asyncio.gather(
                *(self.evaluate(task["text"], force_heuristic) for task in chunk)
            )
            results.extend(
                TaskQuality(task_id=task["id"], metadata=meta) for task, meta in zip(chunk, metadata)
            )

            if start + self.chunk_size < len(tasks):
                await asyncio.sleep(self.chunk_delay_seconds)

        return results

    async def _evaluate_ai(self, task_text: str) -> QualityMetadata:
        """Ask the LLM for a structured quality evaluation."""
        response = await self.client.complete_json(
            system_prompt=QUALITY_SYSTEM_PROMPT,
            user_prompt=f'Analyze the quality of this task: "{task_text}"',
            temperature=0.3,
        )
        return self._parse_metadata(response)

    def _parse_metadata(self, response: dict[str, Any]) -> QualityMetadata:
        """Build QualityMetadata from an LLM response.

        Raises:
            KeyError, ValueError: If the response is missing fields or out of range
        """
        specificity = response["specificity_indicators"]
        granularity = response["granularity_flags"]
        return QualityMetadata(
            clarity_score=float(response["clarity_score"]),
            verb_strength=VerbStrength(str(response["verb_strength"]).lower()),
            specificity_indicators=SpecificityIndicators(
                has_metrics=bool(specificity["has_metrics"]),
                has_acceptance_criteria=bool(specificity["has_acceptance_criteria"]),
                contains_numbers=bool(specificity["contains_numbers"]),
            ),
            granularity_flags=GranularityFlags(
                estimated_size=EstimatedSize(str(granularity["estimated_size"]).lower()),
                is_atomic=bool(granularity["is_atomic"]),
            ),
            improvement_suggestions=[str(s) for s in response.get("improvement_suggestions", [])],
            calculation_method=CalculationMethod.AI,
        )
