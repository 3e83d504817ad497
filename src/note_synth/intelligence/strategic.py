"""Strategic scoring: impact, effort, confidence and priority per task."""

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable
from typing import Any

from note_synth.intelligence.retry import RetryQueue
from note_synth.llm.client import LLMClient, is_retryable_error
from note_synth.models.scoring import (
    HIGH_IMPACT_THRESHOLD,
    LOW_EFFORT_THRESHOLD,
    ConfidenceBreakdown,
    EffortEstimate,
    EffortSource,
    ImpactEstimate,
    SortingStrategy,
    StrategicScore,
)
from note_synth.models.tasks import Task

logger = logging.getLogger(__name__)

BASE_IMPACT = 5.0
BASE_EFFORT = 8.0
PLACEHOLDER_CONFIDENCE = 0.6
CONCURRENCY_LIMIT = 10
LLM_RETRY_DELAYS_SECONDS = [0.0, 1.0, 2.0]

STRICT_STRATEGIC_IMPACT = 7
STRICT_STRATEGIC_EFFORT = 40

KEYWORD_WEIGHTS: list[tuple[re.Pattern[str], float]] = [
    (re.compile(r"(revenue|conversion|payment)", re.IGNORECASE), 3),
    (re.compile(r"(launch|test)", re.IGNORECASE), 2),
    (re.compile(r"(document|refactor)", re.IGNORECASE), -1),
]

EFFORT_PATTERN = re.compile(
    r"\b(\d+(?:\.\d+)?)\s*(h|hour|hours|hr|hrs|day|days|d)\b", re.IGNORECASE
)
COMPLEXITY_MODIFIERS: list[tuple[str, re.Pattern[str], float]] = [
    (
        "integration_work",
        re.compile(r"(integrate|integration|migrate|migration|redesign)", re.IGNORECASE),
        8,
    ),
    (
        "dependency_risk",
        re.compile(r"(dependency|depends on|blocked|blocker|external team)", re.IGNORECASE),
        4,
    ),
    ("investigation_needed", re.compile(r"(investigate|explore|spike)", re.IGNORECASE), 8),
]
LONG_SPEC_LENGTH = 100
URGENT_PATTERN = re.compile(r"\b(urgent|critical|blocking|blocker)\b", re.IGNORECASE)

IMPACT_SYSTEM_PROMPT = """You are an expert product strategist estimating strategic impact for tasks.

Impact reflects how much a task advances the stated outcome:
- 9-10: Directly creates revenue, unlocks major features, or removes critical blockers
- 7-8: Significantly advances the outcome
- 5-6: Moderately helpful, e.g. testing or coordination that enables high-value work
- 3-4: Tangentially related, e.g. documentation or minor improvements
- 0-2: No clear connection to the outcome

Confidence should consider clarity of the task and linkage to the outcome.

You MUST respond with valid JSON in this exact format:
{
    "impact": 7,
    "reasoning": "One short sentence",
    "keywords": ["two", "to", "four", "keywords"],
    "confidence": 0.8
}
"""


def _clamp(value: float, low: float, high: float) -> float:
    return min(max(value, low), high)


def estimate_impact_heuristic(text: str, outcome: str | None = None) -> ImpactEstimate:
    """Keyword-based impact estimate.

    Args:
        text: Task text
        outcome: Outcome text, searched together with the task

    Returns:
        ImpactEstimate on the 0-10 scale
    """
    haystack = f"{text} {outcome or ''}".lower()
    impact = BASE_IMPACT
    keywords: list[str] = []

    for pattern, weight in KEYWORD_WEIGHTS:
        match = pattern.search(haystack)
        if match:
            impact += weight
            if match.group(0) not in keywords:
                keywords.append(match.group(0))

    impact = _clamp(impact, 0, 10)
    boost = max(0.0, len(keywords) * 0.05 - (0.05 if impact < BASE_IMPACT else 0.0))
    confidence = round(_clamp(0.6 + boost, 0.4, 0.95), 3)
    reasoning = (
        f"Detected strategic keywords: {', '.join(keywords)}"
        if keywords
        else "Default impact estimate based on task context."
    )
    return ImpactEstimate(impact=impact, reasoning=reasoning, keywords=keywords, confidence=confidence)


def estimate_effort(text: str) -> EffortEstimate:
    """Effort in hours, read from the text when stated, else from complexity cues.

    "3 days" is read as 24 hours.
    """
    match = EFFORT_PATTERN.search(text)
    if match:
        value = float(match.group(1))
        hours = value * 8 if "d" in match.group(2).lower() else value
        return EffortEstimate(
            effort=_clamp(hours, 0.5, 160),
            source=EffortSource.EXTRACTED,
            hint=match.group(0),
        )

    effort = BASE_EFFORT
    modifiers = []
    if len(text) > LONG_SPEC_LENGTH:
        effort += 4
        modifiers.append("long_spec")
    for name, pattern, hours in COMPLEXITY_MODIFIERS:
        if pattern.search(text):
            effort += hours
            modifiers.append(name)

    return EffortEstimate(
        effort=_clamp(effort, 0.5, 160),
        source=EffortSource.HEURISTIC,
        complexity_modifiers=modifiers,
    )


def calculate_confidence(
    similarity: float | None = None,
    dependency: float | None = None,
    history: float | None = None,
    previous_confidence: float | None = None,
    manual_override: bool = False,
    previous_state: str | None = None,
) -> ConfidenceBreakdown:
    """Combine similarity, dependency and history signals.

    Missing signals fall back to the task's previous confidence, whether it
    was manually overridden, and how it previously ended up.
    """
    if similarity is None:
        similarity = previous_confidence if previous_confidence is not None else 0.7
    if dependency is None:
        dependency = 0.6 if manual_override else 0.75
    if history is None:
        history = {"completed": 0.9, "discarded": 0.4}.get(previous_state or "", 0.6)

    return ConfidenceBreakdown(
        similarity=round(_clamp(similarity, 0, 1), 3),
        dependency=round(_clamp(dependency, 0, 1), 3),
        history=round(_clamp(history, 0, 1), 3),
    )


def calculate_priority(impact: float, effort: float, confidence: float) -> float:
    """Priority on a 0-100 scale; effort discounts impact smoothly."""
    raw = impact * 10 * confidence / (1 + max(effort, 0) / 40)
    return round(_clamp(raw, 0, 100), 2)


def is_quick_win(score: StrategicScore) -> bool:
    return score.impact >= HIGH_IMPACT_THRESHOLD and score.effort <= LOW_EFFORT_THRESHOLD


def is_strategic_bet(score: StrategicScore) -> bool:
    strict = score.impact >= STRICT_STRATEGIC_IMPACT and score.effort > STRICT_STRATEGIC_EFFORT
    fallback = score.impact >= HIGH_IMPACT_THRESHOLD and score.effort > LOW_EFFORT_THRESHOLD
    return strict or fallback


def is_urgent(text: str) -> bool:
    return bool(URGENT_PATTERN.search(text))


def apply_sorting_strategy(
    scores: list[StrategicScore],
    strategy: SortingStrategy,
    task_texts: dict[str, str] | None = None,
) -> list[StrategicScore]:
    """Filter and order scored tasks for a sorting strategy.

    Args:
        scores: Scored tasks
        strategy: Strategy to apply
        task_texts: Task text by id, used for urgency keywords

    Returns:
        New list in display order
    """
    task_texts = task_texts or {}

    if strategy is SortingStrategy.QUICK_WINS:
        selected = [s for s in scores if is_quick_win(s)]
        return sorted(selected, key=lambda s: s.impact * s.confidence, reverse=True)

    if strategy is SortingStrategy.STRATEGIC_BETS:
        selected = [s for s in scores if is_strategic_bet(s)]
        return sorted(selected, key=lambda s: s.impact, reverse=True)

    if strategy is SortingStrategy.URGENT:
        return sorted(
            scores,
            key=lambda s: s.priority * (2 if is_urgent(task_texts.get(s.task_id, "")) else 1),
            reverse=True,
        )

    if strategy is SortingStrategy.FOCUS_MODE:
        selected = [s for s in scores if is_quick_win(s) or is_strategic_bet(s)]
        return sorted(selected, key=lambda s: s.priority, reverse=True)

    return sorted(scores, key=lambda s: s.priority, reverse=True)


def build_score(
    task_id: str,
    impact: ImpactEstimate,
    effort: EffortEstimate,
    confidence: ConfidenceBreakdown,
) -> StrategicScore:
    """Assemble a StrategicScore from its estimates."""
    total = confidence.total
    return StrategicScore(
        task_id=task_id,
        impact=impact.impact,
        effort=effort.effort,
        confidence=total,
        priority=calculate_priority(impact.impact, effort.effort, total),
        impact_keywords=list(impact.keywords),
        effort_source=effort.source,
        effort_hint=effort.hint,
        complexity_modifiers=list(effort.complexity_modifiers),
        confidence_breakdown=confidence,
    )


def build_placeholder_score(task_id: str) -> StrategicScore:
    """Neutral score shown while an estimate is being retried."""
    return StrategicScore(
        task_id=task_id,
        impact=BASE_IMPACT,
        effort=BASE_EFFORT,
        confidence=PLACEHOLDER_CONFIDENCE,
        priority=calculate_priority(BASE_IMPACT, BASE_EFFORT, PLACEHOLDER_CONFIDENCE),
        is_placeholder=True,
    )


class StrategicScorer:
    """Scores tasks for impact, effort and confidence.

    With an LLM client, impact comes from the model and failures are handed
    to the retry queue while a placeholder score is returned. Without one,
    impact falls back to keyword heuristics.
    """

    def __init__(
        self,
        client: LLMClient | None = None,
        retry_queue: RetryQueue | None = None,
        concurrency: int = CONCURRENCY_LIMIT,
        llm_retry_delays: list[float] | None = None,
        on_rescored: Callable[[StrategicScore], Awaitable[None]] | None = None,
    ) -> None:
        """Initialize the scorer.

        Args:
            client: LLM client for impact estimation
            retry_queue: Queue for failed estimations
            concurrency: Maximum tasks scored at once
            llm_retry_delays: Wait before each LLM attempt, in seconds
            on_rescored: Called with the full score once a retry succeeds
        """
        self.client = client
        self.retry_queue = retry_queue or RetryQueue()
        self.concurrency = concurrency
        self.llm_retry_delays = list(
            LLM_RETRY_DELAYS_SECONDS if llm_retry_delays is None else llm_retry_delays
        )
        self.on_rescored = on_rescored

    async def estimate_impact(
        self, text: str, outcome: str | None = None
    ) -> ImpactEstimate | None:
        """Estimate impact with the LLM when available, else heuristically.

        Returns:
            The estimate, or None when the LLM failed
        """
        if self.client is None:
            return estimate_impact_heuristic(text, outcome)
        return await self._estimate_impact_llm(text, outcome)

    async def _estimate_impact_llm(self, text: str, outcome: str | None) -> ImpactEstimate | None:
        prompt = f"""Outcome context: {outcome or "General productivity improvements"}

Task: {text or "No description provided"}
"""
        last_error: BaseException | None = None
        for attempt, delay in enumerate(self.llm_retry_delays):
            if delay > 0:
                await asyncio.sleep(delay)
            try:
                response = await self.client.complete_json(
                    system_prompt=IMPACT_SYSTEM_PROMPT,
                    user_prompt=prompt,
                    temperature=0.0,
                )
                return self._parse_impact(response)
            except Exception as e:
                last_error = e
                if not is_retryable_error(e):
                    break
                logger.debug(f"Impact estimation attempt {attempt + 1} failed: {e}")

        logger.warning(f"LLM impact estimation failed after retries: {last_error}")
        return None

    def _parse_impact(self, response: dict[str, Any]) -> ImpactEstimate:
        return ImpactEstimate(
            impact=float(response["impact"]),
            reasoning=str(response.get("reasoning", "")),
            keywords=[str(k).lower() for k in response.get("keywords", [])],
            confidence=float(response.get("confidence", 0.7)),
        )

    async def score_task(
        self,
        task: Task,
        outcome: str | None = None,
        confidence: ConfidenceBreakdown | None = None,
        session_id: str | None = None,
    ) -> StrategicScore:
        """Score one task, queueing a retry if impact cannot be estimated."""
        effort = estimate_effort(task.text)
        confidence = confidence or calculate_confidence()
        impact = await self.estimate_impact(task.text, outcome)

        if impact is not None:
            return build_score(task.id, impact, effort, confidence)

        async def on_success(estimate: ImpactEstimate) -> None:
            score = build_score(task.id, estimate, effort, confidence)
            if self.on_rescored:
                await self.on_rescored(score)

        async def on_failure(error: BaseException, attempts: int, last_error: str | None) -> None:
            logger.error(
                f"Giving up on impact for task {task.id} after {attempts} attempts: {last_error}"
            )

        self.retry_queue.enqueue(
            task_id=task.id,
            estimate_fn=lambda: self.estimate_impact(task.text, outcome),
            on_success=on_success,
            on_failure=on_failure,
            session_id=session_id,
            cache_key=f"{task.id}:{outcome}" if outcome else task.id,
        )
        return build_placeholder_score(task.id)

    async def score_tasks(
        self,
        tasks: list[Task],
        outcome: str | None = None,
        similarity_scores: dict[str, float] | None = None,
        dependency_scores: dict[str, float] | None = None,
        history_scores: dict[str, float] | None = None,
        session_id: str | None = None,
    ) -> dict[str, StrategicScore]:
        """Score many tasks with bounded concurrency.

        Args:
            tasks: Tasks to score
            outcome: Outcome text for impact context
            similarity_scores: Per-task similarity signal
            dependency_scores: Per-task dependency certainty
            history_scores: Per-task historical stability
            session_id: Scope for retry deduplication

        Returns:
            Scores by task id, in input order
        """
        similarity_scores = similarity_scores or {}
        dependency_scores = dependency_scores or {}
        history_scores = history_scores or {}
        semaphore = asyncio.Semaphore(self.concurrency)

        async def run(task: Task) -> StrategicScore:
            async with semaphore:
                breakdown = calculate_confidence(
                    similarity=similarity_scores.get(task.id),
                    dependency=dependency_scores.get(task.id),
                    history=history_scores.get(task.id),
                )
                return await self.score_task(task, outcome, breakdown, session_id)

        scores = await asyncio.gather(*(run(task) for task in tasks))
        placeholders = sum(1 for s in scores if s.is_placeholder)
        logger.info(f"Scored {len(scores)} tasks ({placeholders} placeholders pending retry)")
        return {score.task_id: score for score in scores}
