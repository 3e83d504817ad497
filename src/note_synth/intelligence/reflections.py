"""Reflection interpretation, heuristic task effects and re-ranking."""

import asyncio
import logging
import math
import re
from datetime import datetime
from typing import Any

from note_synth.llm.client import LLMClient
from note_synth.models.plan import AdjustedPlan, MovedTask
from note_synth.models.reflections import (
    EffectType,
    IntentStrength,
    IntentSubtype,
    IntentType,
    ReflectionEffect,
    ReflectionIntent,
)
from note_synth.models.tasks import Reflection, Task

logger = logging.getLogger(__name__)

BLOCK_KEYWORDS = [
    "block",
    "blocked",
    "cannot",
    "ban",
    "hold",
    "stop",
    "wait",
    "pending",
    "legal",
    "approval",
    "ignore",
    "ignored",
    "don't need",
    "dont need",
    "do not need",
    "no need",
    "unneeded",
    "unnecessary",
    "not necessary",
    "not needed",
    "skip",
]
DEMOTE_KEYWORDS = [
    "avoid",
    "later",
    "defer",
    "delay",
    "not now",
    "low energy",
    "tired",
    "busy",
    "no time",
    "minimize",
    "worry less",
    "not urgent",
]
BOOST_KEYWORDS = ["focus", "priority", "prioritize", "boost", "important", "urgent", "need", "must"]

EFFECT_REASONS = {
    EffectType.BLOCKED: "Blocked by reflection context",
    EffectType.DEMOTED: "Deprioritized by reflection context",
    EffectType.BOOSTED: "Matches reflection focus",
}
BLOCKED_MAGNITUDE = -10
DEFAULT_MAGNITUDE = 2

FALLBACK_CONFIDENCE = 0.5
BOOST_THRESHOLD = 0.7
PENALTY_THRESHOLD = 0.3
CONFIDENCE_DELTA = 0.3
MAX_REASON_LENGTH = 200
MAX_SNIPPET_LENGTH = 96

FALLBACK_SUMMARY = "Context only. No actionable intent detected."

INTERPRETER_SYSTEM_PROMPT = """Classify a user's reflection into one of the following categories.

Categories:
1. constraint/blocker - Hard block (e.g., "Legal blocked outreach")
2. constraint/soft-block - Soft limitation (e.g., "Prefer to avoid meetings")
3. opportunity/boost - Focus area (e.g., "Priority is analytics")
4. capacity/energy-level - Energy/time signal (e.g., "Low energy today")
5. sequencing/dependency - Order constraint (e.g., "Do X before Y")
6. information/context-only - FYI only (e.g., "FYI: project updated")

If unsure, choose "information/context-only". Keep keywords grounded in the reflection text.

You MUST respond with valid JSON in this exact format:
{
    "type": "constraint|opportunity|capacity|sequencing|information",
    "subtype": "blocker|soft-block|boost|energy-level|dependency|context-only",
    "keywords": ["relevant", "task", "keywords"],
    "strength": "hard|soft",
    "duration_days": null,
    "summary": "Plain language interpretation (<=500 chars)"
}
"""


def recency_weight(created_at: datetime, now: datetime | None = None) -> float:
    """Weight of a reflection by age: full for a week, half for two, then a quarter."""
    now = now or datetime.now(created_at.tzinfo)
    age_days = math.floor((now - created_at).total_seconds() / 86400)
    if age_days <= 7:
        return 1.0
    if age_days <= 14:
        return 0.5
    return 0.25


def _tokenize(text: str) -> list[str]:
    return [token for token in re.findall(r"[a-z0-9]+", text.lower()) if len(token) > 2]


def detect_effect(reflection_text: str, task_text: str) -> EffectType:
    """Classify how a reflection affects a task.

    Block keywords win over demote keywords, which win over boost keywords.
    Without any keyword, shared words between the texts count as a boost.
    """
    lower = reflection_text.lower()
    if any(keyword in lower for keyword in BLOCK_KEYWORDS):
        return EffectType.BLOCKED
    if any(keyword in lower for keyword in DEMOTE_KEYWORDS):
        return EffectType.DEMOTED
    if any(keyword in lower for keyword in BOOST_KEYWORDS):
        return EffectType.BOOSTED

    reflection_tokens = set(_tokenize(reflection_text))
    if any(token in reflection_tokens for token in _tokenize(task_text)):
        return EffectType.BOOSTED
    return EffectType.UNCHANGED


def build_heuristic_effects(
    reflections: list[Reflection], tasks: list[Task]
) -> list[ReflectionEffect]:
    """Effects of every active reflection on every task, skipping unchanged ones."""
    effects = []
    for reflection in reflections:
        if not reflection.is_active or not reflection.text.strip():
            continue
        for task in tasks:
            effect = detect_effect(reflection.text, task.text)
            if effect is EffectType.UNCHANGED:
                continue
            effects.append(
                ReflectionEffect(
                    reflection_id=reflection.id,
                    task_id=task.id,
                    effect=effect,
                    magnitude=BLOCKED_MAGNITUDE if effect is EffectType.BLOCKED else DEFAULT_MAGNITUDE,
                    reason=EFFECT_REASONS[effect],
                )
            )
    logger.debug(f"Built {len(effects)} reflection effects for {len(tasks)} tasks")
    return effects


def merge_effects(
    existing: dict[str, list[ReflectionEffect]], effects: list[ReflectionEffect]
) -> dict[str, list[ReflectionEffect]]:
    """Attach effects to tasks, replacing earlier effects of the same reflection."""
    merged = {task_id: list(items) for task_id, items in existing.items()}
    for effect in effects:
        current = [
            e for e in merged.get(effect.task_id, []) if e.reflection_id != effect.reflection_id
        ]
        current.append(effect)
        merged[effect.task_id] = current
    return merged


def remove_effects(
    existing: dict[str, list[ReflectionEffect]], reflection_id: str
) -> tuple[dict[str, list[ReflectionEffect]], list[ReflectionEffect]]:
    """Drop a reflection's effects from every task.

    Returns:
        (remaining effects by task, removed effects)
    """
    remaining: dict[str, list[ReflectionEffect]] = {}
    removed: list[ReflectionEffect] = []
    for task_id, items in existing.items():
        remaining[task_id] = [e for e in items if e.reflection_id != reflection_id]
        removed.extend(e for e in items if e.reflection_id == reflection_id)
    return remaining, removed


def fallback_intent(text: str) -> ReflectionIntent:
    """Context-only intent used when classification is unavailable."""
    stripped = text.strip()
    return ReflectionIntent(
        type=IntentType.INFORMATION,
        subtype=IntentSubtype.CONTEXT_ONLY,
        summary=stripped[:500] if stripped else FALLBACK_SUMMARY,
        strength=IntentStrength.SOFT,
    )


class ReflectionInterpreter:
    """Classifies free-text reflections into structured intents."""

    def __init__(self, client: LLMClient | None = None, retry_delay_seconds: float = 1.0) -> None:
        self.client = client
        self.retry_delay_seconds = retry_delay_seconds

    async def interpret(self, text: str) -> ReflectionIntent:
        """Interpret a reflection, retrying once before falling back.

        Args:
            text: Reflection text

        Returns:
            The classified intent, or a context-only fallback
        """
        sanitized = text.strip()
        if self.client is None:
            return fallback_intent(sanitized)

        try:
            return await self._classify(sanitized, temperature=0.0)
        except Exception as e:
            logger.warning(f"Reflection interpretation failed, retrying once: {e}")

        await asyncio.sleep(self.retry_delay_seconds)
        try:
            return await self._classify(sanitized, temperature=0.2)
        except Exception as e:
            logger.error(f"Reflection interpretation retry failed, using fallback: {e}")
            return fallback_intent(sanitized)

    async def _classify(self, text: str, temperature: float) -> ReflectionIntent:
        response = await self.client.complete_json(
            system_prompt=INTERPRETER_SYSTEM_PROMPT,
            user_prompt=f'Reflection: "{text}"',
            max_tokens=256,
            temperature=temperature,
        )
        return self._parse_intent(response, text)

    def _parse_intent(self, response: dict[str, Any], text: str) -> ReflectionIntent:
        try:
            duration = response.get("duration_days")
            return ReflectionIntent(
                type=IntentType(response["type"]),
                subtype=IntentSubtype(response["subtype"]),
                summary=str(response.get("summary", "")).strip()[:500] or fallback_intent(text).summary,
                strength=IntentStrength(response.get("strength") or "soft"),
                keywords=[str(k).strip() for k in response.get("keywords", []) if str(k).strip()],
                duration_days=int(duration) if duration is not None else None,
            )
        except (KeyError, ValueError, TypeError) as e:
            logger.warning(f"Reflection intent failed validation: {e}, raw: {response}")
            return fallback_intent(text)


def _letter_vector(text: str) -> list[float]:
    vector = [0.0] * 26
    for char in text.lower():
        index = ord(char) - ord("a")
        if 0 <= index < 26:
            vector[index] += 1
    magnitude = math.sqrt(sum(v * v for v in vector))
    if magnitude == 0:
        return vector
    return [v / magnitude for v in vector]


def _normalize_reason(text: str) -> str:
    trimmed = text.strip()
    if not trimmed:
        return "Context adjustment applied"
    if len(trimmed) <= MAX_REASON_LENGTH:
        return trimmed
    return trimmed[: MAX_REASON_LENGTH - 1] + "…"


def context_reason(reflection_text: str, boosted: bool) -> str:
    """Reason text naming the reflection that moved a task."""
    stripped = re.sub(r"[\"']", "", re.sub(r"\s+", " ", reflection_text).strip())
    if stripped:
        snippet = (
            stripped[: MAX_SNIPPET_LENGTH - 1] + "…"
            if len(stripped) > MAX_SNIPPET_LENGTH
            else stripped
        )
        label = f"'{snippet}' context"
    else:
        label = "active reflection context"
    verb = "Matches" if boosted else "Contradicts"
    return _normalize_reason(f"{verb} {label}")


def rank_with_reflections(
    ordered_task_ids: list[str],
    confidence_scores: dict[str, float],
    task_texts: dict[str, str],
    reflections: list[Reflection],
    now: datetime | None = None,
) -> AdjustedPlan:
    """Re-rank a plan by letter-frequency similarity to active reflections.

    Similarity is weighted by reflection recency. Weighted similarity above
    0.7 raises a task's confidence, below 0.3 lowers it. Tasks are re-sorted
    by adjusted confidence, ties keeping their baseline order.

    Args:
        ordered_task_ids: Baseline plan order
        confidence_scores: Baseline confidence by task id
        task_texts: Task text by id (the id is used when missing)
        reflections: Candidate reflections; inactive ones are ignored
        now: Reference time for recency weighting

    Returns:
        AdjustedPlan with the new order and the moved tasks

    Raises:
        ValueError: If the baseline plan has no tasks
    """
    ordered_task_ids = [task_id for task_id in ordered_task_ids if task_id]
    if not ordered_task_ids:
        raise ValueError("Baseline plan is missing ordered_task_ids")

    usable = [r for r in reflections if r.is_active and r.text.strip()]
    weighted_vectors = [
        (r.text, recency_weight(r.created_at, now), _letter_vector(r.text)) for r in usable
    ]

    adjusted: dict[str, float] = {}
    boost_reasons: dict[str, str] = {}
    penalty_reasons: dict[str, str] = {}

    for task_id in ordered_task_ids:
        confidence = confidence_scores.get(task_id, FALLBACK_CONFIDENCE)
        task_vector = _letter_vector(task_texts.get(task_id) or task_id)

        for text, weight, vector in weighted_vectors:
            # Texts without letters have no direction to compare.
            if not any(task_vector) or not any(vector):
                continue
            similarity = sum(a * b for a, b in zip(task_vector, vector))
            weighted = similarity * weight
            if weighted > BOOST_THRESHOLD:
                confidence += (min(1.0, weighted) - BOOST_THRESHOLD) * CONFIDENCE_DELTA
                boost_reasons[task_id] = context_reason(text, boosted=True)
            elif weighted < PENALTY_THRESHOLD:
                confidence -= (PENALTY_THRESHOLD - max(0.0, weighted)) * CONFIDENCE_DELTA
                penalty_reasons[task_id] = context_reason(text, boosted=False)

        adjusted[task_id] = confidence

    baseline = {task_id: index + 1 for index, task_id in enumerate(ordered_task_ids)}
    new_order = sorted(ordered_task_ids, key=lambda t: (-adjusted[t], baseline[t]))

    moved = []
    for index, task_id in enumerate(new_order):
        current, previous = index + 1, baseline[task_id]
        if current == previous:
            continue
        boosted = current < previous
        reason = (boost_reasons if boosted else penalty_reasons).get(task_id)
        moved.append(
            MovedTask(
                task_id=task_id,
                from_position=previous,
                to_position=current,
                reason=_normalize_reason(reason)
                if reason
                else context_reason("active reflection", boosted),
            )
        )

    scores = dict(confidence_scores)
    for task_id, value in adjusted.items():
        scores[task_id] = round(max(0.0, min(1.0, value)), 3)

    logger.info(
        f"Reflection re-ranking: {len(usable)} reflections, {len(moved)} of "
        f"{len(ordered_task_ids)} tasks moved"
    )
    return AdjustedPlan(ordered_task_ids=new_order, confidence_scores=scores, moved=moved)
