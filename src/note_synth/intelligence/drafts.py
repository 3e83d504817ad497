"""Draft task generation for coverage and dependency gaps."""

import asyncio
import hashlib
import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from note_synth.intelligence.coverage import CoverageAnalyzer
from note_synth.intelligence.gaps import detect_gaps
from note_synth.intelligence.vectors import cosine_similarity
from note_synth.llm.client import LLMClient
from note_synth.models.intelligence import (
    CognitionLevel,
    CoverageAnalysis,
    DeduplicationStats,
    DraftSource,
    DraftTask,
)
from note_synth.models.tasks import Task, TaskRelationship

logger = logging.getLogger(__name__)

DUPLICATE_THRESHOLD = 0.85
DEPENDENCY_PASS_COVERAGE = 80
MAX_EXISTING_TASKS_IN_PROMPT = 10
DEPENDENCY_GAP_AREA = "dependency_gaps"

DRAFT_SYSTEM_PROMPT = """You are helping to fill gaps in a user's task plan.

You MUST respond with valid JSON in this exact format:
{
    "draft_tasks": [
        {
            "task_text": "Specific, actionable task (10-200 characters)",
            "estimated_hours": 2.0,
            "cognition_level": "low|medium|high",
            "reasoning": "Why this task fills the gap (50-300 characters)",
            "confidence_score": 0.8
        }
    ]
}
"""


class DraftErrorCode(Enum):
    """Why draft generation failed."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    GENERATION_FAILED = "GENERATION_FAILED"
    TIMEOUT = "TIMEOUT"


class DraftGenerationError(Exception):
    """Raised when drafts cannot be generated."""

    def __init__(
        self,
        message: str,
        code: DraftErrorCode,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.metadata = metadata or {}


def deduplication_hash(text: str) -> str:
    """Stable hash of normalized task text."""
    return hashlib.sha256(text.strip().lower().encode()).hexdigest()


@dataclass
class DraftGenerationResult:
    """Drafts produced for a set of missing areas."""

    drafts: list[DraftTask]
    generation_duration_ms: int
    failed_areas: list[str] = field(default_factory=list)


class DraftGenerator:
    """Asks the LLM for concrete tasks that close coverage or dependency gaps."""

    def __init__(self, client: LLMClient, timeout_seconds: float = 30.0) -> None:
        """Initialize the generator.

        Args:
            client: LLM client for completions and embeddings
            timeout_seconds: Per-request generation timeout
        """
        self.client = client
        self.timeout_seconds = timeout_seconds

    async def generate(
        self,
        outcome_text: str,
        missing_areas: list[str],
        existing_task_texts: list[str],
        max_per_area: int = 3,
    ) -> DraftGenerationResult:
        """Generate drafts for each missing area.

        A failure in one area is logged and does not stop the others.

        Args:
            outcome_text: The outcome the drafts should serve
            missing_areas: Concept areas lacking coverage
            existing_task_texts: Current tasks, to avoid duplicates
            max_per_area: Draft cap per area

        Returns:
            DraftGenerationResult with semantic-gap drafts

        Raises:
            DraftGenerationError: On empty inputs, or when every area fails
        """
        if not outcome_text or not outcome_text.strip() or not missing_areas:
            raise DraftGenerationError("Invalid input parameters", DraftErrorCode.VALIDATION_ERROR)

        start = time.monotonic()
        seen = {deduplication_hash(text) for text in existing_task_texts}
        drafts: list[DraftTask] = []
        failures: dict[str, BaseException] = {}

        for area in missing_areas:
            prompt = self._build_area_prompt(outcome_text, area, existing_task_texts, max_per_area)
            try:
                area_drafts = await self._request_drafts(
                    prompt, area, DraftSource.SEMANTIC_GAP, max_per_area
                )
            except Exception as e:
                logger.error(f"Draft generation failed for area '{area}': {e}")
                failures[area] = e
                continue

            for draft in area_drafts:
                if draft.deduplication_hash in seen:
                    logger.debug(f"Dropping duplicate draft: {draft.task_text}")
                    continue
                seen.add(draft.deduplication_hash)
                drafts.append(draft)

        if failures and len(failures) == len(missing_areas):
            all_timeouts = all(isinstance(e, asyncio.TimeoutError) for e in failures.values())
            raise DraftGenerationError(
                f"Draft generation failed for all {len(missing_areas)} areas",
                DraftErrorCode.TIMEOUT if all_timeouts else DraftErrorCode.GENERATION_FAILED,
                {"timeout_seconds": self.timeout_seconds} if all_timeouts else None,
            )

        return DraftGenerationResult(
            drafts=drafts,
            generation_duration_ms=int((time.monotonic() - start) * 1000),
            failed_areas=list(failures),
        )

    async def generate_bridging(
        self,
        outcome_text: str,
        predecessor: Task,
        successor: Task,
        max_tasks: int = 3,
    ) -> list[DraftTask]:
        """Generate tasks that bridge the work between two adjacent tasks.

        Args:
            outcome_text: The outcome the drafts should serve
            predecessor: Task before the gap
            successor: Task after the gap
            max_tasks: Draft cap

        Returns:
            Dependency-gap drafts (hours sized 8-160)
        """
        prompt = f"""USER OUTCOME:
{outcome_text}

A piece of work appears to be missing between these two tasks:
BEFORE: {predecessor.text}
AFTER: {successor.text}

Generate up to {max_tasks} bridging tasks that must happen between them.
Each bridging task should take between 8 and 160 hours.
"""
        return await self._request_drafts(
            prompt, DEPENDENCY_GAP_AREA, DraftSource.DEPENDENCY_GAP, max_tasks
        )

    def _build_area_prompt(
        self, outcome_text: str, area: str, existing: list[str], max_per_area: int
    ) -> str:
        existing_lines = "\n".join(f"- {text}" for text in existing[:MAX_EXISTING_TASKS_IN_PROMPT])
        return f"""USER OUTCOME:
{outcome_text}

MISSING CONCEPT:
{area}

EXISTING TASKS IN PLAN:
{existing_lines or "- (none)"}

Generate up to {max_per_area} draft tasks that address this missing concept and align with the user's outcome.
Estimated hours must be between 0.25 and 8.0. Return exactly {max_per_area} tasks unless fewer are relevant.
"""

    async def _request_drafts(
        self, prompt: str, area: str, source: DraftSource, limit: int
    ) -> list[DraftTask]:
        response = await asyncio.wait_for(
            self.client.complete_json(
                system_prompt=DRAFT_SYSTEM_PROMPT,
                user_prompt=prompt,
                temperature=0.5,
            ),
            timeout=self.timeout_seconds,
        )
        drafts = self._parse_drafts(response, area, source)[:limit]

        if drafts:
            embeddings = await self.client.embed_many([d.task_text for d in drafts])
            for draft, embedding in zip(drafts, embeddings):
                draft.embedding = embedding
        return drafts

    def _parse_drafts(
        self, response: dict[str, Any], area: str, source: DraftSource
    ) -> list[DraftTask]:
        """Parse drafts from an LLM response, skipping malformed entries."""
        drafts = []
        for raw in response.get("draft_tasks", []):
            try:
                text = str(raw["task_text"]).strip()
                drafts.append(
                    DraftTask(
                        id=str(uuid.uuid4()),
                        task_text=text,
                        estimated_hours=float(raw["estimated_hours"]),
                        cognition_level=CognitionLevel(str(raw["cognition_level"]).lower()),
                        reasoning=str(raw.get("reasoning", "")).strip(),
                        gap_area=area,
                        confidence_score=float(raw.get("confidence_score", 0.5)),
                        source=source,
                        deduplication_hash=deduplication_hash(text),
                    )
                )
            except (KeyError, ValueError, TypeError) as e:
                logger.warning(f"Failed to parse draft: {e}, raw: {raw}")
                continue
        return drafts


def deduplicate_drafts(
    semantic: list[DraftTask],
    dependency: list[DraftTask],
    threshold: float = DUPLICATE_THRESHOLD,
) -> tuple[list[DraftTask], DeduplicationStats]:
    """Merge semantic and dependency drafts, dropping near-duplicate dependency drafts.

    A dependency draft is suppressed when its embedding is more similar than
    ``threshold`` to any semantic draft. Drafts without embeddings are kept.

    Returns:
        (merged drafts, stats)
    """
    semantic_vectors = [d.embedding for d in semantic if d.embedding]
    kept_dependency = []

    for draft in dependency:
        if draft.embedding and any(
            cosine_similarity(draft.embedding, vector) > threshold for vector in semantic_vectors
        ):
            logger.debug(f"Suppressed dependency draft duplicating a semantic draft: {draft.task_text}")
            continue
        kept_dependency.append(draft)

    merged = list(semantic) + kept_dependency
    stats = DeduplicationStats(
        dependency_total=len(dependency),
        dependency_suppressed=len(dependency) - len(kept_dependency),
        final_count=len(merged),
    )
    return merged, stats


def should_run_dependency_pass(hypothetical_coverage: int, existing_task_count: int) -> bool:
    """Whether dependency-gap drafts should supplement semantic drafts."""
    return hypothetical_coverage < DEPENDENCY_PASS_COVERAGE and existing_task_count >= 2


@dataclass
class DraftPlan:
    """Everything produced by one draft generation run."""

    coverage: CoverageAnalysis
    drafts: list[DraftTask]
    stats: DeduplicationStats
    dependency_pass_triggered: bool = False
    dependency_error: str | None = None


class DraftPipeline:
    """Runs coverage analysis, semantic drafts and the dependency fallback."""

    def __init__(
        self,
        analyzer: CoverageAnalyzer,
        generator: DraftGenerator,
        duplicate_threshold: float = DUPLICATE_THRESHOLD,
    ) -> None:
        self.analyzer = analyzer
        self.generator = generator
        self.duplicate_threshold = duplicate_threshold

    async def run(
        self,
        outcome_text: str,
        tasks: list[Task],
        relationships: list[TaskRelationship] | None = None,
        max_per_area: int = 3,
    ) -> DraftPlan:
        """Produce deduplicated drafts for an outcome and its current tasks.

        Args:
            outcome_text: The outcome to cover
            tasks: Current tasks in plan order, with embeddings
            relationships: Known dependency edges
            max_per_area: Draft cap per missing area

        Returns:
            DraftPlan with the coverage analysis and merged drafts
        """
        texts = [t.text for t in tasks]
        embeddings = [t.embedding for t in tasks if t.embedding]
        coverage = await self.analyzer.analyze(outcome_text, texts, embeddings)

        semantic: list[DraftTask] = []
        if coverage.should_generate_drafts and coverage.missing_areas:
            result = await self.generator.generate(
                outcome_text, coverage.missing_areas, texts, max_per_area
            )
            semantic = result.drafts

        hypothetical = await self.analyzer.analyze(
            outcome_text,
            texts + [d.task_text for d in semantic],
            embeddings + [d.embedding for d in semantic if d.embedding],
            outcome_embedding=coverage.goal_embedding,
            extract_missing=False,
        )

        dependency: list[DraftTask] = []
        triggered = should_run_dependency_pass(hypothetical.coverage_percentage, len(tasks))
        dependency_error = None

        if triggered:
            try:
                analysis = detect_gaps(
                    [t.id for t in tasks], {t.id: t for t in tasks}, relationships
                )
                if analysis.gaps:
                    top = analysis.gaps[0]
                    by_id = {t.id: t for t in tasks}
                    dependency = await self.generator.generate_bridging(
                        outcome_text,
                        by_id[top.predecessor_task_id],
                        by_id[top.successor_task_id],
                    )
                else:
                    logger.info("Dependency pass triggered but no gaps were detected")
            except Exception as e:
                logger.error(f"Dependency draft generation failed: {e}")
                dependency_error = str(e)

        drafts, stats = deduplicate_drafts(semantic, dependency, self.duplicate_threshold)
        return DraftPlan(
            coverage=coverage,
            drafts=drafts,
            stats=stats,
            dependency_pass_triggered=triggered,
            dependency_error=dependency_error,
        )
