"""Outcome coverage analysis."""

import logging

from note_synth.intelligence.vectors import DEFAULT_DIMENSION, centroid, cosine_similarity
from note_synth.llm.client import LLMClient
from note_synth.models.intelligence import CoverageAnalysis

logger = logging.getLogger(__name__)

COVERAGE_THRESHOLD = 0.7
MAX_MISSING_AREAS = 5

MISSING_AREAS_SYSTEM_PROMPT = """You are an intelligent assistant that identifies gaps between desired outcomes and existing tasks.

You MUST respond with valid JSON in this exact format:
{
    "missing_areas": ["short area name", "..."]
}
"""


class CoverageAnalyzer:
    """Measures how well a task set covers an outcome."""

    def __init__(
        self,
        client: LLMClient,
        threshold: float = COVERAGE_THRESHOLD,
        dimension: int = DEFAULT_DIMENSION,
    ) -> None:
        """Initialize the analyzer.

        Args:
            client: LLM client used for embeddings and gap extraction
            threshold: Similarity below which missing areas are extracted
            dimension: Embedding dimension for the empty-set centroid
        """
        self.client = client
        self.threshold = threshold
        self.dimension = dimension

    async def analyze(
        self,
        outcome_text: str,
        task_texts: list[str],
        task_embeddings: list[list[float]],
        outcome_embedding: list[float] | None = None,
        extract_missing: bool = True,
    ) -> CoverageAnalysis:
        """Compare the outcome embedding to the centroid of task embeddings.

        Args:
            outcome_text: The outcome/goal text
            task_texts: Task texts, used to prompt for missing areas
            task_embeddings: One embedding per task
            outcome_embedding: Precomputed outcome embedding, if available
            extract_missing: Ask the LLM for missing areas when coverage is low

        Returns:
            CoverageAnalysis with a 0-100 coverage percentage
        """
        task_centroid = centroid(task_embeddings, self.dimension)
        if outcome_embedding is None:
            outcome_embedding = await self.client.embed(outcome_text)

        similarity = cosine_similarity(outcome_embedding, task_centroid)
        coverage = max(0, min(100, round(similarity * 100)))

        missing_areas: list[str] = []
        if extract_missing and coverage < round(self.threshold * 100):
            missing_areas = await self.extract_missing_areas(outcome_text, task_texts)

        logger.info(f"Coverage {coverage}% across {len(task_texts)} tasks")

        return CoverageAnalysis(
            coverage_percentage=coverage,
            missing_areas=missing_areas,
            goal_embedding=list(outcome_embedding),
            task_cluster_centroid=task_centroid,
            task_count=len(task_texts),
            threshold_used=self.threshold,
        )

    async def extract_missing_areas(self, outcome_text: str, task_texts: list[str]) -> list[str]:
        """Ask the LLM which conceptual areas the tasks fail to cover.

        Returns:
            Up to five area names (empty on LLM failure)
        """
        numbered = "\n".join(f"{i + 1}. {text}" for i, text in enumerate(task_texts))
        prompt = f"""The desired outcome is: "{outcome_text}"

The existing tasks are:
{numbered}

Identify 2-5 conceptual areas that are missing from the tasks but would help achieve the outcome.
"""
        try:
            response = await self.client.complete_json(
                system_prompt=MISSING_AREAS_SYSTEM_PROMPT,
                user_prompt=prompt,
                temperature=0.3,
            )
        except Exception as e:
            logger.error(f"Failed to extract missing areas: {e}")
            return []

        areas = response.get("missing_areas", [])
        if not isinstance(areas, list):
            logger.warning(f"Ignoring malformed missing_areas: {areas!r}")
            return []
        return [str(a).strip() for a in areas if str(a).strip()][:MAX_MISSING_AREAS]
