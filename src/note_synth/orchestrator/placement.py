"""Placement of user-authored tasks against the active outcome."""

import asyncio
import logging
import uuid
from typing import Any

from note_synth.intelligence.vectors import cosine_similarity
from note_synth.llm.client import LLMClient
from note_synth.models.manual import (
    ConflictDetails,
    ManualTask,
    ManualTaskAnalysis,
    ManualTaskStatus,
)
from note_synth.models.tasks import Task
from note_synth.orchestrator.agents import ManualPlacementAgent
from note_synth.store import TaskStore

logger = logging.getLogger(__name__)

DUPLICATE_THRESHOLD = 0.9
DEFAULT_EXCLUSION = "Agent analysis failed - default exclusion (confidence: 0.2)"
GOAL_CHANGED = "Goal changed - manual tasks invalidated"


class ManualTaskPlacementError(Exception):
    """Raised when a manual task cannot be placed."""

    pass


class ManualTaskNotFoundError(ManualTaskPlacementError):
    """Raised when a manual task does not exist or was deleted."""

    def __init__(self, message: str = "Manual task not found") -> None:
        super().__init__(message)


class ManualTaskInvalidStateError(ManualTaskPlacementError):
    """Raised when an operation does not apply to the task's current status."""

    def __init__(self, message: str = "Task is not in discard pile") -> None:
        super().__init__(message)


def map_agent_decision(decision: dict[str, Any] | None) -> ManualTaskAnalysis:
    """Translate an agent's include/exclude/conflict decision."""
    decision = decision if isinstance(decision, dict) else {}
    kind = decision.get("decision")

    if kind == "include":
        rank = decision.get("agent_rank")
        return ManualTaskAnalysis(
            status=ManualTaskStatus.PRIORITIZED,
            rank=rank if isinstance(rank, int) and not isinstance(rank, bool) else None,
            placement_reason=decision.get("placement_reason")
            or decision.get("reason")
            or "Agent included manual task",
        )

    if kind == "exclude":
        return ManualTaskAnalysis(
            status=ManualTaskStatus.NOT_RELEVANT,
            exclusion_reason=decision.get("exclusion_reason")
            or decision.get("reason")
            or "Agent excluded manual task due to low alignment",
        )

    if kind == "conflict":
        score = decision.get("similarity_score")
        return ManualTaskAnalysis(
            status=ManualTaskStatus.CONFLICT,
            conflict_details=ConflictDetails(
                duplicate_task_id=str(decision.get("duplicate_task_id") or ""),
                similarity_score=float(score) if isinstance(score, (int, float)) else 0.0,
                existing_task_text=str(decision.get("existing_task_text") or ""),
            ),
        )

    logger.warning(f"Unrecognized placement decision: {decision!r}")
    return ManualTaskAnalysis(status=ManualTaskStatus.NOT_RELEVANT, exclusion_reason=DEFAULT_EXCLUSION)


def _is_timeout(error: BaseException) -> bool:
    return isinstance(error, asyncio.TimeoutError) or "timeout" in str(error).lower()


class ManualTaskPlacer:
    """Creates manual tasks and decides whether they belong in the plan."""

    def __init__(
        self,
        store: TaskStore,
        agent: ManualPlacementAgent,
        client: LLMClient | None = None,
        timeout_seconds: float = 10,
        duplicate_threshold: float = DUPLICATE_THRESHOLD,
    ) -> None:
        """Initialize the placer.

        Args:
            store: Repository holding tasks, outcomes and manual tasks
            agent: Agent making the placement decision
            client: LLM client for embedding new tasks (optional)
            timeout_seconds: Agent timeout; on timeout the task stays analyzing
            duplicate_threshold: Similarity at or above which a task is a duplicate
        """
        self.store = store
        self.agent = agent
        self.client = client
        self.timeout_seconds = timeout_seconds
        self.duplicate_threshold = duplicate_threshold

    def find_duplicate(self, embedding: list[float], exclude_id: str | None = None) -> ConflictDetails | None:
        """Most similar stored task at or above the duplicate threshold."""
        best: tuple[float, Task] | None = None
        for task in self.store.tasks.values():
            if task.id == exclude_id or not task.embedding:
                continue
            similarity = cosine_similarity(embedding, task.embedding)
            if best is None or similarity > best[0]:
                best = (similarity, task)

        if best is None or best[0] < self.duplicate_threshold:
            return None
        similarity, task = best
        return ConflictDetails(
            duplicate_task_id=task.id,
            similarity_score=round(similarity, 3),
            existing_task_text=task.text,
        )

    async def create(
        self,
        text: str,
        outcome_id: str | None = None,
        embedding: list[float] | None = None,
    ) -> tuple[ManualTask, ManualTaskAnalysis]:
        """Store a new manual task and place it.

        Near-duplicates of existing tasks are stored in the conflict state
        without consulting the agent.

        Raises:
            ManualTaskPlacementError: If the text is empty
        """
        text = (text or "").strip()
        if not text:
            raise ManualTaskPlacementError("Task text is required")

        if embedding is None and self.client is not None:
            embedding = await self.client.embed(text)

        task_id = f"manual-{uuid.uuid4().hex[:12]}"
        manual = self.store.add_manual_task(
            ManualTask(task_id=task_id, text=text, outcome_id=outcome_id)
        )

        duplicate = self.find_duplicate(embedding) if embedding else None
        self.store.add_task(Task(id=task_id, text=text, embedding=embedding, is_manual=True))

        if duplicate:
            logger.info(f"Manual task {task_id} duplicates {duplicate.duplicate_task_id}")
            analysis = ManualTaskAnalysis(status=ManualTaskStatus.CONFLICT, conflict_details=duplicate)
            manual.apply(analysis)
            return manual, analysis

        if outcome_id is None:
            return manual, ManualTaskAnalysis(status=ManualTaskStatus.ANALYZING)

        analysis = await self.analyze(task_id, text, outcome_id)
        return manual, analysis

    async def analyze(self, task_id: str, task_text: str, outcome_id: str) -> ManualTaskAnalysis:
        """Ask the agent where a manual task belongs and persist the decision.

        Returns:
            The analysis; ``analyzing`` when the outcome is inactive or the agent timed out

        Raises:
            ManualTaskPlacementError: If task id or text are missing
            ManualTaskNotFoundError: If the manual task does not exist
        """
        if not task_id or not task_text:
            raise ManualTaskPlacementError("taskId and taskText are required")

        manual = self.store.get_manual_task(task_id)
        if manual is None:
            raise ManualTaskNotFoundError()

        outcome = self.store.get_outcome(outcome_id)
        if outcome is None or not outcome.is_active:
            logger.info(f"Skipping analysis of {task_id}: outcome {outcome_id} is not active")
            return ManualTaskAnalysis(status=ManualTaskStatus.ANALYZING)

        try:
            decision = await asyncio.wait_for(
                self.agent.place(task_id, task_text, outcome.text),
                timeout=self.timeout_seconds,
            )
            analysis = map_agent_decision(decision)
        except Exception as e:
            if _is_timeout(e):
                logger.warning(f"Placement agent timed out for {task_id}; keeping it analyzing")
                return ManualTaskAnalysis(status=ManualTaskStatus.ANALYZING)
            logger.error(f"Placement agent failed for {task_id}: {e}")
            analysis = ManualTaskAnalysis(
                status=ManualTaskStatus.NOT_RELEVANT, exclusion_reason=DEFAULT_EXCLUSION
            )

        manual.apply(analysis)
        logger.info(f"Manual task {task_id} placed as {analysis.status.value}")
        return analysis

    def get_status(self, task_id: str) -> ManualTask:
        """Current state of a manual task.

        Raises:
            ManualTaskNotFoundError: If the task does not exist
        """
        manual = self.store.get_manual_task(task_id)
        if manual is None:
            raise ManualTaskNotFoundError()
        return manual

    async def override_discard(
        self, task_id: str, user_justification: str | None = None
    ) -> ManualTaskAnalysis:
        """Send a discarded task back for re-analysis.

        Raises:
            ManualTaskNotFoundError: If the task does not exist
            ManualTaskInvalidStateError: If the task is not in the discard pile
        """
        manual = self.get_status(task_id)
        if manual.status is not ManualTaskStatus.NOT_RELEVANT:
            raise ManualTaskInvalidStateError()

        manual.status = ManualTaskStatus.ANALYZING
        manual.exclusion_reason = None
        if user_justification:
            logger.info(f"Override requested for {task_id}: {user_justification}")

        return await self.analyze(task_id, manual.text, manual.outcome_id or "")

    def invalidate_manual_tasks(self, outcome_id: str) -> int:
        """Discard every prioritized manual task of an outcome.

        Returns:
            Number of tasks invalidated
        """
        if not outcome_id:
            raise ManualTaskPlacementError("outcomeId is required")

        invalidated = self.store.manual_tasks_for_outcome(outcome_id, ManualTaskStatus.PRIORITIZED)
        for manual in invalidated:
            manual.status = ManualTaskStatus.NOT_RELEVANT
            manual.exclusion_reason = GOAL_CHANGED
        logger.info(f"Invalidated {len(invalidated)} manual tasks for outcome {outcome_id}")
        return len(invalidated)
