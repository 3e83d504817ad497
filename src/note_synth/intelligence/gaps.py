"""Detection of missing work between consecutive tasks.

Each adjacent pair of tasks is checked for four indicators:
- time_gap: created more than 7 days apart
- action_type_jump: workflow stages at least two steps apart
- no_dependency: no prerequisite/blocks edge from predecessor to successor
- skill_jump: both tasks name skills and the skill sets do not overlap

Pairs with two or more indicators are reported unless the successor already
leads back to the predecessor, in which case bridging work would form a cycle.
"""

import logging
import re
import time
import uuid
from collections import deque
from datetime import timedelta
from functools import lru_cache

from note_synth.models.intelligence import DetectedGap, GapAnalysis, GapIndicators
from note_synth.models.tasks import RelationshipType, Task, TaskRelationship

logger = logging.getLogger(__name__)

TIME_GAP = timedelta(days=7)
MIN_INDICATORS = 2
MAX_GAPS = 3

WORKFLOW_STAGES = ["research", "design", "plan", "build", "test", "deploy", "launch"]

WORKFLOW_KEYWORDS: dict[str, list[str]] = {
    "research": ["research", "analysis", "investigate", "discovery", "interview"],
    "design": ["design", "mockup", "wireframe", "prototype", "ux", "ui"],
    "plan": ["plan", "roadmap", "spec", "backlog", "groom", "architecture"],
    "build": ["build", "implement", "develop", "code", "create", "engineer", "integrate"],
    "test": ["test", "qa", "validate", "verify", "quality", "bug", "regression"],
    "deploy": ["deploy", "release", "ship", "rollout", "publish", "handoff", "handover"],
    "launch": ["launch", "go live", "golive", "announce", "marketing push"],
}

SKILL_KEYWORDS: dict[str, list[str]] = {
    "design": ["design", "ux", "ui", "prototype", "wireframe", "figma"],
    "frontend": ["frontend", "react", "next", "typescript", "javascript", "ui component"],
    "backend": ["backend", "api", "database", "server", "supabase", "postgres", "node"],
    "data": ["analytics", "data", "metrics", "sql", "dashboard"],
    "marketing": ["launch", "campaign", "marketing", "go-to-market", "growth", "seo"],
    "qa": ["test", "qa", "quality", "bugs", "regression", "verify"],
    "devops": ["deploy", "pipeline", "infrastructure", "devops", "ci", "cd", "kubernetes"],
    "research": ["research", "interview", "discovery", "analysis"],
    "product": ["plan", "strategy", "roadmap", "prioritize"],
}


class MissingTaskError(Exception):
    """Raised when requested task ids are not known."""

    pass


@lru_cache(maxsize=None)
def _keyword_pattern(keyword: str) -> re.Pattern[str]:
    # Keywords match at a word start so "ui" does not fire inside "build".
    return re.compile(r"\b" + re.escape(keyword))


def _mentions(text: str, keywords: list[str]) -> bool:
    return any(_keyword_pattern(k).search(text) for k in keywords)


def infer_workflow_stage(text: str) -> str | None:
    """First workflow stage whose keywords appear in the text, if any."""
    lower = text.lower()
    for stage in WORKFLOW_STAGES:
        if _mentions(lower, WORKFLOW_KEYWORDS[stage]):
            return stage
    return None


def extract_skill_tags(text: str) -> list[str]:
    """Skill areas mentioned in the text."""
    lower = text.lower()
    return [skill for skill, keywords in SKILL_KEYWORDS.items() if _mentions(lower, keywords)]


def compute_gap_confidence(indicator_count: int) -> float:
    """Confidence for a number of fired indicators."""
    if indicator_count < MIN_INDICATORS:
        return 0.0
    if indicator_count == 2:
        return 0.6
    if indicator_count == 3:
        return 0.75
    return min(1.0, 0.75 + 0.25 * (indicator_count - 3))


def has_path(source_id: str, target_id: str, relationships: list[TaskRelationship]) -> bool:
    """Whether a directed path leads from source to target (BFS)."""
    adjacency: dict[str, set[str]] = {}
    for rel in relationships:
        adjacency.setdefault(rel.source_task_id, set()).add(rel.target_task_id)

    visited = {source_id}
    queue = deque([source_id])
    while queue:
        current = queue.popleft()
        if current == target_id:
            return True
        for neighbor in adjacency.get(current, ()):
            if neighbor not in visited:
                visited.add(neighbor)
                queue.append(neighbor)
    return False


def _indicators_for(
    predecessor: Task, successor: Task, dependency_edges: set[tuple[str, str]]
) -> GapIndicators:
    time_gap = False
    if predecessor.created_at and successor.created_at:
        time_gap = successor.created_at - predecessor.created_at > TIME_GAP

    action_type_jump = False
    pred_stage = infer_workflow_stage(predecessor.text)
    succ_stage = infer_workflow_stage(successor.text)
    if pred_stage and succ_stage:
        action_type_jump = (
            abs(WORKFLOW_STAGES.index(succ_stage) - WORKFLOW_STAGES.index(pred_stage)) >= 2
        )

    pred_skills = set(extract_skill_tags(predecessor.text))
    succ_skills = set(extract_skill_tags(successor.text))
    skill_jump = bool(pred_skills) and bool(succ_skills) and pred_skills.isdisjoint(succ_skills)

    return GapIndicators(
        time_gap=time_gap,
        action_type_jump=action_type_jump,
        no_dependency=(predecessor.id, successor.id) not in dependency_edges,
        skill_jump=skill_jump,
    )


def detect_gaps(
    task_ids: list[str],
    tasks: dict[str, Task],
    relationships: list[TaskRelationship] | None = None,
) -> GapAnalysis:
    """Scan an ordered task sequence for likely gaps.

    Args:
        task_ids: Task ids in plan order
        tasks: Known tasks by id
        relationships: Dependency edges among the tasks

    Returns:
        GapAnalysis with at most three gaps, most confident first

    Raises:
        ValueError: If fewer than two task ids are given
        MissingTaskError: If any id is unknown
    """
    if len(task_ids) < 2:
        raise ValueError("At least two task IDs are required to detect gaps")

    missing = [task_id for task_id in task_ids if task_id not in tasks]
    if missing:
        raise MissingTaskError(f"Missing tasks for IDs: {', '.join(missing)}")

    start = time.monotonic()
    relationships = relationships or []
    dependency_edges = {
        (rel.source_task_id, rel.target_task_id)
        for rel in relationships
        if rel.relationship_type in (RelationshipType.PREREQUISITE, RelationshipType.BLOCKS)
    }

    ordered = [tasks[task_id] for task_id in task_ids]
    gaps: list[DetectedGap] = []

    for predecessor, successor in zip(ordered, ordered[1:]):
        indicators = _indicators_for(predecessor, successor, dependency_edges)
        if indicators.count < MIN_INDICATORS:
            logger.debug(
                f"No gap between {predecessor.id} and {successor.id} "
                f"({indicators.count} indicators)"
            )
            continue

        if has_path(successor.id, predecessor.id, relationships):
            logger.info(
                f"Skipping gap {predecessor.id} -> {successor.id}: reverse dependency path exists"
            )
            continue

        gaps.append(
            DetectedGap(
                id=str(uuid.uuid4()),
                predecessor_task_id=predecessor.id,
                successor_task_id=successor.id,
                indicators=indicators,
                confidence=compute_gap_confidence(indicators.count),
            )
        )

    gaps.sort(key=lambda g: (g.confidence, g.indicators.count), reverse=True)
    duration_ms = int((time.monotonic() - start) * 1000)

    logger.info(f"Gap analysis: {len(ordered) - 1} pairs, {len(gaps)} gaps found")

    return GapAnalysis(
        gaps=gaps[:MAX_GAPS],
        total_pairs_analyzed=len(ordered) - 1,
        analysis_duration_ms=duration_ms,
    )
