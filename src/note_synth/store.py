"""In-memory repository for tasks, outcomes, reflections and manual tasks."""

import logging
from datetime import date, datetime
from pathlib import Path
from typing import Any

import yaml

from note_synth.models.manual import ManualTask, ManualTaskStatus
from note_synth.models.plan import PrioritizedPlan
from note_synth.models.reflections import ReflectionEffect
from note_synth.models.scoring import StrategicScore
from note_synth.models.tasks import (
    Outcome,
    PlanTask,
    Reflection,
    RelationshipType,
    Task,
    TaskRelationship,
)

logger = logging.getLogger(__name__)


class NotFoundError(KeyError):
    """Raised when a stored entity does not exist."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else "Not found"


def _to_datetime(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    return datetime.fromisoformat(str(value))


class TaskStore:
    """Process-local storage shared by the server and CLI.

    Not thread-safe; one instance per process or per test.
    """

    def __init__(self) -> None:
        self.tasks: dict[str, Task] = {}
        self.relationships: list[TaskRelationship] = []
        self.outcomes: dict[str, Outcome] = {}
        self.reflections: dict[str, Reflection] = {}
        self.manual_tasks: dict[str, ManualTask] = {}
        self.plan: list[PlanTask] = []
        self.reflection_effects: dict[str, list[ReflectionEffect]] = {}
        self.scores: dict[str, StrategicScore] = {}
        self.latest_plan: PrioritizedPlan | None = None

    # Tasks

    def add_task(self, task: Task) -> Task:
        self.tasks[task.id] = task
        return task

    def get_task(self, task_id: str) -> Task:
        try:
            return self.tasks[task_id]
        except KeyError:
            raise NotFoundError(f"Task not found: {task_id}") from None

    def list_tasks(self, task_ids: list[str] | None = None) -> list[Task]:
        """Tasks in insertion order, or in the order of the given ids."""
        if task_ids is None:
            return list(self.tasks.values())
        return [self.get_task(task_id) for task_id in task_ids]

    def add_relationship(self, relationship: TaskRelationship) -> None:
        self.relationships.append(relationship)

    def relationships_for(self, task_ids: list[str]) -> list[TaskRelationship]:
        """Relationships whose endpoints are both among the given tasks."""
        wanted = set(task_ids)
        return [
            rel
            for rel in self.relationships
            if rel.source_task_id in wanted and rel.target_task_id in wanted
        ]

    # Outcomes

    def add_outcome(self, outcome: Outcome) -> Outcome:
        if outcome.is_active:
            for existing in self.outcomes.values():
                existing.is_active = False
        self.outcomes[outcome.id] = outcome
        return outcome

    def get_outcome(self, outcome_id: str) -> Outcome | None:
        return self.outcomes.get(outcome_id)

    def active_outcome(self) -> Outcome | None:
        return next((o for o in self.outcomes.values() if o.is_active), None)

    # Reflections

    def add_reflection(self, reflection: Reflection) -> Reflection:
        self.reflections[reflection.id] = reflection
        return reflection

    def set_reflection_active(self, reflection_id: str, is_active: bool) -> Reflection:
        reflection = self.reflections.get(reflection_id)
        if reflection is None:
            raise NotFoundError(f"Reflection not found: {reflection_id}")
        reflection.is_active = is_active
        return reflection

    def active_reflections(self) -> list[Reflection]:
        return [r for r in self.reflections.values() if r.is_active]

    # Manual tasks

    def add_manual_task(self, manual_task: ManualTask) -> ManualTask:
        self.manual_tasks[manual_task.task_id] = manual_task
        return manual_task

    def get_manual_task(self, task_id: str) -> ManualTask | None:
        task = self.manual_tasks.get(task_id)
        if task is None or task.deleted_at is not None:
            return None
        return task

    def manual_tasks_for_outcome(
        self, outcome_id: str, status: ManualTaskStatus | None = None
    ) -> list[ManualTask]:
        return [
            t
            for t in self.manual_tasks.values()
            if t.outcome_id == outcome_id
            and t.deleted_at is None
            and (status is None or t.status is status)
        ]

    # Scores

    async def save_score(self, score: StrategicScore) -> None:
        """Store a score; usable as an async rescoring callback."""
        self.scores[score.task_id] = score

    # Loading

    @classmethod
    def from_file(cls, path: Path) -> "TaskStore":
        """Load a store from a YAML (or JSON) task file.

        Expected layout::

            outcome: "Increase trial conversion"
            tasks:
              - id: "001"
                text: "Design pricing page"
                created_at: 2024-05-01
                estimated_hours: 8
                depends_on: []
            relationships:
              - source: "001"
                target: "002"
                type: prerequisite
            reflections:
              - id: r1
                text: "Focus on payments"
                created_at: 2024-05-02

        Raises:
            FileNotFoundError: If the file does not exist
            ValueError: If the file is malformed
        """
        path = Path(path)
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"{path}: expected a mapping at the top level")
        store = cls()
        store.load(data)
        logger.debug(f"Loaded {len(store.tasks)} tasks from {path}")
        return store

    def load(self, data: dict[str, Any]) -> None:
        """Populate the store from parsed task-file data."""
        outcome = data.get("outcome")
        if isinstance(outcome, str) and outcome.strip():
            self.add_outcome(Outcome(id="outcome", text=outcome.strip()))
        elif isinstance(outcome, dict):
            self.add_outcome(
                Outcome(
                    id=str(outcome.get("id", "outcome")),
                    text=str(outcome["text"]),
                    state_preference=outcome.get("state_preference"),
                    daily_capacity_hours=outcome.get("daily_capacity_hours"),
                )
            )

        for raw in data.get("tasks") or []:
            try:
                task = Task(
                    id=str(raw["id"]),
                    text=str(raw["text"]),
                    created_at=_to_datetime(raw.get("created_at")),
                    embedding=raw.get("embedding"),
                    document_id=raw.get("document_id"),
                    is_manual=bool(raw.get("is_manual", False)),
                )
            except (KeyError, TypeError) as e:
                raise ValueError(f"Invalid task entry {raw!r}: {e}") from e
            self.add_task(task)
            self.plan.append(
                PlanTask(
                    id=task.id,
                    text=task.text,
                    estimated_hours=float(raw.get("estimated_hours", 8)),
                    depends_on=[str(d) for d in raw.get("depends_on") or []],
                )
            )

        for raw in data.get("relationships") or []:
            try:
                self.add_relationship(
                    TaskRelationship(
                        source_task_id=str(raw["source"]),
                        target_task_id=str(raw["target"]),
                        relationship_type=RelationshipType(raw.get("type", "prerequisite")),
                        confidence=float(raw.get("confidence", 1.0)),
                    )
                )
            except (KeyError, TypeError) as e:
                raise ValueError(f"Invalid relationship entry {raw!r}: {e}") from e

        for raw in data.get("reflections") or []:
            try:
                self.add_reflection(
                    Reflection(
                        id=str(raw["id"]),
                        text=str(raw["text"]),
                        created_at=_to_datetime(raw.get("created_at")) or datetime.now(),
                        is_active=bool(raw.get("is_active", True)),
                    )
                )
            except (KeyError, TypeError) as e:
                raise ValueError(f"Invalid reflection entry {raw!r}: {e}") from e
