"""Dependency graph checks and bridging task insertion."""

import copy
import logging
from collections import deque

from note_synth.models.tasks import BridgingTaskInput, Gap, InsertionResult, PlanTask

logger = logging.getLogger(__name__)

PLAN_START_ID = "000"
MIN_BRIDGING_HOURS = 8
MAX_BRIDGING_HOURS = 160
CYCLE_ERROR = (
    "Cannot insert tasks - would create circular dependency chain. "
    "Please review your plan's dependencies."
)


def _kahn(tasks: list[PlanTask]) -> list[str]:
    """Kahn's algorithm; returns the ids it could order.

    Dependencies on ids outside the task list are ignored.
    """
    in_degree = {task.id: 0 for task in tasks}
    dependents: dict[str, list[str]] = {task.id: [] for task in tasks}

    for task in tasks:
        for dep_id in task.depends_on:
            if dep_id in dependents:
                dependents[dep_id].append(task.id)
                in_degree[task.id] += 1

    queue = deque(task_id for task_id, degree in in_degree.items() if degree == 0)
    order = []
    while queue:
        task_id = queue.popleft()
        order.append(task_id)
        for neighbor in dependents[task_id]:
            in_degree[neighbor] -= 1
            if in_degree[neighbor] == 0:
                queue.append(neighbor)
    return order


def detect_cycle(tasks: list[PlanTask]) -> bool:
    """Whether the depends_on graph contains a cycle."""
    if not tasks:
        return False
    return len(_kahn(tasks)) != len(tasks)


def topological_order(tasks: list[PlanTask]) -> list[str]:
    """Task ids ordered so every task follows its dependencies.

    Raises:
        ValueError: If the graph contains a cycle
    """
    order = _kahn(tasks)
    if len(order) != len(tasks):
        stuck = sorted({task.id for task in tasks} - set(order))
        raise ValueError(f"Circular dependency among tasks: {', '.join(stuck)}")
    return order


def _validate_bridging_task(task: BridgingTaskInput) -> str | None:
    if not task.text or not task.text.strip():
        return "Task text cannot be empty"
    if task.estimated_hours <= 0:
        return "Task estimated_hours must be positive"
    if not MIN_BRIDGING_HOURS <= task.estimated_hours <= MAX_BRIDGING_HOURS:
        return (
            f"Task estimated_hours must be between {MIN_BRIDGING_HOURS} "
            f"and {MAX_BRIDGING_HOURS} hours"
        )
    return None


def _new_task_ids(gap: Gap, count: int) -> list[str]:
    """Numeric ids following the predecessor (or preceding the successor at plan start).

    Raises:
        ValueError: If the anchoring id is not numeric
    """
    anchor = gap.successor_id if gap.predecessor_id == PLAN_START_ID else gap.predecessor_id
    if not anchor.isdecimal():
        raise ValueError(f"Cannot derive new task ids from non-numeric id {anchor!r}")

    if gap.predecessor_id == PLAN_START_ID:
        successor = int(anchor)
        return [str(successor - i).zfill(3) for i in range(count, 0, -1)]

    predecessor = int(anchor)
    return [str(predecessor + i).zfill(3) for i in range(1, count + 1)]


def insert_bridging_tasks(
    gap: Gap,
    bridging_tasks: list[BridgingTaskInput],
    plan: list[PlanTask],
) -> InsertionResult:
    """Insert a chain of tasks between a gap's predecessor and successor.

    The inserted tasks depend on each other in order, the first one on the
    predecessor, and the successor is rewired to depend on the last one.
    The input plan is never mutated.

    Args:
        gap: Predecessor/successor pair ("000" predecessor inserts at the start)
        bridging_tasks: Tasks to insert, in order
        plan: Current plan

    Returns:
        InsertionResult with the updated plan on success or an error message
    """
    if not bridging_tasks:
        return InsertionResult(success=True, updated_plan=plan)

    for task in bridging_tasks:
        error = _validate_bridging_task(task)
        if error:
            return InsertionResult(success=False, error=error)

    plan_ids = {task.id for task in plan}
    if gap.predecessor_id != PLAN_START_ID and gap.predecessor_id not in plan_ids:
        return InsertionResult(
            success=False, error=f"predecessor task {gap.predecessor_id} not found in plan"
        )
    if gap.successor_id not in plan_ids:
        return InsertionResult(
            success=False, error=f"successor task {gap.successor_id} not found in plan"
        )

    try:
        new_ids = _new_task_ids(gap, len(bridging_tasks))
    except ValueError as e:
        return InsertionResult(success=False, error=str(e))
    taken = [new_id for new_id in new_ids if new_id in plan_ids or int(new_id) < 0]
    if taken:
        return InsertionResult(
            success=False, error=f"No free task ids for insertion: {', '.join(taken)}"
        )

    new_tasks = []
    for index, bridging in enumerate(bridging_tasks):
        if index > 0:
            depends_on = [new_ids[index - 1]]
        elif gap.predecessor_id == PLAN_START_ID:
            depends_on = []
        else:
            depends_on = [gap.predecessor_id]
        new_tasks.append(
            PlanTask(
                id=new_ids[index],
                text=bridging.text,
                estimated_hours=bridging.estimated_hours,
                depends_on=depends_on,
            )
        )

    updated = copy.deepcopy(plan)
    if gap.predecessor_id == PLAN_START_ID:
        insert_at = 0
    else:
        insert_at = next(i for i, t in enumerate(updated) if t.id == gap.predecessor_id) + 1
    updated[insert_at:insert_at] = new_tasks

    last_id = new_ids[-1]
    successor = next(t for t in updated if t.id == gap.successor_id)
    if gap.predecessor_id == PLAN_START_ID:
        if last_id not in successor.depends_on:
            successor.depends_on.insert(0, last_id)
    elif gap.predecessor_id in successor.depends_on:
        successor.depends_on[successor.depends_on.index(gap.predecessor_id)] = last_id
    else:
        successor.depends_on.append(last_id)

    if detect_cycle(updated):
        logger.warning(f"Rejected insertion between {gap.predecessor_id} and {gap.successor_id}")
        return InsertionResult(success=False, error=CYCLE_ERROR)

    logger.info(
        f"Inserted {len(new_ids)} tasks between {gap.predecessor_id} and {gap.successor_id}"
    )
    return InsertionResult(success=True, inserted_ids=new_ids, updated_plan=updated)
