"""LLM agents that generate, evaluate and place prioritizations."""

import json
import logging
from dataclasses import dataclass, field
from typing import Any

from note_synth.llm.client import LLMClient
from note_synth.models.plan import (
    ChainOfThoughtStep,
    CriteriaScores,
    EvaluationResult,
    EvaluationStatus,
    ExcludedTask,
    GeneratorThoughts,
    IncludedTask,
    PrioritizationResult,
    PrioritizedPlan,
    TaskDependency,
    TaskScore,
)
from note_synth.models.tasks import Task

logger = logging.getLogger(__name__)

BRIEF_REASONING_WORDS = 20
BRIEF_REASONING_LENGTH = 150
PLACEHOLDER_REASONING_LENGTH = 300


@dataclass
class PrioritizationContext:
    """Everything an agent needs to prioritize tasks for an outcome."""

    outcome: str
    tasks: list[Task]
    reflections: list[str] = field(default_factory=list)
    previous_plan: PrioritizedPlan | None = None
    dependency_overrides: list[TaskDependency] = field(default_factory=list)

    @property
    def reflections_text(self) -> str:
        if not self.reflections:
            return "No active reflections."
        return "\n".join(f"- {line}" for line in self.reflections)

    @property
    def tasks_text(self) -> str:
        return "\n".join(
            json.dumps({"id": t.id, "text": t.text, "is_manual": t.is_manual}) for t in self.tasks
        )

    @property
    def previous_plan_text(self) -> str:
        if self.previous_plan is None:
            return "No previous plan available."
        return json.dumps(self.previous_plan.to_dict(), indent=2)

    @property
    def dependency_text(self) -> str:
        if not self.dependency_overrides:
            return "No manual dependency overrides."
        return "\n".join(
            f"- {d.source_task_id} {d.relationship_type} {d.target_task_id} "
            f"(Confidence: {d.confidence})"
            for d in self.dependency_overrides
        )


class GeneratorValidationError(Exception):
    """Raised when the generator's JSON does not form a valid result.

    ``payload`` holds the normalized response so callers can attempt repair.
    """

    def __init__(self, message: str, payload: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.payload = payload


def _truncate(text: str, max_length: int) -> str:
    if not text:
        return ""
    return text[: max_length - 3] + "..." if len(text) > max_length else text


def brief_reasoning_fallback(task_id: str, inclusion_reason: str | None = None) -> str:
    """Short reasoning derived from the inclusion reason, capped at twenty words."""
    if inclusion_reason and inclusion_reason.strip():
        words = inclusion_reason.split()[:BRIEF_REASONING_WORDS]
        return _truncate(" ".join(words), BRIEF_REASONING_LENGTH)
    return f"Fallback reasoning for task {task_id}"


def normalize_per_task_scores(raw: dict[str, Any]) -> dict[str, Any]:
    """Align per-task scores with the included tasks.

    Scores for tasks that were not included are dropped, missing brief
    reasoning is filled from the inclusion reason, and included tasks
    without a score get a neutral placeholder.
    """
    if not isinstance(raw, dict):
        return raw
    result = dict(raw)
    included = [t for t in result.get("included_tasks") or [] if isinstance(t, dict)]
    reasons = {t.get("task_id"): t.get("inclusion_reason") for t in included if t.get("task_id")}

    scores = result.get("per_task_scores")
    scores = {k: v for k, v in scores.items() if k in reasons} if isinstance(scores, dict) else {}

    for task_id, score in scores.items():
        if isinstance(score, dict) and not score.get("brief_reasoning"):
            score["brief_reasoning"] = brief_reasoning_fallback(task_id, reasons.get(task_id))

    default_confidence = result.get("confidence")
    if not isinstance(default_confidence, (int, float)):
        default_confidence = 0.5

    for task_id, reason in reasons.items():
        if task_id in scores:
            continue
        scores[task_id] = {
            "task_id": task_id,
            "impact": 5,
            "effort": 8,
            "confidence": default_confidence,
            "reasoning": reason[:PLACEHOLDER_REASONING_LENGTH]
            if isinstance(reason, str)
            else "Auto-generated fallback score based on inclusion reasoning.",
            "brief_reasoning": brief_reasoning_fallback(
                task_id, reason or "Outcome-linked placeholder reasoning"
            ),
        }

    result["per_task_scores"] = scores
    return result


def apply_brief_reasoning_fallback(payload: dict[str, Any]) -> None:
    """Give every ordered task a positional brief reasoning if it has none."""
    scores = payload.setdefault("per_task_scores", {})
    if not isinstance(scores, dict):
        scores = payload["per_task_scores"] = {}
    for index, task_id in enumerate(payload.get("ordered_task_ids") or []):
        entry = scores.setdefault(task_id, {})
        if not str(entry.get("brief_reasoning") or "").strip():
            entry["brief_reasoning"] = f"Priority: {index + 1}"


def _reasoning_text(value: Any) -> str:
    if isinstance(value, dict):
        return "; ".join(f"{k}: {v}" for k, v in value.items() if v)
    return str(value or "")


def parse_prioritization_result(payload: dict[str, Any]) -> PrioritizationResult:
    """Build a PrioritizationResult from normalized generator JSON.

    Raises:
        KeyError, TypeError, ValueError: If required fields are missing or invalid
    """
    thoughts_raw = payload["thoughts"]
    thoughts = GeneratorThoughts(
        outcome_analysis=str(thoughts_raw["outcome_analysis"]),
        filtering_rationale=str(thoughts_raw["filtering_rationale"]),
        prioritization_strategy=str(thoughts_raw["prioritization_strategy"]),
        self_check_notes=str(thoughts_raw.get("self_check_notes") or ""),
    )
    included = [
        IncludedTask(
            task_id=str(t["task_id"]),
            inclusion_reason=str(t["inclusion_reason"]),
            alignment_score=float(t.get("alignment_score", 0)),
        )
        for t in payload.get("included_tasks") or []
    ]
    excluded = [
        ExcludedTask(
            task_id=str(t["task_id"]),
            exclusion_reason=str(t["exclusion_reason"]),
            alignment_score=float(t.get("alignment_score", 0)),
        )
        for t in payload.get("excluded_tasks") or []
    ]

    scores = {}
    for task_id, raw in (payload.get("per_task_scores") or {}).items():
        brief = str(raw.get("brief_reasoning") or "").strip()
        if not brief:
            raise ValueError(f"Task {task_id} is missing brief_reasoning")
        scores[task_id] = TaskScore(
            task_id=str(raw.get("task_id") or task_id),
            impact=float(raw["impact"]),
            effort=float(raw["effort"]),
            confidence=float(raw["confidence"]),
            reasoning=_reasoning_text(raw.get("reasoning")),
            brief_reasoning=brief,
            dependencies=[str(d) for d in raw.get("dependencies") or []],
        )

    return PrioritizationResult(
        thoughts=thoughts,
        included_tasks=included,
        excluded_tasks=excluded,
        ordered_task_ids=[str(t) for t in payload.get("ordered_task_ids") or []],
        per_task_scores=scores,
        confidence=float(payload["confidence"]),
        critical_path_reasoning=str(payload.get("critical_path_reasoning") or ""),
        corrections_made=str(payload.get("corrections_made") or ""),
    )


class PlanningAgent:
    """Base class for prioritization agents."""

    # Subclasses should override these
    MODEL: str | None = None
    AGENT_TYPE: str = "base"
    SYSTEM_PROMPT: str = "You are a task prioritization assistant."

    def __init__(
        self, client: LLMClient, agent_id: str | None = None, model: str | None = None
    ) -> None:
        """Initialize the agent.

        Args:
            client: LLM client
            agent_id: Optional custom agent ID (defaults to class-based ID)
            model: Model override (defaults to MODEL, then the client's model)
        """
        self.client = client
        self.model = model or self.MODEL
        self._agent_id = agent_id or f"{self.AGENT_TYPE}-{id(self)}"

    @property
    def agent_id(self) -> str:
        """Unique identifier for this agent instance."""
        return self._agent_id

    async def _request(
        self, user_prompt: str, system_prompt: str | None = None, temperature: float = 0.3
    ) -> dict[str, Any]:
        return await self.client.complete_json(
            system_prompt=system_prompt or self.SYSTEM_PROMPT,
            user_prompt=user_prompt,
            model=self.model,
            max_tokens=4096,
            temperature=temperature,
        )


GENERATOR_PROMPT = """You are a task prioritization expert. Your mission: filter and order tasks based on how well they advance the user's outcome.

## OUTCOME
{outcome}

## USER REFLECTIONS (Recent context)
{reflections}

## TASKS TO EVALUATE ({task_count} total)
{tasks}

## PREVIOUS PLAN (Context)
{previous_plan}

## DEPENDENCY CONSTRAINTS (Overrides)
{dependency_constraints}

## YOUR PROCESS

### Step 1: CHECK NEGATIVE CONSTRAINTS
Before any other filtering, check the reflections for negative constraints such as
"ignore", "skip", "exclude", "don't" or "avoid". Exclude matching tasks and set
exclusion_reason to "User reflection requested to ignore [topic]: [reflection text]".

### Step 2: FILTER (Outcome Alignment)
Include a task only if it directly advances the outcome. Exclude blocked work and
administrative overhead that does not move the needle.

### Step 3: PRIORITIZE (Strategic Ordering)
Order included tasks by impact, then effort (prefer high impact, low effort), then
dependencies (unblocking tasks first), then reflections.
Give every included task a brief_reasoning of at most 20 words that links to outcomes,
dependencies or mechanisms, e.g. "Unblocks #3, #7 • Enables payment feature".

### Step 4: SELF-EVALUATE
Re-read the reflections and excluded tasks. Correct mistakes and describe them in
corrections_made.

### Step 5: ASSESS CONFIDENCE
Rate your confidence (0-1): 0.9+ very confident, 0.7-0.9 minor ambiguities,
0.5-0.7 several judgment calls, below 0.5 needs review.

## OUTPUT FORMAT
{{
  "thoughts": {{
    "outcome_analysis": "...",
    "filtering_rationale": "...",
    "prioritization_strategy": "...",
    "self_check_notes": "..."
  }},
  "included_tasks": [{{"task_id": "...", "inclusion_reason": "...", "alignment_score": 8}}],
  "excluded_tasks": [{{"task_id": "...", "exclusion_reason": "...", "alignment_score": 3}}],
  "ordered_task_ids": ["..."],
  "per_task_scores": {{
    "task-1": {{
      "task_id": "task-1",
      "impact": 8,
      "effort": 12,
      "confidence": 0.85,
      "reasoning": "...",
      "brief_reasoning": "Unblocks #3 • Enables payment feature",
      "dependencies": ["task-3"]
    }}
  }},
  "confidence": 0.85,
  "critical_path_reasoning": "...",
  "corrections_made": "..."
}}"""

RETRY_HINT = (
    "Ensure every included task has brief_reasoning (<=20 words), outcome/dependency "
    'linked, no generic phrases like "important" or "critical".'
)


def summarize_chain_of_thought(steps: list[ChainOfThoughtStep]) -> str:
    """One line per iteration, including evaluator feedback when present."""
    lines = []
    for step in steps:
        line = (
            f"Iteration {step.iteration}: confidence {step.confidence:.2f}. "
            f"Corrections: {step.corrections or 'N/A'}."
        )
        if step.evaluator_feedback:
            line += f" Evaluator feedback: {step.evaluator_feedback}"
        lines.append(line)
    return "\n".join(lines)


class PrioritizationGenerator(PlanningAgent):
    """Filters and orders tasks against an outcome."""

    MODEL = "gpt-4o"
    AGENT_TYPE = "prioritization-generator"

    def build_instructions(
        self,
        context: PrioritizationContext,
        iteration: int = 1,
        max_iterations: int = 1,
        evaluation_feedback: str | None = None,
        chain_of_thought: list[ChainOfThoughtStep] | None = None,
    ) -> str:
        """Render the generator prompt for one iteration."""
        instructions = GENERATOR_PROMPT.format(
            outcome=context.outcome,
            reflections=context.reflections_text,
            task_count=len(context.tasks),
            tasks=context.tasks_text,
            previous_plan=context.previous_plan_text,
            dependency_constraints=context.dependency_text,
        )
        instructions += (
            f"\n\n## ITERATION CONTEXT\nYou are running iteration {iteration} of {max_iterations}."
        )
        if chain_of_thought:
            instructions += (
                f"\n\n## PRIOR ITERATION SUMMARY\n{summarize_chain_of_thought(chain_of_thought)}"
            )
        if evaluation_feedback:
            instructions += f"\n\n## EVALUATION FEEDBACK TO ADDRESS\n{evaluation_feedback}"
        return instructions

    def build_retry_instructions(self, instructions: str, attempt: int) -> str:
        """Append a retry hint for a repeated attempt."""
        return f"{instructions}\n\n## RETRY HINT {attempt}\n{RETRY_HINT}"

    async def generate(self, instructions: str) -> PrioritizationResult:
        """Run the generator once.

        Raises:
            GeneratorValidationError: If the response is not a valid result
            LLMError: If the LLM call fails
        """
        response = await self._request(
            user_prompt="Return the prioritization JSON for the tasks above.",
            system_prompt=instructions,
            temperature=0.2,
        )
        payload = normalize_per_task_scores(response)
        try:
            return parse_prioritization_result(payload)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise GeneratorValidationError(
                f"Generator returned invalid JSON: {e}", payload=payload
            ) from e


EVALUATOR_PROMPT = """You are a prioritization quality evaluator. Your ONLY job is to inspect a completed prioritization and decide if it meets quality criteria.

## EVALUATION CRITERIA (Score each 0-10)
1. Outcome Alignment (critical): included tasks advance the outcome, excluded tasks are genuinely low-impact.
2. Strategic Coherence (important): ordering respects dependencies and the critical path is credible.
3. Reflection Integration (important): reflections applied, negations like "ignore docs" enforced.
4. Continuity (nice to have): major movements from the previous plan explained.

## STATUS THRESHOLDS
- PASS: every criterion >= 7.
- NEEDS_IMPROVEMENT: at least one criterion < 7 but no critical criterion below 5.
- FAIL: outcome alignment or strategic coherence < 5, or reflections ignored.

## OUTPUT FORMAT
Return ONLY valid JSON:
{
  "status": "PASS | NEEDS_IMPROVEMENT | FAIL",
  "feedback": "Specific, actionable feedback (2-4 sentences, reference task ids).",
  "criteria_scores": {
    "outcome_alignment": {"score": 8, "notes": "..."},
    "strategic_coherence": {"score": 8, "notes": "..."},
    "reflection_integration": {"score": 8, "notes": "..."},
    "continuity": {"score": 8, "notes": "..."}
  }
}

If you flag NEEDS_IMPROVEMENT or FAIL, spell out the fix so the generator can iterate immediately."""


def _criterion(raw: Any) -> float:
    value = raw.get("score") if isinstance(raw, dict) else raw
    score = float(value)
    if not 0 <= score <= 10:
        raise ValueError(f"criteria score must be between 0 and 10, got {score}")
    return score


class PrioritizationEvaluator(PlanningAgent):
    """Judges a generator result against the outcome and reflections."""

    MODEL = "gpt-4o-mini"
    AGENT_TYPE = "prioritization-evaluator"
    SYSTEM_PROMPT = EVALUATOR_PROMPT

    def build_prompt(self, result: PrioritizationResult, context: PrioritizationContext) -> str:
        return "\n\n".join(
            [
                "Evaluate whether the prioritization below meets the outcome and reflections.",
                "## OUTCOME",
                context.outcome,
                "## REFLECTIONS",
                context.reflections_text,
                "## PREVIOUS PLAN",
                context.previous_plan_text,
                "## PRIORITIZATION RESULT (JSON)",
                json.dumps(result.to_dict(), indent=2),
            ]
        )

    async def evaluate(
        self, result: PrioritizationResult, context: PrioritizationContext
    ) -> EvaluationResult | None:
        """Evaluate a result.

        Returns:
            EvaluationResult, or None if the evaluator's JSON was unusable
        """
        response = await self._request(self.build_prompt(result, context), temperature=0.0)
        try:
            scores = response["criteria_scores"]
            return EvaluationResult(
                status=EvaluationStatus(str(response["status"]).strip().upper()),
                feedback=str(response.get("feedback") or ""),
                criteria_scores=CriteriaScores(
                    outcome_alignment=_criterion(scores["outcome_alignment"]),
                    strategic_coherence=_criterion(scores["strategic_coherence"]),
                    reflection_integration=_criterion(scores["reflection_integration"]),
                    continuity=_criterion(scores["continuity"]),
                ),
                evaluation_duration_ms=int(response.get("evaluation_duration_ms") or 0),
            )
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Evaluator {self.agent_id} returned invalid JSON: {e}")
            return None


PLACEMENT_OUTPUT = """

## MANUAL TASK PLACEMENT
A user added the task above by hand. Decide whether it belongs in the plan.

Return ONLY valid JSON:
{
  "decision": "include | exclude | conflict",
  "agent_rank": 3,
  "placement_reason": "Why and where it fits (include only)",
  "exclusion_reason": "Why it does not advance the outcome (exclude only)",
  "duplicate_task_id": "id of the existing task it duplicates (conflict only)",
  "similarity_score": 0.95,
  "existing_task_text": "text of the duplicated task (conflict only)"
}"""


class ManualPlacementAgent(PrioritizationGenerator):
    """Decides where a user-authored task belongs in the plan."""

    AGENT_TYPE = "manual-placement"

    async def place(self, task_id: str, task_text: str, outcome_text: str) -> dict[str, Any]:
        """Ask for an include/exclude/conflict decision on one manual task."""
        context = PrioritizationContext(
            outcome=outcome_text,
            tasks=[Task(id=task_id, text=task_text, is_manual=True)],
            reflections=["Manual task placement"],
        )
        instructions = self.build_instructions(context)
        return await self._request(
            user_prompt=json.dumps({"task_id": task_id, "task_text": task_text, "is_manual": True}),
            system_prompt=instructions + PLACEMENT_OUTPUT,
            temperature=0.0,
        )
