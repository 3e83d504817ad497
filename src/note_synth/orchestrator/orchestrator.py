"""Agent orchestrator for running an evaluator panel in parallel."""

import asyncio
import logging
from dataclasses import dataclass

from note_synth.models.plan import (
    CriteriaScores,
    EvaluationResult,
    EvaluationStatus,
    PrioritizationResult,
)
from note_synth.orchestrator.agents import PrioritizationContext, PrioritizationEvaluator

logger = logging.getLogger(__name__)

STATUS_SEVERITY = {
    EvaluationStatus.PASS: 0,
    EvaluationStatus.NEEDS_IMPROVEMENT: 1,
    EvaluationStatus.FAIL: 2,
}


class InsufficientAgentsError(Exception):
    """Raised when too few agents succeed to produce a valid evaluation."""

    pass


@dataclass
class OrchestratorConfig:
    """Configuration for the orchestrator."""

    timeout_seconds: float = 30
    min_agents_required: int = 1
    retry_on_failure: bool = True
    max_retries: int = 1


def merge_evaluations(evaluations: list[EvaluationResult]) -> EvaluationResult:
    """Combine panel verdicts conservatively.

    The worst status wins, each criterion keeps its lowest score, and the
    feedback of every non-passing evaluator is kept.
    """
    if len(evaluations) == 1:
        return evaluations[0]

    status = max((e.status for e in evaluations), key=STATUS_SEVERITY.__getitem__)
    feedback = [e.feedback for e in evaluations if e.status is not EvaluationStatus.PASS and e.feedback]
    if not feedback:
        feedback = [e.feedback for e in evaluations if e.feedback][:1]

    return EvaluationResult(
        status=status,
        feedback="\n".join(feedback),
        criteria_scores=CriteriaScores(
            outcome_alignment=min(e.criteria_scores.outcome_alignment for e in evaluations),
            strategic_coherence=min(e.criteria_scores.strategic_coherence for e in evaluations),
            reflection_integration=min(
                e.criteria_scores.reflection_integration for e in evaluations
            ),
            continuity=min(e.criteria_scores.continuity for e in evaluations),
        ),
        evaluation_duration_ms=max(e.evaluation_duration_ms for e in evaluations),
    )


class AgentOrchestrator:
    """Coordinates several evaluators on the same prioritization result.

    Exposes the same ``evaluate`` coroutine as a single evaluator, so the
    prioritization loop can use either.
    """

    def __init__(
        self,
        agents: list[PrioritizationEvaluator],
        timeout_seconds: float = 30,
        min_agents_required: int = 1,
        config: OrchestratorConfig | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            agents: Evaluators to coordinate
            timeout_seconds: Maximum time to wait for each agent
            min_agents_required: Minimum successful agents for a valid verdict
            config: Optional full configuration (overrides other params)
        """
        self.agents = agents
        self.config = config or OrchestratorConfig(
            timeout_seconds=timeout_seconds,
            min_agents_required=min_agents_required,
        )

    async def _run_agent_with_timeout(
        self,
        agent: PrioritizationEvaluator,
        result: PrioritizationResult,
        context: PrioritizationContext,
    ) -> EvaluationResult | None:
        return await asyncio.wait_for(
            agent.evaluate(result, context),
            timeout=self.config.timeout_seconds,
        )

    async def _run_round(
        self,
        agents: list[PrioritizationEvaluator],
        result: PrioritizationResult,
        context: PrioritizationContext,
    ) -> tuple[list[EvaluationResult], dict[str, str]]:
        """Run agents concurrently once.

        Returns:
            Usable verdicts, and a failure label for each agent that gave none
        """
        outcomes = await asyncio.gather(
            *(self._run_agent_with_timeout(agent, result, context) for agent in agents),
            return_exceptions=True,
        )

        evaluations: list[EvaluationResult] = []
        failures: dict[str, str] = {}
        for agent, outcome in zip(agents, outcomes):
            if isinstance(outcome, EvaluationResult):
                evaluations.append(outcome)
                logger.info(f"Evaluator {agent.agent_id} returned {outcome.status.value}")
            elif isinstance(outcome, asyncio.TimeoutError):
                failures[agent.agent_id] = "timeout"
                logger.warning(f"Evaluator {agent.agent_id} timed out")
            elif isinstance(outcome, Exception):
                failures[agent.agent_id] = type(outcome).__name__
                logger.error(f"Evaluator {agent.agent_id} failed: {outcome}")
            else:
                failures[agent.agent_id] = "invalid response"
                logger.warning(f"Evaluator {agent.agent_id} returned no usable evaluation")
        return evaluations, failures

    async def collect_with_retry(
        self, result: PrioritizationResult, context: PrioritizationContext
    ) -> list[EvaluationResult]:
        """Run the panel, re-running evaluators that failed.

        Raises:
            InsufficientAgentsError: If too few evaluators succeed after retries
        """
        evaluations: list[EvaluationResult] = []
        failures: dict[str, str] = {}
        remaining = list(self.agents)
        rounds = self.config.max_retries + 1 if self.config.retry_on_failure else 1

        for attempt in range(rounds):
            if not remaining:
                break
            if attempt > 0:
                logger.info(f"Retry attempt {attempt} with {len(remaining)} evaluators")

            succeeded, failures = await self._run_round(remaining, result, context)
            evaluations.extend(succeeded)
            remaining = [agent for agent in remaining if agent.agent_id in failures]

        if len(evaluations) < self.config.min_agents_required:
            failed = ", ".join(f"{agent_id} ({reason})" for agent_id, reason in failures.items())
            raise InsufficientAgentsError(
                f"Only {len(evaluations)} evaluators succeeded, "
                f"minimum {self.config.min_agents_required} required. Failed: {failed}"
            )
        logger.info(f"Panel complete: {len(evaluations)} of {len(self.agents)} evaluators succeeded")
        return evaluations

    async def evaluate(
        self, result: PrioritizationResult, context: PrioritizationContext
    ) -> EvaluationResult | None:
        """Merged panel verdict, or None when no evaluator produced one."""
        try:
            evaluations = await self.collect_with_retry(result, context)
        except InsufficientAgentsError as e:
            logger.warning(f"Evaluator panel failed: {e}")
            return None
        if not evaluations:
            return None
        return merge_evaluations(evaluations)
