"""Tests for the generator/evaluator prioritization loop."""

from unittest.mock import AsyncMock, MagicMock

import pytest


def _evaluation(status="PASS", feedback="Looks good"):
    from note_synth.models.plan import CriteriaScores, EvaluationResult, EvaluationStatus

    return EvaluationResult(
        status=EvaluationStatus(status),
        feedback=feedback,
        criteria_scores=CriteriaScores(8, 8, 8, 8),
    )


def _context(sample_tasks):
    from note_synth.orchestrator.agents import PrioritizationContext

    return PrioritizationContext(outcome="Increase conversion", tasks=sample_tasks)


class TestNeedsEvaluation:
    """Tests for the evaluation trigger."""

    def _result(self, payload, **overrides):
        from note_synth.orchestrator.agents import parse_prioritization_result

        payload.update(overrides)
        return parse_prioritization_result(payload)

    def test_confident_draft_skips_evaluation(self, generator_payload):
        """Test that confidence of 0.85 or more is accepted."""
        from note_synth.orchestrator.loop import needs_evaluation

        assert not needs_evaluation(self._result(generator_payload, confidence=0.85))

    def test_low_confidence_triggers(self, generator_payload):
        """Test that confidence below 0.7 always triggers."""
        from note_synth.orchestrator.loop import needs_evaluation

        assert needs_evaluation(self._result(generator_payload, confidence=0.5))

    def test_small_plans_trigger(self, generator_payload):
        """Test that mid confidence with few included tasks triggers."""
        from note_synth.orchestrator.loop import needs_evaluation

        assert needs_evaluation(self._result(generator_payload, confidence=0.8))

    def test_major_movement(self, generator_payload):
        """Test that large reorderings against the previous plan count as major."""
        from note_synth.models.plan import PrioritizedPlan
        from note_synth.orchestrator.loop import has_major_movement

        def plan(order):
            return PrioritizedPlan(
                ordered_task_ids=order,
                execution_waves=[],
                dependencies=[],
                confidence_scores={},
                synthesis_summary="",
            )

        ids = [str(i) for i in range(10)]
        result = self._result(generator_payload, ordered_task_ids=ids)

        assert has_major_movement(result, plan(list(reversed(ids))))
        assert not has_major_movement(result, plan(ids))


class TestConvertResultToPlan:
    """Tests for convert_result_to_plan."""

    def test_plan_fields(self, generator_payload):
        """Test dependencies, annotations and removed tasks."""
        from note_synth.orchestrator.agents import parse_prioritization_result
        from note_synth.orchestrator.loop import convert_result_to_plan

        plan = convert_result_to_plan(parse_prioritization_result(generator_payload))

        assert plan.ordered_task_ids == ["002", "001"]
        assert [(d.source_task_id, d.target_task_id) for d in plan.dependencies] == [("001", "002")]
        assert plan.confidence_scores == {"002": 0.9, "001": 0.8}
        assert plan.removed_tasks == [
            {"task_id": "003", "removal_reason": "Blocked until checkout ships"}
        ]
        assert plan.synthesis_summary == "Unblock checkout first."


class TestHybridPrioritizationLoop:
    """Tests for HybridPrioritizationLoop."""

    def test_iterations_clamped(self, mock_llm_client):
        """Test that the iteration budget stays between one and three."""
        from note_synth.orchestrator.agents import PrioritizationGenerator
        from note_synth.orchestrator.loop import HybridPrioritizationLoop

        generator = PrioritizationGenerator(mock_llm_client)

        assert HybridPrioritizationLoop(generator, MagicMock(), max_iterations=10).max_iterations == 3
        assert HybridPrioritizationLoop(generator, MagicMock(), max_iterations=0).max_iterations == 1

    @pytest.mark.asyncio
    async def test_confident_draft_accepted(self, mock_llm_client, generator_payload, sample_tasks):
        """Test that a confident first draft is returned without evaluation."""
        from note_synth.orchestrator.agents import PrioritizationGenerator
        from note_synth.orchestrator.loop import HybridPrioritizationLoop

        mock_llm_client.complete_json.return_value = generator_payload
        evaluator = MagicMock()
        evaluator.evaluate = AsyncMock()
        updates = []

        loop = HybridPrioritizationLoop(PrioritizationGenerator(mock_llm_client), evaluator)
        outcome = await loop.run(_context(sample_tasks), on_progress=updates.append)

        assert outcome.plan.ordered_task_ids == ["002", "001"]
        assert outcome.metadata.iterations == 1
        assert outcome.metadata.converged
        assert not outcome.metadata.evaluation_triggered
        assert outcome.evaluation is None
        evaluator.evaluate.assert_not_awaited()
        assert [u.stage for u in updates] == ["started", "draft", "completed"]
        assert updates[-1].progress_pct == 1.0
        assert updates[1].scored_tasks == 3

    @pytest.mark.asyncio
    async def test_refines_until_pass(self, mock_llm_client, generator_payload, sample_tasks):
        """Test that evaluator feedback drives a second iteration."""
        from note_synth.orchestrator.agents import PrioritizationGenerator
        from note_synth.orchestrator.loop import HybridPrioritizationLoop

        generator_payload["confidence"] = 0.75
        mock_llm_client.complete_json.return_value = generator_payload
        evaluator = MagicMock()
        evaluator.evaluate = AsyncMock(
            side_effect=[_evaluation("NEEDS_IMPROVEMENT", "Explain excluding 003"), _evaluation()]
        )

        loop = HybridPrioritizationLoop(PrioritizationGenerator(mock_llm_client), evaluator)
        outcome = await loop.run(_context(sample_tasks))

        assert outcome.metadata.iterations == 2
        assert outcome.metadata.converged
        assert outcome.metadata.evaluation_triggered
        assert outcome.metadata.chain_of_thought[0].evaluator_feedback == "Explain excluding 003"
        assert outcome.evaluation.status.value == "PASS"
        second_prompt = mock_llm_client.complete_json.call_args.kwargs["system_prompt"]
        assert "EVALUATION FEEDBACK TO ADDRESS\nExplain excluding 003" in second_prompt

    @pytest.mark.asyncio
    async def test_stops_at_iteration_budget(self, mock_llm_client, generator_payload, sample_tasks):
        """Test that the loop ends unconverged after the last iteration."""
        from note_synth.orchestrator.agents import PrioritizationGenerator
        from note_synth.orchestrator.loop import HybridPrioritizationLoop

        generator_payload["confidence"] = 0.6
        mock_llm_client.complete_json.return_value = generator_payload
        evaluator = MagicMock()
        evaluator.evaluate = AsyncMock(return_value=_evaluation("FAIL", "Wrong order"))

        loop = HybridPrioritizationLoop(
            PrioritizationGenerator(mock_llm_client), evaluator, max_iterations=2
        )
        outcome = await loop.run(_context(sample_tasks))

        assert outcome.metadata.iterations == 2
        assert not outcome.metadata.converged
        assert evaluator.evaluate.await_count == 2

    @pytest.mark.asyncio
    async def test_unusable_evaluation_keeps_draft(self, mock_llm_client, generator_payload, sample_tasks):
        """Test that a None evaluation ends the loop with the current draft."""
        from note_synth.orchestrator.agents import PrioritizationGenerator
        from note_synth.orchestrator.loop import HybridPrioritizationLoop

        generator_payload["confidence"] = 0.6
        mock_llm_client.complete_json.return_value = generator_payload
        evaluator = MagicMock()
        evaluator.evaluate = AsyncMock(return_value=None)

        loop = HybridPrioritizationLoop(PrioritizationGenerator(mock_llm_client), evaluator)
        outcome = await loop.run(_context(sample_tasks))

        assert outcome.metadata.iterations == 1
        assert not outcome.metadata.converged
        assert outcome.evaluation is None

    @pytest.mark.asyncio
    async def test_brief_reasoning_fallback_after_retries(
        self, mock_llm_client, generator_payload, sample_tasks
    ):
        """Test that repeated blank brief reasoning is repaired with positions."""
        from note_synth.orchestrator.agents import PrioritizationGenerator
        from note_synth.orchestrator.loop import HybridPrioritizationLoop

        generator_payload["per_task_scores"]["002"]["brief_reasoning"] = "   "
        mock_llm_client.complete_json.return_value = generator_payload

        loop = HybridPrioritizationLoop(PrioritizationGenerator(mock_llm_client), MagicMock())
        outcome = await loop.run(_context(sample_tasks))

        assert mock_llm_client.complete_json.call_count == 3
        assert outcome.result.per_task_scores["002"].brief_reasoning == "Priority: 1"
        assert "RETRY HINT 3" in mock_llm_client.complete_json.call_args.kwargs["system_prompt"]

    @pytest.mark.asyncio
    async def test_generator_failure_propagates(self, mock_llm_client, sample_tasks):
        """Test that LLM errors surface after every attempt fails."""
        from note_synth.llm.client import LLMError
        from note_synth.orchestrator.agents import PrioritizationGenerator
        from note_synth.orchestrator.loop import HybridPrioritizationLoop

        mock_llm_client.complete_json.side_effect = LLMError("unavailable", status_code=503)

        loop = HybridPrioritizationLoop(PrioritizationGenerator(mock_llm_client), MagicMock())

        with pytest.raises(LLMError):
            await loop.run(_context(sample_tasks))
        assert mock_llm_client.complete_json.call_count == 3
