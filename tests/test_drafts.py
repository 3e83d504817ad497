"""Tests for draft task generation."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest


def _raw_draft(text: str, hours: float = 2.0) -> dict:
    return {
        "task_text": text,
        "estimated_hours": hours,
        "cognition_level": "medium",
        "reasoning": "Covers a concept the plan is missing entirely",
        "confidence_score": 0.8,
    }


def _draft(task_id: str, embedding, source=None):
    from note_synth.intelligence.drafts import deduplication_hash
    from note_synth.models.intelligence import CognitionLevel, DraftSource, DraftTask

    source = source or DraftSource.SEMANTIC_GAP
    text = f"Draft task number {task_id}"
    return DraftTask(
        id=task_id,
        task_text=text,
        estimated_hours=8 if source is DraftSource.DEPENDENCY_GAP else 2,
        cognition_level=CognitionLevel.LOW,
        reasoning="",
        gap_area="area",
        confidence_score=0.7,
        source=source,
        deduplication_hash=deduplication_hash(text),
        embedding=embedding,
    )


class TestDraftGenerator:
    """Tests for DraftGenerator."""

    @pytest.mark.asyncio
    async def test_generates_drafts_per_area(self, mock_llm_client):
        """Test that drafts are parsed, embedded and tagged with their area."""
        from note_synth.intelligence.drafts import DraftGenerator
        from note_synth.models.intelligence import DraftSource

        mock_llm_client.complete_json.return_value = {
            "draft_tasks": [
                _raw_draft("Set up conversion funnel dashboard"),
                _raw_draft("Add pricing experiment tracking"),
            ]
        }
        generator = DraftGenerator(mock_llm_client)

        result = await generator.generate("Grow revenue", ["analytics"], ["Launch pricing page"])

        assert [d.task_text for d in result.drafts] == [
            "Set up conversion funnel dashboard",
            "Add pricing experiment tracking",
        ]
        assert all(d.gap_area == "analytics" for d in result.drafts)
        assert all(d.source == DraftSource.SEMANTIC_GAP for d in result.drafts)
        assert result.drafts[0].embedding == [1.0, 0.0, 0.0]
        assert result.failed_areas == []

    @pytest.mark.asyncio
    async def test_drops_existing_and_malformed_drafts(self, mock_llm_client):
        """Test that duplicates of existing tasks and invalid entries are skipped."""
        from note_synth.intelligence.drafts import DraftGenerator

        mock_llm_client.complete_json.return_value = {
            "draft_tasks": [
                _raw_draft("Launch pricing page"),
                _raw_draft("Run a twelve hour workshop", hours=12),
                {"task_text": "Missing every other field"},
                _raw_draft("Interview five churned customers"),
            ]
        }
        generator = DraftGenerator(mock_llm_client)

        result = await generator.generate(
            "Grow revenue", ["research"], ["  launch PRICING page "]
        )

        assert [d.task_text for d in result.drafts] == ["Interview five churned customers"]

    @pytest.mark.asyncio
    async def test_invalid_input(self, mock_llm_client):
        """Test that empty outcome or areas raise a validation error."""
        from note_synth.intelligence.drafts import (
            DraftErrorCode,
            DraftGenerationError,
            DraftGenerator,
        )

        generator = DraftGenerator(mock_llm_client)

        with pytest.raises(DraftGenerationError) as exc_info:
            await generator.generate("  ", ["analytics"], [])
        assert exc_info.value.code == DraftErrorCode.VALIDATION_ERROR

        with pytest.raises(DraftGenerationError):
            await generator.generate("Grow revenue", [], [])

    @pytest.mark.asyncio
    async def test_partial_failure_keeps_other_areas(self, mock_llm_client):
        """Test that one failing area does not stop the others."""
        from note_synth.intelligence.drafts import DraftGenerator

        mock_llm_client.complete_json.side_effect = [
            RuntimeError("boom"),
            {"draft_tasks": [_raw_draft("Interview five churned customers")]},
        ]
        generator = DraftGenerator(mock_llm_client)

        result = await generator.generate("Grow revenue", ["pricing", "research"], [])

        assert result.failed_areas == ["pricing"]
        assert len(result.drafts) == 1

    @pytest.mark.asyncio
    async def test_all_areas_timing_out(self, mock_llm_client):
        """Test that timeouts in every area raise a TIMEOUT error."""
        from note_synth.intelligence.drafts import (
            DraftErrorCode,
            DraftGenerationError,
            DraftGenerator,
        )

        async def slow(**_kwargs):
            await asyncio.sleep(1)
            return {}

        mock_llm_client.complete_json = slow
        generator = DraftGenerator(mock_llm_client, timeout_seconds=0.01)

        with pytest.raises(DraftGenerationError) as exc_info:
            await generator.generate("Grow revenue", ["pricing"], [])

        assert exc_info.value.code == DraftErrorCode.TIMEOUT
        assert exc_info.value.metadata == {"timeout_seconds": 0.01}

    @pytest.mark.asyncio
    async def test_bridging_drafts_are_dependency_gaps(self, mock_llm_client, sample_tasks):
        """Test that bridging drafts carry the dependency-gap source."""
        from note_synth.intelligence.drafts import DraftGenerator
        from note_synth.models.intelligence import DraftSource

        mock_llm_client.complete_json.return_value = {
            "draft_tasks": [_raw_draft("QA the checkout flow end to end", hours=16)]
        }
        generator = DraftGenerator(mock_llm_client)

        drafts = await generator.generate_bridging("Grow revenue", sample_tasks[1], sample_tasks[2])

        assert drafts[0].source == DraftSource.DEPENDENCY_GAP
        assert drafts[0].gap_area == "dependency_gaps"
        prompt = mock_llm_client.complete_json.call_args.kwargs["user_prompt"]
        assert "BEFORE: Implement Stripe checkout integration" in prompt


class TestDeduplicateDrafts:
    """Tests for deduplicate_drafts."""

    def test_suppresses_similar_dependency_drafts(self):
        """Test that dependency drafts close to a semantic draft are dropped."""
        from note_synth.intelligence.drafts import deduplicate_drafts
        from note_synth.models.intelligence import DraftSource

        semantic = [_draft("s1", [1.0, 0.0])]
        dependency = [
            _draft("d1", [0.99, 0.01], DraftSource.DEPENDENCY_GAP),
            _draft("d2", [0.0, 1.0], DraftSource.DEPENDENCY_GAP),
            _draft("d3", None, DraftSource.DEPENDENCY_GAP),
        ]

        merged, stats = deduplicate_drafts(semantic, dependency)

        assert [d.id for d in merged] == ["s1", "d2", "d3"]
        assert stats.dependency_total == 3
        assert stats.dependency_suppressed == 1
        assert stats.final_count == 3

    def test_dependency_pass_trigger(self):
        """Test the dependency-pass trigger conditions."""
        from note_synth.intelligence.drafts import should_run_dependency_pass

        assert should_run_dependency_pass(79, 2)
        assert not should_run_dependency_pass(80, 5)
        assert not should_run_dependency_pass(10, 1)


class TestDraftPipeline:
    """Tests for DraftPipeline."""

    @pytest.mark.asyncio
    async def test_runs_dependency_pass_on_low_coverage(self, sample_tasks):
        """Test that low coverage triggers gap-based bridging drafts."""
        from note_synth.intelligence.drafts import DraftGenerationResult, DraftPipeline
        from note_synth.models.intelligence import CoverageAnalysis, DraftSource

        coverage = CoverageAnalysis(40, ["analytics"], [1.0, 0.0], [0.0, 1.0], 3)
        analyzer = MagicMock()
        analyzer.analyze = AsyncMock(
            side_effect=[coverage, CoverageAnalysis(55, [], [1.0, 0.0], [0.5, 0.5], 4)]
        )
        generator = MagicMock()
        generator.generate = AsyncMock(
            return_value=DraftGenerationResult(drafts=[_draft("s1", [1.0, 0.0])], generation_duration_ms=5)
        )
        generator.generate_bridging = AsyncMock(
            return_value=[_draft("d1", [0.0, 1.0], DraftSource.DEPENDENCY_GAP)]
        )

        plan = await DraftPipeline(analyzer, generator).run("Grow revenue", sample_tasks)

        assert plan.dependency_pass_triggered
        assert [d.id for d in plan.drafts] == ["s1", "d1"]
        predecessor, successor = generator.generate_bridging.call_args.args[1:3]
        assert (predecessor.id, successor.id) == ("002", "003")

    @pytest.mark.asyncio
    async def test_skips_dependency_pass_when_covered(self, sample_tasks):
        """Test that high hypothetical coverage skips bridging drafts."""
        from note_synth.intelligence.drafts import DraftPipeline
        from note_synth.models.intelligence import CoverageAnalysis

        analyzer = MagicMock()
        analyzer.analyze = AsyncMock(
            side_effect=[
                CoverageAnalysis(90, [], [1.0], [1.0], 3),
                CoverageAnalysis(90, [], [1.0], [1.0], 3),
            ]
        )
        generator = MagicMock()
        generator.generate = AsyncMock()
        generator.generate_bridging = AsyncMock()

        plan = await DraftPipeline(analyzer, generator).run("Grow revenue", sample_tasks)

        assert not plan.dependency_pass_triggered
        assert plan.drafts == []
        generator.generate.assert_not_called()
        generator.generate_bridging.assert_not_called()

    @pytest.mark.asyncio
    async def test_duplicate_threshold_applies_to_dependency_drafts(self, sample_tasks):
        """Test that a lower duplicate threshold suppresses more bridging drafts."""
        from note_synth.intelligence.drafts import DraftGenerationResult, DraftPipeline
        from note_synth.models.intelligence import CoverageAnalysis, DraftSource

        def build_pipeline(**kwargs):
            analyzer = MagicMock()
            analyzer.analyze = AsyncMock(
                side_effect=[
                    CoverageAnalysis(40, ["analytics"], [1.0, 0.0], [0.0, 1.0], 3),
                    CoverageAnalysis(55, [], [1.0, 0.0], [0.5, 0.5], 4),
                ]
            )
            generator = MagicMock()
            generator.generate = AsyncMock(
                return_value=DraftGenerationResult(drafts=[_draft("s1", [1.0, 0.0])], generation_duration_ms=5)
            )
            # Cosine similarity 0.8 to the semantic draft
            generator.generate_bridging = AsyncMock(
                return_value=[_draft("d1", [0.8, 0.6], DraftSource.DEPENDENCY_GAP)]
            )
            return DraftPipeline(analyzer, generator, **kwargs)

        default = await build_pipeline().run("Grow revenue", sample_tasks)
        strict = await build_pipeline(duplicate_threshold=0.7).run("Grow revenue", sample_tasks)

        assert [d.id for d in default.drafts] == ["s1", "d1"]
        assert [d.id for d in strict.drafts] == ["s1"]
        assert strict.stats.dependency_suppressed == 1
