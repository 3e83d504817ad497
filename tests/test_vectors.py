"""Tests for vector math, clustering and coverage analysis."""

import math

import pytest


class TestVectors:
    """Tests for vector helpers."""

    def test_cosine_similarity(self):
        """Test similarity of parallel, orthogonal and opposite vectors."""
        from note_synth.intelligence.vectors import cosine_similarity

        assert cosine_similarity([1, 0], [2, 0]) == pytest.approx(1.0)
        assert cosine_similarity([1, 0], [0, 1]) == pytest.approx(0.0)
        assert cosine_similarity([1, 0], [-1, 0]) == pytest.approx(-1.0)

    def test_cosine_similarity_degenerate_inputs(self):
        """Test that mismatched or zero vectors give 0.0."""
        from note_synth.intelligence.vectors import cosine_similarity

        assert cosine_similarity([1, 0], [1, 0, 0]) == 0.0
        assert cosine_similarity([0, 0], [1, 0]) == 0.0
        assert cosine_similarity([], []) == 0.0

    def test_strict_dimension_mismatch(self):
        """Test that strict mode raises on mismatched dimensions."""
        from note_synth.intelligence.vectors import cosine_similarity

        with pytest.raises(ValueError):
            cosine_similarity([1, 0], [1, 0, 0], strict=True)

    def test_cosine_distance_skips_non_finite(self):
        """Test that NaN components are ignored."""
        from note_synth.intelligence.vectors import cosine_distance

        assert cosine_distance([1, math.nan, 0], [1, 5, 0]) == pytest.approx(0.0)
        assert cosine_distance([0, 0], [1, 1]) == 1.0

    def test_centroid(self):
        """Test centroid of vectors and of an empty set."""
        from note_synth.intelligence.vectors import centroid

        assert centroid([[1, 0], [0, 1]]) == [0.5, 0.5]
        assert centroid([], dimension=3) == [0.0, 0.0, 0.0]

    def test_find_similar_sorted(self):
        """Test that matches above threshold are sorted by similarity."""
        from note_synth.intelligence.vectors import find_similar

        matches = find_similar(
            [1, 0],
            {"same": [1, 0], "close": [1, 0.2], "far": [0, 1]},
            threshold=0.9,
        )

        assert [task_id for task_id, _ in matches] == ["same", "close"]


class TestClustering:
    """Tests for cluster_tasks."""

    def test_groups_similar_tasks(self):
        """Test that near-identical embeddings cluster together."""
        from note_synth.intelligence.clustering import cluster_tasks

        result = cluster_tasks(
            {
                "a": [1.0, 0.0, 0.0],
                "b": [0.99, 0.05, 0.0],
                "c": [0.0, 0.0, 1.0],
            },
            threshold=0.9,
        )

        assert len(result.clusters) == 1
        assert sorted(result.clusters[0].task_ids) == ["a", "b"]
        assert result.ungrouped_task_ids == ["c"]
        assert result.clusters[0].average_similarity >= 0.9

    def test_single_task(self):
        """Test that a single task forms its own cluster."""
        from note_synth.intelligence.clustering import cluster_tasks

        result = cluster_tasks({"a": [1.0, 0.0]})

        assert result.clusters[0].task_ids == ["a"]
        assert result.clusters[0].average_similarity == 1.0

    def test_empty(self):
        """Test clustering nothing."""
        from note_synth.intelligence.clustering import cluster_tasks

        result = cluster_tasks({}, threshold=0.8)

        assert result.clusters == []
        assert result.threshold_used == 0.8

    def test_unrelated_tasks_stay_ungrouped(self):
        """Test that orthogonal embeddings produce no cluster."""
        from note_synth.intelligence.clustering import cluster_tasks

        result = cluster_tasks({"a": [1.0, 0.0], "b": [0.0, 1.0]}, threshold=0.75)

        assert result.clusters == []
        assert result.ungrouped_task_ids == ["a", "b"]


class TestCoverageAnalyzer:
    """Tests for CoverageAnalyzer."""

    @pytest.mark.asyncio
    async def test_full_coverage_skips_missing_areas(self, mock_llm_client):
        """Test that aligned tasks give 100% coverage without an LLM call."""
        from note_synth.intelligence.coverage import CoverageAnalyzer

        analyzer = CoverageAnalyzer(mock_llm_client, dimension=3)

        analysis = await analyzer.analyze(
            "Grow revenue", ["Launch pricing page"], [[1.0, 0.0, 0.0]]
        )

        assert analysis.coverage_percentage == 100
        assert analysis.missing_areas == []
        assert not analysis.should_generate_drafts
        mock_llm_client.complete_json.assert_not_called()

    @pytest.mark.asyncio
    async def test_low_coverage_extracts_missing_areas(self, mock_llm_client):
        """Test that low coverage asks the LLM for missing areas."""
        from note_synth.intelligence.coverage import CoverageAnalyzer

        mock_llm_client.complete_json.return_value = {
            "missing_areas": ["pricing", " onboarding ", "", "a", "b", "c", "d"]
        }
        analyzer = CoverageAnalyzer(mock_llm_client, dimension=3)

        analysis = await analyzer.analyze(
            "Grow revenue", ["Clean up the office"], [[0.0, 1.0, 0.0]]
        )

        assert analysis.coverage_percentage == 0
        assert analysis.missing_areas == ["pricing", "onboarding", "a", "b", "c"]
        assert analysis.should_generate_drafts

    @pytest.mark.asyncio
    async def test_missing_area_failure_returns_empty(self, mock_llm_client):
        """Test that an LLM failure yields no missing areas."""
        from note_synth.intelligence.coverage import CoverageAnalyzer

        mock_llm_client.complete_json.side_effect = RuntimeError("down")
        analyzer = CoverageAnalyzer(mock_llm_client, dimension=3)

        analysis = await analyzer.analyze("Grow revenue", ["Tidy desk"], [[0.0, 1.0, 0.0]])

        assert analysis.missing_areas == []

    @pytest.mark.asyncio
    async def test_no_tasks_uses_zero_centroid(self, mock_llm_client):
        """Test that an empty task set has zero coverage."""
        from note_synth.intelligence.coverage import CoverageAnalyzer

        analyzer = CoverageAnalyzer(mock_llm_client, dimension=3)

        analysis = await analyzer.analyze("Grow revenue", [], [], extract_missing=False)

        assert analysis.coverage_percentage == 0
        assert analysis.task_cluster_centroid == [0.0, 0.0, 0.0]
        assert analysis.task_count == 0
