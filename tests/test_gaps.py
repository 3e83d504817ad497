"""Tests for gap detection between consecutive tasks."""

from datetime import datetime

import pytest


class TestWorkflowSignals:
    """Tests for stage and skill inference."""

    def test_infer_workflow_stage(self):
        """Test that the earliest matching stage wins."""
        from note_synth.intelligence.gaps import infer_workflow_stage

        assert infer_workflow_stage("Design pricing page wireframes") == "design"
        assert infer_workflow_stage("Implement Stripe checkout") == "build"
        assert infer_workflow_stage("Launch to production") == "launch"
        assert infer_workflow_stage("Call the accountant") is None

    def test_keywords_match_word_starts(self):
        """Test that short keywords do not match inside other words."""
        from note_synth.intelligence.gaps import extract_skill_tags, infer_workflow_stage

        # "ui" inside "build" must not count as design
        assert infer_workflow_stage("Build the billing service") == "build"
        assert "design" not in extract_skill_tags("Build the billing service")

    def test_extract_skill_tags(self):
        """Test skill extraction."""
        from note_synth.intelligence.gaps import extract_skill_tags

        assert extract_skill_tags("Create Figma prototype") == ["design"]
        assert set(extract_skill_tags("Deploy API to kubernetes")) == {"backend", "devops"}

    def test_gap_confidence(self):
        """Test confidence per indicator count."""
        from note_synth.intelligence.gaps import compute_gap_confidence

        assert compute_gap_confidence(1) == 0.0
        assert compute_gap_confidence(2) == 0.6
        assert compute_gap_confidence(3) == 0.75
        assert compute_gap_confidence(4) == 1.0

    def test_has_path(self):
        """Test directed reachability."""
        from note_synth.intelligence.gaps import has_path
        from note_synth.models.tasks import RelationshipType, TaskRelationship

        rels = [
            TaskRelationship("a", "b", RelationshipType.PREREQUISITE),
            TaskRelationship("b", "c", RelationshipType.BLOCKS),
        ]

        assert has_path("a", "c", rels)
        assert not has_path("c", "a", rels)


class TestDetectGaps:
    """Tests for detect_gaps."""

    def test_detects_gap_between_build_and_launch(self, sample_tasks):
        """Test that a time gap plus stage jump is reported."""
        from note_synth.intelligence.gaps import detect_gaps
        from note_synth.models.tasks import RelationshipType, TaskRelationship

        tasks = {t.id: t for t in sample_tasks}
        rels = [TaskRelationship("001", "002", RelationshipType.PREREQUISITE)]

        analysis = detect_gaps(["001", "002", "003"], tasks, rels)

        assert analysis.total_pairs_analyzed == 2
        assert analysis.gaps_detected == 1
        gap = analysis.gaps[0]
        assert (gap.predecessor_task_id, gap.successor_task_id) == ("002", "003")
        assert gap.indicators.time_gap
        assert gap.indicators.action_type_jump
        assert gap.indicators.no_dependency
        assert gap.confidence == 0.75

    def test_reverse_path_suppresses_gap(self, sample_tasks):
        """Test that a gap is skipped when the successor leads back to the predecessor."""
        from note_synth.intelligence.gaps import detect_gaps
        from note_synth.models.tasks import RelationshipType, TaskRelationship

        tasks = {t.id: t for t in sample_tasks}
        rels = [
            TaskRelationship("001", "002", RelationshipType.PREREQUISITE),
            TaskRelationship("003", "002", RelationshipType.RELATED),
        ]

        analysis = detect_gaps(["001", "002", "003"], tasks, rels)

        assert analysis.gaps == []

    def test_results_capped_and_sorted(self):
        """Test that at most three gaps are returned, most confident first."""
        from note_synth.intelligence.gaps import detect_gaps
        from note_synth.models.tasks import Task

        texts = [
            "Research competitor pricing",
            "Launch campaign",
            "Research onboarding interviews",
            "Deploy pipeline to kubernetes",
            "Design figma mockups",
            "Launch marketing push",
        ]
        tasks = {
            str(i): Task(id=str(i), text=text, created_at=datetime(2024, 1, 1 + i * 10 % 28))
            for i, text in enumerate(texts)
        }

        analysis = detect_gaps(list(tasks), tasks)

        assert len(analysis.gaps) <= 3
        confidences = [g.confidence for g in analysis.gaps]
        assert confidences == sorted(confidences, reverse=True)

    def test_requires_two_tasks(self, sample_tasks):
        """Test that a single task id is rejected."""
        from note_synth.intelligence.gaps import detect_gaps

        with pytest.raises(ValueError):
            detect_gaps(["001"], {t.id: t for t in sample_tasks})

    def test_missing_task_ids(self, sample_tasks):
        """Test that unknown ids raise MissingTaskError."""
        from note_synth.intelligence.gaps import MissingTaskError, detect_gaps

        with pytest.raises(MissingTaskError, match="404"):
            detect_gaps(["001", "404"], {t.id: t for t in sample_tasks})
