"""Tests for the in-memory task store."""

from datetime import datetime

import pytest


class TestTaskStore:
    """Tests for TaskStore."""

    def test_get_missing_task(self):
        """Test that unknown task ids raise NotFoundError."""
        from note_synth.store import NotFoundError, TaskStore

        with pytest.raises(NotFoundError, match="Task not found: 404"):
            TaskStore().get_task("404")

    def test_list_tasks_in_requested_order(self, sample_tasks):
        """Test ordering by explicit ids."""
        from note_synth.store import TaskStore

        store = TaskStore()
        for task in sample_tasks:
            store.add_task(task)

        assert [t.id for t in store.list_tasks()] == ["001", "002", "003"]
        assert [t.id for t in store.list_tasks(["003", "001"])] == ["003", "001"]

    def test_relationships_for(self):
        """Test that only relationships inside the id set are returned."""
        from note_synth.models.tasks import RelationshipType, TaskRelationship
        from note_synth.store import TaskStore

        store = TaskStore()
        store.add_relationship(TaskRelationship("a", "b", RelationshipType.PREREQUISITE))
        store.add_relationship(TaskRelationship("b", "c", RelationshipType.BLOCKS))

        assert len(store.relationships_for(["a", "b"])) == 1

    def test_single_active_outcome(self):
        """Test that adding an active outcome deactivates the previous one."""
        from note_synth.models.tasks import Outcome
        from note_synth.store import TaskStore

        store = TaskStore()
        first = store.add_outcome(Outcome(id="o1", text="Grow revenue"))
        store.add_outcome(Outcome(id="o2", text="Hire a designer"))

        assert not first.is_active
        assert store.active_outcome().id == "o2"

    def test_reflection_toggle(self):
        """Test activating and deactivating reflections."""
        from note_synth.models.tasks import Reflection
        from note_synth.store import NotFoundError, TaskStore

        store = TaskStore()
        store.add_reflection(Reflection(id="r1", text="Focus", created_at=datetime.now()))

        store.set_reflection_active("r1", False)

        assert store.active_reflections() == []
        with pytest.raises(NotFoundError):
            store.set_reflection_active("r2", True)

    def test_deleted_manual_tasks_hidden(self):
        """Test that soft-deleted manual tasks are not returned."""
        from note_synth.models.manual import ManualTask
        from note_synth.store import TaskStore

        store = TaskStore()
        store.add_manual_task(ManualTask(task_id="m1", text="A", outcome_id="o1"))
        store.add_manual_task(
            ManualTask(task_id="m2", text="B", outcome_id="o1", deleted_at=datetime.now())
        )

        assert store.get_manual_task("m2") is None
        assert [t.task_id for t in store.manual_tasks_for_outcome("o1")] == ["m1"]

    @pytest.mark.asyncio
    async def test_save_score(self):
        """Test storing scores through the async callback."""
        from note_synth.intelligence.strategic import build_placeholder_score
        from note_synth.store import TaskStore

        store = TaskStore()
        await store.save_score(build_placeholder_score("t1"))

        assert store.scores["t1"].is_placeholder


class TestTaskFile:
    """Tests for loading task files."""

    def test_from_file(self, task_file):
        """Test that the sample file populates every collection."""
        from note_synth.models.tasks import RelationshipType
        from note_synth.store import TaskStore

        store = TaskStore.from_file(task_file)

        assert store.active_outcome().text == "Increase trial-to-paid conversion by 20%"
        assert store.active_outcome().id == "outcome"
        assert list(store.tasks) == ["001", "002", "003"]
        assert store.get_task("001").created_at == datetime(2024, 5, 1)
        assert [(p.id, p.estimated_hours, p.depends_on) for p in store.plan] == [
            ("001", 8.0, []),
            ("002", 16.0, ["001"]),
            ("003", 4.0, ["002"]),
        ]
        assert store.relationships[0].relationship_type == RelationshipType.PREREQUISITE
        assert store.reflections["r1"].created_at == datetime(2024, 5, 3)

    def test_load_defaults(self):
        """Test defaults for hours, outcome mapping and reflection time."""
        from note_synth.store import TaskStore

        store = TaskStore()
        store.load(
            {
                "outcome": {"id": "o9", "text": "Grow revenue", "daily_capacity_hours": 6},
                "tasks": [{"id": 7, "text": "Call customers"}],
                "reflections": [{"id": "r1", "text": "Busy week"}],
            }
        )

        assert store.get_outcome("o9").daily_capacity_hours == 6
        assert store.plan[0].id == "7"
        assert store.plan[0].estimated_hours == 8.0
        assert isinstance(store.reflections["r1"].created_at, datetime)

    @pytest.mark.parametrize(
        "data",
        [
            {"tasks": [{"text": "No id"}]},
            {"tasks": [{"id": "1", "text": "  "}]},
            {"relationships": [{"source": "a"}]},
            {"relationships": [{"source": "a", "target": "b", "type": "sometimes"}]},
            {"reflections": [{"text": "No id"}]},
        ],
    )
    def test_invalid_entries(self, data):
        """Test that malformed entries raise ValueError."""
        from note_synth.store import TaskStore

        with pytest.raises(ValueError):
            TaskStore().load(data)

    def test_non_mapping_file(self, tmp_path):
        """Test that a list at the top level is rejected."""
        from note_synth.store import TaskStore

        path = tmp_path / "tasks.yaml"
        path.write_text("- just\n- a list\n", encoding="utf-8")

        with pytest.raises(ValueError, match="expected a mapping"):
            TaskStore.from_file(path)
