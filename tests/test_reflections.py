"""Tests for reflection effects, interpretation and re-ranking."""

from datetime import datetime, timedelta

import pytest

NOW = datetime(2024, 5, 10, 12, 0, 0)


def _reflection(reflection_id, text, days_old=1, is_active=True):
    from note_synth.models.tasks import Reflection

    return Reflection(
        id=reflection_id,
        text=text,
        created_at=NOW - timedelta(days=days_old),
        is_active=is_active,
    )


class TestDetectEffect:
    """Tests for keyword-based effect detection."""

    @pytest.mark.parametrize(
        "reflection,task,expected",
        [
            ("Legal is blocking outreach", "Email leads", "blocked"),
            ("Defer design work", "Design pricing page", "demoted"),
            ("Focus on payments", "Water plants", "boosted"),
            ("Stripe notes", "Implement Stripe checkout", "boosted"),
            ("Weather report", "Design pricing page", "unchanged"),
        ],
    )
    def test_detect_effect(self, reflection, task, expected):
        """Test keyword precedence and word overlap."""
        from note_synth.intelligence.reflections import detect_effect

        assert detect_effect(reflection, task).value == expected

    def test_block_beats_boost(self):
        """Test that block keywords win over boost keywords."""
        from note_synth.intelligence.reflections import detect_effect
        from note_synth.models.reflections import EffectType

        assert detect_effect("Focus elsewhere, checkout is blocked", "Checkout") == EffectType.BLOCKED

    def test_build_heuristic_effects(self, sample_tasks):
        """Test that inactive and blank reflections are skipped."""
        from note_synth.intelligence.reflections import build_heuristic_effects
        from note_synth.models.reflections import EffectType

        reflections = [
            _reflection("r1", "Legal is blocking outreach"),
            _reflection("r2", "Focus on payments", is_active=False),
            _reflection("r3", "   "),
        ]

        effects = build_heuristic_effects(reflections, sample_tasks[:2])

        assert [e.task_id for e in effects] == ["001", "002"]
        assert all(e.effect == EffectType.BLOCKED for e in effects)
        assert all(e.magnitude == -10 for e in effects)
        assert effects[0].reason == "Blocked by reflection context"


class TestEffectBookkeeping:
    """Tests for merge_effects and remove_effects."""

    def _effect(self, reflection_id, task_id, effect_type="boosted"):
        from note_synth.models.reflections import EffectType, ReflectionEffect

        return ReflectionEffect(reflection_id, task_id, EffectType(effect_type), 2, "reason")

    def test_merge_replaces_same_reflection(self):
        """Test that a reflection's newer effect replaces its older one."""
        from note_synth.intelligence.reflections import merge_effects

        existing = {"t1": [self._effect("r1", "t1"), self._effect("r2", "t1")]}

        merged = merge_effects(existing, [self._effect("r1", "t1", "demoted"), self._effect("r1", "t2")])

        assert [(e.reflection_id, e.effect.value) for e in merged["t1"]] == [
            ("r2", "boosted"),
            ("r1", "demoted"),
        ]
        assert len(merged["t2"]) == 1
        assert len(existing["t1"]) == 2

    def test_remove_effects(self):
        """Test that removing a reflection returns what was dropped."""
        from note_synth.intelligence.reflections import remove_effects

        existing = {
            "t1": [self._effect("r1", "t1"), self._effect("r2", "t1")],
            "t2": [self._effect("r1", "t2")],
        }

        remaining, removed = remove_effects(existing, "r1")

        assert [e.reflection_id for e in remaining["t1"]] == ["r2"]
        assert remaining["t2"] == []
        assert len(removed) == 2


class TestReflectionInterpreter:
    """Tests for ReflectionInterpreter."""

    @pytest.mark.asyncio
    async def test_without_client_uses_fallback(self):
        """Test the context-only fallback."""
        from note_synth.intelligence.reflections import ReflectionInterpreter
        from note_synth.models.reflections import IntentSubtype, IntentType

        intent = await ReflectionInterpreter().interpret("  Team offsite on Friday ")

        assert intent.type == IntentType.INFORMATION
        assert intent.subtype == IntentSubtype.CONTEXT_ONLY
        assert intent.summary == "Team offsite on Friday"

    @pytest.mark.asyncio
    async def test_parses_llm_intent(self, mock_llm_client):
        """Test that a valid classification is returned."""
        from note_synth.intelligence.reflections import ReflectionInterpreter
        from note_synth.models.reflections import IntentStrength, IntentSubtype, IntentType

        mock_llm_client.complete_json.return_value = {
            "type": "constraint",
            "subtype": "blocker",
            "keywords": ["outreach", " "],
            "strength": "hard",
            "duration_days": 14,
            "summary": "Outreach is blocked by legal",
        }

        intent = await ReflectionInterpreter(mock_llm_client).interpret("Legal blocked outreach")

        assert intent.type == IntentType.CONSTRAINT
        assert intent.subtype == IntentSubtype.BLOCKER
        assert intent.strength == IntentStrength.HARD
        assert intent.keywords == ["outreach"]
        assert intent.duration_days == 14

    @pytest.mark.asyncio
    async def test_retries_once(self, mock_llm_client):
        """Test that one failure is retried at a higher temperature."""
        from note_synth.intelligence.reflections import ReflectionInterpreter
        from note_synth.models.reflections import IntentType

        mock_llm_client.complete_json.side_effect = [
            RuntimeError("timeout"),
            {"type": "opportunity", "subtype": "boost", "summary": "Analytics focus"},
        ]

        intent = await ReflectionInterpreter(mock_llm_client, retry_delay_seconds=0).interpret(
            "Priority is analytics"
        )

        assert intent.type == IntentType.OPPORTUNITY
        assert mock_llm_client.complete_json.call_args.kwargs["temperature"] == 0.2

    @pytest.mark.asyncio
    async def test_falls_back_after_two_failures(self, mock_llm_client):
        """Test the fallback after the retry also fails."""
        from note_synth.intelligence.reflections import ReflectionInterpreter
        from note_synth.models.reflections import IntentType

        mock_llm_client.complete_json.side_effect = RuntimeError("down")

        intent = await ReflectionInterpreter(mock_llm_client, retry_delay_seconds=0).interpret(
            "Low energy today"
        )

        assert intent.type == IntentType.INFORMATION
        assert mock_llm_client.complete_json.call_count == 2

    @pytest.mark.asyncio
    async def test_invalid_category_falls_back(self, mock_llm_client):
        """Test that an unknown category is not trusted."""
        from note_synth.intelligence.reflections import ReflectionInterpreter
        from note_synth.models.reflections import IntentSubtype

        mock_llm_client.complete_json.return_value = {"type": "vibes", "subtype": "boost"}

        intent = await ReflectionInterpreter(mock_llm_client).interpret("Feeling good")

        assert intent.subtype == IntentSubtype.CONTEXT_ONLY
        assert intent.summary == "Feeling good"


class TestRankWithReflections:
    """Tests for reflection re-ranking."""

    @pytest.mark.parametrize("days_old,weight", [(3, 1.0), (7, 1.0), (10, 0.5), (30, 0.25)])
    def test_recency_weight(self, days_old, weight):
        """Test recency buckets."""
        from note_synth.intelligence.reflections import recency_weight

        assert recency_weight(NOW - timedelta(days=days_old), NOW) == weight

    def test_matching_task_moves_up(self):
        """Test that a task similar to a recent reflection is boosted."""
        from note_synth.intelligence.reflections import rank_with_reflections

        adjusted = rank_with_reflections(
            ["t1", "t2"],
            {"t1": 0.5, "t2": 0.5},
            {"t1": "zzz", "t2": "payments"},
            [_reflection("r1", "Payments")],
            now=NOW,
        )

        assert adjusted.ordered_task_ids == ["t2", "t1"]
        assert adjusted.confidence_scores == {"t1": 0.41, "t2": 0.59}
        moved = {m.task_id: m for m in adjusted.moved}
        assert (moved["t2"].from_position, moved["t2"].to_position) == (2, 1)
        assert moved["t2"].reason == "Matches 'Payments' context"
        assert moved["t1"].reason == "Contradicts 'Payments' context"

    def test_inactive_reflections_ignored(self):
        """Test that inactive reflections leave the plan unchanged."""
        from note_synth.intelligence.reflections import rank_with_reflections

        adjusted = rank_with_reflections(
            ["t1", "t2"],
            {"t1": 0.8},
            {"t1": "zzz", "t2": "payments"},
            [_reflection("r1", "Payments", is_active=False)],
            now=NOW,
        )

        assert adjusted.ordered_task_ids == ["t1", "t2"]
        assert adjusted.moved == []
        assert adjusted.confidence_scores == {"t1": 0.8, "t2": 0.5}

    def test_empty_plan_rejected(self):
        """Test that an empty baseline raises ValueError."""
        from note_synth.intelligence.reflections import rank_with_reflections

        with pytest.raises(ValueError):
            rank_with_reflections(["", ""], {}, {}, [], now=NOW)
