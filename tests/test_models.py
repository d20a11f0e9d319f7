"""Tests for spellwright.models."""

from typing import get_args

import pytest
from pydantic import ValidationError

from spellwright.models import (
    ARCHETYPE_LABELS,
    DEFAULT_MOOD,
    MOODS,
    ClueResult,
    GenerationOptions,
    ModelChainConfig,
    NPCArchetype,
    NPCIdentity,
    PromptContext,
    StaticClueEntry,
    archetype_label,
)


class TestNPCIdentity:
    def test_defaults(self) -> None:
        npc = NPCIdentity(display_name="Mira", archetype="trickster_merchant")
        assert npc.personality_template == ""
        assert npc.is_boss is False
        assert npc.boss_constraint == ""
        assert npc.difficulty_modifier == 1.0

    def test_frozen(self) -> None:
        npc = NPCIdentity(display_name="Mira", archetype="trickster_merchant")
        with pytest.raises(ValidationError):
            npc.display_name = "Other"

    def test_labels(self) -> None:
        assert archetype_label("riddlemaster") == "Riddlemaster"
        assert archetype_label("silent_librarian") == "Silent Librarian"
        assert archetype_label("Oracle") == "Oracle"

    def test_every_known_archetype_has_a_label(self) -> None:
        assert set(ARCHETYPE_LABELS) == set(get_args(NPCArchetype))

    @pytest.mark.parametrize("archetype", ["silent_librarian", "boss_whisperer"])
    def test_known_and_custom_archetypes_accepted(self, archetype) -> None:
        assert NPCIdentity(display_name="X", archetype=archetype).archetype == archetype


def test_default_mood_is_offered() -> None:
    assert MOODS[0] == DEFAULT_MOOD


class TestPromptContext:
    def test_defaults(self, riddlemaster) -> None:
        ctx = PromptContext(npc=riddlemaster, target_word="owl", category="animals")
        assert ctx.clue_index == 1
        assert ctx.previous_guesses == ()
        assert ctx.active_modifiers == ()

    def test_clue_index_is_one_based(self, riddlemaster) -> None:
        with pytest.raises(ValidationError):
            PromptContext(npc=riddlemaster, target_word="owl", category="animals", clue_index=0)

    def test_lists_become_tuples(self, riddlemaster) -> None:
        ctx = PromptContext(npc=riddlemaster, target_word="owl", category="animals",
                            previous_guesses=["cat"], active_modifiers=["Fog"])
        assert ctx.previous_guesses == ("cat",)
        assert ctx.active_modifiers == ("Fog",)


class TestClueResult:
    def test_defaults(self) -> None:
        result = ClueResult(clue_text="It hoots.")
        assert result.mood == "neutral"
        assert result.used_fallback is False
        assert result.generation_time_ms == 0.0

    def test_rewritable_by_downstream_effects(self) -> None:
        result = ClueResult(clue_text="It hoots.")
        result.clue_text = "It h**ts."
        assert result.clue_text == "It h**ts."


class TestChainConfig:
    def test_ollama_options(self) -> None:
        assert GenerationOptions().to_ollama() == {"temperature": 0.8, "num_predict": 200}

    def test_defaults(self) -> None:
        config = ModelChainConfig(primary_model_id="qwen2.5:7b")
        assert config.fallback_model_id == ""
        assert config.timeout_seconds == 15.0

    def test_timeout_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            ModelChainConfig(primary_model_id="m", timeout_seconds=0)


class TestStaticClueEntry:
    def test_clamping(self) -> None:
        entry = StaticClueEntry(word="owl", clues=["a", "b"])
        assert entry.clue_for(1) == "a"
        assert entry.clue_for(2) == "b"
        assert entry.clue_for(7) == "b"
        assert entry.clue_for(0) == "a"

    def test_no_clues(self) -> None:
        assert StaticClueEntry(word="owl").clue_for(1) is None
