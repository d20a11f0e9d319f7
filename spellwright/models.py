"""Core domain models.

Every stage of the clue pipeline (prompt assembly, inference, parsing,
static fallback) exchanges these types. Pydantic is used for validation
and serialisation at every data boundary.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

NPCArchetype = Literal[
    "riddlemaster",
    "trickster_merchant",
    "silent_librarian",
]

ARCHETYPE_LABELS: dict[NPCArchetype, str] = {
    "riddlemaster": "Riddlemaster",
    "trickster_merchant": "Trickster Merchant",
    "silent_librarian": "Silent Librarian",
}

# Moods offered to the model; replies may still carry others.
MOODS = ("neutral", "amused", "cryptic", "frustrated", "excited")
DEFAULT_MOOD = "neutral"


def archetype_label(archetype: str) -> str:
    """Human label for an archetype; unknown values are rendered verbatim."""
    return ARCHETYPE_LABELS.get(archetype, archetype)


class NPCIdentity(BaseModel):
    """The NPC giving clues in an encounter."""

    model_config = ConfigDict(frozen=True)

    display_name: str
    archetype: NPCArchetype | str
    personality_template: str = ""
    is_boss: bool = False
    boss_constraint: str = ""
    difficulty_modifier: float = 1.0  # carried for the encounter; prompts ignore it


class PromptContext(BaseModel):
    """Everything needed to ask for one clue. Built fresh per request."""

    model_config = ConfigDict(frozen=True)

    npc: NPCIdentity
    target_word: str
    category: str
    clue_index: int = Field(default=1, ge=1)
    previous_guesses: tuple[str, ...] = ()
    active_modifiers: tuple[str, ...] = ()


class AssembledPrompt(BaseModel):
    model_config = ConfigDict(frozen=True)

    system_prompt: str
    user_message: str


class ClueResult(BaseModel):
    """A clue ready to show the player."""

    clue_text: str
    mood: str = DEFAULT_MOOD  # open set; see MOODS for the known values
    used_fallback: bool = False
    generation_time_ms: float = 0.0


class GenerationOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    temperature: float = 0.8
    max_tokens: int = Field(default=200, gt=0)

    def to_ollama(self) -> dict[str, float | int]:
        return {"temperature": self.temperature, "num_predict": self.max_tokens}


class ModelChainConfig(BaseModel):
    """Primary/fallback model pair plus per-call limits. Read-only once built."""

    model_config = ConfigDict(frozen=True)

    primary_model_id: str
    fallback_model_id: str = ""  # empty: no fallback model
    timeout_seconds: float = Field(default=15.0, gt=0)
    options: GenerationOptions = Field(default_factory=GenerationOptions)


class StaticClueEntry(BaseModel):
    """Pre-authored clues for one word, ordered from vague to specific."""

    word: str
    category: str = ""
    clues: list[str] = Field(default_factory=list)

    def clue_for(self, clue_number: int) -> str | None:
        """Return the clue for a 1-based number, clamped to the authored range."""
        if not self.clues:
            return None
        index = min(max(clue_number - 1, 0), len(self.clues) - 1)
        return self.clues[index]
