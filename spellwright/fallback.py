"""Pre-authored clues used when the model is unavailable or misbehaves.

File format (bundled as data/fallback_clues.json):

    {
      "words": {
        "elephant": {"category": "animals", "clues": ["...", "...", "..."]}
      }
    }

Clues are ordered from vague to specific. Asking for a clue number past the
end keeps returning the last (most specific) clue. Blank clues are dropped
on load.
"""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from spellwright.models import DEFAULT_MOOD, ClueResult, StaticClueEntry

logger = logging.getLogger(__name__)

DEFAULT_CLUES_PATH = Path(__file__).parent / "data" / "fallback_clues.json"


class _WordClues(BaseModel):
    category: str = ""
    clues: list[str] = Field(default_factory=list)


class _FallbackFile(BaseModel):
    words: dict[str, _WordClues] = Field(default_factory=dict)


class StaticFallbackStore:
    """Case-insensitive word → clue list table. Read-only once loaded."""

    def __init__(self) -> None:
        self._words: dict[str, StaticClueEntry] = {}
        self._loaded = False

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    @property
    def word_count(self) -> int:
        return len(self._words)

    def load(self, raw_json: str) -> None:
        """Load the table from a JSON document.

        Bad input is logged and leaves the store as it was; never raises.
        """
        if not raw_json or not raw_json.strip():
            logger.warning("Empty fallback clue document")
            return
        try:
            data = _FallbackFile.model_validate_json(raw_json)
        except ValidationError as e:
            logger.error("Failed to parse fallback clues: %s", e)
            return
        if not data.words:
            logger.warning("No words found in fallback clue document")
            return

        words: dict[str, StaticClueEntry] = {}
        for word, entry in data.words.items():
            key = word.strip().lower()
            if not key:
                continue
            clues = [c.strip() for c in entry.clues if c.strip()]
            words[key] = StaticClueEntry(word=key, category=entry.category, clues=clues)
        self._words = words
        self._loaded = True
        logger.info("Loaded %d fallback words", len(words))

    def load_file(self, path: Path | str = DEFAULT_CLUES_PATH) -> None:
        """Load the table from a file on disk (the bundled file by default)."""
        path = Path(path)
        try:
            raw = path.read_text(encoding="utf-8")
        except OSError as e:
            logger.error("Cannot read fallback clues %s: %s", path, e)
            return
        self.load(raw)

    def _entry(self, word: str | None) -> StaticClueEntry | None:
        if not self._loaded or not word or not word.strip():
            return None
        return self._words.get(word.strip().lower())

    def has_word(self, word: str | None) -> bool:
        return self._entry(word) is not None

    def get_entry(self, word: str | None) -> StaticClueEntry | None:
        return self._entry(word)

    def get_clue(self, word: str | None, clue_number: int) -> ClueResult | None:
        """Return the authored clue for a 1-based clue number, or None."""
        entry = self._entry(word)
        if entry is None:
            return None
        clue = entry.clue_for(clue_number)
        if clue is None:
            return None
        return ClueResult(
            clue_text=clue,
            mood=DEFAULT_MOOD,
            used_fallback=True,
            generation_time_ms=0.0,
        )
