"""Tests for spellwright.fallback — static clue table."""

import json

import pytest

from spellwright.fallback import StaticFallbackStore

TABLE = json.dumps({
    "words": {
        "Elephant": {"category": "animals", "clues": ["Big.", "Grey and big.", "Has a trunk."]},
        "ghost": {"category": "spooky", "clues": []},
    }
})


@pytest.fixture
def store() -> StaticFallbackStore:
    s = StaticFallbackStore()
    s.load(TABLE)
    return s


class TestLoad:
    def test_loaded(self, store) -> None:
        assert store.is_loaded
        assert store.word_count == 2

    @pytest.mark.parametrize("raw", ["", "   ", "not json", '{"words": 5}'])
    def test_bad_documents_leave_store_unloaded(self, raw) -> None:
        s = StaticFallbackStore()
        s.load(raw)
        assert not s.is_loaded
        assert not s.has_word("elephant")

    def test_empty_word_table_leaves_store_unloaded(self) -> None:
        s = StaticFallbackStore()
        s.load('{"words": {}}')
        assert not s.is_loaded

    def test_bad_reload_keeps_previous_table(self, store) -> None:
        store.load("garbage")
        assert store.has_word("elephant")

    def test_reload_replaces_table(self, store) -> None:
        store.load('{"words": {"owl": {"category": "animals", "clues": ["Hoots."]}}}')
        assert store.has_word("owl")
        assert not store.has_word("elephant")

    def test_reload_same_data_is_idempotent(self, store) -> None:
        store.load(TABLE)
        assert store.word_count == 2
        assert store.get_clue("elephant", 2).clue_text == "Grey and big."

    def test_missing_file(self, tmp_path) -> None:
        s = StaticFallbackStore()
        s.load_file(tmp_path / "nope.json")
        assert not s.is_loaded

    def test_load_file(self, tmp_path) -> None:
        path = tmp_path / "clues.json"
        path.write_text(TABLE, encoding="utf-8")
        s = StaticFallbackStore()
        s.load_file(path)
        assert s.has_word("ELEPHANT")

    def test_bundled_table(self, bundled_store) -> None:
        assert bundled_store.is_loaded
        assert bundled_store.has_word("bridge")
        for word in ("bridge", "castle", "elephant"):
            entry = bundled_store.get_entry(word)
            assert len(entry.clues) >= 3


class TestLookup:
    def test_has_word_case_insensitive_and_trimmed(self, store) -> None:
        assert store.has_word("elephant")
        assert store.has_word("  ELEPHANT ")
        assert not store.has_word("giraffe")

    @pytest.mark.parametrize("word", [None, "", "   "])
    def test_blank_word(self, store, word) -> None:
        assert not store.has_word(word)
        assert store.get_clue(word, 1) is None

    def test_unloaded_store(self) -> None:
        s = StaticFallbackStore()
        assert not s.has_word("elephant")
        assert s.get_clue("elephant", 1) is None

    def test_clue_by_number(self, store) -> None:
        result = store.get_clue("elephant", 1)
        assert result.clue_text == "Big."
        assert result.used_fallback is True
        assert result.generation_time_ms == 0.0
        assert result.mood == "neutral"

    def test_clue_number_clamped_high(self, store) -> None:
        assert store.get_clue("elephant", 99).clue_text == "Has a trunk."

    def test_clue_number_clamped_low(self, store) -> None:
        assert store.get_clue("elephant", 0).clue_text == "Big."
        assert store.get_clue("elephant", -3).clue_text == "Big."

    def test_word_without_clues(self, store) -> None:
        assert store.has_word("ghost")
        assert store.get_clue("ghost", 1) is None

    def test_blank_clues_dropped_on_load(self) -> None:
        s = StaticFallbackStore()
        s.load('{"words": {"owl": {"category": "animals", "clues": [" Hoots. ", "", "   "]}}}')
        assert s.get_entry("owl").clues == ["Hoots."]
        assert s.get_clue("owl", 3).clue_text == "Hoots."

    def test_entry_keeps_category(self, store) -> None:
        assert store.get_entry("elephant").category == "animals"
