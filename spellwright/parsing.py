"""Turn raw model output into a ClueResult.

Parsing is a cascade of pure strategies, tried in order until one yields a
clue:

  1. strict JSON:  whole reply (markdown fences stripped) is a JSON object
                   with a non-blank "clue" string
  2. field regex:  a "clue": "..." pair anywhere in the text, "mood"
                   searched independently
  3. sentences:    first one or two sentences of the reply; fails only when
                   the reply holds nothing but delimiters such as "?!."

After a strategy succeeds, the leak filter rejects clues that contain the
secret word as a whole word (case-insensitive). Only the parsed clue text is
checked; text the parser threw away is not.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable

from spellwright.models import DEFAULT_MOOD, ClueResult

logger = logging.getLogger(__name__)

Strategy = Callable[[str], ClueResult | None]

_CLUE_FIELD = re.compile(r'"clue"\s*:\s*"([^"]+)"', re.IGNORECASE)
_MOOD_FIELD = re.compile(r'"mood"\s*:\s*"([^"]+)"', re.IGNORECASE)
_SENTENCE = re.compile(r"([^.!?]*)([.!?]?)")


def parse_clue(raw: str | None, target_word: str | None = None) -> ClueResult | None:
    """Parse a clue from raw model output.

    Returns None for blank or delimiter-only input, or when the parsed clue
    leaks target_word.
    """
    if raw is None or not raw.strip():
        return None

    result = None
    for strategy in STRATEGIES:
        result = strategy(raw)
        if result is not None:
            break
    if result is None:
        return None

    if target_word and target_word.strip() and contains_target_word(result.clue_text, target_word):
        logger.warning("Clue rejected: contains the secret word (%s)", strategy.__name__)
        return None
    return result


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------

def strip_code_fence(text: str) -> str:
    """Drop a leading ``` line and a trailing ``` from model output."""
    cleaned = text.strip()
    if cleaned.startswith("```"):
        newline = cleaned.find("\n")
        if newline > 0:
            cleaned = cleaned[newline + 1:]
        if cleaned.endswith("```"):
            cleaned = cleaned[:-3]
        cleaned = cleaned.strip()
    return cleaned


def parse_json_clue(raw: str) -> ClueResult | None:
    try:
        data = json.loads(strip_code_fence(raw))
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict):
        return None

    clue = data.get("clue")
    if not isinstance(clue, str) or not clue.strip():
        return None
    mood = data.get("mood")
    if not isinstance(mood, str) or not mood.strip():
        mood = DEFAULT_MOOD
    return ClueResult(clue_text=clue.strip(), mood=mood.strip())


def _unescape(value: str) -> str:
    # Regex captures raw JSON string contents; decode escape sequences when
    # they form a valid JSON string, otherwise keep the text as captured.
    try:
        return json.loads(f'"{value}"')
    except json.JSONDecodeError:
        return value


def parse_field_clue(raw: str) -> ClueResult | None:
    clue_match = _CLUE_FIELD.search(raw)
    if not clue_match:
        return None
    clue = _unescape(clue_match.group(1)).strip()
    if not clue:
        return None
    mood_match = _MOOD_FIELD.search(raw)
    mood = _unescape(mood_match.group(1)).strip() if mood_match else ""
    return ClueResult(clue_text=clue, mood=mood or DEFAULT_MOOD)


def parse_sentence_clue(raw: str) -> ClueResult | None:
    sentences: list[str] = []
    for body, delimiter in _SENTENCE.findall(raw):
        body = body.strip()
        if not body:
            continue
        sentences.append(body + (delimiter or "."))
        if len(sentences) == 2:
            break
    if not sentences:
        return None
    return ClueResult(clue_text=" ".join(sentences), mood=DEFAULT_MOOD)


STRATEGIES: list[Strategy] = [
    parse_json_clue,
    parse_field_clue,
    parse_sentence_clue,
]


# ---------------------------------------------------------------------------
# Helpers shared with the backends
# ---------------------------------------------------------------------------

def contains_target_word(text: str, word: str) -> bool:
    """True if word appears in text as a standalone word, ignoring case.

    "bridge" matches "Look at that BRIDGE!" but not "Abridged versions".
    """
    word = word.strip()
    if not text or not word:
        return False
    pattern = rf"(?<!\w){re.escape(word)}(?!\w)"
    return re.search(pattern, text, re.IGNORECASE) is not None


def extract_json(raw: str) -> str:
    """Cut the JSON payload out of a chatty reply.

    Strips code fences, then keeps the span from the first { or [ to the last
    } or ]. Text without such a span is returned as-is.
    """
    cleaned = strip_code_fence(raw)
    starts = [i for i in (cleaned.find("{"), cleaned.find("[")) if i >= 0]
    end = max(cleaned.rfind("}"), cleaned.rfind("]"))
    if starts and end > min(starts):
        return cleaned[min(starts):end + 1]
    return cleaned
