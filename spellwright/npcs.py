"""Bundled NPC presets (presets/npcs/*.json, keyed by file stem)."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from spellwright.models import NPCIdentity

logger = logging.getLogger(__name__)

PRESETS_DIR = Path(__file__).parent / "presets" / "npcs"


def list_presets(presets_dir: Path = PRESETS_DIR) -> list[dict[str, Any]]:
    presets: list[dict[str, Any]] = []
    if not presets_dir.is_dir():
        return presets
    for path in sorted(presets_dir.glob("*.json")):
        data = json.loads(path.read_text(encoding="utf-8"))
        data["slug"] = path.stem
        presets.append(data)
    return presets


def load_npc(slug: str, presets_dir: Path = PRESETS_DIR) -> NPCIdentity | None:
    """Return the preset NPC with this slug, or None if there is no such preset."""
    path = presets_dir / f"{slug}.json"
    # Slugs come from request bodies; never step outside the presets dir.
    if path.parent != presets_dir or not path.is_file():
        return None
    try:
        return NPCIdentity.model_validate_json(path.read_text(encoding="utf-8"))
    except ValidationError as e:
        logger.error("Invalid NPC preset %s: %s", path.name, e)
        return None
