import pytest

from spellwright.config import _ENV_FIELDS
from spellwright.fallback import StaticFallbackStore
from spellwright.models import NPCIdentity


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep a developer's .env / shell settings out of every test."""
    for name in _ENV_FIELDS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def riddlemaster() -> NPCIdentity:
    return NPCIdentity(
        display_name="Riddlemaster",
        archetype="riddlemaster",
        personality_template="You are {displayName}, a wise {archetype}.",
    )


@pytest.fixture
def bundled_store() -> StaticFallbackStore:
    store = StaticFallbackStore()
    store.load_file()
    return store
