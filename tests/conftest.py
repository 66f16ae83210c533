# tests/conftest.py
import os
import sys

import pytest

# Ensure repository root is on PYTHONPATH for tests
repo_root = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
if repo_root not in sys.path:
    sys.path.insert(0, repo_root)

from config import NarratorSettings  # noqa: E402

from models.narration_models import SessionContext, WorldState  # noqa: E402


class FakeClock:
    """Manually advanced replacement for ``time.time``."""

    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def narrator_settings():
    return NarratorSettings(
        _env_file=None,
        OLLAMA_URL="http://ollama.test",
        OLLAMA_MODEL="story-model",
        OLLAMA_COMBAT_MODEL="combat-model",
        LLM_RETRY_ATTEMPTS=3,
        LLM_RETRY_DELAY_SECONDS=1.0,
        ENABLE_RICH_LOGGING=False,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def tavern_session():
    return SessionContext(
        session_id="s1",
        current_scene="The Drunken Griffin tavern",
        world_state=WorldState(
            current_location="Tavern",
            time_of_day="evening",
            weather="rain",
            active_quests=["Find the missing cart"],
            npcs_in_location=["Innkeeper Bram"],
        ),
    )
