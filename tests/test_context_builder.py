# tests/test_context_builder.py
import pytest
from core.errors import ContextError
from game_master.context_builder import AI_RESPONSE_ACTION, ContextBuilder
from game_master.memory_providers import (
    InMemoryCharacterProvider,
    InMemorySessionProvider,
)

from models.narration_models import (
    ActionLogEntry,
    CharacterSnapshot,
    Language,
    NarrationRequest,
    RequestConstraints,
    RequestType,
)


class BrokenSessionProvider(InMemorySessionProvider):
    async def get_ai_context(self, session_id):
        raise RuntimeError("database offline")


class BrokenLogProvider(InMemorySessionProvider):
    async def get_action_log(self, session_id, actor, limit=50, offset=0):
        raise RuntimeError("log offline")


class BrokenCharacterProvider(InMemoryCharacterProvider):
    async def get_character(self, character_id, owner_id=None):
        raise RuntimeError("characters offline")


def request(**kwargs):
    data = {
        "request_type": RequestType.PLAYER_ACTION_RESPONSE,
        "session_id": "s1",
        "player_action": "I open the door",
    }
    data.update(kwargs)
    return NarrationRequest(**data)


@pytest.mark.asyncio
async def test_build_flattens_session_and_character(narrator_settings, tavern_session):
    hero = CharacterSnapshot.model_validate(
        {
            "id": "c1",
            "name": "Aria",
            "class": "Ranger",
            "level": 4,
            "current_hp": 20,
            "max_hp": 31,
        }
    )
    builder = ContextBuilder(
        InMemorySessionProvider([tavern_session]),
        InMemoryCharacterProvider([hero]),
        narrator_settings,
    )
    variables = await builder.build(request(character_id="c1"))

    assert variables["currentLocation"] == "Tavern"
    assert variables["locationName"] == "Tavern"
    assert variables["timeOfDay"] == "evening"
    assert variables["npcsPresent"] == "Innkeeper Bram"
    assert variables["questContext"] == "Find the missing cart"
    assert variables["characterName"] == "Aria"
    assert variables["characterClass"] == "Ranger"
    assert variables["characterLevel"] == 4
    assert variables["maxHP"] == 31
    assert variables["playerAction"] == "I open the door"
    assert variables["language"] == "en"


@pytest.mark.asyncio
async def test_build_uses_defaults_for_unknown_character(
    narrator_settings, tavern_session
):
    builder = ContextBuilder(
        InMemorySessionProvider([tavern_session]),
        InMemoryCharacterProvider(),
        narrator_settings,
    )
    variables = await builder.build(request(character_id="ghost"))
    assert variables["characterName"] == "Adventurer"
    assert variables["characterLevel"] == 1


@pytest.mark.asyncio
async def test_additional_context_wins(narrator_settings, tavern_session):
    builder = ContextBuilder(
        InMemorySessionProvider([tavern_session]), config=narrator_settings
    )
    variables = await builder.build(
        request(
            additional_context={"locationName": "Old Mill", "npcName": "Miller"},
            constraints=RequestConstraints(language=Language.RU),
        )
    )
    assert variables["locationName"] == "Old Mill"
    assert variables["currentLocation"] == "Tavern"
    assert variables["npcName"] == "Miller"
    assert variables["language"] == "ru"


@pytest.mark.asyncio
async def test_previous_responses_filters_ai_entries(narrator_settings, tavern_session):
    sessions = InMemorySessionProvider([tavern_session])
    await sessions.log_action(
        ActionLogEntry(session_id="s1", action_type="move", content="walked north")
    )
    for n in range(3):
        await sessions.log_action(
            ActionLogEntry(
                session_id="s1", action_type=AI_RESPONSE_ACTION, content=f"reply {n}"
            )
        )
    builder = ContextBuilder(sessions, config=narrator_settings)

    recent = await builder.recent_responses("s1", limit=2)
    assert [r.content for r in recent] == ["reply 2", "reply 1"]

    variables = await builder.build(request())
    assert "walked north" not in variables["previousResponses"]
    assert variables["previousResponses"].splitlines() == [
        "reply 2",
        "reply 1",
        "reply 0",
    ]


@pytest.mark.asyncio
async def test_missing_session_raises_context_error(narrator_settings):
    builder = ContextBuilder(InMemorySessionProvider(), config=narrator_settings)
    with pytest.raises(ContextError) as exc_info:
        await builder.build(request(session_id="nowhere"))
    assert exc_info.value.status_code == 404


@pytest.mark.asyncio
async def test_session_provider_failure_raises_context_error(narrator_settings):
    builder = ContextBuilder(BrokenSessionProvider(), config=narrator_settings)
    with pytest.raises(ContextError) as exc_info:
        await builder.build(request())
    assert exc_info.value.code == "context_unavailable"


@pytest.mark.asyncio
async def test_character_provider_failure_raises_context_error(
    narrator_settings, tavern_session
):
    builder = ContextBuilder(
        InMemorySessionProvider([tavern_session]),
        BrokenCharacterProvider(),
        narrator_settings,
    )
    with pytest.raises(ContextError):
        await builder.build(request(character_id="c1"))


@pytest.mark.asyncio
async def test_history_failure_degrades_to_empty(narrator_settings, tavern_session):
    builder = ContextBuilder(
        BrokenLogProvider([tavern_session]), config=narrator_settings
    )
    variables = await builder.build(request())
    assert variables["previousResponses"] == ""
