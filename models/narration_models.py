# models/narration_models.py
"""Pydantic models shared by the narration engine and its collaborators."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_response_id() -> str:
    """Return a globally unique response identifier."""
    return f"ai_{uuid.uuid4().hex}"


class RequestType(str, Enum):
    """Narrative request categories driving template and model selection."""

    PLAYER_ACTION_RESPONSE = "player_action_response"
    SCENE_DESCRIPTION = "scene_description"
    NPC_DIALOGUE = "npc_dialogue"
    COMBAT_NARRATION = "combat_narration"
    QUEST_GENERATION = "quest_generation"
    STORY_PROGRESSION = "story_progression"
    WORLD_BUILDING = "world_building"
    RANDOM_ENCOUNTER = "random_encounter"
    CONSEQUENCE_ANALYSIS = "consequence_analysis"


class Tone(str, Enum):
    SERIOUS = "serious"
    HUMOROUS = "humorous"
    MYSTERIOUS = "mysterious"
    DRAMATIC = "dramatic"
    CASUAL = "casual"
    HELPFUL = "helpful"


class Language(str, Enum):
    EN = "en"
    RU = "ru"


class NarrationBaseModel(BaseModel):
    """Base model for engine payloads."""

    model_config = ConfigDict(use_enum_values=False, populate_by_name=True)


class RequestConstraints(NarrationBaseModel):
    """Optional caller limits applied to a single request."""

    max_length: int | None = Field(default=None, ge=10, le=4000)
    tone: Tone | None = None
    language: Language | None = None
    require_dice: bool | None = None
    topic_filters: list[str] | None = None


class NarrationRequest(NarrationBaseModel):
    """A structured request for narrated text."""

    request_type: RequestType
    session_id: str = Field(min_length=1)
    player_action: str | None = None
    character_id: str | None = None
    user_id: str | None = None
    additional_context: dict[str, Any] = Field(default_factory=dict)
    constraints: RequestConstraints | None = None


class ModelProfile(NarrationBaseModel):
    """Generation parameters and backend model for a request category."""

    model_name: str
    temperature: float = 0.7
    max_tokens: int = 200
    top_p: float = 0.9
    repeat_penalty: float = 1.1
    context_window: int = 2048


class PromptTemplate(NarrationBaseModel):
    """A keyed, parameterised prompt body."""

    id: str
    name: str = ""
    description: str = ""
    request_type: RequestType | str
    language: Language | str
    body: str
    variables: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    is_active: bool = True


class DiceRollRequirement(NarrationBaseModel):
    type: str
    purpose: str
    dc: int | None = None


class ActionSuggestion(NarrationBaseModel):
    type: str
    description: str


class SceneUpdate(NarrationBaseModel):
    type: str
    description: str
    new_value: str | None = None


class ResponseMetadata(NarrationBaseModel):
    processing_time_ms: float = 0.0
    model_used: str = "unknown"
    token_count: int = 0
    confidence: float | None = None


class GeneratedResponse(NarrationBaseModel):
    """Text produced by the backend plus heuristic annotations."""

    id: str = Field(default_factory=new_response_id)
    request_type: RequestType
    content: str
    metadata: ResponseMetadata = Field(default_factory=ResponseMetadata)
    dice_rolls_required: list[DiceRollRequirement] = Field(default_factory=list)
    suggestions: list[ActionSuggestion] = Field(default_factory=list)
    scene_updates: list[SceneUpdate] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=_utcnow)


@dataclass
class CacheEntry:
    """A cached response and its bookkeeping."""

    key: str
    response: GeneratedResponse
    expires_at: float
    hit_count: int = 0


# --- Collaborator payloads ---


class WorldState(NarrationBaseModel):
    current_location: str = ""
    time_of_day: str = ""
    weather: str = ""
    active_quests: list[str] = Field(default_factory=list)
    npcs_in_location: list[str] = Field(default_factory=list)


class ActionLogEntry(NarrationBaseModel):
    """A single record in a session's action log."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    session_id: str
    character_id: str | None = None
    action_type: str
    content: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=_utcnow)


class SessionContext(NarrationBaseModel):
    """Session and world state as reported by the session provider."""

    session_id: str
    current_scene: str = ""
    world_state: WorldState = Field(default_factory=WorldState)
    recent_actions: list[ActionLogEntry] = Field(default_factory=list)


class CharacterSnapshot(NarrationBaseModel):
    """The subset of a character sheet used for narration."""

    id: str
    name: str
    character_class: str = Field(default="", alias="class")
    level: int = 1
    race: str = ""
    current_hp: int = 0
    max_hp: int = 0
