"""Central package for narration engine data models."""

from .narration_models import (
    ActionLogEntry,
    ActionSuggestion,
    CacheEntry,
    CharacterSnapshot,
    DiceRollRequirement,
    GeneratedResponse,
    Language,
    ModelProfile,
    NarrationRequest,
    PromptTemplate,
    RequestConstraints,
    RequestType,
    ResponseMetadata,
    SceneUpdate,
    SessionContext,
    Tone,
    WorldState,
    new_response_id,
)

__all__ = [
    "ActionLogEntry",
    "ActionSuggestion",
    "CacheEntry",
    "CharacterSnapshot",
    "DiceRollRequirement",
    "GeneratedResponse",
    "Language",
    "ModelProfile",
    "NarrationRequest",
    "PromptTemplate",
    "RequestConstraints",
    "RequestType",
    "ResponseMetadata",
    "SceneUpdate",
    "SessionContext",
    "Tone",
    "WorldState",
    "new_response_id",
]
