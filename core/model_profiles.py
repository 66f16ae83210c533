# core/model_profiles.py
"""Per-category generation profiles and routing to backend models."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import structlog
from config import NarratorSettings, settings

from models.narration_models import (
    ModelProfile,
    RequestConstraints,
    RequestType,
    Tone,
)

logger = structlog.get_logger(__name__)

# request type -> (routing category, temperature, max_tokens, top_p, repeat_penalty, context_window)
_DEFAULT_PROFILE_TABLE: dict[RequestType, tuple[str, float, int, float, float, int]] = {
    RequestType.PLAYER_ACTION_RESPONSE: ("story", 0.8, 300, 0.9, 1.1, 4096),
    RequestType.SCENE_DESCRIPTION: ("story", 0.9, 400, 0.95, 1.05, 4096),
    RequestType.NPC_DIALOGUE: ("dialogue", 0.7, 200, 0.85, 1.15, 2048),
    RequestType.COMBAT_NARRATION: ("combat", 0.6, 150, 0.8, 1.2, 1024),
    RequestType.QUEST_GENERATION: ("quest", 0.8, 500, 0.9, 1.0, 4096),
    RequestType.STORY_PROGRESSION: ("story", 0.75, 350, 0.88, 1.1, 4096),
    RequestType.WORLD_BUILDING: ("story", 0.85, 400, 0.92, 1.05, 4096),
    RequestType.RANDOM_ENCOUNTER: ("story", 0.9, 300, 0.95, 1.1, 2048),
    RequestType.CONSEQUENCE_ANALYSIS: ("story", 0.5, 250, 0.7, 1.2, 2048),
}

TONE_TEMPERATURES: dict[Tone, float] = {
    Tone.SERIOUS: 0.6,
    Tone.HUMOROUS: 0.9,
    Tone.MYSTERIOUS: 0.7,
    Tone.DRAMATIC: 0.8,
    Tone.CASUAL: 0.8,
}


def build_default_profiles(
    config: NarratorSettings = settings,
) -> dict[RequestType, ModelProfile]:
    """Create the startup profile table from configured model ids."""
    models = config.category_models
    return {
        request_type: ModelProfile(
            model_name=models[category],
            temperature=temperature,
            max_tokens=max_tokens,
            top_p=top_p,
            repeat_penalty=repeat_penalty,
            context_window=context_window,
        )
        for request_type, (
            category,
            temperature,
            max_tokens,
            top_p,
            repeat_penalty,
            context_window,
        ) in _DEFAULT_PROFILE_TABLE.items()
    }


def overrides_for_constraints(
    constraints: RequestConstraints | None,
    config: NarratorSettings = settings,
) -> dict[str, Any]:
    """Translate caller constraints into profile overrides."""
    if constraints is None:
        return {}
    overrides: dict[str, Any] = {}
    if constraints.max_length:
        overrides["max_tokens"] = min(
            constraints.max_length, config.MAX_CONSTRAINED_OUTPUT_TOKENS
        )
    if constraints.tone is not None and constraints.tone in TONE_TEMPERATURES:
        overrides["temperature"] = TONE_TEMPERATURES[constraints.tone]
    return overrides


class ModelRouter:
    """Resolve generation parameters for a request category.

    The profile table is read-mostly. ``replace_profile`` swaps in a new
    mapping so concurrent readers always see a complete table.
    """

    def __init__(
        self,
        profiles: Mapping[RequestType, ModelProfile] | None = None,
        config: NarratorSettings = settings,
    ) -> None:
        self._config = config
        self._profiles: dict[RequestType, ModelProfile] = dict(
            profiles if profiles is not None else build_default_profiles(config)
        )

    @property
    def profiles(self) -> dict[RequestType, ModelProfile]:
        return dict(self._profiles)

    def update_config(self, config: NarratorSettings) -> None:
        """Use ``config`` for the fallback profile; the table is unchanged."""
        self._config = config

    def default_profile(self) -> ModelProfile:
        return ModelProfile(model_name=self._config.OLLAMA_MODEL)

    def resolve(
        self,
        request_type: RequestType | str,
        overrides: Mapping[str, Any] | None = None,
    ) -> ModelProfile:
        """Merge the category default with caller overrides (caller wins)."""
        try:
            key = RequestType(request_type)
        except ValueError:
            key = None
        base = self._profiles.get(key) if key is not None else None
        if base is None:
            logger.debug(
                "No profile for request type; using default model.",
                request_type=str(request_type),
            )
            base = self.default_profile()
        if not overrides:
            return base
        known = {k: v for k, v in overrides.items() if k in ModelProfile.model_fields}
        ignored = set(overrides) - set(known)
        if ignored:
            logger.warning("Ignoring unknown profile overrides.", keys=sorted(ignored))
        return base.model_copy(update=known)

    def replace_profile(
        self, request_type: RequestType | str, profile: ModelProfile
    ) -> None:
        updated = dict(self._profiles)
        updated[RequestType(request_type)] = profile
        self._profiles = updated
        logger.info(
            "Model profile replaced.",
            request_type=RequestType(request_type).value,
            model=profile.model_name,
        )

    def model_names(self) -> list[str]:
        """Distinct model ids referenced by the profile table."""
        return sorted({p.model_name for p in self._profiles.values()})
