# game_master/context_builder.py
"""Assemble template variables from session, character and history data."""

from __future__ import annotations

from typing import Any, Protocol

import structlog
from config import NarratorSettings, settings
from core.errors import ContextError, EngineError

from models.narration_models import (
    ActionLogEntry,
    CharacterSnapshot,
    NarrationRequest,
    SessionContext,
)

logger = structlog.get_logger(__name__)

AI_RESPONSE_ACTION = "ai_response"
SYSTEM_ACTOR = "system"


class SessionProvider(Protocol):
    """Session collaborator consumed by the engine."""

    async def get_ai_context(self, session_id: str) -> SessionContext | None: ...

    async def get_action_log(
        self, session_id: str, actor: str, limit: int, offset: int
    ) -> list[ActionLogEntry]: ...

    async def log_action(self, entry: ActionLogEntry) -> None: ...


class CharacterProvider(Protocol):
    """Character collaborator consumed by the engine."""

    async def get_character(
        self, character_id: str, owner_id: str | None
    ) -> CharacterSnapshot | None: ...


def _format_action(action: ActionLogEntry) -> str:
    return f"{action.action_type}: {action.content}"


class ContextBuilder:
    """Build the flat variable bag a prompt template is rendered against."""

    def __init__(
        self,
        session_provider: SessionProvider,
        character_provider: CharacterProvider | None = None,
        config: NarratorSettings = settings,
    ) -> None:
        self.session_provider = session_provider
        self.character_provider = character_provider
        self.config = config

    async def _load_session(self, session_id: str) -> SessionContext:
        try:
            context = await self.session_provider.get_ai_context(session_id)
        except EngineError:
            raise
        except Exception as exc:
            logger.error(
                "Session context lookup failed.", session_id=session_id, exc_info=True
            )
            raise ContextError(
                f"Session context unavailable for '{session_id}': {exc}"
            ) from exc
        if context is None:
            raise ContextError(f"Session '{session_id}' not found", status_code=404)
        return context

    async def _load_character(
        self, request: NarrationRequest
    ) -> CharacterSnapshot | None:
        if not request.character_id or self.character_provider is None:
            return None
        try:
            character = await self.character_provider.get_character(
                request.character_id, request.user_id
            )
        except EngineError:
            raise
        except Exception as exc:
            logger.error(
                "Character lookup failed.",
                character_id=request.character_id,
                exc_info=True,
            )
            raise ContextError(
                f"Character '{request.character_id}' unavailable: {exc}"
            ) from exc
        if character is None:
            logger.info(
                "Character not found; using defaults.",
                character_id=request.character_id,
            )
        return character

    async def recent_responses(
        self, session_id: str, limit: int | None = None
    ) -> list[ActionLogEntry]:
        """Most recent narrated responses for the session, newest first."""
        window = limit if limit is not None else self.config.RECENT_RESPONSE_WINDOW
        if window <= 0:
            return []
        try:
            actions = await self.session_provider.get_action_log(
                session_id, SYSTEM_ACTOR, window * 2, 0
            )
        except Exception:
            logger.warning(
                "Could not read previous responses; continuing without them.",
                session_id=session_id,
                exc_info=True,
            )
            return []
        return [a for a in actions if a.action_type == AI_RESPONSE_ACTION][:window]

    async def build(self, request: NarrationRequest) -> dict[str, Any]:
        """Return template variables for ``request``.

        Values from ``request.additional_context`` are merged last and win
        over anything computed here.
        """
        session = await self._load_session(request.session_id)
        character = await self._load_character(request)
        previous = await self.recent_responses(request.session_id)

        world = session.world_state
        recent_actions = "\n".join(
            _format_action(a)
            for a in session.recent_actions[: self.config.RECENT_ACTION_WINDOW]
        )
        language = (
            request.constraints.language.value
            if request.constraints and request.constraints.language
            else self.config.DEFAULT_LANGUAGE
        )

        variables: dict[str, Any] = {
            "currentLocation": world.current_location,
            "locationName": world.current_location,
            "timeOfDay": world.time_of_day,
            "weather": world.weather,
            "currentScene": session.current_scene,
            "playerAction": request.player_action or "",
            "characterName": character.name
            if character
            else self.config.DEFAULT_CHARACTER_NAME,
            "characterClass": character.character_class if character else "",
            "characterLevel": character.level if character else 1,
            "currentHP": character.current_hp if character else 0,
            "maxHP": character.max_hp if character else 0,
            "recentActions": recent_actions,
            "npcsPresent": ", ".join(world.npcs_in_location),
            "questContext": ", ".join(world.active_quests),
            "previousResponses": "\n".join(p.content for p in previous),
            "language": language,
        }
        variables.update(request.additional_context)

        logger.debug(
            "Built request context.",
            session_id=request.session_id,
            request_type=request.request_type.value,
            has_character=character is not None,
            previous_responses=len(previous),
        )
        return variables
