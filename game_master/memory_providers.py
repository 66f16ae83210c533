# game_master/memory_providers.py
"""Dictionary-backed session and character providers.

Used by the command-line runner and the test suite. A real deployment wires
the engine to its own persistence layer through the same protocols.
"""

from __future__ import annotations

import structlog

from models.narration_models import (
    ActionLogEntry,
    CharacterSnapshot,
    SessionContext,
)

logger = structlog.get_logger(__name__)


class InMemorySessionProvider:
    """Sessions and their action logs held in process memory.

    ``actor`` is accepted for interface parity; every actor sees the full
    log of a session, newest entry first.
    """

    def __init__(self, sessions: list[SessionContext] | None = None) -> None:
        self.sessions: dict[str, SessionContext] = {
            s.session_id: s for s in sessions or []
        }
        self.action_logs: dict[str, list[ActionLogEntry]] = {}

    def add_session(self, session: SessionContext) -> None:
        self.sessions[session.session_id] = session

    async def get_ai_context(self, session_id: str) -> SessionContext | None:
        return self.sessions.get(session_id)

    async def get_action_log(
        self, session_id: str, actor: str, limit: int = 50, offset: int = 0
    ) -> list[ActionLogEntry]:
        entries = self.action_logs.get(session_id, [])
        newest_first = list(reversed(entries))
        return newest_first[offset : offset + limit]

    async def log_action(self, entry: ActionLogEntry) -> None:
        self.action_logs.setdefault(entry.session_id, []).append(entry)
        logger.debug(
            "Action logged.",
            session_id=entry.session_id,
            action_type=entry.action_type,
        )


class InMemoryCharacterProvider:
    """Characters keyed by id; ownership is not enforced."""

    def __init__(self, characters: list[CharacterSnapshot] | None = None) -> None:
        self.characters: dict[str, CharacterSnapshot] = {
            c.id: c for c in characters or []
        }

    async def get_character(
        self, character_id: str, owner_id: str | None = None
    ) -> CharacterSnapshot | None:
        return self.characters.get(character_id)
