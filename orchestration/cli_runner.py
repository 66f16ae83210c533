# orchestration/cli_runner.py
"""Command-line runner for the narration engine."""

from __future__ import annotations

import asyncio
import json
from typing import Any

import structlog
from core.errors import EngineError
from game_master import (
    InMemoryCharacterProvider,
    InMemorySessionProvider,
    NarrationEngine,
)
from rich.console import Console
from utils.logging import setup_logging

from models.narration_models import (
    Language,
    NarrationRequest,
    RequestConstraints,
    RequestType,
    SessionContext,
    WorldState,
)

logger = structlog.get_logger(__name__)

console = Console()


def build_demo_engine(session_id: str) -> NarrationEngine:
    """Engine backed by in-memory providers seeded with one session."""
    sessions = InMemorySessionProvider(
        [
            SessionContext(
                session_id=session_id,
                current_scene="A quiet village at the edge of the forest",
                world_state=WorldState(
                    current_location="Millbrook",
                    time_of_day="evening",
                    weather="light rain",
                ),
            )
        ]
    )
    return NarrationEngine(sessions, InMemoryCharacterProvider())


async def _run(
    engine: NarrationEngine,
    *,
    health: bool,
    preload: bool,
    scene: str | None,
    action: str | None,
    session_id: str,
    language: str,
) -> dict[str, Any]:
    result: dict[str, Any] = {}
    if health:
        result["health"] = await engine.check_health()
    if preload:
        result["preload"] = await engine.preload_models()
    constraints = RequestConstraints(language=Language(language))
    if scene:
        response = await engine.process(
            NarrationRequest(
                request_type=RequestType.SCENE_DESCRIPTION,
                session_id=session_id,
                additional_context={"locationName": scene},
                constraints=constraints,
            )
        )
        result["scene"] = response.model_dump(mode="json")
    if action:
        response = await engine.process(
            NarrationRequest(
                request_type=RequestType.PLAYER_ACTION_RESPONSE,
                session_id=session_id,
                player_action=action,
                constraints=constraints,
            )
        )
        result["action"] = response.model_dump(mode="json")
    if not result:
        result["config"] = engine.get_config()
    return result


async def _run_and_shutdown(engine: NarrationEngine, **options: Any) -> dict[str, Any]:
    try:
        return await _run(engine, **options)
    finally:
        await engine.shutdown()


def run(
    *,
    health: bool = False,
    preload: bool = False,
    scene: str | None = None,
    action: str | None = None,
    session_id: str = "cli-session",
    language: str = "en",
) -> int:
    """Run the requested operations and print the results as JSON.

    Returns a process exit code.
    """
    setup_logging()
    engine = build_demo_engine(session_id)
    try:
        result = asyncio.run(
            _run_and_shutdown(
                engine,
                health=health,
                preload=preload,
                scene=scene,
                action=action,
                session_id=session_id,
                language=language,
            )
        )
    except KeyboardInterrupt:
        logger.info("Narrator CLI interrupted.")
        return 130
    except EngineError as err:
        logger.error(
            "Narration request failed.", code=err.code, status_code=err.status_code
        )
        console.print_json(
            json.dumps({"error": err.message, "code": err.code}, ensure_ascii=False)
        )
        return 1

    console.print_json(json.dumps(result, ensure_ascii=False, default=str))
    return 0
