# game_master/narration_engine.py
"""Coordinates caching, request coalescing and the narration pipeline."""

from __future__ import annotations

import asyncio
import contextlib
import functools
import time
from collections.abc import Callable
from typing import Any

import structlog
from config import NarratorSettings, settings
from core.errors import EngineError
from core.llm_interface import InferenceClient
from core.model_profiles import overrides_for_constraints
from prompt_renderer import PromptTemplateRegistry

from models.narration_models import (
    ActionLogEntry,
    GeneratedResponse,
    NarrationRequest,
    RequestConstraints,
    RequestType,
    Tone,
)

from .context_builder import (
    AI_RESPONSE_ACTION,
    CharacterProvider,
    ContextBuilder,
    SessionProvider,
)
from .enrichment import ResponseAnnotator, ResponseEnricher
from .response_cache import ResponseCache, stable_cache_key

logger = structlog.get_logger(__name__)

FALLBACK_RECOMMENDATIONS = ("Keep exploring the world and talking to NPCs",)
FALLBACK_INSIGHTS = ("Not enough data for analysis",)


class NarrationEngine:
    """Turn narration requests into generated text.

    Identical requests (same cache key) share one backend call: the first
    caller leads, later callers join its task and receive the same result or
    the same exception. Successful results are cached for the configured TTL.
    """

    def __init__(
        self,
        session_provider: SessionProvider,
        character_provider: CharacterProvider | None = None,
        *,
        config: NarratorSettings = settings,
        client: InferenceClient | None = None,
        registry: PromptTemplateRegistry | None = None,
        enricher: ResponseAnnotator | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config
        self.session_provider = session_provider
        self.client = client or InferenceClient(config=config)
        self.registry = registry or PromptTemplateRegistry()
        self.context_builder = ContextBuilder(
            session_provider, character_provider, config
        )
        self.enricher = enricher or ResponseEnricher()
        self.cache = ResponseCache(config.RESPONSE_CACHE_TTL_SECONDS, clock)
        self._in_flight: dict[str, asyncio.Task[GeneratedResponse]] = {}
        self._side_effects: set[asyncio.Task[None]] = set()
        self._sweeper: asyncio.Task[None] | None = None

    # --- core ---

    async def process(self, request: NarrationRequest) -> GeneratedResponse:
        """Return narration for ``request``, from cache when possible."""
        key = stable_cache_key(request)

        cached = self.cache.get(key)
        if cached is not None:
            logger.info(
                "Serving cached response.",
                request_type=request.request_type.value,
                session_id=request.session_id,
            )
            return cached

        pending = self._in_flight.get(key)
        if pending is not None:
            logger.info(
                "Joining in-flight request.",
                request_type=request.request_type.value,
                session_id=request.session_id,
            )
            return await asyncio.shield(pending)

        task = asyncio.create_task(self._run_pipeline(request, key))
        self._in_flight[key] = task
        # The task releases its own slot so a cancelled caller cannot free the
        # key while the backend call is still running.
        task.add_done_callback(functools.partial(self._release_in_flight, key))
        return await asyncio.shield(task)

    def _release_in_flight(
        self, key: str, task: asyncio.Task[GeneratedResponse]
    ) -> None:
        if self._in_flight.get(key) is task:
            del self._in_flight[key]
        if not task.cancelled() and task.exception() is not None:
            logger.debug("In-flight request finished with an error.", key=key)

    def _language_for(self, request: NarrationRequest) -> str:
        if request.constraints and request.constraints.language:
            return request.constraints.language.value
        return self._config.DEFAULT_LANGUAGE

    async def _run_pipeline(
        self, request: NarrationRequest, key: str
    ) -> GeneratedResponse:
        logger.info(
            "Processing narration request.",
            request_type=request.request_type.value,
            session_id=request.session_id,
        )
        try:
            variables = await self.context_builder.build(request)
            template = self.registry.get(
                request.request_type, self._language_for(request)
            )
            prompt = self.registry.render(template.id, variables)
            overrides = overrides_for_constraints(request.constraints, self._config)
            response = await self.client.generate(
                prompt, request.request_type, overrides
            )
        except EngineError:
            raise
        except Exception as exc:
            logger.error("Narration pipeline failed unexpectedly.", exc_info=True)
            raise EngineError(f"Narration request failed: {exc}") from exc

        response = self._enrich(response)
        self.cache.set(key, response)
        self._schedule_exchange_log(request, response)
        return response

    def _enrich(self, response: GeneratedResponse) -> GeneratedResponse:
        try:
            return self.enricher.enrich(response)
        except Exception:
            logger.warning(
                "Enrichment failed; returning unenriched response.",
                response_id=response.id,
                exc_info=True,
            )
            return response

    # --- side effects ---

    def _schedule_exchange_log(
        self, request: NarrationRequest, response: GeneratedResponse
    ) -> None:
        task = asyncio.create_task(self._record_exchange(request, response))
        self._side_effects.add(task)
        task.add_done_callback(self._side_effects.discard)

    async def _record_exchange(
        self, request: NarrationRequest, response: GeneratedResponse
    ) -> None:
        entry = ActionLogEntry(
            session_id=request.session_id,
            character_id=request.character_id,
            action_type=AI_RESPONSE_ACTION,
            content=response.content,
            metadata={
                "requestType": request.request_type.value,
                "processingTime": response.metadata.processing_time_ms,
                "aiResponseId": response.id,
            },
        )
        try:
            await self.session_provider.log_action(entry)
        except Exception:
            logger.warning(
                "Failed to append narration to the session action log.",
                session_id=request.session_id,
                response_id=response.id,
                exc_info=True,
            )

    async def flush_side_effects(self) -> None:
        """Wait for pending action-log writes."""
        if self._side_effects:
            await asyncio.gather(*list(self._side_effects), return_exceptions=True)

    # --- maintenance ---

    def sweep_expired_cache(self) -> int:
        return self.cache.sweep()

    async def _sweep_loop(self) -> None:
        interval = self._config.CACHE_SWEEP_INTERVAL_SECONDS
        while True:
            await asyncio.sleep(interval)
            self.sweep_expired_cache()

    def start(self) -> None:
        """Start the periodic cache sweep on the running loop."""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep_loop())
            logger.info(
                "Cache sweep scheduled.",
                interval_seconds=self._config.CACHE_SWEEP_INTERVAL_SECONDS,
            )

    async def shutdown(self) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sweeper
            self._sweeper = None
        await self.flush_side_effects()
        await self.client.aclose()
        logger.info("Narration engine shut down.")

    # --- operational controls ---

    async def check_health(self) -> dict[str, Any]:
        backend = await self.client.health()
        models = await self.client.list_models() if backend else []
        return {
            "backend": backend,
            "models": models,
            "cache_size": len(self.cache),
            "in_flight": len(self._in_flight),
            "usage": self.client.usage.snapshot(),
        }

    def get_cache_info(self) -> dict[str, Any]:
        return self.cache.info()

    def clear_cache(self) -> int:
        cleared = self.cache.clear()
        logger.info("Response cache cleared.", entries=cleared)
        return cleared

    async def preload_models(self) -> bool:
        """Warm every model referenced by configuration or profiles."""
        models = sorted(
            set(self._config.category_models.values())
            | set(self.client.router.model_names())
        )
        logger.info("Preloading models.", models=models)
        results = [await self.client.load_model(name) for name in models]
        if all(results):
            logger.info("All models loaded.")
        else:
            logger.warning(
                "Some models failed to load.",
                failed=[m for m, ok in zip(models, results, strict=True) if not ok],
            )
        return all(results)

    def get_config(self) -> dict[str, Any]:
        view = self._config.public_view()
        view["profiles"] = {
            rt.value: profile.model_dump()
            for rt, profile in self.client.router.profiles.items()
        }
        return view

    async def update_config(self, **changes: Any) -> None:
        """Apply settings changes to the client, router, context and cache."""
        await self.client.update_config(**changes)
        self._config = self.client.config
        self.context_builder.config = self._config
        self.cache.ttl = self._config.RESPONSE_CACHE_TTL_SECONDS

    def get_usage_stats(self) -> dict[str, Any]:
        stats = self.client.usage.snapshot()
        stats["cache_hits"] = sum(e["hit_count"] for e in self.cache.info()["entries"])
        return stats

    # --- convenience requests ---

    async def generate_scene_description(
        self,
        session_id: str,
        location_name: str,
        additional_context: dict[str, Any] | None = None,
    ) -> GeneratedResponse:
        return await self.process(
            NarrationRequest(
                request_type=RequestType.SCENE_DESCRIPTION,
                session_id=session_id,
                additional_context={
                    "locationName": location_name,
                    **(additional_context or {}),
                },
            )
        )

    async def generate_npc_dialogue(
        self,
        session_id: str,
        npc_name: str,
        player_message: str,
        npc_personality: str | None = None,
    ) -> GeneratedResponse:
        return await self.process(
            NarrationRequest(
                request_type=RequestType.NPC_DIALOGUE,
                session_id=session_id,
                player_action=player_message,
                additional_context={
                    "npcName": npc_name,
                    "npcPersonality": npc_personality
                    or self._config.DEFAULT_NPC_PERSONALITY,
                },
            )
        )

    async def generate_combat_narration(
        self,
        session_id: str,
        combat_action: str,
        hit: bool,
        damage: int | None = None,
        critical: bool = False,
    ) -> GeneratedResponse:
        return await self.process(
            NarrationRequest(
                request_type=RequestType.COMBAT_NARRATION,
                session_id=session_id,
                player_action=combat_action,
                additional_context={
                    "combatResult": {"hit": hit, "damage": damage, "critical": critical}
                },
            )
        )

    async def generate_quest(
        self, session_id: str, quest_type: str = "side", difficulty: str = "medium"
    ) -> GeneratedResponse:
        return await self.process(
            NarrationRequest(
                request_type=RequestType.QUEST_GENERATION,
                session_id=session_id,
                additional_context={"questType": quest_type, "difficulty": difficulty},
            )
        )

    async def analyze_consequences(
        self,
        session_id: str,
        player_actions: list[str],
        timeframe: str = "immediate",
    ) -> GeneratedResponse:
        return await self.process(
            NarrationRequest(
                request_type=RequestType.CONSEQUENCE_ANALYSIS,
                session_id=session_id,
                additional_context={
                    "playerActions": player_actions,
                    "timeframe": timeframe,
                },
            )
        )

    async def generate_random_encounter(
        self, session_id: str, environment: str, party_level: int
    ) -> GeneratedResponse:
        return await self.process(
            NarrationRequest(
                request_type=RequestType.RANDOM_ENCOUNTER,
                session_id=session_id,
                additional_context={
                    "environment": environment,
                    "partyLevel": party_level,
                },
            )
        )

    async def progress_story(
        self,
        session_id: str,
        major_events: list[str],
        desired_direction: str | None = None,
    ) -> GeneratedResponse:
        return await self.process(
            NarrationRequest(
                request_type=RequestType.STORY_PROGRESSION,
                session_id=session_id,
                additional_context={
                    "majorEvents": major_events,
                    "desiredDirection": desired_direction,
                },
            )
        )

    async def build_world_element(
        self, session_id: str, element_type: str, theme: str
    ) -> GeneratedResponse:
        return await self.process(
            NarrationRequest(
                request_type=RequestType.WORLD_BUILDING,
                session_id=session_id,
                additional_context={"elementType": element_type, "theme": theme},
            )
        )

    async def get_gameplay_recommendations(
        self, session_id: str
    ) -> dict[str, list[str]]:
        """Advice for the game master based on recent play.

        Falls back to fixed advice when the analysis cannot be produced.
        """
        try:
            response = await self.process(
                NarrationRequest(
                    request_type=RequestType.CONSEQUENCE_ANALYSIS,
                    session_id=session_id,
                    additional_context={"analysisType": "gameplay_recommendations"},
                    constraints=RequestConstraints(tone=Tone.HELPFUL, max_length=400),
                )
            )
        except EngineError as exc:
            logger.error(
                "Could not produce gameplay recommendations.",
                session_id=session_id,
                code=exc.code,
            )
            return {
                "recommendations": list(FALLBACK_RECOMMENDATIONS),
                "insights": list(FALLBACK_INSIGHTS),
            }
        return {
            "recommendations": [response.content],
            "insights": ["Based on the players' most recent actions"],
        }

    async def test_ai(self, session_id: str) -> dict[str, Any]:
        """Run a sample scene request and report the outcome as data."""
        started = time.perf_counter()
        try:
            response = await self.generate_scene_description(
                session_id, "Test location", {"testing": True}
            )
        except EngineError as exc:
            return {
                "success": False,
                "error": exc.message,
                "latency_ms": round((time.perf_counter() - started) * 1000, 2),
            }
        return {
            "success": True,
            "response": response.content,
            "latency_ms": round((time.perf_counter() - started) * 1000, 2),
        }
