"""Narration engine and its supporting stages."""

from .context_builder import (
    AI_RESPONSE_ACTION,
    CharacterProvider,
    ContextBuilder,
    SessionProvider,
)
from .enrichment import ResponseAnnotator, ResponseEnricher
from .memory_providers import InMemoryCharacterProvider, InMemorySessionProvider
from .narration_engine import NarrationEngine
from .response_cache import ResponseCache, stable_cache_key

__all__ = [
    "AI_RESPONSE_ACTION",
    "CharacterProvider",
    "ContextBuilder",
    "SessionProvider",
    "ResponseAnnotator",
    "ResponseEnricher",
    "InMemoryCharacterProvider",
    "InMemorySessionProvider",
    "NarrationEngine",
    "ResponseCache",
    "stable_cache_key",
]
