# config.py
"""Configuration settings for the game-master narration engine.
Uses Pydantic BaseSettings for automatic environment variable loading.
"""

from __future__ import annotations

from typing import Any

from dotenv import load_dotenv
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()


class NarratorSettings(BaseSettings):
    """Full configuration for the narration engine."""

    # Ollama backend
    OLLAMA_URL: str = "http://localhost:11434"
    OLLAMA_MODEL: str = "qwen2.5:14b"
    OLLAMA_TIMEOUT_SECONDS: float = 60.0
    HEALTH_CHECK_TIMEOUT_SECONDS: float = 5.0

    # Per-category model assignments (set from OLLAMA_MODEL if not specified in env)
    OLLAMA_STORY_MODEL: str | None = None
    OLLAMA_DIALOGUE_MODEL: str | None = None
    OLLAMA_COMBAT_MODEL: str | None = "qwen2.5:7b"
    OLLAMA_QUEST_MODEL: str | None = None

    # LLM Call Settings
    LLM_RETRY_ATTEMPTS: int = 3
    LLM_RETRY_DELAY_SECONDS: float = 1.0
    RATE_LIMIT_RETRY_DELAY_SECONDS: float = 30.0
    CONNECTION_REFUSED_RETRY_DELAY_SECONDS: float = 10.0
    FALLBACK_CHARS_PER_TOKEN: float = 4.0
    MAX_CONSTRAINED_OUTPUT_TOKENS: int = 500
    MODEL_INFO_CACHE_SIZE: int = 16

    # Confidence heuristic thresholds (uncalibrated)
    CONFIDENCE_MIN_LENGTH: int = 10
    CONFIDENCE_SHORT_SCORE: float = 0.3
    CONFIDENCE_QUESTION_MAX_LENGTH: int = 50
    CONFIDENCE_QUESTION_SCORE: float = 0.5
    CONFIDENCE_LONG_MIN_LENGTH: int = 100
    CONFIDENCE_LONG_SCORE: float = 0.9
    CONFIDENCE_DEFAULT_SCORE: float = 0.7

    # Caching
    RESPONSE_CACHE_TTL_SECONDS: float = 600.0
    CACHE_SWEEP_INTERVAL_SECONDS: float = 1800.0

    # Context assembly
    RECENT_RESPONSE_WINDOW: int = 5
    RECENT_ACTION_WINDOW: int = 5
    DEFAULT_LANGUAGE: str = "en"
    DEFAULT_CHARACTER_NAME: str = "Adventurer"
    DEFAULT_NPC_PERSONALITY: str = "friendly"

    # Logging & UI
    LOG_LEVEL_STR: str = Field("INFO", alias="NARRATOR_LOG_LEVEL")
    LOG_FORMAT: str = (
        "%(asctime)s - %(levelname)s - [%(name)s:%(funcName)s:%(lineno)d] - %(message)s"
    )
    LOG_DATE_FORMAT: str = "%Y-%m-%d %H:%M:%S"
    LOG_FILE: str | None = None
    ENABLE_RICH_LOGGING: bool = True

    @model_validator(mode="after")
    def set_dynamic_model_defaults(self) -> NarratorSettings:
        if self.OLLAMA_STORY_MODEL is None:
            self.OLLAMA_STORY_MODEL = self.OLLAMA_MODEL
        if self.OLLAMA_DIALOGUE_MODEL is None:
            self.OLLAMA_DIALOGUE_MODEL = self.OLLAMA_MODEL
        if self.OLLAMA_COMBAT_MODEL is None:
            self.OLLAMA_COMBAT_MODEL = self.OLLAMA_MODEL
        if self.OLLAMA_QUEST_MODEL is None:
            self.OLLAMA_QUEST_MODEL = self.OLLAMA_MODEL
        return self

    @property
    def category_models(self) -> dict[str, str]:
        """Model ids keyed by routing category."""
        return {
            "story": self.OLLAMA_STORY_MODEL or self.OLLAMA_MODEL,
            "dialogue": self.OLLAMA_DIALOGUE_MODEL or self.OLLAMA_MODEL,
            "combat": self.OLLAMA_COMBAT_MODEL or self.OLLAMA_MODEL,
            "quest": self.OLLAMA_QUEST_MODEL or self.OLLAMA_MODEL,
        }

    def public_view(self) -> dict[str, Any]:
        """Configuration snapshot safe to expose to the calling layer."""
        return {
            "base_url": self.OLLAMA_URL,
            "default_model": self.OLLAMA_MODEL,
            "models": self.category_models,
            "timeout_seconds": self.OLLAMA_TIMEOUT_SECONDS,
            "max_retries": self.LLM_RETRY_ATTEMPTS,
            "cache_ttl_seconds": self.RESPONSE_CACHE_TTL_SECONDS,
            "cache_sweep_interval_seconds": self.CACHE_SWEEP_INTERVAL_SECONDS,
            "in_flight_join": True,
        }

    model_config = SettingsConfigDict(
        env_prefix="", env_file=".env", populate_by_name=True
    )


settings = NarratorSettings()
