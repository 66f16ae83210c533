# game_master/enrichment.py
"""Heuristic extraction of structured hints from narrated text.

The patterns are deliberately shallow. They look for common phrasings of
dice checks, proposals and scene changes in English and Russian output; they
are not a grammar for game mechanics and will miss or misread unusual text.
"""

from __future__ import annotations

import re
from typing import Protocol

import structlog
from core.errors import EnrichmentError

from models.narration_models import (
    ActionSuggestion,
    DiceRollRequirement,
    GeneratedResponse,
    SceneUpdate,
)

logger = structlog.get_logger(__name__)

# group 1: what is rolled, group 2 (optional): difficulty
DICE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(
        r"\broll\s+(?:an?\s+|your\s+)?([A-Za-z][A-Za-z ]*?)\s+(?:check\s+|save\s+)?against\s+(?:DC\s*)?(\d+)",
        re.IGNORECASE,
    ),
    re.compile(r"\bcheck\s+([A-Za-z][A-Za-z ]*?)\s+DC\s*(\d+)", re.IGNORECASE),
    re.compile(r"\b([A-Za-z]+)\s+check\s*\(?\s*DC\s*(\d+)", re.IGNORECASE),
    re.compile(r"\broll\s+(?:an?\s+)?(d\d+)\b", re.IGNORECASE),
    re.compile(r"бросок\s+(.*?)\s+против\s+(\d+)", re.IGNORECASE),
    re.compile(r"проверка\s+(.*?)\s+DC\s*(\d+)", re.IGNORECASE),
    re.compile(r"бросьте?\s+(d\d+)", re.IGNORECASE),
)

PROPOSAL_PHRASES: tuple[str, ...] = (
    "you can",
    "you could",
    "you may",
    "you might",
    "можете",
    "могли бы",
)

# suggestion type -> (keywords, description)
SUGGESTION_KEYWORDS: dict[str, tuple[tuple[str, ...], str]] = {
    "skill_check": (("check", "проверка"), "Make a skill check"),
    "attack": (("attack", "strike", "атак", "удар"), "Attack an opponent"),
    "dialogue": (("talk", "speak", "say", "говор", "сказать"), "Start a conversation"),
}

LOCATION_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(
        r"\b(?:head|move|go|travel|walk|enter|step|return)\w*\b[^.!?\n]*?\b(?:to|into|towards|toward)\s+(?:the\s+)?([A-Z][\w'’]*(?:\s+[A-Z][\w'’]*)*)"
    ),
    re.compile(r"(?:переход|движ|идти|направл)[^.!?\n]*?(?:в|к|на)\s+([А-ЯЁ][а-яё]+(?:\s+[А-ЯЁ][а-яё]+)*)"),
)

TIME_TRANSITION_WORDS: tuple[str, ...] = (
    "falls",
    "fell",
    "arrives",
    "comes",
    "breaks",
    "settles",
    "наступ",
)
TIME_OF_DAY_WORDS: tuple[str, ...] = (
    "morning",
    "dawn",
    "noon",
    "evening",
    "dusk",
    "night",
    "вечер",
    "утро",
    "ночь",
)


def extract_dice_requirements(content: str) -> list[DiceRollRequirement]:
    """Find roll requests such as "roll Dexterity against 15"."""
    claimed: list[tuple[int, int]] = []
    found: list[tuple[int, DiceRollRequirement]] = []
    for pattern in DICE_PATTERNS:
        for match in pattern.finditer(content):
            start, end = match.span()
            if any(start < c_end and c_start < end for c_start, c_end in claimed):
                continue
            claimed.append((start, end))
            roll_type = (match.group(1) or "d20").strip()
            dc = None
            if match.lastindex and match.lastindex >= 2 and match.group(2):
                dc = int(match.group(2))
            found.append(
                (
                    start,
                    DiceRollRequirement(
                        type=roll_type, purpose=f"Check: {match.group(0)}", dc=dc
                    ),
                )
            )
    return [req for _, req in sorted(found, key=lambda item: item[0])]


def extract_action_suggestions(content: str) -> list[ActionSuggestion]:
    """Map proposal phrasing plus domain keywords onto a fixed taxonomy."""
    lowered = content.lower()
    if not any(phrase in lowered for phrase in PROPOSAL_PHRASES):
        return []
    return [
        ActionSuggestion(type=kind, description=description)
        for kind, (keywords, description) in SUGGESTION_KEYWORDS.items()
        if any(word in lowered for word in keywords)
    ]


def detect_scene_updates(content: str) -> list[SceneUpdate]:
    updates: list[SceneUpdate] = []
    for pattern in LOCATION_PATTERNS:
        match = pattern.search(content)
        if match:
            updates.append(
                SceneUpdate(
                    type="location_change",
                    description="Possible change of location",
                    new_value=match.group(1).strip(),
                )
            )
            break

    lowered = content.lower()
    if any(word in lowered for word in TIME_TRANSITION_WORDS):
        time_word = next((w for w in TIME_OF_DAY_WORDS if w in lowered), None)
        if time_word:
            updates.append(
                SceneUpdate(
                    type="time_change",
                    description="Time of day changes",
                    new_value=time_word,
                )
            )
    return updates


class ResponseAnnotator(Protocol):
    """Post-processing stage: response in, annotated response out."""

    def enrich(self, response: GeneratedResponse) -> GeneratedResponse: ...


class ResponseEnricher:
    """Default annotator running the three independent regex passes."""

    def enrich(self, response: GeneratedResponse) -> GeneratedResponse:
        try:
            content = response.content
            dice = extract_dice_requirements(content)
            suggestions = extract_action_suggestions(content)
            scene_updates = detect_scene_updates(content)
        except Exception as exc:
            raise EnrichmentError(f"Enrichment failed for {response.id}: {exc}") from exc

        logger.debug(
            "Response enriched.",
            response_id=response.id,
            dice=len(dice),
            suggestions=len(suggestions),
            scene_updates=len(scene_updates),
        )
        return response.model_copy(
            update={
                "dice_rolls_required": dice,
                "suggestions": suggestions,
                "scene_updates": scene_updates,
            }
        )
