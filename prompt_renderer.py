# prompt_renderer.py
"""Prompt template registry and Jinja2 rendering for narration requests."""

from __future__ import annotations

import json
import re
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

import structlog
from core.errors import TemplateError
from jinja2 import ChainableUndefined, Environment, TemplateSyntaxError, meta
from pydantic import BaseModel, ValidationError

from models.narration_models import Language, PromptTemplate, RequestType

logger = structlog.get_logger(__name__)

PROMPTS_PATH = Path(__file__).parent / "prompts"

REQUIRED_FIELDS = ("id", "name", "body", "request_type", "language")


def _stringify(value: Any) -> Any:
    """Render placeholder values the way prompts expect to read them."""
    if value is None:
        return ""
    if isinstance(value, BaseModel):
        return json.dumps(
            value.model_dump(mode="json", exclude_none=True), ensure_ascii=False
        )
    if isinstance(value, list | tuple | set):
        return ", ".join(str(_stringify(v)) for v in value)
    if isinstance(value, dict):
        return json.dumps(value, ensure_ascii=False, default=str)
    return value


_EMPTY_PLACEHOLDER = re.compile(r"\{\{\s*\}\}")


class _BlankUndefined(ChainableUndefined):
    """Undefined value that renders as "" in any expression it reaches.

    Attribute and item access chain (``{{ hero.name }}``), and arithmetic or
    calls on an undefined name yield another blank instead of raising.
    """

    __slots__ = ()

    def _blank(self, *args: Any, **kwargs: Any) -> _BlankUndefined:
        return self

    __add__ = __radd__ = __sub__ = __rsub__ = _blank
    __mul__ = __rmul__ = __truediv__ = __rtruediv__ = _blank
    __floordiv__ = __rfloordiv__ = __mod__ = __rmod__ = _blank
    __pow__ = __rpow__ = __pos__ = __neg__ = __call__ = _blank


_env = Environment(
    autoescape=False,
    finalize=_stringify,
    keep_trailing_newline=True,
    undefined=_BlankUndefined,
)


def _normalise_body(body: str) -> str:
    """Drop empty ``{{ }}`` placeholders, which Jinja cannot parse."""
    return _EMPTY_PLACEHOLDER.sub("", body)


def _parse_problem(body: str) -> str | None:
    try:
        _env.parse(_normalise_body(body))
    except TemplateSyntaxError as exc:
        return f"cannot be parsed: {exc.message}"
    return None


def template_id_for(request_type: RequestType | str, language: Language | str) -> str:
    rt = request_type.value if isinstance(request_type, RequestType) else request_type
    lang = language.value if isinstance(language, Language) else language
    return f"{rt}_{lang}"


def placeholders_in(body: str) -> set[str]:
    """Names referenced by ``{{ ... }}`` expressions in a template body."""
    return meta.find_undeclared_variables(_env.parse(_normalise_body(body)))


# id, display name, request type, language, declared variables
_DEFAULT_CATALOGUE: list[tuple[str, str, RequestType, Language, list[str]]] = [
    (
        "player_action_response_en",
        "Player action response (EN)",
        RequestType.PLAYER_ACTION_RESPONSE,
        Language.EN,
        [
            "currentLocation",
            "timeOfDay",
            "weather",
            "currentScene",
            "characterName",
            "characterClass",
            "characterLevel",
            "currentHP",
            "maxHP",
            "playerAction",
            "recentActions",
            "previousResponses",
        ],
    ),
    (
        "scene_description_en",
        "Scene description (EN)",
        RequestType.SCENE_DESCRIPTION,
        Language.EN,
        ["locationName", "timeOfDay", "weather", "npcsPresent", "questContext"],
    ),
    (
        "npc_dialogue_en",
        "NPC dialogue (EN)",
        RequestType.NPC_DIALOGUE,
        Language.EN,
        [
            "npcName",
            "npcPersonality",
            "relationship",
            "playerAction",
            "questContext",
        ],
    ),
    (
        "combat_narration_en",
        "Combat narration (EN)",
        RequestType.COMBAT_NARRATION,
        Language.EN,
        ["playerAction", "combatResult", "characterName", "targetName", "weaponUsed"],
    ),
    (
        "quest_generation_en",
        "Quest generation (EN)",
        RequestType.QUEST_GENERATION,
        Language.EN,
        [
            "questType",
            "difficulty",
            "partyLevel",
            "currentLocation",
            "questGiver",
            "questContext",
        ],
    ),
    (
        "story_progression_en",
        "Story progression (EN)",
        RequestType.STORY_PROGRESSION,
        Language.EN,
        [
            "majorEvents",
            "desiredDirection",
            "currentScene",
            "questContext",
            "recentActions",
            "previousResponses",
        ],
    ),
    (
        "world_building_en",
        "World building (EN)",
        RequestType.WORLD_BUILDING,
        Language.EN,
        ["elementType", "theme", "existingLore", "currentLocation"],
    ),
    (
        "random_encounter_en",
        "Random encounter (EN)",
        RequestType.RANDOM_ENCOUNTER,
        Language.EN,
        ["environment", "partyLevel", "timeOfDay", "weather", "travelDistance"],
    ),
    (
        "consequence_analysis_en",
        "Consequence analysis (EN)",
        RequestType.CONSEQUENCE_ANALYSIS,
        Language.EN,
        ["playerActions", "timeframe", "currentScene", "questContext", "recentActions"],
    ),
    (
        "player_action_response_ru",
        "Ответ на действие игрока (РУ)",
        RequestType.PLAYER_ACTION_RESPONSE,
        Language.RU,
        [
            "currentLocation",
            "timeOfDay",
            "weather",
            "currentScene",
            "characterName",
            "characterClass",
            "characterLevel",
            "currentHP",
            "maxHP",
            "playerAction",
            "recentActions",
        ],
    ),
    (
        "scene_description_ru",
        "Описание сцены (РУ)",
        RequestType.SCENE_DESCRIPTION,
        Language.RU,
        ["locationName", "timeOfDay", "weather", "npcsPresent", "questContext"],
    ),
    (
        "npc_dialogue_ru",
        "Диалог NPC (РУ)",
        RequestType.NPC_DIALOGUE,
        Language.RU,
        [
            "npcName",
            "npcPersonality",
            "relationship",
            "playerAction",
            "questContext",
        ],
    ),
]


def load_default_templates(
    prompts_path: Path = PROMPTS_PATH,
) -> list[PromptTemplate]:
    """Read the bundled template bodies from the prompts directory."""
    templates: list[PromptTemplate] = []
    for template_id, name, request_type, language, variables in _DEFAULT_CATALOGUE:
        body = (prompts_path / f"{template_id}.j2").read_text(encoding="utf-8")
        templates.append(
            PromptTemplate(
                id=template_id,
                name=name,
                request_type=request_type,
                language=language,
                body=body,
                variables=variables,
                tags=["default"],
            )
        )
    return templates


class PromptTemplateRegistry:
    """Keyed prompt templates, rendered with Jinja2.

    Writers replace whole entries and then swap the mapping reference, so
    concurrent readers see either the old table or the new one.
    """

    def __init__(self, templates: Iterable[PromptTemplate] | None = None) -> None:
        initial = load_default_templates() if templates is None else list(templates)
        self._templates: dict[str, PromptTemplate] = {t.id: t for t in initial}

    def __len__(self) -> int:
        return len(self._templates)

    def get(
        self, request_type: RequestType | str, language: Language | str
    ) -> PromptTemplate:
        template_id = template_id_for(request_type, language)
        template = self._templates.get(template_id)
        if template is None or not template.is_active:
            raise TemplateError(
                f"No prompt template for request type '{request_type}' "
                f"and language '{language}'"
            )
        return template

    def get_by_id(self, template_id: str) -> PromptTemplate | None:
        return self._templates.get(template_id)

    def list_templates(self) -> list[PromptTemplate]:
        return list(self._templates.values())

    def render(self, template_id: str, variables: Mapping[str, Any]) -> str:
        """Substitute placeholders; missing names render as empty strings."""
        template = self._templates.get(template_id)
        if template is None:
            raise TemplateError(f"Template '{template_id}' not found")
        try:
            compiled = _env.from_string(_normalise_body(template.body))
        except TemplateSyntaxError as exc:
            raise TemplateError(
                f"Template '{template_id}' cannot be parsed: {exc}"
            ) from exc
        return compiled.render(**dict(variables))

    @staticmethod
    def validate(template: PromptTemplate | Mapping[str, Any]) -> list[str]:
        """Return a list of issues; an empty list means the template is usable."""
        data = (
            template.model_dump() if isinstance(template, BaseModel) else dict(template)
        )
        issues = [f"'{name}' is required" for name in REQUIRED_FIELDS if not data.get(name)]
        body = data.get("body") or ""
        if body:
            problem = _parse_problem(body)
            if problem:
                issues.append(f"body {problem}")
            else:
                found = placeholders_in(body)
                declared = set(data.get("variables") or [])
                undeclared = sorted(found - declared)
                if undeclared:
                    issues.append(f"undeclared variables: {', '.join(undeclared)}")
        return issues

    def add(self, template: PromptTemplate) -> None:
        """Insert or replace a template. Raises ``TemplateError`` if unparseable."""
        problem = _parse_problem(template.body)
        if problem:
            raise TemplateError(f"Template '{template.id}' {problem}")
        updated = dict(self._templates)
        updated[template.id] = template
        self._templates = updated
        logger.info("Prompt template added.", template_id=template.id)

    def update(self, template_id: str, **changes: Any) -> bool:
        current = self._templates.get(template_id)
        if current is None:
            return False
        replacement = PromptTemplate.model_validate(
            {**current.model_dump(), **changes, "id": template_id}
        )
        problem = _parse_problem(replacement.body)
        if problem:
            logger.error(
                "Prompt template update rejected.", template_id=template_id, issue=problem
            )
            return False
        updated = dict(self._templates)
        updated[template_id] = replacement
        self._templates = updated
        logger.info(
            "Prompt template updated.", template_id=template_id, fields=sorted(changes)
        )
        return True

    def remove(self, template_id: str) -> bool:
        if template_id not in self._templates:
            return False
        updated = dict(self._templates)
        del updated[template_id]
        self._templates = updated
        logger.info("Prompt template removed.", template_id=template_id)
        return True

    def export_json(self) -> str:
        return json.dumps(
            {tid: t.model_dump(mode="json") for tid, t in self._templates.items()},
            ensure_ascii=False,
            indent=2,
        )

    def import_json(self, data: str) -> bool:
        """Merge templates from JSON; rejects the whole batch on any issue."""
        try:
            raw = json.loads(data)
        except json.JSONDecodeError:
            logger.error("Prompt import is not valid JSON.", exc_info=True)
            return False
        if not isinstance(raw, dict):
            logger.error("Prompt import must be an object keyed by template id.")
            return False

        incoming: dict[str, PromptTemplate] = {}
        for template_id, entry in raw.items():
            if not isinstance(entry, dict):
                logger.error("Prompt import entry is not an object.", template_id=template_id)
                return False
            issues = self.validate(entry)
            if issues:
                logger.error(
                    "Prompt import rejected.", template_id=template_id, issues=issues
                )
                return False
            try:
                incoming[template_id] = PromptTemplate.model_validate(entry)
            except ValidationError as exc:
                logger.error(
                    "Prompt import rejected.", template_id=template_id, error=str(exc)
                )
                return False

        self._templates = {**self._templates, **incoming}
        logger.info("Prompt templates imported.", count=len(incoming))
        return True
