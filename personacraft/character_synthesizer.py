##########################################################################
#                                                                        #
#  Persona resolution, synthesis and memoization                         #
#                                                                        #
##########################################################################

from __future__ import annotations

import asyncio
import copy
import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Callable

from personacraft.dialect_resolver import DialectResolver, extract_region, fallback_dialect
from personacraft.model_router import GenerationService, GenerationUnavailable, complete_within, parse_json_object
from personacraft.persona_models import (
    BUILTIN_PERSONA_IDS,
    BuiltinPersona,
    CustomPersona,
    DialectRecord,
    Persona,
    PersonaTraitRecord,
    clamp_intensity,
)
from personacraft.persona_store import ORIGIN_SYNTHESIZED, PersonaTraitStore
from personacraft.prompt_builder import build_trait_prompt
from personacraft.ttl_cache import TTLCache


logger = logging.getLogger(__name__)

DEFAULT_SYNTHESIS_TTL_SECONDS = 30 * 60
TRAIT_SYSTEM_PROMPT = (
    "You are a professional character analysis expert. Return the personality "
    "configuration strictly as the requested JSON object."
)

# (name keywords, attitude, emoji set); first match wins.
TRAIT_KEYWORD_RULES: tuple[tuple[tuple[str, ...], str, tuple[str, ...]], ...] = (
    (("teacher", "professor", "expert", "老师", "教授", "专家"), "professional", ("📚", "🎓", "💼", "📊")),
    (("friend", "buddy", "partner", "朋友", "伙伴", "哆啦"), "friendly", ("🐱", "💫", "✨", "😊")),
    (("boss", "leader", "老板", "领导"), "superior", ("💰", "🎭", "👀", "🙃")),
)
DEFAULT_TRAIT_ATTITUDE = "friendly"
DEFAULT_TRAIT_EMOJIS: tuple[str, ...] = ("😊", "👍", "✨", "💫")

CATEGORY_KEYWORD_RULES: tuple[tuple[tuple[str, ...], str], ...] = (
    (("dora", "crayon", "naruto", "onepiece", "哆啦", "蜡笔", "火影", "海贼", "奥特曼"), "anime"),
    (("teacher", "professor", "expert", "老师", "教授", "专家"), "professional"),
    (("star", "actor", "singer", "明星", "演员", "歌手"), "entertainment"),
    (("boss", "ceo", "leader", "老板", "领导", "总裁"), "business"),
)
DEFAULT_CATEGORY = "custom"


def infer_category(name: str) -> str:
    lowered = str(name or "").lower()
    for keywords, category in CATEGORY_KEYWORD_RULES:
        if any(keyword in lowered for keyword in keywords):
            return category
    return DEFAULT_CATEGORY


def infer_attitude(name: str) -> tuple[str, list[str]]:
    lowered = str(name or "").lower()
    for keywords, attitude, emojis in TRAIT_KEYWORD_RULES:
        if any(keyword in lowered for keyword in keywords):
            return attitude, list(emojis)
    return DEFAULT_TRAIT_ATTITUDE, list(DEFAULT_TRAIT_EMOJIS)


def _text_list(payload: dict[str, Any], snake: str, camel: str) -> list[str]:
    value = payload.get(camel, payload.get(snake))
    if not isinstance(value, list):
        return []
    return [str(item).strip() for item in value if str(item).strip()]


def _text(payload: dict[str, Any], snake: str, camel: str, fallback: str) -> str:
    value = payload.get(camel, payload.get(snake))
    text = str(value if value is not None else "").strip()
    return text or fallback


@dataclass(slots=True)
class SynthesisRequest:
    name: str
    description: str | None = None
    context: str | None = None
    intensity: int | float | None = None
    examples: list[str] = field(default_factory=list)


@dataclass(slots=True)
class SynthesisResult:
    success: bool
    persona: PersonaTraitRecord | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class CharacterSynthesizer:
    """Turns a persona name into a built-in sentinel or a full trait record.

    Synthesized records are memoized under ``"{name}-{description}-{intensity}"``
    and mirrored into the store. A synthesized store record counts as live only
    while its own cache entry is live, so clearing the cache forces the next
    resolve to synthesize again.
    """

    def __init__(
        self,
        store: PersonaTraitStore,
        dialect_resolver: DialectResolver,
        service: GenerationService | None = None,
        *,
        cache_ttl_seconds: float = DEFAULT_SYNTHESIS_TTL_SECONDS,
        clock: Callable[[], float] | None = None,
        default_intensity: int | float = 3,
        max_tokens: int = 1000,
        temperature: float = 0.7,
        timeout_seconds: float = 10.0,
    ):
        self._store = store
        self._dialects = dialect_resolver
        self._service = service
        self._cache: TTLCache[PersonaTraitRecord] = TTLCache(cache_ttl_seconds, clock=clock)
        self._default_intensity = default_intensity
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._timeout_seconds = timeout_seconds

    def cache_key(
        self,
        name: str,
        description: str | None = None,
        intensity: int | float | None = None,
    ) -> str:
        level = clamp_intensity(self._default_intensity if intensity is None else intensity)
        return f"{name}-{description or ''}-{level}"

    async def resolve(
        self,
        name: str,
        description: str | None = None,
        context: str | None = None,
        intensity: int | float | None = None,
    ) -> Persona:
        persona_name = str(name or "").strip()
        if persona_name in BUILTIN_PERSONA_IDS:
            return BuiltinPersona(persona_name)
        if not persona_name:
            raise ValueError("Persona name is required.")

        key = self.cache_key(persona_name, description, intensity)
        cached = self._cache.get(key)
        if cached is not None:
            logger.debug(f"Persona cache hit for '{key}'.")
            return CustomPersona(copy.deepcopy(cached))

        entry = self._store.get_entry(persona_name)
        if entry is not None:
            if entry.origin != ORIGIN_SYNTHESIZED:
                return CustomPersona(entry.record)
            if entry.cache_key and self._cache.contains(entry.cache_key):
                return CustomPersona(entry.record)

        request = SynthesisRequest(
            name=persona_name,
            description=description,
            context=context,
            intensity=intensity,
        )
        record = await self._synthesize_record(request)
        self._remember(key, record)
        return CustomPersona(copy.deepcopy(record))

    async def synthesize(self, request: SynthesisRequest) -> SynthesisResult:
        name = str(request.name or "").strip()
        if not name:
            return SynthesisResult(success=False, error="Persona name is required.")
        if name in BUILTIN_PERSONA_IDS:
            return SynthesisResult(success=False, error=f"'{name}' is a built-in persona and is not synthesized.")

        key = self.cache_key(name, request.description, request.intensity)
        cached = self._cache.get(key)
        if cached is not None:
            return SynthesisResult(success=True, persona=copy.deepcopy(cached))

        try:
            record = await self._synthesize_record(request)
        except Exception as error:  # noqa: BLE001
            logger.exception(f"Persona synthesis for '{name}' failed.")
            return SynthesisResult(success=False, error=str(error) or error.__class__.__name__)

        self._remember(key, record)
        return SynthesisResult(success=True, persona=copy.deepcopy(record))

    def clear_cache(self) -> None:
        self._cache.clear()
        logger.info("Persona synthesis cache cleared.")

    def forget(self, name: str) -> int:
        removed = self._cache.discard_where(lambda record: record.name == name)
        if removed:
            logger.debug(f"Dropped {removed} cached synthesis entries for '{name}'.")
        return removed

    def cache_stats(self) -> dict[str, Any]:
        return self._cache.stats()

    def _remember(self, key: str, record: PersonaTraitRecord) -> None:
        self._cache.set(key, copy.deepcopy(record))
        self._store.upsert(record, origin=ORIGIN_SYNTHESIZED, cache_key=key)

    async def _synthesize_record(self, request: SynthesisRequest) -> PersonaTraitRecord:
        name = str(request.name).strip()
        logger.info(f"Synthesizing persona '{name}'.")
        trait_result, dialect_result = await asyncio.gather(
            self._generate_traits(request),
            self._dialects.resolve(
                name,
                description=request.description,
                background=request.context,
                region=extract_region(request.context),
            ),
            return_exceptions=True,
        )

        if isinstance(trait_result, BaseException):
            if not isinstance(trait_result, Exception):
                raise trait_result
            if not isinstance(trait_result, GenerationUnavailable):
                logger.warning(f"Trait generation for '{name}' failed, using keyword fallback: {trait_result}")
            traits = self._fallback_traits(request)
        else:
            traits = trait_result

        if isinstance(dialect_result, BaseException):
            if not isinstance(dialect_result, Exception):
                raise dialect_result
            logger.warning(f"Dialect resolution for '{name}' failed, using local table: {dialect_result}")
            dialect: DialectRecord = fallback_dialect(name)
        else:
            dialect = dialect_result

        return PersonaTraitRecord(
            name=name,
            description=request.description or f"Character: {name}",
            category=infer_category(name),
            dialect=dialect,
            examples=list(request.examples or []),
            **traits,
        )

    async def _generate_traits(self, request: SynthesisRequest) -> dict[str, Any]:
        if self._service is None:
            raise GenerationUnavailable("No generation service configured.")
        prompt = build_trait_prompt(
            request.name,
            description=request.description,
            context=request.context,
            examples=request.examples,
        )
        response = await complete_within(
            self._service,
            prompt,
            system_prompt=TRAIT_SYSTEM_PROMPT,
            max_tokens=self._max_tokens,
            temperature=self._temperature,
            timeout_seconds=self._timeout_seconds,
        )
        payload = parse_json_object(response)
        return {
            "signature_phrases": _text_list(payload, "signature_phrases", "signaturePhrases"),
            "tone_words": _text_list(payload, "tone_words", "toneWords"),
            "attitude": _text(payload, "attitude", "attitude", DEFAULT_TRAIT_ATTITUDE),
            "speech_patterns": _text_list(payload, "speech_patterns", "speechPatterns"),
            "background_context": _text(payload, "background_context", "backgroundContext", ""),
            "emoji_preferences": _text_list(payload, "emoji_preferences", "emojiPreferences"),
            "language_style": _text(payload, "language_style", "languageStyle", "casual"),
        }

    def _fallback_traits(self, request: SynthesisRequest) -> dict[str, Any]:
        name = str(request.name).strip()
        attitude, emojis = infer_attitude(name)
        return {
            "signature_phrases": [f"I am {name}", "Let me think", "Do you know", "I think", "No problem"],
            "tone_words": ["hmm", "oh", "ah", "ne", "ba"],
            "attitude": attitude,
            "speech_patterns": [
                "friendly communication",
                "positive response",
                "expressing opinions",
                "giving suggestions",
            ],
            "background_context": request.description or f"A unique character: {name}",
            "emoji_preferences": emojis,
            "language_style": "Natural and smooth conversational style",
        }


__all__ = [
    "CATEGORY_KEYWORD_RULES",
    "CharacterSynthesizer",
    "SynthesisRequest",
    "SynthesisResult",
    "TRAIT_KEYWORD_RULES",
    "infer_attitude",
    "infer_category",
]
