##########################################################################
#                                                                        #
#  This file (pipeline.py) wires the safety gate, persona synthesis,     #
#  generation and rule-based fallback into one personalization call.     #
#                                                                        #
##########################################################################

from __future__ import annotations

import logging
import random
import re
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Callable

from personacraft.character_synthesizer import CharacterSynthesizer, SynthesisRequest, SynthesisResult
from personacraft.config_manager import ConfigStore
from personacraft.content_safety import PolicyViolation, SafetyCheckError, SafetyGate
from personacraft.dialect_resolver import DialectResolver
from personacraft.model_router import (
    GenerationFailure,
    GenerationService,
    GenerationUnavailable,
    build_generation_service,
    complete_within,
)
from personacraft.persona_models import (
    BUILTIN_PERSONA_IDS,
    BuiltinPersona,
    CustomPersona,
    DialectRecord,
    Persona,
    PersonaTraitRecord,
    PersonalityIntensityConfig,
    SafetyVerdict,
    SentimentResult,
    persona_name as name_of,
)
from personacraft.persona_rewriter import PersonaRewriter
from personacraft.persona_store import PersonaTraitStore
from personacraft.prompt_builder import build_persona_prompt, build_rewrite_message
from personacraft.runtime_settings import build_runtime_settings, get_runtime_setting
from personacraft.sentiment import SentimentTagger


logger = logging.getLogger(__name__)

REWRITE_SYSTEM_PROMPT = (
    "You are a professional role-playing assistant who can imitate the speech style and "
    "characteristics of different characters. Re-express the user's text in the requested "
    "character's voice and reply with the rewritten text only."
)


@dataclass(frozen=True, slots=True)
class Catchphrases:
    phrases: tuple[str, ...]
    probability: float


_ULTRAMAN = Catchphrases(("シャイニング！", "ウルトラマン！", "光の国！", "スペシウム光線！"), 0.3)
_TRUMP = Catchphrases(("Make America Great Again!", "Tremendous!", "Believe me!", "Sad!", "Fake news!"), 0.4)
_MILEI = Catchphrases(("¡Libertad!", "¡Viva la libertad!", "¡No hay alternativa!", "¡Abajo el socialismo!"), 0.3)
_JACK = Catchphrases(("I top your lung!", "You are Dao Ge?", "I am international killer!"), 0.5)

NATIVE_CATCHPHRASES: dict[str, Catchphrases] = {
    "奥特曼": _ULTRAMAN,
    "Ultraman": _ULTRAMAN,
    "特朗普": _TRUMP,
    "Trump": _TRUMP,
    "米莱": _MILEI,
    "Milei": _MILEI,
    "Jack": _JACK,
}

_CLAUSE_BOUNDARY = re.compile(r"，|, ")


class RequestValidationError(ValueError):
    """Raised when a personalization request is malformed."""


def _optional_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


@dataclass(slots=True)
class PersonalizationRequest:
    text: str
    persona_name: str | None = None
    intensity: int | float | None = None
    context: str | None = None
    description: str | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "PersonalizationRequest":
        if not isinstance(payload, dict):
            raise RequestValidationError("Request must be an object.")
        text = payload.get("text")
        if not isinstance(text, str):
            raise RequestValidationError("Request field 'text' is required and must be a string.")
        persona = payload.get("persona_name", payload.get("personaName", payload.get("character")))
        return cls(
            text=text,
            persona_name=_optional_text(persona),
            intensity=payload.get("intensity"),
            context=_optional_text(payload.get("context")),
            description=_optional_text(payload.get("description")),
        )


@dataclass(slots=True)
class PersonalizationResult:
    original_text: str
    result_text: str
    sentiment: SentimentResult
    intensity_config: PersonalityIntensityConfig
    elapsed_ms: int
    persona_name: str
    generation_mode: str = "fallback"
    routing: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _capability_service(service: GenerationService | None, capability: str) -> GenerationService | None:
    if service is None:
        return None
    for_capability = getattr(service, "for_capability", None)
    if callable(for_capability):
        return for_capability(capability)
    return service


class PipelineOrchestrator:
    """Entry point for persona personalization.

    Every orchestrator owns its own config store, persona store and caches, so
    two instances never share state. ``service=None`` runs fully offline with
    the rule-based rewriter and local synthesis tables.
    """

    def __init__(
        self,
        settings: dict[str, Any] | None = None,
        service: GenerationService | None = None,
        *,
        config_store: ConfigStore | None = None,
        store: PersonaTraitStore | None = None,
        sentiment_tagger: SentimentTagger | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], float] | None = None,
    ):
        settings = build_runtime_settings({"runtime": settings or {}}, env_data={})

        def setting(path: str, fallback: Any) -> Any:
            return get_runtime_setting(settings, path, fallback)

        self._config = config_store if config_store is not None else ConfigStore.from_runtime_settings(settings)
        self._store = store if store is not None else PersonaTraitStore()
        self._sentiment = sentiment_tagger if sentiment_tagger is not None else SentimentTagger()
        self._rng = rng if rng is not None else random.Random()
        self._timeout_seconds = float(setting("inference.request_timeout_seconds", 10.0))
        self._rewrite_max_tokens = int(setting("inference.rewrite_max_tokens", 500))

        self._rewrite_service = _capability_service(service, "rewrite")
        self._dialects = DialectResolver(
            _capability_service(service, "dialect"),
            max_tokens=int(setting("inference.synthesis_max_tokens", 1000)),
            temperature=float(setting("inference.dialect_temperature", 0.3)),
            timeout_seconds=self._timeout_seconds,
        )
        self._synthesizer = CharacterSynthesizer(
            self._store,
            self._dialects,
            _capability_service(service, "synthesis"),
            cache_ttl_seconds=float(setting("persona.synthesis_cache_ttl_seconds", 1800.0)),
            clock=clock,
            default_intensity=setting("persona.default_intensity", 3),
            max_tokens=int(setting("inference.synthesis_max_tokens", 1000)),
            temperature=float(setting("inference.synthesis_temperature", 0.7)),
            timeout_seconds=self._timeout_seconds,
        )
        self._safety = SafetyGate(
            self._config,
            _capability_service(service, "safety"),
            cache_ttl_seconds=float(setting("safety.cache_ttl_seconds", 300.0)),
            clock=clock,
        )
        self._rewriter = PersonaRewriter(self._rng)

    @classmethod
    def from_settings(cls, settings: dict[str, Any] | None = None, **kwargs: Any) -> "PipelineOrchestrator":
        """Build an orchestrator whose generation runs through Ollama."""
        settings = settings if settings is not None else build_runtime_settings()
        service = build_generation_service(settings.get("inference"))
        return cls(settings, service, **kwargs)

    @property
    def store(self) -> PersonaTraitStore:
        return self._store

    @property
    def synthesizer(self) -> CharacterSynthesizer:
        return self._synthesizer

    @property
    def safety_gate(self) -> SafetyGate:
        return self._safety

    async def process(self, request: PersonalizationRequest | dict[str, Any]) -> PersonalizationResult:
        started = time.perf_counter()
        if isinstance(request, dict):
            request = PersonalizationRequest.from_payload(request)
        if not isinstance(request, PersonalizationRequest) or not isinstance(request.text, str):
            raise RequestValidationError("Request field 'text' is required and must be a string.")

        text = request.text
        requested_name = request.persona_name or self._config.default_persona_name

        if not text.strip():
            persona = self._passthrough_persona(requested_name)
            return PersonalizationResult(
                original_text=text,
                result_text=text,
                sentiment=self._sentiment.analyze(text),
                intensity_config=self._config.create_intensity_config(persona, request.intensity),
                elapsed_ms=self._elapsed_ms(started),
                persona_name=name_of(persona),
                generation_mode="passthrough",
            )

        await self._gate(text)

        persona = await self._synthesizer.resolve(
            requested_name,
            description=request.description,
            context=request.context,
            intensity=request.intensity,
        )
        intensity_config = self._config.create_intensity_config(persona, request.intensity)

        routing: dict[str, Any] = {}
        try:
            result_text = await self._generate(text, persona, intensity_config, request.context)
            mode = "generated"
            routing = dict(getattr(self._rewrite_service, "last_routing", {}) or {})
        except GenerationUnavailable:
            result_text = self._rewrite(text, persona, intensity_config)
            mode = "fallback"
        except Exception as error:  # noqa: BLE001
            logger.warning(f"Generation for persona '{name_of(persona)}' failed, using rule-based rewrite: {error}")
            result_text = self._rewrite(text, persona, intensity_config)
            mode = "fallback"

        result_text = self._augment_catchphrase(result_text, name_of(persona), intensity_config.intensity)

        return PersonalizationResult(
            original_text=text,
            result_text=result_text,
            sentiment=self._sentiment.analyze(result_text),
            intensity_config=intensity_config,
            elapsed_ms=self._elapsed_ms(started),
            persona_name=name_of(persona),
            generation_mode=mode,
            routing=routing,
        )

    async def _gate(self, text: str) -> None:
        try:
            verdict = await self._safety.check(text)
        except SafetyCheckError as error:
            policy = self._config.get_safety_config().get("failure_policy", "fail_closed")
            if policy == "fail_open":
                logger.warning(f"Safety check unavailable, continuing under fail_open policy: {error}")
                return
            logger.error(f"Safety check unavailable, rejecting under fail_closed policy: {error}")
            raise PolicyViolation(
                "Content safety check unavailable",
                category="safety-check-unavailable",
            ) from error

        if verdict.is_violation:
            raise PolicyViolation(verdict.reason, category=verdict.category, confidence=verdict.confidence)

    async def _generate(
        self,
        text: str,
        persona: Persona,
        intensity_config: PersonalityIntensityConfig,
        context: str | None,
    ) -> str:
        if self._rewrite_service is None:
            raise GenerationUnavailable("No generation service configured.")
        intensity = intensity_config.intensity
        persona_prompt = build_persona_prompt(persona, intensity, context)
        response = await complete_within(
            self._rewrite_service,
            build_rewrite_message(persona_prompt, text),
            system_prompt=REWRITE_SYSTEM_PROMPT,
            max_tokens=self._rewrite_max_tokens,
            temperature=max(0.1, intensity * 0.2),
            timeout_seconds=self._timeout_seconds,
        )
        generated = str(response or "").strip()
        if not generated:
            raise GenerationFailure("Generation returned empty text.")
        return generated

    def _rewrite(self, text: str, persona: Persona, intensity_config: PersonalityIntensityConfig) -> str:
        sentiment = self._sentiment.analyze(text)
        return self._rewriter.apply(text, sentiment, intensity_config, persona)

    def _augment_catchphrase(self, text: str, name: str, intensity: int | float) -> str:
        entry = NATIVE_CATCHPHRASES.get(name)
        if entry is None or not text.strip():
            return text
        if self._rng.random() >= self._config.catchphrase_probability:
            return text
        if self._rng.random() >= entry.probability * (float(intensity) / 5):
            return text

        phrase = self._rng.choice(entry.phrases)
        position = self._rng.random()
        if position < 0.4:
            return f"{phrase} {text}"
        if position < 0.7:
            return f"{text} {phrase}"
        boundaries = [match.end() for match in _CLAUSE_BOUNDARY.finditer(text)]
        if not boundaries:
            return f"{text} {phrase}"
        cut = self._rng.choice(boundaries)
        return f"{text[:cut]}{phrase} {text[cut:]}"

    def _passthrough_persona(self, name: str) -> Persona:
        if name in BUILTIN_PERSONA_IDS:
            return BuiltinPersona(name)
        record = self._store.get(name)
        if record is None:
            record = PersonaTraitRecord(name=name, description=f"Character: {name}")
        return CustomPersona(record)

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return max(1, int(round((time.perf_counter() - started) * 1000)))

    ###################
    # EXPOSED SURFACE #
    ###################

    async def personalize_text(self, request: PersonalizationRequest | dict[str, Any]) -> PersonalizationResult:
        return await self.process(request)

    async def check_content_safety(self, text: str) -> SafetyVerdict:
        return await self._safety.check(text)

    def add_persona(self, record: PersonaTraitRecord | dict[str, Any]) -> PersonaTraitRecord:
        if isinstance(record, dict):
            try:
                record = PersonaTraitRecord.from_payload(record)
            except ValueError as error:
                raise RequestValidationError(str(error)) from error
        if record.name in BUILTIN_PERSONA_IDS:
            raise RequestValidationError(f"'{record.name}' is reserved for a built-in persona.")
        self._synthesizer.forget(record.name)
        return self._store.upsert(record)

    def remove_persona(self, name: str) -> bool:
        self._synthesizer.forget(name)
        return self._store.remove(name)

    def get_persona(self, name: str) -> PersonaTraitRecord | None:
        return self._store.get(name)

    def list_personas(self) -> list[PersonaTraitRecord]:
        return self._store.list_all()

    def available_personas(self) -> list[str]:
        names = list(BUILTIN_PERSONA_IDS)
        names.extend(name for name in self._store.names() if name not in names)
        return names

    def search_personas(self, query: str) -> list[PersonaTraitRecord]:
        return self._store.search(query)

    def get_personas_by_category(self, category: str) -> list[PersonaTraitRecord]:
        return self._store.by_category(category)

    async def synthesize_persona(self, request: SynthesisRequest | dict[str, Any]) -> SynthesisResult:
        if isinstance(request, dict):
            examples = request.get("examples")
            request = SynthesisRequest(
                name=str(request.get("name", request.get("character_name", request.get("characterName"))) or ""),
                description=_optional_text(request.get("description")),
                context=_optional_text(request.get("context")),
                intensity=request.get("intensity"),
                examples=[str(item) for item in examples] if isinstance(examples, list) else [],
            )
        return await self._synthesizer.synthesize(request)

    async def query_persona_dialect(
        self,
        name: str,
        description: str | None = None,
        context: str | None = None,
    ) -> DialectRecord:
        return await self._dialects.resolve(name, description=description, background=context)

    def clear_persona_cache(self) -> None:
        self._synthesizer.clear_cache()

    def get_persona_cache_stats(self) -> dict[str, Any]:
        return self._synthesizer.cache_stats()

    def get_safety_cache_stats(self) -> dict[str, Any]:
        return self._safety.cache_stats()

    def get_config(self) -> dict[str, Any]:
        return self._config.get()

    def update_config(self, partial: dict[str, Any]) -> dict[str, Any]:
        updated = self._config.update(partial)
        if isinstance(partial, dict) and "safety" in partial:
            self._safety.clear_cache()
        return updated

    def get_safety_config(self) -> dict[str, Any]:
        return self._config.get_safety_config()

    def update_safety_config(self, partial: dict[str, Any]) -> dict[str, Any]:
        updated = self._config.update_safety_config(partial)
        self._safety.clear_cache()
        return updated


__all__ = [
    "NATIVE_CATCHPHRASES",
    "PersonalizationRequest",
    "PersonalizationResult",
    "PipelineOrchestrator",
    "REWRITE_SYSTEM_PROMPT",
    "RequestValidationError",
]
