##########################################################################
#                                                                        #
#  Persona, dialect and intensity records shared across the pipeline     #
#                                                                        #
##########################################################################

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Union


BUILTIN_PERSONA_IDS: tuple[str, ...] = ("enthusiastic", "sarcastic", "professional")
MOCKING_PERSONA_IDS: frozenset[str] = frozenset({"sarcastic"})
MOCKING_ATTITUDES: frozenset[str] = frozenset({"sarcastic", "mocking", "cynical"})
MIN_INTENSITY = 0
MAX_INTENSITY = 5


def _as_text(value: Any, fallback: str = "") -> str:
    text = str(value if value is not None else "").strip()
    return text if text else fallback


def _as_text_list(value: Any) -> list[str]:
    if not isinstance(value, (list, tuple)):
        return []
    return [str(item).strip() for item in value if str(item if item is not None else "").strip()]


@dataclass(slots=True)
class DialectRecord:
    name: str
    region: str
    characteristics: list[str] = field(default_factory=list)
    common_phrases: list[str] = field(default_factory=list)
    pronunciation_notes: list[str] = field(default_factory=list)
    slang_words: list[str] = field(default_factory=list)
    grammar_patterns: list[str] = field(default_factory=list)
    example_sentences: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "DialectRecord":
        """Build a record from a camelCase or snake_case mapping.

        Raises ``ValueError`` when ``name`` or ``region`` is missing; the two
        fields are what make a dialect record usable at all.
        """
        if not isinstance(payload, dict):
            raise ValueError("Dialect payload must be an object.")
        name = _as_text(payload.get("name"))
        region = _as_text(payload.get("region"))
        if not name or not region:
            raise ValueError("Dialect payload is missing name or region.")

        def _field(snake: str, camel: str) -> list[str]:
            return _as_text_list(payload.get(snake, payload.get(camel)))

        return cls(
            name=name,
            region=region,
            characteristics=_field("characteristics", "characteristics"),
            common_phrases=_field("common_phrases", "commonPhrases"),
            pronunciation_notes=_field("pronunciation_notes", "pronunciationNotes"),
            slang_words=_field("slang_words", "slangWords"),
            grammar_patterns=_field("grammar_patterns", "grammarPatterns"),
            example_sentences=_field("example_sentences", "exampleSentences"),
        )


@dataclass(slots=True)
class PersonaTraitRecord:
    name: str
    description: str
    attitude: str = "friendly"
    category: str | None = None
    signature_phrases: list[str] = field(default_factory=list)
    tone_words: list[str] = field(default_factory=list)
    speech_patterns: list[str] = field(default_factory=list)
    emoji_preferences: list[str] = field(default_factory=list)
    background_context: str = ""
    language_style: str = ""
    dialect: DialectRecord | None = None
    examples: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "PersonaTraitRecord":
        if not isinstance(payload, dict):
            raise ValueError("Persona payload must be an object.")
        name = _as_text(payload.get("name"))
        if not name:
            raise ValueError("Persona payload is missing a name.")

        def _list(snake: str, camel: str) -> list[str]:
            return _as_text_list(payload.get(snake, payload.get(camel)))

        dialect_payload = payload.get("dialect")
        dialect = None
        if isinstance(dialect_payload, DialectRecord):
            dialect = dialect_payload
        elif isinstance(dialect_payload, dict):
            dialect = DialectRecord.from_payload(dialect_payload)

        return cls(
            name=name,
            description=_as_text(payload.get("description"), f"Character: {name}"),
            attitude=_as_text(payload.get("attitude"), "friendly"),
            category=_as_text(payload.get("category")) or None,
            signature_phrases=_list("signature_phrases", "signaturePhrases"),
            tone_words=_list("tone_words", "toneWords"),
            speech_patterns=_list("speech_patterns", "speechPatterns"),
            emoji_preferences=_list("emoji_preferences", "emojiPreferences"),
            background_context=_as_text(payload.get("background_context", payload.get("backgroundContext"))),
            language_style=_as_text(payload.get("language_style", payload.get("languageStyle"))),
            dialect=dialect,
            examples=_list("examples", "examples"),
        )


@dataclass(frozen=True, slots=True)
class BuiltinPersona:
    persona_id: str


@dataclass(frozen=True, slots=True)
class CustomPersona:
    record: PersonaTraitRecord


Persona = Union[BuiltinPersona, CustomPersona]


def persona_name(persona: Persona) -> str:
    match persona:
        case BuiltinPersona(persona_id=persona_id):
            return persona_id
        case CustomPersona(record=record):
            return record.name
    raise TypeError(f"Unsupported persona type: {type(persona).__name__}")


def is_mocking_persona(persona: Persona) -> bool:
    match persona:
        case BuiltinPersona(persona_id=persona_id):
            return persona_id in MOCKING_PERSONA_IDS
        case CustomPersona(record=record):
            return _as_text(record.attitude).lower() in MOCKING_ATTITUDES
    raise TypeError(f"Unsupported persona type: {type(persona).__name__}")


def clamp_intensity(value: Any, maximum: float = MAX_INTENSITY) -> int | float:
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        numeric = float(MIN_INTENSITY)
    if numeric != numeric:  # NaN
        numeric = float(MIN_INTENSITY)
    upper = max(float(MIN_INTENSITY), min(float(MAX_INTENSITY), float(maximum)))
    clamped = max(float(MIN_INTENSITY), min(upper, numeric))
    return int(clamped) if clamped.is_integer() else clamped


@dataclass(frozen=True, slots=True)
class PersonalityIntensityConfig:
    persona_name: str
    intensity: int | float
    use_emojis: bool
    allow_strong_language: bool

    @classmethod
    def build(
        cls,
        persona: Persona,
        intensity: Any,
        max_intensity: float = MAX_INTENSITY,
    ) -> "PersonalityIntensityConfig":
        normalized = clamp_intensity(intensity, max_intensity)
        return cls(
            persona_name=persona_name(persona),
            intensity=normalized,
            use_emojis=normalized > 1,
            allow_strong_language=normalized >= 4 and is_mocking_persona(persona),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class SentimentResult:
    tag: str
    confidence: float
    matched_keywords: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class SafetyVerdict:
    is_violation: bool
    confidence: float
    reason: str | None = None
    category: str | None = None
    source: str = "classifier"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


__all__ = [
    "BUILTIN_PERSONA_IDS",
    "BuiltinPersona",
    "CustomPersona",
    "DialectRecord",
    "MAX_INTENSITY",
    "MIN_INTENSITY",
    "Persona",
    "PersonaTraitRecord",
    "PersonalityIntensityConfig",
    "SafetyVerdict",
    "SentimentResult",
    "clamp_intensity",
    "is_mocking_persona",
    "persona_name",
]
