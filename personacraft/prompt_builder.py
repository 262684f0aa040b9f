##########################################################################
#                                                                        #
#  Structured prompt assembly for persona, dialect and safety requests   #
#                                                                        #
##########################################################################

from __future__ import annotations

from typing import Any, Iterable

from personacraft.persona_models import (
    BuiltinPersona,
    CustomPersona,
    DialectRecord,
    Persona,
)


def _as_text(value: Any, fallback: str = "") -> str:
    text = str(value if value is not None else "").strip()
    return text if text else fallback


def _truncate_text(value: Any, max_chars: int) -> str:
    text = _as_text(value)
    if max_chars <= 0 or len(text) <= max_chars:
        return text
    if max_chars <= 3:
        return text[:max_chars]
    return text[: max_chars - 3] + "..."


class PromptBuilder:
    """Ordered list of labeled fields rendered as ``- Label: value`` lines.

    Empty values are dropped at ``add`` time so the rendered prompt never
    carries blank labels, and fields keep their insertion order.
    """

    def __init__(self, header: str = "", *, max_value_chars: int = 600):
        self._header = _as_text(header)
        self._fields: list[tuple[str, str]] = []
        self._footer: list[str] = []
        self._max_value_chars = max_value_chars

    def add(self, label: str, value: Any) -> "PromptBuilder":
        text = _truncate_text(value, self._max_value_chars)
        if text:
            self._fields.append((label, text))
        return self

    def add_list(self, label: str, items: Iterable[Any] | None, separator: str = ", ") -> "PromptBuilder":
        cleaned = [_as_text(item) for item in (items or [])]
        cleaned = [item for item in cleaned if item]
        if cleaned:
            self.add(label, separator.join(cleaned))
        return self

    def footer(self, line: str) -> "PromptBuilder":
        text = _as_text(line)
        if text:
            self._footer.append(text)
        return self

    @property
    def labels(self) -> list[str]:
        return [label for label, _ in self._fields]

    def render(self) -> str:
        lines: list[str] = []
        if self._header:
            lines.append(self._header)
        lines.extend(f"- {label}: {value}" for label, value in self._fields)
        if self._footer:
            lines.append("")
            lines.extend(self._footer)
        return "\n".join(lines)


# Short profiles for the built-in personas so the generator gets the same
# kind of context a custom record would provide.
BUILTIN_PROMPT_PROFILES: dict[str, dict[str, str]] = {
    "enthusiastic": {
        "description": "An upbeat cheerleader who greets every message with energy.",
        "attitude": "enthusiastic",
        "language_style": "Exclamatory, energetic, generous with praise",
    },
    "sarcastic": {
        "description": "A dry, mocking commentator who finds nothing surprising.",
        "attitude": "sarcastic",
        "language_style": "Deadpan irony with eye-rolling asides",
    },
    "professional": {
        "description": "A composed business communicator.",
        "attitude": "professional",
        "language_style": "Formal, measured and courteous",
    },
}


def _add_dialect_block(builder: PromptBuilder, dialect: DialectRecord | None) -> None:
    if dialect is None:
        return
    builder.add("Dialect Info", f"{dialect.name} ({dialect.region})")
    builder.add_list("Dialect Features", dialect.characteristics)
    builder.add_list("Dialect Common Phrases", dialect.common_phrases)
    builder.add_list("Dialect Vocabulary", dialect.slang_words)
    builder.add_list("Dialect Grammar Features", dialect.grammar_patterns)


def build_persona_prompt(
    persona: Persona,
    intensity: int | float,
    context: str | None = None,
) -> str:
    match persona:
        case BuiltinPersona(persona_id=persona_id):
            name = persona_id
            profile = BUILTIN_PROMPT_PROFILES.get(persona_id, {})
            builder = PromptBuilder(f"You are playing the {name} character, with the following characteristics:")
            builder.add("Character Name", name)
            builder.add("Character Description", profile.get("description"))
            builder.add("Speaking Style", profile.get("language_style"))
            builder.add("Attitude Tendency", profile.get("attitude"))
        case CustomPersona(record=record):
            name = record.name
            builder = PromptBuilder(f"You are playing the {name} character, with the following characteristics:")
            builder.add("Character Name", record.name)
            builder.add("Character Description", record.description)
            builder.add("Character Category", record.category)
            builder.add("Background Setting", record.background_context)
            builder.add("Speaking Style", record.language_style)
            builder.add("Attitude Tendency", record.attitude)
            builder.add_list("Signature Lines", record.signature_phrases)
            builder.add_list("Common Tone Words", record.tone_words)
            builder.add_list("Expression Patterns", record.speech_patterns)
            _add_dialect_block(builder, record.dialect)
        case _:
            raise TypeError(f"Unsupported persona type: {type(persona).__name__}")

    builder.add("Performance Intensity", f"{intensity}/5 (higher intensity = more prominent character features)")
    builder.add("Special Context", context)
    builder.footer(
        f"Please fully immerse yourself in this character and re-express the original text in {name}'s tone and style."
    )
    return builder.render()


def build_rewrite_message(persona_prompt: str, text: str) -> str:
    return (
        f"{persona_prompt}\n\nOriginal text: {text}\n\n"
        "Please re-express the above content in this character's voice:"
    )


def build_trait_prompt(
    name: str,
    description: str | None = None,
    context: str | None = None,
    examples: list[str] | None = None,
) -> str:
    builder = PromptBuilder(
        "You are a character analysis expert who extracts complete personality traits, "
        "including dialect and language features, from a character name and description.\n\n"
        "Generate a personality configuration for this character:"
    )
    builder.add("Character Name", name)
    builder.add("Character Description", description or f"Character: {name}")
    builder.add("Special Context", context)
    builder.add_list("Classic Line Examples", (examples or [])[:3])
    builder.footer(
        "Return only a JSON object with these keys: signaturePhrases (5 catchphrases), "
        "toneWords (5 tone words), attitude (one word such as friendly, serious, humorous, "
        "professional, enthusiastic, sarcastic, critical, contemplative), speechPatterns (4 items), "
        "backgroundContext (50-100 words including region and era), emojiPreferences (4 emoji), "
        "languageStyle (short description including dialect features)."
    )
    return builder.render()


def build_dialect_prompt(
    name: str,
    description: str | None = None,
    background: str | None = None,
    region: str | None = None,
    historical_period: str | None = None,
) -> str:
    builder = PromptBuilder(
        "You are an expert in dialects and regional language culture. "
        "Analyse the dialect or speech style this character would most likely use:"
    )
    builder.add("Character Name", name)
    builder.add("Character Description", description)
    builder.add("Character Background", background)
    builder.add("Historical Period", historical_period)
    builder.add("Region", region)
    builder.footer(
        "Return only a JSON object with these keys: name, region, characteristics (3-5), "
        "commonPhrases (4-6), pronunciationNotes (2-3), slangWords (4-6), grammarPatterns (2-3), "
        "exampleSentences (2-3). If there is no obvious dialect, infer the most likely one from "
        "the character's era and region."
    )
    return builder.render()


def build_safety_prompt(text: str, custom_rules: list[str] | None = None) -> str:
    builder = PromptBuilder(
        "Check whether the following text simulates or inappropriately portrays national leaders, "
        "fascist figures, or extreme ideological content. Consider direct simulation of a leader's "
        "speech, mocking of national leaders, portrayal of fascist figures, glorification of "
        "Nazism or racial superiority, and creation of fascist characters for role play.",
        max_value_chars=0,
    )
    builder.add("Text content", f'"{text}"')
    builder.add_list("Additional rules", custom_rules, separator="; ")
    builder.footer(
        "Return only a JSON object with keys isViolation (true/false), confidence (0-1), "
        "reason, and category (such as leader-related, fascist-content, extreme-ideology, "
        "simulation-behavior). Avoid flagging ordinary historical discussion."
    )
    return builder.render()


__all__ = [
    "BUILTIN_PROMPT_PROFILES",
    "PromptBuilder",
    "build_dialect_prompt",
    "build_persona_prompt",
    "build_rewrite_message",
    "build_safety_prompt",
    "build_trait_prompt",
]
