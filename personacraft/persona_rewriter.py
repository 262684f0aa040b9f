##########################################################################
#                                                                        #
#  Rule-based persona rewriting used when generation is unavailable      #
#                                                                        #
##########################################################################

from __future__ import annotations

import random
import re
from dataclasses import dataclass
from typing import Any

from personacraft.persona_models import (
    BuiltinPersona,
    CustomPersona,
    Persona,
    PersonaTraitRecord,
    PersonalityIntensityConfig,
    SentimentResult,
)


@dataclass(frozen=True, slots=True)
class RewriteTraits:
    prefixes: tuple[str, ...]
    suffixes: tuple[str, ...]
    intensifiers: tuple[str, ...]
    emojis: tuple[str, ...]


BUILTIN_TRAITS: dict[str, RewriteTraits] = {
    "enthusiastic": RewriteTraits(
        prefixes=("Wow! ", "Awesome! ", "Fantastic! ", "Hell yeah! ", "Sweet! "),
        suffixes=("! 🚀", "! 💪", "! 🎉", "! 🔥", "! ✨"),
        intensifiers=("absolutely", "completely", "totally", "incredibly", "amazingly"),
        emojis=("🚀", "💪", "🎉", "🔥", "✨", "⭐", "🌟"),
    ),
    "sarcastic": RewriteTraits(
        prefixes=("Well... ", "Oh great... ", "Surprise surprise... ", "How shocking... ", "Yay... "),
        suffixes=(". 💅", ". 🙃", ". 😒", ". 🎭", ". 👀"),
        intensifiers=("sooo", "obviously", "definitely", "clearly"),
        emojis=("💅", "🙃", "😒", "🎭", "👀", "🤔", "😏"),
    ),
    "professional": RewriteTraits(
        prefixes=("Indeed, ", "Certainly, ", "Absolutely, ", "Excellent, ", "Great, "),
        suffixes=(".", "! 🙂", ".", "! 👍"),
        intensifiers=("quite", "rather", "fairly", "notably"),
        emojis=("👍", "🙂", "💼", "📊", "🎯"),
    ),
}

SIGNATURE_PHRASE_PROBABILITY = 0.3
TONE_WORD_PROBABILITY = 0.4

_CJK = re.compile(r"[㐀-鿿豈-﫿]")


def _sentiment_tag(sentiment: Any) -> str:
    if isinstance(sentiment, SentimentResult):
        return sentiment.tag
    return str(sentiment or "neutral")


def _clause_separator(text: str) -> str:
    return "，" if _CJK.search(text) else ", "


class PersonaRewriter:
    """Decorates text with persona prefixes, intensifiers, suffixes and emojis.

    Text is split on single spaces and every original token is kept intact and
    in order; decorations are only ever placed between tokens or at the ends,
    so the output is never shorter than the input. Empty or whitespace-only
    text is returned unchanged.
    """

    def __init__(self, rng: random.Random | None = None):
        self._rng = rng if rng is not None else random.Random()

    def apply(
        self,
        text: str,
        sentiment: SentimentResult | str,
        intensity_config: PersonalityIntensityConfig,
        persona: Persona,
    ) -> str:
        if not str(text or "").strip():
            return text

        match persona:
            case BuiltinPersona(persona_id=persona_id):
                traits = BUILTIN_TRAITS.get(persona_id)
                if traits is None:
                    raise KeyError(f"Unknown built-in persona: {persona_id}")
                return self._apply_builtin(text, _sentiment_tag(sentiment), intensity_config, persona_id, traits)
            case CustomPersona(record=record):
                return self._apply_custom(text, intensity_config, record)
        raise TypeError(f"Unsupported persona type: {type(persona).__name__}")

    def _apply_builtin(
        self,
        text: str,
        sentiment_tag: str,
        config: PersonalityIntensityConfig,
        persona_id: str,
        traits: RewriteTraits,
    ) -> str:
        intensity = config.intensity
        prefix = self._select_prefix(persona_id, sentiment_tag, traits) if intensity >= 3 else ""

        tokens = text.split(" ")
        if intensity >= 2:
            self._insert_intensifier(tokens, traits.intensifiers)

        suffix = ""
        if intensity >= 3:
            suffix = self._rng.choice(traits.suffixes)
        elif intensity >= 2:
            suffix = traits.suffixes[0]

        result = prefix + " ".join(tokens) + suffix
        if config.use_emojis and intensity >= 4:
            result = self._insert_emojis(result, traits.emojis, intensity)
        return result

    def _apply_custom(
        self,
        text: str,
        config: PersonalityIntensityConfig,
        record: PersonaTraitRecord,
    ) -> str:
        intensity = config.intensity
        separator = _clause_separator(text)

        prefix = ""
        if intensity >= 3 and record.signature_phrases and self._rng.random() < SIGNATURE_PHRASE_PROBABILITY:
            prefix = self._rng.choice(record.signature_phrases) + separator

        tokens = text.split(" ")
        suffix = ""
        if intensity >= 2 and record.tone_words:
            if self._rng.random() < TONE_WORD_PROBABILITY:
                self._insert_intensifier(tokens, record.tone_words)
            if self._rng.random() < TONE_WORD_PROBABILITY:
                suffix = separator + self._rng.choice(record.tone_words)

        result = prefix + " ".join(tokens) + suffix
        if config.use_emojis and intensity >= 4 and record.emoji_preferences:
            result = self._insert_emojis(result, record.emoji_preferences, intensity)
        return result

    def _select_prefix(self, persona_id: str, sentiment_tag: str, traits: RewriteTraits) -> str:
        if persona_id == "enthusiastic" and sentiment_tag == "positive":
            return self._rng.choice(traits.prefixes)
        if persona_id == "sarcastic" and sentiment_tag == "negative":
            return self._rng.choice(traits.prefixes)
        if persona_id == "professional":
            return self._rng.choice(traits.prefixes[:3])
        return ""

    def _insert_intensifier(self, tokens: list[str], choices: tuple[str, ...] | list[str]) -> None:
        if len(tokens) <= 3 or not choices:
            return
        tokens.insert(len(tokens) // 3, self._rng.choice(choices))

    def _insert_emojis(self, text: str, emojis: tuple[str, ...] | list[str], intensity: int | float) -> str:
        count = min(int(intensity) - 3, 2)
        if count <= 0 or not emojis:
            return text
        tokens = text.split(" ")
        for _ in range(count):
            tokens.insert(self._rng.randint(0, len(tokens)), self._rng.choice(emojis))
        return " ".join(tokens)


__all__ = ["BUILTIN_TRAITS", "PersonaRewriter", "RewriteTraits"]
