##########################################################################
#                                                                        #
#  In-memory persona trait registry                                      #
#                                                                        #
##########################################################################

from __future__ import annotations

import copy
import logging
import threading
from dataclasses import dataclass
from typing import Any

from personacraft.persona_models import PersonaTraitRecord


logger = logging.getLogger(__name__)

ORIGIN_PRESET = "preset"
ORIGIN_MANUAL = "manual"
ORIGIN_SYNTHESIZED = "synthesized"
_ORIGINS = {ORIGIN_PRESET, ORIGIN_MANUAL, ORIGIN_SYNTHESIZED}


def _preset_records() -> list[PersonaTraitRecord]:
    return [
        PersonaTraitRecord(
            name="王思聪",
            description="Outspoken heir and investor known for blunt, moneyed quips.",
            category="celebrity",
            attitude="superior",
            signature_phrases=["有钱就是任性", "我交朋友不在乎他有钱没钱", "我说话就这样"],
            tone_words=["呵呵", "行吧", "就这"],
            speech_patterns=["blunt verdicts", "offhand flexing", "short dismissive replies"],
            emoji_preferences=["💰", "🙃", "😎", "🐶"],
            background_context="Grew up wealthy, runs investments and esports teams, comments freely online.",
            language_style="Casual internet slang with a condescending edge",
        ),
        PersonaTraitRecord(
            name="余秋雨",
            description="Essayist whose cultural travel writing leans lyrical and reflective.",
            category="cultural figure",
            attitude="contemplative",
            signature_phrases=["文化的苦旅", "历史在这里沉思", "这是一种文化的乡愁"],
            tone_words=["或许", "终究", "原来"],
            speech_patterns=["long reflective sentences", "historical allusions", "lyrical imagery"],
            emoji_preferences=["📜", "🏯", "🌄", "🍂"],
            background_context="Scholar of drama and culture who travelled widely writing essays on Chinese civilisation.",
            language_style="Elegant literary prose rich with metaphor",
        ),
        PersonaTraitRecord(
            name="鲁迅",
            description="Literary giant of modern Chinese fiction and sharp social critique.",
            category="literary giant",
            attitude="critical",
            signature_phrases=["横眉冷对千夫指", "其实地上本没有路", "不在沉默中爆发，就在沉默中灭亡"],
            tone_words=["然而", "大约", "的确"],
            speech_patterns=["biting irony", "terse declaratives", "allegorical jabs"],
            emoji_preferences=["🖋️", "📖", "🚬", "🤨"],
            background_context="Writer of the early twentieth century who used fiction and essays to criticise society.",
            language_style="Sharp, sardonic vernacular with classical undertones",
        ),
    ]


@dataclass(frozen=True, slots=True)
class StoredPersona:
    record: PersonaTraitRecord
    origin: str
    cache_key: str | None = None


class PersonaTraitStore:
    """Registry of persona trait records keyed by exact name.

    Every write is a full-record replace under the lock so concurrent
    upserts of the same name never leave a mixed record behind.
    """

    def __init__(self, seed_presets: bool = True):
        self._lock = threading.RLock()
        self._entries: dict[str, StoredPersona] = {}
        if seed_presets:
            for record in _preset_records():
                self._entries[record.name] = StoredPersona(record=record, origin=ORIGIN_PRESET)

    def upsert(
        self,
        record: PersonaTraitRecord,
        *,
        origin: str = ORIGIN_MANUAL,
        cache_key: str | None = None,
    ) -> PersonaTraitRecord:
        if not isinstance(record, PersonaTraitRecord):
            raise TypeError("Persona store only accepts PersonaTraitRecord values.")
        if not str(record.name or "").strip():
            raise ValueError("Persona record requires a non-empty name.")
        normalized_origin = origin if origin in _ORIGINS else ORIGIN_MANUAL
        stored = StoredPersona(record=copy.deepcopy(record), origin=normalized_origin, cache_key=cache_key)
        with self._lock:
            replaced = record.name in self._entries
            self._entries[record.name] = stored
        logger.debug(f"Persona '{record.name}' {'replaced' if replaced else 'added'} ({normalized_origin}).")
        return copy.deepcopy(record)

    def get_entry(self, name: str) -> StoredPersona | None:
        with self._lock:
            entry = self._entries.get(str(name or ""))
        if entry is None:
            return None
        return StoredPersona(record=copy.deepcopy(entry.record), origin=entry.origin, cache_key=entry.cache_key)

    def get(self, name: str) -> PersonaTraitRecord | None:
        entry = self.get_entry(name)
        return entry.record if entry is not None else None

    def remove(self, name: str) -> bool:
        with self._lock:
            if name not in self._entries:
                return False
            del self._entries[name]
        logger.info(f"Persona '{name}' removed from store.")
        return True

    def list_all(self) -> list[PersonaTraitRecord]:
        with self._lock:
            entries = list(self._entries.values())
        return [copy.deepcopy(entry.record) for entry in entries]

    def names(self) -> list[str]:
        with self._lock:
            return list(self._entries.keys())

    def search(self, query: str) -> list[PersonaTraitRecord]:
        needle = str(query or "").strip().lower()
        results: list[PersonaTraitRecord] = []
        for record in self.list_all():
            if not needle:
                results.append(record)
                continue
            haystacks = (record.name, record.description, record.category or "")
            if any(needle in str(value).lower() for value in haystacks):
                results.append(record)
        return results

    def by_category(self, category: str) -> list[PersonaTraitRecord]:
        return [record for record in self.list_all() if record.category == category]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> dict[str, Any]:
        with self._lock:
            origins = [entry.origin for entry in self._entries.values()]
        return {
            "total_personas": len(origins),
            "preset": origins.count(ORIGIN_PRESET),
            "manual": origins.count(ORIGIN_MANUAL),
            "synthesized": origins.count(ORIGIN_SYNTHESIZED),
        }


__all__ = [
    "ORIGIN_MANUAL",
    "ORIGIN_PRESET",
    "ORIGIN_SYNTHESIZED",
    "PersonaTraitStore",
    "StoredPersona",
]
