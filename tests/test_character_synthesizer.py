import asyncio
import json
import unittest

from personacraft.character_synthesizer import (
    TRAIT_SYSTEM_PROMPT,
    CharacterSynthesizer,
    SynthesisRequest,
    infer_attitude,
    infer_category,
)
from personacraft.dialect_resolver import DIALECT_SYSTEM_PROMPT, DialectResolver
from personacraft.model_router import GenerationFailure
from personacraft.persona_models import BuiltinPersona, CustomPersona
from personacraft.persona_store import ORIGIN_SYNTHESIZED, PersonaTraitStore


TRAIT_PAYLOAD = {
    "signaturePhrases": ["Ahoy", "Shiver me timbers"],
    "toneWords": ["arr"],
    "attitude": "gruff",
    "speechPatterns": ["nautical metaphors"],
    "backgroundContext": "Sailed the Caribbean",
    "emojiPreferences": ["⚓"],
    "languageStyle": "Salty",
}
DIALECT_PAYLOAD = {"name": "Pirate cant", "region": "Caribbean", "commonPhrases": ["matey"]}


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class RoutedService:
    """Answers trait and dialect prompts separately, keyed by system prompt."""

    def __init__(self, trait=None, dialect=None):
        self.responses = {
            TRAIT_SYSTEM_PROMPT: trait if trait is not None else json.dumps(TRAIT_PAYLOAD),
            DIALECT_SYSTEM_PROMPT: dialect if dialect is not None else json.dumps(DIALECT_PAYLOAD),
        }
        self.calls = []

    async def complete(self, prompt, *, system_prompt, max_tokens, temperature, timeout_seconds):
        self.calls.append(system_prompt)
        await asyncio.sleep(0)
        response = self.responses[system_prompt]
        if isinstance(response, Exception):
            raise response
        return response

    def count(self, system_prompt):
        return self.calls.count(system_prompt)


class HangingService:
    async def complete(self, prompt, *, system_prompt, max_tokens, temperature, timeout_seconds):
        await asyncio.sleep(3600)


class TestKeywordInference(unittest.TestCase):
    def test_category(self):
        self.assertEqual(infer_category("Math Teacher"), "professional")
        self.assertEqual(infer_category("哆啦A梦"), "anime")
        self.assertEqual(infer_category("Zork"), "custom")

    def test_attitude(self):
        self.assertEqual(infer_attitude("My old buddy")[0], "friendly")
        self.assertEqual(infer_attitude("The Boss")[0], "superior")
        self.assertEqual(infer_attitude("Zork"), ("friendly", ["😊", "👍", "✨", "💫"]))


class TestCharacterSynthesizer(unittest.IsolatedAsyncioTestCase):
    def _build(self, service=None, store=None, clock=None):
        self.store = store if store is not None else PersonaTraitStore(seed_presets=False)
        self.clock = clock if clock is not None else FakeClock()
        return CharacterSynthesizer(
            self.store,
            DialectResolver(service),
            service,
            cache_ttl_seconds=1800,
            clock=self.clock,
        )

    async def test_builtin_never_calls_service(self):
        service = RoutedService()
        synthesizer = self._build(service)
        persona = await synthesizer.resolve("sarcastic")
        self.assertEqual(persona, BuiltinPersona("sarcastic"))
        self.assertEqual(service.calls, [])

    async def test_empty_name_is_rejected(self):
        with self.assertRaises(ValueError):
            await self._build().resolve("   ")

    async def test_unknown_name_offline_uses_local_fallbacks(self):
        persona = await self._build().resolve("Zork")

        self.assertIsInstance(persona, CustomPersona)
        record = persona.record
        self.assertEqual(record.category, "custom")
        self.assertEqual(record.dialect.name, "Standard Mandarin")
        self.assertEqual(record.dialect.region, "Nationwide")
        self.assertEqual(record.description, "Character: Zork")
        self.assertEqual(record.signature_phrases[0], "I am Zork")
        self.assertEqual(record.attitude, "friendly")

    async def test_stored_manual_record_is_returned_without_synthesis(self):
        store = PersonaTraitStore()
        service = RoutedService()
        persona = await self._build(service, store=store).resolve("鲁迅")
        self.assertEqual(persona.record.category, "literary giant")
        self.assertEqual(service.calls, [])

    async def test_generated_traits_and_dialect_are_combined(self):
        service = RoutedService()
        persona = await self._build(service).resolve("Pirate Pete", description="A pirate")

        record = persona.record
        self.assertEqual(record.signature_phrases, ["Ahoy", "Shiver me timbers"])
        self.assertEqual(record.attitude, "gruff")
        self.assertEqual(record.dialect.name, "Pirate cant")
        self.assertEqual(record.description, "A pirate")
        entry = self.store.get_entry("Pirate Pete")
        self.assertEqual(entry.origin, ORIGIN_SYNTHESIZED)
        self.assertEqual(entry.cache_key, "Pirate Pete-A pirate-3")

    async def test_dialect_failure_keeps_generated_traits(self):
        service = RoutedService(dialect=GenerationFailure("dialect model down"))
        persona = await self._build(service).resolve("Pirate Pete")

        self.assertEqual(persona.record.tone_words, ["arr"])
        self.assertEqual(persona.record.dialect.name, "Standard Mandarin")

    async def test_trait_failure_keeps_generated_dialect(self):
        service = RoutedService(trait="not json at all")
        persona = await self._build(service).resolve("Pirate Pete")

        self.assertEqual(persona.record.signature_phrases[0], "I am Pirate Pete")
        self.assertEqual(persona.record.dialect.name, "Pirate cant")

    async def test_repeat_resolve_hits_cache(self):
        service = RoutedService()
        synthesizer = self._build(service)
        first = await synthesizer.resolve("Pirate Pete")
        second = await synthesizer.resolve("Pirate Pete")

        self.assertEqual(first, second)
        self.assertEqual(service.count(TRAIT_SYSTEM_PROMPT), 1)
        self.assertEqual(synthesizer.cache_stats()["total_cache_entries"], 1)

    async def test_clear_cache_forces_one_fresh_synthesis(self):
        service = RoutedService()
        synthesizer = self._build(service)
        await synthesizer.resolve("Pirate Pete")

        synthesizer.clear_cache()
        await synthesizer.resolve("Pirate Pete")

        self.assertEqual(service.count(TRAIT_SYSTEM_PROMPT), 2)
        self.assertEqual(synthesizer.cache_stats()["total_cache_entries"], 1)
        self.assertEqual(self.store.names(), ["Pirate Pete"])

    async def test_expired_entry_is_synthesized_again(self):
        service = RoutedService()
        synthesizer = self._build(service)
        await synthesizer.resolve("Pirate Pete")
        self.clock.now += 1801
        await synthesizer.resolve("Pirate Pete")
        self.assertEqual(service.count(TRAIT_SYSTEM_PROMPT), 2)

    async def test_live_synthesized_record_is_reused_for_other_keys(self):
        service = RoutedService()
        synthesizer = self._build(service)
        await synthesizer.resolve("Pirate Pete", intensity=2)
        await synthesizer.resolve("Pirate Pete", intensity=5)

        self.assertEqual(service.count(TRAIT_SYSTEM_PROMPT), 1)
        self.assertEqual(self.store.get_entry("Pirate Pete").cache_key, "Pirate Pete--2")

    async def test_concurrent_resolves_leave_one_record(self):
        service = RoutedService()
        synthesizer = self._build(service)
        first, second = await asyncio.gather(
            synthesizer.resolve("Pirate Pete"),
            synthesizer.resolve("Pirate Pete"),
        )

        self.assertEqual(first.record, second.record)
        self.assertEqual(self.store.names(), ["Pirate Pete"])
        self.assertEqual(synthesizer.cache_stats()["total_cache_entries"], 1)
        stored = self.store.get("Pirate Pete")
        self.assertEqual(stored.signature_phrases, ["Ahoy", "Shiver me timbers"])
        self.assertEqual(stored.dialect.name, "Pirate cant")

    async def test_hanging_service_falls_back_within_timeout(self):
        service = HangingService()
        self.store = PersonaTraitStore(seed_presets=False)
        synthesizer = CharacterSynthesizer(
            self.store,
            DialectResolver(service, timeout_seconds=0.1),
            service,
            timeout_seconds=0.1,
        )

        with self.assertLogs("personacraft.character_synthesizer", level="WARNING"):
            persona = await asyncio.wait_for(synthesizer.resolve("Pirate Pete"), 5)

        self.assertEqual(persona.record.signature_phrases[0], "I am Pirate Pete")
        self.assertEqual(persona.record.dialect.name, "Standard Mandarin")

    async def test_forget_drops_entries_for_name(self):
        synthesizer = self._build()
        await synthesizer.resolve("Zork")
        await synthesizer.synthesize(SynthesisRequest(name="Zork", description="second"))
        await synthesizer.resolve("Other")

        self.assertEqual(synthesizer.forget("Zork"), 2)
        self.assertEqual(synthesizer.cache_stats()["total_cache_entries"], 1)

    async def test_synthesize_reports_outcome(self):
        synthesizer = self._build()
        result = await synthesizer.synthesize(SynthesisRequest(name="Zork", examples=["Hello sailor"]))
        self.assertTrue(result.success)
        self.assertEqual(result.persona.examples, ["Hello sailor"])

        builtin = await synthesizer.synthesize(SynthesisRequest(name="professional"))
        self.assertFalse(builtin.success)
        self.assertIsNone(builtin.persona)

        empty = await synthesizer.synthesize(SynthesisRequest(name=""))
        self.assertFalse(empty.success)


if __name__ == "__main__":
    unittest.main()
