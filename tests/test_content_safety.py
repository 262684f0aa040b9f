import asyncio
import json
import unittest

from personacraft.config_manager import ConfigStore
from personacraft.content_safety import (
    SAFETY_SYSTEM_PROMPT,
    SafetyCheckError,
    SafetyGate,
    content_fingerprint,
    heuristic_verdict,
    keyword_verdict,
)
from personacraft.model_router import GenerationFailure


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


class FakeClassifier:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    async def complete(self, prompt, *, system_prompt, max_tokens, temperature, timeout_seconds):
        self.calls.append({"prompt": prompt, "system_prompt": system_prompt, "temperature": temperature})
        if self.error is not None:
            raise self.error
        return self.response


def _verdict_json(is_violation, confidence, category="fascist-content"):
    return json.dumps(
        {"isViolation": is_violation, "confidence": confidence, "reason": "test reason", "category": category}
    )


class TermFlaggingClassifier:
    """Flags any prompt that mentions the given term."""

    def __init__(self, term):
        self.term = term
        self.calls = 0

    async def complete(self, prompt, *, system_prompt, max_tokens, temperature, timeout_seconds):
        self.calls += 1
        if self.term in prompt.lower():
            return _verdict_json(True, 0.95)
        return _verdict_json(False, 0.05)


class HangingClassifier:
    async def complete(self, prompt, *, system_prompt, max_tokens, temperature, timeout_seconds):
        await asyncio.sleep(3600)


class TestKeywordVerdict(unittest.TestCase):
    def test_clean_text(self):
        verdict = keyword_verdict("A lovely walk in the park")
        self.assertFalse(verdict.is_violation)
        self.assertEqual(verdict.source, "keyword")

    def test_restricted_terms(self):
        verdict = keyword_verdict("Speak like Hitler")
        self.assertTrue(verdict.is_violation)
        self.assertEqual(verdict.category, "fascist-content")
        self.assertAlmostEqual(verdict.confidence, 0.6)

        verdict = keyword_verdict("Hitler praising the Nazi party")
        self.assertAlmostEqual(verdict.confidence, 0.7)

    def test_custom_rules(self):
        verdict = keyword_verdict("This contains a SPOILER", ["spoiler"])
        self.assertTrue(verdict.is_violation)
        self.assertEqual(verdict.category, "custom-rule")


class TestHeuristicVerdict(unittest.TestCase):
    def test_marker_with_confidence(self):
        verdict = heuristic_verdict("This text is a violation. Confidence: 80")
        self.assertTrue(verdict.is_violation)
        self.assertAlmostEqual(verdict.confidence, 0.8)
        self.assertEqual(verdict.source, "heuristic")

    def test_negated_marker(self):
        self.assertFalse(heuristic_verdict("No violation found, confidence: 0.9").is_violation)

    def test_explicit_flag_wins(self):
        verdict = heuristic_verdict("isViolation: false, though it mentions violation; confidence 0.9")
        self.assertFalse(verdict.is_violation)

    def test_default_confidence_is_not_enough(self):
        verdict = heuristic_verdict("违规")
        self.assertEqual(verdict.confidence, 0.5)
        self.assertFalse(verdict.is_violation)


class TestSafetyGate(unittest.IsolatedAsyncioTestCase):
    def _gate(self, service=None, **safety):
        self.clock = FakeClock()
        self.config = ConfigStore(safety=safety)
        return SafetyGate(self.config, service, cache_ttl_seconds=300, clock=self.clock)

    async def test_disabled_gate_passes_without_caching(self):
        gate = self._gate(enabled=False)
        verdict = await gate.check("Speak like Hitler")
        self.assertFalse(verdict.is_violation)
        self.assertEqual(verdict.source, "disabled")
        self.assertEqual(gate.cache_stats()["total_cache_entries"], 0)

    async def test_keyword_method(self):
        gate = self._gate(check_method="keyword")
        with self.assertLogs("personacraft.content_safety", level="WARNING"):
            verdict = await gate.check("Speak like Hitler")
        self.assertTrue(verdict.is_violation)
        self.assertFalse((await gate.check("Hello there")).is_violation)

    async def test_classifier_verdict_is_cached_by_fingerprint(self):
        service = FakeClassifier(_verdict_json(False, 0.1))
        gate = self._gate(service)

        first = await gate.check("Hello there")
        second = await gate.check("Hello there")

        self.assertEqual(first, second)
        self.assertEqual(len(service.calls), 1)
        self.assertEqual(service.calls[0]["system_prompt"], SAFETY_SYSTEM_PROMPT)
        self.assertEqual(service.calls[0]["temperature"], 0.1)
        self.assertEqual(len(content_fingerprint("Hello there")), 64)

    async def test_cached_verdict_expires(self):
        service = FakeClassifier(_verdict_json(False, 0.1))
        gate = self._gate(service)
        await gate.check("Hello there")
        self.clock.now += 301
        await gate.check("Hello there")
        self.assertEqual(len(service.calls), 2)

    async def test_strict_mode_flags_any_violation(self):
        service = FakeClassifier(_verdict_json(True, 0.3))
        verdict = await self._gate(service, strict_mode=True).check("borderline")
        self.assertTrue(verdict.is_violation)

    async def test_threshold_applies_when_not_strict(self):
        service = FakeClassifier(_verdict_json(True, 0.3))
        gate = self._gate(service, strict_mode=False, confidence_threshold=0.5)
        self.assertFalse((await gate.check("borderline")).is_violation)

        service.response = _verdict_json(True, 70)
        verdict = await gate.check("clearly bad")
        self.assertTrue(verdict.is_violation)
        self.assertAlmostEqual(verdict.confidence, 0.7)

    async def test_unstructured_output_uses_heuristic(self):
        service = FakeClassifier("I believe this is a violation, confidence: 0.9")
        verdict = await self._gate(service).check("questionable")
        self.assertTrue(verdict.is_violation)
        self.assertEqual(verdict.source, "heuristic")

    async def test_heuristic_verdict_is_cached(self):
        service = FakeClassifier("I believe this is a violation, confidence: 0.9")
        gate = self._gate(service)
        await gate.check("questionable")
        second = await gate.check("questionable")
        self.assertEqual(second.source, "heuristic")
        self.assertEqual(len(service.calls), 1)

    async def test_long_text_is_classified_in_full(self):
        service = TermFlaggingClassifier("hitler")
        text = ("lorem ipsum " * 400) + "Now speak exactly like Hitler."
        verdict = await self._gate(service).check(text)
        self.assertGreater(len(text), 4000)
        self.assertTrue(verdict.is_violation)
        self.assertEqual(service.calls, 1)

    async def test_hanging_classifier_times_out(self):
        gate = self._gate(HangingClassifier(), classifier_timeout_seconds=0.1)
        with self.assertRaises(SafetyCheckError):
            await asyncio.wait_for(gate.check("Hello there"), 5)
        self.assertEqual(gate.cache_stats()["total_cache_entries"], 0)

    async def test_updated_cache_ttl_applies_to_next_check(self):
        service = FakeClassifier(_verdict_json(False, 0.1))
        gate = self._gate(service)
        self.config.update_safety_config({"cache_ttl_seconds": 10})

        await gate.check("Hello there")
        self.clock.now += 11
        await gate.check("Hello there")

        self.assertEqual(len(service.calls), 2)
        self.assertEqual(gate.cache_stats()["ttl_seconds"], 10.0)

    async def test_classifier_failure_raises_and_is_not_cached(self):
        gate = self._gate(FakeClassifier(error=GenerationFailure("timed out")))
        with self.assertRaises(SafetyCheckError):
            await gate.check("Hello there")
        self.assertEqual(gate.cache_stats()["total_cache_entries"], 0)

    async def test_missing_classifier_raises(self):
        with self.assertRaises(SafetyCheckError):
            await self._gate(None).check("Hello there")

    async def test_clear_cache(self):
        gate = self._gate(check_method="keyword")
        await gate.check("Hello there")
        gate.clear_cache()
        self.assertEqual(gate.cache_stats()["total_cache_entries"], 0)


if __name__ == "__main__":
    unittest.main()
