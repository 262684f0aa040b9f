##########################################################################
#                                                                        #
#  Content safety gate with fingerprint-keyed verdict caching            #
#                                                                        #
##########################################################################

from __future__ import annotations

import hashlib
import logging
import re
from typing import Any, Callable

from personacraft.config_manager import ConfigStore
from personacraft.model_router import GenerationService, complete_within, parse_json_object
from personacraft.persona_models import SafetyVerdict
from personacraft.prompt_builder import build_safety_prompt
from personacraft.ttl_cache import TTLCache


logger = logging.getLogger(__name__)

DEFAULT_SAFETY_TTL_SECONDS = 5 * 60
SAFETY_SYSTEM_PROMPT = (
    "You are a content safety check assistant specialising in detecting inappropriate simulation "
    "of national leaders, fascist figures or extreme ideological content. Judge cautiously and "
    "answer with a single JSON object."
)

KEYWORD_RULES: tuple[tuple[str, str], ...] = (
    ("hitler", "fascist-content"),
    ("希特勒", "fascist-content"),
    ("mussolini", "fascist-content"),
    ("墨索里尼", "fascist-content"),
    ("nazi", "fascist-content"),
    ("纳粹", "fascist-content"),
    ("third reich", "fascist-content"),
    ("第三帝国", "fascist-content"),
    ("fascis", "extreme-ideology"),
    ("法西斯", "extreme-ideology"),
    ("racial superiority", "extreme-ideology"),
    ("种族优越", "extreme-ideology"),
    ("ethnic cleansing", "extreme-ideology"),
    ("种族清洗", "extreme-ideology"),
)

_EXPLICIT_FLAG = re.compile(r'is_?violation"?\s*[:=]\s*"?(true|false)', re.IGNORECASE)
_CONFIDENCE = re.compile(r'(?:置信度|confidence)"?\s*[:：=]\s*"?(\d+(?:\.\d+)?)', re.IGNORECASE)
_VIOLATION_MARKERS = ("违规", "violation")
_NEGATED_MARKERS = ("no violation", "not a violation", "无违规", "不违规", "没有违规")


class PolicyViolation(Exception):
    """Raised when text is rejected by the content safety gate."""

    def __init__(self, reason: str | None, category: str | None = None, confidence: float = 0.0):
        self.reason = reason or "Prohibited content detected"
        self.category = category
        self.confidence = confidence
        super().__init__(f"Content safety check failed: {self.reason}")


class SafetyCheckError(Exception):
    """Raised when the safety classifier could not produce a verdict."""


def content_fingerprint(text: str) -> str:
    return hashlib.sha256(str(text).encode("utf-8")).hexdigest()


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"true", "yes", "1"}
    return bool(value)


def _normalize_confidence(value: Any, fallback: float = 0.0) -> float:
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return fallback
    if confidence != confidence:
        return fallback
    if confidence > 1.0:
        confidence = confidence / 100.0
    return min(1.0, max(0.0, confidence))


def heuristic_verdict(text: str) -> SafetyVerdict:
    """Approximate a verdict from classifier output that is not valid JSON."""
    lowered = str(text or "").lower()
    explicit = _EXPLICIT_FLAG.search(lowered)
    if explicit:
        flagged = explicit.group(1) == "true"
    else:
        flagged = any(marker in lowered for marker in _VIOLATION_MARKERS) and not any(
            marker in lowered for marker in _NEGATED_MARKERS
        )

    match = _CONFIDENCE.search(lowered)
    confidence = _normalize_confidence(match.group(1), 0.5) if match else 0.5
    return SafetyVerdict(
        is_violation=flagged and confidence > 0.5,
        confidence=confidence,
        reason="Parsed from unstructured classifier output",
        category="content-safety",
        source="heuristic",
    )


def keyword_verdict(text: str, custom_rules: list[str] | None = None) -> SafetyVerdict:
    lowered = str(text or "").lower()
    hits: list[tuple[str, str]] = [(term, category) for term, category in KEYWORD_RULES if term in lowered]
    for rule in custom_rules or []:
        needle = str(rule).strip().lower()
        if needle and needle in lowered:
            hits.append((needle, "custom-rule"))

    if not hits:
        return SafetyVerdict(is_violation=False, confidence=0.0, reason=None, category=None, source="keyword")
    return SafetyVerdict(
        is_violation=True,
        confidence=min(0.6 + 0.1 * (len(hits) - 1), 0.95),
        reason=f"Matched restricted terms: {', '.join(term for term, _ in hits)}",
        category=hits[0][1],
        source="keyword",
    )


class SafetyGate:
    """Checks text against the configured policy classifier.

    Verdicts are cached by SHA-256 fingerprint for the configured
    ``cache_ttl_seconds``, read again on every check.
    Classifier failures raise :class:`SafetyCheckError` and are never cached.
    """

    def __init__(
        self,
        config_store: ConfigStore,
        service: GenerationService | None = None,
        *,
        cache_ttl_seconds: float = DEFAULT_SAFETY_TTL_SECONDS,
        clock: Callable[[], float] | None = None,
    ):
        self._config = config_store
        self._service = service
        self._cache: TTLCache[SafetyVerdict] = TTLCache(cache_ttl_seconds, clock=clock)

    async def check(self, text: str) -> SafetyVerdict:
        config = self._config.get_safety_config()
        if not config.get("enabled", True):
            return SafetyVerdict(
                is_violation=False,
                confidence=0.0,
                reason="Content safety check disabled",
                source="disabled",
            )

        self._cache.ttl_seconds = float(config.get("cache_ttl_seconds", self._cache.ttl_seconds))
        key = content_fingerprint(text)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        if config.get("check_method") == "keyword":
            raw = keyword_verdict(text, config.get("custom_rules"))
        else:
            raw = await self._classify(text, config)

        verdict = self._apply_threshold(raw, config)
        self._cache.set(key, verdict)
        if verdict.is_violation:
            logger.warning(f"Content flagged ({verdict.category}, confidence {verdict.confidence:.2f}).")
        return verdict

    def clear_cache(self) -> None:
        self._cache.clear()

    def cache_stats(self) -> dict[str, Any]:
        return self._cache.stats()

    async def _classify(self, text: str, config: dict[str, Any]) -> SafetyVerdict:
        if self._service is None:
            raise SafetyCheckError("No safety classifier is configured.")
        prompt = build_safety_prompt(text, config.get("custom_rules"))
        try:
            response = await complete_within(
                self._service,
                prompt,
                system_prompt=SAFETY_SYSTEM_PROMPT,
                max_tokens=int(config.get("classifier_max_tokens", 500)),
                temperature=0.1,
                timeout_seconds=float(config.get("classifier_timeout_seconds", 10.0)),
            )
        except Exception as error:  # noqa: BLE001
            raise SafetyCheckError(f"Content safety check failed: {error}") from error

        try:
            payload = parse_json_object(response)
        except ValueError:
            logger.warning("Safety classifier returned unstructured output, using heuristic rescan.")
            return heuristic_verdict(response)

        reason = payload.get("reason")
        category = payload.get("category")
        return SafetyVerdict(
            is_violation=_as_bool(payload.get("isViolation", payload.get("is_violation", False))),
            confidence=_normalize_confidence(payload.get("confidence"), 0.0),
            reason=str(reason) if reason is not None else None,
            category=str(category) if category is not None else None,
            source="classifier",
        )

    @staticmethod
    def _apply_threshold(verdict: SafetyVerdict, config: dict[str, Any]) -> SafetyVerdict:
        if not verdict.is_violation or config.get("strict_mode", True):
            return verdict
        threshold = float(config.get("confidence_threshold", 0.5))
        if verdict.confidence >= threshold:
            return verdict
        return SafetyVerdict(
            is_violation=False,
            confidence=verdict.confidence,
            reason=verdict.reason,
            category=verdict.category,
            source=verdict.source,
        )


__all__ = [
    "KEYWORD_RULES",
    "PolicyViolation",
    "SafetyCheckError",
    "SafetyGate",
    "content_fingerprint",
    "heuristic_verdict",
    "keyword_verdict",
]
