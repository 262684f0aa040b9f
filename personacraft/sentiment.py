from __future__ import annotations

from personacraft.persona_models import SentimentResult


_POSITIVE_KEYWORDS: tuple[str, ...] = (
    "great",
    "awesome",
    "excellent",
    "amazing",
    "wonderful",
    "fantastic",
    "good",
    "nice",
    "perfect",
    "love",
    "like",
    "happy",
    "excited",
    "成功",
    "很好",
    "棒",
    "优秀",
    "完美",
    "喜欢",
    "开心",
)
_NEGATIVE_KEYWORDS: tuple[str, ...] = (
    "bad",
    "terrible",
    "awful",
    "horrible",
    "hate",
    "dislike",
    "angry",
    "frustrated",
    "disappointed",
    "sad",
    "wrong",
    "error",
    "糟糕",
    "差",
    "讨厌",
    "愤怒",
    "失望",
    "错误",
    "失败",
)


class SentimentTagger:
    """Keyword scan tagging text as positive, negative or neutral."""

    def __init__(
        self,
        positive_keywords: tuple[str, ...] = _POSITIVE_KEYWORDS,
        negative_keywords: tuple[str, ...] = _NEGATIVE_KEYWORDS,
    ):
        self._positive = tuple(positive_keywords)
        self._negative = tuple(negative_keywords)

    def analyze(self, text: str) -> SentimentResult:
        lowered = str(text or "").lower()
        matched: list[str] = []
        positive_score = 0
        negative_score = 0
        for keyword in self._positive:
            if keyword in lowered:
                positive_score += 1
                matched.append(keyword)
        for keyword in self._negative:
            if keyword in lowered:
                negative_score += 1
                matched.append(keyword)

        if positive_score > negative_score:
            return SentimentResult(
                tag="positive",
                confidence=min(0.5 + (positive_score - negative_score) * 0.1, 0.95),
                matched_keywords=matched,
            )
        if negative_score > positive_score:
            return SentimentResult(
                tag="negative",
                confidence=min(0.5 + (negative_score - positive_score) * 0.1, 0.95),
                matched_keywords=matched,
            )
        return SentimentResult(
            tag="neutral",
            confidence=max(0.3, 0.5 - max(positive_score, negative_score) * 0.05),
            matched_keywords=matched,
        )


__all__ = ["SentimentTagger"]
