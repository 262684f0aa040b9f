##########################################################################
#                                                                        #
#  Regional and historical speech style lookup for personas              #
#                                                                        #
##########################################################################

from __future__ import annotations

import copy
import logging
from typing import Any

from personacraft.model_router import GenerationService, GenerationUnavailable, complete_within, parse_json_object
from personacraft.persona_models import DialectRecord
from personacraft.prompt_builder import build_dialect_prompt


logger = logging.getLogger(__name__)

DIALECT_SYSTEM_PROMPT = (
    "You are an expert in dialects and regional language culture. Analyse the character's "
    "speech accurately and answer with a single JSON object."
)

_HONG_XIUQUAN = DialectRecord(
    name="广东客家话",
    region="广东花县",
    characteristics=["客家方言特点", "古汉语保留", "语气庄重"],
    common_phrases=["天父", "天国", "清妖", "万岁", "天王"],
    pronunciation_notes=["客家话发音特点", "保留古汉语音韵"],
    slang_words=["天父", "天国", "清妖"],
    grammar_patterns=["使用古典句式", "宗教用语"],
    example_sentences=["天父下凡，我乃真命天子", "清妖必灭，天国必兴"],
)
_SUN_YAT_SEN = DialectRecord(
    name="广东中山话",
    region="广东中山",
    characteristics=["粤语特点", "近代汉语", "革命用语"],
    common_phrases=["革命", "共和", "民国", "同志", "自由"],
    pronunciation_notes=["粤语中山口音", "近代国语发音"],
    slang_words=["革命", "共和"],
    grammar_patterns=["现代汉语", "政治术语"],
    example_sentences=["革命尚未成功，同志仍需努力"],
)

FALLBACK_DIALECTS: dict[str, DialectRecord] = {
    "洪秀全": _HONG_XIUQUAN,
    "Hong Xiuquan": _HONG_XIUQUAN,
    "孙中山": _SUN_YAT_SEN,
    "Sun Yat-sen": _SUN_YAT_SEN,
}

DEFAULT_DIALECT = DialectRecord(
    name="Standard Mandarin",
    region="Nationwide",
    characteristics=["Standard Chinese"],
    common_phrases=["是", "不是", "很好", "不错"],
    pronunciation_notes=["Standard Putonghua pronunciation"],
    slang_words=[],
    grammar_patterns=["Modern Chinese grammar"],
    example_sentences=["这是一个标准表达的例句"],
)

REGION_KEYWORDS: tuple[str, ...] = (
    "广东", "广西", "北京", "上海", "四川", "重庆", "湖南", "湖北", "江苏", "浙江",
    "安徽", "福建", "江西", "山东", "山西", "河南", "河北", "辽宁", "吉林", "黑龙江",
    "陕西", "甘肃", "青海", "新疆", "西藏", "云南", "贵州", "海南", "台湾", "香港",
    "澳门", "东北", "华北", "华东", "华南", "华中", "西北", "西南",
    "Guangdong", "Beijing", "Shanghai", "Sichuan", "Hong Kong", "Taiwan",
)


def extract_region(context: str | None) -> str | None:
    """Return the first known region keyword mentioned in ``context``."""
    if not context:
        return None
    for keyword in REGION_KEYWORDS:
        if keyword in context:
            return keyword
    return None


def fallback_dialect(name: str) -> DialectRecord:
    record = FALLBACK_DIALECTS.get(str(name or "").strip(), DEFAULT_DIALECT)
    return copy.deepcopy(record)


class DialectResolver:
    """Resolve a dialect record for a persona; never raises.

    With a generation service the model is asked for a JSON object; a response
    that fails to parse or lacks ``name``/``region`` is discarded as a whole and
    the static table is used instead.
    """

    def __init__(
        self,
        service: GenerationService | None = None,
        *,
        max_tokens: int = 1000,
        temperature: float = 0.3,
        timeout_seconds: float = 10.0,
    ):
        self._service = service
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._timeout_seconds = timeout_seconds

    @property
    def has_service(self) -> bool:
        return self._service is not None

    async def resolve(
        self,
        name: str,
        description: str | None = None,
        background: str | None = None,
        region: str | None = None,
        historical_period: str | None = None,
    ) -> DialectRecord:
        try:
            return await self._generate(name, description, background, region, historical_period)
        except GenerationUnavailable:
            logger.debug(f"No generation service for dialect of '{name}', using local table.")
        except Exception as error:  # noqa: BLE001
            logger.warning(f"Dialect generation for '{name}' failed, using local table: {error}")
        return fallback_dialect(name)

    async def _generate(
        self,
        name: str,
        description: str | None,
        background: str | None,
        region: str | None,
        historical_period: str | None,
    ) -> DialectRecord:
        if self._service is None:
            raise GenerationUnavailable("No generation service configured.")
        prompt = build_dialect_prompt(
            name,
            description=description,
            background=background,
            region=region,
            historical_period=historical_period,
        )
        response = await complete_within(
            self._service,
            prompt,
            system_prompt=DIALECT_SYSTEM_PROMPT,
            max_tokens=self._max_tokens,
            temperature=self._temperature,
            timeout_seconds=self._timeout_seconds,
        )
        payload: dict[str, Any] = parse_json_object(response)
        return DialectRecord.from_payload(payload)


__all__ = [
    "DEFAULT_DIALECT",
    "DIALECT_SYSTEM_PROMPT",
    "DialectResolver",
    "FALLBACK_DIALECTS",
    "REGION_KEYWORDS",
    "extract_region",
    "fallback_dialect",
]
