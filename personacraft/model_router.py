##########################################################################
#                                                                        #
#  This file (model_router.py) handles model selection, fallback         #
#  routing and bounded completions for Ollama-based generation calls.    #
#                                                                        #
##########################################################################

from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import asdict, dataclass, field
from typing import Any, Protocol
from urllib.parse import urlparse

from ollama import AsyncClient

from personacraft.runtime_settings import DEFAULT_RUNTIME_SETTINGS


logger = logging.getLogger(__name__)

DEFAULT_OLLAMA_HOST = str(
    DEFAULT_RUNTIME_SETTINGS.get("inference", {}).get("default_ollama_host", "http://127.0.0.1:11434")
)
DEFAULT_TIMEOUT_SECONDS = float(
    DEFAULT_RUNTIME_SETTINGS.get("inference", {}).get("request_timeout_seconds", 10.0)
)
_FENCE_PATTERN = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


class ModelRouterError(Exception):
    """Base error for model router and generation failures."""


class ModelResolutionError(ModelRouterError):
    """Raised when no valid model candidates can be resolved."""


class ModelExecutionError(ModelRouterError):
    """Raised when all candidate models fail execution."""

    def __init__(self, message: str, metadata: dict[str, Any] | None = None):
        super().__init__(message)
        self.metadata = metadata or {}


class GenerationUnavailable(ModelRouterError):
    """Raised when no generation capability is configured."""


class GenerationFailure(ModelRouterError):
    """Raised when a generation call times out, errors or returns nothing usable."""


class GenerationService(Protocol):
    async def complete(
        self,
        prompt: str,
        *,
        system_prompt: str,
        max_tokens: int,
        temperature: float,
        timeout_seconds: float,
    ) -> str: ...


async def complete_within(
    service: GenerationService,
    prompt: str,
    *,
    system_prompt: str,
    max_tokens: int,
    temperature: float,
    timeout_seconds: float,
) -> str:
    """Run ``service.complete`` under its own deadline.

    Services are not trusted to honor ``timeout_seconds``; the call is raced
    here and an overrun surfaces as :class:`GenerationFailure`.
    """
    timeout = max(0.1, float(timeout_seconds))
    try:
        return await asyncio.wait_for(
            service.complete(
                prompt,
                system_prompt=system_prompt,
                max_tokens=max_tokens,
                temperature=temperature,
                timeout_seconds=timeout,
            ),
            timeout=timeout,
        )
    except asyncio.TimeoutError as error:
        raise GenerationFailure(f"Generation timed out after {timeout}s.") from error


@dataclass
class RouteMetadata:
    capability: str
    host: str
    requested_model: str | None
    configured_model: str | None
    allowed_models: list[str]
    candidate_models: list[str]
    selected_model: str | None = None
    attempted_models: list[str] = field(default_factory=list)
    fallback_count: int = 0
    available_models: list[str] | None = None
    list_failed: bool = False
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class ModelRouter:
    """Model routing and fallback behavior for Ollama requests.

    Capabilities (``rewrite``, ``synthesis``, ``dialect``, ``safety``) may carry
    their own ``url``/``model`` section inside the inference settings;
    anything not set there falls back to the shared inference defaults.
    """

    def __init__(
        self,
        inference_config: dict | None = None,
        endpoint_override: str | None = None,
        default_host: str = DEFAULT_OLLAMA_HOST,
    ):
        self._inference_config = inference_config if isinstance(inference_config, dict) else {}
        self._endpoint_override = endpoint_override
        self._default_host = self._normalize_host(
            self._inference_config.get("default_ollama_host") or default_host
        )

    @staticmethod
    def _normalize_host(host: str | None) -> str | None:
        if host is None:
            return None
        return str(host).strip().rstrip("/")

    @staticmethod
    def _is_valid_host(host: str | None) -> bool:
        if not host:
            return False
        parsed = urlparse(host)
        return parsed.scheme in {"http", "https"} and bool(parsed.netloc)

    def _configured_inference(self, capability: str) -> dict[str, Any]:
        data = self._inference_config.get(capability)
        return data if isinstance(data, dict) else {}

    def resolve_host(self, capability: str) -> str:
        override = self._normalize_host(self._endpoint_override)
        if self._is_valid_host(override):
            return override

        configured_host = self._normalize_host(self._configured_inference(capability).get("url"))
        if self._is_valid_host(configured_host):
            return configured_host

        return self._default_host or DEFAULT_OLLAMA_HOST

    def configured_model(self, capability: str) -> str | None:
        for model in (
            self._configured_inference(capability).get("model"),
            self._inference_config.get("default_generate_model"),
        ):
            if isinstance(model, str) and model.strip():
                return model.strip()
        return None

    def candidate_models(
        self,
        capability: str,
        requested_model: str | None = None,
        allowed_models: list[str] | None = None,
    ) -> list[str]:
        candidates: list[str] = []

        def add(value: str | None):
            if isinstance(value, str):
                value = value.strip()
            if value and value not in candidates:
                candidates.append(value)

        add(requested_model)
        if allowed_models:
            for allowed in allowed_models:
                add(allowed)
        add(self.configured_model(capability))
        fallback_models = self._inference_config.get("fallback_models")
        if isinstance(fallback_models, list):
            for fallback in fallback_models:
                add(fallback)

        return candidates

    async def list_available_models(self, host: str) -> list[str]:
        client = AsyncClient(host=host)
        model_list = await client.list()
        output: list[str] = []

        for entry in getattr(model_list, "models", []):
            if hasattr(entry, "model"):
                name = getattr(entry, "model")
            elif isinstance(entry, dict):
                name = entry.get("model")
            else:
                name = None

            if isinstance(name, str) and name not in output:
                output.append(name)

        return output

    async def resolve(
        self,
        capability: str,
        requested_model: str | None = None,
        allowed_models: list[str] | None = None,
    ) -> RouteMetadata:
        candidates = self.candidate_models(
            capability=capability,
            requested_model=requested_model,
            allowed_models=allowed_models,
        )

        if not candidates:
            raise ModelResolutionError(
                f"No model candidates found for capability '{capability}'."
            )

        metadata = RouteMetadata(
            capability=capability,
            host=self.resolve_host(capability),
            requested_model=requested_model,
            configured_model=self.configured_model(capability),
            allowed_models=list(allowed_models or []),
            candidate_models=list(candidates),
        )

        try:
            available_models = await self.list_available_models(metadata.host)
            metadata.available_models = available_models
            for candidate in candidates:
                if candidate in available_models:
                    metadata.selected_model = candidate
                    return metadata

            # Inventory may be stale or filtered, so still try candidates in order.
            metadata.selected_model = candidates[0]
            metadata.errors.append(
                "No candidate model matched advertised model list; trying candidates in priority order."
            )
            return metadata
        except Exception as error:  # noqa: BLE001
            metadata.list_failed = True
            metadata.selected_model = candidates[0]
            metadata.errors.append(f"Model inventory probe failed: {error}")
            return metadata

    async def chat_with_fallback(
        self,
        capability: str,
        messages: list[Any],
        requested_model: str | None = None,
        allowed_models: list[str] | None = None,
        **chat_kwargs: Any,
    ) -> tuple[Any, dict[str, Any]]:
        metadata = await self.resolve(
            capability=capability,
            requested_model=requested_model,
            allowed_models=allowed_models,
        )

        candidates = list(metadata.candidate_models)
        if metadata.selected_model in candidates:
            candidates.remove(metadata.selected_model)
            candidates.insert(0, metadata.selected_model)

        for candidate in candidates:
            metadata.attempted_models.append(candidate)
            client = AsyncClient(host=metadata.host)
            try:
                response = await client.chat(
                    model=candidate,
                    messages=messages,
                    stream=False,
                    **chat_kwargs,
                )
                metadata.selected_model = candidate
                metadata.fallback_count = max(0, len(metadata.attempted_models) - 1)
                return response, metadata.to_dict()
            except Exception as error:  # noqa: BLE001
                metadata.errors.append(f"{candidate}: {error}")

        raise ModelExecutionError(
            f"All candidate models failed for capability '{capability}'.",
            metadata=metadata.to_dict(),
        )


def response_text(response: Any) -> str:
    """Pull the assistant text out of an Ollama chat response or plain dict."""
    if isinstance(response, str):
        return response
    if isinstance(response, dict):
        message = response.get("message")
        if isinstance(message, dict):
            return str(message.get("content") or "")
        return str(response.get("text") or response.get("response") or "")
    message = getattr(response, "message", None)
    content = getattr(message, "content", None)
    return str(content or "")


def parse_json_object(text: str) -> dict[str, Any]:
    """Parse the first JSON object found in model output.

    Code fences and surrounding chatter are tolerated; anything that does not
    decode to a JSON object raises ``ValueError``.
    """
    cleaned = _FENCE_PATTERN.sub("", str(text or "").strip()).strip()
    if not cleaned:
        raise ValueError("Empty model output.")
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError:
        start = cleaned.find("{")
        end = cleaned.rfind("}")
        if start < 0 or end <= start:
            raise ValueError("No JSON object in model output.") from None
        try:
            parsed = json.loads(cleaned[start : end + 1])
        except json.JSONDecodeError as error:
            raise ValueError(f"Malformed JSON object in model output: {error}") from error
    if not isinstance(parsed, dict):
        raise ValueError("Model output JSON is not an object.")
    return parsed


class OllamaGenerationService:
    """Bounded single-shot completions routed through :class:`ModelRouter`."""

    def __init__(
        self,
        router: ModelRouter,
        *,
        capability: str = "rewrite",
        requested_model: str | None = None,
        allowed_models: list[str] | None = None,
    ):
        self._router = router
        self._capability = capability
        self._requested_model = requested_model
        self._allowed_models = list(allowed_models or [])
        self.last_routing: dict[str, Any] = {}

    def for_capability(self, capability: str) -> "OllamaGenerationService":
        return OllamaGenerationService(
            self._router,
            capability=capability,
            requested_model=self._requested_model,
            allowed_models=self._allowed_models,
        )

    async def complete(
        self,
        prompt: str,
        *,
        system_prompt: str,
        max_tokens: int,
        temperature: float,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> str:
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": prompt},
        ]
        try:
            response, self.last_routing = await asyncio.wait_for(
                self._router.chat_with_fallback(
                    capability=self._capability,
                    messages=messages,
                    requested_model=self._requested_model,
                    allowed_models=self._allowed_models,
                    options={"num_predict": int(max_tokens), "temperature": float(temperature)},
                ),
                timeout=max(0.1, float(timeout_seconds)),
            )
        except asyncio.TimeoutError as error:
            raise GenerationFailure(
                f"Generation for '{self._capability}' timed out after {timeout_seconds}s."
            ) from error
        except ModelRouterError as error:
            self.last_routing = getattr(error, "metadata", {})
            raise GenerationFailure(f"Generation for '{self._capability}' failed: {error}") from error

        text = response_text(response).strip()
        if not text:
            raise GenerationFailure(f"Generation for '{self._capability}' returned no text.")
        return text


def build_generation_service(inference_settings: dict[str, Any] | None) -> OllamaGenerationService | None:
    settings = inference_settings if isinstance(inference_settings, dict) else {}
    if not settings.get("enabled", True):
        logger.info("Generation disabled by configuration; running with local fallbacks only.")
        return None
    router = ModelRouter(inference_config=settings)
    return OllamaGenerationService(router)


__all__ = [
    "DEFAULT_OLLAMA_HOST",
    "GenerationFailure",
    "GenerationService",
    "GenerationUnavailable",
    "ModelExecutionError",
    "ModelResolutionError",
    "ModelRouter",
    "ModelRouterError",
    "OllamaGenerationService",
    "RouteMetadata",
    "build_generation_service",
    "complete_within",
    "parse_json_object",
    "response_text",
]
