##########################################################################
#                                                                        #
#  In-memory persona and content safety configuration                    #
#                                                                        #
##########################################################################

from __future__ import annotations

import copy
import logging
import threading
from typing import Any

from personacraft.persona_models import (
    MAX_INTENSITY,
    Persona,
    PersonalityIntensityConfig,
    clamp_intensity,
)
from personacraft.runtime_settings import DEFAULT_RUNTIME_SETTINGS


logger = logging.getLogger(__name__)

SAFETY_CHECK_METHODS = ("llm", "keyword")
SAFETY_FAILURE_POLICIES = ("fail_closed", "fail_open")


class ConfigurationError(RuntimeError):
    """Raised when a configuration section is read before it was initialized."""


def _as_float(value: Any, fallback: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return fallback


def _as_bool(value: Any, fallback: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    if value is None:
        return fallback
    return bool(value)


def _normalize_safety(section: dict[str, Any], base: dict[str, Any] | None = None) -> dict[str, Any]:
    defaults = base if isinstance(base, dict) else DEFAULT_RUNTIME_SETTINGS["safety"]
    merged = {**defaults, **section}
    method = str(merged.get("check_method") or "llm").strip().lower()
    policy = str(merged.get("failure_policy") or "fail_closed").strip().lower()
    rules = merged.get("custom_rules")
    return {
        "enabled": _as_bool(merged.get("enabled"), True),
        "confidence_threshold": min(1.0, max(0.0, _as_float(merged.get("confidence_threshold"), 0.5))),
        "strict_mode": _as_bool(merged.get("strict_mode"), True),
        "check_method": method if method in SAFETY_CHECK_METHODS else "llm",
        "failure_policy": policy if policy in SAFETY_FAILURE_POLICIES else "fail_closed",
        "custom_rules": [str(rule) for rule in rules if str(rule).strip()] if isinstance(rules, list) else [],
        "cache_ttl_seconds": max(0.0, _as_float(merged.get("cache_ttl_seconds"), 300.0)),
        "classifier_timeout_seconds": max(0.1, _as_float(merged.get("classifier_timeout_seconds"), 10.0)),
        "classifier_max_tokens": int(_as_float(merged.get("classifier_max_tokens"), 500)),
    }


class ConfigStore:
    """Mutable configuration shared by one pipeline instance.

    ``safety`` may be ``None`` (constructed with ``safety=None``); reading or
    updating it in that state raises :class:`ConfigurationError`.
    """

    def __init__(
        self,
        default_persona_name: str = "enthusiastic",
        default_intensity: int | float = 3,
        max_intensity: int | float = MAX_INTENSITY,
        catchphrase_probability: float = 0.2,
        safety: dict[str, Any] | None = None,
        **extra: Any,
    ):
        self._lock = threading.RLock()
        max_value = clamp_intensity(max_intensity)
        self._config: dict[str, Any] = {
            "default_persona_name": str(default_persona_name or "enthusiastic"),
            "default_intensity": clamp_intensity(default_intensity, max_value),
            "max_intensity": max_value,
            "catchphrase_probability": min(1.0, max(0.0, _as_float(catchphrase_probability, 0.2))),
            "safety": _normalize_safety(safety) if isinstance(safety, dict) else None,
        }
        self._config.update(extra)

    @classmethod
    def from_runtime_settings(cls, settings: dict[str, Any] | None) -> "ConfigStore":
        settings = settings if isinstance(settings, dict) else DEFAULT_RUNTIME_SETTINGS
        persona = settings.get("persona") if isinstance(settings.get("persona"), dict) else {}
        safety = settings.get("safety") if isinstance(settings.get("safety"), dict) else {}
        return cls(
            default_persona_name=persona.get("default_persona_name", "enthusiastic"),
            default_intensity=persona.get("default_intensity", 3),
            max_intensity=persona.get("max_intensity", MAX_INTENSITY),
            catchphrase_probability=persona.get("catchphrase_probability", 0.2),
            safety=safety,
        )

    def get(self) -> dict[str, Any]:
        with self._lock:
            return copy.deepcopy(self._config)

    def update(self, partial: dict[str, Any]) -> dict[str, Any]:
        if not isinstance(partial, dict):
            raise TypeError("Config update must be an object.")
        with self._lock:
            updated = copy.deepcopy(self._config)
            for key, value in partial.items():
                if key == "safety":
                    if isinstance(value, dict):
                        updated["safety"] = _normalize_safety(value, updated.get("safety"))
                    elif value is None:
                        updated["safety"] = None
                    continue
                updated[key] = value

            updated["max_intensity"] = clamp_intensity(updated.get("max_intensity"))
            updated["default_intensity"] = clamp_intensity(
                updated.get("default_intensity"), updated["max_intensity"]
            )
            updated["catchphrase_probability"] = min(
                1.0, max(0.0, _as_float(updated.get("catchphrase_probability"), 0.2))
            )
            self._config = updated
        logger.info(f"Configuration updated: {sorted(partial.keys())}")
        return self.get()

    def get_safety_config(self) -> dict[str, Any]:
        with self._lock:
            safety = self._config.get("safety")
            if safety is None:
                raise ConfigurationError("Content safety configuration is not initialized.")
            return copy.deepcopy(safety)

    def update_safety_config(self, partial: dict[str, Any]) -> dict[str, Any]:
        if not isinstance(partial, dict):
            raise TypeError("Safety config update must be an object.")
        with self._lock:
            safety = self._config.get("safety")
            if safety is None:
                raise ConfigurationError("Content safety configuration is not initialized.")
            self._config["safety"] = _normalize_safety(partial, safety)
        logger.info(f"Content safety configuration updated: {sorted(partial.keys())}")
        return self.get_safety_config()

    @property
    def default_persona_name(self) -> str:
        with self._lock:
            return str(self._config.get("default_persona_name") or "enthusiastic")

    @property
    def catchphrase_probability(self) -> float:
        with self._lock:
            return float(self._config.get("catchphrase_probability", 0.2))

    def create_intensity_config(
        self,
        persona: Persona,
        intensity: Any = None,
    ) -> PersonalityIntensityConfig:
        with self._lock:
            default_intensity = self._config.get("default_intensity", 3)
            max_intensity = self._config.get("max_intensity", MAX_INTENSITY)
        requested = default_intensity if intensity is None else intensity
        return PersonalityIntensityConfig.build(persona, requested, max_intensity)


__all__ = [
    "ConfigStore",
    "ConfigurationError",
    "SAFETY_CHECK_METHODS",
    "SAFETY_FAILURE_POLICIES",
]
