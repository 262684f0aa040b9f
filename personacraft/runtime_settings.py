##########################################################################
#                                                                        #
#  Central runtime settings hydration for config.json + .env             #
#                                                                        #
##########################################################################

from __future__ import annotations

import copy
import os
from pathlib import Path
from typing import Any, Callable, Mapping


DEFAULT_RUNTIME_SETTINGS: dict[str, Any] = {
    "inference": {
        "enabled": True,
        "default_ollama_host": "http://127.0.0.1:11434",
        "default_generate_model": "llama3.2:latest",
        "fallback_models": [],
        "request_timeout_seconds": 10.0,
        "rewrite_max_tokens": 500,
        "synthesis_max_tokens": 1000,
        "synthesis_temperature": 0.7,
        "dialect_temperature": 0.3,
    },
    "persona": {
        "default_persona_name": "enthusiastic",
        "default_intensity": 3,
        "max_intensity": 5,
        "synthesis_cache_ttl_seconds": 1800.0,
        "catchphrase_probability": 0.2,
    },
    "safety": {
        "enabled": True,
        "confidence_threshold": 0.5,
        "strict_mode": True,
        "check_method": "llm",
        "failure_policy": "fail_closed",
        "custom_rules": [],
        "cache_ttl_seconds": 300.0,
        "classifier_timeout_seconds": 10.0,
        "classifier_max_tokens": 500,
    },
}


ENV_OVERRIDES: dict[str, tuple[tuple[str, ...], str]] = {
    "inference.enabled": (("COSPLAY_INFERENCE_ENABLED",), "bool"),
    "inference.default_ollama_host": (("COSPLAY_OLLAMA_HOST", "OLLAMA_HOST"), "str"),
    "inference.default_generate_model": (("COSPLAY_GENERATE_MODEL", "OLLAMA_MODEL"), "str"),
    "inference.fallback_models": (("COSPLAY_FALLBACK_MODELS",), "list"),
    "inference.request_timeout_seconds": (("COSPLAY_REQUEST_TIMEOUT_SECONDS",), "float"),
    "inference.rewrite_max_tokens": (("COSPLAY_REWRITE_MAX_TOKENS",), "int"),
    "inference.synthesis_max_tokens": (("COSPLAY_SYNTHESIS_MAX_TOKENS",), "int"),
    "persona.default_persona_name": (("COSPLAY_DEFAULT_PERSONA",), "str"),
    "persona.default_intensity": (("COSPLAY_DEFAULT_INTENSITY",), "int"),
    "persona.max_intensity": (("COSPLAY_MAX_INTENSITY",), "int"),
    "persona.synthesis_cache_ttl_seconds": (("COSPLAY_SYNTHESIS_CACHE_TTL_SECONDS",), "float"),
    "persona.catchphrase_probability": (("COSPLAY_CATCHPHRASE_PROBABILITY",), "float"),
    "safety.enabled": (("COSPLAY_SAFETY_ENABLED",), "bool"),
    "safety.confidence_threshold": (("COSPLAY_SAFETY_CONFIDENCE_THRESHOLD",), "float"),
    "safety.strict_mode": (("COSPLAY_SAFETY_STRICT_MODE",), "bool"),
    "safety.check_method": (("COSPLAY_SAFETY_CHECK_METHOD",), "str"),
    "safety.failure_policy": (("COSPLAY_SAFETY_FAILURE_POLICY",), "str"),
    "safety.cache_ttl_seconds": (("COSPLAY_SAFETY_CACHE_TTL_SECONDS",), "float"),
    "safety.classifier_timeout_seconds": (("COSPLAY_SAFETY_TIMEOUT_SECONDS",), "float"),
}


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _parse_list(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


_ENV_PARSERS: dict[str, Callable[[str], Any]] = {
    "str": str,
    "int": int,
    "float": float,
    "bool": _parse_bool,
    "list": _parse_list,
}


def _first_env_value(env_values: Mapping[str, str], env_keys: tuple[str, ...]) -> str | None:
    for env_key in env_keys:
        candidate = env_values.get(env_key)
        if candidate is not None and str(candidate).strip():
            return str(candidate).strip()
    return None


def _deep_merge(base: dict[str, Any], incoming: dict[str, Any]) -> dict[str, Any]:
    for key, value in incoming.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
    return base


def _path_parts(path: str) -> list[str]:
    return [part for part in path.split(".") if part]


def get_runtime_setting(settings: dict[str, Any], path: str, default: Any = None) -> Any:
    cursor: Any = settings
    for part in _path_parts(path):
        if not isinstance(cursor, dict) or part not in cursor:
            return default
        cursor = cursor.get(part)
    return cursor


def set_runtime_setting(settings: dict[str, Any], path: str, value: Any) -> None:
    parts = _path_parts(path)
    if not parts:
        return
    cursor: dict[str, Any] = settings
    for part in parts[:-1]:
        next_value = cursor.get(part)
        if not isinstance(next_value, dict):
            next_value = {}
            cursor[part] = next_value
        cursor = next_value
    cursor[parts[-1]] = value


def _parse_dotenv_line(raw_line: str) -> tuple[str, str] | None:
    line = raw_line.strip()
    if line.startswith("export "):
        line = line[len("export ") :].strip()
    if not line or line.startswith("#") or "=" not in line:
        return None

    key, value = (part.strip() for part in line.split("=", 1))
    if not key:
        return None
    if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
        value = value[1:-1]
    return key, value


def load_dotenv_file(path: str | Path = ".env", override: bool = False) -> dict[str, str]:
    """Read KEY=VALUE pairs from a dotenv file into ``os.environ``.

    Existing environment values win unless ``override`` is set. A missing
    file loads nothing.
    """
    dotenv_path = Path(path)
    if not dotenv_path.exists():
        return {}

    loaded: dict[str, str] = {}
    for raw_line in dotenv_path.read_text(encoding="utf-8").splitlines():
        parsed = _parse_dotenv_line(raw_line)
        if parsed is None:
            continue
        key, value = parsed
        loaded[key] = value
        if override or key not in os.environ:
            os.environ[key] = value
    return loaded


def build_runtime_settings(
    config_data: dict[str, Any] | None = None,
    env_data: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    settings = copy.deepcopy(DEFAULT_RUNTIME_SETTINGS)
    if isinstance(config_data, dict):
        runtime_config = config_data.get("runtime")
        if isinstance(runtime_config, dict):
            _deep_merge(settings, runtime_config)

    env_values = env_data if env_data is not None else os.environ
    for path, (env_keys, value_type) in ENV_OVERRIDES.items():
        raw_value = _first_env_value(env_values, env_keys)
        if raw_value is None:
            continue
        parser = _ENV_PARSERS.get(value_type, str)
        try:
            set_runtime_setting(settings, path, parser(raw_value))
        except (TypeError, ValueError):
            # Malformed override; the configured value stays.
            continue

    return settings
