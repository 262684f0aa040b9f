##########################################################################
#                                                                        #
#  This file (tool_dispatch.py) maps host tool calls onto the            #
#  personalization pipeline with validated arguments.                    #
#                                                                        #
##########################################################################

from __future__ import annotations

import inspect
import json
import logging
from dataclasses import asdict, dataclass, field, is_dataclass
from typing import Any, Callable

from personacraft.config_manager import ConfigurationError
from personacraft.content_safety import PolicyViolation, SafetyCheckError
from personacraft.pipeline import PipelineOrchestrator, RequestValidationError


logger = logging.getLogger(__name__)


def _as_number(value: Any) -> int | float:
    if isinstance(value, bool):
        raise ValueError("Expected a number.")
    if isinstance(value, (int, float)):
        return value
    text = str(value).strip()
    number = float(text)
    return int(number) if number.is_integer() else number


def _as_str(value: Any) -> str:
    if isinstance(value, (dict, list)):
        raise ValueError("Expected a string.")
    return str(value)


def _as_dict(value: Any) -> dict[str, Any]:
    if isinstance(value, str):
        value = json.loads(value)
    if not isinstance(value, dict):
        raise ValueError("Expected an object.")
    return value


def _as_str_list(value: Any) -> list[str]:
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    if not isinstance(value, list):
        raise ValueError("Expected a list of strings.")
    return [str(item) for item in value]


def to_jsonable(value: Any) -> Any:
    if is_dataclass(value) and not isinstance(value, type):
        return asdict(value)
    if isinstance(value, (list, tuple)):
        return [to_jsonable(item) for item in value]
    if isinstance(value, dict):
        return {key: to_jsonable(item) for key, item in value.items()}
    return value


@dataclass
class ToolDefinition:
    name: str
    function: Callable[..., Any]
    description: str = ""
    required_args: tuple[str, ...] = ()
    optional_args: dict[str, Any] = field(default_factory=dict)
    arg_coercers: dict[str, Callable[[Any], Any]] = field(default_factory=dict)
    reject_unknown_args: bool = True


class ToolDispatcher:
    """Validates tool arguments and wraps every outcome in a status envelope."""

    def __init__(self, orchestrator: PipelineOrchestrator):
        self._orchestrator = orchestrator
        self._registry: dict[str, ToolDefinition] = {}
        for tool in self._default_tools():
            self.register_tool(tool)

    def register_tool(self, tool: ToolDefinition) -> None:
        self._registry[tool.name] = tool

    @property
    def tool_names(self) -> list[str]:
        return list(self._registry.keys())

    def _default_tools(self) -> list[ToolDefinition]:
        pipeline = self._orchestrator

        async def cosplay_text(text, character=None, intensity=None, context=None, description=None):
            return await pipeline.personalize_text(
                {
                    "text": text,
                    "persona_name": character,
                    "intensity": intensity,
                    "context": context,
                    "description": description,
                }
            )

        def get_characters():
            return {
                "available": pipeline.available_personas(),
                "personas": pipeline.list_personas(),
            }

        async def generate_character(character_name, description=None, context=None, intensity=None, examples=None):
            return await pipeline.synthesize_persona(
                {
                    "name": character_name,
                    "description": description,
                    "context": context,
                    "intensity": intensity,
                    "examples": examples or [],
                }
            )

        def clear_character_cache():
            pipeline.clear_persona_cache()
            return {"cleared": True}

        def remove_character(name):
            return {"removed": pipeline.remove_persona(name)}

        text_arg = {"text": _as_str}
        return [
            ToolDefinition(
                name="cosplay_text",
                function=cosplay_text,
                description="Rewrite text in the voice of a persona.",
                required_args=("text",),
                optional_args={"character": None, "intensity": None, "context": None, "description": None},
                arg_coercers={**text_arg, "character": _as_str, "intensity": _as_number, "context": _as_str},
            ),
            ToolDefinition(name="get_characters", function=get_characters, description="List personas."),
            ToolDefinition(name="get_config", function=pipeline.get_config, description="Read configuration."),
            ToolDefinition(
                name="update_config",
                function=lambda updates: pipeline.update_config(updates),
                description="Update configuration.",
                required_args=("updates",),
                arg_coercers={"updates": _as_dict},
            ),
            ToolDefinition(
                name="check_content_safety",
                function=pipeline.check_content_safety,
                description="Run the content safety gate on text.",
                required_args=("text",),
                arg_coercers=text_arg,
            ),
            ToolDefinition(
                name="get_content_safety_config",
                function=pipeline.get_safety_config,
                description="Read content safety configuration.",
            ),
            ToolDefinition(
                name="update_content_safety_config",
                function=lambda updates: pipeline.update_safety_config(updates),
                description="Update content safety configuration.",
                required_args=("updates",),
                arg_coercers={"updates": _as_dict},
            ),
            ToolDefinition(
                name="generate_character",
                function=generate_character,
                description="Synthesize a persona from a name and description.",
                required_args=("character_name",),
                optional_args={"description": None, "context": None, "intensity": None, "examples": None},
                arg_coercers={"character_name": _as_str, "intensity": _as_number, "examples": _as_str_list},
            ),
            ToolDefinition(
                name="query_dialect",
                function=lambda character_name, description=None, context=None: pipeline.query_persona_dialect(
                    character_name, description=description, context=context
                ),
                description="Resolve the dialect a persona would speak.",
                required_args=("character_name",),
                optional_args={"description": None, "context": None},
                arg_coercers={"character_name": _as_str},
            ),
            ToolDefinition(
                name="add_character",
                function=lambda character: pipeline.add_persona(character),
                description="Add or replace a persona record.",
                required_args=("character",),
                arg_coercers={"character": _as_dict},
            ),
            ToolDefinition(
                name="remove_character",
                function=remove_character,
                description="Remove a persona record.",
                required_args=("name",),
                arg_coercers={"name": _as_str},
            ),
            ToolDefinition(
                name="search_characters",
                function=lambda query: pipeline.search_personas(query),
                description="Search personas by name, description or category.",
                required_args=("query",),
                arg_coercers={"query": _as_str},
            ),
            ToolDefinition(
                name="get_characters_by_category",
                function=lambda category: pipeline.get_personas_by_category(category),
                description="List personas in a category.",
                required_args=("category",),
                arg_coercers={"category": _as_str},
            ),
            ToolDefinition(
                name="clear_character_cache",
                function=clear_character_cache,
                description="Clear the persona synthesis cache.",
            ),
            ToolDefinition(
                name="get_character_cache_stats",
                function=pipeline.get_persona_cache_stats,
                description="Persona synthesis cache statistics.",
            ),
        ]

    @staticmethod
    def _error_result(tool_name: str, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
        return {
            "tool_name": tool_name,
            "status": "error",
            "result": None,
            "error": {"code": code, "message": message, "details": details or {}},
        }

    @staticmethod
    def _success_result(tool_name: str, output: Any) -> dict[str, Any]:
        return {
            "tool_name": tool_name,
            "status": "success",
            "result": to_jsonable(output),
            "error": None,
        }

    @staticmethod
    def _normalize_args(raw_args: Any) -> dict[str, Any]:
        if isinstance(raw_args, str):
            stripped = raw_args.strip()
            if not stripped:
                return {}
            try:
                raw_args = json.loads(stripped)
            except json.JSONDecodeError:
                return {}
        return raw_args if isinstance(raw_args, dict) else {}

    def _validate_and_prepare_args(
        self,
        tool: ToolDefinition,
        raw_args: Any,
    ) -> tuple[dict[str, Any] | None, dict[str, Any] | None]:
        args = self._normalize_args(raw_args)
        accepted_keys = set(tool.required_args) | set(tool.optional_args.keys())
        unknown_args = [key for key in args.keys() if key not in accepted_keys]
        if tool.reject_unknown_args and unknown_args:
            return None, {
                "code": "invalid_arguments",
                "message": f"Unexpected arguments provided: {', '.join(unknown_args)}",
                "details": {"unknown_args": unknown_args},
            }

        prepared = {key: value for key, value in args.items() if key in accepted_keys}
        missing_required = [
            arg_name
            for arg_name in tool.required_args
            if prepared.get(arg_name) is None
            or (isinstance(prepared.get(arg_name), str) and prepared.get(arg_name).strip() == "" and arg_name != "text")
        ]
        if missing_required:
            return None, {
                "code": "invalid_arguments",
                "message": f"Missing required arguments: {', '.join(missing_required)}",
                "details": {"missing_required": missing_required},
            }

        coercion_errors: dict[str, str] = {}
        for arg_name, coercer in tool.arg_coercers.items():
            if prepared.get(arg_name) is not None:
                try:
                    prepared[arg_name] = coercer(prepared[arg_name])
                except Exception as error:  # noqa: BLE001
                    coercion_errors[arg_name] = str(error)
        if coercion_errors:
            return None, {
                "code": "invalid_arguments",
                "message": "Argument coercion failed.",
                "details": {"coercion_errors": coercion_errors},
            }

        for opt_key, default_value in tool.optional_args.items():
            if prepared.get(opt_key) is None:
                prepared[opt_key] = default_value
        return prepared, None

    async def execute(self, tool_name: str, raw_args: Any = None) -> dict[str, Any]:
        tool = self._registry.get(tool_name)
        if tool is None:
            return self._error_result(tool_name, "tool_not_registered", f"Tool '{tool_name}' is not registered.")

        prepared, validation_error = self._validate_and_prepare_args(tool, raw_args)
        if validation_error:
            return self._error_result(
                tool_name,
                validation_error["code"],
                validation_error["message"],
                validation_error["details"],
            )

        try:
            output = tool.function(**prepared)
            if inspect.isawaitable(output):
                output = await output
        except PolicyViolation as error:
            return self._error_result(
                tool_name,
                "policy_violation",
                str(error),
                {"reason": error.reason, "category": error.category, "confidence": error.confidence},
            )
        except SafetyCheckError as error:
            return self._error_result(tool_name, "safety_check_failed", str(error))
        except ConfigurationError as error:
            return self._error_result(tool_name, "configuration_error", str(error))
        except RequestValidationError as error:
            return self._error_result(tool_name, "invalid_arguments", str(error))
        except Exception as error:  # noqa: BLE001
            logger.exception(f"Tool '{tool_name}' failed.")
            return self._error_result(tool_name, "tool_execution_failed", str(error))

        return self._success_result(tool_name, output)


__all__ = ["ToolDefinition", "ToolDispatcher", "to_jsonable"]
