"""Tool registry: schemas, categories and confirmation policy per tool."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping

from pydantic import BaseModel

from agent_conductor.config.models import AgentSettings

SCRIPTING_CATEGORIES = frozenset({"shell", "applescript"})


@dataclass(frozen=True)
class ToolSpec:
    input_model: type[BaseModel]
    fn: Callable[[BaseModel], str]
    description: str = ""
    category: str = "general"
    dangerous: bool = False
    confirmation_message: Callable[[dict[str, Any]], str] | None = None

    def describe_confirmation(self, name: str, args: dict[str, Any]) -> str:
        if self.confirmation_message is not None:
            message = self.confirmation_message(args)
            if message:
                return message
        return f"Allow {name}?"


def build_registry(specs: Mapping[str, ToolSpec] | Iterable[tuple[str, ToolSpec]] = ()) -> dict[str, ToolSpec]:
    return dict(specs)


def list_tools(registry: Mapping[str, ToolSpec]) -> list[str]:
    return sorted(registry.keys())


def enabled_tools(registry: Mapping[str, ToolSpec], settings: AgentSettings) -> dict[str, ToolSpec]:
    """Filter by enabled categories; the safe level also drops dangerous and scripting tools."""
    enabled: dict[str, ToolSpec] = {}
    for name, spec in registry.items():
        if spec.category not in settings.enabled_tool_categories:
            continue
        if settings.access_level == "safe" and (
            spec.dangerous or spec.category in SCRIPTING_CATEGORIES
        ):
            continue
        enabled[name] = spec
    return enabled


def needs_confirmation(spec: ToolSpec | None, settings: AgentSettings) -> bool:
    if spec is None or settings.access_level == "ultimate":
        return False
    return spec.dangerous and spec.category not in settings.auto_approve_categories


def tool_definitions(registry: Mapping[str, ToolSpec]) -> list[dict[str, Any]]:
    """Provider-neutral function definitions sent to the model."""
    return [
        {
            "name": name,
            "description": spec.description,
            "parameters": spec.input_model.model_json_schema(),
        }
        for name, spec in sorted(registry.items())
    ]
