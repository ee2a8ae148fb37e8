from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from pydantic import BaseModel


def pydantic_to_strict_json_schema(model: type[BaseModel]) -> dict[str, Any]:
    """Build a strict JSON schema from a Pydantic model."""

    schema = model.model_json_schema()
    schema.setdefault("additionalProperties", False)
    return schema


@dataclass(frozen=True, slots=True)
class ToolSpec:
    """Tool catalog entry offered to the model."""

    name: str
    description: str = ""
    parameters: dict[str, Any] = field(default_factory=lambda: {"type": "object"})

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("tool.name is required")

    @classmethod
    def from_model(
        cls, name: str, model: type[BaseModel], description: str | None = None
    ) -> "ToolSpec":
        return cls(
            name=name,
            description=description or (model.__doc__ or "").strip(),
            parameters=pydantic_to_strict_json_schema(model),
        )

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ToolSpec":
        """Accept `{name, description, parameters}` or the OpenAI `{type: function, function: {...}}` shape."""
        function = payload.get("function")
        if isinstance(function, Mapping):
            payload = function
        return cls(
            name=str(payload.get("name") or ""),
            description=str(payload.get("description") or ""),
            parameters=dict(payload.get("parameters") or {"type": "object"}),
        )

    def describe(self) -> str:
        return (
            f"Tool: {self.name}\n"
            f"Description: {self.description or 'No description provided'}\n"
            f"Parameters: {json.dumps(self.parameters, indent=2, ensure_ascii=False)}"
        )

    def to_openai(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


class ToolRegistry:
    """Registry for tool specs (schema only)."""

    def __init__(self, tools: Iterable[ToolSpec] = ()) -> None:
        self._tools: dict[str, ToolSpec] = {}
        for tool in tools:
            self.register(tool)

    def register(self, tool: ToolSpec) -> None:
        if tool.name in self._tools:
            raise ValueError(f"tool already registered: {tool.name}")
        self._tools[tool.name] = tool

    def get(self, name: str) -> ToolSpec | None:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools)

    def tools(self) -> list[ToolSpec]:
        return list(self._tools.values())

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools


def coerce_tools(tools: Iterable[ToolSpec | Mapping[str, Any]] | ToolRegistry | None) -> list[ToolSpec]:
    if tools is None:
        return []
    if isinstance(tools, ToolRegistry):
        return tools.tools()
    return [t if isinstance(t, ToolSpec) else ToolSpec.from_dict(t) for t in tools]


__all__ = ["ToolRegistry", "ToolSpec", "coerce_tools", "pydantic_to_strict_json_schema"]
