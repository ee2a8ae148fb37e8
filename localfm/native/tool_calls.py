"""Recover tool invocations from free-form model output.

Models without native tool calling are instructed (see `build_tool_system_prompt`)
to answer with blocks like::

    TOOL_CALL: get_weather
    ARGUMENTS: {"city": "Paris"}

Extraction is regex-first. Only when no block is found, the whole text is tried
as the legacy `{"tool_calls": [...]}` JSON shape. Neither path raises: text that
matches nothing is returned as the textual answer.
"""

from __future__ import annotations

import json
import re
import secrets
import string
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Sequence

from localfm.utils.logger import get_logger

from .messages import ToolCall
from .tools import ToolSpec

logger = get_logger(__name__)

# Tolerates indentation and extra whitespace around both markers.
TOOL_CALL_RE = re.compile(
    r"TOOL_CALL:\s*(?P<name>\w+)[\t ]*\n[\t ]*ARGUMENTS:\s*(?P<args>\{[\s\S]*?\})(?:\n|\Z)"
)

ToolChoice = str | Mapping[str, Any] | None

_ID_ALPHABET = string.digits + string.ascii_lowercase


def new_tool_call_id() -> str:
    return "call_" + "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))


@dataclass(frozen=True, slots=True)
class ExtractionResult:
    """`text` is None when nothing but tool calls was present."""

    text: str | None
    tool_calls: tuple[ToolCall, ...] = ()

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)


def extract_tool_calls(
    text: str,
    tools: Sequence[ToolSpec],
    *,
    id_factory: Callable[[], str] = new_tool_call_id,
) -> ExtractionResult:
    """Split model output into residual text and tool calls.

    With an empty `tools` catalog the text is returned untouched; the pattern
    is never scanned for, so prose that happens to contain the markers is safe.
    """
    if not tools:
        return ExtractionResult(text=text)

    calls: list[ToolCall] = []
    for match in TOOL_CALL_RE.finditer(text):
        calls.append(
            ToolCall(id=id_factory(), name=match.group("name"), arguments_json=match.group("args"))
        )

    if calls:
        known = {tool.name for tool in tools}
        unknown = [call.name for call in calls if call.name not in known]
        if unknown:
            logger.debug(f"model called tools outside the catalog: {unknown}")
        residual = TOOL_CALL_RE.sub("", text).strip()
        logger.debug(f"extracted {len(calls)} tool calls")
        return ExtractionResult(text=residual or None, tool_calls=tuple(calls))

    legacy = _parse_legacy_tool_calls(text, id_factory)
    if legacy:
        logger.warning(f"tool calls recovered from legacy JSON format ({len(legacy)} calls)")
        return ExtractionResult(text=None, tool_calls=tuple(legacy))
    return ExtractionResult(text=text)


def _parse_legacy_tool_calls(text: str, id_factory: Callable[[], str]) -> list[ToolCall]:
    try:
        parsed = json.loads(text)
    except (TypeError, ValueError):
        return []
    if not isinstance(parsed, dict) or not isinstance(parsed.get("tool_calls"), list):
        return []

    calls: list[ToolCall] = []
    for entry in parsed["tool_calls"]:
        if not isinstance(entry, dict) or not isinstance(entry.get("function"), dict):
            return []
        function = entry["function"]
        name = function.get("name")
        if not isinstance(name, str) or not name:
            return []
        arguments = function.get("arguments", {})
        if isinstance(arguments, str):
            try:
                arguments = json.loads(arguments)
            except ValueError:
                return []
        calls.append(
            ToolCall(
                id=str(entry.get("id") or id_factory()),
                name=name,
                arguments_json=json.dumps(arguments, ensure_ascii=False),
            )
        )
    return calls


def _forced_tool_name(tool_choice: Mapping[str, Any]) -> str | None:
    if tool_choice.get("type") == "tool":
        name = tool_choice.get("tool_name") or tool_choice.get("toolName")
        return str(name) if name else None
    function = tool_choice.get("function")
    if tool_choice.get("type") == "function" and isinstance(function, Mapping):
        name = function.get("name")
        return str(name) if name else None
    return None


def build_tool_system_prompt(tools: Sequence[ToolSpec], tool_choice: ToolChoice = None) -> str:
    """Instructions that teach the model the TOOL_CALL / ARGUMENTS format."""
    if not tools:
        return ""

    descriptions = "\n\n".join(tool.describe() for tool in tools)
    prompt = (
        "You are an AI assistant that can call external tools to solve the user's request.\n\n"
        f"Available tools:\n\n{descriptions}\n\n"
        "INSTRUCTIONS FOR CALLING TOOLS:\n"
        "1. If a tool is needed, respond using the format:\n"
        "   TOOL_CALL: <tool_name>\n"
        "   ARGUMENTS: <json_parameters>\n"
        "2. You can list multiple tool calls one after another.\n"
        "3. If tool results are already provided in the conversation, you MUST use them "
        "to craft a final answer.\n"
        "4. After you have the information you need, answer the user DIRECTLY and DO NOT "
        "make any more tool calls."
    )

    if tool_choice == "required":
        prompt += (
            "\n\nA tool call is required to answer this request. Do not attempt to answer "
            "the request without calling a tool."
        )
    elif tool_choice == "none":
        prompt += "\n\nDo NOT call any tools. Provide a direct answer."
    elif isinstance(tool_choice, Mapping):
        forced = _forced_tool_name(tool_choice)
        if forced:
            prompt += f'\n\nYou must use only the "{forced}" tool. Do not use any other tools.'
    return prompt


__all__ = [
    "ExtractionResult",
    "TOOL_CALL_RE",
    "ToolChoice",
    "build_tool_system_prompt",
    "extract_tool_calls",
    "new_tool_call_id",
]
