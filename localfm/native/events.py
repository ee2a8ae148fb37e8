from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from .messages import ToolCall


@dataclass(frozen=True, slots=True)
class TextDeltaEvent:
    delta: str
    type: Literal["text.delta"] = "text.delta"


@dataclass(frozen=True, slots=True)
class ToolCallEvent:
    tool_call: ToolCall
    type: Literal["tool_call"] = "tool_call"


@dataclass(frozen=True, slots=True)
class ErrorEvent:
    message: str
    type: Literal["error"] = "error"


@dataclass(frozen=True, slots=True)
class DoneEvent:
    finish_reason: str | None = "stop"
    type: Literal["done"] = "done"


StreamEvent = TextDeltaEvent | ToolCallEvent | ErrorEvent | DoneEvent


def is_terminal(event: StreamEvent) -> bool:
    return isinstance(event, (DoneEvent, ErrorEvent))


__all__ = [
    "DoneEvent",
    "ErrorEvent",
    "StreamEvent",
    "TextDeltaEvent",
    "ToolCallEvent",
    "is_terminal",
]
