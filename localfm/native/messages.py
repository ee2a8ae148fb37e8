from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Literal, Sequence

from localfm.utils.exceptions import InvalidInput


@dataclass(frozen=True, slots=True)
class ToolCall:
    """Tool invocation recovered from model output.

    `arguments_json` is kept verbatim; parsing and validation belong to the caller.
    """

    id: str
    name: str
    arguments_json: str
    type: Literal["function"] = "function"

    def to_openai(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "function": {"name": self.name, "arguments": self.arguments_json},
        }


@dataclass(frozen=True, slots=True)
class ChatMessage:
    """One conversation turn. The last message of a list is the current turn."""

    role: str
    content: str
    name: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.role, str) or not self.role:
            raise InvalidInput("message role must be a non-empty string", field="role")
        if not isinstance(self.content, str):
            raise InvalidInput("message content must be a string", field="content")

    def to_dict(self) -> dict[str, Any]:
        msg: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.name:
            msg["name"] = self.name
        return msg


def message_from_dict(payload: Any) -> ChatMessage:
    if not isinstance(payload, dict):
        raise InvalidInput("message must be a JSON object", field="messages")
    role = payload.get("role")
    content = payload.get("content")
    if not isinstance(role, str) or not role.strip():
        raise InvalidInput("message is missing a role", field="role")
    if content is None:
        raise InvalidInput("message is missing content", field="content")
    name = payload.get("name")
    return ChatMessage(
        role=role.strip().lower(),
        content=content if isinstance(content, str) else json.dumps(content, ensure_ascii=False),
        name=str(name) if name else None,
    )


def messages_from_json(raw: str) -> list[ChatMessage]:
    """Parse the JSON array form used at the runtime boundary."""
    try:
        data = json.loads(raw)
    except (TypeError, json.JSONDecodeError) as exc:
        raise InvalidInput(f"malformed message JSON: {exc}", field="messages") from exc
    if not isinstance(data, list):
        raise InvalidInput("message JSON must be an array", field="messages")
    return [message_from_dict(item) for item in data]


def messages_to_json(messages: Sequence[ChatMessage]) -> str:
    return json.dumps([m.to_dict() for m in messages], ensure_ascii=False)


def coerce_messages(messages: Sequence[ChatMessage | dict[str, Any]]) -> list[ChatMessage]:
    return [m if isinstance(m, ChatMessage) else message_from_dict(m) for m in messages]


__all__ = [
    "ChatMessage",
    "ToolCall",
    "coerce_messages",
    "message_from_dict",
    "messages_from_json",
    "messages_to_json",
]
