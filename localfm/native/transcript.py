from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Sequence

from localfm.utils.exceptions import EmptyConversation

from .messages import ChatMessage

EntryKind = Literal["instructions", "prompt", "response"]

_ROLE_TO_KIND: dict[str, EntryKind] = {
    "system": "instructions",
    "user": "prompt",
    "assistant": "response",
}

_KIND_TO_ROLE: dict[EntryKind, str] = {
    "instructions": "system",
    "prompt": "user",
    "response": "assistant",
}


@dataclass(frozen=True, slots=True)
class TranscriptEntry:
    """One turn of the runtime's conversation history."""

    kind: EntryKind
    text: str

    @property
    def role(self) -> str:
        return _KIND_TO_ROLE[self.kind]


def convert_messages(messages: Sequence[ChatMessage]) -> list[TranscriptEntry]:
    """Map chat messages to transcript entries; unknown roles become prompts."""
    return [
        TranscriptEntry(kind=_ROLE_TO_KIND.get(m.role.lower(), "prompt"), text=m.content)
        for m in messages
    ]


def split_conversation(messages: Sequence[ChatMessage]) -> tuple[list[TranscriptEntry], str]:
    """Return (history entries, current prompt); the last message is the current turn."""
    if not messages:
        raise EmptyConversation()
    return convert_messages(messages[:-1]), messages[-1].content


def render_transcript(entries: Sequence[TranscriptEntry], current: str) -> str:
    """Flatten history into a single prompt for runtimes that only take text."""
    lines = [f"{entry.role}: {entry.text}" for entry in entries]
    lines.append(f"user: {current}")
    return "\n".join(lines) + "\nassistant:"


__all__ = [
    "EntryKind",
    "TranscriptEntry",
    "convert_messages",
    "render_transcript",
    "split_conversation",
]
