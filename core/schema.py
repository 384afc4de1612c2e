"""Data schema for conversation turns and their derived display view."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, TypedDict

ROLES = ("user", "assistant", "tool", "system")


class Message(TypedDict):
    role: str
    content: str


@dataclass(frozen=True)
class Turn:
    """One message in a conversation. Never mutated once created."""

    role: str
    content: str

    def __post_init__(self) -> None:
        if self.role not in ROLES:
            raise ValueError(f"Turn.role must be one of {ROLES}, got {self.role!r}")
        if not isinstance(self.content, str):
            raise TypeError("Turn.content must be a string")

    def to_dict(self) -> Message:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class DecoratedTurn:
    """A turn plus the reasoning/answer view derived from its content.

    ``reasoning_complete`` and ``reasoning_text`` are only set for assistant
    turns; for every other role they stay ``None`` and ``answer_text`` is the
    raw content.
    """

    role: str
    content: str
    answer_text: str
    reasoning_complete: Optional[bool] = None
    reasoning_text: Optional[str] = None

    @property
    def is_thinking(self) -> bool:
        return self.role == "assistant" and not self.reasoning_complete


__all__ = ["ROLES", "Message", "Turn", "DecoratedTurn"]
