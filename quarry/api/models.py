"""Shared data models for the conversation loop.

A Conversation is an ordered list of Turns; each Turn carries typed content
blocks. Blocks know how to render themselves in Anthropic Messages API
format via to_api().
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Literal, Union

Role = Literal["user", "assistant"]


@dataclass
class TextBlock:
    text: str

    def to_api(self) -> dict[str, Any]:
        return {"type": "text", "text": self.text}


@dataclass
class ReasoningBlock:
    """Model reasoning shown in the transcript, never sent back to the API."""

    text: str


@dataclass
class ToolUseBlock:
    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)

    def to_api(self) -> dict[str, Any]:
        return {"type": "tool_use", "id": self.id, "name": self.name, "input": self.input}


@dataclass
class ToolResultBlock:
    tool_use_id: str
    payload: dict[str, Any]
    is_error: bool = False

    def to_api(self) -> dict[str, Any]:
        return {
            "type": "tool_result",
            "tool_use_id": self.tool_use_id,
            "content": json.dumps(self.payload, ensure_ascii=False, default=str),
            "is_error": self.is_error,
        }


ContentBlock = Union[TextBlock, ReasoningBlock, ToolUseBlock, ToolResultBlock]


@dataclass
class Turn:
    """One conversation entry."""

    role: Role
    blocks: list[ContentBlock] = field(default_factory=list)

    @classmethod
    def text(cls, role: Role, text: str) -> Turn:
        return cls(role=role, blocks=[TextBlock(text)])

    def to_api(self) -> dict[str, Any]:
        return {
            "role": self.role,
            "content": [b.to_api() for b in self.blocks if not isinstance(b, ReasoningBlock)],
        }

    @property
    def tool_uses(self) -> list[ToolUseBlock]:
        return [b for b in self.blocks if isinstance(b, ToolUseBlock)]

    @property
    def tool_results(self) -> list[ToolResultBlock]:
        return [b for b in self.blocks if isinstance(b, ToolResultBlock)]


@dataclass
class Conversation:
    """Turns of a single loop invocation. Only ever appended to."""

    turns: list[Turn] = field(default_factory=list)

    @classmethod
    def seeded(cls, history: list[tuple[Role, str]], message: str) -> Conversation:
        """Build a conversation from prior (role, text) pairs plus the new user message.

        Consecutive same-role entries are merged and leading assistant entries
        dropped so the first turn on the wire is always a user turn.
        """
        conversation = cls()
        for role, text in [*history, ("user", message)]:
            text = text.strip()
            if not text:
                continue
            if not conversation.turns and role != "user":
                continue
            last = conversation.turns[-1] if conversation.turns else None
            if last is not None and last.role == role:
                last.blocks.append(TextBlock(text))
            else:
                conversation.turns.append(Turn.text(role, text))
        return conversation

    def append(self, turn: Turn) -> None:
        self.turns.append(turn)

    def to_api(self) -> list[dict[str, Any]]:
        return [t.to_api() for t in self.turns]

    def has_tool_history(self) -> bool:
        return any(t.tool_uses or t.tool_results for t in self.turns)

    def __len__(self) -> int:
        return len(self.turns)


@dataclass
class Attachment:
    """A binary artifact delivered to the display surface, not to the model."""

    filename: str
    data: bytes
    caption: str = ""


@dataclass
class ToolOutcome:
    """Normalized result of one tool execution."""

    ok: bool
    payload: dict[str, Any] = field(default_factory=dict)
    error_message: str = ""
    attachments: list[Attachment] = field(default_factory=list)

    @classmethod
    def success(cls, payload: dict[str, Any], attachments: list[Attachment] | None = None) -> ToolOutcome:
        return cls(ok=True, payload=payload, attachments=attachments or [])

    @classmethod
    def failure(cls, error_message: str) -> ToolOutcome:
        return cls(ok=False, error_message=error_message)

    def to_block(self, tool_use_id: str) -> ToolResultBlock:
        if self.ok:
            return ToolResultBlock(tool_use_id=tool_use_id, payload=self.payload)
        return ToolResultBlock(
            tool_use_id=tool_use_id,
            payload={"success": False, "error": self.error_message},
            is_error=True,
        )
