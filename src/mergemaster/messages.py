"""Internal conversation message model.

Message content is a list of typed blocks. The dict form produced by
``Message.to_dict`` is the Anthropic-style representation that providers
translate from and that checkpoints store.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Literal, Union

Role = Literal["user", "assistant"]


@dataclass
class TextBlock:
    text: str

    def to_dict(self) -> dict[str, Any]:
        return {"type": "text", "text": self.text}


@dataclass
class ToolUseBlock:
    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"type": "tool_use", "id": self.id, "name": self.name, "input": copy.deepcopy(self.input)}


@dataclass
class ToolResultBlock:
    tool_use_id: str
    content: str
    is_error: bool = False

    def to_dict(self) -> dict[str, Any]:
        block: dict[str, Any] = {"type": "tool_result", "tool_use_id": self.tool_use_id, "content": self.content}
        if self.is_error:
            block["is_error"] = True
        return block


ContentBlock = Union[TextBlock, ToolUseBlock, ToolResultBlock]


def block_from_dict(raw: dict[str, Any]) -> ContentBlock:
    block_type = raw.get("type")
    if block_type == "text":
        return TextBlock(text=str(raw.get("text", "")))
    if block_type == "tool_use":
        return ToolUseBlock(id=str(raw["id"]), name=str(raw["name"]), input=dict(raw.get("input") or {}))
    if block_type == "tool_result":
        content = raw.get("content", "")
        if isinstance(content, list):
            content = "\n".join(
                str(sub.get("text", "")) for sub in content if isinstance(sub, dict) and sub.get("type") == "text"
            )
        return ToolResultBlock(
            tool_use_id=str(raw["tool_use_id"]),
            content=str(content),
            is_error=bool(raw.get("is_error", False)),
        )
    raise ValueError(f"Unknown content block type: {block_type!r}")


@dataclass
class Message:
    role: Role
    content: list[ContentBlock] = field(default_factory=list)

    @classmethod
    def user(cls, text: str) -> Message:
        return cls(role="user", content=[TextBlock(text)])

    @classmethod
    def tool_results(cls, results: list[ToolResultBlock]) -> Message:
        return cls(role="user", content=list(results))

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Message:
        role = raw.get("role")
        if role not in ("user", "assistant"):
            raise ValueError(f"Unsupported message role: {role!r}")
        content = raw.get("content", "")
        if isinstance(content, str):
            return cls(role=role, content=[TextBlock(content)])
        return cls(role=role, content=[block_from_dict(b) for b in content])

    def to_dict(self) -> dict[str, Any]:
        return {"role": self.role, "content": [b.to_dict() for b in self.content]}

    def copy(self) -> Message:
        return Message(role=self.role, content=copy.deepcopy(self.content))

    @property
    def text_blocks(self) -> list[TextBlock]:
        return [b for b in self.content if isinstance(b, TextBlock)]

    @property
    def tool_uses(self) -> list[ToolUseBlock]:
        return [b for b in self.content if isinstance(b, ToolUseBlock)]

    @property
    def tool_result_blocks(self) -> list[ToolResultBlock]:
        return [b for b in self.content if isinstance(b, ToolResultBlock)]

    @property
    def has_tool_uses(self) -> bool:
        return any(isinstance(b, ToolUseBlock) for b in self.content)

    @property
    def has_tool_results(self) -> bool:
        return any(isinstance(b, ToolResultBlock) for b in self.content)

    @property
    def text(self) -> str:
        return "\n".join(b.text for b in self.text_blocks)
