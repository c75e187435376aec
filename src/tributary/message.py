from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_serializer

from tributary.tools import ToolCall, ToolResult


class MessageRole(Enum):
    SYSTEM = "system"
    ASSISTANT = "assistant"
    USER = "user"
    TOOL = "tool"


class Message(BaseModel):
    model_config = {"arbitrary_types_allowed": True}

    role: MessageRole
    content: str = ""

    @field_serializer("role")
    def serialize_role(self, role: MessageRole, _info) -> str:
        return role.value


class SystemMessage(Message):
    role: MessageRole = MessageRole.SYSTEM


class UserMessage(Message):
    role: MessageRole = MessageRole.USER


class AssistantMessage(Message):
    """Assistant turn, including any tool calls it requested.

    ``additional_content`` carries vendor-specific material that must be
    replayed on the next turn (thinking text and signatures, for one).
    """

    role: MessageRole = MessageRole.ASSISTANT
    tool_calls: list[ToolCall] = Field(default_factory=list)
    additional_content: dict[str, Any] = Field(default_factory=dict)


class ToolResultMessage(Message):
    role: MessageRole = MessageRole.TOOL
    tool_results: list[ToolResult] = Field(default_factory=list)
