"""Request configuration."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from tributary.message import Message
from tributary.tools import Tool


class TextRequest(BaseModel):
    """Everything needed to generate text from a model.

    ``messages`` grows during a run: the step loop appends the assistant
    message and tool results of every tool-calling turn.

    ``tool_choice`` accepts ``"auto"``, ``"any"``, ``"none"`` or a tool
    name.  It only applies to the first turn of a run.
    """

    model_config = {"arbitrary_types_allowed": True}

    model: str
    messages: list[Message] = Field(default_factory=list)
    system_prompts: list[str] = Field(default_factory=list)
    tools: list[Tool] = Field(default_factory=list)
    max_steps: int = Field(default=5, ge=1)
    tool_choice: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    top_p: float | None = None
    provider_options: dict[str, Any] = Field(default_factory=dict)

    def add_message(self, message: Message) -> TextRequest:
        self.messages.append(message)
        return self

    def reset_tool_choice(self) -> None:
        self.tool_choice = None
