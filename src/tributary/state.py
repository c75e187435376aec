"""Mutable bookkeeping for one streaming request."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from tributary.citations import Citation
from tributary.events import FinishReason, new_id
from tributary.streaming import ToolCallAccumulator
from tributary.usage import Usage


@dataclass
class StreamState:
    """Turn-scoped and request-scoped stream state.

    The step loop owns one instance per request.  :meth:`reset` is called
    between turns: it clears everything turn-scoped but keeps
    ``stream_started`` and the cumulative ``usage``.

    Example:
        state = StreamState()
        if state.should_emit_text_start():
            state.text_started = True
    """

    message_id: str = field(default_factory=new_id)
    reasoning_id: str = field(default_factory=new_id)
    stream_started: bool = False
    step_started: bool = False
    text_started: bool = False
    thinking_started: bool = False
    current_text: str = ""
    current_thinking: str = ""
    thinking_signature: str = ""
    tool_calls: ToolCallAccumulator = field(default_factory=ToolCallAccumulator)
    citations: list[Citation] = field(default_factory=list)
    turn_usage: Usage | None = None
    usage: Usage = field(default_factory=Usage)
    finish_reason: FinishReason | None = None
    model: str = ""
    provider: str = ""
    additional_content: dict[str, Any] = field(default_factory=dict)
    provider_state: dict[str, Any] = field(default_factory=dict)

    def should_emit_stream_start(self) -> bool:
        return not self.stream_started

    def should_emit_step_start(self) -> bool:
        return not self.step_started

    def should_emit_text_start(self) -> bool:
        return not self.text_started

    def should_emit_thinking_start(self) -> bool:
        return not self.thinking_started

    def add_usage(self, usage: Usage | None) -> None:
        """Merge a turn's usage into the request total."""
        if usage is not None:
            self.usage = self.usage.merge(usage)

    def reset(self) -> None:
        """Prepare for the next turn.

        Keeps the run-level fields (``stream_started``, ``usage``, ``model``)
        and clears everything else, ``provider_state`` included.
        """
        self.message_id = new_id()
        self.reasoning_id = new_id()
        self.step_started = False
        self.text_started = False
        self.thinking_started = False
        self.current_text = ""
        self.current_thinking = ""
        self.thinking_signature = ""
        self.tool_calls = ToolCallAccumulator()
        self.citations = []
        self.turn_usage = None
        self.finish_reason = None
        self.additional_content = {}
        self.provider_state = {}
