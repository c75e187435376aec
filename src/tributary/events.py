"""Canonical stream events.

Every provider's wire format is normalised into this closed set of
events.  A request always produces exactly one :class:`StreamStartEvent`
and one :class:`StreamEndEvent`; each vendor turn is bracketed by a
:class:`StepStartEvent` / :class:`StepFinishEvent` pair.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import asdict, dataclass, field, is_dataclass
from enum import Enum
from typing import Any, ClassVar

from tributary.citations import Citation
from tributary.tools import Artifact, ToolCall, ToolResult
from tributary.usage import Usage


def new_id() -> str:
    return uuid.uuid4().hex


class FinishReason(Enum):
    STOP = "stop"
    LENGTH = "length"
    CONTENT_FILTER = "content_filter"
    TOOL_CALLS = "tool_calls"
    ERROR = "error"
    OTHER = "other"
    UNKNOWN = "unknown"


class StreamEventType(Enum):
    STREAM_START = "stream_start"
    STEP_START = "step_start"
    STEP_FINISH = "step_finish"
    TEXT_START = "text_start"
    TEXT_DELTA = "text_delta"
    TEXT_COMPLETE = "text_complete"
    THINKING_START = "thinking_start"
    THINKING_DELTA = "thinking_delta"
    THINKING_COMPLETE = "thinking_complete"
    TOOL_CALL = "tool_call"
    TOOL_CALL_DELTA = "tool_call_delta"
    TOOL_RESULT = "tool_result"
    ARTIFACT = "artifact"
    PROVIDER_TOOL = "provider_tool"
    CITATION = "citation"
    ERROR = "error"
    STREAM_END = "stream_end"


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if is_dataclass(value) and not isinstance(value, type):
        return _plain(asdict(value))
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


@dataclass
class StreamEvent:
    """Base for all streaming events."""

    type: ClassVar[StreamEventType]

    id: str = field(default_factory=new_id, kw_only=True)
    timestamp: int = field(default_factory=lambda: int(time.time()), kw_only=True)

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly mapping of the event, tagged with its type."""
        return {"type": self.type.value, **_plain(asdict(self))}


@dataclass
class StreamStartEvent(StreamEvent):
    type = StreamEventType.STREAM_START

    model: str = ""
    provider: str = ""


@dataclass
class StepStartEvent(StreamEvent):
    type = StreamEventType.STEP_START


@dataclass
class StepFinishEvent(StreamEvent):
    type = StreamEventType.STEP_FINISH


@dataclass
class TextStartEvent(StreamEvent):
    type = StreamEventType.TEXT_START

    message_id: str = ""


@dataclass
class TextDeltaEvent(StreamEvent):
    type = StreamEventType.TEXT_DELTA

    delta: str = ""
    message_id: str = ""


@dataclass
class TextCompleteEvent(StreamEvent):
    type = StreamEventType.TEXT_COMPLETE

    message_id: str = ""


@dataclass
class ThinkingStartEvent(StreamEvent):
    type = StreamEventType.THINKING_START

    reasoning_id: str = ""


@dataclass
class ThinkingDeltaEvent(StreamEvent):
    type = StreamEventType.THINKING_DELTA

    delta: str = ""
    reasoning_id: str = ""


@dataclass
class ThinkingCompleteEvent(StreamEvent):
    type = StreamEventType.THINKING_COMPLETE

    reasoning_id: str = ""


@dataclass
class ToolCallEvent(StreamEvent):
    type = StreamEventType.TOOL_CALL

    tool_call: ToolCall = field(default_factory=ToolCall)
    message_id: str = ""


@dataclass
class ToolCallDeltaEvent(StreamEvent):
    """Raw argument text for a tool call that is still streaming."""

    type = StreamEventType.TOOL_CALL_DELTA

    tool_id: str = ""
    tool_name: str = ""
    delta: str = ""
    message_id: str = ""


@dataclass
class ToolResultEvent(StreamEvent):
    type = StreamEventType.TOOL_RESULT

    tool_result: ToolResult | None = None
    message_id: str = ""
    success: bool = True
    error: str | None = None


@dataclass
class ArtifactEvent(StreamEvent):
    type = StreamEventType.ARTIFACT

    artifact: Artifact | None = None
    tool_call_id: str = ""
    tool_name: str = ""
    message_id: str = ""


@dataclass
class ProviderToolEvent(StreamEvent):
    """Progress of a tool executed on the vendor's side (web search etc.)."""

    type = StreamEventType.PROVIDER_TOOL

    tool_type: str = ""
    status: str = ""
    item_id: str = ""
    data: dict[str, Any] = field(default_factory=dict)


@dataclass
class CitationEvent(StreamEvent):
    type = StreamEventType.CITATION

    citation: Citation = field(default_factory=Citation)
    message_id: str = ""
    block_index: int | None = None


@dataclass
class ErrorEvent(StreamEvent):
    type = StreamEventType.ERROR

    error_type: str = ""
    message: str = ""
    recoverable: bool = True


@dataclass
class StreamEndEvent(StreamEvent):
    """Final event of a request, always the last one yielded."""

    type = StreamEventType.STREAM_END

    finish_reason: FinishReason = FinishReason.UNKNOWN
    usage: Usage = field(default_factory=Usage)
    citations: list[Citation] = field(default_factory=list)
    additional_content: dict[str, Any] = field(default_factory=dict)
