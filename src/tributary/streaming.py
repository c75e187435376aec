"""Streaming primitives for provider responses.

Providers turn each decoded wire frame into a :class:`StreamChunk`.  The
:class:`ToolCallAccumulator` reassembles tool calls whose arguments
arrive in fragments across multiple chunks.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from tributary.citations import Citation
from tributary.events import FinishReason, ProviderToolEvent
from tributary.tools import ToolCall, parse_arguments
from tributary.usage import Usage

logger = logging.getLogger(__name__)


@dataclass
class ToolCallFragment:
    """A fragment of a tool call from a streaming chunk.

    A fragment carrying ``call_id`` or ``name`` opens a new call at
    ``index``.  ``arguments_delta`` is appended to the raw buffer, while
    ``arguments`` (for vendors that send whole calls) replaces it.
    """

    index: int
    call_id: str | None = None
    name: str | None = None
    arguments_delta: str | None = None
    arguments: str | None = None
    result_id: str | None = None
    reasoning_id: str | None = None
    reasoning_summary: list[str] | None = None


@dataclass
class VendorError:
    """An error frame reported inside the stream."""

    error_type: str
    message: str
    recoverable: bool = True
    fatal: bool = False


@dataclass
class StreamChunk:
    """Normalised streaming chunk from any provider."""

    model: str | None = None
    message_id: str | None = None
    content_delta: str | None = None
    thinking_delta: str | None = None
    thinking_signature: str | None = None
    tool_call_fragments: list[ToolCallFragment] | None = None
    completed_tool_indices: list[int] | None = None
    finish_reason: FinishReason | None = None
    usage: Usage | None = None
    citations: list[Citation] | None = None
    block_index: int | None = None
    provider_tool_events: list[ProviderToolEvent] | None = None
    error: VendorError | None = None
    text_complete: bool = False
    thinking_complete: bool = False
    additional_content: dict[str, Any] = field(default_factory=dict)


@dataclass
class _PendingCall:
    id: str = ""
    name: str = ""
    arguments: str = ""
    result_id: str | None = None
    reasoning_id: str | None = None
    reasoning_summary: list[str] = field(default_factory=list)


class ToolCallAccumulator:
    """Assembles complete tool calls from streaming fragments.

    Calls are keyed by their position in the turn.  Each call is
    finalised at most once; finalised calls are returned in index
    order.  A new ``call_id`` arriving at a position that still holds a
    pending call finalises that call first.
    """

    def __init__(self) -> None:
        self._pending: dict[int, _PendingCall] = {}
        self._completed: list[tuple[int, ToolCall]] = []
        self._last_index: int | None = None

    def feed(self, fragment: ToolCallFragment) -> ToolCall | None:
        """Apply ``fragment``; returns a call it displaced, if any."""
        idx = fragment.index
        opens = fragment.call_id is not None or fragment.name is not None
        displaced = None
        pending = self._pending.get(idx)
        if pending is None:
            finished = self._finished_at(idx)
            if finished is not None and (
                fragment.call_id is None or fragment.call_id == finished.id
            ):
                logger.debug(f"Ignoring fragment for finalised tool call {idx}")
                return None
            pending = self._pending[idx] = _PendingCall()
        elif pending.id and fragment.call_id and fragment.call_id != pending.id:
            logger.debug(
                f"Tool call {fragment.call_id} replaces {pending.id} at {idx}"
            )
            displaced = self.finalize(idx)
            pending = self._pending[idx] = _PendingCall()
        if opens:
            self._last_index = idx
        if fragment.call_id is not None:
            pending.id = fragment.call_id
        if fragment.name is not None:
            pending.name = fragment.name
        if fragment.result_id is not None:
            pending.result_id = fragment.result_id
        if fragment.reasoning_id is not None:
            pending.reasoning_id = fragment.reasoning_id
        if fragment.reasoning_summary is not None:
            pending.reasoning_summary = list(fragment.reasoning_summary)
        if fragment.arguments is not None:
            pending.arguments = fragment.arguments
        if fragment.arguments_delta is not None:
            pending.arguments += fragment.arguments_delta
        return displaced

    def _finished_at(self, index: int) -> ToolCall | None:
        for idx, call in reversed(self._completed):
            if idx == index:
                return call
        return None

    def get(self, index: int) -> tuple[str, str] | None:
        """``(id, name)`` of the call at ``index``, if one is known."""
        pending = self._pending.get(index)
        if pending is not None:
            return pending.id, pending.name
        done = self._finished_at(index)
        if done is not None:
            return done.id, done.name
        return None

    def index_of(self, call_id: str) -> int | None:
        """Position of the call with ``call_id``, pending or finalised."""
        for idx, pending in self._pending.items():
            if pending.id == call_id:
                return idx
        for idx, call in self._completed:
            if call.id == call_id:
                return idx
        return None

    @property
    def last_index(self) -> int | None:
        """Position of the most recently opened call."""
        return self._last_index

    @property
    def next_index(self) -> int:
        """First position past every known call."""
        known = [*self._pending, *(idx for idx, _ in self._completed)]
        return max(known) + 1 if known else 0

    def finalize(self, index: int) -> ToolCall | None:
        """Finalise the call at ``index``; ``None`` if not pending."""
        pending = self._pending.pop(index, None)
        if pending is None:
            return None
        call = ToolCall(
            id=pending.id,
            name=pending.name,
            arguments=parse_arguments(pending.arguments),
            result_id=pending.result_id,
            reasoning_id=pending.reasoning_id,
            reasoning_summary=pending.reasoning_summary,
        )
        self._completed.append((index, call))
        return call

    def finalize_pending(self) -> list[ToolCall]:
        """Finalise every pending call, in index order."""
        return [self.finalize(i) for i in sorted(self._pending)]

    @property
    def has_pending(self) -> bool:
        return bool(self._pending)

    def __len__(self) -> int:
        return len(self._pending) + len(self._completed)

    def completed(self) -> list[ToolCall]:
        """Every finalised call, in index order."""
        ordered = sorted(self._completed, key=lambda entry: entry[0])
        return [call for _, call in ordered]
