"""One vendor turn: a single HTTP request and its streamed response.

:class:`TurnProcessor` sends the request, decodes frames with the
provider's decoder, normalises them with ``provider.parse_chunk`` and
turns the resulting chunks into canonical events.  It never executes
tools; the step loop does that with the calls collected here.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Iterator
from dataclasses import dataclass, field
from typing import Any

from tributary.decoders import LineCursor
from tributary.events import (
    CitationEvent,
    ErrorEvent,
    FinishReason,
    StreamEvent,
    TextCompleteEvent,
    TextDeltaEvent,
    TextStartEvent,
    ThinkingCompleteEvent,
    ThinkingDeltaEvent,
    ThinkingStartEvent,
    ToolCallDeltaEvent,
    ToolCallEvent,
)
from tributary.exceptions import ProviderStreamError, RateLimitedError
from tributary.provider import Provider
from tributary.request import TextRequest
from tributary.state import StreamState
from tributary.streaming import StreamChunk, VendorError
from tributary.tools import ToolCall
from tributary.transport import Transport, raise_for_status
from tributary.usage import Usage

logger = logging.getLogger(__name__)

RATE_LIMIT_ERRORS = ("rate_limit_exceeded", "rate_limit_error")


@dataclass
class TurnResult:
    """Everything the step loop needs from a finished turn."""

    text: str = ""
    thinking: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    finish_reason: FinishReason = FinishReason.UNKNOWN
    usage: Usage | None = None
    model: str = ""
    message_id: str = ""
    additional_content: dict[str, Any] = field(default_factory=dict)


class TurnProcessor:
    """Streams a single turn and records its outcome.

    ``stream()`` is an async generator; once it is exhausted ``result``
    holds the :class:`TurnResult`.  The response body is closed on every
    exit path, including when the consumer stops iterating early.
    """

    def __init__(
        self, provider: Provider, transport: Transport, state: StreamState,
    ) -> None:
        self.provider = provider
        self.transport = transport
        self.state = state
        self.result: TurnResult | None = None

    async def stream(self, request: TextRequest) -> AsyncIterator[StreamEvent]:
        self.result = None
        provider = self.provider
        logger.info(f"Sending {provider.name} request for model {request.model}")
        response = await self.transport.send(
            "POST",
            provider.url(request),
            provider.headers(),
            provider.build_payload(request),
        )
        try:
            await raise_for_status(provider.name, response)
            cursor = LineCursor(response.aiter_lines())
            while not cursor.eof:
                data = await provider.decoder.read_frame(cursor)
                if data is None:
                    continue
                chunk = provider.parse_chunk(data, self.state)
                for event in self._apply(chunk):
                    yield event
            for event in self._finish():
                yield event
        finally:
            await response.aclose()
        self.result = self._build_result()
        logger.info(
            f"Turn finished: {self.result.finish_reason.value}, "
            f"{len(self.result.tool_calls)} tool call(s)"
        )

    # ------------------------------------------------------------------
    # Chunk application
    # ------------------------------------------------------------------

    def _apply(self, chunk: StreamChunk) -> Iterator[StreamEvent]:
        state = self.state
        if chunk.model:
            state.model = chunk.model
        if chunk.message_id and not state.text_started:
            state.message_id = chunk.message_id
        if chunk.error is not None:
            yield from self._error(chunk.error)
        for event in chunk.provider_tool_events or []:
            yield event

        if chunk.thinking_delta:
            yield from self._complete_text()
            if state.should_emit_thinking_start():
                state.thinking_started = True
                yield ThinkingStartEvent(reasoning_id=state.reasoning_id)
            state.current_thinking += chunk.thinking_delta
            yield ThinkingDeltaEvent(
                delta=chunk.thinking_delta, reasoning_id=state.reasoning_id,
            )
        if chunk.thinking_signature:
            state.thinking_signature += chunk.thinking_signature
        if chunk.thinking_complete:
            yield from self._complete_thinking()

        if chunk.content_delta:
            yield from self._complete_thinking()
            if state.should_emit_text_start():
                state.text_started = True
                yield TextStartEvent(message_id=state.message_id)
            state.current_text += chunk.content_delta
            yield TextDeltaEvent(delta=chunk.content_delta, message_id=state.message_id)

        for citation in chunk.citations or []:
            state.citations.append(citation)
            yield CitationEvent(
                citation=citation,
                message_id=state.message_id,
                block_index=chunk.block_index,
            )
        if chunk.text_complete:
            yield from self._complete_text()

        if chunk.tool_call_fragments:
            yield from self._complete_text()
            yield from self._complete_thinking()
            for fragment in chunk.tool_call_fragments:
                displaced = state.tool_calls.feed(fragment)
                if displaced is not None:
                    yield ToolCallEvent(tool_call=displaced, message_id=state.message_id)
                if self.provider.streams_tool_call_deltas and fragment.arguments_delta:
                    call_id, name = state.tool_calls.get(fragment.index) or ("", "")
                    yield ToolCallDeltaEvent(
                        tool_id=call_id,
                        tool_name=name,
                        delta=fragment.arguments_delta,
                        message_id=state.message_id,
                    )
        for index in chunk.completed_tool_indices or []:
            call = state.tool_calls.finalize(index)
            if call is not None:
                yield ToolCallEvent(tool_call=call, message_id=state.message_id)

        if chunk.usage is not None:
            state.turn_usage = chunk.usage
        state.additional_content.update(chunk.additional_content)

        if chunk.finish_reason is not None:
            state.finish_reason = chunk.finish_reason
            yield from self._finish()

    def _error(self, error: VendorError) -> Iterator[StreamEvent]:
        yield ErrorEvent(
            error_type=error.error_type,
            message=error.message,
            recoverable=error.recoverable,
        )
        if not error.fatal:
            return
        logger.error(
            f"Fatal {self.provider.name} stream error {error.error_type}: {error.message}"
        )
        if error.error_type in RATE_LIMIT_ERRORS:
            raise RateLimitedError(self.provider.name, message=error.message)
        raise ProviderStreamError(self.provider.name, error.error_type, error.message)

    def _complete_text(self) -> Iterator[StreamEvent]:
        if self.state.text_started:
            self.state.text_started = False
            yield TextCompleteEvent(message_id=self.state.message_id)

    def _complete_thinking(self) -> Iterator[StreamEvent]:
        if self.state.thinking_started:
            self.state.thinking_started = False
            yield ThinkingCompleteEvent(reasoning_id=self.state.reasoning_id)

    def _finish(self) -> Iterator[StreamEvent]:
        """Close open channels and finalise every pending tool call."""
        yield from self._complete_thinking()
        yield from self._complete_text()
        for call in self.state.tool_calls.finalize_pending():
            yield ToolCallEvent(tool_call=call, message_id=self.state.message_id)

    def _build_result(self) -> TurnResult:
        state = self.state
        tool_calls = state.tool_calls.completed()
        finish_reason = state.finish_reason
        if finish_reason is None:
            finish_reason = FinishReason.TOOL_CALLS if tool_calls else FinishReason.STOP
        additional_content = dict(state.additional_content)
        if state.current_thinking:
            additional_content["thinking"] = state.current_thinking
        if state.thinking_signature:
            additional_content["thinking_signature"] = state.thinking_signature
        return TurnResult(
            text=state.current_text,
            thinking=state.current_thinking,
            tool_calls=tool_calls,
            finish_reason=finish_reason,
            usage=state.turn_usage,
            model=state.model,
            message_id=state.message_id,
            additional_content=additional_content,
        )
