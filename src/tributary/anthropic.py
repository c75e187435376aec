"""Anthropic Messages API.

The stream is a sequence of typed envelopes (``message_start``,
``content_block_start`` / ``_delta`` / ``_stop``, ``message_delta``,
``message_stop``) addressed by content-block index.
"""

from __future__ import annotations

import logging
from typing import Any

from tributary.citations import citation_from_anthropic
from tributary.decoders import AnthropicSSEDecoder
from tributary.events import FinishReason, ProviderToolEvent, new_id
from tributary.message import AssistantMessage, Message, ToolResultMessage
from tributary.provider import Provider
from tributary.request import TextRequest
from tributary.state import StreamState
from tributary.streaming import StreamChunk, ToolCallFragment, VendorError
from tributary.usage import Usage

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 4096
_RESULT_BLOCKS = ("web_search_tool_result", "web_fetch_tool_result")


class AnthropicProvider(Provider):
    name = "anthropic"
    default_base_url = "https://api.anthropic.com/v1"
    api_key_env = "ANTHROPIC_API_KEY"
    decoder_class = AnthropicSSEDecoder
    streams_tool_call_deltas = True
    finish_reasons = {
        "end_turn": FinishReason.STOP,
        "stop_sequence": FinishReason.STOP,
        "tool_use": FinishReason.TOOL_CALLS,
        "max_tokens": FinishReason.LENGTH,
        "refusal": FinishReason.CONTENT_FILTER,
        "pause_turn": FinishReason.OTHER,
    }

    def __init__(self, *args, version: str = "2023-06-01", **kwargs):
        super().__init__(*args, **kwargs)
        self.version = version

    def headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "anthropic-version": self.version,
        }
        if self.api_key:
            headers["x-api-key"] = self.api_key
        return headers

    def endpoint(self, request: TextRequest) -> str:
        return "messages"

    # ------------------------------------------------------------------
    # Payload mapping
    # ------------------------------------------------------------------

    def map_message(self, message: Message) -> dict[str, Any]:
        if isinstance(message, ToolResultMessage):
            return {
                "role": "user",
                "content": [
                    {
                        "type": "tool_result",
                        "tool_use_id": r.tool_call_id,
                        "content": self.result_text(r.result),
                        **({"is_error": True} if r.is_error else {}),
                    }
                    for r in message.tool_results
                ],
            }
        if isinstance(message, AssistantMessage):
            blocks: list[dict[str, Any]] = []
            extra = message.additional_content
            if extra.get("thinking") and extra.get("thinking_signature"):
                blocks.append({
                    "type": "thinking",
                    "thinking": extra["thinking"],
                    "signature": extra["thinking_signature"],
                })
            if message.content:
                blocks.append({"type": "text", "text": message.content})
            for tc in message.tool_calls:
                blocks.append({
                    "type": "tool_use", "id": tc.id,
                    "name": tc.name, "input": tc.arguments,
                })
            return {"role": "assistant", "content": blocks}
        return {"role": message.role.value, "content": message.content}

    def map_tool_choice(self, tool_choice: str) -> dict[str, Any]:
        if tool_choice in ("auto", "any", "none"):
            return {"type": tool_choice}
        return {"type": "tool", "name": tool_choice}

    def build_payload(self, request: TextRequest) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": request.model,
            "messages": [self.map_message(m) for m in self.conversation(request)],
            "max_tokens": request.max_tokens or DEFAULT_MAX_TOKENS,
            "stream": True,
        }
        system = self.system_prompts(request)
        if system:
            payload["system"] = [{"type": "text", "text": p} for p in system]
        if request.temperature is not None:
            payload["temperature"] = request.temperature
        if request.top_p is not None:
            payload["top_p"] = request.top_p
        if request.tools:
            payload["tools"] = [
                {
                    "name": t.name,
                    "description": t.description,
                    "input_schema": t.parameters,
                }
                for t in request.tools
            ]
            if request.tool_choice:
                payload["tool_choice"] = self.map_tool_choice(request.tool_choice)
        payload.update(request.provider_options)
        return payload

    # ------------------------------------------------------------------
    # Frame parsing
    # ------------------------------------------------------------------

    def parse_chunk(self, data: dict[str, Any], state: StreamState) -> StreamChunk:
        handler = getattr(self, f"_on_{data.get('type', '')}", None)
        if handler is None:
            logger.debug(f"Ignoring anthropic event {data.get('type')!r}")
            return StreamChunk()
        return handler(data, state)

    def _on_message_start(self, data: dict, state: StreamState) -> StreamChunk:
        message = data.get("message") or {}
        chunk = StreamChunk(model=message.get("model"), message_id=message.get("id"))
        usage = message.get("usage")
        if usage:
            chunk.usage = Usage(
                prompt_tokens=usage.get("input_tokens", 0),
                completion_tokens=usage.get("output_tokens", 0),
                cache_write_input_tokens=usage.get("cache_creation_input_tokens"),
                cache_read_input_tokens=usage.get("cache_read_input_tokens"),
            )
        return chunk

    def _on_content_block_start(self, data: dict, state: StreamState) -> StreamChunk:
        block = data.get("content_block") or {}
        index = data.get("index", 0)
        block_type = block.get("type", "")
        state.provider_state["block_index"] = index
        state.provider_state["block_type"] = block_type
        chunk = StreamChunk()

        if block_type == "tool_use":
            chunk.tool_call_fragments = [ToolCallFragment(
                index=index,
                call_id=block.get("id") or new_id(),
                name=block.get("name") or "unknown",
                reasoning_id=state.reasoning_id if state.current_thinking else None,
            )]
        elif block_type == "server_tool_use":
            item_id = block.get("id") or new_id()
            state.provider_state.setdefault("server_tools", {})[index] = {
                "type": block_type,
                "id": item_id,
                "name": block.get("name") or "unknown",
                "input": "",
            }
            chunk.provider_tool_events = [ProviderToolEvent(
                tool_type=block.get("name") or "unknown",
                status="started",
                item_id=item_id,
                data=block,
            )]
        elif block_type in _RESULT_BLOCKS:
            chunk.provider_tool_events = [ProviderToolEvent(
                tool_type=block_type,
                status="result_received",
                item_id=block.get("tool_use_id") or new_id(),
                data=block,
            )]
        return chunk

    def _on_content_block_delta(self, data: dict, state: StreamState) -> StreamChunk:
        delta = data.get("delta") or {}
        delta_type = delta.get("type")
        block_type = state.provider_state.get("block_type")
        index = data.get("index", state.provider_state.get("block_index", 0))
        chunk = StreamChunk()

        if delta_type == "thinking_delta":
            chunk.thinking_delta = delta.get("thinking") or None
        elif delta_type == "signature_delta":
            chunk.thinking_signature = delta.get("signature") or None
        elif delta_type == "text_delta":
            chunk.content_delta = delta.get("text") or None
        elif delta_type == "citations_delta" and delta.get("citation"):
            chunk.citations = [citation_from_anthropic(delta["citation"])]
            chunk.block_index = index
        elif delta_type == "input_json_delta":
            partial = delta.get("partial_json") or ""
            if block_type == "server_tool_use":
                server_tool = state.provider_state.get("server_tools", {}).get(index)
                if server_tool is not None:
                    server_tool["input"] += partial
            elif partial:
                chunk.tool_call_fragments = [
                    ToolCallFragment(index=index, arguments_delta=partial)
                ]
        return chunk

    def _on_content_block_stop(self, data: dict, state: StreamState) -> StreamChunk:
        index = data.get("index", state.provider_state.get("block_index"))
        block_type = state.provider_state.pop("block_type", None)
        state.provider_state.pop("block_index", None)
        chunk = StreamChunk()

        if block_type == "tool_use" and index is not None:
            chunk.completed_tool_indices = [index]
        elif block_type == "server_tool_use":
            server_tool = state.provider_state.get("server_tools", {}).pop(index, None)
            if server_tool is not None:
                chunk.provider_tool_events = [ProviderToolEvent(
                    tool_type=server_tool["name"],
                    status="completed",
                    item_id=server_tool["id"],
                    data=server_tool,
                )]
        elif block_type == "text":
            chunk.text_complete = True
        elif block_type in ("thinking", "redacted_thinking"):
            chunk.thinking_complete = True
        return chunk

    def _on_message_delta(self, data: dict, state: StreamState) -> StreamChunk:
        chunk = StreamChunk()
        usage = data.get("usage") or {}
        if "output_tokens" in usage:
            previous = state.turn_usage or Usage()
            chunk.usage = Usage(
                prompt_tokens=previous.prompt_tokens,
                completion_tokens=usage["output_tokens"],
                cache_write_input_tokens=previous.cache_write_input_tokens,
                cache_read_input_tokens=previous.cache_read_input_tokens,
            )
        stop_reason = (data.get("delta") or {}).get("stop_reason")
        if stop_reason:
            chunk.finish_reason = self.map_finish_reason(stop_reason)
        return chunk

    def _on_error(self, data: dict, state: StreamState) -> StreamChunk:
        error = data.get("error") or {}
        error_type = error.get("type", "unknown_error")
        message = error.get("message", "Unknown error occurred")
        logger.warning(f"anthropic stream error {error_type}: {message}")
        return StreamChunk(error=VendorError(
            error_type, message,
            recoverable=True,
            fatal=error_type == "rate_limit_error",
        ))
