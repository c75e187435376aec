"""Chat-completions style vendors (OpenAI-compatible SSE).

Each frame carries ``choices[0].delta``; a non-null ``finish_reason``
ends the turn.  Usage usually arrives in a trailing frame whose
``choices`` list is empty.
"""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any

from tributary.events import FinishReason
from tributary.message import AssistantMessage, Message, ToolResultMessage
from tributary.provider import Provider
from tributary.request import TextRequest
from tributary.state import StreamState
from tributary.streaming import StreamChunk, ToolCallFragment, VendorError
from tributary.usage import Usage

logger = logging.getLogger(__name__)


class ChatCompletionsProvider(Provider):
    """Shared implementation of the ``/chat/completions`` dialect."""

    finish_reasons = {
        "stop": FinishReason.STOP,
        "length": FinishReason.LENGTH,
        "content_filter": FinishReason.CONTENT_FILTER,
        "tool_calls": FinishReason.TOOL_CALLS,
        "function_call": FinishReason.TOOL_CALLS,
    }
    streams_tool_call_deltas = True

    def endpoint(self, request: TextRequest) -> str:
        return "chat/completions"

    # ------------------------------------------------------------------
    # Payload mapping
    # ------------------------------------------------------------------

    def map_message(self, message: Message) -> list[dict[str, Any]]:
        if isinstance(message, ToolResultMessage):
            return [
                {
                    "role": "tool",
                    "tool_call_id": r.tool_call_id,
                    "content": self.result_text(r.result),
                }
                for r in message.tool_results
            ]
        if isinstance(message, AssistantMessage):
            mapped: dict[str, Any] = {
                "role": "assistant", "content": message.content or None,
            }
            if message.tool_calls:
                mapped["tool_calls"] = [
                    {
                        "id": tc.id,
                        "type": "function",
                        "function": {
                            "name": tc.name,
                            "arguments": json.dumps(tc.arguments),
                        },
                    }
                    for tc in message.tool_calls
                ]
            return [mapped]
        return [{"role": message.role.value, "content": message.content}]

    def map_tool_choice(self, tool_choice: str) -> Any:
        if tool_choice in ("auto", "none"):
            return tool_choice
        if tool_choice == "any":
            return "required"
        return {"type": "function", "function": {"name": tool_choice}}

    def build_payload(self, request: TextRequest) -> dict[str, Any]:
        messages: list[dict[str, Any]] = [
            {"role": "system", "content": p} for p in self.system_prompts(request)
        ]
        for message in self.conversation(request):
            messages.extend(self.map_message(message))

        payload: dict[str, Any] = {
            "model": request.model,
            "messages": messages,
            "stream": True,
            "stream_options": {"include_usage": True},
            **self.generation_options(request),
        }
        if request.tools:
            payload["tools"] = [
                {"type": "function", "function": t.to_schema()} for t in request.tools
            ]
            if request.tool_choice:
                payload["tool_choice"] = self.map_tool_choice(request.tool_choice)
        payload.update(request.provider_options)
        return payload

    # ------------------------------------------------------------------
    # Frame parsing
    # ------------------------------------------------------------------

    def parse_chunk(self, data: dict[str, Any], state: StreamState) -> StreamChunk:
        chunk = StreamChunk(model=data.get("model"), message_id=data.get("id"))
        if data.get("error") is not None:
            chunk.error = self.parse_error(data["error"])
            return chunk

        chunk.usage = self.parse_usage(data)
        choices = data.get("choices") or []
        if not choices:
            return chunk

        choice = choices[0]
        delta = choice.get("delta") or {}
        chunk.thinking_delta = self.extract_thinking(delta) or None
        chunk.content_delta = self.extract_content(delta) or None
        chunk.tool_call_fragments = self.extract_tool_calls(delta, state) or None
        if choice.get("finish_reason"):
            chunk.finish_reason = self.map_finish_reason(choice["finish_reason"])
        return chunk

    def extract_thinking(self, delta: dict[str, Any]) -> str:
        return ""

    def extract_content(self, delta: dict[str, Any]) -> str:
        return delta.get("content") or ""

    def extract_tool_calls(
        self, delta: dict[str, Any], state: StreamState,
    ) -> list[ToolCallFragment]:
        fragments: list[ToolCallFragment] = []
        for tc in delta.get("tool_calls") or []:
            function = tc.get("function") or {}
            call_id = tc.get("id") or None
            index = tc.get("index")
            if index is None:
                index = self._position_for(call_id, state, fragments)
            fragments.append(ToolCallFragment(
                index=index,
                call_id=call_id,
                name=function.get("name") or None,
                arguments_delta=function.get("arguments") or None,
            ))
        return fragments

    @staticmethod
    def _position_for(
        call_id: str | None, state: StreamState, fragments: list[ToolCallFragment],
    ) -> int:
        """Position for a tool-call delta that carries no ``index``.

        A known id keeps its slot, a new id takes the next free one, and
        an id-less delta continues the most recently opened call.
        """
        for fragment in reversed(fragments):
            if call_id is None or fragment.call_id == call_id:
                return fragment.index
        accumulator = state.tool_calls
        if call_id is None:
            return accumulator.last_index if accumulator.last_index is not None else 0
        known = accumulator.index_of(call_id)
        if known is not None:
            return known
        return max([accumulator.next_index, *(f.index + 1 for f in fragments)])

    def parse_usage(self, data: dict[str, Any]) -> Usage | None:
        usage = data.get("usage")
        if not usage:
            return None
        return Usage(
            prompt_tokens=int(usage.get("prompt_tokens") or 0),
            completion_tokens=int(usage.get("completion_tokens") or 0),
        )

    def parse_error(self, error: Any) -> VendorError:
        if not isinstance(error, dict):
            return VendorError("unknown_error", str(error), recoverable=False, fatal=True)
        error_type = error.get("type") or error.get("code") or "unknown_error"
        message = error.get("message", "No error message provided")
        logger.warning(f"{self.name} stream error {error_type}: {message}")
        return VendorError(str(error_type), message, recoverable=False, fatal=True)


class OpenAICompatibleProvider(ChatCompletionsProvider):
    """Any server speaking the OpenAI chat-completions dialect (vLLM, ...)."""

    name = "openai"
    default_base_url = "https://api.openai.com/v1"
    api_key_env = "OPENAI_API_KEY"


class DeepSeekProvider(ChatCompletionsProvider):
    name = "deepseek"
    default_base_url = "https://api.deepseek.com/v1"
    api_key_env = "DEEPSEEK_API_KEY"

    # DeepSeek occasionally emits a bare "0" as a delta.
    def extract_thinking(self, delta: dict[str, Any]) -> str:
        reasoning = delta.get("reasoning_content") or ""
        return "" if reasoning == "0" else reasoning

    def extract_content(self, delta: dict[str, Any]) -> str:
        content = delta.get("content") or ""
        return "" if content == "0" else content


class GroqProvider(ChatCompletionsProvider):
    """Groq reports in-stream errors; only rate limiting is fatal."""

    name = "groq"
    default_base_url = "https://api.groq.com/openai/v1"
    api_key_env = "GROQ_API_KEY"

    def parse_usage(self, data: dict[str, Any]) -> Usage | None:
        if not data.get("usage") and (data.get("x_groq") or {}).get("usage"):
            data = data["x_groq"]
        return super().parse_usage(data)

    def parse_error(self, error: Any) -> VendorError:
        vendor_error = super().parse_error(error)
        vendor_error.fatal = vendor_error.error_type == "rate_limit_exceeded"
        return vendor_error


class XAIProvider(ChatCompletionsProvider):
    name = "xai"
    default_base_url = "https://api.x.ai/v1"
    api_key_env = "XAI_API_KEY"

    def extract_thinking(self, delta: dict[str, Any]) -> str:
        return delta.get("reasoning_content") or ""


class MistralProvider(ChatCompletionsProvider):
    """Mistral sends whole tool calls and may split content into blocks."""

    name = "mistral"
    default_base_url = "https://api.mistral.ai/v1"
    api_key_env = "MISTRAL_API_KEY"
    streams_tool_call_deltas = False

    def map_tool_choice(self, tool_choice: str) -> Any:
        if tool_choice == "any":
            return "any"
        return super().map_tool_choice(tool_choice)

    def build_payload(self, request: TextRequest) -> dict[str, Any]:
        payload = super().build_payload(request)
        payload.pop("stream_options", None)
        return payload

    def _blocks(self, delta: dict[str, Any], kind: str) -> str:
        content = delta.get("content")
        if not isinstance(content, list):
            return ""
        parts = []
        for block in content:
            if block.get("type") != kind:
                continue
            if kind == "text":
                parts.append(block.get("text") or "")
            else:
                parts.extend(
                    t.get("text") or "" for t in block.get("thinking") or []
                )
        return "".join(parts)

    def extract_thinking(self, delta: dict[str, Any]) -> str:
        return self._blocks(delta, "thinking")

    def extract_content(self, delta: dict[str, Any]) -> str:
        content = delta.get("content")
        if isinstance(content, list):
            return self._blocks(delta, "text")
        return content or ""

    def extract_tool_calls(
        self, delta: dict[str, Any], state: StreamState,
    ) -> list[ToolCallFragment]:
        fragments = []
        for tc in delta.get("tool_calls") or []:
            function = tc.get("function") or {}
            arguments = function.get("arguments")
            if isinstance(arguments, dict):
                arguments = json.dumps(arguments)
            fragments.append(ToolCallFragment(
                index=len(state.tool_calls) + len(fragments),
                call_id=tc.get("id") or uuid.uuid4().hex,
                name=function.get("name") or "",
                arguments=arguments or "",
            ))
        return fragments

    def parse_chunk(self, data: dict[str, Any], state: StreamState) -> StreamChunk:
        chunk = super().parse_chunk(data, state)
        if chunk.tool_call_fragments:
            chunk.completed_tool_indices = [f.index for f in chunk.tool_call_fragments]
        return chunk


class OpenRouterProvider(ChatCompletionsProvider):
    name = "openrouter"
    default_base_url = "https://openrouter.ai/api/v1"
    api_key_env = "OPENROUTER_API_KEY"

    def extract_thinking(self, delta: dict[str, Any]) -> str:
        return delta.get("reasoning") or ""

    def parse_usage(self, data: dict[str, Any]) -> Usage | None:
        usage = super().parse_usage(data)
        if usage is None:
            return None
        raw = data["usage"]
        cached = (raw.get("prompt_tokens_details") or {}).get("cached_tokens")
        reasoning = (raw.get("completion_tokens_details") or {}).get("reasoning_tokens")
        usage.cache_read_input_tokens = cached
        usage.thought_tokens = reasoning
        return usage

    def parse_error(self, error: Any) -> VendorError:
        vendor_error = super().parse_error(error)
        if isinstance(error, dict) and error.get("code") == 429:
            vendor_error.error_type = "rate_limit_exceeded"
        return vendor_error
