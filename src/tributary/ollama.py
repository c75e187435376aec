"""Ollama ``/api/chat`` streaming (newline-delimited JSON)."""

from __future__ import annotations

import json
import logging
import os
from typing import Any

from tributary.decoders import NDJSONDecoder
from tributary.events import FinishReason, new_id
from tributary.message import AssistantMessage, Message, ToolResultMessage
from tributary.provider import Provider
from tributary.request import TextRequest
from tributary.state import StreamState
from tributary.streaming import StreamChunk, ToolCallFragment, VendorError
from tributary.usage import Usage

logger = logging.getLogger(__name__)

DEFAULT_NUM_PREDICT = 2048


class OllamaProvider(Provider):
    """Local Ollama server.

    Tool calls arrive whole; they are finalised when the ``done`` frame
    arrives.  ``provider_options`` keys ``thinking`` and ``keep_alive``
    map to the request's top-level ``think`` / ``keep_alive`` fields;
    anything else goes into ``options``.
    """

    name = "ollama"
    default_base_url = "http://localhost:11434"
    decoder_class = NDJSONDecoder
    finish_reasons = {
        "stop": FinishReason.STOP,
        "length": FinishReason.LENGTH,
        "load": FinishReason.OTHER,
        "unload": FinishReason.OTHER,
    }

    def __init__(self, api_key: str | None = None, base_url: str | None = None,
                 timeout: float = 600.0):
        super().__init__(
            api_key=api_key,
            base_url=base_url or os.getenv("OLLAMA_BASE_URL"),
            timeout=timeout,
        )

    def endpoint(self, request: TextRequest) -> str:
        return "api/chat"

    def map_message(self, message: Message) -> list[dict[str, Any]]:
        if isinstance(message, ToolResultMessage):
            return [
                {
                    "role": "tool",
                    "tool_name": r.tool_name,
                    "content": self.result_text(r.result),
                }
                for r in message.tool_results
            ]
        if isinstance(message, AssistantMessage):
            mapped: dict[str, Any] = {"role": "assistant", "content": message.content}
            if message.tool_calls:
                mapped["tool_calls"] = [
                    {"function": {"name": tc.name, "arguments": tc.arguments}}
                    for tc in message.tool_calls
                ]
            return [mapped]
        return [{"role": message.role.value, "content": message.content}]

    def build_payload(self, request: TextRequest) -> dict[str, Any]:
        messages = [
            {"role": "system", "content": p} for p in self.system_prompts(request)
        ]
        for message in self.conversation(request):
            messages.extend(self.map_message(message))

        provider_options = dict(request.provider_options)
        payload: dict[str, Any] = {
            "model": request.model,
            "messages": messages,
            "stream": True,
        }
        if request.tools:
            payload["tools"] = [
                {"type": "function", "function": t.to_schema()} for t in request.tools
            ]
        if "thinking" in provider_options:
            payload["think"] = provider_options.pop("thinking")
        if "keep_alive" in provider_options:
            payload["keep_alive"] = provider_options.pop("keep_alive")

        options = {
            "temperature": request.temperature,
            "num_predict": request.max_tokens or DEFAULT_NUM_PREDICT,
            "top_p": request.top_p,
            **provider_options,
        }
        payload["options"] = {k: v for k, v in options.items() if v is not None}
        return payload

    def parse_chunk(self, data: dict[str, Any], state: StreamState) -> StreamChunk:
        chunk = StreamChunk(model=data.get("model"))
        if data.get("error"):
            chunk.error = VendorError(
                "ollama_error", str(data["error"]), recoverable=False, fatal=True,
            )
            return chunk

        message = data.get("message") or {}
        chunk.thinking_delta = message.get("thinking") or None
        chunk.content_delta = message.get("content") or None

        fragments = []
        for call in message.get("tool_calls") or []:
            function = call.get("function") or {}
            if not function.get("name"):
                continue
            arguments = function.get("arguments")
            if not isinstance(arguments, str):
                arguments = json.dumps(arguments or {})
            fragments.append(ToolCallFragment(
                index=len(state.tool_calls) + len(fragments),
                call_id=call.get("id") or new_id(),
                name=function["name"],
                arguments=arguments,
            ))
        chunk.tool_call_fragments = fragments or None

        if data.get("done"):
            chunk.usage = Usage(
                prompt_tokens=int(data.get("prompt_eval_count") or 0),
                completion_tokens=int(data.get("eval_count") or 0),
            )
            if state.tool_calls.has_pending or fragments:
                chunk.finish_reason = FinishReason.TOOL_CALLS
            else:
                chunk.finish_reason = self.map_finish_reason(data.get("done_reason") or "stop")
        return chunk
