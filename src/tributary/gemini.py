"""Google Gemini ``streamGenerateContent`` (SSE with ``alt=sse``)."""

from __future__ import annotations

import json
import logging
from typing import Any

from tributary.events import FinishReason, new_id
from tributary.exceptions import TributaryError
from tributary.message import AssistantMessage, Message, MessageRole, ToolResultMessage
from tributary.provider import Provider
from tributary.request import TextRequest
from tributary.state import StreamState
from tributary.streaming import StreamChunk, ToolCallFragment, VendorError
from tributary.usage import Usage

logger = logging.getLogger(__name__)


class GeminiProvider(Provider):
    """Gemini API.

    Function calls arrive whole inside ``candidates[0].content.parts`` and
    get generated ids.  The thought signature attached to a call (or the
    first one seen in the turn) is kept as the call's ``reasoning_id`` so
    it can be replayed.

    Recognised ``provider_options``: ``thinkingBudget``, ``thinkingLevel``,
    ``thinkingConfig``, ``searchGrounding``, ``safetySettings``,
    ``cachedContentName``.
    """

    name = "gemini"
    default_base_url = "https://generativelanguage.googleapis.com/v1beta/models"
    api_key_env = "GEMINI_API_KEY"
    finish_reasons = {
        "STOP": FinishReason.STOP,
        "MAX_TOKENS": FinishReason.LENGTH,
        "SAFETY": FinishReason.CONTENT_FILTER,
        "RECITATION": FinishReason.CONTENT_FILTER,
        "BLOCKLIST": FinishReason.CONTENT_FILTER,
        "PROHIBITED_CONTENT": FinishReason.CONTENT_FILTER,
        "SPII": FinishReason.CONTENT_FILTER,
        "MALFORMED_FUNCTION_CALL": FinishReason.ERROR,
        "OTHER": FinishReason.OTHER,
    }

    def headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["x-goog-api-key"] = self.api_key
        return headers

    def endpoint(self, request: TextRequest) -> str:
        return f"{request.model}:streamGenerateContent?alt=sse"

    # ------------------------------------------------------------------
    # Payload mapping
    # ------------------------------------------------------------------

    def map_message(self, message: Message) -> dict[str, Any]:
        if isinstance(message, ToolResultMessage):
            return {
                "role": "user",
                "parts": [
                    {
                        "functionResponse": {
                            "name": r.tool_name,
                            "response": {"name": r.tool_name, "content": r.result},
                        }
                    }
                    for r in message.tool_results
                ],
            }
        if isinstance(message, AssistantMessage):
            parts: list[dict[str, Any]] = []
            if message.content:
                parts.append({"text": message.content})
            for tc in message.tool_calls:
                part: dict[str, Any] = {
                    "functionCall": {"name": tc.name, "args": tc.arguments},
                }
                if tc.reasoning_id:
                    part["thoughtSignature"] = tc.reasoning_id
                parts.append(part)
            return {"role": "model", "parts": parts}
        role = "model" if message.role == MessageRole.ASSISTANT else "user"
        return {"role": role, "parts": [{"text": message.content}]}

    def map_tool_choice(self, tool_choice: str) -> dict[str, Any]:
        if tool_choice in ("auto", "any", "none"):
            return {"function_calling_config": {"mode": tool_choice.upper()}}
        return {
            "function_calling_config": {
                "mode": "ANY", "allowed_function_names": [tool_choice],
            }
        }

    def thinking_config(self, options: dict[str, Any]) -> dict[str, Any] | None:
        if "thinkingBudget" in options:
            return {"thinkingBudget": options["thinkingBudget"], "includeThoughts": True}
        if "thinkingLevel" in options:
            return {"thinkingLevel": options["thinkingLevel"], "includeThoughts": True}
        return options.get("thinkingConfig")

    def build_payload(self, request: TextRequest) -> dict[str, Any]:
        options = request.provider_options
        if request.tools and options.get("searchGrounding"):
            raise TributaryError(
                "Search grounding cannot be combined with custom tools on Gemini"
            )

        payload: dict[str, Any] = {
            "contents": [self.map_message(m) for m in self.conversation(request)],
        }
        system = self.system_prompts(request)
        if system:
            payload["systemInstruction"] = {"parts": [{"text": p} for p in system]}

        generation_config = {
            "temperature": request.temperature,
            "topP": request.top_p,
            "maxOutputTokens": request.max_tokens,
            "thinkingConfig": self.thinking_config(options),
        }
        generation_config = {k: v for k, v in generation_config.items() if v is not None}
        if generation_config:
            payload["generationConfig"] = generation_config

        if options.get("searchGrounding"):
            payload["tools"] = [{"google_search": {}}]
        elif request.tools:
            payload["tools"] = [
                {"function_declarations": [t.to_schema() for t in request.tools]}
            ]
            if request.tool_choice:
                payload["tool_config"] = self.map_tool_choice(request.tool_choice)
        if options.get("cachedContentName"):
            payload["cachedContent"] = options["cachedContentName"]
        if options.get("safetySettings"):
            payload["safetySettings"] = options["safetySettings"]
        return payload

    # ------------------------------------------------------------------
    # Frame parsing
    # ------------------------------------------------------------------

    def parse_chunk(self, data: dict[str, Any], state: StreamState) -> StreamChunk:
        chunk = StreamChunk(model=data.get("modelVersion"), message_id=data.get("responseId"))
        if data.get("error"):
            error = data["error"]
            chunk.error = VendorError(
                str(error.get("status") or error.get("code") or "unknown_error"),
                error.get("message", "No error message provided"),
                recoverable=False,
                fatal=True,
            )
            return chunk

        if data.get("usageMetadata"):
            chunk.usage = self.parse_usage(data["usageMetadata"])

        candidates = data.get("candidates") or []
        if not candidates:
            return chunk
        candidate = candidates[0]
        parts = (candidate.get("content") or {}).get("parts") or []

        thinking, text, fragments = [], [], []
        for part in parts:
            if "thoughtSignature" in part and "signature" not in state.provider_state:
                state.provider_state["signature"] = part["thoughtSignature"]
            if "functionCall" in part:
                call = part["functionCall"]
                fragments.append(ToolCallFragment(
                    index=len(state.tool_calls) + len(fragments),
                    call_id=call.get("id") or f"gm_{new_id()}",
                    name=call.get("name") or "unknown",
                    arguments=json.dumps(call.get("args") or {}),
                    reasoning_id=part.get("thoughtSignature")
                    or state.provider_state.get("signature"),
                ))
            elif part.get("thought") is True:
                thinking.append(part.get("text") or "")
            elif "text" in part:
                text.append(part["text"])

        chunk.thinking_delta = "".join(thinking) or None
        chunk.content_delta = "".join(text) or None
        if fragments:
            chunk.tool_call_fragments = fragments
            chunk.completed_tool_indices = [f.index for f in fragments]

        raw_finish = candidate.get("finishReason")
        if raw_finish:
            finish = self.map_finish_reason(raw_finish)
            if finish == FinishReason.STOP and len(state.tool_calls) + len(fragments):
                finish = FinishReason.TOOL_CALLS
            chunk.finish_reason = finish
            if candidate.get("groundingMetadata"):
                chunk.additional_content["grounding_metadata"] = candidate["groundingMetadata"]
        return chunk

    def parse_usage(self, metadata: dict[str, Any]) -> Usage:
        prompt = metadata.get("promptTokenCount", 0)
        cached = metadata.get("cachedContentTokenCount")
        return Usage(
            prompt_tokens=prompt - (cached or 0),
            completion_tokens=metadata.get("candidatesTokenCount", 0),
            cache_read_input_tokens=cached,
            thought_tokens=metadata.get("thoughtsTokenCount"),
        )
