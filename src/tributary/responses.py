"""OpenAI Responses API (``/responses``) streaming.

Every SSE frame carries a ``type`` such as ``response.output_text.delta``.
Function-call items are addressed by ``item_id`` while they stream and
by ``output_index`` in the accumulator.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from tributary.events import FinishReason, ProviderToolEvent
from tributary.message import AssistantMessage, Message, MessageRole, ToolResultMessage
from tributary.provider import Provider
from tributary.request import TextRequest
from tributary.state import StreamState
from tributary.streaming import StreamChunk, ToolCallFragment, VendorError
from tributary.usage import Usage

logger = logging.getLogger(__name__)

# provider_options passed through to the request body as is.
_PASSTHROUGH_OPTIONS = (
    "metadata",
    "parallel_tool_calls",
    "previous_response_id",
    "service_tier",
    "truncation",
    "reasoning",
    "store",
)


class OpenAIResponsesProvider(Provider):
    name = "openai"
    default_base_url = "https://api.openai.com/v1"
    api_key_env = "OPENAI_API_KEY"
    streams_tool_call_deltas = True

    def endpoint(self, request: TextRequest) -> str:
        return "responses"

    # ------------------------------------------------------------------
    # Payload mapping
    # ------------------------------------------------------------------

    def map_message(self, message: Message) -> list[dict[str, Any]]:
        if isinstance(message, ToolResultMessage):
            return [
                {
                    "type": "function_call_output",
                    "call_id": r.tool_call_result_id or r.tool_call_id,
                    "output": self.result_text(r.result),
                }
                for r in message.tool_results
            ]
        if isinstance(message, AssistantMessage):
            items: list[dict[str, Any]] = []
            replayed: set[str] = set()
            for tc in message.tool_calls:
                if tc.reasoning_id and tc.reasoning_id not in replayed:
                    replayed.add(tc.reasoning_id)
                    items.append({
                        "type": "reasoning",
                        "id": tc.reasoning_id,
                        "summary": [
                            {"type": "summary_text", "text": s}
                            for s in tc.reasoning_summary
                        ],
                    })
            if message.content:
                items.append({
                    "role": "assistant",
                    "content": [{"type": "output_text", "text": message.content}],
                })
            for tc in message.tool_calls:
                items.append({
                    "type": "function_call",
                    "id": tc.id,
                    "call_id": tc.result_id or tc.id,
                    "name": tc.name,
                    "arguments": json.dumps(tc.arguments),
                })
            return items
        if message.role == MessageRole.USER:
            return [{
                "role": "user",
                "content": [{"type": "input_text", "text": message.content}],
            }]
        return [{"role": message.role.value, "content": message.content}]

    def map_tool_choice(self, tool_choice: str) -> Any:
        if tool_choice in ("auto", "none"):
            return tool_choice
        if tool_choice == "any":
            return "required"
        return {"type": "function", "name": tool_choice}

    def build_payload(self, request: TextRequest) -> dict[str, Any]:
        items: list[dict[str, Any]] = [
            {"role": "system", "content": p} for p in self.system_prompts(request)
        ]
        for message in self.conversation(request):
            items.extend(self.map_message(message))

        payload: dict[str, Any] = {
            "model": request.model,
            "input": items,
            "stream": True,
        }
        if request.max_tokens is not None:
            payload["max_output_tokens"] = request.max_tokens
        if request.temperature is not None:
            payload["temperature"] = request.temperature
        if request.top_p is not None:
            payload["top_p"] = request.top_p
        if request.tools:
            payload["tools"] = [
                {"type": "function", **t.to_schema()} for t in request.tools
            ]
            if request.tool_choice:
                payload["tool_choice"] = self.map_tool_choice(request.tool_choice)
        options = request.provider_options
        for key in _PASSTHROUGH_OPTIONS:
            if options.get(key) is not None:
                payload[key] = options[key]
        if options.get("text_verbosity"):
            payload["text"] = {"verbosity": options["text_verbosity"]}
        return payload

    # ------------------------------------------------------------------
    # Frame parsing
    # ------------------------------------------------------------------

    def parse_chunk(self, data: dict[str, Any], state: StreamState) -> StreamChunk:
        event_type = data.get("type", "")
        items: dict[str, int] = state.provider_state.setdefault("items", {})

        if event_type == "error":
            error = data.get("error") or data
            code = error.get("code") or error.get("type") or "unknown_error"
            message = error.get("message", "No error message provided")
            logger.warning(f"openai responses stream error {code}: {message}")
            return StreamChunk(error=VendorError(
                str(code), message, recoverable=False, fatal=True,
            ))

        if event_type == "response.created":
            response = data.get("response") or {}
            return StreamChunk(model=response.get("model"), message_id=response.get("id"))

        if event_type == "response.reasoning_summary_text.delta":
            return StreamChunk(thinking_delta=data.get("delta") or None)

        if event_type == "response.output_item.added":
            item = data.get("item") or {}
            if item.get("type") != "function_call":
                return StreamChunk()
            index = data.get("output_index", len(state.tool_calls))
            items[item.get("id", "")] = index
            return StreamChunk(tool_call_fragments=[ToolCallFragment(
                index=index,
                call_id=item.get("id"),
                name=item.get("name"),
                result_id=item.get("call_id"),
                arguments_delta=item.get("arguments") or None,
                reasoning_id=state.provider_state.get("reasoning_id"),
                reasoning_summary=state.provider_state.get("reasoning_summary"),
            )])

        if event_type == "response.function_call_arguments.delta":
            index = items.get(data.get("item_id", ""))
            if index is None:
                return StreamChunk()
            return StreamChunk(tool_call_fragments=[ToolCallFragment(
                index=index, arguments_delta=data.get("delta") or None,
            )])

        if event_type == "response.function_call_arguments.done":
            index = items.get(data.get("item_id", ""))
            if index is None:
                return StreamChunk()
            return StreamChunk(
                tool_call_fragments=[ToolCallFragment(
                    index=index, arguments=data.get("arguments"),
                )],
                completed_tool_indices=[index],
            )

        if event_type == "response.output_item.done":
            return self._on_item_done(data.get("item") or {}, state)

        if event_type.startswith("response.") and "_call." in event_type:
            _, tool_type, status = event_type.split(".", 2)
            if tool_type.endswith("_call"):
                return StreamChunk(provider_tool_events=[ProviderToolEvent(
                    tool_type=tool_type,
                    status=status,
                    item_id=data.get("item_id", ""),
                    data=data,
                )])

        if event_type == "response.output_text.delta":
            return StreamChunk(content_delta=data.get("delta") or None)

        if event_type == "response.output_text.done":
            return StreamChunk(text_complete=True)

        if event_type in ("response.completed", "response.incomplete", "response.failed"):
            return self._on_response_done(event_type, data.get("response") or {})

        return StreamChunk()

    def _on_item_done(self, item: dict[str, Any], state: StreamState) -> StreamChunk:
        item_type = item.get("type", "")
        if item_type == "reasoning":
            state.provider_state["reasoning_id"] = item.get("id")
            state.provider_state["reasoning_summary"] = [
                s.get("text", "") for s in item.get("summary") or []
            ]
            return StreamChunk(thinking_complete=True)
        if item_type != "function_call" and item_type.endswith("_call"):
            return StreamChunk(provider_tool_events=[ProviderToolEvent(
                tool_type=item_type,
                status="completed",
                item_id=item.get("id", ""),
                data=item,
            )])
        return StreamChunk()

    def _on_response_done(self, event_type: str, response: dict[str, Any]) -> StreamChunk:
        chunk = StreamChunk(model=response.get("model"))
        usage = response.get("usage")
        if usage:
            chunk.usage = Usage(
                prompt_tokens=usage.get("input_tokens") or 0,
                completion_tokens=usage.get("output_tokens") or 0,
                cache_read_input_tokens=(usage.get("input_tokens_details") or {}).get("cached_tokens"),
                thought_tokens=(usage.get("output_tokens_details") or {}).get("reasoning_tokens"),
            )
        if response.get("id"):
            chunk.additional_content["response_id"] = response["id"]

        output = response.get("output") or []
        last_type = output[-1].get("type") if output else None
        if event_type == "response.completed":
            chunk.finish_reason = (
                FinishReason.TOOL_CALLS if last_type == "function_call" else FinishReason.STOP
            )
        elif event_type == "response.incomplete":
            chunk.finish_reason = FinishReason.LENGTH
        else:
            chunk.finish_reason = FinishReason.ERROR
        return chunk
