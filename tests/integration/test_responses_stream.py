"""OpenAI Responses API streaming through the step loop."""

import pytest

from tributary.events import (
    FinishReason,
    ProviderToolEvent,
    TextCompleteEvent,
    TextDeltaEvent,
    ThinkingCompleteEvent,
    ThinkingDeltaEvent,
    ToolCallDeltaEvent,
    ToolCallEvent,
    ToolResultEvent,
)
from tributary.exceptions import ProviderStreamError
from tributary.responses import OpenAIResponsesProvider
from tributary.runner import Runner

from tests.conftest import make_request, sse_body


@pytest.fixture
def provider():
    return OpenAIResponsesProvider(api_key="k", base_url="https://mock.test/v1")


def created(response_id="resp_1"):
    return {"type": "response.created", "response": {"id": response_id, "model": "gpt-test"}}


def completed(output, response_id="resp_1", usage=(10, 5)):
    return {"type": "response.completed", "response": {
        "id": response_id,
        "model": "gpt-test",
        "output": output,
        "usage": {
            "input_tokens": usage[0],
            "output_tokens": usage[1],
            "input_tokens_details": {"cached_tokens": 2},
            "output_tokens_details": {"reasoning_tokens": 3},
        },
    }}


def tool_turn():
    return sse_body(
        created(),
        {"type": "response.reasoning_summary_text.delta", "item_id": "rs_1",
         "delta": "Need a greeting"},
        {"type": "response.output_item.done", "output_index": 0, "item": {
            "type": "reasoning", "id": "rs_1",
            "summary": [{"type": "summary_text", "text": "Need a greeting"}],
        }},
        {"type": "response.output_item.added", "output_index": 1, "item": {
            "type": "function_call", "id": "fc_1", "call_id": "call_1",
            "name": "greet", "arguments": "",
        }},
        {"type": "response.function_call_arguments.delta", "item_id": "fc_1",
         "output_index": 1, "delta": '{"name": '},
        {"type": "response.function_call_arguments.delta", "item_id": "fc_1",
         "output_index": 1, "delta": '"Ann"}'},
        {"type": "response.function_call_arguments.done", "item_id": "fc_1",
         "output_index": 1, "arguments": '{"name": "Ann"}'},
        completed([{"type": "reasoning"}, {"type": "function_call"}]),
        done=False,
    )


def text_turn(text="Hi Ann"):
    return sse_body(
        created("resp_2"),
        {"type": "response.output_text.delta", "item_id": "msg_1", "delta": text},
        {"type": "response.output_text.done", "item_id": "msg_1", "text": text},
        completed([{"type": "message"}], "resp_2", usage=(20, 4)),
        done=False,
    )


class TestResponsesToolLoop:
    @pytest.mark.asyncio
    async def test_reasoning_and_function_call(
        self, vendor, transport, provider, sample_tool,
    ):
        vendor.enqueue(tool_turn())
        vendor.enqueue(text_turn())
        events = [
            e async for e in Runner(provider, transport).iter(
                make_request(tools=[sample_tool]),
            )
        ]

        assert [e.delta for e in events if isinstance(e, ThinkingDeltaEvent)] == [
            "Need a greeting",
        ]
        assert any(isinstance(e, ThinkingCompleteEvent) for e in events)
        deltas = [e for e in events if isinstance(e, ToolCallDeltaEvent)]
        assert [d.delta for d in deltas] == ['{"name": ', '"Ann"}']
        assert all(d.tool_id == "fc_1" for d in deltas)

        call = next(e.tool_call for e in events if isinstance(e, ToolCallEvent))
        assert call.id == "fc_1"
        assert call.result_id == "call_1"
        assert call.arguments == {"name": "Ann"}
        assert call.reasoning_id == "rs_1"
        assert call.reasoning_summary == ["Need a greeting"]

        result = next(e.tool_result for e in events if isinstance(e, ToolResultEvent))
        assert result.tool_call_result_id == "call_1"

        end = events[-1]
        assert end.finish_reason == FinishReason.STOP
        assert end.usage.prompt_tokens == 30
        assert end.usage.cache_read_input_tokens == 4
        assert end.additional_content["response_id"] == "resp_2"

    @pytest.mark.asyncio
    async def test_follow_up_input(self, vendor, transport, provider, sample_tool):
        vendor.enqueue(tool_turn())
        vendor.enqueue(text_turn())
        await Runner(provider, transport).run(make_request(tools=[sample_tool]))

        assert str(vendor.requests[0].url) == "https://mock.test/v1/responses"
        items = vendor.payloads[1]["input"]
        assert [i.get("type") for i in items] == [
            None, "reasoning", "function_call", "function_call_output",
        ]
        assert items[2]["call_id"] == "call_1"
        assert items[3] == {
            "type": "function_call_output", "call_id": "call_1", "output": "Hello Ann",
        }


class TestResponsesStreamDetails:
    @pytest.mark.asyncio
    async def test_text_events(self, vendor, transport, provider):
        vendor.enqueue(text_turn("Plain"))
        events = [e async for e in Runner(provider, transport).iter(make_request())]

        types = [type(e) for e in events]
        assert types.count(TextCompleteEvent) == 1
        assert [e.delta for e in events if isinstance(e, TextDeltaEvent)] == ["Plain"]
        assert events[-1].usage.thought_tokens == 3

    @pytest.mark.asyncio
    async def test_hosted_tool_events(self, vendor, transport, provider):
        vendor.enqueue(sse_body(
            created(),
            {"type": "response.web_search_call.in_progress", "item_id": "ws_1",
             "output_index": 0},
            {"type": "response.web_search_call.completed", "item_id": "ws_1",
             "output_index": 0},
            {"type": "response.output_item.done", "output_index": 0, "item": {
                "type": "web_search_call", "id": "ws_1", "status": "completed",
            }},
            completed([{"type": "web_search_call"}, {"type": "message"}]),
            done=False,
        ))
        events = [e async for e in Runner(provider, transport).iter(make_request())]

        tool_events = [e for e in events if isinstance(e, ProviderToolEvent)]
        assert [(e.tool_type, e.status) for e in tool_events] == [
            ("web_search_call", "in_progress"),
            ("web_search_call", "completed"),
            ("web_search_call", "completed"),
        ]
        assert events[-1].finish_reason == FinishReason.STOP

    @pytest.mark.asyncio
    async def test_incomplete_response(self, vendor, transport, provider):
        vendor.enqueue(sse_body(
            created(),
            {"type": "response.output_text.delta", "item_id": "m", "delta": "cut"},
            {"type": "response.incomplete", "response": {"id": "resp_1", "output": []}},
            done=False,
        ))
        result = await Runner(provider, transport).run(make_request())
        assert result.finish_reason == FinishReason.LENGTH
        assert result.text == "cut"

    @pytest.mark.asyncio
    async def test_error_frame_is_fatal(self, vendor, transport, provider):
        vendor.enqueue(sse_body(
            created(),
            {"type": "error", "code": "server_error", "message": "kaput"},
            done=False,
        ))
        with pytest.raises(ProviderStreamError, match="kaput"):
            await Runner(provider, transport).run(make_request())
