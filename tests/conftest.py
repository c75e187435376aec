import json

import httpx
import pytest

from tributary.chat_completions import OpenAICompatibleProvider
from tributary.message import UserMessage
from tributary.request import TextRequest
from tributary.tools import tool
from tributary.transport import HttpxTransport


# ---------------------------------------------------------------------------
# Fake vendor (httpx.MockTransport)
# ---------------------------------------------------------------------------

class MockVendor:
    """Serves pre-queued response bodies. No network calls.

    Each queued item is ``(status, body, headers)``; requests are
    recorded with their decoded JSON payload.
    """

    def __init__(self):
        self.queue: list[tuple[int, str, dict]] = []
        self.requests: list[httpx.Request] = []

    def enqueue(self, body: str, status: int = 200, headers: dict | None = None):
        self.queue.append((status, body, headers or {}))
        return self

    @property
    def payloads(self) -> list[dict]:
        return [json.loads(r.content) for r in self.requests]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status, body, headers = self.queue.pop(0)
        return httpx.Response(status, content=body.encode(), headers=headers)


class RecordingTransport(HttpxTransport):
    """HttpxTransport over a MockVendor that keeps every response."""

    def __init__(self, vendor: MockVendor):
        super().__init__(client=httpx.AsyncClient(
            transport=httpx.MockTransport(vendor.handler),
        ))
        self.vendor = vendor
        self.responses: list[httpx.Response] = []

    async def send(self, method, url, headers, json):
        response = await super().send(method, url, headers, json)
        self.responses.append(response)
        return response


# ---------------------------------------------------------------------------
# Body builders
# ---------------------------------------------------------------------------

def sse_body(*payloads: dict, done: bool = True) -> str:
    """``data:`` framed SSE body, optionally ending with ``[DONE]``."""
    body = "".join(f"data: {json.dumps(p)}\n\n" for p in payloads)
    if done:
        body += "data: [DONE]\n\n"
    return body


def anthropic_body(*events: dict) -> str:
    """``event:``/``data:`` framed body; each event's ``type`` names it."""
    return "".join(
        f"event: {e['type']}\ndata: {json.dumps(e)}\n\n" for e in events
    )


def ndjson_body(*payloads: dict) -> str:
    return "".join(json.dumps(p) + "\n" for p in payloads)


def chat_text(*parts: str, finish: str = "stop", usage: tuple[int, int] = (10, 5)) -> str:
    """Chat-completions stream producing ``parts`` as text deltas."""
    chunks = [
        {"id": "chatcmpl-1", "model": "mock-model",
         "choices": [{"index": 0, "delta": {"content": p}, "finish_reason": None}]}
        for p in parts
    ]
    chunks.append({"id": "chatcmpl-1", "model": "mock-model",
                   "choices": [{"index": 0, "delta": {}, "finish_reason": finish}]})
    chunks.append({"id": "chatcmpl-1", "model": "mock-model", "choices": [],
                   "usage": {"prompt_tokens": usage[0], "completion_tokens": usage[1]}})
    return sse_body(*chunks)


def chat_tool_calls(
    calls: list[tuple[str, str, list[str]]],
    usage: tuple[int, int] = (10, 5),
    content: str | None = None,
) -> str:
    """Chat-completions stream issuing tool calls.

    Each item in *calls* is ``(call_id, name, argument_fragments)``.
    """
    chunks = []
    if content:
        chunks.append({"id": "chatcmpl-2", "model": "mock-model",
                       "choices": [{"index": 0, "delta": {"content": content}}]})
    for index, (call_id, name, fragments) in enumerate(calls):
        chunks.append({"id": "chatcmpl-2", "model": "mock-model", "choices": [{
            "index": 0,
            "delta": {"tool_calls": [{
                "index": index, "id": call_id, "type": "function",
                "function": {"name": name, "arguments": ""},
            }]},
        }]})
        for fragment in fragments:
            chunks.append({"id": "chatcmpl-2", "model": "mock-model", "choices": [{
                "index": 0,
                "delta": {"tool_calls": [{
                    "index": index, "function": {"arguments": fragment},
                }]},
            }]})
    chunks.append({"id": "chatcmpl-2", "model": "mock-model",
                   "choices": [{"index": 0, "delta": {}, "finish_reason": "tool_calls"}]})
    chunks.append({"id": "chatcmpl-2", "model": "mock-model", "choices": [],
                   "usage": {"prompt_tokens": usage[0], "completion_tokens": usage[1]}})
    return sse_body(*chunks)


def make_request(tools=None, max_steps: int = 5, prompt: str = "Hi") -> TextRequest:
    return TextRequest(
        model="mock-model",
        messages=[UserMessage(content=prompt)],
        tools=tools or [],
        max_steps=max_steps,
    )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def vendor():
    return MockVendor()


@pytest.fixture
def transport(vendor):
    return RecordingTransport(vendor)


@pytest.fixture
def openai_provider():
    return OpenAICompatibleProvider(api_key="test-key", base_url="https://mock.test/v1")


@pytest.fixture
def sample_tool():
    @tool
    def greet(name: str):
        """Say hello."""
        return f"Hello {name}"
    return greet


@pytest.fixture
def sample_async_tool():
    @tool
    async def async_greet(name: str):
        """Async greeting."""
        return f"Hello async {name}"
    return async_greet
