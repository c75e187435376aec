"""Provider interface.

A provider knows one vendor's HTTP API: where to send a request, how to
shape the payload, which wire decoder its response needs, and how to
normalise each decoded frame into a :class:`StreamChunk`.  Everything
else (event emission, tool calling, the step loop) is shared.
"""

from __future__ import annotations

import json
import logging
import os
from abc import ABC, abstractmethod
from typing import Any

from tributary.decoders import FrameDecoder, SSEDecoder
from tributary.events import FinishReason
from tributary.message import Message, SystemMessage
from tributary.request import TextRequest
from tributary.state import StreamState
from tributary.streaming import StreamChunk
from tributary.transport import HttpxTransport, Transport

logger = logging.getLogger(__name__)


class Provider(ABC):
    """Base class for vendor adapters.

    Args:
        api_key: Vendor API key.  Falls back to the ``api_key_env``
            environment variable.
        base_url: Override the vendor's default base URL.
        timeout: Read timeout (seconds) for the default transport.
    """

    name: str = ""
    default_base_url: str = ""
    api_key_env: str | None = None
    decoder_class: type[FrameDecoder] = SSEDecoder
    finish_reasons: dict[str, FinishReason] = {}
    streams_tool_call_deltas: bool = False

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float = 600.0,
    ):
        if not api_key and self.api_key_env:
            api_key = os.getenv(self.api_key_env)
        self.api_key = api_key
        self.base_url = (base_url or self.default_base_url).rstrip("/")
        self.timeout = timeout
        self.decoder = self.decoder_class(self.name)

    # ------------------------------------------------------------------
    # Request side
    # ------------------------------------------------------------------

    def headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    @abstractmethod
    def endpoint(self, request: TextRequest) -> str:
        """Path (relative to ``base_url``) of the streaming endpoint."""

    def url(self, request: TextRequest) -> str:
        return f"{self.base_url}/{self.endpoint(request).lstrip('/')}"

    @abstractmethod
    def build_payload(self, request: TextRequest) -> dict[str, Any]:
        """Vendor JSON body for ``request``, with streaming enabled."""

    def transport(self) -> Transport:
        return HttpxTransport(timeout=self.timeout)

    # ------------------------------------------------------------------
    # Response side
    # ------------------------------------------------------------------

    @abstractmethod
    def parse_chunk(self, data: dict[str, Any], state: StreamState) -> StreamChunk:
        """Normalise one decoded frame."""

    def map_finish_reason(self, raw: str | None) -> FinishReason:
        if raw is None:
            return FinishReason.UNKNOWN
        return self.finish_reasons.get(raw, FinishReason.UNKNOWN)

    # ------------------------------------------------------------------
    # Helpers shared by vendor adapters
    # ------------------------------------------------------------------

    @staticmethod
    def system_prompts(request: TextRequest) -> list[str]:
        """System prompts, including any system messages in the history."""
        prompts = list(request.system_prompts)
        prompts.extend(
            m.content for m in request.messages if isinstance(m, SystemMessage)
        )
        return prompts

    @staticmethod
    def conversation(request: TextRequest) -> list[Message]:
        return [m for m in request.messages if not isinstance(m, SystemMessage)]

    @staticmethod
    def result_text(result: Any) -> str:
        return result if isinstance(result, str) else json.dumps(result)

    def generation_options(self, request: TextRequest) -> dict[str, Any]:
        options: dict[str, Any] = {}
        if request.temperature is not None:
            options["temperature"] = request.temperature
        if request.top_p is not None:
            options["top_p"] = request.top_p
        if request.max_tokens is not None:
            options["max_tokens"] = request.max_tokens
        return options

    def __repr__(self) -> str:
        return f"{type(self).__name__}(base_url={self.base_url!r})"
