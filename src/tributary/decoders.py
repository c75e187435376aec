"""Wire decoders: turn a response body into JSON frames.

A decoder reads exactly one frame per call to :meth:`read_frame`.
``None`` means "nothing to process" (blank line, comment, keep-alive,
end-of-stream sentinel); the caller keeps reading until the cursor
reports end of body.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator

from tributary.exceptions import StreamDecodeError

logger = logging.getLogger(__name__)


class LineCursor:
    """Pull-based reader over an async line iterator.

    ``readline()`` returns ``""`` once the body is exhausted; ``eof``
    then stays ``True``.
    """

    def __init__(self, lines: AsyncIterator[str]) -> None:
        self._lines = lines.__aiter__()
        self.eof = False

    async def readline(self) -> str:
        if self.eof:
            return ""
        try:
            line = await self._lines.__anext__()
        except StopAsyncIteration:
            self.eof = True
            return ""
        return line.rstrip("\r\n")


class FrameDecoder:
    def __init__(self, provider: str) -> None:
        self.provider = provider

    async def read_frame(self, cursor: LineCursor) -> dict | None:
        raise NotImplementedError

    def _decode(self, payload: str) -> dict:
        try:
            data = json.loads(payload)
        except json.JSONDecodeError as e:
            logger.error(f"Malformed {self.provider} frame: {payload[:200]!r}")
            raise StreamDecodeError(self.provider) from e
        if not isinstance(data, dict):
            raise StreamDecodeError(
                self.provider, f"Expected a JSON object from {self.provider}",
            )
        return data


class SSEDecoder(FrameDecoder):
    """``data: {...}`` Server-Sent Events, terminated by ``data: [DONE]``."""

    async def read_frame(self, cursor: LineCursor) -> dict | None:
        line = (await cursor.readline()).strip()
        if not line.startswith("data:"):
            return None
        payload = line[len("data:"):].strip()
        if not payload or payload == "[DONE]":
            return None
        return self._decode(payload)


class AnthropicSSEDecoder(FrameDecoder):
    """``event: <name>`` / ``data: {...}`` pairs.

    The event name is written into the payload's ``type`` field.  A
    ``data:`` line without a preceding ``event:`` line is accepted as is.
    """

    async def read_frame(self, cursor: LineCursor) -> dict | None:
        line = (await cursor.readline()).strip()
        if line.startswith("data:"):
            payload = line[len("data:"):].strip()
            return self._decode(payload) if payload else None
        if not line.startswith("event:"):
            return None

        event_name = line[len("event:"):].strip()
        data_line = (await cursor.readline()).strip()
        if event_name == "ping":
            return None
        if not data_line.startswith("data:"):
            return None
        payload = data_line[len("data:"):].strip()
        data = self._decode(payload) if payload else {}
        data["type"] = event_name
        return data


class NDJSONDecoder(FrameDecoder):
    """Newline-delimited JSON: each non-blank line is one object."""

    async def read_frame(self, cursor: LineCursor) -> dict | None:
        line = (await cursor.readline()).strip()
        if not line:
            return None
        return self._decode(line)
