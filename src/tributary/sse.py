"""Server-Sent Events adapter for streaming events."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator

from tributary.events import StreamEvent


async def sse_generator(
    event_stream: AsyncIterator[StreamEvent],
) -> AsyncIterator[str]:
    """Convert a StreamEvent async iterator into SSE-formatted strings."""
    async for event in event_stream:
        data = json.dumps(event.to_dict(), default=str)
        yield f"event: {event.type.value}\ndata: {data}\n\n"
    yield "event: done\ndata: {}\n\n"
