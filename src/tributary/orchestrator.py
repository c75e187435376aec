"""Tool orchestration for one turn.

Calls are resolved against the request's tools, split into concurrent
and sequential groups, executed, and reported back strictly in the
order the model issued them, whatever order they finish in.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass, field
from typing import Any

from tributary.events import ArtifactEvent, StreamEvent, ToolResultEvent
from tributary.exceptions import MultipleToolsFoundError, ToolError, ToolNotFoundError
from tributary.instrumentation import StreamObserver, record_error, tool_span
from tributary.tools import Tool, ToolCall, ToolOutput, ToolResult

logger = logging.getLogger(__name__)


@dataclass
class ToolBatch:
    """Resolved tool calls of one turn, grouped for execution.

    ``concurrent`` and ``sequential`` map a call's original index to the
    call and its tool.  ``failures`` holds calls that could not be
    resolved.  ``results`` is filled in call order while streaming.
    """

    calls: list[ToolCall]
    concurrent: dict[int, tuple[ToolCall, Tool]] = field(default_factory=dict)
    sequential: dict[int, tuple[ToolCall, Tool]] = field(default_factory=dict)
    failures: dict[int, ToolError] = field(default_factory=dict)
    deferred: list[int] = field(default_factory=list)
    results: list[ToolResult] = field(default_factory=list)

    @property
    def has_deferred(self) -> bool:
        return bool(self.deferred)


def _resolve(tools: Sequence[Tool], name: str) -> Tool:
    matches = [t for t in tools if t.name == name]
    if not matches:
        raise ToolNotFoundError(name)
    if len(matches) > 1:
        raise MultipleToolsFoundError(name)
    return matches[0]


def _to_result(call: ToolCall, output: Any) -> ToolResult:
    if isinstance(output, ToolOutput):
        result, artifacts = output.result, list(output.artifacts)
    else:
        result, artifacts = output, []
    return ToolResult(
        tool_call_id=call.id,
        tool_name=call.name,
        args=call.arguments,
        result=result,
        tool_call_result_id=call.result_id,
        artifacts=artifacts,
    )


def _failed_result(call: ToolCall, error: ToolError) -> ToolResult:
    return ToolResult(
        tool_call_id=call.id,
        tool_name=call.name,
        args=call.arguments,
        result=str(error),
        tool_call_result_id=call.result_id,
        is_error=True,
    )


class ToolOrchestrator:
    """Executes the tool calls of a turn.

    Args:
        observers: Receive ``on_tool_call_start`` / ``on_tool_call_end``
            around every invocation.
    """

    def __init__(self, observers: Sequence[StreamObserver] = ()):
        self.observers = list(observers)

    def prepare(self, tools: Sequence[Tool], tool_calls: Sequence[ToolCall]) -> ToolBatch:
        batch = ToolBatch(calls=list(tool_calls))
        for index, call in enumerate(tool_calls):
            try:
                tool = _resolve(tools, call.name)
            except ToolError as e:
                logger.warning(f"Cannot resolve tool call {call.id}: {e}")
                batch.failures[index] = e
                continue
            if tool.is_client_executed:
                logger.info(f"Deferring client-executed tool {call.name}")
                batch.deferred.append(index)
            elif tool.concurrent:
                batch.concurrent[index] = (call, tool)
            else:
                batch.sequential[index] = (call, tool)
        return batch

    async def execute(
        self,
        tools: Sequence[Tool],
        tool_calls: Sequence[ToolCall],
        message_id: str = "",
    ) -> tuple[list[ToolResult], bool]:
        """Run every call and return ``(results, has_deferred)``."""
        batch = self.prepare(tools, tool_calls)
        async for _ in self.stream(batch, message_id):
            pass
        return batch.results, batch.has_deferred

    async def stream(self, batch: ToolBatch, message_id: str = "") -> AsyncIterator[StreamEvent]:
        """Execute ``batch``, yielding result and artifact events in call order.

        Concurrent calls start immediately as tasks; sequential calls run
        inline when their turn comes.  Each result is appended to
        ``batch.results`` before its events are yielded.
        """
        tasks: dict[int, asyncio.Task] = {
            index: asyncio.create_task(self._invoke(call, tool, in_thread=True))
            for index, (call, tool) in batch.concurrent.items()
        }
        try:
            for index, call in enumerate(batch.calls):
                if index in batch.failures:
                    result = _failed_result(call, batch.failures[index])
                elif index in tasks:
                    result = await tasks[index]
                elif index in batch.sequential:
                    _, tool = batch.sequential[index]
                    result = await self._invoke(call, tool)
                else:
                    continue
                batch.results.append(result)
                for event in self._events(result, message_id):
                    yield event
        except Exception:
            await asyncio.gather(*tasks.values(), return_exceptions=True)
            raise
        except BaseException:
            # Consumer went away (aclose/cancellation).
            for task in tasks.values():
                task.cancel()
            await asyncio.gather(*tasks.values(), return_exceptions=True)
            raise

    async def _invoke(self, call: ToolCall, tool: Tool, in_thread: bool = False) -> ToolResult:
        for observer in self.observers:
            observer.on_tool_call_start(call)
        logger.info(f"Calling {call.name} with {call.arguments}")
        async with tool_span(call.name, call.id) as span:
            try:
                output = await tool.invoke(call.arguments, in_thread=in_thread)
            except ToolError as e:
                logger.warning(f"Tool {call.name} failed: {e}")
                record_error(span, e)
                result = _failed_result(call, e)
            except Exception as e:
                logger.error(f"Tool {call.name} raised: {e}")
                record_error(span, e)
                raise
            else:
                result = _to_result(call, output)
        for observer in self.observers:
            observer.on_tool_call_end(call, result)
        return result

    @staticmethod
    def _events(result: ToolResult, message_id: str) -> list[StreamEvent]:
        events: list[StreamEvent] = [ToolResultEvent(
            tool_result=result,
            message_id=message_id,
            success=not result.is_error,
            error=result.result if result.is_error else None,
        )]
        for artifact in result.artifacts:
            events.append(ArtifactEvent(
                artifact=artifact,
                tool_call_id=result.tool_call_id,
                tool_name=result.tool_name,
                message_id=message_id,
            ))
        return events
