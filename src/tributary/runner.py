import logging
from collections.abc import AsyncIterator, Sequence
from contextlib import aclosing
from dataclasses import dataclass, field

from tributary.events import (
    FinishReason,
    StepFinishEvent,
    StepStartEvent,
    StreamEndEvent,
    StreamEvent,
    StreamStartEvent,
)
from tributary.exceptions import MaxStepsExceededError
from tributary.instrumentation import (
    StreamObserver,
    record_error,
    record_usage,
    request_span,
    turn_span,
)
from tributary.message import AssistantMessage, ToolResultMessage
from tributary.orchestrator import ToolOrchestrator
from tributary.provider import Provider
from tributary.request import TextRequest
from tributary.state import StreamState
from tributary.tools import ToolCall, ToolResult
from tributary.transport import Transport
from tributary.turn import TurnProcessor, TurnResult
from tributary.usage import Usage

logger = logging.getLogger(__name__)

MAX_STEPS_POLICIES = ("stop", "raise")


@dataclass
class RunResult:
    """The result of a single Runner.run() invocation.

    ``tool_calls`` are the calls of the final turn; they are only
    non-empty when the run stopped with tool calls still outstanding
    (client-executed tools, or the step budget ran out).
    """

    text: str = ""
    finish_reason: FinishReason = FinishReason.UNKNOWN
    usage: Usage = field(default_factory=Usage)
    steps: list[TurnResult] = field(default_factory=list)
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_results: list[ToolResult] = field(default_factory=list)


class Runner:
    """Drives the multi-step tool-calling loop for one provider.

    Each step is one vendor turn.  When a turn asks for tools, the tools
    run, their results are appended to the request transcript and the
    next turn starts, until the model stops calling tools, a
    client-executed tool is requested, or ``request.max_steps`` turns
    have run.

    ``run()`` drains ``iter()``.  ``iter()`` is the streaming entry point.

    Args:
        provider: Vendor adapter.
        transport: HTTP transport.  Defaults to ``provider.transport()``,
            created per request and closed afterwards.
        on_max_steps: ``"stop"`` ends gracefully when a tool-calling turn
            uses up the step budget (its tools still run).  ``"raise"``
            raises :class:`MaxStepsExceededError` before running them.
        observers: Lifecycle observers.
    """

    def __init__(
        self,
        provider: Provider,
        transport: Transport | None = None,
        on_max_steps: str = "stop",
        observers: Sequence[StreamObserver] | None = None,
    ):
        if on_max_steps not in MAX_STEPS_POLICIES:
            raise ValueError(
                f"on_max_steps must be one of {MAX_STEPS_POLICIES}, got {on_max_steps!r}"
            )
        self.provider = provider
        self.transport = transport
        self.on_max_steps = on_max_steps
        self.observers = list(observers or [])
        self.orchestrator = ToolOrchestrator(self.observers)

    async def run(self, request: TextRequest) -> RunResult:
        """Run the step loop to completion."""
        result = RunResult()
        async with aclosing(self._iter(request, result)) as events:
            async for _ in events:
                pass
        return result

    async def iter(self, request: TextRequest) -> AsyncIterator[StreamEvent]:
        """Run the step loop, yielding canonical events as they happen."""
        async with aclosing(self._iter(request, RunResult())) as events:
            async for event in events:
                yield event

    async def _iter(
        self, request: TextRequest, run: RunResult,
    ) -> AsyncIterator[StreamEvent]:
        provider = self.provider
        transport = self.transport or provider.transport()
        state = StreamState(provider=provider.name, model=request.model)
        try:
            async with request_span(provider.name, request.model) as span:
                try:
                    steps = self._steps(request, state, transport, run)
                    async with aclosing(steps) as events:
                        async for event in events:
                            yield event
                except Exception as e:
                    record_error(span, e)
                    raise
                record_usage(span, state.usage, state.model)
        finally:
            if self.transport is None:
                await transport.aclose()

    async def _steps(
        self,
        request: TextRequest,
        state: StreamState,
        transport: Transport,
        run: RunResult,
    ) -> AsyncIterator[StreamEvent]:
        provider = self.provider
        state.stream_started = True
        yield StreamStartEvent(model=request.model, provider=provider.name)

        step = 0
        while True:
            step += 1
            logger.info(f"Step {step}/{request.max_steps} with {provider.name}")
            state.step_started = True
            yield StepStartEvent()
            for observer in self.observers:
                observer.on_turn_start(step)

            processor = TurnProcessor(provider, transport, state)
            async with turn_span(provider.name, request.model, step) as span:
                async with aclosing(processor.stream(request)) as events:
                    async for event in events:
                        yield event
                turn = processor.result
                record_usage(span, turn.usage, turn.model)
            state.add_usage(turn.usage)
            run.steps.append(turn)
            run.usage = state.usage
            for observer in self.observers:
                observer.on_turn_end(step, turn)

            if not turn.tool_calls:
                state.step_started = False
                yield StepFinishEvent()
                yield self._finish(run, state, turn, turn.finish_reason)
                return

            if step >= request.max_steps and self.on_max_steps == "raise":
                logger.error(f"Tool calls requested at step {step}, budget is {request.max_steps}")
                raise MaxStepsExceededError(request.max_steps)

            batch = self.orchestrator.prepare(request.tools, turn.tool_calls)
            async with aclosing(self.orchestrator.stream(batch, state.message_id)) as events:
                async for event in events:
                    yield event
            run.tool_results.extend(batch.results)

            if batch.has_deferred:
                logger.info("Stopping for client-executed tool calls")
                state.step_started = False
                yield StepFinishEvent()
                yield self._finish(run, state, turn, FinishReason.TOOL_CALLS)
                return

            request.add_message(AssistantMessage(
                content=turn.text,
                tool_calls=turn.tool_calls,
                additional_content=turn.additional_content,
            ))
            request.add_message(ToolResultMessage(tool_results=batch.results))
            request.reset_tool_choice()
            state.step_started = False
            yield StepFinishEvent()

            if step >= request.max_steps:
                logger.info(f"Step budget of {request.max_steps} exhausted")
                yield self._finish(run, state, turn, FinishReason.TOOL_CALLS)
                return
            state.reset()

    @staticmethod
    def _finish(
        run: RunResult, state: StreamState, turn: TurnResult, reason: FinishReason,
    ) -> StreamEndEvent:
        run.text = turn.text
        run.finish_reason = reason
        run.usage = state.usage
        if reason == FinishReason.TOOL_CALLS:
            run.tool_calls = list(turn.tool_calls)
        return StreamEndEvent(
            finish_reason=reason,
            usage=state.usage,
            citations=list(state.citations),
            additional_content=dict(turn.additional_content),
        )
