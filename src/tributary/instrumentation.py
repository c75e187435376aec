"""Optional OpenTelemetry instrumentation and lifecycle observers.

Call ``tributary.instrument()`` once at startup to enable tracing.
Requires ``opentelemetry-api`` to be installed; the library works
identically without it.

:class:`StreamObserver` is independent of OpenTelemetry: subclass it and
pass instances to :class:`~tributary.runner.Runner` to be notified of
turn and tool lifecycle.
"""

from __future__ import annotations

import importlib.util
import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from tributary.tools import ToolCall, ToolResult
    from tributary.turn import TurnResult

logger = logging.getLogger(__name__)

_tracer = None


def instrument(*, tracer_name: str = "tributary") -> None:
    """Enable OpenTelemetry tracing for all tributary operations.

    Call once at startup, after configuring your TracerProvider.
    Requires ``opentelemetry-api``: ``pip install tributary[otel]``

    Example::

        from opentelemetry import trace
        from opentelemetry.sdk.trace import TracerProvider

        trace.set_tracer_provider(TracerProvider())

        import tributary
        tributary.instrument()

    Args:
        tracer_name: Name passed to ``trace.get_tracer()``.

    Raises:
        ImportError: If ``opentelemetry-api`` is not installed.
    """
    global _tracer
    if importlib.util.find_spec("opentelemetry.trace") is None:
        raise ImportError(
            "opentelemetry-api is required for instrumentation. "
            "Install it with: pip install tributary[otel]"
        )
    from opentelemetry import trace
    _tracer = trace.get_tracer(tracer_name)
    if isinstance(_tracer, trace.NoOpTracer):
        logger.info(
            "No TracerProvider configured, spans will be discarded. "
            "Set up a TracerProvider to export traces."
        )
    else:
        logger.info("Tributary instrumentation enabled")


def uninstrument() -> None:
    """Disable OpenTelemetry tracing."""
    global _tracer
    _tracer = None


@asynccontextmanager
async def request_span(provider: str, model: str):
    """Wrap a whole multi-step request in an ``invoke_agent`` span."""
    if _tracer is None:
        yield None
        return
    with _tracer.start_as_current_span(
        f"invoke_agent {model}",
        attributes={
            "gen_ai.operation.name": "invoke_agent",
            "gen_ai.provider.name": provider,
            "gen_ai.request.model": model,
        },
    ) as span:
        yield span


@asynccontextmanager
async def turn_span(provider: str, model: str, step: int):
    """Wrap one vendor turn in a ``chat`` span."""
    if _tracer is None:
        yield None
        return
    from opentelemetry.trace import SpanKind

    with _tracer.start_as_current_span(
        f"chat {model}",
        kind=SpanKind.CLIENT,
        attributes={
            "gen_ai.operation.name": "chat",
            "gen_ai.provider.name": provider,
            "gen_ai.request.model": model,
            "tributary.step": step,
        },
    ) as span:
        yield span


@asynccontextmanager
async def tool_span(tool_name: str, call_id: str):
    """Wrap a tool execution in an ``execute_tool`` span."""
    if _tracer is None:
        yield None
        return
    with _tracer.start_as_current_span(
        f"execute_tool {tool_name}",
        attributes={
            "gen_ai.operation.name": "execute_tool",
            "gen_ai.tool.name": tool_name,
            "gen_ai.tool.call.id": call_id,
        },
    ) as span:
        yield span


def record_usage(span, usage, response_model: str | None = None) -> None:
    """Set token-usage and response-model attributes on a span."""
    if span is None or usage is None:
        return
    span.set_attribute("gen_ai.usage.input_tokens", usage.prompt_tokens)
    span.set_attribute("gen_ai.usage.output_tokens", usage.completion_tokens)
    if usage.cache_read_input_tokens is not None:
        span.set_attribute(
            "gen_ai.usage.cache_read_input_tokens", usage.cache_read_input_tokens,
        )
    if response_model:
        span.set_attribute("gen_ai.response.model", response_model)


def record_error(span, exception: BaseException) -> None:
    """Record an exception and set ERROR status on a span.

    No-ops when *span* is ``None`` (tracing disabled).
    """
    if span is None:
        return
    from opentelemetry.trace import StatusCode

    span.set_status(StatusCode.ERROR, str(exception))
    span.record_exception(exception)
    span.set_attribute("error.type", type(exception).__qualname__)


class StreamObserver:
    """No-op base class for lifecycle notifications.

    Override the hooks you care about.  Hooks are called synchronously,
    in stream order, from the task iterating the stream (tool hooks of
    concurrent tools run from their own tasks).
    """

    def on_turn_start(self, step: int) -> None:
        pass

    def on_turn_end(self, step: int, result: TurnResult) -> None:
        pass

    def on_tool_call_start(self, tool_call: ToolCall) -> None:
        pass

    def on_tool_call_end(self, tool_call: ToolCall, result: ToolResult) -> None:
        pass
