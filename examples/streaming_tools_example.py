"""Streaming example: a unit-conversion assistant with tools.

Demonstrates:
- Defining tools with @tool (sync, async and concurrent)
- Choosing a vendor adapter at runtime
- Consuming canonical events from Runner.iter()
- Keeping the transcript across user turns

``--trace`` needs the OpenTelemetry SDK (``pip install -e ".[examples]"``).

Usage:
    uv run --env-file=.env examples/streaming_tools_example.py --provider anthropic --model claude-sonnet-4-5 --trace
    uv run examples/streaming_tools_example.py --provider ollama --model qwen3:8b
    uv run examples/streaming_tools_example.py --provider openai --url localhost:8000/v1 --model Qwen/Qwen3-8B
"""

import argparse
import asyncio

from tributary import (
    AnthropicProvider,
    AssistantMessage,
    GeminiProvider,
    OllamaProvider,
    OpenAICompatibleProvider,
    OpenAIResponsesProvider,
    Runner,
    StepStartEvent,
    StreamEndEvent,
    TextDeltaEvent,
    TextRequest,
    ThinkingDeltaEvent,
    ToolCallEvent,
    ToolResultEvent,
    UserMessage,
    tool,
)
from tributary.provider import Provider

PROVIDERS = {
    "anthropic": AnthropicProvider,
    "gemini": GeminiProvider,
    "ollama": OllamaProvider,
    "openai": OpenAICompatibleProvider,
    "responses": OpenAIResponsesProvider,
}


def make_provider(provider: str, url: str | None) -> Provider:
    if url and not url.startswith("http"):
        url = f"http://{url}"
    return PROVIDERS[provider](base_url=url)


def setup_tracing(service_name: str):
    from opentelemetry import trace
    from opentelemetry.sdk.resources import SERVICE_NAME, Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import (
        SimpleSpanProcessor, ConsoleSpanExporter,
    )
    from tributary.instrumentation import instrument

    provider = TracerProvider(
        resource=Resource({SERVICE_NAME: service_name})
    )
    provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))
    trace.set_tracer_provider(provider)
    instrument()


RATES = {("usd", "eur"): 0.92, ("eur", "usd"): 1.09, ("usd", "gbp"): 0.79}


@tool
def convert_length(value: float, unit: str):
    """Convert a length between metres and feet.

    Args:
        value: The length to convert.
        unit: Unit of ``value``, either "m" or "ft".
    """
    if unit == "m":
        return f"{value * 3.28084:.2f} ft"
    return f"{value / 3.28084:.2f} m"


@tool(concurrent=True)
async def exchange_rate(source: str, target: str):
    """Look up the exchange rate between two currencies."""
    await asyncio.sleep(0.1)
    rate = RATES.get((source.lower(), target.lower()))
    if rate is None:
        return f"No rate for {source}->{target}."
    return {"source": source, "target": target, "rate": rate}


async def main():
    parser = argparse.ArgumentParser(description="Streaming tools example")
    parser.add_argument("--provider", choices=PROVIDERS, default="openai")
    parser.add_argument("--model", default="gpt-4o-mini")
    parser.add_argument("--url", default=None)
    parser.add_argument("--max-steps", type=int, default=5)
    parser.add_argument("--trace", action="store_true")
    args = parser.parse_args()

    if args.trace:
        setup_tracing("streaming-tools")

    runner = Runner(make_provider(args.provider, args.url))
    request = TextRequest(
        model=args.model,
        system_prompts=[
            "You are a helpful conversion assistant. "
            "Always use the provided tools for lengths and currencies."
        ],
        tools=[convert_length, exchange_rate],
        max_steps=args.max_steps,
    )

    print("Conversion Assistant\n")

    while True:
        try:
            user_input = input("You: ")
        except (KeyboardInterrupt, EOFError):
            print("\nGoodbye!")
            break

        request.add_message(UserMessage(content=user_input))
        text = ""
        async for event in runner.iter(request):
            if isinstance(event, StepStartEvent):
                text = ""
            elif isinstance(event, ThinkingDeltaEvent):
                print(f"\033[2m{event.delta}\033[0m", end="", flush=True)
            elif isinstance(event, TextDeltaEvent):
                text += event.delta
                print(event.delta, end="", flush=True)
            elif isinstance(event, ToolCallEvent):
                print(f"\n[{event.tool_call.name}({event.tool_call.arguments})]")
            elif isinstance(event, ToolResultEvent):
                print(f"[-> {event.tool_result.result}]")
            elif isinstance(event, StreamEndEvent):
                print(f"\n({event.finish_reason.value}, "
                      f"{event.usage.total_tokens} tokens)\n")
        request.add_message(AssistantMessage(content=text))


if __name__ == "__main__":
    asyncio.run(main())
