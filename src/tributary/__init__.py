"""Provider-agnostic LLM streaming with multi-step tool calling."""

from tributary.anthropic import AnthropicProvider
from tributary.chat_completions import (
    ChatCompletionsProvider,
    DeepSeekProvider,
    GroqProvider,
    MistralProvider,
    OpenAICompatibleProvider,
    OpenRouterProvider,
    XAIProvider,
)
from tributary.citations import Citation
from tributary.events import (
    ArtifactEvent,
    CitationEvent,
    ErrorEvent,
    FinishReason,
    ProviderToolEvent,
    StepFinishEvent,
    StepStartEvent,
    StreamEndEvent,
    StreamEvent,
    StreamEventType,
    StreamStartEvent,
    TextCompleteEvent,
    TextDeltaEvent,
    TextStartEvent,
    ThinkingCompleteEvent,
    ThinkingDeltaEvent,
    ThinkingStartEvent,
    ToolCallDeltaEvent,
    ToolCallEvent,
    ToolResultEvent,
)
from tributary.exceptions import (
    MaxStepsExceededError,
    ProviderOverloadedError,
    ProviderRequestError,
    ProviderStreamError,
    RateLimitedError,
    RequestTooLargeError,
    StreamDecodeError,
    ToolArgumentsError,
    ToolError,
    ToolNotFoundError,
    TributaryError,
)
from tributary.gemini import GeminiProvider
from tributary.instrumentation import StreamObserver, instrument, uninstrument
from tributary.message import (
    AssistantMessage,
    Message,
    MessageRole,
    SystemMessage,
    ToolResultMessage,
    UserMessage,
)
from tributary.ollama import OllamaProvider
from tributary.orchestrator import ToolBatch, ToolOrchestrator
from tributary.provider import Provider
from tributary.request import TextRequest
from tributary.responses import OpenAIResponsesProvider
from tributary.runner import Runner, RunResult
from tributary.sse import sse_generator
from tributary.tools import Artifact, Tool, ToolCall, ToolOutput, ToolResult, tool
from tributary.transport import HttpxTransport
from tributary.usage import Usage

__all__ = [
    "AnthropicProvider",
    "ArtifactEvent",
    "Artifact",
    "AssistantMessage",
    "ChatCompletionsProvider",
    "Citation",
    "CitationEvent",
    "DeepSeekProvider",
    "ErrorEvent",
    "FinishReason",
    "GeminiProvider",
    "GroqProvider",
    "HttpxTransport",
    "MaxStepsExceededError",
    "Message",
    "MessageRole",
    "MistralProvider",
    "OllamaProvider",
    "OpenAICompatibleProvider",
    "OpenAIResponsesProvider",
    "OpenRouterProvider",
    "Provider",
    "ProviderOverloadedError",
    "ProviderRequestError",
    "ProviderStreamError",
    "ProviderToolEvent",
    "RateLimitedError",
    "RequestTooLargeError",
    "RunResult",
    "Runner",
    "StepFinishEvent",
    "StepStartEvent",
    "StreamDecodeError",
    "StreamEndEvent",
    "StreamEvent",
    "StreamEventType",
    "StreamObserver",
    "StreamStartEvent",
    "SystemMessage",
    "TextCompleteEvent",
    "TextDeltaEvent",
    "TextRequest",
    "TextStartEvent",
    "ThinkingCompleteEvent",
    "ThinkingDeltaEvent",
    "ThinkingStartEvent",
    "Tool",
    "ToolArgumentsError",
    "ToolBatch",
    "ToolCall",
    "ToolCallDeltaEvent",
    "ToolCallEvent",
    "ToolError",
    "ToolNotFoundError",
    "ToolOrchestrator",
    "ToolOutput",
    "ToolResult",
    "ToolResultEvent",
    "ToolResultMessage",
    "TributaryError",
    "Usage",
    "UserMessage",
    "XAIProvider",
    "instrument",
    "sse_generator",
    "tool",
    "uninstrument",
]
