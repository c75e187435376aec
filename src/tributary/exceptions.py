"""Exception hierarchy for tributary.

Fatal conditions (transport failures, undecodable frames, fatal vendor
error frames, step-budget violations) propagate out of the event
iterator.  ``ToolError`` and its subclasses are *domain* failures: the
tool orchestrator converts them into failed ``ToolResult`` objects and
the stream continues.
"""

from __future__ import annotations


class TributaryError(Exception):
    """Base class for every error raised by tributary."""


# ---------------------------------------------------------------------------
# Transport / wire errors
# ---------------------------------------------------------------------------


class StreamDecodeError(TributaryError):
    """A frame in the response body could not be decoded."""

    def __init__(self, provider: str, message: str = "") -> None:
        self.provider = provider
        super().__init__(
            message or f"Could not decode stream frame from {provider}"
        )


class ProviderRequestError(TributaryError):
    """The vendor answered with a non-success HTTP status."""

    def __init__(
        self, provider: str, status_code: int, body: str = "",
    ) -> None:
        self.provider = provider
        self.status_code = status_code
        self.body = body
        super().__init__(
            f"{provider} request failed with status {status_code}: {body}"
        )


class RateLimitedError(TributaryError):
    """The vendor rejected the request because of rate limiting.

    Attributes:
        retry_after: Seconds the vendor asked us to wait, if known.
        limits: Rate-limit headers reported by the vendor, keyed by
            header name without the ``x-ratelimit-`` prefix.
    """

    def __init__(
        self,
        provider: str,
        retry_after: float | None = None,
        limits: dict[str, str] | None = None,
        message: str = "",
    ) -> None:
        self.provider = provider
        self.retry_after = retry_after
        self.limits = limits or {}
        super().__init__(message or f"{provider} rate limit exceeded")


class ProviderOverloadedError(TributaryError):
    def __init__(self, provider: str) -> None:
        self.provider = provider
        super().__init__(f"{provider} is overloaded")


class RequestTooLargeError(TributaryError):
    def __init__(self, provider: str) -> None:
        self.provider = provider
        super().__init__(f"Request to {provider} is too large")


class ProviderStreamError(TributaryError):
    """A fatal error frame arrived in the middle of a stream."""

    def __init__(self, provider: str, error_type: str, message: str) -> None:
        self.provider = provider
        self.error_type = error_type
        super().__init__(f"{provider} stream error ({error_type}): {message}")


class MaxStepsExceededError(TributaryError):
    def __init__(self, max_steps: int) -> None:
        self.max_steps = max_steps
        super().__init__(
            f"Maximum tool call chain depth exceeded ({max_steps} steps)"
        )


# ---------------------------------------------------------------------------
# Domain (tool) errors
# ---------------------------------------------------------------------------


class ToolError(TributaryError):
    """Raise from a tool handler to report a failure back to the model.

    The orchestrator records the message as a failed tool result
    instead of aborting the stream.
    """


class ToolNotFoundError(ToolError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Tool '{name}' not found")


class MultipleToolsFoundError(ToolError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Multiple tools found with name '{name}'")


class ToolArgumentsError(ToolError):
    """Arguments supplied by the model do not match the tool signature."""
