"""Token usage accounting."""

from __future__ import annotations

from dataclasses import dataclass


def _sum_optional(a: int | None, b: int | None) -> int | None:
    if a is None and b is None:
        return None
    return (a or 0) + (b or 0)


@dataclass
class Usage:
    """Token counts for one turn, or summed over a whole request.

    The three optional counters are only reported by some vendors;
    ``None`` means "not reported", which is different from zero.
    """

    prompt_tokens: int = 0
    completion_tokens: int = 0
    cache_write_input_tokens: int | None = None
    cache_read_input_tokens: int | None = None
    thought_tokens: int | None = None

    def merge(self, other: Usage) -> Usage:
        """Return the field-wise sum of ``self`` and ``other``."""
        return Usage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            cache_write_input_tokens=_sum_optional(
                self.cache_write_input_tokens, other.cache_write_input_tokens,
            ),
            cache_read_input_tokens=_sum_optional(
                self.cache_read_input_tokens, other.cache_read_input_tokens,
            ),
            thought_tokens=_sum_optional(
                self.thought_tokens, other.thought_tokens,
            ),
        )

    __add__ = merge

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens
