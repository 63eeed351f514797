"""
Token counting and estimation.

Estimates gate a request before the model is called; the actual counts
reported afterwards are what gets recorded.
"""

import math
from dataclasses import dataclass
from typing import Iterable, Mapping


CHARS_PER_TOKEN = 4
MESSAGE_OVERHEAD_TOKENS = 4  # role + message structure


@dataclass(frozen=True)
class TokenUsage:
    """Actual token usage reported by the model."""
    prompt_tokens: int
    completion_tokens: int

    @property
    def total_tokens(self) -> int:
        """Total tokens used (prompt + completion)."""
        return self.prompt_tokens + self.completion_tokens


def estimate_tokens(text: str) -> int:
    """Rough estimate: about four characters per token for English text."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def estimate_message_tokens(messages: Iterable[Mapping[str, str]]) -> int:
    """Estimate prompt tokens for a chat message list."""
    return sum(
        MESSAGE_OVERHEAD_TOKENS + estimate_tokens(message.get("content") or "")
        for message in messages
    )
