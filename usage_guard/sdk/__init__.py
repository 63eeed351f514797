"""
SDK for Usage Guard.

Provides request identity resolution and a limit-enforcing OpenAI client.
"""

from .identity import Identity, limit_headers, resolve_identity, resolve_tier
from .openai_client import GuardedChatClient

__all__ = ["GuardedChatClient", "Identity", "limit_headers", "resolve_identity", "resolve_tier"]
