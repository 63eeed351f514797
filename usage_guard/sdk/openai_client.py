"""
Guarded OpenAI client wrapper.

Enforces rate and token limits around chat completions. Usage is charged
only for completions that succeed, using the token counts OpenAI reports.
"""

import logging
from typing import Any, Dict, List, Optional

from openai import OpenAI

from .identity import Identity
from usage_guard.core.results import UsageLimitExceeded
from usage_guard.core.token_counter import TokenUsage, estimate_message_tokens
from usage_guard.services import UsageGuard

logger = logging.getLogger(__name__)


class GuardedChatClient:
    """OpenAI chat client that checks limits before every call.

    Order per call: rate limit, token limits, OpenAI request, then usage
    tracking and request recording. A denial raises ``UsageLimitExceeded``
    before OpenAI is contacted.
    """

    def __init__(self, guard: UsageGuard, model: str):
        """Initialize guarded client.

        Args:
            guard: Services to enforce limits with
            model: OpenAI model name (required)

        Raises:
            ValueError: If model is missing/empty
        """
        if not model or not model.strip():
            raise ValueError("model is required and cannot be empty")

        self.guard = guard
        self.model = model
        self.client = OpenAI()

    def chat(
        self,
        messages: List[Dict[str, str]],
        identity: Identity,
        tier: str = "demo",
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        **kwargs: Any
    ) -> Any:
        """Create a chat completion within the caller's limits.

        Args:
            messages: List of message dictionaries (required)
            identity: Caller identity and session
            tier: Rate limit tier of the caller
            temperature: Sampling temperature (optional)
            max_tokens: Maximum tokens to generate (optional)
            **kwargs: Additional OpenAI parameters

        Returns:
            OpenAI chat completion response, unchanged

        Raises:
            ValueError: If messages is empty or the response has no usage
            UsageLimitExceeded: If a rate or token limit denies the request
            OpenAI API errors: Propagated without modification; nothing is charged
        """
        if not messages:
            raise ValueError("messages is required and cannot be empty")

        guard = self.guard

        rate = guard.rate_limiter.check_rate_limit(identity.user_id, tier)
        if not rate.allowed:
            guard.analytics.record_hit(
                user_id=identity.user_id,
                session_id=identity.session_id,
                limit_type=rate.limit_type,
                limit=rate.limit,
                used=rate.used,
                message=rate.message,
                metadata={"tier": tier, "retry_after_ms": rate.retry_after_ms},
            )
            raise UsageLimitExceeded(rate)

        estimated = estimate_message_tokens(messages) + guard.tokens.get_config().output_buffer
        check = guard.tokens.check_limits(
            identity.user_id, identity.session_id, estimated, admin_key=identity.admin_key
        )
        if not check.allowed:
            raise UsageLimitExceeded(check)

        response = self.client.chat.completions.create(
            model=self.model,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
            **kwargs
        )

        if not response.usage:
            raise ValueError("OpenAI response missing usage information")
        usage = TokenUsage(
            prompt_tokens=response.usage.prompt_tokens,
            completion_tokens=response.usage.completion_tokens,
        )

        guard.tokens.track_usage(identity.user_id, identity.session_id, usage.total_tokens)
        guard.rate_limiter.record_request(identity.user_id)
        logger.debug(
            "Chat completion for %s: estimated=%d actual=%d",
            identity.user_id, estimated, usage.total_tokens,
        )
        return response
