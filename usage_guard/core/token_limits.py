"""
Token quota enforcement.

Checks an estimated request against four tiers before the model is called,
and records the actual usage afterwards.

Evaluation Order:
1. Admin override - Skips every check
2. Per-request ceiling - Rejects oversized prompts before any counter is read
3. Session cumulative ceiling
4. Daily cumulative ceiling (resets at UTC midnight)
5. Monthly cumulative ceiling (resets on the 1st, UTC)

The first violated tier wins.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from .analytics import LimitAnalytics
from .results import (
    Allowed,
    Bypassed,
    Denied,
    LimitCheckResult,
    LimitType,
    TierUsage,
    remaining_of,
    require_id,
)
from usage_guard.config.loader import LimitsConfig, TokenLimits, load_config
from usage_guard.storage.ledger import UsageLedger

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenUsageStats:
    """Snapshot of a user's token usage across tiers."""
    session: TierUsage
    daily: TierUsage
    monthly: TierUsage
    daily_reset_time: datetime
    monthly_reset_time: datetime
    limits: TokenLimits


class TokenLimitEngine:
    """Per-request, session, daily and monthly token limits."""

    def __init__(
        self,
        ledger: UsageLedger,
        analytics: Optional[LimitAnalytics] = None,
        config: Optional[LimitsConfig] = None,
        config_loader: Callable[[], LimitsConfig] = load_config,
    ):
        """Initialize the engine.

        Args:
            ledger: Usage ledger shared with the other engines
            analytics: Optional sink for limit-hit events
            config: Initial config snapshot (loaded from the environment if omitted)
            config_loader: Called by ``refresh_config`` to load a new snapshot
        """
        self.ledger = ledger
        self.analytics = analytics
        self._config_loader = config_loader
        self._config = config if config is not None else config_loader()

    def refresh_config(self, config: Optional[LimitsConfig] = None) -> None:
        """Reload limits. Checks already in progress keep their snapshot."""
        self._config = config if config is not None else self._config_loader()
        logger.info("Token limit config refreshed")

    def get_config(self) -> TokenLimits:
        return self._config.tokens

    def is_admin_override(self, admin_key: Optional[str]) -> bool:
        return self._config.admin.is_admin_override(admin_key)

    def check_limits(
        self,
        user_id: str,
        session_id: str,
        estimated_tokens: int,
        admin_key: Optional[str] = None,
    ) -> LimitCheckResult:
        """Check every token tier for a request estimate.

        Args:
            user_id: Identity whose daily/monthly quota applies
            session_id: Session whose cumulative quota applies
            estimated_tokens: Prompt estimate plus reply buffer
            admin_key: Optional admin override key

        Returns:
            Bypassed, Allowed, or Denied for the first violated tier

        Raises:
            ValueError: If an ID is empty or estimated_tokens is negative
        """
        require_id(user_id, "user_id")
        require_id(session_id, "session_id")
        if estimated_tokens < 0:
            raise ValueError("estimated_tokens cannot be negative")

        config = self._config
        if config.admin.is_admin_override(admin_key):
            logger.info("Admin override used by %s", user_id)
            return Bypassed()

        limits = config.tokens

        # 1. Per-request ceiling
        if estimated_tokens > limits.per_request:
            return self._deny(user_id, session_id, Denied(
                limit_type=LimitType.PER_REQUEST,
                limit=limits.per_request,
                used=estimated_tokens,
                remaining=0,
                message=(
                    f"Request exceeds maximum token limit of {limits.per_request:,} tokens. "
                    "Please reduce your message length."
                ),
            ))

        # 2. Session ceiling
        session = self.ledger.touch_session(session_id)
        if session.tokens + estimated_tokens > limits.per_session:
            return self._deny(user_id, session_id, Denied(
                limit_type=LimitType.SESSION,
                limit=limits.per_session,
                used=session.tokens,
                remaining=remaining_of(limits.per_session, session.tokens),
                message=(
                    f"Session limit of {limits.per_session:,} tokens reached. "
                    "Please start a new session or clear your chat."
                ),
            ))

        # 3. Daily ceiling
        usage = self.ledger.daily(user_id)
        if usage.tokens_today + estimated_tokens > limits.per_day:
            return self._deny(user_id, session_id, Denied(
                limit_type=LimitType.DAILY,
                limit=limits.per_day,
                used=usage.tokens_today,
                remaining=remaining_of(limits.per_day, usage.tokens_today),
                reset_time=usage.daily_reset_at,
                message=f"Daily limit of {limits.per_day:,} tokens reached. Resets at midnight UTC.",
            ))

        # 4. Monthly ceiling
        if usage.tokens_this_month + estimated_tokens > limits.per_month:
            return self._deny(user_id, session_id, Denied(
                limit_type=LimitType.MONTHLY,
                limit=limits.per_month,
                used=usage.tokens_this_month,
                remaining=remaining_of(limits.per_month, usage.tokens_this_month),
                reset_time=usage.monthly_reset_at,
                message=(
                    f"Monthly limit of {limits.per_month:,} tokens reached. "
                    "Resets on the 1st of next month."
                ),
            ))

        return Allowed(
            limit=limits.per_day,
            used=usage.tokens_today,
            remaining=remaining_of(limits.per_day, usage.tokens_today),
        )

    def _deny(self, user_id: str, session_id: str, result: Denied) -> Denied:
        if self.analytics is not None:
            self.analytics.record_hit(
                user_id=user_id,
                session_id=session_id,
                limit_type=result.limit_type,
                limit=result.limit,
                used=result.used,
                remaining=result.remaining,
                message=result.message,
            )
        return result

    def track_usage(self, user_id: str, session_id: str, actual_tokens: int) -> None:
        """Record actual tokens after a successful model call.

        Every call adds to the counters; call exactly once per completed
        request.

        Raises:
            ValueError: If actual_tokens is negative
        """
        require_id(user_id, "user_id")
        require_id(session_id, "session_id")
        if actual_tokens < 0:
            raise ValueError("actual_tokens cannot be negative")
        self.ledger.add_session(session_id, tokens=actual_tokens)
        self.ledger.add_daily(user_id, tokens=actual_tokens)
        logger.debug("Tracked %d tokens for user=%s session=%s", actual_tokens, user_id, session_id)

    def get_usage_stats(self, user_id: str, session_id: str) -> TokenUsageStats:
        limits = self._config.tokens
        usage = self.ledger.daily(user_id)
        session = self.ledger.session(session_id)
        return TokenUsageStats(
            session=TierUsage.of(session.tokens, limits.per_session),
            daily=TierUsage.of(usage.tokens_today, limits.per_day),
            monthly=TierUsage.of(usage.tokens_this_month, limits.per_month),
            daily_reset_time=usage.daily_reset_at,
            monthly_reset_time=usage.monthly_reset_at,
            limits=limits,
        )

    def reset_session(self, session_id: str) -> None:
        """Clear a session's token usage (e.g. when the user clears the chat).

        Daily and monthly counters are not affected.
        """
        self.ledger.reset_session(session_id, tokens=True)
        logger.info("Token usage reset for session %s", session_id)

    def cleanup_expired(self) -> int:
        """Evict sessions idle for longer than the configured expiry."""
        expiry = timedelta(hours=self._config.maintenance.session_expiry_hours)
        return self.ledger.evict_idle_sessions(expiry)
