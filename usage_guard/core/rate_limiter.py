"""
Request-rate limiting with tiered access.

Independent of the token/OCR quotas: counts requests, not tokens, in
sliding minute/hour/day windows and enforces a minimum interval between
consecutive requests.

Evaluation Order:
1. Throttle - Minimum interval since the last recorded request
2. Requests per minute
3. Requests per hour
4. Requests per day
"""

import logging
import math
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from .results import RateLimitAllowed, RateLimitDenied, RateLimitResult, RateLimitType, require_id
from usage_guard.config.loader import LimitsConfig, TierLimits, load_config
from usage_guard.storage.models import utc_now

logger = logging.getLogger(__name__)


ONE_MINUTE = timedelta(minutes=1)
ONE_HOUR = timedelta(hours=1)
ONE_DAY = timedelta(days=1)


@dataclass
class _RequestRecord:
    timestamps: List[datetime] = field(default_factory=list)  # oldest first
    last_request: Optional[datetime] = None

    def count_since(self, cutoff: datetime) -> int:
        return sum(1 for ts in self.timestamps if ts > cutoff)

    def oldest_since(self, cutoff: datetime) -> Optional[datetime]:
        return next((ts for ts in self.timestamps if ts > cutoff), None)


@dataclass(frozen=True)
class RateLimitStats:
    """Requests made in each window and what is left for the tier."""
    tier: str
    limits: TierLimits
    last_minute: int
    last_hour: int
    last_day: int
    remaining_per_minute: float
    remaining_per_hour: float
    remaining_per_day: float


def _millis(delta: timedelta) -> int:
    return max(0, math.ceil(delta.total_seconds() * 1000))


class RateLimiter:
    """Per-identity sliding-window rate limiter.

    Records live in memory, guarded by a single lock.
    """

    def __init__(
        self,
        config: Optional[LimitsConfig] = None,
        config_loader: Callable[[], LimitsConfig] = load_config,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._config_loader = config_loader
        self._config = config if config is not None else config_loader()
        self.clock = clock
        self._lock = threading.Lock()
        self._records: Dict[str, _RequestRecord] = {}

    def refresh_config(self, config: Optional[LimitsConfig] = None) -> None:
        self._config = config if config is not None else self._config_loader()
        logger.info("Rate limit config refreshed")

    @staticmethod
    def resolve_tier(is_authenticated: bool = False, is_premium: bool = False, is_admin: bool = False) -> str:
        """Highest tier the caller qualifies for."""
        if is_admin:
            return "admin"
        if is_premium:
            return "premium"
        if is_authenticated:
            return "authenticated"
        return "demo"

    def get_tier_limits(self, tier: str) -> TierLimits:
        return self._config.rate_limits.for_tier(tier)

    def check_rate_limit(self, identity: str, tier: str = "demo") -> RateLimitResult:
        """Check whether a request may proceed.

        Args:
            identity: Caller identity (user ID or IP)
            tier: Rate limit tier name

        Returns:
            RateLimitAllowed (per-minute window), or RateLimitDenied with
            ``retry_after_ms``

        Raises:
            ValueError: If identity is empty or the tier is unknown
        """
        require_id(identity, "identity")
        limits = self.get_tier_limits(tier)
        now = self.clock()

        with self._lock:
            record = self._records.get(identity) or _RequestRecord()
            last_request = record.last_request
            per_minute = record.count_since(now - ONE_MINUTE)
            per_hour = record.count_since(now - ONE_HOUR)
            per_day = record.count_since(now - ONE_DAY)
            oldest = {
                ONE_MINUTE: record.oldest_since(now - ONE_MINUTE),
                ONE_HOUR: record.oldest_since(now - ONE_HOUR),
                ONE_DAY: record.oldest_since(now - ONE_DAY),
            }

        # 1. Throttle
        if limits.min_request_interval_ms > 0 and last_request is not None:
            # Rounded down so a request is never let through early
            elapsed_ms = max(0, math.floor((now - last_request).total_seconds() * 1000))
            if elapsed_ms < limits.min_request_interval_ms:
                retry_after = int(limits.min_request_interval_ms - elapsed_ms)
                return RateLimitDenied(
                    tier=tier,
                    limit_type=RateLimitType.THROTTLE,
                    limit=limits.min_request_interval_ms,
                    used=elapsed_ms,
                    retry_after_ms=retry_after,
                    message=(
                        f"Please wait {math.ceil(retry_after / 1000)} seconds "
                        "before making another request."
                    ),
                )

        # 2-4. Sliding windows
        windows = (
            (RateLimitType.REQUESTS_PER_MINUTE, ONE_MINUTE, limits.requests_per_minute, per_minute),
            (RateLimitType.REQUESTS_PER_HOUR, ONE_HOUR, limits.requests_per_hour, per_hour),
            (RateLimitType.REQUESTS_PER_DAY, ONE_DAY, limits.requests_per_day, per_day),
        )
        for limit_type, window, limit, used in windows:
            if used < limit:
                continue
            first = oldest[window]
            retry_after = _millis(first + window - now) if first is not None else _millis(window)
            return RateLimitDenied(
                tier=tier,
                limit_type=limit_type,
                limit=limit,
                used=used,
                retry_after_ms=retry_after,
                message=self._window_message(limit_type, limit, retry_after),
            )

        return RateLimitAllowed(
            tier=tier,
            limit=limits.requests_per_minute,
            used=per_minute,
            remaining=max(0, limits.requests_per_minute - per_minute),
        )

    @staticmethod
    def _window_message(limit_type: RateLimitType, limit: float, retry_after_ms: int) -> str:
        if limit_type is RateLimitType.REQUESTS_PER_MINUTE:
            return f"Rate limit exceeded: {int(limit)} requests per minute. Please wait."
        if limit_type is RateLimitType.REQUESTS_PER_HOUR:
            return f"Rate limit exceeded: {int(limit)} requests per hour. Please wait."
        hours = math.ceil(retry_after_ms / (ONE_HOUR.total_seconds() * 1000))
        return f"Daily rate limit exceeded: {int(limit)} requests per day. Resets in {hours} hours."

    def record_request(self, identity: str) -> None:
        """Record a request. Call only after the request succeeded."""
        require_id(identity, "identity")
        now = self.clock()
        cutoff = now - ONE_DAY
        with self._lock:
            record = self._records.setdefault(identity, _RequestRecord())
            record.timestamps = [ts for ts in record.timestamps if ts > cutoff]
            record.timestamps.append(now)
            record.last_request = now

    def get_stats(self, identity: str, tier: str = "demo") -> RateLimitStats:
        limits = self.get_tier_limits(tier)
        now = self.clock()
        with self._lock:
            record = self._records.get(identity) or _RequestRecord()
            last_minute = record.count_since(now - ONE_MINUTE)
            last_hour = record.count_since(now - ONE_HOUR)
            last_day = record.count_since(now - ONE_DAY)
        return RateLimitStats(
            tier=tier,
            limits=limits,
            last_minute=last_minute,
            last_hour=last_hour,
            last_day=last_day,
            remaining_per_minute=max(0, limits.requests_per_minute - last_minute),
            remaining_per_hour=max(0, limits.requests_per_hour - last_hour),
            remaining_per_day=max(0, limits.requests_per_day - last_day),
        )

    def reset_user(self, identity: str) -> None:
        """Forget every request of an identity (admin action)."""
        with self._lock:
            self._records.pop(identity, None)
        logger.info("Rate limit history reset for %s", identity)

    def cleanup_expired(self) -> int:
        """Drop timestamps older than a day and identities left with none.

        Returns:
            Number of identities removed
        """
        cutoff = self.clock() - ONE_DAY
        removed = 0
        with self._lock:
            for identity in list(self._records):
                record = self._records[identity]
                record.timestamps = [ts for ts in record.timestamps if ts > cutoff]
                if not record.timestamps:
                    del self._records[identity]
                    removed += 1
        if removed:
            logger.info("Dropped rate limit history for %d identities", removed)
        return removed
