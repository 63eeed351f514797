"""
Limit check results.

A quota check returns exactly one of ``Allowed``, ``Bypassed`` or
``Denied``; a rate check returns ``RateLimitAllowed`` or
``RateLimitDenied``. Only denials carry a limit type, so an allowed result
with a limit type cannot be constructed.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, Dict, Optional, Union


Number = Union[int, float]


class LimitType(Enum):
    """Quota that caused a denial."""
    # Token tiers
    PER_REQUEST = "per_request"
    SESSION = "session"
    DAILY = "daily"
    MONTHLY = "monthly"
    # OCR file checks
    FILE_SIZE = "file_size"
    FILE_TYPE = "file_type"
    # OCR quotas
    PAGES_PER_DOCUMENT = "pages_per_document"
    PAGES_PER_SESSION = "pages_per_session"
    PAGES_PER_DAY = "pages_per_day"
    DOCUMENTS_PER_SESSION = "documents_per_session"
    DOCUMENTS_PER_DAY = "documents_per_day"
    QUEUE_FULL = "queue_full"


class RateLimitType(Enum):
    """Request-rate window that caused a denial."""
    THROTTLE = "throttle"
    REQUESTS_PER_MINUTE = "requests_per_minute"
    REQUESTS_PER_HOUR = "requests_per_hour"
    REQUESTS_PER_DAY = "requests_per_day"


def percent_used(used: Number, limit: Number) -> int:
    """Percentage of a limit consumed, rounded half up. A zero limit reports 0%."""
    if limit <= 0:
        return 0
    ratio = Decimal(str(used)) / Decimal(str(limit)) * Decimal("100")
    return int(ratio.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def remaining_of(limit: Number, used: Number) -> Number:
    """Capacity left under a limit, never negative."""
    return max(0, limit - used)


def require_id(value: str, name: str) -> str:
    """Raise ValueError for an empty identifier."""
    if not isinstance(value, str) or not value:
        raise ValueError(f"{name} must be a non-empty string")
    return value


@dataclass(frozen=True)
class TierUsage:
    """Usage of one tier for stats displays."""
    used: int
    limit: int
    remaining: int
    percent_used: int

    @classmethod
    def of(cls, used: int, limit: int) -> "TierUsage":
        return cls(
            used=used,
            limit=limit,
            remaining=remaining_of(limit, used),
            percent_used=percent_used(used, limit),
        )


@dataclass(frozen=True)
class Allowed:
    """Request passed every check."""
    limit: Optional[Number] = None
    used: Optional[Number] = None
    remaining: Optional[Number] = None
    allowed: bool = field(default=True, init=False)
    is_bypass: bool = field(default=False, init=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allowed": True,
            "limit": self.limit,
            "used": self.used,
            "remaining": self.remaining,
        }


@dataclass(frozen=True)
class Bypassed:
    """Request skipped every check because a valid override key was given."""
    allowed: bool = field(default=True, init=False)
    is_bypass: bool = field(default=True, init=False)

    def to_dict(self) -> Dict[str, Any]:
        return {"allowed": True, "isBypass": True}


@dataclass(frozen=True)
class Denied:
    """Request rejected by the first violated limit.

    ``reset_time`` is only set for time-boxed tiers (daily, monthly).
    """
    limit_type: LimitType
    message: str
    limit: Optional[Number] = None
    used: Optional[Number] = None
    remaining: Number = 0
    reset_time: Optional[datetime] = None
    allowed: bool = field(default=False, init=False)
    is_bypass: bool = field(default=False, init=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allowed": False,
            "limitType": self.limit_type.value,
            "message": self.message,
            "limit": self.limit,
            "used": self.used,
            "remaining": self.remaining,
            "resetTime": self.reset_time.isoformat() if self.reset_time else None,
        }


LimitCheckResult = Union[Allowed, Bypassed, Denied]


@dataclass(frozen=True)
class RateLimitAllowed:
    """Request is within every rate window. Reports the per-minute window."""
    tier: str
    limit: Number
    used: int
    remaining: Number
    allowed: bool = field(default=True, init=False)


@dataclass(frozen=True)
class RateLimitDenied:
    """Request exceeded a rate window or came too soon after the last one."""
    tier: str
    limit_type: RateLimitType
    limit: Number
    used: Number
    retry_after_ms: int
    message: str
    remaining: int = 0
    allowed: bool = field(default=False, init=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allowed": False,
            "tier": self.tier,
            "limitType": self.limit_type.value,
            "message": self.message,
            "limit": self.limit,
            "used": self.used,
            "remaining": self.remaining,
            "retryAfterMs": self.retry_after_ms,
        }


RateLimitResult = Union[RateLimitAllowed, RateLimitDenied]


class UsageLimitExceeded(Exception):
    """Raised at the SDK boundary when a rate or quota check denies a request."""

    def __init__(self, result: Union[Denied, RateLimitDenied]):
        super().__init__(result.message)
        self.result = result

    @property
    def limit_type(self) -> Union[LimitType, RateLimitType]:
        return self.result.limit_type
