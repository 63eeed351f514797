"""
Caller identity from HTTP request headers.

Identities derived from ``x-forwarded-for`` / ``x-real-ip`` are shared by
every caller behind the same proxy or NAT; such callers share one quota.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Mapping, Optional, Union

from usage_guard.config.loader import AdminConfig
from usage_guard.core.results import Denied, RateLimitDenied
from usage_guard.core.rate_limiter import RateLimiter
from usage_guard.storage.models import utc_now


ANONYMOUS = "anonymous"


@dataclass(frozen=True)
class Identity:
    """Who is calling, and under which session."""
    user_id: str
    session_id: str
    admin_key: Optional[str] = field(default=None, repr=False)


def _lower_keys(headers: Mapping[str, str]) -> Dict[str, str]:
    return {key.lower(): value for key, value in headers.items()}


def resolve_identity(headers: Mapping[str, str], now: Optional[datetime] = None) -> Identity:
    """Resolve user and session from request headers.

    User fallback chain: ``user:<x-auth-user-id>``, ``custom:<x-user-id>``,
    ``ip:<address>`` from the first hop of ``x-forwarded-for`` or from
    ``x-real-ip``, then ``anonymous``. The prefixes keep a client-chosen
    ``x-user-id`` from landing on an authenticated user's or an address's
    quota. The session is ``x-session-id``, or ``<user>:<UTC date>`` when
    absent.
    """
    values = _lower_keys(headers)
    forwarded = values.get("x-forwarded-for", "").split(",")[0].strip()
    address = forwarded or values.get("x-real-ip")
    if values.get("x-auth-user-id"):
        user_id = f"user:{values['x-auth-user-id']}"
    elif values.get("x-user-id"):
        user_id = f"custom:{values['x-user-id']}"
    elif address:
        user_id = f"ip:{address}"
    else:
        user_id = ANONYMOUS
    now = now or utc_now()
    session_id = values.get("x-session-id") or f"{user_id}:{now.date().isoformat()}"
    return Identity(user_id=user_id, session_id=session_id, admin_key=values.get("x-admin-key") or None)


def resolve_tier(headers: Mapping[str, str], admin: AdminConfig) -> str:
    """Rate limit tier for a request: admin key, premium flag, authenticated user, else demo."""
    values = _lower_keys(headers)
    return RateLimiter.resolve_tier(
        is_authenticated=bool(values.get("x-auth-user-id")),
        is_premium=values.get("x-user-premium") == "true",
        is_admin=admin.is_admin_override(values.get("x-admin-key")),
    )


def limit_headers(result: Union[Denied, RateLimitDenied], now: Optional[datetime] = None) -> Dict[str, str]:
    """``X-RateLimit-*`` and ``Retry-After`` headers for a 429 response."""
    now = now or utc_now()
    headers = {
        "X-RateLimit-Limit": str(result.limit or 0),
        "X-RateLimit-Remaining": str(result.remaining or 0),
    }
    if isinstance(result, RateLimitDenied):
        reset = now.timestamp() + result.retry_after_ms / 1000
        headers["X-RateLimit-Reset"] = str(math.floor(reset))
        headers["Retry-After"] = str(math.ceil(result.retry_after_ms / 1000))
    elif result.reset_time is not None:
        headers["X-RateLimit-Reset"] = str(math.floor(result.reset_time.timestamp()))
    return headers
