"""
Limit-hit analytics.

Keeps an in-memory, newest-first log of denied requests for the admin
view. Purely observational: nothing here feeds back into allow/deny
decisions.
"""

import logging
import threading
import uuid
from collections import Counter, deque
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from .results import LimitType, Number, RateLimitType
from usage_guard.storage.models import LimitHitEvent, utc_now

logger = logging.getLogger(__name__)


MAX_LOGS = 1000
DEFAULT_RECENT = 50


@dataclass(frozen=True)
class LimitHitStats:
    """Summary of limit hits for the admin view."""
    total_hits: int
    hits_today: int
    hits_by_type: Dict[str, int]
    hits_by_user: Dict[str, int]
    recent_hits: List[LimitHitEvent]


class LimitAnalytics:
    """Append-only log of limit hits, capped at ``max_logs`` entries."""

    def __init__(self, max_logs: int = MAX_LOGS, clock: Callable[[], datetime] = utc_now):
        if max_logs <= 0:
            raise ValueError("max_logs must be > 0")
        self.clock = clock
        self._lock = threading.Lock()
        self._logs: deque = deque(maxlen=max_logs)

    def record_hit(
        self,
        user_id: str,
        session_id: str,
        limit_type: Union[LimitType, RateLimitType, str],
        limit: Optional[Number],
        used: Optional[Number],
        message: str,
        remaining: Number = 0,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> LimitHitEvent:
        """Record a denied request.

        Args:
            user_id: Identity that hit the limit
            session_id: Session that hit the limit
            limit_type: Which limit was hit
            limit: Configured limit value
            used: Usage at the time of the hit
            message: Human-readable denial message
            remaining: Capacity left under the limit
            metadata: Optional extra context

        Returns:
            The recorded event
        """
        now = self.clock()
        type_name = limit_type.value if isinstance(limit_type, (LimitType, RateLimitType)) else limit_type
        event = LimitHitEvent(
            id=f"lh_{int(now.timestamp() * 1000)}_{uuid.uuid4().hex[:9]}",
            timestamp=now,
            user_id=user_id,
            session_id=session_id,
            limit_type=type_name,
            limit=limit,
            used=used,
            remaining=remaining,
            message=message,
            metadata=metadata,
        )
        with self._lock:
            self._logs.appendleft(event)

        logger.warning(
            "[LIMIT HIT] %s user=%s used=%s limit=%s",
            type_name, user_id[:20], used, limit,
        )
        return event

    def _snapshot(self) -> List[LimitHitEvent]:
        with self._lock:
            return list(self._logs)

    def _today(self, events: List[LimitHitEvent]) -> List[LimitHitEvent]:
        today = self.clock().date()
        return [event for event in events if event.timestamp.date() == today]

    def get_stats(self, recent: int = DEFAULT_RECENT) -> LimitHitStats:
        """Summarize hits; per-type and per-user counts cover today (UTC) only."""
        events = self._snapshot()
        today = self._today(events)
        return LimitHitStats(
            total_hits=len(events),
            hits_today=len(today),
            hits_by_type=dict(Counter(event.limit_type for event in today)),
            hits_by_user=dict(Counter(event.user_id for event in today)),
            recent_hits=events[:recent],
        )

    def recent(self, count: int = DEFAULT_RECENT) -> List[LimitHitEvent]:
        return self._snapshot()[:count]

    def user_hits(self, user_id: str, count: int = 20) -> List[LimitHitEvent]:
        return [event for event in self._snapshot() if event.user_id == user_id][:count]

    def hits_of_type(self, limit_type: Union[LimitType, RateLimitType, str], count: int = DEFAULT_RECENT) -> List[LimitHitEvent]:
        type_name = limit_type.value if isinstance(limit_type, (LimitType, RateLimitType)) else limit_type
        return [event for event in self._snapshot() if event.limit_type == type_name][:count]

    def most_hit_limit_type(self) -> Optional[Tuple[str, int]]:
        """Most frequent limit type today, or None if nothing was hit."""
        counts = Counter(event.limit_type for event in self._today(self._snapshot()))
        if not counts:
            return None
        return counts.most_common(1)[0]

    def hourly_distribution(self) -> Dict[int, int]:
        """Hits per UTC hour for today."""
        hourly = {hour: 0 for hour in range(24)}
        for event in self._today(self._snapshot()):
            hourly[event.timestamp.hour] += 1
        return hourly

    def users_approaching_limits(self, threshold_percent: float = 80, window: int = 100) -> List[str]:
        """Users whose recent hits show usage at or above the threshold."""
        users: List[str] = []
        for event in self._snapshot()[:window]:
            if not event.limit or event.used is None:
                continue
            if event.used / event.limit * 100 >= threshold_percent and event.user_id not in users:
                users.append(event.user_id)
        return users

    def clear_logs(self) -> None:
        """Remove every recorded hit (admin action)."""
        with self._lock:
            self._logs.clear()
        logger.info("Limit hit log cleared")
