"""
Tests for the limit-hit log.
"""
from datetime import datetime, timezone

import pytest

from usage_guard.core.analytics import LimitAnalytics
from usage_guard.core.results import LimitType, RateLimitType


def record(analytics, user_id="u1", limit_type=LimitType.DAILY, limit=100, used=90):
    return analytics.record_hit(
        user_id=user_id,
        session_id="s1",
        limit_type=limit_type,
        limit=limit,
        used=used,
        message="limit hit",
    )


class TestRecording:
    """Test appending hits."""

    def test_record_hit(self, analytics, clock):
        """Test events carry the limit type name and timestamp."""
        event = record(analytics, limit_type=RateLimitType.THROTTLE)

        assert event.id.startswith("lh_")
        assert event.limit_type == "throttle"
        assert event.timestamp == clock()
        assert analytics.recent() == [event]

    def test_newest_first(self, analytics, clock):
        """Test recent hits are ordered newest first."""
        first = record(analytics)
        clock.advance(seconds=1)
        second = record(analytics)

        assert analytics.recent() == [second, first]

    def test_log_is_capped(self, clock):
        """Test the oldest entries are dropped beyond the cap."""
        analytics = LimitAnalytics(max_logs=3, clock=clock)
        events = [record(analytics, user_id=f"u{i}") for i in range(5)]

        assert analytics.recent() == list(reversed(events[2:]))

    def test_invalid_cap(self):
        """Test the cap must be positive."""
        with pytest.raises(ValueError):
            LimitAnalytics(max_logs=0)

    def test_event_serializes(self, analytics):
        """Test events convert to a JSON-friendly dict."""
        data = record(analytics).to_dict()

        assert data["timestamp"].startswith("2024-03-15T12:00:00")
        assert data["limit_type"] == "daily"


class TestQueries:
    """Test summaries for the admin view."""

    def test_stats_cover_today_only(self, analytics, clock):
        """Test per-type and per-user counts ignore earlier days."""
        record(analytics, user_id="old")
        clock.set(datetime(2024, 3, 16, 9, 0, tzinfo=timezone.utc))
        record(analytics, user_id="u1", limit_type=LimitType.SESSION)
        record(analytics, user_id="u1", limit_type=LimitType.SESSION)
        record(analytics, user_id="u2", limit_type=LimitType.QUEUE_FULL)

        stats = analytics.get_stats()

        assert stats.total_hits == 4
        assert stats.hits_today == 3
        assert stats.hits_by_type == {"session": 2, "queue_full": 1}
        assert stats.hits_by_user == {"u1": 2, "u2": 1}
        assert analytics.most_hit_limit_type() == ("session", 2)
        assert analytics.hourly_distribution()[9] == 3

    def test_filters(self, analytics):
        """Test filtering by user and by limit type."""
        record(analytics, user_id="u1", limit_type=LimitType.SESSION)
        record(analytics, user_id="u2", limit_type=LimitType.DAILY)

        assert [e.user_id for e in analytics.user_hits("u2")] == ["u2"]
        assert [e.user_id for e in analytics.hits_of_type(LimitType.SESSION)] == ["u1"]
        assert [e.user_id for e in analytics.hits_of_type("daily")] == ["u2"]

    def test_users_approaching_limits(self, analytics):
        """Test users at or above the threshold are listed once."""
        record(analytics, user_id="close", used=85)
        record(analytics, user_id="close", used=95)
        record(analytics, user_id="far", used=10)
        record(analytics, user_id="typeless", limit=None, used=None)

        assert analytics.users_approaching_limits() == ["close"]

    def test_nothing_hit(self, analytics):
        """Test empty summaries."""
        assert analytics.most_hit_limit_type() is None
        assert analytics.get_stats().total_hits == 0

    def test_clear_logs(self, analytics):
        """Test clearing removes every hit."""
        record(analytics)

        analytics.clear_logs()

        assert analytics.recent() == []
