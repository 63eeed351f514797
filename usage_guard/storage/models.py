"""
Data models for storage layer.

Defines usage records, OCR jobs and limit-hit events. Records are frozen;
updates produce a new record via ``dataclasses.replace`` so any store
backend can persist them.
"""

from dataclasses import asdict, dataclass, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Optional, Union


Number = Union[int, float]


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def next_daily_reset(now: datetime) -> datetime:
    """Next UTC midnight strictly after ``now``."""
    midnight = now.astimezone(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
    return midnight + timedelta(days=1)


def next_monthly_reset(now: datetime) -> datetime:
    """First instant of the next UTC month."""
    now = now.astimezone(timezone.utc)
    if now.month == 12:
        return datetime(now.year + 1, 1, 1, tzinfo=timezone.utc)
    return datetime(now.year, now.month + 1, 1, tzinfo=timezone.utc)


def _dt_to_str(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _dt_from_str(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value is not None else None


@dataclass(frozen=True)
class UserDailyUsage:
    """Per-user counters for the daily and monthly tiers.

    Reset is lazy: ``normalized`` zeroes any counter whose reset time has
    passed. Callers must never read counters without normalizing first.
    """
    user_id: str
    tokens_today: int
    tokens_this_month: int
    ocr_pages_today: int
    ocr_documents_today: int
    daily_reset_at: datetime
    monthly_reset_at: datetime
    last_activity: datetime

    @classmethod
    def fresh(cls, user_id: str, now: datetime) -> "UserDailyUsage":
        return cls(
            user_id=user_id,
            tokens_today=0,
            tokens_this_month=0,
            ocr_pages_today=0,
            ocr_documents_today=0,
            daily_reset_at=next_daily_reset(now),
            monthly_reset_at=next_monthly_reset(now),
            last_activity=now,
        )

    def normalized(self, now: datetime) -> "UserDailyUsage":
        """Return this record with any elapsed daily/monthly window rolled over."""
        record = self
        if now >= record.daily_reset_at:
            record = replace(
                record,
                tokens_today=0,
                ocr_pages_today=0,
                ocr_documents_today=0,
                daily_reset_at=next_daily_reset(now),
            )
        if now >= record.monthly_reset_at:
            record = replace(
                record,
                tokens_this_month=0,
                monthly_reset_at=next_monthly_reset(now),
            )
        return record

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for key in ("daily_reset_at", "monthly_reset_at", "last_activity"):
            data[key] = _dt_to_str(data[key])
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserDailyUsage":
        data = dict(data)
        for key in ("daily_reset_at", "monthly_reset_at", "last_activity"):
            data[key] = _dt_from_str(data[key])
        return cls(**data)


@dataclass(frozen=True)
class SessionUsage:
    """Per-session counters. Sessions have no time-boxed reset, only idle eviction."""
    session_id: str
    tokens: int
    ocr_pages: int
    ocr_documents: int
    created_at: datetime
    last_activity: datetime

    @classmethod
    def fresh(cls, session_id: str, now: datetime) -> "SessionUsage":
        return cls(
            session_id=session_id,
            tokens=0,
            ocr_pages=0,
            ocr_documents=0,
            created_at=now,
            last_activity=now,
        )

    @property
    def is_empty(self) -> bool:
        return self.tokens == 0 and self.ocr_pages == 0 and self.ocr_documents == 0

    def is_idle(self, now: datetime, expiry: timedelta) -> bool:
        return now - self.last_activity > expiry

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for key in ("created_at", "last_activity"):
            data[key] = _dt_to_str(data[key])
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SessionUsage":
        data = dict(data)
        for key in ("created_at", "last_activity"):
            data[key] = _dt_from_str(data[key])
        return cls(**data)


class OCRJobStatus(Enum):
    """Lifecycle states of an OCR job."""
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


ACTIVE_STATUSES = frozenset({OCRJobStatus.QUEUED, OCRJobStatus.PROCESSING})
TERMINAL_STATUSES = frozenset({OCRJobStatus.COMPLETED, OCRJobStatus.FAILED, OCRJobStatus.CANCELLED})


@dataclass(frozen=True)
class OCRJob:
    """OCR job bookkeeping record.

    Once the status is terminal it never changes again.
    """
    id: str
    user_id: str
    session_id: str
    filename: str
    file_size: int
    file_type: str
    estimated_pages: int
    status: OCRJobStatus
    progress: int
    created_at: datetime
    actual_pages: Optional[int] = None
    error: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        for key in ("created_at", "started_at", "completed_at"):
            data[key] = _dt_to_str(data[key])
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OCRJob":
        data = dict(data)
        data["status"] = OCRJobStatus(data["status"])
        for key in ("created_at", "started_at", "completed_at"):
            data[key] = _dt_from_str(data.get(key))
        return cls(**data)


@dataclass(frozen=True)
class LimitHitEvent:
    """Immutable record of a denied request.

    Append-only: the analytics log never modifies an event once recorded.
    """
    id: str
    timestamp: datetime
    user_id: str
    session_id: str
    limit_type: str
    limit: Optional[Number]
    used: Optional[Number]
    remaining: Number
    message: str
    metadata: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = _dt_to_str(self.timestamp)
        return data
