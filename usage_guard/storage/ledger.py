"""
Usage ledger over a keyed store.

Every accessor normalizes daily/monthly windows before returning a record,
so callers always see counters that are already rolled over. Mutations go
through ``UsageStore.update`` and are atomic per record.
"""

import logging
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from .models import OCRJob, SessionUsage, UserDailyUsage, utc_now
from .store import DAILY_USAGE, OCR_JOBS, SESSION_USAGE, UsageStore

logger = logging.getLogger(__name__)


Clock = Callable[[], datetime]


class UsageLedger:
    """Per-user daily usage, per-session usage and the OCR job registry."""

    def __init__(self, store: UsageStore, clock: Clock = utc_now):
        self.store = store
        self.clock = clock

    def now(self) -> datetime:
        return self.clock()

    # --- Daily usage ---

    def daily(self, user_id: str) -> UserDailyUsage:
        """Read-only, rolled-over snapshot of a user's usage."""
        now = self.now()
        record = self.store.get(DAILY_USAGE, user_id)
        if record is None:
            return UserDailyUsage.fresh(user_id, now)
        return record.normalized(now)

    def add_daily(
        self,
        user_id: str,
        tokens: int = 0,
        ocr_pages: int = 0,
        ocr_documents: int = 0,
    ) -> UserDailyUsage:
        """Add to a user's daily (and, for tokens, monthly) counters."""
        now = self.now()

        def apply(record: Optional[UserDailyUsage]) -> UserDailyUsage:
            record = UserDailyUsage.fresh(user_id, now) if record is None else record.normalized(now)
            return replace(
                record,
                tokens_today=record.tokens_today + tokens,
                tokens_this_month=record.tokens_this_month + tokens,
                ocr_pages_today=record.ocr_pages_today + ocr_pages,
                ocr_documents_today=record.ocr_documents_today + ocr_documents,
                last_activity=now,
            )

        return self.store.update(DAILY_USAGE, user_id, apply)

    # --- Session usage ---

    def session(self, session_id: str) -> SessionUsage:
        record = self.store.get(SESSION_USAGE, session_id)
        if record is None:
            return SessionUsage.fresh(session_id, self.now())
        return record

    def touch_session(self, session_id: str) -> SessionUsage:
        """Mark a session active now, creating it if needed."""
        now = self.now()

        def apply(record: Optional[SessionUsage]) -> SessionUsage:
            if record is None:
                return SessionUsage.fresh(session_id, now)
            return replace(record, last_activity=now)

        return self.store.update(SESSION_USAGE, session_id, apply)

    def add_session(
        self,
        session_id: str,
        tokens: int = 0,
        ocr_pages: int = 0,
        ocr_documents: int = 0,
    ) -> SessionUsage:
        now = self.now()

        def apply(record: Optional[SessionUsage]) -> SessionUsage:
            record = SessionUsage.fresh(session_id, now) if record is None else record
            return replace(
                record,
                tokens=record.tokens + tokens,
                ocr_pages=record.ocr_pages + ocr_pages,
                ocr_documents=record.ocr_documents + ocr_documents,
                last_activity=now,
            )

        return self.store.update(SESSION_USAGE, session_id, apply)

    def reset_session(self, session_id: str, tokens: bool = False, ocr: bool = False) -> None:
        """Zero the selected session counters; drop the record once it is empty."""

        def apply(record: Optional[SessionUsage]) -> Optional[SessionUsage]:
            if record is None:
                return None
            if tokens:
                record = replace(record, tokens=0)
            if ocr:
                record = replace(record, ocr_pages=0, ocr_documents=0)
            return None if record.is_empty else record

        self.store.update(SESSION_USAGE, session_id, apply)

    def evict_idle_sessions(self, expiry: timedelta) -> int:
        now = self.now()
        removed = self.store.sweep(SESSION_USAGE, lambda record: record.is_idle(now, expiry))
        if removed:
            logger.info("Evicted %d idle sessions", removed)
        return removed

    # --- OCR jobs ---

    def get_job(self, job_id: str) -> Optional[OCRJob]:
        return self.store.get(OCR_JOBS, job_id)

    def save_job(self, job: OCRJob) -> None:
        self.store.set(OCR_JOBS, job.id, job)

    def update_job(self, job_id: str, fn: Callable[[OCRJob], Optional[OCRJob]]) -> Optional[OCRJob]:
        """Apply a transition to a job under its lock.

        ``fn`` returns the new job, or None to reject the transition. Unknown
        jobs and rejected transitions leave the registry unchanged.
        """
        with self.store.lock(OCR_JOBS, job_id):
            job = self.store.get(OCR_JOBS, job_id)
            if job is None:
                return None
            updated = fn(job)
            if updated is None:
                return None
            self.store.set(OCR_JOBS, job_id, updated)
            return updated

    def jobs(self) -> List[OCRJob]:
        return self.store.values(OCR_JOBS)

    def purge_jobs(self, predicate: Callable[[OCRJob], bool]) -> int:
        return self.store.sweep(OCR_JOBS, predicate)
