"""
OCR quota enforcement and job tracking.

File checks run before upload, quota checks before a job is queued. Usage
is charged only when a job completes, using the actual page count.

Evaluation Order (check_limits):
1. Bypass key - Skips every check
2. Pages per document
3. Documents per session, then pages per session
4. Documents per day, then pages per day (reset at UTC midnight)
5. Queue capacity (queued + processing jobs)

Job lifecycle:
    queued -> processing -> completed | failed
    queued | processing -> cancelled
Terminal states never change.
"""

import logging
import threading
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from .analytics import LimitAnalytics
from .ocr_validation import FileInfo
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
from usage_guard.config.loader import BYTES_PER_MB, LimitsConfig, OCRLimits, load_config
from usage_guard.storage.ledger import UsageLedger
from usage_guard.storage.models import OCRJob, OCRJobStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QueueInfo:
    active: int
    pending: int
    max_concurrent: int


@dataclass(frozen=True)
class OCRUsageStats:
    """Snapshot of a user's OCR usage, per-file limits and queue state."""
    session_pages: TierUsage
    session_documents: TierUsage
    daily_pages: TierUsage
    daily_documents: TierUsage
    daily_reset_time: datetime
    max_file_size_mb: int
    max_pages_per_document: int
    queue: QueueInfo


class OCRLimitEngine:
    """File, page, document and queue limits for OCR processing."""

    def __init__(
        self,
        ledger: UsageLedger,
        analytics: Optional[LimitAnalytics] = None,
        config: Optional[LimitsConfig] = None,
        config_loader: Callable[[], LimitsConfig] = load_config,
    ):
        self.ledger = ledger
        self.analytics = analytics
        self._config_loader = config_loader
        self._config = config if config is not None else config_loader()
        self._queue_lock = threading.Lock()

    def refresh_config(self, config: Optional[LimitsConfig] = None) -> None:
        self._config = config if config is not None else self._config_loader()
        logger.info("OCR limit config refreshed")

    def get_config(self) -> OCRLimits:
        return self._config.ocr

    def is_bypass(self, bypass_key: Optional[str]) -> bool:
        return self._config.admin.is_ocr_bypass(bypass_key)

    # --- Checks ---

    def validate_file(self, file: FileInfo, bypass_key: Optional[str] = None) -> LimitCheckResult:
        """Check file size and type before upload.

        Args:
            file: Uploaded file metadata
            bypass_key: Optional OCR bypass key

        Returns:
            Bypassed, Allowed, or Denied (file_size / file_type)
        """
        config = self._config
        if config.admin.is_ocr_bypass(bypass_key):
            return Bypassed()

        limits = config.ocr
        if file.size > limits.max_file_size_bytes:
            size_mb = round(file.size / BYTES_PER_MB, 1)
            return Denied(
                limit_type=LimitType.FILE_SIZE,
                limit=limits.max_file_size_mb,
                used=size_mb,
                message=f"File size ({size_mb}MB) exceeds maximum of {limits.max_file_size_mb}MB.",
            )

        if not limits.is_supported_type(file.type):
            return Denied(
                limit_type=LimitType.FILE_TYPE,
                message=(
                    f'File type "{file.type}" is not supported for OCR. '
                    "Supported types: PDF, JPEG, PNG, TIFF."
                ),
            )

        return Allowed()

    def check_limits(
        self,
        user_id: str,
        session_id: str,
        estimated_pages: int,
        bypass_key: Optional[str] = None,
    ) -> LimitCheckResult:
        """Check page, document and queue limits before queueing a job.

        Args:
            user_id: Identity whose daily quota applies
            session_id: Session whose quota applies
            estimated_pages: Estimated page count of the document
            bypass_key: Optional OCR bypass key

        Returns:
            Bypassed, Allowed (remaining pages), or Denied for the first
            violated limit

        Raises:
            ValueError: If an ID is empty or estimated_pages is negative
        """
        require_id(user_id, "user_id")
        require_id(session_id, "session_id")
        if estimated_pages < 0:
            raise ValueError("estimated_pages cannot be negative")

        config = self._config
        if config.admin.is_ocr_bypass(bypass_key):
            logger.info("OCR bypass used by %s", user_id)
            return Bypassed()

        limits = config.ocr

        # 1. Pages per document
        if estimated_pages > limits.max_pages_per_document:
            return self._deny(user_id, session_id, Denied(
                limit_type=LimitType.PAGES_PER_DOCUMENT,
                limit=limits.max_pages_per_document,
                used=estimated_pages,
                message=(
                    f"Document has {estimated_pages} pages, exceeding the maximum of "
                    f"{limits.max_pages_per_document} pages per document."
                ),
            ))

        # 2. Session limits
        session = self.ledger.touch_session(session_id)
        if session.ocr_documents >= limits.max_documents_per_session:
            return self._deny(user_id, session_id, Denied(
                limit_type=LimitType.DOCUMENTS_PER_SESSION,
                limit=limits.max_documents_per_session,
                used=session.ocr_documents,
                message=(
                    f"Session limit of {limits.max_documents_per_session} documents reached. "
                    "Start a new session to continue."
                ),
            ))

        session_remaining = remaining_of(limits.max_pages_per_session, session.ocr_pages)
        if session.ocr_pages + estimated_pages > limits.max_pages_per_session:
            return self._deny(user_id, session_id, Denied(
                limit_type=LimitType.PAGES_PER_SESSION,
                limit=limits.max_pages_per_session,
                used=session.ocr_pages,
                remaining=session_remaining,
                message=(
                    f"Session page limit would be exceeded. "
                    f"{session_remaining} pages remaining in session."
                ),
            ))

        # 3. Daily limits
        usage = self.ledger.daily(user_id)
        if usage.ocr_documents_today >= limits.max_documents_per_day:
            return self._deny(user_id, session_id, Denied(
                limit_type=LimitType.DOCUMENTS_PER_DAY,
                limit=limits.max_documents_per_day,
                used=usage.ocr_documents_today,
                reset_time=usage.daily_reset_at,
                message=(
                    f"Daily limit of {limits.max_documents_per_day} documents reached. "
                    "Resets at midnight UTC."
                ),
            ))

        daily_remaining = remaining_of(limits.max_pages_per_day, usage.ocr_pages_today)
        if usage.ocr_pages_today + estimated_pages > limits.max_pages_per_day:
            return self._deny(user_id, session_id, Denied(
                limit_type=LimitType.PAGES_PER_DAY,
                limit=limits.max_pages_per_day,
                used=usage.ocr_pages_today,
                remaining=daily_remaining,
                reset_time=usage.daily_reset_at,
                message=(
                    f"Daily page limit would be exceeded. "
                    f"{daily_remaining} pages remaining today."
                ),
            ))

        # 4. Queue capacity
        active = self.get_active_job_count()
        if active >= limits.max_concurrent_jobs:
            return self._deny(user_id, session_id, Denied(
                limit_type=LimitType.QUEUE_FULL,
                limit=limits.max_concurrent_jobs,
                used=active,
                message=(
                    f"Processing queue is full ({active}/{limits.max_concurrent_jobs}). "
                    "Please wait for current jobs to complete."
                ),
            ))

        return Allowed(remaining=min(session_remaining, daily_remaining))

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

    # --- Jobs ---

    def create_job(self, user_id: str, session_id: str, file: FileInfo, estimated_pages: int) -> OCRJob:
        """Register a new job in the ``queued`` state."""
        job = self._new_job(user_id, session_id, file, estimated_pages)
        with self._queue_lock:
            self.ledger.save_job(job)
        logger.info("OCR job %s queued (%s, ~%d pages)", job.id, file.name, estimated_pages)
        return job

    def reserve_job(
        self, user_id: str, session_id: str, file: FileInfo, estimated_pages: int
    ) -> Optional[OCRJob]:
        """Queue a new job only if a queue slot is free.

        Counting active jobs and saving the new one happen under one lock,
        so concurrent callers can never overfill the queue.

        Returns:
            The queued job, or None when the queue is full
        """
        job = self._new_job(user_id, session_id, file, estimated_pages)
        limit = self._config.ocr.max_concurrent_jobs
        with self._queue_lock:
            if self._count_active() >= limit:
                logger.info("OCR queue full, rejected %s for user %s", file.name, user_id)
                return None
            self.ledger.save_job(job)
        logger.info("OCR job %s queued (%s, ~%d pages)", job.id, file.name, estimated_pages)
        return job

    def _new_job(self, user_id: str, session_id: str, file: FileInfo, estimated_pages: int) -> OCRJob:
        require_id(user_id, "user_id")
        require_id(session_id, "session_id")
        if estimated_pages < 0:
            raise ValueError("estimated_pages cannot be negative")

        now = self.ledger.now()
        return OCRJob(
            id=f"ocr_{int(now.timestamp() * 1000)}_{uuid.uuid4().hex[:9]}",
            user_id=user_id,
            session_id=session_id,
            filename=file.name,
            file_size=file.size,
            file_type=file.type,
            estimated_pages=estimated_pages,
            status=OCRJobStatus.QUEUED,
            progress=0,
            created_at=now,
        )

    def start_job(self, job_id: str) -> Optional[OCRJob]:
        """Move a queued job to ``processing``. Returns None otherwise."""
        now = self.ledger.now()

        def apply(job: OCRJob) -> Optional[OCRJob]:
            if job.status is not OCRJobStatus.QUEUED:
                return None
            return replace(job, status=OCRJobStatus.PROCESSING, started_at=now)

        job = self.ledger.update_job(job_id, apply)
        if job is not None:
            logger.debug("OCR job %s started", job_id)
        return job

    def update_job_progress(self, job_id: str, progress: int) -> Optional[OCRJob]:
        """Set progress, clamped to 0-100. Terminal jobs are left unchanged."""
        clamped = min(100, max(0, progress))

        def apply(job: OCRJob) -> Optional[OCRJob]:
            if job.is_terminal:
                return None
            return replace(job, progress=clamped)

        return self.ledger.update_job(job_id, apply)

    def complete_job(self, job_id: str, actual_pages: int) -> Optional[OCRJob]:
        """Mark a job completed and charge its actual pages.

        This is the only place OCR usage is charged: pages += actual_pages and
        documents += 1, for both the session and the day.

        Raises:
            ValueError: If actual_pages is negative
        """
        if actual_pages < 0:
            raise ValueError("actual_pages cannot be negative")
        now = self.ledger.now()

        def apply(job: OCRJob) -> Optional[OCRJob]:
            if job.is_terminal:
                return None
            return replace(
                job,
                status=OCRJobStatus.COMPLETED,
                actual_pages=actual_pages,
                progress=100,
                completed_at=now,
            )

        job = self.ledger.update_job(job_id, apply)
        if job is None:
            return None

        self.track_usage(job.user_id, job.session_id, actual_pages)
        logger.info("OCR job %s completed (%d pages)", job_id, actual_pages)
        return job

    def track_usage(self, user_id: str, session_id: str, pages: int) -> None:
        self.ledger.add_session(session_id, ocr_pages=pages, ocr_documents=1)
        self.ledger.add_daily(user_id, ocr_pages=pages, ocr_documents=1)

    def fail_job(self, job_id: str, error: str) -> Optional[OCRJob]:
        now = self.ledger.now()

        def apply(job: OCRJob) -> Optional[OCRJob]:
            if job.is_terminal:
                return None
            return replace(job, status=OCRJobStatus.FAILED, error=error, completed_at=now)

        job = self.ledger.update_job(job_id, apply)
        if job is not None:
            logger.warning("OCR job %s failed: %s", job_id, error)
        return job

    def cancel_job(self, job_id: str) -> Optional[OCRJob]:
        now = self.ledger.now()

        def apply(job: OCRJob) -> Optional[OCRJob]:
            if job.is_terminal:
                return None
            return replace(job, status=OCRJobStatus.CANCELLED, completed_at=now)

        job = self.ledger.update_job(job_id, apply)
        if job is not None:
            logger.info("OCR job %s cancelled", job_id)
        return job

    def get_job(self, job_id: str) -> Optional[OCRJob]:
        return self.ledger.get_job(job_id)

    def get_session_jobs(self, session_id: str) -> List[OCRJob]:
        """Jobs of a session, newest first."""
        jobs = [job for job in self.ledger.jobs() if job.session_id == session_id]
        return sorted(jobs, key=lambda job: job.created_at, reverse=True)

    def get_active_job_count(self) -> int:
        """Number of queued or processing jobs."""
        with self._queue_lock:
            return self._count_active()

    def _count_active(self) -> int:
        return sum(1 for job in self.ledger.jobs() if job.is_active)

    def get_pending_job_count(self) -> int:
        return sum(1 for job in self.ledger.jobs() if job.status is OCRJobStatus.QUEUED)

    # --- Stats & maintenance ---

    def get_usage_stats(self, user_id: str, session_id: str) -> OCRUsageStats:
        limits = self._config.ocr
        usage = self.ledger.daily(user_id)
        session = self.ledger.session(session_id)
        return OCRUsageStats(
            session_pages=TierUsage.of(session.ocr_pages, limits.max_pages_per_session),
            session_documents=TierUsage.of(session.ocr_documents, limits.max_documents_per_session),
            daily_pages=TierUsage.of(usage.ocr_pages_today, limits.max_pages_per_day),
            daily_documents=TierUsage.of(usage.ocr_documents_today, limits.max_documents_per_day),
            daily_reset_time=usage.daily_reset_at,
            max_file_size_mb=limits.max_file_size_mb,
            max_pages_per_document=limits.max_pages_per_document,
            queue=QueueInfo(
                active=self.get_active_job_count(),
                pending=self.get_pending_job_count(),
                max_concurrent=limits.max_concurrent_jobs,
            ),
        )

    def reset_session(self, session_id: str) -> None:
        """Clear a session's OCR usage and cancel its still-queued jobs.

        Token usage of the same session is not affected.
        """
        self.ledger.reset_session(session_id, ocr=True)
        for job in self.get_session_jobs(session_id):
            if job.status is OCRJobStatus.QUEUED:
                self.cancel_job(job.id)
        logger.info("OCR usage reset for session %s", session_id)

    def cleanup_expired(self) -> int:
        """Evict idle sessions, fail stale jobs and purge old terminal jobs.

        Returns:
            Number of sessions and jobs removed
        """
        config = self._config
        now = self.ledger.now()
        timeout = timedelta(milliseconds=config.ocr.processing_timeout_ms)
        retention = timedelta(minutes=config.maintenance.job_retention_minutes)

        for job in self.ledger.jobs():
            if (
                job.status is OCRJobStatus.PROCESSING
                and job.started_at is not None
                and now - job.started_at > timeout
            ):
                self.fail_job(job.id, "Processing timed out")

        purged = self.ledger.purge_jobs(
            lambda job: job.is_terminal
            and job.completed_at is not None
            and now - job.completed_at > retention
        )
        if purged:
            logger.info("Purged %d finished OCR jobs", purged)

        evicted = self.ledger.evict_idle_sessions(
            timedelta(hours=config.maintenance.session_expiry_hours)
        )
        return purged + evicted
