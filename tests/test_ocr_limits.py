"""
Tests for OCR limit enforcement and job lifecycle.
"""
import threading
from datetime import datetime, timezone

import pytest

from usage_guard.config.loader import AdminConfig, LimitsConfig, OCRLimits
from usage_guard.core.ocr_limits import OCRLimitEngine
from usage_guard.core.ocr_validation import FileInfo
from usage_guard.core.results import Allowed, Bypassed, Denied, LimitType
from usage_guard.storage.models import OCRJobStatus


PDF = FileInfo(name="contract.pdf", size=800_000, type="application/pdf")


def make_config(**ocr_limits):
    """Create a config with the given OCR limits and a bypass key."""
    return LimitsConfig(
        ocr=OCRLimits(**ocr_limits),
        admin=AdminConfig(ocr_bypass_enabled=True, ocr_bypass_key="ocr-secret"),
    )


@pytest.fixture
def engine(ledger, analytics):
    """Engine with limits 10 pages/document, 30 pages/session, 5 documents/session."""
    config = make_config(
        max_pages_per_document=10,
        max_pages_per_session=30,
        max_documents_per_session=5,
        max_concurrent_jobs=3,
    )
    return OCRLimitEngine(ledger, analytics, config=config)


def process(engine, pages, user_id="u1", session_id="s1"):
    """Run one document through the full lifecycle."""
    job = engine.create_job(user_id, session_id, PDF, pages)
    engine.start_job(job.id)
    return engine.complete_job(job.id, pages)


class TestValidateFile:
    """Test pre-upload file checks."""

    def test_supported_file(self, engine):
        """Test a small PDF is allowed."""
        assert isinstance(engine.validate_file(PDF), Allowed)

    def test_file_too_large(self, engine):
        """Test oversized files report their size in MB."""
        big = FileInfo(name="scan.pdf", size=6 * 1024 * 1024 + 100_000, type="application/pdf")

        result = engine.validate_file(big)

        assert isinstance(result, Denied)
        assert result.limit_type is LimitType.FILE_SIZE
        assert result.limit == 5
        assert result.used == 6.1
        assert "6.1MB" in result.message

    def test_unsupported_type(self, engine):
        """Test non-OCR file types are rejected."""
        result = engine.validate_file(FileInfo(name="notes.txt", size=10, type="text/plain"))

        assert result.limit_type is LimitType.FILE_TYPE
        assert '"text/plain"' in result.message

    def test_bypass(self, engine):
        """Test the bypass key skips file checks."""
        big = FileInfo(name="scan.gif", size=50 * 1024 * 1024, type="image/gif")
        assert isinstance(engine.validate_file(big, bypass_key="ocr-secret"), Bypassed)


class TestCheckLimits:
    """Test page, document and queue limits."""

    def test_session_scenario(self, engine):
        """Test 12 pages is rejected outright and the fourth 8-page document exceeds the session."""
        result = engine.check_limits("u1", "s1", 12)
        assert result.limit_type is LimitType.PAGES_PER_DOCUMENT
        assert result.used == 12

        for expected_pages in (8, 16, 24):
            assert engine.check_limits("u1", "s1", 8).allowed
            process(engine, 8)
            assert engine.get_usage_stats("u1", "s1").session_pages.used == expected_pages

        result = engine.check_limits("u1", "s1", 8)

        assert isinstance(result, Denied)
        assert result.limit_type is LimitType.PAGES_PER_SESSION
        assert result.remaining == 6
        assert result.used == 24
        assert "6 pages remaining in session" in result.message

    def test_allowed_reports_smallest_remaining(self, engine):
        """Test remaining is the minimum of session and daily pages left."""
        process(engine, 8)

        result = engine.check_limits("u1", "s1", 2)

        assert isinstance(result, Allowed)
        assert result.remaining == 22

    def test_documents_per_session(self, ledger, analytics):
        """Test the session document count is checked before pages."""
        engine = OCRLimitEngine(ledger, analytics, config=make_config(max_documents_per_session=2))
        process(engine, 1)
        process(engine, 1)

        result = engine.check_limits("u1", "s1", 1)

        assert result.limit_type is LimitType.DOCUMENTS_PER_SESSION
        assert result.used == 2
        assert result.remaining == 0

    def test_daily_limits_span_sessions(self, ledger, analytics):
        """Test daily pages accumulate across sessions and reset at midnight."""
        engine = OCRLimitEngine(ledger, analytics, config=make_config(max_pages_per_day=12))
        process(engine, 8, session_id="s1")

        result = engine.check_limits("u1", "s2", 5)

        assert result.limit_type is LimitType.PAGES_PER_DAY
        assert result.remaining == 4
        assert result.reset_time == datetime(2024, 3, 16, tzinfo=timezone.utc)

    def test_daily_reset(self, ledger, analytics, clock):
        """Test daily page capacity returns after midnight."""
        engine = OCRLimitEngine(ledger, analytics, config=make_config(max_pages_per_day=12))
        process(engine, 8, session_id="s1")
        clock.set(datetime(2024, 3, 16, 0, 0, tzinfo=timezone.utc))

        assert engine.check_limits("u1", "s2", 5).allowed

    def test_documents_per_day(self, ledger, analytics):
        """Test the daily document count."""
        engine = OCRLimitEngine(ledger, analytics, config=make_config(max_documents_per_day=1))
        process(engine, 1, session_id="s1")

        assert engine.check_limits("u1", "s2", 1).limit_type is LimitType.DOCUMENTS_PER_DAY

    def test_queue_full(self, engine):
        """Test the concurrent-job cap counts queued and processing jobs."""
        first = engine.create_job("u2", "other", PDF, 1)
        engine.start_job(first.id)
        engine.create_job("u2", "other", PDF, 1)
        engine.create_job("u3", "third", PDF, 1)

        result = engine.check_limits("u1", "s1", 1)

        assert result.limit_type is LimitType.QUEUE_FULL
        assert result.used == 3
        assert "(3/3)" in result.message

    def test_bypass(self, engine, analytics):
        """Test the bypass key skips every limit."""
        result = engine.check_limits("u1", "s1", 500, bypass_key="ocr-secret")

        assert isinstance(result, Bypassed)
        assert analytics.recent() == []

    def test_wrong_bypass_key(self, engine):
        """Test a wrong key is checked normally."""
        assert engine.check_limits("u1", "s1", 500, bypass_key="nope").limit_type is LimitType.PAGES_PER_DOCUMENT

    def test_denials_are_recorded(self, engine, analytics):
        """Test denials are logged as limit hits."""
        engine.check_limits("u1", "s1", 50)

        assert analytics.get_stats().hits_by_type == {"pages_per_document": 1}

    def test_negative_pages(self, engine):
        """Test negative estimates are rejected."""
        with pytest.raises(ValueError):
            engine.check_limits("u1", "s1", -1)


class TestJobLifecycle:
    """Test legal and illegal job transitions."""

    def test_reserve_job_stops_at_capacity(self, engine):
        """Test reservations fill the queue and then return None."""
        jobs = [engine.reserve_job("u1", "s1", PDF, 1) for _ in range(4)]

        assert all(job is not None for job in jobs[:3])
        assert jobs[3] is None
        assert engine.get_active_job_count() == 3

        engine.start_job(jobs[0].id)
        engine.complete_job(jobs[0].id, 1)
        assert engine.reserve_job("u1", "s1", PDF, 1) is not None

    def test_concurrent_reservations_never_overfill(self, engine):
        """Test racing reservations queue exactly as many jobs as there are slots."""
        reserved = []
        start = threading.Barrier(8)

        def worker():
            start.wait()
            job = engine.reserve_job("u1", "s1", PDF, 1)
            if job is not None:
                reserved.append(job)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(reserved) == 3
        assert engine.get_active_job_count() == 3

    def test_create_job(self, engine):
        """Test new jobs are queued with zero progress."""
        job = engine.create_job("u1", "s1", PDF, 8)

        assert job.id.startswith("ocr_")
        assert job.status is OCRJobStatus.QUEUED
        assert job.progress == 0
        assert job.filename == "contract.pdf"
        assert engine.get_job(job.id) == job

    def test_happy_path_charges_actual_pages(self, engine):
        """Test completion charges actual pages and one document."""
        job = engine.create_job("u1", "s1", PDF, 8)
        started = engine.start_job(job.id)
        assert started.status is OCRJobStatus.PROCESSING
        assert started.started_at is not None

        completed = engine.complete_job(job.id, 6)

        assert completed.status is OCRJobStatus.COMPLETED
        assert completed.progress == 100
        assert completed.actual_pages == 6
        stats = engine.get_usage_stats("u1", "s1")
        assert stats.session_pages.used == 6
        assert stats.session_documents.used == 1
        assert stats.daily_pages.used == 6
        assert stats.daily_documents.used == 1

    def test_start_only_from_queued(self, engine):
        """Test starting twice is rejected."""
        job = engine.create_job("u1", "s1", PDF, 8)
        engine.start_job(job.id)

        assert engine.start_job(job.id) is None

    def test_terminal_states_never_change(self, engine):
        """Test completed jobs cannot be failed, cancelled or re-completed."""
        job = process(engine, 4)

        assert engine.fail_job(job.id, "boom") is None
        assert engine.cancel_job(job.id) is None
        assert engine.complete_job(job.id, 4) is None
        assert engine.update_job_progress(job.id, 10) is None
        assert engine.get_job(job.id).status is OCRJobStatus.COMPLETED
        assert engine.get_usage_stats("u1", "s1").session_pages.used == 4

    def test_fail_job(self, engine):
        """Test failing a job records the error and charges nothing."""
        job = engine.create_job("u1", "s1", PDF, 8)
        engine.start_job(job.id)

        failed = engine.fail_job(job.id, "unreadable scan")

        assert failed.status is OCRJobStatus.FAILED
        assert failed.error == "unreadable scan"
        assert failed.completed_at is not None
        assert engine.get_usage_stats("u1", "s1").session_pages.used == 0

    def test_cancel_queued_job(self, engine):
        """Test queued jobs can be cancelled."""
        job = engine.create_job("u1", "s1", PDF, 8)

        assert engine.cancel_job(job.id).status is OCRJobStatus.CANCELLED
        assert engine.start_job(job.id) is None

    def test_progress_is_clamped(self, engine):
        """Test progress stays within 0-100."""
        job = engine.create_job("u1", "s1", PDF, 8)

        assert engine.update_job_progress(job.id, 150).progress == 100
        assert engine.update_job_progress(job.id, -3).progress == 0

    def test_unknown_job(self, engine):
        """Test operations on unknown IDs return None."""
        assert engine.get_job("ocr_missing") is None
        assert engine.start_job("ocr_missing") is None
        assert engine.update_job_progress("ocr_missing", 50) is None
        assert engine.complete_job("ocr_missing", 1) is None
        assert engine.fail_job("ocr_missing", "x") is None
        assert engine.cancel_job("ocr_missing") is None

    def test_active_and_pending_counts(self, engine):
        """Test active = queued + processing, pending = queued."""
        first = engine.create_job("u1", "s1", PDF, 1)
        engine.create_job("u1", "s1", PDF, 1)
        done = engine.create_job("u1", "s1", PDF, 1)
        engine.start_job(first.id)
        engine.start_job(done.id)
        engine.complete_job(done.id, 1)

        assert engine.get_active_job_count() == 2
        assert engine.get_pending_job_count() == 1

    def test_session_jobs_newest_first(self, engine, clock):
        """Test session jobs are listed newest first."""
        older = engine.create_job("u1", "s1", PDF, 1)
        clock.advance(seconds=5)
        newer = engine.create_job("u1", "s1", PDF, 1)
        engine.create_job("u1", "s2", PDF, 1)

        assert [job.id for job in engine.get_session_jobs("s1")] == [newer.id, older.id]


class TestResetAndCleanup:
    """Test session reset and the cleanup sweep."""

    def test_reset_session_cancels_queued_jobs(self, engine):
        """Test reset clears OCR usage and cancels only queued jobs."""
        process(engine, 5)
        queued = engine.create_job("u1", "s1", PDF, 2)
        running = engine.create_job("u1", "s1", PDF, 2)
        engine.start_job(running.id)

        engine.reset_session("s1")

        stats = engine.get_usage_stats("u1", "s1")
        assert stats.session_pages.used == 0
        assert stats.session_documents.used == 0
        assert stats.daily_pages.used == 5
        assert engine.get_job(queued.id).status is OCRJobStatus.CANCELLED
        assert engine.get_job(running.id).status is OCRJobStatus.PROCESSING

    def test_reset_keeps_token_usage(self, engine, ledger):
        """Test OCR reset leaves the session's token counter alone."""
        ledger.add_session("s1", tokens=300)
        process(engine, 5)

        engine.reset_session("s1")

        assert ledger.session("s1").tokens == 300

    def test_cleanup_purges_old_terminal_jobs(self, engine, clock):
        """Test finished jobs are purged after the retention period."""
        finished = process(engine, 1)
        clock.advance(minutes=30)
        recent = process(engine, 1)
        clock.advance(minutes=31)

        engine.cleanup_expired()

        assert engine.get_job(finished.id) is None
        assert engine.get_job(recent.id) is not None

    def test_cleanup_fails_stale_processing_jobs(self, engine, clock):
        """Test jobs stuck in processing past the timeout are failed."""
        job = engine.create_job("u1", "s1", PDF, 1)
        engine.start_job(job.id)
        clock.advance(minutes=3)

        engine.cleanup_expired()

        stale = engine.get_job(job.id)
        assert stale.status is OCRJobStatus.FAILED
        assert stale.error == "Processing timed out"
        assert engine.get_active_job_count() == 0
