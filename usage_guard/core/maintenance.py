"""
Periodic cleanup of expired usage records.
"""

import logging
import threading
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)


CleanupTask = Callable[[], int]


class CleanupScheduler:
    """Runs named cleanup tasks on a daemon thread at a fixed interval.

    Example:
        scheduler = CleanupScheduler({"tokens": engine.cleanup_expired}, 3600)
        scheduler.start()
        ...
        scheduler.stop()
    """

    def __init__(self, tasks: Dict[str, CleanupTask], interval_seconds: float):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        self.tasks = dict(tasks)
        self.interval_seconds = interval_seconds
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the worker thread. Calling start twice is a no-op."""
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._worker, name="usage-guard-cleanup", daemon=True
        )
        self._thread.start()
        logger.info("Cleanup scheduler started (every %ss)", self.interval_seconds)

    def stop(self, timeout: float = 5.0) -> None:
        """Signal the worker to stop and wait for it."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        logger.info("Cleanup scheduler stopped")

    def run_once(self) -> Dict[str, int]:
        """Run every task once.

        A failing task is logged and does not stop the others.

        Returns:
            Removed-record count per task name (failed tasks are omitted)
        """
        results: Dict[str, int] = {}
        for name, task in self.tasks.items():
            try:
                results[name] = task()
            except Exception:
                logger.exception("Cleanup task %s failed", name)
        logger.debug("Cleanup pass finished: %s", results)
        return results

    def _worker(self) -> None:
        while not self._stop_event.wait(self.interval_seconds):
            self.run_once()
