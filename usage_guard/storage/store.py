"""
Keyed usage stores.

``UsageStore`` is the interface the limit engines depend on; the in-memory
implementation is the default and ``SQLiteUsageStore`` persists the same
records to disk. A shared key-value service can be plugged in by
implementing the five abstract methods.
"""

import threading
import zlib
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, List, Optional, Tuple, Type, Union

from .models import OCRJob, SessionUsage, UserDailyUsage


Record = Union[UserDailyUsage, SessionUsage, OCRJob]

# Namespaces
DAILY_USAGE = "daily_usage"
SESSION_USAGE = "session_usage"
OCR_JOBS = "ocr_jobs"

RECORD_TYPES: Dict[str, Type] = {
    DAILY_USAGE: UserDailyUsage,
    SESSION_USAGE: SessionUsage,
    OCR_JOBS: OCRJob,
}

_LOCK_STRIPES = 64


class UsageStore(ABC):
    """Keyed record store with per-key locking.

    Locks are striped: each (namespace, key) maps onto one of a fixed set
    of re-entrant locks. Never hold two record locks at once.
    """

    def __init__(self):
        self._stripes = [threading.RLock() for _ in range(_LOCK_STRIPES)]

    @abstractmethod
    def get(self, namespace: str, key: str) -> Optional[Record]:
        """Return the record stored under key, or None."""

    @abstractmethod
    def set(self, namespace: str, key: str, record: Record) -> None:
        """Store a record, replacing any previous one."""

    @abstractmethod
    def delete(self, namespace: str, key: str) -> bool:
        """Delete a record. Returns True if it existed."""

    @abstractmethod
    def items(self, namespace: str) -> List[Tuple[str, Record]]:
        """Snapshot of every (key, record) pair in a namespace."""

    @abstractmethod
    def clear(self) -> None:
        """Remove every record from every namespace."""

    def values(self, namespace: str) -> List[Record]:
        return [record for _, record in self.items(namespace)]

    @contextmanager
    def lock(self, namespace: str, key: str) -> Iterator[None]:
        stripe = zlib.crc32(f"{namespace}\x00{key}".encode("utf-8")) % _LOCK_STRIPES
        with self._stripes[stripe]:
            yield

    def update(
        self,
        namespace: str,
        key: str,
        fn: Callable[[Optional[Record]], Optional[Record]],
    ) -> Optional[Record]:
        """Atomically read, transform and write back one record.

        ``fn`` receives the current record (or None) and returns the new
        record, or None to delete it.
        """
        with self.lock(namespace, key):
            new_record = fn(self.get(namespace, key))
            if new_record is None:
                self.delete(namespace, key)
            else:
                self.set(namespace, key, new_record)
            return new_record

    def sweep(self, namespace: str, predicate: Callable[[Record], bool]) -> int:
        """Delete every record matching predicate. Returns the number removed.

        Each candidate is re-read under its lock so a record refreshed by a
        concurrent request is not evicted.
        """
        removed = 0
        for key, _ in self.items(namespace):
            with self.lock(namespace, key):
                current = self.get(namespace, key)
                if current is not None and predicate(current):
                    self.delete(namespace, key)
                    removed += 1
        return removed


class InMemoryUsageStore(UsageStore):
    """Process-local store backed by dictionaries."""

    def __init__(self):
        super().__init__()
        self._guard = threading.Lock()
        self._data: Dict[str, Dict[str, Record]] = {namespace: {} for namespace in RECORD_TYPES}

    def _namespace(self, namespace: str) -> Dict[str, Record]:
        if namespace not in self._data:
            raise ValueError(f"Unknown namespace: {namespace}")
        return self._data[namespace]

    def get(self, namespace: str, key: str) -> Optional[Record]:
        with self._guard:
            return self._namespace(namespace).get(key)

    def set(self, namespace: str, key: str, record: Record) -> None:
        with self._guard:
            self._namespace(namespace)[key] = record

    def delete(self, namespace: str, key: str) -> bool:
        with self._guard:
            return self._namespace(namespace).pop(key, None) is not None

    def items(self, namespace: str) -> List[Tuple[str, Record]]:
        with self._guard:
            return list(self._namespace(namespace).items())

    def clear(self) -> None:
        with self._guard:
            for records in self._data.values():
                records.clear()
