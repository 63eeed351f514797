"""
Storage layer: usage records, keyed stores and the usage ledger.
"""

from .ledger import UsageLedger
from .sqlite_store import SQLiteUsageStore
from .store import InMemoryUsageStore, UsageStore

__all__ = ["InMemoryUsageStore", "SQLiteUsageStore", "UsageLedger", "UsageStore"]
