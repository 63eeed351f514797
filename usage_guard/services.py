"""
Service container.

Wires one store, ledger and analytics log into the token engine, the OCR
engine and the rate limiter, and owns the cleanup scheduler's lifecycle.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from usage_guard.config.loader import LimitsConfig, load_config
from usage_guard.core.analytics import LimitAnalytics
from usage_guard.core.maintenance import CleanupScheduler
from usage_guard.core.ocr_limits import OCRLimitEngine
from usage_guard.core.rate_limiter import RateLimiter
from usage_guard.core.token_limits import TokenLimitEngine
from usage_guard.storage.ledger import UsageLedger
from usage_guard.storage.models import utc_now
from usage_guard.storage.store import InMemoryUsageStore, UsageStore

logger = logging.getLogger(__name__)


@dataclass
class UsageGuard:
    """Every limiting service, sharing one store."""
    config: LimitsConfig
    store: UsageStore
    ledger: UsageLedger
    analytics: LimitAnalytics
    tokens: TokenLimitEngine
    ocr: OCRLimitEngine
    rate_limiter: RateLimiter
    scheduler: CleanupScheduler
    config_loader: Callable[[], LimitsConfig] = field(default=load_config, repr=False)

    @classmethod
    def create(
        cls,
        config: Optional[LimitsConfig] = None,
        store: Optional[UsageStore] = None,
        clock: Callable[[], datetime] = utc_now,
        config_loader: Callable[[], LimitsConfig] = load_config,
    ) -> "UsageGuard":
        """Build the services.

        Args:
            config: Limits snapshot (loaded from the environment if omitted)
            store: Record store (in-memory if omitted)
            clock: Source of the current UTC time
            config_loader: Used by ``refresh_config``

        Returns:
            A container whose scheduler has not been started yet
        """
        config = config if config is not None else config_loader()
        store = store if store is not None else InMemoryUsageStore()
        ledger = UsageLedger(store, clock=clock)
        analytics = LimitAnalytics(clock=clock)
        tokens = TokenLimitEngine(ledger, analytics, config=config, config_loader=config_loader)
        ocr = OCRLimitEngine(ledger, analytics, config=config, config_loader=config_loader)
        rate_limiter = RateLimiter(config=config, config_loader=config_loader, clock=clock)
        scheduler = CleanupScheduler(
            {
                "token_sessions": tokens.cleanup_expired,
                "ocr": ocr.cleanup_expired,
                "rate_limits": rate_limiter.cleanup_expired,
            },
            interval_seconds=config.maintenance.cleanup_interval_seconds,
        )
        return cls(
            config=config,
            store=store,
            ledger=ledger,
            analytics=analytics,
            tokens=tokens,
            ocr=ocr,
            rate_limiter=rate_limiter,
            scheduler=scheduler,
            config_loader=config_loader,
        )

    def refresh_config(self) -> None:
        """Load one new snapshot and hand it to every service and the scheduler."""
        config = self.config_loader()
        if config.maintenance.cleanup_interval_seconds <= 0:
            raise ValueError("cleanup_interval_seconds must be > 0")
        self.tokens.refresh_config(config)
        self.ocr.refresh_config(config)
        self.rate_limiter.refresh_config(config)
        self.scheduler.interval_seconds = config.maintenance.cleanup_interval_seconds
        self.config = config

    def start(self) -> None:
        self.scheduler.start()

    def shutdown(self) -> None:
        self.scheduler.stop()
        logger.info("Usage guard shut down")
