"""Reconciliation scanner - repairs connected users whose statistics never arrived"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from moony_analytics.config import settings
from moony_analytics.domain.models import PendingConnection
from moony_analytics.infrastructure.database.repositories import UserRepository
from moony_analytics.infrastructure.observability.metrics import (
    reconciliation_pending_gauge,
    reconciliation_users_counter,
)
from moony_analytics.services.statistics import PipelineOutcome, RetryController
from moony_analytics.utils.date_utils import utc_now

logger = logging.getLogger(__name__)


@dataclass
class ScanReport:
    processed: int = 0
    succeeded: int = 0
    failed: int = 0


@dataclass
class ScanHealth:
    status: str
    pending_count: int
    oldest_pending_connection: Optional[datetime] = None


class ReconciliationScanner:
    """
    Find users connected longer than the grace period with no statistics
    and re-drive them through the retry controller.

    Invoked on a fixed cadence by an external scheduler.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        controller: RetryController,
        grace_period: timedelta | None = None,
        concurrency: int | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.session_factory = session_factory
        self.controller = controller
        self.grace_period = grace_period or timedelta(seconds=settings.reconciliation_grace_period_seconds)
        self.concurrency = max(1, concurrency or settings.reconciliation_concurrency)
        self.clock = clock

    def find_pending(self) -> List[PendingConnection]:
        cutoff = self.clock() - self.grace_period
        with self.session_factory() as db:
            return UserRepository(db).find_pending_connections(cutoff)

    def find_candidates(self) -> List[str]:
        return [pending.user_id for pending in self.find_pending()]

    async def scan(self) -> ScanReport:
        """Process every candidate; one failure never stops the others"""
        try:
            user_ids = self.find_candidates()
        except Exception as e:
            logger.error("Failed to find users needing statistics", extra={"error": str(e)})
            return ScanReport()

        reconciliation_pending_gauge.set(len(user_ids))
        if not user_ids:
            logger.debug("No users need statistics reconciliation")
            return ScanReport()

        logger.info("Reconciling users without statistics", extra={"user_count": len(user_ids), "user_ids": user_ids})

        semaphore = asyncio.Semaphore(self.concurrency)

        async def reconcile(user_id: str) -> bool:
            async with semaphore:
                try:
                    outcome: PipelineOutcome = await self.controller.submit(user_id, trigger="reconciliation")
                except Exception as e:
                    logger.error("Reconciliation run crashed", extra={"user_id": user_id, "error": str(e)})
                    return False
            return outcome.succeeded

        results = await asyncio.gather(*(reconcile(user_id) for user_id in user_ids))

        report = ScanReport(processed=len(results), succeeded=sum(results), failed=len(results) - sum(results))
        reconciliation_users_counter.labels(outcome="succeeded").inc(report.succeeded)
        reconciliation_users_counter.labels(outcome="failed").inc(report.failed)
        logger.info(
            "Statistics reconciliation completed",
            extra={"total_users": report.processed, "successful": report.succeeded, "failed": report.failed},
        )
        return report

    def health_check(self) -> ScanHealth:
        try:
            pending = self.find_pending()
        except Exception as e:
            logger.error("Reconciliation health check failed", extra={"error": str(e)})
            return ScanHealth(status="unhealthy", pending_count=0)

        return ScanHealth(
            status="healthy",
            pending_count=len(pending),
            oldest_pending_connection=pending[0].connected_at if pending else None,
        )
