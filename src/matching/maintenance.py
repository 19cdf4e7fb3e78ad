"""
Matching maintenance sweep.

Runs periodically on every process but only one holder of the maintenance
claim does the work. Each step has its own timeout and a failing step does
not prevent the next one.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional

from loguru import logger

from config.settings import MatchingSettings
from src.matching.leases import LeasedClaim
from src.matching.queue import WorkQueue
from src.matching.store import MatchingStore

maint_log = logger.bind(module="Maintenance")

MAINTENANCE_KEY = "matching:maintenance"


@dataclass
class MaintenanceReport:
    """Counts per step; a step that failed or timed out is listed in errors."""

    ran: bool = True
    requeued: int = 0
    archived: int = 0
    purged: int = 0
    errors: dict[str, str] = field(default_factory=dict)


class MatchingMaintenance:
    """Requeue stuck items, archive stale matches, purge old failures."""

    def __init__(
        self,
        store: MatchingStore,
        queue: WorkQueue,
        claims: LeasedClaim,
        settings: MatchingSettings,
    ):
        self._store = store
        self._queue = queue
        self._claims = claims
        self._settings = settings

    async def _step(
        self, name: str, run: Callable[[], Awaitable[int]], report: MaintenanceReport
    ) -> Optional[int]:
        try:
            return await asyncio.wait_for(
                run(), timeout=self._settings.maintenance_step_timeout_seconds
            )
        except asyncio.TimeoutError:
            report.errors[name] = "timeout"
            maint_log.warning(f"Maintenance step {name} timed out")
        except Exception as e:
            report.errors[name] = str(e)
            maint_log.error(f"Maintenance step {name} failed: {e}")
        return None

    async def run(self) -> MaintenanceReport:
        """
        Run one maintenance sweep if no other process is running it.

        Returns:
            MaintenanceReport (ran=False when another process holds the claim)
        """
        report = MaintenanceReport()
        lease = self._settings.maintenance_step_timeout_seconds * 4

        async with self._claims.held(MAINTENANCE_KEY, lease) as acquired:
            if not acquired:
                report.ran = False
                maint_log.debug("Maintenance already running elsewhere")
                return report

            cutoff = datetime.now(timezone.utc) - timedelta(days=self._settings.archive_after_days)
            retention = self._settings.failed_retention_hours * 3600

            report.requeued = await self._step("requeue", self._queue.requeue_stale, report) or 0
            report.archived = await self._step(
                "archive", lambda: self._store.archive_stale_matches(cutoff), report
            ) or 0
            report.purged = await self._step(
                "purge", lambda: self._queue.purge_failed(retention), report
            ) or 0

        if report.requeued or report.archived or report.purged:
            maint_log.info(
                f"Maintenance: requeued={report.requeued}, archived={report.archived}, "
                f"purged={report.purged}"
            )
        return report
