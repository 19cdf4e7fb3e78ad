"""
Distributed matching: enqueue phase and worker phase.

Enqueue is a read-only scan that puts eligible seeker ids on the work queue.
Workers take items off the queue and process one seeker at a time under a
leased claim, acknowledging, retrying with backoff, or failing each item.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from loguru import logger

from config.settings import MatchingSettings
from src.matching.engine import MatchingEngine
from src.matching.errors import MatchingError, PermanentMatchingError, TransientMatchingError
from src.matching.queue import WorkItem, WorkQueue
from src.matching.store import MatchingStore
from src.matching.tracing import MatchTracer

worker_log = logger.bind(module="Worker")


class WorkerStatus(str, Enum):
    """Outcome of processing one queued seeker."""

    PROCESSED = "PROCESSED"
    SKIPPED_CLAIMED = "SKIPPED_CLAIMED"
    SKIPPED_INELIGIBLE = "SKIPPED_INELIGIBLE"
    RETRY = "RETRY"
    FAILED = "FAILED"


@dataclass
class WorkerResult:
    """Result of process_queued_seeker."""

    intent_id: int
    status: WorkerStatus
    run_id: str
    standard_rows: int = 0
    triangle_rows: int = 0
    error_code: Optional[str] = None
    error: Optional[str] = None


class MatchingEnqueuer:
    """Enqueue phase: no DB mutation, no locks."""

    def __init__(self, store: MatchingStore, queue: WorkQueue, settings: MatchingSettings):
        self._store = store
        self._queue = queue
        self._settings = settings

    async def enqueue_eligible_seekers(self) -> int:
        """
        Put up to sweep_limit eligible seekers on the work queue.

        Eligible ids are paged through in id order until sweep_limit seekers
        were newly enqueued, so seekers already queued, processing, or
        enqueued within the re-enqueue interval do not use up the scan.

        Returns:
            Number of intents newly enqueued
        """
        limit = self._settings.sweep_limit
        page_size = max(self._settings.sweep_batch_size, 1)
        min_interval = self._settings.enqueue_interval_minutes * 60

        enqueued = 0
        scanned = 0
        after_id = 0
        while enqueued < limit:
            ids = await self._store.list_eligible_seeker_ids(page_size, after_id)
            if not ids:
                break

            for intent_id in ids:
                scanned += 1
                if await self._queue.enqueue(intent_id, min_interval):
                    enqueued += 1
                    if enqueued >= limit:
                        break
            after_id = ids[-1]

        worker_log.info(f"Enqueued {enqueued}/{scanned} eligible seekers")
        return enqueued


class MatchingWorker:
    """Worker phase: process queued seekers one by one."""

    def __init__(
        self,
        engine: MatchingEngine,
        queue: WorkQueue,
        settings: MatchingSettings,
        worker_id: str = "",
    ):
        self._engine = engine
        self._queue = queue
        self._settings = settings
        self.worker_id = worker_id or settings.instance_id

    async def process_queued_seeker(self, intent_id: int) -> WorkerResult:
        """
        Run STANDARD then TRIANGLE for one seeker under its leased claim.

        Args:
            intent_id: Seeker intent ID

        Returns:
            WorkerResult; errors are mapped to RETRY (transient) or FAILED (permanent)
        """
        tracer = MatchTracer(self._settings)
        try:
            result = await self._engine.process_seeker(intent_id, tracer)
        except TransientMatchingError as e:
            worker_log.warning(f"[{self.worker_id}] Intent {intent_id} transient error [{e.code}]: {e}")
            return WorkerResult(intent_id, WorkerStatus.RETRY, tracer.run_id, error_code=e.code, error=str(e))
        except PermanentMatchingError as e:
            worker_log.error(f"[{self.worker_id}] Intent {intent_id} permanent error [{e.code}]: {e}")
            return WorkerResult(intent_id, WorkerStatus.FAILED, tracer.run_id, error_code=e.code, error=str(e))
        except MatchingError as e:
            worker_log.warning(f"[{self.worker_id}] Intent {intent_id} error [{e.code}]: {e}")
            return WorkerResult(intent_id, WorkerStatus.RETRY, tracer.run_id, error_code=e.code, error=str(e))
        except Exception as e:
            worker_log.exception(f"[{self.worker_id}] Intent {intent_id} unexpected error: {e}")
            return WorkerResult(
                intent_id, WorkerStatus.RETRY, tracer.run_id,
                error_code=type(e).__name__, error=str(e),
            )

        if not result.claimed:
            return WorkerResult(intent_id, WorkerStatus.SKIPPED_CLAIMED, tracer.run_id)
        if not result.eligible:
            return WorkerResult(intent_id, WorkerStatus.SKIPPED_INELIGIBLE, tracer.run_id)

        worker_log.info(
            f"[{self.worker_id}] Intent {intent_id} processed: "
            f"{result.standard_rows} standard rows, {result.triangle_rows} triangle rows"
        )
        return WorkerResult(
            intent_id,
            WorkerStatus.PROCESSED,
            tracer.run_id,
            standard_rows=result.standard_rows,
            triangle_rows=result.triangle_rows,
        )

    async def handle_item(self, item: WorkItem) -> WorkerResult:
        """Process a dequeued item and settle it on the queue."""
        result = await self.process_queued_seeker(item.intent_id)

        if result.status == WorkerStatus.RETRY:
            if item.attempts >= self._settings.max_attempts:
                await self._queue.fail(item, f"{result.error_code}: {result.error}")
                result.status = WorkerStatus.FAILED
            else:
                delay = self._settings.retry_delay_seconds(item.attempts - 1)
                await self._queue.retry(item, delay, f"{result.error_code}: {result.error}")
        elif result.status == WorkerStatus.FAILED:
            await self._queue.fail(item, f"{result.error_code}: {result.error}")
        else:
            # SKIPPED_CLAIMED: another worker owns the seeker right now
            await self._queue.ack(item)
        return result

    async def run_once(self) -> Optional[WorkerResult]:
        """Dequeue and handle one item. Returns None when the queue is empty."""
        item = await self._queue.dequeue(self._settings.lock_ttl_seconds)
        if item is None:
            return None
        return await self.handle_item(item)

    async def run(self, stop: asyncio.Event) -> None:
        """Worker loop until stop is set."""
        worker_log.info(f"[{self.worker_id}] Worker started")
        while not stop.is_set():
            try:
                result = await self.run_once()
            except Exception as e:
                worker_log.exception(f"[{self.worker_id}] Queue error: {e}")
                result = None
            if result is None:
                try:
                    await asyncio.wait_for(stop.wait(), self._settings.poll_interval_seconds)
                except asyncio.TimeoutError:
                    pass
        worker_log.info(f"[{self.worker_id}] Worker stopped")
