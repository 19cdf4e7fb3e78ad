"""
Job Scheduler Module.

Manages the matching jobs: periodic enqueue, periodic maintenance and the
worker loops that drain the queue.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from loguru import logger

from config.settings import MatchingSettings, get_settings
from src.connections.postgres import get_postgres
from src.connections.redis import get_redis
from src.matching import (
    CreditLedger,
    MatchingEngine,
    MatchingEnqueuer,
    MatchingMaintenance,
    MatchingWorker,
    PostgresMatchingStore,
    RedisLeasedClaim,
    RedisNotificationOutbox,
    RedisWorkQueue,
)

scheduler_log = logger.bind(module="Scheduler")

# Scheduler instance
_scheduler = AsyncIOScheduler(timezone="UTC")


@dataclass
class MatchingComponents:
    """Wired matching services of this process."""

    settings: MatchingSettings
    store: PostgresMatchingStore
    queue: RedisWorkQueue
    claims: RedisLeasedClaim
    engine: MatchingEngine
    enqueuer: MatchingEnqueuer
    maintenance: MatchingMaintenance


# Components (lazy initialized)
_components: Optional[MatchingComponents] = None
_worker_tasks: list[asyncio.Task] = []
_stop: Optional[asyncio.Event] = None


async def get_components() -> MatchingComponents:
    """Get or create the matching components."""
    global _components
    if _components is None:
        settings = get_settings().matching
        postgres = await get_postgres()
        redis = await get_redis()

        store = PostgresMatchingStore(postgres.pool, settings.transaction_timeout_seconds)
        queue = RedisWorkQueue(redis.client)
        claims = RedisLeasedClaim(redis.client, owner=settings.instance_id)
        ledger = CreditLedger(store, settings)
        engine = MatchingEngine(
            store, ledger, RedisNotificationOutbox(redis.client), claims, settings
        )
        _components = MatchingComponents(
            settings=settings,
            store=store,
            queue=queue,
            claims=claims,
            engine=engine,
            enqueuer=MatchingEnqueuer(store, queue, settings),
            maintenance=MatchingMaintenance(store, queue, claims, settings),
        )
    return _components


async def run_enqueue_job() -> None:
    """Scheduled job to enqueue eligible seekers."""
    try:
        components = await get_components()
        count = await components.enqueuer.enqueue_eligible_seekers()
        scheduler_log.info(f"Enqueue job: {count} seekers queued")
    except Exception as e:
        scheduler_log.error(f"Enqueue job failed: {e}")


async def run_maintenance_job() -> None:
    """Scheduled job for the maintenance sweep."""
    try:
        components = await get_components()
        report = await components.maintenance.run()
        if report.errors:
            scheduler_log.warning(f"Maintenance finished with errors: {report.errors}")
    except Exception as e:
        scheduler_log.error(f"Maintenance job failed: {e}")


async def run_worker(index: int) -> None:
    """One worker loop; retries wiring until connections are available."""
    while _stop is not None and not _stop.is_set():
        try:
            components = await get_components()
            break
        except Exception as e:
            scheduler_log.error(f"Worker {index} cannot start: {e}")
            await asyncio.sleep(5)
    else:
        return

    worker = MatchingWorker(
        components.engine,
        components.queue,
        components.settings,
        worker_id=f"{components.settings.instance_id}-w{index}",
    )
    await worker.run(_stop)


def setup_jobs() -> None:
    """
    Setup scheduler jobs.

    Enqueue: every enqueue_interval_minutes, plus once at startup
    Maintenance: every minute
    """
    settings = get_settings().matching

    _scheduler.add_job(
        run_enqueue_job,
        IntervalTrigger(minutes=settings.enqueue_interval_minutes, timezone="UTC"),
        id="matching_enqueue",
        name=f"Matching enqueue (every {settings.enqueue_interval_minutes} min)",
        replace_existing=True,
        max_instances=1,
    )

    _scheduler.add_job(
        run_maintenance_job,
        IntervalTrigger(minutes=1, timezone="UTC"),
        id="matching_maintenance",
        name="Matching maintenance (every 1 min)",
        replace_existing=True,
        max_instances=1,
    )

    # Run immediately on startup
    _scheduler.add_job(
        run_enqueue_job,
        trigger="date",
        run_date=datetime.now(timezone.utc),
        id="matching_enqueue_startup",
        name="Startup enqueue",
        replace_existing=True,
    )
    scheduler_log.info("Startup enqueue scheduled to run immediately")


def start() -> None:
    """Start the scheduler and worker loops (inside a running event loop)."""
    global _stop
    settings = get_settings().matching
    if not settings.enabled:
        scheduler_log.warning("Matching disabled (MATCHING_ENABLED=false)")
        return

    setup_jobs()
    _scheduler.start()

    _stop = asyncio.Event()
    for index in range(settings.worker_concurrency):
        _worker_tasks.append(asyncio.create_task(run_worker(index)))
    scheduler_log.info(f"Scheduler started with {settings.worker_concurrency} workers")


async def shutdown() -> None:
    """Stop workers and shutdown the scheduler."""
    global _components
    if _stop is not None:
        _stop.set()
    if _worker_tasks:
        await asyncio.gather(*_worker_tasks, return_exceptions=True)
        _worker_tasks.clear()
    if _scheduler.running:
        _scheduler.shutdown(wait=False)
    _components = None
    scheduler_log.info("Scheduler stopped")
