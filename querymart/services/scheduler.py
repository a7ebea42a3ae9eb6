"""
Scheduler for the periodic extraction jobs.

Uses APScheduler to run every Cron at its own interval on a shared thread
pool. Each job runs at most once at a time; a run that is still going when
the next one is due delays it instead of overlapping.
"""
from datetime import timedelta, timezone
from typing import Any, Dict, Optional

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from querymart.core.config import Settings, settings
from querymart.core.logger import get_logger
from querymart.core.metrics import MetricsContext
from querymart.services.cron import Clock, Cron, WindowPolicy, utc_now
from querymart.services.health import HealthRegistry
from querymart.services.jobs import BadQueriesJob, ConnectionsJob, QueryStatsJob

logger = get_logger(__name__)


class JobScheduler:
    """
    Runs Cron jobs periodically.

    The thread pool size is fixed by configuration and does not depend on
    the number of jobs.
    """

    def __init__(self, pool_size: Optional[int] = None, health: Optional[HealthRegistry] = None):
        self.pool_size = pool_size or settings.scheduler_pool_size
        self.scheduler = BackgroundScheduler(
            executors={"default": ThreadPoolExecutor(self.pool_size)},
            timezone=timezone.utc,
        )
        self.health = health if health is not None else HealthRegistry()
        self.jobs: Dict[str, Cron] = {}
        self.is_running = False

    def add(self, cron: Cron) -> None:
        """Schedule `cron` every frequency_min minutes, first run after delay_min."""
        if cron.frequency_min <= 0:
            raise ValueError(f"{cron.name} has no frequency and cannot be scheduled")

        self.jobs[cron.name] = cron
        self.health.register_cron(cron)
        self.scheduler.add_job(
            func=cron.run,
            trigger=IntervalTrigger(
                minutes=cron.frequency_min,
                start_date=utc_now() + timedelta(minutes=cron.delay_min),
                timezone=timezone.utc,
            ),
            id=cron.name,
            name=cron.name,
            replace_existing=True,
            max_instances=1,  # Prevent overlapping runs
            coalesce=True,
        )
        logger.info(f"Scheduled {cron.name}: every {cron.frequency_min} min, first run in {cron.delay_min} min")

    def start(self) -> None:
        if self.is_running:
            logger.warning("Scheduler is already running")
            return

        self.scheduler.start()
        self.is_running = True
        logger.info(f"Scheduler started with {len(self.jobs)} jobs on {self.pool_size} threads")

    def stop(self, wait: bool = True) -> None:
        if not self.is_running:
            logger.warning("Scheduler is not running")
            return

        logger.info("Stopping scheduler...")
        self.scheduler.shutdown(wait=wait)
        self.is_running = False
        logger.info("Scheduler stopped")

    def get_status(self) -> Dict[str, Any]:
        """
        Get scheduler status.

        Returns:
            Dictionary with scheduler state, cursors and counters per job
        """
        jobs = []
        for name, cron in sorted(self.jobs.items()):
            job = self.scheduler.get_job(name)
            # Pending jobs have no next_run_time until the scheduler starts
            next_run = getattr(job, "next_run_time", None) if job is not None else None
            jobs.append({
                **cron.status(),
                "next_run_time": next_run.isoformat() if next_run else None,
            })
        return {
            "is_running": self.is_running,
            "pool_size": self.pool_size,
            "jobs": jobs,
        }


def build_scheduler(
    config: Settings,
    sink,
    source,
    metrics: MetricsContext,
    health: Optional[HealthRegistry] = None,
    clock: Clock = utc_now,
) -> JobScheduler:
    """
    Create the jobs enabled in `config` and add them to a new scheduler.

    A job whose frequency is 0 is not created.
    """
    scheduler = JobScheduler(config.scheduler_pool_size, health)
    common = dict(
        metrics=metrics,
        policy=WindowPolicy(config.window_policy),
        clock=clock,
        start_range=clock() - timedelta(minutes=config.initial_lookback_min),
    )

    if config.query_stats_frequency_min > 0:
        scheduler.add(QueryStatsJob(
            sink, source, config.query_stats_frequency_min,
            delay_min=config.query_stats_delay_min, **common,
        ))
    if config.bad_queries_frequency_min > 0:
        scheduler.add(BadQueriesJob(
            sink, source, config.bad_queries_frequency_min,
            dialect=config.sql_dialect, delay_min=config.bad_queries_delay_min, **common,
        ))
    if config.connections_frequency_min > 0:
        scheduler.add(ConnectionsJob(
            sink, source, config.connections_frequency_min,
            delay_min=config.connections_delay_min, **common,
        ))

    return scheduler
