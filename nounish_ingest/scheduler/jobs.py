"""
Interval scheduling of discovery passes and snapshot refreshes.

Each job carries its own running guard: a tick that fires while the
previous tick of the same job is still running is skipped and counted.
Different jobs run concurrently on the scheduler's thread pool.
"""

import threading
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.interval import IntervalTrigger

from nounish_ingest.core.models import IngestionType
from nounish_ingest.observability.logger import get_logger, job_context
from nounish_ingest.observability.metrics import (
    increment_counter,
    job_failures_total,
    job_ticks_skipped_total,
)
from nounish_ingest.pipeline import IngestionPipeline

logger = get_logger(__name__)

SNAPSHOT_JOB = "refresh-snapshots"


class JobState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


class GuardedJob:
    """
    Callable wrapper that lets at most one tick of a job run at a time.

    Errors raised by the wrapped function are logged and counted so the
    scheduler keeps firing later ticks.
    """

    def __init__(self, name: str, fn: Callable[[], Any]):
        self.name = name
        self.fn = fn
        self.state = JobState.IDLE
        self._lock = threading.Lock()

    def try_acquire(self) -> bool:
        """Atomically move IDLE -> RUNNING; False if already running."""
        with self._lock:
            if self.state is JobState.RUNNING:
                return False
            self.state = JobState.RUNNING
            return True

    def release(self) -> None:
        with self._lock:
            self.state = JobState.IDLE

    def __call__(self) -> Any:
        if not self.try_acquire():
            increment_counter(job_ticks_skipped_total, job=self.name)
            logger.info(
                f"Skipping {self.name}: previous run still in progress",
                extra={"job": self.name},
            )
            return None

        try:
            with job_context(self.name):
                return self.fn()
        except Exception as e:
            increment_counter(job_failures_total, job=self.name)
            logger.error(
                f"Job {self.name} failed: {e}",
                extra={"job": self.name, "error_type": type(e).__name__},
                exc_info=True,
            )
            return None
        finally:
            self.release()


def build_jobs(pipeline: IngestionPipeline) -> dict[str, tuple[GuardedJob, int]]:
    """
    Guarded jobs with their interval in seconds.

    The floor for each ingestion job is fixed here, once, from the type's
    lookback.
    """
    settings = pipeline.settings
    jobs: dict[str, tuple[GuardedJob, int]] = {}

    for ingestion_type in IngestionType:
        source = settings.sources.get(ingestion_type)
        if source is None or not source.enabled:
            continue
        min_time = pipeline.min_time(ingestion_type)
        name = f"ingest-{ingestion_type.value}"
        job = GuardedJob(name, lambda t=ingestion_type, m=min_time: pipeline.run_type(t, m))
        jobs[name] = (job, source.interval_seconds)

    jobs[SNAPSHOT_JOB] = (
        GuardedJob(SNAPSHOT_JOB, pipeline.refresh_snapshots),
        settings.snapshots.refresh_interval_seconds,
    )
    return jobs


def build_scheduler(pipeline: IngestionPipeline, blocking: bool = True):
    """
    Create a scheduler with one interval job per enabled type plus the
    snapshot refresh.

    Args:
        pipeline: Pipeline the jobs run against
        blocking: BlockingScheduler for the CLI, BackgroundScheduler otherwise

    Returns:
        Tuple of (scheduler, jobs by name)
    """
    scheduler = BlockingScheduler(timezone="UTC") if blocking else BackgroundScheduler(timezone="UTC")
    jobs = build_jobs(pipeline)
    start = datetime.now(timezone.utc)

    for name, (job, interval_seconds) in jobs.items():
        scheduler.add_job(
            job,
            trigger=IntervalTrigger(seconds=interval_seconds),
            id=name,
            replace_existing=True,
            # Overlapping ticks reach the job's guard, which skips them
            max_instances=2,
            coalesce=True,
            next_run_time=start,
        )
        logger.info(
            f"Scheduled {name} every {interval_seconds}s",
            extra={"job": name, "interval_seconds": interval_seconds},
        )

    return scheduler, {name: job for name, (job, _) in jobs.items()}
