"""Periodic execution of the ticket update jobs.

Each job runs on its own APScheduler interval trigger, in a fresh database
session. ``max_instances=1`` keeps runs of the same job from overlapping.
"""

import logging

from apscheduler.schedulers.background import BackgroundScheduler

from ..config import settings
from ..database.base import SessionLocal
from ..integrations.cache import CacheService, TTLCache
from ..preferences.policy import JobKind
from .agent import AgentJob
from .base import JobRunStats, TicketUpdateJob
from .portal import PortalJob

logger = logging.getLogger(__name__)

JOB_CLASSES: dict[JobKind, type[TicketUpdateJob]] = {
    JobKind.PORTAL: PortalJob,
    JobKind.AGENT: AgentJob,
}


def run_job(kind: JobKind, cache: CacheService) -> JobRunStats:
    """Run one job to completion in its own session."""
    db = SessionLocal()
    try:
        job = JOB_CLASSES[kind](db, TTLCache(cache))
        try:
            return job.run()
        finally:
            job.client.close()
    finally:
        db.close()


def _scheduled_run(kind: JobKind, cache: CacheService) -> None:
    try:
        run_job(kind, cache)
    except Exception:
        logger.exception("%s job run failed", kind.value.capitalize())


def create_scheduler(cache: CacheService) -> BackgroundScheduler:
    scheduler = BackgroundScheduler(timezone="UTC")
    for kind in JOB_CLASSES:
        scheduler.add_job(
            _scheduled_run,
            trigger="interval",
            seconds=settings.job_interval_seconds,
            args=(kind, cache),
            id=f"{kind.value}_ticket_updates",
            max_instances=1,
            coalesce=True,
        )
    logger.info(
        "Scheduled %s every %ds",
        ", ".join(f"{k.value}_ticket_updates" for k in JOB_CLASSES),
        settings.job_interval_seconds,
    )
    return scheduler
