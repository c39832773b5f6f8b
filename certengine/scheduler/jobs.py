"""APScheduler job definitions and scheduler management.

Initializes a BackgroundScheduler with an IntervalTrigger that runs the
certification sweep, and provides start/shutdown/status helpers for the
FastAPI lifespan.
"""

from __future__ import annotations

import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from certengine.core.config import settings
from certengine.services.sweep import run_sweep

logger = logging.getLogger(__name__)

SWEEP_JOB_ID = "certification_sweep"

# Module-level scheduler instance (singleton)
scheduler = BackgroundScheduler(timezone="UTC")


def _sweep_job() -> None:
    """Wrapper that APScheduler calls on each interval tick."""
    run_sweep(trigger="scheduler")


def start_scheduler() -> None:
    """Configure and start the background scheduler."""
    scheduler.add_job(
        _sweep_job,
        IntervalTrigger(minutes=settings.SWEEP_INTERVAL_MINUTES),
        id=SWEEP_JOB_ID,
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    scheduler.start()
    logger.info(
        "scheduler_started",
        extra={
            "interval_minutes": settings.SWEEP_INTERVAL_MINUTES,
        },
    )


def shutdown_scheduler() -> None:
    """Shutdown the scheduler gracefully."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("scheduler_stopped")


def is_scheduler_running() -> bool:
    """Check if the scheduler is currently running."""
    return scheduler.running
