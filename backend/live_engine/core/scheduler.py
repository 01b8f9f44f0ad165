"""APScheduler setup for the render clock and periodic housekeeping."""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

logger = logging.getLogger(__name__)

SWEEP_INTERVAL_SECONDS = 5


def create_scheduler(tracker) -> AsyncIOScheduler:
    """Create and configure the scheduler with all jobs."""
    from live_engine.config import settings

    scheduler = AsyncIOScheduler()

    # Render clock, independent of when feed messages arrive
    scheduler.add_job(
        tracker.render_frame,
        "interval",
        seconds=1.0 / max(settings.frame_rate_hz, 0.1),
        id="render_frame",
        name="Advance interpolation and reconcile viewports",
        max_instances=1,
        coalesce=True,
    )

    scheduler.add_job(
        tracker.push_eta_and_suggestions,
        "interval",
        seconds=settings.eta_push_interval_seconds,
        id="push_eta",
        name="Push smoothed ETAs and suggestions",
        max_instances=1,
    )

    scheduler.add_job(
        tracker.sweep_stale,
        "interval",
        seconds=SWEEP_INTERVAL_SECONDS,
        id="sweep_stale",
        name="Remove vehicles past their TTL",
        max_instances=1,
    )

    scheduler.add_job(
        tracker.refresh_stops,
        "interval",
        hours=settings.stop_refresh_hours,
        id="refresh_stops",
        name="Refresh stop list",
        max_instances=1,
    )

    logger.debug("Scheduler configured at %.1f fps", settings.frame_rate_hz)
    return scheduler
