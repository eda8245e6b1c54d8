from __future__ import annotations

from apscheduler.schedulers.background import BackgroundScheduler
from pytz import timezone

from dowstats.scheduler.jobs import run_catchup

CATCHUP_JOB_ID = "catchup-scan"


def create_scheduler(ctx) -> BackgroundScheduler:
    """Build a scheduler with the recurring catch-up job registered, not started."""
    settings = ctx.settings
    scheduler = BackgroundScheduler(timezone=timezone(settings.SCHEDULER_TZ))
    scheduler.add_job(
        run_catchup,
        "interval",
        id=CATCHUP_JOB_ID,
        args=[ctx],
        minutes=settings.CATCHUP_INTERVAL_MINUTES,
        replace_existing=True,
        misfire_grace_time=600,
        coalesce=True,
        max_instances=1,
    )
    return scheduler


def start_scheduler(ctx) -> BackgroundScheduler | None:
    if not ctx.settings.SCHEDULER_ENABLED:
        return None
    scheduler = create_scheduler(ctx)
    scheduler.start()
    return scheduler


def shutdown_scheduler(scheduler: BackgroundScheduler | None) -> None:
    if scheduler is not None and scheduler.running:
        scheduler.shutdown(wait=False)
