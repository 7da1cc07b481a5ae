"""Background scheduler for the periodic reconciliation cycle."""

import logging

from apscheduler.schedulers.background import BackgroundScheduler

logger = logging.getLogger(__name__)

scheduler = BackgroundScheduler(daemon=True)

JOB_ID = "account_reconciliation"


def init_scheduler(context, interval_minutes=None):
    """Initialize and start the background scheduler."""
    from config.settings import RECONCILE_INTERVAL_MINUTES

    if scheduler.running:
        return

    minutes = interval_minutes or RECONCILE_INTERVAL_MINUTES
    scheduler.add_job(
        func=context.job.tick,
        trigger="interval",
        minutes=minutes,
        id=JOB_ID,
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    scheduler.start()
    context.on_close(shutdown_scheduler)
    logger.info("Scheduler started: account reconciliation every %d minute(s)", minutes)


def shutdown_scheduler():
    """Stop the scheduler, waiting for an in-flight cycle to finish."""
    if scheduler.running:
        scheduler.shutdown(wait=True)
        logger.info("Scheduler stopped")
