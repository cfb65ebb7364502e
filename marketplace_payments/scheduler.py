# marketplace_payments/scheduler.py
"""
Background task scheduler for the payment lifecycle.

Uses APScheduler to run periodic background jobs for:
- Auto-approving deliverables past their review window
- Retrying failed creator payouts
- Re-processing webhook events that failed
"""

import logging
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_MISSED

from marketplace_payments.background_tasks.deliverable_tasks import (
    auto_approve_overdue_deliverables,
)
from marketplace_payments.background_tasks.payout_tasks import retry_due_payouts
from marketplace_payments.background_tasks.webhook_tasks import retry_failed_webhook_events
from marketplace_payments.core.config import settings

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler = None


def _on_job_error(event):
    """Log scheduler job errors with full context."""
    exc = event.exception
    logger.error(
        "Scheduled job FAILED: job_id=%s error=%s",
        event.job_id, exc,
        exc_info=(type(exc), exc, None) if exc else None,
    )
    if event.traceback:
        logger.error("Traceback for job %s:\n%s", event.job_id, event.traceback)


def _on_job_missed(event):
    """Log when a scheduled job misses its execution window."""
    logger.warning(
        "Scheduled job MISSED: job_id=%s scheduled_run_time=%s",
        event.job_id,
        event.scheduled_run_time,
    )


def init_scheduler():
    """
    Initialize the background scheduler with all periodic tasks.

    This is called once when the application starts up.
    """
    global scheduler

    if scheduler is not None:
        logger.warning("Scheduler already initialized")
        return scheduler

    scheduler = BackgroundScheduler(
        timezone="UTC",
        job_defaults={
            'coalesce': True,  # Combine missed executions
            'max_instances': 1,  # Only one instance of each job at a time
            'misfire_grace_time': 60
        }
    )

    scheduler.add_job(
        func=auto_approve_overdue_deliverables,
        trigger=IntervalTrigger(minutes=settings.AUTO_APPROVAL_CHECK_MINUTES),
        id='auto_approve_overdue_deliverables',
        name='Auto-Approve Overdue Deliverables',
        replace_existing=True
    )
    logger.info(
        "Scheduled job: auto_approve_overdue_deliverables "
        f"(every {settings.AUTO_APPROVAL_CHECK_MINUTES} minutes)"
    )

    scheduler.add_job(
        func=retry_due_payouts,
        trigger=IntervalTrigger(minutes=10),
        id='retry_due_payouts',
        name='Retry Failed Creator Payouts',
        replace_existing=True
    )
    logger.info("Scheduled job: retry_due_payouts (every 10 minutes)")

    scheduler.add_job(
        func=retry_failed_webhook_events,
        trigger=IntervalTrigger(minutes=5),
        id='retry_failed_webhook_events',
        name='Retry Failed Webhook Events',
        replace_existing=True
    )
    logger.info("Scheduled job: retry_failed_webhook_events (every 5 minutes)")

    scheduler.add_listener(_on_job_error, EVENT_JOB_ERROR)
    scheduler.add_listener(_on_job_missed, EVENT_JOB_MISSED)

    scheduler.start()
    logger.info("Background scheduler started successfully")

    return scheduler


def shutdown_scheduler():
    """
    Gracefully shutdown the scheduler.

    This is called when the application shuts down.
    """
    global scheduler

    if scheduler is not None:
        scheduler.shutdown(wait=True)
        logger.info("Background scheduler shutdown complete")
        scheduler = None
