# marketplace_payments/background_tasks/webhook_tasks.py
"""
Background tasks for stored webhook events.
"""
import asyncio
import logging

from marketplace_payments import crud
from marketplace_payments.db.session import SessionLocal
from marketplace_payments.services.webhook_reconciler import WebhookReconciler

logger = logging.getLogger(__name__)


async def _reprocess_all(db) -> int:
    reconciler = WebhookReconciler(db)
    processed = 0
    for event in crud.webhook_event.get_retryable_events(db):
        event_id = event.provider_event_id
        ack = await reconciler.reprocess_event(event)
        if ack["status"] == "processed":
            processed += 1
        else:
            logger.warning(f"Retry of webhook event {event_id} ended as {ack['status']}")
    return processed


def retry_failed_webhook_events():
    """
    Background task: Re-run webhook events whose processing failed.

    Each event is retried with exponential backoff until it succeeds or
    runs out of attempts.

    Returns: Number of events processed successfully
    """
    db = SessionLocal()
    try:
        count = asyncio.run(_reprocess_all(db))

        if count > 0:
            logger.info(f"Reprocessed {count} failed webhook events")

        return count

    except Exception as e:
        logger.error(f"Error in retry_failed_webhook_events task: {str(e)}")
        return 0

    finally:
        db.close()
