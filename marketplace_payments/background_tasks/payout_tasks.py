# marketplace_payments/background_tasks/payout_tasks.py
"""
Background tasks for creator payouts.
"""
import asyncio
import logging

from marketplace_payments.db.session import SessionLocal
from marketplace_payments.services.payout_processor import PayoutProcessor

logger = logging.getLogger(__name__)


def retry_due_payouts():
    """
    Background task: Re-attempt payouts whose last transfer failed.

    Terminally failed payouts are not touched; they need a manual retry.

    Returns: Number of payouts re-attempted
    """
    db = SessionLocal()
    try:
        count = asyncio.run(PayoutProcessor(db).retry_due_payouts())

        if count > 0:
            logger.info(f"Retried {count} failed payouts")

        return count

    except Exception as e:
        logger.error(f"Error in retry_due_payouts task: {str(e)}")
        return 0

    finally:
        db.close()
