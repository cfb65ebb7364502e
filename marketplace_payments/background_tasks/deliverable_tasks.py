# marketplace_payments/background_tasks/deliverable_tasks.py
"""
Background tasks for the deliverable review window.
"""
import asyncio
import logging

from marketplace_payments.db.session import SessionLocal
from marketplace_payments.services.deliverable_lifecycle import DeliverableLifecycle

logger = logging.getLogger(__name__)


def auto_approve_overdue_deliverables():
    """
    Background task: Approve submissions nobody reviewed within the window.

    Returns: Number of deliverables auto-approved
    """
    db = SessionLocal()
    try:
        count = asyncio.run(DeliverableLifecycle(db).auto_approve_due())

        if count > 0:
            logger.info(f"Auto-approved {count} overdue deliverables")

        return count

    except Exception as e:
        logger.error(f"Error in auto_approve_overdue_deliverables task: {str(e)}")
        return 0

    finally:
        db.close()
