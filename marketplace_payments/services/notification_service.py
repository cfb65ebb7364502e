# marketplace_payments/services/notification_service.py
import logging
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from marketplace_payments.utils.kafka_helpers import publish_notification_event

logger = logging.getLogger(__name__)


class NotificationKind(str, Enum):
    PAYMENT_SUCCESSFUL = "payment_successful"
    PAYMENT_FAILED = "payment_failed"
    APPLICATION_RECEIVED = "application_received"
    APPLICATION_ACCEPTED = "application_accepted"
    APPLICATION_REJECTED = "application_rejected"
    DELIVERABLE_SUBMITTED = "deliverable_submitted"
    DELIVERABLE_APPROVED = "deliverable_approved"
    DELIVERABLE_AUTO_APPROVED = "deliverable_auto_approved"
    DELIVERABLE_REJECTED = "deliverable_rejected"
    CHANGES_REQUESTED = "changes_requested"
    PAYMENT_RECEIVED = "payment_received"
    PAYOUT_FAILED = "payout_failed"
    ONBOARDING_REQUIRED = "onboarding_required"


class NotificationService:
    """
    Fire-and-forget user notifications.

    `notify` never raises: a notification that cannot be published is
    logged and dropped so it cannot fail the transition that produced it.
    """

    def notify(
        self,
        user_id: str,
        kind: NotificationKind,
        message: str,
        data: Optional[Dict[str, Any]] = None,
        related: Optional[Tuple[str, str]] = None,
    ) -> bool:
        related_type, related_id = related if related else (None, None)
        try:
            return publish_notification_event(
                user_id=user_id,
                kind=kind.value,
                message=message,
                data=data,
                related_entity_type=related_type,
                related_entity_id=related_id,
            )
        except Exception as e:
            logger.error(f"Notification {kind.value} for user {user_id} dropped: {e}")
            return False


notification_service = NotificationService()
