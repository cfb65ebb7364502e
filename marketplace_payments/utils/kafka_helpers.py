# marketplace_payments/utils/kafka_helpers.py
"""
Kafka helper functions for publishing events to topics.
Uses the singleton producer from marketplace_payments.core.kafka_producer.
"""
import logging
from typing import Any, Dict, Optional

from marketplace_payments.core.kafka_producer import get_kafka_singleton

logger = logging.getLogger(__name__)

# Kafka Topics
TOPIC_NOTIFICATIONS = "marketplace.notifications.v1"


def publish_notification_event(
    user_id: str,
    kind: str,
    message: str,
    data: Optional[Dict[str, Any]] = None,
    related_entity_type: Optional[str] = None,
    related_entity_id: Optional[str] = None,
) -> bool:
    """
    Publish a user notification to Kafka.

    The notification service consumes the topic and handles formatting and
    delivery.

    Args:
        user_id: Recipient user ID
        kind: Notification kind (e.g. 'payment_successful')
        message: Short human-readable message
        data: Optional structured payload
        related_entity_type: e.g. 'campaign', 'deliverable'
        related_entity_id: ID of the related entity

    Returns:
        bool: True if published successfully, False otherwise
    """
    try:
        producer = get_kafka_singleton()

        if producer is None:
            logger.warning("Kafka producer unavailable, skipping notification publish")
            return False

        event_data = {
            "type": "USER_NOTIFICATION",
            "userId": user_id,
            "kind": kind,
            "message": message,
            "data": data or {},
            "relatedEntityType": related_entity_type,
            "relatedEntityId": related_entity_id,
        }

        future = producer.send(TOPIC_NOTIFICATIONS, key=user_id.encode("utf-8"), value=event_data)
        # Wait for the send to complete (with timeout)
        future.get(timeout=10)

        logger.info(f"Published {kind} notification for user {user_id}")
        return True

    except Exception as e:
        logger.error(f"Failed to publish {kind} notification: {e}", exc_info=True)
        return False
