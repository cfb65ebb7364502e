# marketplace_payments/models/payment_webhook_event.py
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    false,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from marketplace_payments.db.base_class import Base
import uuid

MAX_EVENT_RETRIES = 5


class PaymentWebhookEvent(Base):
    __tablename__ = "payment_webhook_events"
    __table_args__ = (
        UniqueConstraint(
            "provider_code", "provider_event_id", name="uq_webhook_events_provider_event"
        ),
        Index(
            "idx_webhook_events_processing", "status", "processing_started_at"
        ),
    )

    id = Column(
        String, primary_key=True, default=lambda: f"whe_{uuid.uuid4().hex[:12]}"
    )

    # Provider information
    provider_code = Column(String(50), nullable=False)
    provider_event_id = Column(String(255), nullable=False)  # Provider's event ID
    provider_event_type = Column(String(100), nullable=False)  # e.g., 'transfer.failed'

    # Processing status
    status = Column(String(50), nullable=False, default="pending", server_default="pending")
    # Values: 'pending', 'processing', 'processed', 'failed', 'skipped'

    payload = Column(JSON().with_variant(JSONB, "postgresql"), nullable=False)

    signature_verified = Column(
        Boolean, nullable=False, default=False, server_default=false()
    )

    # Processing details
    processed_at = Column(DateTime(timezone=True), nullable=True)
    processing_error = Column(Text, nullable=True)
    retry_count = Column(Integer, nullable=False, default=0, server_default="0")
    next_retry_at = Column(DateTime(timezone=True), nullable=True)
    processing_started_at = Column(DateTime(timezone=True), nullable=True)  # claim lease start

    # Related entities (populated during processing)
    related_campaign_id = Column(String, nullable=True)
    related_deliverable_id = Column(String, nullable=True)
    related_account_id = Column(String, nullable=True)

    # Request metadata
    received_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    ip_address = Column(String(45), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    @property
    def is_processed(self) -> bool:
        """Check if event has been handled (processed or deliberately skipped)."""
        return self.status in ("processed", "skipped")

    @property
    def is_retryable(self) -> bool:
        """Check if event can be retried."""
        return self.status == "failed" and self.retry_count < MAX_EVENT_RETRIES
