# marketplace_payments/models/campaign_deliverable.py
from sqlalchemy import Column, String, Integer, Text, DateTime, ForeignKey, Index, func
from sqlalchemy.orm import relationship
from marketplace_payments.db.base_class import Base
import uuid


class CampaignDeliverable(Base):
    __tablename__ = "campaign_deliverables"
    __table_args__ = (
        Index("idx_deliverables_review_queue", "status", "submitted_at"),
        Index("idx_deliverables_payment", "payment_status", "last_payment_retry_at"),
    )

    id = Column(
        String, primary_key=True, default=lambda: f"dlv_{uuid.uuid4().hex[:12]}"
    )
    application_id = Column(
        String,
        ForeignKey("campaign_applications.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    campaign_id = Column(String, ForeignKey("campaigns.id"), nullable=False, index=True)
    creator_id = Column(String, nullable=False, index=True)

    # Content reference
    platform = Column(String(50), nullable=True)
    post_url = Column(Text, nullable=True)
    caption = Column(Text, nullable=True)

    status = Column(String(50), nullable=False, default="draft", server_default="draft")
    # Values: 'draft', 'pending_review', 'approved', 'auto_approved',
    #         'rejected', 'revision_requested', 'disputed'

    submitted_at = Column(DateTime(timezone=True), nullable=True)
    review_deadline = Column(DateTime(timezone=True), nullable=True)

    # Review
    reviewed_by = Column(String, nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    auto_approved_at = Column(DateTime(timezone=True), nullable=True)
    feedback = Column(Text, nullable=True)

    # Payment
    payment_status = Column(
        String(50), nullable=False, default="pending", server_default="pending"
    )
    # Values: 'pending', 'pending_onboarding', 'processing', 'completed',
    #         'failed', 'disputed', 'refunded'
    payment_amount_cents = Column(Integer, nullable=True)  # fixed at first submission
    payment_transaction_id = Column(String(255), nullable=True, index=True)  # current transfer
    payment_retry_count = Column(Integer, nullable=False, default=0, server_default="0")
    # Transfer requests the processor refused; keeps idempotency keys fresh
    rejected_transfer_count = Column(Integer, nullable=False, default=0, server_default="0")
    payment_error = Column(Text, nullable=True)
    last_payment_retry_at = Column(DateTime(timezone=True), nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    application = relationship("CampaignApplication", back_populates="deliverable")
    campaign = relationship("Campaign")

    @property
    def is_approved(self) -> bool:
        return self.status in ("approved", "auto_approved")

    @property
    def is_paid(self) -> bool:
        return self.payment_status == "completed"
