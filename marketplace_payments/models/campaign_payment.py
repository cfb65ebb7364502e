# marketplace_payments/models/campaign_payment.py
from sqlalchemy import Column, String, Integer, Text, DateTime, ForeignKey, func
from sqlalchemy.orm import relationship
from marketplace_payments.db.base_class import Base
import uuid
from datetime import datetime, timezone


class CampaignPayment(Base):
    """One funding attempt for a campaign, backed by a processor payment intent."""

    __tablename__ = "campaign_payments"

    id = Column(
        String, primary_key=True, default=lambda: f"cpay_{uuid.uuid4().hex[:12]}"
    )
    campaign_id = Column(
        String, ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False, index=True
    )
    business_id = Column(String, nullable=False)

    # Provider reference
    payment_intent_id = Column(String(255), nullable=False, unique=True)

    amount_cents = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False, default="usd", server_default="usd")

    status = Column(String(50), nullable=False, default="pending", server_default="pending")
    # Values: 'pending', 'succeeded', 'failed'

    failure_code = Column(String(100), nullable=True)
    failure_message = Column(Text, nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)

    # Set client-side so ordering has sub-second precision
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        server_default=func.now(),
        nullable=False,
    )
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    campaign = relationship("Campaign", back_populates="payments")

    @property
    def is_succeeded(self) -> bool:
        return self.status == "succeeded"
