# marketplace_payments/models/payment_transaction.py
from sqlalchemy import (
    Column,
    String,
    Integer,
    Text,
    DateTime,
    ForeignKey,
    UniqueConstraint,
    func,
)
from marketplace_payments.db.base_class import Base
import uuid
from datetime import datetime, timezone


class PaymentTransaction(Base):
    """
    Append-only money movement record.

    'payment' rows record a confirmed campaign charge, 'payout' rows one
    transfer attempt to a creator. Only status, error_message and the
    timestamps change after insert.
    """

    __tablename__ = "payment_transactions"
    __table_args__ = (
        UniqueConstraint(
            "transaction_type",
            "processor_reference",
            name="uq_payment_transactions_reference",
        ),
    )

    id = Column(
        String, primary_key=True, default=lambda: f"ptx_{uuid.uuid4().hex[:12]}"
    )
    campaign_id = Column(String, ForeignKey("campaigns.id"), nullable=False, index=True)
    deliverable_id = Column(
        String, ForeignKey("campaign_deliverables.id"), nullable=True, index=True
    )
    creator_id = Column(String, nullable=True)
    business_id = Column(String, nullable=True)

    # Payment intent id for 'payment', transfer id for 'payout'
    processor_reference = Column(String(255), nullable=False)

    transaction_type = Column(String(20), nullable=False)
    # Values: 'payment', 'payout'

    amount_cents = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False, default="usd", server_default="usd")

    status = Column(String(20), nullable=False, default="processing", server_default="processing")
    # Values: 'processing', 'completed', 'failed'

    error_message = Column(Text, nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
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
