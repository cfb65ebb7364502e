# marketplace_payments/models/campaign.py
from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import relationship
from marketplace_payments.db.base_class import Base
import uuid


class Campaign(Base):
    __tablename__ = "campaigns"
    __table_args__ = (
        # A campaign may only be live once its funding has been confirmed.
        CheckConstraint(
            "status <> 'active' OR payment_status = 'paid'",
            name="ck_campaigns_active_requires_paid",
        ),
        Index("idx_campaigns_owner", "owner_id"),
        Index("idx_campaigns_status", "status", "payment_status"),
    )

    id = Column(
        String, primary_key=True, default=lambda: f"cmp_{uuid.uuid4().hex[:12]}"
    )

    # Sponsor (business user) and the restaurant being promoted
    owner_id = Column(String, nullable=False)
    restaurant_id = Column(String, nullable=False)

    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)

    # Budget in smallest currency unit (cents)
    budget_cents = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False, default="usd", server_default="usd")

    status = Column(String(50), nullable=False, default="pending", server_default="pending")
    # Values: 'draft', 'pending', 'active', 'paused', 'completed'

    payment_status = Column(
        String(50), nullable=False, default="pending", server_default="pending"
    )
    # Values: 'pending', 'paid', 'failed'

    deadline = Column(DateTime(timezone=True), nullable=False)
    paid_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    # Relationships
    payments = relationship(
        "CampaignPayment",
        back_populates="campaign",
        cascade="all, delete-orphan",
        order_by="CampaignPayment.created_at",
    )
    applications = relationship(
        "CampaignApplication",
        back_populates="campaign",
        cascade="all, delete-orphan",
    )

    @property
    def is_funded(self) -> bool:
        """Check if the campaign's payment has been confirmed."""
        return self.payment_status == "paid"

    def mark_funded(self, paid_at) -> None:
        """Set the paid and active flags together."""
        self.payment_status = "paid"
        self.paid_at = self.paid_at or paid_at
        if self.status in ("draft", "pending"):
            self.status = "active"
