# marketplace_payments/models/campaign_application.py
from sqlalchemy import Column, String, Integer, Text, DateTime, ForeignKey, Index, func, text
from sqlalchemy.orm import relationship
from marketplace_payments.db.base_class import Base
import uuid


class CampaignApplication(Base):
    __tablename__ = "campaign_applications"
    __table_args__ = (
        # At most one live application per creator per campaign
        Index(
            "uq_campaign_applications_active",
            "campaign_id",
            "creator_id",
            unique=True,
            postgresql_where=text("status <> 'withdrawn'"),
            sqlite_where=text("status <> 'withdrawn'"),
        ),
    )

    id = Column(
        String, primary_key=True, default=lambda: f"app_{uuid.uuid4().hex[:12]}"
    )
    campaign_id = Column(
        String, ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False
    )
    creator_id = Column(String, nullable=False, index=True)

    # Agreed rate in cents, copied onto the deliverable at submission time
    proposed_rate_cents = Column(Integer, nullable=False)
    cover_letter = Column(Text, nullable=True)

    status = Column(String(50), nullable=False, default="pending", server_default="pending")
    # Values: 'pending', 'accepted', 'rejected', 'withdrawn'

    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    campaign = relationship("Campaign", back_populates="applications")
    deliverable = relationship(
        "CampaignDeliverable", back_populates="application", uselist=False
    )
