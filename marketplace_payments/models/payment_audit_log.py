# marketplace_payments/models/payment_audit_log.py
from sqlalchemy import JSON, Column, String, DateTime, func
from sqlalchemy.dialects.postgresql import JSONB
from marketplace_payments.db.base_class import Base
import uuid
from datetime import datetime, timezone


class PaymentAuditLog(Base):
    __tablename__ = "payment_audit_logs"

    id = Column(
        String, primary_key=True, default=lambda: f"pal_{uuid.uuid4().hex[:12]}"
    )

    # What happened
    action = Column(String(100), nullable=False)
    # e.g. 'campaign.funded', 'deliverable.approved', 'payout.initiated', 'payout.reversed'

    # Who did it
    actor_type = Column(String(50), nullable=False)  # 'business', 'creator', 'admin', 'system', 'webhook'
    actor_id = Column(String, nullable=True)

    # What was affected
    entity_type = Column(String(50), nullable=False)  # 'campaign', 'deliverable', ...
    entity_id = Column(String, nullable=False, index=True)

    # Change details
    previous_state = Column(JSON().with_variant(JSONB, "postgresql"), nullable=True)
    new_state = Column(JSON().with_variant(JSONB, "postgresql"), nullable=True)
    change_details = Column(JSON().with_variant(JSONB, "postgresql"), nullable=True)

    # Immutable timestamp
    # Set client-side so ordering has sub-second precision
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        server_default=func.now(),
        nullable=False,
    )
