# marketplace_payments/models/connected_account.py
from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    String,
    Text,
    UniqueConstraint,
    false,
    func,
)
from marketplace_payments.db.base_class import Base
import uuid


class ConnectedAccount(Base):
    __tablename__ = "connected_accounts"
    __table_args__ = (
        UniqueConstraint("user_id", "account_type", name="uq_connected_accounts_user_role"),
    )

    id = Column(
        String, primary_key=True, default=lambda: f"cacc_{uuid.uuid4().hex[:12]}"
    )
    user_id = Column(String, nullable=False, index=True)
    account_type = Column(String(20), nullable=False)
    # Values: 'business', 'creator'

    stripe_account_id = Column(String(255), nullable=False, unique=True)

    # Status flags mirrored from the processor
    onboarding_completed = Column(
        Boolean, nullable=False, default=False, server_default=false()
    )
    charges_enabled = Column(Boolean, nullable=False, default=False, server_default=false())
    payouts_enabled = Column(Boolean, nullable=False, default=False, server_default=false())
    onboarding_completed_at = Column(DateTime(timezone=True), nullable=True)

    # Cached onboarding link
    onboarding_link = Column(Text, nullable=True)
    onboarding_link_expires_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
