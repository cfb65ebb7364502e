# marketplace_payments/models/user_role.py
from sqlalchemy import Column, String, DateTime, UniqueConstraint, func
from marketplace_payments.db.base_class import Base
import uuid


class UserRole(Base):
    """Privileges granted to a user; a revoked row no longer counts."""

    __tablename__ = "user_roles"
    __table_args__ = (UniqueConstraint("user_id", "role", name="uq_user_roles_user_role"),)

    id = Column(
        String, primary_key=True, default=lambda: f"role_{uuid.uuid4().hex[:12]}"
    )
    user_id = Column(String, nullable=False, index=True)
    role = Column(String(50), nullable=False)  # e.g. 'admin'
    granted_by = Column(String, nullable=True)
    granted_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    revoked_at = Column(DateTime(timezone=True), nullable=True)
