# marketplace_payments/crud/crud_user_role.py
from typing import Optional
from datetime import datetime, timezone

from pydantic import BaseModel
from sqlalchemy.orm import Session

from marketplace_payments.crud.base import CRUDBase
from marketplace_payments.models.user_role import UserRole


class CRUDUserRole(CRUDBase[UserRole, BaseModel, BaseModel]):
    """Role grants consulted at request time."""

    def has_role(self, db: Session, *, user_id: str, role: str) -> bool:
        return (
            db.query(self.model)
            .filter(
                self.model.user_id == user_id,
                self.model.role == role,
                self.model.revoked_at.is_(None),
            )
            .first()
            is not None
        )

    def grant(
        self,
        db: Session,
        *,
        user_id: str,
        role: str,
        granted_by: Optional[str] = None,
    ) -> UserRole:
        existing = (
            db.query(self.model)
            .filter(self.model.user_id == user_id, self.model.role == role)
            .first()
        )
        if existing:
            existing.revoked_at = None
            existing.granted_by = granted_by
            db.add(existing)
            db.flush()
            return existing

        db_obj = UserRole(user_id=user_id, role=role, granted_by=granted_by)
        db.add(db_obj)
        db.flush()
        return db_obj

    def revoke(self, db: Session, *, user_id: str, role: str) -> bool:
        grant = (
            db.query(self.model)
            .filter(
                self.model.user_id == user_id,
                self.model.role == role,
                self.model.revoked_at.is_(None),
            )
            .first()
        )
        if not grant:
            return False
        grant.revoked_at = datetime.now(timezone.utc)
        db.add(grant)
        db.flush()
        return True


user_role = CRUDUserRole(UserRole)
