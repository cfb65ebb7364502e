# marketplace_payments/crud/crud_connected_account.py
from typing import Optional
from datetime import datetime

from pydantic import BaseModel
from sqlalchemy.orm import Session

from marketplace_payments.crud.base import CRUDBase
from marketplace_payments.models.connected_account import ConnectedAccount


class CRUDConnectedAccount(CRUDBase[ConnectedAccount, BaseModel, BaseModel]):
    """CRUD operations for ConnectedAccount model."""

    def get_by_user_role(
        self, db: Session, *, user_id: str, account_type: str
    ) -> Optional[ConnectedAccount]:
        return (
            db.query(self.model)
            .filter(
                self.model.user_id == user_id,
                self.model.account_type == account_type,
            )
            .first()
        )

    def get_by_stripe_account_id(
        self, db: Session, *, stripe_account_id: str
    ) -> Optional[ConnectedAccount]:
        return (
            db.query(self.model)
            .filter(self.model.stripe_account_id == stripe_account_id)
            .first()
        )

    def create_account(
        self,
        db: Session,
        *,
        user_id: str,
        account_type: str,
        stripe_account_id: str,
        details_submitted: bool = False,
    ) -> ConnectedAccount:
        db_obj = ConnectedAccount(
            user_id=user_id,
            account_type=account_type,
            stripe_account_id=stripe_account_id,
            onboarding_completed=details_submitted,
        )
        db.add(db_obj)
        db.flush()
        return db_obj

    def cache_link(
        self,
        db: Session,
        *,
        account: ConnectedAccount,
        url: str,
        expires_at: datetime,
    ) -> ConnectedAccount:
        account.onboarding_link = url
        account.onboarding_link_expires_at = expires_at
        db.add(account)
        db.flush()
        return account


connected_account = CRUDConnectedAccount(ConnectedAccount)
