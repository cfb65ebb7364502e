# marketplace_payments/crud/crud_payment_transaction.py
from typing import List, Optional
from datetime import datetime, timezone

from pydantic import BaseModel
from sqlalchemy.orm import Session

from marketplace_payments.crud.base import CRUDBase
from marketplace_payments.models.payment_transaction import PaymentTransaction


class CRUDPaymentTransaction(CRUDBase[PaymentTransaction, BaseModel, BaseModel]):
    """
    CRUD operations for PaymentTransaction model.

    Rows are never deleted; only status, error_message and completed_at change.
    """

    def get_by_reference(
        self, db: Session, *, transaction_type: str, processor_reference: str
    ) -> Optional[PaymentTransaction]:
        return (
            db.query(self.model)
            .filter(
                self.model.transaction_type == transaction_type,
                self.model.processor_reference == processor_reference,
            )
            .first()
        )

    def get_for_deliverable(
        self, db: Session, *, deliverable_id: str
    ) -> List[PaymentTransaction]:
        return (
            db.query(self.model)
            .filter(self.model.deliverable_id == deliverable_id)
            .order_by(self.model.created_at)
            .all()
        )

    def record_payment(
        self,
        db: Session,
        *,
        campaign_id: str,
        business_id: str,
        payment_intent_id: str,
        amount_cents: int,
        currency: str,
    ) -> PaymentTransaction:
        """Append the completed charge for a campaign, once per payment intent."""
        existing = self.get_by_reference(
            db, transaction_type="payment", processor_reference=payment_intent_id
        )
        if existing:
            return existing

        db_obj = PaymentTransaction(
            campaign_id=campaign_id,
            business_id=business_id,
            processor_reference=payment_intent_id,
            transaction_type="payment",
            amount_cents=amount_cents,
            currency=currency,
            status="completed",
            completed_at=datetime.now(timezone.utc),
        )
        db.add(db_obj)
        db.flush()
        return db_obj

    def record_payout(
        self,
        db: Session,
        *,
        campaign_id: str,
        deliverable_id: str,
        creator_id: str,
        transfer_id: str,
        amount_cents: int,
        currency: str,
    ) -> PaymentTransaction:
        db_obj = PaymentTransaction(
            campaign_id=campaign_id,
            deliverable_id=deliverable_id,
            creator_id=creator_id,
            processor_reference=transfer_id,
            transaction_type="payout",
            amount_cents=amount_cents,
            currency=currency,
            status="processing",
        )
        db.add(db_obj)
        db.flush()
        return db_obj

    def mark_completed(
        self, db: Session, *, transaction: PaymentTransaction
    ) -> PaymentTransaction:
        transaction.status = "completed"
        transaction.completed_at = transaction.completed_at or datetime.now(timezone.utc)
        db.add(transaction)
        db.flush()
        return transaction

    def mark_failed(
        self, db: Session, *, transaction: PaymentTransaction, error_message: str
    ) -> PaymentTransaction:
        transaction.status = "failed"
        transaction.error_message = error_message
        db.add(transaction)
        db.flush()
        return transaction


payment_transaction = CRUDPaymentTransaction(PaymentTransaction)
