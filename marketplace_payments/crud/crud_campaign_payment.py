# marketplace_payments/crud/crud_campaign_payment.py
from typing import Optional
from datetime import datetime

from pydantic import BaseModel
from sqlalchemy.orm import Session

from marketplace_payments.crud.base import CRUDBase
from marketplace_payments.models.campaign_payment import CampaignPayment


class CRUDCampaignPayment(CRUDBase[CampaignPayment, BaseModel, BaseModel]):
    """CRUD operations for CampaignPayment model."""

    def get_by_intent_id(
        self, db: Session, *, payment_intent_id: str
    ) -> Optional[CampaignPayment]:
        return (
            db.query(self.model)
            .filter(self.model.payment_intent_id == payment_intent_id)
            .first()
        )

    def get_latest_for_campaign(
        self, db: Session, *, campaign_id: str
    ) -> Optional[CampaignPayment]:
        return (
            db.query(self.model)
            .filter(self.model.campaign_id == campaign_id)
            .order_by(self.model.created_at.desc(), self.model.id.desc())
            .first()
        )

    def get_succeeded_for_campaign(
        self, db: Session, *, campaign_id: str
    ) -> Optional[CampaignPayment]:
        return (
            db.query(self.model)
            .filter(
                self.model.campaign_id == campaign_id,
                self.model.status == "succeeded",
            )
            .first()
        )

    def count_for_campaign(self, db: Session, *, campaign_id: str) -> int:
        return (
            db.query(self.model)
            .filter(self.model.campaign_id == campaign_id)
            .count()
        )

    def create_record(
        self,
        db: Session,
        *,
        campaign_id: str,
        business_id: str,
        payment_intent_id: str,
        amount_cents: int,
        currency: str,
    ) -> CampaignPayment:
        db_obj = CampaignPayment(
            campaign_id=campaign_id,
            business_id=business_id,
            payment_intent_id=payment_intent_id,
            amount_cents=amount_cents,
            currency=currency,
            status="pending",
        )
        db.add(db_obj)
        db.flush()
        return db_obj

    def mark_succeeded(
        self, db: Session, *, record: CampaignPayment, paid_at: datetime
    ) -> CampaignPayment:
        record.status = "succeeded"
        record.paid_at = record.paid_at or paid_at
        record.failure_code = None
        record.failure_message = None
        db.add(record)
        db.flush()
        return record

    def mark_failed(
        self,
        db: Session,
        *,
        record: CampaignPayment,
        failure_code: Optional[str] = None,
        failure_message: Optional[str] = None,
    ) -> CampaignPayment:
        if record.status != "succeeded":
            record.status = "failed"
            record.failure_code = failure_code
            record.failure_message = failure_message
            db.add(record)
            db.flush()
        return record


campaign_payment = CRUDCampaignPayment(CampaignPayment)
