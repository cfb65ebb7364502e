# marketplace_payments/crud/crud_deliverable.py
from typing import Any, Dict, Iterable, List, Optional
from datetime import datetime

from pydantic import BaseModel
from sqlalchemy.orm import Session

from marketplace_payments.crud.base import CRUDBase
from marketplace_payments.models.campaign_deliverable import CampaignDeliverable


class CRUDDeliverable(CRUDBase[CampaignDeliverable, BaseModel, BaseModel]):
    """CRUD operations for CampaignDeliverable model."""

    def get_by_application(
        self, db: Session, *, application_id: str
    ) -> Optional[CampaignDeliverable]:
        return (
            db.query(self.model)
            .filter(self.model.application_id == application_id)
            .first()
        )

    def get_by_transfer_id(
        self, db: Session, *, transfer_id: str
    ) -> Optional[CampaignDeliverable]:
        return (
            db.query(self.model)
            .filter(self.model.payment_transaction_id == transfer_id)
            .first()
        )

    def transition(
        self,
        db: Session,
        *,
        deliverable_id: str,
        from_statuses: Iterable[str],
        values: Dict[str, Any],
    ) -> bool:
        """
        Conditionally move a deliverable out of one of `from_statuses`.

        The status check and the write happen in a single UPDATE, so only
        one of several concurrent callers sees True.
        """
        updated = (
            db.query(self.model)
            .filter(
                self.model.id == deliverable_id,
                self.model.status.in_(list(from_statuses)),
            )
            .update(values)
        )
        db.flush()
        return updated == 1

    def get_due_for_auto_approval(
        self, db: Session, *, submitted_before: datetime, limit: int = 100
    ) -> List[CampaignDeliverable]:
        """Deliverables still waiting for review past the auto-approval window."""
        return (
            db.query(self.model)
            .filter(
                self.model.status == "pending_review",
                self.model.submitted_at <= submitted_before,
            )
            .order_by(self.model.submitted_at)
            .limit(limit)
            .all()
        )

    def get_due_for_payout_retry(
        self,
        db: Session,
        *,
        failed_before: datetime,
        max_retries: int,
        limit: int = 50,
    ) -> List[CampaignDeliverable]:
        """Payouts with at least one failed transfer that are below the retry cap."""
        return (
            db.query(self.model)
            .filter(
                self.model.payment_status == "processing",
                self.model.payment_retry_count > 0,
                self.model.payment_retry_count < max_retries,
                self.model.last_payment_retry_at <= failed_before,
            )
            .order_by(self.model.last_payment_retry_at)
            .limit(limit)
            .all()
        )

    def get_pending_onboarding(
        self, db: Session, *, creator_id: str
    ) -> List[CampaignDeliverable]:
        return (
            db.query(self.model)
            .filter(
                self.model.creator_id == creator_id,
                self.model.payment_status == "pending_onboarding",
            )
            .all()
        )


deliverable = CRUDDeliverable(CampaignDeliverable)
