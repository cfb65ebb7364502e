# marketplace_payments/crud/crud_campaign.py
from typing import Optional
from datetime import datetime

from pydantic import BaseModel
from sqlalchemy.orm import Session

from marketplace_payments.crud.base import CRUDBase
from marketplace_payments.models.campaign import Campaign
from marketplace_payments.schemas.campaign import CampaignDraft


class CRUDCampaign(CRUDBase[Campaign, CampaignDraft, BaseModel]):
    """CRUD operations for Campaign model."""

    def create_pending(
        self,
        db: Session,
        *,
        owner_id: str,
        draft: CampaignDraft,
        currency: str,
    ) -> Campaign:
        """Insert a campaign awaiting its first payment confirmation."""
        db_obj = Campaign(
            owner_id=owner_id,
            restaurant_id=draft.restaurant_id,
            title=draft.title,
            description=draft.description,
            budget_cents=draft.budget_cents,
            currency=currency,
            deadline=draft.deadline,
            status="pending",
            payment_status="pending",
        )
        db.add(db_obj)
        db.flush()
        return db_obj

    def get_for_owner(
        self, db: Session, *, campaign_id: str, owner_id: str
    ) -> Optional[Campaign]:
        return (
            db.query(self.model)
            .filter(self.model.id == campaign_id, self.model.owner_id == owner_id)
            .first()
        )

    def mark_funded(
        self, db: Session, *, campaign: Campaign, paid_at: datetime
    ) -> Campaign:
        """Set payment_status=paid and status=active in the same flush."""
        campaign.mark_funded(paid_at)
        db.add(campaign)
        db.flush()
        return campaign

    def mark_payment_failed(self, db: Session, *, campaign: Campaign) -> Campaign:
        # A confirmed payment is never downgraded by a late failure event
        if campaign.payment_status != "paid":
            campaign.payment_status = "failed"
            db.add(campaign)
            db.flush()
        return campaign


campaign = CRUDCampaign(Campaign)
