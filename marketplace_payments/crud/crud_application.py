# marketplace_payments/crud/crud_application.py
from typing import Optional

from pydantic import BaseModel
from sqlalchemy.orm import Session

from marketplace_payments.crud.base import CRUDBase
from marketplace_payments.models.campaign_application import CampaignApplication
from marketplace_payments.schemas.campaign import ApplicationCreate


class CRUDApplication(CRUDBase[CampaignApplication, ApplicationCreate, BaseModel]):
    """CRUD operations for CampaignApplication model."""

    def get_active(
        self, db: Session, *, campaign_id: str, creator_id: str
    ) -> Optional[CampaignApplication]:
        """The creator's non-withdrawn application for a campaign, if any."""
        return (
            db.query(self.model)
            .filter(
                self.model.campaign_id == campaign_id,
                self.model.creator_id == creator_id,
                self.model.status != "withdrawn",
            )
            .first()
        )

    def create_application(
        self,
        db: Session,
        *,
        campaign_id: str,
        creator_id: str,
        obj_in: ApplicationCreate,
    ) -> CampaignApplication:
        db_obj = CampaignApplication(
            campaign_id=campaign_id,
            creator_id=creator_id,
            proposed_rate_cents=obj_in.proposed_rate_cents,
            cover_letter=obj_in.cover_letter,
            status="pending",
        )
        db.add(db_obj)
        db.flush()
        return db_obj


application = CRUDApplication(CampaignApplication)
