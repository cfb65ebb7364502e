# marketplace_payments/schemas/campaign.py
from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime
from enum import Enum

from marketplace_payments.schemas.payment import CampaignPaymentStatus


class CampaignStatus(str, Enum):
    draft = "draft"
    pending = "pending"
    active = "active"
    paused = "paused"
    completed = "completed"


class ApplicationStatus(str, Enum):
    pending = "pending"
    accepted = "accepted"
    rejected = "rejected"
    withdrawn = "withdrawn"


class FundingOutcomeStatus(str, Enum):
    confirmed = "confirmed"
    processing = "processing"
    cancelled = "cancelled"
    failed = "failed"


# ============================================
# Campaign schemas
# ============================================

class CampaignDraft(BaseModel):
    """What the sponsor submits to create and fund a campaign."""

    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    restaurant_id: Optional[str] = None
    budget_cents: int
    deadline: Optional[datetime] = None


class Campaign(BaseModel):
    id: str
    owner_id: str
    restaurant_id: str
    title: str
    description: Optional[str] = None
    budget_cents: int
    currency: str
    status: CampaignStatus
    payment_status: CampaignPaymentStatus
    deadline: datetime
    paid_at: Optional[datetime] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class FundingOutcome(BaseModel):
    campaign_id: str
    status: FundingOutcomeStatus
    campaign_status: str
    payment_status: str
    attempts: int = 0
    reconciled: bool = False
    message: Optional[str] = None
    error_code: Optional[str] = None


# ============================================
# Application schemas
# ============================================

class ApplicationCreate(BaseModel):
    proposed_rate_cents: int = Field(..., gt=0)
    cover_letter: Optional[str] = None


class Application(BaseModel):
    id: str
    campaign_id: str
    creator_id: str
    proposed_rate_cents: int
    cover_letter: Optional[str] = None
    status: ApplicationStatus
    reviewed_at: Optional[datetime] = None
    created_at: datetime

    model_config = {"from_attributes": True}
