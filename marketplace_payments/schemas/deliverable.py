# marketplace_payments/schemas/deliverable.py
from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime
from enum import Enum


class DeliverableStatus(str, Enum):
    draft = "draft"
    pending_review = "pending_review"
    approved = "approved"
    auto_approved = "auto_approved"
    rejected = "rejected"
    revision_requested = "revision_requested"
    disputed = "disputed"


class DeliverablePaymentStatus(str, Enum):
    pending = "pending"
    pending_onboarding = "pending_onboarding"
    processing = "processing"
    completed = "completed"
    failed = "failed"
    disputed = "disputed"
    refunded = "refunded"


class DeliverablePlatform(str, Enum):
    instagram = "instagram"
    tiktok = "tiktok"
    youtube = "youtube"
    twitter = "twitter"
    facebook = "facebook"


class UrgencyLevel(str, Enum):
    expired = "expired"
    high = "high"
    medium = "medium"
    low = "low"


# ============================================
# Input schemas
# ============================================

class DeliverableSubmission(BaseModel):
    application_id: str
    post_url: str
    platform: Optional[str] = None  # detected from the URL when omitted
    caption: Optional[str] = None


class DeliverableDraft(BaseModel):
    application_id: str
    post_url: Optional[str] = None
    platform: Optional[str] = None
    caption: Optional[str] = None


class DeliverableDraftUpdate(BaseModel):
    post_url: Optional[str] = None
    platform: Optional[str] = None
    caption: Optional[str] = None


class ApproveRequest(BaseModel):
    feedback: Optional[str] = None


class RejectRequest(BaseModel):
    # Emptiness is checked by the lifecycle so the caller gets the domain error
    feedback: str = ""


class RequestChangesRequest(BaseModel):
    feedback: str = ""
    changes_required: List[str] = Field(default_factory=list)


class BulkApproveRequest(BaseModel):
    deliverable_ids: List[str] = Field(..., min_length=1)
    feedback: Optional[str] = None


# ============================================
# Output schemas
# ============================================

class Deliverable(BaseModel):
    id: str
    application_id: str
    campaign_id: str
    creator_id: str
    platform: Optional[str] = None
    post_url: Optional[str] = None
    caption: Optional[str] = None
    status: DeliverableStatus
    submitted_at: Optional[datetime] = None
    review_deadline: Optional[datetime] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    auto_approved_at: Optional[datetime] = None
    feedback: Optional[str] = None
    payment_status: DeliverablePaymentStatus
    payment_amount_cents: Optional[int] = None
    payment_transaction_id: Optional[str] = None
    payment_retry_count: int = 0
    payment_error: Optional[str] = None
    paid_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class AutoApprovalStatus(BaseModel):
    deliverable_id: str
    hours_elapsed: float
    hours_remaining: float
    should_auto_approve: bool
    needs_attention: bool
    urgency: UrgencyLevel
    time_remaining: str


class ReviewResult(BaseModel):
    deliverable: Deliverable
    transitioned: bool = True
    payout_status: Optional[str] = None
    transfer_id: Optional[str] = None
    payout_error: Optional[str] = None


class BulkApproveItem(BaseModel):
    deliverable_id: str
    success: bool
    error: Optional[str] = None
    payout_status: Optional[str] = None


class BulkApproveResult(BaseModel):
    approved: int
    failed: int
    results: List[BulkApproveItem]
