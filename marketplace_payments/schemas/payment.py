# marketplace_payments/schemas/payment.py
from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional, Dict, Any
from datetime import datetime
from enum import Enum


# ============================================
# Enums
# ============================================

class CampaignPaymentStatus(str, Enum):
    pending = "pending"
    paid = "paid"
    failed = "failed"


class PaymentRecordStatus(str, Enum):
    pending = "pending"
    succeeded = "succeeded"
    failed = "failed"


class TransactionType(str, Enum):
    payment = "payment"
    payout = "payout"


class TransactionStatus(str, Enum):
    processing = "processing"
    completed = "completed"
    failed = "failed"


class AccountType(str, Enum):
    business = "business"
    creator = "creator"


class WebhookEventStatus(str, Enum):
    pending = "pending"
    processing = "processing"
    processed = "processed"
    failed = "failed"
    skipped = "skipped"


# ============================================
# Campaign payment schemas
# ============================================

class PaymentIntentResponse(BaseModel):
    campaign_id: str
    payment_id: str
    payment_intent_id: str
    client_secret: str
    amount_cents: int
    currency: str


class PaymentStatusResponse(BaseModel):
    campaign_id: str
    campaign_status: str
    payment_status: CampaignPaymentStatus
    latest_payment_status: Optional[PaymentRecordStatus] = None
    payment_intent_id: Optional[str] = None
    paid_at: Optional[datetime] = None


class CampaignPayment(BaseModel):
    id: str
    campaign_id: str
    business_id: str
    payment_intent_id: str
    amount_cents: int
    currency: str
    status: PaymentRecordStatus
    failure_code: Optional[str] = None
    failure_message: Optional[str] = None
    paid_at: Optional[datetime] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class PaymentTransaction(BaseModel):
    id: str
    campaign_id: str
    deliverable_id: Optional[str] = None
    creator_id: Optional[str] = None
    processor_reference: str
    transaction_type: TransactionType
    amount_cents: int
    currency: str
    status: TransactionStatus
    error_message: Optional[str] = None
    completed_at: Optional[datetime] = None
    created_at: datetime

    model_config = {"from_attributes": True}


# ============================================
# Payout schemas
# ============================================

class PayoutRequest(BaseModel):
    """Internal payout request; accepts the camelCase wire names."""

    deliverable_id: str = Field(..., alias="deliverableId", min_length=1)
    creator_id: str = Field(..., alias="creatorId", min_length=1)
    campaign_id: str = Field(..., alias="campaignId", min_length=1)
    amount_cents: int = Field(..., alias="amountCents")
    stripe_account_id: str = Field(..., alias="stripeAccountId", min_length=1)

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("amount_cents", mode="before")
    @classmethod
    def validate_amount(cls, v):
        if isinstance(v, bool) or not isinstance(v, int) or v <= 0:
            raise ValueError("Invalid amount. Must be a positive integer in cents")
        return v


class PayoutResponse(BaseModel):
    success: bool = True
    deliverable_id: str = Field(..., alias="deliverableId")
    status: str
    transfer_id: Optional[str] = Field(default=None, alias="transferId")
    transaction_id: Optional[str] = Field(default=None, alias="transactionId")
    message: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


# ============================================
# Connected account schemas
# ============================================

class OnboardingStatus(BaseModel):
    has_account: bool
    onboarding_completed: bool
    onboarding_link: Optional[str] = None
    onboarding_link_expires_at: Optional[datetime] = None
    stripe_account_id: Optional[str] = None
    charges_enabled: bool = False
    payouts_enabled: bool = False


class ConnectedAccountCreate(BaseModel):
    email: str
    country: str = Field(default="US", max_length=2)


# ============================================
# Webhook Event Schemas
# ============================================

class WebhookEventCreate(BaseModel):
    provider_code: str
    provider_event_id: str
    provider_event_type: str
    payload: Dict[str, Any]
    signature_verified: bool = False
    ip_address: Optional[str] = None


class WebhookEventUpdate(BaseModel):
    status: Optional[WebhookEventStatus] = None
    processed_at: Optional[datetime] = None
    processing_error: Optional[str] = None
    retry_count: Optional[int] = None
    next_retry_at: Optional[datetime] = None


class WebhookAck(BaseModel):
    status: str
    event_id: Optional[str] = None


# ============================================
# Audit Log Schemas
# ============================================

class AuditLogCreate(BaseModel):
    action: str
    actor_type: str
    entity_type: str
    entity_id: str
    actor_id: Optional[str] = None
    previous_state: Optional[Dict[str, Any]] = None
    new_state: Optional[Dict[str, Any]] = None
    change_details: Optional[Dict[str, Any]] = None
