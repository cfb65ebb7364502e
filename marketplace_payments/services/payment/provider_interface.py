# marketplace_payments/services/payment/provider_interface.py
from abc import ABC, abstractmethod
from typing import Optional, Dict, Any
from dataclasses import dataclass, field
from enum import Enum
from datetime import datetime


class PaymentIntentStatusEnum(str, Enum):
    """Standardized payment intent status."""
    REQUIRES_PAYMENT_METHOD = "requires_payment_method"
    REQUIRES_CONFIRMATION = "requires_confirmation"
    REQUIRES_ACTION = "requires_action"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    CANCELLED = "cancelled"
    FAILED = "failed"


class WebhookEventType(str, Enum):
    """Internal event kinds the reconciler dispatches on."""
    PAYMENT_SUCCEEDED = "payment.succeeded"
    PAYMENT_FAILED = "payment.failed"
    TRANSFER_CREATED = "transfer.created"
    TRANSFER_PAID = "transfer.paid"
    TRANSFER_FAILED = "transfer.failed"
    ACCOUNT_UPDATED = "account.updated"
    UNKNOWN = "unknown"


@dataclass
class CreatePaymentIntentParams:
    """Parameters for creating a campaign funding payment intent."""
    campaign_id: str
    business_id: str
    amount: int  # In smallest currency unit (cents)
    currency: str
    description: str
    idempotency_key: str
    metadata: Dict[str, str] = field(default_factory=dict)


@dataclass
class PaymentIntentResult:
    """Result of creating a payment intent."""
    intent_id: str
    client_secret: str
    status: PaymentIntentStatusEnum
    provider_metadata: Optional[Dict[str, Any]] = None


@dataclass
class PaymentIntentStatus:
    """Current status of a payment intent."""
    intent_id: str
    status: PaymentIntentStatusEnum
    amount: int
    currency: str
    metadata: Dict[str, str] = field(default_factory=dict)
    failure_code: Optional[str] = None
    failure_message: Optional[str] = None


@dataclass
class CreateTransferParams:
    """Parameters for paying a creator out to their connected account."""
    deliverable_id: str
    creator_id: str
    campaign_id: str
    amount: int
    currency: str
    destination_account_id: str
    idempotency_key: str
    description: Optional[str] = None


@dataclass
class TransferResult:
    """A transfer as reported by the provider."""
    transfer_id: str
    amount: int
    currency: str
    destination_account_id: str
    reversed: bool = False
    metadata: Dict[str, str] = field(default_factory=dict)


@dataclass
class ConnectedAccountDetails:
    """Onboarding state of a connected account."""
    account_id: str
    details_submitted: bool
    charges_enabled: bool
    payouts_enabled: bool


@dataclass
class AccountLinkResult:
    url: str
    expires_at: datetime


@dataclass
class WebhookEvent:
    """Standardized webhook event."""
    event_id: str
    event_type: WebhookEventType
    provider_event_type: str
    data: Dict[str, Any]
    created_at: datetime
    raw_payload: Dict[str, Any]


@dataclass
class HealthCheckResult:
    healthy: bool
    latency_ms: float
    message: Optional[str] = None


class PaymentProviderInterface(ABC):
    """
    Contract for the payment processor client.

    Implementations translate provider objects and errors into the
    dataclasses above and PaymentError; nothing provider-specific leaks
    into the services.
    """

    @property
    @abstractmethod
    def code(self) -> str:
        """Provider code stored with webhook events (e.g. 'stripe')."""

    @abstractmethod
    async def create_payment_intent(
        self, params: CreatePaymentIntentParams
    ) -> PaymentIntentResult:
        """Create a payment intent for a campaign budget."""

    @abstractmethod
    async def get_payment_intent(self, intent_id: str) -> PaymentIntentStatus:
        """Retrieve current status of a payment intent."""

    @abstractmethod
    async def cancel_payment_intent(self, intent_id: str) -> None:
        """Cancel a payment intent that will not be collected."""

    @abstractmethod
    async def create_transfer(self, params: CreateTransferParams) -> TransferResult:
        """Move funds to a connected account."""

    @abstractmethod
    async def get_transfer(self, transfer_id: str) -> TransferResult:
        """Retrieve a transfer."""

    @abstractmethod
    async def reverse_transfer(self, transfer_id: str, idempotency_key: str) -> str:
        """Reverse a transfer in full; returns the reversal id."""

    @abstractmethod
    async def create_connected_account(
        self, user_id: str, account_type: str, email: str, country: str
    ) -> ConnectedAccountDetails:
        """Create an Express connected account."""

    @abstractmethod
    async def get_connected_account(self, account_id: str) -> ConnectedAccountDetails:
        """Retrieve a connected account's onboarding state."""

    @abstractmethod
    async def create_account_link(
        self, account_id: str, refresh_url: str, return_url: str
    ) -> AccountLinkResult:
        """Create a hosted onboarding link."""

    @abstractmethod
    def verify_webhook_signature(self, payload: bytes, signature: str) -> bool:
        """Verify the webhook signature."""

    @abstractmethod
    def parse_webhook_event(self, payload: bytes) -> WebhookEvent:
        """Parse a verified webhook payload."""

    @abstractmethod
    async def health_check(self) -> HealthCheckResult:
        """Check provider API connectivity."""
