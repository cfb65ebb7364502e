# marketplace_payments/services/campaign_funding.py
"""
Campaign creation and funding.

A campaign is inserted as pending, a payment intent is requested for its
budget and the sponsor pays through the client. Payment is confirmed by the
webhook reconciler; the orchestrator only observes the stored state, with a
final reconciliation step when the webhook is slow.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from marketplace_payments import crud
from marketplace_payments.core.config import settings
from marketplace_payments.core.exceptions import (
    ConflictError,
    NotFoundError,
    ValidationError,
)
from marketplace_payments.db.session import transaction
from marketplace_payments.schemas.campaign import (
    CampaignDraft,
    FundingOutcome,
    FundingOutcomeStatus,
)
from marketplace_payments.schemas.payment import (
    OnboardingStatus,
    PaymentIntentResponse,
    PaymentStatusResponse,
)
from marketplace_payments.services.payment.provider_factory import get_payment_provider
from marketplace_payments.services.payment.provider_interface import (
    CreatePaymentIntentParams,
    PaymentProviderInterface,
)
from marketplace_payments.services.payment.providers.stripe_provider import PaymentError

logger = logging.getLogger(__name__)

PROCESSING_MESSAGE = (
    "Your payment is being processed. The campaign will be activated "
    "automatically once payment is confirmed. Check back later."
)
CANCELLED_MESSAGE = (
    "Your campaign has been created but payment was cancelled. "
    "You can complete payment later."
)


@dataclass
class CollectionResult:
    """What the client-side payment sheet reported."""
    status: str  # 'completed', 'cancelled' or 'failed'
    error: Optional[str] = None


PaymentCollector = Callable[[PaymentIntentResponse], Awaitable[CollectionResult]]

# Confirmation polls in flight, keyed by campaign id. A second caller for the
# same campaign awaits the existing task instead of starting another poll.
_inflight_polls: Dict[str, "asyncio.Task[FundingOutcome]"] = {}


class CampaignFundingOrchestrator:
    def __init__(
        self,
        db: Session,
        provider: Optional[PaymentProviderInterface] = None,
        poll_interval: Optional[float] = None,
        max_attempts: Optional[int] = None,
    ):
        self.db = db
        self._provider = provider
        self.poll_interval = (
            settings.FUNDING_POLL_INTERVAL_SECONDS if poll_interval is None else poll_interval
        )
        self.max_attempts = (
            settings.FUNDING_POLL_MAX_ATTEMPTS if max_attempts is None else max_attempts
        )
        self._inflight = _inflight_polls

    @property
    def provider(self) -> PaymentProviderInterface:
        if self._provider is None:
            self._provider = get_payment_provider()
        return self._provider

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    @staticmethod
    def validate_draft(draft: CampaignDraft, account_status: Optional[OnboardingStatus]) -> None:
        """Reject a draft that cannot be funded. Has no side effects."""
        if not draft.restaurant_id:
            raise ValidationError("MISSING_RESTAURANT", "Please select a restaurant")
        if draft.deadline is None:
            raise ValidationError("MISSING_DEADLINE", "Please set a campaign deadline")
        budget = draft.budget_cents
        if isinstance(budget, bool) or not isinstance(budget, int) or budget <= 0:
            raise ValidationError(
                "INVALID_BUDGET", "Budget must be a positive amount in cents"
            )
        if account_status is None or not account_status.onboarding_completed:
            raise ValidationError(
                "ONBOARDING_REQUIRED",
                "Complete your payment account setup before funding a campaign",
            )

    async def start_funding(
        self,
        owner_id: str,
        draft: CampaignDraft,
        account_status: Optional[OnboardingStatus],
    ) -> PaymentIntentResponse:
        """
        Create a pending campaign and its first payment intent.

        If the intent cannot be created (or recorded), the campaign is
        deleted again and the processor error is re-raised.
        """
        self.validate_draft(draft, account_status)

        with transaction(self.db):
            campaign = crud.campaign.create_pending(
                self.db, owner_id=owner_id, draft=draft, currency=settings.PAYMENT_CURRENCY
            )
            crud.audit_log.log_action(
                self.db,
                action="campaign.created",
                actor_type="business",
                actor_id=owner_id,
                entity_type="campaign",
                entity_id=campaign.id,
                new_state={"status": "pending", "budget_cents": draft.budget_cents},
            )
            campaign_id = campaign.id

        logger.info(f"Created pending campaign {campaign_id} for {owner_id}")

        try:
            return await self._request_intent(
                campaign_id, owner_id, draft.budget_cents, draft.title
            )
        except PaymentError:
            self._discard_campaign(campaign_id)
            raise

    async def retry_funding(self, campaign_id: str, owner_id: str) -> PaymentIntentResponse:
        """New payment intent for an unpaid campaign. Never deletes the campaign."""
        campaign = crud.campaign.get_for_owner(self.db, campaign_id=campaign_id, owner_id=owner_id)
        if not campaign:
            raise NotFoundError("CAMPAIGN_NOT_FOUND", "Campaign not found")
        if campaign.is_funded:
            raise ConflictError("ALREADY_PAID", "Campaign has already been paid")

        if campaign.payment_status == "failed":
            with transaction(self.db):
                campaign.payment_status = "pending"
                self.db.add(campaign)

        return await self._request_intent(
            campaign.id, owner_id, campaign.budget_cents, campaign.title
        )

    async def _request_intent(
        self, campaign_id: str, owner_id: str, amount_cents: int, title: str
    ) -> PaymentIntentResponse:
        attempt = crud.campaign_payment.count_for_campaign(self.db, campaign_id=campaign_id) + 1
        params = CreatePaymentIntentParams(
            campaign_id=campaign_id,
            business_id=owner_id,
            amount=amount_cents,
            currency=settings.PAYMENT_CURRENCY,
            description=f"Campaign funding: {title}",
            idempotency_key=f"campaign_{campaign_id}_{attempt}",
            metadata={
                "campaign_id": campaign_id,
                "business_id": owner_id,
                "type": "campaign_funding",
            },
        )
        intent = await self.provider.create_payment_intent(params)

        try:
            with transaction(self.db):
                record = crud.campaign_payment.create_record(
                    self.db,
                    campaign_id=campaign_id,
                    business_id=owner_id,
                    payment_intent_id=intent.intent_id,
                    amount_cents=amount_cents,
                    currency=params.currency,
                )
                payment_id = record.id
        except SQLAlchemyError as e:
            logger.error(f"Could not record payment intent {intent.intent_id}: {e}")
            try:
                await self.provider.cancel_payment_intent(intent.intent_id)
            except PaymentError as cancel_error:
                logger.error(
                    f"Could not cancel orphaned intent {intent.intent_id}: {cancel_error.message}"
                )
            raise PaymentError(
                code="PERSISTENCE_FAILED",
                message="Could not record the payment. Please try again.",
                retryable=True,
            )

        logger.info(f"Payment intent {intent.intent_id} requested for campaign {campaign_id}")
        return PaymentIntentResponse(
            campaign_id=campaign_id,
            payment_id=payment_id,
            payment_intent_id=intent.intent_id,
            client_secret=intent.client_secret,
            amount_cents=amount_cents,
            currency=params.currency,
        )

    def _discard_campaign(self, campaign_id: str) -> None:
        # Only a campaign that never got a payment record is rolled back
        with transaction(self.db):
            if crud.campaign_payment.count_for_campaign(self.db, campaign_id=campaign_id):
                logger.warning(f"Keeping campaign {campaign_id}: it has payment records")
                return
            campaign = crud.campaign.get(self.db, id=campaign_id)
            if campaign is not None:
                self.db.delete(campaign)
        logger.info(f"Rolled back campaign {campaign_id} after payment setup failed")

    # ------------------------------------------------------------------
    # Confirmation
    # ------------------------------------------------------------------

    def get_payment_status(self, campaign_id: str) -> PaymentStatusResponse:
        # Drop cached rows so writes committed by the webhook are visible
        self.db.expire_all()
        campaign = crud.campaign.get(self.db, id=campaign_id)
        if not campaign:
            raise NotFoundError("CAMPAIGN_NOT_FOUND", "Campaign not found")
        latest = crud.campaign_payment.get_latest_for_campaign(self.db, campaign_id=campaign_id)
        return PaymentStatusResponse(
            campaign_id=campaign.id,
            campaign_status=campaign.status,
            payment_status=campaign.payment_status,
            latest_payment_status=latest.status if latest else None,
            payment_intent_id=latest.payment_intent_id if latest else None,
            paid_at=campaign.paid_at,
        )

    async def fund_campaign(
        self,
        owner_id: str,
        draft: CampaignDraft,
        account_status: Optional[OnboardingStatus],
        collector: PaymentCollector,
    ) -> FundingOutcome:
        """
        Run the whole funding flow: create, collect, confirm.

        A cancelled or failed collection leaves the campaign pending so the
        sponsor can pay later.
        """
        intent = await self.start_funding(owner_id, draft, account_status)
        campaign_id = intent.campaign_id

        result = await collector(intent)
        if result.status == "cancelled":
            logger.info(f"Payment for campaign {campaign_id} cancelled by the sponsor")
            return self._outcome(
                campaign_id, FundingOutcomeStatus.cancelled, message=CANCELLED_MESSAGE
            )
        if result.status != "completed":
            logger.warning(f"Payment collection for campaign {campaign_id} failed: {result.error}")
            return self._outcome(
                campaign_id,
                FundingOutcomeStatus.failed,
                message=result.error or "Payment could not be processed. Please try again.",
                error_code="COLLECTION_FAILED",
            )

        return await self.await_confirmation(campaign_id)

    async def await_confirmation(self, campaign_id: str) -> FundingOutcome:
        """Wait for the webhook to confirm payment; joins a poll already running."""
        task = self._inflight.get(campaign_id)
        if task is None or task.done():
            task = asyncio.ensure_future(self._poll(campaign_id))
            self._inflight[campaign_id] = task
            task.add_done_callback(lambda t: self._forget(campaign_id, t))

        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if not task.cancelled():
                raise
            return self._outcome(
                campaign_id,
                FundingOutcomeStatus.processing,
                message="Confirmation check was cancelled. " + PROCESSING_MESSAGE,
            )

    def cancel_confirmation(self, campaign_id: str) -> bool:
        task = self._inflight.get(campaign_id)
        if task is None or task.done():
            return False
        task.cancel()
        return True

    def _forget(self, campaign_id: str, task: "asyncio.Task[FundingOutcome]") -> None:
        if self._inflight.get(campaign_id) is task:
            del self._inflight[campaign_id]

    async def _poll(self, campaign_id: str) -> FundingOutcome:
        attempts = 0
        while attempts < self.max_attempts:
            await asyncio.sleep(self.poll_interval)
            attempts += 1

            status = self.get_payment_status(campaign_id)
            if status.payment_status == "paid":
                self._ensure_active(campaign_id)
                logger.info(f"Payment for campaign {campaign_id} confirmed after {attempts} checks")
                return self._outcome(
                    campaign_id, FundingOutcomeStatus.confirmed, attempts=attempts
                )
            if status.payment_status == "failed":
                return self._outcome(
                    campaign_id,
                    FundingOutcomeStatus.failed,
                    attempts=attempts,
                    message="Payment failed. You can retry from the campaign page.",
                    error_code="PAYMENT_FAILED",
                )
            if status.latest_payment_status == "succeeded":
                logger.info(
                    f"Payment record for {campaign_id} succeeded; waiting for the campaign update"
                )

        return self._final_check(campaign_id, attempts)

    def _ensure_active(self, campaign_id: str) -> None:
        with transaction(self.db):
            campaign = crud.campaign.get(self.db, id=campaign_id)
            if campaign is not None and campaign.status in ("draft", "pending"):
                crud.campaign.mark_funded(
                    self.db,
                    campaign=campaign,
                    paid_at=campaign.paid_at or datetime.now(timezone.utc),
                )

    def _final_check(self, campaign_id: str, attempts: int) -> FundingOutcome:
        status = self.get_payment_status(campaign_id)
        if status.payment_status == "paid":
            self._ensure_active(campaign_id)
            return self._outcome(campaign_id, FundingOutcomeStatus.confirmed, attempts=attempts)

        record = crud.campaign_payment.get_latest_for_campaign(self.db, campaign_id=campaign_id)
        if record is None or record.status != "succeeded":
            logger.info(f"Payment for campaign {campaign_id} still unconfirmed after {attempts} checks")
            return self._outcome(
                campaign_id,
                FundingOutcomeStatus.processing,
                attempts=attempts,
                message=PROCESSING_MESSAGE,
            )

        with transaction(self.db):
            campaign = crud.campaign.get(self.db, id=campaign_id)
            crud.campaign.mark_funded(
                self.db, campaign=campaign, paid_at=record.paid_at or datetime.now(timezone.utc)
            )
            crud.payment_transaction.record_payment(
                self.db,
                campaign_id=campaign_id,
                business_id=record.business_id,
                payment_intent_id=record.payment_intent_id,
                amount_cents=record.amount_cents,
                currency=record.currency,
            )
            crud.audit_log.log_action(
                self.db,
                action="campaign.funded",
                actor_type="system",
                entity_type="campaign",
                entity_id=campaign_id,
                previous_state={"payment_status": status.payment_status},
                new_state={"payment_status": "paid", "status": campaign.status},
                change_details={
                    "payment_intent_id": record.payment_intent_id,
                    "reconciled": True,
                },
            )

        logger.warning(
            f"Campaign {campaign_id} activated from its succeeded payment record; "
            "the webhook had not updated it"
        )
        return self._outcome(
            campaign_id, FundingOutcomeStatus.confirmed, attempts=attempts, reconciled=True
        )

    def _outcome(
        self,
        campaign_id: str,
        status: FundingOutcomeStatus,
        attempts: int = 0,
        reconciled: bool = False,
        message: Optional[str] = None,
        error_code: Optional[str] = None,
    ) -> FundingOutcome:
        campaign = crud.campaign.get(self.db, id=campaign_id)
        return FundingOutcome(
            campaign_id=campaign_id,
            status=status,
            campaign_status=campaign.status if campaign else "deleted",
            payment_status=campaign.payment_status if campaign else "pending",
            attempts=attempts,
            reconciled=reconciled,
            message=message,
            error_code=error_code,
        )
