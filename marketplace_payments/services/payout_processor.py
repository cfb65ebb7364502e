# marketplace_payments/services/payout_processor.py
"""
Creator payouts for approved deliverables.

A payout is one Stripe transfer of the deliverable's fixed amount to the
creator's connected account. Transfer outcomes arrive by webhook; failed
transfers are retried by a scheduled job until the retry cap, after which
the deliverable's payment is terminally failed.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from marketplace_payments import crud
from marketplace_payments.core.config import settings
from marketplace_payments.core.exceptions import (
    ConflictError,
    MarketplaceError,
    NotFoundError,
    ValidationError,
)
from marketplace_payments.db.session import transaction
from marketplace_payments.models.campaign_deliverable import CampaignDeliverable
from marketplace_payments.schemas.payment import PayoutRequest
from marketplace_payments.services.notification_service import (
    NotificationKind,
    NotificationService,
    notification_service,
)
from marketplace_payments.services.payment.provider_factory import get_payment_provider
from marketplace_payments.services.payment.provider_interface import (
    CreateTransferParams,
    PaymentProviderInterface,
)
from marketplace_payments.services.payment.providers.stripe_provider import PaymentError

logger = logging.getLogger(__name__)


@dataclass
class PayoutResult:
    deliverable_id: str
    status: str  # 'processing' or 'pending_onboarding'
    transfer_id: Optional[str] = None
    transaction_id: Optional[str] = None
    message: Optional[str] = None


class PayoutPersistenceError(PaymentError):
    """The transfer went through but could not be recorded."""

    def __init__(self, transfer_id: str, reversed_: bool):
        self.transfer_id = transfer_id
        self.reversed = reversed_
        detail = "reversed" if reversed_ else "REVERSAL FAILED, manual action required"
        super().__init__(
            code="PERSISTENCE_FAILED",
            message=f"Could not record transfer {transfer_id} ({detail})",
            retryable=reversed_,
        )


def _format_amount(amount_cents: int) -> str:
    return f"${amount_cents / 100:.2f}"


class PayoutProcessor:
    """Creates transfers for approved deliverables and tracks their attempts."""

    def __init__(
        self,
        db: Session,
        provider: Optional[PaymentProviderInterface] = None,
        notifier: Optional[NotificationService] = None,
    ):
        self.db = db
        self._provider = provider
        self.notifier = notifier or notification_service

    @property
    def provider(self) -> PaymentProviderInterface:
        if self._provider is None:
            self._provider = get_payment_provider()
        return self._provider

    def _get_deliverable(self, deliverable_id: str) -> CampaignDeliverable:
        deliverable = crud.deliverable.get(self.db, id=deliverable_id)
        if not deliverable:
            raise NotFoundError("DELIVERABLE_NOT_FOUND", "Deliverable not found")
        return deliverable

    async def payout(self, deliverable_id: str) -> PayoutResult:
        """
        Pay the creator for an approved deliverable.

        Returns a 'pending_onboarding' result (not an error) when the
        creator cannot receive funds yet.

        Raises:
            NotFoundError: Unknown deliverable
            ConflictError: Already paid, terminally failed or a transfer is in flight
            ValidationError: Not approved, campaign not funded, invalid amount
            PaymentError: The processor rejected the transfer (counted as a failed attempt)
            PayoutPersistenceError: The transfer could not be recorded
        """
        deliverable = self._get_deliverable(deliverable_id)

        if deliverable.payment_status == "completed":
            raise ConflictError("ALREADY_PAID", "Deliverable has already been paid")
        if not deliverable.is_approved:
            raise ValidationError(
                "NOT_APPROVED", "Deliverable must be approved before payment"
            )
        if deliverable.payment_status == "failed":
            raise ConflictError(
                "PAYOUT_FAILED", "Payout failed permanently; a manual retry is required"
            )
        if deliverable.payment_status not in ("processing", "pending_onboarding"):
            raise ConflictError(
                "INVALID_PAYMENT_STATE",
                f"Cannot pay out a deliverable with payment status {deliverable.payment_status}",
            )

        if deliverable.payment_transaction_id:
            current = crud.payment_transaction.get_by_reference(
                self.db,
                transaction_type="payout",
                processor_reference=deliverable.payment_transaction_id,
            )
            if current and current.status in ("processing", "completed"):
                raise ConflictError(
                    "PAYOUT_IN_FLIGHT",
                    f"Transfer {current.processor_reference} is already {current.status}",
                )

        campaign = crud.campaign.get(self.db, id=deliverable.campaign_id)
        if not campaign or campaign.payment_status != "paid":
            raise ValidationError(
                "CAMPAIGN_NOT_FUNDED", "Campaign payment has not been confirmed"
            )

        amount = deliverable.payment_amount_cents
        if not amount or amount <= 0:
            raise ValidationError("INVALID_AMOUNT", "Deliverable has no payable amount")

        account = crud.connected_account.get_by_user_role(
            self.db, user_id=deliverable.creator_id, account_type="creator"
        )
        if account is None or not account.onboarding_completed:
            return self._hold_for_onboarding(deliverable, has_account=account is not None)

        if deliverable.payment_status == "pending_onboarding":
            with transaction(self.db):
                deliverable.payment_status = "processing"

        attempt = (deliverable.rejected_transfer_count or 0) + len(
            crud.payment_transaction.get_for_deliverable(self.db, deliverable_id=deliverable.id)
        )
        params = CreateTransferParams(
            deliverable_id=deliverable.id,
            creator_id=deliverable.creator_id,
            campaign_id=deliverable.campaign_id,
            amount=amount,
            currency=campaign.currency,
            destination_account_id=account.stripe_account_id,
            idempotency_key=f"payout_{deliverable.id}_{attempt}",
        )

        try:
            transfer = await self.provider.create_transfer(params)
        except PaymentError as e:
            self._record_rejection(deliverable, e)
            raise

        try:
            with transaction(self.db):
                deliverable.payment_transaction_id = transfer.transfer_id
                deliverable.payment_error = None
                self.db.add(deliverable)
                txn = crud.payment_transaction.record_payout(
                    self.db,
                    campaign_id=params.campaign_id,
                    deliverable_id=params.deliverable_id,
                    creator_id=params.creator_id,
                    transfer_id=transfer.transfer_id,
                    amount_cents=amount,
                    currency=params.currency,
                )
                crud.audit_log.log_action(
                    self.db,
                    action="payout.initiated",
                    actor_type="system",
                    entity_type="deliverable",
                    entity_id=params.deliverable_id,
                    new_state={"transfer_id": transfer.transfer_id, "amount_cents": amount},
                )
                transaction_id = txn.id
        except SQLAlchemyError as e:
            logger.error(
                f"Could not record transfer {transfer.transfer_id} for deliverable "
                f"{params.deliverable_id}: {e}"
            )
            reversed_ = await self._reverse_transfer(transfer.transfer_id)
            raise PayoutPersistenceError(transfer.transfer_id, reversed_)

        logger.info(
            f"Created transfer {transfer.transfer_id} of {amount} cents for deliverable "
            f"{params.deliverable_id}"
        )
        return PayoutResult(
            deliverable_id=params.deliverable_id,
            status="processing",
            transfer_id=transfer.transfer_id,
            transaction_id=transaction_id,
        )

    async def process_payout_request(self, request: PayoutRequest) -> PayoutResult:
        """
        Handle an explicit payout request.

        The request must agree with the stored deliverable: same creator and
        campaign, the amount fixed at submission, the creator's own account.
        """
        deliverable = self._get_deliverable(request.deliverable_id)

        if (
            deliverable.creator_id != request.creator_id
            or deliverable.campaign_id != request.campaign_id
        ):
            raise ValidationError(
                "DELIVERABLE_MISMATCH",
                "Deliverable does not belong to this creator and campaign",
            )
        if deliverable.payment_amount_cents != request.amount_cents:
            raise ValidationError(
                "AMOUNT_MISMATCH",
                "Amount does not match the deliverable's agreed payment",
            )

        account = crud.connected_account.get_by_user_role(
            self.db, user_id=request.creator_id, account_type="creator"
        )
        if account is not None and account.stripe_account_id != request.stripe_account_id:
            raise ValidationError(
                "ACCOUNT_MISMATCH",
                "Connected account does not belong to this creator",
            )

        return await self.payout(deliverable.id)

    async def retry_failed_payout(self, deliverable_id: str, actor_id: str) -> PayoutResult:
        """Manually restart a terminally failed payout with a fresh retry budget."""
        deliverable = self._get_deliverable(deliverable_id)
        if deliverable.payment_status != "failed":
            raise ConflictError(
                "NOT_FAILED", "Only failed payouts can be retried manually"
            )

        with transaction(self.db):
            previous = {
                "payment_status": deliverable.payment_status,
                "payment_retry_count": deliverable.payment_retry_count,
            }
            deliverable.payment_status = "processing"
            deliverable.payment_retry_count = 0
            deliverable.payment_error = None
            crud.audit_log.log_action(
                self.db,
                action="payout.manual_retry",
                actor_type="admin",
                actor_id=actor_id,
                entity_type="deliverable",
                entity_id=deliverable_id,
                previous_state=previous,
                new_state={"payment_status": "processing", "payment_retry_count": 0},
            )

        logger.info(f"Manual payout retry for deliverable {deliverable_id} by {actor_id}")
        return await self.payout(deliverable_id)

    async def retry_due_payouts(self, now: Optional[datetime] = None) -> int:
        """Re-attempt payouts whose last transfer failed below the retry cap."""
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(minutes=settings.PAYOUT_RETRY_DELAY_MINUTES)
        due = crud.deliverable.get_due_for_payout_retry(
            self.db, failed_before=cutoff, max_retries=settings.MAX_PAYOUT_RETRIES
        )

        retried = 0
        for deliverable in due:
            deliverable_id = deliverable.id
            try:
                await self.payout(deliverable_id)
                retried += 1
            except (MarketplaceError, PaymentError) as e:
                logger.warning(f"Payout retry for deliverable {deliverable_id} skipped: {e}")
        return retried

    async def resume_pending_onboarding(self, creator_id: str) -> List[PayoutResult]:
        """Start payouts that were waiting for the creator to finish onboarding."""
        results = []
        for deliverable in crud.deliverable.get_pending_onboarding(self.db, creator_id=creator_id):
            deliverable_id = deliverable.id
            try:
                results.append(await self.payout(deliverable_id))
            except (MarketplaceError, PaymentError) as e:
                logger.error(f"Could not resume payout for deliverable {deliverable_id}: {e}")
        return results

    def _hold_for_onboarding(
        self, deliverable: CampaignDeliverable, has_account: bool
    ) -> PayoutResult:
        deliverable_id = deliverable.id
        creator_id = deliverable.creator_id
        amount = deliverable.payment_amount_cents

        with transaction(self.db):
            deliverable.payment_status = "pending_onboarding"
            self.db.add(deliverable)

        logger.info(f"Payout for deliverable {deliverable_id} waiting on creator onboarding")
        self.notifier.notify(
            creator_id,
            NotificationKind.ONBOARDING_REQUIRED,
            f"Complete your payment setup to receive {_format_amount(amount)}.",
            data={"deliverable_id": deliverable_id, "has_account": has_account},
            related=("deliverable", deliverable_id),
        )
        return PayoutResult(
            deliverable_id=deliverable_id,
            status="pending_onboarding",
            message="Creator must complete payment onboarding before payout",
        )

    def _record_rejection(self, deliverable: CampaignDeliverable, error: PaymentError) -> None:
        """Count a refused transfer request as a failed attempt."""
        deliverable_id = deliverable.id
        creator_id = deliverable.creator_id
        amount = deliverable.payment_amount_cents

        with transaction(self.db):
            deliverable.rejected_transfer_count = (deliverable.rejected_transfer_count or 0) + 1
            deliverable.payment_retry_count = (deliverable.payment_retry_count or 0) + 1
            deliverable.last_payment_retry_at = datetime.now(timezone.utc)
            deliverable.payment_error = error.message
            retry_count = deliverable.payment_retry_count
            exhausted = retry_count >= settings.MAX_PAYOUT_RETRIES
            if exhausted:
                deliverable.payment_status = "failed"
                crud.audit_log.log_action(
                    self.db,
                    action="payout.failed",
                    actor_type="system",
                    entity_type="deliverable",
                    entity_id=deliverable_id,
                    previous_state={"payment_status": "processing"},
                    new_state={"payment_status": "failed", "payment_retry_count": retry_count},
                    change_details={"code": error.code, "error": error.message},
                )
            self.db.add(deliverable)

        if not exhausted:
            logger.warning(
                f"Transfer for deliverable {deliverable_id} rejected "
                f"(attempt {retry_count}), retry scheduled: {error.code} {error.message}"
            )
            return

        logger.error(
            f"Payout for deliverable {deliverable_id} failed permanently after "
            f"{retry_count} attempts: {error.code} {error.message}"
        )
        self.notifier.notify(
            creator_id,
            NotificationKind.PAYOUT_FAILED,
            f"Payout Failed: we could not pay {_format_amount(amount)} for your "
            "deliverable. Our team has been notified.",
            data={"deliverable_id": deliverable_id, "error": error.message},
            related=("deliverable", deliverable_id),
        )

    async def _reverse_transfer(self, transfer_id: str) -> bool:
        try:
            await self.provider.reverse_transfer(
                transfer_id, idempotency_key=f"reverse_{transfer_id}"
            )
            return True
        except PaymentError as e:
            logger.error(f"Reversal of transfer {transfer_id} failed: {e.code} {e.message}")
            return False
