"""
Tests for creator payouts.

Verifies that PayoutProcessor:
- Refuses to pay unapproved, unfunded, already paid or in-flight deliverables
- Holds payouts until the creator has finished onboarding
- Uses a fresh idempotency key for every transfer attempt
- Reverses a transfer it could not record
- Retries failed transfers below the retry cap and supports a manual retry
"""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from sqlalchemy.exc import SQLAlchemyError

from marketplace_payments import crud
from marketplace_payments.core.exceptions import ConflictError, ValidationError
from marketplace_payments.schemas.payment import PayoutRequest
from marketplace_payments.services.notification_service import NotificationKind
from marketplace_payments.services.payment.providers.stripe_provider import PaymentError
from marketplace_payments.services.payout_processor import (
    PayoutPersistenceError,
    PayoutProcessor,
)
from tests.utils.marketplace import (
    create_application,
    create_approved_deliverable,
    create_campaign,
    create_connected_account,
    create_deliverable,
    create_payout_transaction,
)

CREATOR = "creator_001"


def run_async(coro):
    """Helper to run async coroutines in sync tests."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@pytest.fixture
def processor(db_session, provider, notifier):
    return PayoutProcessor(db_session, provider=provider, notifier=notifier)


class TestPayoutGuards:

    def test_unapproved_deliverable_is_not_paid(self, processor, db_session, provider):
        campaign = create_campaign(db_session)
        deliverable = create_deliverable(db_session, create_application(db_session, campaign))

        with pytest.raises(ValidationError) as exc_info:
            run_async(processor.payout(deliverable.id))

        assert exc_info.value.code == "NOT_APPROVED"
        provider.create_transfer.assert_not_awaited()

    def test_completed_payout_is_not_repeated(self, processor, db_session):
        deliverable = create_approved_deliverable(db_session, payment_status="completed")

        with pytest.raises(ConflictError) as exc_info:
            run_async(processor.payout(deliverable.id))
        assert exc_info.value.code == "ALREADY_PAID"

    def test_terminally_failed_payout_needs_manual_retry(self, processor, db_session):
        deliverable = create_approved_deliverable(db_session, payment_status="failed")

        with pytest.raises(ConflictError) as exc_info:
            run_async(processor.payout(deliverable.id))
        assert exc_info.value.code == "PAYOUT_FAILED"

    def test_unfunded_campaign_is_not_paid_out(self, processor, db_session, provider):
        create_connected_account(db_session, user_id=CREATOR)
        campaign = create_campaign(db_session, funded=False)
        deliverable = create_deliverable(
            db_session,
            create_application(db_session, campaign),
            status="approved",
            payment_status="processing",
        )

        with pytest.raises(ValidationError) as exc_info:
            run_async(processor.payout(deliverable.id))

        assert exc_info.value.code == "CAMPAIGN_NOT_FUNDED"
        provider.create_transfer.assert_not_awaited()

    def test_transfer_in_flight_blocks_a_second_one(self, processor, db_session, provider):
        create_connected_account(db_session, user_id=CREATOR)
        deliverable = create_approved_deliverable(db_session)
        run_async(processor.payout(deliverable.id))

        with pytest.raises(ConflictError) as exc_info:
            run_async(processor.payout(deliverable.id))

        assert exc_info.value.code == "PAYOUT_IN_FLIGHT"
        provider.create_transfer.assert_awaited_once()


class TestPayout:

    def test_successful_transfer_is_recorded(self, processor, db_session, provider):
        create_connected_account(db_session, user_id=CREATOR)
        deliverable = create_approved_deliverable(db_session, rate_cents=25000)

        result = run_async(processor.payout(deliverable.id))

        assert result.status == "processing"
        assert result.transfer_id == "tr_test_001"
        params = provider.create_transfer.call_args.args[0]
        assert params.amount == 25000
        assert params.currency == "usd"
        assert params.idempotency_key == f"payout_{deliverable.id}_0"

        db_session.refresh(deliverable)
        assert deliverable.payment_transaction_id == "tr_test_001"
        txn = crud.payment_transaction.get_by_reference(
            db_session, transaction_type="payout", processor_reference="tr_test_001"
        )
        assert txn.id == result.transaction_id
        assert txn.amount_cents == 25000
        assert txn.status == "processing"

    def test_incomplete_onboarding_holds_payout(self, processor, db_session, provider, notifier):
        create_connected_account(db_session, user_id=CREATOR, completed=False)
        deliverable = create_approved_deliverable(db_session)

        result = run_async(processor.payout(deliverable.id))

        assert result.status == "pending_onboarding"
        db_session.refresh(deliverable)
        assert deliverable.payment_status == "pending_onboarding"
        provider.create_transfer.assert_not_awaited()
        args = notifier.notify.call_args.args
        assert args[0] == CREATOR
        assert args[1] == NotificationKind.ONBOARDING_REQUIRED
        assert "$250.00" in args[2]

    def test_processor_rejection_is_recorded_and_raised(self, processor, db_session, provider):
        create_connected_account(db_session, user_id=CREATOR)
        deliverable = create_approved_deliverable(db_session)
        provider.create_transfer.side_effect = PaymentError(
            code="PROVIDER_ERROR", message="Insufficient platform balance", retryable=True
        )

        with pytest.raises(PaymentError):
            run_async(processor.payout(deliverable.id))

        db_session.refresh(deliverable)
        assert deliverable.payment_error == "Insufficient platform balance"
        assert deliverable.payment_transaction_id is None
        assert deliverable.payment_status == "processing"
        assert deliverable.payment_retry_count == 1
        assert deliverable.last_payment_retry_at is not None
        assert crud.payment_transaction.get_for_deliverable(
            db_session, deliverable_id=deliverable.id
        ) == []

    def test_unrecorded_transfer_is_reversed(self, processor, db_session, provider):
        create_connected_account(db_session, user_id=CREATOR)
        deliverable = create_approved_deliverable(db_session)

        with patch.object(
            crud.payment_transaction, "record_payout", side_effect=SQLAlchemyError("disk full")
        ):
            with pytest.raises(PayoutPersistenceError) as exc_info:
                run_async(processor.payout(deliverable.id))

        assert exc_info.value.transfer_id == "tr_test_001"
        assert exc_info.value.reversed is True
        assert exc_info.value.code == "PERSISTENCE_FAILED"
        provider.reverse_transfer.assert_awaited_once_with(
            "tr_test_001", idempotency_key="reverse_tr_test_001"
        )
        db_session.refresh(deliverable)
        assert deliverable.payment_transaction_id is None

    def test_failed_reversal_is_reported(self, processor, db_session, provider):
        create_connected_account(db_session, user_id=CREATOR)
        deliverable = create_approved_deliverable(db_session)
        provider.reverse_transfer.side_effect = PaymentError(
            code="PROVIDER_ERROR", message="Stripe unavailable", retryable=True
        )

        with patch.object(
            crud.payment_transaction, "record_payout", side_effect=SQLAlchemyError("disk full")
        ):
            with pytest.raises(PayoutPersistenceError) as exc_info:
                run_async(processor.payout(deliverable.id))

        assert exc_info.value.reversed is False
        assert exc_info.value.retryable is False


class TestPayoutRequest:

    def _request(self, deliverable, **overrides):
        values = dict(
            deliverable_id=deliverable.id,
            creator_id=deliverable.creator_id,
            campaign_id=deliverable.campaign_id,
            amount_cents=deliverable.payment_amount_cents,
            stripe_account_id="acct_creator_001",
        )
        values.update(overrides)
        return PayoutRequest(**values)

    def test_matching_request_pays_out(self, processor, db_session, provider):
        create_connected_account(db_session, user_id=CREATOR)
        deliverable = create_approved_deliverable(db_session)

        result = run_async(processor.process_payout_request(self._request(deliverable)))

        assert result.status == "processing"
        provider.create_transfer.assert_awaited_once()

    def test_amount_must_match_the_deliverable(self, processor, db_session, provider):
        create_connected_account(db_session, user_id=CREATOR)
        deliverable = create_approved_deliverable(db_session, rate_cents=25000)

        with pytest.raises(ValidationError) as exc_info:
            run_async(
                processor.process_payout_request(self._request(deliverable, amount_cents=99999))
            )

        assert exc_info.value.code == "AMOUNT_MISMATCH"
        provider.create_transfer.assert_not_awaited()

    def test_account_must_belong_to_the_creator(self, processor, db_session):
        create_connected_account(db_session, user_id=CREATOR)
        deliverable = create_approved_deliverable(db_session)

        with pytest.raises(ValidationError) as exc_info:
            run_async(
                processor.process_payout_request(
                    self._request(deliverable, stripe_account_id="acct_someone_else")
                )
            )
        assert exc_info.value.code == "ACCOUNT_MISMATCH"

    def test_creator_must_own_the_deliverable(self, processor, db_session):
        deliverable = create_approved_deliverable(db_session)

        with pytest.raises(ValidationError) as exc_info:
            run_async(
                processor.process_payout_request(
                    self._request(deliverable, creator_id="creator_999")
                )
            )
        assert exc_info.value.code == "DELIVERABLE_MISMATCH"


class TestRetries:

    def test_due_failed_transfer_is_retried_with_new_key(self, processor, db_session, provider):
        create_connected_account(db_session, user_id=CREATOR)
        now = datetime.now(timezone.utc)
        deliverable = create_approved_deliverable(
            db_session,
            payment_retry_count=1,
            payment_transaction_id="tr_first",
            last_payment_retry_at=now - timedelta(minutes=20),
        )
        create_payout_transaction(db_session, deliverable, "tr_first", status="failed")

        assert run_async(processor.retry_due_payouts(now=now)) == 1

        params = provider.create_transfer.call_args.args[0]
        assert params.idempotency_key == f"payout_{deliverable.id}_1"

    def test_recent_failure_waits_for_the_delay(self, processor, db_session, provider):
        create_connected_account(db_session, user_id=CREATOR)
        now = datetime.now(timezone.utc)
        deliverable = create_approved_deliverable(
            db_session,
            payment_retry_count=1,
            payment_transaction_id="tr_first",
            last_payment_retry_at=now - timedelta(minutes=5),
        )
        create_payout_transaction(db_session, deliverable, "tr_first", status="failed")

        assert run_async(processor.retry_due_payouts(now=now)) == 0
        provider.create_transfer.assert_not_awaited()

    def test_retry_cap_is_respected(self, processor, db_session, provider):
        now = datetime.now(timezone.utc)
        create_approved_deliverable(
            db_session,
            payment_status="failed",
            payment_retry_count=3,
            last_payment_retry_at=now - timedelta(hours=1),
        )

        assert run_async(processor.retry_due_payouts(now=now)) == 0
        provider.create_transfer.assert_not_awaited()

    def test_manual_retry_resets_budget_and_keeps_keys_unique(
        self, processor, db_session, provider
    ):
        create_connected_account(db_session, user_id=CREATOR)
        deliverable = create_approved_deliverable(
            db_session,
            payment_status="failed",
            payment_retry_count=3,
            payment_transaction_id="tr_third",
            payment_error="Account closed",
        )
        for transfer_id in ("tr_first", "tr_second", "tr_third"):
            create_payout_transaction(db_session, deliverable, transfer_id, status="failed")

        result = run_async(processor.retry_failed_payout(deliverable.id, "admin_001"))

        assert result.status == "processing"
        params = provider.create_transfer.call_args.args[0]
        assert params.idempotency_key == f"payout_{deliverable.id}_3"

        db_session.refresh(deliverable)
        assert deliverable.payment_status == "processing"
        assert deliverable.payment_retry_count == 0
        assert deliverable.payment_transaction_id == "tr_test_001"
        actions = [
            entry.action
            for entry in crud.audit_log.get_by_entity(
                db_session, entity_type="deliverable", entity_id=deliverable.id
            )
        ]
        assert actions[0] == "payout.manual_retry"
        assert "payout.initiated" in actions

    def test_rejected_transfer_is_retried_with_new_key(self, processor, db_session, provider):
        create_connected_account(db_session, user_id=CREATOR)
        deliverable = create_approved_deliverable(db_session)
        provider.create_transfer.side_effect = PaymentError(
            code="RATE_LIMIT", message="Too many requests", retryable=True
        )
        with pytest.raises(PaymentError):
            run_async(processor.payout(deliverable.id))

        provider.create_transfer.side_effect = None
        later = datetime.now(timezone.utc) + timedelta(hours=1)
        assert run_async(processor.retry_due_payouts(now=later)) == 1

        keys = [c.args[0].idempotency_key for c in provider.create_transfer.call_args_list]
        assert keys == [f"payout_{deliverable.id}_0", f"payout_{deliverable.id}_1"]
        db_session.refresh(deliverable)
        assert deliverable.payment_transaction_id == "tr_test_001"
        assert deliverable.payment_error is None

    def test_repeated_rejections_fail_the_payout(
        self, processor, db_session, provider, notifier
    ):
        create_connected_account(db_session, user_id=CREATOR)
        deliverable = create_approved_deliverable(db_session)
        provider.create_transfer.side_effect = PaymentError(
            code="PROVIDER_ERROR", message="Stripe unavailable", retryable=True
        )
        with pytest.raises(PaymentError):
            run_async(processor.payout(deliverable.id))

        for hours in (1, 2):
            later = datetime.now(timezone.utc) + timedelta(hours=hours)
            assert run_async(processor.retry_due_payouts(now=later)) == 0

        db_session.refresh(deliverable)
        assert deliverable.payment_status == "failed"
        assert deliverable.payment_retry_count == 3
        assert notifier.notify.call_args.args[1] == NotificationKind.PAYOUT_FAILED

        provider.create_transfer.side_effect = None
        result = run_async(processor.retry_failed_payout(deliverable.id, "admin_001"))

        assert result.status == "processing"
        keys = [c.args[0].idempotency_key for c in provider.create_transfer.call_args_list]
        assert len(set(keys)) == 4
        assert keys[-1] == f"payout_{deliverable.id}_3"

    def test_manual_retry_only_for_failed_payouts(self, processor, db_session):
        deliverable = create_approved_deliverable(db_session)

        with pytest.raises(ConflictError) as exc_info:
            run_async(processor.retry_failed_payout(deliverable.id, "admin_001"))
        assert exc_info.value.code == "NOT_FAILED"

    def test_onboarding_completion_resumes_held_payouts(self, processor, db_session, provider):
        deliverable = create_approved_deliverable(db_session, payment_status="pending_onboarding")
        create_connected_account(db_session, user_id=CREATOR)

        results = run_async(processor.resume_pending_onboarding(CREATOR))

        assert [r.deliverable_id for r in results] == [deliverable.id]
        assert results[0].status == "processing"
        db_session.refresh(deliverable)
        assert deliverable.payment_status == "processing"
