"""
Tests for connected-account onboarding.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from marketplace_payments import crud
from marketplace_payments.core.exceptions import NotFoundError, ValidationError
from marketplace_payments.services.payment.account_onboarding import AccountOnboardingTracker
from marketplace_payments.services.payment.provider_interface import (
    AccountLinkResult,
    ConnectedAccountDetails,
)
from marketplace_payments.services.payment.providers.stripe_provider import PaymentError
from marketplace_payments.utils.review_window import as_utc
from tests.utils.marketplace import create_connected_account


def run_async(coro):
    """Helper to run async coroutines in sync tests."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def link_result(url="https://connect.stripe.com/setup/e/acct_new/abc", minutes=5):
    return AccountLinkResult(
        url=url, expires_at=datetime.now(timezone.utc) + timedelta(minutes=minutes)
    )


@pytest.fixture
def tracker(db_session, provider):
    provider.create_connected_account.return_value = ConnectedAccountDetails(
        account_id="acct_new",
        details_submitted=False,
        charges_enabled=False,
        payouts_enabled=False,
    )
    provider.create_account_link.return_value = link_result()
    return AccountOnboardingTracker(db_session, provider=provider)


class TestCreateAccount:

    def test_new_account_gets_an_onboarding_link(self, tracker, db_session, provider):
        status = run_async(tracker.create_account("creator_001", "creator", "c@example.com"))

        assert status.has_account is True
        assert status.onboarding_completed is False
        assert status.stripe_account_id == "acct_new"
        assert status.onboarding_link == "https://connect.stripe.com/setup/e/acct_new/abc"

        kwargs = provider.create_connected_account.call_args.kwargs
        assert kwargs["account_type"] == "creator"
        assert kwargs["country"] == "US"
        link_kwargs = provider.create_account_link.call_args.kwargs
        assert link_kwargs["account_id"] == "acct_new"
        assert link_kwargs["return_url"].endswith("/creator/payments/onboarding?success=true")

        account = crud.connected_account.get_by_user_role(
            db_session, user_id="creator_001", account_type="creator"
        )
        assert account.stripe_account_id == "acct_new"

    def test_existing_account_is_reused(self, tracker, db_session, provider):
        create_connected_account(db_session, user_id="creator_001")

        status = run_async(tracker.create_account("creator_001", "creator", "c@example.com"))

        assert status.onboarding_completed is True
        assert status.stripe_account_id == "acct_creator_001"
        provider.create_connected_account.assert_not_awaited()

    def test_roles_hold_separate_accounts(self, tracker, db_session, provider):
        create_connected_account(db_session, user_id="user_001", account_type="creator")

        status = run_async(tracker.create_account("user_001", "business", "b@example.com"))

        assert status.stripe_account_id == "acct_new"
        assert provider.create_connected_account.call_args.kwargs["account_type"] == "business"

    def test_unknown_role_is_rejected(self, tracker):
        with pytest.raises(ValidationError) as exc_info:
            run_async(tracker.create_account("user_001", "admin", "a@example.com"))
        assert exc_info.value.code == "INVALID_ROLE"


class TestOnboardingStatus:

    def test_no_account(self, tracker):
        status = run_async(tracker.get_status("creator_001", "creator"))

        assert status.has_account is False
        assert status.onboarding_completed is False
        assert status.onboarding_link is None

    def test_completed_account_has_no_link(self, tracker, db_session, provider):
        create_connected_account(db_session, onboarding_link="https://old.example/link")

        status = run_async(tracker.get_status("creator_001", "creator"))

        assert status.onboarding_completed is True
        assert status.payouts_enabled is True
        assert status.onboarding_link is None
        provider.create_account_link.assert_not_awaited()

    def test_valid_cached_link_is_reused(self, tracker, db_session, provider):
        create_connected_account(
            db_session,
            completed=False,
            onboarding_link="https://connect.stripe.com/setup/cached",
            onboarding_link_expires_at=datetime.now(timezone.utc) + timedelta(minutes=30),
        )

        status = run_async(tracker.get_status("creator_001", "creator"))

        assert status.onboarding_link == "https://connect.stripe.com/setup/cached"
        provider.create_account_link.assert_not_awaited()

    def test_expired_link_is_replaced(self, tracker, db_session, provider):
        create_connected_account(
            db_session,
            completed=False,
            onboarding_link="https://connect.stripe.com/setup/stale",
            onboarding_link_expires_at=datetime.now(timezone.utc) - timedelta(minutes=1),
        )

        status = run_async(tracker.get_status("creator_001", "creator"))

        assert status.onboarding_link == "https://connect.stripe.com/setup/e/acct_new/abc"
        provider.create_account_link.assert_awaited_once()

    def test_cached_expiry_never_exceeds_an_hour(self, tracker, db_session, provider):
        create_connected_account(db_session, completed=False)
        provider.create_account_link.return_value = link_result(minutes=300)

        status = run_async(tracker.get_status("creator_001", "creator"))

        expires_at = as_utc(status.onboarding_link_expires_at)
        assert expires_at <= datetime.now(timezone.utc) + timedelta(minutes=60)

    def test_link_failure_still_returns_status(self, tracker, db_session, provider):
        create_connected_account(db_session, completed=False)
        provider.create_account_link.side_effect = PaymentError(
            code="PROVIDER_ERROR", message="Could not create onboarding link"
        )

        status = run_async(tracker.get_status("creator_001", "creator"))

        assert status.has_account is True
        assert status.onboarding_completed is False
        assert status.onboarding_link is None

    def test_refresh_requires_an_account(self, tracker):
        with pytest.raises(NotFoundError) as exc_info:
            run_async(tracker.refresh_onboarding_link("creator_001", "creator"))
        assert exc_info.value.code == "NO_CONNECTED_ACCOUNT"

    def test_refresh_forces_a_new_link(self, tracker, db_session, provider):
        create_connected_account(
            db_session,
            completed=False,
            onboarding_link="https://connect.stripe.com/setup/cached",
            onboarding_link_expires_at=datetime.now(timezone.utc) + timedelta(minutes=30),
        )

        status = run_async(tracker.refresh_onboarding_link("creator_001", "creator"))

        assert status.onboarding_link == "https://connect.stripe.com/setup/e/acct_new/abc"


class TestAccountUpdates:

    def test_completion_is_reported_once(self, tracker, db_session):
        create_connected_account(db_session, completed=False, onboarding_link="https://x/y")

        account, newly = tracker.apply_account_update(
            stripe_account_id="acct_creator_001",
            details_submitted=True,
            charges_enabled=True,
            payouts_enabled=True,
        )
        db_session.commit()
        _, again = tracker.apply_account_update(
            stripe_account_id="acct_creator_001",
            details_submitted=True,
            charges_enabled=True,
            payouts_enabled=True,
        )

        assert newly is True
        assert again is False
        assert account.onboarding_completed_at is not None
        assert account.onboarding_link is None

    def test_unknown_account_is_ignored(self, tracker):
        account, newly = tracker.apply_account_update(
            stripe_account_id="acct_unknown", details_submitted=True
        )
        assert account is None
        assert newly is False

    def test_sync_pulls_state_from_processor(self, tracker, db_session, provider):
        create_connected_account(db_session, completed=False)
        provider.get_connected_account.return_value = ConnectedAccountDetails(
            account_id="acct_creator_001",
            details_submitted=True,
            charges_enabled=True,
            payouts_enabled=True,
        )

        status, newly = run_async(tracker.sync_account("creator_001", "creator"))

        assert newly is True
        assert status.onboarding_completed is True
        provider.get_connected_account.assert_awaited_once_with("acct_creator_001")
