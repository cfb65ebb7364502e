# marketplace_payments/services/payment/account_onboarding.py
"""
Connected-account onboarding for businesses and creators.

Each user holds at most one Stripe Express account per role. Businesses
need a completed account before funding a campaign, creators before they
can be paid out.
"""
import logging
from typing import Optional, Tuple
from datetime import datetime, timedelta, timezone

from sqlalchemy.orm import Session

from marketplace_payments import crud
from marketplace_payments.core.config import settings
from marketplace_payments.core.exceptions import NotFoundError, ValidationError
from marketplace_payments.db.session import transaction
from marketplace_payments.models.connected_account import ConnectedAccount
from marketplace_payments.schemas.payment import AccountType, OnboardingStatus
from marketplace_payments.utils.review_window import as_utc
from .provider_factory import get_payment_provider
from .provider_interface import PaymentProviderInterface
from .providers.stripe_provider import PaymentError

logger = logging.getLogger(__name__)


def _status_for(account: Optional[ConnectedAccount]) -> OnboardingStatus:
    if account is None:
        return OnboardingStatus(has_account=False, onboarding_completed=False)
    return OnboardingStatus(
        has_account=True,
        onboarding_completed=account.onboarding_completed,
        onboarding_link=None if account.onboarding_completed else account.onboarding_link,
        onboarding_link_expires_at=(
            None if account.onboarding_completed else account.onboarding_link_expires_at
        ),
        stripe_account_id=account.stripe_account_id,
        charges_enabled=account.charges_enabled,
        payouts_enabled=account.payouts_enabled,
    )


def _validate_role(role: str) -> str:
    try:
        return AccountType(role).value
    except ValueError:
        raise ValidationError("INVALID_ROLE", f"Unknown account role: {role}")


class AccountOnboardingTracker:
    """Tracks per-(user, role) connected accounts and their onboarding links."""

    def __init__(self, db: Session, provider: Optional[PaymentProviderInterface] = None):
        self.db = db
        self._provider = provider

    @property
    def provider(self) -> PaymentProviderInterface:
        if self._provider is None:
            self._provider = get_payment_provider()
        return self._provider

    def get_account(self, user_id: str, role: str) -> Optional[ConnectedAccount]:
        return crud.connected_account.get_by_user_role(
            self.db, user_id=user_id, account_type=_validate_role(role)
        )

    async def get_status(self, user_id: str, role: str) -> OnboardingStatus:
        """
        Report whether the user can transact in this role.

        An incomplete account gets a usable onboarding link: the cached one
        while it is valid, otherwise a fresh one. A failure to create the
        link is logged and the status is returned without it.
        """
        account = self.get_account(user_id, role)
        if account is None or account.onboarding_completed:
            return _status_for(account)

        if not self._link_is_valid(account):
            try:
                await self._refresh_link(account, role)
            except PaymentError as e:
                logger.warning(
                    f"Could not refresh onboarding link for {user_id} ({role}): {e.message}"
                )
        return _status_for(account)

    async def create_account(
        self, user_id: str, role: str, email: str, country: str = "US"
    ) -> OnboardingStatus:
        """Create the user's account for this role, or resume an existing one."""
        role = _validate_role(role)
        account = self.get_account(user_id, role)
        if account is not None:
            return await self.get_status(user_id, role)

        details = await self.provider.create_connected_account(
            user_id=user_id, account_type=role, email=email, country=country
        )
        with transaction(self.db):
            account = crud.connected_account.create_account(
                self.db,
                user_id=user_id,
                account_type=role,
                stripe_account_id=details.account_id,
                details_submitted=details.details_submitted,
            )
            account.charges_enabled = details.charges_enabled
            account.payouts_enabled = details.payouts_enabled

        logger.info(f"Created {role} connected account {details.account_id} for user {user_id}")

        if not account.onboarding_completed:
            await self._refresh_link(account, role)
        return _status_for(account)

    async def refresh_onboarding_link(self, user_id: str, role: str) -> OnboardingStatus:
        """Force a new onboarding link (e.g. the user hit the refresh URL)."""
        account = self.get_account(user_id, role)
        if account is None:
            raise NotFoundError("NO_CONNECTED_ACCOUNT", "No connected account for this role")
        if account.onboarding_completed:
            return _status_for(account)
        await self._refresh_link(account, role)
        return _status_for(account)

    async def sync_account(self, user_id: str, role: str) -> Tuple[OnboardingStatus, bool]:
        """
        Pull the account state from Stripe.

        Returns the status and whether onboarding completed with this sync.
        """
        account = self.get_account(user_id, role)
        if account is None:
            raise NotFoundError("NO_CONNECTED_ACCOUNT", "No connected account for this role")

        details = await self.provider.get_connected_account(account.stripe_account_id)
        with transaction(self.db):
            _, newly_completed = self.apply_account_update(
                stripe_account_id=details.account_id,
                details_submitted=details.details_submitted,
                charges_enabled=details.charges_enabled,
                payouts_enabled=details.payouts_enabled,
            )
        return _status_for(account), newly_completed

    def apply_account_update(
        self,
        *,
        stripe_account_id: str,
        details_submitted: bool,
        charges_enabled: bool = False,
        payouts_enabled: bool = False,
    ) -> Tuple[Optional[ConnectedAccount], bool]:
        """
        Mirror the processor's account flags onto our row.

        Flushes only; the caller owns the transaction. Returns the account
        (None if unknown) and whether onboarding just became complete.
        """
        account = crud.connected_account.get_by_stripe_account_id(
            self.db, stripe_account_id=stripe_account_id
        )
        if account is None:
            logger.warning(f"No connected account found for {stripe_account_id}")
            return None, False

        newly_completed = details_submitted and not account.onboarding_completed

        account.onboarding_completed = bool(details_submitted)
        account.charges_enabled = bool(charges_enabled)
        account.payouts_enabled = bool(payouts_enabled)
        if newly_completed:
            account.onboarding_completed_at = datetime.now(timezone.utc)
            account.onboarding_link = None
            account.onboarding_link_expires_at = None

        self.db.add(account)
        self.db.flush()

        logger.info(
            f"Updated account {stripe_account_id}: "
            f"onboarding_completed={account.onboarding_completed}, "
            f"payouts={account.payouts_enabled}"
        )
        return account, newly_completed

    def _link_is_valid(self, account: ConnectedAccount) -> bool:
        if not account.onboarding_link or not account.onboarding_link_expires_at:
            return False
        return as_utc(account.onboarding_link_expires_at) > datetime.now(timezone.utc)

    async def _refresh_link(self, account: ConnectedAccount, role: str) -> None:
        base = f"{settings.FRONTEND_URL}/{role}/payments/onboarding"
        link = await self.provider.create_account_link(
            account_id=account.stripe_account_id,
            refresh_url=f"{base}?refresh=true",
            return_url=f"{base}?success=true",
        )
        ttl_expiry = datetime.now(timezone.utc) + timedelta(
            minutes=settings.ONBOARDING_LINK_TTL_MINUTES
        )
        with transaction(self.db):
            crud.connected_account.cache_link(
                self.db,
                account=account,
                url=link.url,
                expires_at=min(as_utc(link.expires_at), ttl_expiry),
            )
