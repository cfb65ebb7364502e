# marketplace_payments/api/v1/endpoints/connect_accounts.py
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from marketplace_payments.api import deps
from marketplace_payments.api.errors import to_http_exception
from marketplace_payments.core.exceptions import MarketplaceError
from marketplace_payments.schemas.payment import ConnectedAccountCreate, OnboardingStatus
from marketplace_payments.schemas.token import TokenPayload
from marketplace_payments.services.payment.account_onboarding import AccountOnboardingTracker
from marketplace_payments.services.payment.providers.stripe_provider import PaymentError
from marketplace_payments.services.payout_processor import PayoutProcessor

router = APIRouter(prefix="/connect-accounts", tags=["Connected Accounts"])


@router.get("/{role}", response_model=OnboardingStatus)
async def get_onboarding_status(
    role: str,
    db: Session = Depends(deps.get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    try:
        return await AccountOnboardingTracker(db).get_status(current_user.sub, role)
    except (MarketplaceError, PaymentError) as e:
        raise to_http_exception(e)


@router.post("/{role}", response_model=OnboardingStatus)
async def create_connected_account(
    role: str,
    account_in: ConnectedAccountCreate,
    db: Session = Depends(deps.get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    """Create (or resume) the user's Stripe account for this role."""
    try:
        return await AccountOnboardingTracker(db).create_account(
            current_user.sub, role, account_in.email, account_in.country
        )
    except (MarketplaceError, PaymentError) as e:
        raise to_http_exception(e)


@router.post("/{role}/onboarding-link", response_model=OnboardingStatus)
async def refresh_onboarding_link(
    role: str,
    db: Session = Depends(deps.get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    try:
        return await AccountOnboardingTracker(db).refresh_onboarding_link(current_user.sub, role)
    except (MarketplaceError, PaymentError) as e:
        raise to_http_exception(e)


@router.post("/{role}/sync", response_model=OnboardingStatus)
async def sync_connected_account(
    role: str,
    db: Session = Depends(deps.get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    """Pull onboarding state from Stripe, e.g. when the user returns from onboarding."""
    try:
        tracker = AccountOnboardingTracker(db)
        account_status, newly_completed = await tracker.sync_account(current_user.sub, role)
        if newly_completed and role == "creator":
            await PayoutProcessor(db, provider=tracker.provider).resume_pending_onboarding(
                current_user.sub
            )
    except (MarketplaceError, PaymentError) as e:
        raise to_http_exception(e)
    return account_status
