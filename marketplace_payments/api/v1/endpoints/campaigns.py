# marketplace_payments/api/v1/endpoints/campaigns.py
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from marketplace_payments import crud
from marketplace_payments.api import deps
from marketplace_payments.api.errors import to_http_exception
from marketplace_payments.core.exceptions import MarketplaceError
from marketplace_payments.schemas.campaign import Campaign, CampaignDraft, FundingOutcome
from marketplace_payments.schemas.payment import PaymentIntentResponse, PaymentStatusResponse
from marketplace_payments.schemas.token import TokenPayload
from marketplace_payments.services.campaign_funding import CampaignFundingOrchestrator
from marketplace_payments.services.payment.account_onboarding import AccountOnboardingTracker
from marketplace_payments.services.payment.providers.stripe_provider import PaymentError

router = APIRouter(tags=["Campaigns"])


def _owned_campaign(db: Session, campaign_id: str, owner_id: str):
    campaign = crud.campaign.get_for_owner(db, campaign_id=campaign_id, owner_id=owner_id)
    if not campaign:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": "Campaign not found", "code": "CAMPAIGN_NOT_FOUND"},
        )
    return campaign


@router.post(
    "/campaigns",
    response_model=PaymentIntentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_campaign(
    draft: CampaignDraft,
    db: Session = Depends(deps.get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    """
    Create a pending campaign and the payment intent that funds it.

    The client collects payment with the returned client secret and then
    calls confirm-funding.
    """
    try:
        account_status = await AccountOnboardingTracker(db).get_status(
            current_user.sub, "business"
        )
        return await CampaignFundingOrchestrator(db).start_funding(
            current_user.sub, draft, account_status
        )
    except (MarketplaceError, PaymentError) as e:
        raise to_http_exception(e)


@router.get("/campaigns/{campaign_id}", response_model=Campaign)
def get_campaign(
    campaign_id: str,
    db: Session = Depends(deps.get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    return _owned_campaign(db, campaign_id, current_user.sub)


@router.post("/campaigns/{campaign_id}/payment-intent", response_model=PaymentIntentResponse)
async def retry_campaign_payment(
    campaign_id: str,
    db: Session = Depends(deps.get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    """Request a new payment intent for an unpaid campaign."""
    try:
        return await CampaignFundingOrchestrator(db).retry_funding(campaign_id, current_user.sub)
    except (MarketplaceError, PaymentError) as e:
        raise to_http_exception(e)


@router.get("/campaigns/{campaign_id}/payment-status", response_model=PaymentStatusResponse)
def get_campaign_payment_status(
    campaign_id: str,
    db: Session = Depends(deps.get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    _owned_campaign(db, campaign_id, current_user.sub)
    return CampaignFundingOrchestrator(db).get_payment_status(campaign_id)


@router.post("/campaigns/{campaign_id}/confirm-funding", response_model=FundingOutcome)
async def confirm_campaign_funding(
    campaign_id: str,
    db: Session = Depends(deps.get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    """Wait for the payment webhook, then reconcile from the payment record if needed."""
    _owned_campaign(db, campaign_id, current_user.sub)
    return await CampaignFundingOrchestrator(db).await_confirmation(campaign_id)
