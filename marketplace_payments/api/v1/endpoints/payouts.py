# marketplace_payments/api/v1/endpoints/payouts.py
"""
Creator payout endpoints.

`POST /payouts` is called by other services with the internal API key and
takes the camelCase body used across the platform. The body is validated
here rather than by a pydantic parameter so that bad input is a 400 with the
platform's error shape.
"""
import logging
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends
from sqlalchemy.orm import Session

from marketplace_payments.api import deps
from marketplace_payments.api.errors import to_http_exception
from marketplace_payments.core.exceptions import MarketplaceError
from marketplace_payments.schemas.payment import PayoutResponse
from marketplace_payments.schemas.token import TokenPayload
from marketplace_payments.services.payment.providers.stripe_provider import PaymentError
from marketplace_payments.services.payout_processor import PayoutProcessor, PayoutResult
from marketplace_payments.utils.validators import validate_payout_request

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payouts", tags=["Payouts"])


def _to_response(result: PayoutResult) -> PayoutResponse:
    return PayoutResponse(
        success=True,
        deliverable_id=result.deliverable_id,
        status=result.status,
        transfer_id=result.transfer_id,
        transaction_id=result.transaction_id,
        message=result.message,
    )


@router.post("", response_model=PayoutResponse, response_model_by_alias=True)
async def create_payout(
    payload: Dict[str, Any] = Body(...),
    db: Session = Depends(deps.get_db),
    api_key: str = Depends(deps.get_internal_api_key),
):
    try:
        request = validate_payout_request(payload)
        result = await PayoutProcessor(db).process_payout_request(request)
    except (MarketplaceError, PaymentError) as e:
        raise to_http_exception(e)
    return _to_response(result)


@router.post(
    "/{deliverable_id}/retry",
    response_model=PayoutResponse,
    response_model_by_alias=True,
)
async def retry_payout(
    deliverable_id: str,
    db: Session = Depends(deps.get_db),
    admin: TokenPayload = Depends(deps.require_admin),
):
    """Restart a payout that failed permanently (admin only)."""
    try:
        result = await PayoutProcessor(db).retry_failed_payout(deliverable_id, admin.sub)
    except (MarketplaceError, PaymentError) as e:
        raise to_http_exception(e)
    return _to_response(result)
