# marketplace_payments/api/v1/endpoints/applications.py
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from marketplace_payments.api import deps
from marketplace_payments.api.errors import to_http_exception
from marketplace_payments.core.exceptions import MarketplaceError
from marketplace_payments.schemas.campaign import Application, ApplicationCreate
from marketplace_payments.schemas.token import TokenPayload
from marketplace_payments.services.application_service import ApplicationService

router = APIRouter(tags=["Applications"])


@router.post(
    "/campaigns/{campaign_id}/applications",
    response_model=Application,
    status_code=status.HTTP_201_CREATED,
)
def apply_to_campaign(
    campaign_id: str,
    application_in: ApplicationCreate,
    db: Session = Depends(deps.get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    try:
        return ApplicationService(db).apply(campaign_id, current_user.sub, application_in)
    except MarketplaceError as e:
        raise to_http_exception(e)


@router.post("/applications/{application_id}/accept", response_model=Application)
def accept_application(
    application_id: str,
    db: Session = Depends(deps.get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    try:
        return ApplicationService(db).accept(application_id, current_user.sub)
    except MarketplaceError as e:
        raise to_http_exception(e)


@router.post("/applications/{application_id}/reject", response_model=Application)
def reject_application(
    application_id: str,
    db: Session = Depends(deps.get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    try:
        return ApplicationService(db).reject(application_id, current_user.sub)
    except MarketplaceError as e:
        raise to_http_exception(e)


@router.post("/applications/{application_id}/withdraw", response_model=Application)
def withdraw_application(
    application_id: str,
    db: Session = Depends(deps.get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    try:
        return ApplicationService(db).withdraw(application_id, current_user.sub)
    except MarketplaceError as e:
        raise to_http_exception(e)
