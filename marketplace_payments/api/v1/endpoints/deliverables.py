# marketplace_payments/api/v1/endpoints/deliverables.py
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from marketplace_payments.api import deps
from marketplace_payments.api.errors import to_http_exception
from marketplace_payments.core.exceptions import MarketplaceError
from marketplace_payments.schemas.deliverable import (
    ApproveRequest,
    AutoApprovalStatus,
    BulkApproveRequest,
    BulkApproveResult,
    Deliverable,
    DeliverableDraft,
    DeliverableDraftUpdate,
    DeliverableSubmission,
    RejectRequest,
    RequestChangesRequest,
    ReviewResult,
)
from marketplace_payments.schemas.token import TokenPayload
from marketplace_payments.services.deliverable_lifecycle import DeliverableLifecycle

router = APIRouter(prefix="/deliverables", tags=["Deliverables"])


@router.post("", response_model=Deliverable, status_code=status.HTTP_201_CREATED)
def submit_deliverable(
    submission: DeliverableSubmission,
    db: Session = Depends(deps.get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    """Submit a published post for the campaign owner's review."""
    try:
        return DeliverableLifecycle(db).submit(current_user.sub, submission)
    except MarketplaceError as e:
        raise to_http_exception(e)


@router.post("/drafts", response_model=Deliverable, status_code=status.HTTP_201_CREATED)
def save_deliverable_draft(
    draft: DeliverableDraft,
    db: Session = Depends(deps.get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    try:
        return DeliverableLifecycle(db).save_draft(current_user.sub, draft)
    except MarketplaceError as e:
        raise to_http_exception(e)


@router.put("/{deliverable_id}/draft", response_model=Deliverable)
def update_deliverable_draft(
    deliverable_id: str,
    update: DeliverableDraftUpdate,
    db: Session = Depends(deps.get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    try:
        return DeliverableLifecycle(db).update_draft(deliverable_id, current_user.sub, update)
    except MarketplaceError as e:
        raise to_http_exception(e)


@router.post("/bulk-approve", response_model=BulkApproveResult)
async def bulk_approve_deliverables(
    request: BulkApproveRequest,
    db: Session = Depends(deps.get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    return await DeliverableLifecycle(db).bulk_approve(
        request.deliverable_ids, current_user.sub, request.feedback
    )


@router.post("/{deliverable_id}/approve", response_model=ReviewResult)
async def approve_deliverable(
    deliverable_id: str,
    request: ApproveRequest,
    db: Session = Depends(deps.get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    """Approve a deliverable; the creator's payout starts immediately."""
    try:
        return await DeliverableLifecycle(db).approve(
            deliverable_id, current_user.sub, request.feedback
        )
    except MarketplaceError as e:
        raise to_http_exception(e)


@router.post("/{deliverable_id}/reject", response_model=ReviewResult)
def reject_deliverable(
    deliverable_id: str,
    request: RejectRequest,
    db: Session = Depends(deps.get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    try:
        return DeliverableLifecycle(db).reject(deliverable_id, current_user.sub, request.feedback)
    except MarketplaceError as e:
        raise to_http_exception(e)


@router.post("/{deliverable_id}/request-changes", response_model=ReviewResult)
def request_deliverable_changes(
    deliverable_id: str,
    request: RequestChangesRequest,
    db: Session = Depends(deps.get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    try:
        return DeliverableLifecycle(db).request_changes(
            deliverable_id, current_user.sub, request.feedback, request.changes_required
        )
    except MarketplaceError as e:
        raise to_http_exception(e)


@router.post("/{deliverable_id}/check-auto-approval", response_model=ReviewResult)
async def check_deliverable_auto_approval(
    deliverable_id: str,
    db: Session = Depends(deps.get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    try:
        return await DeliverableLifecycle(db).check_auto_approval(deliverable_id)
    except MarketplaceError as e:
        raise to_http_exception(e)


@router.get("/{deliverable_id}/auto-approval-status", response_model=AutoApprovalStatus)
def get_deliverable_auto_approval_status(
    deliverable_id: str,
    db: Session = Depends(deps.get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    try:
        return DeliverableLifecycle(db).get_auto_approval_status(deliverable_id)
    except MarketplaceError as e:
        raise to_http_exception(e)
