# marketplace_payments/api/v1/api.py

from fastapi import APIRouter
from marketplace_payments.api.v1.endpoints import (
    applications,
    campaigns,
    connect_accounts,
    deliverables,
    payouts,
    webhooks,
)

# This is the main router for the v1 API.
api_router = APIRouter()

api_router.include_router(campaigns.router)
api_router.include_router(applications.router)
api_router.include_router(deliverables.router)
api_router.include_router(payouts.router)
api_router.include_router(connect_accounts.router)
api_router.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"])
