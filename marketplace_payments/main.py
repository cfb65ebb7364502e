# marketplace_payments/main.py
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from marketplace_payments.api.v1.api import api_router
from marketplace_payments.core.config import settings
from marketplace_payments.core.kafka_producer import close_kafka_singleton
from marketplace_payments.scheduler import init_scheduler, shutdown_scheduler

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Marketplace payments service starting up...")
    if settings.SCHEDULER_ENABLED:
        init_scheduler()
    yield
    logger.info("Marketplace payments service shutting down...")
    if settings.SCHEDULER_ENABLED:
        shutdown_scheduler()
    close_kafka_singleton()


app = FastAPI(
    title="Marketplace Payments Service",
    version="1.0.0",
    description="""
        Campaign funding and creator payouts for the creator marketplace.

        ## Features

        * **Campaign Funding**: Create campaigns and collect their budget through Stripe
        * **Applications**: Creators apply to funded campaigns
        * **Deliverables**: Submission, review and 72-hour auto-approval
        * **Payouts**: Transfers to creators' connected accounts with retries
        * **Webhooks**: Idempotent reconciliation of Stripe events

        ## Authentication

        Most endpoints require JWT authentication via the `Authorization: Bearer <token>` header.
        `POST /payouts` uses the `X-Internal-Api-Key` header instead.
        """,
    lifespan=lifespan,
)

origins = [
    settings.FRONTEND_URL,
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix="/api/v1")


@app.get("/")
def read_root():
    return {"status": "Marketplace Payments Service is running"}
