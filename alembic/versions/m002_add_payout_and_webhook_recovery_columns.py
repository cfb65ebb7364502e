"""Track rejected transfer requests and webhook claim leases

Revision ID: m002_payout_webhook_recovery
Revises: m001_marketplace_payments
Create Date: 2026-10-19 16:00:00.000000

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "m002_payout_webhook_recovery"
down_revision: Union[str, None] = "m001_marketplace_payments"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column(
        "campaign_deliverables",
        sa.Column("rejected_transfer_count", sa.Integer(), server_default="0", nullable=False),
    )
    op.add_column(
        "payment_webhook_events",
        sa.Column("processing_started_at", sa.DateTime(timezone=True), nullable=True),
    )
    # Stale claims are looked up by status and lease start
    op.create_index(
        "idx_webhook_events_processing",
        "payment_webhook_events",
        ["status", "processing_started_at"],
    )


def downgrade() -> None:
    op.drop_index("idx_webhook_events_processing", table_name="payment_webhook_events")
    op.drop_column("payment_webhook_events", "processing_started_at")
    op.drop_column("campaign_deliverables", "rejected_transfer_count")
