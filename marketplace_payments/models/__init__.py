# marketplace_payments/models/__init__.py
# Import all models to ensure SQLAlchemy can resolve relationships
# Order matters for dependencies - import base models first

from marketplace_payments.db.base_class import Base
from marketplace_payments.models.campaign import Campaign
from marketplace_payments.models.campaign_payment import CampaignPayment
from marketplace_payments.models.campaign_application import CampaignApplication
from marketplace_payments.models.campaign_deliverable import CampaignDeliverable
from marketplace_payments.models.payment_transaction import PaymentTransaction
from marketplace_payments.models.connected_account import ConnectedAccount

# Webhook idempotency and audit
from marketplace_payments.models.payment_webhook_event import PaymentWebhookEvent
from marketplace_payments.models.payment_audit_log import PaymentAuditLog

# Privileges
from marketplace_payments.models.user_role import UserRole
