# marketplace_payments/crud/__init__.py

from .crud_application import application
from .crud_audit_log import audit_log
from .crud_campaign import campaign
from .crud_campaign_payment import campaign_payment
from .crud_connected_account import connected_account
from .crud_deliverable import deliverable
from .crud_payment_transaction import payment_transaction
from .crud_user_role import user_role
from .crud_webhook_event import webhook_event
