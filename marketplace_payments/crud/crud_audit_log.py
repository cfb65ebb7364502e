# marketplace_payments/crud/crud_audit_log.py
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from marketplace_payments.models.payment_audit_log import PaymentAuditLog
from marketplace_payments.schemas.payment import AuditLogCreate

ACTOR_TYPES = ("business", "creator", "admin", "system", "webhook")
AUDITED_ENTITIES = ("campaign", "deliverable")


class CRUDAuditLog:
    """
    Append-only trail of money-moving state changes.

    Entries are flushed into the caller's transaction, so a rolled-back
    transition leaves no trace.
    """

    def __init__(self, model):
        self.model = model

    def log_action(
        self,
        db: Session,
        *,
        action: str,
        actor_type: str,
        entity_type: str,
        entity_id: str,
        actor_id: Optional[str] = None,
        previous_state: Optional[Dict[str, Any]] = None,
        new_state: Optional[Dict[str, Any]] = None,
        change_details: Optional[Dict[str, Any]] = None,
    ) -> PaymentAuditLog:
        if actor_type not in ACTOR_TYPES:
            raise ValueError(f"Unknown audit actor type: {actor_type}")
        if entity_type not in AUDITED_ENTITIES:
            raise ValueError(f"Unknown audited entity: {entity_type}")

        entry = AuditLogCreate(
            action=action,
            actor_type=actor_type,
            actor_id=actor_id,
            entity_type=entity_type,
            entity_id=entity_id,
            previous_state=previous_state,
            new_state=new_state,
            change_details=change_details,
        )
        db_obj = self.model(**entry.model_dump())
        db.add(db_obj)
        db.flush()
        return db_obj

    def get_by_entity(
        self, db: Session, *, entity_type: str, entity_id: str
    ) -> List[PaymentAuditLog]:
        """Audit trail for one campaign or deliverable, oldest first."""
        return (
            db.query(self.model)
            .filter(
                self.model.entity_type == entity_type,
                self.model.entity_id == entity_id,
            )
            .order_by(self.model.created_at, self.model.id)
            .all()
        )


audit_log = CRUDAuditLog(PaymentAuditLog)
